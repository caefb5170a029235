"""External tool invocation — compiler, archiver and uploader.

Command templates are split with ``shlex`` first and placeholders are filled
per argument afterwards, so substituted values never change how a command
line is tokenised.  Output is captured into ``<log_dir>/<tool>.log``.  Every
secret value is redacted from logged commands, log files and error text.
"""

from __future__ import annotations

import logging
import os
import re
import shlex
import subprocess
import time
from collections.abc import Callable, Iterable, Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict

from appship.models.snapshot import MASK

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")
_TAIL_LINES = 20


class ToolCommandError(RuntimeError):
    """Raised when a command template cannot be rendered."""


class ExternalToolFailure(RuntimeError):
    """Raised when an external tool exits non-zero, times out or cannot start."""

    def __init__(
        self,
        tool: str,
        message: str,
        *,
        exit_code: int | None = None,
        output_tail: str = "",
        log_path: Path | None = None,
        timed_out: bool = False,
    ) -> None:
        self.tool = tool
        self.exit_code = exit_code
        self.output_tail = output_tail
        self.log_path = log_path
        self.timed_out = timed_out
        detail = message
        if output_tail:
            detail += "\n" + output_tail
        super().__init__(detail)


class ToolResult(BaseModel):
    """Outcome of a successful external tool run."""

    model_config = ConfigDict(frozen=True)

    tool: str
    command: str  # redacted
    exit_code: int
    duration_seconds: float
    log_path: Path


def redact(text: str, secrets: Iterable[str]) -> str:
    """Replace every occurrence of each secret in *text* with the mask."""
    for secret in sorted({s for s in secrets if s}, key=len, reverse=True):
        text = text.replace(secret, MASK)
    return text


def stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def render_command(template: str, values: Mapping[str, Any]) -> list[str]:
    """Split *template* and fill ``{NAME}`` placeholders from *values*.

    Raises
    ------
    ToolCommandError
        On an empty template, unbalanced quoting or an unknown placeholder.
    """
    try:
        parts = shlex.split(template)
    except ValueError as exc:
        raise ToolCommandError(f"Cannot parse command template: {exc}") from exc
    if not parts:
        raise ToolCommandError("Command template is empty")

    def _fill(match: re.Match[str]) -> str:
        name = match.group(1)
        if name not in values:
            raise ToolCommandError(f"Unknown placeholder {{{name}}} in command template")
        return stringify(values[name])

    return [_PLACEHOLDER.sub(_fill, part) for part in parts]


def _tail(text: str, lines: int = _TAIL_LINES) -> str:
    return "\n".join(text.rstrip().splitlines()[-lines:])


class ToolRunner:
    """Runs external tools synchronously with captured output.

    Parameters
    ----------
    base_env:
        Environment handed to every tool.  Defaults to a copy of the process
        environment taken when the runner is created.
    run:
        ``subprocess.run``-compatible callable; replaced in tests.
    """

    def __init__(
        self,
        base_env: Mapping[str, str] | None = None,
        *,
        run: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ) -> None:
        self._base_env = dict(os.environ if base_env is None else base_env)
        self._run = run

    def run(
        self,
        tool: str,
        template: str,
        values: Mapping[str, Any],
        *,
        cwd: Path,
        log_dir: Path,
        extra_env: Mapping[str, str] | None = None,
        secrets: Iterable[str] = (),
        timeout: float | None = None,
    ) -> ToolResult:
        """Render *template* and run it in *cwd*.

        Raises
        ------
        ToolCommandError
            When the template cannot be rendered.
        ExternalToolFailure
            On non-zero exit, timeout, or a missing executable.
        """
        secrets = [s for s in secrets if s]
        argv = render_command(template, values)
        shown = redact(shlex.join(argv), secrets)
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        log_path = log_dir / f"{tool}.log"

        env = dict(self._base_env)
        if extra_env:
            env.update(extra_env)

        logger.info("Running %s: %s", tool, shown)
        started = time.monotonic()
        try:
            completed = self._run(
                argv,
                cwd=str(cwd),
                env=env,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
                timeout=timeout if timeout else None,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            output = exc.output or ""
            if isinstance(output, bytes):
                output = output.decode("utf-8", errors="replace")
            output = redact(output, secrets)
            log_path.write_text(f"$ {shown}\n{output}", encoding="utf-8")
            raise ExternalToolFailure(
                tool,
                f"{tool} timed out after {timeout}s",
                output_tail=_tail(output),
                log_path=log_path,
                timed_out=True,
            ) from None
        except FileNotFoundError:
            log_path.write_text(f"$ {shown}\nexecutable not found\n", encoding="utf-8")
            raise ExternalToolFailure(
                tool,
                f"{tool}: executable {argv[0]!r} not found",
                exit_code=127,
                log_path=log_path,
            ) from None
        duration = time.monotonic() - started

        output = redact(completed.stdout or "", secrets)
        log_path.write_text(f"$ {shown}\n{output}", encoding="utf-8")
        if completed.returncode != 0:
            raise ExternalToolFailure(
                tool,
                f"{tool} exited with code {completed.returncode} (log: {log_path})",
                exit_code=completed.returncode,
                output_tail=_tail(output),
                log_path=log_path,
            )

        logger.info("%s finished in %.1fs", tool, duration)
        return ToolResult(
            tool=tool,
            command=shown,
            exit_code=completed.returncode,
            duration_seconds=round(duration, 3),
            log_path=log_path,
        )
