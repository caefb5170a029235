"""Precedence-ordered build variable resolution.

Providers are consulted in the order given; the first provider offering a
non-empty value for a key wins.  Empty and whitespace-only values count as
absent, so a blank platform variable never shadows a default.  Typed keys are
parsed against the variable schema; a candidate that fails to parse or
validate is recorded as a rejection and resolution falls through to the next
provider.

Resolution is pure: providers are only read.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping, Sequence
from pathlib import Path
from typing import Protocol, runtime_checkable

from dotenv import dotenv_values

from appship.models.snapshot import ConfigSnapshot, Provenance, Rejection, ResolvedValue
from appship.models.variables import DEFAULT_SCHEMA, DEFAULT_VALUES, ValueKind, VariableSpec

logger = logging.getLogger(__name__)

_TRUE_WORDS = frozenset({"true", "1", "yes", "on"})
_FALSE_WORDS = frozenset({"false", "0", "no", "off"})
_INT_RE = re.compile(r"[+-]?\d+")


class ResolutionError(RuntimeError):
    """Raised when required variables are missing after resolution.

    ``missing`` names every missing key, not just the first.
    """

    def __init__(
        self,
        missing: Iterable[str],
        rejections: Sequence[Rejection] = (),
    ) -> None:
        self.missing = sorted(set(missing))
        self.rejections = list(rejections)
        message = "Missing required configuration: " + ", ".join(self.missing)
        related = [r for r in self.rejections if r.key in self.missing]
        if related:
            message += " (rejected: " + "; ".join(
                f"{r.key} from {r.source}: {r.reason}" for r in related
            ) + ")"
        super().__init__(message)


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------


@runtime_checkable
class VariableProvider(Protocol):
    """A read-only key -> value source.

    ``lookup`` returns ``(present, value)``.  Providers that can enumerate
    their keys additionally expose ``keys()``.
    """

    @property
    def name(self) -> str: ...

    @property
    def role(self) -> Provenance: ...

    def lookup(self, key: str) -> tuple[bool, str | None]: ...


class MappingProvider:
    """Provider over a plain mapping (explicit overrides, tests)."""

    def __init__(
        self,
        name: str,
        mapping: Mapping[str, object],
        role: Provenance = Provenance.OVERRIDE,
    ) -> None:
        self._name = name
        self._mapping = {k: (None if v is None else str(v)) for k, v in mapping.items()}
        self._role = role

    @property
    def name(self) -> str:
        return self._name

    @property
    def role(self) -> Provenance:
        return self._role

    def lookup(self, key: str) -> tuple[bool, str | None]:
        if key in self._mapping:
            return True, self._mapping[key]
        return False, None

    def keys(self) -> list[str]:
        return list(self._mapping)


class EnvironmentProvider:
    """Platform-injected variables read from an environment mapping.

    Lookup-only: the process environment carries far more than build
    variables, so its keys never widen the key universe.
    """

    def __init__(self, environ: Mapping[str, str], prefix: str = "") -> None:
        # Copied on construction; later changes to the live environment
        # are not observed.
        self._environ = dict(environ)
        self._prefix = prefix

    @property
    def name(self) -> str:
        return f"env:{self._prefix}*" if self._prefix else "env"

    @property
    def role(self) -> Provenance:
        return Provenance.OVERRIDE

    def lookup(self, key: str) -> tuple[bool, str | None]:
        name = f"{self._prefix}{key}"
        if name in self._environ:
            return True, self._environ[name]
        return False, None


class DotenvProvider(MappingProvider):
    """Variables read from a ``.env``-style file."""

    def __init__(self, path: Path, role: Provenance = Provenance.OVERRIDE) -> None:
        path = Path(path)
        if not path.is_file():
            raise FileNotFoundError(f"Variables file not found: {path}")
        super().__init__(f"file:{path}", dotenv_values(path), role)
        self.path = path


def defaults_provider(overrides: Mapping[str, str] | None = None) -> MappingProvider:
    """Static defaults, the lowest-precedence provider."""
    values = dict(DEFAULT_VALUES)
    if overrides:
        values.update(overrides)
    return MappingProvider("defaults", values, role=Provenance.DEFAULT)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def parse_value(raw: str, spec: VariableSpec | None) -> str | bool | int:
    """Parse *raw* per *spec*.  Raises ``ValueError`` with a short reason."""
    text = raw.strip()
    if spec is None:
        return text
    if spec.kind == ValueKind.BOOLEAN:
        word = text.lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
        raise ValueError(f"not a boolean: {text!r}")
    if spec.kind == ValueKind.INTEGER:
        if not _INT_RE.fullmatch(text):
            raise ValueError(f"not an integer: {text!r}")
        return int(text, 10)
    if spec.max_length is not None and len(text) > spec.max_length:
        raise ValueError(f"longer than {spec.max_length} characters")
    if spec.pattern and not re.fullmatch(spec.pattern, text):
        raise ValueError(f"does not match {spec.pattern}")
    if spec.choices and text not in spec.choices:
        raise ValueError(f"expected one of {', '.join(spec.choices)}")
    return text


def _is_empty(value: str | None) -> bool:
    return value is None or not value.strip()


def _describe_rejection(spec: VariableSpec | None, reason: str) -> str:
    # Secret candidates must not echo their value.
    if spec is not None and spec.secret:
        return "invalid value"
    return reason


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


def resolve(
    providers: Sequence[VariableProvider],
    required_keys: Iterable[str] = (),
    *,
    schema: Mapping[str, VariableSpec] = DEFAULT_SCHEMA,
    keys: Iterable[str] = (),
) -> ConfigSnapshot:
    """Merge *providers* into one immutable snapshot.

    Parameters
    ----------
    providers:
        Consulted in order; earlier providers take precedence.
    required_keys:
        Keys that must be present and non-empty.  All missing keys are
        reported together in one ``ResolutionError``.
    schema:
        Declared kinds and constraints per key.  Unknown keys are strings.
    keys:
        Extra keys to resolve beyond the schema and enumerable providers.

    Raises
    ------
    ResolutionError
        If any required key is missing after merging.
    """
    required = set(required_keys)
    universe: set[str] = set(schema) | required | set(keys)
    for provider in providers:
        enumerate_keys = getattr(provider, "keys", None)
        if callable(enumerate_keys):
            universe.update(enumerate_keys())

    entries: list[ResolvedValue] = []
    rejections: list[Rejection] = []

    for key in sorted(universe):
        spec = schema.get(key)
        for provider in providers:
            present, raw = provider.lookup(key)
            if not present or _is_empty(raw):
                continue
            try:
                value = parse_value(raw, spec)
            except ValueError as exc:
                rejection = Rejection(
                    key=key,
                    source=provider.name,
                    reason=_describe_rejection(spec, str(exc)),
                )
                rejections.append(rejection)
                logger.warning(
                    "Rejected %s from %s: %s", key, provider.name, rejection.reason
                )
                continue
            entries.append(
                ResolvedValue(
                    key=key,
                    value=value,
                    kind=spec.kind if spec else ValueKind.STRING,
                    provenance=provider.role,
                    source=provider.name,
                    secret=bool(spec and spec.secret),
                )
            )
            break

    resolved_keys = {entry.key for entry in entries}
    missing = required - resolved_keys
    if missing:
        raise ResolutionError(missing, rejections)

    logger.debug(
        "Resolved %d variables from %d providers (%d rejected candidates)",
        len(entries),
        len(providers),
        len(rejections),
    )
    return ConfigSnapshot(entries=tuple(entries), rejections=tuple(rejections))


def build_providers(
    *,
    overrides: Mapping[str, str] | None = None,
    environ: Mapping[str, str] | None = None,
    variables_file: Path | None = None,
    defaults_file: Path | None = None,
) -> list[VariableProvider]:
    """Assemble the standard provider chain, highest precedence first.

    explicit overrides > platform environment > variables file
    > defaults file > static defaults
    """
    providers: list[VariableProvider] = []
    if overrides:
        providers.append(MappingProvider("cli", overrides))
    if environ is not None:
        providers.append(EnvironmentProvider(environ))
    if variables_file is not None:
        providers.append(DotenvProvider(variables_file))
    if defaults_file is not None:
        providers.append(DotenvProvider(defaults_file, role=Provenance.DEFAULT))
    providers.append(defaults_provider())
    return providers
