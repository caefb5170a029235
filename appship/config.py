"""Runtime settings of the appship tool itself — env-driven.

These settings govern how the tool behaves (logging, where notifications go,
how email is delivered).  They are distinct from the build variables, which
are resolved per run into a ``ConfigSnapshot``.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class RuntimeSettings(BaseSettings):
    """Tool settings with environment variable overrides.

    All settings can be overridden via APPSHIP_* environment variables
    or a .env file in the working directory.

    Examples
    --------
    Override via environment::

        export APPSHIP_LOG_LEVEL=DEBUG
        export APPSHIP_SMTP_HOST=smtp.example.com
        export APPSHIP_VARIABLES_FILE=ci/build.env
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="APPSHIP_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = "INFO"
    platform_tag: str = "ios"

    # Notification delivery
    notification_dir: Path = Path(".appship/notifications")
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: SecretStr = SecretStr("")
    smtp_sender: str = "appship@localhost"
    smtp_use_tls: bool = True
    smtp_timeout_seconds: float = 30.0

    # Build variable sources layered between overrides and static defaults
    variables_file: Path | None = None  # dotenv-style build variables
    defaults_file: Path | None = None  # dotenv-style team defaults

    @property
    def smtp_configured(self) -> bool:
        return bool(self.smtp_host)
