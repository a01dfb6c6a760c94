"""Settings for the appdoki service.

Sources, lowest to highest precedence: field defaults, ``APPDOKI_*``
environment variables (and ``.env``), a YAML/TOML file
(``load_settings_from_file``), then command-line flags applied by
``appdoki.cli``. Validation runs once, at startup; an invalid combination
stops the process.
"""

import tomllib
from collections.abc import Callable
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ONE_YEAR_SECONDS = 365 * 24 * 60 * 60

ASYNC_DATABASE_SCHEMES = ("sqlite+aiosqlite://", "postgresql+asyncpg://", "postgresql+psycopg://")

SECRET_FIELDS = ("oidc_client_secret",)


class Settings(BaseSettings):
    """Service configuration.

    Example:
        settings = Settings()  # environment and .env only
        settings = Settings(environment="prod", oidc_client_id="...", oidc_client_secret="...")
    """

    model_config = SettingsConfigDict(
        env_prefix="APPDOKI_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- runtime ---
    environment: Literal["lab", "staging", "prod"] = Field(
        default="lab", description="Deployment environment; lab creates tables at startup"
    )
    debug: bool = Field(default=False, description="Expose API docs and allow any CORS origin")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_format: Literal["json", "text"] = "json"

    http_host: str = Field(default="127.0.0.1", description="Bind address")
    http_port: int = Field(default=8080, ge=1, le=65535, description="Bind port")

    # --- user directory store ---
    database_url: str = Field(
        default="sqlite+aiosqlite:///./appdoki.db",
        description="Async SQLAlchemy URL (aiosqlite or asyncpg/psycopg)",
    )
    database_pool_size: int = Field(default=5, ge=1, le=100)
    database_max_overflow: int = Field(default=10, ge=0, le=100)
    database_echo: bool = Field(default=False, description="Log every SQL statement")

    # --- identity provider ---
    oidc_provider_name: str = Field(
        default="google",
        pattern=r"^[a-z0-9_-]+$",
        description="Path segment in /auth/{provider}/callback",
    )
    oidc_issuer: str = Field(
        default="https://accounts.google.com",
        description="Issuer URL; discovery is read from <issuer>/.well-known/openid-configuration",
    )
    oidc_client_id: str | None = None
    oidc_client_secret: str | None = None
    oidc_redirect_url: str | None = Field(
        default=None,
        description="Registered redirect URL (default: derived from host, port, provider)",
    )
    oidc_scopes: list[str] = Field(default_factory=lambda: ["openid", "profile", "email"])
    oidc_http_timeout_seconds: float = Field(default=10.0, ge=1.0, le=60.0)
    oidc_jwks_cache_ttl_seconds: int = Field(default=3600, ge=60, le=86400)

    # --- login state cookie ---
    state_cookie_name: str = "oauthstate"
    state_cookie_max_age_seconds: int = Field(default=ONE_YEAR_SECONDS, ge=60)
    state_cookie_secure: bool = Field(default=False, description="Send the cookie over HTTPS only")

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        if not v.startswith(ASYNC_DATABASE_SCHEMES):
            raise ValueError(
                "database_url must use an async driver: " + ", ".join(ASYNC_DATABASE_SCHEMES)
            )
        return v

    @field_validator("oidc_issuer")
    @classmethod
    def validate_issuer(cls, v: str) -> str:
        if not v.startswith(("https://", "http://")):
            raise ValueError("oidc_issuer must be an absolute http(s) URL")
        return v.rstrip("/")

    @model_validator(mode="after")
    def validate_oidc_config(self) -> "Settings":
        """Outside lab, the provider client must be able to authenticate."""
        if self.environment == "lab":
            return self

        missing = [
            name
            for name in ("oidc_client_id", "oidc_client_secret")
            if not getattr(self, name)
        ]
        if missing:
            raise ValueError(f"{self.environment} environment requires: {', '.join(missing)}")
        return self

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def callback_path(self) -> str:
        """Path the provider redirects back to."""
        return f"/auth/{self.oidc_provider_name}/callback"

    @property
    def redirect_url(self) -> str:
        """Configured redirect URL, or one derived from the bind address."""
        if self.oidc_redirect_url:
            return self.oidc_redirect_url
        return f"http://{self.http_host}:{self.http_port}{self.callback_path}"

    def to_dict(self) -> dict[str, Any]:
        """Dump settings with secrets masked (safe to log)."""
        data = self.model_dump()
        for name in SECRET_FIELDS:
            if data.get(name):
                data[name] = "***REDACTED***"
        return data


def _load_yaml(path: Path) -> Any:
    with open(path) as f:
        return yaml.safe_load(f)


def _load_toml(path: Path) -> Any:
    with open(path, "rb") as f:
        return tomllib.load(f)


_FILE_LOADERS: dict[str, Callable[[Path], Any]] = {
    ".yaml": _load_yaml,
    ".yml": _load_yaml,
    ".toml": _load_toml,
}


def load_settings_from_file(config_file: Path | str) -> Settings:
    """Load settings from a YAML or TOML file.

    Keys may sit at the top level or under an ``appdoki`` table. Values from
    the file take precedence over environment variables.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the format is unsupported or the content is not a mapping

    Example:
        settings = load_settings_from_file("config/prod.yaml")
    """
    config_path = Path(config_file)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    suffix = config_path.suffix.lower()
    loader = _FILE_LOADERS.get(suffix)
    if loader is None:
        raise ValueError(f"Unsupported config file format: {suffix}. Use .yaml, .yml, or .toml")

    config_data = loader(config_path) or {}
    if isinstance(config_data, dict) and isinstance(config_data.get("appdoki"), dict):
        config_data = config_data["appdoki"]
    if not isinstance(config_data, dict):
        raise ValueError(f"Config file must contain a mapping: {config_path}")

    return Settings(**config_data)
