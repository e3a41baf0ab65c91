# ─────────────────────────────────────────────────────────────────────────────
# Settings — Pydantic v2 BaseSettings, frozen after construction
# ─────────────────────────────────────────────────────────────────────────────
# Precedence per option: explicit keyword > LORICA_* env var > default.
# Built once at startup and passed into create_app(); never mutated.
# ─────────────────────────────────────────────────────────────────────────────


from functools import cached_property, lru_cache
from typing import Any

import httpx
from pydantic import Field, SecretStr, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from lorica.exceptions import ConfigurationError

ENV_PREFIX = "LORICA_"

# Sentinel allow-list value meaning "any origin".
ANY_ORIGIN = "*"

# error < warn < info < debug < trace
_LOG_LEVEL_ALIASES = {
    "ERROR": "ERROR",
    "WARN": "WARNING",
    "WARNING": "WARNING",
    "INFO": "INFO",
    "DEBUG": "DEBUG",
    "TRACE": "DEBUG",
}


class Settings(BaseSettings):
    """Proxy configuration sourced from keyword arguments and environment variables."""

    model_config = SettingsConfigDict(env_prefix=ENV_PREFIX, env_file=".env", frozen=True)

    # ── Server ───────────────────────────────────────────────────────────────
    host: str = "0.0.0.0"
    port: int = Field(8877, ge=1, le=65535)

    # ── Upstream ─────────────────────────────────────────────────────────────
    summon_api_url: str = "https://api.summon.serialssolutions.com"
    access_id: str = ""
    # SecretStr keeps the key out of repr(), logs and model_dump().
    secret_key: SecretStr = SecretStr("")
    request_timeout_seconds: float = Field(10.0, gt=0)

    # ── CORS ─────────────────────────────────────────────────────────────────
    # ";"-delimited origins, "*" for any, empty = no origin is echoed.
    allowed_origins: str = ""
    cors_max_age: int = Field(604800, ge=0)

    # ── Rate limiting ────────────────────────────────────────────────────────
    rate_limit_enabled: bool = False
    rate_limit_per_second: float = Field(1.0, gt=0)
    rate_limit_burst: int = Field(1, ge=1)
    rate_limit_idle_seconds: float = Field(600.0, gt=0)
    trust_proxy_headers: bool = False

    # ── Logging ──────────────────────────────────────────────────────────────
    log_level: str = "WARNING"
    log_json: bool = True

    @field_validator("access_id")
    @classmethod
    def access_id_required(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("An access ID for the Summon API is required.")
        return v

    @field_validator("secret_key")
    @classmethod
    def secret_key_required(cls, v: SecretStr) -> SecretStr:
        if not v.get_secret_value():
            raise ValueError("A secret key for the Summon API is required.")
        return v

    @field_validator("summon_api_url")
    @classmethod
    def upstream_url_parseable(cls, v: str) -> str:
        v = v.strip()
        if "://" not in v:
            v = f"https://{v}"
        try:
            url = httpx.URL(v)
        except httpx.InvalidURL as exc:
            raise ValueError(f"Unable to parse Summon API URL {v!r}: {exc}") from exc
        if url.scheme not in ("http", "https") or not url.host:
            raise ValueError(f"Summon API URL {v!r} must be an absolute http(s) URL.")
        return v.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def log_level_known(cls, v: str) -> str:
        try:
            return _LOG_LEVEL_ALIASES[v.strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown log level {v!r}.") from None

    # ── Derived values ───────────────────────────────────────────────────────

    @cached_property
    def upstream_url(self) -> httpx.URL:
        return httpx.URL(self.summon_api_url)

    @property
    def upstream_host(self) -> str:
        """Host as sent in the outbound Host header (port only when non-default)."""
        url = self.upstream_url
        return url.host if url.port is None else f"{url.host}:{url.port}"

    @cached_property
    def origin_allow_list(self) -> tuple[str, ...] | None:
        """Parsed allow-list, or None when any origin is allowed."""
        if self.allowed_origins.strip() == ANY_ORIGIN:
            return None
        return tuple(o.strip() for o in self.allowed_origins.split(";") if o.strip())

    def describe(self) -> dict[str, Any]:
        """Non-secret settings for the startup log."""
        return self.model_dump(exclude={"secret_key"})


def load_settings(**overrides: Any) -> Settings:
    """Build validated settings or raise ConfigurationError.

    Keyword overrides win over environment variables, which win over defaults.
    """
    try:
        return Settings(**overrides)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'settings'}: {err['msg']}"
            for err in exc.errors()
        )
        raise ConfigurationError(problems) from exc


@lru_cache
def get_settings() -> Settings:
    """Cached settings singleton for the process entrypoint."""
    return load_settings()
