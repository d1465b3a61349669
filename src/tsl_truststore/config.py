"""
Configuration — typed, validated settings loaded from environment/.env.

Uses pydantic-settings to:
  - Load from environment variables (12-factor app)
  - Fall back to .env file
  - Validate types and constraints at startup

Designed for Kubernetes deployment: a ConfigMap overrides environment variables.
All configuration errors surface at startup, not at the first scheduled run.

Architecture: Only AppSettings is a BaseSettings instance. Sub-settings are plain
BaseModel classes populated by AppSettings via env_nested_delimiter="__", so the env
var TSL__URL maps to tsl.url, STORE__BUNDLE_PATH maps to store.bundle_path, etc.
"""

from __future__ import annotations

from datetime import timedelta
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve the .env file relative to the project root (two levels above this file),
# so settings load correctly regardless of the working directory at runtime.
_ENV_FILE = Path(__file__).parent.parent.parent / ".env"


class TslSettings(BaseModel):
    """Where the national trust list is published."""

    url: str = Field(
        default="https://eidas.agid.gov.it/TL/TSL-IT.xml",
        description="Trust Service Status List (ETSI TS 119 612) URL",
    )


class StoreSettings(BaseModel):
    """
    Trust-store locations.

    `certs_dir` becomes a symlink to the active generation of individual PEM
    files; `bundle_path` is the concatenated PEM bundle handed to the TLS server
    as its client-certificate trust anchors.
    """

    certs_dir: Path = Field(default=Path("data/tsl/certs"), description="Directory of PEM files")
    bundle_path: Path = Field(default=Path("data/tsl/bundle.pem"), description="PEM bundle file")
    retain_generations: int = Field(
        default=0, ge=0, description="Inactive generations kept after a successful publish"
    )

    @model_validator(mode="after")
    def bundle_outside_certs_dir(self) -> StoreSettings:
        """The bundle must not live inside the per-certificate directory."""
        certs = self.certs_dir.absolute()
        if certs == self.bundle_path.absolute().parent or certs in self.bundle_path.absolute().parents:
            raise ValueError("STORE__BUNDLE_PATH must be outside STORE__CERTS_DIR")
        return self


class SchedulerSettings(BaseModel):
    """
    Timer configuration: an initial delay, then a fixed repeat period.

    Both accept seconds ("90") or ISO-8601 durations ("PT1H").
    """

    initial_delay: timedelta = Field(default=timedelta(seconds=60))
    period: timedelta = Field(default=timedelta(hours=1))

    @field_validator("initial_delay", "period", mode="before")
    @classmethod
    def plain_seconds(cls, value: object) -> object:
        """Environment values arrive as strings; a bare number means seconds."""
        if isinstance(value, str):
            try:
                return float(value)
            except ValueError:
                return value
        return value

    @field_validator("initial_delay")
    @classmethod
    def non_negative_delay(cls, value: timedelta) -> timedelta:
        if value < timedelta(0):
            raise ValueError("Initial delay must not be negative")
        return value

    @field_validator("period")
    @classmethod
    def positive_period(cls, value: timedelta) -> timedelta:
        if value <= timedelta(0):
            raise ValueError("Period must be positive")
        return value


class ClientAuth(Enum):
    NONE = "none"
    OPTIONAL = "optional"
    REQUIRED = "required"


class ServerSettings(BaseModel):
    """HTTPS listener settings used by `tsl-truststore serve`."""

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8443, ge=1, le=65535)
    certfile: Path | None = Field(default=None, description="Server certificate (PEM)")
    keyfile: Path | None = Field(default=None, description="Server private key (PEM)")
    client_auth: ClientAuth = Field(default=ClientAuth.OPTIONAL)

    @model_validator(mode="after")
    def cert_and_key_together(self) -> ServerSettings:
        if (self.certfile is None) != (self.keyfile is None):
            raise ValueError("Set both SERVER__CERTFILE and SERVER__KEYFILE, or neither")
        return self


class AppSettings(BaseSettings):
    """
    Root application settings — aggregates all sub-settings.

    Load order (highest priority first):
      1. Environment variables (Kubernetes ConfigMap)
      2. .env file
      3. Default values
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    tsl: TslSettings = Field(default_factory=lambda: TslSettings())
    store: StoreSettings = Field(default_factory=lambda: StoreSettings())
    scheduler: SchedulerSettings = Field(default_factory=lambda: SchedulerSettings())
    server: ServerSettings = Field(default_factory=lambda: ServerSettings())

    http_timeout_seconds: int = Field(default=60, ge=1)
    log_level: str = Field(default="INFO")
