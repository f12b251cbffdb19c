"""
Application configuration via Pydantic Settings.
All values can be overridden by environment variables or a .env file.
"""
from __future__ import annotations

import re
from typing import List

from pydantic import field_validator
from pydantic_settings import (
    BaseSettings,
    DotEnvSettingsSource,
    EnvSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)


class _CommaFallbackMixin:
    """Return the raw string when JSON parsing fails.

    pydantic-settings ≥2.7 calls json.loads() on complex-typed fields
    (e.g. List[str]) before field_validators run.  A plain comma-separated
    value like ``example.com,example.org`` is not valid JSON and raises
    SettingsError before the list validators can handle it.  This mixin
    catches that ValueError and returns the raw string so the
    field_validator receives it and can split on commas as intended.
    """

    def prepare_field_value(self, field_name, field, value, value_is_complex):  # type: ignore[override]
        try:
            return super().prepare_field_value(field_name, field, value, value_is_complex)  # type: ignore[misc]
        except ValueError:
            return value


class _CSVEnvSource(_CommaFallbackMixin, EnvSettingsSource):
    pass


class _CSVDotEnvSource(_CommaFallbackMixin, DotEnvSettingsSource):
    pass


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Domain enumeration ─────────────────────────────────────────────────
    MANAGED_DOMAINS: List[str] = []          # empty → ask the certificate tool
    DOMAIN_LIST_COMMAND: str = "certbot certificates"

    # ── Certificate material ───────────────────────────────────────────────
    CERT_LIVE_PATH: str = "/etc/letsencrypt/live"
    SERVING_PATH: str = "/etc/ssl/serving"

    # ── Zones ──────────────────────────────────────────────────────────────
    ZONE_FILE_PATTERN: str = "/etc/bind/zones/db.{domain}"
    TLSA_PORTS: List[int] = [443]

    # ── External triggers ({domain} is substituted) ────────────────────────
    SIGN_COMMAND: str = "zonesigner {domain}"
    DNS_RELOAD_COMMAND: str = "rndc reload"
    WEB_RELOAD_COMMAND: str = "systemctl reload nginx"
    COMMAND_TIMEOUT: int = 300

    # ── Locking ────────────────────────────────────────────────────────────
    LOCK_DIR: str = "/run/dane-rollover"
    RUN_LOCK_PATH: str = "/run/dane-rollover.lock"

    # ── Scheduling ─────────────────────────────────────────────────────────
    SCHEDULE_MINUTE: str = ":05"             # hourly, at this minute

    # ── Logging ────────────────────────────────────────────────────────────
    LOG_SYSLOG: bool = False
    SYSLOG_ADDRESS: str = "/dev/log"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # carry over a per-instance _env_file override
        dotenv_file = getattr(dotenv_settings, "env_file", None)
        dotenv_encoding = getattr(dotenv_settings, "env_file_encoding", None)
        return (
            init_settings,
            _CSVEnvSource(settings_cls),
            _CSVDotEnvSource(settings_cls, env_file=dotenv_file, env_file_encoding=dotenv_encoding),
            file_secret_settings,
        )

    @field_validator("MANAGED_DOMAINS", mode="before")
    @classmethod
    def parse_domains(cls, v: object) -> List[str]:
        """Accept comma-separated string or list."""
        if isinstance(v, str):
            return [d.strip().lower() for d in v.split(",") if d.strip()]
        return v  # type: ignore[return-value]

    @field_validator("TLSA_PORTS", mode="before")
    @classmethod
    def parse_ports(cls, v: object) -> object:
        """Accept comma-separated string, a single int, or list."""
        if isinstance(v, int):
            return [v]
        if isinstance(v, str):
            return [p.strip() for p in v.split(",") if p.strip()]
        return v

    @field_validator("TLSA_PORTS")
    @classmethod
    def validate_ports(cls, v: List[int]) -> List[int]:
        if not v:
            raise ValueError("TLSA_PORTS must name at least one port")
        for port in v:
            if not 1 <= port <= 65535:
                raise ValueError(f"TLSA_PORTS entry out of range: {port}")
        return v

    @field_validator("ZONE_FILE_PATTERN")
    @classmethod
    def validate_zone_pattern(cls, v: str) -> str:
        if "{domain}" not in v:
            raise ValueError("ZONE_FILE_PATTERN must contain '{domain}'")
        return v

    @field_validator("SCHEDULE_MINUTE")
    @classmethod
    def validate_schedule_minute(cls, v: str) -> str:
        if not re.fullmatch(r":[0-5][0-9]", v):
            raise ValueError("SCHEDULE_MINUTE must look like ':MM'")
        return v

    def zone_file(self, domain: str) -> str:
        return self.ZONE_FILE_PATTERN.replace("{domain}", domain)


# Module-level singleton, import and use everywhere.
settings = Settings()
