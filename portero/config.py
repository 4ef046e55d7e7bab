"""Application configuration using Pydantic BaseSettings."""

import json
from functools import lru_cache
from typing import Annotated, List

from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .allowlist import AllowList, parse_entry


class Settings(BaseSettings):
    """Runtime settings loaded from env/.env with validation."""

    # ── Core ─────────────────────────────────────
    app_name: str = "Portero"
    app_environment: str = "local"
    listen_host: str = "0.0.0.0"
    listen_port: int = Field(
        3000,
        validation_alias=AliasChoices("PORTERO_LISTEN_PORT", "PORT"),
    )

    model_config = SettingsConfigDict(
        env_prefix="PORTERO_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # ── IP allow-list ─────────────────────────────────────────────────────────
    ip_whitelist_enabled: bool = True

    # Literal addresses or CIDR ranges, e.g. "45.232.149.130" or "10.214.0.0/16"
    ip_whitelist: Annotated[List[str], NoDecode] = [
        "45.232.149.130",
        "168.194.102.140",
        "10.214.148.122",
    ]

    # Number of reverse-proxy hops whose forwarding header is trusted.
    # 0 ignores the header and uses the TCP peer address.
    trusted_hop_count: int = 1
    forwarded_header: str = "x-forwarded-for"

    # Treat ::ffff:a.b.c.d as a.b.c.d when resolving the client address
    unwrap_ipv4_mapped: bool = False

    rejection_message: str = (
        "Acceso prohibido: Su dirección IP ({ip}) no está autorizada."
    )

    # ── CORS (applied only to requests that passed the allow-list) ────────────
    cors_enabled: bool = True
    cors_allow_origins: Annotated[List[str], NoDecode] = ["*"]

    # Logging level
    log_level: str = "INFO"

    # Reduce noisy logs from random scanners
    suppress_access_logs: bool = False
    suppress_404_logs: bool = True
    suppress_invalid_http_warnings: bool = True

    @property
    def allow_list(self) -> AllowList:
        """Build the immutable allow-list from ``ip_whitelist``."""
        return AllowList.from_strings(self.ip_whitelist)

    # ── Validators ────────────────────────────────────────────────────────────
    @field_validator("log_level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        level = (value or "").strip().upper()
        valid = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG", "NOTSET"}
        return level if level in valid else "INFO"

    @field_validator("trusted_hop_count")
    @classmethod
    def _validate_hops(cls, value: int) -> int:
        if value < 0:
            raise ValueError("trusted_hop_count must be >= 0")
        return value

    @field_validator("forwarded_header")
    @classmethod
    def _normalize_header(cls, value: str) -> str:
        header = (value or "").strip().lower()
        if not header:
            raise ValueError("must be set and non-empty")
        return header

    @field_validator("rejection_message")
    @classmethod
    def _has_ip_placeholder(cls, value: str) -> str:
        if "{ip}" not in (value or ""):
            raise ValueError("must contain the '{ip}' placeholder")
        return value

    @field_validator(
        "ip_whitelist",
        "cors_allow_origins",
        mode="before")
    @classmethod
    def _parse_list(cls, value):
        if value is None or isinstance(value, list):
            return value
        if isinstance(value, str):
            text = value.strip()
            if text.startswith("[") and text.endswith("]"):
                try:
                    parsed = json.loads(text)
                    if isinstance(parsed, list):
                        return [str(x).strip() for x in parsed]
                except json.JSONDecodeError:
                    pass
            return [part.strip() for part in text.split(",") if part.strip()]
        return value

    @field_validator("ip_whitelist")
    @classmethod
    def _validate_entries(cls, values: List[str]) -> List[str]:
        # raises InvalidAllowListEntry (a ValueError) on the first bad entry
        return [str(parse_entry(v)) for v in values]

    @model_validator(mode="after")
    def _validate_allow_list(self):
        """An enabled allow-list with no entries would reject every request."""
        if self.ip_whitelist_enabled and not self.ip_whitelist:
            raise ValueError(
                "IP allow-list is enabled but empty! Either:\n"
                "  • set PORTERO_IP_WHITELIST (addresses or CIDR ranges), or\n"
                "  • set PORTERO_IP_WHITELIST_ENABLED=false to disable gating."
            )
        return self


# Cached settings instance
@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance (validates env on first call)."""
    return Settings()
