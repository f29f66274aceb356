"""Configuration management for the affiliate ledger."""

from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from functools import lru_cache
from uuid import UUID

from dotenv import load_dotenv

PERIOD_TYPES = ("monthly", "weekly")


@dataclass(frozen=True)
class Settings:
    """Application settings loaded from environment."""

    database_url: str
    commission_rate: Decimal
    default_period_type: str
    admin_user_ids: frozenset[UUID]
    host: str
    port: int
    debug: bool
    log_level: str

    def __post_init__(self) -> None:
        """Validate configuration."""
        if not Decimal("0") <= self.commission_rate <= Decimal("1"):
            raise ValueError("COMMISSION_RATE must be between 0 and 1")
        if self.default_period_type not in PERIOD_TYPES:
            raise ValueError(f"DEFAULT_PERIOD_TYPE must be one of {PERIOD_TYPES}")

    @property
    def HOST(self) -> str:
        """Alias for host."""
        return self.host

    @property
    def PORT(self) -> int:
        """Alias for port."""
        return self.port

    @property
    def DEBUG(self) -> bool:
        """Alias for debug."""
        return self.debug

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment variables."""
        load_dotenv()

        raw_rate = os.getenv("COMMISSION_RATE", "0.10")
        try:
            commission_rate = Decimal(raw_rate)
        except InvalidOperation as exc:
            raise ValueError(f"COMMISSION_RATE is not a number: {raw_rate!r}") from exc

        return cls(
            database_url=os.getenv("DATABASE_URL", "sqlite:///./affiliate_ledger.db"),
            commission_rate=commission_rate,
            default_period_type=os.getenv("DEFAULT_PERIOD_TYPE", "monthly").lower(),
            admin_user_ids=_parse_admin_ids(os.getenv("ADMIN_USER_IDS", "")),
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "8000")),
            debug=os.getenv("DEBUG", "false").lower() == "true",
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


def _parse_admin_ids(raw: str) -> frozenset[UUID]:
    ids = set()
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            ids.add(UUID(part))
        except ValueError as exc:
            raise ValueError(f"ADMIN_USER_IDS contains an invalid UUID: {part!r}") from exc
    return frozenset(ids)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings.from_env()
