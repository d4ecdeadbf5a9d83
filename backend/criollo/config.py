"""
Environment-driven settings for the floor service.

Every value can be overridden with an environment variable; defaults are
suitable for local development with the in-memory storage backend.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional, Tuple


DEFAULT_TABLES = "1:2,2:2,3:4,4:4,5:4,6:6,7:8:terraza,8:10:salon"


@dataclass(frozen=True)
class TableLayout:
    """One entry of the bootstrap floor layout."""
    number: int
    capacity: int
    location: Optional[str] = None


@dataclass(frozen=True)
class Settings:
    storage_backend: str = "inmemory"
    database_url: str = "sqlite:///criollo.db"
    use_alembic: bool = False
    restaurant_timezone: str = "America/Santo_Domingo"
    no_show_tolerance_minutes: int = 15
    default_reservation_minutes: int = 120
    reservation_hold_minutes: int = 30
    reservation_reminder_minutes: int = 60
    notification_max_attempts: int = 3
    log_level: str = "INFO"
    tables: Tuple[TableLayout, ...] = field(default_factory=tuple)


def parse_table_layout(raw: str) -> List[TableLayout]:
    """
    Parse a layout string like "1:2,2:4,7:8:terraza".

    Each comma-separated entry is number:capacity with an optional location.
    Blank entries are skipped.
    """
    layout = []
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        parts = entry.split(":")
        if len(parts) < 2:
            raise ValueError(f"Invalid table layout entry '{entry}' (expected number:capacity)")
        number, capacity = int(parts[0]), int(parts[1])
        location = parts[2].strip() if len(parts) > 2 and parts[2].strip() else None
        layout.append(TableLayout(number=number, capacity=capacity, location=location))
    return layout


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


def load_settings() -> Settings:
    """Build Settings from the current environment."""
    return Settings(
        storage_backend=os.getenv("STORAGE_BACKEND", "inmemory").lower(),
        database_url=os.getenv("APP_DATABASE_URL", "sqlite:///criollo.db"),
        use_alembic=_env_bool("USE_ALEMBIC"),
        restaurant_timezone=os.getenv("RESTAURANT_TIMEZONE", "America/Santo_Domingo"),
        no_show_tolerance_minutes=int(os.getenv("NO_SHOW_TOLERANCE_MINUTES", "15")),
        default_reservation_minutes=int(os.getenv("DEFAULT_RESERVATION_MINUTES", "120")),
        reservation_hold_minutes=int(os.getenv("RESERVATION_HOLD_MINUTES", "30")),
        reservation_reminder_minutes=int(os.getenv("RESERVATION_REMINDER_MINUTES", "60")),
        notification_max_attempts=int(os.getenv("NOTIFICATION_MAX_ATTEMPTS", "3")),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        tables=tuple(parse_table_layout(os.getenv("FLOOR_TABLES", DEFAULT_TABLES))),
    )


def configure_logging(level: str = "INFO") -> None:
    """Set up root logging the same way for the API and scripts."""
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
