"""Configuration helpers for Check-in Pulse."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .ledger import DEFAULT_CHANNEL


@dataclass(slots=True)
class Settings:
    """Runtime configuration values loaded from environment variables."""

    database_path: Path
    notifier_url: Optional[str] = None
    notifier_token: Optional[str] = None
    reminder_channel: str = DEFAULT_CHANNEL
    fetch_timeout_seconds: float = 10.0
    sweep_interval_seconds: int = 900
    log_level: str = "INFO"


def _number(name: str, default: str, cast: type) -> float | int:
    raw = os.getenv(name, default)
    try:
        value = cast(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be a number, got {raw!r}") from exc
    if value <= 0:
        raise RuntimeError(f"{name} must be positive, got {raw!r}")
    return value


def load_settings(env_file: str | None = None) -> Settings:
    """Load settings from the environment, optionally from a specific file."""

    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv()

    db_path = Path(os.getenv("DATABASE_PATH", "checkin_pulse.db")).expanduser()

    return Settings(
        database_path=db_path,
        notifier_url=os.getenv("NOTIFIER_URL") or None,
        notifier_token=os.getenv("NOTIFIER_TOKEN") or None,
        reminder_channel=os.getenv("REMINDER_CHANNEL", DEFAULT_CHANNEL),
        fetch_timeout_seconds=float(_number("FETCH_TIMEOUT_SECONDS", "10", float)),
        sweep_interval_seconds=int(_number("SWEEP_INTERVAL_SECONDS", "900", int)),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


__all__ = ["Settings", "load_settings"]
