import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        horizon_months: int,
        default_occurrence_cap: int,
        horizon_cron_hour: int,
        horizon_cron_minute: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.horizon_months = horizon_months
        self.default_occurrence_cap = default_occurrence_cap
        self.horizon_cron_hour = horizon_cron_hour
        self.horizon_cron_minute = horizon_cron_minute


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _parse_cron(value: str) -> tuple[int, int]:
    hour, _, minute = value.partition(":")
    return int(hour), int(minute or "0")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "ledger.db"
    database_url = os.getenv("LEDGER_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("LEDGER_TIMEZONE", "Europe/Berlin")
    horizon_months = int(os.getenv("LEDGER_HORIZON_MONTHS", "12"))
    default_occurrence_cap = int(os.getenv("LEDGER_DEFAULT_OCCURRENCE_CAP", "12"))
    cron_hour, cron_minute = _parse_cron(os.getenv("LEDGER_HORIZON_CRON", "00:00"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        horizon_months=horizon_months,
        default_occurrence_cap=default_occurrence_cap,
        horizon_cron_hour=cron_hour,
        horizon_cron_minute=cron_minute,
    )
