import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        horizon_month: int,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.horizon_month = horizon_month
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FATURAS_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "faturas.db"
    database_url = os.getenv("FATURAS_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FATURAS_TIMEZONE", "America/Sao_Paulo")
    horizon_month = int(os.getenv("FATURAS_HORIZON_MONTH", "12"))
    if not 1 <= horizon_month <= 12:
        raise ValueError("FATURAS_HORIZON_MONTH must be between 1 and 12")
    log_level = os.getenv("FATURAS_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        horizon_month=horizon_month,
        log_level=log_level,
    )
