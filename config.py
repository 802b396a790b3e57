import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        csrf_secret: str,
        near_limit_ratio: float,
        default_cash_account: str,
        limit_check_on_request: bool,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.csrf_secret = csrf_secret
        self.near_limit_ratio = near_limit_ratio
        self.default_cash_account = default_cash_account
        self.limit_check_on_request = limit_check_on_request


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("MONEYTRAIL_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "moneytrail.db"
    database_url = os.getenv("MONEYTRAIL_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("MONEYTRAIL_TIMEZONE", "Europe/Berlin")
    csrf_secret = os.getenv(
        "MONEYTRAIL_CSRF_SECRET",
        "4c1f0d9a7e2b58c36a90d4e1f7b2c85d3e6a09f1b4c7d2e5a8f0b3c6d9e2f5a1",
    )
    near_limit_ratio = float(os.getenv("MONEYTRAIL_NEAR_LIMIT_RATIO", "0.8"))
    default_cash_account = os.getenv("MONEYTRAIL_DEFAULT_CASH_ACCOUNT", "Cash")
    return Settings(
        database_url=database_url,
        timezone=timezone,
        csrf_secret=csrf_secret,
        near_limit_ratio=near_limit_ratio,
        default_cash_account=default_cash_account,
        limit_check_on_request=_env_flag("MONEYTRAIL_LIMIT_CHECK_ON_REQUEST", "1"),
    )
