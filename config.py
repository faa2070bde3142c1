import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        secret_key: str,
        token_max_age_days: int,
        summary_limit: int,
        page_size: int,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.secret_key = secret_key
        self.token_max_age_days = token_max_age_days
        self.summary_limit = summary_limit
        self.page_size = page_size
        self.log_level = log_level

    @property
    def token_max_age_secs(self) -> int:
        return self.token_max_age_days * 24 * 3600


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("BUDGET_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("BUDGET_DATABASE_URL")
    if not database_url:
        database_url = f"sqlite:///{_ensure_data_dir() / 'budget.db'}"
    secret_key = os.getenv(
        "BUDGET_SECRET_KEY",
        "3f9c1d0e8a7b4c2d9e6f5a4b3c2d1e0f9a8b7c6d5e4f3a2b1c0d9e8f7a6b5c4d",
    )
    token_max_age_days = int(os.getenv("BUDGET_TOKEN_MAX_AGE_DAYS", "30"))
    summary_limit = int(os.getenv("BUDGET_SUMMARY_LIMIT", "30"))
    page_size = int(os.getenv("BUDGET_PAGE_SIZE", "20"))
    log_level = os.getenv("BUDGET_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        secret_key=secret_key,
        token_max_age_days=token_max_age_days,
        summary_limit=summary_limit,
        page_size=page_size,
        log_level=log_level,
    )
