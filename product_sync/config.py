from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Runtime configuration for the product import service."""

    source_base_url: str = "https://challenges.coode.sh/food/data/json"
    manifest_name: str = "index.txt"
    shard_record_limit: Optional[int] = 100
    fetch_timeout_seconds: float = 30.0
    fetch_retry_attempts: int = 3
    fetch_retry_backoff: float = 1.0
    fetch_retry_max_wait: float = 10.0
    shard_concurrency: int = 1
    bulk_upsert: bool = True
    store_backend: str = "memory"  # options: memory, sqlite
    store_path: str = "data/products.db"
    import_cron: str = "0 0 * * *"
    scheduler_enabled: bool = True
    scheduler_timezone: str = "UTC"
    log_level: str = "INFO"


settings = Settings()
