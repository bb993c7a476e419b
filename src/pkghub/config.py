"""Hub configuration via environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings

from pkghub.redis.client import RedisConfig


def _split_csv(value: str) -> list[str]:
    return [x.strip() for x in value.split(",") if x.strip()]


class HubConfig(BaseSettings):
    """All configuration loaded from PKGHUB_* env vars or .env file."""

    # Backends
    storage_backend: str = "memory"  # memory | filesystem
    storage_root: str = "data/objects"
    queue_backend: str = "memory"  # memory | redis
    lease_backend: str = "memory"  # memory | redis
    ledger_url: str = ""  # e.g. sqlite+aiosqlite:///data/ledger.db; empty = in-memory

    # Redis
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: str | None = None
    redis_db_leases: int = 0
    redis_db_queue: int = 1
    redis_max_connections: int = 20
    redis_key_prefix: str = "pkghub"
    queue_name: str = "ingestion"
    queue_visibility_timeout: float = 900.0

    # Orchestration
    max_concurrency: int = 10
    max_retries: int = 5
    retry_base_delay: float = 1.0
    retry_max_delay: float = 60.0
    execution_timeout: float = 300.0
    lease_ttl_seconds: float = 600.0

    # Catalog builder
    rebuild_attempts: int = 5
    rebuild_backoff_min: float = 1.0
    rebuild_backoff_max: float = 30.0
    rebuild_interval_minutes: float = 60.0

    # Inventory + lifecycle
    inventory_interval_minutes: float = 15.0
    lifecycle_interval_hours: float = 24.0
    noncurrent_retention_days: int = 90
    catalog_retention_days: int = 7

    # Policies
    allowed_licenses: str = ""  # empty = Apache/BSD/MIT families, "*" = any
    egress_allowlist: str = ""  # hosts artifacts may be fetched from
    artifact_roots: str = ""  # local directories file:// artifacts may be read from
    deny_list_file: str = ""
    deny_list_reload_minutes: float = 5.0

    model_config = {
        "env_prefix": "PKGHUB_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def egress_hosts(self) -> list[str]:
        return _split_csv(self.egress_allowlist)

    @property
    def artifact_root_paths(self) -> list[str]:
        return _split_csv(self.artifact_roots)

    @property
    def license_ids(self) -> list[str] | None:
        """None means the default license families."""
        if not self.allowed_licenses:
            return None
        return _split_csv(self.allowed_licenses)

    def redis_config(self) -> RedisConfig:
        return RedisConfig(
            host=self.redis_host,
            port=self.redis_port,
            password=self.redis_password,
            db_leases=self.redis_db_leases,
            db_queue=self.redis_db_queue,
            max_connections=self.redis_max_connections,
            key_prefix=self.redis_key_prefix,
        )
