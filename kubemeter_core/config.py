import os
from dataclasses import dataclass
from functools import lru_cache

DEFAULT_CONCURRENCY_LIMIT = 1000
DEFAULT_OWNER_LABEL_KEY = "user.sealos.io/owner"

TRAFFIC_BACKENDS = {"none", "sqlite", "prometheus"}


@dataclass(frozen=True)
class Config:
    env: str
    log_level: str
    prom_url: str | None
    object_storage_instance: str | None
    object_storage_uri: str | None
    concurrent_limit: int
    period_seconds: int
    owner_label_key: str
    backup_claim_name: str
    tenant_prefix: str
    monitor_db_path: str
    traffic_backend: str
    traffic_db_path: str | None
    properties_file: str | None
    gpu_refresh_attempts: int
    gpu_refresh_backoff_seconds: float
    retention_delete_days: int

    @property
    def traffic_enabled(self) -> bool:
        return self.traffic_backend != "none"

    @property
    def object_storage_enabled(self) -> bool:
        return bool(self.object_storage_uri)

    @classmethod
    def from_env(cls) -> "Config":
        env = os.getenv("ENV", "dev")
        log_level = os.getenv("LOG_LEVEL", "INFO").upper()
        prom_url = os.getenv("PROM_URL") or None
        object_storage_instance = os.getenv("OBJECT_STORAGE_INSTANCE") or None
        object_storage_uri = os.getenv("OBJECT_STORAGE_URI") or None
        concurrent_limit = _parse_int(
            "CONCURRENT_LIMIT", os.getenv("CONCURRENT_LIMIT"), DEFAULT_CONCURRENCY_LIMIT
        )
        if concurrent_limit <= 0:
            raise ValueError("CONCURRENT_LIMIT must be positive")
        period_seconds = _parse_int(
            "METER_PERIOD_SECONDS", os.getenv("METER_PERIOD_SECONDS"), 60
        )
        if period_seconds <= 0:
            raise ValueError("METER_PERIOD_SECONDS must be positive")
        owner_label_key = os.getenv("OWNER_LABEL_KEY", DEFAULT_OWNER_LABEL_KEY).strip()
        backup_claim_name = os.getenv("BACKUP_CLAIM_NAME", "kb-backup-data").strip()
        tenant_prefix = os.getenv("TENANT_PREFIX", "ns-")
        monitor_db_path = os.getenv("MONITOR_DB_PATH", "./kubemeter_data/monitor.db")

        traffic_backend = os.getenv("TRAFFIC_BACKEND", "none").strip().lower()
        if traffic_backend not in TRAFFIC_BACKENDS:
            allowed = ", ".join(sorted(TRAFFIC_BACKENDS))
            raise ValueError(f"TRAFFIC_BACKEND must be one of: {allowed}")
        traffic_db_path = os.getenv("TRAFFIC_DB_PATH") or None
        if traffic_backend == "prometheus" and not prom_url:
            raise ValueError("PROM_URL is required when TRAFFIC_BACKEND=prometheus")
        if object_storage_uri and not prom_url:
            raise ValueError("PROM_URL is required when OBJECT_STORAGE_URI is set")

        properties_file = os.getenv("PROPERTIES_FILE") or None
        gpu_refresh_attempts = _parse_int(
            "GPU_REFRESH_ATTEMPTS", os.getenv("GPU_REFRESH_ATTEMPTS"), 2
        )
        gpu_refresh_backoff_seconds = _parse_float(
            "GPU_REFRESH_BACKOFF_SECONDS",
            os.getenv("GPU_REFRESH_BACKOFF_SECONDS", "1.0"),
        )
        retention_delete_days = _parse_int(
            "RETENTION_DELETE_DAYS", os.getenv("RETENTION_DELETE_DAYS"), 30
        )

        return cls(
            env=env,
            log_level=log_level,
            prom_url=prom_url,
            object_storage_instance=object_storage_instance,
            object_storage_uri=object_storage_uri,
            concurrent_limit=concurrent_limit,
            period_seconds=period_seconds,
            owner_label_key=owner_label_key,
            backup_claim_name=backup_claim_name,
            tenant_prefix=tenant_prefix,
            monitor_db_path=monitor_db_path,
            traffic_backend=traffic_backend,
            traffic_db_path=traffic_db_path,
            properties_file=properties_file,
            gpu_refresh_attempts=gpu_refresh_attempts,
            gpu_refresh_backoff_seconds=gpu_refresh_backoff_seconds,
            retention_delete_days=retention_delete_days,
        )


def _parse_int(name: str, value: str | None, default: int) -> int:
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc


def _parse_float(name: str, value: str) -> float:
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number") from exc


@lru_cache(maxsize=1)
def get_config() -> Config:
    return Config.from_env()
