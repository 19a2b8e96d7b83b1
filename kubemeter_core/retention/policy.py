from __future__ import annotations

from dataclasses import dataclass

from kubemeter_core.config import Config
from kubemeter_core.logging import get_logger
from kubemeter_core.stores.interfaces import MonitorStore

logger = get_logger(__name__)

DEFAULT_DELETE_AFTER_DAYS = 30


@dataclass(frozen=True)
class RetentionPolicy:
    delete_after_days: int = DEFAULT_DELETE_AFTER_DAYS

    def __post_init__(self) -> None:
        if self.delete_after_days < 0:
            raise ValueError("delete_after_days must not be negative")

    @property
    def enabled(self) -> bool:
        return self.delete_after_days > 0

    @classmethod
    def from_config(cls, config: Config) -> "RetentionPolicy":
        return cls(delete_after_days=config.retention_delete_days)


@dataclass(frozen=True)
class RetentionPass:
    store: MonitorStore
    policy: RetentionPolicy

    def run(self) -> int:
        if not self.policy.enabled:
            return 0
        deleted = self.store.delete_samples_older_than(self.policy.delete_after_days)
        logger.info(
            "Expired usage samples deleted",
            extra={
                "retention_days": self.policy.delete_after_days,
                "deleted": deleted,
            },
        )
        return deleted
