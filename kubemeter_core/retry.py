from __future__ import annotations

import time
from typing import Callable, TypeVar

from kubemeter_core.logging import get_logger

logger = get_logger(__name__)

_T = TypeVar("_T")


def retry(
    attempts: int,
    backoff_s: float,
    fn: Callable[[], _T],
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> _T:
    """Call ``fn`` up to ``attempts`` times with a fixed pause between calls.

    The last exception is re-raised once attempts are exhausted.
    """
    total = max(1, attempts)
    for attempt in range(1, total + 1):
        try:
            return fn()
        except Exception as exc:
            if attempt >= total:
                raise
            logger.warning(
                "Retrying after failure",
                extra={"attempt_count": attempt, "error_message": str(exc)},
            )
            sleep(backoff_s)
    raise AssertionError("unreachable")  # pragma: no cover
