"""
Utility helpers for the Career Path Router.

Provides:
- Structured logging configuration with timestamps.
- Wall-clock timing of pipeline steps.
- Retry with exponential back-off.
- Stable route identifiers and month arithmetic.
"""

import contextlib
import hashlib
import logging
import time
from datetime import datetime
from typing import Any, Callable, Generator, Optional, Sequence, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def setup_logging(
    level: int = logging.INFO,
    fmt: str = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt: str = "%Y-%m-%dT%H:%M:%S%z",
) -> None:
    """Configure the root logger with timestamped structured output."""
    logging.basicConfig(level=level, format=fmt, datefmt=datefmt, force=True)


@contextlib.contextmanager
def timed(label: str) -> Generator[None, None, None]:
    """Context manager that logs elapsed wall-clock time for *label*."""
    t0 = time.monotonic()
    yield
    elapsed = time.monotonic() - t0
    logger.debug("%s completed in %.4fs.", label, elapsed)


# ---------------------------------------------------------------------------
# Retry with exponential back-off
# ---------------------------------------------------------------------------


def retry_with_backoff(
    fn: Callable[..., T],
    *args: Any,
    max_retries: int = 3,
    base_delay: float = 0.5,
    logger: Optional[logging.Logger] = None,
    **kwargs: Any,
) -> T:
    """Call *fn* with retry and exponential back-off on exception."""
    if logger is None:
        logger = logging.getLogger(__name__)

    last_exc: BaseException = RuntimeError("unreachable")
    for attempt in range(1, max_retries + 1):
        try:
            return fn(*args, **kwargs)
        except Exception as exc:
            last_exc = exc
            if attempt == max_retries:
                break
            delay = base_delay * (2 ** (attempt - 1))
            logger.warning(
                "Attempt %d/%d failed for %s: %s, retrying in %.1fs",
                attempt,
                max_retries,
                getattr(fn, "__name__", repr(fn)),
                exc,
                delay,
            )
            time.sleep(delay)

    raise last_exc


# ---------------------------------------------------------------------------
# Identifiers & time
# ---------------------------------------------------------------------------


def route_id_for(career_id: str, nodes: Sequence[str]) -> str:
    """Deterministic route id: same career + node sequence → same id."""
    payload = career_id + "\x1f" + "\x1f".join(nodes)
    digest = hashlib.sha1(payload.encode("utf-8")).hexdigest()[:12]
    return f"route-{digest}"


def months_between(start: datetime, end: datetime, days_per_month: float) -> float:
    """Elapsed months between two timestamps, never negative."""
    seconds = (end - start).total_seconds()
    return max(0.0, seconds / 86_400.0 / days_per_month)
