"""
Thread-safe rate-limited logging.

Notification and re-fetch failures tend to repeat for every action against a
flaky collaborator; this keeps them visible without flooding the log.
"""
import logging
import threading
from typing import Optional

from cachetools import TTLCache

logger = logging.getLogger(__name__)

# At most one line per distinct message per TTL window
_log_cache = TTLCache(maxsize=256, ttl=60)
_log_cache_lock = threading.RLock()


def rate_limited_log(
    message: str,
    level: str = "warning",
    logger_instance: Optional[logging.Logger] = None,
) -> bool:
    """
    Log a message unless the same message was logged recently.

    Args:
        message: Message to log
        level: Log level (debug, info, warning, error, critical)
        logger_instance: Logger to use (defaults to module logger)

    Returns:
        True if the message was emitted, False if it was suppressed
    """
    log_instance = logger_instance or logger
    log_method = getattr(log_instance, level.lower(), log_instance.warning)
    key = f"{log_instance.name}:{level}:{message}"

    with _log_cache_lock:
        if key in _log_cache:
            return False
        _log_cache[key] = True

    log_method(message)
    return True


def reset_rate_limits() -> None:
    """Forget every recently logged message."""
    with _log_cache_lock:
        _log_cache.clear()
