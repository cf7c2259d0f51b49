import logging
import time
from functools import wraps

from django.conf import settings
from django.db import OperationalError

logger = logging.getLogger(__name__)

# PostgreSQL: serialization failure / deadlock
PG_RETRY_ERRCODES = {"40001", "40P01"}


def _pgcode_from(exc: Exception):
    return getattr(exc, "pgcode", None) or getattr(getattr(exc, "__cause__", None), "pgcode", None)


def is_retryable(exc: Exception) -> bool:
    code = _pgcode_from(exc)
    if code and code in PG_RETRY_ERRCODES:
        return True
    msg = str(exc).lower()
    return any(k in msg for k in ("deadlock detected", "could not serialize access", "database is locked"))


def retry_on_tx_failure(max_attempts=None, backoff=0.05):
    """Re-run a whole transaction on serialization/deadlock errors.

    Only wrap functions that open their own ``transaction.atomic`` block, so
    every attempt starts from a clean read.
    """
    def deco(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            attempts = max_attempts or settings.ORDERS_TX_MAX_ATTEMPTS
            attempt = 0
            while True:
                attempt += 1
                try:
                    return fn(*args, **kwargs)
                except OperationalError as e:
                    if attempt >= attempts or not is_retryable(e):
                        raise
                    logger.warning("[retry] %s failed (%d/%d): %s", fn.__name__, attempt, attempts, e)
                    time.sleep(backoff * attempt)
        return wrapper
    return deco
