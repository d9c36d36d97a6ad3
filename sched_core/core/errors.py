"""
Error taxonomy shared by the notification, webhook and reconciliation workers

Every failure an item can hit is reduced to one of two retry classes:
permanent (terminal, no retry) or transient (retry with backoff up to the
ceiling). Ambiguous drift and signature failures are handled by their own
components and never retried.
"""
import asyncio
from typing import Optional

import httpx

PERMANENT = "permanent"
TRANSIENT = "transient"


class CoreError(Exception):
    """Base class for coordination-core errors"""

    def __init__(self, message: str = "", *, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code


class PermanentError(CoreError):
    """Auth failure, malformed payload, invalid recipient or target"""


class TransientError(CoreError):
    """Timeout, rate limit or 5xx from a remote service"""

    def __init__(self, message: str = "", *, code: Optional[str] = None, retry_after: Optional[float] = None):
        super().__init__(message, code=code)
        self.retry_after = retry_after


class ClaimExpiredError(TransientError):
    """A claimed item outlived CLAIM_STALE_SECONDS; its worker died or was cut off"""

    def __init__(self, message: str = "claim expired before processing finished"):
        super().__init__(message, code="CLAIM_EXPIRED")


class AmbiguousDriftError(CoreError):
    """Drift that cannot be repaired without human judgment"""


def classify_status_code(status_code: int) -> str:
    if status_code == 429 or status_code >= 500:
        return TRANSIENT
    if 400 <= status_code < 500:
        return PERMANENT
    return TRANSIENT


def classify_error(exc: BaseException) -> str:
    """
    Map an exception to a retry class

    Args:
        exc: Exception raised while processing one item

    Returns:
        'permanent' or 'transient'
    """
    if isinstance(exc, PermanentError):
        return PERMANENT
    if isinstance(exc, TransientError):
        return TRANSIENT
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return TRANSIENT
    if isinstance(exc, httpx.HTTPStatusError):
        return classify_status_code(exc.response.status_code)
    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError)):
        return TRANSIENT
    if isinstance(exc, (ValueError, KeyError, TypeError)):
        # Bad payload data will not fix itself on retry
        return PERMANENT

    # Unknown failures retry up to the ceiling, then fail
    return TRANSIENT


def describe_error(exc: BaseException) -> str:
    message = str(exc) or type(exc).__name__
    return f"{type(exc).__name__}: {message}"[:1000]
