"""Error classification helpers."""

from __future__ import annotations

import errno
import http.client
import socket
import subprocess
import urllib.error

from shipwright.errors.permanent import PermanentError
from shipwright.errors.transient import TransientError

_TRANSIENT_STDLIB_TYPES = (
    ConnectionError,
    TimeoutError,
    socket.timeout,
    socket.gaierror,
    http.client.RemoteDisconnected,
    urllib.error.URLError,
    subprocess.TimeoutExpired,
)

_TRANSIENT_ERRNO_VALUES = frozenset(
    {
        errno.ECONNREFUSED,
        errno.ECONNRESET,
        errno.ECONNABORTED,
        errno.ETIMEDOUT,
        errno.EHOSTUNREACH,
        errno.ENETUNREACH,
    }
)

_PERMANENT_NAME_PATTERNS = (
    "validation",
    "authentication",
    "authorization",
    "unauthorized",
    "forbidden",
    "notfound",
    "invalid",
)

_TRANSIENT_NAME_PATTERNS = (
    "timeout",
    "connection",
    "temporary",
    "unavailable",
    "retry",
    "throttl",
    "ratelimit",
)


def is_transient(error: BaseException) -> bool:
    """Check if an error is transient and worth another attempt.

    Permanent classification wins over transient whenever both match, so a
    ``ConnectionValidationError`` is never retried. Wrapped errors are
    classified through their ``__cause__`` chain.

    Args:
        error: The exception to check

    Returns:
        True if the error is transient
    """
    if isinstance(error, TransientError):
        return True

    if isinstance(error, PermanentError):
        return False

    if isinstance(error, urllib.error.HTTPError):
        return error.code >= 500 or error.code == 429

    if isinstance(error, _TRANSIENT_STDLIB_TYPES):
        return True

    if isinstance(error, OSError) and error.errno in _TRANSIENT_ERRNO_VALUES:
        return True

    error_name = type(error).__name__.lower()
    if any(pattern in error_name for pattern in _PERMANENT_NAME_PATTERNS):
        return False
    if any(pattern in error_name for pattern in _TRANSIENT_NAME_PATTERNS):
        return True

    cause = error.__cause__
    if cause is not None and cause is not error:
        return is_transient(cause)

    return False


def is_permanent(error: BaseException) -> bool:
    """Check if an error is permanent and must not be retried.

    Args:
        error: The exception to check

    Returns:
        True if the error is permanent
    """
    if isinstance(error, PermanentError):
        return True

    if isinstance(error, TransientError):
        return False

    if isinstance(error, (ValueError, TypeError, AttributeError, KeyError, IndexError)):
        return True

    error_name = type(error).__name__.lower()
    if any(pattern in error_name for pattern in _PERMANENT_NAME_PATTERNS):
        return True
    if any(pattern in error_name for pattern in _TRANSIENT_NAME_PATTERNS):
        return False

    cause = error.__cause__
    if cause is not None and cause is not error:
        return is_permanent(cause)

    return False


def truncate_error(message: str, max_chars: int = 4000) -> str:
    """Truncate a detail string kept in run history.

    Args:
        message: The error message to truncate
        max_chars: Maximum length including the marker

    Returns:
        The original message if short enough, else a truncated copy ending
        with ``[TRUNCATED]``.
    """
    if not message or len(message) <= max_chars:
        return message

    marker = " [TRUNCATED]"
    if max_chars <= len(marker):
        return marker.strip()
    return message[: max_chars - len(marker)] + marker
