"""
Exception logging helpers for upstream and internal call failures.
"""

import logging
from typing import Optional

import httpx


def _safe_str(obj) -> str:
    """
    Convert an object to a string without letting a broken ``__str__`` escape.

    Falls back to ``repr`` and finally to the type name.
    """
    try:
        return str(obj)
    except Exception:
        try:
            return repr(obj)
        except Exception:
            return f"<{type(obj).__name__} object (string conversion failed)>"


def describe_upstream_error(exception: BaseException) -> str:
    """
    Short classification of an httpx failure, safe to put on a span attribute.

    Returns one of ``timeout``, ``connection_failed``, ``protocol_error``,
    ``request_error`` or ``unexpected``.
    """
    if isinstance(exception, httpx.TimeoutException):
        return "timeout"
    if isinstance(exception, httpx.ConnectError):
        return "connection_failed"
    if isinstance(exception, (httpx.RemoteProtocolError, httpx.LocalProtocolError)):
        return "protocol_error"
    if isinstance(exception, httpx.RequestError):
        return "request_error"
    return "unexpected"


def log_exception_with_details(
    logger: logging.Logger,
    prefix: str,
    exception: BaseException,
    target: Optional[str] = None,
    level: int = logging.ERROR,
) -> None:
    """
    Log an exception raised while talking to the backend or a sibling route.

    The upstream target is included when known. Sub-exceptions of exception
    groups are logged individually. Logging failures never propagate.

    Args:
        logger: The logger instance to use
        prefix: Prefix for the log message (e.g. "[Proxy]", "[Bootstrap]")
        exception: The exception to log
        target: Upstream URL or internal path that was being called
        level: The logging level to use (default: ERROR)
    """
    try:
        where = f" ({target})" if target else ""
        kind = describe_upstream_error(exception)
        try:
            sub_exceptions = list(getattr(exception, "exceptions", None) or [])
        except Exception:
            sub_exceptions = []
        if sub_exceptions:
            logger.log(
                level,
                f"{prefix} {kind}{where} with {len(sub_exceptions)} sub-exceptions: "
                f"{_safe_str(exception)}",
            )
            for i, sub_exc in enumerate(sub_exceptions):
                logger.log(
                    level,
                    f"{prefix} Sub-exception {i + 1}: {type(sub_exc).__name__}: "
                    f"{_safe_str(sub_exc)}",
                    exc_info=sub_exc,
                )
            return
        # Timeouts and refused connections are expected operational noise; skip the traceback
        exc_info = exception if kind == "unexpected" else False
        logger.log(
            level,
            f"{prefix} {kind}{where}: {type(exception).__name__}: {_safe_str(exception)}",
            exc_info=exc_info,
        )
    except Exception:
        try:
            logger.log(logging.ERROR, f"{prefix} Exception logging failed")
        except Exception:
            pass
