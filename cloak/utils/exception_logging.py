"""
Helpers for logging and reporting proxy failures.

Both functions must never raise: they run inside error handlers, where a
second exception would replace the one being reported.
"""

import logging


def _safe_str(obj) -> str:
    """
    Convert an object to string, falling back when __str__ or __repr__ fail.

    Args:
        obj: The object to convert to string

    Returns:
        A string representation of the object
    """
    try:
        return str(obj)
    except Exception:
        try:
            return repr(obj)
        except Exception:
            return f"<{type(obj).__name__} object (string conversion failed)>"


def _safe_get_exceptions(exception_group) -> list:
    """Sub-exceptions of an exception group, or an empty list."""
    try:
        return list(exception_group.exceptions)
    except Exception:
        return []


def log_exception_with_details(
    logger: logging.Logger,
    prefix: str,
    exception: Exception,
    level: int = logging.ERROR,
) -> None:
    """
    Log an exception, one record per sub-exception for exception groups.

    Args:
        logger: The logger instance to use
        prefix: Prefix for the log message (e.g., "[Proxy]", "[Rewrite]")
        exception: The exception to log
        level: The logging level to use (default: ERROR)
    """
    try:
        safe_prefix = _safe_str(prefix) if prefix is not None else ""
        sub_exceptions = _safe_get_exceptions(exception)

        if sub_exceptions:
            logger.log(
                level,
                f"{safe_prefix} Exception with {len(sub_exceptions)} sub-exceptions: "
                f"{_safe_str(exception)}",
            )
            for i, sub_exc in enumerate(sub_exceptions):
                logger.log(
                    level,
                    f"{safe_prefix} Sub-exception {i+1}: {type(sub_exc).__name__}: {_safe_str(sub_exc)}",
                    exc_info=sub_exc,
                )
        else:
            logger.log(
                level,
                f"{safe_prefix} {type(exception).__name__}: {_safe_str(exception)}",
                exc_info=exception if exception is not None else False,
            )
    except Exception:
        try:
            logger.log(logging.ERROR, "Exception logging failed")
        except Exception:
            # Nothing left to report with
            pass


def format_exception_message(exception: Exception) -> str:
    """
    Message reported to the client for a failed request.

    Exception groups are flattened to "main (Sub-exceptions: A: x; B: y)".
    Empty messages fall back to the exception type name.
    """
    try:
        if exception is None:
            return "None"

        message = _safe_str(exception) or type(exception).__name__
        sub_exceptions = _safe_get_exceptions(exception)
        if not sub_exceptions:
            return message

        parts = [f"{type(sub).__name__}: {_safe_str(sub)}" for sub in sub_exceptions]
        return f"{message} (Sub-exceptions: {'; '.join(parts)})"
    except Exception:
        return "<exception (all formatting failed)>"
