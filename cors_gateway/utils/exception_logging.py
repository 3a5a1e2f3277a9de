"""
Helpers to describe upstream failures in logs and client-visible messages.
"""

import logging


def _safe_str(obj) -> str:
    try:
        return str(obj)
    except Exception:
        return f"<{type(obj).__name__} object (string conversion failed)>"


def _sub_exceptions(exception) -> list:
    return list(getattr(exception, "exceptions", None) or [])


def format_exception_message(exception: Exception) -> str:
    """
    Format an exception as ``"<Type>: <text>"``, including the members of an
    exception group.

    Args:
        exception: The exception to format

    Returns:
        A single-line description of the exception
    """
    if exception is None:
        return "None"

    text = _safe_str(exception)
    main = f"{type(exception).__name__}: {text}" if text else type(exception).__name__

    sub_exceptions = _sub_exceptions(exception)
    if not sub_exceptions:
        return main
    joined = "; ".join(format_exception_message(sub) for sub in sub_exceptions)
    return f"{main} (Sub-exceptions: {joined})"


def log_exception_with_details(
    logger: logging.Logger,
    prefix: str,
    exception: Exception,
    level: int = logging.ERROR,
) -> None:
    """
    Log an exception, one extra line per member when it is an exception group.

    Args:
        logger: The logger instance to use
        prefix: Prefix for the log message (e.g., "[Redirect]", "[Gateway]")
        exception: The exception to log
        level: The logging level to use (default: ERROR)
    """
    sub_exceptions = _sub_exceptions(exception)
    if not sub_exceptions:
        logger.log(
            level, f"{prefix} Exception: {format_exception_message(exception)}"
        )
        return

    logger.log(
        level,
        f"{prefix} Exception with {len(sub_exceptions)} sub-exceptions: "
        f"{_safe_str(exception)}",
    )
    for i, sub_exc in enumerate(sub_exceptions):
        logger.log(
            level,
            f"{prefix} Sub-exception {i + 1}: {format_exception_message(sub_exc)}",
            exc_info=sub_exc,
        )
