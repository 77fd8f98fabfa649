"""
Helpers for logging and formatting exceptions at the boundaries where the
engine must keep going, such as a failed action or a failed model call.
None of these helpers raise.
"""

import logging
from typing import Any, List, Optional


def _safe_str(obj: Any) -> str:
    try:
        return str(obj)
    except Exception:
        try:
            return repr(obj)
        except Exception:
            return f"<{type(obj).__name__} object (string conversion failed)>"


def _sub_exceptions(exception: Optional[BaseException]) -> List[BaseException]:
    """Return the members of an exception group, or an empty list."""
    if exception is None:
        return []
    try:
        return list(getattr(exception, "exceptions", None) or [])
    except Exception:
        return []


def log_exception_with_details(
    logger: logging.Logger,
    prefix: str,
    exception: Optional[BaseException],
    level: int = logging.ERROR,
) -> None:
    """
    Log an exception with its traceback. Exception groups are unrolled so each
    member is logged on its own line.

    Args:
        logger: The logger instance to use
        prefix: Component prefix for the message (e.g. "[ActionDispatcher]")
        exception: The exception to log
        level: The logging level to use (default: ERROR)
    """
    try:
        safe_prefix = _safe_str(prefix) if prefix is not None else ""
        message = _safe_str(exception) if exception is not None else "None"
        members = _sub_exceptions(exception)

        if not members:
            logger.log(
                level,
                f"{safe_prefix} Exception: {message}",
                exc_info=exception if exception is not None else False,
            )
            return

        logger.log(
            level,
            f"{safe_prefix} Exception with {len(members)} sub-exceptions: {message}",
        )
        for i, sub_exc in enumerate(members):
            try:
                logger.log(
                    level,
                    f"{safe_prefix} Sub-exception {i + 1}: "
                    f"{type(sub_exc).__name__}: {_safe_str(sub_exc)}",
                    exc_info=sub_exc,
                )
            except Exception:
                continue
    except Exception:
        try:
            logger.log(logging.ERROR, "Exception logging failed")
        except Exception:
            pass


def format_exception_message(exception: Optional[BaseException]) -> str:
    """
    Render an exception as a single line suitable for a tool result or a
    step error. Exception group members are appended in parentheses.
    """
    try:
        if exception is None:
            return "None"
        main = _safe_str(exception) or type(exception).__name__
        members = _sub_exceptions(exception)
        if not members:
            return main
        details = "; ".join(
            f"{type(sub_exc).__name__}: {_safe_str(sub_exc)}" for sub_exc in members
        )
        return f"{main} (Sub-exceptions: {details})"
    except Exception:
        return "<exception (formatting failed)>"
