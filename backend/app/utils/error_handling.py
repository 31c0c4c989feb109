"""Map DockPulse errors and lifecycle outcomes onto HTTP responses.

Caller-fixable failures (unknown container, invalid launch field, busy
container) are answered with their own message. Runtime-side failures are
logged in full and answered with a generic message, so daemon error text
(socket paths, host addresses, driver output) never reaches the client
(CWE-209, CWE-497).
"""

import logging
from typing import NoReturn, Optional

from fastapi import HTTPException

from app.exceptions import DockPulseError
from app.models.lifecycle import LifecycleOutcome

ERROR_STATUS = {
    "not_found": 404,
    "validation": 400,
    "busy": 409,
    "timeout": 504,
    "runtime_unavailable": 503,
    "runtime_error": 502,
}

CALLER_ERRORS = ("not_found", "validation", "busy")

GENERIC_RUNTIME_MESSAGE = "Container runtime operation failed"


def status_for(error_class: Optional[str]) -> int:
    return ERROR_STATUS.get(error_class or "", 500)


def safe_error_response(
    logger_instance: logging.Logger,
    error: Exception,
    user_message: str,
    status_code: int = 500,
) -> NoReturn:
    """Log ``error`` with its traceback and raise an HTTPException carrying only ``user_message``."""
    logger_instance.error(f"{user_message}: {type(error).__name__}: {error}", exc_info=True)
    raise HTTPException(status_code=status_code, detail=user_message)


def raise_for_error(
    logger_instance: logging.Logger, error: DockPulseError, user_message: str
) -> NoReturn:
    """Raise the HTTPException for a DockPulse error.

    Args:
        logger_instance: Logger of the calling route module
        error: Error raised by a service
        user_message: Generic message used for runtime-side failures
    """
    status_code = status_for(error.error_class)
    if error.error_class in CALLER_ERRORS:
        logger_instance.info(f"{user_message}: {error.error_class}")
        raise HTTPException(status_code=status_code, detail=str(error))
    safe_error_response(logger_instance, error, user_message, status_code=status_code)


def outcome_status(outcome: LifecycleOutcome) -> int:
    return 200 if outcome.ok else status_for(outcome.error_class)


def outcome_body(outcome: LifecycleOutcome) -> dict:
    """Response body for a lifecycle outcome, hiding runtime-side failure text."""
    body = outcome.to_dict()
    if not outcome.ok and outcome.error_class not in CALLER_ERRORS:
        body["reason"] = GENERIC_RUNTIME_MESSAGE
    return body


def log_and_continue(
    logger_instance: logging.Logger,
    error: Exception,
    context_message: str,
) -> None:
    """Log a non-fatal error at WARNING with its traceback."""
    logger_instance.warning(f"{context_message}: {type(error).__name__}: {error}", exc_info=True)
