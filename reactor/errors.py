"""
Centralized exceptions for the event bus.

Every error logs itself with structured context when raised, so a failed
job leaves a trace even when the queue swallows the traceback.

Usage:
    from reactor.errors import ValidationError

    raise ValidationError("Event payload is missing an actor", event="shipped")
"""

from typing import Any

from shared.config.logging import get_logger

logger = get_logger(__name__)


class ReactorError(Exception):
    """
    Base exception with automatic logging.

    All event bus errors inherit from this class to ensure consistent
    logging and message format.
    """

    log_level = "warning"

    def __init__(self, detail: str, **log_context: Any):
        log_fn = getattr(logger, self.log_level, logger.warning)
        log_fn(detail, error=type(self).__name__, **log_context)

        self.detail = detail
        self.context = log_context
        super().__init__(detail)


# =============================================================================
# Publishing
# =============================================================================


class ConfirmationRequired(ReactorError):
    """
    Publishing from an interactive production shell without confirmation.

    Surfaced verbatim to the operator; never retried.
    """

    MESSAGE = (
        "It looks like you are on a production console. Only fire an event if you intend "
        "to trigger all of its subscribers. In order to proceed, you must pass "
        "`confirmed=True` in the event data."
    )

    def __init__(self, event: str, **log_context: Any):
        super().__init__(self.MESSAGE, event=event, **log_context)


class ValidationError(ReactorError):
    """
    Rejected by the validator hook before enqueue.

    Usage:
        raise ValidationError("actor is required", event="shipped")
    """


# =============================================================================
# Workers
# =============================================================================


class UnconfiguredWorker(ReactorError):
    """A handler unit is missing part of its configuration. Fatal for the job."""

    log_level = "error"

    def __init__(self, unit_name: str, settings: dict[str, Any], **log_context: Any):
        detail = f"{unit_name} is not properly configured! Here are the settings: {settings}"
        super().__init__(detail, unit=unit_name, **log_context)
        self.settings = settings


class DuplicateHandlerDefinition(ReactorError):
    """A handler unit name is already taken within its source's namespace."""

    def __init__(self, unit_name: str, **log_context: Any):
        super().__init__(f"Event handler {unit_name} is already defined", unit=unit_name, **log_context)


class UndeliverableMessage(ReactorError):
    """A mailer handler produced a message without any delivery capability."""

    def __init__(self, detail: str = "Message cannot be delivered", **log_context: Any):
        super().__init__(detail, **log_context)


# =============================================================================
# Entity store
# =============================================================================


class EntityNotFound(ReactorError):
    """A polymorphic reference points at a type or row that does not exist."""

    def __init__(self, entity_type: str, entity_id: Any = None, **log_context: Any):
        if entity_id is not None:
            detail = f"{entity_type} with id {entity_id} not found"
        else:
            detail = f"Entity type {entity_type} is not mapped"

        super().__init__(detail, entity_type=entity_type, entity_id=entity_id, **log_context)
