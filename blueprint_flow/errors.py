"""
Exceptions and reason codes shared by the flow components.

Illegal transitions are not exceptions: the guard returns them as
decisions carrying one of the ``Reason`` codes below. Exceptions are
reserved for rejected input, unusable documents and broken graphs.
"""

from typing import List, Optional


class Reason:
    """Machine-readable reason codes."""
    # Transition rejections
    ALREADY_TERMINAL = "already-terminal"
    AT_START = "at-start"
    REQUIRED_STEP_INCOMPLETE = "required-step-incomplete"
    SKIP_NOT_PERMITTED = "skip-not-permitted"
    UNKNOWN_ACTION = "unknown-action"

    # Input rejections
    EMPTY_INPUT = "empty-input"
    INVALID_INPUT = "invalid-input"
    NO_INPUT_EXPECTED = "no-input-expected"

    TRANSITION = (
        ALREADY_TERMINAL,
        AT_START,
        REQUIRED_STEP_INCOMPLETE,
        SKIP_NOT_PERMITTED,
        UNKNOWN_ACTION,
    )


class FlowError(Exception):
    """Base class for blueprint flow errors."""


class GraphConfigurationError(FlowError):
    """Raised on unknown stage/step lookups or an inconsistent graph definition."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        self.errors = errors or [message]
        super().__init__(message)


class InputRejectedError(FlowError):
    """Raised when submitted text cannot be stored at the current position."""

    def __init__(self, reason: str, message: Optional[str] = None):
        self.reason = reason
        super().__init__(message or f"Input rejected: {reason}")


class EmptyInputError(InputRejectedError):
    """Input was empty after trimming whitespace."""

    def __init__(self):
        super().__init__(Reason.EMPTY_INPUT, "Input is empty")


class InputValidationError(InputRejectedError):
    """Input failed the step's validation rules."""

    def __init__(self, errors: List[str]):
        self.errors = errors
        message = "Input failed validation: " + "; ".join(errors)
        super().__init__(Reason.INVALID_INPUT, message)


class MalformedDocumentError(FlowError):
    """A persisted or imported document does not fit the stage graph."""

    def __init__(self, errors: List[str]):
        self.errors = errors
        message = f"Malformed document ({len(errors)} problem(s)):\n"
        message += "\n".join(f"  - {e}" for e in errors)
        super().__init__(message)


class SubscriberLimitError(FlowError):
    """Raised when an event type already has the maximum number of subscribers."""

    def __init__(self, event_type: str, limit: int):
        self.event_type = event_type
        self.limit = limit
        super().__init__(f"Subscriber limit of {limit} reached for '{event_type}'")
