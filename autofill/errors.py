"""
Error taxonomy for the autofill engine.

Only FieldEnumerationError aborts a fill session. Everything else is
handled at the level of a single field, a single AI call or a single
memory write.
"""

from enum import Enum


class AutofillError(Exception):
    """Base class for autofill errors."""


class ClassificationAmbiguous(AutofillError):
    """Field metadata does not support any classification rule."""


class FailureKind(Enum):
    RATE_LIMITED = "rate_limited"
    INVALID_REQUEST = "invalid_request"
    AUTH_ERROR = "auth_error"
    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"
    TRANSPORT_ERROR = "transport_error"


# Failures worth another attempt (possibly on another model)
TRANSIENT_FAILURES = {
    FailureKind.RATE_LIMITED,
    FailureKind.NOT_FOUND,
    FailureKind.TIMEOUT,
    FailureKind.TRANSPORT_ERROR,
}

# Failures that rotate to the next fallback model before backing off
ROTATING_FAILURES = {FailureKind.RATE_LIMITED, FailureKind.NOT_FOUND}


class AITransportFailure(AutofillError):
    """Typed failure of a single AI transport call."""

    def __init__(self, kind: FailureKind, message: str = ""):
        self.kind = kind
        super().__init__(f"{kind.value}: {message}" if message else kind.value)

    @property
    def retryable(self) -> bool:
        return self.kind in TRANSIENT_FAILURES


class StoreWriteFailure(AutofillError):
    """Persistent store refused or failed a write."""


class MalformedBatchResponse(AutofillError):
    """Batch AI reply was not a flat JSON object of answers."""


class FieldEnumerationError(AutofillError):
    """Fields on the page could not be enumerated at all."""
