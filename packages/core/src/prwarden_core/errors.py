"""Exception hierarchy for review runs."""


class PrwardenError(Exception):
    """Base exception for all prwarden failures."""


class PreconditionError(PrwardenError):
    """Raised when a review cannot start (missing iteration or revision pointers)."""


class MalformedResponseError(PrwardenError):
    """Raised when model output is not valid JSON or does not match the finding schema.

    Distinct from an empty result: an empty list means the model found nothing.
    """


class TransientError(PrwardenError):
    """Raised for retryable failures: timeouts, connection errors, 5xx and 429 responses."""


class CircuitOpenError(PrwardenError):
    """Raised without calling out while a circuit breaker is open."""
