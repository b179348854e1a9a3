"""Error taxonomy for the reconciliation engine."""


class ReconciliationError(Exception):
    """Base class for all reconciliation errors."""


class TransportError(ReconciliationError):
    """Network or timeout failure talking to an external API. Retryable."""


class RemoteHttpError(ReconciliationError):
    """External API answered with a non-2xx status."""

    def __init__(self, status_code: int, message: str = ""):
        self.status_code = status_code
        super().__init__(f"HTTP {status_code}: {message}" if message else f"HTTP {status_code}")


class RemoteItemError(ReconciliationError):
    """A single batch item was rejected by the remote API."""

    def __init__(self, key: str | None, message: str, code: str | None = None):
        self.key = key
        self.code = code
        super().__init__(message)


class RemoteChunkError(ReconciliationError):
    """A whole batch request failed (after its retry)."""

    def __init__(self, operation: str, size: int, cause: Exception):
        self.operation = operation
        self.size = size
        self.cause = cause
        super().__init__(f"{operation} chunk of {size} failed: {cause}")


class EntityValidationError(ReconciliationError):
    """Malformed local entity. Skipped, never sent."""


class UnsupportedTopicError(ReconciliationError):
    """Inbound webhook topic outside the supported set."""

    def __init__(self, topic: str | None):
        self.topic = topic
        super().__init__(f"Unsupported webhook topic: {topic}")


class PersistenceError(ReconciliationError):
    """Local store write failed; the enclosing unit of work is aborted."""


class FeedUnavailableError(ReconciliationError):
    """The upstream feed could not be fetched or parsed."""


class SnapshotError(PersistenceError):
    """The baseline snapshot could not be read or written."""


class SignatureVerificationError(ReconciliationError):
    """Inbound webhook signature missing or invalid."""


class QueueStateError(ReconciliationError):
    """Illegal webhook status transition."""
