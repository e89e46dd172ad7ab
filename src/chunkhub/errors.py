"""Fault taxonomy shared by every chunkhub operation.

Each fault maps to exactly one externally observable outcome. The HTTP layer
turns ``status_code`` and ``retryable`` into the response; services never
swallow these.
"""


class ChunkHubError(Exception):
    """Base exception for chunkhub faults."""

    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationFault(ChunkHubError):
    """Raised for malformed input, rejected before any I/O."""

    status_code = 400


class NotFoundFault(ChunkHubError):
    """Raised when a chunk or dataset id does not exist."""

    status_code = 404


class ConsistencyFault(ChunkHubError):
    """Raised when a vector point has no backing metadata row.

    The orphan point has already been deleted when this is raised, so the
    caller should retry the original request.
    """

    status_code = 503
    retryable = True


class UpstreamFault(ChunkHubError):
    """Raised when the embedding or re-ranking provider fails."""

    status_code = 502


class QuotaFault(ChunkHubError):
    """Raised when an ingest would exceed the dataset's chunk quota."""

    status_code = 426
