from typing import Any, Dict, Optional

from fastapi import status


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class InvalidInputError(ServiceError):
    """A required reference (class id, assignment id, email) is missing or malformed. Nothing was written."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_400_BAD_REQUEST)


class NotFoundError(ServiceError):
    """A referenced document does not exist."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_404_NOT_FOUND)


class ConflictError(ServiceError):
    """A compare-and-mutate precondition no longer holds (e.g. request already resolved)."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_409_CONFLICT)


class InconsistencyError(ServiceError):
    """
    A multi-document sequence completed only partially.

    The first write is durable and is not rolled back; `details` names the
    documents involved so a reconciliation pass can repair the state.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.details = details or {}


class StoreUnavailableError(ServiceError):
    """The document store failed or could not be reached; callers may retry."""

    def __init__(self, message: str = "Document store unavailable") -> None:
        super().__init__(message, status.HTTP_503_SERVICE_UNAVAILABLE)
