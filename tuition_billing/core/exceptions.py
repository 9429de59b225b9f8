from typing import Any, Dict, Optional

from fastapi import status


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    @property
    def detail(self) -> Any:
        """HTTPException detail: the bare message, or message plus payload."""
        if not self.payload:
            return self.message
        return {"message": self.message, **self.payload}


class ValidationError(ServiceError):
    """Bad input: non-positive amounts, invalid month/year, overpayment, illegal transition."""

    def __init__(self, message: str, payload: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, status.HTTP_400_BAD_REQUEST, payload)


class NotFoundError(ServiceError):
    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_404_NOT_FOUND)


class ConflictError(ServiceError):
    """Duplicate billing tuple or active enrollment. payload carries the existing record."""

    def __init__(self, message: str, existing: Any = None) -> None:
        payload = None
        if existing is not None:
            payload = {"existing": existing.model_dump(mode="json") if hasattr(existing, "model_dump") else existing}
        super().__init__(message, status.HTTP_409_CONFLICT, payload)
        self.existing = existing
