"""
Custom exceptions for consistent error handling
"""
from typing import Any, Dict, List, Optional

from fastapi import HTTPException, status


class LateSeatException(HTTPException):
    """Base exception for LateSeat"""
    def __init__(self, status_code: int, detail: str, error_code: str = None,
                 extra: Optional[Dict[str, Any]] = None):
        super().__init__(status_code=status_code, detail=detail)
        self.error_code = error_code
        self.extra = extra or {}


class NotFoundException(LateSeatException):
    """404 - Resource not found"""
    def __init__(self, resource: str = "Resource"):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{resource} not found",
            error_code="NOT_FOUND"
        )


class ValidationException(LateSeatException):
    """400 - Validation error"""
    def __init__(self, detail: str, reason: str = "invalid"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            error_code="VALIDATION_ERROR",
            extra={"reason": reason}
        )
        self.reason = reason


class ConflictException(LateSeatException):
    """409 - Resource conflict (capacity exceeded or table collision)"""
    def __init__(self, detail: str, reason: str = "conflict",
                 conflicting_tables: Optional[List[int]] = None):
        extra = {"reason": reason}
        if conflicting_tables is not None:
            extra["conflicting_tables"] = sorted(conflicting_tables)
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
            error_code="CONFLICT",
            extra=extra
        )
        self.reason = reason
        self.conflicting_tables = sorted(conflicting_tables) if conflicting_tables is not None else None


class AlreadyCancelledException(LateSeatException):
    """409 - Cancel requested for a reservation that is already cancelled"""
    def __init__(self, booking_id: str):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail="Reservation already cancelled",
            error_code="ALREADY_CANCELLED",
            extra={"booking_id": booking_id}
        )
        self.booking_id = booking_id


class InvalidStatusTransitionException(ValidationException):
    """Invalid status transition"""
    def __init__(self, current: str, target: str):
        super().__init__(
            detail=f"Invalid status transition: {current} → {target}",
            reason="invalid_transition"
        )


class PersistenceException(LateSeatException):
    """500 - Store unavailable or write failed"""
    def __init__(self, detail: str = "Storage operation failed"):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=detail,
            error_code="PERSISTENCE_ERROR"
        )
