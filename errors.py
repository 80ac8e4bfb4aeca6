"""Custom exceptions for the laundry API."""

from typing import List, Optional


class LaundryError(Exception):
    """Base exception for all request-scoped API errors."""

    pass


class NotFoundError(LaundryError):
    """Raised when a referenced document doesn't exist."""

    def __init__(self, what: str, ref: Optional[str] = None):
        self.what = what
        self.ref = ref
        msg = f"{what} not found"
        if ref:
            msg = f"{msg}: {ref}"
        super().__init__(msg)


class ForbiddenError(LaundryError):
    """Raised when the caller is neither the owner nor an admin."""

    def __init__(self, message: str = "Not authorized"):
        super().__init__(message)


class InvalidStateError(LaundryError):
    """Raised when an operation is illegal for the entity's current state."""

    def __init__(self, message: str, current: Optional[str] = None):
        self.current = current
        super().__init__(message)


class ValidationFailedError(LaundryError):
    """Raised when input is malformed. Carries per-field errors."""

    def __init__(self, message: str = "Validation errors", errors: Optional[List[dict]] = None):
        self.errors = errors or []
        super().__init__(message)


class ConflictError(LaundryError):
    """Raised on a duplicate unique value or a stale write."""

    def __init__(self, message: str):
        super().__init__(message)


class DatabaseUnavailableError(LaundryError):
    """Raised when DATABASE_URL / DATABASE_NAME are not configured."""

    def __init__(self):
        super().__init__("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")
