"""
Custom exceptions for the Draft Session Manager.

This module defines all custom exceptions used throughout the application,
providing a clear hierarchy and error handling strategy.
"""

from typing import Optional, Dict, Any


class SessionManagerException(Exception):
    """Base exception for all session manager errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# ============================================================================
# Lookup Exceptions
# ============================================================================


class SessionNotFoundError(SessionManagerException):
    """Raised when a session or its persisted record does not exist."""

    def __init__(self, session_id: str):
        super().__init__(
            f"Session {session_id} not found",
            details={"session_id": session_id},
        )
        self.session_id = session_id


# ============================================================================
# Persistence Exceptions
# ============================================================================


class PersistenceError(SessionManagerException):
    """Raised when a durable read or write fails."""

    pass


class ConcurrentModificationError(PersistenceError):
    """Raised when the stored record changed since the session was loaded."""

    pass


# ============================================================================
# State Machine Exceptions
# ============================================================================


class InvalidTransitionError(SessionManagerException):
    """Raised when a lifecycle transition is not legal from the current state."""

    pass


class TerminalStateError(InvalidTransitionError):
    """Raised when any change is attempted on a completed or abandoned session."""

    pass


# ============================================================================
# Configuration Exceptions
# ============================================================================


class ConfigurationError(SessionManagerException):
    """Raised when configuration is invalid or missing."""

    pass


# ============================================================================
# Validation Exceptions
# ============================================================================


class ValidationError(SessionManagerException):
    """Raised when input validation fails (create, import, usage)."""

    pass
