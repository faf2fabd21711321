# huddle/common/exceptions/exceptions.py
# =============================================================================
# Custom exceptions for Huddle
# =============================================================================

from typing import Optional


class HuddleException(Exception):
    """Base exception for Huddle"""
    pass


class ValidationError(HuddleException):
    """Raised when validation fails"""
    pass


class NotFoundError(HuddleException):
    """Raised when a resource is not found"""
    pass


# Alias for compatibility
ResourceNotFoundError = NotFoundError


class ConflictError(HuddleException):
    """Raised when there's a conflict (e.g., duplicate)"""
    pass


class DomainError(HuddleException):
    """Raised for domain-specific errors"""
    pass


class InfrastructureError(HuddleException):
    """Raised for infrastructure errors"""
    pass


# =============================================================================
# Outbound call taxonomy (resilience layer)
# =============================================================================

class TransientNetworkError(InfrastructureError):
    """Timeout, connection reset or other transient network fault. Retried."""
    pass


class RateLimitedError(InfrastructureError):
    """The remote service asked us to slow down. Retried, counts toward the circuit."""

    def __init__(self, message: str = "Rate limited", retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after
        self.status = 429


class PermanentClientError(InfrastructureError):
    """4xx-class failure that will not succeed on retry."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status
        self.__permanent__ = True


class StorageBusyError(InfrastructureError):
    """Storage engine is locked or hit a transient I/O error. Retried with the busy backoff."""
    pass


class CircuitOpenError(InfrastructureError):
    """Circuit breaker is open; the underlying call was never attempted."""

    def __init__(self, circuit_key: str):
        super().__init__(f"Circuit breaker is OPEN for {circuit_key}")
        self.circuit_key = circuit_key


# =============================================================================
# Store / journal / backup
# =============================================================================

class MappingConflictError(ConflictError):
    """A roster account is already linked to a different chat user"""

    def __init__(self, roster_id: str, owner_chat_id: str, chat_id: str):
        super().__init__(
            f"Roster account {roster_id} is already linked to {owner_chat_id}, cannot link to {chat_id}"
        )
        self.roster_id = roster_id
        self.owner_chat_id = owner_chat_id
        self.chat_id = chat_id


class ThreadNotFoundError(NotFoundError):
    """No thread is indexed for the event"""

    def __init__(self, event_id: str):
        super().__init__(f"No thread found for match {event_id}")
        self.event_id = event_id


class JournalWriteError(InfrastructureError):
    """Appending to or rewriting the interaction journal failed"""
    pass


class BackupError(InfrastructureError):
    """Snapshot creation or verification failed"""
    pass


class RestoreError(InfrastructureError):
    """Restoring the database from a snapshot failed"""
    pass
