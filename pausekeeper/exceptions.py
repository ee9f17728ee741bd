"""
Exceptions raised while evaluating pause decisions.

Every error carries a context dict (resource identity, evaluation phase,
raw values) and a recoverable flag that tells the worker whether a retry
with backoff can help.
"""

from typing import Any, Dict, Optional


class PauseKeeperError(Exception):
    """
    Base exception for all pausekeeper errors.
    """
    
    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None, recoverable: bool = True):
        """
        Initialize the error.
        
        Args:
            message: Human-readable error description
            context: Additional context data for debugging
            recoverable: Whether retrying the evaluation may succeed
        """
        super().__init__(message)
        self.context = context or {}
        self.recoverable = recoverable
        
    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": str(self),
            "context": self.context,
            "recoverable": self.recoverable
        }


class ResourceNotFoundError(PauseKeeperError):
    """The resource no longer exists on the API server."""
    
    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, context, recoverable=True)


class TransientAccessError(PauseKeeperError):
    """
    Network or API server failure while reading or writing a resource.
    
    Never recovered locally; surfaced so the caller can back off and retry.
    """
    
    def __init__(self, message: str, status_code: Optional[int] = None,
                 context: Optional[Dict[str, Any]] = None):
        super().__init__(message, context, recoverable=True)
        self.status_code = status_code
        
    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["status_code"] = self.status_code
        return result


class ConflictError(PauseKeeperError):
    """
    Conditional update rejected because the resourceVersion is stale.
    
    The whole evaluation must be repeated from a fresh fetch.
    """
    
    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, context, recoverable=True)


class MalformedStateError(PauseKeeperError):
    """
    The pause-state annotation is present but cannot be decoded.
    
    Non-recoverable: treating it as absent could pause a resource on top
    of inconsistent state and start a pause/unpause oscillation.
    """
    
    def __init__(self, message: str, raw_value: Optional[str] = None,
                 context: Optional[Dict[str, Any]] = None):
        super().__init__(message, context, recoverable=False)
        self.raw_value = raw_value
        
    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["raw_value"] = self.raw_value
        return result


class ReconcileError(PauseKeeperError):
    """
    Error surfaced by a single evaluation of one resource.
    
    Wraps the underlying cause together with the resource identity and the
    phase (fetch, decode, decide, mutate) it failed in.
    """
    
    def __init__(self, message: str, identity: str, phase: str,
                 cause: Optional[BaseException] = None,
                 context: Optional[Dict[str, Any]] = None):
        recoverable = cause.recoverable if isinstance(cause, PauseKeeperError) else True
        merged_context = {"identity": identity, "phase": phase}
        if isinstance(cause, PauseKeeperError):
            merged_context.update(cause.context)
        merged_context.update(context or {})
        super().__init__(message, merged_context, recoverable=recoverable)
        self.identity = identity
        self.phase = phase
        self.cause = cause
        
    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["cause"] = repr(self.cause) if self.cause is not None else None
        return result
