"""
Error taxonomy shared by every service.

Validation and embargo errors are raised before any write happens.
State conflicts mean the caller must re-read current state before retrying.
Tenant context errors are programmer errors and are never turned into an
empty result.
"""
from datetime import datetime
from typing import Optional


class CMSError(Exception):
    """Base class for all domain errors."""


class ValidationError(CMSError):
    pass


class EmbargoViolation(ValidationError):
    def __init__(self, until: datetime, message: Optional[str] = None):
        self.until = until
        super().__init__(
            message or f"Cannot publish before embargo lifts at {until.isoformat()}"
        )


class StateConflictError(CMSError):
    pass


class ConcurrencyConflictError(StateConflictError):
    pass


class NotFoundError(CMSError):
    pass


class TenantContextError(CMSError):
    pass


class AssistError(CMSError):
    pass
