"""Typed business errors raised by the ledger services.

Every failed precondition surfaces as one of these. The HTTP layer maps
``http_status`` and ``code`` onto the standard error envelope; services
never translate them into HTTP themselves.
"""

from typing import Any, Dict, Optional

from fastapi import status


class LedgerError(Exception):
    """Base class for every business-rule failure."""

    code: str = "LEDGER_ERROR"
    http_status: int = status.HTTP_400_BAD_REQUEST
    # Only NoTariffsConfigured may be downgraded by a caller
    recoverable: bool = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


class InvalidState(LedgerError):
    """An illegal state transition was attempted."""

    code = "INVALID_STATE"
    http_status = status.HTTP_409_CONFLICT


class PreconditionFailed(LedgerError):
    """A business rule blocks the action."""

    code = "PRECONDITION_FAILED"
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY


class CapacityExceeded(LedgerError):
    code = "CAPACITY_EXCEEDED"
    http_status = status.HTTP_409_CONFLICT


class AlreadyAssigned(InvalidState):
    """The student already belongs to a class."""

    code = "ALREADY_ASSIGNED"


class Overpayment(LedgerError):
    code = "OVERPAYMENT"
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY


class NoAvailableClass(LedgerError):
    code = "NO_AVAILABLE_CLASS"
    http_status = status.HTTP_409_CONFLICT


class NoTariffsConfigured(LedgerError):
    """The student's class has no attached-and-active tariff."""

    code = "NO_TARIFFS_CONFIGURED"
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY
    recoverable = True


class NoActivePeriod(LedgerError):
    code = "NO_ACTIVE_PERIOD"
    http_status = status.HTTP_409_CONFLICT


class NotFound(LedgerError):
    code = "NOT_FOUND"
    http_status = status.HTTP_404_NOT_FOUND

    @classmethod
    def for_entity(cls, entity: str, entity_id: Any) -> "NotFound":
        return cls(f"{entity} {entity_id} not found", {"entity": entity, "id": str(entity_id)})
