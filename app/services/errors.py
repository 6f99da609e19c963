from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class ShipmentFlowFailure(Exception):
    """
    Base of every expected failure in the shipment flow.

    Services raise these inside a transaction so the whole request rolls back;
    the operation surface in app.services.shipment_flow turns them into an
    OperationResult error instead of letting them escape.
    """

    message: str
    code: str = "SHIPMENT_FLOW_ERROR"
    status_code: int = 400
    details: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return self.message

    @property
    def missing_requirements(self) -> list[str]:
        return list(self.details.get("missing_requirements") or [])

    def to_detail(self) -> dict[str, Any]:
        detail: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            detail.update(self.details)
        return detail


@dataclass
class ValidationError(ShipmentFlowFailure):
    code: str = "VALIDATION_ERROR"
    status_code: int = 400


@dataclass
class IllegalTransition(ShipmentFlowFailure):
    code: str = "ILLEGAL_TRANSITION"
    status_code: int = 409


@dataclass
class SkipNotAllowed(ShipmentFlowFailure):
    code: str = "SKIP_NOT_ALLOWED"
    status_code: int = 409


@dataclass
class OverAllocation(ShipmentFlowFailure):
    code: str = "OVER_ALLOCATION"
    status_code: int = 409


@dataclass
class InsufficientContainers(ShipmentFlowFailure):
    code: str = "INSUFFICIENT_CONTAINERS"
    status_code: int = 409


@dataclass
class DocumentRequirementUnmet(ShipmentFlowFailure):
    code: str = "DOCUMENT_REQUIREMENT_UNMET"
    status_code: int = 422


@dataclass
class NotFound(ShipmentFlowFailure):
    code: str = "NOT_FOUND"
    status_code: int = 404


@dataclass
class ConcurrencyConflict(ShipmentFlowFailure):
    code: str = "CONCURRENCY_CONFLICT"
    status_code: int = 409
