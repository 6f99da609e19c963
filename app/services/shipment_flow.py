"""
Operation surface of the shipment flow.

Services raise ShipmentFlowFailure subclasses so the transaction rolls back;
the functions here own the session boundary (commit / rollback) and hand the
outcome back as an OperationResult instead of an exception.
"""
from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any, Callable, Generic, Iterable, TypeVar

from sqlalchemy.orm import Session

from app.services.allocation_ledger import AllocationFlags, AllocationLedger, AllocationLine
from app.services.container_tracking import ContainerTrackingFeed
from app.services.document_requirements import DocumentRequirementChecker, DocumentRequirementService
from app.services.errors import ShipmentFlowFailure
from app.services.lot_renumberer import LotRenumberer
from app.services.shipment_service import ShipmentService
from app.services.shipment_splitter import ShipmentSplitter
from app.services.stage_machine import StageMachine, TransitionOutcome
from app.services.unit_of_work import unit_of_work

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class OperationResult(Generic[T]):
    ok: bool
    value: T | None = None
    error: ShipmentFlowFailure | None = None

    @classmethod
    def success(cls, value: T) -> "OperationResult[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: ShipmentFlowFailure) -> "OperationResult[T]":
        return cls(ok=False, error=error)

    def unwrap(self) -> T:
        if not self.ok:
            assert self.error is not None
            raise self.error
        return self.value  # type: ignore[return-value]


@dataclass
class SplitOutcome:
    new_shipment_id: int
    parent_id: int
    moved_back_to_back: int
    moved_stock_sales: int
    allocations_written: int
    total_lots: int


@dataclass
class AllocationOutcome:
    updated_count: int


@dataclass
class LotOutcome:
    ok: bool
    root_id: int
    total_lots: int
    lot_numbers: dict[int, int] = field(default_factory=dict)


@dataclass
class CreateOutcome:
    shipment_id: int
    po_id: int
    shipment_stage_id: int


def _run(db: Session, operation: str, work: Callable[[], T], *, keep: bool = True) -> OperationResult[T]:
    try:
        value = work()
        if keep:
            db.commit()
        else:
            db.rollback()
        return OperationResult.success(value)
    except ShipmentFlowFailure as exc:
        db.rollback()
        logger.info(
            "shipment_flow_rejected operation=%s code=%s message=%s",
            operation,
            exc.code,
            exc.message,
        )
        return OperationResult.failure(exc)
    except Exception:
        db.rollback()
        logger.exception("shipment_flow_failed operation=%s", operation)
        raise


def transition_stage(
    db: Session,
    shipment_id: int,
    to_stage: Any,
    fields: dict[str, Any] | None = None,
    dry_run: bool = False,
    *,
    user_id: str | None = None,
    tracking_feed: ContainerTrackingFeed | None = None,
    checker: DocumentRequirementChecker | None = None,
) -> OperationResult[TransitionOutcome]:
    machine = StageMachine(db, checker=checker, tracking_feed=tracking_feed)
    return _run(
        db,
        "transition_stage",
        lambda: machine.transition(shipment_id, to_stage, fields, dry_run=dry_run, user_id=user_id),
        keep=not dry_run,
    )


def split_shipment(
    db: Session,
    shipment_id: int,
    b2b_count: Any,
    ss_count: Any,
    allocations: Iterable[Any] | None = None,
    *,
    user_id: str | None = None,
) -> OperationResult[SplitOutcome]:
    def work() -> SplitOutcome:
        with unit_of_work(db, operation="split_shipment"):
            result = ShipmentSplitter(db).split(shipment_id, b2b_count, ss_count, allocations, user_id=user_id)
        return SplitOutcome(
            new_shipment_id=result.new_shipment_id,
            parent_id=result.parent_id,
            moved_back_to_back=result.moved_back_to_back,
            moved_stock_sales=result.moved_stock_sales,
            allocations_written=result.allocations_written,
            total_lots=result.total_lots,
        )

    return _run(db, "split_shipment", work)


def upsert_allocations(
    db: Session,
    shipment_id: int,
    allocations: Iterable[Any] | None,
    mode: str = "partial",
    flags: AllocationFlags | None = None,
    *,
    po_id: int | None = None,
    user_id: str | None = None,
) -> OperationResult[AllocationOutcome]:
    def work() -> AllocationOutcome:
        with unit_of_work(db, operation="upsert_allocations"):
            count = AllocationLedger(db).upsert_allocations(
                shipment_id, po_id, allocations, mode=mode, flags=flags, user_id=user_id
            )
        return AllocationOutcome(updated_count=count)

    return _run(db, "upsert_allocations", work)


def list_allocations(db: Session, shipment_id: int) -> OperationResult[list[AllocationLine]]:
    return _run(db, "list_allocations", lambda: AllocationLedger(db).list_allocations(shipment_id), keep=False)


def recalculate_lots(
    db: Session,
    any_shipment_id: int,
    *,
    user_id: str | None = None,
) -> OperationResult[LotOutcome]:
    def work() -> LotOutcome:
        with unit_of_work(db, operation="recalculate_lots"):
            result = LotRenumberer(db).recalculate(any_shipment_id, user_id=user_id)
        return LotOutcome(
            ok=True,
            root_id=result.root_id,
            total_lots=result.total_lots,
            lot_numbers=result.lot_numbers,
        )

    return _run(db, "recalculate_lots", work)


def create_shipment(
    db: Session,
    po_id: int,
    *,
    containers_back_to_back: int = 0,
    containers_stock_sales: int = 0,
    required_document_type_ids: list[int] | None = None,
    user_id: str | None = None,
) -> OperationResult[CreateOutcome]:
    def work() -> CreateOutcome:
        with unit_of_work(db, operation="create_shipment"):
            shipment = ShipmentService(db).create_from_po(
                po_id,
                containers_back_to_back=containers_back_to_back,
                containers_stock_sales=containers_stock_sales,
                required_document_type_ids=required_document_type_ids,
                user_id=user_id,
            )
        return CreateOutcome(
            shipment_id=shipment.id,
            po_id=shipment.po_id,
            shipment_stage_id=shipment.shipment_stage_id,
        )

    return _run(db, "create_shipment", work)


def configure_required_documents(
    db: Session,
    shipment_id: int,
    document_type_ids: list[int],
    *,
    user_id: str | None = None,
) -> OperationResult[list[int]]:
    def work() -> list[int]:
        with unit_of_work(db, operation="configure_required_documents"):
            return DocumentRequirementService(db).configure_required_documents(
                shipment_id, document_type_ids, user_id=user_id
            )

    return _run(db, "configure_required_documents", work)
