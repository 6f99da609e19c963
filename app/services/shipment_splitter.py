from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.flow_logging import flow_info
from app.models.document import ShipmentDocumentRequirement
from app.models.shipment import Shipment
from app.services.allocation_ledger import AllocationFlags, AllocationLedger
from app.services.errors import InsufficientContainers, NotFound, ValidationError
from app.services.history_recorder import HistoryRecorder
from app.services.lot_renumberer import LotRenumberer
from app.services.stage_rules import PLANNED_DETAIL_FIELDS
from app.services.stages import Stage

logger = logging.getLogger(__name__)


@dataclass
class SplitResult:
    parent_id: int
    new_shipment_id: int
    moved_back_to_back: int
    moved_stock_sales: int
    allocations_written: int
    total_lots: int


def _count(value: Any, field_name: str) -> int:
    try:
        count = int(value or 0)
    except (TypeError, ValueError):
        raise ValidationError(
            message=f"{field_name} must be a whole number.",
            details={"field": field_name, "value": str(value)},
        )
    if count < 0:
        raise ValidationError(message=f"{field_name} must not be negative.", details={"field": field_name})
    return count


class ShipmentSplitter:
    """Moves part of a shipment's containers into a new lot of the same family."""

    def __init__(
        self,
        db: Session,
        *,
        recorder: HistoryRecorder | None = None,
        ledger: AllocationLedger | None = None,
        renumberer: LotRenumberer | None = None,
    ):
        self.db = db
        self.recorder = recorder or HistoryRecorder(db)
        self.ledger = ledger or AllocationLedger(db)
        self.renumberer = renumberer or LotRenumberer(db, self.recorder)

    def split(
        self,
        parent_id: int,
        b2b_count: Any,
        ss_count: Any,
        allocations: Iterable[Any] | None = None,
        user_id: str | None = None,
    ) -> SplitResult:
        b2b = _count(b2b_count, "b2b_count")
        ss = _count(ss_count, "ss_count")
        if b2b + ss <= 0:
            raise ValidationError(
                message="At least one container must be moved.",
                details={"b2b_count": b2b, "ss_count": ss},
            )

        parent = self.db.get(Shipment, parent_id, with_for_update=True)
        if parent is None:
            raise NotFound(message=f"Shipment {parent_id} not found.", details={"shipment_id": parent_id})
        if parent.shipment_stage_id >= Stage.ARCHIVE:
            raise ValidationError(
                message="An archived shipment cannot be split.",
                details={"shipment_id": parent_id, "stage_id": parent.shipment_stage_id},
            )
        available_b2b = parent.containers_back_to_back or 0
        available_ss = parent.containers_stock_sales or 0
        if b2b > available_b2b or ss > available_ss:
            raise InsufficientContainers(
                message="Cannot move more containers than are available.",
                details={
                    "shipment_id": parent_id,
                    "requested_b2b": b2b,
                    "available_b2b": available_b2b,
                    "requested_ss": ss,
                    "available_ss": available_ss,
                },
            )

        child = Shipment(
            po_id=parent.po_id,
            parent_shipment_id=parent.id,
            vendor_id=parent.vendor_id,
            shipment_stage_id=int(Stage.UNDERLOADING),
            transport_mode=parent.transport_mode,
            containers_back_to_back=b2b,
            containers_stock_sales=ss,
            no_containers=b2b + ss,
            lot_number=1,
            total_lots=1,
            created_by=user_id,
        )
        for name in PLANNED_DETAIL_FIELDS:
            setattr(child, name, getattr(parent, name))
        self.db.add(child)

        parent.containers_back_to_back = available_b2b - b2b
        parent.containers_stock_sales = available_ss - ss
        parent.no_containers = max((parent.no_containers or 0) - (b2b + ss), 0)
        self.db.flush()

        doc_type_ids = self.db.execute(
            select(ShipmentDocumentRequirement.document_type_id)
            .where(ShipmentDocumentRequirement.shipment_id == parent.id)
            .order_by(ShipmentDocumentRequirement.document_type_id)
        ).scalars().all()
        for document_type_id in doc_type_ids:
            self.db.add(ShipmentDocumentRequirement(shipment_id=child.id, document_type_id=document_type_id))

        written = self.ledger.upsert_allocations(
            child.id,
            parent.po_id,
            allocations,
            mode="partial",
            flags=AllocationFlags(update_planned=True, update_allocated=True),
            user_id=user_id,
        )

        self.recorder.append(
            "shipment",
            parent.id,
            user_id,
            "SHIPMENT_SPLIT",
            {"new_shipment_id": child.id, "moved_b2b": b2b, "moved_ss": ss},
        )
        self.recorder.append(
            "shipment",
            child.id,
            user_id,
            "SHIPMENT_CREATED_FROM_SPLIT",
            {"parent_shipment_id": parent.id, "po_id": parent.po_id},
        )

        lots = self.renumberer.recalculate(parent.id, user_id=user_id)
        flow_info(
            logger,
            "shipment_split parent_id=%s child_id=%s moved_b2b=%s moved_ss=%s total_lots=%s",
            parent.id,
            child.id,
            b2b,
            ss,
            lots.total_lots,
            category="lots",
        )
        return SplitResult(
            parent_id=parent.id,
            new_shipment_id=child.id,
            moved_back_to_back=b2b,
            moved_stock_sales=ss,
            allocations_written=written,
            total_lots=lots.total_lots,
        )
