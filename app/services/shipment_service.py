from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import json
import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.history import ShipmentStageHistory
from app.models.purchase_order import PurchaseOrderHeader
from app.models.shipment import Shipment
from app.services.document_requirements import DocumentRequirementService
from app.services.errors import NotFound, ValidationError
from app.services.history_recorder import HistoryRecorder
from app.services.shipment_family import ShipmentFamilyRepository
from app.services.stages import FIRST_STAGE, stage_name

logger = logging.getLogger(__name__)

TRANSPORT_MODES = {"SEA", "AIR"}


@dataclass
class StageHistoryLine:
    id: int
    po_id: int | None
    shipment_id: int
    from_stage_id: int | None
    from_stage_name: str | None
    to_stage_id: int
    to_stage_name: str
    changed_at: datetime
    payload: dict[str, Any] | None


@dataclass
class FamilyMember:
    id: int
    parent_shipment_id: int | None
    depth: int
    shipment_stage_id: int
    stage_name: str
    lot_number: int
    total_lots: int
    lot_label: str
    containers_back_to_back: int
    containers_stock_sales: int
    no_containers: int


class ShipmentService:
    def __init__(self, db: Session, recorder: HistoryRecorder | None = None):
        self.db = db
        self.recorder = recorder or HistoryRecorder(db)

    def get_shipment(self, shipment_id: int) -> Shipment:
        shipment = self.db.get(Shipment, shipment_id)
        if shipment is None:
            raise NotFound(message=f"Shipment {shipment_id} not found.", details={"shipment_id": shipment_id})
        return shipment

    def create_from_po(
        self,
        po_id: int,
        *,
        containers_back_to_back: int = 0,
        containers_stock_sales: int = 0,
        required_document_type_ids: list[int] | None = None,
        user_id: str | None = None,
    ) -> Shipment:
        po = self.db.get(PurchaseOrderHeader, po_id)
        if po is None:
            raise NotFound(message=f"Purchase order {po_id} not found.", details={"po_id": po_id})
        if containers_back_to_back < 0 or containers_stock_sales < 0:
            raise ValidationError(
                message="Container counts must not be negative.",
                details={
                    "containers_back_to_back": containers_back_to_back,
                    "containers_stock_sales": containers_stock_sales,
                },
            )
        mode = (po.transport_mode or "SEA").strip().upper()
        if mode not in TRANSPORT_MODES:
            raise ValidationError(
                message=f"Unsupported transport mode {po.transport_mode!r}.",
                details={"po_id": po_id, "transport_mode": po.transport_mode},
            )

        shipment = Shipment(
            po_id=po.id,
            vendor_id=po.vendor_id,
            shipment_stage_id=int(FIRST_STAGE),
            transport_mode=mode,
            lot_number=1,
            total_lots=1,
            containers_back_to_back=containers_back_to_back,
            containers_stock_sales=containers_stock_sales,
            no_containers=containers_back_to_back + containers_stock_sales,
            created_by=user_id,
        )
        self.db.add(shipment)
        self.db.flush()

        if required_document_type_ids:
            DocumentRequirementService(self.db, self.recorder).configure_required_documents(
                shipment.id, required_document_type_ids, user_id=user_id
            )
        self.recorder.append(
            "shipment",
            shipment.id,
            user_id,
            "SHIPMENT_CREATED",
            {"po_id": po.id, "po_number": po.po_number},
        )
        self.db.flush()
        logger.info("shipment_created shipment_id=%s po_id=%s", shipment.id, po.id)
        return shipment

    def list_stage_history(self, shipment_id: int) -> list[StageHistoryLine]:
        """Stage moves of every shipment raised against the same PO, oldest first."""
        shipment = self.get_shipment(shipment_id)
        rows = self.db.execute(
            select(ShipmentStageHistory)
            .where(ShipmentStageHistory.po_id == shipment.po_id)
            .order_by(ShipmentStageHistory.changed_at, ShipmentStageHistory.id)
        ).scalars()
        return [
            StageHistoryLine(
                id=row.id,
                po_id=row.po_id,
                shipment_id=row.shipment_id,
                from_stage_id=row.from_stage_id,
                from_stage_name=stage_name(row.from_stage_id) if row.from_stage_id is not None else None,
                to_stage_id=row.to_stage_id,
                to_stage_name=stage_name(row.to_stage_id),
                changed_at=row.changed_at,
                payload=json.loads(row.payload_json) if row.payload_json else None,
            )
            for row in rows
        ]

    def list_family(self, shipment_id: int) -> list[FamilyMember]:
        forest = ShipmentFamilyRepository(self.db).load_family(shipment_id)
        return [
            FamilyMember(
                id=member.id,
                parent_shipment_id=member.parent_shipment_id,
                depth=depth,
                shipment_stage_id=member.shipment_stage_id,
                stage_name=stage_name(member.shipment_stage_id),
                lot_number=member.lot_number,
                total_lots=member.total_lots,
                lot_label=member.lot_label,
                containers_back_to_back=member.containers_back_to_back,
                containers_stock_sales=member.containers_stock_sales,
                no_containers=member.no_containers,
            )
            for member, depth in forest.walk()
        ]
