from __future__ import annotations

from dataclasses import dataclass, field
import logging

from sqlalchemy.orm import Session

from app.core.flow_logging import flow_info
from app.services.history_recorder import HistoryRecorder
from app.services.shipment_family import ShipmentFamilyRepository

logger = logging.getLogger(__name__)


@dataclass
class RenumberResult:
    root_id: int
    total_lots: int
    lot_numbers: dict[int, int] = field(default_factory=dict)


class LotRenumberer:
    """
    Recomputes lot_number / total_lots for a whole family.

    Lots already loading or beyond come first, then by creation time and id.
    Runs inside the caller's transaction; all members are locked before any
    number changes, so the family is renumbered completely or not at all.
    """

    def __init__(self, db: Session, recorder: HistoryRecorder | None = None):
        self.db = db
        self.recorder = recorder or HistoryRecorder(db)
        self.families = ShipmentFamilyRepository(db)

    def recalculate(self, any_member_id: int, user_id: str | None = None) -> RenumberResult:
        self.db.flush()
        forest = self.families.load_family(any_member_id, for_update=True)
        ordered = forest.in_shipping_order()
        total = len(ordered)

        lot_numbers: dict[int, int] = {}
        for position, shipment in enumerate(ordered, start=1):
            shipment.lot_number = position
            shipment.total_lots = total
            lot_numbers[shipment.id] = position

        self.recorder.append(
            "shipment",
            forest.root_id,
            user_id,
            "LOT_NUMBERS_RECALCULATED",
            {
                "root_id": forest.root_id,
                "total_lots": total,
                "lots": [{"shipment_id": sid, "lot_number": lot} for sid, lot in lot_numbers.items()],
            },
        )
        self.db.flush()
        flow_info(
            logger,
            "lots_recalculated root_id=%s total_lots=%s order=%s",
            forest.root_id,
            total,
            [shipment.id for shipment in ordered],
            category="lots",
        )
        return RenumberResult(root_id=forest.root_id, total_lots=total, lot_numbers=lot_numbers)
