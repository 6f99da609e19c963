from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
import logging
from typing import Any, Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.flow_logging import flow_info
from app.models.allocation import ShipmentPoItemAllocation
from app.models.purchase_order import PurchaseOrderItem
from app.models.shipment import Shipment
from app.services.errors import NotFound, OverAllocation, ValidationError

logger = logging.getLogger(__name__)

QTY_STEP = Decimal("0.001")
ZERO = Decimal("0")

ALLOCATION_MODES = {"partial", "full"}


@dataclass
class AllocationFlags:
    """Which ledger fields a write touches; unflagged fields keep their value."""

    update_planned: bool = False
    update_allocated: bool = True
    update_loaded: bool = False
    skip_availability_check: bool = False


@dataclass
class AllocationRequest:
    po_item_id: int
    quantity: Decimal
    product_id: int | None = None


@dataclass
class AllocationLine:
    id: int
    shipment_id: int
    po_id: int
    po_item_id: int
    product_id: int | None
    item_name: str | None
    ordered_quantity: Decimal
    planned_quantity: Decimal
    allocated_quantity: Decimal
    loaded_quantity: Decimal
    remaining_quantity: Decimal
    allocation_mode: str


def to_quantity(value: Any, *, field_name: str = "quantity") -> Decimal:
    if isinstance(value, bool):
        raise ValidationError(message=f"{field_name} must be a number.", details={"field": field_name})
    try:
        qty = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(
            message=f"{field_name} must be a number.",
            details={"field": field_name, "value": str(value)},
        )
    if not qty.is_finite():
        raise ValidationError(message=f"{field_name} must be a finite number.", details={"field": field_name})
    return qty.quantize(QTY_STEP)


def normalize_requests(raw: Iterable[Any] | None) -> list[AllocationRequest]:
    """Accept dicts, pydantic models or AllocationRequest instances."""
    requests: list[AllocationRequest] = []
    for item in raw or []:
        if isinstance(item, AllocationRequest):
            requests.append(item)
            continue
        data = item.model_dump() if hasattr(item, "model_dump") else dict(item)
        po_item_id = data.get("po_item_id")
        if po_item_id in (None, ""):
            raise ValidationError(message="po_item_id is required.", details={"field": "po_item_id"})
        try:
            po_item_id = int(po_item_id)
        except (TypeError, ValueError):
            raise ValidationError(
                message="po_item_id must be an integer.",
                details={"field": "po_item_id", "value": str(po_item_id)},
            )
        product_id = data.get("product_id")
        requests.append(
            AllocationRequest(
                po_item_id=po_item_id,
                quantity=to_quantity(data.get("quantity", 0)),
                product_id=int(product_id) if product_id not in (None, "") else None,
            )
        )
    seen: set[int] = set()
    duplicates: set[int] = set()
    for request in requests:
        if request.po_item_id in seen:
            duplicates.add(request.po_item_id)
        seen.add(request.po_item_id)
    if duplicates:
        raise ValidationError(
            message=f"PO item(s) listed more than once: {', '.join(str(v) for v in sorted(duplicates))}",
            details={"field": "po_item_id", "duplicates": sorted(duplicates)},
        )
    return requests


class AllocationLedger:
    """
    Partitions each PO line's ordered quantity across shipments.

    Works inside the caller's transaction: rows are locked and written here,
    commit/rollback belongs to the caller (see app.services.unit_of_work).
    """

    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def _tolerance() -> Decimal:
        return Decimal(str(settings.ALLOCATION_QTY_TOLERANCE))

    def _lock_shipment(self, shipment_id: int) -> Shipment:
        shipment = self.db.get(Shipment, shipment_id, with_for_update=True)
        if shipment is None:
            raise NotFound(message=f"Shipment {shipment_id} not found.", details={"shipment_id": shipment_id})
        return shipment

    def _lock_po_items(self, po_id: int, po_item_ids: list[int] | None) -> dict[int, PurchaseOrderItem]:
        stmt = select(PurchaseOrderItem).where(PurchaseOrderItem.purchase_order_id == po_id)
        if po_item_ids is not None:
            stmt = stmt.where(PurchaseOrderItem.id.in_(po_item_ids))
        rows = self.db.execute(stmt.order_by(PurchaseOrderItem.id).with_for_update()).scalars().all()
        items = {row.id: row for row in rows}
        if po_item_ids is not None:
            missing = [value for value in po_item_ids if value not in items]
            if missing:
                raise NotFound(
                    message=f"PO item(s) not found on PO {po_id}: {', '.join(str(v) for v in missing)}",
                    details={"po_id": po_id, "po_item_ids": missing},
                )
        return items

    def _lock_ledger_rows(self, po_item_ids: list[int]) -> dict[int, list[ShipmentPoItemAllocation]]:
        by_item: dict[int, list[ShipmentPoItemAllocation]] = {value: [] for value in po_item_ids}
        if not po_item_ids:
            return by_item
        rows = self.db.execute(
            select(ShipmentPoItemAllocation)
            .where(ShipmentPoItemAllocation.po_item_id.in_(po_item_ids))
            .order_by(ShipmentPoItemAllocation.id)
            .with_for_update()
        ).scalars()
        for row in rows:
            by_item[row.po_item_id].append(row)
        return by_item

    def upsert_allocations(
        self,
        shipment_id: int,
        po_id: int | None,
        allocations: Iterable[Any] | None,
        mode: str = "partial",
        flags: AllocationFlags | None = None,
        user_id: str | None = None,
    ) -> int:
        """
        Write one ledger row per requested PO item and return how many were written.

        The availability check compares the requested allocation with what the
        other shipments already hold; remaining_quantity is refreshed on every
        row of each touched item so sibling rows never go stale.
        """
        mode = (mode or "partial").strip().lower()
        if mode not in ALLOCATION_MODES:
            raise ValidationError(
                message="mode must be partial or full.",
                details={"field": "mode", "value": mode},
            )
        flags = flags or AllocationFlags()
        if mode == "full":
            flags = AllocationFlags(
                update_planned=True,
                update_allocated=True,
                update_loaded=flags.update_loaded,
                skip_availability_check=flags.skip_availability_check,
            )

        requests = normalize_requests(allocations)
        for request in requests:
            if request.quantity < ZERO:
                raise ValidationError(
                    message=f"Quantity for PO item {request.po_item_id} must not be negative.",
                    details={"po_item_id": request.po_item_id, "quantity": str(request.quantity)},
                )

        shipment = self._lock_shipment(shipment_id)
        if po_id is None:
            po_id = shipment.po_id
        elif int(po_id) != shipment.po_id:
            raise ValidationError(
                message=f"Shipment {shipment_id} does not belong to PO {po_id}.",
                details={"shipment_id": shipment_id, "po_id": po_id},
            )

        if not requests and mode != "full":
            return 0

        wanted_ids = sorted({request.po_item_id for request in requests}) if requests else None
        items = self._lock_po_items(po_id, wanted_ids)
        ledger = self._lock_ledger_rows(sorted(items))

        if not requests:
            # Full mode without explicit lines: take what is left on every item.
            for item_id, item in items.items():
                others = sum(
                    (row.allocated_quantity or ZERO for row in ledger[item_id] if row.shipment_id != shipment_id),
                    ZERO,
                )
                requests.append(
                    AllocationRequest(
                        po_item_id=item_id,
                        quantity=max(Decimal(item.quantity) - others, ZERO).quantize(QTY_STEP),
                    )
                )

        tolerance = self._tolerance()
        written = 0
        for request in requests:
            item = items[request.po_item_id]
            rows = ledger[request.po_item_id]
            own = next((row for row in rows if row.shipment_id == shipment_id), None)
            ordered = Decimal(item.quantity)
            allocated_by_others = sum(
                (row.allocated_quantity or ZERO for row in rows if row is not own),
                ZERO,
            )

            # The allocated total never exceeds ordered; the skip flag only relaxes loaded writes.
            if flags.update_allocated:
                if allocated_by_others + request.quantity > ordered + tolerance:
                    available = max(ordered - allocated_by_others, ZERO)
                    raise OverAllocation(
                        message=(
                            f"Allocation for PO item {request.po_item_id} exceeds the available "
                            f"quantity ({available} available, {request.quantity} requested)."
                        ),
                        details={
                            "po_item_id": request.po_item_id,
                            "ordered_quantity": str(ordered),
                            "allocated_by_others": str(allocated_by_others),
                            "available_quantity": str(available),
                            "requested_quantity": str(request.quantity),
                        },
                    )
            if flags.update_loaded and not flags.skip_availability_check:
                loaded_by_others = sum(
                    (row.loaded_quantity or ZERO for row in rows if row is not own),
                    ZERO,
                )
                if loaded_by_others + request.quantity > ordered + tolerance:
                    raise OverAllocation(
                        message=(
                            f"Loaded quantity for PO item {request.po_item_id} exceeds the ordered "
                            f"quantity ({max(ordered - loaded_by_others, ZERO)} left to load)."
                        ),
                        details={
                            "po_item_id": request.po_item_id,
                            "ordered_quantity": str(ordered),
                            "loaded_by_others": str(loaded_by_others),
                            "available_quantity": str(max(ordered - loaded_by_others, ZERO)),
                            "requested_quantity": str(request.quantity),
                        },
                    )

            if own is None:
                own = ShipmentPoItemAllocation(
                    shipment_id=shipment_id,
                    po_id=po_id,
                    po_item_id=request.po_item_id,
                    product_id=request.product_id or item.product_id,
                    planned_quantity=ZERO,
                    allocated_quantity=ZERO,
                    loaded_quantity=ZERO,
                    remaining_quantity=ZERO,
                    created_by=user_id,
                )
                self.db.add(own)
                rows.append(own)
            elif request.product_id:
                own.product_id = request.product_id

            if flags.update_planned:
                own.planned_quantity = request.quantity
            if flags.update_allocated:
                own.allocated_quantity = request.quantity
            if flags.update_loaded:
                own.loaded_quantity = request.quantity
            own.po_id = po_id
            own.allocation_mode = mode
            own.updated_by = user_id
            written += 1

        for item_id in {request.po_item_id for request in requests}:
            self._refresh_remaining(items[item_id], ledger[item_id])

        self.db.flush()
        flow_info(
            logger,
            "allocation_upsert shipment_id=%s po_id=%s mode=%s rows=%s planned=%s allocated=%s loaded=%s",
            shipment_id,
            po_id,
            mode,
            written,
            flags.update_planned,
            flags.update_allocated,
            flags.update_loaded,
            category="allocation",
        )
        return written

    @staticmethod
    def _refresh_remaining(item: PurchaseOrderItem, rows: list[ShipmentPoItemAllocation]) -> None:
        total_allocated = sum((row.allocated_quantity or ZERO for row in rows), ZERO)
        remaining = max(Decimal(item.quantity) - total_allocated, ZERO).quantize(QTY_STEP)
        for row in rows:
            row.remaining_quantity = remaining

    def list_allocations(self, shipment_id: int) -> list[AllocationLine]:
        if self.db.get(Shipment, shipment_id) is None:
            raise NotFound(message=f"Shipment {shipment_id} not found.", details={"shipment_id": shipment_id})
        rows = self.db.execute(
            select(ShipmentPoItemAllocation, PurchaseOrderItem)
            .join(PurchaseOrderItem, PurchaseOrderItem.id == ShipmentPoItemAllocation.po_item_id)
            .where(ShipmentPoItemAllocation.shipment_id == shipment_id)
            .order_by(PurchaseOrderItem.item_number, PurchaseOrderItem.id)
        ).all()
        return [
            AllocationLine(
                id=allocation.id,
                shipment_id=allocation.shipment_id,
                po_id=allocation.po_id,
                po_item_id=allocation.po_item_id,
                product_id=allocation.product_id,
                item_name=item.item_name,
                ordered_quantity=Decimal(item.quantity),
                planned_quantity=allocation.planned_quantity,
                allocated_quantity=allocation.allocated_quantity,
                loaded_quantity=allocation.loaded_quantity,
                remaining_quantity=allocation.remaining_quantity,
                allocation_mode=allocation.allocation_mode,
            )
            for allocation, item in rows
        ]
