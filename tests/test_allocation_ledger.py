from __future__ import annotations

from decimal import Decimal

import pytest
from sqlalchemy import func, select

from app.core.config import settings
from app.models.allocation import ShipmentPoItemAllocation
from app.services import shipment_flow
from app.services.allocation_ledger import AllocationFlags, AllocationLedger
from app.services.errors import NotFound, OverAllocation, ValidationError


def _rows(db, po_item_id):
    return db.execute(
        select(ShipmentPoItemAllocation)
        .where(ShipmentPoItemAllocation.po_item_id == po_item_id)
        .order_by(ShipmentPoItemAllocation.shipment_id)
    ).scalars().all()


def test_over_allocation_is_rejected_with_available_quantity(db_session, make_po, make_shipment):
    po = make_po(quantities=(100,))
    item_id = po.items[0].id
    ship_a = make_shipment(po, stage=2)
    ship_b = make_shipment(po, stage=2)

    first = shipment_flow.upsert_allocations(db_session, ship_a.id, [{"po_item_id": item_id, "quantity": 60}])
    assert first.ok, first.error
    assert [row.remaining_quantity for row in _rows(db_session, item_id)] == [Decimal("40")]

    rejected = shipment_flow.upsert_allocations(db_session, ship_b.id, [{"po_item_id": item_id, "quantity": 50}])
    assert rejected.ok is False
    assert isinstance(rejected.error, OverAllocation)
    assert Decimal(rejected.error.details["available_quantity"]) == Decimal("40")
    assert Decimal(rejected.error.details["requested_quantity"]) == Decimal("50")
    assert len(_rows(db_session, item_id)) == 1

    accepted = shipment_flow.upsert_allocations(db_session, ship_b.id, [{"po_item_id": item_id, "quantity": 40}])
    assert accepted.ok, accepted.error
    assert accepted.value.updated_count == 1

    rows = _rows(db_session, item_id)
    assert [row.allocated_quantity for row in rows] == [Decimal("60"), Decimal("40")]
    # Sibling rows are refreshed too.
    assert [row.remaining_quantity for row in rows] == [Decimal("0"), Decimal("0")]


def test_upsert_is_idempotent(db_session, make_po, make_shipment):
    po = make_po(quantities=(100, 20))
    shipment = make_shipment(po, stage=2)
    payload = [
        {"po_item_id": po.items[0].id, "quantity": "30.5"},
        {"po_item_id": po.items[1].id, "quantity": 20},
    ]

    for _ in range(2):
        result = shipment_flow.upsert_allocations(
            db_session,
            shipment.id,
            payload,
            flags=AllocationFlags(update_planned=True, update_allocated=True),
        )
        assert result.ok, result.error

    count = db_session.execute(
        select(func.count(ShipmentPoItemAllocation.id)).where(ShipmentPoItemAllocation.shipment_id == shipment.id)
    ).scalar()
    assert count == 2
    first, second = _rows(db_session, po.items[0].id)[0], _rows(db_session, po.items[1].id)[0]
    assert (first.planned_quantity, first.allocated_quantity, first.remaining_quantity) == (
        Decimal("30.5"),
        Decimal("30.5"),
        Decimal("69.5"),
    )
    assert second.remaining_quantity == Decimal("0")


def test_flags_update_fields_independently(db_session, make_po, make_shipment):
    po = make_po(quantities=(100,))
    item_id = po.items[0].id
    shipment = make_shipment(po, stage=3)
    ledger = AllocationLedger(db_session)

    ledger.upsert_allocations(
        shipment.id,
        po.id,
        [{"po_item_id": item_id, "quantity": 70}],
        flags=AllocationFlags(update_planned=True, update_allocated=True),
    )
    ledger.upsert_allocations(
        shipment.id,
        po.id,
        [{"po_item_id": item_id, "quantity": 65}],
        flags=AllocationFlags(update_allocated=False, update_loaded=True),
    )
    db_session.commit()

    row = _rows(db_session, item_id)[0]
    assert row.planned_quantity == Decimal("70")
    assert row.allocated_quantity == Decimal("70")
    assert row.loaded_quantity == Decimal("65")
    assert row.remaining_quantity == Decimal("30")


def test_skip_flag_never_lets_allocated_exceed_ordered(db_session, make_po, make_shipment):
    po = make_po(quantities=(100,))
    item_id = po.items[0].id
    ship_a = make_shipment(po, stage=2)
    ship_b = make_shipment(po, stage=2)
    assert shipment_flow.upsert_allocations(db_session, ship_a.id, [{"po_item_id": item_id, "quantity": 60}]).ok

    result = shipment_flow.upsert_allocations(
        db_session,
        ship_b.id,
        [{"po_item_id": item_id, "quantity": 90}],
        flags=AllocationFlags(update_allocated=True, skip_availability_check=True),
    )

    assert isinstance(result.error, OverAllocation)
    assert sum(row.allocated_quantity for row in _rows(db_session, item_id)) == Decimal("60")


def test_loaded_quantity_is_capped_unless_skipped(db_session, make_po, make_shipment):
    po = make_po(quantities=(10,))
    item_id = po.items[0].id
    shipment = make_shipment(po, stage=3)
    loaded_only = [{"po_item_id": item_id, "quantity": 12}]

    capped = shipment_flow.upsert_allocations(
        db_session, shipment.id, loaded_only, flags=AllocationFlags(update_allocated=False, update_loaded=True)
    )
    assert capped.error.code == "OVER_ALLOCATION"

    skipped = shipment_flow.upsert_allocations(
        db_session,
        shipment.id,
        loaded_only,
        flags=AllocationFlags(update_allocated=False, update_loaded=True, skip_availability_check=True),
    )
    assert skipped.ok, skipped.error
    row = _rows(db_session, item_id)[0]
    assert (row.allocated_quantity, row.loaded_quantity) == (Decimal("0"), Decimal("12"))
    assert row.remaining_quantity == Decimal("10")


def test_tolerance_absorbs_rounding_noise(db_session, make_po, make_shipment, monkeypatch):
    monkeypatch.setattr(settings, "ALLOCATION_QTY_TOLERANCE", 0.01)
    po = make_po(quantities=(10,))
    shipment = make_shipment(po, stage=2)

    result = shipment_flow.upsert_allocations(
        db_session, shipment.id, [{"po_item_id": po.items[0].id, "quantity": "10.005"}]
    )

    assert result.ok, result.error


def test_full_mode_allocates_whatever_is_left(db_session, make_po, make_shipment):
    po = make_po(quantities=(100, 50))
    other = make_shipment(po, stage=2)
    shipment = make_shipment(po, stage=2)
    assert shipment_flow.upsert_allocations(
        db_session, other.id, [{"po_item_id": po.items[0].id, "quantity": 25}]
    ).ok

    result = shipment_flow.upsert_allocations(db_session, shipment.id, [], "full")

    assert result.ok, result.error
    assert result.value.updated_count == 2
    lines = AllocationLedger(db_session).list_allocations(shipment.id)
    assert [(line.po_item_id, line.planned_quantity, line.allocated_quantity) for line in lines] == [
        (po.items[0].id, Decimal("75"), Decimal("75")),
        (po.items[1].id, Decimal("50"), Decimal("50")),
    ]
    assert all(line.allocation_mode == "full" for line in lines)
    assert all(line.remaining_quantity == Decimal("0") for line in lines)


def test_rejects_bad_requests(db_session, make_po, make_shipment):
    po = make_po(quantities=(10,))
    other_po = make_po(quantities=(10,))
    shipment = make_shipment(po, stage=2)
    ledger = AllocationLedger(db_session)

    with pytest.raises(ValidationError):
        ledger.upsert_allocations(shipment.id, po.id, [{"po_item_id": po.items[0].id, "quantity": -1}])
    with pytest.raises(NotFound):
        ledger.upsert_allocations(shipment.id, po.id, [{"po_item_id": other_po.items[0].id, "quantity": 1}])
    with pytest.raises(ValidationError):
        ledger.upsert_allocations(shipment.id, other_po.id, [{"po_item_id": other_po.items[0].id, "quantity": 1}])
    with pytest.raises(NotFound):
        ledger.upsert_allocations(9999, po.id, [{"po_item_id": po.items[0].id, "quantity": 1}])
    with pytest.raises(ValidationError) as duplicated:
        ledger.upsert_allocations(
            shipment.id,
            po.id,
            [{"po_item_id": po.items[0].id, "quantity": 1}, {"po_item_id": po.items[0].id, "quantity": 2}],
        )
    assert duplicated.value.details["duplicates"] == [po.items[0].id]
    db_session.rollback()


def test_sum_of_allocations_never_exceeds_ordered(db_session, make_po, make_shipment):
    po = make_po(quantities=(30,))
    item_id = po.items[0].id
    shipments = [make_shipment(po, stage=2) for _ in range(4)]

    for shipment in shipments:
        shipment_flow.upsert_allocations(db_session, shipment.id, [{"po_item_id": item_id, "quantity": 9}])

    rows = _rows(db_session, item_id)
    assert sum(row.allocated_quantity for row in rows) <= Decimal("30")
    assert len(rows) == 3
    assert {row.remaining_quantity for row in rows} == {Decimal("3")}
