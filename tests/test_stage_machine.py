from __future__ import annotations

from datetime import date
from decimal import Decimal
import json

from sqlalchemy import select, update

from app.models.allocation import ShipmentPoItemAllocation
from app.models.document import ShipmentDocumentRequirement, ShipmentFile, StageDocumentRequirement
from app.models.history import History, ShipmentStageHistory
from app.models.shipment import Shipment, ShipmentContainer
from app.services import shipment_flow
from app.services.container_tracking import ContainerTrackingFeed, StaticContainerTrackingFeed
from app.services.stages import Stage


SEA_SAILED_FIELDS = {
    "sailing_date": "2026-03-01",
    "confirm_vessel_name": "MSC Aurora",
    "confirm_eta_date": "2026-03-20",
    "bl_no": "BL-778",
    "confirm_shipping_line": "MSC",
    "confirm_discharge_port_agent": "Apapa Agency",
    "supplier_logger_installed": "NO",
}

CLEARED_FIELDS = {
    "firs_date": "2026-03-22",
    "firs_due_date": "2026-03-30",
    "custom_submission_due_date": "2026-04-02",
}

CLOSED_FIELDS = {
    "eir_no": "EIR-1",
    "token_no": "TK-9",
    "transportation_charges": "150.00",
    "closed_comment": "Delivered to warehouse",
}


def _attach(db, shipment, doc, *, is_draft=False, ref_no=None, ref_date=None):
    db.add(
        ShipmentFile(
            shipment_id=shipment.id,
            document_type_id=doc.id,
            is_draft=is_draft,
            file_name=f"{doc.code}.pdf",
            ref_no=ref_no,
            ref_date=ref_date,
        )
    )
    db.commit()


def _history_rows(db, shipment_id):
    return db.execute(
        select(ShipmentStageHistory)
        .where(ShipmentStageHistory.shipment_id == shipment_id)
        .order_by(ShipmentStageHistory.id)
    ).scalars().all()


def _audit_actions(db, shipment_id):
    return [
        row.action
        for row in db.execute(
            select(History).where(History.module == "shipment", History.module_id == shipment_id).order_by(History.id)
        ).scalars()
    ]


def test_skip_forward_is_rejected_and_stage_is_kept(db_session, make_po, make_shipment):
    shipment = make_shipment(make_po(), stage=3)

    result = shipment_flow.transition_stage(db_session, shipment.id, 5, {})

    assert result.ok is False
    assert result.error.code == "SKIP_NOT_ALLOWED"
    assert result.error.status_code == 409
    assert db_session.get(Shipment, shipment.id).shipment_stage_id == 3
    assert _history_rows(db_session, shipment.id) == []


def test_backward_move_is_illegal(db_session, make_po, make_shipment):
    shipment = make_shipment(make_po(), stage=4)

    result = shipment_flow.transition_stage(db_session, shipment.id, 3, {})

    assert result.ok is False
    assert result.error.code == "ILLEGAL_TRANSITION"
    assert db_session.get(Shipment, shipment.id).shipment_stage_id == 4


def test_unknown_stage_and_missing_shipment(db_session, make_po, make_shipment):
    shipment = make_shipment(make_po(), stage=1)

    bad_stage = shipment_flow.transition_stage(db_session, shipment.id, 8, {})
    missing = shipment_flow.transition_stage(db_session, 9999, 2, {})

    assert bad_stage.error.code == "VALIDATION_ERROR"
    assert missing.error.code == "NOT_FOUND"
    assert missing.error.status_code == 404


def test_stage_one_churn_is_not_written_to_stage_history(db_session, make_po, make_shipment):
    shipment = make_shipment(make_po(), stage=1, b2b=2, ss=1)

    edit = shipment_flow.transition_stage(db_session, shipment.id, 1, {"containers_stock_sales": 4})
    assert edit.ok, edit.error
    assert _history_rows(db_session, shipment.id) == []

    refreshed = db_session.get(Shipment, shipment.id)
    assert refreshed.no_containers == 6

    planned = shipment_flow.transition_stage(
        db_session,
        shipment.id,
        2,
        {"shipper": "Acme Foods", "etd_date": "2026-02-10", "freight_payment_terms": "PREPAID"},
    )
    assert planned.ok, planned.error
    assert planned.value.from_stage == 1
    assert planned.value.to_stage == 2

    rows = _history_rows(db_session, shipment.id)
    assert [(row.from_stage_id, row.to_stage_id) for row in rows] == [(1, 2)]
    assert json.loads(rows[0].payload_json)["fields"]["shipper"] == "Acme Foods"
    assert _audit_actions(db_session, shipment.id) == ["STAGE_DETAILS_UPDATED", "STAGE_CHANGED"]

    refreshed = db_session.get(Shipment, shipment.id)
    assert refreshed.shipment_stage_id == 2
    assert refreshed.etd_date == date(2026, 2, 10)


def test_payload_type_errors_name_the_fields(db_session, make_po, make_shipment):
    shipment = make_shipment(make_po(), stage=1)

    result = shipment_flow.transition_stage(
        db_session, shipment.id, 2, {"etd_date": "not-a-date", "free_time": -3}
    )

    assert result.error.code == "VALIDATION_ERROR"
    invalid = {item["field"] for item in result.error.details["invalid_fields"]}
    assert invalid == {"etd_date", "free_time"}


def test_fields_of_another_stage_are_rejected(db_session, make_po, make_shipment):
    shipment = make_shipment(make_po(), stage=1)

    result = shipment_flow.transition_stage(db_session, shipment.id, 2, {"bl_no": "BL-1"})

    assert result.error.code == "VALIDATION_ERROR"
    assert result.error.details["invalid_fields"][0]["field"] == "bl_no"


def test_underloading_rejects_duplicate_container_numbers(db_session, make_po, make_shipment):
    shipment = make_shipment(make_po(), stage=2)

    result = shipment_flow.transition_stage(
        db_session,
        shipment.id,
        3,
        {"containers": [{"container_no": "MSCU1234567"}, {"container_no": "mscu 1234567"}]},
    )

    assert result.error.code == "VALIDATION_ERROR"
    assert result.error.details["duplicates"] == ["MSCU1234567"]
    assert db_session.get(Shipment, shipment.id).shipment_stage_id == 2


def test_underloading_books_loaded_quantity_only(db_session, make_po, make_shipment):
    po = make_po(quantities=(100,))
    shipment = make_shipment(po, stage=2)
    item_id = po.items[0].id
    booked = shipment_flow.upsert_allocations(
        db_session,
        shipment.id,
        [{"po_item_id": item_id, "quantity": 60}],
        "partial",
    )
    assert booked.ok, booked.error

    result = shipment_flow.transition_stage(
        db_session,
        shipment.id,
        3,
        {
            "vessel_name": "MSC Aurora",
            "containers": [{"container_no": "MSCU1234567", "seal_no": "S1"}],
            "loaded_allocations": [{"po_item_id": item_id, "quantity": "55"}],
        },
    )
    assert result.ok, result.error

    row = db_session.execute(
        select(ShipmentPoItemAllocation).where(ShipmentPoItemAllocation.shipment_id == shipment.id)
    ).scalar_one()
    assert row.allocated_quantity == Decimal("60")
    assert row.loaded_quantity == Decimal("55")
    assert row.remaining_quantity == Decimal("40")

    containers = db_session.execute(
        select(ShipmentContainer).where(ShipmentContainer.shipment_id == shipment.id)
    ).scalars().all()
    assert [(c.container_no, c.seal_no) for c in containers] == [("MSCU1234567", "S1")]


def test_sailed_sea_requires_mode_specific_fields(db_session, make_po, make_shipment):
    shipment = make_shipment(make_po(), stage=3)

    result = shipment_flow.transition_stage(
        db_session,
        shipment.id,
        4,
        {"sailing_date": "2026-03-01", "supplier_logger_installed": "NO"},
    )

    assert result.error.code == "VALIDATION_ERROR"
    assert result.error.missing_requirements == [
        "Vessel name",
        "ETA",
        "BL no",
        "Shipping line",
        "POD agent",
    ]


def test_sailed_air_uses_flight_fields(db_session, make_po, make_shipment):
    shipment = make_shipment(make_po(transport_mode="AIR"), stage=3)

    result = shipment_flow.transition_stage(
        db_session,
        shipment.id,
        4,
        {
            "sailing_date": "2026-03-01",
            "confirm_departure_time": "10:30",
            "confirm_airway_bill_no": "AWB-1",
            "confirm_flight_no": "EK783",
            "confirm_airline": "Emirates",
            "confirm_arrival_date": "2026-03-02",
            "supplier_logger_installed": "no",
        },
    )

    assert result.error.code == "VALIDATION_ERROR"
    assert result.error.missing_requirements == ["Arrival time"]


def test_sailed_extras_reason_courier_and_loggers(db_session, make_po, make_shipment):
    shipment = make_shipment(make_po(), stage=3, confirm_sailing_date=date(2026, 2, 25))

    fields = dict(SEA_SAILED_FIELDS)
    fields.update(
        {
            "original_doc_receipt_mode": "Courier",
            "supplier_logger_installed": "YES",
            "loggers": [{"serial_no": "LG-1", "installation_place": ""}],
        }
    )
    result = shipment_flow.transition_stage(db_session, shipment.id, 4, fields)

    assert result.error.code == "VALIDATION_ERROR"
    assert result.error.missing_requirements == [
        "Reason for sailing date difference",
        "Courier no",
        "Courier company",
        "Logger installation place (row 1)",
    ]

    fields.update(
        {
            "reason_diff_sailing": "Vessel delayed",
            "doc_receipt_courier_no": "DHL-1",
            "doc_receipt_courier_company": "DHL",
            "loggers": [{"serial_no": "LG-1", "installation_place": "Door side"}],
        }
    )
    result = shipment_flow.transition_stage(db_session, shipment.id, 4, fields)
    assert result.ok, result.error

    refreshed = db_session.get(Shipment, shipment.id)
    assert refreshed.shipment_stage_id == 4
    assert refreshed.logger_count == 1
    assert refreshed.temperature_loggers[0].serial_no == "LG-1"


def test_sailed_stage_documents_are_presence_checked(db_session, make_po, make_shipment, doc_type):
    shipment = make_shipment(make_po(), stage=3)
    bl = doc_type("bl_copy", "Bill of Lading")
    db_session.add(StageDocumentRequirement(shipment_stage=4, document_type_id=bl.id, is_required=True))
    db_session.commit()

    blocked = shipment_flow.transition_stage(db_session, shipment.id, 4, SEA_SAILED_FIELDS)
    assert blocked.error.code == "DOCUMENT_REQUIREMENT_UNMET"
    assert blocked.error.status_code == 422
    assert blocked.error.missing_requirements == ["Bill of Lading"]

    _attach(db_session, shipment, bl, is_draft=True)
    passed = shipment_flow.transition_stage(db_session, shipment.id, 4, SEA_SAILED_FIELDS)
    assert passed.ok, passed.error


def test_in_place_edit_revalidates_stage_requirements(db_session, make_po, make_shipment):
    shipment = make_shipment(make_po(), stage=3)
    assert shipment_flow.transition_stage(db_session, shipment.id, 4, SEA_SAILED_FIELDS).ok

    rejected = shipment_flow.transition_stage(db_session, shipment.id, 4, {"bl_no": "  "})
    assert rejected.error.code == "VALIDATION_ERROR"
    assert rejected.error.missing_requirements == ["BL no"]
    assert db_session.get(Shipment, shipment.id).bl_no == "BL-778"

    accepted = shipment_flow.transition_stage(db_session, shipment.id, 4, {"bl_no": "BL-779"})
    assert accepted.ok, accepted.error
    assert db_session.get(Shipment, shipment.id).bl_no == "BL-779"

    rows = _history_rows(db_session, shipment.id)
    assert [(row.from_stage_id, row.to_stage_id) for row in rows] == [(3, 4), (4, 4)]
    for row in rows:
        assert row.to_stage_id in (row.from_stage_id, row.from_stage_id + 1)
    assert _audit_actions(db_session, shipment.id)[-1] == "STAGE_DETAILS_UPDATED"


def _sailed_shipment(make_po, make_shipment, **columns):
    return make_shipment(make_po(), stage=4, sailing_date=date(2026, 3, 1), **columns)


def test_cleared_lists_missing_firs_attachment_and_dry_run_writes_nothing(
    db_session, make_po, make_shipment, doc_type
):
    shipment = _sailed_shipment(make_po, make_shipment)
    doc_type("firs_attachment", "FIRS")
    original = doc_type("original_document_cleared", "Original customs document")
    _attach(db_session, shipment, original)

    preview = shipment_flow.transition_stage(db_session, shipment.id, 5, CLEARED_FIELDS, dry_run=True)
    assert preview.ok, preview.error
    assert preview.value.dry_run is True
    assert preview.value.ready is False
    assert preview.value.missing_requirements == ["FIRS attachment"]

    result = shipment_flow.transition_stage(db_session, shipment.id, 5, CLEARED_FIELDS)
    assert result.ok is False
    assert result.error.code == "DOCUMENT_REQUIREMENT_UNMET"
    assert result.error.missing_requirements == preview.value.missing_requirements

    refreshed = db_session.get(Shipment, shipment.id)
    assert refreshed.shipment_stage_id == 4
    assert refreshed.cleared_date is None
    assert refreshed.firs_date is None


def test_cleared_checks_statutory_items_in_order(db_session, make_po, make_shipment, doc_type):
    shipment = make_shipment(make_po(), stage=4, is_mofa_required=True)
    invoice = doc_type("commercial_invoice", "Commercial Invoice")
    packing = doc_type("packing_list", "Packing List")
    db_session.add(ShipmentDocumentRequirement(shipment_id=shipment.id, document_type_id=invoice.id))
    db_session.add(StageDocumentRequirement(shipment_stage=5, document_type_id=packing.id, is_required=True))
    db_session.commit()
    _attach(db_session, shipment, invoice, is_draft=True)

    preview = shipment_flow.transition_stage(db_session, shipment.id, 5, {}, dry_run=True)

    assert preview.value.missing_requirements == [
        "Sailing date",
        "FIRS attachment",
        "FIRS date",
        "FIRS due date",
        "MOFA attachment",
        "MOFA due date",
        "Original document",
        "Customs submission due date",
        "Commercial Invoice",
        "Packing List",
    ]


def test_cleared_without_document_gaps_is_a_validation_error(db_session, make_po, make_shipment, doc_type):
    shipment = _sailed_shipment(make_po, make_shipment)
    _attach(db_session, shipment, doc_type("firs_attachment", "FIRS"))
    _attach(db_session, shipment, doc_type("original_document_cleared", "Original customs document"))

    result = shipment_flow.transition_stage(db_session, shipment.id, 5, {"firs_date": "2026-03-22"})

    assert result.error.code == "VALIDATION_ERROR"
    assert result.error.missing_requirements == ["FIRS due date", "Customs submission due date"]


def test_cleared_transition_sets_cleared_date(db_session, make_po, make_shipment, doc_type):
    shipment = _sailed_shipment(make_po, make_shipment)
    _attach(db_session, shipment, doc_type("firs_attachment", "FIRS"))
    _attach(db_session, shipment, doc_type("original_document_cleared", "Original customs document"))

    result = shipment_flow.transition_stage(db_session, shipment.id, 5, CLEARED_FIELDS)

    assert result.ok, result.error
    refreshed = db_session.get(Shipment, shipment.id)
    assert refreshed.shipment_stage_id == 5
    assert refreshed.cleared_date == date.today()
    assert refreshed.firs_due_date == date(2026, 3, 30)
    assert [(r.from_stage_id, r.to_stage_id) for r in _history_rows(db_session, shipment.id)] == [(4, 5)]


def test_closed_requires_reference_metadata_and_records_tracking_status(
    db_session, make_po, make_shipment, doc_type
):
    shipment = make_shipment(make_po(), stage=5)
    db_session.add(ShipmentContainer(shipment_id=shipment.id, container_no="MSCU1234567"))
    bl = doc_type("bl_copy", "Bill of Lading")
    db_session.add(ShipmentDocumentRequirement(shipment_id=shipment.id, document_type_id=bl.id))
    db_session.commit()
    _attach(db_session, shipment, bl, ref_no=None)

    feed = StaticContainerTrackingFeed({"MSCU1234567": "Empty returned"})
    blocked = shipment_flow.transition_stage(db_session, shipment.id, 6, CLOSED_FIELDS, tracking_feed=feed)
    assert blocked.error.code == "DOCUMENT_REQUIREMENT_UNMET"
    assert blocked.error.missing_requirements == ["Bill of Lading (reference no and date)"]

    _attach(db_session, shipment, bl, ref_no="BL-778", ref_date=date(2026, 3, 1))
    result = shipment_flow.transition_stage(db_session, shipment.id, 6, CLOSED_FIELDS, tracking_feed=feed)
    assert result.ok, result.error

    refreshed = db_session.get(Shipment, shipment.id)
    assert refreshed.closed_date == date.today()
    assert refreshed.transportation_charges == Decimal("150.00")
    assert refreshed.containers[0].tracking_status == "Empty returned"
    assert refreshed.containers[0].tracking_checked_at is not None


def test_closed_requires_a_configured_document_set(db_session, make_po, make_shipment):
    shipment = make_shipment(make_po(), stage=5)

    blocked = shipment_flow.transition_stage(db_session, shipment.id, 6, CLOSED_FIELDS)

    assert blocked.error.code == "DOCUMENT_REQUIREMENT_UNMET"
    assert blocked.error.missing_requirements == ["Required documents (configure in Planned)"]
    assert db_session.get(Shipment, shipment.id).shipment_stage_id == 5


def test_closed_rejects_negative_charges(db_session, make_po, make_shipment):
    shipment = make_shipment(make_po(), stage=5)
    fields = dict(CLOSED_FIELDS, transportation_charges="-1")

    result = shipment_flow.transition_stage(db_session, shipment.id, 6, fields)

    assert result.error.code == "VALIDATION_ERROR"
    assert result.error.details["invalid_fields"][0]["field"] == "transportation_charges"


def test_archive_requires_comment(db_session, make_po, make_shipment):
    shipment = make_shipment(make_po(), stage=6)

    missing = shipment_flow.transition_stage(db_session, shipment.id, 7, {})
    assert missing.error.missing_requirements == ["Archive comment"]

    archived = shipment_flow.transition_stage(db_session, shipment.id, 7, {"archive_comment": "Done"})
    assert archived.ok, archived.error
    refreshed = db_session.get(Shipment, shipment.id)
    assert refreshed.shipment_stage_id == Stage.ARCHIVE
    assert refreshed.archive_date == date.today()


class _RacingFeed(ContainerTrackingFeed):
    """Moves the shipment on through another session while statuses are fetched."""

    def __init__(self, session_factory, shipment_id):
        self.session_factory = session_factory
        self.shipment_id = shipment_id

    def get_status(self, container_no):
        other = self.session_factory()
        try:
            other.execute(
                update(Shipment).where(Shipment.id == self.shipment_id).values(shipment_stage_id=6)
            )
            other.commit()
        finally:
            other.close()
        return None


def test_stage_changed_while_gathering_is_a_concurrency_conflict(
    db_session, session_factory, make_po, make_shipment, doc_type
):
    shipment = make_shipment(make_po(), stage=5)
    db_session.add(ShipmentContainer(shipment_id=shipment.id, container_no="MSCU7654321"))
    bl = doc_type("bl_copy", "Bill of Lading")
    db_session.add(ShipmentDocumentRequirement(shipment_id=shipment.id, document_type_id=bl.id))
    db_session.commit()
    _attach(db_session, shipment, bl, ref_no="BL-901", ref_date=date(2026, 3, 2))

    result = shipment_flow.transition_stage(
        db_session,
        shipment.id,
        6,
        CLOSED_FIELDS,
        tracking_feed=_RacingFeed(session_factory, shipment.id),
    )

    assert result.ok is False
    assert result.error.code == "CONCURRENCY_CONFLICT"
    refreshed = db_session.get(Shipment, shipment.id)
    assert refreshed.shipment_stage_id == 6
    assert refreshed.eir_no is None
