"""
Per-stage payload models and entry rules.

Each stage has one StageRule in STAGE_RULES. A rule parses the stage payload,
reports what is still missing before the shipment may enter (or stay in) the
stage, and applies the payload to the shipment once the write transaction
holds the row lock.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from app.core.config import settings
from app.models.shipment import Shipment, ShipmentContainer, ShipmentTemperatureLogger
from app.services.allocation_ledger import AllocationFlags, AllocationLedger
from app.services.container_tracking import normalize_container_no
from app.services.document_requirements import DocumentRequirementChecker
from app.services.errors import ValidationError
from app.services.stages import Stage

FIRS_ATTACHMENT_CODE = "firs_attachment"
MOFA_ATTACHMENT_CODE = "mofa_attachment"
ORIGINAL_DOCUMENT_CODE = "original_document_cleared"
NO_CONFIGURED_DOCUMENTS_LABEL = "Required documents (configure in Planned)"


class StagePayload(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


class TodoFields(StagePayload):
    containers_back_to_back: int | None = Field(default=None, ge=0)
    containers_stock_sales: int | None = Field(default=None, ge=0)


class PlannedFields(StagePayload):
    shipper: str | None = None
    consignee: str | None = None
    notify_party: str | None = None
    bl_description: str | None = None
    bl_type: str | None = None
    free_time: int | None = Field(default=None, ge=0)
    freight_payment_terms: str | None = None
    freight_amount_if_payable: Decimal | None = Field(default=None, ge=0)
    freight_amount_currency_id: int | None = None
    discharge_port_agent: str | None = None
    etd_date: date | None = None
    eta_date: date | None = None
    confirm_sailing_date: date | None = None
    vessel_name: str | None = None
    shipping_line_name: str | None = None
    departure_time: str | None = None
    airline: str | None = None
    flight_no: str | None = None
    arrival_date: date | None = None
    arrival_time: str | None = None


# Planned details a split child inherits from its parent.
PLANNED_DETAIL_FIELDS: tuple[str, ...] = tuple(PlannedFields.model_fields)


class ContainerRow(StagePayload):
    container_no: str | None = None
    seal_no: str | None = None


class LoadedAllocation(StagePayload):
    po_item_id: int
    quantity: Decimal = Field(ge=0)
    product_id: int | None = None


class UnderloadingFields(StagePayload):
    etd_date: date | None = None
    vessel_name: str | None = None
    eta_date: date | None = None
    containers: list[ContainerRow] | None = None
    loaded_allocations: list[LoadedAllocation] | None = None


class LoggerRow(StagePayload):
    serial_no: str | None = None
    installation_place: str | None = None


class SailedFields(StagePayload):
    sailing_date: date | None = None
    reason_diff_sailing: str | None = None
    confirm_vessel_name: str | None = None
    confirm_eta_date: date | None = None
    bl_no: str | None = None
    confirm_shipping_line: str | None = None
    confirm_discharge_port_agent: str | None = None
    confirm_free_time: int | None = Field(default=None, ge=0)
    confirm_departure_time: str | None = None
    confirm_airway_bill_no: str | None = None
    confirm_flight_no: str | None = None
    confirm_airline: str | None = None
    confirm_arrival_date: date | None = None
    confirm_arrival_time: str | None = None
    is_mofa_required: bool | None = None
    original_doc_receipt_mode: Literal["person", "courier"] | None = None
    doc_receipt_person_name: str | None = None
    doc_receipt_person_contact: str | None = None
    doc_receipt_courier_no: str | None = None
    doc_receipt_courier_company: str | None = None
    doc_receipt_tracking_link: str | None = None
    supplier_logger_installed: Literal["YES", "NO"] | None = None
    loggers: list[LoggerRow] | None = None

    @field_validator("original_doc_receipt_mode", mode="before")
    @classmethod
    def _lower_mode(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower() or None
        return value

    @field_validator("supplier_logger_installed", mode="before")
    @classmethod
    def _upper_flag(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().upper() or None
        return value


class ClearedFields(StagePayload):
    cleared_date: date | None = None
    do_no: str | None = None
    do_validity_date: date | None = None
    boe_no: str | None = None
    boe_date: date | None = None
    firs_no: str | None = None
    firs_date: date | None = None
    firs_due_date: date | None = None
    mofa_due_date: date | None = None
    custom_submission_due_date: date | None = None
    is_transport_required: bool | None = None
    transporter_name: str | None = None
    hauler_code: str | None = None
    transport_from_place: str | None = None
    transport_to_place: str | None = None


class ClosedFields(StagePayload):
    eir_no: str | None = None
    token_no: str | None = None
    transportation_charges: Decimal | None = Field(default=None, ge=0)
    returned_date: date | None = None
    closed_comment: str | None = None


class ArchiveFields(StagePayload):
    archive_comment: str | None = None


@dataclass
class RequirementReport:
    """Ordered list of unmet requirements for entering a stage."""

    missing: list[str] = field(default_factory=list)
    document_issue: bool = False

    def add_field(self, label: str) -> None:
        self.missing.append(label)

    def add_documents(self, labels: list[str]) -> None:
        if labels:
            self.missing.extend(labels)
            self.document_issue = True

    @property
    def ok(self) -> bool:
        return not self.missing


@dataclass
class StageContext:
    shipment: Shipment
    payload: StagePayload
    checker: DocumentRequirementChecker
    from_stage: int
    to_stage: int
    today: date = field(default_factory=date.today)
    user_id: str | None = None
    ledger: AllocationLedger | None = None
    tracking_statuses: dict[str, str | None] = field(default_factory=dict)

    @property
    def is_edit(self) -> bool:
        return self.from_stage == self.to_stage

    def provided(self, name: str) -> bool:
        return name in self.payload.model_fields_set

    def effective(self, name: str) -> Any:
        """Payload value when sent, otherwise what the shipment already holds."""
        if self.provided(name):
            return getattr(self.payload, name)
        return getattr(self.shipment, name, None)


def _present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


def _field_path(loc: tuple[Any, ...]) -> str:
    return ".".join(str(part) for part in loc)


class StageRule:
    stage: Stage
    payload_model: type[StagePayload] = StagePayload
    # Payload keys that are not plain shipment columns.
    collection_fields: frozenset[str] = frozenset()
    uses_container_tracking = False

    def parse(self, fields: dict[str, Any] | None) -> StagePayload:
        try:
            return self.payload_model.model_validate(fields or {})
        except PydanticValidationError as exc:
            invalid = [
                {"field": _field_path(err["loc"]), "message": err["msg"]}
                for err in exc.errors()
            ]
            raise ValidationError(
                message="Invalid {} fields: {}".format(
                    self.stage.label, ", ".join(item["field"] for item in invalid)
                ),
                details={"stage_id": int(self.stage), "invalid_fields": invalid},
            ) from exc

    def check(self, ctx: StageContext) -> RequirementReport:
        return RequirementReport()

    def _require(self, ctx: StageContext, report: RequirementReport, labels: dict[str, str]) -> None:
        for name, label in labels.items():
            if not _present(ctx.effective(name)):
                report.add_field(label)

    def apply(self, ctx: StageContext) -> None:
        for name in sorted(ctx.payload.model_fields_set - self.collection_fields):
            setattr(ctx.shipment, name, getattr(ctx.payload, name))


class TodoRule(StageRule):
    stage = Stage.TODO
    payload_model = TodoFields

    def apply(self, ctx: StageContext) -> None:
        super().apply(ctx)
        shipment = ctx.shipment
        shipment.no_containers = (shipment.containers_back_to_back or 0) + (
            shipment.containers_stock_sales or 0
        )


class PlannedRule(StageRule):
    stage = Stage.PLANNED
    payload_model = PlannedFields


class UnderloadingRule(StageRule):
    stage = Stage.UNDERLOADING
    payload_model = UnderloadingFields
    collection_fields = frozenset({"containers", "loaded_allocations"})

    def check(self, ctx: StageContext) -> RequirementReport:
        report = RequirementReport()
        payload: UnderloadingFields = ctx.payload  # type: ignore[assignment]
        seen: dict[str, int] = {}
        duplicates: list[str] = []
        for index, row in enumerate(payload.containers or [], start=1):
            container_no = normalize_container_no(row.container_no)
            if not container_no:
                report.add_field(f"Container no (row {index})")
                continue
            if container_no in seen and container_no not in duplicates:
                duplicates.append(container_no)
            seen[container_no] = index
        if duplicates:
            raise ValidationError(
                message=f"Duplicate container numbers: {', '.join(duplicates)}",
                details={"field": "containers", "duplicates": duplicates},
            )
        return report

    def apply(self, ctx: StageContext) -> None:
        super().apply(ctx)
        payload: UnderloadingFields = ctx.payload  # type: ignore[assignment]
        shipment = ctx.shipment
        if payload.containers is not None:
            existing = {normalize_container_no(c.container_no): c for c in shipment.containers}
            rows = []
            for row in payload.containers:
                container_no = normalize_container_no(row.container_no)
                container = existing.get(container_no) or ShipmentContainer(container_no=container_no)
                container.seal_no = row.seal_no
                rows.append(container)
            shipment.containers = rows
        if payload.loaded_allocations and ctx.ledger is not None:
            ctx.ledger.upsert_allocations(
                shipment.id,
                shipment.po_id,
                payload.loaded_allocations,
                mode="partial",
                flags=AllocationFlags(update_allocated=False, update_loaded=True, skip_availability_check=True),
                user_id=ctx.user_id,
            )


SEA_SAILED_FIELDS = {
    "sailing_date": "Sailing date",
    "confirm_vessel_name": "Vessel name",
    "confirm_eta_date": "ETA",
    "bl_no": "BL no",
    "confirm_shipping_line": "Shipping line",
    "confirm_discharge_port_agent": "POD agent",
}

AIR_SAILED_FIELDS = {
    "sailing_date": "Departure date",
    "confirm_departure_time": "Departure time",
    "confirm_airway_bill_no": "AWB no",
    "confirm_flight_no": "Flight no",
    "confirm_airline": "Airline",
    "confirm_arrival_date": "Arrival date",
    "confirm_arrival_time": "Arrival time",
}


class SailedRule(StageRule):
    stage = Stage.SAILED
    payload_model = SailedFields
    collection_fields = frozenset({"loggers"})

    def _logger_rows(self, ctx: StageContext) -> list[LoggerRow]:
        payload: SailedFields = ctx.payload  # type: ignore[assignment]
        if ctx.provided("loggers"):
            return list(payload.loggers or [])
        return [
            LoggerRow(serial_no=row.serial_no, installation_place=row.installation_place)
            for row in ctx.shipment.temperature_loggers
        ]

    def check(self, ctx: StageContext) -> RequirementReport:
        report = RequirementReport()
        is_air = (ctx.shipment.transport_mode or "").upper() == "AIR"
        self._require(ctx, report, AIR_SAILED_FIELDS if is_air else SEA_SAILED_FIELDS)

        sailed = ctx.effective("sailing_date")
        confirmed = ctx.shipment.confirm_sailing_date
        if confirmed and sailed and sailed != confirmed:
            self._require(ctx, report, {"reason_diff_sailing": "Reason for sailing date difference"})

        if ctx.effective("original_doc_receipt_mode") == "courier":
            self._require(
                ctx,
                report,
                {
                    "doc_receipt_courier_no": "Courier no",
                    "doc_receipt_courier_company": "Courier company",
                },
            )

        installed = ctx.effective("supplier_logger_installed")
        if not _present(installed):
            report.add_field("Supplier logger installed")
        elif installed == "YES":
            rows = self._logger_rows(ctx)
            if not rows or len(rows) > settings.LOGGER_MAX_COUNT:
                report.add_field(f"Temperature loggers (1-{settings.LOGGER_MAX_COUNT} rows)")
            for index, row in enumerate(rows, start=1):
                if not _present(row.serial_no):
                    report.add_field(f"Logger serial no (row {index})")
                if not _present(row.installation_place):
                    report.add_field(f"Logger installation place (row {index})")

        report.add_documents(ctx.checker.get_missing_required_docs(ctx.shipment.id, Stage.SAILED))
        return report

    def apply(self, ctx: StageContext) -> None:
        super().apply(ctx)
        shipment = ctx.shipment
        installed = ctx.effective("supplier_logger_installed")
        if installed == "NO":
            shipment.temperature_loggers = []
        elif ctx.provided("loggers"):
            shipment.temperature_loggers = [
                ShipmentTemperatureLogger(
                    serial_no=row.serial_no,
                    installation_place=row.installation_place,
                )
                for row in self._logger_rows(ctx)
            ]
        shipment.logger_count = len(shipment.temperature_loggers)


class ClearedRule(StageRule):
    stage = Stage.CLEARED
    payload_model = ClearedFields

    def check(self, ctx: StageContext) -> RequirementReport:
        report = RequirementReport()
        shipment = ctx.shipment
        checker = ctx.checker
        if not shipment.sailing_date:
            report.add_field("Sailing date")

        if not checker.has_document_code(shipment.id, FIRS_ATTACHMENT_CODE):
            report.add_documents(["FIRS attachment"])
        self._require(ctx, report, {"firs_date": "FIRS date", "firs_due_date": "FIRS due date"})
        if shipment.is_mofa_required:
            if not checker.has_document_code(shipment.id, MOFA_ATTACHMENT_CODE):
                report.add_documents(["MOFA attachment"])
            self._require(ctx, report, {"mofa_due_date": "MOFA due date"})
        if not checker.has_document_code(shipment.id, ORIGINAL_DOCUMENT_CODE):
            report.add_documents(["Original document"])
        self._require(ctx, report, {"custom_submission_due_date": "Customs submission due date"})

        report.add_documents(checker.get_missing_originals(shipment.id))
        report.add_documents(checker.get_missing_required_docs(shipment.id, Stage.CLEARED))
        return report

    def apply(self, ctx: StageContext) -> None:
        super().apply(ctx)
        if ctx.shipment.cleared_date is None:
            ctx.shipment.cleared_date = ctx.today


class ClosedRule(StageRule):
    stage = Stage.CLOSED
    payload_model = ClosedFields
    uses_container_tracking = True

    def check(self, ctx: StageContext) -> RequirementReport:
        report = RequirementReport()
        self._require(
            ctx,
            report,
            {
                "eir_no": "EIR no",
                "token_no": "Token no",
                "transportation_charges": "Transportation charges",
                "closed_comment": "Closing comment",
            },
        )
        shipment_id = ctx.shipment.id
        if not ctx.checker.configured_document_type_ids(shipment_id):
            report.add_documents([NO_CONFIGURED_DOCUMENTS_LABEL])
        missing_meta = ctx.checker.get_missing_reference_metadata(shipment_id)
        for name in ctx.checker.get_missing_required_docs(shipment_id, Stage.CLOSED, require_meta=True):
            if name not in missing_meta:
                missing_meta.append(name)
        report.add_documents([f"{name} (reference no and date)" for name in missing_meta])
        return report

    def apply(self, ctx: StageContext) -> None:
        super().apply(ctx)
        shipment = ctx.shipment
        if shipment.closed_date is None:
            shipment.closed_date = ctx.today
        checked_at = datetime.utcnow()
        for container in shipment.containers:
            status = ctx.tracking_statuses.get(normalize_container_no(container.container_no))
            if status is not None:
                container.tracking_status = status
                container.tracking_checked_at = checked_at


class ArchiveRule(StageRule):
    stage = Stage.ARCHIVE
    payload_model = ArchiveFields

    def check(self, ctx: StageContext) -> RequirementReport:
        report = RequirementReport()
        self._require(ctx, report, {"archive_comment": "Archive comment"})
        return report

    def apply(self, ctx: StageContext) -> None:
        super().apply(ctx)
        if ctx.shipment.archive_date is None:
            ctx.shipment.archive_date = ctx.today


STAGE_RULES: dict[Stage, StageRule] = {
    rule.stage: rule
    for rule in (
        TodoRule(),
        PlannedRule(),
        UnderloadingRule(),
        SailedRule(),
        ClearedRule(),
        ClosedRule(),
        ArchiveRule(),
    )
}
