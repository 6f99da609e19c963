from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Integer, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base


class Shipment(Base):
    """
    One physical lot moving through the stage flow (ToDo .. Archive).

    Partial shipments point at the lot they were split from through
    `parent_shipment_id`; the resulting forest is a "family" that shares
    one `total_lots` value.
    """
    __tablename__ = "shipment"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    po_id: Mapped[int] = mapped_column(ForeignKey("purchase_orders.id"), nullable=False, index=True)
    parent_shipment_id: Mapped[int | None] = mapped_column(
        ForeignKey("shipment.id"), nullable=True, index=True
    )
    vendor_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Single authoritative stage pointer; see app.services.stages.Stage.
    shipment_stage_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1, index=True)
    transport_mode: Mapped[str] = mapped_column(String(8), nullable=False, default="SEA")

    lot_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    total_lots: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    containers_back_to_back: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    containers_stock_sales: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    no_containers: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Planned details (copied to lots created by a split)
    shipper: Mapped[str | None] = mapped_column(String(255), nullable=True)
    consignee: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notify_party: Mapped[str | None] = mapped_column(String(255), nullable=True)
    bl_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    bl_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    free_time: Mapped[int | None] = mapped_column(Integer, nullable=True)
    freight_payment_terms: Mapped[str | None] = mapped_column(String(50), nullable=True)
    freight_amount_if_payable: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)
    freight_amount_currency_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    discharge_port_agent: Mapped[str | None] = mapped_column(String(255), nullable=True)
    etd_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    eta_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    confirm_sailing_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    vessel_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    shipping_line_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    departure_time: Mapped[str | None] = mapped_column(String(8), nullable=True)
    airline: Mapped[str | None] = mapped_column(String(120), nullable=True)
    flight_no: Mapped[str | None] = mapped_column(String(30), nullable=True)
    arrival_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    arrival_time: Mapped[str | None] = mapped_column(String(8), nullable=True)

    # Sailed
    sailing_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    reason_diff_sailing: Mapped[str | None] = mapped_column(String(500), nullable=True)
    confirm_vessel_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    confirm_eta_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    bl_no: Mapped[str | None] = mapped_column(String(60), nullable=True)
    confirm_shipping_line: Mapped[str | None] = mapped_column(String(120), nullable=True)
    confirm_discharge_port_agent: Mapped[str | None] = mapped_column(String(255), nullable=True)
    confirm_free_time: Mapped[int | None] = mapped_column(Integer, nullable=True)
    confirm_departure_time: Mapped[str | None] = mapped_column(String(8), nullable=True)
    confirm_airway_bill_no: Mapped[str | None] = mapped_column(String(60), nullable=True)
    confirm_flight_no: Mapped[str | None] = mapped_column(String(30), nullable=True)
    confirm_airline: Mapped[str | None] = mapped_column(String(120), nullable=True)
    confirm_arrival_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    confirm_arrival_time: Mapped[str | None] = mapped_column(String(8), nullable=True)
    is_mofa_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    original_doc_receipt_mode: Mapped[str | None] = mapped_column(String(20), nullable=True)
    doc_receipt_person_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    doc_receipt_person_contact: Mapped[str | None] = mapped_column(String(60), nullable=True)
    doc_receipt_courier_no: Mapped[str | None] = mapped_column(String(60), nullable=True)
    doc_receipt_courier_company: Mapped[str | None] = mapped_column(String(120), nullable=True)
    doc_receipt_tracking_link: Mapped[str | None] = mapped_column(String(500), nullable=True)
    supplier_logger_installed: Mapped[str | None] = mapped_column(String(3), nullable=True)
    logger_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Cleared
    cleared_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    do_no: Mapped[str | None] = mapped_column(String(60), nullable=True)
    do_validity_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    boe_no: Mapped[str | None] = mapped_column(String(60), nullable=True)
    boe_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    firs_no: Mapped[str | None] = mapped_column(String(60), nullable=True)
    firs_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    firs_due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    mofa_due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    custom_submission_due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_transport_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    transporter_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    hauler_code: Mapped[str | None] = mapped_column(String(60), nullable=True)
    transport_from_place: Mapped[str | None] = mapped_column(String(120), nullable=True)
    transport_to_place: Mapped[str | None] = mapped_column(String(120), nullable=True)

    # Closed
    eir_no: Mapped[str | None] = mapped_column(String(60), nullable=True)
    token_no: Mapped[str | None] = mapped_column(String(60), nullable=True)
    transportation_charges: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    returned_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    closed_comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    closed_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Archive
    archive_comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    archive_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    created_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=datetime.utcnow,
        server_default=func.now(),
        onupdate=datetime.utcnow,
    )

    # Optimistic concurrency counter; a stale flush raises StaleDataError.
    version_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    containers: Mapped[list["ShipmentContainer"]] = relationship(
        "ShipmentContainer",
        back_populates="shipment",
        cascade="all, delete-orphan",
        order_by="ShipmentContainer.id",
    )
    temperature_loggers: Mapped[list["ShipmentTemperatureLogger"]] = relationship(
        "ShipmentTemperatureLogger",
        back_populates="shipment",
        cascade="all, delete-orphan",
        order_by="ShipmentTemperatureLogger.id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def lot_label(self) -> str:
        if self.total_lots and self.total_lots > 1:
            return f"Lot {self.lot_number}/{self.total_lots}"
        return f"Lot {self.lot_number}"

    def __repr__(self) -> str:
        return f"<Shipment(id={self.id}, stage={self.shipment_stage_id}, lot={self.lot_number}/{self.total_lots})>"


class ShipmentContainer(Base):
    """Physical equipment loaded on a lot; tracking_status is informational only."""
    __tablename__ = "shipment_container"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    shipment_id: Mapped[int] = mapped_column(ForeignKey("shipment.id"), nullable=False, index=True)
    container_no: Mapped[str] = mapped_column(String(20), nullable=False)
    seal_no: Mapped[str | None] = mapped_column(String(50), nullable=True)
    tracking_status: Mapped[str | None] = mapped_column(String(120), nullable=True)
    tracking_checked_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    shipment: Mapped["Shipment"] = relationship("Shipment", back_populates="containers")


class ShipmentTemperatureLogger(Base):
    __tablename__ = "shipment_temperature_loggers"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    shipment_id: Mapped[int] = mapped_column(ForeignKey("shipment.id"), nullable=False, index=True)
    serial_no: Mapped[str] = mapped_column(String(100), nullable=False)
    installation_place: Mapped[str] = mapped_column(String(255), nullable=False)

    shipment: Mapped["Shipment"] = relationship("Shipment", back_populates="temperature_loggers")
