"""create shipment flow tables

Revision ID: 5f2a9c1e7b30
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "5f2a9c1e7b30"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamp(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.DateTime(), nullable=nullable, server_default=sa.text("now()"))


def upgrade() -> None:
    op.create_table(
        "purchase_orders",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("po_number", sa.String(length=30), nullable=False),
        sa.Column("vendor_id", sa.Integer(), nullable=True),
        sa.Column("transport_mode", sa.String(length=8), nullable=False, server_default="SEA"),
        _timestamp("created_at", nullable=True),
    )
    op.create_index("ix_purchase_orders_po_number", "purchase_orders", ["po_number"], unique=True)

    op.create_table(
        "purchase_order_items",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("purchase_order_id", sa.Integer(), sa.ForeignKey("purchase_orders.id"), nullable=False),
        sa.Column("item_number", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("product_id", sa.Integer(), nullable=True),
        sa.Column("item_name", sa.String(length=255), nullable=True),
        sa.Column("quantity", sa.Numeric(15, 3), nullable=False),
    )
    op.create_index("ix_purchase_order_items_purchase_order_id", "purchase_order_items", ["purchase_order_id"])

    op.create_table(
        "document_type",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(length=60), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
    )
    op.create_index("ix_document_type_code", "document_type", ["code"], unique=True)

    op.create_table(
        "shipment",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("po_id", sa.Integer(), sa.ForeignKey("purchase_orders.id"), nullable=False),
        sa.Column("parent_shipment_id", sa.Integer(), sa.ForeignKey("shipment.id"), nullable=True),
        sa.Column("vendor_id", sa.Integer(), nullable=True),
        sa.Column("shipment_stage_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("transport_mode", sa.String(length=8), nullable=False, server_default="SEA"),
        sa.Column("lot_number", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("total_lots", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("containers_back_to_back", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("containers_stock_sales", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("no_containers", sa.Integer(), nullable=False, server_default="0"),
        # Planned
        sa.Column("shipper", sa.String(length=255), nullable=True),
        sa.Column("consignee", sa.String(length=255), nullable=True),
        sa.Column("notify_party", sa.String(length=255), nullable=True),
        sa.Column("bl_description", sa.Text(), nullable=True),
        sa.Column("bl_type", sa.String(length=50), nullable=True),
        sa.Column("free_time", sa.Integer(), nullable=True),
        sa.Column("freight_payment_terms", sa.String(length=50), nullable=True),
        sa.Column("freight_amount_if_payable", sa.Numeric(15, 2), nullable=True),
        sa.Column("freight_amount_currency_id", sa.Integer(), nullable=True),
        sa.Column("discharge_port_agent", sa.String(length=255), nullable=True),
        sa.Column("etd_date", sa.Date(), nullable=True),
        sa.Column("eta_date", sa.Date(), nullable=True),
        sa.Column("confirm_sailing_date", sa.Date(), nullable=True),
        sa.Column("vessel_name", sa.String(length=120), nullable=True),
        sa.Column("shipping_line_name", sa.String(length=120), nullable=True),
        sa.Column("departure_time", sa.String(length=8), nullable=True),
        sa.Column("airline", sa.String(length=120), nullable=True),
        sa.Column("flight_no", sa.String(length=30), nullable=True),
        sa.Column("arrival_date", sa.Date(), nullable=True),
        sa.Column("arrival_time", sa.String(length=8), nullable=True),
        # Sailed
        sa.Column("sailing_date", sa.Date(), nullable=True),
        sa.Column("reason_diff_sailing", sa.String(length=500), nullable=True),
        sa.Column("confirm_vessel_name", sa.String(length=120), nullable=True),
        sa.Column("confirm_eta_date", sa.Date(), nullable=True),
        sa.Column("bl_no", sa.String(length=60), nullable=True),
        sa.Column("confirm_shipping_line", sa.String(length=120), nullable=True),
        sa.Column("confirm_discharge_port_agent", sa.String(length=255), nullable=True),
        sa.Column("confirm_free_time", sa.Integer(), nullable=True),
        sa.Column("confirm_departure_time", sa.String(length=8), nullable=True),
        sa.Column("confirm_airway_bill_no", sa.String(length=60), nullable=True),
        sa.Column("confirm_flight_no", sa.String(length=30), nullable=True),
        sa.Column("confirm_airline", sa.String(length=120), nullable=True),
        sa.Column("confirm_arrival_date", sa.Date(), nullable=True),
        sa.Column("confirm_arrival_time", sa.String(length=8), nullable=True),
        sa.Column("is_mofa_required", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("original_doc_receipt_mode", sa.String(length=20), nullable=True),
        sa.Column("doc_receipt_person_name", sa.String(length=120), nullable=True),
        sa.Column("doc_receipt_person_contact", sa.String(length=60), nullable=True),
        sa.Column("doc_receipt_courier_no", sa.String(length=60), nullable=True),
        sa.Column("doc_receipt_courier_company", sa.String(length=120), nullable=True),
        sa.Column("doc_receipt_tracking_link", sa.String(length=500), nullable=True),
        sa.Column("supplier_logger_installed", sa.String(length=3), nullable=True),
        sa.Column("logger_count", sa.Integer(), nullable=False, server_default="0"),
        # Cleared
        sa.Column("cleared_date", sa.Date(), nullable=True),
        sa.Column("do_no", sa.String(length=60), nullable=True),
        sa.Column("do_validity_date", sa.Date(), nullable=True),
        sa.Column("boe_no", sa.String(length=60), nullable=True),
        sa.Column("boe_date", sa.Date(), nullable=True),
        sa.Column("firs_no", sa.String(length=60), nullable=True),
        sa.Column("firs_date", sa.Date(), nullable=True),
        sa.Column("firs_due_date", sa.Date(), nullable=True),
        sa.Column("mofa_due_date", sa.Date(), nullable=True),
        sa.Column("custom_submission_due_date", sa.Date(), nullable=True),
        sa.Column("is_transport_required", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("transporter_name", sa.String(length=120), nullable=True),
        sa.Column("hauler_code", sa.String(length=60), nullable=True),
        sa.Column("transport_from_place", sa.String(length=120), nullable=True),
        sa.Column("transport_to_place", sa.String(length=120), nullable=True),
        # Closed / Archive
        sa.Column("eir_no", sa.String(length=60), nullable=True),
        sa.Column("token_no", sa.String(length=60), nullable=True),
        sa.Column("transportation_charges", sa.Numeric(12, 2), nullable=True),
        sa.Column("returned_date", sa.Date(), nullable=True),
        sa.Column("closed_comment", sa.Text(), nullable=True),
        sa.Column("closed_date", sa.Date(), nullable=True),
        sa.Column("archive_comment", sa.Text(), nullable=True),
        sa.Column("archive_date", sa.Date(), nullable=True),
        sa.Column("created_by", sa.String(length=255), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
    )
    op.create_index("ix_shipment_po_id", "shipment", ["po_id"])
    op.create_index("ix_shipment_parent_shipment_id", "shipment", ["parent_shipment_id"])
    op.create_index("ix_shipment_shipment_stage_id", "shipment", ["shipment_stage_id"])

    op.create_table(
        "shipment_container",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("shipment_id", sa.Integer(), sa.ForeignKey("shipment.id"), nullable=False),
        sa.Column("container_no", sa.String(length=20), nullable=False),
        sa.Column("seal_no", sa.String(length=50), nullable=True),
        sa.Column("tracking_status", sa.String(length=120), nullable=True),
        sa.Column("tracking_checked_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_shipment_container_shipment_id", "shipment_container", ["shipment_id"])

    op.create_table(
        "shipment_temperature_loggers",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("shipment_id", sa.Integer(), sa.ForeignKey("shipment.id"), nullable=False),
        sa.Column("serial_no", sa.String(length=100), nullable=False),
        sa.Column("installation_place", sa.String(length=255), nullable=False),
    )
    op.create_index(
        "ix_shipment_temperature_loggers_shipment_id",
        "shipment_temperature_loggers",
        ["shipment_id"],
    )

    op.create_table(
        "shipment_file",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("shipment_id", sa.Integer(), sa.ForeignKey("shipment.id"), nullable=False),
        sa.Column("document_type_id", sa.Integer(), sa.ForeignKey("document_type.id"), nullable=False),
        sa.Column("is_draft", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("file_name", sa.String(length=255), nullable=False),
        sa.Column("file_path", sa.String(length=500), nullable=True),
        sa.Column("ref_no", sa.String(length=120), nullable=True),
        sa.Column("ref_date", sa.Date(), nullable=True),
        _timestamp("uploaded_at", nullable=True),
    )
    op.create_index("ix_shipment_file_shipment_id", "shipment_file", ["shipment_id"])
    op.create_index("ix_shipment_file_document_type_id", "shipment_file", ["document_type_id"])

    op.create_table(
        "shipment_po_document",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("shipment_id", sa.Integer(), sa.ForeignKey("shipment.id"), nullable=False),
        sa.Column("document_type_id", sa.Integer(), sa.ForeignKey("document_type.id"), nullable=False),
        sa.UniqueConstraint("shipment_id", "document_type_id", name="uq_shipment_po_document"),
    )
    op.create_index("ix_shipment_po_document_shipment_id", "shipment_po_document", ["shipment_id"])

    op.create_table(
        "shipment_document",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("shipment_stage", sa.Integer(), nullable=False),
        sa.Column("document_type_id", sa.Integer(), sa.ForeignKey("document_type.id"), nullable=False),
        sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.text("true")),
    )
    op.create_index("ix_shipment_document_shipment_stage", "shipment_document", ["shipment_stage"])

    op.create_table(
        "shipment_po_item_allocation",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("shipment_id", sa.Integer(), sa.ForeignKey("shipment.id"), nullable=False),
        sa.Column("po_id", sa.Integer(), sa.ForeignKey("purchase_orders.id"), nullable=False),
        sa.Column("po_item_id", sa.Integer(), sa.ForeignKey("purchase_order_items.id"), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=True),
        sa.Column("planned_quantity", sa.Numeric(15, 3), nullable=False, server_default="0"),
        sa.Column("allocated_quantity", sa.Numeric(15, 3), nullable=False, server_default="0"),
        sa.Column("loaded_quantity", sa.Numeric(15, 3), nullable=False, server_default="0"),
        sa.Column("remaining_quantity", sa.Numeric(15, 3), nullable=False, server_default="0"),
        sa.Column("allocation_mode", sa.String(length=10), nullable=False, server_default="partial"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.Column("created_by", sa.String(length=255), nullable=True),
        sa.Column("updated_by", sa.String(length=255), nullable=True),
        sa.UniqueConstraint("shipment_id", "po_item_id", name="uq_shipment_po_item_allocation"),
    )
    op.create_index("ix_shipment_po_item_allocation_shipment_id", "shipment_po_item_allocation", ["shipment_id"])
    op.create_index("ix_shipment_po_item_allocation_po_id", "shipment_po_item_allocation", ["po_id"])
    op.create_index("ix_shipment_po_item_allocation_po_item_id", "shipment_po_item_allocation", ["po_item_id"])

    op.create_table(
        "shipment_stage_history",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("po_id", sa.Integer(), sa.ForeignKey("purchase_orders.id"), nullable=True),
        sa.Column("shipment_id", sa.Integer(), sa.ForeignKey("shipment.id"), nullable=False),
        sa.Column("from_stage_id", sa.Integer(), nullable=True),
        sa.Column("to_stage_id", sa.Integer(), nullable=False),
        _timestamp("changed_at"),
        sa.Column("payload_json", sa.Text(), nullable=True),
    )
    op.create_index("ix_shipment_stage_history_po_id", "shipment_stage_history", ["po_id"])
    op.create_index("ix_shipment_stage_history_shipment_id", "shipment_stage_history", ["shipment_id"])

    op.create_table(
        "history",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("module", sa.String(length=50), nullable=False),
        sa.Column("module_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=True),
        sa.Column("action", sa.String(length=60), nullable=False),
        sa.Column("details", sa.Text(), nullable=True),
        _timestamp("created_at"),
    )
    op.create_index("ix_history_module", "history", ["module"])
    op.create_index("ix_history_module_id", "history", ["module_id"])


def downgrade() -> None:
    op.drop_index("ix_history_module_id", table_name="history")
    op.drop_index("ix_history_module", table_name="history")
    op.drop_table("history")
    op.drop_index("ix_shipment_stage_history_shipment_id", table_name="shipment_stage_history")
    op.drop_index("ix_shipment_stage_history_po_id", table_name="shipment_stage_history")
    op.drop_table("shipment_stage_history")
    op.drop_index("ix_shipment_po_item_allocation_po_item_id", table_name="shipment_po_item_allocation")
    op.drop_index("ix_shipment_po_item_allocation_po_id", table_name="shipment_po_item_allocation")
    op.drop_index("ix_shipment_po_item_allocation_shipment_id", table_name="shipment_po_item_allocation")
    op.drop_table("shipment_po_item_allocation")
    op.drop_index("ix_shipment_document_shipment_stage", table_name="shipment_document")
    op.drop_table("shipment_document")
    op.drop_index("ix_shipment_po_document_shipment_id", table_name="shipment_po_document")
    op.drop_table("shipment_po_document")
    op.drop_index("ix_shipment_file_document_type_id", table_name="shipment_file")
    op.drop_index("ix_shipment_file_shipment_id", table_name="shipment_file")
    op.drop_table("shipment_file")
    op.drop_index("ix_shipment_temperature_loggers_shipment_id", table_name="shipment_temperature_loggers")
    op.drop_table("shipment_temperature_loggers")
    op.drop_index("ix_shipment_container_shipment_id", table_name="shipment_container")
    op.drop_table("shipment_container")
    op.drop_index("ix_shipment_shipment_stage_id", table_name="shipment")
    op.drop_index("ix_shipment_parent_shipment_id", table_name="shipment")
    op.drop_index("ix_shipment_po_id", table_name="shipment")
    op.drop_table("shipment")
    op.drop_index("ix_document_type_code", table_name="document_type")
    op.drop_table("document_type")
    op.drop_index("ix_purchase_order_items_purchase_order_id", table_name="purchase_order_items")
    op.drop_table("purchase_order_items")
    op.drop_index("ix_purchase_orders_po_number", table_name="purchase_orders")
    op.drop_table("purchase_orders")
