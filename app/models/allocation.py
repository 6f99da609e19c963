from decimal import Decimal

from sqlalchemy import ForeignKey, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.models.mixins import AuditMixin


class ShipmentPoItemAllocation(AuditMixin, Base):
    """
    Ledger row: the share of one PO line assigned to one shipment.

    planned / allocated / loaded are written by different lifecycle events and
    are therefore updated independently. remaining_quantity is the part of the
    ordered quantity not allocated to any shipment.
    """
    __tablename__ = "shipment_po_item_allocation"
    __table_args__ = (
        UniqueConstraint("shipment_id", "po_item_id", name="uq_shipment_po_item_allocation"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    shipment_id: Mapped[int] = mapped_column(ForeignKey("shipment.id"), nullable=False, index=True)
    po_id: Mapped[int] = mapped_column(ForeignKey("purchase_orders.id"), nullable=False, index=True)
    po_item_id: Mapped[int] = mapped_column(ForeignKey("purchase_order_items.id"), nullable=False, index=True)
    product_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    planned_quantity: Mapped[Decimal] = mapped_column(Numeric(15, 3), nullable=False, default=0)
    allocated_quantity: Mapped[Decimal] = mapped_column(Numeric(15, 3), nullable=False, default=0)
    loaded_quantity: Mapped[Decimal] = mapped_column(Numeric(15, 3), nullable=False, default=0)
    remaining_quantity: Mapped[Decimal] = mapped_column(Numeric(15, 3), nullable=False, default=0)

    allocation_mode: Mapped[str] = mapped_column(String(10), nullable=False, default="partial")

    def __repr__(self) -> str:
        return (
            f"<Allocation(shipment={self.shipment_id}, po_item={self.po_item_id}, "
            f"allocated={self.allocated_quantity})>"
        )
