from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Integer, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base


class PurchaseOrderHeader(Base):
    """
    Commercial document the shipments are raised against.
    Only the columns the shipment flow reads are mapped here.
    """
    __tablename__ = "purchase_orders"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    po_number: Mapped[str] = mapped_column(String(30), unique=True, index=True, nullable=False)
    vendor_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # SEA or AIR; drives which Sailed-stage fields are mandatory.
    transport_mode: Mapped[str] = mapped_column(String(8), nullable=False, default="SEA")

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    items: Mapped[list["PurchaseOrderItem"]] = relationship(
        "PurchaseOrderItem",
        back_populates="header",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<PurchaseOrder(po_number={self.po_number!r})>"


class PurchaseOrderItem(Base):
    """Line item; `quantity` is the ordered quantity and is immutable once issued."""
    __tablename__ = "purchase_order_items"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    purchase_order_id: Mapped[int] = mapped_column(
        ForeignKey("purchase_orders.id"), nullable=False, index=True
    )
    item_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    product_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    item_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    quantity: Mapped[Decimal] = mapped_column(Numeric(15, 3), nullable=False)

    header: Mapped["PurchaseOrderHeader"] = relationship("PurchaseOrderHeader", back_populates="items")

    def __repr__(self) -> str:
        return f"<POItem(po={self.purchase_order_id}, item={self.item_number})>"
