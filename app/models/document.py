from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.models.doc_lookups import DocumentTypeLookup


class ShipmentFile(Base):
    """
    Metadata of a document attached to a shipment.
    The binary itself lives in external storage; only the row is read here.
    """
    __tablename__ = "shipment_file"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    shipment_id: Mapped[int] = mapped_column(ForeignKey("shipment.id"), nullable=False, index=True)
    document_type_id: Mapped[int] = mapped_column(ForeignKey("document_type.id"), nullable=False, index=True)

    # Draft placeholders do not count as the original document.
    is_draft: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    ref_no: Mapped[str | None] = mapped_column(String(120), nullable=True)
    ref_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    doc_type: Mapped["DocumentTypeLookup"] = relationship("DocumentTypeLookup")

    def __repr__(self) -> str:
        return f"<ShipmentFile(name='{self.file_name}', type='{self.document_type_id}')>"


class ShipmentDocumentRequirement(Base):
    """Documents a given shipment must eventually hold (configured while Planned)."""
    __tablename__ = "shipment_po_document"
    __table_args__ = (
        UniqueConstraint("shipment_id", "document_type_id", name="uq_shipment_po_document"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    shipment_id: Mapped[int] = mapped_column(ForeignKey("shipment.id"), nullable=False, index=True)
    document_type_id: Mapped[int] = mapped_column(ForeignKey("document_type.id"), nullable=False)

    doc_type: Mapped["DocumentTypeLookup"] = relationship("DocumentTypeLookup")


class StageDocumentRequirement(Base):
    """Documents that must be attached before a shipment may enter `shipment_stage`."""
    __tablename__ = "shipment_document"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    shipment_stage: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    document_type_id: Mapped[int] = mapped_column(ForeignKey("document_type.id"), nullable=False)
    is_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    doc_type: Mapped["DocumentTypeLookup"] = relationship("DocumentTypeLookup")
