from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class DocumentTypeLookup(Base):
    """
    Lookup for types of shipment documents.
    Examples: 'firs_attachment', 'mofa_attachment', 'bl_copy', 'commercial_invoice'.
    """
    __tablename__ = "document_type"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(60), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
