from __future__ import annotations

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from app.models.doc_lookups import DocumentTypeLookup
from app.models.document import (
    ShipmentDocumentRequirement,
    ShipmentFile,
    StageDocumentRequirement,
)
from app.models.shipment import Shipment
from app.services.errors import NotFound, ValidationError
from app.services.history_recorder import HistoryRecorder
from app.services.stages import Stage


class DocumentRequirementChecker:
    """
    Read-only answers to "which documents are still missing".

    Two requirement sources exist:
    - stage requirements (shipment_document): documents needed to enter a stage;
    - the shipment's configured set (shipment_po_document): documents the
      shipment must eventually hold as originals with reference metadata.
    """

    def __init__(self, db: Session):
        self.db = db

    def _file_exists(self, shipment_id: int, *, original_only: bool = False, require_meta: bool = False):
        clause = select(ShipmentFile.id).where(
            ShipmentFile.shipment_id == shipment_id,
            ShipmentFile.document_type_id == DocumentTypeLookup.id,
        )
        if original_only:
            clause = clause.where(or_(ShipmentFile.is_draft.is_(False), ShipmentFile.is_draft.is_(None)))
        if require_meta:
            clause = clause.where(
                func.trim(func.coalesce(ShipmentFile.ref_no, "")) != "",
                ShipmentFile.ref_date.is_not(None),
            )
        return clause.exists()

    def get_missing_required_docs(
        self,
        shipment_id: int,
        stage: int,
        *,
        require_meta: bool = False,
    ) -> list[str]:
        stmt = (
            select(DocumentTypeLookup.id, DocumentTypeLookup.name)
            .join(
                StageDocumentRequirement,
                StageDocumentRequirement.document_type_id == DocumentTypeLookup.id,
            )
            .where(
                StageDocumentRequirement.shipment_stage == int(stage),
                StageDocumentRequirement.is_required.is_(True),
                ~self._file_exists(shipment_id, require_meta=require_meta),
            )
            .distinct()
            .order_by(DocumentTypeLookup.id)
        )
        return [name for _, name in self.db.execute(stmt).all()]

    def _missing_configured(self, shipment_id: int, *, original_only: bool, require_meta: bool) -> list[str]:
        stmt = (
            select(DocumentTypeLookup.id, DocumentTypeLookup.name)
            .join(
                ShipmentDocumentRequirement,
                ShipmentDocumentRequirement.document_type_id == DocumentTypeLookup.id,
            )
            .where(
                ShipmentDocumentRequirement.shipment_id == shipment_id,
                ~self._file_exists(
                    shipment_id,
                    original_only=original_only,
                    require_meta=require_meta,
                ),
            )
            .distinct()
            .order_by(DocumentTypeLookup.id)
        )
        return [name for _, name in self.db.execute(stmt).all()]

    def get_missing_originals(self, shipment_id: int) -> list[str]:
        return self._missing_configured(shipment_id, original_only=True, require_meta=False)

    def get_missing_reference_metadata(self, shipment_id: int) -> list[str]:
        return self._missing_configured(shipment_id, original_only=False, require_meta=True)

    def configured_document_type_ids(self, shipment_id: int) -> list[int]:
        rows = self.db.execute(
            select(ShipmentDocumentRequirement.document_type_id)
            .where(ShipmentDocumentRequirement.shipment_id == shipment_id)
            .order_by(ShipmentDocumentRequirement.document_type_id)
        ).scalars()
        return [int(value) for value in rows]

    def has_document_code(self, shipment_id: int, code: str) -> bool:
        stmt = (
            select(func.count(ShipmentFile.id))
            .join(DocumentTypeLookup, DocumentTypeLookup.id == ShipmentFile.document_type_id)
            .where(ShipmentFile.shipment_id == shipment_id, DocumentTypeLookup.code == code)
        )
        return (self.db.execute(stmt).scalar() or 0) > 0


class DocumentRequirementService:
    """Maintains the per-shipment required document set."""

    EDITABLE_UNTIL = Stage.PLANNED

    def __init__(self, db: Session, recorder: HistoryRecorder | None = None):
        self.db = db
        self.recorder = recorder or HistoryRecorder(db)

    def configure_required_documents(
        self,
        shipment_id: int,
        document_type_ids: list[int],
        *,
        user_id: str | None = None,
    ) -> list[int]:
        shipment = self.db.get(Shipment, shipment_id, with_for_update=True)
        if shipment is None:
            raise NotFound(message=f"Shipment {shipment_id} not found.", details={"shipment_id": shipment_id})
        if shipment.shipment_stage_id > self.EDITABLE_UNTIL:
            raise ValidationError(
                message="Required documents can only be configured while the shipment is To Do or Planned.",
                details={"shipment_id": shipment_id, "stage_id": shipment.shipment_stage_id},
            )

        wanted = sorted({int(value) for value in document_type_ids})
        if wanted:
            known = set(
                self.db.execute(
                    select(DocumentTypeLookup.id).where(DocumentTypeLookup.id.in_(wanted))
                ).scalars()
            )
            unknown = [value for value in wanted if value not in known]
            if unknown:
                raise NotFound(
                    message=f"Document type(s) not found: {', '.join(str(v) for v in unknown)}",
                    details={"document_type_ids": unknown},
                )

        existing = {
            row.document_type_id: row
            for row in self.db.execute(
                select(ShipmentDocumentRequirement).where(
                    ShipmentDocumentRequirement.shipment_id == shipment_id
                )
            ).scalars()
        }
        for document_type_id, row in existing.items():
            if document_type_id not in wanted:
                self.db.delete(row)
        for document_type_id in wanted:
            if document_type_id not in existing:
                self.db.add(
                    ShipmentDocumentRequirement(
                        shipment_id=shipment_id,
                        document_type_id=document_type_id,
                    )
                )

        self.recorder.append(
            "shipment",
            shipment_id,
            user_id,
            "REQUIRED_DOCUMENTS_CONFIGURED",
            {"document_type_ids": wanted},
        )
        self.db.flush()
        return wanted
