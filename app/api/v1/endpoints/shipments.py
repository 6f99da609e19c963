from typing import List
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from app.api.deps.request_identity import get_request_email
from app.db.session import get_db
from app.schemas.shipment_flow import (
    AllocationLineOut,
    AllocationUpsertRequest,
    AllocationUpsertResponse,
    FamilyMemberOut,
    LotRecalculateResponse,
    RequiredDocumentsRequest,
    RequiredDocumentsResponse,
    ShipmentCreateFromPO,
    ShipmentCreateResponse,
    SplitRequest,
    SplitResponse,
    StageHistoryOut,
    StageOut,
    StageTransitionRequest,
    StageTransitionResponse,
)
from app.services import shipment_flow
from app.services.allocation_ledger import AllocationFlags
from app.services.errors import ShipmentFlowFailure
from app.services.shipment_service import ShipmentService
from app.services.stages import STAGE_NAMES

router = APIRouter()
logger = logging.getLogger(__name__)


def _get_user_email(request: Request) -> str:
    return get_request_email(request)


def _raise_flow_failure(exc: ShipmentFlowFailure) -> None:
    raise HTTPException(status_code=exc.status_code, detail=exc.to_detail())


def _unwrap(result: shipment_flow.OperationResult):
    if not result.ok:
        _raise_flow_failure(result.error)
    return result.value


@router.get("/stages", response_model=List[StageOut])
def list_stages():
    return [StageOut(id=int(stage), name=name) for stage, name in STAGE_NAMES.items()]


@router.post(
    "/from-po",
    response_model=ShipmentCreateResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_shipment_from_po(
    payload: ShipmentCreateFromPO,
    request: Request,
    db: Session = Depends(get_db),
):
    outcome = _unwrap(
        shipment_flow.create_shipment(
            db,
            payload.po_id,
            containers_back_to_back=payload.containers_back_to_back,
            containers_stock_sales=payload.containers_stock_sales,
            required_document_type_ids=payload.required_document_type_ids,
            user_id=_get_user_email(request),
        )
    )
    return ShipmentCreateResponse.model_validate(outcome)


@router.post("/{shipment_id}/transition", response_model=StageTransitionResponse)
def transition_shipment_stage(
    shipment_id: int,
    payload: StageTransitionRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    outcome = _unwrap(
        shipment_flow.transition_stage(
            db,
            shipment_id,
            payload.to_stage_id,
            payload.fields,
            payload.dry_run,
            user_id=_get_user_email(request),
        )
    )
    return StageTransitionResponse.model_validate(outcome)


@router.post("/{shipment_id}/split", response_model=SplitResponse)
def split_shipment(
    shipment_id: int,
    payload: SplitRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    outcome = _unwrap(
        shipment_flow.split_shipment(
            db,
            shipment_id,
            payload.b2b_count,
            payload.ss_count,
            payload.allocations,
            user_id=_get_user_email(request),
        )
    )
    return SplitResponse.model_validate(outcome)


@router.get("/{shipment_id}/allocations", response_model=List[AllocationLineOut])
def list_shipment_allocations(shipment_id: int, db: Session = Depends(get_db)):
    lines = _unwrap(shipment_flow.list_allocations(db, shipment_id))
    return [AllocationLineOut.model_validate(line) for line in lines]


@router.post("/{shipment_id}/allocations", response_model=AllocationUpsertResponse)
def upsert_shipment_allocations(
    shipment_id: int,
    payload: AllocationUpsertRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    flags = AllocationFlags(
        update_planned=payload.update_planned,
        update_allocated=payload.update_allocated,
        update_loaded=payload.update_loaded,
    )
    outcome = _unwrap(
        shipment_flow.upsert_allocations(
            db,
            shipment_id,
            payload.allocations,
            payload.mode,
            flags,
            po_id=payload.po_id,
            user_id=_get_user_email(request),
        )
    )
    return AllocationUpsertResponse(updated_count=outcome.updated_count)


@router.put("/{shipment_id}/required-documents", response_model=RequiredDocumentsResponse)
def configure_required_documents(
    shipment_id: int,
    payload: RequiredDocumentsRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    ids = _unwrap(
        shipment_flow.configure_required_documents(
            db,
            shipment_id,
            payload.document_type_ids,
            user_id=_get_user_email(request),
        )
    )
    return RequiredDocumentsResponse(shipment_id=shipment_id, document_type_ids=ids)


@router.post("/{shipment_id}/recalculate-lots", response_model=LotRecalculateResponse)
def recalculate_lot_numbers(
    shipment_id: int,
    request: Request,
    db: Session = Depends(get_db),
):
    outcome = _unwrap(
        shipment_flow.recalculate_lots(db, shipment_id, user_id=_get_user_email(request))
    )
    return LotRecalculateResponse.model_validate(outcome)


@router.get("/{shipment_id}/stage-history", response_model=List[StageHistoryOut])
def list_stage_history(shipment_id: int, db: Session = Depends(get_db)):
    try:
        rows = ShipmentService(db).list_stage_history(shipment_id)
    except ShipmentFlowFailure as exc:
        _raise_flow_failure(exc)
    return [StageHistoryOut.model_validate(row) for row in rows]


@router.get("/{shipment_id}/family", response_model=List[FamilyMemberOut])
def list_shipment_family(shipment_id: int, db: Session = Depends(get_db)):
    try:
        members = ShipmentService(db).list_family(shipment_id)
    except ShipmentFlowFailure as exc:
        _raise_flow_failure(exc)
    return [FamilyMemberOut.model_validate(member) for member in members]
