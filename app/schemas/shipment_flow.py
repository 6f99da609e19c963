from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import Field

from app.schemas.base import BaseSchema


class StageOut(BaseSchema):
    id: int
    name: str


class ShipmentCreateFromPO(BaseSchema):
    po_id: int
    containers_back_to_back: int = Field(default=0, ge=0)
    containers_stock_sales: int = Field(default=0, ge=0)
    required_document_type_ids: List[int] = Field(default_factory=list)


class ShipmentCreateResponse(BaseSchema):
    shipment_id: int
    po_id: int
    shipment_stage_id: int


class StageTransitionRequest(BaseSchema):
    to_stage_id: int
    fields: Dict[str, Any] = Field(default_factory=dict)
    dry_run: bool = False


class StageTransitionResponse(BaseSchema):
    ok: bool
    shipment_id: int
    from_stage: int
    to_stage: int
    transitioned: bool
    dry_run: bool
    ready: bool
    missing_requirements: List[str] = Field(default_factory=list)


class AllocationLineIn(BaseSchema):
    po_item_id: int
    quantity: Decimal
    product_id: Optional[int] = None


class AllocationUpsertRequest(BaseSchema):
    po_id: Optional[int] = None
    allocations: List[AllocationLineIn] = Field(default_factory=list)
    mode: Literal["partial", "full"] = "partial"
    update_planned: bool = False
    update_allocated: bool = True
    update_loaded: bool = False


class AllocationUpsertResponse(BaseSchema):
    ok: bool = True
    updated_count: int


class AllocationLineOut(BaseSchema):
    id: int
    shipment_id: int
    po_id: int
    po_item_id: int
    product_id: Optional[int] = None
    item_name: Optional[str] = None
    ordered_quantity: Decimal
    planned_quantity: Decimal
    allocated_quantity: Decimal
    loaded_quantity: Decimal
    remaining_quantity: Decimal
    allocation_mode: str


class SplitRequest(BaseSchema):
    b2b_count: int = 0
    ss_count: int = 0
    allocations: List[AllocationLineIn] = Field(default_factory=list)


class SplitResponse(BaseSchema):
    ok: bool = True
    new_shipment_id: int
    parent_id: int
    moved_back_to_back: int
    moved_stock_sales: int
    allocations_written: int
    total_lots: int


class LotRecalculateResponse(BaseSchema):
    ok: bool
    root_id: int
    total_lots: int
    lot_numbers: Dict[int, int] = Field(default_factory=dict)


class RequiredDocumentsRequest(BaseSchema):
    document_type_ids: List[int] = Field(default_factory=list)


class RequiredDocumentsResponse(BaseSchema):
    shipment_id: int
    document_type_ids: List[int]


class StageHistoryOut(BaseSchema):
    id: int
    po_id: Optional[int] = None
    shipment_id: int
    from_stage_id: Optional[int] = None
    from_stage_name: Optional[str] = None
    to_stage_id: int
    to_stage_name: str
    changed_at: datetime
    payload: Optional[Dict[str, Any]] = None


class FamilyMemberOut(BaseSchema):
    id: int
    parent_shipment_id: Optional[int] = None
    depth: int
    shipment_stage_id: int
    stage_name: str
    lot_number: int
    total_lots: int
    lot_label: str
    containers_back_to_back: int
    containers_stock_sales: int
    no_containers: int
