from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
import json
from typing import Any

from sqlalchemy.orm import Session

from app.models.history import History, ShipmentStageHistory
from app.services.stages import should_track_history


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def dump_payload(payload: Any) -> str | None:
    if payload is None:
        return None
    return json.dumps(payload, default=_json_default, sort_keys=True)


class HistoryRecorder:
    """
    Append-only audit writer.

    Rows are added to the caller's session, so they commit or roll back
    together with the state change they describe.
    """

    def __init__(self, db: Session):
        self.db = db

    def append(
        self,
        module: str,
        module_id: int,
        user_id: str | None,
        action: str,
        details: dict[str, Any] | None = None,
    ) -> History | None:
        if not module or not module_id or not action:
            return None
        entry = History(
            module=module,
            module_id=int(module_id),
            user_id=user_id,
            action=action,
            details=dump_payload(details or {}),
        )
        self.db.add(entry)
        return entry

    def record_stage_change(
        self,
        *,
        po_id: int | None,
        shipment_id: int,
        from_stage_id: int | None,
        to_stage_id: int,
        payload: dict[str, Any] | None = None,
    ) -> ShipmentStageHistory | None:
        if not should_track_history(from_stage_id, to_stage_id):
            return None
        entry = ShipmentStageHistory(
            po_id=po_id,
            shipment_id=shipment_id,
            from_stage_id=from_stage_id,
            to_stage_id=to_stage_id,
            payload_json=dump_payload(payload),
        )
        self.db.add(entry)
        return entry
