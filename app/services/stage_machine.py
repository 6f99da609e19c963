from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
import logging
from typing import Any

from sqlalchemy.orm import Session

from app.core.flow_logging import flow_info
from app.models.shipment import Shipment
from app.services.allocation_ledger import AllocationLedger
from app.services.container_tracking import ContainerTrackingFeed, default_container_tracking_feed
from app.services.document_requirements import DocumentRequirementChecker
from app.services.errors import (
    ConcurrencyConflict,
    DocumentRequirementUnmet,
    IllegalTransition,
    NotFound,
    SkipNotAllowed,
    ValidationError,
)
from app.services.history_recorder import HistoryRecorder
from app.services.stage_rules import STAGE_RULES, RequirementReport, StageContext
from app.services.stages import FIRST_STAGE, LAST_STAGE, Stage, stage_name
from app.services.unit_of_work import unit_of_work

logger = logging.getLogger(__name__)


@dataclass
class TransitionOutcome:
    shipment_id: int
    from_stage: int
    to_stage: int
    transitioned: bool
    dry_run: bool = False
    ready: bool = True
    missing_requirements: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        # A dry run is ok only when the shipment could enter the stage now.
        return self.ready if self.dry_run else self.transitioned


class StageMachine:
    """
    Forward-only, one-step stage transitions and in-place edits.

    Facts are gathered first (current stage, missing documents, container
    statuses); the write transaction only locks, re-checks the stage and
    applies. Every failure raises before the first write.
    """

    def __init__(
        self,
        db: Session,
        *,
        checker: DocumentRequirementChecker | None = None,
        recorder: HistoryRecorder | None = None,
        tracking_feed: ContainerTrackingFeed | None = None,
        ledger: AllocationLedger | None = None,
    ):
        self.db = db
        self.checker = checker or DocumentRequirementChecker(db)
        self.recorder = recorder or HistoryRecorder(db)
        self.tracking_feed = tracking_feed or default_container_tracking_feed()
        self.ledger = ledger or AllocationLedger(db)

    @staticmethod
    def _target_stage(to_stage: Any) -> Stage:
        try:
            return Stage(int(to_stage))
        except (TypeError, ValueError):
            raise ValidationError(
                message=f"Stage must be between {int(FIRST_STAGE)} and {int(LAST_STAGE)}.",
                details={"field": "to_stage_id", "value": to_stage},
            )

    @staticmethod
    def _check_move(shipment: Shipment, from_stage: int, to_stage: Stage) -> None:
        if to_stage < from_stage:
            raise IllegalTransition(
                message=f"Cannot move shipment back from {stage_name(from_stage)} to {to_stage.label}.",
                details={"shipment_id": shipment.id, "from_stage_id": from_stage, "to_stage_id": int(to_stage)},
            )
        if to_stage > from_stage + 1:
            raise SkipNotAllowed(
                message=(
                    f"Cannot skip from {stage_name(from_stage)} to {to_stage.label}; "
                    f"next stage is {stage_name(from_stage + 1)}."
                ),
                details={"shipment_id": shipment.id, "from_stage_id": from_stage, "to_stage_id": int(to_stage)},
            )

    @staticmethod
    def _raise_unmet(shipment_id: int, to_stage: Stage, report: RequirementReport) -> None:
        details = {
            "shipment_id": shipment_id,
            "stage_id": int(to_stage),
            "missing_requirements": list(report.missing),
        }
        message = f"Cannot enter {to_stage.label}: missing {', '.join(report.missing)}"
        if report.document_issue:
            raise DocumentRequirementUnmet(message=message, details=details)
        raise ValidationError(message=message, details=details)

    def transition(
        self,
        shipment_id: int,
        to_stage: Any,
        fields: dict[str, Any] | None = None,
        *,
        dry_run: bool = False,
        user_id: str | None = None,
    ) -> TransitionOutcome:
        caller_tx = self.db.in_transaction()
        target = self._target_stage(to_stage)

        shipment = self.db.get(Shipment, shipment_id)
        if shipment is None:
            raise NotFound(message=f"Shipment {shipment_id} not found.", details={"shipment_id": shipment_id})
        from_stage = int(shipment.shipment_stage_id)
        self._check_move(shipment, from_stage, target)

        rule = STAGE_RULES[target]
        payload = rule.parse(fields)
        today = date.today()
        ctx = StageContext(
            shipment=shipment,
            payload=payload,
            checker=self.checker,
            from_stage=from_stage,
            to_stage=int(target),
            today=today,
            user_id=user_id,
        )
        report = rule.check(ctx)

        if dry_run:
            flow_info(
                logger,
                "stage_dry_run shipment_id=%s from=%s to=%s missing=%s",
                shipment_id,
                from_stage,
                int(target),
                report.missing,
                category="stage",
            )
            return TransitionOutcome(
                shipment_id=shipment_id,
                from_stage=from_stage,
                to_stage=int(target),
                transitioned=False,
                dry_run=True,
                ready=report.ok,
                missing_requirements=list(report.missing),
            )
        if not report.ok:
            self._raise_unmet(shipment_id, target, report)

        container_nos = [container.container_no for container in shipment.containers]
        if not caller_tx:
            # End the read phase before reaching out to the tracking feed.
            self.db.rollback()
        statuses = self.tracking_feed.get_statuses(container_nos) if rule.uses_container_tracking else {}

        with unit_of_work(self.db, operation="transition_stage"):
            locked = self.db.get(Shipment, shipment_id, with_for_update=True, populate_existing=True)
            if locked is None:
                raise NotFound(message=f"Shipment {shipment_id} not found.", details={"shipment_id": shipment_id})
            if int(locked.shipment_stage_id) != from_stage:
                raise ConcurrencyConflict(
                    message=(
                        f"Shipment {shipment_id} moved to {stage_name(locked.shipment_stage_id)} "
                        "while this request was being prepared."
                    ),
                    details={
                        "shipment_id": shipment_id,
                        "expected_stage_id": from_stage,
                        "current_stage_id": int(locked.shipment_stage_id),
                    },
                )
            write_ctx = StageContext(
                shipment=locked,
                payload=payload,
                checker=self.checker,
                from_stage=from_stage,
                to_stage=int(target),
                today=today,
                user_id=user_id,
                ledger=self.ledger,
                tracking_statuses=statuses,
            )
            rule.apply(write_ctx)
            locked.shipment_stage_id = int(target)

            changed = sorted(payload.model_fields_set)
            self.recorder.record_stage_change(
                po_id=locked.po_id,
                shipment_id=locked.id,
                from_stage_id=from_stage,
                to_stage_id=int(target),
                payload={
                    "source": "edit" if write_ctx.is_edit else "transition",
                    "fields": payload.model_dump(mode="json", exclude_unset=True),
                },
            )
            if write_ctx.is_edit:
                self.recorder.append(
                    "shipment",
                    locked.id,
                    user_id,
                    "STAGE_DETAILS_UPDATED",
                    {"stage": target.label, "fields": changed},
                )
            else:
                self.recorder.append(
                    "shipment",
                    locked.id,
                    user_id,
                    "STAGE_CHANGED",
                    {"from": stage_name(from_stage), "to": target.label},
                )

        flow_info(
            logger,
            "stage_transition shipment_id=%s from=%s to=%s edit=%s",
            shipment_id,
            from_stage,
            int(target),
            from_stage == int(target),
            category="stage",
        )
        return TransitionOutcome(
            shipment_id=shipment_id,
            from_stage=from_stage,
            to_stage=int(target),
            transitioned=True,
        )
