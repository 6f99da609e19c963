from __future__ import annotations

from enum import IntEnum


class Stage(IntEnum):
    TODO = 1
    PLANNED = 2
    UNDERLOADING = 3
    SAILED = 4
    CLEARED = 5
    CLOSED = 6
    ARCHIVE = 7

    @property
    def label(self) -> str:
        return STAGE_NAMES[self]


STAGE_NAMES: dict[Stage, str] = {
    Stage.TODO: "To Do",
    Stage.PLANNED: "Planned",
    Stage.UNDERLOADING: "Underloading",
    Stage.SAILED: "Sailed",
    Stage.CLEARED: "Cleared",
    Stage.CLOSED: "Closed",
    Stage.ARCHIVE: "Archive",
}

FIRST_STAGE = Stage.TODO
LAST_STAGE = Stage.ARCHIVE

# Stage-1 churn is not written to shipment_stage_history.
HISTORY_TRACKING_FROM = Stage.PLANNED

# Lots at or past this stage sort ahead of the ones still being planned.
SHIPPING_READY_STAGE = Stage.UNDERLOADING


def stage_name(stage_id: int | None) -> str:
    try:
        return Stage(int(stage_id)).label
    except (TypeError, ValueError):
        return f"Stage {stage_id}"


def should_track_history(from_stage: int | None, to_stage: int) -> bool:
    return (from_stage is not None and from_stage >= HISTORY_TRACKING_FROM) or (
        to_stage >= HISTORY_TRACKING_FROM
    )
