import logging

from app.core.config import settings

# Category name -> settings switch that narrows FLOW_LOGS_ENABLED.
_CATEGORY_SWITCHES = {
    "stage": "FLOW_LOGS_STAGE_ENABLED",
    "allocation": "FLOW_LOGS_ALLOCATION_ENABLED",
    "lots": "FLOW_LOGS_LOTS_ENABLED",
}


def flow_logs_enabled(category: str | None = None) -> bool:
    if not settings.FLOW_LOGS_ENABLED:
        return False
    switch = _CATEGORY_SWITCHES.get(category or "")
    if switch is None:
        return True
    return bool(getattr(settings, switch, True))


def flow_info(
    logger: logging.Logger,
    msg: str,
    *args,
    category: str | None = None,
    **kwargs,
) -> None:
    """Info-level business trace, silenced per category from settings."""
    if flow_logs_enabled(category):
        logger.info(msg, *args, **kwargs)
