from __future__ import annotations

import logging
from typing import Mapping
from urllib.parse import quote

import requests

from app.core.config import settings

logger = logging.getLogger(__name__)


def normalize_container_no(value: str | None) -> str:
    return (value or "").replace(" ", "").strip().upper()


class ContainerTrackingFeed:
    """
    Read-only source of container status strings.

    A status informs shipment fields but never gates a transition, so
    implementations return None instead of raising when no status is known.
    """

    def get_status(self, container_no: str) -> str | None:
        raise NotImplementedError

    def get_statuses(self, container_nos: list[str]) -> dict[str, str | None]:
        statuses: dict[str, str | None] = {}
        for raw in container_nos:
            container_no = normalize_container_no(raw)
            if not container_no or container_no in statuses:
                continue
            statuses[container_no] = self.get_status(container_no)
        return statuses


class NullContainerTrackingFeed(ContainerTrackingFeed):
    def get_status(self, container_no: str) -> str | None:
        return None


class StaticContainerTrackingFeed(ContainerTrackingFeed):
    """Fixed lookup table; used for fixtures and manual overrides."""

    def __init__(self, statuses: Mapping[str, str]):
        self._statuses = {normalize_container_no(k): v for k, v in statuses.items()}

    def get_status(self, container_no: str) -> str | None:
        return self._statuses.get(normalize_container_no(container_no))


class HttpContainerTrackingFeed(ContainerTrackingFeed):
    def __init__(
        self,
        base_url: str | None = None,
        timeout_seconds: float | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = (base_url or settings.CONTAINER_TRACKING_URL).rstrip("/")
        self.timeout_seconds = timeout_seconds or settings.CONTAINER_TRACKING_TIMEOUT_SECONDS
        self.session = session or requests.Session()

    def get_status(self, container_no: str) -> str | None:
        container_no = normalize_container_no(container_no)
        if not container_no or not self.base_url:
            return None
        url = f"{self.base_url}/containers/{quote(container_no)}/status"
        try:
            response = self.session.get(url, timeout=self.timeout_seconds)
            response.raise_for_status()
            body = response.json()
        except (requests.RequestException, ValueError) as exc:
            logger.warning("container_tracking_unavailable container_no=%s error=%s", container_no, exc)
            return None
        if not isinstance(body, dict):
            return None
        status = str(body.get("status") or "").strip()
        return status or None


def default_container_tracking_feed() -> ContainerTrackingFeed:
    if settings.CONTAINER_TRACKING_ENABLED and settings.CONTAINER_TRACKING_URL:
        return HttpContainerTrackingFeed()
    return NullContainerTrackingFeed()
