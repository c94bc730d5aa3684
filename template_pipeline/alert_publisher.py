"""Fan out pipeline alerts to logs and registered listeners."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Literal, Optional

import httpx  # type: ignore[import-not-found]


logger = logging.getLogger(__name__)

AlertSeverity = Literal["info", "warning", "critical"]


class AlertDeliveryError(RuntimeError):
    """Raised by a listener that could not deliver an alert."""


@dataclass
class AlertPayload:
    severity: AlertSeverity
    message: str
    context: Dict[str, Any] = field(default_factory=dict)


AlertListener = Callable[[AlertPayload], None]


class AlertPublisher:
    """Log every alert, then hand it to each listener.

    Listener failures are logged and never propagate to the publisher's caller.
    """

    def __init__(self) -> None:
        self._listeners: List[AlertListener] = []

    def register(self, listener: AlertListener) -> Callable[[], None]:
        self._listeners = [*self._listeners, listener]

        def dispose() -> None:
            self._listeners = [item for item in self._listeners if item is not listener]

        return dispose

    def clear(self) -> None:
        self._listeners = []

    def publish(self, payload: AlertPayload) -> None:
        level = logging.ERROR if payload.severity == "critical" else logging.WARNING
        logger.log(level, "pipeline.alert.%s %s", payload.severity, payload.message)

        for listener in self._listeners:
            try:
                listener(payload)
            except Exception:
                logger.exception(
                    "alert_listener.failed severity=%s message=%s", payload.severity, payload.message
                )


class WebhookAlertListener:
    """POST alerts as JSON to an HTTP endpoint (chat webhook, pager, ...)."""

    def __init__(
        self,
        url: str,
        timeout: float = 5.0,
        min_severity: AlertSeverity = "info",
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._url = url
        self._timeout = timeout
        self._min_rank = _SEVERITY_RANK[min_severity]
        self._transport = transport

    def __call__(self, payload: AlertPayload) -> None:
        if _SEVERITY_RANK[payload.severity] < self._min_rank:
            return

        body = json.dumps(asdict(payload), default=str, ensure_ascii=False).encode("utf-8")
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                response = client.post(self._url, content=body, headers=headers)
        except httpx.HTTPError as exc:
            raise AlertDeliveryError(f"Failed to reach alert webhook at {self._url}: {exc}") from exc

        if not response.is_success:
            text = response.text.strip()
            detail = f"{response.status_code} {response.reason_phrase}"
            if text:
                detail = f"{detail}: {text}"
            raise AlertDeliveryError(f"Alert webhook responded with error: {detail}")


_SEVERITY_RANK: Dict[str, int] = {"info": 0, "warning": 1, "critical": 2}
