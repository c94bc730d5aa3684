"""Publish/subscribe channel for template import events.

The bus is constructed explicitly and handed to whoever needs it (importer,
cache refresher); there is no module-level instance. Delivery is synchronous,
in registration order, at most once per registration. A listener that raises
is logged and skipped so the remaining listeners still run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional


logger = logging.getLogger(__name__)

TEMPLATE_IMPORTED = "template.imported"
TEMPLATE_IMPORT_FAILED = "template.import.failed"
TEMPLATE_EVENTS = (TEMPLATE_IMPORTED, TEMPLATE_IMPORT_FAILED)


@dataclass
class TemplateImportedPayload:
    import_id: str
    user_id: str
    pages: List[str] = field(default_factory=list)
    components: List[str] = field(default_factory=list)
    duration_ms: int = 0
    theme: Optional[str] = None
    assets_base: Optional[str] = None
    request_id: Optional[str] = None


@dataclass
class TemplateImportFailedPayload:
    import_id: str
    user_id: str
    error: Any
    duration_ms: int = 0
    details: Any = None
    request_id: Optional[str] = None


Listener = Callable[[Any], None]
Disposer = Callable[[], None]


class TemplateEventBus:
    def __init__(self) -> None:
        self._listeners: Dict[str, List[Listener]] = {name: [] for name in TEMPLATE_EVENTS}

    def _check(self, event: str) -> None:
        if event not in self._listeners:
            raise ValueError(f"Unknown template event: {event}")

    def on(self, event: str, listener: Listener) -> Disposer:
        self._check(event)
        self._listeners[event] = [*self._listeners[event], listener]

        def dispose() -> None:
            self.off(event, listener)

        return dispose

    def once(self, event: str, listener: Listener) -> Disposer:
        def wrapper(payload: Any) -> None:
            self.off(event, wrapper)
            listener(payload)

        return self.on(event, wrapper)

    def off(self, event: str, listener: Listener) -> None:
        self._check(event)
        current = self._listeners[event]
        if listener in current:
            index = current.index(listener)
            self._listeners[event] = current[:index] + current[index + 1 :]

    def remove_all(self, event: Optional[str] = None) -> None:
        if event is None:
            self._listeners = {name: [] for name in TEMPLATE_EVENTS}
            return
        self._check(event)
        self._listeners[event] = []

    def listener_count(self, event: str) -> int:
        self._check(event)
        return len(self._listeners[event])

    def emit(self, event: str, payload: Any) -> int:
        """Deliver ``payload`` to every listener of ``event``; return how many succeeded."""

        self._check(event)
        delivered = 0
        for listener in self._listeners[event]:
            try:
                listener(payload)
            except Exception:
                logger.exception("Listener %r failed while handling %s", listener, event)
                continue
            delivered += 1
        return delivered

    def on_imported(self, listener: Callable[[TemplateImportedPayload], None]) -> Disposer:
        return self.on(TEMPLATE_IMPORTED, listener)

    def on_import_failed(self, listener: Callable[[TemplateImportFailedPayload], None]) -> Disposer:
        return self.on(TEMPLATE_IMPORT_FAILED, listener)

    def emit_imported(self, payload: TemplateImportedPayload) -> int:
        return self.emit(TEMPLATE_IMPORTED, payload)

    def emit_import_failed(self, payload: TemplateImportFailedPayload) -> int:
        return self.emit(TEMPLATE_IMPORT_FAILED, payload)
