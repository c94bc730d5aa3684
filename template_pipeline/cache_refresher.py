"""Rebuild the template index whenever a template import completes.

Refresh attempts run back-to-back with no delay. When every attempt fails the
failure is logged and nothing else happens: the import that triggered the
refresh is never failed and no event is re-emitted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Callable, Optional

from template_pipeline.template_events import TemplateEventBus, TemplateImportedPayload
from template_pipeline.template_index import RefreshContext


logger = logging.getLogger(__name__)

REFRESH_REASON = "template-imported"

RefreshOperation = Callable[[RefreshContext], Any]


@dataclass(frozen=True)
class CacheRefresherOptions:
    enabled: bool = True
    retry_limit: int = 3


class CacheRefresher:
    def __init__(
        self,
        bus: TemplateEventBus,
        refresh: RefreshOperation,
        options: Optional[CacheRefresherOptions] = None,
    ) -> None:
        self._bus = bus
        self._refresh = refresh
        self._defaults = options or CacheRefresherOptions()
        self.options = self._defaults
        self._dispose: Optional[Callable[[], None]] = None

    def configure(self, enabled: Optional[bool] = None, retry_limit: Optional[int] = None) -> None:
        changes = {}
        if enabled is not None:
            changes["enabled"] = enabled
        if retry_limit is not None:
            if retry_limit < 0:
                raise ValueError("retry_limit must be >= 0")
            changes["retry_limit"] = retry_limit
        self.options = replace(self.options, **changes)

    def reset_config(self) -> None:
        self.options = self._defaults

    @property
    def attached(self) -> bool:
        return self._dispose is not None

    def attach(self) -> Callable[[], None]:
        if self._dispose is None:
            self._dispose = self._bus.on_imported(self.handle_imported)
        return self.detach

    def detach(self) -> None:
        if self._dispose is not None:
            self._dispose()
            self._dispose = None

    def handle_imported(self, payload: TemplateImportedPayload) -> None:
        if not self.options.enabled:
            logger.info("cache_refresher.skip import_id=%s reason=disabled", payload.import_id)
            return
        self.refresh_with_retry(payload, self.options.retry_limit)

    def refresh_with_retry(self, payload: TemplateImportedPayload, retries: int) -> bool:
        context = RefreshContext(
            reason=REFRESH_REASON,
            import_id=payload.import_id,
            template_id=(payload.components or payload.pages or [None])[0],
            request_id=payload.request_id,
        )

        attempts = 0
        last_error: Optional[BaseException] = None
        while attempts <= retries:
            attempts += 1
            try:
                self._refresh(context)
            except Exception as exc:
                last_error = exc
                logger.warning(
                    "cache_refresher.retry import_id=%s attempt=%d error=%s",
                    payload.import_id,
                    attempts,
                    exc,
                )
                continue
            logger.info("cache_refresher.success import_id=%s attempts=%d", payload.import_id, attempts)
            return True

        logger.error(
            "cache_refresher.failed import_id=%s attempts=%d error=%s",
            payload.import_id,
            attempts,
            last_error,
            exc_info=last_error,
        )
        return False
