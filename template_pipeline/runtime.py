"""Wire the long-lived pipeline services together.

Nothing here runs at import time; a host process builds one
``PipelineRuntime`` and calls ``start()`` from inside its event loop.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional

from template_pipeline.alert_publisher import AlertPublisher, WebhookAlertListener
from template_pipeline.archive_importer import ArchiveImporter, TemplateRecorder
from template_pipeline.cache_refresher import CacheRefresher, CacheRefresherOptions
from template_pipeline.config import PipelineSettings, load_settings
from template_pipeline.db import get_engine, should_run_migrations
from template_pipeline.job_models import ensure_tables
from template_pipeline.job_scheduler import PipelineJobScheduler, SchedulerOptions
from template_pipeline.job_store import JobStore, SqlJobStore
from template_pipeline.pipeline_metrics import PipelineMetricsCollector
from template_pipeline.template_events import TemplateEventBus
from template_pipeline.template_index import TemplateIndex, TemplateLoader, sql_template_loader


logger = logging.getLogger(__name__)


class PipelineRuntime:
    def __init__(
        self,
        settings: Optional[PipelineSettings] = None,
        store: Optional[JobStore] = None,
        template_loader: Optional[TemplateLoader] = None,
        recorder: Optional[TemplateRecorder] = None,
    ) -> None:
        self.settings = settings or load_settings()
        self.bus = TemplateEventBus()
        self.alerts = AlertPublisher()
        self.metrics = PipelineMetricsCollector(alerts=self.alerts)
        self.index = TemplateIndex(template_loader or sql_template_loader())
        self.cache_refresher = CacheRefresher(
            self.bus,
            self.index.refresh,
            CacheRefresherOptions(
                enabled=self.settings.cache_refresh_enabled,
                retry_limit=self.settings.cache_refresh_retry_limit,
            ),
        )
        self.scheduler = PipelineJobScheduler(
            store or SqlJobStore(),
            self.alerts,
            self.metrics,
            SchedulerOptions(
                report_cron=self.settings.report_cron,
                retry_cron=self.settings.retry_cron,
                timezone=self.settings.timezone,
                stale_minutes=self.settings.stale_minutes,
                retry_batch_size=self.settings.retry_batch_size,
            ),
        )
        self._recorder = recorder
        self._disposers: List[Callable[[], None]] = []

    def importer(self, client=None) -> ArchiveImporter:
        """Build an importer that reports on this runtime's event bus."""

        return ArchiveImporter(
            bus=self.bus,
            client=client,
            bucket=self.settings.template_bucket,
            recorder=self._recorder,
        )

    def start(self, schedule: bool = True) -> None:
        if self._disposers:
            return
        if should_run_migrations():
            ensure_tables(get_engine())
            logger.info("pipeline.runtime.tables_ensured")
        self._disposers.append(self.cache_refresher.attach())
        if self.settings.alert_webhook_url:
            self._disposers.append(
                self.alerts.register(
                    WebhookAlertListener(
                        self.settings.alert_webhook_url,
                        timeout=self.settings.alert_webhook_timeout_seconds,
                    )
                )
            )
        if schedule:
            self.scheduler.start()
        logger.info("pipeline.runtime.started scheduler=%s", schedule)

    def stop(self) -> None:
        self.scheduler.stop()
        for dispose in reversed(self._disposers):
            dispose()
        self._disposers = []
        logger.info("pipeline.runtime.stopped")
