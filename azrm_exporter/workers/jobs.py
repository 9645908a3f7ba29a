"""
Background jobs of the exporter.

Uses APScheduler to run the scrape cycle every SCRAPE_TIME seconds and,
when enabled, a portscan pass every PORTSCAN_TIME seconds. Every job runs
with max_instances=1: a tick that arrives while the previous run of the
same job is still busy is skipped and logged instead of piling up.
"""

import os
from datetime import datetime, timezone

import structlog
from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MAX_INSTANCES, JobEvent
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from azrm_exporter.collectors import build_collectors
from azrm_exporter.core.azure_client import AzureClientFactory
from azrm_exporter.core.config import Settings
from azrm_exporter.core.errors import ScanCacheError
from azrm_exporter.core.metrics import ExporterMetrics
from azrm_exporter.services.portscanner import PortscanMetricsListener, Portscanner, Probe
from azrm_exporter.services.probe import TcpPortProber
from azrm_exporter.workers.scheduler import CollectionScheduler

logger = structlog.get_logger()

COLLECT_JOB_ID = "collect"
PORTSCAN_JOB_ID = "portscan"
CACHE_SAVE_JOB_ID = "portscan-cache-save"


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


class ExporterService:
    """Wires collectors, scheduler and portscanner to a background job scheduler."""

    def __init__(
        self,
        settings: Settings,
        metrics: ExporterMetrics | None = None,
        client_factory: AzureClientFactory | None = None,
        prober: Probe | None = None,
    ) -> None:
        self.settings = settings
        self.metrics = metrics or ExporterMetrics(
            resourcegroup_tags=settings.AZURE_RESOURCEGROUP_TAGS,
            resource_tags=settings.AZURE_RESOURCE_TAGS,
        )
        self.client_factory = client_factory or AzureClientFactory(settings)

        self.portscanner: Portscanner | None = None
        if settings.PORTSCAN_ENABLED:
            self.portscanner = Portscanner(
                probe=prober or TcpPortProber(threads=settings.PORTSCAN_THREADS),
                port_ranges=settings.portscan_port_ranges,
                parallel=settings.PORTSCAN_PARALLEL,
                timeout=settings.PORTSCAN_TIMEOUT,
                listener=PortscanMetricsListener(self.metrics),
            )

        self.subscription_ids: list[str] = []
        self.collection: CollectionScheduler | None = None
        self._scheduler = BackgroundScheduler(timezone=timezone.utc)
        self._scheduler.add_listener(self._on_job_event, EVENT_JOB_MAX_INSTANCES | EVENT_JOB_ERROR)

    @property
    def cache_path(self) -> str:
        return self.settings.PORTSCAN_CACHE_PATH

    def start(self) -> None:
        """
        Resolve subscriptions, restore the portscan cache and start the jobs.

        Raises:
            ExporterError: If subscriptions cannot be resolved or the cache file is corrupt
        """
        self.subscription_ids = self.client_factory.resolve_subscription_ids()
        self.collection = CollectionScheduler(
            collectors=build_collectors(self.client_factory, self.metrics, self.settings),
            subscription_ids=self.subscription_ids,
            metrics=self.metrics,
            portscanner=self.portscanner,
            max_workers=self.settings.COLLECTOR_MAX_WORKERS,
            on_scanning_enabled=self._trigger_portscan,
        )

        if self.portscanner is not None and self.cache_path and os.path.exists(self.cache_path):
            self.portscanner.load(self.cache_path)

        self._scheduler.add_job(
            self.collection.run_cycle,
            trigger=IntervalTrigger(seconds=self.settings.SCRAPE_TIME),
            id=COLLECT_JOB_ID,
            name="Azure ResourceManager collection",
            max_instances=1,
            coalesce=True,
            next_run_time=now_utc(),
            replace_existing=True,
        )

        if self.portscanner is not None:
            self._scheduler.add_job(
                self._portscan_job,
                trigger=IntervalTrigger(seconds=self.settings.PORTSCAN_TIME),
                id=PORTSCAN_JOB_ID,
                name="Public IP portscan",
                max_instances=1,
                coalesce=True,
                replace_existing=True,
            )
            if self.cache_path and self.settings.PORTSCAN_CACHE_SAVE_INTERVAL > 0:
                self._scheduler.add_job(
                    self._save_cache_job,
                    trigger=IntervalTrigger(seconds=self.settings.PORTSCAN_CACHE_SAVE_INTERVAL),
                    id=CACHE_SAVE_JOB_ID,
                    name="Portscan cache snapshot",
                    max_instances=1,
                    coalesce=True,
                    replace_existing=True,
                )

        self._scheduler.start()
        logger.info(
            "exporter.started",
            subscriptions=len(self.subscription_ids),
            scrapeTime=self.settings.SCRAPE_TIME,
            portscan=self.portscanner is not None,
        )

    def shutdown(self) -> None:
        """
        Stop the jobs and write a final cache snapshot.

        Raises:
            ScanCacheError: If the final snapshot cannot be written
        """
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        if self.collection is not None:
            self.collection.shutdown()
        if self.portscanner is not None and self.cache_path:
            self.portscanner.save(self.cache_path)
        logger.info("exporter.stopped")

    def _trigger_portscan(self) -> None:
        """Bring the first portscan forward once discovery opened the gate."""
        if self._scheduler.get_job(PORTSCAN_JOB_ID) is not None:
            self._scheduler.modify_job(PORTSCAN_JOB_ID, next_run_time=now_utc())

    def _portscan_job(self) -> None:
        if self.portscanner is None:
            return
        if not self.portscanner.run_scan_pass():
            return
        if self.cache_path:
            self._save_cache_job()

    def _save_cache_job(self) -> None:
        if self.portscanner is None:
            return
        try:
            self.portscanner.save(self.cache_path)
        except ScanCacheError as e:
            logger.error("portscan.cache_save_failed", path=self.cache_path, error=str(e))

    def _on_job_event(self, event: JobEvent) -> None:
        if event.code == EVENT_JOB_MAX_INSTANCES:
            logger.warning("scheduler.job_skipped", job=event.job_id, reason="previous run still running")
        elif getattr(event, "exception", None) is not None:
            logger.error("scheduler.job_failed", job=event.job_id, error=str(event.exception))
