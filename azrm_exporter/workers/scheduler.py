"""Scrape cycle: fan-out of collector tasks, fan-in of discovered addresses."""

import itertools
import queue
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable

import structlog

from azrm_exporter.collectors.base import ResourceCollector
from azrm_exporter.core.errors import CollectorError
from azrm_exporter.core.metrics import ExporterMetrics, MetricsList
from azrm_exporter.schemas.portscan import DiscoverySet, PublicIpDescriptor, build_discovery_set
from azrm_exporter.services.portscanner import Portscanner

logger = structlog.get_logger()

PUBLIC_IP_OWNER = "publicips"

# aggregation channel markers
_CHANNEL_CLOSED = object()
_DISCOVERY_FAILED = object()


class CollectionScheduler:
    """
    Runs scrape cycles.

    Each cycle launches one task per (subscription, enabled collector) and
    waits for all of them. Gauge-writing collectors publish their own
    series. The address-producing collector sends its descriptors through a
    queue to a fan-in worker, which merges them into one discovery set and
    hands it to the portscanner once the scheduler closes the queue.

    Cycles are single-flight: a cycle requested while the previous one is
    still running is skipped.
    """

    def __init__(
        self,
        collectors: list[ResourceCollector],
        subscription_ids: list[str],
        metrics: ExporterMetrics,
        portscanner: Portscanner | None = None,
        max_workers: int = 0,
        on_scanning_enabled: Callable[[], None] | None = None,
    ) -> None:
        self.collectors = [c for c in collectors if c.enabled]
        self.discovers_addresses = any(c.produces_addresses for c in self.collectors)
        self.subscription_ids = list(subscription_ids)
        self.metrics = metrics
        self.portscanner = portscanner
        self.max_workers = max_workers
        self.on_scanning_enabled = on_scanning_enabled

        self._cycle_lock = threading.Lock()
        self._cycle_counter = itertools.count(1)
        self._fanin = ThreadPoolExecutor(max_workers=1, thread_name_prefix="address-fanin")

        for collector in collectors:
            if not collector.enabled:
                logger.info("collector.disabled", collector=collector.name)

    def run_cycle(self) -> Future | None:
        """
        Run one scrape cycle and return once every collector task finished.

        Returns:
            Future of the fan-in handoff, resolving to the merged discovery
            set (None when a discovery task failed); None when the cycle was
            skipped because the previous one is still running
        """
        if not self._cycle_lock.acquire(blocking=False):
            logger.warning("collector.cycle_skipped", reason="previous cycle still running")
            return None

        try:
            cycle = next(self._cycle_counter)
            started = time.monotonic()
            tasks = [(sub, collector) for sub in self.subscription_ids for collector in self.collectors]
            logger.info(
                "collector.cycle_start",
                cycle=cycle,
                subscriptions=len(self.subscription_ids),
                tasks=len(tasks),
            )

            channel: queue.Queue = queue.Queue()
            handoff = self._fanin.submit(self._drain_addresses, channel, cycle)

            try:
                workers = self.max_workers or max(1, len(tasks))
                with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="collector") as pool:
                    futures = [pool.submit(self._run_task, collector, sub, channel) for sub, collector in tasks]
                # leaving the pool context is the join barrier
                succeeded = sum(1 for f in futures if f.result())
            finally:
                channel.put(_CHANNEL_CLOSED)

            logger.info(
                "collector.cycle_complete",
                cycle=cycle,
                succeeded=succeeded,
                failed=len(tasks) - succeeded,
                duration=round(time.monotonic() - started, 3),
            )
            return handoff
        finally:
            self._cycle_lock.release()

    def _run_task(self, collector: ResourceCollector, subscription_id: str, channel: queue.Queue) -> bool:
        log = logger.bind(collector=collector.name, subscriptionID=subscription_id)
        started = time.monotonic()
        try:
            result = collector.collect(subscription_id)
        except CollectorError as e:
            log.error("collector.task_failed", error=str(e))
            if collector.produces_addresses:
                channel.put(_DISCOVERY_FAILED)
            return False
        except Exception:
            log.exception("collector.task_crashed")
            if collector.produces_addresses:
                channel.put(_DISCOVERY_FAILED)
            return False

        if collector.produces_addresses:
            channel.put(list(result or []))
        log.debug("collector.task_complete", duration=round(time.monotonic() - started, 3))
        return True

    def _drain_addresses(self, channel: queue.Queue, cycle: int) -> DiscoverySet | None:
        descriptors: list[PublicIpDescriptor] = []
        failed = False
        while True:
            item = channel.get()
            if item is _CHANNEL_CLOSED:
                break
            if item is _DISCOVERY_FAILED:
                failed = True
                continue
            descriptors.extend(item)

        if not self.discovers_addresses:
            return None
        if failed:
            # partial discovery, the previous set stays
            logger.warning("collector.discovery_incomplete", cycle=cycle, action="keeping previous addresses")
            return None

        info = MetricsList()
        for descriptor in descriptors:
            info.add(descriptor.info_labels(), descriptor.info_value())
        self.metrics.replace("azurerm_publicip_info", PUBLIC_IP_OWNER, info)

        discovery = build_discovery_set(descriptors)
        logger.info("collector.discovery_merged", cycle=cycle, publicIps=len(descriptors), addresses=len(discovery))

        if self.portscanner is not None:
            self.portscanner.set_addresses(discovery)
            self.portscanner.cleanup()
            if self.portscanner.enable() and self.on_scanning_enabled is not None:
                self.on_scanning_enabled()
        return discovery

    def shutdown(self) -> None:
        self._fanin.shutdown(wait=True)
