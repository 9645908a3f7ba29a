"""Port census of discovered public IP addresses."""

import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Collection, Iterable

import structlog

from azrm_exporter.core.metrics import ExporterMetrics
from azrm_exporter.schemas.portscan import (
    DiscoverySet,
    PortRange,
    PublicIpDescriptor,
    ScanResult,
)
from azrm_exporter.services.scan_cache import ScanCache

logger = structlog.get_logger()

Probe = Callable[[str, PortRange, float], Iterable[int]]


class ScanListener:
    """
    Lifecycle hooks of the portscanner, all no-ops by default.

    Hooks run on the scanning threads and, for on_results_reset and
    on_result, while the portscanner lock is held: they must return quickly
    and must not call back into the portscanner.
    """

    def on_scan_start(self) -> None:
        pass

    def on_scan_finish(self) -> None:
        pass

    def on_address_start(self, address: str, descriptor: PublicIpDescriptor) -> None:
        pass

    def on_address_finish(self, address: str, descriptor: PublicIpDescriptor, elapsed: float) -> None:
        pass

    def on_results_reset(self, addresses: Collection[str]) -> None:
        pass

    def on_result(self, result: ScanResult) -> None:
        pass


class PortscanMetricsListener(ScanListener):
    """Publishes scan progress and open ports into the exporter gauges."""

    def __init__(self, metrics: ExporterMetrics) -> None:
        self.metrics = metrics
        self._status_addresses: set[str] = set()
        self._status_lock = threading.Lock()

    def on_scan_start(self) -> None:
        logger.info("portscan.pass_start")

    def on_scan_finish(self) -> None:
        logger.info("portscan.pass_finish")

    def on_address_start(self, address: str, descriptor: PublicIpDescriptor) -> None:
        logger.debug("portscan.address_start", ipAddress=address, resourceID=descriptor.resource_id)
        with self._status_lock:
            self._status_addresses.add(address)
            self.metrics.portscan_status.labels(ipAddress=address, type="finished").set(0)

    def on_address_finish(self, address: str, descriptor: PublicIpDescriptor, elapsed: float) -> None:
        logger.debug("portscan.address_finish", ipAddress=address, elapsed=round(elapsed, 3))
        with self._status_lock:
            self.metrics.portscan_status.labels(ipAddress=address, type="elapsed").set(elapsed)
            self.metrics.portscan_status.labels(ipAddress=address, type="finished").set_to_current_time()

    def on_results_reset(self, addresses: Collection[str]) -> None:
        self.metrics.portscan_port.clear()
        with self._status_lock:
            for address in self._status_addresses - set(addresses):
                for status_type in ("finished", "elapsed"):
                    try:
                        self.metrics.portscan_status.remove(address, status_type)
                    except KeyError:
                        # address never finished, "elapsed" was not written
                        pass
            self._status_addresses &= set(addresses)

    def on_result(self, result: ScanResult) -> None:
        self.metrics.portscan_port.labels(**result.labels()).set(result.value)


class Portscanner:
    """
    Bounded-concurrency port census over the current discovery set.

    One lock guards both the discovery set and the result cache. Results
    only reach metrics through the listener, so neither the cache nor the
    scanner knows the shape of the metrics sink.
    """

    def __init__(
        self,
        probe: Probe,
        port_ranges: list[PortRange],
        parallel: int = 2,
        timeout: float = 5,
        listener: ScanListener | None = None,
    ) -> None:
        """
        Initialize portscanner.

        Args:
            probe: Called as probe(address, port_range, timeout), returns open ports
            port_ranges: Ranges probed for every address, in order
            parallel: Maximum number of addresses scanned at the same time
            timeout: Probe timeout shared by every range of an address
            listener: Lifecycle hooks (no-op listener when omitted)
        """
        if parallel < 1:
            raise ValueError("parallel must be > 0")

        self.probe = probe
        self.port_ranges = list(port_ranges)
        self.parallel = parallel
        self.timeout = timeout
        self.listener = listener or ScanListener()

        self._lock = threading.Lock()
        self._pass_lock = threading.Lock()
        self._cache = ScanCache()
        self._discovery: DiscoverySet = {}
        self._discovery_live = False
        self._enabled = False

    @property
    def enabled(self) -> bool:
        return self._enabled

    def enable(self) -> bool:
        """Open the scanning gate; returns True only for the call that opened it."""
        with self._lock:
            newly_enabled = not self._enabled
            self._enabled = True
        if newly_enabled:
            logger.info("portscan.enabled")
        return newly_enabled

    def set_addresses(self, discovery: DiscoverySet) -> None:
        """Replace the discovery set wholesale."""
        discovery = dict(discovery)
        with self._lock:
            self._discovery = discovery
            self._discovery_live = True
        logger.debug("portscan.addresses_updated", addresses=len(discovery))

    def addresses(self) -> set[str]:
        with self._lock:
            return set(self._discovery)

    def results(self, address: str) -> list[ScanResult] | None:
        with self._lock:
            return self._cache.get(address)

    def cached_addresses(self) -> set[str]:
        with self._lock:
            return self._cache.addresses()

    def cleanup(self) -> list[str]:
        """Evict cached results of addresses no longer in the discovery set."""
        with self._lock:
            orphaned = self._cache.evict_orphans(self._discovery)
        if orphaned:
            logger.info("portscan.orphans_evicted", count=len(orphaned), addresses=sorted(orphaned))
        return orphaned

    def publish(self) -> None:
        """Reset published results, then emit every cached result."""
        with self._lock:
            self.listener.on_results_reset(self._cache.addresses())
            self._push_results()

    def _push_results(self) -> None:
        # caller holds self._lock
        for result in self._cache.iter_results():
            self.listener.on_result(result)

    def add_results(self, address: str, results: Iterable[ScanResult]) -> bool:
        """
        Replace the cached results of address and republish.

        Results for an address that left the discovery set while it was
        being scanned are dropped.
        """
        with self._lock:
            if address not in self._discovery:
                logger.debug("portscan.results_dropped", ipAddress=address)
                return False
            self._cache.replace(address, results)
            self._push_results()
        return True

    def run_scan_pass(self) -> bool:
        """
        Scan every address of the discovery set once.

        Returns False without scanning when the gate is still closed or
        another pass is running.
        """
        if not self._enabled:
            logger.debug("portscan.pass_skipped", reason="not enabled")
            return False
        if not self._pass_lock.acquire(blocking=False):
            logger.warning("portscan.pass_skipped", reason="previous pass still running")
            return False

        try:
            started = time.monotonic()
            self.listener.on_scan_start()

            self.cleanup()
            self.publish()

            with self._lock:
                targets = dict(self._discovery)

            with ThreadPoolExecutor(max_workers=self.parallel, thread_name_prefix="portscan") as pool:
                futures = {
                    pool.submit(self._scan_address, address, descriptor): address
                    for address, descriptor in targets.items()
                }
                for future in as_completed(futures):
                    try:
                        future.result()
                    except Exception:
                        logger.exception("portscan.address_failed", ipAddress=futures[future])

            self.cleanup()
            self.publish()

            self.listener.on_scan_finish()
            logger.info(
                "portscan.pass_complete",
                addresses=len(targets),
                duration=round(time.monotonic() - started, 3),
            )
        finally:
            self._pass_lock.release()
        return True

    def _scan_address(self, address: str, descriptor: PublicIpDescriptor) -> None:
        with self._lock:
            still_owned = address in self._discovery
        if not still_owned:
            logger.debug("portscan.address_skipped", ipAddress=address, reason="no longer owned")
            return

        self.listener.on_address_start(address, descriptor)
        started = time.monotonic()
        results = self._probe_address(address)
        elapsed = time.monotonic() - started
        self.listener.on_address_finish(address, descriptor, elapsed)

        self.add_results(address, results)

    def _probe_address(self, address: str) -> list[ScanResult]:
        log = logger.bind(ipAddress=address)
        results: list[ScanResult] = []
        for port_range in self.port_ranges:
            try:
                open_ports = self.probe(address, port_range, self.timeout)
            except OSError as e:
                # unresolvable or unreachable, keep what was found so far
                log.warning("portscan.probe_failed", portRange=str(port_range), error=str(e))
                break

            for port in sorted(open_ports):
                log.debug("portscan.port_open", port=port)
                results.append(ScanResult(address=address, protocol="TCP", port=port))
        return results

    def save(self, path: str) -> None:
        """
        Write the cache and discovery set to path.

        Raises:
            ScanCacheError: If the snapshot cannot be written
        """
        with self._lock:
            self._cache.write(path, self._discovery)
            cached = len(self._cache)
        logger.info("portscan.cache_saved", path=path, addresses=cached)

    def load(self, path: str) -> None:
        """
        Restore the cache from path, then clean up and publish.

        The snapshot's discovery set is adopted only while no live discovery
        has happened in this process; otherwise the live set wins and
        restored orphans are evicted before anything is published.

        Raises:
            ScanCacheError: If the snapshot is missing or corrupt
        """
        with self._lock:
            snapshot = ScanCache.read(path)
            self._cache.restore(snapshot)
            if not self._discovery_live:
                self._discovery = dict(snapshot.public_ips)
            cached = len(self._cache)
        logger.info("portscan.cache_loaded", path=path, addresses=cached, savedAt=snapshot.saved_at.isoformat())

        self.cleanup()
        self.publish()
