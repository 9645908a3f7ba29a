"""Tests for the background job service."""

import os
from unittest.mock import patch

import pytest

from azrm_exporter.core.errors import ExporterError
from azrm_exporter.schemas.portscan import ScanResult, build_discovery_set
from azrm_exporter.services.scan_cache import ScanCache
from azrm_exporter.workers.jobs import CACHE_SAVE_JOB_ID, COLLECT_JOB_ID, PORTSCAN_JOB_ID, ExporterService
from tests.helpers import SUBSCRIPTION_ID, FakeProbe, make_public_ip


@pytest.fixture
def service_factory(client_factory, metrics):
    services = []

    def build(settings):
        service = ExporterService(settings, metrics=metrics, client_factory=client_factory, prober=FakeProbe())
        services.append(service)
        return service

    # no Azure collectors: the collect job runs an empty cycle
    with patch("azrm_exporter.workers.jobs.build_collectors", return_value=[]):
        yield build

    for service in services:
        if service._scheduler.running:
            service._scheduler.shutdown(wait=False)


def write_snapshot(path, address="10.0.0.1", port=22):
    cache = ScanCache()
    cache.replace(address, [ScanResult(address=address, port=port)])
    cache.write(path, build_discovery_set([make_public_ip(address)]))


class TestExporterService:
    """Test job registration, cache restore and shutdown."""

    def test_start_registers_jobs(self, service_factory, test_settings):
        """Test collect and portscan jobs are scheduled."""
        service = service_factory(test_settings)
        service.start()
        try:
            assert service.subscription_ids == [SUBSCRIPTION_ID]
            assert service._scheduler.get_job(COLLECT_JOB_ID) is not None
            assert service._scheduler.get_job(PORTSCAN_JOB_ID) is not None
            assert service._scheduler.get_job(CACHE_SAVE_JOB_ID) is None
        finally:
            service.shutdown()

    def test_cache_save_job_when_interval_set(self, service_factory, test_settings):
        """Test periodic snapshots are scheduled only with an interval."""
        test_settings.PORTSCAN_CACHE_SAVE_INTERVAL = 600
        service = service_factory(test_settings)
        service.start()
        try:
            assert service._scheduler.get_job(CACHE_SAVE_JOB_ID) is not None
        finally:
            service.shutdown()

    def test_portscan_disabled(self, service_factory, test_settings):
        """Test no portscanner or portscan job exist when scanning is off."""
        test_settings.PORTSCAN_ENABLED = False
        service = service_factory(test_settings)
        service.start()
        try:
            assert service.portscanner is None
            assert service._scheduler.get_job(PORTSCAN_JOB_ID) is None
        finally:
            service.shutdown()

    def test_cache_restored_at_start(self, service_factory, test_settings, metrics):
        """Test a snapshot is loaded and published before the first scan."""
        write_snapshot(test_settings.PORTSCAN_CACHE_PATH)
        service = service_factory(test_settings)
        service.start()
        try:
            assert service.portscanner.cached_addresses() == {"10.0.0.1"}
            assert (
                metrics.registry.get_sample_value(
                    "azurerm_publicip_portscan_port",
                    {"ipAddress": "10.0.0.1", "protocol": "TCP", "port": "22", "description": ""},
                )
                == 1.0
            )
        finally:
            service.shutdown()

    def test_corrupt_cache_aborts_start(self, service_factory, test_settings):
        """Test a corrupt snapshot fails startup."""
        with open(test_settings.PORTSCAN_CACHE_PATH, "w") as f:
            f.write("{not json")
        service = service_factory(test_settings)

        with pytest.raises(ExporterError, match="corrupt snapshot"):
            service.start()

    def test_unresolvable_subscriptions_abort_start(self, service_factory, test_settings, client_factory):
        """Test subscription resolution failures propagate."""
        client_factory.resolve_subscription_ids.side_effect = ExporterError("No Azure subscriptions found")
        service = service_factory(test_settings)

        with pytest.raises(ExporterError):
            service.start()

    def test_shutdown_saves_cache(self, service_factory, test_settings):
        """Test a final snapshot is written at shutdown."""
        service = service_factory(test_settings)
        service.start()
        service.shutdown()

        assert os.path.exists(test_settings.PORTSCAN_CACHE_PATH)
        assert ScanCache.read(test_settings.PORTSCAN_CACHE_PATH).results == {}

    def test_save_failure_logged(self, service_factory, test_settings, tmp_path):
        """Test the periodic save job does not raise on write failures."""
        test_settings.PORTSCAN_CACHE_PATH = str(tmp_path / "missing" / "portscan.json")
        service = service_factory(test_settings)

        service._save_cache_job()

        assert not os.path.exists(test_settings.PORTSCAN_CACHE_PATH)

    def test_portscan_job_runs_pass_and_saves(self, service_factory, test_settings):
        """Test a portscan job scans the discovery set and snapshots the cache."""
        service = service_factory(test_settings)
        service.portscanner.probe = FakeProbe(open_ports={"10.0.0.1": {443}})
        service.portscanner.set_addresses(build_discovery_set([make_public_ip("10.0.0.1")]))
        service.portscanner.enable()

        service._portscan_job()

        snapshot = ScanCache.read(test_settings.PORTSCAN_CACHE_PATH)
        assert [r.port for r in snapshot.results["10.0.0.1"]] == [443]
