"""Pytest configuration and fixtures for exporter tests."""

from unittest.mock import MagicMock

import pytest
from prometheus_client import CollectorRegistry

from azrm_exporter.core.azure_client import AzureClientFactory
from azrm_exporter.core.config import Settings
from azrm_exporter.core.metrics import ExporterMetrics
from tests.helpers import SUBSCRIPTION_ID


@pytest.fixture
def metrics() -> ExporterMetrics:
    """Exporter metrics on a fresh registry."""
    return ExporterMetrics(
        registry=CollectorRegistry(),
        resourcegroup_tags=["owner"],
        resource_tags=["owner"],
    )


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings for tests, independent of any .env file."""
    return Settings(
        _env_file=None,
        AZURE_SUBSCRIPTION_IDS=[SUBSCRIPTION_ID],
        AZURE_LOCATIONS=["westeurope"],
        AZURE_RESOURCEGROUP_TAGS=["owner"],
        AZURE_RESOURCE_TAGS=["owner"],
        SCRAPE_TIME=300,
        PORTSCAN_ENABLED=True,
        PORTSCAN_PARALLEL=2,
        PORTSCAN_TIMEOUT=1,
        PORTSCAN_PORTRANGE="22,80,443",
        PORTSCAN_CACHE_PATH=str(tmp_path / "portscan.json"),
    )


@pytest.fixture
def client_factory() -> MagicMock:
    """Azure client factory whose management clients are mocks."""
    factory = MagicMock(spec=AzureClientFactory)
    factory.request_options = {}
    factory.resolve_subscription_ids.return_value = [SUBSCRIPTION_ID]
    return factory
