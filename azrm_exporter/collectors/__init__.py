"""Azure resource collectors."""

from azrm_exporter.collectors.base import ResourceCollector
from azrm_exporter.collectors.public_ip import PublicIpCollector
from azrm_exporter.collectors.resource_group import ResourceGroupCollector, ResourceInfoCollector
from azrm_exporter.collectors.subscription import SubscriptionCollector
from azrm_exporter.collectors.usage import (
    ComputeUsageCollector,
    NetworkUsageCollector,
    StorageUsageCollector,
)
from azrm_exporter.core.azure_client import AzureClientFactory
from azrm_exporter.core.config import Settings
from azrm_exporter.core.metrics import ExporterMetrics

COLLECTOR_CLASSES: list[type[ResourceCollector]] = [
    SubscriptionCollector,
    ResourceGroupCollector,
    ResourceInfoCollector,
    PublicIpCollector,
    ComputeUsageCollector,
    NetworkUsageCollector,
    StorageUsageCollector,
]


def build_collectors(
    client_factory: AzureClientFactory,
    metrics: ExporterMetrics,
    settings: Settings,
) -> list[ResourceCollector]:
    """Instantiate every registered collector."""
    return [cls(client_factory, metrics, settings) for cls in COLLECTOR_CLASSES]


__all__ = [
    "COLLECTOR_CLASSES",
    "ComputeUsageCollector",
    "NetworkUsageCollector",
    "PublicIpCollector",
    "ResourceCollector",
    "ResourceGroupCollector",
    "ResourceInfoCollector",
    "StorageUsageCollector",
    "SubscriptionCollector",
    "build_collectors",
]
