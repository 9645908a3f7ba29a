"""Base abstract class for Azure resource collectors."""

from abc import ABC, abstractmethod
from typing import Any, Callable, TypeVar

import structlog
from azure.core.exceptions import AzureError

from azrm_exporter.core.azure_client import AzureClientFactory
from azrm_exporter.core.config import Settings
from azrm_exporter.core.errors import CollectorError
from azrm_exporter.core.metrics import ExporterMetrics, MetricsList

T = TypeVar("T")


class ResourceCollector(ABC):
    """
    Abstract base class for per-resource-type collectors.

    A collector fetches one kind of data for one subscription and writes it
    into the gauges it alone owns. All remote calls complete before any
    gauge is touched, so a failed fetch raises CollectorError and leaves the
    series of the previous successful run in place.
    """

    name: str = ""
    produces_addresses: bool = False

    def __init__(
        self,
        client_factory: AzureClientFactory,
        metrics: ExporterMetrics,
        settings: Settings,
    ) -> None:
        """
        Initialize collector.

        Args:
            client_factory: Builds authenticated Azure management clients
            metrics: Registry owning the gauges this collector writes
            settings: Exporter settings (locations, tag keys, timeouts)
        """
        self.client_factory = client_factory
        self.metrics = metrics
        self.settings = settings
        self.logger = structlog.get_logger().bind(collector=self.name)

    @property
    def enabled(self) -> bool:
        return True

    @abstractmethod
    def collect(self, subscription_id: str) -> Any:
        """
        Fetch and publish data for one subscription.

        Returns:
            None for gauge-writing collectors; the discovered descriptors
            for the address-producing collector

        Raises:
            CollectorError: If a remote call fails
        """

    def fetch(self, subscription_id: str, call: Callable[[], T]) -> T:
        """Run one remote call, converting Azure SDK failures into CollectorError."""
        try:
            return call()
        except AzureError as e:
            raise CollectorError(self.name, subscription_id, str(e)) from e

    def owner(self, subscription_id: str) -> str:
        return f"{self.name}/{subscription_id}"

    def publish(self, gauge_name: str, subscription_id: str, metrics: MetricsList) -> None:
        self.metrics.replace(gauge_name, self.owner(subscription_id), metrics)
