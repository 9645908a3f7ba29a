"""Compute, network and storage quota collectors."""

from abc import abstractmethod
from typing import Any, Iterable

from azrm_exporter.collectors.base import ResourceCollector
from azrm_exporter.core.metrics import MetricsList


class UsageCollector(ResourceCollector):
    """
    Publishes azurerm_quota_info, azurerm_quota_current and azurerm_quota_limit
    for every configured location.

    Subclasses differ only in the API they query and the scope label.
    """

    scope: str = ""

    @abstractmethod
    def list_usages(self, subscription_id: str, location: str) -> Iterable[Any]:
        """Usage entries of one subscription in one location."""

    def collect(self, subscription_id: str) -> None:
        usages_by_location = {
            location: self.fetch(subscription_id, lambda: list(self.list_usages(subscription_id, location)))
            for location in self.settings.AZURE_LOCATIONS
        }

        info = MetricsList()
        current = MetricsList()
        limit = MetricsList()
        for location, usages in usages_by_location.items():
            for usage in usages:
                quota = usage.name.value if usage.name else ""
                labels = {
                    "subscriptionID": subscription_id,
                    "location": location,
                    "scope": self.scope,
                    "quota": quota or "",
                }
                info.add_info({**labels, "quotaName": (usage.name.localized_value if usage.name else "") or ""})
                current.add(labels, usage.current_value or 0)
                limit.add(labels, usage.limit or 0)

        self.publish("azurerm_quota_info", subscription_id, info)
        self.publish("azurerm_quota_current", subscription_id, current)
        self.publish("azurerm_quota_limit", subscription_id, limit)


class ComputeUsageCollector(UsageCollector):
    name = "computeusage"
    scope = "compute"

    def list_usages(self, subscription_id: str, location: str) -> Iterable[Any]:
        client = self.client_factory.compute_client(subscription_id)
        return client.usage.list(location, **self.client_factory.request_options)


class NetworkUsageCollector(UsageCollector):
    name = "networkusage"
    scope = "network"

    @property
    def enabled(self) -> bool:
        return self.settings.AZURE_NETWORK_USAGE_ENABLED

    def list_usages(self, subscription_id: str, location: str) -> Iterable[Any]:
        client = self.client_factory.network_client(subscription_id)
        return client.usages.list(location, **self.client_factory.request_options)


class StorageUsageCollector(UsageCollector):
    name = "storageusage"
    scope = "storage"

    def list_usages(self, subscription_id: str, location: str) -> Iterable[Any]:
        client = self.client_factory.storage_client(subscription_id)
        return client.usages.list_by_location(location, **self.client_factory.request_options)
