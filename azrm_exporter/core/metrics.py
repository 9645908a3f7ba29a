"""Prometheus metrics registry and owner-scoped gauge replacement."""

import re
import threading
from typing import Iterable, Mapping

from prometheus_client import CollectorRegistry, Gauge, generate_latest

TAG_LABEL_PREFIX = "tag_"

_invalid_label_chars = re.compile(r"[^a-zA-Z0-9_]")

LabelValues = tuple[str, ...]


def tag_label_name(tag: str) -> str:
    """Prometheus label name for a resource tag key."""
    return TAG_LABEL_PREFIX + _invalid_label_chars.sub("_", tag)


def tag_labels(tag_keys: Iterable[str], tags: Mapping[str, str] | None) -> dict[str, str]:
    """
    Build tag_* labels for the configured tag keys.

    Tags missing on the resource get an empty value so every series of a
    gauge carries the same label set.
    """
    tags = tags or {}
    return {tag_label_name(key): str(tags.get(key) or "") for key in tag_keys}


class MetricsList:
    """Rows buffered for one gauge until they replace the previous batch."""

    def __init__(self) -> None:
        self.rows: list[tuple[dict[str, str], float]] = []

    def add(self, labels: dict[str, str], value: float) -> None:
        self.rows.append((labels, float(value)))

    def add_info(self, labels: dict[str, str]) -> None:
        self.add(labels, 1.0)

    def __len__(self) -> int:
        return len(self.rows)


class ExporterMetrics:
    """
    Owns the Prometheus registry and every gauge the exporter publishes.

    Collectors never reset a whole gauge. Each write goes through
    replace(), which removes only the series the same owner (collector name
    plus subscription id) wrote last time. Several subscriptions can share
    a gauge, and a task that fails before calling replace() leaves its
    previous series untouched.
    """

    def __init__(
        self,
        registry: CollectorRegistry | None = None,
        resourcegroup_tags: Iterable[str] = (),
        resource_tags: Iterable[str] = (),
    ) -> None:
        self.registry = registry or CollectorRegistry()
        self.resourcegroup_tags = list(resourcegroup_tags)
        self.resource_tags = list(resource_tags)

        self._lock = threading.Lock()
        self._owned: dict[tuple[str, str], set[LabelValues]] = {}
        self._labelnames: dict[str, list[str]] = {}
        self._gauges: dict[str, Gauge] = {}

        self.subscription = self._gauge(
            "azurerm_subscription_info",
            "Azure ResourceManager subscription",
            ["subscriptionID", "subscriptionName", "spendingLimit", "quotaID", "locationPlacementID"],
        )
        self.ratelimit = self._gauge(
            "azurerm_ratelimit",
            "Azure ResourceManager ratelimit",
            ["subscriptionID", "scope", "type"],
        )
        self.resource_group = self._gauge(
            "azurerm_resourcegroup_info",
            "Azure ResourceManager resourcegroups",
            ["resourceID", "subscriptionID", "resourceGroup", "location", "provisioningState"]
            + [tag_label_name(tag) for tag in self.resourcegroup_tags],
        )
        self.resource = self._gauge(
            "azurerm_resource_info",
            "Azure Resource information",
            [
                "resourceID",
                "resourceName",
                "subscriptionID",
                "resourceGroup",
                "provider",
                "location",
                "provisioningState",
            ]
            + [tag_label_name(tag) for tag in self.resource_tags],
        )
        self.public_ip = self._gauge(
            "azurerm_publicip_info",
            "Azure ResourceManager public ip",
            ["subscriptionID", "resourceGroup", "location", "ipAddress", "ipAllocationMethod", "ipAdressVersion"],
        )
        self.quota = self._gauge(
            "azurerm_quota_info",
            "Azure ResourceManager quota info",
            ["subscriptionID", "location", "scope", "quota", "quotaName"],
        )
        self.quota_current = self._gauge(
            "azurerm_quota_current",
            "Azure ResourceManager quota current value",
            ["subscriptionID", "location", "scope", "quota"],
        )
        self.quota_limit = self._gauge(
            "azurerm_quota_limit",
            "Azure ResourceManager quota limit",
            ["subscriptionID", "location", "scope", "quota"],
        )
        self.portscan_status = self._gauge(
            "azurerm_publicip_portscan_status",
            "Azure ResourceManager public ip portscan status",
            ["ipAddress", "type"],
        )
        self.portscan_port = self._gauge(
            "azurerm_publicip_portscan_port",
            "Azure ResourceManager public ip port",
            ["ipAddress", "protocol", "port", "description"],
        )

    def _gauge(self, name: str, documentation: str, labelnames: list[str]) -> Gauge:
        gauge = Gauge(name, documentation, labelnames, registry=self.registry)
        self._labelnames[name] = labelnames
        self._gauges[name] = gauge
        return gauge

    def label_values(self, name: str, labels: Mapping[str, str]) -> LabelValues:
        return tuple(str(labels.get(label, "")) for label in self._labelnames[name])

    def replace(self, name: str, owner: str, metrics: MetricsList) -> None:
        """
        Replace every series `owner` previously wrote to gauge `name`.

        Series that are not part of the new batch are removed, so a missing
        series means the underlying fact is no longer true.
        """
        gauge = self._gauges[name]
        rows = [(self.label_values(name, labels), value) for labels, value in metrics.rows]
        current = {values for values, _ in rows}

        with self._lock:
            previous = self._owned.get((name, owner), set())
            for values in previous - current:
                gauge.remove(*values)
            for values, value in rows:
                gauge.labels(*values).set(value)
            self._owned[(name, owner)] = current

    def owned_series(self, name: str, owner: str) -> set[LabelValues]:
        with self._lock:
            return set(self._owned.get((name, owner), set()))

    def render(self) -> bytes:
        """Prometheus text exposition of the registry."""
        return generate_latest(self.registry)
