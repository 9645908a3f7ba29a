"""Subscription info and API ratelimit collector."""

from typing import Any, Mapping

from azrm_exporter.collectors.base import ResourceCollector
from azrm_exporter.core.azure_client import enum_value
from azrm_exporter.core.metrics import MetricsList

# (header, scope, type) of the remaining-request counters returned by ResourceManager
RATELIMIT_HEADERS = [
    ("x-ms-ratelimit-remaining-subscription-reads", "subscription", "read"),
    ("x-ms-ratelimit-remaining-subscription-resource-requests", "subscription", "resource-requests"),
    ("x-ms-ratelimit-remaining-subscription-resource-entities-read", "subscription", "resource-entities-read"),
    ("x-ms-ratelimit-remaining-tenant-reads", "tenant", "read"),
    ("x-ms-ratelimit-remaining-tenant-resource-requests", "tenant", "resource-requests"),
    ("x-ms-ratelimit-remaining-tenant-resource-entities-read", "tenant", "resource-entities-read"),
]


def _with_headers(pipeline_response: Any, deserialized: Any, _response_headers: Any) -> tuple[Any, Mapping[str, str]]:
    return deserialized, pipeline_response.http_response.headers


class SubscriptionCollector(ResourceCollector):
    """Publishes azurerm_subscription_info and azurerm_ratelimit."""

    name = "subscription"

    def collect(self, subscription_id: str) -> None:
        client = self.client_factory.subscription_client()
        subscription, headers = self.fetch(
            subscription_id,
            lambda: client.subscriptions.get(
                subscription_id, cls=_with_headers, **self.client_factory.request_options
            ),
        )

        policies = subscription.subscription_policies
        info = MetricsList()
        info.add_info(
            {
                "subscriptionID": subscription.subscription_id or subscription_id,
                "subscriptionName": subscription.display_name or "",
                "spendingLimit": enum_value(policies.spending_limit) if policies else "",
                "quotaID": (policies.quota_id or "") if policies else "",
                "locationPlacementID": (policies.location_placement_id or "") if policies else "",
            }
        )
        self.publish("azurerm_subscription_info", subscription_id, info)
        self.publish("azurerm_ratelimit", subscription_id, self._ratelimit_metrics(subscription_id, headers))

    def _ratelimit_metrics(self, subscription_id: str, headers: Mapping[str, str]) -> MetricsList:
        ratelimit = MetricsList()
        for header, scope, limit_type in RATELIMIT_HEADERS:
            value = parse_ratelimit_header(headers, header, self.logger)
            if value is not None:
                ratelimit.add(
                    {"subscriptionID": subscription_id, "scope": scope, "type": limit_type},
                    value,
                )
        return ratelimit


def parse_ratelimit_header(headers: Mapping[str, str], header: str, logger: Any) -> float | None:
    """
    Read a numeric ratelimit header.

    Returns None when the header is absent. Malformed values are logged and
    also return None, so only that one sample is skipped.
    """
    raw = headers.get(header)
    if raw is None or raw == "":
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        logger.warning("ratelimit.header_parse_failed", header=header, value=raw)
        return None
