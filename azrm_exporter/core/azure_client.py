"""Azure credential and management client construction."""

import re
from typing import Any

import structlog
from azure.core.credentials import TokenCredential
from azure.core.exceptions import AzureError
from azure.identity import ClientSecretCredential, DefaultAzureCredential
from azure.mgmt.compute import ComputeManagementClient
from azure.mgmt.network import NetworkManagementClient
from azure.mgmt.resource import ResourceManagementClient, SubscriptionClient
from azure.mgmt.storage import StorageManagementClient

from azrm_exporter.core.config import Settings
from azrm_exporter.core.errors import ExporterError

logger = structlog.get_logger()

_resource_group_from_id = re.compile(r"/resourceGroups/([^/]*)", re.IGNORECASE)
_provider_from_id = re.compile(r"/providers/([^/]*)", re.IGNORECASE)


def extract_resource_group(resource_id: str | None) -> str:
    """
    Extract the resource group name from an Azure resource ID.

    Format: /subscriptions/{subscription_id}/resourceGroups/{resource_group_name}/...
    """
    match = _resource_group_from_id.search(resource_id or "")
    return match.group(1) if match else ""


def extract_provider(resource_id: str | None) -> str:
    """Extract the resource provider namespace (e.g. Microsoft.Network) from an Azure resource ID."""
    match = _provider_from_id.search(resource_id or "")
    return match.group(1) if match else ""


def enum_value(value: Any) -> str:
    """Azure SDK enums are str subclasses in recent releases, plain strings in older ones."""
    if value is None:
        return ""
    return str(getattr(value, "value", value))


class AzureClientFactory:
    """
    Builds Azure management clients sharing one credential.

    Authentication uses a Service Principal (tenant_id, client_id,
    client_secret) when configured, DefaultAzureCredential otherwise
    (managed identity, Azure CLI login, environment variables).
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._credential: TokenCredential | None = None

    @property
    def credential(self) -> TokenCredential:
        if self._credential is None:
            if self.settings.has_service_principal:
                self._credential = ClientSecretCredential(
                    tenant_id=self.settings.AZURE_TENANT_ID,
                    client_id=self.settings.AZURE_CLIENT_ID,
                    client_secret=self.settings.AZURE_CLIENT_SECRET,
                )
            else:
                self._credential = DefaultAzureCredential()
        return self._credential

    @property
    def request_options(self) -> dict[str, int]:
        """Per-call transport deadline passed to every operation."""
        return {
            "connection_timeout": self.settings.AZURE_API_TIMEOUT,
            "read_timeout": self.settings.AZURE_API_TIMEOUT,
        }

    def subscription_client(self) -> SubscriptionClient:
        return SubscriptionClient(self.credential)

    def resource_client(self, subscription_id: str) -> ResourceManagementClient:
        return ResourceManagementClient(self.credential, subscription_id)

    def network_client(self, subscription_id: str) -> NetworkManagementClient:
        return NetworkManagementClient(self.credential, subscription_id)

    def compute_client(self, subscription_id: str) -> ComputeManagementClient:
        return ComputeManagementClient(self.credential, subscription_id)

    def storage_client(self, subscription_id: str) -> StorageManagementClient:
        return StorageManagementClient(self.credential, subscription_id)

    def resolve_subscription_ids(self) -> list[str]:
        """
        Subscriptions to collect.

        Uses AZURE_SUBSCRIPTION_IDS when set, otherwise every subscription
        visible to the credential.

        Raises:
            ExporterError: If subscriptions cannot be listed or none are visible
        """
        if self.settings.AZURE_SUBSCRIPTION_IDS:
            return list(self.settings.AZURE_SUBSCRIPTION_IDS)

        try:
            subscriptions = list(self.subscription_client().subscriptions.list(**self.request_options))
        except AzureError as e:
            raise ExporterError(f"Unable to list Azure subscriptions: {str(e)}") from e

        subscription_ids = [sub.subscription_id for sub in subscriptions if sub.subscription_id]
        if not subscription_ids:
            raise ExporterError("No Azure subscriptions found for the configured credential")

        logger.info("azure.subscriptions_discovered", count=len(subscription_ids))
        return subscription_ids
