"""Resource group and generic resource collectors."""

from azrm_exporter.collectors.base import ResourceCollector
from azrm_exporter.core.azure_client import extract_provider, extract_resource_group
from azrm_exporter.core.metrics import MetricsList, tag_labels


class ResourceGroupCollector(ResourceCollector):
    """Publishes azurerm_resourcegroup_info with configured tag labels."""

    name = "resourcegroups"

    def collect(self, subscription_id: str) -> None:
        client = self.client_factory.resource_client(subscription_id)
        resource_groups = self.fetch(
            subscription_id,
            lambda: list(client.resource_groups.list(**self.client_factory.request_options)),
        )

        info = MetricsList()
        for group in resource_groups:
            provisioning_state = group.properties.provisioning_state if group.properties else ""
            labels = {
                "resourceID": (group.id or "").lower(),
                "subscriptionID": subscription_id,
                "resourceGroup": group.name or "",
                "location": group.location or "",
                "provisioningState": (provisioning_state or "").lower(),
            }
            labels.update(tag_labels(self.settings.AZURE_RESOURCEGROUP_TAGS, group.tags))
            info.add_info(labels)

        self.publish("azurerm_resourcegroup_info", subscription_id, info)
        self.logger.debug("collector.resourcegroups", subscriptionID=subscription_id, count=len(info))


class ResourceInfoCollector(ResourceCollector):
    """Publishes azurerm_resource_info for every resource in the subscription."""

    name = "resources"

    def collect(self, subscription_id: str) -> None:
        client = self.client_factory.resource_client(subscription_id)
        resources = self.fetch(
            subscription_id,
            lambda: list(
                client.resources.list(
                    expand="createdTime,changedTime,provisioningState",
                    **self.client_factory.request_options,
                )
            ),
        )

        info = MetricsList()
        for resource in resources:
            labels = {
                "resourceID": (resource.id or "").lower(),
                "resourceName": resource.name or "",
                "subscriptionID": subscription_id,
                "resourceGroup": extract_resource_group(resource.id),
                "provider": extract_provider(resource.id),
                "location": resource.location or "",
                "provisioningState": (getattr(resource, "provisioning_state", None) or "").lower(),
            }
            labels.update(tag_labels(self.settings.AZURE_RESOURCE_TAGS, resource.tags))
            info.add_info(labels)

        self.publish("azurerm_resource_info", subscription_id, info)
        self.logger.debug("collector.resources", subscriptionID=subscription_id, count=len(info))
