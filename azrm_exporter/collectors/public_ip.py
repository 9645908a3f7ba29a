"""Public IP address discovery."""

from azrm_exporter.collectors.base import ResourceCollector
from azrm_exporter.core.azure_client import enum_value, extract_resource_group
from azrm_exporter.schemas.portscan import PublicIpDescriptor


class PublicIpCollector(ResourceCollector):
    """
    Lists every public IP of a subscription.

    This is the address-producing collector: it writes no gauge itself and
    returns its descriptors to the scheduler, which merges all
    subscriptions into one discovery set.
    """

    name = "publicips"
    produces_addresses = True

    def collect(self, subscription_id: str) -> list[PublicIpDescriptor]:
        client = self.client_factory.network_client(subscription_id)
        public_ips = self.fetch(
            subscription_id,
            lambda: list(client.public_ip_addresses.list_all(**self.client_factory.request_options)),
        )

        descriptors = [
            PublicIpDescriptor(
                resource_id=ip.id or "",
                name=ip.name or "",
                subscription_id=subscription_id,
                resource_group=extract_resource_group(ip.id),
                location=ip.location or "",
                ip_address=ip.ip_address or None,
                allocation_method=enum_value(ip.public_ip_allocation_method),
                ip_version=enum_value(ip.public_ip_address_version),
            )
            for ip in public_ips
        ]

        self.logger.debug(
            "collector.publicips",
            subscriptionID=subscription_id,
            total=len(descriptors),
            allocated=sum(1 for d in descriptors if d.ip_address),
        )
        return descriptors
