"""Shared test doubles and builders."""

import threading
import time
from types import SimpleNamespace

from azrm_exporter.schemas.portscan import PortRange, PublicIpDescriptor

SUBSCRIPTION_ID = "abcdef12-3456-7890-abcd-ef1234567890"
OTHER_SUBSCRIPTION_ID = "12345678-1234-1234-1234-123456789abc"


def make_public_ip(
    address: str | None,
    subscription_id: str = SUBSCRIPTION_ID,
    resource_group: str = "rg-prod",
    name: str | None = None,
) -> PublicIpDescriptor:
    """Build a public IP descriptor as the discovery collector would."""
    name = name or f"pip-{(address or 'unallocated').replace('.', '-')}"
    return PublicIpDescriptor(
        resource_id=f"/subscriptions/{subscription_id}/resourceGroups/{resource_group}"
        f"/providers/Microsoft.Network/publicIPAddresses/{name}",
        name=name,
        subscription_id=subscription_id,
        resource_group=resource_group,
        location="westeurope",
        ip_address=address,
        allocation_method="Static",
        ip_version="IPv4",
    )


def azure_usage(value: str, localized: str, current: int, limit: int) -> SimpleNamespace:
    """Mimic an azure-mgmt Usage model."""
    return SimpleNamespace(
        name=SimpleNamespace(value=value, localized_value=localized),
        current_value=current,
        limit=limit,
    )


class FakeProbe:
    """
    Probe double returning configured open ports.

    Tracks how many probes run at the same time so tests can check the
    concurrency limit of the portscanner.
    """

    def __init__(
        self,
        open_ports: dict[str, set[int]] | None = None,
        delay: float = 0.0,
        failing: set[str] | None = None,
    ) -> None:
        self.open_ports = open_ports or {}
        self.delay = delay
        self.failing = failing or set()
        self.calls: list[tuple[str, PortRange, float]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def __call__(self, address: str, port_range: PortRange, timeout: float) -> set[int]:
        with self._lock:
            self.calls.append((address, port_range, timeout))
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                time.sleep(self.delay)
            if address in self.failing:
                raise OSError(f"cannot resolve {address}")
            ports = self.open_ports.get(address, set())
            return {p for p in ports if port_range.first_port <= p <= port_range.last_port}
        finally:
            with self._lock:
                self.in_flight -= 1
