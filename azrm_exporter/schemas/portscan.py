"""Portscan Pydantic schemas."""

from datetime import datetime, timezone
from typing import Iterable

from pydantic import BaseModel, ConfigDict, Field

NOT_ALLOCATED = "not allocated"


class PortRange(BaseModel):
    """Inclusive TCP port range."""

    model_config = ConfigDict(frozen=True)

    first_port: int = Field(ge=1, le=65535)
    last_port: int = Field(ge=1, le=65535)

    def __str__(self) -> str:
        if self.first_port == self.last_port:
            return str(self.first_port)
        return f"{self.first_port}-{self.last_port}"

    def ports(self) -> range:
        return range(self.first_port, self.last_port + 1)


class ScanResult(BaseModel):
    """One open port found on an address."""

    model_config = ConfigDict(frozen=True)

    address: str
    protocol: str = "TCP"
    port: int
    description: str = ""
    value: float = 1.0

    def labels(self) -> dict[str, str]:
        return {
            "ipAddress": self.address,
            "protocol": self.protocol,
            "port": str(self.port),
            "description": self.description,
        }


class PublicIpDescriptor(BaseModel):
    """Azure public IP resource owning an address."""

    resource_id: str
    name: str = ""
    subscription_id: str
    resource_group: str = ""
    location: str = ""
    ip_address: str | None = None
    allocation_method: str = ""
    ip_version: str = ""

    def info_labels(self) -> dict[str, str]:
        return {
            "subscriptionID": self.subscription_id,
            "resourceGroup": self.resource_group,
            "location": self.location,
            "ipAddress": self.ip_address or NOT_ALLOCATED,
            "ipAllocationMethod": self.allocation_method,
            "ipAdressVersion": self.ip_version,
        }

    def info_value(self) -> float:
        return 1.0 if self.ip_address else 0.0


# address -> owning public IP resource
DiscoverySet = dict[str, PublicIpDescriptor]


def build_discovery_set(descriptors: Iterable[PublicIpDescriptor]) -> DiscoverySet:
    """Key allocated public IPs by address; unallocated ones have nothing to scan."""
    return {d.ip_address: d for d in descriptors if d.ip_address}


class CacheSnapshot(BaseModel):
    """Durable form of the scan cache plus the last known discovery set."""

    saved_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    results: dict[str, list[ScanResult]] = Field(default_factory=dict)
    public_ips: DiscoverySet = Field(default_factory=dict)
