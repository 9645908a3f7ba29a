"""Application Configuration using Pydantic Settings."""

import os
from pathlib import Path
from typing import Annotated, List

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from azrm_exporter.schemas.portscan import PortRange


def get_env_file() -> str:
    """
    Determine which .env file to load based on APP_ENV.

    Returns:
        Path to the .env file to load
    """
    app_env = os.getenv("APP_ENV", "development")
    base_dir = Path(__file__).parent.parent.parent

    if app_env == "test":
        env_file = base_dir / ".env.test"
        if env_file.exists():
            return str(env_file)

    return str(base_dir / ".env")


def parse_port_ranges(spec: str) -> list[PortRange]:
    """
    Parse a port list setting into an ordered list of port ranges.

    Supports single ports ("22"), ranges ("1-1024"), comma-separated
    entries and mixes of both ("22,80,8000-8100").

    Raises:
        ValueError: If no range is given or a port/range is invalid
    """
    ranges: list[PortRange] = []
    for part in spec.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            if "-" in part:
                first_s, last_s = part.split("-", 1)
                first, last = int(first_s), int(last_s)
            else:
                first = last = int(part)
        except ValueError:
            raise ValueError(f"Invalid port range: {part}")

        if first < 1 or last > 65535 or first > last:
            raise ValueError(f"Invalid port range: {part}")
        ranges.append(PortRange(first_port=first, last_port=last))

    if not ranges:
        raise ValueError("Empty port range spec")
    return ranges


class Settings(BaseSettings):
    """Exporter settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=get_env_file(),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    APP_NAME: str = "azure-resourcemanager-exporter"
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # HTTP listener
    SERVER_BIND_HOST: str = "0.0.0.0"
    SERVER_BIND_PORT: int = 8080

    # Error Tracking (Sentry)
    SENTRY_DSN: str = ""
    SENTRY_ENVIRONMENT: str = "development"
    SENTRY_TRACES_SAMPLE_RATE: float = 0.0

    # Azure (Service Principal is optional, DefaultAzureCredential otherwise)
    AZURE_TENANT_ID: str = ""
    AZURE_CLIENT_ID: str = ""
    AZURE_CLIENT_SECRET: str = ""
    AZURE_SUBSCRIPTION_IDS: Annotated[List[str], NoDecode] = []
    AZURE_LOCATIONS: Annotated[List[str], NoDecode] = ["westeurope", "northeurope"]
    AZURE_RESOURCEGROUP_TAGS: Annotated[List[str], NoDecode] = ["owner"]
    AZURE_RESOURCE_TAGS: Annotated[List[str], NoDecode] = ["owner"]
    # Disabled by default, the network usage API returns inconsistent data
    AZURE_NETWORK_USAGE_ENABLED: bool = False
    AZURE_API_TIMEOUT: int = 60

    # Collection
    SCRAPE_TIME: int = 300
    COLLECTOR_MAX_WORKERS: int = 0

    # Portscan
    PORTSCAN_ENABLED: bool = False
    PORTSCAN_TIME: int = 10800
    PORTSCAN_PARALLEL: int = 2
    PORTSCAN_THREADS: int = 1000
    PORTSCAN_TIMEOUT: int = 5
    PORTSCAN_PORTRANGE: str = "1-65535"
    PORTSCAN_CACHE_PATH: str = ""
    PORTSCAN_CACHE_SAVE_INTERVAL: int = 0

    @field_validator(
        "AZURE_SUBSCRIPTION_IDS",
        "AZURE_LOCATIONS",
        "AZURE_RESOURCEGROUP_TAGS",
        "AZURE_RESOURCE_TAGS",
        mode="before",
    )
    @classmethod
    def parse_comma_list(cls, v: str | List[str]) -> List[str]:
        """Parse list settings from a comma separated string or list."""
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    @field_validator(
        "SCRAPE_TIME",
        "PORTSCAN_TIME",
        "PORTSCAN_PARALLEL",
        "PORTSCAN_THREADS",
        "PORTSCAN_TIMEOUT",
        "AZURE_API_TIMEOUT",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Intervals, timeouts and concurrency limits must be positive."""
        if v <= 0:
            raise ValueError("value must be greater than 0")
        return v

    @field_validator("COLLECTOR_MAX_WORKERS", "PORTSCAN_CACHE_SAVE_INTERVAL")
    @classmethod
    def validate_not_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("value must not be negative")
        return v

    @field_validator("PORTSCAN_PORTRANGE")
    @classmethod
    def validate_port_range(cls, v: str) -> str:
        """Reject port specs that cannot be parsed."""
        parse_port_ranges(v)
        return v

    @property
    def portscan_port_ranges(self) -> list[PortRange]:
        return parse_port_ranges(self.PORTSCAN_PORTRANGE)

    @property
    def has_service_principal(self) -> bool:
        return bool(self.AZURE_TENANT_ID and self.AZURE_CLIENT_ID and self.AZURE_CLIENT_SECRET)


# Create global settings instance
settings = Settings()  # type: ignore
