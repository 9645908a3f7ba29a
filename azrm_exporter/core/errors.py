"""Exporter exception types."""


class ExporterError(Exception):
    """Base class for exporter errors."""

    pass


class CollectorError(ExporterError):
    """A resource collector could not fetch its data from the Azure API."""

    def __init__(self, collector: str, subscription_id: str, message: str) -> None:
        self.collector = collector
        self.subscription_id = subscription_id
        super().__init__(f"{collector} collection failed for subscription {subscription_id}: {message}")


class ScanCacheError(ExporterError):
    """The portscan snapshot file could not be read or written."""

    def __init__(self, path: str, message: str) -> None:
        self.path = path
        super().__init__(f"portscan cache {path}: {message}")
