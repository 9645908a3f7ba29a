"""Scan result cache with JSON snapshot persistence."""

import os
import tempfile
from pathlib import Path
from typing import Iterable, Iterator

from pydantic import ValidationError

from azrm_exporter.core.errors import ScanCacheError
from azrm_exporter.schemas.portscan import CacheSnapshot, DiscoverySet, ScanResult


class ScanCache:
    """
    Address -> last complete list of scan results.

    Entries are replaced wholesale, never merged. Not thread-safe on its
    own: callers hold the portscanner lock for every call.
    """

    def __init__(self) -> None:
        self._results: dict[str, list[ScanResult]] = {}

    def replace(self, address: str, results: Iterable[ScanResult]) -> None:
        self._results[address] = list(results)

    def get(self, address: str) -> list[ScanResult] | None:
        results = self._results.get(address)
        return list(results) if results is not None else None

    def addresses(self) -> set[str]:
        return set(self._results)

    def evict_orphans(self, discovery: DiscoverySet) -> list[str]:
        """Remove every entry whose address is not in discovery; returns the evicted addresses."""
        orphaned = [address for address in self._results if address not in discovery]
        for address in orphaned:
            del self._results[address]
        return orphaned

    def iter_results(self) -> Iterator[ScanResult]:
        for results in self._results.values():
            yield from results

    def __len__(self) -> int:
        return len(self._results)

    def to_snapshot(self, discovery: DiscoverySet) -> CacheSnapshot:
        return CacheSnapshot(
            results={address: list(results) for address, results in self._results.items()},
            public_ips=dict(discovery),
        )

    def restore(self, snapshot: CacheSnapshot) -> None:
        self._results = {address: list(results) for address, results in snapshot.results.items()}

    def write(self, path: str, discovery: DiscoverySet) -> None:
        """
        Write a snapshot to path.

        The file is written next to the target and renamed over it, so a
        reader never sees a partially written snapshot.

        Raises:
            ScanCacheError: If the file cannot be written
        """
        target = Path(path)
        payload = self.to_snapshot(discovery).model_dump_json()
        try:
            fd, tmp_path = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                os.chmod(tmp_path, 0o600)
                os.replace(tmp_path, target)
            except OSError:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            raise ScanCacheError(path, f"write failed: {e}") from e

    @staticmethod
    def read(path: str) -> CacheSnapshot:
        """
        Read a snapshot from path.

        Raises:
            ScanCacheError: If the file is missing, unreadable or corrupt
        """
        try:
            content = Path(path).read_text(encoding="utf-8")
        except OSError as e:
            raise ScanCacheError(path, f"read failed: {e}") from e

        try:
            return CacheSnapshot.model_validate_json(content)
        except ValidationError as e:
            raise ScanCacheError(path, f"corrupt snapshot: {e}") from e
