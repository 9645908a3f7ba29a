"""TCP connect probe."""

import socket
from concurrent.futures import ThreadPoolExecutor

from azrm_exporter.schemas.portscan import PortRange


def connect_port(address: str, port: int, timeout: float) -> bool:
    """True when a TCP connection to address:port succeeds within timeout."""
    try:
        with socket.create_connection((address, port), timeout=timeout):
            return True
    except OSError:
        return False


class TcpPortProber:
    """
    Finds open TCP ports of one address.

    Callable as probe(address, port_range, timeout). Synchronous and
    blocking, with at most `threads` connects in flight. Holds no state
    between calls.
    """

    def __init__(self, threads: int = 1000) -> None:
        self.threads = threads

    def __call__(self, address: str, port_range: PortRange, timeout: float) -> set[int]:
        """
        Probe every port of port_range.

        Raises:
            OSError: If the address cannot be resolved
        """
        # resolve once, raises OSError for unknown hosts
        socket.getaddrinfo(address, None, proto=socket.IPPROTO_TCP)

        ports = list(port_range.ports())
        workers = max(1, min(self.threads, len(ports)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="probe") as pool:
            results = pool.map(lambda port: (port, connect_port(address, port, timeout)), ports)
            return {port for port, is_open in results if is_open}
