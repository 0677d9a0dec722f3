import socket
from pathlib import Path
from typing import Optional, Tuple
from threading import Lock

from ..logging_setup import get_logger
from ..metrics.prometheus import PortRaceMetrics


logger = get_logger(__name__)


MAX_PORT = 65535
DEFAULT_EPHEMERAL_RANGE = (49152, 65535)
LINUX_PORT_RANGE_FILE = Path("/proc/sys/net/ipv4/ip_local_port_range")


class PortAllocationError(Exception):
    """Raised when the OS fails to hand out an ephemeral port."""
    pass


def local_port_range(path: Path = LINUX_PORT_RANGE_FILE) -> Tuple[int, int]:
    """Return the kernel's ephemeral port range, or the IANA range if unknown."""
    try:
        low, high = (int(p) for p in path.read_text().split())
    except (OSError, ValueError):
        return DEFAULT_EPHEMERAL_RANGE
    if not (0 < low <= high <= MAX_PORT):
        return DEFAULT_EPHEMERAL_RANGE
    return (low, high)


class PortSource:
    """Asks the OS for the next ephemeral port on a loopback address."""
    
    def __init__(
        self,
        host: str = "127.0.0.1",
        metrics: Optional[PortRaceMetrics] = None,
        port_range: Optional[Tuple[int, int]] = None,
    ):
        self.host = host
        self.metrics = metrics
        self.port_range = port_range or local_port_range()
        self.skipped = 0
        self.out_of_range = 0
        self._lock = Lock()
        self._range_warned = False
    
    def _assign_port(self) -> int:
        """Bind a throwaway socket to port 0 and read back the port the OS chose."""
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
                sock.bind((self.host, 0))
                port = sock.getsockname()[1]
        except OSError as e:
            raise PortAllocationError(
                f"OS failed to assign an ephemeral port on {self.host}: {e}"
            ) from e
        
        if not port:
            raise PortAllocationError(f"OS returned port 0 for a wildcard bind on {self.host}")
        return port
    
    def next_port(self, skip: Optional[int] = None) -> int:
        """
        Get the next port assigned by the OS.
        
        Args:
            skip: Never return this port; ask the OS again when it comes up
            
        Returns:
            Port number
            
        Raises:
            PortAllocationError: If the OS cannot assign a port
        """
        while True:
            port = self._assign_port()
            if skip is not None and port == skip:
                with self._lock:
                    self.skipped += 1
                if self.metrics:
                    self.metrics.record_skip()
                logger.debug(f"Skipping port {port}", port=port, event="skip")
                continue
            
            self._check_range(port)
            return port
    
    def _check_range(self, port: int) -> None:
        low, high = self.port_range
        if low <= port <= high:
            return
        
        with self._lock:
            self.out_of_range += 1
            first = not self._range_warned
            self._range_warned = True
        if self.metrics:
            self.metrics.record_out_of_range()
        if first:
            logger.warning(
                f"OS assigned port {port} outside the ephemeral range {low}-{high}",
                port=port,
            )


_default_source: Optional[PortSource] = None
_default_lock = Lock()


def next_port(skip: Optional[int] = None, host: str = "127.0.0.1") -> int:
    """Get the next OS-assigned port using a shared source for ``host``."""
    global _default_source
    with _default_lock:
        if _default_source is None or _default_source.host != host:
            _default_source = PortSource(host=host)
        source = _default_source
    return source.next_port(skip=skip)
