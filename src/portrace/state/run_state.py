from __future__ import annotations

import threading
from typing import Optional

from ..logging_setup import get_logger


logger = get_logger(__name__)


class RunState:
    """Process-wide state shared by every worker of a run."""
    
    def __init__(self, skip_port: Optional[int] = None):
        self.skip_port = skip_port
        self._ports_tested = 0
        self._failed_port: Optional[int] = None
        self._failed_by: Optional[int] = None
        self._lock = threading.Lock()
        self._stop = threading.Event()
    
    @property
    def ports_tested(self) -> int:
        return self._ports_tested
    
    @property
    def failed_port(self) -> Optional[int]:
        return self._failed_port

    @property
    def failed_by(self) -> Optional[int]:
        return self._failed_by
    
    def increment_tested(self) -> int:
        """Count one completed cycle and return the new total."""
        with self._lock:
            self._ports_tested += 1
            return self._ports_tested
    
    def fail(self, port: int, worker_id: int) -> bool:
        """
        Record ``port`` as the failure of this run.
        
        The first caller wins; later callers leave the recorded port untouched.
        Either way a stop is requested.
        
        Returns:
            True if this call recorded the failure
        """
        with self._lock:
            won = self._failed_port is None
            if won:
                self._failed_port = port
                self._failed_by = worker_id
        self._stop.set()
        
        if not won:
            logger.warning(
                f"Worker {worker_id} also failed on port {port}; "
                f"port {self._failed_port} was already reported",
                worker_id=worker_id,
                port=port,
            )
        return won
    
    def request_stop(self) -> None:
        self._stop.set()
    
    def should_stop(self) -> bool:
        return self._stop.is_set()
