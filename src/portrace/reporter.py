import sys
import threading
from typing import Optional, TextIO

from .ledger import EventKind, EventLedger
from .logging_setup import get_logger
from .util.timing import format_elapsed


logger = get_logger(__name__)


class RaceReporter:
    """Renders the event history of a port whose verification bind failed."""
    
    def __init__(self, ledger: EventLedger, stream: Optional[TextIO] = None):
        self.ledger = ledger
        self.stream = stream
        self._reported = False
        self._lock = threading.Lock()
    
    def render(self, port: int) -> str:
        """Build the multi-section report for ``port``."""
        snapshot = self.ledger.snapshot(port)
        lines = [f"Failed binding to port {port}", ""]
        for kind in EventKind:
            lines.append(f"{kind.heading}:")
            lines.extend(
                f"[{event.worker_id}] {format_elapsed(event.timestamp)}"
                for event in snapshot[kind]
            )
        return "\n".join(lines) + "\n"
    
    def report(self, port: int) -> str:
        """Write the report once; later calls are ignored and return ''."""
        with self._lock:
            if self._reported:
                logger.debug(f"Race already reported, ignoring port {port}", port=port)
                return ""
            self._reported = True
        
        text = self.render(port)
        stream = self.stream or sys.stdout
        stream.write(text)
        stream.flush()
        logger.error(f"Failed binding to port {port}", port=port, event="race")
        return text

    @property
    def reported(self) -> bool:
        return self._reported
