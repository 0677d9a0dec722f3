import sys
import threading
from typing import Optional, TextIO

from .state.run_state import RunState
from .util.timing import Stopwatch


class StatusReporter(threading.Thread):
    """Background thread printing the number of ports tested so far."""

    def __init__(
        self,
        state: RunState,
        clock: Stopwatch,
        interval_s: float = 1.0,
        stream: Optional[TextIO] = None,
    ):
        super().__init__(name="status-reporter", daemon=True)
        if interval_s <= 0:
            raise ValueError("interval_s must be positive")
        self.state = state
        self.clock = clock
        self.interval_s = interval_s
        self.stream = stream
        self._stop_event = threading.Event()

    def stop(self) -> None:
        self._stop_event.set()

    def status_line(self) -> str:
        return f"[{self.clock.elapsed_str()}] Ports Tested: {self.state.ports_tested}"

    def run(self) -> None:
        stream = self.stream or sys.stdout
        while True:
            print(self.status_line(), file=stream, flush=True)
            if self._stop_event.wait(self.interval_s):
                break
