from __future__ import annotations

import os
import socket
import time
from typing import Callable, Optional

from .ledger import EventKind, EventLedger
from .logging_setup import get_logger
from .metrics.prometheus import PortRaceMetrics
from .net.ports import PortSource
from .reporter import RaceReporter
from .state.run_state import RunState
from .util.timing import format_elapsed


logger = get_logger(__name__)


# os._exit(-1) surfaces as 255 on POSIX
RACE_EXIT_CODE = 255


class WorkerLoop:
    """One logical worker: assign, bind, release, repeat."""

    def __init__(
        self,
        worker_id: int,
        source: PortSource,
        ledger: EventLedger,
        state: RunState,
        reporter: Optional[RaceReporter] = None,
        failure_mode: str = "cooperative",
        bind_host: str = "127.0.0.1",
        iterations: Optional[int] = None,
        debug: bool = False,
        metrics: Optional[PortRaceMetrics] = None,
        exit_fn: Callable[[int], None] = os._exit,
    ):
        if failure_mode not in ("cooperative", "strict"):
            raise ValueError(f"Unknown failure mode: {failure_mode}")
        if failure_mode == "strict" and reporter is None:
            raise ValueError("strict failure mode needs a reporter")
        self.worker_id = worker_id
        self.source = source
        self.ledger = ledger
        self.state = state
        self.reporter = reporter
        self.failure_mode = failure_mode
        self.bind_host = bind_host
        self.iterations = iterations
        self.debug = debug
        self.metrics = metrics
        self.exit_fn = exit_fn
        self.completed = 0
        self.log = logger.bind(worker_id=worker_id)

    def _record(self, port: int, kind: EventKind) -> None:
        event = self.ledger.record(port, self.worker_id, kind)
        if self.debug:
            self.log.debug(
                f"[{format_elapsed(event.timestamp)}] [{self.worker_id}] {kind.label}: {port}",
                port=port,
                event=kind.value,
            )

    def test_port(self) -> Optional[int]:
        """Run one cycle. Returns the port that failed to bind, else None."""
        started = time.perf_counter()
        port = self.source.next_port(skip=self.state.skip_port)
        self._record(port, EventKind.ASSIGNED)

        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            self._record(port, EventKind.BINDING)
            try:
                sock.bind((self.bind_host, port))
            except OSError as e:
                self._on_collision(port, e)
                return port
            self._record(port, EventKind.BOUND)

        self._record(port, EventKind.RELEASED)
        self.state.increment_tested()
        self.completed += 1
        if self.metrics:
            self.metrics.record_cycle(self.worker_id, time.perf_counter() - started)
        return None

    def _on_collision(self, port: int, error: OSError) -> None:
        self.log.error(
            f"Worker {self.worker_id} failed binding to port {port}: {error}",
            port=port,
            event="failed",
            errno=error.errno,
        )
        if self.metrics:
            self.metrics.record_bind_failure(self.worker_id, error.errno)

        won = self.state.fail(port, self.worker_id)
        if self.failure_mode == "strict" and won:
            self.reporter.report(port)
            self.exit_fn(RACE_EXIT_CODE)

    def run(self) -> None:
        """Loop until a stop is requested, a race occurs or the iteration limit is hit."""
        self.log.debug(f"Worker {self.worker_id} started")
        if self.metrics:
            self.metrics.worker_started()
        try:
            while not self.state.should_stop():
                if self.iterations is not None and self.completed >= self.iterations:
                    break
                if self.test_port() is not None:
                    break
        finally:
            if self.metrics:
                self.metrics.worker_stopped()
            self.log.debug(
                f"Worker {self.worker_id} stopped after {self.completed} ports"
            )
