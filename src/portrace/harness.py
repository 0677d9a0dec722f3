import os
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional, TextIO

from .config import RunConfig
from .ledger import EventLedger
from .logging_setup import bind_run_clock, get_logger
from .metrics.prometheus import PortRaceMetrics
from .net.ports import PortSource
from .reporter import RaceReporter
from .state.run_state import RunState
from .status import StatusReporter
from .util.timing import Stopwatch
from .worker import WorkerLoop


logger = get_logger(__name__)


@dataclass
class RunResult:
    """Outcome of a harness run."""
    ports_tested: int
    elapsed_s: float
    failed_port: Optional[int] = None
    failed_by: Optional[int] = None
    report: str = ""


class Harness:
    """Runs one worker thread per configured worker and collects the outcome."""
    
    def __init__(
        self,
        config: RunConfig,
        source: Optional[PortSource] = None,
        metrics: Optional[PortRaceMetrics] = None,
        stream: Optional[TextIO] = None,
        exit_fn: Callable[[int], None] = os._exit,
    ):
        self.config = config
        self.metrics = metrics
        self.stream = stream
        self.exit_fn = exit_fn
        self.clock = Stopwatch(start=False)
        self.ledger = EventLedger(clock=self.clock)
        self.state = RunState(skip_port=config.skip_port)
        self.source = source or PortSource(host=config.bind_host, metrics=metrics)
        self.reporter = RaceReporter(self.ledger, stream=stream)
        self.threads: List[threading.Thread] = []
        self.workers: List[WorkerLoop] = []
        self._errors: List[BaseException] = []
        self._errors_lock = threading.Lock()
        self.running = False
    
    def _create_workers(self) -> None:
        self.threads = []
        self._errors = []
        self.workers = [
            WorkerLoop(
                worker_id=i,
                source=self.source,
                ledger=self.ledger,
                state=self.state,
                reporter=self.reporter,
                failure_mode=self.config.failure_mode,
                bind_host=self.config.bind_host,
                iterations=self.config.iterations,
                debug=self.config.debug,
                metrics=self.metrics,
                exit_fn=self.exit_fn,
            )
            for i in range(self.config.workers)
        ]
    
    def _run_worker(self, worker: WorkerLoop) -> None:
        """Thread target; any exception stops the whole run."""
        try:
            worker.run()
        except Exception as e:
            logger.error(
                f"Worker {worker.worker_id} aborted: {e}",
                worker_id=worker.worker_id,
                exc_info=True,
            )
            with self._errors_lock:
                self._errors.append(e)
            self.state.request_stop()
    
    def run(self) -> RunResult:
        """
        Run all workers until a race, an interrupt or the iteration limit.
        
        Raises:
            PortAllocationError: If a worker could not obtain a port
            RuntimeError: If the harness is already running
        """
        if self.running:
            raise RuntimeError("Harness is already running")
        self.running = True
        
        self._create_workers()
        self.clock.start()
        bind_run_clock(self.clock)
        
        status: Optional[StatusReporter] = None
        if self.config.status_interval_s > 0:
            status = StatusReporter(
                self.state, self.clock, self.config.status_interval_s, stream=self.stream
            )
            status.start()
        
        logger.info(
            f"Starting {len(self.workers)} workers "
            f"(failure_mode={self.config.failure_mode}, skip_port={self.config.skip_port})"
        )
        
        try:
            for worker in self.workers:
                thread = threading.Thread(
                    target=self._run_worker,
                    args=(worker,),
                    name=f"worker-{worker.worker_id}",
                    daemon=True
                )
                thread.start()
                self.threads.append(thread)
            
            self._join_workers()
        finally:
            if status:
                status.stop()
                status.join(timeout=5.0)
            self.running = False
        
        result = RunResult(
            ports_tested=self.state.ports_tested,
            elapsed_s=self.clock.elapsed(),
            failed_port=self.state.failed_port,
            failed_by=self.state.failed_by,
        )
        
        if result.failed_port is not None:
            # Strict mode reports from the failing worker before exiting
            if self.reporter.reported:
                result.report = self.reporter.render(result.failed_port)
            else:
                result.report = self.reporter.report(result.failed_port)
        
        # A recorded race is still reported when another worker crashed
        if self._errors:
            raise self._errors[0]
        
        logger.info(f"Run finished: {result.ports_tested} ports tested in {result.elapsed_s:.2f}s")
        return result
    
    def _join_workers(self) -> None:
        # Short join timeouts keep the main thread responsive to signals
        pending = list(self.threads)
        while pending:
            for thread in pending:
                thread.join(timeout=0.2)
            pending = [t for t in pending if t.is_alive()]
    
    def shutdown(self) -> None:
        """Ask every worker to stop after its current iteration."""
        if self.state.should_stop():
            return
        logger.info("Shutting down workers")
        self.state.request_stop()
