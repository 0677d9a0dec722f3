from typing import Optional
from threading import Lock

from prometheus_client import Counter, Gauge, Histogram, start_http_server, CollectorRegistry

from ..logging_setup import get_logger
from ..config import MetricsConfig


logger = get_logger(__name__)


class PortRaceMetrics:
    """Prometheus metrics for a portrace run."""
    
    def __init__(self, registry: Optional[CollectorRegistry] = None):
        # Use a per-instance registry to avoid global duplication across tests
        self.registry: CollectorRegistry = registry or CollectorRegistry()

        self.ports_tested_total = Counter(
            'portrace_ports_tested_total',
            'Total number of ports that completed a bind/release cycle',
            ['worker'],
            registry=self.registry
        )
        
        self.bind_failures_total = Counter(
            'portrace_bind_failures_total',
            'Total number of failed verification binds',
            ['worker', 'errno'],
            registry=self.registry
        )
        
        self.skipped_ports_total = Counter(
            'portrace_skipped_ports_total',
            'Total number of OS-assigned ports discarded as the skip-port',
            registry=self.registry
        )
        
        self.out_of_range_ports_total = Counter(
            'portrace_out_of_range_ports_total',
            'Ports assigned outside the local ephemeral range',
            registry=self.registry
        )
        
        self.workers_active = Gauge(
            'portrace_workers_active',
            'Number of worker loops currently running',
            registry=self.registry
        )
        
        self.cycle_duration = Histogram(
            'portrace_cycle_duration_seconds',
            'Duration of one assign/bind/release cycle',
            buckets=(0.0001, 0.00025, 0.0005, 0.001, 0.0025, 0.005, 0.01, 0.05, 0.1, 1.0),
            registry=self.registry
        )
        
        self._http_server_port: Optional[int] = None
        self._lock = Lock()
    
    def record_cycle(self, worker_id: int, duration: float) -> None:
        """Record a completed bind/release cycle."""
        self.ports_tested_total.labels(worker=str(worker_id)).inc()
        self.cycle_duration.observe(duration)
    
    def record_bind_failure(self, worker_id: int, errno: Optional[int]) -> None:
        """Record a failed verification bind."""
        self.bind_failures_total.labels(
            worker=str(worker_id),
            errno=str(errno) if errno is not None else "unknown"
        ).inc()
    
    def record_skip(self) -> None:
        self.skipped_ports_total.inc()
    
    def record_out_of_range(self) -> None:
        self.out_of_range_ports_total.inc()
    
    def worker_started(self) -> None:
        self.workers_active.inc()
    
    def worker_stopped(self) -> None:
        self.workers_active.dec()
    
    def start_http_server(self, config: MetricsConfig) -> bool:
        """Start the Prometheus HTTP server."""
        if not config.enabled:
            logger.info("Metrics disabled in configuration")
            return False
        
        with self._lock:
            if self._http_server_port is not None:
                logger.warning(f"Metrics server already running on port {self._http_server_port}")
                return True
            
            try:
                start_http_server(config.port, addr=config.bind, registry=self.registry)
                self._http_server_port = config.port
                
                logger.info(f"Started Prometheus metrics server on {config.bind}:{config.port}")
                return True
                
            except Exception as e:
                logger.error(f"Failed to start metrics server: {e}")
                return False
    
    def is_running(self) -> bool:
        """Check if metrics server is running."""
        return self._http_server_port is not None


_metrics: Optional[PortRaceMetrics] = None
_metrics_lock = Lock()


def get_metrics() -> PortRaceMetrics:
    """Get the global metrics instance."""
    global _metrics
    with _metrics_lock:
        if _metrics is None:
            _metrics = PortRaceMetrics()
        return _metrics
