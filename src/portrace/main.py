#!/usr/bin/env python3

import signal
from typing import Optional

import typer
from pydantic import ValidationError

from .logging_setup import setup_logging, get_logger
from .config import build_config
from .harness import Harness
from .metrics.prometheus import get_metrics
from .net.ports import PortAllocationError, PortSource
from .worker import RACE_EXIT_CODE


app = typer.Typer(
    name="portrace",
    help="Stress-test OS ephemeral port allocation for races",
    no_args_is_help=True
)

# Global harness instance for signal handling
_harness: Optional[Harness] = None


def signal_handler(signum, frame):
    """Handle shutdown signals gracefully."""
    logger = get_logger(__name__)
    signal_name = signal.Signals(signum).name
    logger.info(f"Received {signal_name}, stopping workers...")
    
    if _harness:
        _harness.shutdown()


@app.command()
def run(
    skip_port: Optional[int] = typer.Argument(
        None,
        help="Port the OS assignment must never return"
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Trace every assign/bind/release event"
    ),
    workers: Optional[int] = typer.Option(
        None,
        "--workers",
        "-w",
        help="Number of parallel workers (default: available processors)"
    ),
    failure_mode: Optional[str] = typer.Option(
        None,
        "--failure-mode",
        "-m",
        help="cooperative (drain workers, then report) or strict (report and exit at once)"
    ),
    iterations: Optional[int] = typer.Option(
        None,
        "--iterations",
        "-n",
        help="Stop each worker after this many ports (default: run until a race)"
    ),
    status_interval: Optional[float] = typer.Option(
        None,
        "--status-interval",
        help="Seconds between throughput lines; 0 disables them"
    ),
    metrics_port: Optional[int] = typer.Option(
        None,
        "--metrics-port",
        help="Expose Prometheus metrics on the given port"
    ),
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        "-l",
        help="Log level (DEBUG, INFO, WARNING, ERROR)"
    )
):
    """Hammer the OS port allocator and verify each port can be bound."""
    global _harness
    
    logger = get_logger(__name__)
    
    try:
        cfg = build_config(
            skip_port=skip_port,
            debug=debug,
            workers=workers,
            failure_mode=failure_mode,
            iterations=iterations,
            status_interval_s=status_interval,
            log_level=log_level,
            metrics={"enabled": True, "port": metrics_port} if metrics_port is not None else None,
        )
    except ValidationError as e:
        setup_logging((log_level or "INFO").upper())
        logger.error(f"Invalid configuration: {e}")
        raise typer.Exit(1)
    
    setup_logging(cfg.effective_log_level)
    
    metrics = get_metrics()
    metrics.start_http_server(cfg.metrics)
    
    previous = {
        sig: signal.signal(sig, signal_handler)
        for sig in (signal.SIGINT, signal.SIGTERM)
    }
    
    typer.echo(f"Testing next-port allocation with {cfg.workers} workers...")
    
    _harness = Harness(cfg, metrics=metrics)
    try:
        result = _harness.run()
    except PortAllocationError as e:
        logger.error(f"Port allocation failed: {e}")
        raise typer.Exit(1)
    finally:
        _harness = None
        for sig, handler in previous.items():
            if handler is not None:
                signal.signal(sig, handler)
    
    if result.failed_port is not None:
        raise typer.Exit(RACE_EXIT_CODE)
    
    typer.echo(f"Ports Tested: {result.ports_tested}, no binding races detected")


@app.command()
def probe(
    skip: Optional[int] = typer.Option(
        None,
        "--skip",
        "-s",
        help="Port to exclude"
    ),
    count: int = typer.Option(
        1,
        "--count",
        "-c",
        min=1,
        help="Number of ports to request"
    )
):
    """Print ports handed out by the OS, one per line."""
    setup_logging("WARNING")
    logger = get_logger(__name__)
    
    try:
        cfg = build_config(skip_port=skip)
    except ValidationError as e:
        logger.error(f"Invalid configuration: {e}")
        raise typer.Exit(1)
    
    source = PortSource(host=cfg.bind_host)
    try:
        for _ in range(count):
            typer.echo(str(source.next_port(skip=cfg.skip_port)))
    except PortAllocationError as e:
        logger.error(f"Port allocation failed: {e}")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
