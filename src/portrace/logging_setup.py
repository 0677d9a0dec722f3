"""JSON logging whose records line up with the event ledger's clock."""

import json
import logging
import sys
import threading
from datetime import datetime, timezone
from typing import Any, Optional

from .util.timing import Stopwatch, format_elapsed


# Structured fields copied from ``extra`` into the JSON line when present
CONTEXT_FIELDS = ("worker_id", "port", "event", "errno", "details")

# Keyword arguments the logging module itself understands
_LOGGING_KWARGS = frozenset({"exc_info", "stack_info", "stacklevel", "extra"})


class RunClockFilter(logging.Filter):
    """Stamps records with the elapsed time of the active run and the emitting thread."""

    def __init__(self):
        super().__init__()
        self._clock: Optional[Stopwatch] = None
        self._lock = threading.Lock()

    def bind_clock(self, clock: Optional[Stopwatch]) -> None:
        with self._lock:
            self._clock = clock

    def filter(self, record: logging.LogRecord) -> bool:
        clock = self._clock
        if clock is not None and clock.start_time is not None:
            record.elapsed = format_elapsed(clock.elapsed())
        return True


_run_clock_filter = RunClockFilter()


def bind_run_clock(clock: Optional[Stopwatch]) -> None:
    """Make log records carry elapsed time from ``clock`` (None detaches it)."""
    _run_clock_filter.bind_clock(clock)


class JSONFormatter(logging.Formatter):
    """One JSON object per record: timestamps, thread, message and run context."""
    
    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created, tz=timezone.utc)
        log_entry: dict[str, Any] = {
            "ts": ts.strftime("%Y-%m-%dT%H:%M:%S.%f") + "Z",
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
        }
        elapsed = getattr(record, "elapsed", None)
        if elapsed is not None:
            log_entry["elapsed"] = elapsed
        log_entry["msg"] = record.getMessage()
        
        log_entry.update(
            (field, getattr(record, field))
            for field in CONTEXT_FIELDS
            if getattr(record, field, None) is not None
        )
        
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        
        return json.dumps(log_entry, separators=(",", ":"))


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging to stdout."""
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    
    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    handler.addFilter(_run_clock_filter)
    root_logger.addHandler(handler)


class ContextualLogger(logging.LoggerAdapter):
    """Adapter turning keyword arguments such as ``port=`` into structured fields."""

    def __init__(self, logger: logging.Logger, context: Optional[dict[str, Any]] = None):
        super().__init__(logger, dict(context or {}))

    def bind(self, **kwargs) -> "ContextualLogger":
        """Create a new logger with additional context."""
        return ContextualLogger(self.logger, {**self.extra, **kwargs})

    def process(self, msg, kwargs):
        fields = {k: kwargs.pop(k) for k in list(kwargs) if k not in _LOGGING_KWARGS}
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {}), **fields}
        return msg, kwargs


def get_logger(name: str) -> ContextualLogger:
    """Get a contextual logger for the given name."""
    return ContextualLogger(logging.getLogger(name))
