from __future__ import annotations
import ipaddress
import os
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator


ENV_PREFIX = "PORTRACE_"

# Environment variable suffix -> RunConfig field
ENV_FIELDS = {
    "WORKERS": "workers",
    "SKIP_PORT": "skip_port",
    "FAILURE_MODE": "failure_mode",
    "STATUS_INTERVAL": "status_interval_s",
    "BIND_HOST": "bind_host",
    "LOG_LEVEL": "log_level",
}


def available_parallelism() -> int:
    """Number of processors this process may run on."""
    try:
        return max(1, len(os.sched_getaffinity(0)))
    except (AttributeError, OSError):
        return max(1, os.cpu_count() or 1)


class MetricsConfig(BaseModel):
    enabled: bool = False
    bind: str = "127.0.0.1"
    port: int = Field(default=9316, ge=1, le=65535)


class RunConfig(BaseModel):
    workers: int = Field(default_factory=available_parallelism, ge=1)
    skip_port: Optional[int] = Field(default=None, ge=1, le=65535)
    debug: bool = False
    # cooperative: flag all workers and report once after they drain
    # strict: report from the failing worker and exit the process at once
    failure_mode: Literal["cooperative", "strict"] = "cooperative"
    status_interval_s: float = Field(default=1.0, ge=0)
    # Per-worker iteration limit; None runs until a race or an interrupt
    iterations: Optional[int] = Field(default=None, ge=1)
    bind_host: str = "127.0.0.1"
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    # debug forces DEBUG; otherwise None means INFO
    log_level: Optional[Literal["DEBUG", "INFO", "WARNING", "ERROR"]] = None

    @field_validator("bind_host")
    def validate_loopback(cls, v):
        try:
            addr = ipaddress.IPv4Address(v)
        except ipaddress.AddressValueError:
            raise ValueError(f"bind_host must be an IPv4 address, got {v!r}")
        if not addr.is_loopback:
            raise ValueError(f"bind_host must be a loopback address, got {v}")
        return v

    @field_validator("log_level", mode="before")
    def normalize_log_level(cls, v):
        return v.upper() if isinstance(v, str) else v

    @property
    def effective_log_level(self) -> str:
        if self.debug:
            return "DEBUG"
        return self.log_level or "INFO"


def env_overrides(environ: Optional[dict[str, str]] = None) -> dict[str, Any]:
    """Collect PORTRACE_* variables as RunConfig field values."""
    environ = os.environ if environ is None else environ
    values: dict[str, Any] = {}
    for suffix, field in ENV_FIELDS.items():
        raw = environ.get(ENV_PREFIX + suffix)
        if raw is not None and raw.strip() != "":
            values[field] = raw.strip()
    return values


def build_config(environ: Optional[dict[str, str]] = None, **overrides: Any) -> RunConfig:
    """Build a validated RunConfig.

    Explicit overrides win over PORTRACE_* environment variables; overrides
    whose value is None are treated as unset.
    """
    data = env_overrides(environ)
    data.update({k: v for k, v in overrides.items() if v is not None})
    return RunConfig(**data)
