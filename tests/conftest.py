import socket
import types
from typing import Iterable, List, Optional

import pytest

from portrace.ledger import EventLedger
from portrace.net.ports import PortSource
from portrace.state.run_state import RunState
from portrace.util.timing import Stopwatch


class ScriptedPortSource(PortSource):
    """PortSource returning scripted ports before falling back to the OS."""

    def __init__(self, ports: Iterable[int] = (), fallback: bool = True, **kwargs):
        kwargs.setdefault("port_range", (1, 65535))
        super().__init__(**kwargs)
        self.script: List[int] = list(ports)
        self.fallback = fallback
        self.calls = 0

    def _assign_port(self) -> int:
        with self._lock:
            self.calls += 1
            if self.script:
                return self.script.pop(0)
        if not self.fallback:
            raise AssertionError("port script exhausted")
        return super()._assign_port()


@pytest.fixture()
def scripted_source():
    """Factory for PortSource instances with a scripted assignment sequence."""
    def factory(ports: Iterable[int] = (), fallback: bool = True, **kwargs) -> ScriptedPortSource:
        return ScriptedPortSource(ports, fallback=fallback, **kwargs)
    return factory


class FakeClock(Stopwatch):
    """Stopwatch replaying a fixed sequence of elapsed times."""

    def __init__(self, times: Iterable[float]):
        super().__init__(start=False)
        self.times = list(times)

    def elapsed(self) -> float:
        return self.times.pop(0)


@pytest.fixture()
def fake_clock():
    return FakeClock


@pytest.fixture()
def ledger():
    return EventLedger(clock=Stopwatch())


@pytest.fixture()
def run_state():
    return RunState()


@pytest.fixture()
def occupied_port():
    """A loopback port held by a bound socket for the duration of the test."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    try:
        yield sock.getsockname()[1]
    finally:
        sock.close()


@pytest.fixture()
def env(monkeypatch):
    """Helper to set/clear environment variables."""
    def _setter(mapping: Optional[dict] = None, clear: Optional[list] = None):
        if mapping:
            for k, v in mapping.items():
                monkeypatch.setenv(k, v)
        if clear:
            for k in clear:
                monkeypatch.delenv(k, raising=False)
    return _setter


@pytest.fixture()
def exit_recorder():
    """Stand-in for os._exit that records the requested status."""
    calls: List[int] = []
    return types.SimpleNamespace(calls=calls, exit=calls.append)
