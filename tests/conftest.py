"""Shared fakes: a recording sink and transports that never spawn anything."""

from __future__ import annotations

import itertools
import threading
import time
from typing import Callable

import pytest

from termdeck.pty.factory import SessionFactory
from termdeck.pty.manager import SessionRegistry
from termdeck.pty.transport import PipeTransport, PtyTransport

_pids = itertools.count(40_000)


class RecordingSink:
    """EventSink that records every event, in order."""

    def __init__(self) -> None:
        self.events: list[tuple[str, str, object]] = []
        self._cond = threading.Condition()

    def output(self, session_id: str, data: bytes) -> None:
        with self._cond:
            self.events.append(("output", session_id, data))
            self._cond.notify_all()

    def exit(self, session_id: str, exit_code: int | None) -> None:
        with self._cond:
            self.events.append(("exit", session_id, exit_code))
            self._cond.notify_all()

    def output_for(self, session_id: str) -> bytes:
        with self._cond:
            return b"".join(
                payload  # type: ignore[misc]
                for kind, sid, payload in self.events
                if kind == "output" and sid == session_id
            )

    def exits_for(self, session_id: str) -> list[int | None]:
        with self._cond:
            return [
                payload  # type: ignore[misc]
                for kind, sid, payload in self.events
                if kind == "exit" and sid == session_id
            ]

    def wait_for(self, predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
        deadline = time.monotonic() + timeout
        with self._cond:
            while not predicate():
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._cond.wait(remaining)
            return True

    def wait_for_output(self, session_id: str, needle: bytes, timeout: float = 5.0) -> bool:
        return self.wait_for(lambda: needle in self.output_for(session_id), timeout)


class _FakeTransportMixin:
    """Replaces process handling with in-memory bookkeeping.

    Tests drive the transport with ``feed()`` (output from the process)
    and ``finish()`` (the process exits on its own).
    """

    fail_start: bool = False

    def start(self) -> None:
        if self.fail_start:
            raise OSError("spawn refused")
        self.writes: list[bytes] = []
        self.sizes: list[tuple[int, int]] = []
        self.killed = False
        self.released = 0
        self._fake_pid = next(_pids)

    @property
    def pid(self) -> int | None:
        return getattr(self, "_fake_pid", None)

    @property
    def alive(self) -> bool:
        return not self.killed and not self._finished

    def write(self, data: bytes) -> None:
        self.writes.append(data)

    def resize(self, cols: int, rows: int) -> None:
        self.sizes.append((cols, rows))

    def kill(self) -> None:
        self.killed = True

    def _release(self) -> None:
        self.released += 1

    def feed(self, data: bytes) -> None:
        self._emit(data)

    def finish(self, exit_code: int | None = 0) -> None:
        self._finish(exit_code)


class FakePtyTransport(_FakeTransportMixin, PtyTransport):
    pass


class FakePipeTransport(_FakeTransportMixin, PipeTransport):
    pass


class BrokenPtyTransport(FakePtyTransport):
    fail_start = True


class BrokenPipeTransport(FakePipeTransport):
    fail_start = True


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def pty_factory() -> SessionFactory:
    return SessionFactory(
        pty_available=True,
        pty_transport=FakePtyTransport,
        pipe_transport=FakePipeTransport,
    )


@pytest.fixture
def pipe_factory() -> SessionFactory:
    return SessionFactory(
        pty_available=False,
        pty_transport=FakePtyTransport,
        pipe_transport=FakePipeTransport,
    )


@pytest.fixture
def registry(sink: RecordingSink, pty_factory: SessionFactory) -> SessionRegistry:
    return SessionRegistry(sink, pty_factory)


@pytest.fixture
def pipe_registry(sink: RecordingSink, pipe_factory: SessionFactory) -> SessionRegistry:
    return SessionRegistry(sink, pipe_factory)
