"""Event sinks — where the registry sends session output and exits."""

from __future__ import annotations

import threading
from typing import Protocol, runtime_checkable

from termdeck.pty.buffer import ScrollbackBuffer
from termdeck.session.wire import Wire


@runtime_checkable
class EventSink(Protocol):
    """The consumer of session events (normally the UI layer).

    Both methods may be called from any thread. For a given session,
    ``output`` calls arrive in production order and ``exit`` is the last
    call, made at most once.
    """

    def output(self, session_id: str, data: bytes) -> None: ...

    def exit(self, session_id: str, exit_code: int | None) -> None: ...


class WireSink:
    """Publishes session events on a Wire.

    Keeps a short scrollback per session so the exit event can carry the
    last few lines the process printed.
    """

    def __init__(self, wire: Wire, tail_lines: int = 3) -> None:
        self.wire = wire
        self.tail_lines = tail_lines
        self._buffers: dict[str, ScrollbackBuffer] = {}
        self._lock = threading.Lock()

    def output(self, session_id: str, data: bytes) -> None:
        with self._lock:
            buffer = self._buffers.get(session_id)
            if buffer is None:
                buffer = self._buffers[session_id] = ScrollbackBuffer(
                    max_lines=max(self.tail_lines, 1)
                )
        buffer.append(data)
        self.wire.send_output(session_id, data)

    def exit(self, session_id: str, exit_code: int | None) -> None:
        with self._lock:
            buffer = self._buffers.pop(session_id, None)
        tail = buffer.read_tail(self.tail_lines) if buffer is not None else []
        self.wire.send_exit(session_id, exit_code, last_output="\n".join(tail))

    def forget(self, session_id: str) -> None:
        """Drop the scrollback of a session that was killed."""
        with self._lock:
            self._buffers.pop(session_id, None)
