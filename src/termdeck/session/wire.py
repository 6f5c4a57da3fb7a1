"""Wire protocol — decouples session management from the UI.

Session events flow from the registry to the UI. The UI subscribes to the
wire and renders events, so a terminal view, a CLI pump and tests can all
consume the same stream.

Events are produced on transport reader threads. Once a loop is attached,
``send()`` hands each event to that loop with ``call_soon_threadsafe``,
which runs callbacks in submission order, so a session's output reaches
subscribers in the order it was produced. Without an attached loop,
events are delivered inline, which is only safe when every producer runs
on the thread that owns the subscriber queues.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import threading
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


class EventType(enum.Enum):
    OUTPUT = "output"
    EXIT = "exit"
    STATUS = "status"
    ERROR = "error"


@dataclass
class WireEvent:
    """An event on the wire."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)


class Wire:
    """Async message bus: sessions -> UI subscribers.

    Multi-producer, multi-consumer broadcast.
    """

    def __init__(self) -> None:
        self._subscribers: list[asyncio.Queue[WireEvent | None]] = []
        self._closed: bool = False
        self._loop: asyncio.AbstractEventLoop | None = None
        self._owner_thread = threading.get_ident()
        self._warned_unattached = False

    def attach_loop(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Deliver events on ``loop`` so producers may be on any thread.

        Must be called from the asyncio thread (or pass an explicit loop).
        """
        self._loop = loop or asyncio.get_running_loop()

    def send(self, event: WireEvent) -> None:
        """Send an event to all subscribers.

        Silently drops events after ``close()`` has been called.
        """
        if self._closed:
            return
        if self._loop is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._deliver, event)
        else:
            if (
                not self._warned_unattached
                and threading.get_ident() != self._owner_thread
            ):
                self._warned_unattached = True
                logger.warning(
                    "Wire event sent from another thread with no loop attached; "
                    "call attach_loop() before starting sessions"
                )
            self._deliver(event)

    def _deliver(self, event: WireEvent | None) -> None:
        for q in list(self._subscribers):
            q.put_nowait(event)

    def send_output(self, session_id: str, data: bytes) -> None:
        self.send(
            WireEvent(
                type=EventType.OUTPUT,
                data={"session_id": session_id, "data": data},
            )
        )

    def send_exit(
        self,
        session_id: str,
        exit_code: int | None,
        last_output: str = "",
    ) -> None:
        """Notify subscribers that a session's process exited on its own."""
        self.send(
            WireEvent(
                type=EventType.EXIT,
                data={
                    "session_id": session_id,
                    "exit_code": exit_code,
                    "last_output": last_output[-500:],
                },
            )
        )

    def send_status(self, message: str) -> None:
        self.send(WireEvent(type=EventType.STATUS, data={"message": message}))

    def send_error(self, error: str) -> None:
        self.send(WireEvent(type=EventType.ERROR, data={"error": error}))

    def subscribe(self) -> asyncio.Queue[WireEvent | None]:
        """Subscribe to events. Returns a queue to read from."""
        q: asyncio.Queue[WireEvent | None] = asyncio.Queue()
        self._subscribers.append(q)
        return q

    def unsubscribe(self, q: asyncio.Queue) -> None:
        """Unsubscribe from events."""
        if q in self._subscribers:
            self._subscribers.remove(q)

    def close(self) -> None:
        """Signal all subscribers that the wire is closing."""
        if self._closed:
            return
        self._closed = True
        if self._loop is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._deliver, None)
        else:
            self._deliver(None)
