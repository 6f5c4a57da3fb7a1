"""Rolling scrollback buffer for session output."""

from __future__ import annotations

import codecs
import threading
from collections import deque


class ScrollbackBuffer:
    """Thread-safe rolling buffer of a session's output lines.

    Output arrives in arbitrary chunks, so a line (or a multi-byte
    character) can be split across two ``append()`` calls. The unfinished
    tail is held back as ``partial`` until its newline arrives.
    Carriage returns are dropped; no other terminal control is interpreted.
    """

    def __init__(self, max_lines: int = 5_000) -> None:
        self._lines: deque[str] = deque(maxlen=max_lines)
        self._partial: str = ""
        self._total_lines: int = 0  # Total lines ever completed
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._lock = threading.Lock()

    def append(self, data: bytes) -> None:
        """Append a raw output chunk."""
        with self._lock:
            text = self._partial + self._decoder.decode(data).replace("\r", "")
            *complete, self._partial = text.split("\n")
            self._lines.extend(complete)
            self._total_lines += len(complete)

    def read_tail(self, n: int = 100) -> list[str]:
        """Read the last N lines, including an unfinished last line."""
        with self._lock:
            lines = list(self._lines)
            if self._partial:
                lines.append(self._partial)
        return lines[-n:] if len(lines) > n else lines

    def read_all(self) -> str:
        """Read all buffered content as a single string."""
        with self._lock:
            lines = list(self._lines)
            if self._partial:
                lines.append(self._partial)
        return "\n".join(lines)

    @property
    def partial(self) -> str:
        with self._lock:
            return self._partial

    @property
    def line_count(self) -> int:
        """Current number of complete lines in the buffer."""
        with self._lock:
            return len(self._lines)

    @property
    def total_lines(self) -> int:
        """Total number of complete lines ever added."""
        with self._lock:
            return self._total_lines

    def clear(self) -> None:
        """Clear the buffer."""
        with self._lock:
            self._lines.clear()
            self._partial = ""
            self._total_lines = 0
            self._decoder.reset()
