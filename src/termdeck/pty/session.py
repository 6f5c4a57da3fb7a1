"""Session — one externally identified interactive process."""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from typing import Any

from termdeck.pty.transport import PipeTransport, PtyTransport, TransportMode


class SessionRole(enum.StrEnum):
    """What the session is for. Opaque to the registry; kept for the UI."""

    PLAIN = "plain"
    AGENT = "agent"


class SessionState(enum.Enum):
    """Lifecycle states for a session."""

    RUNNING = "running"
    EXITED = "exited"  # Process terminated on its own
    KILLED = "killed"  # Killed through the registry


@dataclass
class Session:
    """A live session owned by the registry.

    The transport is owned exclusively by the session. ``cwd`` is the
    directory the process was launched in; it is not refreshed if the user
    changes directory inside the shell.
    """

    id: str
    cwd: str
    role: SessionRole
    transport: PtyTransport | PipeTransport
    generation: int
    extra_env: dict[str, str] = field(default_factory=dict)
    state: SessionState = SessionState.RUNNING
    exit_code: int | None = None
    created_at: float = field(default_factory=time.time)

    @property
    def mode(self) -> TransportMode:
        return self.transport.mode

    @property
    def pid(self) -> int | None:
        return self.transport.pid

    @property
    def alive(self) -> bool:
        return self.state == SessionState.RUNNING

    def describe(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "mode": self.mode.value,
            "cwd": self.cwd,
            "pid": self.pid,
            "state": self.state.value,
            "created_at": self.created_at,
        }
