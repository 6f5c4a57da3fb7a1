"""Interactive process sessions — pseudo-terminals with a pipe fallback.

Shells and agent processes run in sessions addressed by caller-chosen ids.
Each session gets a real PTY when the host supports one, and plain pipes
otherwise; the registry multiplexes them and forwards their output and
exit events to a single sink.
"""

from termdeck.pty.buffer import ScrollbackBuffer
from termdeck.pty.factory import SessionFactory, SessionOptions
from termdeck.pty.manager import PIPE_MODE_BANNER, SessionRegistry
from termdeck.pty.session import Session, SessionRole, SessionState
from termdeck.pty.shell import ShellSpec, resolve_shell
from termdeck.pty.transport import (
    PipeTransport,
    PtyTransport,
    Transport,
    TransportMode,
    probe_pty,
)

__all__ = [
    "PIPE_MODE_BANNER",
    "PipeTransport",
    "PtyTransport",
    "ScrollbackBuffer",
    "Session",
    "SessionFactory",
    "SessionOptions",
    "SessionRegistry",
    "SessionRole",
    "SessionState",
    "ShellSpec",
    "Transport",
    "TransportMode",
    "probe_pty",
    "resolve_shell",
]
