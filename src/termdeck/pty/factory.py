"""Session factory — pick a transport, falling back to pipes for good.

The PTY capability is probed once per factory. The first time a PTY
transport fails to start, the factory stops trying for the rest of its
life: every later session goes straight to pipes, even if a retry would
have worked. A session's transport mode never changes after spawn.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from termdeck.config import TerminalConfig
from termdeck.errors import CapabilityUnavailable, SpawnFailure
from termdeck.pty.session import SessionRole
from termdeck.pty.shell import resolve_shell
from termdeck.pty.transport import (
    ExitCallback,
    OutputCallback,
    PipeTransport,
    PtyTransport,
    probe_pty,
)

logger = logging.getLogger(__name__)


@dataclass
class SessionOptions:
    """What a caller asks for when creating a session."""

    id: str
    cwd: str
    role: SessionRole = SessionRole.PLAIN
    shell: str | None = None
    extra_env: dict[str, str] = field(default_factory=dict)


class SessionFactory:
    """Builds started transports for new sessions.

    Args:
        config: Spawn settings (geometry, shell override, forced pipes).
        pty_available: Skip the probe and use this answer instead.
        pty_transport: PTY transport class. Swappable for tests.
        pipe_transport: Pipe transport class. Swappable for tests.
    """

    def __init__(
        self,
        config: TerminalConfig | None = None,
        pty_available: bool | None = None,
        pty_transport: type[PtyTransport] = PtyTransport,
        pipe_transport: type[PipeTransport] = PipeTransport,
    ) -> None:
        self.config = config or TerminalConfig()
        self._pty_transport = pty_transport
        self._pipe_transport = pipe_transport
        self._pty_available = self._initial_probe(pty_available)

    def _initial_probe(self, pty_available: bool | None) -> bool:
        if self.config.force_pipe:
            return False
        if pty_available is not None:
            return pty_available
        return probe_pty()

    @property
    def pty_available(self) -> bool:
        """Whether the next spawn will try a PTY first."""
        return self._pty_available

    def reset(self, pty_available: bool | None = None) -> None:
        """Re-run the capability probe, or force its answer."""
        self._pty_available = self._initial_probe(pty_available)

    def spawn(
        self,
        options: SessionOptions,
        on_output: OutputCallback,
        on_exit: ExitCallback,
    ) -> PtyTransport | PipeTransport:
        """Start a process for ``options``, callbacks wired before it runs.

        Raises:
            SpawnFailure: Neither transport could start the process.
        """
        spec = resolve_shell(
            override=options.shell or self.config.shell,
            extra_env={**self.config.extra_env, **options.extra_env},
        )

        if self._pty_available:
            transport = self._pty_transport(
                spec,
                options.cwd,
                on_output,
                on_exit,
                cols=self.config.cols,
                rows=self.config.rows,
                term=self.config.term,
            )
            try:
                transport.start()
                return transport
            except CapabilityUnavailable as e:
                self._pty_available = False
                logger.warning("%s; using pipes from now on", e)
            except Exception as e:
                self._pty_available = False
                logger.warning(
                    "PTY spawn failed for %s, using pipes from now on: %s",
                    options.id,
                    e,
                )

        transport = self._pipe_transport(spec, options.cwd, on_output, on_exit)
        try:
            transport.start()
        except Exception as e:
            raise SpawnFailure(options.id, e) from e
        return transport
