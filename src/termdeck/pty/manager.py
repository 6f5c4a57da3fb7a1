"""Session registry — the one place sessions are added and removed."""

from __future__ import annotations

import itertools
import logging
import threading
from typing import TYPE_CHECKING, Any

from termdeck.errors import SpawnFailure
from termdeck.pty.factory import SessionFactory, SessionOptions
from termdeck.pty.session import Session, SessionRole, SessionState
from termdeck.pty.transport import (
    ExitCallback,
    OutputCallback,
    PipeTransport,
    PtyTransport,
)

if TYPE_CHECKING:
    from termdeck.session.sink import EventSink

logger = logging.getLogger(__name__)

PIPE_MODE_BANNER = b"[Terminal - pipe mode]\r\n"


class SessionRegistry:
    """Maps caller-chosen ids to live sessions and forwards their events.

    Guarantees:
    - At most one live session per id; ``create`` on a live id replaces it.
    - A session that exited or was killed is removed before anything else
      can observe it, and its exit event is forwarded in the same critical
      section, so once ``exit(id)`` is seen the id no longer resolves.
    - Every transport's callbacks are tagged with the generation the session
      was created under. Late output or exit from a killed or replaced
      process is dropped instead of landing on its successor.

    Unknown ids are never an error: ``write``/``resize`` do nothing,
    ``kill``/``restart`` return False, ``get_cwd`` returns None.
    """

    def __init__(self, sink: EventSink, factory: SessionFactory | None = None) -> None:
        self._sink = sink
        self._factory = factory or SessionFactory()
        self._sessions: dict[str, Session] = {}
        self._lock = threading.RLock()
        self._generations = itertools.count(1)

    @property
    def factory(self) -> SessionFactory:
        return self._factory

    def create(
        self,
        session_id: str,
        cwd: str,
        role: SessionRole | str = SessionRole.PLAIN,
        shell: str | None = None,
        extra_env: dict[str, str] | None = None,
    ) -> bool:
        """Spawn a session under ``session_id``.

        Returns True if a process was started by either transport.
        """
        options = SessionOptions(
            id=session_id,
            cwd=cwd,
            role=SessionRole(role),
            shell=shell,
            extra_env=dict(extra_env or {}),
        )

        with self._lock:
            if session_id in self._sessions:
                logger.warning("Session %s is still live, replacing it", session_id)
                self.kill(session_id)

            generation = next(self._generations)
            try:
                transport = self._factory.spawn(
                    options,
                    on_output=self._output_callback(session_id, generation),
                    on_exit=self._exit_callback(session_id, generation),
                )
            except SpawnFailure as e:
                logger.error("%s", e)
                return False

            session = Session(
                id=session_id,
                cwd=cwd,
                role=options.role,
                transport=transport,
                generation=generation,
                extra_env=options.extra_env,
            )
            self._sessions[session_id] = session
            logger.info(
                "Session %s created: role=%s mode=%s pid=%s cwd=%s",
                session_id,
                session.role,
                session.mode,
                session.pid,
                cwd,
            )

            if isinstance(transport, PipeTransport):
                # Reader threads are blocked on the lock, so this comes first.
                self._forward_output(session_id, PIPE_MODE_BANNER)

        return True

    def get(self, session_id: str) -> Session | None:
        """Get a live session by id."""
        with self._lock:
            return self._sessions.get(session_id)

    def write(self, session_id: str, data: bytes | str) -> None:
        """Send input to a session. Pipe sessions get their input echoed."""
        if isinstance(data, str):
            data = data.encode("utf-8")

        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return
            if isinstance(session.transport, PipeTransport):
                # No line discipline, so nothing else would echo keystrokes.
                self._forward_output(session_id, data)
            transport = session.transport

        # Outside the lock: a full stdin pipe must not stall other sessions.
        transport.write(data)

    def resize(self, session_id: str, cols: int, rows: int) -> None:
        """Resize a PTY session. Ignored for pipe sessions and unknown ids."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return
            transport = session.transport
        if isinstance(transport, PtyTransport):
            transport.resize(cols, rows)

    def kill(self, session_id: str) -> bool:
        """Kill a session and stop tracking it. False if it was not live."""
        with self._lock:
            session = self._sessions.pop(session_id, None)
            if session is None:
                return False
            session.state = SessionState.KILLED
            session.transport.kill()
            forget = getattr(self._sink, "forget", None)
            if forget is not None:
                forget(session_id)
        logger.info("Session %s killed (pid=%s)", session_id, session.pid)
        return True

    def restart(self, session_id: str, cwd: str, shell: str | None = None) -> bool:
        """Replace a session's process, keeping its id and role.

        The new process may use a different transport than the old one.
        Returns False, registering nothing, if ``session_id`` is not live.
        """
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return False
            role = session.role
            extra_env = session.extra_env
            self.kill(session_id)
            return self.create(
                session_id, cwd, role=role, shell=shell, extra_env=extra_env
            )

    def get_cwd(self, session_id: str) -> str | None:
        """The directory the session was launched in.

        This is the directory recorded at create/restart time, not the
        shell's current directory.
        """
        with self._lock:
            session = self._sessions.get(session_id)
            return session.cwd if session is not None else None

    def list_sessions(self) -> list[dict[str, Any]]:
        """List all live sessions."""
        with self._lock:
            return [s.describe() for s in self._sessions.values()]

    def dispose_all(self) -> None:
        """Kill all sessions. Called on shutdown."""
        with self._lock:
            session_ids = list(self._sessions)
        for session_id in session_ids:
            try:
                self.kill(session_id)
            except Exception:
                logger.exception("Error disposing session %s", session_id)
        logger.info("All sessions disposed")

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions

    # ------------------------------------------------------------------
    # Transport callbacks (reader threads)
    # ------------------------------------------------------------------

    def _current(self, session_id: str, generation: int) -> Session | None:
        session = self._sessions.get(session_id)
        if session is None or session.generation != generation:
            return None
        return session

    def _output_callback(self, session_id: str, generation: int) -> OutputCallback:
        def on_output(data: bytes) -> None:
            with self._lock:
                if self._current(session_id, generation) is None:
                    logger.debug(
                        "Dropped %d bytes from stale session %s (gen %d)",
                        len(data),
                        session_id,
                        generation,
                    )
                    return
                self._forward_output(session_id, data)

        return on_output

    def _exit_callback(self, session_id: str, generation: int) -> ExitCallback:
        def on_exit(exit_code: int | None) -> None:
            with self._lock:
                session = self._current(session_id, generation)
                if session is None:
                    logger.debug(
                        "Dropped exit from stale session %s (gen %d)",
                        session_id,
                        generation,
                    )
                    return
                del self._sessions[session_id]
                session.state = SessionState.EXITED
                session.exit_code = exit_code
                logger.info("Session %s exited (code=%s)", session_id, exit_code)
                try:
                    self._sink.exit(session_id, exit_code)
                except Exception:
                    logger.exception("Error in exit sink for session %s", session_id)

        return on_exit

    def _forward_output(self, session_id: str, data: bytes) -> None:
        try:
            self._sink.output(session_id, data)
        except Exception:
            logger.exception("Error in output sink for session %s", session_id)
