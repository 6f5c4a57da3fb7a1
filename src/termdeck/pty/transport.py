"""Process transports — a real pseudo-terminal, or plain pipes as a fallback.

Both transports spawn the shell in its own process group so ``kill()`` can
take down the whole tree, and both deliver output and exit notifications
from daemon reader threads:

* ``on_output(data)`` is called once per chunk, in the order the chunks were
  read from the process.
* ``on_exit(code)`` is called exactly once, after the last output chunk.
  The transport's file descriptors are already released at that point.

Neither transport raises from ``write()``; OS errors after spawn become a
one-line diagnostic in the output stream instead.
"""

from __future__ import annotations

import enum
import logging
import os
import select
import signal
import struct
import subprocess
import threading
from abc import ABC, abstractmethod
from typing import IO, Callable, ClassVar

from termdeck.errors import CapabilityUnavailable
from termdeck.pty.shell import ShellSpec, pipe_mode_args

logger = logging.getLogger(__name__)

OutputCallback = Callable[[bytes], None]
ExitCallback = Callable[[int | None], None]

READ_CHUNK = 4096
DEFAULT_COLS = 120
DEFAULT_ROWS = 30
DEFAULT_TERM = "xterm-256color"

_POLL_INTERVAL = 0.1
_READER_JOIN_TIMEOUT = 1.0


class TransportMode(enum.StrEnum):
    """How a session talks to its process. Fixed for the session's lifetime."""

    PTY = "pty"
    PIPE = "pipe"


def probe_pty() -> bool:
    """Return True if this host can run the pseudo-terminal transport."""
    if os.name != "posix":
        return False
    try:
        import fcntl  # noqa: F401
        import pty  # noqa: F401
        import termios  # noqa: F401
    except ImportError:
        return False
    return True


def format_error(exc: BaseException) -> bytes:
    """Render an OS error as a line the terminal can show."""
    return f"\r\n[Error: {exc}]\r\n".encode("utf-8", errors="replace")


def _write_all(write: Callable[[bytes], int | None], data: bytes) -> None:
    view = memoryview(data)
    while view:
        written = write(view)
        if written is None:
            # Non-blocking raw stream had no room; nothing was written.
            continue
        view = view[written:]


class Transport(ABC):
    """A spawned interactive process plus the threads that watch it."""

    mode: ClassVar[TransportMode]

    def __init__(
        self,
        spec: ShellSpec,
        cwd: str,
        on_output: OutputCallback,
        on_exit: ExitCallback,
    ) -> None:
        self.spec = spec
        self.cwd = cwd
        self._on_output = on_output
        self._on_exit = on_exit
        self._proc: subprocess.Popen | None = None
        self._pgid: int = 0
        self._io_lock = threading.Lock()
        self._finished = False

    @abstractmethod
    def start(self) -> None:
        """Spawn the process and its reader threads. Raises on failure."""

    @abstractmethod
    def write(self, data: bytes) -> None:
        """Send raw input to the process."""

    @abstractmethod
    def resize(self, cols: int, rows: int) -> None:
        """Change the terminal geometry, where the transport has one."""

    @abstractmethod
    def _release(self) -> None:
        """Close the transport's file descriptors. Must be idempotent."""

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc is not None else None

    @property
    def alive(self) -> bool:
        return self._proc is not None and self._proc.poll() is None

    def kill(self) -> None:
        """Kill the process tree. Returns without waiting for it to die."""
        if not self.alive:
            return
        try:
            if os.name == "posix":
                os.killpg(self._pgid, signal.SIGKILL)
            else:
                self._proc.kill()  # type: ignore[union-attr]
            logger.debug("Sent kill to %s transport pid=%s", self.mode, self.pid)
        except ProcessLookupError:
            logger.debug("Process group already gone: %d", self._pgid)
        except OSError as e:
            logger.warning("Error killing pid=%s: %s", self.pid, e)

    def _emit(self, data: bytes) -> None:
        try:
            self._on_output(data)
        except Exception:
            logger.exception("Error in output callback (pid=%s)", self.pid)

    def _emit_error(self, exc: BaseException) -> None:
        logger.debug("Transport error (pid=%s): %s", self.pid, exc)
        self._emit(format_error(exc))

    def _finish(self, exit_code: int | None) -> None:
        if self._finished:
            return
        self._finished = True
        self._release()
        try:
            self._on_exit(exit_code)
        except Exception:
            logger.exception("Error in exit callback (pid=%s)", self.pid)


class PtyTransport(Transport):
    """Shell attached to a real pseudo-terminal.

    The terminal's line discipline echoes input and turns ^C into SIGINT,
    so input is forwarded byte for byte.
    """

    mode = TransportMode.PTY

    def __init__(
        self,
        spec: ShellSpec,
        cwd: str,
        on_output: OutputCallback,
        on_exit: ExitCallback,
        cols: int = DEFAULT_COLS,
        rows: int = DEFAULT_ROWS,
        term: str = DEFAULT_TERM,
    ) -> None:
        super().__init__(spec, cwd, on_output, on_exit)
        self.cols = cols
        self.rows = rows
        self.term = term
        self._master_fd: int = -1
        self._reader: threading.Thread | None = None

    def start(self) -> None:
        try:
            import fcntl
            import pty
            import termios
        except ImportError as e:
            raise CapabilityUnavailable(f"pseudo-terminals not supported: {e}") from e

        def _acquire_controlling_tty() -> None:
            # Runs in the forked child after setsid(), while other sessions'
            # reader threads may be alive in the parent. It must stay a
            # single ioctl on already-imported modules: no imports, logging
            # or locks, which could be held by a thread that was not forked.
            fcntl.ioctl(0, termios.TIOCSCTTY, 0)

        master_fd, slave_fd = pty.openpty()
        try:
            _set_winsize(slave_fd, self.rows, self.cols)
            self._proc = subprocess.Popen(
                self.spec.argv,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                cwd=self.cwd,
                env={**self.spec.env, "TERM": self.term},
                start_new_session=True,
                preexec_fn=_acquire_controlling_tty,
            )
        except BaseException:
            os.close(master_fd)
            raise
        finally:
            # The child holds its own copy of the slave.
            os.close(slave_fd)

        self._master_fd = master_fd
        self._pgid = self._proc.pid
        self._reader = threading.Thread(
            target=self._read_loop,
            name=f"pty-reader-{self._proc.pid}",
            daemon=True,
        )
        self._reader.start()
        logger.info(
            "PTY transport started: pid=%d %dx%d cmd=%s",
            self._proc.pid,
            self.cols,
            self.rows,
            " ".join(self.spec.argv),
        )

    def _read_loop(self) -> None:
        fd = self._master_fd
        try:
            while True:
                try:
                    ready, _, _ = select.select([fd], [], [], _POLL_INTERVAL)
                except (OSError, ValueError):
                    break
                if not ready:
                    # A background job may keep the slave open after the
                    # shell itself is gone.
                    if self._proc.poll() is not None:  # type: ignore[union-attr]
                        break
                    continue
                try:
                    data = os.read(fd, READ_CHUNK)
                except OSError:
                    # EIO once every slave descriptor is closed
                    break
                if not data:
                    break
                self._emit(data)
        finally:
            exit_code = self._proc.wait()  # type: ignore[union-attr]
            logger.debug("PTY transport pid=%d ended (code=%s)", self.pid, exit_code)
            self._finish(exit_code)

    def write(self, data: bytes) -> None:
        with self._io_lock:
            if self._master_fd < 0:
                return
            try:
                _write_all(lambda b: os.write(self._master_fd, b), data)
            except OSError as e:
                self._emit_error(e)

    def resize(self, cols: int, rows: int) -> None:
        with self._io_lock:
            if self._master_fd < 0:
                return
            try:
                _set_winsize(self._master_fd, rows, cols)
            except OSError as e:
                logger.debug("Resize failed (pid=%s): %s", self.pid, e)
                return
        self.cols = cols
        self.rows = rows

    def _release(self) -> None:
        with self._io_lock:
            if self._master_fd >= 0:
                try:
                    os.close(self._master_fd)
                except OSError:
                    pass
                self._master_fd = -1


class PipeTransport(Transport):
    """Shell on plain pipes.

    There is no terminal: no resize, no line discipline, and therefore no
    echo of typed input. stdout and stderr are merged into one stream.
    """

    mode = TransportMode.PIPE

    def __init__(
        self,
        spec: ShellSpec,
        cwd: str,
        on_output: OutputCallback,
        on_exit: ExitCallback,
    ) -> None:
        super().__init__(spec, cwd, on_output, on_exit)
        self._readers: list[threading.Thread] = []
        self._waiter: threading.Thread | None = None

    def start(self) -> None:
        if os.name == "posix":
            platform_kwargs: dict = {"start_new_session": True}
        else:
            platform_kwargs = {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}

        self._proc = subprocess.Popen(
            [self.spec.executable, *pipe_mode_args(self.spec)],
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=self.cwd,
            env=self.spec.env,
            bufsize=0,
            **platform_kwargs,
        )
        self._pgid = self._proc.pid

        for stream, label in ((self._proc.stdout, "out"), (self._proc.stderr, "err")):
            reader = threading.Thread(
                target=self._pump,
                args=(stream,),
                name=f"pipe-{label}-{self._proc.pid}",
                daemon=True,
            )
            self._readers.append(reader)
            reader.start()

        self._waiter = threading.Thread(
            target=self._wait_loop,
            name=f"pipe-wait-{self._proc.pid}",
            daemon=True,
        )
        self._waiter.start()
        logger.info(
            "Pipe transport started: pid=%d cmd=%s",
            self._proc.pid,
            self.spec.executable,
        )

    def _pump(self, stream: IO[bytes]) -> None:
        try:
            while True:
                data = stream.read(READ_CHUNK)
                if not data:
                    break
                self._emit(data)
        except (OSError, ValueError) as e:
            if self.alive:
                self._emit_error(e)
        finally:
            stream.close()

    def _wait_loop(self) -> None:
        exit_code = self._proc.wait()  # type: ignore[union-attr]
        for reader in self._readers:
            reader.join(timeout=_READER_JOIN_TIMEOUT)
        logger.debug("Pipe transport pid=%d ended (code=%s)", self.pid, exit_code)
        self._finish(exit_code)

    def write(self, data: bytes) -> None:
        with self._io_lock:
            stdin = self._proc.stdin if self._proc is not None else None
            if stdin is None or stdin.closed:
                return
            try:
                _write_all(stdin.write, data)
            except (OSError, ValueError) as e:
                self._emit_error(e)

    def resize(self, cols: int, rows: int) -> None:
        pass

    def _release(self) -> None:
        if self._proc is None:
            return
        # stdout and stderr belong to their reader threads, which close them
        # at EOF even when a grandchild holds the pipe past our exit.
        with self._io_lock:
            stdin = self._proc.stdin
            if stdin is None or stdin.closed:
                return
            try:
                stdin.close()
            except OSError:
                pass


def _set_winsize(fd: int, rows: int, cols: int) -> None:
    import fcntl
    import termios

    fcntl.ioctl(fd, termios.TIOCSWINSZ, struct.pack("HHHH", rows, cols, 0, 0))
