"""CLI entry point for termdeck."""

from __future__ import annotations

import asyncio
import logging
import os
import sys
import threading

import typer

from termdeck.config import TermdeckConfig
from termdeck.pty.factory import SessionFactory
from termdeck.pty.manager import SessionRegistry
from termdeck.pty.session import SessionRole
from termdeck.pty.shell import pipe_mode_args, resolve_shell
from termdeck.session.sink import WireSink
from termdeck.session.wire import EventType, Wire

app = typer.Typer(
    name="termdeck",
    help="Run interactive shell and agent sessions side by side.",
    no_args_is_help=True,
)


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


@app.command()
def probe(
    shell: str | None = typer.Option(
        None, "--shell", "-s", help="Shell override to resolve instead of the default."
    ),
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Config file path."
    ),
) -> None:
    """Show which shell and transport new sessions would get."""
    config = TermdeckConfig.load(config_file)
    spec = resolve_shell(override=shell or config.terminal.shell)
    factory = SessionFactory(config.terminal)

    typer.echo(f"Platform: {sys.platform}")
    typer.echo(f"Shell: {spec.executable}")
    typer.echo(f"PTY args: {' '.join(spec.args) or '(none)'}")
    typer.echo(f"Pipe args: {' '.join(pipe_mode_args(spec)) or '(none)'}")
    typer.echo(f"PTY transport: {'available' if factory.pty_available else 'unavailable'}")
    if config.terminal.force_pipe:
        typer.echo("Pipe transport forced by configuration")


@app.command("shell")
def shell_command(
    cwd: str = typer.Option(
        ".", "--cwd", "-d", help="Working directory for the session."
    ),
    role: SessionRole = typer.Option(
        SessionRole.PLAIN, "--role", "-r", help="Session role."
    ),
    shell: str | None = typer.Option(
        None, "--shell", "-s", help="Shell to run (default: platform shell)."
    ),
    pipe: bool = typer.Option(
        False, "--pipe", "-p", help="Use the pipe transport even if a PTY is available."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug logging."
    ),
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Config file path."
    ),
) -> None:
    """Start one session and pump this terminal's stdin into it, line by line."""
    setup_logging(verbose)

    workdir = os.path.abspath(cwd)
    if not os.path.isdir(workdir):
        typer.echo(f"Error: Directory not found: {workdir}", err=True)
        raise typer.Exit(1)

    config = TermdeckConfig.load(config_file)
    if pipe:
        config.terminal.force_pipe = True

    exit_code = asyncio.run(_run_shell(workdir, role, shell, config))
    raise typer.Exit(exit_code or 0)


async def _run_shell(
    cwd: str,
    role: SessionRole,
    shell: str | None,
    config: TermdeckConfig,
) -> int | None:
    """Run a single session until it exits or stdin closes."""
    wire = Wire()
    wire.attach_loop()
    registry = SessionRegistry(WireSink(wire), SessionFactory(config.terminal))
    session_id = "cli"
    exit_code: int | None = None

    async def _consume_wire() -> None:
        nonlocal exit_code
        queue = wire.subscribe()
        out = sys.stdout.buffer
        while True:
            event = await queue.get()
            if event is None:
                break
            d = event.data
            if event.type == EventType.OUTPUT:
                out.write(d["data"])
                out.flush()
            elif event.type == EventType.EXIT:
                exit_code = d.get("exit_code")
                code_str = str(exit_code) if exit_code is not None else "?"
                typer.echo(f"\n[exit] {d['session_id']} (code={code_str})", err=True)
                break
            elif event.type == EventType.STATUS:
                typer.echo(f"[status] {d['message']}", err=True)
            elif event.type == EventType.ERROR:
                typer.echo(f"Error: {d['error']}", err=True)
        wire.unsubscribe(queue)

    consumer_task = asyncio.create_task(_consume_wire())

    if not registry.create(session_id, cwd, role=role, shell=shell):
        wire.send_error("could not start a shell")
        wire.close()
        await consumer_task
        return 1

    session = registry.get(session_id)
    if session is not None:
        wire.send_status(f"{session_id}: {session.mode} session, pid {session.pid}")

    lines: asyncio.Queue[bytes] = asyncio.Queue()
    _start_stdin_reader(asyncio.get_running_loop(), lines)
    try:
        while not consumer_task.done():
            next_line = asyncio.ensure_future(lines.get())
            done, _ = await asyncio.wait(
                {next_line, consumer_task}, return_when=asyncio.FIRST_COMPLETED
            )
            if consumer_task in done:
                next_line.cancel()
                break
            line = next_line.result()
            if not line:
                break
            registry.write(session_id, line)
    finally:
        registry.dispose_all()
        wire.close()
        await consumer_task

    return exit_code


def _start_stdin_reader(
    loop: asyncio.AbstractEventLoop, lines: asyncio.Queue[bytes]
) -> None:
    """Feed stdin lines into ``lines`` from a daemon thread; b"" marks EOF."""

    def _read() -> None:
        stdin = sys.stdin.buffer
        while True:
            line = stdin.readline()
            try:
                loop.call_soon_threadsafe(lines.put_nowait, line)
            except RuntimeError:
                break  # loop closed
            if not line:
                break

    threading.Thread(target=_read, name="stdin-reader", daemon=True).start()


def main() -> None:
    app()


if __name__ == "__main__":
    main()
