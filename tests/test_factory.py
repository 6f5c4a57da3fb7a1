"""Tests for termdeck.pty.factory.SessionFactory (sticky fallback)."""

from __future__ import annotations

import pytest

from conftest import (
    BrokenPipeTransport,
    BrokenPtyTransport,
    FakePipeTransport,
    FakePtyTransport,
    RecordingSink,
)
from termdeck.config import TerminalConfig
from termdeck.errors import SpawnFailure
from termdeck.pty import factory as factory_module
from termdeck.pty.factory import SessionFactory, SessionOptions
from termdeck.pty.manager import SessionRegistry
from termdeck.pty.transport import TransportMode


def _noop_output(data: bytes) -> None:
    pass


def _noop_exit(code: int | None) -> None:
    pass


def _spawn(factory: SessionFactory, session_id: str = "s1", **kwargs):
    options = SessionOptions(id=session_id, cwd="/tmp", **kwargs)
    return factory.spawn(options, _noop_output, _noop_exit)


class FlakyPtyTransport(FakePtyTransport):
    """Fails the first start only; later starts would succeed."""

    attempts = 0

    def start(self) -> None:
        type(self).attempts += 1
        if type(self).attempts == 1:
            raise OSError("openpty failed")
        super().start()


class TestCapabilityProbe:
    def test_explicit_answer(self) -> None:
        assert SessionFactory(pty_available=True).pty_available is True
        assert SessionFactory(pty_available=False).pty_available is False

    def test_probe_runs_when_unspecified(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(factory_module, "probe_pty", lambda: False)
        assert SessionFactory().pty_available is False
        monkeypatch.setattr(factory_module, "probe_pty", lambda: True)
        assert SessionFactory().pty_available is True

    def test_force_pipe_wins(self) -> None:
        factory = SessionFactory(TerminalConfig(force_pipe=True), pty_available=True)
        assert factory.pty_available is False

    def test_reset(self) -> None:
        factory = SessionFactory(pty_available=False)
        factory.reset(pty_available=True)
        assert factory.pty_available is True


class TestSpawn:
    def test_prefers_pty_with_configured_geometry(self) -> None:
        factory = SessionFactory(
            TerminalConfig(cols=100, rows=40, term="screen"),
            pty_available=True,
            pty_transport=FakePtyTransport,
            pipe_transport=FakePipeTransport,
        )
        transport = _spawn(factory)
        assert isinstance(transport, FakePtyTransport)
        assert transport.mode is TransportMode.PTY
        assert (transport.cols, transport.rows, transport.term) == (100, 40, "screen")

    def test_default_geometry(self, pty_factory: SessionFactory) -> None:
        transport = _spawn(pty_factory)
        assert (transport.cols, transport.rows) == (120, 30)

    def test_pipe_when_unavailable(self, pipe_factory: SessionFactory) -> None:
        transport = _spawn(pipe_factory)
        assert isinstance(transport, FakePipeTransport)
        assert transport.mode is TransportMode.PIPE

    def test_pty_failure_falls_back(self) -> None:
        factory = SessionFactory(
            pty_available=True,
            pty_transport=BrokenPtyTransport,
            pipe_transport=FakePipeTransport,
        )
        transport = _spawn(factory)
        assert isinstance(transport, FakePipeTransport)
        assert factory.pty_available is False

    def test_fallback_is_sticky(self) -> None:
        FlakyPtyTransport.attempts = 0
        factory = SessionFactory(
            pty_available=True,
            pty_transport=FlakyPtyTransport,
            pipe_transport=FakePipeTransport,
        )
        first = _spawn(factory, "s1")
        second = _spawn(factory, "s2")
        assert isinstance(first, FakePipeTransport)
        assert isinstance(second, FakePipeTransport)
        # The second spawn never retried the PTY.
        assert FlakyPtyTransport.attempts == 1

    def test_both_fail_raises(self) -> None:
        factory = SessionFactory(
            pty_available=True,
            pty_transport=BrokenPtyTransport,
            pipe_transport=BrokenPipeTransport,
        )
        with pytest.raises(SpawnFailure) as exc_info:
            _spawn(factory, "doomed")
        assert exc_info.value.session_id == "doomed"
        assert isinstance(exc_info.value.cause, OSError)

    def test_shell_override_beats_config(self, pty_factory: SessionFactory) -> None:
        pty_factory.config = TerminalConfig(shell="/bin/config-shell")
        assert _spawn(pty_factory).spec.executable == "/bin/config-shell"
        assert _spawn(pty_factory, shell="/bin/mine").spec.executable == "/bin/mine"

    def test_extra_env_layers(self, pty_factory: SessionFactory) -> None:
        pty_factory.config = TerminalConfig(extra_env={"A": "config", "B": "config"})
        transport = _spawn(pty_factory, extra_env={"B": "session"})
        assert transport.spec.env["A"] == "config"
        assert transport.spec.env["B"] == "session"
        assert transport.spec.env["LANG"] == "en_US.UTF-8"


class TestStickyFallbackThroughRegistry:
    def test_every_later_session_is_pipe(self, sink: RecordingSink) -> None:
        FlakyPtyTransport.attempts = 0
        registry = SessionRegistry(
            sink,
            SessionFactory(
                pty_available=True,
                pty_transport=FlakyPtyTransport,
                pipe_transport=FakePipeTransport,
            ),
        )
        assert registry.create("s1", "/tmp") is True
        assert registry.create("s2", "/tmp") is True
        assert registry.get("s1").mode is TransportMode.PIPE  # type: ignore[union-attr]
        assert registry.get("s2").mode is TransportMode.PIPE  # type: ignore[union-attr]
        assert FlakyPtyTransport.attempts == 1
