"""Configuration — Pydantic models for termdeck settings."""

from __future__ import annotations

import json
import os
from typing import Any

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field

_TRUTHY = {"1", "true", "yes", "on"}


class TerminalConfig(BaseModel):
    """How new sessions are spawned."""

    shell: str | None = Field(
        default=None,
        description="Shell override (path or command line). Default: platform shell.",
    )
    cols: int = Field(default=120, gt=0, description="Initial PTY width")
    rows: int = Field(default=30, gt=0, description="Initial PTY height")
    term: str = Field(default="xterm-256color", description="TERM for PTY sessions")
    force_pipe: bool = Field(
        default=False,
        description="Skip the PTY transport and always use pipes",
    )
    extra_env: dict[str, str] = Field(
        default_factory=dict,
        description="Extra environment entries for every session",
    )


class TermdeckConfig(BaseModel):
    """Top-level termdeck configuration."""

    terminal: TerminalConfig = Field(default_factory=TerminalConfig)

    @classmethod
    def load(cls, config_path: str | None = None) -> TermdeckConfig:
        """Load config from file, env vars, or defaults.

        Priority: env vars > config file > defaults.

        Env vars:
            TERMDECK_SHELL       - Shell override
            TERMDECK_FORCE_PIPE  - Always use the pipe transport (1/true/yes/on)
            TERMDECK_COLS        - Initial PTY width
            TERMDECK_ROWS        - Initial PTY height
        """
        load_dotenv(find_dotenv(usecwd=True), override=True)

        config_data: dict[str, Any] = {}

        if config_path and os.path.exists(config_path):
            with open(config_path) as f:
                config_data = json.load(f)

        terminal = config_data.get("terminal", {})

        env_shell = os.environ.get("TERMDECK_SHELL")
        if env_shell:
            terminal["shell"] = env_shell

        env_force_pipe = os.environ.get("TERMDECK_FORCE_PIPE")
        if env_force_pipe:
            terminal["force_pipe"] = env_force_pipe.strip().lower() in _TRUTHY

        env_cols = os.environ.get("TERMDECK_COLS")
        if env_cols:
            terminal["cols"] = int(env_cols)

        env_rows = os.environ.get("TERMDECK_ROWS")
        if env_rows:
            terminal["rows"] = int(env_rows)

        if terminal:
            config_data["terminal"] = terminal

        return cls.model_validate(config_data)
