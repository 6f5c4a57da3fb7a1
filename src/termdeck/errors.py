"""Error taxonomy for session management.

Only failures that cross a component boundary get an exception type.
Unknown session ids are never an error: registry operations treat them
as soft no-ops.
"""

from __future__ import annotations


class TermdeckError(Exception):
    """Base class for termdeck errors."""


class CapabilityUnavailable(TermdeckError):
    """The pseudo-terminal transport cannot be constructed on this host."""


class SpawnFailure(TermdeckError):
    """Neither transport could start a process."""

    def __init__(self, session_id: str, cause: BaseException | None = None) -> None:
        self.session_id = session_id
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"Could not start session {session_id}{detail}")
