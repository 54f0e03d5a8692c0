"""
Session registry for agent runs.

Each session key (caller-chosen, e.g. ``telegram:chat:42``) owns one
``RunSession``.  The entry is created lazily on the first run for the key and
outlives every run: only its streaming flag resets, so the provider-side
session id is reused by later runs on the same key.

Every run bumps the session's ``epoch``.  The controller hands the epoch
back when the run ends and the registry ignores the hand-back if a newer run
has taken over the key in the meantime, so a stale run can never clear the
flag or abort handle of its successor.

The registry is an ordinary object owned by whoever builds the controller.
It is safe only within one asyncio event loop.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Optional

import structlog

from cadence.types import Lane

logger = structlog.get_logger(__name__)


def resolve_session_lane(session_key: str, lane: Lane = "main") -> str:
    """Key under which a lane of a session is serialised (``key:lane``)."""
    return f"{session_key}:{lane}"


@dataclass
class RunSession:
    """Per-key state shared by every run on that key."""

    session_key: str
    session_id: str
    lane: Lane = "main"
    provider_session_id: Optional[str] = None
    is_streaming: bool = False
    abort_handle: Optional[asyncio.Event] = None
    epoch: int = 0
    run_count: int = 0
    pending_messages: list[str] = field(default_factory=list)
    # Wall-clock time for display; monotonic for idle measurement.
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.monotonic)
    _done: Optional[asyncio.Event] = field(default=None, repr=False)

    def touch(self) -> None:
        self.last_activity = time.monotonic()


@dataclass(frozen=True)
class RunHandle:
    """What a single run holds on to between ``begin_run`` and ``end_run``."""

    session: RunSession
    epoch: int
    abort: asyncio.Event
    done: asyncio.Event

    @property
    def is_current(self) -> bool:
        return self.session.epoch == self.epoch


class SessionRegistry:
    """Maps session keys to ``RunSession`` entries."""

    def __init__(self) -> None:
        self._sessions: dict[str, RunSession] = {}

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, session_key: str) -> Optional[RunSession]:
        return self._sessions.get(session_key)

    def is_streaming(self, session_key: str) -> bool:
        session = self._sessions.get(session_key)
        return session.is_streaming if session is not None else False

    def completion_signal(self, session_key: str) -> Optional[asyncio.Event]:
        """The done-event of the key's current run, if it is still streaming."""
        session = self._sessions.get(session_key)
        if session is None or not session.is_streaming:
            return None
        return session._done

    def session_count(self) -> int:
        return len(self._sessions)

    def keys(self) -> list[str]:
        return list(self._sessions)

    def get_session_info(self, session_key: str) -> dict[str, Any] | None:
        session = self._sessions.get(session_key)
        if session is None:
            return None
        return {
            "session_key": session.session_key,
            "session_id": session.session_id,
            "lane": session.lane,
            "provider_session_id": session.provider_session_id,
            "is_streaming": session.is_streaming,
            "epoch": session.epoch,
            "run_count": session.run_count,
            "pending_messages": len(session.pending_messages),
            "created_at": session.created_at,
            "idle_seconds": time.monotonic() - session.last_activity,
        }

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------

    def begin_run(self, session_key: str, *, session_id: str, lane: Lane = "main") -> RunHandle:
        """Mark *session_key* streaming under a fresh epoch.

        A run still streaming on the same key is superseded: its abort handle
        is set so it stops at its next checkpoint.
        """
        session = self._sessions.get(session_key)
        if session is None:
            session = RunSession(session_key=session_key, session_id=session_id, lane=lane)
            self._sessions[session_key] = session
        elif session.is_streaming and session.abort_handle is not None:
            logger.warning(
                "session_registry.run_superseded",
                session_key=session_key,
                epoch=session.epoch,
            )
            session.abort_handle.set()

        session.epoch += 1
        session.run_count += 1
        session.session_id = session_id
        session.lane = lane
        session.is_streaming = True
        session.abort_handle = asyncio.Event()
        session._done = asyncio.Event()
        session.pending_messages.clear()
        session.touch()
        return RunHandle(
            session=session,
            epoch=session.epoch,
            abort=session.abort_handle,
            done=session._done,
        )

    def end_run(self, handle: RunHandle) -> None:
        """Release *handle*; only the key's current run resets the session."""
        if handle.is_current:
            handle.session.is_streaming = False
            handle.session.abort_handle = None
            handle.session.touch()
        handle.done.set()

    def abort(self, session_key: str, epoch: Optional[int] = None) -> bool:
        """Signal the key's current run to stop.

        When *epoch* is given the abort only applies if that run is still the
        current one.  Returns whether an abort was signalled.
        """
        session = self._sessions.get(session_key)
        if session is None or session.abort_handle is None:
            return False
        if epoch is not None and epoch != session.epoch:
            logger.debug(
                "session_registry.stale_abort_ignored",
                session_key=session_key,
                epoch=epoch,
                current_epoch=session.epoch,
            )
            return False
        session.abort_handle.set()
        session.is_streaming = False
        return True
