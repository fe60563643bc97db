"""
Work Session Accounting

A job's work_sessions list models alternating active/paused intervals.
The job is running iff the last session has no ended_at.

At most one session may be open. A session left open by an interrupted
client is closed on the next mutating call instead of stacking a second one.
"""

import logging
from datetime import datetime
from typing import Optional, List

from .goal_model import WorkSession

logger = logging.getLogger("work_sessions")


def _now(now: Optional[datetime]) -> datetime:
    return now or datetime.utcnow()


def get_current_session(sessions: List[WorkSession]) -> Optional[WorkSession]:
    if sessions and sessions[-1].is_open:
        return sessions[-1]
    return None


def is_session_active(sessions: List[WorkSession]) -> bool:
    return get_current_session(sessions) is not None


def close_dangling_sessions(sessions: List[WorkSession], now: Optional[datetime] = None) -> int:
    """Close every open session. Returns how many were closed."""
    stamp = _now(now)
    closed = 0
    for session in sessions:
        if session.is_open:
            session.ended_at = max(stamp, session.started_at)
            closed += 1
    return closed


def start_session(sessions: List[WorkSession], now: Optional[datetime] = None) -> List[WorkSession]:
    """Append a new open session, closing any session left open first."""
    stamp = _now(now)
    closed = close_dangling_sessions(sessions, stamp)
    if closed:
        logger.warning(f"Closed {closed} dangling work session(s) before starting a new one")
    sessions.append(WorkSession(started_at=stamp))
    return sessions


def end_current_session(sessions: List[WorkSession], now: Optional[datetime] = None) -> List[WorkSession]:
    """Stamp ended_at on the open session(s). No-op when nothing is running."""
    close_dangling_sessions(sessions, now)
    return sessions


def _session_seconds(session: WorkSession, now: datetime) -> int:
    end = session.ended_at or now
    return max(0, int((end - session.started_at).total_seconds()))


def get_total_duration(sessions: List[WorkSession], now: Optional[datetime] = None) -> int:
    """Total worked time in whole seconds, counting an open session up to now."""
    stamp = _now(now)
    return sum(_session_seconds(s, stamp) for s in sessions)


def get_current_session_duration(sessions: List[WorkSession], now: Optional[datetime] = None) -> int:
    current = get_current_session(sessions)
    if current is None:
        return 0
    return _session_seconds(current, _now(now))
