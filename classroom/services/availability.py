"""
Assessment Availability Gate

Pure unlock checks for the time-delayed post-test and retention test.
Evaluated on demand against the current wall-clock time; no timers.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive timestamps (SQLite returns naive datetimes)"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def unlock_time(delay_minutes: int, anchor: Optional[datetime]) -> Optional[datetime]:
    """Instant the gate opens, or None while the anchor is missing"""
    anchor = ensure_utc(anchor)
    if anchor is None:
        return None
    return anchor + timedelta(minutes=delay_minutes)


def is_unlocked(now: datetime, delay_minutes: int, anchor: Optional[datetime]) -> bool:
    """
    True once `now` has reached `anchor + delay_minutes`.

    A missing anchor means availability is still pending: always locked.
    """
    opens_at = unlock_time(delay_minutes, anchor)
    if opens_at is None:
        return False
    return ensure_utc(now) >= opens_at


def retention_anchor(
    posttest_completed_at: Optional[datetime],
    class_ended_at: Optional[datetime],
) -> Optional[datetime]:
    """Retention clock starts at post-test submission, falling back to class end"""
    if posttest_completed_at is not None:
        return posttest_completed_at
    return class_ended_at


@dataclass(frozen=True)
class Availability:
    """Unlock state of both delayed assessments for one student"""
    post_test_unlocked: bool
    retention_unlocked: bool
    post_test_unlock_at: Optional[datetime]
    retention_unlock_at: Optional[datetime]

    @property
    def unlock_at(self) -> Optional[datetime]:
        """Next pending unlock: post-test first, then retention"""
        if not self.post_test_unlocked:
            return self.post_test_unlock_at
        if not self.retention_unlocked:
            return self.retention_unlock_at
        return None

    def to_dict(self) -> Dict[str, Any]:
        def iso(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            "post_test_unlocked": self.post_test_unlocked,
            "retention_unlocked": self.retention_unlocked,
            "unlock_at": iso(self.unlock_at),
            "post_test_unlock_at": iso(self.post_test_unlock_at),
            "retention_unlock_at": iso(self.retention_unlock_at),
        }


def compute_availability(now: datetime, session: Any, progress: Any) -> Availability:
    """
    Evaluate both gates for a student.

    Args:
        now: Current time
        session: Object with class_ended_at, post_test_delay_minutes,
            retention_test_delay_minutes (a ClassSession row)
        progress: Object with posttest_completed_at (a StudentProgress row)
    """
    post_anchor = session.class_ended_at
    post_delay = session.post_test_delay_minutes or 0

    ret_anchor = retention_anchor(progress.posttest_completed_at, session.class_ended_at)
    ret_delay = session.retention_test_delay_minutes or 0

    return Availability(
        post_test_unlocked=is_unlocked(now, post_delay, post_anchor),
        retention_unlocked=is_unlocked(now, ret_delay, ret_anchor),
        post_test_unlock_at=unlock_time(post_delay, post_anchor),
        retention_unlock_at=unlock_time(ret_delay, ret_anchor),
    )
