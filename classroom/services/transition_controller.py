"""
Transition Controller

Server-authoritative owner of the class phase. Every phase change is
validated against the transition graph, applied with a compare-and-set on
the session version while holding the per-class scope, recorded in the
audit trail, and then broadcast to every participant.

Read operations (session snapshot, availability) live here as well since
they combine the stored phase with per-student progress.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from sqlalchemy.exc import IntegrityError

from classroom.config import DEFAULT_POST_TEST_DELAY_MINUTES, DEFAULT_RETENTION_TEST_DELAY_MINUTES
from classroom.database import AsyncSessionLocal
from classroom.errors import (
    ClassAlreadyExists,
    InvalidSettings,
    InvalidTransition,
    StudentNotFound,
    Unauthorized,
)
from classroom.models import ClassSession, PhaseTransition
from classroom.services.access import is_class_teacher, require_participant, require_teacher
from classroom.services.availability import Availability, compute_availability, ensure_utc, utcnow
from classroom.services.broadcaster import Broadcaster, get_broadcaster
from classroom.services.class_locks import ClassLockRegistry, get_class_lock_registry
from classroom.services.phase_resolver import resolve_effective_phase
from classroom.services.phases import (
    INITIAL_PHASE,
    Phase,
    Principal,
    Role,
    allowed_successors,
    is_valid_transition,
)
from classroom.services.repository import ClassroomRepository

logger = logging.getLogger(__name__)


def validate_delay(field: str, value: Any) -> int:
    """Delays are whole, non-negative minutes"""
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidSettings(field, value)
    return value


def _parse_target(current: Phase, requested: Union[Phase, str]) -> Phase:
    try:
        return Phase(requested)
    except ValueError:
        raise InvalidTransition(
            current.value,
            str(requested),
            [p.value for p in allowed_successors(current)],
        )


class TransitionController:
    """
    Applies teacher-issued phase transitions.

    Collaborators are injectable so tests can supply their own broadcaster
    and lock registry.
    """

    def __init__(
        self,
        locks: Optional[ClassLockRegistry] = None,
        broadcaster: Optional[Broadcaster] = None,
        session_factory=None,
    ):
        self.locks = locks or get_class_lock_registry()
        self.broadcaster = broadcaster or get_broadcaster()
        self.session_factory = session_factory or AsyncSessionLocal

    async def create_session(
        self,
        class_id: str,
        principal: Principal,
        name: str = "",
        post_test_delay_minutes: Optional[int] = None,
        retention_test_delay_minutes: Optional[int] = None,
    ) -> ClassSession:
        """
        Create the session record for a new class, starting in the waiting room.

        The calling teacher becomes the class teacher.
        """
        if principal.role is not Role.TEACHER:
            logger.warning(f"Student {principal.user_id} attempted to create class {class_id}")
            raise Unauthorized("create a class", principal.user_id)

        post_delay = validate_delay(
            "post_test_delay_minutes",
            DEFAULT_POST_TEST_DELAY_MINUTES if post_test_delay_minutes is None else post_test_delay_minutes,
        )
        retention_delay = validate_delay(
            "retention_test_delay_minutes",
            DEFAULT_RETENTION_TEST_DELAY_MINUTES
            if retention_test_delay_minutes is None
            else retention_test_delay_minutes,
        )

        async with self.session_factory() as session:
            repo = ClassroomRepository(session)
            if await repo.get_session(class_id) is not None:
                raise ClassAlreadyExists(class_id)

            record = ClassSession(
                class_id=class_id,
                teacher_id=principal.user_id,
                name=name,
                phase=INITIAL_PHASE.value,
                post_test_delay_minutes=post_delay,
                retention_test_delay_minutes=retention_delay,
                version=1,
            )
            session.add(record)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                raise ClassAlreadyExists(class_id)
            await session.refresh(record)

        logger.info(f"Created class {class_id} for teacher {principal.user_id}")
        return record

    async def apply_transition(
        self,
        class_id: str,
        requested_phase: Union[Phase, str],
        principal: Principal,
        retention_test_delay_minutes: Optional[int] = None,
    ) -> ClassSession:
        """
        Move a class to a new phase.

        Args:
            class_id: Class to transition
            requested_phase: Target stored phase
            principal: Caller; must be the class teacher
            retention_test_delay_minutes: Optional override applied when
                ending the class (entering POSTTEST)

        Returns:
            Updated ClassSession

        Raises:
            ClassNotFound, Unauthorized, InvalidTransition, InvalidSettings,
            ConcurrentModification
        """
        async with self.locks.hold(class_id):
            async with self.session_factory() as session:
                repo = ClassroomRepository(session)
                record = await repo.require_session(class_id)
                require_teacher(record, principal, "change the class phase")

                current = Phase(record.phase)
                target = _parse_target(current, requested_phase)
                if not is_valid_transition(current, target):
                    raise InvalidTransition(
                        current.value,
                        target.value,
                        [p.value for p in allowed_successors(current)],
                    )

                now = utcnow()
                values: Dict[str, Any] = {"phase": target.value}
                if target is Phase.POSTTEST:
                    values["class_ended_at"] = now
                    if retention_test_delay_minutes is not None:
                        values["retention_test_delay_minutes"] = validate_delay(
                            "retention_test_delay_minutes", retention_test_delay_minutes
                        )

                await repo.compare_and_set(record, **values)
                session.add(PhaseTransition(
                    class_id=class_id,
                    from_phase=current.value,
                    to_phase=target.value,
                    actor_id=principal.user_id,
                    created_at=now,
                ))
                await session.commit()
                await session.refresh(record)

            logger.info(
                f"Class {class_id} moved {current.value} -> {target.value} "
                f"by {principal.user_id} (version {record.version})"
            )

            await self.broadcaster.publish(class_id, {
                "type": "phase-changed",
                "class_id": class_id,
                "phase": target.value,
                "timestamp": now.isoformat(),
            })

        return record

    async def update_delays(
        self,
        class_id: str,
        principal: Principal,
        post_test_delay_minutes: Optional[int] = None,
        retention_test_delay_minutes: Optional[int] = None,
    ) -> ClassSession:
        """Change the post-test and/or retention delay of a class"""
        values: Dict[str, int] = {}
        if post_test_delay_minutes is not None:
            values["post_test_delay_minutes"] = validate_delay(
                "post_test_delay_minutes", post_test_delay_minutes
            )
        if retention_test_delay_minutes is not None:
            values["retention_test_delay_minutes"] = validate_delay(
                "retention_test_delay_minutes", retention_test_delay_minutes
            )

        async with self.locks.hold(class_id):
            async with self.session_factory() as session:
                repo = ClassroomRepository(session)
                record = await repo.require_session(class_id)
                require_teacher(record, principal, "change delay settings")

                if not values:
                    return record

                await repo.compare_and_set(record, **values)
                await session.commit()
                await session.refresh(record)

        logger.info(f"Updated delay settings for class {class_id}: {values}")
        return record

    async def list_transitions(self, class_id: str, principal: Principal) -> List[PhaseTransition]:
        """Audit trail for a class, oldest first (teacher only)"""
        async with self.session_factory() as session:
            repo = ClassroomRepository(session)
            record = await repo.require_session(class_id)
            require_teacher(record, principal, "view the transition history")
            return await repo.list_transitions(class_id)

    async def describe_session(
        self,
        class_id: str,
        principal: Principal,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Snapshot of the class as seen by the caller.

        Students get their effective phase, group and assessment availability;
        the teacher sees the stored phase.
        """
        now = now or utcnow()
        async with self.session_factory() as session:
            repo = ClassroomRepository(session)
            record = await repo.require_session(class_id)
            progress = await require_participant(repo, record, principal)

        snapshot: Dict[str, Any] = {
            "class_id": record.class_id,
            "name": record.name,
            "teacher_id": record.teacher_id,
            "phase": record.phase,
            "effective_phase": record.phase,
            "class_ended_at": ensure_utc(record.class_ended_at),
            "post_test_delay_minutes": record.post_test_delay_minutes,
            "retention_test_delay_minutes": record.retention_test_delay_minutes,
            "version": record.version,
            "group_number": None,
            "availability": None,
        }
        if progress is not None:
            snapshot["effective_phase"] = resolve_effective_phase(record.phase, progress).value
            snapshot["group_number"] = progress.group_number
            snapshot["availability"] = compute_availability(now, record, progress).to_dict()
        return snapshot

    async def get_availability(
        self,
        class_id: str,
        student_id: str,
        principal: Principal,
        now: Optional[datetime] = None,
    ) -> Availability:
        """
        Unlock state of the post-test and retention test for one student.

        Students may only query themselves; the class teacher may query any
        enrolled student.
        """
        async with self.session_factory() as session:
            repo = ClassroomRepository(session)
            record = await repo.require_session(class_id)

            if not is_class_teacher(record, principal) and principal.user_id != student_id:
                logger.warning(
                    f"{principal.role.value} {principal.user_id} denied availability "
                    f"of student {student_id} in class {class_id}"
                )
                raise Unauthorized("view another student's availability", principal.user_id)

            progress = await repo.get_progress(class_id, student_id)
            if progress is None:
                raise StudentNotFound(class_id, [student_id])

        return compute_availability(now or utcnow(), record, progress)


# Singleton instance
_transition_controller = None


def get_transition_controller() -> TransitionController:
    """Get singleton TransitionController instance"""
    global _transition_controller
    if _transition_controller is None:
        _transition_controller = TransitionController()
    return _transition_controller
