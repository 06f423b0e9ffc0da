"""
Grouping Service

Runs the grouping engine for a class and persists the result: a new
GroupingRun audit row, every student's group number, and a version bump on
the session. Assignments are broadcast to all participants after commit.

The roster is read in one unit of work and the result written in another,
so the narrator call never holds a database connection. The per-class scope
is held across both, and the version compare-and-set catches writers in
other processes.
"""
import json
import logging
from collections import defaultdict
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import update

from classroom.database import AsyncSessionLocal
from classroom.errors import InvalidAssignment, InvalidGroupingMode, StudentNotFound
from classroom.ml.rationale_generator import Rationale, RationaleGenerator, get_rationale_generator
from classroom.models import ClassSession, GroupingRun, StudentProgress
from classroom.services.access import require_participant, require_teacher
from classroom.services.broadcaster import Broadcaster, get_broadcaster
from classroom.services.class_locks import ClassLockRegistry, get_class_lock_registry
from classroom.services.grouping_engine import (
    GroupingMode,
    GroupingOutcome,
    RosterEntry,
    compute_groups,
    summarize_assignments,
)
from classroom.services.phases import Gender, Principal
from classroom.services.repository import ClassroomRepository

logger = logging.getLogger(__name__)


def to_roster_entry(progress: StudentProgress) -> RosterEntry:
    return RosterEntry(
        student_id=progress.student_id,
        gender=Gender(progress.gender),
        pretest_score=progress.pretest_score,
    )


def _parse_mode(mode: Union[GroupingMode, str]) -> GroupingMode:
    try:
        return GroupingMode(mode)
    except ValueError:
        raise InvalidGroupingMode(mode)


def _validate_assignments(assignments: Dict[str, Any]) -> Dict[str, int]:
    for student_id, group_number in assignments.items():
        if isinstance(group_number, bool) or not isinstance(group_number, int) or group_number < 1:
            raise InvalidAssignment(student_id, group_number)
    return dict(assignments)


class GroupingService:
    """Teacher-initiated grouping for a class"""

    def __init__(
        self,
        locks: Optional[ClassLockRegistry] = None,
        broadcaster: Optional[Broadcaster] = None,
        rationale_generator: Optional[RationaleGenerator] = None,
        session_factory=None,
    ):
        self.locks = locks or get_class_lock_registry()
        self.broadcaster = broadcaster or get_broadcaster()
        self.rationale_generator = rationale_generator or get_rationale_generator()
        self.session_factory = session_factory or AsyncSessionLocal

    async def run_grouping(
        self,
        class_id: str,
        mode: Union[GroupingMode, str],
        principal: Principal,
        requested_group_count: Optional[int] = None,
    ) -> GroupingRun:
        """
        Compute and persist groups for every student who finished the pretest.

        Raises:
            ClassNotFound, Unauthorized, InvalidGroupingMode,
            InsufficientRosterForAI, InsufficientRosterForManual,
            RosterTooLargeForManual, InvalidGroupCount, ConcurrentModification
        """
        mode = _parse_mode(mode)

        async with self.locks.hold(class_id):
            async with self.session_factory() as session:
                repo = ClassroomRepository(session)
                record = await repo.require_session(class_id)
                require_teacher(record, principal, "assign groups")
                roster = [to_roster_entry(p) for p in await repo.list_roster(class_id)]

            outcome = compute_groups(roster, mode, requested_group_count)
            rationale = await self.rationale_generator.explain(outcome)
            run = await self._persist(record, outcome, rationale, principal)

            logger.info(
                f"Grouped class {class_id}: {outcome.group_count} {mode.value} groups, "
                f"{len(roster)} students, balance_score={outcome.metrics['balance_score']}, "
                f"rationale={rationale.source} (run {run.run_id})"
            )
            await self._broadcast(run)

        return run

    async def save_manual_assignments(
        self,
        class_id: str,
        principal: Principal,
        assignments: Dict[str, int],
    ) -> GroupingRun:
        """
        Replace all group numbers with a teacher-supplied mapping.

        Students missing from the mapping end up without a group.

        Raises:
            ClassNotFound, Unauthorized, InvalidAssignment, StudentNotFound,
            ConcurrentModification
        """
        assignments = _validate_assignments(assignments)

        async with self.locks.hold(class_id):
            async with self.session_factory() as session:
                repo = ClassroomRepository(session)
                record = await repo.require_session(class_id)
                require_teacher(record, principal, "assign groups")

                enrolled = {p.student_id: p for p in await repo.list_progress(class_id)}
                unknown = set(assignments) - set(enrolled)
                if unknown:
                    raise StudentNotFound(class_id, unknown)

            roster = [to_roster_entry(p) for p in enrolled.values()]
            outcome = summarize_assignments(roster, assignments)
            rationale = await self.rationale_generator.explain(outcome)
            run = await self._persist(record, outcome, rationale, principal)

            logger.info(
                f"Saved manual groups for class {class_id}: {len(assignments)} students "
                f"in {outcome.group_count} groups (run {run.run_id})"
            )
            await self._broadcast(run)

        return run

    async def latest_run(self, class_id: str, principal: Principal) -> Optional[GroupingRun]:
        """Most recent grouping for the class, or None (teacher or enrolled student)"""
        async with self.session_factory() as session:
            repo = ClassroomRepository(session)
            record = await repo.require_session(class_id)
            await require_participant(repo, record, principal)
            return await repo.latest_run(class_id)

    async def _persist(
        self,
        record: ClassSession,
        outcome: GroupingOutcome,
        rationale: Rationale,
        principal: Principal,
    ) -> GroupingRun:
        assignments = outcome.assignments()

        async with self.session_factory() as session:
            repo = ClassroomRepository(session)
            await repo.compare_and_set(record)

            await session.execute(
                update(StudentProgress)
                .where(StudentProgress.class_id == record.class_id)
                .values(group_number=None)
                .execution_options(synchronize_session=False)
            )

            by_group: Dict[int, List[str]] = defaultdict(list)
            for student_id, group_number in assignments.items():
                by_group[group_number].append(student_id)
            for group_number, student_ids in sorted(by_group.items()):
                await session.execute(
                    update(StudentProgress)
                    .where(
                        StudentProgress.class_id == record.class_id,
                        StudentProgress.student_id.in_(student_ids),
                    )
                    .values(group_number=group_number)
                    .execution_options(synchronize_session=False)
                )

            run = GroupingRun(
                class_id=record.class_id,
                mode=outcome.mode.value,
                group_count=outcome.group_count,
                assignments=json.dumps(assignments, sort_keys=True),
                balance_metrics=json.dumps(outcome.metrics, sort_keys=True),
                rationale_text=rationale.text,
                rationale_source=rationale.source,
                algorithm_version=outcome.algorithm_version,
                created_by=principal.user_id,
            )
            session.add(run)
            await session.commit()
            await session.refresh(run)

        return run

    async def _broadcast(self, run: GroupingRun) -> None:
        await self.broadcaster.publish(run.class_id, {
            "type": "groups-assigned",
            "class_id": run.class_id,
            "grouping_run_id": run.run_id,
            "mode": run.mode,
            "group_count": run.group_count,
            "assignments": run.assignment_map(),
        })


# Singleton instance
_grouping_service = None


def get_grouping_service() -> GroupingService:
    """Get singleton GroupingService instance"""
    global _grouping_service
    if _grouping_service is None:
        _grouping_service = GroupingService()
    return _grouping_service
