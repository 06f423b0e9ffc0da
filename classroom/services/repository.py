"""
Classroom Repository

Lookups and guarded writes for class sessions, student progress, grouping
runs and transition history. All queries run on the caller's AsyncSession
so the caller controls the transaction.
"""
import logging
from typing import Any, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from classroom.errors import ClassNotFound, ConcurrentModification
from classroom.models import ClassSession, StudentProgress, GroupingRun, PhaseTransition

logger = logging.getLogger(__name__)


class ClassroomRepository:
    """Data access for one unit of work"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_session(self, class_id: str) -> Optional[ClassSession]:
        result = await self.session.execute(
            select(ClassSession).where(ClassSession.class_id == class_id)
        )
        return result.scalar_one_or_none()

    async def require_session(self, class_id: str) -> ClassSession:
        record = await self.get_session(class_id)
        if record is None:
            raise ClassNotFound(class_id)
        return record

    async def get_progress(self, class_id: str, student_id: str) -> Optional[StudentProgress]:
        result = await self.session.execute(
            select(StudentProgress).where(
                StudentProgress.class_id == class_id,
                StudentProgress.student_id == student_id,
            )
        )
        return result.scalar_one_or_none()

    async def list_progress(self, class_id: str) -> List[StudentProgress]:
        """Every enrolled student, ordered by student_id"""
        result = await self.session.execute(
            select(StudentProgress)
            .where(StudentProgress.class_id == class_id)
            .order_by(StudentProgress.student_id)
        )
        return list(result.scalars().all())

    async def list_roster(self, class_id: str) -> List[StudentProgress]:
        """Students eligible for grouping (pre-assessment completed)"""
        result = await self.session.execute(
            select(StudentProgress)
            .where(
                StudentProgress.class_id == class_id,
                StudentProgress.pretest_completed_at.isnot(None),
            )
            .order_by(StudentProgress.student_id)
        )
        return list(result.scalars().all())

    async def latest_run(self, class_id: str) -> Optional[GroupingRun]:
        result = await self.session.execute(
            select(GroupingRun)
            .where(GroupingRun.class_id == class_id)
            .order_by(GroupingRun.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_transitions(self, class_id: str) -> List[PhaseTransition]:
        result = await self.session.execute(
            select(PhaseTransition)
            .where(PhaseTransition.class_id == class_id)
            .order_by(PhaseTransition.id)
        )
        return list(result.scalars().all())

    async def compare_and_set(self, record: ClassSession, **values: Any) -> int:
        """
        Apply `values` only if the stored version still matches the record.

        Returns the new version.

        Raises:
            ConcurrentModification: another writer bumped the version first
        """
        expected = record.version
        result = await self.session.execute(
            update(ClassSession)
            .where(
                ClassSession.class_id == record.class_id,
                ClassSession.version == expected,
            )
            .values(version=expected + 1, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.warning(
                f"Version conflict on class {record.class_id} (expected version {expected})"
            )
            raise ConcurrentModification(record.class_id)
        return expected + 1
