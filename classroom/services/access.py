"""Authorization checks shared by the session and grouping services"""
import logging
from typing import Optional

from classroom.errors import Unauthorized, StudentNotFound
from classroom.models import ClassSession, StudentProgress
from classroom.services.phases import Principal, Role
from classroom.services.repository import ClassroomRepository

logger = logging.getLogger(__name__)


def is_class_teacher(record: ClassSession, principal: Principal) -> bool:
    return principal.role is Role.TEACHER and principal.user_id == record.teacher_id


def require_teacher(record: ClassSession, principal: Principal, operation: str) -> None:
    """
    Raises:
        Unauthorized: caller is not the teacher who owns the class
    """
    if not is_class_teacher(record, principal):
        logger.warning(
            f"Unauthorized attempt to {operation} in class {record.class_id} "
            f"by {principal.role.value} {principal.user_id}"
        )
        raise Unauthorized(operation, principal.user_id)


async def require_participant(
    repo: ClassroomRepository,
    record: ClassSession,
    principal: Principal,
) -> Optional[StudentProgress]:
    """
    Admit the class teacher or an enrolled student.

    Returns the caller's progress row for students, None for the teacher.
    """
    if is_class_teacher(record, principal):
        return None

    if principal.role is not Role.STUDENT:
        logger.warning(f"Teacher {principal.user_id} denied access to class {record.class_id}")
        raise Unauthorized("access this class", principal.user_id)

    progress = await repo.get_progress(record.class_id, principal.user_id)
    if progress is None:
        raise StudentNotFound(record.class_id, [principal.user_id])
    return progress
