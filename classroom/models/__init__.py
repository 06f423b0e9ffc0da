"""SQLAlchemy ORM Models for the classroom session schema"""
from classroom.models.class_session import ClassSession
from classroom.models.student_progress import StudentProgress
from classroom.models.grouping_run import GroupingRun
from classroom.models.phase_transition import PhaseTransition

__all__ = [
    "ClassSession",
    "StudentProgress",
    "GroupingRun",
    "PhaseTransition",
]
