"""StudentProgress model - Per-student-per-class assessment state and group"""
from sqlalchemy import Column, String, Integer, Float, DateTime, UniqueConstraint, Index
from sqlalchemy.sql import func

from classroom.database import Base


class StudentProgress(Base):
    """
    Enrollment of one student in one class.

    Score and completion timestamps are written by the assessment-submission
    service; this service only reads them. group_number is written by grouping.
    """

    __tablename__ = "student_progress"

    id = Column(Integer, primary_key=True, autoincrement=True)
    class_id = Column(String(100), nullable=False)
    student_id = Column(String(100), nullable=False)
    student_name = Column(String(200), nullable=True)
    gender = Column(String(10), nullable=False)  # MALE/FEMALE/OTHER

    pretest_score = Column(Float, nullable=True)  # 0-100
    posttest_score = Column(Float, nullable=True)  # 0-100
    retention_score = Column(Float, nullable=True)  # 0-100
    pretest_completed_at = Column(DateTime(timezone=True), nullable=True)
    posttest_completed_at = Column(DateTime(timezone=True), nullable=True)

    group_number = Column(Integer, nullable=True)

    enrolled_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("class_id", "student_id", name="uq_progress_class_student"),
        Index("idx_progress_class_group", "class_id", "group_number"),
    )

    def __repr__(self):
        return f"<StudentProgress(class_id={self.class_id}, student_id={self.student_id}, group={self.group_number})>"
