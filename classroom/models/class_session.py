"""ClassSession model - Durable per-class session state"""
from sqlalchemy import Column, String, Integer, DateTime, CheckConstraint, Index
from sqlalchemy.sql import func

from classroom.database import Base
from classroom.services.phases import INITIAL_PHASE


class ClassSession(Base):
    """Stored lifecycle phase, end timestamp and delay settings for one class"""

    __tablename__ = "class_sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    class_id = Column(String(100), unique=True, nullable=False)
    teacher_id = Column(String(100), nullable=False)
    name = Column(String(200), nullable=False, default="")
    phase = Column(String(20), nullable=False, default=INITIAL_PHASE.value)
    class_ended_at = Column(DateTime(timezone=True), nullable=True)
    post_test_delay_minutes = Column(Integer, nullable=False, default=0)
    retention_test_delay_minutes = Column(Integer, nullable=False, default=0)
    # Bumped on every mutation; compare-and-set guard across workers
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("post_test_delay_minutes >= 0", name="post_test_delay_non_negative"),
        CheckConstraint("retention_test_delay_minutes >= 0", name="retention_delay_non_negative"),
        Index("idx_class_sessions_teacher", "teacher_id"),
    )

    def __repr__(self):
        return f"<ClassSession(class_id={self.class_id}, phase={self.phase}, version={self.version})>"
