"""PhaseTransition model - Audit trail of applied phase changes"""
from sqlalchemy import Column, String, Integer, DateTime, Index

from classroom.database import Base


class PhaseTransition(Base):
    """One successful teacher-issued transition"""

    __tablename__ = "phase_transitions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    class_id = Column(String(100), nullable=False)
    from_phase = Column(String(20), nullable=False)
    to_phase = Column(String(20), nullable=False)
    actor_id = Column(String(100), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_phase_transitions_class", "class_id", "id"),
    )

    def __repr__(self):
        return f"<PhaseTransition(class_id={self.class_id}, {self.from_phase}->{self.to_phase})>"
