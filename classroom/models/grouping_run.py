"""
GroupingRun Model

Immutable audit record of one grouping result. A later run supersedes
(never updates) an earlier one.
"""
import json
import uuid
from sqlalchemy import Column, String, Integer, DateTime, Text, Index
from sqlalchemy.sql import func

from classroom.database import Base


class GroupingRun(Base):
    """Group membership, balance metrics and rationale for one grouping"""

    __tablename__ = "grouping_runs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    run_id = Column(String(100), unique=True, nullable=False, default=lambda: uuid.uuid4().hex)
    class_id = Column(String(100), nullable=False)

    mode = Column(String(10), nullable=False)  # AI/MANUAL
    group_count = Column(Integer, nullable=False)
    assignments = Column(Text, nullable=False)  # JSON: {student_id: group_number}
    balance_metrics = Column(Text, nullable=False)  # JSON string

    rationale_text = Column(Text, nullable=False)
    rationale_source = Column(String(20), nullable=False)  # narrator/template
    algorithm_version = Column(String(50), nullable=False)

    created_by = Column(String(100), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("idx_grouping_runs_class_created", "class_id", "created_at"),
    )

    def assignment_map(self) -> dict:
        return json.loads(self.assignments)

    def metrics(self) -> dict:
        return json.loads(self.balance_metrics)

    def __repr__(self):
        return f"<GroupingRun(run_id={self.run_id}, class_id={self.class_id}, mode={self.mode})>"
