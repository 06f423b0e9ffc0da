"""
Grouping API Endpoints

POST /api/v1/classes/{class_id}/groupings         - Run the grouping engine (teacher)
PUT  /api/v1/classes/{class_id}/groupings/manual  - Save a teacher-defined mapping (teacher)
GET  /api/v1/classes/{class_id}/groupings/latest  - Most recent grouping
"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Path, status
from pydantic import BaseModel, Field

from classroom.api.auth import get_current_principal
from classroom.models import GroupingRun
from classroom.services.availability import ensure_utc
from classroom.services.grouping_engine import GroupingMode
from classroom.services.grouping_service import get_grouping_service
from classroom.services.phases import Principal

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/classes", tags=["groupings"])


class GroupingRequest(BaseModel):
    """Request body for POST /groupings"""
    mode: GroupingMode
    group_count: Optional[int] = Field(None, description="AI mode only; defaults to groups of 3-5")


class ManualAssignmentRequest(BaseModel):
    """Full student -> group mapping; students left out are ungrouped"""
    assignments: Dict[str, int]


class GroupingRunOut(BaseModel):
    grouping_run_id: str
    class_id: str
    mode: str
    group_count: int
    assignments: Dict[str, int]
    balance_metrics: Dict[str, Any]
    rationale: str
    rationale_source: str
    algorithm_version: str
    created_by: str
    created_at: datetime


class GroupingRunResponse(BaseModel):
    data: Optional[GroupingRunOut]


def serialize_run(run: GroupingRun) -> Dict[str, Any]:
    return {
        "grouping_run_id": run.run_id,
        "class_id": run.class_id,
        "mode": run.mode,
        "group_count": run.group_count,
        "assignments": run.assignment_map(),
        "balance_metrics": run.metrics(),
        "rationale": run.rationale_text,
        "rationale_source": run.rationale_source,
        "algorithm_version": run.algorithm_version,
        "created_by": run.created_by,
        "created_at": ensure_utc(run.created_at),
    }


@router.post("/{class_id}/groupings", response_model=GroupingRunResponse, status_code=status.HTTP_201_CREATED)
async def run_grouping(
    body: GroupingRequest,
    class_id: str = Path(..., description="Class identifier"),
    principal: Principal = Depends(get_current_principal),
):
    """
    Partition students who completed the pretest into balanced groups.

    AI mode needs at least 8 students; MANUAL mode handles 3-7.
    """
    run = await get_grouping_service().run_grouping(
        class_id, body.mode, principal, requested_group_count=body.group_count
    )
    return {"data": serialize_run(run)}


@router.put("/{class_id}/groupings/manual", response_model=GroupingRunResponse)
async def save_manual_assignments(
    body: ManualAssignmentRequest,
    class_id: str = Path(..., description="Class identifier"),
    principal: Principal = Depends(get_current_principal),
):
    run = await get_grouping_service().save_manual_assignments(class_id, principal, body.assignments)
    return {"data": serialize_run(run)}


@router.get("/{class_id}/groupings/latest", response_model=GroupingRunResponse)
async def get_latest_grouping(
    class_id: str = Path(..., description="Class identifier"),
    principal: Principal = Depends(get_current_principal),
):
    run = await get_grouping_service().latest_run(class_id, principal)
    return {"data": serialize_run(run) if run else None}
