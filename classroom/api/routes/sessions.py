"""
Class Session API Endpoints

POST  /api/v1/classes                                         - Create a class session (teacher)
GET   /api/v1/classes/{class_id}/session                      - Stored state + caller's effective phase
PATCH /api/v1/classes/{class_id}/settings                     - Post-test / retention delays (teacher)
POST  /api/v1/classes/{class_id}/transitions                  - Move the class to a new phase (teacher)
GET   /api/v1/classes/{class_id}/transitions                  - Transition audit trail (teacher)
GET   /api/v1/classes/{class_id}/students/{student_id}/availability - Assessment unlock state
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Path, status
from pydantic import BaseModel, Field

from classroom.api.auth import get_current_principal
from classroom.models import ClassSession
from classroom.services.availability import ensure_utc
from classroom.services.phases import Phase, Principal
from classroom.services.transition_controller import get_transition_controller

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/classes", tags=["sessions"])


# Pydantic models

class CreateClassRequest(BaseModel):
    """Request body for POST /classes"""
    class_id: str = Field(..., min_length=1, max_length=100)
    name: str = Field("", max_length=200)
    post_test_delay_minutes: Optional[int] = None
    retention_test_delay_minutes: Optional[int] = None


class UpdateSettingsRequest(BaseModel):
    """Request body for PATCH /classes/{class_id}/settings"""
    post_test_delay_minutes: Optional[int] = None
    retention_test_delay_minutes: Optional[int] = None


class TransitionRequest(BaseModel):
    """Request body for POST /classes/{class_id}/transitions"""
    target_phase: Phase
    retention_test_delay_minutes: Optional[int] = Field(
        None, description="Override applied when ending the class (POSTTEST)"
    )


class ClassSessionOut(BaseModel):
    class_id: str
    name: str
    teacher_id: str
    phase: str
    class_ended_at: Optional[datetime]
    post_test_delay_minutes: int
    retention_test_delay_minutes: int
    version: int


class SessionStateOut(ClassSessionOut):
    effective_phase: str
    group_number: Optional[int]
    availability: Optional[Dict[str, Any]]


class TransitionOut(BaseModel):
    from_phase: str
    to_phase: str
    actor_id: str
    created_at: datetime


class AvailabilityOut(BaseModel):
    class_id: str
    student_id: str
    post_test_unlocked: bool
    retention_unlocked: bool
    unlock_at: Optional[str]
    post_test_unlock_at: Optional[str]
    retention_unlock_at: Optional[str]


class ClassSessionResponse(BaseModel):
    data: ClassSessionOut


class SessionStateResponse(BaseModel):
    data: SessionStateOut


class TransitionListResponse(BaseModel):
    data: List[TransitionOut]
    meta: Dict[str, Any]


class AvailabilityResponse(BaseModel):
    data: AvailabilityOut


def serialize_session(record: ClassSession) -> Dict[str, Any]:
    return {
        "class_id": record.class_id,
        "name": record.name,
        "teacher_id": record.teacher_id,
        "phase": record.phase,
        "class_ended_at": ensure_utc(record.class_ended_at),
        "post_test_delay_minutes": record.post_test_delay_minutes,
        "retention_test_delay_minutes": record.retention_test_delay_minutes,
        "version": record.version,
    }


# API Endpoints

@router.post("", response_model=ClassSessionResponse, status_code=status.HTTP_201_CREATED)
async def create_class_session(
    body: CreateClassRequest,
    principal: Principal = Depends(get_current_principal),
):
    """Create the session record for a new class; the caller becomes its teacher"""
    record = await get_transition_controller().create_session(
        body.class_id,
        principal,
        name=body.name,
        post_test_delay_minutes=body.post_test_delay_minutes,
        retention_test_delay_minutes=body.retention_test_delay_minutes,
    )
    return {"data": serialize_session(record)}


@router.get("/{class_id}/session", response_model=SessionStateResponse)
async def get_session_state(
    class_id: str = Path(..., description="Class identifier"),
    principal: Principal = Depends(get_current_principal),
):
    """
    Current class state as seen by the caller.

    Students receive their effective phase (PRETEST_GATE until the
    pre-assessment is done, ENDED after the post-test), their group number
    and assessment availability.
    """
    snapshot = await get_transition_controller().describe_session(class_id, principal)
    return {"data": snapshot}


@router.patch("/{class_id}/settings", response_model=ClassSessionResponse)
async def update_settings(
    body: UpdateSettingsRequest,
    class_id: str = Path(..., description="Class identifier"),
    principal: Principal = Depends(get_current_principal),
):
    record = await get_transition_controller().update_delays(
        class_id,
        principal,
        post_test_delay_minutes=body.post_test_delay_minutes,
        retention_test_delay_minutes=body.retention_test_delay_minutes,
    )
    return {"data": serialize_session(record)}


@router.post("/{class_id}/transitions", response_model=ClassSessionResponse)
async def apply_transition(
    body: TransitionRequest,
    class_id: str = Path(..., description="Class identifier"),
    principal: Principal = Depends(get_current_principal),
):
    """
    Move the class to `target_phase`.

    Rejected with 409 INVALID_TRANSITION if the move is not allowed from the
    current phase, or 409 CONCURRENT_MODIFICATION if another change to the
    class is in progress.
    """
    record = await get_transition_controller().apply_transition(
        class_id,
        body.target_phase,
        principal,
        retention_test_delay_minutes=body.retention_test_delay_minutes,
    )
    return {"data": serialize_session(record)}


@router.get("/{class_id}/transitions", response_model=TransitionListResponse)
async def list_transitions(
    class_id: str = Path(..., description="Class identifier"),
    principal: Principal = Depends(get_current_principal),
):
    transitions = await get_transition_controller().list_transitions(class_id, principal)
    return {
        "data": [
            {
                "from_phase": t.from_phase,
                "to_phase": t.to_phase,
                "actor_id": t.actor_id,
                "created_at": ensure_utc(t.created_at),
            }
            for t in transitions
        ],
        "meta": {"class_id": class_id, "total": len(transitions)},
    }


@router.get("/{class_id}/students/{student_id}/availability", response_model=AvailabilityResponse)
async def get_availability(
    class_id: str = Path(..., description="Class identifier"),
    student_id: str = Path(..., description="Student identifier"),
    principal: Principal = Depends(get_current_principal),
):
    """Whether the post-test and retention test are open for a student"""
    availability = await get_transition_controller().get_availability(class_id, student_id, principal)
    return {"data": {"class_id": class_id, "student_id": student_id, **availability.to_dict()}}
