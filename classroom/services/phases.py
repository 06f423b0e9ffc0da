"""
Classroom Phase Definitions

Stored phases, the derived per-student phases, and the teacher-issued
transition graph between stored phases.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet


class Phase(str, Enum):
    """Lifecycle stage of a class as seen by a participant"""
    PRETEST_GATE = "PRETEST_GATE"  # derived only, never stored
    WAITING_ROOM = "WAITING_ROOM"
    MAIN_SESSION = "MAIN_SESSION"
    GROUP_SESSION = "GROUP_SESSION"
    POSTTEST = "POSTTEST"
    ENDED = "ENDED"  # derived only, never stored


class Role(str, Enum):
    TEACHER = "TEACHER"
    STUDENT = "STUDENT"


class Gender(str, Enum):
    MALE = "MALE"
    FEMALE = "FEMALE"
    OTHER = "OTHER"


INITIAL_PHASE = Phase.WAITING_ROOM

STORED_PHASES: FrozenSet[Phase] = frozenset({
    Phase.WAITING_ROOM,
    Phase.MAIN_SESSION,
    Phase.GROUP_SESSION,
    Phase.POSTTEST,
})

# Directed graph of teacher-issued transitions. POSTTEST is terminal.
ALLOWED_TRANSITIONS: Dict[Phase, FrozenSet[Phase]] = {
    Phase.WAITING_ROOM: frozenset({Phase.MAIN_SESSION}),
    Phase.MAIN_SESSION: frozenset({Phase.GROUP_SESSION, Phase.POSTTEST}),
    Phase.GROUP_SESSION: frozenset({Phase.MAIN_SESSION}),
    Phase.POSTTEST: frozenset(),
}


def allowed_successors(phase: Phase) -> FrozenSet[Phase]:
    """Phases a teacher may move to from the given stored phase"""
    return ALLOWED_TRANSITIONS.get(phase, frozenset())


def is_valid_transition(current: Phase, requested: Phase) -> bool:
    return requested in allowed_successors(current)


@dataclass(frozen=True)
class Principal:
    """Authenticated caller as asserted by the external auth service"""
    user_id: str
    role: Role

    @property
    def is_teacher(self) -> bool:
        return self.role is Role.TEACHER
