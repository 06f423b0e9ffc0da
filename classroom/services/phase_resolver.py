"""
Per-Student Phase Resolver

Computes the phase a specific student should see from the class-wide phase
and that student's own progress. Pure; recomputed on every phase change and
on reconnect.
"""
from typing import Any, Union

from classroom.services.phases import Phase


def resolve_effective_phase(session_phase: Union[Phase, str], progress: Any) -> Phase:
    """
    Resolve a student's effective phase.

    Args:
        session_phase: Stored class phase
        progress: Object with pretest_completed_at and posttest_completed_at

    Returns:
        PRETEST_GATE until the pre-assessment is done, ENDED once the
        post-test has been taken during POSTTEST, otherwise the class phase.
    """
    phase = Phase(session_phase)

    if progress.pretest_completed_at is None:
        return Phase.PRETEST_GATE

    if phase is Phase.POSTTEST and progress.posttest_completed_at is not None:
        return Phase.ENDED

    return phase
