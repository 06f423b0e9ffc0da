"""
Domain Errors

Rejections raised by the session orchestrator and grouping engine. Every
error carries a stable code, a message and structured details so the HTTP
and WebSocket layers can surface it verbatim. Raising one of these never
leaves partial state behind.
"""
from typing import Any, Dict, Iterable, Optional


class ClassroomError(Exception):
    """Base class for all domain rejections"""

    code = "CLASSROOM_ERROR"
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
            }
        }


class Unauthorized(ClassroomError):
    """Caller is not permitted to perform the operation (e.g. not the class teacher)"""

    code = "UNAUTHORIZED"
    status_code = 403

    def __init__(self, operation: str, user_id: Optional[str] = None):
        super().__init__(
            f"Only the class teacher may {operation}",
            {"operation": operation, "user_id": user_id},
        )


class InvalidTransition(ClassroomError):
    code = "INVALID_TRANSITION"
    status_code = 409

    def __init__(self, current_phase: str, requested_phase: str, allowed: Iterable[str]):
        allowed = sorted(allowed)
        super().__init__(
            f"Cannot move from {current_phase} to {requested_phase}",
            {
                "current_phase": current_phase,
                "requested_phase": requested_phase,
                "allowed": allowed,
            },
        )
        self.current_phase = current_phase


class InsufficientRosterForAI(ClassroomError):
    code = "INSUFFICIENT_ROSTER_FOR_AI"
    status_code = 422

    def __init__(self, minimum: int, current: int):
        super().__init__(
            f"AI grouping requires at least {minimum} students with a completed pretest; "
            f"currently {current}. Use manual grouping for smaller classes.",
            {"minimum": minimum, "current": current},
        )


class InsufficientRosterForManual(ClassroomError):
    code = "INSUFFICIENT_ROSTER_FOR_MANUAL"
    status_code = 422

    def __init__(self, minimum: int, current: int):
        super().__init__(
            f"Manual grouping requires at least {minimum} students with a completed pretest; "
            f"currently {current}.",
            {"minimum": minimum, "current": current},
        )


class RosterTooLargeForManual(ClassroomError):
    code = "ROSTER_TOO_LARGE_FOR_MANUAL"
    status_code = 422

    def __init__(self, maximum: int, current: int):
        super().__init__(
            f"Manual grouping supports at most {maximum} students; currently {current}. "
            f"Use AI grouping instead.",
            {"maximum": maximum, "current": current},
        )


class InvalidGroupCount(ClassroomError):
    code = "INVALID_GROUP_COUNT"
    status_code = 422

    def __init__(self, requested: Any, roster_size: int, reason: str):
        super().__init__(
            f"Invalid group count {requested}: {reason}",
            {"requested": requested, "roster_size": roster_size},
        )


class InvalidAssignment(ClassroomError):
    code = "INVALID_ASSIGNMENT"
    status_code = 422

    def __init__(self, student_id: str, group_number: Any):
        super().__init__(
            f"Group number for student {student_id} must be a positive integer",
            {"student_id": student_id, "group_number": group_number},
        )


class InvalidSettings(ClassroomError):
    code = "INVALID_SETTINGS"
    status_code = 422

    def __init__(self, field: str, value: Any):
        super().__init__(
            f"{field} must be a non-negative integer",
            {"field": field, "value": value},
        )


class ConcurrentModification(ClassroomError):
    """Another transition or grouping for the same class won the race; retry against current state"""

    code = "CONCURRENT_MODIFICATION"
    status_code = 409

    def __init__(self, class_id: str):
        super().__init__(
            f"Another change to class {class_id} is in progress; refresh and retry",
            {"class_id": class_id},
        )


class ClassNotFound(ClassroomError):
    code = "CLASS_NOT_FOUND"
    status_code = 404

    def __init__(self, class_id: str):
        super().__init__(f"Class {class_id} not found", {"class_id": class_id})


class StudentNotFound(ClassroomError):
    code = "STUDENT_NOT_FOUND"
    status_code = 404

    def __init__(self, class_id: str, student_ids: Iterable[str]):
        student_ids = sorted(student_ids)
        super().__init__(
            f"Students not enrolled in class {class_id}: {', '.join(student_ids)}",
            {"class_id": class_id, "student_ids": student_ids},
        )


class ClassAlreadyExists(ClassroomError):
    code = "CLASS_ALREADY_EXISTS"
    status_code = 409

    def __init__(self, class_id: str):
        super().__init__(f"Class {class_id} already has a session", {"class_id": class_id})


class InvalidGroupingMode(ClassroomError):
    code = "INVALID_GROUPING_MODE"
    status_code = 422

    def __init__(self, mode: Any):
        super().__init__(
            f"Unknown grouping mode {mode}; expected AI or MANUAL",
            {"mode": mode, "allowed": ["AI", "MANUAL"]},
        )
