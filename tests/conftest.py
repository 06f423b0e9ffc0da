"""
Shared fixtures

Configuration is read at import time, so the test environment is set
before any classroom module is imported: in-memory SQLite, no Redis, no
narrator.
"""
import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["REDIS_URL"] = ""
os.environ["NARRATOR_URL"] = ""
os.environ["AUTH_JWT_SECRET"] = "test-secret"
os.environ["DEFAULT_RETENTION_TEST_DELAY_MINUTES"] = "10080"

from datetime import datetime, timedelta, timezone

import pytest

from classroom.database import AsyncSessionLocal, drop_db, engine, init_db
from classroom.models import ClassSession, StudentProgress
from classroom.services.phases import Gender, Phase, Principal, Role

TEACHER_ID = "teacher-1"
CLASS_ID = "class-1"


class FakeWebSocket:
    """Records what the server sends; optionally fails every send"""

    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    async def send_json(self, data):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(data)

    def types(self):
        return [message["type"] for message in self.sent]


def make_student(student_id, gender=Gender.FEMALE, score=70.0, completed=True, **fields):
    """Column values for a StudentProgress row"""
    completed_at = datetime.now(timezone.utc) - timedelta(minutes=30) if completed else None
    return {
        "student_id": student_id,
        "student_name": student_id.replace("-", " ").title(),
        "gender": Gender(gender).value,
        "pretest_score": score if completed else None,
        "pretest_completed_at": completed_at,
        **fields,
    }


@pytest.fixture
async def db():
    """Fresh in-memory schema per test"""
    await init_db()
    yield
    await drop_db()
    # StaticPool holds the single :memory: connection; release it per test
    await engine.dispose()


@pytest.fixture
def teacher():
    return Principal(user_id=TEACHER_ID, role=Role.TEACHER)


@pytest.fixture
def other_teacher():
    return Principal(user_id="teacher-2", role=Role.TEACHER)


@pytest.fixture
def fake_socket():
    return FakeWebSocket


@pytest.fixture
def student_row():
    return make_student


@pytest.fixture
async def seed_class(db):
    """Insert a class session and its enrolled students directly"""

    async def _seed(
        class_id=CLASS_ID,
        students=(),
        phase=Phase.WAITING_ROOM,
        teacher_id=TEACHER_ID,
        **session_fields,
    ):
        values = {
            "post_test_delay_minutes": 0,
            "retention_test_delay_minutes": 60,
            **session_fields,
        }
        async with AsyncSessionLocal() as session:
            session.add(ClassSession(
                class_id=class_id,
                teacher_id=teacher_id,
                name="Test class",
                phase=Phase(phase).value,
                version=1,
                **values,
            ))
            for student in students:
                session.add(StudentProgress(class_id=class_id, **student))
            await session.commit()

    return _seed
