"""
Integration tests for grouping persistence

Tests engine runs, manual overrides, group number bookkeeping, audit rows
and broadcasts against in-memory SQLite.
"""
import pytest
from sqlalchemy import func, select

from classroom.database import AsyncSessionLocal
from classroom.errors import (
    ClassNotFound,
    ConcurrentModification,
    InsufficientRosterForAI,
    InvalidAssignment,
    InvalidGroupingMode,
    RosterTooLargeForManual,
    StudentNotFound,
    Unauthorized,
)
from classroom.ml.narrator_client import NarratorClient
from classroom.ml.rationale_generator import RationaleGenerator
from classroom.models import GroupingRun
from classroom.services.broadcaster import Broadcaster, Subscriber
from classroom.services.class_locks import ClassLockRegistry
from classroom.services.grouping_service import GroupingService
from classroom.services.phases import Gender, Phase, Principal, Role
from classroom.services.repository import ClassroomRepository

pytestmark = pytest.mark.integration

CLASS_ID = "class-1"

NINE = [
    ("s1", Gender.FEMALE, 90), ("s2", Gender.MALE, 85), ("s3", Gender.FEMALE, 80),
    ("s4", Gender.MALE, 75), ("s5", Gender.FEMALE, 70), ("s6", Gender.MALE, 65),
    ("s7", Gender.FEMALE, 60), ("s8", Gender.MALE, 55), ("s9", Gender.FEMALE, 50),
]


@pytest.fixture
def broadcaster():
    return Broadcaster()


@pytest.fixture
def locks():
    return ClassLockRegistry()


@pytest.fixture
def service(broadcaster, locks):
    return GroupingService(
        locks=locks,
        broadcaster=broadcaster,
        rationale_generator=RationaleGenerator(NarratorClient(base_url="")),
    )


@pytest.fixture
async def nine_students(seed_class, student_row):
    await seed_class(
        phase=Phase.GROUP_SESSION,
        students=[student_row(sid, gender, score) for sid, gender, score in NINE],
    )


async def group_numbers(class_id=CLASS_ID):
    async with AsyncSessionLocal() as session:
        rows = await ClassroomRepository(session).list_progress(class_id)
        return {row.student_id: row.group_number for row in rows}


async def session_version(class_id=CLASS_ID):
    async with AsyncSessionLocal() as session:
        return (await ClassroomRepository(session).get_session(class_id)).version


class TestRunGrouping:

    async def test_nine_students_three_groups(self, nine_students, service, teacher, broadcaster, fake_socket):
        socket = fake_socket()
        await broadcaster.add(CLASS_ID, Subscriber(socket, "s1", "STUDENT"))

        run = await service.run_grouping(CLASS_ID, "AI", teacher, requested_group_count=3)

        expected = {
            "s1": 1, "s4": 1, "s7": 1,
            "s2": 2, "s5": 2, "s8": 2,
            "s3": 3, "s6": 3, "s9": 3,
        }
        assert run.assignment_map() == expected
        assert await group_numbers() == expected
        assert run.group_count == 3
        assert run.mode == "AI"
        assert run.rationale_source == "template"
        assert run.metrics()["balanced_groups"] == 3
        assert await session_version() == 2

        event = socket.sent[-1]
        assert event["type"] == "groups-assigned"
        assert event["grouping_run_id"] == run.run_id
        assert event["assignments"] == expected

    async def test_students_without_pretest_are_left_out(self, seed_class, student_row, service, teacher):
        students = [student_row(f"st-{i}", Gender.FEMALE if i % 2 else Gender.MALE, 50 + i) for i in range(8)]
        students.append(student_row("late", completed=False))
        await seed_class(students=students)

        run = await service.run_grouping(CLASS_ID, "AI", teacher)

        numbers = await group_numbers()
        assert numbers["late"] is None
        assert "late" not in run.assignment_map()
        assert all(numbers[f"st-{i}"] in (1, 2) for i in range(8))

    async def test_rerun_supersedes_previous(self, nine_students, service, teacher):
        first = await service.run_grouping(CLASS_ID, "AI", teacher, requested_group_count=3)
        second = await service.run_grouping(CLASS_ID, "AI", teacher, requested_group_count=2)

        latest = await service.latest_run(CLASS_ID, teacher)
        assert latest.run_id == second.run_id != first.run_id
        assert set((await group_numbers()).values()) == {1, 2}

        async with AsyncSessionLocal() as session:
            count = await session.scalar(select(func.count()).select_from(GroupingRun))
        assert count == 2

    async def test_too_few_students_for_ai(self, seed_class, student_row, service, teacher):
        await seed_class(students=[student_row(f"st-{i}") for i in range(7)])

        with pytest.raises(InsufficientRosterForAI):
            await service.run_grouping(CLASS_ID, "AI", teacher)
        assert await service.latest_run(CLASS_ID, teacher) is None
        assert await session_version() == 1

    async def test_manual_mode_rejects_eight(self, seed_class, student_row, service, teacher):
        await seed_class(students=[student_row(f"st-{i}") for i in range(8)])

        with pytest.raises(RosterTooLargeForManual) as exc:
            await service.run_grouping(CLASS_ID, "MANUAL", teacher)
        assert exc.value.details["maximum"] == 7

    async def test_manual_mode_small_class(self, seed_class, student_row, service, teacher):
        await seed_class(students=[
            student_row("a", Gender.FEMALE, 90),
            student_row("b", Gender.MALE, 70),
            student_row("c", Gender.FEMALE, 60),
            student_row("d", Gender.MALE, 40),
        ])

        run = await service.run_grouping(CLASS_ID, "MANUAL", teacher)

        assert run.group_count == 2
        assert sorted(run.assignment_map().values()) == [1, 1, 2, 2]

    async def test_unknown_mode(self, nine_students, service, teacher):
        with pytest.raises(InvalidGroupingMode):
            await service.run_grouping(CLASS_ID, "RANDOM", teacher)

    async def test_only_class_teacher(self, nine_students, service, other_teacher):
        with pytest.raises(Unauthorized):
            await service.run_grouping(CLASS_ID, "AI", other_teacher)

    async def test_missing_class(self, db, service, teacher):
        with pytest.raises(ClassNotFound):
            await service.run_grouping("ghost", "AI", teacher)

    async def test_busy_class_rejected(self, nine_students, service, teacher, locks):
        async with locks.hold(CLASS_ID):
            with pytest.raises(ConcurrentModification):
                await service.run_grouping(CLASS_ID, "AI", teacher)


class TestManualAssignments:

    async def test_full_override(self, nine_students, service, teacher):
        await service.run_grouping(CLASS_ID, "AI", teacher, requested_group_count=3)

        mapping = {"s1": 1, "s2": 1, "s3": 2, "s4": 2, "s5": 4}
        run = await service.save_manual_assignments(CLASS_ID, teacher, mapping)

        numbers = await group_numbers()
        assert run.mode == "MANUAL"
        assert run.group_count == 4
        assert {sid: numbers[sid] for sid in mapping} == mapping
        assert all(numbers[sid] is None for sid in ("s6", "s7", "s8", "s9"))
        assert run.metrics()["groups"][2]["size"] == 0

    async def test_unknown_student(self, nine_students, service, teacher):
        with pytest.raises(StudentNotFound) as exc:
            await service.save_manual_assignments(CLASS_ID, teacher, {"s1": 1, "ghost": 2})
        assert exc.value.details["student_ids"] == ["ghost"]
        assert all(n is None for n in (await group_numbers()).values())

    @pytest.mark.parametrize("bad", [0, -2, True])
    async def test_non_positive_group(self, nine_students, service, teacher, bad):
        with pytest.raises(InvalidAssignment):
            await service.save_manual_assignments(CLASS_ID, teacher, {"s1": 1, "s2": bad})

    async def test_student_cannot_assign(self, nine_students, service):
        with pytest.raises(Unauthorized):
            await service.save_manual_assignments(CLASS_ID, Principal("s1", Role.STUDENT), {"s1": 1})


class TestLatestRun:

    async def test_enrolled_student_can_read(self, nine_students, service, teacher):
        run = await service.run_grouping(CLASS_ID, "AI", teacher, requested_group_count=3)
        latest = await service.latest_run(CLASS_ID, Principal("s5", Role.STUDENT))
        assert latest.run_id == run.run_id

    async def test_stranger_rejected(self, nine_students, service):
        with pytest.raises(StudentNotFound):
            await service.latest_run(CLASS_ID, Principal("outsider", Role.STUDENT))
