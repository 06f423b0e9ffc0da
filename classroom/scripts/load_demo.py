"""
Demo Scenario Loader

Seeds a class session with Faker-generated students for presentations and
prints bearer tokens for the teacher and each student.
Usage: python -m classroom.scripts.load_demo --scenario full_class
"""
import asyncio
import argparse
import random
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from faker import Faker
from sqlalchemy import delete

from classroom.api.auth import create_access_token
from classroom.database import AsyncSessionLocal, init_db
from classroom.models import ClassSession, StudentProgress, GroupingRun, PhaseTransition
from classroom.services.phases import Gender, Principal, Role
from classroom.services.transition_controller import get_transition_controller

# Initialize Faker for realistic data generation
fake = Faker()

DEMO_TEACHER_ID = "teacher-demo"

SCENARIOS: Dict[str, Dict[str, int]] = {
    # 5 students: manual grouping only
    "small_class": {"students": 5, "without_pretest": 0},
    # 24 students: AI grouping into 5 groups
    "full_class": {"students": 24, "without_pretest": 0},
    # 12 students, 3 still on the pretest gate
    "pretest_pending": {"students": 12, "without_pretest": 3},
}


async def clear_class(class_id: str):
    """Remove every row belonging to the demo class"""
    async with AsyncSessionLocal() as session:
        for model in (GroupingRun, PhaseTransition, StudentProgress, ClassSession):
            await session.execute(delete(model).where(model.class_id == class_id))
        await session.commit()
    print(f"✓ Cleared existing data for {class_id}")


async def enroll_students(class_id: str, count: int, without_pretest: int, seed: int) -> Dict[str, str]:
    """
    Enroll students with spread-out pretest scores and mixed genders.

    Returns student_id -> display name.
    """
    Faker.seed(seed)
    rng = random.Random(seed)
    now = datetime.now(timezone.utc)
    genders = [Gender.FEMALE, Gender.MALE]

    students = {}
    async with AsyncSessionLocal() as session:
        for i in range(count):
            student_id = f"student-{i + 1:02d}"
            gender = genders[i % 2]
            name = fake.name_female() if gender is Gender.FEMALE else fake.name_male()
            finished = i < count - without_pretest

            session.add(StudentProgress(
                class_id=class_id,
                student_id=student_id,
                student_name=name,
                gender=gender.value,
                pretest_score=round(rng.uniform(35, 98), 1) if finished else None,
                pretest_completed_at=now - timedelta(minutes=rng.randint(5, 60)) if finished else None,
            ))
            students[student_id] = name

        await session.commit()

    print(f"  Enrolled {count} students ({count - without_pretest} finished the pretest)")
    return students


async def load_scenario(scenario_name: str, class_id: str, seed: int, retention_delay: Optional[int]):
    """
    Load a demo scenario.

    Args:
        scenario_name: Key of SCENARIOS
        class_id: Class to (re)create
        seed: Seed for names and scores
        retention_delay: Retention test delay in minutes
    """
    if scenario_name not in SCENARIOS:
        print(f"ERROR: Unknown scenario '{scenario_name}'")
        print(f"Available scenarios: {', '.join(SCENARIOS.keys())}")
        return

    await init_db()
    await clear_class(class_id)

    print(f"\nLoading {scenario_name} scenario...")
    teacher = Principal(user_id=DEMO_TEACHER_ID, role=Role.TEACHER)
    await get_transition_controller().create_session(
        class_id,
        teacher,
        name=f"{fake.catch_phrase()} (demo)",
        post_test_delay_minutes=0,
        retention_test_delay_minutes=retention_delay,
    )

    config = SCENARIOS[scenario_name]
    students = await enroll_students(class_id, config["students"], config["without_pretest"], seed)

    print(f"\n✅ Scenario '{scenario_name}' loaded into class {class_id}")
    print(f"\nTeacher token ({DEMO_TEACHER_ID}):\n  {create_access_token(DEMO_TEACHER_ID, Role.TEACHER)}")
    print("\nStudent tokens:")
    for student_id, name in students.items():
        print(f"  {student_id} ({name}): {create_access_token(student_id, Role.STUDENT)}")


def main():
    """CLI entry point"""
    parser = argparse.ArgumentParser(description="Load demo classroom scenarios")
    parser.add_argument(
        "--scenario",
        "-s",
        choices=sorted(SCENARIOS.keys()),
        required=True,
        help="Scenario to load"
    )
    parser.add_argument("--class-id", default="demo-class", help="Class identifier")
    parser.add_argument("--seed", type=int, default=42, help="Seed for generated students")
    parser.add_argument(
        "--retention-delay",
        type=int,
        default=None,
        help="Retention test delay in minutes (default from config)"
    )

    args = parser.parse_args()
    asyncio.run(load_scenario(args.scenario, args.class_id, args.seed, args.retention_delay))


if __name__ == "__main__":
    main()
