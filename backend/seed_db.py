"""One-time dev setup: create tables, register demo tests and print bearer tokens."""
from datetime import datetime, timedelta, timezone

from attempt_service.core.security import create_access_token
from attempt_service.db.session import Base, get_engine, get_session_factory
from attempt_service.db.models import Test
from attempt_service.schemas.test import QuestionDefinition, TestDefinition
from attempt_service.services.catalog import register_test

TEACHER_ID = "demo-teacher"
STUDENT_ID = "demo-student"

QUESTIONS = [
    QuestionDefinition(
        question_type="mcq",
        text="Which organelle carries out photosynthesis?",
        marks=2,
        options=["Mitochondrion", "Chloroplast", "Ribosome", "Nucleus"],
        correct_option=1,
        topic="Cells",
    ),
    QuestionDefinition(
        question_type="mcq",
        text="What gas do plants release during photosynthesis?",
        marks=2,
        options=["Carbon dioxide", "Nitrogen", "Oxygen"],
        correct_option=2,
        topic="Photosynthesis",
    ),
    QuestionDefinition(
        question_type="essay",
        text="Explain why leaves are green.",
        marks=6,
        topic="Photosynthesis",
    ),
]

# 1. Create all tables
engine = get_engine()
Base.metadata.create_all(bind=engine)
print("✅ All tables created")

now = datetime.now(timezone.utc)
session_factory = get_session_factory()
with session_factory() as db:
    # 2. Flexible practice test, open for a week, two attempts
    flexible = db.query(Test).filter(Test.title == "Demo: Photosynthesis (flexible)").first()
    if not flexible:
        flexible = register_test(
            db,
            TestDefinition(
                title="Demo: Photosynthesis (flexible)",
                teacher_id=TEACHER_ID,
                test_type="flexible",
                duration_minutes=30,
                attempts_allowed=2,
                available_from=now.isoformat(),
                available_to=now + timedelta(days=7),
                questions=QUESTIONS,
            ),
        )
        print(f"✅ Created flexible test (id={flexible.id})")
    else:
        print(f"  Flexible test already exists (id={flexible.id})")

    # 3. Live test starting in ten minutes
    live = db.query(Test).filter(Test.title == "Demo: Photosynthesis (live)").first()
    if not live:
        live = register_test(
            db,
            TestDefinition(
                title="Demo: Photosynthesis (live)",
                teacher_id=TEACHER_ID,
                test_type="live",
                duration_minutes=20,
                scheduled_start_time=now + timedelta(minutes=10),
                questions=QUESTIONS,
            ),
        )
        print(f"✅ Created live test (id={live.id})")
    else:
        print(f"  Live test already exists (id={live.id})")

# 4. Tokens for trying the API from /docs
print(f"\nStudent token:\n{create_access_token({'sub': STUDENT_ID, 'role': 'student'})}")
print(
    "\nTeacher token:\n"
    + create_access_token({"sub": "demo-teacher-uid", "role": "teacher", "profile_id": TEACHER_ID})
)
print("\n🎉 Done!")
