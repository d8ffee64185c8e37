"""
Pytest configuration for ExamGuard tests
"""
import os
import sys
import asyncio
import tempfile
import uuid
from datetime import datetime

import pytest

_TEST_DB_DIR = tempfile.mkdtemp(prefix="examguard-tests-")

os.environ["SQLALCHEMY_DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DB_DIR}/api.db"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["CACHE_ENABLED"] = "false"
os.environ["AUTO_SUBMIT_GRACE_SECONDS"] = "0"
os.environ["ENVIRONMENT"] = "test"

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.ext.asyncio import async_sessionmaker, AsyncSession  # noqa: E402

from examguard.core.database import Base, build_async_engine, create_db_and_tables  # noqa: E402
from examguard.models import User, HallTicket, Question, ExamSession  # noqa: E402
from examguard.proctoring.actor import ActorOptions  # noqa: E402
from examguard.proctoring.supervisor import SessionSupervisor  # noqa: E402
from examguard.utils.timezone import utc_now  # noqa: E402


class RecordingFanout:
    """Stands in for the connection manager and keeps everything it was asked to send"""

    def __init__(self):
        self.admin_messages = []
        self.session_messages = []

    def broadcast_to_admins(self, message_type, data):
        self.admin_messages.append({"type": message_type, "data": data})
        return 1

    def send_to_session(self, session_id, message_type, data):
        self.session_messages.append({"session_id": session_id, "type": message_type, "data": data})
        return 1

    def admin_types(self):
        return [m["type"] for m in self.admin_messages]

    def admin_of_type(self, message_type):
        return [m["data"] for m in self.admin_messages if m["type"] == message_type]

    def student_of_type(self, message_type):
        return [m["data"] for m in self.session_messages if m["type"] == message_type]


async def insert_exam_session(
    session_factory,
    question_ids=("q1", "q2"),
    time_remaining=600,
    status="in_progress",
    roll_number=None,
    **overrides
) -> str:
    """Insert a hall ticket, a student and an exam session row directly"""
    roll_number = roll_number or f"R{uuid.uuid4().hex[:6]}"
    async with session_factory() as db:
        student = User(id=f"student_{roll_number}", role="student", first_name="Test", last_name="Student")
        ticket = HallTicket(
            hall_ticket_id=f"HT-{roll_number}",
            exam_name="Physics",
            exam_date=datetime(2026, 10, 19, 9, 0),
            duration=10,
            total_questions=len(question_ids),
            roll_number=roll_number,
            student_name="Test Student",
            student_email=f"{roll_number.lower()}@example.com",
            qr_code_data="{}",
        )
        db.add_all([student, ticket])
        await db.flush()

        exam_session = ExamSession(
            hall_ticket_id=ticket.id,
            student_id=student.id,
            status=status,
            question_ids=list(question_ids),
            answers={},
            current_question=1,
            time_remaining=time_remaining,
            violation_count=0,
            start_time=utc_now(),
            **overrides
        )
        db.add(exam_session)
        await db.commit()
        return exam_session.id


async def load_exam_session(session_factory, session_id) -> ExamSession:
    async with session_factory() as db:
        return await db.get(ExamSession, session_id)


@pytest.fixture
async def session_factory(tmp_path):
    """Fresh SQLite database per test"""
    engine = build_async_engine(f"sqlite+aiosqlite:///{tmp_path}/examguard.db")
    await create_db_and_tables(engine)
    factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    yield factory
    await engine.dispose()


@pytest.fixture
def fanout():
    return RecordingFanout()


@pytest.fixture
def actor_options():
    return ActorOptions(timer_interval=0.01, persist_every_ticks=1, auto_submit_grace_seconds=0)


@pytest.fixture
async def supervisor(session_factory, fanout, actor_options):
    supervisor = SessionSupervisor(session_factory, fanout, options=actor_options)
    yield supervisor
    await supervisor.shutdown()


# API fixtures (synchronous, the app runs on the TestClient's own loop)

def run(coro):
    return asyncio.run(coro)


async def _reset_app_database():
    from examguard.core.database import async_engine
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await create_db_and_tables(async_engine)


@pytest.fixture
def app_session_factory():
    from examguard.core.database import AsyncSessionLocal
    return AsyncSessionLocal


@pytest.fixture
def client():
    """FastAPI test client on a clean database"""
    from fastapi.testclient import TestClient
    from examguard.main import app

    run(_reset_app_database())
    with TestClient(app) as test_client:
        yield test_client


async def _create_user(user_id, role):
    from examguard.core.database import AsyncSessionLocal
    async with AsyncSessionLocal() as db:
        db.add(User(id=user_id, email=f"{user_id}@example.com", role=role, first_name=user_id))
        await db.commit()


def _headers_for(user_id):
    from examguard.core.security import create_access_token
    return {"Authorization": f"Bearer {create_access_token({'sub': user_id})}"}


@pytest.fixture
def admin_headers(client):
    run(_create_user("admin-1", "admin"))
    return _headers_for("admin-1")


@pytest.fixture
def second_admin_headers(client):
    run(_create_user("admin-2", "admin"))
    return _headers_for("admin-2")


@pytest.fixture
def student_headers(client):
    run(_create_user("student_plain", "student"))
    return _headers_for("student_plain")


async def _seed_exam(exam_name, question_count, is_active, other_exam_questions):
    from examguard.core.database import AsyncSessionLocal
    async with AsyncSessionLocal() as db:
        ticket = HallTicket(
            hall_ticket_id=f"HT-{uuid.uuid4().hex[:8]}",
            exam_name=exam_name,
            exam_date=datetime(2026, 10, 19, 9, 0),
            duration=30,
            total_questions=3,
            roll_number=f"R{uuid.uuid4().hex[:6]}",
            student_name="Asha Verma",
            student_email="asha@example.com",
            qr_code_data="{}",
            is_active=is_active,
        )
        db.add(ticket)
        for i in range(question_count):
            db.add(Question(
                exam_name=exam_name,
                question_text=f"{exam_name} question {i + 1}",
                options={"A": "1", "B": "2", "C": "3", "D": "4"},
                correct_answer="A",
            ))
        for i in range(other_exam_questions):
            db.add(Question(
                exam_name="Other exam",
                question_text=f"Other question {i + 1}",
                options={"A": "1", "B": "2", "C": "3", "D": "4"},
                correct_answer="B",
            ))
        await db.commit()
        return ticket.id


@pytest.fixture
def seed_exam(client):
    """Seed a hall ticket (and questions); returns the hall ticket row id"""
    def _seed(exam_name="Physics", question_count=5, is_active=True, other_exam_questions=0):
        return run(_seed_exam(exam_name, question_count, is_active, other_exam_questions))
    return _seed


@pytest.fixture
def started_session(client, seed_exam):
    """An in-progress session created through the API"""
    hall_ticket_id = seed_exam()
    response = client.post("/api/v1/exam-sessions", json={"hall_ticket_id": hall_ticket_id})
    assert response.status_code == 200
    return response.json()
