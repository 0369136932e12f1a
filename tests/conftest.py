from datetime import timedelta

import httpx
import pytest
from jose import jwt
from mongomock_motor import AsyncMongoMockClient

from app.contests.clock import utcnow
from app.contests.config import JWT_ALGORITHM, JWT_SECRET_KEY
from app.contests.database import create_contest_indexes, generate_id
from app.contests.dependencies import get_db
from app.main import app


class Seeder:
    """Writes fixture documents straight into the mock database"""

    def __init__(self, db):
        self.db = db

    async def _insert(self, collection: str, doc: dict) -> dict:
        await self.db[collection].insert_one(dict(doc))
        return doc

    async def user(self, role: str = "student", **fields) -> dict:
        doc = {
            "id": generate_id("USR"),
            "name": "Asha Rao",
            "email": f"{generate_id('mail').lower()}@example.com",
            "college": "NIT Trichy",
            "role": role,
            **fields,
        }
        return await self._insert("users", doc)

    async def contest(self, starts_in=timedelta(hours=-1), lasts=timedelta(hours=2), **fields) -> dict:
        """Live by default: started an hour ago, ends in an hour"""
        start = utcnow() + starts_in
        doc = {
            "id": generate_id("CONTEST"),
            "title": "Weekly Aptitude",
            "description": "",
            "type": "mcq",
            "category": "aptitude",
            "prize": 0,
            "prizes": [],
            "fee": 50,
            "startTime": start,
            "endTime": start + lasts,
            "duration": int(lasts.total_seconds() // 60),
            "totalMarks": 100,
            "negativeMarking": False,
            "negativeMarkValue": 0,
            "commissionPerRegistration": 0,
            "status": "upcoming",
            "createdAt": utcnow(),
            **fields,
        }
        return await self._insert("contests", doc)

    async def question(self, contest: dict, **fields) -> dict:
        doc = {
            "id": generate_id("Q"),
            "contestId": contest["id"],
            "type": "mcq",
            "questionText": "Pick one",
            "options": ["A", "B", "C", "D"],
            "correctAnswer": "B",
            "marks": 10,
            "order": 0,
            **fields,
        }
        return await self._insert("questions", doc)

    async def registration(self, contest: dict, user: dict, status: str = "approved", **fields) -> dict:
        doc = {
            "id": generate_id("REG"),
            "contestId": contest["id"],
            "userId": user["id"],
            "paymentStatus": status,
            "registeredAt": utcnow(),
            **fields,
        }
        return await self._insert("registrations", doc)

    async def attempt(self, contest: dict, user: dict, started_ago=timedelta(minutes=10)) -> dict:
        doc = {
            "id": generate_id("ATT"),
            "contestId": contest["id"],
            "userId": user["id"],
            "answers": {},
            "startedAt": utcnow() - started_ago,
            "autoSubmitted": False,
            "tabSwitchCount": 0,
        }
        return await self._insert("attempts", doc)

    async def result(self, contest: dict, user: dict, **fields) -> dict:
        doc = {
            "id": generate_id("RES"),
            "contestId": contest["id"],
            "userId": user["id"],
            "score": 0,
            "rank": 0,
            "totalQuestions": 0,
            "correctAnswers": 0,
            "wrongAnswers": 0,
            "unanswered": 0,
            "isWinner": False,
            "answers": {},
            "tabSwitchCount": 0,
            "submittedAt": utcnow(),
            **fields,
        }
        return await self._insert("results", doc)


@pytest.fixture
async def db():
    database = AsyncMongoMockClient()["contest_arena_test"]
    await create_contest_indexes(database)
    return database


@pytest.fixture
def seed(db):
    return Seeder(db)


@pytest.fixture
async def client(db):
    app.dependency_overrides[get_db] = lambda: db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client
    app.dependency_overrides.clear()


@pytest.fixture
def auth():
    def headers(user: dict, role: str = None) -> dict:
        token = jwt.encode(
            {"sub": user["id"], "role": role or user["role"]},
            JWT_SECRET_KEY,
            algorithm=JWT_ALGORITHM,
        )
        return {"Authorization": f"Bearer {token}"}
    return headers
