# shared fixtures for backend api tests
# provides a fake query gateway, a fake generation backend, canned rows, and httpx test clients

import json
from datetime import datetime, timezone

import pytest
import pytest_asyncio
from bson import ObjectId
from httpx import AsyncClient, ASGITransport

from serenity.errors import DataAccessError
from serenity.main import app
from serenity.services.agents import AGENT_SPECS, AgentRole
from serenity.services.db import get_db
from serenity.services.generation import get_generation_backend


# fixed clock for every test
NOW = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)

USER_1 = ObjectId()
USER_2 = ObjectId()
CHAT_1 = ObjectId()
CHAT_2 = ObjectId()


# canned rows keyed by query template name (as the aggregation would return them)

POPULATED_ROWS = {
    "total_users": [{"total": 2}],
    "new_users_since": [{"total": 1}],
    "total_tests": [{"total": 4}],
    "total_messages": [{"total": 9}],
    "anxiety_distribution": [
        {"_id": "Mild", "value": 3},
        {"_id": "Severe", "value": 1},
    ],
    "depression_distribution": [
        {"_id": "Minimal", "value": 2},
        {"_id": "Moderate", "value": 2},
    ],
    "age_distribution": [
        {"_id": "25-34", "count": 1},
        {"_id": "<18", "count": 1},
    ],
    "gender_distribution": [
        {"_id": None, "value": 1},
        {"_id": "female", "value": 1},
    ],
    "monthly_new_users": [
        {"_id": "2026-09", "new_users": 1},
        {"_id": "2026-10", "new_users": 1},
    ],
    "monthly_tests": [
        {"_id": "2026-08", "tests": 5},
        {"_id": "2026-10", "tests": 3},
    ],
    "weekly_messages": [
        {"_id": 1, "messages": 2, "bot_replies": 1},
        {"_id": 2, "messages": 7, "bot_replies": 3},
    ],
    "latest_anxiety_scores": [
        {"_id": USER_1, "score": 8},
        {"_id": USER_2, "score": 17},
    ],
    "messages_per_user": [
        {"_id": USER_1, "message_count": 6},
        {"_id": USER_2, "message_count": 3},
    ],
    "test_spans": [
        {
            "_id": USER_1,
            "first_date": datetime(2026, 8, 1, tzinfo=timezone.utc),
            "last_date": datetime(2026, 9, 10, tzinfo=timezone.utc),
            "first_score": 15,
            "last_score": 8,
            "tests": 2,
        },
    ],
    "user_activity": [
        {
            "_id": USER_1,
            "created_at": datetime(2026, 7, 1, tzinfo=timezone.utc),
            "updated_at": datetime(2026, 7, 1, tzinfo=timezone.utc),
            "last_chat_at": datetime(2026, 10, 10, tzinfo=timezone.utc),
            "last_test_at": datetime(2026, 9, 10, tzinfo=timezone.utc),
        },
        {
            "_id": USER_2,
            "created_at": datetime(2026, 9, 1, tzinfo=timezone.utc),
            "updated_at": datetime(2026, 9, 5, tzinfo=timezone.utc),
            "last_chat_at": None,
            "last_test_at": None,
        },
    ],
    "usage_hours": [
        {"_id": 21, "messages": 5},
        {"_id": 9, "messages": 3},
    ],
    "response_samples": [
        {"text": "I can't sleep before exams"},
        {"text": ""},
    ],
    "chat_rollups": [
        {
            "_id": CHAT_1,
            "chat_name": "Evening check-in",
            "user_gender": "female",
            "user_age": 29,
            "message_count": 6,
            "max_anxiety": 15,
            "max_depression": 9,
        },
        {
            "_id": CHAT_2,
            "chat_name": "Exams",
            "user_gender": None,
            "user_age": None,
            "message_count": 3,
            "max_anxiety": None,
            "max_depression": None,
        },
    ],
}


# valid replies per agent role

DEFAULT_REPLIES = {
    AgentRole.EFFECTIVENESS: json.dumps({"insight": "Most long-term users improve", "score": 72}),
    AgentRole.SIGNIFICANT_PATTERNS: json.dumps(["Mild anxiety is the most common level"]),
    AgentRole.CORRELATIONS: json.dumps(["Higher anxiety users send fewer messages"]),
    AgentRole.TEMPORAL_TRENDS: "```json\n" + json.dumps(["Sign-ups are steady month over month"]) + "\n```",
    AgentRole.RECOMMENDATIONS: json.dumps(["Add a bedtime breathing exercise"]),
    AgentRole.RESPONSE_ANALYSIS: json.dumps({
        "commonPatterns": ["Sleep problems around exams"],
        "keyInsights": ["Academic stress dominates"],
        "recommendedActions": ["Offer exam-period check-ins"],
    }),
}


class FakeGateway:
    """in-memory stand-in for Database — canned rows per query template name"""

    def __init__(self, rows=None, failing=None):
        self.rows = rows or {}
        self.failing = set(failing or [])
        self.calls = []

    async def execute(self, template, params=None):
        # binding surfaces missing params exactly like the real gateway
        template.bind(params)
        self.calls.append((template.name, params or {}))
        if template.name in self.failing:
            raise DataAccessError(f"Query '{template.name}' failed: connection reset")
        return [dict(row) for row in self.rows.get(template.name, [])]

    def params_for(self, name):
        return [params for called, params in self.calls if called == name]

    @property
    def called(self):
        return {name for name, _ in self.calls}


def role_for_prompt(prompt):
    """identify which agent a prompt belongs to by its instructions"""
    for role, spec in AGENT_SPECS.items():
        if spec.instructions in prompt:
            return role
    raise AssertionError("prompt does not match any agent")


class FakeBackend:
    """generation backend returning a canned reply (or raising) per agent role"""

    def __init__(self, replies=None):
        self.replies = {**DEFAULT_REPLIES, **(replies or {})}
        self.prompts = {}

    async def generate(self, prompt):
        role = role_for_prompt(prompt)
        self.prompts[role] = prompt
        reply = self.replies[role]
        if isinstance(reply, Exception):
            raise reply
        return reply


@pytest.fixture
def empty_gateway():
    """gateway over an empty data store"""
    return FakeGateway()


@pytest.fixture
def populated_gateway():
    return FakeGateway(POPULATED_ROWS)


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest_asyncio.fixture
async def client(populated_gateway, fake_backend):
    """httpx async test client with mocked gateway and backend"""

    async def override_get_db():
        return populated_gateway

    def override_get_generation_backend():
        return fake_backend

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_generation_backend] = override_get_generation_backend

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def freeze_now(monkeypatch):
    """pin the snapshot clock used by the dashboard endpoint"""
    import serenity.services.snapshot as snapshot_module

    class FrozenDatetime(datetime):
        @classmethod
        def now(cls, tz=None):
            return NOW if tz is None else NOW.astimezone(tz)

    monkeypatch.setattr(snapshot_module, "datetime", FrozenDatetime)
    return NOW
