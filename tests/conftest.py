import asyncio
import os
from datetime import datetime, timedelta, timezone

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from aida.config import Settings  # noqa: E402
from aida.services.llm import LLMResponse  # noqa: E402
from aida.services.response_types import CustomerMetadata, KnowledgeSource, ResponseRequest  # noqa: E402
from aida.services.storage_service import Storage  # noqa: E402

BUSINESS_ID = "biz-1"
ASSISTANT_ID = "asst-1"
CONVERSATION_ID = "c1"


class FakeStorage(Storage):
    """In-memory storage that records writes."""

    def __init__(self, tables=None):
        self.tables = tables or {"assistants": [], "conversations": [], "messages": []}
        self.inserts = []
        self.updates = []
        self.failing = set()

    def _check(self, op, table):
        if (op, table) in self.failing:
            raise RuntimeError(f"{op} on {table} failed")

    async def query(self, table, filters):
        self._check("query", table)
        return [dict(row) for row in self.tables[table] if all(row.get(k) == v for k, v in filters.items())]

    async def insert(self, table, row):
        self._check("insert", table)
        stored = dict(row)
        self.tables[table].append(stored)
        self.inserts.append((table, stored))
        return stored

    async def update(self, table, row_id, patch):
        self._check("update", table)
        self.updates.append((table, row_id, dict(patch)))
        for row in self.tables[table]:
            if row.get("id") == row_id:
                row.update(patch)
                return dict(row)
        raise LookupError(row_id)


class FakeRetriever:
    def __init__(self, sources=None, error=None):
        self.sources = sources or []
        self.error = error
        self.calls = []

    async def search(self, query, business_id, limit=8, min_score=0.5):
        self.calls.append((query, business_id))
        if self.error:
            raise self.error
        return list(self.sources)

    async def health_check(self):
        return True


class FakeLLM:
    def __init__(self, content="", error=None, delay=0.0):
        self.content = content
        self.error = error
        self.delay = delay
        self.calls = []

    async def generate(self, system_prompt, context_text, history, current_message):
        self.calls.append(
            {
                "system_prompt": system_prompt,
                "context_text": context_text,
                "history": list(history),
                "current_message": current_message,
            }
        )
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return LLMResponse(content=self.content, model="fake-model", tokens_used=42)

    async def is_available(self):
        return True


def make_request(message="Quais são os horários de funcionamento?", **overrides) -> ResponseRequest:
    values = {
        "message": message,
        "conversation_id": CONVERSATION_ID,
        "assistant_id": ASSISTANT_ID,
        "business_id": BUSINESS_ID,
    }
    values.update(overrides)
    return ResponseRequest(**values)


def make_sources(*scores):
    return [KnowledgeSource(content=f"Fact {i}", score=score, source="faq.md") for i, score in enumerate(scores)]


def seeded_tables(assistant_settings=None, messages=None):
    now = datetime.now(timezone.utc)
    return {
        "assistants": [
            {
                "id": ASSISTANT_ID,
                "business_id": BUSINESS_ID,
                "name": "Aida",
                "personality_prompt": "Warm and helpful",
                "system_prompt": "Answer questions about the salon",
                "settings": assistant_settings or {},
                "metrics": {"total_messages": 4, "avg_response_time_ms": 100},
                "is_active": True,
            }
        ],
        "conversations": [
            {
                "id": CONVERSATION_ID,
                "business_id": BUSINESS_ID,
                "assistant_id": ASSISTANT_ID,
                "customer_phone": "+5511999990000",
                "status": "active",
                "context_summary": "",
            }
        ],
        "messages": messages
        if messages is not None
        else [
            {
                "conversation_id": CONVERSATION_ID,
                "sender_type": "customer",
                "content": "Oi, tudo bom?",
                "timestamp": now - timedelta(minutes=5),
            },
            {
                "conversation_id": CONVERSATION_ID,
                "sender_type": "assistant",
                "content": "Olá! Como posso ajudar?",
                "timestamp": now - timedelta(minutes=4),
            },
        ],
    }


@pytest.fixture
def storage():
    return FakeStorage(seeded_tables())


@pytest.fixture
def test_settings():
    return Settings(database_url="sqlite:///:memory:", response_timeout_seconds=5.0)


@pytest.fixture
def customer():
    return CustomerMetadata(name="Maria", phone="+5511999990000", language="pt")
