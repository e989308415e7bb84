"""
Shared fixtures: sample definitions, a fake LLM provider and a SQLite database.
"""
import json
from typing import Any, List, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from formbuilder.ai.json_extract import extract_json
from formbuilder.ai.providers.base import LLMProvider, LLMRequest, LLMResponse
from formbuilder.forms.schemas import FormDefinition


def make_field(field_id: str, order: int, label: Optional[str] = None, **extra) -> dict:
    data = {
        "id": field_id,
        "type": "text",
        "label": field_id.title() if label is None else label,
        "required": False,
        "order": order,
    }
    data.update(extra)
    return data


@pytest.fixture
def name_email_definition() -> FormDefinition:
    return FormDefinition.model_validate({"fields": [
        make_field("name", 0, "Name"),
        make_field("email", 1, "Email"),
    ]})


@pytest.fixture
def abc_definition() -> FormDefinition:
    return FormDefinition.model_validate({"fields": [
        make_field("a", 0, "A"),
        make_field("b", 1, "B"),
        make_field("c", 2, "C"),
    ]})


class FakeProvider(LLMProvider):
    """Replays queued raw responses; an Exception in the queue is raised instead."""

    provider_name = "fake"
    model = "fake-model"

    def __init__(self, responses: Optional[List[Any]] = None):
        self.responses = list(responses or [])
        self.requests: List[LLMRequest] = []

    def queue(self, payload: Any) -> None:
        self.responses.append(payload)

    async def generate(self, request: LLMRequest) -> LLMResponse:
        self.requests.append(request)
        payload = self.responses.pop(0)
        if isinstance(payload, BaseException):
            raise payload
        raw = payload if isinstance(payload, str) else json.dumps(payload)
        return LLMResponse(
            raw_text=raw,
            parsed_json=extract_json(raw),
            provider=self.provider_name,
            model=self.model,
        )

    async def ping(self) -> bool:
        return True


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    from formbuilder.database.postgresql import create_tables

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'forms.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db_sessionmaker(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(db_sessionmaker):
    async with db_sessionmaker() as session:
        yield session
