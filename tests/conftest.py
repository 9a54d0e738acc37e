import asyncio
import json
import os

# Stream suggestion words without pauses in tests
os.environ["SUGGESTION_CHUNK_DELAY"] = "0"

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from insight.dtos import TokenUsage
from insight.main import app
from insight.core.database import get_db
from insight.controllers.insight_controller import get_catalog, get_llm_client, get_session_factory
from insight.pipeline.llm.client import LLMCompletion, LLMStreamDelta
from insight.pipeline.sql.executor import QueryExecutor
from insight.pipeline.stages import (
    PromptClassifier,
    SchemaIntrospector,
    SQLGenerator,
    SQLValidator,
    ResponseSynthesizer,
    clear_schema_cache,
)
from insight.repositories import ConversationRepository
from insight.services import InsightService

TEST_DATABASE_URL = "sqlite+aiosqlite://"


def column(name, data_type, nullable="NO", length=None, precision=None, scale=None, default=None, comment=None):
    return {
        "column_name": name,
        "data_type": data_type,
        "is_nullable": nullable,
        "column_default": default,
        "character_maximum_length": length,
        "numeric_precision": precision,
        "numeric_scale": scale,
        "comment": comment,
    }


def shop_tables():
    """Small e-commerce catalog: customers, products, orders, order_items, plus an unrelated table"""
    return {
        "customers": {
            "columns": [
                column("id", "integer"),
                column("email", "character varying", length=255),
                column("created_at", "timestamp without time zone"),
            ],
            "primary_keys": ["id"],
            "foreign_keys": [],
            "samples": [{"id": 1, "email": "ana@example.com", "created_at": "2026-09-01T10:00:00"}],
        },
        "products": {
            "columns": [
                column("id", "integer"),
                column("name", "character varying", length=120),
                column("price", "numeric", precision=10, scale=2),
            ],
            "primary_keys": ["id"],
            "foreign_keys": [],
            "samples": [{"id": 1, "name": "Desk Lamp", "price": "39.90"}],
        },
        "orders": {
            "columns": [
                column("id", "integer"),
                column("customer_id", "integer"),
                column("total_amount", "numeric", precision=12, scale=2),
                column("created_at", "timestamp without time zone"),
            ],
            "primary_keys": ["id"],
            "foreign_keys": [
                {"column_name": "customer_id", "referenced_table": "customers", "referenced_column": "id"},
            ],
            "samples": [{"id": 10, "customer_id": 1, "total_amount": "79.80", "created_at": "2026-10-02T09:00:00"}],
        },
        "order_items": {
            "columns": [
                column("id", "integer"),
                column("order_id", "integer"),
                column("product_id", "integer"),
                column("quantity", "integer"),
                column("total_price", "numeric", precision=12, scale=2, nullable="YES"),
            ],
            "primary_keys": ["id"],
            "foreign_keys": [
                {"column_name": "order_id", "referenced_table": "orders", "referenced_column": "id"},
                {"column_name": "product_id", "referenced_table": "products", "referenced_column": "id"},
            ],
            "samples": [{"id": 100, "order_id": 10, "product_id": 1, "quantity": 2, "total_price": "79.80"}],
        },
        "schema_migrations": {
            "columns": [column("version", "character varying", length=64)],
            "primary_keys": ["version"],
            "foreign_keys": [],
            "samples": [],
        },
    }


class FakeCatalog:
    """In-memory Catalog with scriptable failures"""

    def __init__(
        self,
        tables=None,
        rows=None,
        list_error=None,
        broken_tables=(),
        explain_error=None,
        fetch_error=None
    ):
        self.tables = shop_tables() if tables is None else tables
        self.rows = rows if rows is not None else []
        self.list_error = list_error
        self.broken_tables = set(broken_tables)
        self.explain_error = explain_error
        self.fetch_error = fetch_error
        self.schema = "public"
        self.explained = []
        self.executed = []

    async def list_tables(self):
        if self.list_error:
            raise self.list_error
        return list(self.tables)

    async def describe_columns(self, table_name):
        if table_name in self.broken_tables:
            raise RuntimeError(f"permission denied for table {table_name}")
        return [dict(c) for c in self.tables[table_name]["columns"]]

    async def primary_keys(self, table_name):
        return list(self.tables[table_name]["primary_keys"])

    async def foreign_keys(self, table_name):
        return [dict(fk) for fk in self.tables[table_name]["foreign_keys"]]

    async def sample_rows(self, table_name, limit):
        return [dict(r) for r in self.tables[table_name]["samples"][:limit]]

    async def fetch_rows(self, sql, max_rows):
        self.executed.append(sql)
        if self.fetch_error:
            raise self.fetch_error
        return [dict(r) for r in self.rows[:max_rows]]

    async def explain(self, sql):
        self.explained.append(sql)
        if self.explain_error:
            raise self.explain_error


CALL_USAGE = TokenUsage(prompt_tokens=100, completion_tokens=20, total_tokens=120)


class FakeLLMClient:
    """
    Scripted LLMClient

    json_responses: dicts/strings returned by complete_json in order (an
    Exception instance is raised instead).
    streams: one list per stream() call of str fragments, TokenUsage
    (emitted as a usage-only delta), an Exception raised mid-stream or an
    asyncio.Event the stream waits on.
    """

    def __init__(self, json_responses=(), streams=()):
        self.json_responses = list(json_responses)
        self.streams = list(streams)
        self.json_calls = []
        self.stream_calls = []

    async def complete_json(self, system, user, temperature, model=None):
        self.json_calls.append({"system": system, "user": user, "temperature": temperature, "model": model})
        item = self.json_responses.pop(0)
        if isinstance(item, Exception):
            raise item
        content = item if isinstance(item, str) else json.dumps(item)
        return LLMCompletion(content=content, model=model or "gpt-4o-mini", usage=CALL_USAGE)

    async def stream(self, system, user, temperature, model=None):
        self.stream_calls.append({"system": system, "user": user, "temperature": temperature, "model": model})
        script = self.streams.pop(0) if self.streams else ["No further details."]
        for item in script:
            if isinstance(item, Exception):
                raise item
            if isinstance(item, asyncio.Event):
                await item.wait()
                continue
            if isinstance(item, TokenUsage):
                yield LLMStreamDelta(usage=item)
            else:
                yield LLMStreamDelta(content=item)


DATA_ANALYSIS = {
    "isDataRelated": True,
    "intent": "query",
    "entities": ["products", "orders"],
    "suggestedQueries": [],
    "confidence": 0.92,
}

CHITCHAT_ANALYSIS = {
    "isDataRelated": False,
    "intent": "general",
    "entities": [],
    "suggestedQueries": [
        "Show me total sales for this month",
        "How many new customers signed up last week?",
        "What are our top 5 products by revenue?",
    ],
    "confidence": 0.95,
}

TOP_PRODUCTS_SQL = (
    "SELECT p.name, SUM(oi.quantity) AS total_sold "
    "FROM products p "
    "JOIN order_items oi ON oi.product_id = p.id "
    "JOIN orders o ON o.id = oi.order_id "
    "WHERE o.created_at >= DATE_TRUNC('month', CURRENT_DATE) "
    "GROUP BY p.id, p.name "
    "ORDER BY total_sold DESC "
    "LIMIT 5"
)

TOP_PRODUCTS_ROWS = [
    {"name": "Desk Lamp", "total_sold": 42},
    {"name": "Office Chair", "total_sold": 31},
    {"name": "Notebook", "total_sold": 27},
    {"name": "Monitor Arm", "total_sold": 12},
    {"name": "Cable Tray", "total_sold": 9},
]


def sql_answer(sql, explanation="Top products by units sold this month.", confidence=0.9):
    return {
        "sqlQuery": sql,
        "explanation": explanation,
        "confidence": confidence,
        "tables": ["products", "order_items", "orders"],
        "columns": ["name", "quantity"],
    }


@pytest.fixture(autouse=True)
def reset_schema_cache():
    clear_schema_cache()
    yield
    clear_schema_cache()


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def repository(db_session):
    return ConversationRepository(db_session)


@pytest.fixture
def catalog():
    return FakeCatalog(rows=TOP_PRODUCTS_ROWS)


def make_service(repository, llm, catalog):
    return InsightService(
        repository=repository,
        classifier=PromptClassifier(llm),
        introspector=SchemaIntrospector(catalog),
        generator=SQLGenerator(llm),
        validator=SQLValidator(catalog),
        executor=QueryExecutor(catalog),
        synthesizer=ResponseSynthesizer(llm),
        suggestion_delay=0
    )


@pytest.fixture
def fake_llm():
    return FakeLLMClient()


@pytest_asyncio.fixture(scope="function")
async def client(session_factory, db_session, catalog, fake_llm):
    """HTTP client on the in-memory database, fake catalog and scripted LLM"""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_llm_client] = lambda: fake_llm
    app.dependency_overrides[get_catalog] = lambda: catalog

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
