#!/usr/bin/env python3
"""Integration tests against a real PostgreSQL server.

Tests cover:
    - Insert/read round trip through ConnectionManager
    - Rollback leaving no rows behind
    - Concurrent read-modify-write inside transactions losing no updates
    - Pool bound under concurrent load
    - Concurrent invoice creation allocating distinct numbers

Each test works on its own scratch table or schema, dropped afterwards.

NOTE: Requires DATABASE_URL; skipped otherwise.
"""
import asyncio
import os
import sys
from uuid import uuid4

import pytest
import pytest_asyncio
from dotenv import load_dotenv

sys.path.insert(0, str(__file__).rsplit("/tests", 1)[0])
from src.perfex.config import ConnectionConfig
from src.perfex.db.client import ConnectionManager
from src.perfex.exceptions import TransactionError
from src.perfex.tools import Dispatcher, build_registry

load_dotenv()

pytestmark = pytest.mark.skipif(
    not os.getenv("DATABASE_URL"),
    reason="DATABASE_URL not set"
)

POOL_SIZE = 3


# ============================================
# Fixtures
# ============================================

@pytest_asyncio.fixture
async def db():
    import asyncpg

    pool = await asyncpg.create_pool(os.getenv("DATABASE_URL"), min_size=1, max_size=POOL_SIZE)
    config = ConnectionConfig(
        host="from-dsn",
        port=5432,
        user="from-dsn",
        password="",
        database="perfex_it",
        pool_size=POOL_SIZE,
    )
    manager = ConnectionManager(config, client_id="integration", pool=pool)
    yield manager
    await manager.close()


@pytest_asyncio.fixture
async def scratch_table(db):
    table = f"perfex_it_{uuid4().hex[:12]}"
    await db.execute(
        f"CREATE TABLE {table} (id SERIAL PRIMARY KEY, name TEXT NOT NULL, counter INTEGER NOT NULL DEFAULT 0)"
    )
    yield table
    await db.execute(f"DROP TABLE IF EXISTS {table}")


CRM_TABLES = [
    "CREATE TABLE tblclients (userid SERIAL PRIMARY KEY, company TEXT)",
    """
    CREATE TABLE tblinvoices (
        id SERIAL PRIMARY KEY, clientid INTEGER, number TEXT, date DATE, duedate DATE,
        currency INTEGER, subtotal NUMERIC, total NUMERIC, discount_percent NUMERIC,
        discount_total NUMERIC, discount_type TEXT, adjustment NUMERIC, terms TEXT,
        clientnote TEXT, adminnote TEXT, datecreated TIMESTAMP, status INTEGER, sent INTEGER
    )
    """,
    """
    CREATE TABLE tblitemable (
        id SERIAL PRIMARY KEY, rel_id INTEGER, rel_type TEXT, description TEXT,
        long_description TEXT, qty NUMERIC, rate NUMERIC, unit TEXT, item_order INTEGER
    )
    """,
]


@pytest_asyncio.fixture
async def crm_db():
    """ConnectionManager bound to a scratch schema holding the invoice tables."""
    import asyncpg

    schema = f"perfex_it_{uuid4().hex[:12]}"
    admin = await asyncpg.connect(os.getenv("DATABASE_URL"))
    await admin.execute(f"CREATE SCHEMA {schema}")
    pool = await asyncpg.create_pool(
        os.getenv("DATABASE_URL"),
        min_size=1,
        max_size=POOL_SIZE,
        server_settings={"search_path": schema},
    )
    for ddl in CRM_TABLES:
        await pool.execute(ddl)
    config = ConnectionConfig(
        host="from-dsn",
        port=5432,
        user="from-dsn",
        password="",
        database="perfex_it",
        pool_size=POOL_SIZE,
    )
    manager = ConnectionManager(config, client_id="integration", pool=pool)
    try:
        yield manager
    finally:
        await manager.close()
        await admin.execute(f"DROP SCHEMA {schema} CASCADE")
        await admin.close()


# ============================================
# Tests
# ============================================

class TestRoundTrip:
    @pytest.mark.asyncio
    async def test_insert_and_read(self, db, scratch_table):
        new_id = await db.execute_insert(
            f"INSERT INTO {scratch_table} (name) VALUES ($1) RETURNING id", ["TEST-acme"]
        )

        row = await db.query_one(f"SELECT id, name FROM {scratch_table} WHERE id = $1", [new_id])

        assert row == {"id": new_id, "name": "TEST-acme"}

    @pytest.mark.asyncio
    async def test_connection_check(self, db):
        assert await db.test_connection() is True

    @pytest.mark.asyncio
    async def test_rollback(self, db, scratch_table):
        async def insert_then_fail(conn):
            await conn.execute(f"INSERT INTO {scratch_table} (name) VALUES ($1)", "TEST-ghost")
            raise RuntimeError("abort")

        with pytest.raises(TransactionError):
            await db.transaction(insert_then_fail)

        assert await db.fetch_value(f"SELECT COUNT(*) FROM {scratch_table}") == 0


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_concurrent_increments_are_not_lost(self, db, scratch_table):
        row_id = await db.execute_insert(
            f"INSERT INTO {scratch_table} (name) VALUES ($1) RETURNING id", ["TEST-counter"]
        )

        async def increment(conn):
            current = await conn.fetchval(
                f"SELECT counter FROM {scratch_table} WHERE id = $1 FOR UPDATE", row_id
            )
            await asyncio.sleep(0.01)
            await conn.execute(f"UPDATE {scratch_table} SET counter = $1 WHERE id = $2", current + 1, row_id)

        await asyncio.gather(*(db.transaction(increment) for _ in range(10)))

        assert await db.fetch_value(f"SELECT counter FROM {scratch_table} WHERE id = $1", [row_id]) == 10

    @pytest.mark.asyncio
    async def test_pool_bound(self, db):
        await asyncio.gather(*(db.query("SELECT pg_sleep(0.05)") for _ in range(POOL_SIZE * 3)))

        stats = db.stats()
        assert stats["borrowed"] == 0
        assert stats["size"] <= POOL_SIZE

    @pytest.mark.asyncio
    async def test_concurrent_invoices_get_distinct_numbers(self, crm_db):
        client_id = await crm_db.execute_insert(
            "INSERT INTO tblclients (company) VALUES ($1) RETURNING userid", ["TEST-acme"]
        )
        dispatcher = Dispatcher(build_registry(), crm_db)
        arguments = {"client_id": client_id, "items": [{"description": "TEST-item", "qty": 1, "rate": 10}]}

        responses = await asyncio.gather(
            *(dispatcher.invoke("create_invoice", arguments) for _ in range(POOL_SIZE * 2))
        )

        assert all(not r.is_error for r in responses), [r.content[0].text for r in responses]
        numbers = [r.data["number"] for r in responses]
        assert len(set(numbers)) == len(numbers)
        stored = await crm_db.query("SELECT number FROM tblinvoices ORDER BY id")
        assert [row["number"] for row in stored] == [f"INV-{n:06d}" for n in range(1, len(numbers) + 1)]
