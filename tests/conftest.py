"""Shared fixtures: an in-memory stand-in for an asyncpg pool.

FakePool enforces its size limit with a semaphore and records every borrow,
release, statement and transaction boundary so tests can assert on the
connection lifecycle without a PostgreSQL server.
"""
import asyncio
import sys
from typing import Any, Callable, Optional
from unittest.mock import AsyncMock

import pytest

sys.path.insert(0, str(__file__).rsplit("/tests", 1)[0])
from src.perfex.config import ConnectionConfig
from src.perfex.db.client import ConnectionManager
from src.perfex.db.resilience import RetryPolicy


class ScriptedHandler:
    """Answers statements by substring match, first rule wins.

    A rule's result may be rows (list of dicts), a command status string,
    an exception instance (raised), or a callable ``(sql, args) -> result``.
    """

    def __init__(self, rules: Optional[list[tuple[str, Any]]] = None, default: Any = None):
        self.rules = list(rules or [])
        self.default = [] if default is None else default

    def __call__(self, method: str, sql: str, args: tuple) -> Any:
        for needle, result in self.rules:
            if needle in sql:
                break
        else:
            result = self.default
        if callable(result) and not isinstance(result, BaseException):
            result = result(sql, args)
        if isinstance(result, BaseException):
            raise result
        return result


class FailingHandler:
    """Raises ``error`` for the first ``failures`` statements, then returns ``result``."""

    def __init__(self, failures: int, error: BaseException, result: Any = None):
        self.failures = failures
        self.error = error
        self.result = [{"test": 1}] if result is None else result
        self.calls = 0

    def __call__(self, method: str, sql: str, args: tuple) -> Any:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.result


class FakeTransaction:
    def __init__(self, conn: "FakeConnection", isolation: str):
        self.conn = conn
        self.isolation = isolation

    async def start(self):
        self.conn.pool.events.append("start")

    async def commit(self):
        self.conn.pool.events.append("commit")

    async def rollback(self):
        self.conn.pool.events.append("rollback")


class FakeConnection:
    def __init__(self, pool: "FakePool", number: int):
        self.pool = pool
        self.number = number
        self.released = False

    async def _run(self, method: str, sql: str, args: tuple) -> Any:
        assert not self.released, "connection used after release"
        if self.pool.latency:
            await asyncio.sleep(self.pool.latency)
        self.pool.calls.append((method, sql, args))
        return self.pool.handler(method, sql, args)

    async def fetch(self, sql: str, *args):
        return list(await self._run("fetch", sql, args))

    async def fetchrow(self, sql: str, *args):
        rows = await self._run("fetchrow", sql, args)
        return rows[0] if rows else None

    async def fetchval(self, sql: str, *args):
        rows = await self._run("fetchval", sql, args)
        if not rows:
            return None
        return next(iter(rows[0].values()))

    async def execute(self, sql: str, *args):
        result = await self._run("execute", sql, args)
        return result if isinstance(result, str) else "UPDATE 0"

    def transaction(self, isolation: str = "read_committed"):
        return FakeTransaction(self, isolation)


class FakePool:
    """Bounded pool double with lifecycle bookkeeping."""

    def __init__(
        self,
        max_size: int = 10,
        handler: Optional[Callable[[str, str, tuple], Any]] = None,
        latency: float = 0.0,
        close_delay: float = 0.0,
    ):
        self.max_size = max_size
        self.handler = handler or ScriptedHandler()
        self.latency = latency
        self.close_delay = close_delay
        self._slots = asyncio.Semaphore(max_size)
        self.in_use = 0
        self.max_in_use = 0
        self.acquired = 0
        self.released = 0
        self.calls: list[tuple[str, str, tuple]] = []
        self.events: list[str] = []
        self.closed = False
        self.terminated = False

    async def acquire(self, timeout: Optional[float] = None):
        await self._slots.acquire()
        self.acquired += 1
        self.in_use += 1
        self.max_in_use = max(self.max_in_use, self.in_use)
        return FakeConnection(self, self.acquired)

    async def release(self, conn: FakeConnection):
        assert not conn.released, "connection released twice"
        conn.released = True
        self.released += 1
        self.in_use -= 1
        self._slots.release()

    def get_size(self) -> int:
        return self.max_size

    def get_idle_size(self) -> int:
        return self.max_size - self.in_use

    async def close(self):
        if self.close_delay:
            await asyncio.sleep(self.close_delay)
        self.closed = True

    def terminate(self):
        self.terminated = True


@pytest.fixture
def connection_config():
    return ConnectionConfig(
        host="localhost",
        port=5432,
        user="perfex",
        password="hunter2",
        database="perfex_crm_test",
    )


@pytest.fixture
def sleep_mock():
    return AsyncMock()


@pytest.fixture
def retry_policy(sleep_mock):
    return RetryPolicy(max_retries=3, base_delay=1.0, sleep=sleep_mock)


@pytest.fixture
def make_manager(connection_config, retry_policy):
    """Factory: ConnectionManager over a FakePool driven by ``handler``."""

    def factory(handler=None, max_size: int = 10, latency: float = 0.0, **pool_kwargs):
        pool = FakePool(max_size=max_size, handler=handler, latency=latency, **pool_kwargs)
        manager = ConnectionManager(
            connection_config,
            client_id="test",
            retry_policy=retry_policy,
            pool=pool,
        )
        return manager, pool

    return factory
