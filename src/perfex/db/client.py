#!/usr/bin/env python3
"""Resilient PostgreSQL client for the Perfex CRM tools.

ConnectionManager owns one bounded asyncpg pool per tenant database and
exposes the only database surface tool handlers are allowed to use:

    - query / query_one / fetch_value: reads, retried and sanitized
    - execute / execute_insert: writes, retried
    - transaction / transaction_scope: one connection, commit or rollback
    - test_connection: non-raising connectivity check
    - close: idempotent, best-effort pool shutdown

Every borrowed connection is released exactly once, on success and on error.
Reads and writes go through RetryPolicy.run(); transactions are never retried.

Example:
    async with ConnectionManager(ConnectionConfig.from_env("perfex_crm")) as db:
        rows = await db.query("SELECT userid, company FROM tblclients WHERE active = $1", [1])
        new_id = await db.execute_insert(
            "INSERT INTO tblleads (name) VALUES ($1) RETURNING id", ["Acme"]
        )

Author: Perfex CRM Tools Team
"""
import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Sequence, TypeVar

import asyncpg
from asyncpg import exceptions as pg_errors

from ..config import ConnectionConfig
from ..exceptions import (
    ConnectivityError,
    DatabaseError,
    IntegrityError,
    PerfexError,
    QueryExecutionError,
    TransactionError,
    ValidationError,
)
from .query_builder import WhereBuilder, validate_table
from .resilience import RetryPolicy
from .sanitizer import ResultSanitizer, get_result_sanitizer

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_QUERY_ROWS = 1000


@dataclass
class Page:
    """One page of a paginated read."""

    data: list[dict[str, Any]] = field(default_factory=list)
    total: int = 0
    limit: int = 100
    offset: int = 0
    has_more: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _affected_rows(status: str) -> int:
    """Parse the row count from a command tag such as ``UPDATE 3``."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (AttributeError, ValueError):
        return 0


class ConnectionManager:
    """Pooled, retrying database access for one tenant.

    Args:
        config: Connection settings (pool size and statement timeout included)
        client_id: Tenant identifier, used in log lines
        retry_policy: Retry policy for reads and writes
        sanitizer: Masks sensitive columns on the read path
        pool: Pre-built pool (tests); when omitted the pool is created on open()
    """

    def __init__(
        self,
        config: ConnectionConfig,
        client_id: str = "default",
        retry_policy: Optional[RetryPolicy] = None,
        sanitizer: Optional[ResultSanitizer] = None,
        pool: Any = None,
    ):
        self.config = config
        self.client_id = client_id
        self.retry_policy = retry_policy or RetryPolicy()
        self.sanitizer = sanitizer or get_result_sanitizer()
        self._pool = pool
        self._open_lock: Optional[asyncio.Lock] = None
        self._closed = False
        self._borrowed = 0

    # ----------------------------------------
    # Lifecycle
    # ----------------------------------------

    async def open(self) -> "ConnectionManager":
        """Create the pool if it does not exist yet.

        Raises:
            ConnectivityError: If the manager is closed or the pool cannot be created
        """
        if self._closed:
            raise ConnectivityError("Connection manager is closed", recoverable=False)
        if self._pool is not None:
            return self

        if self._open_lock is None:
            self._open_lock = asyncio.Lock()

        async with self._open_lock:
            if self._pool is None:
                try:
                    self._pool = await asyncpg.create_pool(
                        host=self.config.host,
                        port=self.config.port,
                        user=self.config.user,
                        password=self.config.password,
                        database=self.config.database,
                        min_size=1,
                        max_size=self.config.pool_size,
                        command_timeout=self.config.query_timeout,
                    )
                except Exception as e:
                    raise ConnectivityError(
                        f"Failed to create database pool: {e}",
                        details={"database": self.config.database},
                        cause=e,
                    ) from e
                logger.info(
                    f"Database pool created for {self.config.database} "
                    f"(max={self.config.pool_size}, client={self.client_id})"
                )
        return self

    async def close(self, timeout: float = 10.0) -> None:
        """Drain the pool. Safe to call more than once; never raises."""
        self._closed = True
        pool, self._pool = self._pool, None
        if pool is None:
            return

        try:
            await asyncio.wait_for(pool.close(), timeout=timeout)
            logger.info("Database pool closed")
        except asyncio.TimeoutError:
            logger.warning(f"Pool close timed out after {timeout}s, terminating")
            pool.terminate()
        except Exception as e:
            logger.error(f"Error closing pool: {e}")
            pool.terminate()

    async def __aenter__(self) -> "ConnectionManager":
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def is_open(self) -> bool:
        return self._pool is not None and not self._closed

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[Any]:
        """Borrow one connection; it goes back to the pool on every exit path."""
        await self.open()
        pool = self._pool
        conn = await pool.acquire(timeout=self.config.query_timeout)
        self._borrowed += 1
        try:
            yield conn
        finally:
            self._borrowed -= 1
            await pool.release(conn)

    # ----------------------------------------
    # Retried operations
    # ----------------------------------------

    async def _run(self, kind: str, sql: str, operation: Callable[[], Awaitable[T]]) -> T:
        started = time.perf_counter()
        label = f"{kind} [{self.client_id}] {sql[:100]!r}"
        try:
            result = await self.retry_policy.run(operation, label=label)
        except QueryExecutionError as e:
            e.details["sql"] = sql[:100]
            e.details["client_id"] = self.client_id
            if isinstance(e.cause, pg_errors.IntegrityConstraintViolationError):
                raise IntegrityError(
                    f"Constraint violation: {e.cause}",
                    constraint=getattr(e.cause, "constraint_name", None),
                    cause=e.cause,
                ) from e.cause
            raise
        logger.debug(f"{kind} completed in {(time.perf_counter() - started) * 1000:.1f}ms")
        return result

    async def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> list[dict[str, Any]]:
        """Run a read and return sanitized rows.

        Args:
            sql: Statement with ``$n`` placeholders
            params: Positional parameters

        Returns:
            List of row dicts with sensitive columns masked

        Raises:
            QueryExecutionError: After the retry budget is spent
        """
        args = list(params or [])

        async def attempt():
            async with self.connection() as conn:
                return await conn.fetch(sql, *args)

        records = await self._run("Query", sql, attempt)
        return self.sanitizer.sanitize_rows(records)

    async def query_one(
        self, sql: str, params: Optional[Sequence[Any]] = None
    ) -> Optional[dict[str, Any]]:
        """First row of ``query`` or None when the result set is empty."""
        rows = await self.query(sql, params)
        return rows[0] if rows else None

    async def fetch_value(self, sql: str, params: Optional[Sequence[Any]] = None) -> Any:
        """First column of the first row, or None."""
        row = await self.query_one(sql, params)
        if row is None:
            return None
        return next(iter(row.values()), None)

    async def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> int:
        """Run an UPDATE/DELETE and return the number of affected rows."""
        args = list(params or [])

        async def attempt():
            async with self.connection() as conn:
                return await conn.execute(sql, *args)

        status = await self._run("Execute", sql, attempt)
        return _affected_rows(status)

    async def execute_insert(self, sql: str, params: Optional[Sequence[Any]] = None) -> int:
        """Run an ``INSERT ... RETURNING <id>`` and return the generated id.

        Raises:
            DatabaseError: If the statement has no RETURNING clause or returns nothing
            IntegrityError: If a constraint rejects the row
            QueryExecutionError: After the retry budget is spent
        """
        if "returning" not in sql.lower():
            raise DatabaseError(
                "execute_insert requires an INSERT ... RETURNING statement",
                details={"sql": sql[:100]},
            )
        args = list(params or [])

        async def attempt():
            async with self.connection() as conn:
                return await conn.fetchval(sql, *args)

        new_id = await self._run("Insert", sql, attempt)
        if new_id is None:
            raise DatabaseError("Insert returned no id", details={"sql": sql[:100]})
        return int(new_id)

    # ----------------------------------------
    # Transactions
    # ----------------------------------------

    @asynccontextmanager
    async def transaction_scope(self, isolation: str = "read_committed") -> AsyncIterator[Any]:
        """Borrow one connection and run the block inside a transaction.

        Commits on normal exit. On failure rolls back and re-raises:
        PerfexError subclasses unchanged, anything else as TransactionError.

        Example:
            async with db.transaction_scope() as conn:
                invoice_id = await conn.fetchval("INSERT ... RETURNING id", ...)
                await conn.execute("INSERT INTO tblitemable ...", invoice_id, ...)
        """
        async with self.connection() as conn:
            tx = conn.transaction(isolation=isolation)
            try:
                await tx.start()
            except Exception as e:
                raise TransactionError(
                    f"Failed to start transaction: {e}",
                    operation="begin",
                    cause=e,
                ) from e
            logger.debug("Transaction started")

            try:
                yield conn
            except Exception as e:
                await self._rollback(tx)
                logger.error(f"Transaction rolled back [{self.client_id}]: {e}")
                if isinstance(e, PerfexError):
                    raise
                raise TransactionError(
                    f"Transaction failed: {e}",
                    operation="transaction",
                    cause=e,
                ) from e
            except BaseException:
                await self._rollback(tx)
                raise

            try:
                await tx.commit()
            except Exception as e:
                await self._rollback(tx)
                raise TransactionError(
                    f"Failed to commit transaction: {e}",
                    operation="commit",
                    cause=e,
                ) from e
            logger.debug("Transaction committed")

    async def _rollback(self, tx) -> None:
        try:
            await tx.rollback()
        except Exception as rollback_error:
            logger.error(f"Rollback failed: {rollback_error}")

    async def transaction(self, callback: Callable[[Any], Awaitable[T]]) -> T:
        """Run ``callback(conn)`` inside a transaction and return its result."""
        async with self.transaction_scope() as conn:
            return await callback(conn)

    # ----------------------------------------
    # Health and metadata
    # ----------------------------------------

    async def test_connection(self) -> bool:
        """Check the database with ``SELECT 1``. Never raises."""
        try:
            row = await self.query_one("SELECT 1 AS test")
        except Exception as e:
            logger.error(f"Database connection test failed [{self.client_id}]: {e}")
            return False
        ok = row is not None and row.get("test") == 1
        if ok:
            logger.info("Database connection test successful")
        return ok

    def stats(self) -> dict[str, Any]:
        """Pool occupancy for health reporting."""
        pool = self._pool
        return {
            "client_id": self.client_id,
            "database": self.config.database,
            "open": self.is_open,
            "max_size": self.config.pool_size,
            "size": pool.get_size() if pool is not None else 0,
            "idle": pool.get_idle_size() if pool is not None else 0,
            "borrowed": self._borrowed,
        }

    async def get_record_count(self, table: str, where: Optional[WhereBuilder] = None) -> int:
        """Count rows in a whitelisted table, optionally filtered."""
        validate_table(table)
        where = where or WhereBuilder()
        value = await self.fetch_value(
            f"SELECT COUNT(*) AS count FROM {table} {where.clause}".rstrip(),
            where.params,
        )
        return int(value or 0)

    async def query_with_limit(
        self,
        sql: str,
        params: Optional[Sequence[Any]] = None,
        count_sql: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
        count_params: Optional[Sequence[Any]] = None,
    ) -> Page:
        """Run one page of ``sql`` together with its explicit count query.

        Args:
            sql: Data statement without LIMIT/OFFSET
            params: Parameters for ``sql``
            count_sql: Statement returning the total row count in its first column
            limit: Page size (1..MAX_QUERY_ROWS)
            offset: Rows to skip
            count_params: Parameters for ``count_sql`` (defaults to ``params``)

        Returns:
            Page with data, total and has_more
        """
        if not count_sql:
            raise ValidationError("query_with_limit requires an explicit count query", field="count_sql")
        if not 1 <= limit <= MAX_QUERY_ROWS:
            raise ValidationError(f"limit must be between 1 and {MAX_QUERY_ROWS}", field="limit")
        if offset < 0:
            raise ValidationError("offset must not be negative", field="offset")

        params = list(params or [])
        total = int(
            await self.fetch_value(count_sql, params if count_params is None else count_params) or 0
        )

        n = len(params)
        data = await self.query(
            f"{sql} LIMIT ${n + 1} OFFSET ${n + 2}",
            [*params, limit, offset],
        )
        return Page(
            data=data,
            total=total,
            limit=limit,
            offset=offset,
            has_more=offset + limit < total,
        )

    async def get_table_info(self, table: str) -> list[dict[str, Any]]:
        """Column metadata for a whitelisted table."""
        validate_table(table)
        return await self.query(
            """
            SELECT column_name, data_type, is_nullable, column_default,
                   character_maximum_length
            FROM information_schema.columns
            WHERE table_schema = current_schema() AND table_name = $1
            ORDER BY ordinal_position
            """,
            [table],
        )


__all__ = [
    "ConnectionManager",
    "MAX_QUERY_ROWS",
    "Page",
]
