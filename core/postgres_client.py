"""
PostgreSQL Client Wrapper

Thin asyncpg pool wrapper giving stores a consistent access pattern.

Usage:
    from core.postgres_client import get_postgres_client

    db = await get_postgres_client("order_ledger")
    async with db:
        rows = await db.query("SELECT * FROM orders.orders WHERE id = $1", [order_id])
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import asyncpg

from core.config import InfraConfig

logger = logging.getLogger(__name__)


class PostgresClientWrapper:
    """
    PostgreSQL client wrapper around an asyncpg connection pool.

    Rows are returned as plain dicts so stores never leak asyncpg.Record.
    """

    def __init__(
        self,
        service_name: str,
        infra: Optional[InfraConfig] = None,
        host: Optional[str] = None,
        port: Optional[int] = None,
        database: Optional[str] = None,
    ):
        infra = infra or InfraConfig.from_env()
        self.service_name = service_name
        self.host = host or infra.postgres_host
        self.port = port or infra.postgres_port
        self.database = database or infra.postgres_db
        self.username = infra.postgres_user
        self.password = infra.postgres_password
        self.min_size = infra.postgres_pool_min
        self.max_size = infra.postgres_pool_max
        self._pool: Optional[asyncpg.Pool] = None

        logger.info(f"PostgreSQL client initialized for {service_name}: {self.host}:{self.port}/{self.database}")

    async def connect(self):
        """Create the connection pool"""
        if self._pool is not None:
            return
        self._pool = await asyncpg.create_pool(
            host=self.host,
            port=self.port,
            database=self.database,
            user=self.username,
            password=self.password,
            min_size=self.min_size,
            max_size=self.max_size,
        )

    async def __aenter__(self):
        """Async context manager entry"""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit"""
        pass

    @property
    def pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("PostgreSQL pool not connected")
        return self._pool

    async def query(self, sql: str, params: Optional[List[Any]] = None) -> List[Dict[str, Any]]:
        """Execute query and return results"""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(sql, *(params or []))
        return [dict(row) for row in rows]

    async def query_row(self, sql: str, params: Optional[List[Any]] = None) -> Optional[Dict[str, Any]]:
        """Execute query and return single row"""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(sql, *(params or []))
        return dict(row) if row else None

    async def execute(self, sql: str, params: Optional[List[Any]] = None) -> str:
        """Execute SQL statement, returning the status tag"""
        async with self.pool.acquire() as conn:
            return await conn.execute(sql, *(params or []))

    @asynccontextmanager
    async def transaction(self):
        """Yield a connection inside a transaction"""
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                yield conn

    async def close(self):
        """Close the pool"""
        if self._pool is not None:
            await self._pool.close()
            self._pool = None


# Singleton instances per service
_postgres_clients: Dict[str, PostgresClientWrapper] = {}


async def get_postgres_client(service_name: str, infra: Optional[InfraConfig] = None, **kwargs) -> PostgresClientWrapper:
    """Get or create (and connect) the PostgreSQL client for a service"""
    global _postgres_clients

    if service_name not in _postgres_clients:
        client = PostgresClientWrapper(service_name=service_name, infra=infra, **kwargs)
        await client.connect()
        _postgres_clients[service_name] = client

    return _postgres_clients[service_name]
