"""
Order Stores

asyncpg-backed implementations of the order, line item, adjustment, note and
order number stores. Each store owns one table in the ``orders`` schema and
speaks plain field dicts; mapping rows back into records happens here.
"""

import json
import logging
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from core.postgres_client import PostgresClientWrapper

from .models import AdjustmentRecord, LineItemRecord, OrderNote, OrderRecord

logger = logging.getLogger(__name__)


ORDER_COLUMNS = (
    "status", "mode", "currency", "customer_id", "user_id", "email", "gateway",
    "transaction_id", "payment_key", "ip", "order_number", "parent_id", "tax_rate",
    "subtotal", "tax", "discount", "total", "date_created", "date_completed", "meta",
)

LINE_ITEM_COLUMNS = (
    "order_id", "product_id", "product_name", "price_id", "cart_index", "quantity",
    "amount", "subtotal", "discount", "tax", "total",
)

ADJUSTMENT_COLUMNS = (
    "order_id", "object_id", "object_type", "type", "description", "amount", "meta",
)

JSON_COLUMNS = frozenset({"meta"})


def _schema_sql(schema: str, sequence_start: int) -> List[str]:
    return [
        f'CREATE SCHEMA IF NOT EXISTS "{schema}"',
        f'''
        CREATE TABLE IF NOT EXISTS "{schema}".orders (
            order_id VARCHAR(64) PRIMARY KEY,
            status VARCHAR(32) NOT NULL,
            mode VARCHAR(16) NOT NULL DEFAULT 'live',
            currency VARCHAR(8) NOT NULL DEFAULT 'USD',
            customer_id VARCHAR(64),
            user_id VARCHAR(64),
            email VARCHAR(255) NOT NULL DEFAULT '',
            gateway VARCHAR(64) NOT NULL DEFAULT '',
            transaction_id VARCHAR(128),
            payment_key VARCHAR(64) NOT NULL DEFAULT '',
            ip VARCHAR(64) NOT NULL DEFAULT '',
            order_number VARCHAR(64),
            parent_id VARCHAR(64),
            tax_rate NUMERIC(10, 6) NOT NULL DEFAULT 0,
            subtotal NUMERIC(18, 6) NOT NULL DEFAULT 0,
            tax NUMERIC(18, 6) NOT NULL DEFAULT 0,
            discount NUMERIC(18, 6) NOT NULL DEFAULT 0,
            total NUMERIC(18, 6) NOT NULL DEFAULT 0,
            date_created TIMESTAMP NOT NULL DEFAULT (NOW() AT TIME ZONE 'utc'),
            date_completed TIMESTAMP,
            meta JSONB NOT NULL DEFAULT '{{}}'::jsonb
        )
        ''',
        f'''
        CREATE TABLE IF NOT EXISTS "{schema}".order_items (
            item_id VARCHAR(64) PRIMARY KEY,
            order_id VARCHAR(64) NOT NULL,
            product_id VARCHAR(64) NOT NULL,
            product_name VARCHAR(255) NOT NULL DEFAULT '',
            price_id INTEGER,
            cart_index INTEGER NOT NULL,
            quantity INTEGER NOT NULL DEFAULT 1,
            amount NUMERIC(18, 6) NOT NULL DEFAULT 0,
            subtotal NUMERIC(18, 6) NOT NULL DEFAULT 0,
            discount NUMERIC(18, 6) NOT NULL DEFAULT 0,
            tax NUMERIC(18, 6) NOT NULL DEFAULT 0,
            total NUMERIC(18, 6) NOT NULL DEFAULT 0
        )
        ''',
        f'CREATE INDEX IF NOT EXISTS idx_order_items_order ON "{schema}".order_items (order_id)',
        f'''
        CREATE TABLE IF NOT EXISTS "{schema}".order_adjustments (
            adjustment_id VARCHAR(64) PRIMARY KEY,
            order_id VARCHAR(64) NOT NULL,
            object_id VARCHAR(64) NOT NULL,
            object_type VARCHAR(32) NOT NULL DEFAULT 'order',
            type VARCHAR(32) NOT NULL,
            description VARCHAR(255) NOT NULL DEFAULT '',
            amount NUMERIC(18, 6) NOT NULL DEFAULT 0,
            meta JSONB NOT NULL DEFAULT '{{}}'::jsonb
        )
        ''',
        f'CREATE INDEX IF NOT EXISTS idx_order_adjustments_order ON "{schema}".order_adjustments (order_id)',
        f'''
        CREATE TABLE IF NOT EXISTS "{schema}".order_notes (
            note_id VARCHAR(64) PRIMARY KEY,
            order_id VARCHAR(64) NOT NULL,
            content TEXT NOT NULL,
            created_at TIMESTAMP NOT NULL DEFAULT (NOW() AT TIME ZONE 'utc')
        )
        ''',
        f'CREATE SEQUENCE IF NOT EXISTS "{schema}".order_number_seq START WITH {int(sequence_start)}',
    ]


async def ensure_schema(db: PostgresClientWrapper, schema: str = "orders", sequence_start: int = 1):
    """Create the order tables if they do not exist yet"""
    async with db.transaction() as conn:
        for statement in _schema_sql(schema, sequence_start):
            await conn.execute(statement)
    logger.info(f"Order ledger schema {schema} ready")


def _affected(status: Optional[str]) -> int:
    """Row count from an asyncpg status tag such as 'UPDATE 1'"""
    if not status:
        return 0
    try:
        return int(status.rsplit(" ", 1)[-1])
    except ValueError:
        return 0


def _encode(column: str, value: Any) -> Any:
    if column in JSON_COLUMNS:
        return json.dumps(value or {}, default=str)
    if isinstance(value, Enum):
        return value.value
    return value


def _decode_json(value: Any) -> Dict[str, Any]:
    if isinstance(value, str):
        return json.loads(value)
    if isinstance(value, dict):
        return value
    return {}


class _TableStore:
    """Shared insert/update/delete over one table with a text primary key"""

    table: str = None
    key: str = None
    columns: Iterable[str] = ()
    id_prefix: str = None

    def __init__(self, db: PostgresClientWrapper, schema: str = "orders"):
        self.db = db
        self.schema = schema

    @property
    def qualified(self) -> str:
        return f'"{self.schema}".{self.table}'

    def _placeholder(self, column: str, position: int) -> str:
        return f"${position}::jsonb" if column in JSON_COLUMNS else f"${position}"

    def _clean(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        unknown = set(fields) - set(self.columns)
        if unknown:
            raise ValueError(f"Unknown {self.table} columns: {sorted(unknown)}")
        return fields

    async def _insert(self, fields: Dict[str, Any]) -> str:
        fields = self._clean(dict(fields))
        new_id = f"{self.id_prefix}_{uuid.uuid4().hex[:16]}"
        columns = [self.key] + list(fields)
        values = [new_id] + [_encode(column, fields[column]) for column in fields]
        placeholders = [self._placeholder(column, i + 1) for i, column in enumerate(columns)]

        query = f'''
            INSERT INTO {self.qualified} ({", ".join(columns)})
            VALUES ({", ".join(placeholders)})
        '''
        async with self.db:
            await self.db.execute(query, values)
        return new_id

    async def _update(self, row_id: str, fields: Dict[str, Any]) -> bool:
        fields = self._clean(dict(fields))
        if not fields:
            return True

        set_clauses = []
        params = []
        for column, value in fields.items():
            params.append(_encode(column, value))
            set_clauses.append(f"{column} = {self._placeholder(column, len(params))}")
        params.append(row_id)

        query = f'''
            UPDATE {self.qualified}
            SET {", ".join(set_clauses)}
            WHERE {self.key} = ${len(params)}
        '''
        async with self.db:
            status = await self.db.execute(query, params)
        return _affected(status) > 0

    async def _delete(self, row_id: str) -> bool:
        query = f"DELETE FROM {self.qualified} WHERE {self.key} = $1"
        async with self.db:
            status = await self.db.execute(query, [row_id])
        return _affected(status) > 0


class PostgresOrderStore(_TableStore):
    """Order rows"""

    table = "orders"
    key = "order_id"
    columns = ORDER_COLUMNS
    id_prefix = "order"

    async def get(self, order_id: str) -> Optional[OrderRecord]:
        query = f"SELECT * FROM {self.qualified} WHERE order_id = $1"
        async with self.db:
            row = await self.db.query_row(query, [order_id])
        return self._row_to_record(row) if row else None

    async def insert(self, fields: Dict[str, Any]) -> str:
        fields = {k: v for k, v in fields.items() if not (k == "date_created" and v is None)}
        order_id = await self._insert(fields)
        logger.debug(f"Inserted order row {order_id}")
        return order_id

    async def update(self, order_id: str, fields: Dict[str, Any]) -> bool:
        return await self._update(order_id, fields)

    async def delete(self, order_id: str) -> bool:
        return await self._delete(order_id)

    def _row_to_record(self, row: Dict[str, Any]) -> OrderRecord:
        data = dict(row)
        data["meta"] = _decode_json(data.get("meta"))
        return OrderRecord(**{k: v for k, v in data.items() if v is not None})


class PostgresLineItemStore(_TableStore):
    """Order line item rows"""

    table = "order_items"
    key = "item_id"
    columns = LINE_ITEM_COLUMNS
    id_prefix = "item"

    async def list(self, order_id: str) -> List[LineItemRecord]:
        query = f"SELECT * FROM {self.qualified} WHERE order_id = $1 ORDER BY cart_index"
        async with self.db:
            rows = await self.db.query(query, [order_id])
        return [LineItemRecord(**{k: v for k, v in row.items() if v is not None}) for row in rows]

    async def insert(self, fields: Dict[str, Any]) -> str:
        return await self._insert(fields)

    async def update(self, item_id: str, fields: Dict[str, Any]) -> bool:
        return await self._update(item_id, fields)

    async def delete(self, item_id: str) -> bool:
        return await self._delete(item_id)


class PostgresAdjustmentStore(_TableStore):
    """Fee and discount adjustments attached to orders or their items"""

    table = "order_adjustments"
    key = "adjustment_id"
    columns = ADJUSTMENT_COLUMNS
    id_prefix = "adj"

    async def list(self, filters: Dict[str, Any]) -> List[AdjustmentRecord]:
        conditions = []
        params = []
        for column, value in filters.items():
            if column not in ADJUSTMENT_COLUMNS or column in JSON_COLUMNS:
                raise ValueError(f"Cannot filter adjustments by {column}")
            params.append(value)
            conditions.append(f"{column} = ${len(params)}")

        where_clause = " AND ".join(conditions) if conditions else "TRUE"
        query = f"SELECT * FROM {self.qualified} WHERE {where_clause} ORDER BY adjustment_id"
        async with self.db:
            rows = await self.db.query(query, params)

        records = []
        for row in rows:
            data = dict(row)
            data["meta"] = _decode_json(data.get("meta"))
            records.append(AdjustmentRecord(**data))
        return records

    async def insert(self, fields: Dict[str, Any]) -> str:
        return await self._insert(fields)

    async def update(self, adjustment_id: str, fields: Dict[str, Any]) -> bool:
        return await self._update(adjustment_id, fields)

    async def delete(self, adjustment_id: str) -> bool:
        return await self._delete(adjustment_id)


class PostgresNoteStore:
    """Free-text notes on orders"""

    def __init__(self, db: PostgresClientWrapper, schema: str = "orders"):
        self.db = db
        self.schema = schema

    async def add(self, order_id: str, content: str) -> OrderNote:
        note = OrderNote(
            note_id=f"note_{uuid.uuid4().hex[:16]}",
            order_id=order_id,
            content=content,
            created_at=datetime.utcnow(),
        )
        query = f'''
            INSERT INTO "{self.schema}".order_notes (note_id, order_id, content, created_at)
            VALUES ($1, $2, $3, $4)
        '''
        async with self.db:
            await self.db.execute(query, [note.note_id, note.order_id, note.content, note.created_at])
        return note

    async def list(self, order_id: str) -> List[OrderNote]:
        query = f'''
            SELECT * FROM "{self.schema}".order_notes
            WHERE order_id = $1
            ORDER BY created_at
        '''
        async with self.db:
            rows = await self.db.query(query, [order_id])
        return [OrderNote(**row) for row in rows]


class PostgresOrderNumberSequence:
    """Sequential order numbers backed by a Postgres sequence"""

    def __init__(self, db: PostgresClientWrapper, schema: str = "orders"):
        self.db = db
        self.schema = schema

    async def next_number(self) -> int:
        async with self.db:
            row = await self.db.query_row(f"SELECT nextval('\"{self.schema}\".order_number_seq') AS number")
        return int(row["number"])
