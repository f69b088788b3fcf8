"""
Case store
==========

Purpose:
- Define the `CaseStore` protocol consumed by the assignment service and the
  HTTP layer, and its PostgreSQL implementation on top of an asyncpg pool.
- Besides agents and cases, the store answers the back-office lookups:
  customers, orders and their items, and the manual library.

Dependencies:
- `asyncpg` for PostgreSQL access

Notes:
- Active load is always recomputed with an aggregate over `cases`; there is
  no per-agent counter to keep in sync.
- Case selection and insertion run in one transaction. The chosen agent row
  is locked `FOR SHARE` while `is_online` is re-checked, so an agent going
  offline concurrently either blocks until the insert commits or is skipped.
- With `serialized=True` a transaction-scoped advisory lock makes concurrent
  assignments strictly sequential (always the global least-loaded agent).
- Every connection checkout is bounded by `acquire_timeout`; statements are
  bounded by the pool's `command_timeout`. Both raise `asyncio.TimeoutError`.
"""

import logging
from decimal import Decimal
from typing import Any, Protocol, Sequence

import asyncpg

from .models import (
    Agent,
    AgentLoad,
    Case,
    CaseCreate,
    CaseStatus,
    Customer,
    Manual,
    MemoResult,
    Message,
    Order,
    OrderItem,
    OrderItemAdd,
    OrderStatus,
    OrderStatusResult,
    Satisfaction,
    StatusResult,
)

logger = logging.getLogger(__name__)

# Arbitrary constant key for pg_advisory_xact_lock.
ASSIGNMENT_LOCK_KEY = 0x43434153

AGENT_COLUMNS = "agent_id, name, is_online, phone, email"
ORDER_ITEM_COLUMNS = "order_item_id, order_id, product_id, quantity, unit_price"
MANUAL_COLUMNS = "manual_id, title, category_id, edited_at, file_path"

AGENT_LOAD_SQL = """
    SELECT a.agent_id, a.name, COUNT(c.case_id) AS active_cases
    FROM agents a
    LEFT JOIN cases c
        ON c.agent_id = a.agent_id AND c.status <> ALL($1::text[])
    WHERE a.is_online
    GROUP BY a.agent_id, a.name
    ORDER BY active_cases ASC, a.agent_id ASC
"""

LEAST_LOADED_AGENT_SQL = AGENT_LOAD_SQL + "    LIMIT 1\n"

LOCK_ONLINE_AGENT_SQL = """
    SELECT agent_id FROM agents
    WHERE agent_id = $1 AND is_online
    FOR SHARE
"""

INSERT_CASE_SQL = """
    INSERT INTO cases (customer_id, agent_id, title, category_id, content, order_id, status, created_at)
    VALUES ($1, $2, $3, $4, $5, $6, $7, NOW())
    RETURNING *
"""

UPSERT_ORDER_ITEM_SQL = f"""
    INSERT INTO order_items (order_id, product_id, quantity, unit_price)
    VALUES ($1, $2, $3, $4)
    ON CONFLICT (order_id, product_id) DO UPDATE SET
        quantity = order_items.quantity + EXCLUDED.quantity,
        unit_price = EXCLUDED.unit_price
    RETURNING {ORDER_ITEM_COLUMNS}
"""

UPDATABLE_AGENT_FIELDS = ("name", "is_online", "phone", "email")


class CaseStore(Protocol):
    """Storage operations needed by assignment, case management and the back-office lookups."""

    async def least_loaded_agent(self) -> int | None: ...

    async def agent_loads(self) -> list[AgentLoad]: ...

    async def create_assigned_case(self, details: CaseCreate) -> Case | None: ...

    async def count_cases(self) -> int: ...

    async def get_agent(self, agent_id: int) -> Agent | None: ...

    async def update_agent(self, agent_id: int, changes: dict[str, Any]) -> Agent | None: ...

    async def list_cases(
        self,
        *,
        agent_id: int | None = None,
        customer_id: int | None = None,
        sort_by: str | None = None,
        order: str | None = None,
    ) -> list[Case]: ...

    async def update_memo(self, case_id: int, memo: str) -> MemoResult | None: ...

    async def update_status(self, case_id: int, status: CaseStatus) -> StatusResult | None: ...

    async def add_satisfaction(self, case_id: int, score: int, comment: str | None) -> Satisfaction | None: ...

    async def case_messages(self, case_id: int) -> list[Message]: ...

    async def save_analysis(self, case_id: int, emotion: str | None, summary: str | None) -> bool: ...

    async def get_customer(self, customer_id: int) -> Customer | None: ...

    async def get_order(self, order_id: int) -> Order | None: ...

    async def update_order_status(self, order_id: int, status: OrderStatus) -> OrderStatusResult | None: ...

    async def delete_order(self, order_id: int) -> bool: ...

    async def list_order_items(self, order_id: int) -> list[OrderItem] | None: ...

    async def add_order_item(self, order_id: int, item: OrderItemAdd) -> OrderItem | None: ...

    async def update_order_item_quantity(self, order_id: int, product_id: int, quantity: int) -> OrderItem | None: ...

    async def remove_order_item(self, order_id: int, product_id: int) -> bool: ...

    async def list_manuals(self, q: str | None, page: int, limit: int) -> tuple[list[Manual], int]: ...

    async def get_manual(self, manual_id: int) -> Manual | None: ...

    async def ping(self) -> bool: ...


def order_by_clause(sort_by: str | None, order: str | None) -> str:
    """Build the ORDER BY for case listings from whitelisted sort keys; anything else sorts by creation time."""
    direction = "ASC" if (order or "").lower() == "asc" else "DESC"
    if sort_by == "category":
        return f"ORDER BY category_id {direction}"
    if sort_by == "satisfaction":
        return f"ORDER BY emotion_id {direction}"
    if sort_by == "status":
        return (
            "ORDER BY CASE status"
            " WHEN 'waiting' THEN 1"
            " WHEN 'chatting' THEN 2"
            " WHEN 'closed' THEN 3"
            f" ELSE 4 END {direction}, created_at DESC"
        )
    return f"ORDER BY created_at {direction}"


def like_pattern(q: str) -> str:
    """Substring pattern for `ILIKE ... ESCAPE '\\'` with the wildcards in `q` taken literally."""
    escaped = q.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _affected(status: str) -> int:
    # asyncpg returns the command tag, e.g. "UPDATE 1"
    return int(status.split()[-1])


class PostgresCaseStore:
    """
    `CaseStore` backed by PostgreSQL.

    Parameters:
    - pool: `asyncpg.Pool` created by `contact_center.db.create_pool`.
    - closed_statuses: statuses that do not count toward an agent's load.
    - serialized: take an advisory lock around select-and-insert.
    - max_attempts: selections to try when the chosen agent goes offline
      between the aggregate and the row lock.
    - acquire_timeout: seconds to wait for a free pooled connection;
      `None` waits indefinitely.
    """

    def __init__(
        self,
        pool: asyncpg.Pool,
        *,
        closed_statuses: Sequence[str] = (CaseStatus.CLOSED.value,),
        serialized: bool = False,
        max_attempts: int = 3,
        acquire_timeout: float | None = None,
    ) -> None:
        self._pool = pool
        self._closed = list(closed_statuses)
        self._serialized = serialized
        self._max_attempts = max(1, max_attempts)
        self._acquire_timeout = acquire_timeout

    def _acquire(self):
        return self._pool.acquire(timeout=self._acquire_timeout)

    # === Assignment ===
    async def least_loaded_agent(self) -> int | None:
        async with self._acquire() as conn:
            row = await conn.fetchrow(LEAST_LOADED_AGENT_SQL, self._closed)
        return row["agent_id"] if row else None

    async def agent_loads(self) -> list[AgentLoad]:
        async with self._acquire() as conn:
            rows = await conn.fetch(AGENT_LOAD_SQL, self._closed)
        return [AgentLoad(**dict(row)) for row in rows]

    async def create_assigned_case(self, details: CaseCreate) -> Case | None:
        async with self._acquire() as conn:
            async with conn.transaction():
                if self._serialized:
                    await conn.execute("SELECT pg_advisory_xact_lock($1)", ASSIGNMENT_LOCK_KEY)

                for attempt in range(1, self._max_attempts + 1):
                    row = await conn.fetchrow(LEAST_LOADED_AGENT_SQL, self._closed)
                    if row is None:
                        return None

                    agent_id = row["agent_id"]
                    if await conn.fetchval(LOCK_ONLINE_AGENT_SQL, agent_id) is None:
                        logger.info(
                            "Agent went offline during assignment; reselecting",
                            extra={"context": {"agent_id": agent_id, "attempt": attempt}},
                        )
                        continue

                    inserted = await conn.fetchrow(
                        INSERT_CASE_SQL,
                        details.customer_id,
                        agent_id,
                        details.title,
                        details.category_id,
                        details.content,
                        details.order_id,
                        CaseStatus.WAITING.value,
                    )
                    return Case.from_record(inserted)
        return None

    # === Agents and cases ===
    async def count_cases(self) -> int:
        async with self._acquire() as conn:
            return await conn.fetchval("SELECT COUNT(*) FROM cases")

    async def get_agent(self, agent_id: int) -> Agent | None:
        async with self._acquire() as conn:
            row = await conn.fetchrow(f"SELECT {AGENT_COLUMNS} FROM agents WHERE agent_id = $1", agent_id)
        return Agent.from_record(row) if row else None

    async def update_agent(self, agent_id: int, changes: dict[str, Any]) -> Agent | None:
        fields = [key for key in UPDATABLE_AGENT_FIELDS if key in changes]
        if not fields:
            return await self.get_agent(agent_id)

        assignments = ", ".join(f"{key} = ${index}" for index, key in enumerate(fields, start=1))
        values = [changes[key] for key in fields]
        query = (
            f"UPDATE agents SET {assignments} WHERE agent_id = ${len(fields) + 1} "
            f"RETURNING {AGENT_COLUMNS}"
        )
        async with self._acquire() as conn:
            row = await conn.fetchrow(query, *values, agent_id)
        return Agent.from_record(row) if row else None

    async def list_cases(
        self,
        *,
        agent_id: int | None = None,
        customer_id: int | None = None,
        sort_by: str | None = None,
        order: str | None = None,
    ) -> list[Case]:
        if agent_id is not None:
            where, value = "agent_id = $1", agent_id
        elif customer_id is not None:
            where, value = "customer_id = $1", customer_id
        else:
            raise ValueError("agent_id or customer_id is required")

        query = f"SELECT * FROM cases WHERE {where} {order_by_clause(sort_by, order)}"
        async with self._acquire() as conn:
            rows = await conn.fetch(query, value)
        return [Case.from_record(row) for row in rows]

    async def update_memo(self, case_id: int, memo: str) -> MemoResult | None:
        async with self._acquire() as conn:
            row = await conn.fetchrow(
                "UPDATE cases SET memo = $1 WHERE case_id = $2 RETURNING case_id, memo",
                memo,
                case_id,
            )
        return MemoResult(**dict(row)) if row else None

    async def update_status(self, case_id: int, status: CaseStatus) -> StatusResult | None:
        async with self._acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE cases
                SET status = $1,
                    closed_at = CASE WHEN $2 THEN NOW() ELSE closed_at END
                WHERE case_id = $3
                RETURNING case_id, status, closed_at
                """,
                status.value,
                status is CaseStatus.CLOSED,
                case_id,
            )
        return StatusResult(**dict(row)) if row else None

    async def add_satisfaction(self, case_id: int, score: int, comment: str | None) -> Satisfaction | None:
        async with self._acquire() as conn:
            async with conn.transaction():
                exists = await conn.fetchval("SELECT 1 FROM cases WHERE case_id = $1 FOR UPDATE", case_id)
                if exists is None:
                    return None
                row = await conn.fetchrow(
                    """
                    INSERT INTO satisfactions (case_id, score, comment, created_at)
                    VALUES ($1, $2, $3, NOW())
                    RETURNING case_id, score, comment, created_at
                    """,
                    case_id,
                    score,
                    comment,
                )
                await conn.execute("UPDATE cases SET emotion_id = $1 WHERE case_id = $2", score, case_id)
        return Satisfaction(**dict(row))

    async def case_messages(self, case_id: int) -> list[Message]:
        async with self._acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT speaker, content, occurred_at
                FROM messages
                WHERE case_id = $1
                ORDER BY occurred_at ASC, message_id ASC
                """,
                case_id,
            )
        return [Message(**dict(row)) for row in rows]

    async def save_analysis(self, case_id: int, emotion: str | None, summary: str | None) -> bool:
        async with self._acquire() as conn:
            status = await conn.execute(
                "UPDATE cases SET emotion = COALESCE($1, emotion), memo = COALESCE($2, memo) WHERE case_id = $3",
                emotion,
                summary,
                case_id,
            )
        return _affected(status) > 0

    # === Customers ===
    async def get_customer(self, customer_id: int) -> Customer | None:
        async with self._acquire() as conn:
            row = await conn.fetchrow(
                "SELECT customer_id, name, phone, email, created_at FROM customers WHERE customer_id = $1",
                customer_id,
            )
        return Customer.from_record(row) if row else None

    # === Orders ===
    async def get_order(self, order_id: int) -> Order | None:
        async with self._acquire() as conn:
            row = await conn.fetchrow(
                "SELECT order_id, customer_id, status, total_amount, ordered_at FROM orders WHERE order_id = $1",
                order_id,
            )
        return Order.from_record(row) if row else None

    async def update_order_status(self, order_id: int, status: OrderStatus) -> OrderStatusResult | None:
        async with self._acquire() as conn:
            row = await conn.fetchrow(
                "UPDATE orders SET status = $1 WHERE order_id = $2 RETURNING order_id, status",
                status.value,
                order_id,
            )
        return OrderStatusResult(**dict(row)) if row else None

    async def delete_order(self, order_id: int) -> bool:
        async with self._acquire() as conn:
            status = await conn.execute("DELETE FROM orders WHERE order_id = $1", order_id)
        return _affected(status) > 0

    async def list_order_items(self, order_id: int) -> list[OrderItem] | None:
        async with self._acquire() as conn:
            if await conn.fetchval("SELECT 1 FROM orders WHERE order_id = $1", order_id) is None:
                return None
            rows = await conn.fetch(
                f"SELECT {ORDER_ITEM_COLUMNS} FROM order_items WHERE order_id = $1 ORDER BY order_item_id ASC",
                order_id,
            )
        return [OrderItem.from_record(row) for row in rows]

    async def add_order_item(self, order_id: int, item: OrderItemAdd) -> OrderItem | None:
        async with self._acquire() as conn:
            async with conn.transaction():
                # Hold the order so a concurrent delete cannot orphan the item.
                if await conn.fetchval("SELECT 1 FROM orders WHERE order_id = $1 FOR SHARE", order_id) is None:
                    return None
                row = await conn.fetchrow(
                    UPSERT_ORDER_ITEM_SQL,
                    order_id,
                    item.product_id,
                    item.quantity,
                    Decimal(str(item.unit_price)),
                )
        return OrderItem.from_record(row)

    async def update_order_item_quantity(self, order_id: int, product_id: int, quantity: int) -> OrderItem | None:
        async with self._acquire() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE order_items SET quantity = $1
                WHERE order_id = $2 AND product_id = $3
                RETURNING {ORDER_ITEM_COLUMNS}
                """,
                quantity,
                order_id,
                product_id,
            )
        return OrderItem.from_record(row) if row else None

    async def remove_order_item(self, order_id: int, product_id: int) -> bool:
        async with self._acquire() as conn:
            status = await conn.execute(
                "DELETE FROM order_items WHERE order_id = $1 AND product_id = $2",
                order_id,
                product_id,
            )
        return _affected(status) > 0

    # === Manuals ===
    async def list_manuals(self, q: str | None, page: int, limit: int) -> tuple[list[Manual], int]:
        """Newest-edited first, optionally filtered by a case-insensitive title substring."""
        where, params = "", []
        if q and q.strip():
            where = "WHERE title ILIKE $1 ESCAPE '\\'"
            params.append(like_pattern(q.strip()))

        offset = (page - 1) * limit
        list_sql = (
            f"SELECT {MANUAL_COLUMNS} FROM manuals {where} "
            f"ORDER BY edited_at DESC, manual_id DESC "
            f"LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}"
        )
        async with self._acquire() as conn:
            rows = await conn.fetch(list_sql, *params, limit, offset)
            total = await conn.fetchval(f"SELECT COUNT(*) FROM manuals {where}", *params)
        return [Manual.from_record(row) for row in rows], total

    async def get_manual(self, manual_id: int) -> Manual | None:
        async with self._acquire() as conn:
            row = await conn.fetchrow(f"SELECT {MANUAL_COLUMNS} FROM manuals WHERE manual_id = $1", manual_id)
        return Manual.from_record(row) if row else None

    async def ping(self) -> bool:
        async with self._acquire() as conn:
            return await conn.fetchval("SELECT 1") == 1
