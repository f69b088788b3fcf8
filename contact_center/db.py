"""
PostgreSQL connection helpers
=============================

Purpose:
- Create the asyncpg pool used by `PostgresCaseStore` and hold the DDL of the
  development tables (used by `scripts/seed_data.py` and integration tests).

Dependencies:
- `asyncpg` for PostgreSQL access
- Environment: `DATABASE_URL`, `DB_POOL_MIN_SIZE`, `DB_POOL_MAX_SIZE`, `DB_COMMAND_TIMEOUT`

Performance Considerations:
- `command_timeout` applies to every statement issued through the pool; a
  timed-out statement raises `asyncio.TimeoutError`.
- Connection checkout is not covered by `command_timeout`; `PostgresCaseStore`
  passes its own `acquire_timeout` to `Pool.acquire`.
"""

import asyncpg

from .config import Settings

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS customers (
        customer_id SERIAL PRIMARY KEY,
        name TEXT NOT NULL,
        phone TEXT,
        email TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS agents (
        agent_id SERIAL PRIMARY KEY,
        name TEXT NOT NULL,
        is_online BOOLEAN NOT NULL DEFAULT FALSE,
        phone TEXT,
        email TEXT
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS cases (
        case_id SERIAL PRIMARY KEY,
        customer_id INTEGER NOT NULL REFERENCES customers(customer_id),
        agent_id INTEGER NOT NULL REFERENCES agents(agent_id),
        title TEXT NOT NULL,
        category_id INTEGER NOT NULL,
        content TEXT NOT NULL,
        order_id INTEGER,
        status TEXT NOT NULL DEFAULT 'waiting',
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        closed_at TIMESTAMPTZ,
        memo TEXT,
        emotion_id INTEGER,
        emotion TEXT
    );
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_cases_agent_status
        ON cases (agent_id, status);
    """,
    """
    CREATE TABLE IF NOT EXISTS messages (
        message_id SERIAL PRIMARY KEY,
        case_id INTEGER NOT NULL REFERENCES cases(case_id) ON DELETE CASCADE,
        speaker TEXT,
        content TEXT NOT NULL,
        occurred_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS satisfactions (
        satisfaction_id SERIAL PRIMARY KEY,
        case_id INTEGER NOT NULL REFERENCES cases(case_id) ON DELETE CASCADE,
        score INTEGER NOT NULL CHECK (score BETWEEN 1 AND 5),
        comment TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS orders (
        order_id SERIAL PRIMARY KEY,
        customer_id INTEGER NOT NULL REFERENCES customers(customer_id),
        status TEXT NOT NULL DEFAULT 'preparing',
        total_amount NUMERIC(12, 2) NOT NULL DEFAULT 0,
        ordered_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS order_items (
        order_item_id SERIAL PRIMARY KEY,
        order_id INTEGER NOT NULL REFERENCES orders(order_id) ON DELETE CASCADE,
        product_id INTEGER NOT NULL,
        quantity INTEGER NOT NULL CHECK (quantity > 0),
        unit_price NUMERIC(12, 2) NOT NULL CHECK (unit_price >= 0),
        UNIQUE (order_id, product_id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS manuals (
        manual_id SERIAL PRIMARY KEY,
        title TEXT NOT NULL,
        category_id INTEGER,
        edited_at DATE NOT NULL DEFAULT CURRENT_DATE,
        file_path TEXT
    );
    """,
)


async def create_pool(settings: Settings) -> asyncpg.Pool:
    """Open the shared connection pool with the configured statement timeout."""
    return await asyncpg.create_pool(
        settings.database_url,
        min_size=settings.db_pool_min_size,
        max_size=settings.db_pool_max_size,
        command_timeout=settings.db_command_timeout,
    )


async def ensure_schema(conn: asyncpg.Connection) -> None:
    """Create the development tables when they do not exist yet."""
    for statement in SCHEMA_STATEMENTS:
        await conn.execute(statement)
