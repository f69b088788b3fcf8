"""
Database Seeder
===============

Purpose:
- Create the development tables and populate them with sample customers,
  agents, orders, manuals, cases and messages so assignment and analysis can be tried locally.

Dependencies & Requirements:
- `asyncpg` for PostgreSQL operations
- `python-dotenv` (through `contact_center.config`) for local env loading
- Environment variable: `DATABASE_URL`

Security Considerations:
- Sample data contains fake PII only; never point this at a production database.

Usage:
    set -a && source .env && set +a
    python scripts/seed_data.py
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import asyncpg

from contact_center.config import Settings
from contact_center.db import ensure_schema


CUSTOMERS = [
    {"customer_id": 1, "name": "Alice Smith", "phone": "010-1234-0001", "email": "alice@example.com"},
    {"customer_id": 2, "name": "Marcus Lee", "phone": "010-1234-0002", "email": "marcus@example.com"},
    {"customer_id": 3, "name": "Priya Nair", "phone": "010-1234-0003", "email": "priya@example.com"},
]

AGENTS = [
    {"agent_id": 1, "name": "Kim Jiwoo", "is_online": True, "phone": "010-1111-2222", "email": "jiwoo@example.com"},
    {"agent_id": 2, "name": "Park Minseo", "is_online": True, "phone": "010-1111-3333", "email": "minseo@example.com"},
    {"agent_id": 3, "name": "Lee Dohyun", "is_online": False, "phone": "010-1111-4444", "email": "dohyun@example.com"},
]

CASES = [
    {"case_id": 1, "customer_id": 1, "agent_id": 1, "title": "Parcel not delivered", "category_id": 1,
     "content": "My order has not arrived yet.", "order_id": 1001, "status": "chatting"},
    {"case_id": 2, "customer_id": 2, "agent_id": 1, "title": "Refund status", "category_id": 2,
     "content": "When will my refund arrive?", "order_id": 2001, "status": "waiting"},
    {"case_id": 3, "customer_id": 3, "agent_id": 2, "title": "Wrong size", "category_id": 3,
     "content": "I received the wrong size.", "order_id": 3001, "status": "closed"},
]

ORDERS = [
    {"order_id": 1001, "customer_id": 1, "status": "shipping", "total_amount": Decimal("59.80")},
    {"order_id": 2001, "customer_id": 2, "status": "delivered", "total_amount": Decimal("24.00")},
    {"order_id": 3001, "customer_id": 3, "status": "delivered", "total_amount": Decimal("45.50")},
]

ORDER_ITEMS = [
    (1001, 7, 2, Decimal("29.90")),
    (2001, 3, 1, Decimal("24.00")),
    (3001, 12, 1, Decimal("45.50")),
]

MANUALS = [
    {"manual_id": 1, "title": "Delivery delay handling", "category_id": 1, "file_path": "manuals/delivery-delay.pdf"},
    {"manual_id": 2, "title": "Refund and return policy", "category_id": 2, "file_path": "manuals/refunds.pdf"},
    {"manual_id": 3, "title": "Size exchange procedure", "category_id": 3, "file_path": "manuals/exchange.pdf"},
]

MESSAGES = [
    (1, "customer", "Hi, my parcel was due three days ago and it still has not arrived."),
    (1, "agent", "I'm sorry for the delay. Let me check with the carrier for you."),
    (1, "customer", "This is the second time this happens, I'm quite frustrated."),
    (1, "agent", "I understand. The carrier confirms delivery tomorrow before noon."),
]


async def seed_postgres(conn: asyncpg.Connection) -> None:
    """
    Create tables and upsert the sample rows.

    Raises:
    - Propagates database errors if the schema or data cannot be written.
    """
    await ensure_schema(conn)

    async with conn.transaction():
        # === Upsert Customers ===
        for customer in CUSTOMERS:
            await conn.execute(
                """
                INSERT INTO customers (customer_id, name, phone, email)
                VALUES ($1, $2, $3, $4)
                ON CONFLICT (customer_id) DO UPDATE SET
                    name = EXCLUDED.name,
                    phone = EXCLUDED.phone,
                    email = EXCLUDED.email;
                """,
                customer["customer_id"],
                customer["name"],
                customer["phone"],
                customer["email"],
            )

        # === Upsert Agents ===
        for agent in AGENTS:
            await conn.execute(
                """
                INSERT INTO agents (agent_id, name, is_online, phone, email)
                VALUES ($1, $2, $3, $4, $5)
                ON CONFLICT (agent_id) DO UPDATE SET
                    name = EXCLUDED.name,
                    is_online = EXCLUDED.is_online,
                    phone = EXCLUDED.phone,
                    email = EXCLUDED.email;
                """,
                agent["agent_id"],
                agent["name"],
                agent["is_online"],
                agent["phone"],
                agent["email"],
            )

        # === Upsert Cases ===
        now = datetime.now(timezone.utc)
        for offset, case in enumerate(CASES):
            created_at = now - timedelta(hours=len(CASES) - offset)
            await conn.execute(
                """
                INSERT INTO cases (case_id, customer_id, agent_id, title, category_id, content,
                                   order_id, status, created_at, closed_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
                ON CONFLICT (case_id) DO UPDATE SET
                    status = EXCLUDED.status,
                    closed_at = EXCLUDED.closed_at;
                """,
                case["case_id"],
                case["customer_id"],
                case["agent_id"],
                case["title"],
                case["category_id"],
                case["content"],
                case["order_id"],
                case["status"],
                created_at,
                now if case["status"] == "closed" else None,
            )

        # === Upsert Orders and Items ===
        for order in ORDERS:
            await conn.execute(
                """
                INSERT INTO orders (order_id, customer_id, status, total_amount)
                VALUES ($1, $2, $3, $4)
                ON CONFLICT (order_id) DO UPDATE SET
                    status = EXCLUDED.status,
                    total_amount = EXCLUDED.total_amount;
                """,
                order["order_id"],
                order["customer_id"],
                order["status"],
                order["total_amount"],
            )
        for order_id, product_id, quantity, unit_price in ORDER_ITEMS:
            await conn.execute(
                """
                INSERT INTO order_items (order_id, product_id, quantity, unit_price)
                VALUES ($1, $2, $3, $4)
                ON CONFLICT (order_id, product_id) DO UPDATE SET
                    quantity = EXCLUDED.quantity,
                    unit_price = EXCLUDED.unit_price;
                """,
                order_id,
                product_id,
                quantity,
                unit_price,
            )

        # === Upsert Manuals ===
        for offset, manual in enumerate(MANUALS):
            await conn.execute(
                """
                INSERT INTO manuals (manual_id, title, category_id, edited_at, file_path)
                VALUES ($1, $2, $3, $4, $5)
                ON CONFLICT (manual_id) DO UPDATE SET
                    title = EXCLUDED.title,
                    category_id = EXCLUDED.category_id,
                    edited_at = EXCLUDED.edited_at,
                    file_path = EXCLUDED.file_path;
                """,
                manual["manual_id"],
                manual["title"],
                manual["category_id"],
                (now - timedelta(days=30 * offset)).date(),
                manual["file_path"],
            )

        # === Messages (replaced on every run) ===
        case_ids = sorted({case_id for case_id, _, _ in MESSAGES})
        await conn.execute("DELETE FROM messages WHERE case_id = ANY($1::int[])", case_ids)
        for index, (case_id, speaker, content) in enumerate(MESSAGES):
            await conn.execute(
                "INSERT INTO messages (case_id, speaker, content, occurred_at) VALUES ($1, $2, $3, $4)",
                case_id,
                speaker,
                content,
                now - timedelta(minutes=len(MESSAGES) - index),
            )

        # Explicit ids above bypass the sequences; move them past the seeded rows.
        for table, column in (
            ("customers", "customer_id"),
            ("agents", "agent_id"),
            ("cases", "case_id"),
            ("orders", "order_id"),
            ("manuals", "manual_id"),
        ):
            await conn.execute(
                f"SELECT setval(pg_get_serial_sequence('{table}', '{column}'), "
                f"(SELECT COALESCE(MAX({column}), 1) FROM {table}))"
            )


async def main() -> None:
    """Entrypoint that seeds the database configured by `DATABASE_URL`."""
    settings = Settings()
    conn = await asyncpg.connect(settings.database_url)
    try:
        await seed_postgres(conn)
    finally:
        await conn.close()
    print("✅ Seed complete: customers, agents, orders, manuals, cases and messages populated.")


if __name__ == "__main__":
    asyncio.run(main())
