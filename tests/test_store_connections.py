"""`PostgresCaseStore` connection handling and re-selection, driven through a scripted pool."""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import pytest

from contact_center.assignment import AssignmentService
from contact_center.errors import InternalError, NoCapacityError
from contact_center.models import CaseCreate
from contact_center.store import (
    INSERT_CASE_SQL,
    LEAST_LOADED_AGENT_SQL,
    LOCK_ONLINE_AGENT_SQL,
    PostgresCaseStore,
    like_pattern,
    order_by_clause,
)

DETAILS = CaseCreate(customer_id=1, title="Late parcel", category_id=2, content="Still waiting.")


class ScriptedConnection:
    """
    Answers the assignment queries from a script.

    `selections` are the agent ids the aggregate returns, one per query;
    `online` are the agents whose row lock finds them still online.
    """

    def __init__(self, selections, online):
        self.selections = list(selections)
        self.online = set(online)
        self.locked = []
        self.inserted = []

    @asynccontextmanager
    async def transaction(self):
        yield

    async def execute(self, query, *args):
        return "SELECT 1"

    async def fetchrow(self, query, *args):
        if query == LEAST_LOADED_AGENT_SQL:
            return {"agent_id": self.selections.pop(0)} if self.selections else None
        if query == INSERT_CASE_SQL:
            customer_id, agent_id, title, category_id, content, order_id, status = args
            self.inserted.append(agent_id)
            return {
                "case_id": len(self.inserted),
                "customer_id": customer_id,
                "agent_id": agent_id,
                "title": title,
                "category_id": category_id,
                "content": content,
                "order_id": order_id,
                "status": status,
                "created_at": datetime.now(timezone.utc),
            }
        raise AssertionError(f"unexpected query: {query}")

    async def fetchval(self, query, *args):
        assert query == LOCK_ONLINE_AGENT_SQL
        agent_id = args[0]
        self.locked.append(agent_id)
        return agent_id if agent_id in self.online else None


class ScriptedPool:
    """`asyncpg.Pool` stand-in; with no connection every checkout waits for a free one."""

    def __init__(self, conn=None):
        self.conn = conn
        self.timeouts = []

    @asynccontextmanager
    async def acquire(self, timeout=None):
        self.timeouts.append(timeout)
        if self.conn is None:
            await asyncio.sleep(3600 if timeout is None else timeout)
            raise asyncio.TimeoutError()
        yield self.conn


# === Pool checkout ===

async def test_exhausted_pool_surfaces_as_internal_error():
    pool = ScriptedPool()
    service = AssignmentService(PostgresCaseStore(pool, acquire_timeout=0.05))

    with pytest.raises(InternalError):
        await asyncio.wait_for(service.create_case_with_assignment(DETAILS), 2)

    assert pool.timeouts == [0.05]


async def test_every_checkout_carries_the_acquire_timeout():
    pool = ScriptedPool(ScriptedConnection(selections=[1, 1], online=[1]))
    store = PostgresCaseStore(pool, acquire_timeout=1.5)

    await store.create_assigned_case(DETAILS)
    await store.least_loaded_agent()

    assert pool.timeouts == [1.5, 1.5]


# === Agent going offline between selection and lock ===

async def test_offline_agent_is_skipped_and_next_selection_wins():
    conn = ScriptedConnection(selections=[1, 2], online=[2])
    store = PostgresCaseStore(ScriptedPool(conn))

    case = await AssignmentService(store).create_case_with_assignment(DETAILS)

    assert case.agent_id == 2
    assert conn.locked == [1, 2]
    assert conn.inserted == [2]


async def test_running_out_of_attempts_is_no_capacity():
    conn = ScriptedConnection(selections=[1, 1, 1, 1], online=[])
    store = PostgresCaseStore(ScriptedPool(conn), max_attempts=3)

    with pytest.raises(NoCapacityError):
        await AssignmentService(store).create_case_with_assignment(DETAILS)

    assert conn.locked == [1, 1, 1]
    assert conn.inserted == []


async def test_no_selection_returns_none_without_locking():
    conn = ScriptedConnection(selections=[], online=[1])

    assert await PostgresCaseStore(ScriptedPool(conn)).create_assigned_case(DETAILS) is None
    assert conn.locked == []


# === SQL helpers ===

def test_unknown_sort_key_orders_by_created_at():
    assert order_by_clause("agent", "asc") == "ORDER BY created_at ASC"
    assert order_by_clause(None, None) == "ORDER BY created_at DESC"


def test_like_pattern_escapes_wildcards():
    assert like_pattern("100%_off") == "%100\\%\\_off%"
