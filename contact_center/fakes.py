"""In-memory `CaseStore` for tests and local demos."""

import asyncio
import itertools
from datetime import date, datetime, timezone
from typing import Any, Iterable, Sequence

from .assignment import choose_least_loaded
from .models import (
    STATUS_SORT_RANK,
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


def _now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryCaseStore:
    """
    Dictionary-backed store with the same selection and sorting rules as
    `PostgresCaseStore`. A single `asyncio.Lock` makes select-and-insert
    atomic.
    """

    def __init__(
        self,
        agents: Iterable[Agent] = (),
        *,
        closed_statuses: Sequence[str] = (CaseStatus.CLOSED.value,),
    ) -> None:
        self.agents: dict[int, Agent] = {agent.agent_id: agent for agent in agents}
        self.cases: dict[int, Case] = {}
        self.messages: dict[int, list[Message]] = {}
        self.satisfactions: list[Satisfaction] = []
        self.customers: dict[int, Customer] = {}
        self.orders: dict[int, Order] = {}
        self.order_items: dict[int, list[OrderItem]] = {}
        self.manuals: dict[int, Manual] = {}
        self._closed = frozenset(closed_statuses)
        self._case_ids = itertools.count(1)
        self._order_item_ids = itertools.count(1)
        self._lock = asyncio.Lock()

    # === Seeding helpers ===
    def add_agent(self, agent_id: int, name: str = "", is_online: bool = True) -> Agent:
        agent = Agent(agent_id=agent_id, name=name or f"agent-{agent_id}", is_online=is_online)
        self.agents[agent_id] = agent
        return agent

    def add_case(
        self,
        agent_id: int,
        status: str = CaseStatus.WAITING.value,
        customer_id: int = 1,
        **fields: Any,
    ) -> Case:
        case_id = next(self._case_ids)
        case = Case(
            case_id=case_id,
            customer_id=customer_id,
            agent_id=agent_id,
            title=fields.pop("title", f"case {case_id}"),
            category_id=fields.pop("category_id", 1),
            content=fields.pop("content", "seeded"),
            status=status,
            created_at=fields.pop("created_at", _now()),
            **fields,
        )
        self.cases[case_id] = case
        return case

    def add_message(self, case_id: int, speaker: str, content: str, occurred_at: datetime | None = None) -> None:
        self.messages.setdefault(case_id, []).append(
            Message(speaker=speaker, content=content, occurred_at=occurred_at or _now())
        )

    def add_customer(self, customer_id: int, name: str = "", **fields: Any) -> Customer:
        customer = Customer(customer_id=customer_id, name=name or f"customer-{customer_id}", **fields)
        self.customers[customer_id] = customer
        return customer

    def add_order(
        self,
        order_id: int,
        customer_id: int = 1,
        status: str = OrderStatus.PREPARING.value,
        total_amount: float = 0.0,
    ) -> Order:
        order = Order(
            order_id=order_id,
            customer_id=customer_id,
            status=status,
            total_amount=total_amount,
            ordered_at=_now(),
        )
        self.orders[order_id] = order
        self.order_items.setdefault(order_id, [])
        return order

    def add_manual(
        self,
        manual_id: int,
        title: str,
        edited_at: date | None = None,
        category_id: int | None = None,
        file_path: str | None = None,
    ) -> Manual:
        manual = Manual(
            manual_id=manual_id,
            title=title,
            category_id=category_id,
            edited_at=edited_at or _now().date(),
            file_path=file_path,
        )
        self.manuals[manual_id] = manual
        return manual

    # === CaseStore ===
    def _loads(self) -> dict[int, int]:
        loads = {agent_id: 0 for agent_id, agent in self.agents.items() if agent.is_online}
        for case in self.cases.values():
            if case.agent_id in loads and case.status not in self._closed:
                loads[case.agent_id] += 1
        return loads

    async def least_loaded_agent(self) -> int | None:
        return choose_least_loaded(self._loads())

    async def agent_loads(self) -> list[AgentLoad]:
        loads = self._loads()
        ordered = sorted(loads.items(), key=lambda item: (item[1], item[0]))
        return [
            AgentLoad(agent_id=agent_id, name=self.agents[agent_id].name, active_cases=count)
            for agent_id, count in ordered
        ]

    async def create_assigned_case(self, details: CaseCreate) -> Case | None:
        async with self._lock:
            agent_id = choose_least_loaded(self._loads())
            if agent_id is None:
                return None
            case = Case(
                case_id=next(self._case_ids),
                agent_id=agent_id,
                status=CaseStatus.WAITING.value,
                created_at=_now(),
                **details.model_dump(),
            )
            self.cases[case.case_id] = case
            return case

    async def count_cases(self) -> int:
        return len(self.cases)

    async def get_agent(self, agent_id: int) -> Agent | None:
        return self.agents.get(agent_id)

    async def update_agent(self, agent_id: int, changes: dict[str, Any]) -> Agent | None:
        async with self._lock:
            agent = self.agents.get(agent_id)
            if agent is None:
                return None
            updated = agent.model_copy(update=changes)
            self.agents[agent_id] = updated
            return updated

    async def list_cases(
        self,
        *,
        agent_id: int | None = None,
        customer_id: int | None = None,
        sort_by: str | None = None,
        order: str | None = None,
    ) -> list[Case]:
        if agent_id is not None:
            rows = [c for c in self.cases.values() if c.agent_id == agent_id]
        elif customer_id is not None:
            rows = [c for c in self.cases.values() if c.customer_id == customer_id]
        else:
            raise ValueError("agent_id or customer_id is required")

        descending = (order or "").lower() != "asc"
        if sort_by == "status":
            # Secondary key is always created_at DESC.
            rows.sort(key=lambda c: c.created_at, reverse=True)
            rows.sort(key=lambda c: STATUS_SORT_RANK.get(c.status, 4), reverse=descending)
            return rows

        if sort_by == "category":
            key = "category_id"
        elif sort_by == "satisfaction":
            key = "emotion_id"
        else:
            key = "created_at"
        present = [c for c in rows if getattr(c, key) is not None]
        missing = [c for c in rows if getattr(c, key) is None]
        present.sort(key=lambda c: getattr(c, key), reverse=descending)
        # PostgreSQL puts NULLs last for ASC and first for DESC.
        return missing + present if descending else present + missing

    async def update_memo(self, case_id: int, memo: str) -> MemoResult | None:
        case = self.cases.get(case_id)
        if case is None:
            return None
        self.cases[case_id] = case.model_copy(update={"memo": memo})
        return MemoResult(case_id=case_id, memo=memo)

    async def update_status(self, case_id: int, status: CaseStatus) -> StatusResult | None:
        case = self.cases.get(case_id)
        if case is None:
            return None
        closed_at = _now() if status is CaseStatus.CLOSED else case.closed_at
        self.cases[case_id] = case.model_copy(update={"status": status.value, "closed_at": closed_at})
        return StatusResult(case_id=case_id, status=status.value, closed_at=closed_at)

    async def add_satisfaction(self, case_id: int, score: int, comment: str | None) -> Satisfaction | None:
        async with self._lock:
            case = self.cases.get(case_id)
            if case is None:
                return None
            satisfaction = Satisfaction(case_id=case_id, score=score, comment=comment, created_at=_now())
            self.satisfactions.append(satisfaction)
            self.cases[case_id] = case.model_copy(update={"emotion_id": score})
            return satisfaction

    async def case_messages(self, case_id: int) -> list[Message]:
        return sorted(self.messages.get(case_id, []), key=lambda m: m.occurred_at)

    async def save_analysis(self, case_id: int, emotion: str | None, summary: str | None) -> bool:
        case = self.cases.get(case_id)
        if case is None:
            return False
        update = {}
        if emotion is not None:
            update["emotion"] = emotion
        if summary is not None:
            update["memo"] = summary
        self.cases[case_id] = case.model_copy(update=update)
        return True

    async def get_customer(self, customer_id: int) -> Customer | None:
        return self.customers.get(customer_id)

    async def get_order(self, order_id: int) -> Order | None:
        return self.orders.get(order_id)

    async def update_order_status(self, order_id: int, status: OrderStatus) -> OrderStatusResult | None:
        order = self.orders.get(order_id)
        if order is None:
            return None
        self.orders[order_id] = order.model_copy(update={"status": status.value})
        return OrderStatusResult(order_id=order_id, status=status.value)

    async def delete_order(self, order_id: int) -> bool:
        async with self._lock:
            if self.orders.pop(order_id, None) is None:
                return False
            self.order_items.pop(order_id, None)
            return True

    async def list_order_items(self, order_id: int) -> list[OrderItem] | None:
        if order_id not in self.orders:
            return None
        return sorted(self.order_items.get(order_id, []), key=lambda item: item.order_item_id)

    async def add_order_item(self, order_id: int, item: OrderItemAdd) -> OrderItem | None:
        async with self._lock:
            if order_id not in self.orders:
                return None
            items = self.order_items.setdefault(order_id, [])
            for index, existing in enumerate(items):
                if existing.product_id == item.product_id:
                    merged = existing.model_copy(
                        update={"quantity": existing.quantity + item.quantity, "unit_price": item.unit_price}
                    )
                    items[index] = merged
                    return merged
            added = OrderItem(order_item_id=next(self._order_item_ids), order_id=order_id, **item.model_dump())
            items.append(added)
            return added

    async def update_order_item_quantity(self, order_id: int, product_id: int, quantity: int) -> OrderItem | None:
        items = self.order_items.get(order_id, [])
        for index, existing in enumerate(items):
            if existing.product_id == product_id:
                items[index] = existing.model_copy(update={"quantity": quantity})
                return items[index]
        return None

    async def remove_order_item(self, order_id: int, product_id: int) -> bool:
        items = self.order_items.get(order_id, [])
        kept = [item for item in items if item.product_id != product_id]
        if len(kept) == len(items):
            return False
        self.order_items[order_id] = kept
        return True

    async def list_manuals(self, q: str | None, page: int, limit: int) -> tuple[list[Manual], int]:
        manuals = list(self.manuals.values())
        if q and q.strip():
            needle = q.strip().lower()
            manuals = [m for m in manuals if needle in m.title.lower()]
        manuals.sort(key=lambda m: (m.edited_at or date.min, m.manual_id), reverse=True)
        offset = (page - 1) * limit
        return manuals[offset:offset + limit], len(manuals)

    async def get_manual(self, manual_id: int) -> Manual | None:
        return self.manuals.get(manual_id)

    async def ping(self) -> bool:
        return True
