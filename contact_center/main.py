"""
FastAPI Application Entrypoint
==============================

Purpose:
- Exposes the contact center back office over HTTP: case creation with
  least-connections assignment, case management, agent status, customer,
  order and manual lookups, and the chatbot endpoints.

Dependencies:
- `fastapi` for the web framework
- `asyncpg` pool via `contact_center.db` (opened in the lifespan)
- Local services (`AssignmentService`, `ContactCenterAssistant`)
- Environment: see `contact_center.config.Settings`

Usage:
    uvicorn contact_center.main:app --reload
"""

from contextlib import asynccontextmanager
from typing import Any

from fastapi import Body, Depends, FastAPI, Query, Request

from .assignment import AssignmentService
from .assistant import ContactCenterAssistant
from .config import Settings, settings as default_settings
from .db import create_pool
from .errors import NotFoundError, install_error_handlers
from .logs import configure_logging
from .memory import ChatMemory
from .models import (
    Agent,
    AgentLoad,
    AgentUpdate,
    Case,
    CaseAnalysis,
    ChatReply,
    ChatRequest,
    Customer,
    Manual,
    ManualPage,
    MemoResult,
    MemoUpdate,
    Order,
    OrderDeleted,
    OrderItem,
    OrderItemAdd,
    OrderItemQuantity,
    OrderItemRemove,
    OrderItemRemoved,
    OrderStatusResult,
    OrderStatusUpdate,
    PageMeta,
    Satisfaction,
    SatisfactionCreate,
    StatusResult,
    StatusUpdate,
)
from .store import CaseStore, PostgresCaseStore

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def build_assistant(settings: Settings) -> ContactCenterAssistant:
    """Instantiate the assistant with env-derived credentials and Redis memory."""
    return ContactCenterAssistant(
        api_key=settings.openai_api_key,
        model_name=settings.agent_model,
        base_url=settings.openai_base_url,
        memory=ChatMemory.from_url(settings.redis_url),
    )


def get_store(request: Request) -> CaseStore:
    return request.app.state.store


def get_assignment_service(store: CaseStore = Depends(get_store)) -> AssignmentService:
    return AssignmentService(store)


def get_assistant(request: Request) -> ContactCenterAssistant:
    return request.app.state.assistant


def create_app(
    store: CaseStore | None = None,
    assistant: ContactCenterAssistant | None = None,
    settings: Settings | None = None,
) -> FastAPI:
    """
    Build the application.

    Parameters:
    - store: `CaseStore | None` injected store; when omitted, the lifespan opens
      an asyncpg pool from `DATABASE_URL` and closes it on shutdown.
    - assistant: `ContactCenterAssistant | None` defaults to an env-configured one.
    - settings: `Settings | None` defaults to the module-level settings.
    """
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.service_name, settings.log_level, settings.log_json)
        pool = None
        if app.state.store is None:
            pool = await create_pool(settings)
            app.state.store = PostgresCaseStore(
                pool,
                closed_statuses=settings.closed_case_statuses,
                serialized=settings.assignment_serialized,
                max_attempts=settings.assignment_max_attempts,
                acquire_timeout=settings.db_command_timeout,
            )
        try:
            yield
        finally:
            if pool is not None:
                await pool.close()

    app = FastAPI(title="Contact Center Back Office", version="0.1.0", lifespan=lifespan)
    app.state.store = store
    app.state.assistant = assistant or build_assistant(settings)
    install_error_handlers(app)

    # === Health ===
    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"status": "healthy", "service": settings.service_name}

    @app.get("/ready")
    async def ready(store: CaseStore = Depends(get_store)) -> dict[str, Any]:
        try:
            ok = await store.ping()
        except Exception:  # noqa: BLE001
            ok = False
        return {"ready": ok, "database": "connected" if ok else "disconnected"}

    # === Cases ===
    @app.post("/cases", response_model=Case, status_code=201)
    async def create_case(
        payload: dict[str, Any] = Body(...),
        service: AssignmentService = Depends(get_assignment_service),
    ) -> Case:
        """
        Open a new case and assign it to the online agent with the fewest open cases.

        Errors:
        - 400 when `customer_id`, `title`, `category_id` or `content` is missing or empty.
        - 503 when no agent is online.
        """
        return await service.create_case_with_assignment(payload)

    @app.get("/cases/by-agent/{agent_id}", response_model=list[Case])
    async def cases_by_agent(
        agent_id: int,
        sort_by: str | None = Query(None, alias="sortBy", description="category, createdAt, status or satisfaction"),
        order: str | None = Query(None, description="asc or desc (default desc)"),
        store: CaseStore = Depends(get_store),
    ) -> list[Case]:
        return await store.list_cases(agent_id=agent_id, sort_by=sort_by, order=order)

    @app.get("/cases/by-customer/{customer_id}", response_model=list[Case])
    async def cases_by_customer(
        customer_id: int,
        sort_by: str | None = Query(None, alias="sortBy", description="category, createdAt, status or satisfaction"),
        order: str | None = Query(None, description="asc or desc (default desc)"),
        store: CaseStore = Depends(get_store),
    ) -> list[Case]:
        return await store.list_cases(customer_id=customer_id, sort_by=sort_by, order=order)

    @app.patch("/cases/{case_id}/memo", response_model=MemoResult)
    async def update_memo(case_id: int, payload: MemoUpdate, store: CaseStore = Depends(get_store)) -> MemoResult:
        result = await store.update_memo(case_id, payload.memo)
        if result is None:
            raise NotFoundError("Case not found.", details={"case_id": case_id})
        return result

    @app.patch("/cases/{case_id}/status", response_model=StatusResult)
    async def update_status(
        case_id: int, payload: StatusUpdate, store: CaseStore = Depends(get_store)
    ) -> StatusResult:
        """Move a case between waiting, chatting and closed; closing stamps `closed_at`."""
        result = await store.update_status(case_id, payload.status)
        if result is None:
            raise NotFoundError("Case not found.", details={"case_id": case_id})
        return result

    @app.post("/cases/{case_id}/satisfaction", response_model=Satisfaction, status_code=201)
    async def add_satisfaction(
        case_id: int, payload: SatisfactionCreate, store: CaseStore = Depends(get_store)
    ) -> Satisfaction:
        result = await store.add_satisfaction(case_id, payload.score, payload.comment)
        if result is None:
            raise NotFoundError("Case not found.", details={"case_id": case_id})
        return result

    # === Agents ===
    @app.get("/agents/load", response_model=list[AgentLoad])
    async def agent_load(store: CaseStore = Depends(get_store)) -> list[AgentLoad]:
        """Online agents with their open case counts, in assignment order."""
        return await store.agent_loads()

    @app.get("/agents/{agent_id}", response_model=Agent)
    async def get_agent(agent_id: int, store: CaseStore = Depends(get_store)) -> Agent:
        agent = await store.get_agent(agent_id)
        if agent is None:
            raise NotFoundError("Agent not found.", details={"agent_id": agent_id})
        return agent

    @app.patch("/agents/{agent_id}", response_model=Agent)
    async def update_agent(agent_id: int, payload: AgentUpdate, store: CaseStore = Depends(get_store)) -> Agent:
        agent = await store.update_agent(agent_id, payload.changes())
        if agent is None:
            raise NotFoundError("Agent not found.", details={"agent_id": agent_id})
        return agent

    # === Customers ===
    @app.get("/customers/{customer_id}", response_model=Customer)
    async def get_customer(customer_id: int, store: CaseStore = Depends(get_store)) -> Customer:
        customer = await store.get_customer(customer_id)
        if customer is None:
            raise NotFoundError("Customer not found.", details={"customer_id": customer_id})
        return customer

    # === Orders ===
    @app.get("/orders/{order_id}", response_model=Order)
    async def get_order(order_id: int, store: CaseStore = Depends(get_store)) -> Order:
        order = await store.get_order(order_id)
        if order is None:
            raise NotFoundError("Order not found.", details={"order_id": order_id})
        return order

    @app.get("/orders/{order_id}/status", response_model=OrderStatusResult)
    async def get_order_status(order_id: int, store: CaseStore = Depends(get_store)) -> OrderStatusResult:
        order = await store.get_order(order_id)
        if order is None:
            raise NotFoundError("Order not found.", details={"order_id": order_id})
        return OrderStatusResult(order_id=order.order_id, status=order.status)

    @app.patch("/orders/{order_id}", response_model=OrderStatusResult)
    async def update_order_status(
        order_id: int, payload: OrderStatusUpdate, store: CaseStore = Depends(get_store)
    ) -> OrderStatusResult:
        """Move an order between preparing, shipping and delivered."""
        result = await store.update_order_status(order_id, payload.status)
        if result is None:
            raise NotFoundError("Order not found.", details={"order_id": order_id})
        return result

    @app.delete("/orders/{order_id}", response_model=OrderDeleted)
    async def delete_order(order_id: int, store: CaseStore = Depends(get_store)) -> OrderDeleted:
        if not await store.delete_order(order_id):
            raise NotFoundError("Order not found.", details={"order_id": order_id})
        return OrderDeleted(order_id=order_id)

    # === Order items ===
    @app.get("/order-items/{order_id}", response_model=list[OrderItem])
    async def list_order_items(order_id: int, store: CaseStore = Depends(get_store)) -> list[OrderItem]:
        items = await store.list_order_items(order_id)
        if items is None:
            raise NotFoundError("Order not found.", details={"order_id": order_id})
        return items

    @app.post("/order-items/{order_id}", response_model=OrderItem, status_code=201)
    async def add_order_item(
        order_id: int, payload: OrderItemAdd, store: CaseStore = Depends(get_store)
    ) -> OrderItem:
        """Add a product to an order; a product already on the order has its quantity increased."""
        item = await store.add_order_item(order_id, payload)
        if item is None:
            raise NotFoundError("Order not found.", details={"order_id": order_id})
        return item

    @app.patch("/order-items/{order_id}", response_model=OrderItem)
    async def update_order_item(
        order_id: int, payload: OrderItemQuantity, store: CaseStore = Depends(get_store)
    ) -> OrderItem:
        item = await store.update_order_item_quantity(order_id, payload.product_id, payload.quantity)
        if item is None:
            raise NotFoundError(
                "Order item not found.", details={"order_id": order_id, "product_id": payload.product_id}
            )
        return item

    @app.delete("/order-items/{order_id}", response_model=OrderItemRemoved)
    async def remove_order_item(
        order_id: int, payload: OrderItemRemove, store: CaseStore = Depends(get_store)
    ) -> OrderItemRemoved:
        if not await store.remove_order_item(order_id, payload.product_id):
            raise NotFoundError(
                "Order item not found.", details={"order_id": order_id, "product_id": payload.product_id}
            )
        return OrderItemRemoved(order_id=order_id, product_id=payload.product_id)

    # === Manuals ===
    @app.get("/manuals", response_model=ManualPage)
    async def list_manuals(
        q: str | None = Query(None, description="case-insensitive title filter"),
        page: int = Query(1),
        limit: int = Query(DEFAULT_PAGE_SIZE),
        store: CaseStore = Depends(get_store),
    ) -> ManualPage:
        """Page through manuals, newest edit first. Out-of-range `page`/`limit` are clamped."""
        page = max(1, page)
        limit = min(MAX_PAGE_SIZE, max(1, limit))
        manuals, total = await store.list_manuals(q, page, limit)
        return ManualPage(data=manuals, meta=PageMeta(page=page, limit=limit, total=total))

    @app.get("/manuals/{manual_id}", response_model=Manual)
    async def get_manual(manual_id: int, store: CaseStore = Depends(get_store)) -> Manual:
        manual = await store.get_manual(manual_id)
        if manual is None:
            raise NotFoundError("Manual not found.", details={"manual_id": manual_id})
        return manual

    # === Chatbot ===
    @app.post("/chat", response_model=ChatReply)
    async def chat(
        payload: ChatRequest, assistant: ContactCenterAssistant = Depends(get_assistant)
    ) -> ChatReply:
        return await assistant.reply(payload.message, session_id=payload.session_id)

    @app.post("/chat/{case_id}", response_model=CaseAnalysis)
    async def analyze_case(
        case_id: int,
        store: CaseStore = Depends(get_store),
        assistant: ContactCenterAssistant = Depends(get_assistant),
    ) -> CaseAnalysis:
        """Analyze the case's conversation and store the emotion and summary on the case."""
        messages = await store.case_messages(case_id)
        if not messages:
            raise NotFoundError("No messages found for this case.", details={"case_id": case_id})
        analysis = await assistant.analyze_conversation(case_id, messages)
        await store.save_analysis(case_id, analysis.emotion, analysis.summary)
        return analysis

    return app


app = create_app()
