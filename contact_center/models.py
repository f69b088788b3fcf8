"""Pydantic models for agents, cases, customers, orders, manuals and chat payloads."""

from datetime import date, datetime
from enum import Enum
from typing import Any, Literal, Mapping

from pydantic import BaseModel, ConfigDict, Field, StrictBool, field_validator, model_validator


class CaseStatus(str, Enum):
    WAITING = "waiting"
    CHATTING = "chatting"
    CLOSED = "closed"


# Rank used by the `status` sort: waiting < chatting < closed < anything else.
STATUS_SORT_RANK = {
    CaseStatus.WAITING.value: 1,
    CaseStatus.CHATTING.value: 2,
    CaseStatus.CLOSED.value: 3,
}


def _record_to_dict(record: Mapping[str, Any]) -> dict[str, Any]:
    return {key: record[key] for key in record.keys()}


class Agent(BaseModel):
    agent_id: int
    name: str
    is_online: bool = False
    phone: str | None = None
    email: str | None = None

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Agent":
        return cls.model_validate(_record_to_dict(record))


class AgentUpdate(BaseModel):
    """Partial update for PATCH /agents/{agent_id}; only sent fields are written."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = None
    is_online: StrictBool | None = None
    phone: str | None = None
    email: str | None = None

    @field_validator("name", "is_online")
    @classmethod
    def not_nullable(cls, value: Any) -> Any:
        # phone and email may be cleared with null; name and is_online may not.
        if value is None:
            raise ValueError("must not be null")
        return value

    @model_validator(mode="after")
    def at_least_one_field(self) -> "AgentUpdate":
        if not self.changes():
            raise ValueError("At least one of name, is_online, phone, email is required")
        return self

    def changes(self) -> dict[str, Any]:
        """Fields present in the request body, including explicit nulls."""
        return self.model_dump(exclude_unset=True)


class AgentLoad(BaseModel):
    """An online agent and its current number of non-closed cases."""

    agent_id: int
    name: str
    active_cases: int


class CaseCreate(BaseModel):
    """Case creation payload. Text fields are trimmed and must stay non-empty."""

    model_config = ConfigDict(str_strip_whitespace=True)

    customer_id: int = Field(gt=0)
    title: str = Field(min_length=1)
    category_id: int = Field(gt=0)
    content: str = Field(min_length=1)
    order_id: int | None = Field(default=None, gt=0)


class Case(BaseModel):
    case_id: int
    customer_id: int
    agent_id: int
    title: str
    category_id: int
    content: str
    order_id: int | None = None
    status: str
    created_at: datetime
    closed_at: datetime | None = None
    memo: str | None = None
    emotion_id: int | None = None
    emotion: str | None = None

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Case":
        return cls.model_validate(_record_to_dict(record))


class MemoUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    memo: str = Field(min_length=1)


class MemoResult(BaseModel):
    case_id: int
    memo: str


class StatusUpdate(BaseModel):
    status: CaseStatus

    @field_validator("status", mode="before")
    @classmethod
    def normalize(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value


class StatusResult(BaseModel):
    case_id: int
    status: str
    closed_at: datetime | None = None


class SatisfactionCreate(BaseModel):
    score: int = Field(ge=1, le=5)
    comment: str | None = None

    @field_validator("comment")
    @classmethod
    def trim_comment(cls, value: str | None) -> str | None:
        return value.strip() if value is not None else None


class Satisfaction(BaseModel):
    case_id: int
    score: int
    comment: str | None = None
    created_at: datetime


class Message(BaseModel):
    speaker: str | None = None
    content: str
    occurred_at: datetime


class ChatRequest(BaseModel):
    message: str = Field(min_length=1)
    session_id: str | None = None


class ChatReply(BaseModel):
    answer: str
    reason: str | None = None
    source: Literal["agent", "fallback"] = "agent"


class CaseAnalysis(BaseModel):
    case_id: int
    emotion: str | None = None
    summary: str | None = None
    suggested_answer: str | None = None


class Customer(BaseModel):
    customer_id: int
    name: str
    phone: str | None = None
    email: str | None = None
    created_at: datetime | None = None

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Customer":
        return cls.model_validate(_record_to_dict(record))


class OrderStatus(str, Enum):
    PREPARING = "preparing"
    SHIPPING = "shipping"
    DELIVERED = "delivered"


class Order(BaseModel):
    order_id: int
    customer_id: int
    status: str
    total_amount: float
    ordered_at: datetime

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Order":
        return cls.model_validate(_record_to_dict(record))


class OrderStatusUpdate(BaseModel):
    status: OrderStatus

    @field_validator("status", mode="before")
    @classmethod
    def normalize(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value


class OrderStatusResult(BaseModel):
    order_id: int
    status: str


class OrderDeleted(BaseModel):
    order_id: int
    deleted: bool = True


class OrderItem(BaseModel):
    order_item_id: int
    order_id: int
    product_id: int
    quantity: int
    unit_price: float

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "OrderItem":
        return cls.model_validate(_record_to_dict(record))


class OrderItemAdd(BaseModel):
    """Adding a product already on the order increases its quantity and replaces its unit price."""

    product_id: int = Field(gt=0)
    quantity: int = Field(gt=0)
    unit_price: float = Field(ge=0, allow_inf_nan=False)


class OrderItemQuantity(BaseModel):
    product_id: int = Field(gt=0)
    quantity: int = Field(gt=0)


class OrderItemRemove(BaseModel):
    product_id: int = Field(gt=0)


class OrderItemRemoved(BaseModel):
    deleted: bool = True
    order_id: int
    product_id: int


class Manual(BaseModel):
    manual_id: int
    title: str
    category_id: int | None = None
    edited_at: date | None = None
    file_path: str | None = None

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Manual":
        return cls.model_validate(_record_to_dict(record))


class PageMeta(BaseModel):
    page: int
    limit: int
    total: int


class ManualPage(BaseModel):
    data: list[Manual]
    meta: PageMeta
