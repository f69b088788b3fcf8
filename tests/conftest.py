"""Shared fixtures: in-memory store, stub assistant and an ASGI test client."""

from typing import Sequence

import httpx
import pytest

from contact_center.fakes import InMemoryCaseStore
from contact_center.main import create_app
from contact_center.models import CaseAnalysis, ChatReply, Message


class StubAssistant:
    """Deterministic stand-in for `ContactCenterAssistant`."""

    def __init__(self) -> None:
        self.replies: list[tuple[str, str | None]] = []
        self.analyzed: list[tuple[int, list[Message]]] = []

    async def reply(self, message: str, session_id: str | None = None) -> ChatReply:
        self.replies.append((message, session_id))
        return ChatReply(answer=f"echo: {message}", reason="test policy")

    async def analyze_conversation(self, case_id: int, messages: Sequence[Message]) -> CaseAnalysis:
        self.analyzed.append((case_id, list(messages)))
        return CaseAnalysis(
            case_id=case_id,
            emotion="annoyed",
            summary="Late parcel, carrier confirmed delivery.",
            suggested_answer="Your parcel arrives tomorrow.",
        )


@pytest.fixture
def store() -> InMemoryCaseStore:
    """Agents 1 and 2 online, agent 3 offline, no cases."""
    s = InMemoryCaseStore()
    s.add_agent(1, "Kim", is_online=True)
    s.add_agent(2, "Park", is_online=True)
    s.add_agent(3, "Lee", is_online=False)
    return s


@pytest.fixture
def assistant() -> StubAssistant:
    return StubAssistant()


@pytest.fixture
def app(store, assistant):
    return create_app(store=store, assistant=assistant)


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def case_payload() -> dict:
    return {
        "customer_id": 1,
        "title": "Parcel not delivered",
        "category_id": 2,
        "content": "My order has not arrived yet.",
        "order_id": 1001,
    }
