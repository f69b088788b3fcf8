"""
Contact center assistant
========================

Purpose:
- Provides `ContactCenterAssistant`, which answers customer messages as a
  contact-center representative and analyzes a finished case conversation
  (emotion, summary, suggested reply) through a hosted LLM.

Dependencies:
- `agents` SDK (`agents.Agent`, `Runner`)
- Model provider (`agents.models.openai_provider.OpenAIProvider`)
- Local chat memory (`contact_center.memory.ChatMemory`)
- Environment variables: `AGENT_MODEL`, `OPENAI_BASE_URL`, `OPENAI_API_KEY`

Notes:
- Security: API keys are passed to the provider only and never logged.
- Chat replies degrade to a fallback answer when the model is unavailable;
  case analysis does not, because its output is written to the case.
"""

import json
import logging
import os
import re
from typing import Any, Sequence

from agents import Agent as AgentsAgent
from agents import Runner
from agents.models.interface import Model
from agents.models.openai_provider import OpenAIProvider

from .errors import InternalError
from .memory import ChatMemory
from .models import CaseAnalysis, ChatReply, Message

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
FALLBACK_ANSWER = "Thank you for reaching out. An agent will follow up with you shortly."

CHAT_INSTRUCTIONS = """You are the chatbot of an AI contact center.
Answer the customer's message the way a polite, experienced support representative would.

Policies:
- Delivery delays: apologize, say the carrier has been contacted and give the expected arrival.
- Return requests: explain the return procedure and confirm the pickup schedule.
- Abusive language: give a polite warning and end the conversation.
- Product questions: offer to connect the customer with the service desk.

Constraints: never invent facts, keep a courteous tone, three sentences at most.

Always reply in exactly this format:
[Answer] the reply to send to the customer
[Reason] the policy or judgement you applied, in one sentence"""

ANALYSIS_INSTRUCTIONS = """You analyze one complete contact-center conversation.
Return exactly one JSON object and nothing else (no Markdown, no commentary):
{
  "emotion": "one of calm | happy | sad | angry | annoyed",
  "summary": "two or three sentences on the problem and how it was handled",
  "suggested_reply": "one polite paragraph the agent could send next"
}
Choose the emotion that best describes the customer over the whole conversation."""

SPEAKER_LABELS = {"customer": "Customer", "agent": "Agent"}

_ANSWER_RE = re.compile(r"\[Answer\]\s*([^\[]+)", re.DOTALL)
_REASON_RE = re.compile(r"\[Reason\]\s*(.+)", re.DOTALL)
_FENCE_RE = re.compile(r"^```[a-zA-Z]*\n?|```$")


def parse_reply(raw_text: str) -> tuple[str, str | None]:
    """Split `[Answer] ... [Reason] ...` output; the whole text is the answer when unmarked."""
    answer = _ANSWER_RE.search(raw_text)
    reason = _REASON_RE.search(raw_text)
    return (
        answer.group(1).strip() if answer else raw_text.strip(),
        reason.group(1).strip() if reason else None,
    )


def parse_analysis(raw_text: str) -> dict[str, Any]:
    """Parse the analysis JSON, tolerating a surrounding Markdown code fence."""
    cleaned = _FENCE_RE.sub("", raw_text.strip()).strip()
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        logger.warning("Analysis output is not valid JSON", extra={"context": {"raw": raw_text[:200]}})
        return {}
    return data if isinstance(data, dict) else {}


def render_transcript(messages: Sequence[Message]) -> str:
    lines = []
    for message in messages:
        label = SPEAKER_LABELS.get(message.speaker or "", message.speaker or "Other")
        lines.append(f"{label}: {message.content}")
    return "\n".join(lines)


class ContactCenterAssistant:
    """
    LLM-backed chatbot and conversation analyst.

    Example:
    ```python
    assistant = ContactCenterAssistant(api_key=os.getenv("OPENAI_API_KEY"))
    reply = await assistant.reply("My parcel is three days late", session_id="cust-1")
    print(reply.answer, reply.reason)
    ```
    """

    def __init__(
        self,
        api_key: str | None = None,
        model_name: str | None = None,
        base_url: str | None = None,
        memory: ChatMemory | None = None,
    ):
        """
        Parameters:
        - api_key: `str | None` key for an OpenAI-compatible provider; falls back to `OPENAI_API_KEY`.
        - model_name: `str | None` defaults to `AGENT_MODEL` env or `gpt-4o-mini`.
        - base_url: `str | None` custom OpenAI-compatible endpoint.
        - memory: `ChatMemory | None` enables per-session context when set.
        """
        self.model_name = model_name or os.getenv("AGENT_MODEL") or DEFAULT_MODEL
        self.base_url = base_url or os.getenv("OPENAI_BASE_URL")
        self.api_key = api_key or os.getenv("OPENAI_API_KEY")
        if self.api_key:
            # The default provider reads the key from the environment.
            os.environ.setdefault("OPENAI_API_KEY", self.api_key)
        self.memory = memory

        configured_model = self._build_custom_model() or self.model_name
        self.chat_agent = AgentsAgent(name="ContactCenterChatbot", instructions=CHAT_INSTRUCTIONS, model=configured_model)
        self.analysis_agent = AgentsAgent(
            name="ConversationAnalyst", instructions=ANALYSIS_INSTRUCTIONS, model=configured_model
        )

    def _build_custom_model(self) -> Model | None:
        """Build a `Model` through `OpenAIProvider` when a custom base URL is configured."""
        if not self.base_url or not self.api_key:
            return None
        provider = OpenAIProvider(
            api_key=self.api_key,
            base_url=self.base_url,
            use_responses=False,  # most compatible endpoints only expose chat completions
        )
        return provider.get_model(self.model_name)

    async def _run(self, agent: AgentsAgent, prompt: str) -> str:
        result = await Runner.run(agent, input=prompt)
        return str(result.final_output or "")

    async def _recent_context(self, session_id: str | None) -> list[dict[str, Any]]:
        if not (self.memory and session_id):
            return []
        try:
            return await self.memory.recent(session_id)
        except Exception:  # noqa: BLE001
            logger.warning("Chat memory read failed", exc_info=True)
            return []

    async def _remember(self, session_id: str | None, message: str, answer: str) -> None:
        if not (self.memory and session_id):
            return
        try:
            await self.memory.append_turn(session_id, message, answer)
        except Exception:  # noqa: BLE001
            # Memory must never break the reply path.
            logger.warning("Chat memory write failed", exc_info=True)

    def _build_chat_prompt(self, message: str, context: list[dict[str, Any]]) -> str:
        if not context:
            return message
        history = "\n".join(
            f"{entry.get('role', 'unknown').title()}: {entry.get('content', '')}" for entry in context
        )
        return f"Recent conversation:\n{history}\n\nCustomer: {message}"

    async def reply(self, message: str, session_id: str | None = None) -> ChatReply:
        """
        Answer one customer message.

        Returns:
        - `ChatReply` with `source="agent"`, or `source="fallback"` when no API
          key is configured or the model call fails.
        """
        if not self.api_key:
            return ChatReply(answer=FALLBACK_ANSWER, source="fallback")

        context = await self._recent_context(session_id)
        try:
            raw_text = await self._run(self.chat_agent, self._build_chat_prompt(message, context))
        except Exception:  # noqa: BLE001
            logger.warning("Chat model call failed; using fallback answer", exc_info=True)
            return ChatReply(answer=FALLBACK_ANSWER, source="fallback")

        logger.debug("Chat model output", extra={"context": {"raw": raw_text}})
        answer, reason = parse_reply(raw_text)
        await self._remember(session_id, message, answer)
        return ChatReply(answer=answer, reason=reason)

    async def analyze_conversation(self, case_id: int, messages: Sequence[Message]) -> CaseAnalysis:
        """
        Ask the model for the customer's emotion, a summary and a suggested reply.

        Raises:
        - `InternalError`: when the model is not configured or the call fails.
        """
        if not self.api_key:
            raise InternalError("Conversation analysis is not configured.")

        prompt = f"Analyze this conversation:\n{render_transcript(messages)}"
        try:
            raw_text = await self._run(self.analysis_agent, prompt)
        except Exception as exc:  # noqa: BLE001
            logger.error("Analysis model call failed", exc_info=True, extra={"context": {"case_id": case_id}})
            raise InternalError("Conversation analysis failed.") from exc

        data = parse_analysis(raw_text)
        return CaseAnalysis(
            case_id=case_id,
            emotion=data.get("emotion"),
            summary=data.get("summary"),
            suggested_answer=data.get("suggested_reply"),
        )
