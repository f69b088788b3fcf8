"""
Least-connections case assignment
=================================

Purpose:
- Pick the online agent with the fewest non-closed cases for a new case, and
  create the case bound to that agent in one atomic step.

Selection rule:
- Candidates are agents with `is_online = true`.
- Load is the number of the agent's cases whose status is not closed,
  recomputed on every call.
- Lowest load wins; ties go to the lowest `agent_id`.

Outcomes of `create_case_with_assignment`:
- `Case` on success.
- `ValidationError` for a missing or empty required field (no store access).
- `NoCapacityError` when no agent is online.
- `InternalError` for driver errors and timeouts; the store rolls back.
"""

import asyncio
import logging
from typing import Any, Mapping

import asyncpg
from pydantic import ValidationError as PydanticValidationError

from .errors import InternalError, NoCapacityError, ValidationError
from .logs import log_with_context
from .models import Case, CaseCreate
from .store import CaseStore

logger = logging.getLogger(__name__)

STORE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)


def choose_least_loaded(loads: Mapping[int, int]) -> int | None:
    """
    Return the agent id with the smallest load, lowest id on ties.

    Parameters:
    - loads: `Mapping[int, int]` of online agent id to active case count.

    Returns:
    - `int | None`: `None` when there is no candidate.
    """
    if not loads:
        return None
    return min(loads.items(), key=lambda item: (item[1], item[0]))[0]


def validate_case_details(case_details: CaseCreate | Mapping[str, Any]) -> CaseCreate:
    """Validate a raw payload into `CaseCreate` or raise `ValidationError`."""
    if isinstance(case_details, CaseCreate):
        return case_details
    try:
        return CaseCreate.model_validate(dict(case_details or {}))
    except PydanticValidationError as exc:
        fields = sorted({str(err["loc"][0]) for err in exc.errors() if err.get("loc")})
        raise ValidationError(
            f"Missing or invalid required fields: {', '.join(fields)}",
            details={"fields": fields},
        ) from exc
    except (TypeError, ValueError) as exc:
        raise ValidationError("Case details must be an object") from exc


class AssignmentService:
    """
    Assign new cases to the least-loaded online agent.

    Example:
    ```python
    service = AssignmentService(PostgresCaseStore(pool))
    case = await service.create_case_with_assignment(
        {"customer_id": 1, "title": "Late delivery", "category_id": 2, "content": "..."}
    )
    ```
    """

    def __init__(self, store: CaseStore) -> None:
        self.store = store

    async def select_agent_for_new_case(self) -> int | None:
        """
        Return the agent that would receive the next case, without writing.

        Returns:
        - `int | None`: agent id, or `None` when no agent is online.

        Raises:
        - `InternalError`: when the store cannot be read.
        """
        try:
            return await self.store.least_loaded_agent()
        except STORE_ERRORS as exc:
            logger.error("Agent selection failed", exc_info=exc)
            raise InternalError("Agent selection failed.") from exc

    async def create_case_with_assignment(self, case_details: CaseCreate | Mapping[str, Any]) -> Case:
        """
        Validate the payload, then select an agent and insert the case atomically.

        Parameters:
        - case_details: `CaseCreate` or raw mapping with `customer_id`, `title`,
          `category_id`, `content` and optional `order_id`.

        Returns:
        - `Case`: the inserted case with `status="waiting"` and its `agent_id`.

        Raises:
        - `ValidationError`, `NoCapacityError`, `InternalError`.
        """
        details = validate_case_details(case_details)

        try:
            case = await self.store.create_assigned_case(details)
        except STORE_ERRORS as exc:
            log_with_context(
                logger,
                logging.ERROR,
                "Case creation failed; transaction rolled back",
                exc_info=True,
                customer_id=details.customer_id,
                error=type(exc).__name__,
            )
            raise InternalError("Case creation failed.") from exc

        if case is None:
            log_with_context(
                logger,
                logging.WARNING,
                "No online agent available for new case",
                customer_id=details.customer_id,
            )
            raise NoCapacityError()

        log_with_context(
            logger,
            logging.INFO,
            "Case assigned",
            case_id=case.case_id,
            agent_id=case.agent_id,
            customer_id=case.customer_id,
        )
        return case
