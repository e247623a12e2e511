# backend/app/routes/v1/availability.py
"""
Availability routes - API v1

Endpoints:
    GET / - Bookable slots for a tutor, enrollment or lesson
    GET /rules - Tutor's active weekly rules
    POST /rules - Add a weekly rule (tutor)
    DELETE /rules/{rule_id} - Deactivate a rule (tutor)
    GET /blocks - Tutor's blocks in a range
    POST /blocks - Add a one-off block (tutor)
    DELETE /blocks/{block_id} - Remove a block (tutor)
"""

import asyncio
from datetime import datetime
import logging
from typing import List, NoReturn, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ...api.dependencies import get_availability_service, get_current_actor, require_tutor
from ...core.actor import Actor
from ...core.exceptions import DomainException
from ...schemas.availability import (
    AvailabilityBlockCreate,
    AvailabilityBlockResponse,
    AvailabilityResponse,
    AvailabilityRuleCreate,
    AvailabilityRuleResponse,
    SlotResponse,
)
from ...services.availability_service import AvailabilityService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["availability-v1"])


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


@router.get("", response_model=AvailabilityResponse)
async def get_availability(
    from_utc: datetime = Query(..., alias="from"),
    to_utc: datetime = Query(..., alias="to"),
    duration_minutes: int = Query(60),
    tutor_id: Optional[str] = Query(None),
    enrollment_id: Optional[str] = Query(None),
    lesson_id: Optional[str] = Query(None),
    actor: Actor = Depends(get_current_actor),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> AvailabilityResponse:
    """Bookable UTC slots; a student's own lessons are excluded as well."""
    try:
        result = await asyncio.to_thread(
            availability_service.get_availability,
            from_utc=from_utc,
            to_utc=to_utc,
            duration_minutes=duration_minutes,
            tutor_id=tutor_id,
            enrollment_id=enrollment_id,
            lesson_id=lesson_id,
            student_id=actor.user_id if actor.is_student else None,
        )
    except DomainException as e:
        handle_domain_exception(e)

    return AvailabilityResponse(
        tutor_assigned=result.tutor_assigned,
        tutor_id=result.tutor_id,
        timezone=result.timezone,
        duration_minutes=result.duration_minutes,
        slots=[SlotResponse(start=s.start, end=s.end) for s in result.slots],
    )


@router.get("/rules", response_model=List[AvailabilityRuleResponse])
async def list_rules(
    actor: Actor = Depends(require_tutor),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> List[AvailabilityRuleResponse]:
    rules = await asyncio.to_thread(availability_service.list_rules, actor.user_id)
    return [AvailabilityRuleResponse.model_validate(rule) for rule in rules]


@router.post("/rules", response_model=AvailabilityRuleResponse, status_code=status.HTTP_201_CREATED)
async def add_rule(
    payload: AvailabilityRuleCreate,
    actor: Actor = Depends(require_tutor),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> AvailabilityRuleResponse:
    try:
        rule = await asyncio.to_thread(
            availability_service.add_rule,
            actor.user_id,
            day_of_week=payload.day_of_week,
            start_minutes=payload.start_minutes,
            end_minutes=payload.end_minutes,
            slot_minutes=payload.slot_minutes,
        )
    except DomainException as e:
        handle_domain_exception(e)
    return AvailabilityRuleResponse.model_validate(rule)


@router.delete("/rules/{rule_id}", response_model=AvailabilityRuleResponse)
async def deactivate_rule(
    rule_id: str,
    actor: Actor = Depends(require_tutor),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> AvailabilityRuleResponse:
    try:
        rule = await asyncio.to_thread(availability_service.deactivate_rule, actor.user_id, rule_id)
    except DomainException as e:
        handle_domain_exception(e)
    return AvailabilityRuleResponse.model_validate(rule)


@router.get("/blocks", response_model=List[AvailabilityBlockResponse])
async def list_blocks(
    from_utc: datetime = Query(..., alias="from"),
    to_utc: datetime = Query(..., alias="to"),
    actor: Actor = Depends(require_tutor),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> List[AvailabilityBlockResponse]:
    blocks = await asyncio.to_thread(
        availability_service.list_blocks, actor.user_id, from_utc, to_utc
    )
    return [AvailabilityBlockResponse.model_validate(block) for block in blocks]


@router.post("/blocks", response_model=AvailabilityBlockResponse, status_code=status.HTTP_201_CREATED)
async def add_block(
    payload: AvailabilityBlockCreate,
    actor: Actor = Depends(require_tutor),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> AvailabilityBlockResponse:
    try:
        block = await asyncio.to_thread(
            availability_service.add_block,
            actor.user_id,
            start_utc=payload.start_utc,
            end_utc=payload.end_utc,
            reason=payload.reason,
        )
    except DomainException as e:
        handle_domain_exception(e)
    return AvailabilityBlockResponse.model_validate(block)


@router.delete("/blocks/{block_id}", response_model=AvailabilityBlockResponse)
async def remove_block(
    block_id: str,
    actor: Actor = Depends(require_tutor),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> AvailabilityBlockResponse:
    try:
        block = await asyncio.to_thread(availability_service.remove_block, actor.user_id, block_id)
    except DomainException as e:
        handle_domain_exception(e)
    return AvailabilityBlockResponse.model_validate(block)
