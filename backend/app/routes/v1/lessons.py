# backend/app/routes/v1/lessons.py
"""
Lesson routes - API v1

Versioned lesson endpoints under /api/v1/lessons.
All business logic delegated to LessonPolicyService.

Endpoints:
    POST / - Request a lesson (student)
    GET / - List the actor's lessons
    GET /{lesson_id} - Lesson details
    GET /{lesson_id}/history - Change log
    POST /{lesson_id}/decide - Schedule at a chosen instant
    POST /{lesson_id}/reject - Decline a pending request
    POST /{lesson_id}/withdraw - Student withdraws a pending request
    POST /{lesson_id}/reschedule - Request a reschedule
    POST /{lesson_id}/reschedule/approve - Approve a reschedule
    POST /{lesson_id}/reschedule/reject - Reject a reschedule
    POST /{lesson_id}/cancellation-request - Tutor asks to cancel
    POST /{lesson_id}/cancellation-request/reject - Admin keeps the lesson
    POST /{lesson_id}/cancel - Cancel with refund/penalty
    POST /{lesson_id}/session/start - Session started
    POST /{lesson_id}/session/join - Record attendance
    POST /{lesson_id}/session/end - Session ended (completes)
    POST /{lesson_id}/complete - Complete (idempotent)
    POST /{lesson_id}/no-show - Mark no-show
"""

import asyncio
import logging
from typing import Any, Callable, List, NoReturn, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ...api.dependencies import get_current_actor, get_lesson_policy_service
from ...core.actor import Actor
from ...core.constants import DEFAULT_QUERY_LIMIT, MAX_QUERY_LIMIT
from ...core.enums import LessonStatus
from ...core.exceptions import DomainException
from ...models.lesson import LessonBooking
from ...schemas.lesson import (
    LessonChangeLogResponse,
    LessonDecisionRequest,
    LessonNoteRequest,
    LessonReasonRequest,
    LessonRequestCreate,
    LessonResponse,
    RescheduleApprovalRequest,
    RescheduleRequestCreate,
)
from ...services.lesson_policy_service import LessonPolicyService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["lessons-v1"])


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


async def _run(func: Callable[..., LessonBooking], *args: Any, **kwargs: Any) -> LessonResponse:
    try:
        lesson = await asyncio.to_thread(func, *args, **kwargs)
    except DomainException as e:
        handle_domain_exception(e)
    return LessonResponse.model_validate(lesson)


@router.post("", response_model=LessonResponse, status_code=status.HTTP_201_CREATED)
async def request_lesson(
    payload: LessonRequestCreate,
    actor: Actor = Depends(get_current_actor),
    lesson_service: LessonPolicyService = Depends(get_lesson_policy_service),
) -> LessonResponse:
    return await _run(
        lesson_service.request_lesson,
        actor,
        enrollment_id=payload.enrollment_id,
        date_from=payload.date_from,
        date_to=payload.date_to,
        options=payload.options,
        duration_minutes=payload.duration_minutes,
        note=payload.note,
    )


@router.get("", response_model=List[LessonResponse])
async def list_lessons(
    status_filter: Optional[LessonStatus] = Query(None, alias="status"),
    user_id: Optional[str] = Query(None),
    limit: int = Query(DEFAULT_QUERY_LIMIT, ge=1, le=MAX_QUERY_LIMIT),
    actor: Actor = Depends(get_current_actor),
    lesson_service: LessonPolicyService = Depends(get_lesson_policy_service),
) -> List[LessonResponse]:
    try:
        lessons = await asyncio.to_thread(
            lesson_service.list_lessons, actor, user_id=user_id, status=status_filter, limit=limit
        )
    except DomainException as e:
        handle_domain_exception(e)
    return [LessonResponse.model_validate(lesson) for lesson in lessons]


@router.get("/{lesson_id}", response_model=LessonResponse)
async def get_lesson(
    lesson_id: str,
    actor: Actor = Depends(get_current_actor),
    lesson_service: LessonPolicyService = Depends(get_lesson_policy_service),
) -> LessonResponse:
    return await _run(lesson_service.get_lesson, lesson_id, actor)


@router.get("/{lesson_id}/history", response_model=List[LessonChangeLogResponse])
async def get_lesson_history(
    lesson_id: str,
    actor: Actor = Depends(get_current_actor),
    lesson_service: LessonPolicyService = Depends(get_lesson_policy_service),
) -> List[LessonChangeLogResponse]:
    try:
        entries = await asyncio.to_thread(lesson_service.get_change_log, lesson_id, actor)
    except DomainException as e:
        handle_domain_exception(e)
    return [LessonChangeLogResponse.model_validate(entry) for entry in entries]


@router.post("/{lesson_id}/decide", response_model=LessonResponse)
async def decide_lesson(
    lesson_id: str,
    payload: LessonDecisionRequest,
    actor: Actor = Depends(get_current_actor),
    lesson_service: LessonPolicyService = Depends(get_lesson_policy_service),
) -> LessonResponse:
    return await _run(
        lesson_service.decide,
        lesson_id,
        payload.chosen_start,
        actor,
        note=payload.note,
        tutor_id=payload.tutor_id,
    )


@router.post("/{lesson_id}/reject", response_model=LessonResponse)
async def reject_lesson(
    lesson_id: str,
    payload: LessonNoteRequest,
    actor: Actor = Depends(get_current_actor),
    lesson_service: LessonPolicyService = Depends(get_lesson_policy_service),
) -> LessonResponse:
    return await _run(lesson_service.reject, lesson_id, actor, note=payload.note)


@router.post("/{lesson_id}/withdraw", response_model=LessonResponse)
async def withdraw_lesson(
    lesson_id: str,
    payload: LessonReasonRequest,
    actor: Actor = Depends(get_current_actor),
    lesson_service: LessonPolicyService = Depends(get_lesson_policy_service),
) -> LessonResponse:
    return await _run(lesson_service.withdraw, lesson_id, actor, reason=payload.reason)


@router.post("/{lesson_id}/reschedule", response_model=LessonResponse)
async def request_reschedule(
    lesson_id: str,
    payload: RescheduleRequestCreate,
    actor: Actor = Depends(get_current_actor),
    lesson_service: LessonPolicyService = Depends(get_lesson_policy_service),
) -> LessonResponse:
    return await _run(
        lesson_service.request_reschedule, lesson_id, actor, payload.options, reason=payload.reason
    )


@router.post("/{lesson_id}/reschedule/approve", response_model=LessonResponse)
async def approve_reschedule(
    lesson_id: str,
    payload: RescheduleApprovalRequest,
    actor: Actor = Depends(get_current_actor),
    lesson_service: LessonPolicyService = Depends(get_lesson_policy_service),
) -> LessonResponse:
    return await _run(
        lesson_service.approve_reschedule, lesson_id, payload.chosen_start, actor, note=payload.note
    )


@router.post("/{lesson_id}/reschedule/reject", response_model=LessonResponse)
async def reject_reschedule(
    lesson_id: str,
    payload: LessonNoteRequest,
    actor: Actor = Depends(get_current_actor),
    lesson_service: LessonPolicyService = Depends(get_lesson_policy_service),
) -> LessonResponse:
    return await _run(lesson_service.reject_reschedule, lesson_id, actor, note=payload.note)


@router.post("/{lesson_id}/cancellation-request", response_model=LessonResponse)
async def request_cancellation(
    lesson_id: str,
    payload: LessonReasonRequest,
    actor: Actor = Depends(get_current_actor),
    lesson_service: LessonPolicyService = Depends(get_lesson_policy_service),
) -> LessonResponse:
    return await _run(lesson_service.request_cancellation, lesson_id, actor, reason=payload.reason)


@router.post("/{lesson_id}/cancellation-request/reject", response_model=LessonResponse)
async def reject_cancellation(
    lesson_id: str,
    payload: LessonNoteRequest,
    actor: Actor = Depends(get_current_actor),
    lesson_service: LessonPolicyService = Depends(get_lesson_policy_service),
) -> LessonResponse:
    return await _run(lesson_service.reject_cancellation, lesson_id, actor, note=payload.note)


@router.post("/{lesson_id}/cancel", response_model=LessonResponse)
async def cancel_lesson(
    lesson_id: str,
    payload: LessonReasonRequest,
    actor: Actor = Depends(get_current_actor),
    lesson_service: LessonPolicyService = Depends(get_lesson_policy_service),
) -> LessonResponse:
    return await _run(lesson_service.cancel, lesson_id, actor, reason=payload.reason)


@router.post("/{lesson_id}/session/start", response_model=LessonResponse)
async def start_session(
    lesson_id: str,
    actor: Actor = Depends(get_current_actor),
    lesson_service: LessonPolicyService = Depends(get_lesson_policy_service),
) -> LessonResponse:
    return await _run(lesson_service.start_session, lesson_id, actor)


@router.post("/{lesson_id}/session/join", response_model=LessonResponse)
async def join_session(
    lesson_id: str,
    actor: Actor = Depends(get_current_actor),
    lesson_service: LessonPolicyService = Depends(get_lesson_policy_service),
) -> LessonResponse:
    return await _run(lesson_service.record_join, lesson_id, actor)


@router.post("/{lesson_id}/session/end", response_model=LessonResponse)
async def end_session(
    lesson_id: str,
    actor: Actor = Depends(get_current_actor),
    lesson_service: LessonPolicyService = Depends(get_lesson_policy_service),
) -> LessonResponse:
    return await _run(lesson_service.end_session, lesson_id, actor)


@router.post("/{lesson_id}/complete", response_model=LessonResponse)
async def complete_lesson(
    lesson_id: str,
    actor: Actor = Depends(get_current_actor),
    lesson_service: LessonPolicyService = Depends(get_lesson_policy_service),
) -> LessonResponse:
    return await _run(lesson_service.complete, lesson_id, actor)


@router.post("/{lesson_id}/no-show", response_model=LessonResponse)
async def mark_no_show(
    lesson_id: str,
    payload: LessonNoteRequest,
    actor: Actor = Depends(get_current_actor),
    lesson_service: LessonPolicyService = Depends(get_lesson_policy_service),
) -> LessonResponse:
    return await _run(lesson_service.mark_no_show, lesson_id, actor, note=payload.note)
