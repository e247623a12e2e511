# backend/app/routes/v1/credits.py
"""
Credit ledger routes - API v1

Endpoints:
    GET /wallet - Actor's wallet snapshot
    GET /wallet/transactions - Actor's wallet history
    POST /allocations - Move wallet credits into a course ledger
    GET /courses/{course_id}/ledger - Course ledger snapshot
    GET /courses/{course_id}/ledger/transactions - Course ledger history
    GET /earnings - Tutor earnings total and entries
    GET /users/{user_id}/wallet - Any wallet (admin)
    POST /users/{user_id}/purchases - Record purchased credits (admin)
    POST /users/{user_id}/adjustments - Manual correction (admin)
    GET /users/{user_id}/wallet/check - Re-derive wallet from its log (admin)
    GET /courses/{course_id}/ledger/check - Re-derive course ledger (admin)
"""

import asyncio
from datetime import datetime
import logging
from typing import List, NoReturn, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ...api.dependencies import (
    get_credit_service,
    get_current_actor,
    require_admin,
    require_tutor,
)
from ...core.actor import Actor
from ...core.constants import DEFAULT_QUERY_LIMIT, MAX_QUERY_LIMIT
from ...core.exceptions import DomainException
from ...schemas.credits import (
    CourseAllocationRequest,
    CourseLedgerResponse,
    CourseLedgerTransactionResponse,
    CreditAdjustmentRequest,
    CreditPurchaseRequest,
    CreditTransactionResponse,
    LedgerCheckResponse,
    TutorEarningResponse,
    TutorEarningsSummary,
    WalletBalanceResponse,
)
from ...services.credit_service import CreditService, LedgerCheck

logger = logging.getLogger(__name__)

router = APIRouter(tags=["credits-v1"])


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def _check_response(check: LedgerCheck) -> LedgerCheckResponse:
    return LedgerCheckResponse(
        scope=check.scope,
        owner=check.owner,
        stored=check.stored,
        derived=check.derived,
        consistent=check.consistent,
        mismatches=check.mismatches,
    )


def _resolve_student(actor: Actor, student_id: Optional[str]) -> str:
    if student_id and student_id != actor.user_id and not actor.is_staff:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cannot view another student's ledger")
    return student_id or actor.user_id


@router.get("/wallet", response_model=WalletBalanceResponse)
async def get_wallet(
    actor: Actor = Depends(get_current_actor),
    credit_service: CreditService = Depends(get_credit_service),
) -> WalletBalanceResponse:
    try:
        balance = await asyncio.to_thread(credit_service.get_or_create_balance, actor.user_id)
    except DomainException as e:
        handle_domain_exception(e)
    return WalletBalanceResponse.model_validate(balance)


@router.get("/wallet/transactions", response_model=List[CreditTransactionResponse])
async def list_wallet_transactions(
    limit: int = Query(DEFAULT_QUERY_LIMIT, ge=1, le=MAX_QUERY_LIMIT),
    actor: Actor = Depends(get_current_actor),
    credit_service: CreditService = Depends(get_credit_service),
) -> List[CreditTransactionResponse]:
    txs = await asyncio.to_thread(credit_service.list_wallet_transactions, actor.user_id, limit)
    return [CreditTransactionResponse.model_validate(tx) for tx in txs]


@router.post("/allocations", response_model=CourseLedgerResponse, status_code=status.HTTP_201_CREATED)
async def allocate_to_course(
    payload: CourseAllocationRequest,
    actor: Actor = Depends(get_current_actor),
    credit_service: CreditService = Depends(get_credit_service),
) -> CourseLedgerResponse:
    try:
        ledger = await asyncio.to_thread(
            credit_service.allocate_on_enrollment,
            actor.user_id,
            payload.course_id,
            payload.credits,
            enrollment_id=payload.enrollment_id,
            note=payload.note,
            created_by_id=actor.user_id,
        )
    except DomainException as e:
        handle_domain_exception(e)
    return CourseLedgerResponse.model_validate(ledger)


@router.get("/courses/{course_id}/ledger", response_model=CourseLedgerResponse)
async def get_course_ledger(
    course_id: str,
    student_id: Optional[str] = Query(None),
    actor: Actor = Depends(get_current_actor),
    credit_service: CreditService = Depends(get_credit_service),
) -> CourseLedgerResponse:
    owner = _resolve_student(actor, student_id)
    try:
        ledger = await asyncio.to_thread(credit_service.get_course_ledger, owner, course_id)
    except DomainException as e:
        handle_domain_exception(e)
    return CourseLedgerResponse.model_validate(ledger)


@router.get(
    "/courses/{course_id}/ledger/transactions",
    response_model=List[CourseLedgerTransactionResponse],
)
async def list_course_transactions(
    course_id: str,
    student_id: Optional[str] = Query(None),
    actor: Actor = Depends(get_current_actor),
    credit_service: CreditService = Depends(get_credit_service),
) -> List[CourseLedgerTransactionResponse]:
    owner = _resolve_student(actor, student_id)
    try:
        txs = await asyncio.to_thread(credit_service.list_course_transactions, owner, course_id)
    except DomainException as e:
        handle_domain_exception(e)
    return [CourseLedgerTransactionResponse.model_validate(tx) for tx in txs]


@router.get("/earnings", response_model=TutorEarningsSummary)
async def get_earnings(
    since: Optional[datetime] = Query(None),
    until: Optional[datetime] = Query(None),
    actor: Actor = Depends(require_tutor),
    credit_service: CreditService = Depends(get_credit_service),
) -> TutorEarningsSummary:
    total = await asyncio.to_thread(credit_service.get_tutor_earnings_total, actor.user_id, since, until)
    entries = await asyncio.to_thread(credit_service.list_tutor_earnings, actor.user_id, since, until)
    return TutorEarningsSummary(
        tutor_id=actor.user_id,
        total_credits=total,
        since=since,
        until=until,
        entries=[TutorEarningResponse.model_validate(e) for e in entries],
    )


# Admin


@router.get("/users/{user_id}/wallet", response_model=WalletBalanceResponse)
async def get_user_wallet(
    user_id: str,
    _: Actor = Depends(require_admin),
    credit_service: CreditService = Depends(get_credit_service),
) -> WalletBalanceResponse:
    try:
        balance = await asyncio.to_thread(credit_service.get_or_create_balance, user_id)
    except DomainException as e:
        handle_domain_exception(e)
    return WalletBalanceResponse.model_validate(balance)


@router.post(
    "/users/{user_id}/purchases",
    response_model=CreditTransactionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_purchase(
    user_id: str,
    payload: CreditPurchaseRequest,
    _: Actor = Depends(require_admin),
    credit_service: CreditService = Depends(get_credit_service),
) -> CreditTransactionResponse:
    """Record credits bought through the external payments collaborator."""
    try:
        tx = await asyncio.to_thread(
            credit_service.purchase_credits,
            user_id,
            payload.credits,
            reference_id=payload.reference_id,
            notes=payload.notes,
        )
    except DomainException as e:
        handle_domain_exception(e)
    return CreditTransactionResponse.model_validate(tx)


@router.post(
    "/users/{user_id}/adjustments",
    response_model=CreditTransactionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def adjust_wallet(
    user_id: str,
    payload: CreditAdjustmentRequest,
    admin: Actor = Depends(require_admin),
    credit_service: CreditService = Depends(get_credit_service),
) -> CreditTransactionResponse:
    try:
        tx = await asyncio.to_thread(
            credit_service.adjust_credits,
            user_id,
            payload.amount,
            reason=payload.reason,
            created_by_id=admin.user_id,
        )
    except DomainException as e:
        handle_domain_exception(e)
    return CreditTransactionResponse.model_validate(tx)


@router.get("/users/{user_id}/wallet/check", response_model=LedgerCheckResponse)
async def check_wallet(
    user_id: str,
    _: Actor = Depends(require_admin),
    credit_service: CreditService = Depends(get_credit_service),
) -> LedgerCheckResponse:
    try:
        check = await asyncio.to_thread(credit_service.verify_wallet_consistency, user_id)
    except DomainException as e:
        handle_domain_exception(e)
    return _check_response(check)


@router.get("/courses/{course_id}/ledger/check", response_model=LedgerCheckResponse)
async def check_course_ledger(
    course_id: str,
    student_id: str = Query(...),
    _: Actor = Depends(require_admin),
    credit_service: CreditService = Depends(get_credit_service),
) -> LedgerCheckResponse:
    try:
        check = await asyncio.to_thread(
            credit_service.verify_course_ledger_consistency, student_id, course_id
        )
    except DomainException as e:
        handle_domain_exception(e)
    return _check_response(check)
