from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session

from meit.db import get_db
from meit.deps.context import RequestContext, get_request_context
from meit.schemas.points import (
    AdjustPointsRequest,
    AdjustPointsResponse,
    AssignPointsRequest,
    AssignPointsResponse,
    GiftCardIssued,
    PointTransactionOut,
)
from meit.services.ledger_service import adjust_points, assign_points, list_transactions

router = APIRouter(prefix="/points", tags=["points"])


@router.post("/assign", response_model=AssignPointsResponse)
def assign(
    payload: AssignPointsRequest,
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    result = assign_points(
        db,
        merchant_id=ctx.merchant_id,
        customer_id=payload.customer_id,
        amount=payload.amount,
        actor_id=ctx.actor_id,
        challenge_ids=payload.challenge_ids,
        categories=payload.categories,
        request_id=idempotency_key,
    )

    gift_card = None
    if result.gift_card:
        gift_card = GiftCardIssued(
            code=result.gift_card.code,
            value=result.gift_card.value,
            expires_at=result.gift_card.expires_at,
        )

    return AssignPointsResponse(
        points_earned=result.points_earned,
        base_points=result.base_points,
        bonus_points=result.bonus_points,
        total_points=result.total_points,
        gift_card=gift_card,
        challenges_completed=result.challenges_completed,
    )


@router.post("/adjust", response_model=AdjustPointsResponse)
def adjust(
    payload: AdjustPointsRequest,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    result = adjust_points(
        db,
        merchant_id=ctx.merchant_id,
        customer_id=payload.customer_id,
        points=payload.points,
        reason=payload.reason,
        actor_id=ctx.actor_id,
        actor_role=ctx.role,
    )
    return AdjustPointsResponse(
        adjustment=result.adjustment,
        previous_balance=result.previous_balance,
        new_balance=result.new_balance,
    )


@router.get("/transactions", response_model=List[PointTransactionOut])
def transactions(
    customer_id: Optional[UUID] = None,
    limit: int = 50,
    offset: int = 0,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    return list_transactions(db, ctx.merchant_id, customer_id=customer_id, limit=limit, offset=offset)
