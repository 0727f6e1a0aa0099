from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from meit.db import get_db
from meit.deps.context import RequestContext, get_request_context
from meit.schemas.checkin import CheckinCreate, CheckinOut
from meit.schemas.points import GiftCardIssued
from meit.services.ledger_service import record_checkin

router = APIRouter(prefix="/checkins", tags=["checkins"])


@router.post("", response_model=CheckinOut)
def create_checkin(
    payload: CheckinCreate,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    result = record_checkin(
        db,
        merchant_id=ctx.merchant_id,
        phone=payload.phone,
        actor_id=ctx.actor_id,
        branch_id=payload.branch_id,
        name=payload.name,
    )

    gift_card = None
    if result.gift_card:
        gift_card = GiftCardIssued(
            code=result.gift_card.code,
            value=result.gift_card.value,
            expires_at=result.gift_card.expires_at,
        )

    return CheckinOut(
        checkin_id=result.checkin_id,
        customer_id=result.customer_id,
        phone=result.phone,
        visits_count=result.visits_count,
        points_earned=result.points_earned,
        points_balance=result.points_balance,
        gift_card=gift_card,
        challenges_completed=result.challenges_completed,
    )
