from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from meit.db import get_db
from meit.deps.context import RequestContext, get_request_context, require_admin
from meit.errors import GiftCardAlreadyRedeemed, GiftCardCancelled, GiftCardExpired, GiftCardNotFound
from meit.schemas.gift_card import (
    GiftCardCodeRequest,
    GiftCardOut,
    RedeemGiftCardRequest,
    RedeemGiftCardResponse,
    ValidateGiftCardResponse,
)
from meit.services.gift_card_service import (
    cancel_gift_card,
    expire_gift_cards,
    list_gift_cards,
    redeem_gift_card,
    validate_gift_card,
)

router = APIRouter(prefix="/gift-cards", tags=["gift-cards"])


@router.get("", response_model=List[GiftCardOut])
def list_cards(
    status: Optional[str] = None,
    customer_id: Optional[UUID] = None,
    limit: int = 50,
    offset: int = 0,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    return list_gift_cards(db, ctx.merchant_id, status=status, customer_id=customer_id, limit=limit, offset=offset)


@router.post("/validate", response_model=ValidateGiftCardResponse)
def validate(
    payload: GiftCardCodeRequest,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    # answered with 200 either way, the till shows the reason to the cashier
    try:
        card = validate_gift_card(db, payload.code, ctx.merchant_id)
    except (GiftCardNotFound, GiftCardExpired, GiftCardAlreadyRedeemed, GiftCardCancelled) as e:
        return ValidateGiftCardResponse(valid=False, error=e.message)

    return ValidateGiftCardResponse(
        valid=True,
        code=card.code,
        value=card.reward_value,
        expires_at=card.expires_at,
        customer_id=card.customer_id,
    )


@router.post("/redeem", response_model=RedeemGiftCardResponse)
def redeem(
    payload: RedeemGiftCardRequest,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    card = redeem_gift_card(db, payload.code, ctx.merchant_id, ctx.actor_id, amount=payload.amount)
    return RedeemGiftCardResponse(redeemed_value=card.reward_value)


@router.post("/expire")
def expire(
    ctx: RequestContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    expired = expire_gift_cards(db, ctx.merchant_id)
    db.commit()
    return {"expired": expired}


@router.post("/{gift_card_id}/cancel", response_model=GiftCardOut)
def cancel(
    gift_card_id: UUID,
    ctx: RequestContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return cancel_gift_card(db, gift_card_id, ctx.merchant_id, ctx.actor_id)
