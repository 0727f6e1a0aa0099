from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from meit.db import get_db
from meit.deps.context import RequestContext, get_request_context
from meit.schemas.customer import CustomerCreate, CustomerOut, CustomerUpdate
from meit.schemas.gift_card import GiftCardOut
from meit.schemas.points import BalanceOut, BalanceVerificationOut
from meit.services.audit_service import write_audit_log
from meit.services.contact_service import get_customer, register_customer, require_relationship, update_customer
from meit.services.gift_card_service import list_gift_cards
from meit.services.ledger_service import get_balance, verify_balance

router = APIRouter(prefix="/customers", tags=["customers"])


def _merchant_customer(db: Session, customer_id: UUID, merchant_id: UUID):
    require_relationship(db, customer_id, merchant_id)
    return get_customer(db, customer_id)


@router.post("", response_model=CustomerOut, status_code=201)
def create_customer(
    payload: CustomerCreate,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    customer = register_customer(db, ctx.merchant_id, payload, actor_id=ctx.actor_id)
    db.commit()
    db.refresh(customer)
    return customer


@router.get("/{customer_id}", response_model=CustomerOut)
def read_customer(
    customer_id: UUID,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    return _merchant_customer(db, customer_id, ctx.merchant_id)


@router.patch("/{customer_id}", response_model=CustomerOut)
def patch_customer(
    customer_id: UUID,
    payload: CustomerUpdate,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    customer = _merchant_customer(db, customer_id, ctx.merchant_id)
    update_customer(db, customer, payload)
    write_audit_log(
        db,
        actor_id=ctx.actor_id,
        merchant_id=ctx.merchant_id,
        action="update",
        entity_type="customer",
        entity_id=customer.id,
        data=payload.model_dump(exclude_unset=True),
    )
    db.commit()
    db.refresh(customer)
    return customer


@router.get("/{customer_id}/balance", response_model=BalanceOut)
def read_balance(
    customer_id: UUID,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    relationship = get_balance(db, customer_id, ctx.merchant_id)
    return BalanceOut(
        customer_id=relationship.customer_id,
        merchant_id=relationship.merchant_id,
        points_balance=relationship.points_balance,
        visits_count=relationship.visits_count,
        last_visit_at=relationship.last_visit_at,
    )


@router.get("/{customer_id}/balance/verify", response_model=BalanceVerificationOut)
def read_balance_verification(
    customer_id: UUID,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    return verify_balance(db, customer_id, ctx.merchant_id)


@router.get("/{customer_id}/gift-cards", response_model=List[GiftCardOut])
def list_customer_gift_cards(
    customer_id: UUID,
    status: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    require_relationship(db, customer_id, ctx.merchant_id)
    return list_gift_cards(db, ctx.merchant_id, status=status, customer_id=customer_id, limit=limit, offset=offset)
