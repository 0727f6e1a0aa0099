from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from meit.db import get_db
from meit.deps.context import RequestContext, get_request_context, require_admin
from meit.models.challenge import Challenge
from meit.models.challenge_completion import ChallengeCompletion
from meit.schemas.challenge import ChallengeCreate, ChallengeOut, ChallengeUpdate
from meit.services.audit_service import write_audit_log
from meit.services.challenge_service import create_challenge, get_challenge, to_out, update_challenge

router = APIRouter(prefix="/challenges", tags=["challenges"])


@router.get("", response_model=List[ChallengeOut])
def list_challenges(
    active: Optional[bool] = None,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    q = db.query(Challenge).filter(Challenge.merchant_id == ctx.merchant_id)
    if active is not None:
        q = q.filter(Challenge.is_active.is_(active))
    return [to_out(c) for c in q.order_by(Challenge.created_at.desc()).all()]


@router.post("", response_model=ChallengeOut, status_code=201)
def create(
    payload: ChallengeCreate,
    ctx: RequestContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    challenge = create_challenge(db, ctx.merchant_id, payload)
    write_audit_log(
        db,
        actor_id=ctx.actor_id,
        merchant_id=ctx.merchant_id,
        action="create",
        entity_type="challenge",
        entity_id=challenge.id,
        data=payload.model_dump(mode="json"),
    )
    db.commit()
    db.refresh(challenge)
    return to_out(challenge)


@router.get("/{challenge_id}", response_model=ChallengeOut)
def read(
    challenge_id: UUID,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    return to_out(get_challenge(db, challenge_id, ctx.merchant_id))


@router.patch("/{challenge_id}", response_model=ChallengeOut)
def patch(
    challenge_id: UUID,
    payload: ChallengeUpdate,
    ctx: RequestContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    challenge = get_challenge(db, challenge_id, ctx.merchant_id)
    update_challenge(db, challenge, payload)
    write_audit_log(
        db,
        actor_id=ctx.actor_id,
        merchant_id=ctx.merchant_id,
        action="update",
        entity_type="challenge",
        entity_id=challenge.id,
        data=payload.model_dump(mode="json", exclude_unset=True),
    )
    db.commit()
    db.refresh(challenge)
    return to_out(challenge)


@router.delete("/{challenge_id}")
def delete(
    challenge_id: UUID,
    ctx: RequestContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    challenge = get_challenge(db, challenge_id, ctx.merchant_id)

    db.query(ChallengeCompletion).filter(ChallengeCompletion.challenge_id == challenge.id).delete(
        synchronize_session=False
    )
    db.delete(challenge)
    write_audit_log(
        db,
        actor_id=ctx.actor_id,
        merchant_id=ctx.merchant_id,
        action="delete",
        entity_type="challenge",
        entity_id=challenge_id,
    )
    db.commit()
    return {"success": True}
