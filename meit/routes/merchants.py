from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from meit.db import get_db
from meit.deps.context import RequestContext, get_request_context, require_admin
from meit.models.branch import Branch
from meit.schemas.merchant import BranchCreate, BranchOut, MerchantConfigUpdate, MerchantCreate, MerchantOut
from meit.services.audit_service import write_audit_log
from meit.services.merchant_service import create_merchant, get_merchant, update_merchant_config

router = APIRouter(tags=["merchants"])


@router.post("/merchants", response_model=MerchantOut, status_code=201)
def provision_merchant(payload: MerchantCreate, db: Session = Depends(get_db)):
    merchant = create_merchant(db, payload)
    db.commit()
    db.refresh(merchant)
    return merchant


@router.get("/merchants/config", response_model=MerchantOut)
def read_config(
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    return get_merchant(db, ctx.merchant_id)


@router.put("/merchants/config", response_model=MerchantOut)
def put_config(
    payload: MerchantConfigUpdate,
    ctx: RequestContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    merchant = update_merchant_config(db, ctx.merchant_id, payload, actor_id=ctx.actor_id)
    db.commit()
    db.refresh(merchant)
    return merchant


@router.get("/branches", response_model=List[BranchOut])
def list_branches(
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    return (
        db.query(Branch)
        .filter(Branch.merchant_id == ctx.merchant_id)
        .order_by(Branch.created_at.asc())
        .all()
    )


@router.post("/branches", response_model=BranchOut, status_code=201)
def create_branch(
    payload: BranchCreate,
    ctx: RequestContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    get_merchant(db, ctx.merchant_id)

    exists = (
        db.query(Branch.id)
        .filter(Branch.merchant_id == ctx.merchant_id, Branch.qr_code == payload.qr_code)
        .first()
    )
    if exists:
        raise HTTPException(status_code=409, detail="qr_code already used by another branch")

    branch = Branch(
        merchant_id=ctx.merchant_id,
        name=payload.name,
        address=payload.address,
        qr_code=payload.qr_code,
        active=True,
    )
    db.add(branch)
    db.flush()
    write_audit_log(
        db,
        actor_id=ctx.actor_id,
        merchant_id=ctx.merchant_id,
        action="create",
        entity_type="branch",
        entity_id=branch.id,
        data=payload.model_dump(),
    )
    db.commit()
    db.refresh(branch)
    return branch
