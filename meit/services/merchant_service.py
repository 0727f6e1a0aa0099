from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from decimal import Decimal
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.orm import Session

from meit.errors import MerchantConfigMissing, MerchantNotFound
from meit.models.merchant import Merchant
from meit.services.audit_service import write_audit_log


@dataclass(frozen=True)
class MerchantConfig:
    merchant_id: object
    points_per_unit: Decimal
    gift_card_threshold: Optional[int]
    gift_card_value: Optional[Decimal]
    gift_card_expiry_days: int
    gift_card_auto_generate: bool
    max_active_gift_cards: Optional[int]
    tz: tzinfo

    def local_time(self, utc_naive: datetime):
        return utc_naive.replace(tzinfo=timezone.utc).astimezone(self.tz).time()


def resolve_timezone(name: str | None) -> tzinfo:
    if not name or name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise MerchantConfigMissing(f"Unknown timezone: {name}")


def get_merchant(db: Session, merchant_id) -> Merchant:
    merchant = db.query(Merchant).filter(Merchant.id == merchant_id).first()
    if not merchant or not merchant.active:
        raise MerchantNotFound()
    return merchant


def load_merchant_config(db: Session, merchant_id) -> MerchantConfig:
    """Read the merchant's loyalty settings as they are right now.

    Nothing is cached: a configuration change applies to the very next
    transaction, and past transactions are never recomputed.
    """
    merchant = get_merchant(db, merchant_id)

    rate = merchant.points_per_unit
    if rate is None:
        rate = Decimal(1)
    rate = Decimal(str(rate))
    if rate <= 0:
        raise MerchantConfigMissing("points_per_unit must be greater than zero")

    threshold = merchant.gift_card_threshold
    value = merchant.gift_card_value
    if merchant.gift_card_auto_generate:
        if threshold is None or threshold <= 0:
            raise MerchantConfigMissing("gift_card_threshold must be greater than zero")
        if value is None or Decimal(str(value)) <= 0:
            raise MerchantConfigMissing("gift_card_value must be greater than zero")

    expiry_days = merchant.gift_card_expiry_days
    if expiry_days is None or expiry_days <= 0:
        raise MerchantConfigMissing("gift_card_expiry_days must be greater than zero")

    return MerchantConfig(
        merchant_id=merchant.id,
        points_per_unit=rate,
        gift_card_threshold=threshold,
        gift_card_value=Decimal(str(value)) if value is not None else None,
        gift_card_expiry_days=int(expiry_days),
        gift_card_auto_generate=bool(merchant.gift_card_auto_generate),
        max_active_gift_cards=merchant.max_active_gift_cards,
        tz=resolve_timezone(merchant.timezone),
    )


def create_merchant(db: Session, payload) -> Merchant:
    resolve_timezone(payload.timezone)

    merchant = Merchant(**payload.model_dump())
    db.add(merchant)
    db.flush()

    write_audit_log(
        db,
        actor_id=None,
        merchant_id=merchant.id,
        action="create",
        entity_type="merchant",
        entity_id=merchant.id,
        data={"name": merchant.name},
    )
    return merchant


def update_merchant_config(db: Session, merchant_id, payload, *, actor_id: str) -> Merchant:
    merchant = get_merchant(db, merchant_id)

    data = payload.model_dump(exclude_unset=True)
    if "timezone" in data and data["timezone"] is not None:
        resolve_timezone(data["timezone"])

    for k, v in data.items():
        if v is None and k != "max_active_gift_cards":
            continue
        setattr(merchant, k, v)
    db.flush()

    write_audit_log(
        db,
        actor_id=actor_id,
        merchant_id=merchant.id,
        action="update",
        entity_type="merchant_config",
        entity_id=merchant.id,
        data=data,
    )
    return merchant
