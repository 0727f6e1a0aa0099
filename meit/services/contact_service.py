import re

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from meit.errors import ConcurrencyConflict, CustomerNotFound, DuplicateCustomer, InvalidPhone
from meit.models.customer import Customer
from meit.models.customer_merchant import CustomerMerchant
from meit.services.audit_service import write_audit_log


_PHONE_SEPARATORS = re.compile(r"[\s\-().]")


def normalize_phone(raw: str) -> str:
    """Normalize to ``+<country><number>``.

    Accepts WhatsApp JIDs (``549112233@s.whatsapp.net``), ``00`` prefixes and
    the usual separators.
    """
    value = (raw or "").strip()
    if "@" in value:
        value = value.split("@", 1)[0]
    value = _PHONE_SEPARATORS.sub("", value)

    if value.startswith("+"):
        value = value[1:]
    elif value.startswith("00"):
        value = value[2:]

    if not value.isdigit() or not (7 <= len(value) <= 15):
        raise InvalidPhone()
    return f"+{value}"


def get_customer(db: Session, customer_id) -> Customer:
    customer = db.query(Customer).filter(Customer.id == customer_id).first()
    if not customer:
        raise CustomerNotFound()
    return customer


def get_or_create_customer(
    db: Session,
    phone: str,
    *,
    name: str | None = None,
    email: str | None = None,
    opt_in_marketing: bool | None = None,
) -> tuple[Customer, bool]:
    normalized = normalize_phone(phone)
    customer = db.query(Customer).filter(Customer.phone == normalized).first()
    created = False

    if not customer:
        customer = Customer(
            phone=normalized,
            name=name,
            email=email,
            opt_in_marketing=bool(opt_in_marketing),
        )
        db.add(customer)
        try:
            db.flush()
        except IntegrityError as e:
            # same phone enrolled concurrently, a retry will find it
            raise ConcurrencyConflict(step="CREATE_CUSTOMER") from e
        created = True
    else:
        # fill blanks only, an existing profile is never overwritten here
        if name and not customer.name:
            customer.name = name
        if email and not customer.email:
            customer.email = email

    return customer, created


def get_relationship(db: Session, customer_id, merchant_id):
    return (
        db.query(CustomerMerchant)
        .filter(
            CustomerMerchant.customer_id == customer_id,
            CustomerMerchant.merchant_id == merchant_id,
        )
        .first()
    )


def get_or_create_relationship(db: Session, customer_id, merchant_id) -> CustomerMerchant:
    """Return the customer-merchant row, inserting it on first contact.

    Losing the insert race to another first purchase raises
    ``ConcurrencyConflict``; the session must be rolled back before the
    caller retries and finds the winner's row.
    """
    relationship = get_relationship(db, customer_id, merchant_id)
    if not relationship:
        relationship = CustomerMerchant(
            customer_id=customer_id,
            merchant_id=merchant_id,
            points_balance=0,
            visits_count=0,
        )
        db.add(relationship)
        try:
            db.flush()
        except IntegrityError as e:
            raise ConcurrencyConflict(step="CREATE_RELATIONSHIP") from e
    return relationship


def require_relationship(db: Session, customer_id, merchant_id) -> CustomerMerchant:
    # a customer without a relationship is invisible to this merchant
    relationship = get_relationship(db, customer_id, merchant_id)
    if not relationship:
        raise CustomerNotFound()
    return relationship


def lock_relationship(db: Session, relationship_id) -> CustomerMerchant:
    return (
        db.query(CustomerMerchant)
        .filter(CustomerMerchant.id == relationship_id)
        .populate_existing()
        .with_for_update()
        .one()
    )


def update_customer(db: Session, customer: Customer, payload) -> Customer:
    data = payload.model_dump(exclude_unset=True)
    for k, v in data.items():
        if k == "opt_in_marketing" and v is None:
            continue
        setattr(customer, k, v)
    db.flush()
    return customer


def register_customer(db: Session, merchant_id, payload, *, actor_id: str) -> Customer:
    """Enroll a customer with a merchant, creating the profile if needed.

    The phone identifies the person across merchants; enrolling twice with
    the same merchant is rejected.
    """
    customer, created = get_or_create_customer(
        db,
        payload.phone,
        name=payload.name,
        email=payload.email,
        opt_in_marketing=payload.opt_in_marketing,
    )
    if not created and get_relationship(db, customer.id, merchant_id):
        raise DuplicateCustomer()

    get_or_create_relationship(db, customer.id, merchant_id)

    write_audit_log(
        db,
        actor_id=actor_id,
        merchant_id=merchant_id,
        action="create",
        entity_type="customer",
        entity_id=customer.id,
        data={"phone": customer.phone, "new_profile": created},
    )
    return customer
