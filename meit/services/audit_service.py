import json
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from meit.models.audit_log import AuditLog


def _jsonable(value):
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(v) for v in value]
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Decimal):
        return str(value)
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value


def write_audit_log(
    db: Session,
    *,
    actor_id,
    merchant_id,
    action: str,
    entity_type: str,
    entity_id=None,
    data: dict | None = None,
) -> AuditLog:
    payload = _jsonable(data or {})
    # fail here rather than at flush time if something slipped through
    json.dumps(payload)

    entry = AuditLog(
        actor_id=str(actor_id) if actor_id is not None else None,
        merchant_id=merchant_id,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        data=payload,
    )
    db.add(entry)
    return entry
