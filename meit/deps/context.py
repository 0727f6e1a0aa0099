from dataclasses import dataclass
from uuid import UUID

from fastapi import Depends, Header, HTTPException

from meit.errors import PermissionDenied

ROLES = ("admin", "operator")


@dataclass(frozen=True)
class RequestContext:
    merchant_id: UUID
    actor_id: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def get_request_context(
    x_merchant_id: str | None = Header(default=None, alias="X-Merchant-Id"),
    x_actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
    x_actor_role: str | None = Header(default=None, alias="X-Actor-Role"),
) -> RequestContext:
    if not x_merchant_id:
        raise HTTPException(
            status_code=400,
            detail="Missing merchant context. Provide X-Merchant-Id header.",
        )
    try:
        merchant_id = UUID(x_merchant_id.strip())
    except ValueError:
        raise HTTPException(status_code=400, detail="X-Merchant-Id must be a UUID")

    if not x_actor_id or not x_actor_id.strip():
        raise HTTPException(
            status_code=400,
            detail="Missing actor context. Provide X-Actor-Id header.",
        )

    role = (x_actor_role or "operator").strip().lower()
    if role not in ROLES:
        raise HTTPException(status_code=400, detail=f"X-Actor-Role must be one of {', '.join(ROLES)}")

    return RequestContext(merchant_id=merchant_id, actor_id=x_actor_id.strip(), role=role)


def require_admin(ctx: RequestContext = Depends(get_request_context)) -> RequestContext:
    if not ctx.is_admin:
        raise PermissionDenied("Admin role required")
    return ctx
