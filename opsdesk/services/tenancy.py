# opsdesk/services/tenancy.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from opsdesk.errors import NotFound
from opsdesk.extensions import db
from opsdesk.models import Organization


# =========================================================
# Types
# =========================================================
@dataclass(frozen=True)
class TenantRef:
    id: str
    slug: str
    name: str


@dataclass(frozen=True)
class RequestContext:
    """
    Everything a service needs to know about the caller, resolved once per request.

    auth_method is "session" or "api_key"; api_key_role is only set for the latter.
    """

    tenant: TenantRef
    user_id: Optional[int] = None
    user_name: Optional[str] = None
    auth_method: str = "session"
    api_key_role: Optional[str] = None

    @property
    def org_id(self) -> str:
        return self.tenant.id


# =========================================================
# Resolver
# =========================================================
def resolve_tenant(slug: str | None) -> TenantRef:
    slug = (slug or "").strip().lower()
    if not slug:
        raise NotFound("Organization not found")

    org = db.session.query(Organization).filter(Organization.slug == slug).first()
    if not org:
        raise NotFound("Organization not found")

    return TenantRef(id=org.id, slug=org.slug, name=org.name)


def get_scoped(model, ctx: RequestContext, entity_id: str, message: str):
    """Load a tenant-owned row by id, or raise NotFound if it belongs elsewhere."""
    row = (
        db.session.query(model)
        .filter(model.id == entity_id, model.organization_id == ctx.org_id)
        .first()
    )
    if not row:
        raise NotFound(message)
    return row
