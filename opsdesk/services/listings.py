# opsdesk/services/listings.py
"""
Read-mostly projections scoped by the resolved organization.

Each listing follows the same contract: ``list_x(ctx, filters) -> [Record]``
and, where a row can be removed, ``delete_x(ctx, id)`` raising NotFound.
"""
from __future__ import annotations

from flask import current_app
from sqlalchemy import or_

from opsdesk.errors import InvalidInput, NotFound
from opsdesk.extensions import db
from opsdesk.models import (
    AuditLog,
    Member,
    PLAN_STATUSES,
    ProductPlan,
    Quote,
    Subscription,
    TENANT_USER_ROLES,
    TENANT_USER_STATUSES,
    TenantOrganization,
    TenantUser,
    User,
)
from opsdesk.serializers import (
    AuditLogRecord,
    CustomerRef,
    MembershipRecord,
    PlanRecord,
    StaffMemberRecord,
    TenantUserDetailRecord,
    TenantUserRecord,
)
from opsdesk.services import audit
from opsdesk.services.tenancy import RequestContext
from opsdesk.utils.parsing import clean_str, parse_bool, parse_int

DEFAULT_LIST_LIMIT = 100
MAX_LIST_LIMIT = 500


def _limit(filters: dict) -> int:
    limit = parse_int(filters.get("limit")) or DEFAULT_LIST_LIMIT
    return max(1, min(limit, MAX_LIST_LIMIT))


def _like(term: str) -> str:
    return f"%{term.lower()}%"


def _initials(name: str) -> str:
    parts = [p for p in (name or "").split() if p]
    return "".join(p[0] for p in parts[:2]).upper() or "?"


def _role_label(role: str) -> str:
    if role in ("owner", "admin"):
        return "Admin"
    if role == "viewer":
        return "Viewer"
    return "User"


# =========================================================
# Tenant users (people at the tenant's customer organizations)
# =========================================================
def list_users(ctx: RequestContext, filters: dict | None = None) -> list[TenantUserRecord]:
    filters = filters or {}

    q = (
        db.session.query(TenantUser, TenantOrganization)
        .join(TenantOrganization, TenantUser.tenant_organization_id == TenantOrganization.id)
        .filter(TenantOrganization.organization_id == ctx.org_id)
    )

    if not parse_bool(filters.get("includeProspects")):
        q = q.filter(TenantOrganization.is_prospect.is_(False))

    search = (filters.get("search") or filters.get("q") or "").strip()
    if search:
        like = _like(search)
        q = q.filter(
            or_(
                db.func.lower(TenantUser.name).like(like),
                db.func.lower(TenantUser.email).like(like),
                db.func.lower(TenantOrganization.name).like(like),
            )
        )

    rows = q.order_by(TenantUser.name.asc(), TenantUser.id.asc()).limit(_limit(filters)).all()

    return [
        TenantUserRecord(
            id=u.id,
            name=u.name,
            email=u.email,
            initials=_initials(u.name),
            organization=CustomerRef(id=org.id, name=org.name),
            role=_role_label(u.role),
            status=u.status,
            last_login=u.last_activity_at,
        )
        for u, org in rows
    ]


def _load_tenant_user(ctx: RequestContext, member_id: str) -> TenantUser:
    user = (
        db.session.query(TenantUser)
        .join(TenantOrganization, TenantUser.tenant_organization_id == TenantOrganization.id)
        .filter(
            TenantUser.id == member_id,
            TenantOrganization.organization_id == ctx.org_id,
        )
        .first()
    )
    if not user:
        raise NotFound("Member not found")
    return user


def get_member(ctx: RequestContext, member_id: str) -> TenantUserDetailRecord:
    return TenantUserDetailRecord.from_model(_load_tenant_user(ctx, member_id))


def update_member(ctx: RequestContext, member_id: str, payload: dict) -> TenantUserDetailRecord:
    """
    Partial update of a tenant user. Every field that actually changes writes
    one audit row (action "<field>_changed") in the same transaction.
    """
    user = _load_tenant_user(ctx, member_id)
    changes: list[tuple[str, object, object]] = []

    def _set(field: str, new_value) -> None:
        old_value = getattr(user, field)
        if new_value != old_value:
            setattr(user, field, new_value)
            changes.append((field, old_value, new_value))

    if "name" in payload:
        name = clean_str(payload["name"], max_len=160)
        if not name:
            raise InvalidInput("Name cannot be empty")
        _set("name", name)

    if "email" in payload:
        email = (clean_str(payload["email"], max_len=255) or "").lower()
        if "@" not in email:
            raise InvalidInput("A valid email is required")
        _set("email", email)

    for field in ("phone", "title", "notes"):
        if field in payload:
            _set(field, clean_str(payload[field], max_len=5000 if field == "notes" else 160))

    if "role" in payload:
        role = (payload["role"] or "").strip().lower() if isinstance(payload["role"], str) else ""
        if role not in TENANT_USER_ROLES:
            raise InvalidInput(f"Role must be one of: {', '.join(TENANT_USER_ROLES)}")
        if role != user.role:
            if user.is_owner or user.role == "owner":
                other_owners = (
                    db.session.query(db.func.count(TenantUser.id))
                    .filter(
                        TenantUser.tenant_organization_id == user.tenant_organization_id,
                        TenantUser.is_owner.is_(True),
                        TenantUser.id != user.id,
                    )
                    .scalar()
                    or 0
                )
                if other_owners == 0:
                    raise InvalidInput(
                        "Cannot change role: This is the last owner. At least one owner must remain."
                    )
            _set("role", role)
            _set("is_owner", role == "owner")

    if "status" in payload:
        status = (payload["status"] or "").strip().lower() if isinstance(payload["status"], str) else ""
        if status not in TENANT_USER_STATUSES:
            raise InvalidInput(f"Status must be one of: {', '.join(TENANT_USER_STATUSES)}")
        _set("status", status)

    for field, old_value, new_value in changes:
        wire_name = "isOwner" if field == "is_owner" else field
        audit.record_event(
            ctx,
            entity_type="tenant_user",
            entity_id=user.id,
            action=f"{wire_name}_changed",
            tenant_organization_id=user.tenant_organization_id,
            field_name=wire_name,
            old_value=old_value,
            new_value=new_value,
        )

    if changes:
        db.session.commit()
        current_app.logger.info("Member %s updated (%d field(s))", user.id, len(changes))

    return TenantUserDetailRecord.from_model(user)


# =========================================================
# Audit logs
# =========================================================
def list_member_audit_logs(ctx: RequestContext, member_id: str, filters: dict | None = None) -> list[AuditLogRecord]:
    """Newest first, capped at AUDIT_LOG_LIMIT (100)."""
    filters = filters or {}
    _load_tenant_user(ctx, member_id)

    cap = current_app.config.get("AUDIT_LOG_LIMIT", 100)
    limit = min(parse_int(filters.get("limit")) or cap, cap)

    rows = (
        db.session.query(AuditLog)
        .filter(
            AuditLog.organization_id == ctx.org_id,
            AuditLog.entity_type == "tenant_user",
            AuditLog.entity_id == member_id,
        )
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .limit(max(1, limit))
        .all()
    )
    return [AuditLogRecord.from_model(r) for r in rows]


# =========================================================
# Staff members (users of the tenant organization itself)
# =========================================================
def list_staff_members(ctx: RequestContext, filters: dict | None = None) -> list[StaffMemberRecord]:
    filters = filters or {}
    q = (
        db.session.query(Member, User)
        .join(User, Member.user_id == User.id)
        .filter(Member.organization_id == ctx.org_id)
    )

    search = (filters.get("search") or filters.get("q") or "").strip()
    if search:
        like = _like(search)
        q = q.filter(or_(db.func.lower(User.name).like(like), db.func.lower(User.email).like(like)))

    rows = q.order_by(User.name.asc()).limit(_limit(filters)).all()
    return [StaffMemberRecord(id=u.id, name=u.name, email=u.email, role=m.role) for m, u in rows]


def get_membership(ctx: RequestContext) -> MembershipRecord:
    org = CustomerRef(id=ctx.tenant.id, name=ctx.tenant.name)
    if ctx.user_id is None:
        return MembershipRecord(is_member=False, role=None, organization=org)

    member = (
        db.session.query(Member)
        .filter(Member.organization_id == ctx.org_id, Member.user_id == ctx.user_id)
        .first()
    )
    return MembershipRecord(is_member=member is not None, role=member.role if member else None, organization=org)


# =========================================================
# Product plans
# =========================================================
def _load_plan(ctx: RequestContext, plan_id: str) -> ProductPlan:
    plan = (
        db.session.query(ProductPlan)
        .filter(ProductPlan.id == plan_id, ProductPlan.organization_id == ctx.org_id)
        .first()
    )
    if not plan:
        raise NotFound("Plan not found")
    return plan


def list_plans(ctx: RequestContext, filters: dict | None = None) -> list[PlanRecord]:
    filters = filters or {}
    q = db.session.query(ProductPlan).filter(ProductPlan.organization_id == ctx.org_id)

    status = (filters.get("status") or "").strip().lower()
    if status and status != "all":
        if status not in PLAN_STATUSES:
            raise InvalidInput(f"Unknown plan status: {status}")
        q = q.filter(ProductPlan.status == status)

    search = (filters.get("search") or filters.get("q") or "").strip()
    if search:
        like = _like(search)
        q = q.filter(
            or_(
                db.func.lower(ProductPlan.name).like(like),
                db.func.lower(db.func.coalesce(ProductPlan.description, "")).like(like),
            )
        )

    rows = (
        q.order_by(ProductPlan.display_order.asc(), ProductPlan.name.asc())
        .limit(_limit(filters))
        .all()
    )
    return [PlanRecord.from_model(p) for p in rows]


def get_plan(ctx: RequestContext, plan_id: str) -> PlanRecord:
    return PlanRecord.from_model(_load_plan(ctx, plan_id))


def delete_plan(ctx: RequestContext, plan_id: str) -> str:
    """
    Remove a plan. Plans still referenced by quotes or subscriptions are
    archived instead, so history keeps pointing at something. Returns
    "deleted" or "archived".
    """
    plan = _load_plan(ctx, plan_id)

    in_use = (
        db.session.query(Quote.id).filter(Quote.product_plan_id == plan.id).first() is not None
        or db.session.query(Subscription.id).filter(Subscription.product_plan_id == plan.id).first() is not None
    )

    if in_use:
        old_status = plan.status
        plan.status = "archived"
        outcome = "archived"
        audit.record_event(
            ctx,
            entity_type="product_plan",
            entity_id=plan.id,
            action="archived",
            field_name="status",
            old_value=old_status,
            new_value="archived",
        )
    else:
        audit.record_event(
            ctx,
            entity_type="product_plan",
            entity_id=plan.id,
            action="deleted",
            old_value=plan.name,
        )
        db.session.delete(plan)
        outcome = "deleted"

    db.session.commit()
    current_app.logger.info("Product plan %s %s", plan_id, outcome)
    return outcome
