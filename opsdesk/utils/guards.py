# opsdesk/utils/guards.py

from __future__ import annotations

from functools import wraps
from typing import Any, Callable

from flask import request
from flask_login import current_user

from opsdesk.errors import Forbidden, Unauthorized
from opsdesk.extensions import db
from opsdesk.models import Member
from opsdesk.services.api_keys import authenticate_api_key
from opsdesk.services.tenancy import RequestContext, resolve_tenant

API_KEY_HEADER = "X-API-Key"
READ_ONLY_METHODS = {"GET", "HEAD", "OPTIONS"}


def _session_user():
    if not getattr(current_user, "is_authenticated", False):
        return None
    if getattr(current_user, "is_active", True) is False:
        return None
    return current_user


def _is_member(org_id: str, user_id: int) -> bool:
    return (
        db.session.query(Member.id)
        .filter(Member.organization_id == org_id, Member.user_id == user_id)
        .first()
        is not None
    )


def build_request_context(tenant_slug: str, members_only: bool = True) -> RequestContext:
    """
    Session first, then X-API-Key. Raises Unauthorized / NotFound / Forbidden.

    An unauthenticated request is rejected before the tenant is looked up, so
    anonymous callers can't discover which slugs exist. Session users must hold a
    Member row in the tenant unless members_only is False.
    """
    user = _session_user()
    if user is not None:
        tenant = resolve_tenant(tenant_slug)
        if members_only and not _is_member(tenant.id, user.id):
            raise Forbidden("You are not a member of this organization")
        return RequestContext(
            tenant=tenant,
            user_id=user.id,
            user_name=user.name,
            auth_method="session",
        )

    raw_key = (request.headers.get(API_KEY_HEADER) or "").strip()
    if not raw_key:
        raise Unauthorized("Unauthorized")

    tenant = resolve_tenant(tenant_slug)
    key = authenticate_api_key(tenant.id, raw_key)
    if key is None:
        raise Unauthorized("Invalid API key")

    if key.role == "read-only" and request.method not in READ_ONLY_METHODS:
        raise Forbidden("API key does not have write permission")

    return RequestContext(
        tenant=tenant,
        user_id=None,
        user_name=f"API key {key.name}",
        auth_method="api_key",
        api_key_role=key.role,
    )


def tenant_api(view: Callable[..., Any] | None = None, *, members_only: bool = True):
    """
    Tenant-scoped API gate:
        @api.route("/<tenant>/quotes/<quote_id>")
        @tenant_api
        def get_quote(ctx, quote_id): ...

    Swaps the <tenant> URL segment for a resolved RequestContext.
    @tenant_api(members_only=False) also admits signed-in non-members.
    """
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(tenant: str, *args, **kwargs):
            ctx = build_request_context(tenant, members_only=members_only)
            return fn(ctx, *args, **kwargs)

        return wrapped

    if view is not None:
        return decorator(view)
    return decorator


def session_required(view: Callable[..., Any]) -> Callable[..., Any]:
    """JSON flavour of login_required: 401 body instead of a redirect."""
    @wraps(view)
    def wrapped(*args, **kwargs):
        if _session_user() is None:
            raise Unauthorized("Unauthorized")
        return view(*args, **kwargs)

    return wrapped
