# opsdesk/services/api_keys.py
"""
Organization API keys.

A key looks like ``sk_live_<48 hex chars>``. Only a werkzeug hash and a short
display prefix are stored; the plain key is returned once, on creation.
Requests authenticate with the ``X-API-Key`` header.
"""
from __future__ import annotations

import secrets
from typing import Optional

from flask import current_app

from opsdesk.errors import InvalidInput, NotFound
from opsdesk.extensions import db
from opsdesk.models import API_KEY_ROLES, OrganizationApiKey, utcnow_naive
from opsdesk.serializers import ApiKeyRecord, CreatedApiKeyRecord
from opsdesk.services import audit
from opsdesk.services.tenancy import RequestContext
from opsdesk.utils.parsing import clean_str
from opsdesk.utils.hashing import hash_api_key, verify_secret

KEY_PREFIX = "sk_live_"
PREFIX_LENGTH = len(KEY_PREFIX) + 8


def generate_key() -> str:
    return KEY_PREFIX + secrets.token_hex(24)


def display_prefix(plain_key: str) -> str:
    return plain_key[:PREFIX_LENGTH]


def _live_keys(organization_id: str):
    return db.session.query(OrganizationApiKey).filter(
        OrganizationApiKey.organization_id == organization_id,
        OrganizationApiKey.revoked_at.is_(None),
    )


def list_api_keys(ctx: RequestContext, filters: dict | None = None) -> list[ApiKeyRecord]:
    filters = filters or {}
    q = _live_keys(ctx.org_id)

    search = (filters.get("search") or "").strip()
    if search:
        q = q.filter(db.func.lower(OrganizationApiKey.name).like(f"%{search.lower()}%"))

    rows = q.order_by(OrganizationApiKey.created_at.desc()).all()
    return [ApiKeyRecord.from_model(k) for k in rows]


def create_api_key(ctx: RequestContext, payload: dict) -> CreatedApiKeyRecord:
    name = clean_str(payload.get("name"), max_len=120)
    if not name:
        raise InvalidInput("API key name is required")

    role = payload.get("role") or "full-access"
    if role not in API_KEY_ROLES:
        raise InvalidInput("Role must be 'read-only' or 'full-access'")

    plain_key = generate_key()
    key = OrganizationApiKey(
        organization_id=ctx.org_id,
        name=name,
        prefix=display_prefix(plain_key),
        key_hash=hash_api_key(plain_key),
        role=role,
        created_by_user_id=ctx.user_id,
    )
    db.session.add(key)
    db.session.flush()

    audit.record_event(
        ctx,
        entity_type="api_key",
        entity_id=key.id,
        action="created",
        new_value=name,
        metadata={"role": role},
    )
    db.session.commit()

    current_app.logger.info("API key %s created for org %s", key.prefix, ctx.tenant.slug)
    return CreatedApiKeyRecord(record=ApiKeyRecord.from_model(key), plain_key=plain_key)


def delete_api_key(ctx: RequestContext, key_id: Optional[str]) -> None:
    """Revoke (soft delete). Revoked keys vanish from listings and stop authenticating."""
    if not key_id:
        raise InvalidInput("keyId is required")

    key = _live_keys(ctx.org_id).filter(OrganizationApiKey.id == key_id).first()
    if not key:
        raise NotFound("API key not found")

    key.revoked_at = utcnow_naive()
    audit.record_event(
        ctx,
        entity_type="api_key",
        entity_id=key.id,
        action="revoked",
        old_value=key.name,
    )
    db.session.commit()
    current_app.logger.info("API key %s revoked for org %s", key.prefix, ctx.tenant.slug)


def authenticate_api_key(organization_id: str, plain_key: str) -> Optional[OrganizationApiKey]:
    """Live key of this organization matching plain_key, or None."""
    if not plain_key or not plain_key.startswith(KEY_PREFIX):
        return None

    candidates = _live_keys(organization_id).filter(
        OrganizationApiKey.prefix == display_prefix(plain_key)
    ).all()

    for key in candidates:
        if verify_secret(key.key_hash, plain_key):
            key.last_used_at = utcnow_naive()
            db.session.commit()
            return key
    return None
