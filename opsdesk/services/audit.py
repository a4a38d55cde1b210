# opsdesk/services/audit.py
from __future__ import annotations

from typing import Any, Optional

from flask import current_app

from opsdesk.extensions import db
from opsdesk.models import AuditLog
from opsdesk.services.tenancy import RequestContext


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(getattr(value, "value", value))


def record_event(
    ctx: RequestContext,
    *,
    entity_type: str,
    entity_id: str,
    action: str,
    tenant_organization_id: Optional[str] = None,
    field_name: Optional[str] = None,
    old_value: Any = None,
    new_value: Any = None,
    metadata: Optional[dict] = None,
) -> AuditLog:
    """
    Add an audit row to the current session. Does NOT commit: the entry lands
    in the same transaction as the change it describes.
    """
    entry = AuditLog(
        organization_id=ctx.org_id,
        tenant_organization_id=tenant_organization_id,
        performed_by_user_id=ctx.user_id,
        performed_by_name=ctx.user_name,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        field_name=field_name,
        old_value=_as_text(old_value),
        new_value=_as_text(new_value),
        event_metadata=metadata,
    )
    db.session.add(entry)

    current_app.logger.info(
        "audit %s %s:%s by=%s",
        action,
        entity_type,
        entity_id,
        ctx.user_id if ctx.user_id is not None else ctx.auth_method,
    )
    return entry


def record_status_change(ctx: RequestContext, document, entity_type: str, old_status, new_status) -> AuditLog:
    return record_event(
        ctx,
        entity_type=entity_type,
        entity_id=document.id,
        action="status_changed",
        tenant_organization_id=document.tenant_organization_id,
        field_name="status",
        old_value=old_status,
        new_value=new_status,
    )
