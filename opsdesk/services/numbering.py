# opsdesk/services/numbering.py
"""
Human-friendly, per-organization document numbers:

    QUO-ACME-1001, QUO-ACME-1002, ...
    INV-ACME-1001, INV-ACME-1002, ...

The next value lives in a DocumentSequence row that is locked (SELECT ... FOR
UPDATE) for the rest of the caller's transaction, so two requests converting
quotes for the same organization are serialized on that row. The first
allocation seeds the counter from the number of documents that already exist,
which keeps numbering continuous for data created before the counter existed.

Callers own the transaction: allocate, insert the document, commit. The
(organization_id, *_number) unique constraints are the last line of defence;
callers retry once on IntegrityError.
"""
from __future__ import annotations

import sqlalchemy as sa
from flask import current_app
from sqlalchemy.exc import IntegrityError

from opsdesk.errors import Internal
from opsdesk.extensions import db
from opsdesk.models import DocumentSequence, Invoice, Quote
from opsdesk.services.tenancy import TenantRef

_KINDS = {
    "quote": ("QUO", Quote, Quote.quote_number),
    "invoice": ("INV", Invoice, Invoice.invoice_number),
}


def format_number(prefix: str, slug: str, value: int) -> str:
    return f"{prefix}-{slug.upper()}-{value}"


def _number_taken(model, column, organization_id: str, number: str) -> bool:
    return (
        db.session.query(model.id)
        .filter(model.organization_id == organization_id, column == number)
        .first()
        is not None
    )


def allocate_number(tenant: TenantRef, kind: str) -> str:
    prefix, model, column = _KINDS[kind]

    seq = (
        db.session.query(DocumentSequence)
        .filter(
            DocumentSequence.organization_id == tenant.id,
            DocumentSequence.kind == kind,
        )
        .with_for_update()
        .first()
    )

    if seq is None:
        existing = (
            db.session.query(sa.func.count(model.id))
            .filter(model.organization_id == tenant.id)
            .scalar()
            or 0
        )
        seq = DocumentSequence(
            organization_id=tenant.id,
            kind=kind,
            next_value=current_app.config.get("NUMBER_START", 1001) + existing,
        )
        db.session.add(seq)

    value = seq.next_value
    number = format_number(prefix, tenant.slug, value)

    # Skip over numbers already used (imported rows, manual fixes).
    while _number_taken(model, column, tenant.id, number):
        value += 1
        number = format_number(prefix, tenant.slug, value)

    seq.next_value = value + 1
    db.session.flush()
    return number


def commit_with_number_retry(action: str, stage):
    """
    Run `stage()` (which allocates a number and stages rows) and commit.
    On a uniqueness conflict, roll back and stage once more from scratch.
    """
    for attempt in range(2):
        try:
            result = stage()
            db.session.commit()
            return result
        except IntegrityError:
            db.session.rollback()
            if attempt == 0:
                current_app.logger.warning("%s hit a numbering conflict, retrying", action)
                continue
            current_app.logger.exception("%s failed due to a numbering conflict", action)
            raise Internal(f"{action} failed due to a numbering conflict")
