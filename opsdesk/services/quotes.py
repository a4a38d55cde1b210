# opsdesk/services/quotes.py
"""
Quote lifecycle.

    draft --send--> sent --accept--> converted
                    sent --reject--> rejected
                    sent --expire--> expired
    draft --delete--> (removed)

Every public function takes the request context, returns projection records
and raises opsdesk.errors exceptions. Writes commit here; PDF rendering runs
after the status commit and never fails the operation.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from flask import current_app

from opsdesk.errors import InvalidInput, InvalidState, NotFound
from opsdesk.extensions import db
from opsdesk.models import (
    Invoice,
    InvoiceStatus,
    Organization,
    ProductPlan,
    Quote,
    QuoteStatus,
    TenantOrganization,
    can_transition,
    utcnow_naive,
)
from opsdesk.serializers import ConversionRecord, InvoiceRecord, QuoteRecord
from opsdesk.services import audit
from opsdesk.services.document_files import (
    attach_document_pdf,
    delete_document_pdf,
    detach_document_pdf,
    load_document_pdf_bytes,
    regenerate_document_pdf,
)
from opsdesk.services.line_items import (
    compute_totals,
    normalize_line_items,
    parse_currency,
    parse_money,
    stored_line_items,
)
from opsdesk.services.numbering import allocate_number, commit_with_number_retry
from opsdesk.services.tenancy import RequestContext, TenantRef, get_scoped
from opsdesk.utils.parsing import clean_str, parse_iso_datetime


# ======================
# Lookups
# ======================
def _load_quote(ctx: RequestContext, quote_id: str, *, lock: bool = False) -> Quote:
    q = db.session.query(Quote).filter(
        Quote.id == quote_id,
        Quote.organization_id == ctx.org_id,
    )
    if lock:
        # Row lock: two concurrent transitions on the same quote are serialized.
        q = q.with_for_update(of=Quote)
    quote = q.first()
    if not quote:
        raise NotFound("Quote not found")
    return quote


def get_customer(ctx: RequestContext, customer_id) -> TenantOrganization:
    if not customer_id or not isinstance(customer_id, str):
        raise InvalidInput("tenantOrganizationId is required")
    return get_scoped(TenantOrganization, ctx, customer_id, "Customer organization not found")


def _get_plan(ctx: RequestContext, plan_id) -> Optional[ProductPlan]:
    if plan_id in (None, ""):
        return None
    if not isinstance(plan_id, str):
        raise InvalidInput("productPlanId must be a string")
    return get_scoped(ProductPlan, ctx, plan_id, "Product plan not found")


def _transition(ctx: RequestContext, quote: Quote, target: QuoteStatus, message: str) -> None:
    old = quote.status
    if not can_transition(old, target):
        raise InvalidState(message)
    quote.status = target
    audit.record_status_change(ctx, quote, "quote", old, target)


# ======================
# Queries
# ======================
def list_quotes(ctx: RequestContext, filters: dict | None = None) -> list[QuoteRecord]:
    filters = filters or {}
    q = db.session.query(Quote).filter(Quote.organization_id == ctx.org_id)

    status = (filters.get("status") or "").strip().lower()
    if status:
        try:
            q = q.filter(Quote.status == QuoteStatus(status))
        except ValueError:
            raise InvalidInput(f"Unknown quote status: {status}")

    customer_id = (filters.get("tenantOrganizationId") or "").strip()
    if customer_id:
        q = q.filter(Quote.tenant_organization_id == customer_id)

    rows = q.order_by(Quote.created_at.desc(), Quote.id.desc()).all()
    return [QuoteRecord.from_model(r) for r in rows]


def get_quote(ctx: RequestContext, quote_id: str) -> QuoteRecord:
    return QuoteRecord.from_model(_load_quote(ctx, quote_id))


# ======================
# Create / update / delete (draft)
# ======================
def create_quote(ctx: RequestContext, payload: dict) -> QuoteRecord:
    customer = get_customer(ctx, payload.get("tenantOrganizationId"))
    plan = _get_plan(ctx, payload.get("productPlanId"))
    items = normalize_line_items(payload.get("lineItems"))
    tax = parse_money(payload.get("tax", 0), "tax")
    totals = compute_totals(items, tax)
    currency = parse_currency(payload.get("currency"), current_app.config.get("DEFAULT_CURRENCY", "USD"))
    valid_until = parse_iso_datetime(payload.get("validUntil"), "validUntil")
    notes = clean_str(payload.get("notes"), max_len=5000)

    def stage() -> Quote:
        quote = Quote(
            organization_id=ctx.org_id,
            tenant_organization_id=customer.id,
            product_plan_id=plan.id if plan else None,
            quote_number=allocate_number(ctx.tenant, "quote"),
            status=QuoteStatus.DRAFT,
            subtotal=totals.subtotal,
            tax=totals.tax,
            total=totals.total,
            currency=currency,
            line_items=items,
            valid_until=valid_until,
            billing_name=customer.name,
            billing_email=customer.billing_email,
            billing_address=customer.billing_address,
            notes=notes,
        )
        db.session.add(quote)
        db.session.flush()
        audit.record_event(
            ctx,
            entity_type="quote",
            entity_id=quote.id,
            action="created",
            tenant_organization_id=customer.id,
            new_value=quote.quote_number,
        )
        return quote

    quote = commit_with_number_retry("Create quote", stage)
    current_app.logger.info("Quote %s created for org %s", quote.quote_number, ctx.tenant.slug)
    return QuoteRecord.from_model(quote)


def update_quote(ctx: RequestContext, quote_id: str, payload: dict) -> QuoteRecord:
    quote = _load_quote(ctx, quote_id, lock=True)
    if quote.status != QuoteStatus.DRAFT:
        raise InvalidState("Only draft quotes can be edited")

    changed: list[str] = []

    if "tenantOrganizationId" in payload and payload["tenantOrganizationId"] != quote.tenant_organization_id:
        customer = get_customer(ctx, payload["tenantOrganizationId"])
        quote.tenant_organization_id = customer.id
        quote.tenant_organization = customer
        quote.billing_name = customer.name
        quote.billing_email = customer.billing_email
        quote.billing_address = customer.billing_address
        changed.append("tenantOrganizationId")

    if "productPlanId" in payload:
        plan = _get_plan(ctx, payload["productPlanId"])
        quote.product_plan_id = plan.id if plan else None
        changed.append("productPlanId")

    items = quote.line_items
    if "lineItems" in payload:
        items = normalize_line_items(payload["lineItems"])
        quote.line_items = items
        changed.append("lineItems")

    tax = quote.tax
    if "tax" in payload:
        tax = parse_money(payload["tax"], "tax")
        changed.append("tax")

    # Always re-derive, so subtotal + tax == total holds after every update.
    totals = compute_totals(stored_line_items(items), tax)
    quote.subtotal, quote.tax, quote.total = totals.subtotal, totals.tax, totals.total

    if "currency" in payload:
        quote.currency = parse_currency(payload["currency"], quote.currency)
        changed.append("currency")

    if "validUntil" in payload:
        quote.valid_until = parse_iso_datetime(payload["validUntil"], "validUntil")
        changed.append("validUntil")

    if "notes" in payload:
        quote.notes = clean_str(payload["notes"], max_len=5000)
        changed.append("notes")

    # An artifact only goes stale when something actually changed.
    stale_pdf = None
    if changed:
        stale_pdf = detach_document_pdf(quote)
        audit.record_event(
            ctx,
            entity_type="quote",
            entity_id=quote.id,
            action="updated",
            tenant_organization_id=quote.tenant_organization_id,
            metadata={"fields": changed},
        )

    db.session.commit()
    delete_document_pdf(stale_pdf)
    return QuoteRecord.from_model(quote)


def delete_quote(ctx: RequestContext, quote_id: str) -> None:
    quote = _load_quote(ctx, quote_id, lock=True)
    if quote.status != QuoteStatus.DRAFT:
        raise InvalidState("Only draft quotes can be deleted")

    pdf_path = quote.pdf_path
    audit.record_event(
        ctx,
        entity_type="quote",
        entity_id=quote.id,
        action="deleted",
        tenant_organization_id=quote.tenant_organization_id,
        old_value=quote.quote_number,
    )
    db.session.delete(quote)
    db.session.commit()
    delete_document_pdf(pdf_path)
    current_app.logger.info("Quote %s deleted", quote_id)


# ======================
# Transitions
# ======================
def send_quote(ctx: RequestContext, quote_id: str) -> QuoteRecord:
    quote = _load_quote(ctx, quote_id, lock=True)
    _transition(ctx, quote, QuoteStatus.SENT, "Only draft quotes can be sent")
    quote.sent_at = utcnow_naive()

    customer = quote.tenant_organization
    quote.billing_name = customer.name
    quote.billing_email = customer.billing_email
    quote.billing_address = customer.billing_address

    # A draft-era artifact must not outlive the transition.
    stale_pdf = detach_document_pdf(quote)
    db.session.commit()

    attach_document_pdf(quote, stale_key=stale_pdf)
    current_app.logger.info("Quote %s sent", quote.quote_number)
    return QuoteRecord.from_model(quote)


def invoice_dates(payload: dict) -> tuple[datetime, datetime]:
    issue_date = parse_iso_datetime(payload.get("issueDate"), "issueDate") or utcnow_naive()
    due_date = parse_iso_datetime(payload.get("dueDate"), "dueDate")
    if due_date is None:
        due_date = issue_date + timedelta(days=current_app.config.get("INVOICE_DUE_DAYS", 30))
    if due_date < issue_date:
        raise InvalidInput("dueDate must be on or after issueDate")
    return issue_date, due_date


def accept_quote(ctx: RequestContext, quote_id: str, payload: dict | None = None) -> ConversionRecord:
    """
    sent -> converted, producing a draft invoice.

    The invoice insert, the quote update, the numbering counter bump and the
    audit rows commit together. Amounts, currency and line items are copied
    verbatim; nothing is recomputed.
    """
    issue_date, due_date = invoice_dates(payload or {})

    def stage() -> tuple[Quote, Invoice]:
        quote = _load_quote(ctx, quote_id, lock=True)
        if not can_transition(quote.status, QuoteStatus.CONVERTED):
            raise InvalidState("Only sent quotes can be accepted")

        now = utcnow_naive()
        if quote.valid_until is not None and quote.valid_until < now:
            raise InvalidState("Quote has expired")

        items = stored_line_items(quote.line_items)

        invoice = Invoice(
            organization_id=ctx.org_id,
            tenant_organization_id=quote.tenant_organization_id,
            invoice_number=allocate_number(ctx.tenant, "invoice"),
            status=InvoiceStatus.DRAFT,
            subtotal=quote.subtotal,
            tax=quote.tax,
            total=quote.total,
            currency=quote.currency,
            line_items=items,
            issue_date=issue_date,
            due_date=due_date,
            billing_name=quote.billing_name,
            billing_email=quote.billing_email,
            billing_address=quote.billing_address,
            notes=quote.notes,
        )
        db.session.add(invoice)
        db.session.flush()

        _transition(ctx, quote, QuoteStatus.CONVERTED, "Only sent quotes can be accepted")
        quote.accepted_at = now
        quote.converted_to_invoice_id = invoice.id

        audit.record_event(
            ctx,
            entity_type="invoice",
            entity_id=invoice.id,
            action="created",
            tenant_organization_id=invoice.tenant_organization_id,
            new_value=invoice.invoice_number,
            metadata={"quoteId": quote.id, "quoteNumber": quote.quote_number},
        )
        return quote, invoice

    quote, invoice = commit_with_number_retry("Accept quote", stage)
    current_app.logger.info("Quote %s converted to invoice %s", quote.quote_number, invoice.invoice_number)

    attach_document_pdf(invoice)
    return ConversionRecord(
        quote=QuoteRecord.from_model(quote),
        invoice=InvoiceRecord.from_model(invoice),
    )


def reject_quote(ctx: RequestContext, quote_id: str) -> QuoteRecord:
    quote = _load_quote(ctx, quote_id, lock=True)
    _transition(ctx, quote, QuoteStatus.REJECTED, "Only sent quotes can be rejected")
    quote.rejected_at = utcnow_naive()
    db.session.commit()
    return QuoteRecord.from_model(quote)


def expire_quote(ctx: RequestContext, quote_id: str) -> QuoteRecord:
    quote = _load_quote(ctx, quote_id, lock=True)
    _transition(ctx, quote, QuoteStatus.EXPIRED, "Only sent quotes can be expired")
    db.session.commit()
    return QuoteRecord.from_model(quote)


def expire_overdue_quotes(now: datetime | None = None) -> int:
    """Expire every sent quote whose valid_until has passed. Returns the count."""
    now = now or utcnow_naive()
    rows = (
        db.session.query(Quote, Organization)
        .join(Organization, Organization.id == Quote.organization_id)
        .filter(
            Quote.status == QuoteStatus.SENT,
            Quote.valid_until.isnot(None),
            Quote.valid_until < now,
        )
        .with_for_update(of=Quote)
        .all()
    )

    for quote, org in rows:
        ctx = RequestContext(
            tenant=TenantRef(id=org.id, slug=org.slug, name=org.name),
            user_name="system",
            auth_method="system",
        )
        _transition(ctx, quote, QuoteStatus.EXPIRED, "Only sent quotes can be expired")

    db.session.commit()
    if rows:
        current_app.logger.info("Expired %d overdue quote(s)", len(rows))
    return len(rows)


# ======================
# PDF
# ======================
def quote_pdf(ctx: RequestContext, quote_id: str) -> tuple[str, bytes]:
    """(filename, bytes) of the stored artifact. No path or no file -> NotFound."""
    quote = _load_quote(ctx, quote_id)
    if not quote.pdf_path:
        raise NotFound("PDF not available for this quote")
    return f"{quote.quote_number}.pdf", load_document_pdf_bytes(quote.pdf_path)


def regenerate_quote_pdf(ctx: RequestContext, quote_id: str) -> QuoteRecord:
    quote = _load_quote(ctx, quote_id)
    regenerate_document_pdf(quote)
    return QuoteRecord.from_model(quote)
