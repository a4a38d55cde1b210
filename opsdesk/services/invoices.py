# opsdesk/services/invoices.py
"""
Invoice lifecycle.

    draft --finalize--> final --pay--> paid
    {draft, final} --void--> void
"""
from __future__ import annotations

import calendar
from datetime import datetime
from typing import Optional

from flask import current_app

from opsdesk.errors import InvalidInput, InvalidState, NotFound
from opsdesk.extensions import db
from opsdesk.models import Invoice, InvoiceStatus, Subscription, can_transition, utcnow_naive
from opsdesk.serializers import InvoiceRecord
from opsdesk.services import audit
from opsdesk.services.document_files import (
    attach_document_pdf,
    detach_document_pdf,
    load_document_pdf_bytes,
    regenerate_document_pdf,
)
from opsdesk.services.line_items import compute_totals, normalize_line_items, parse_currency, parse_money
from opsdesk.services.numbering import allocate_number, commit_with_number_retry
from opsdesk.services.quotes import invoice_dates, get_customer
from opsdesk.services.tenancy import RequestContext, get_scoped
from opsdesk.utils.parsing import clean_str


# ======================
# Lookups
# ======================
def _load_invoice(ctx: RequestContext, invoice_id: str, *, lock: bool = False) -> Invoice:
    q = db.session.query(Invoice).filter(
        Invoice.id == invoice_id,
        Invoice.organization_id == ctx.org_id,
    )
    if lock:
        q = q.with_for_update(of=Invoice)
    invoice = q.first()
    if not invoice:
        raise NotFound("Invoice not found")
    return invoice


def _transition(ctx: RequestContext, invoice: Invoice, target: InvoiceStatus, message: str) -> None:
    old = invoice.status
    if not can_transition(old, target):
        raise InvalidState(message)
    invoice.status = target
    audit.record_status_change(ctx, invoice, "invoice", old, target)


def _add_months(dt: datetime, months: int) -> datetime:
    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


# ======================
# Queries
# ======================
def list_invoices(ctx: RequestContext, filters: dict | None = None) -> list[InvoiceRecord]:
    filters = filters or {}
    q = db.session.query(Invoice).filter(Invoice.organization_id == ctx.org_id)

    status = (filters.get("status") or "").strip().lower()
    if status:
        try:
            q = q.filter(Invoice.status == InvoiceStatus(status))
        except ValueError:
            raise InvalidInput(f"Unknown invoice status: {status}")

    customer_id = (filters.get("tenantOrganizationId") or "").strip()
    if customer_id:
        q = q.filter(Invoice.tenant_organization_id == customer_id)

    subscription_id = (filters.get("subscriptionId") or "").strip()
    if subscription_id:
        q = q.filter(Invoice.subscription_id == subscription_id)

    rows = q.order_by(Invoice.created_at.desc(), Invoice.id.desc()).all()
    return [InvoiceRecord.from_model(r) for r in rows]


def get_invoice(ctx: RequestContext, invoice_id: str) -> InvoiceRecord:
    return InvoiceRecord.from_model(_load_invoice(ctx, invoice_id))


# ======================
# Create (standalone)
# ======================
def create_invoice(ctx: RequestContext, payload: dict) -> InvoiceRecord:
    customer = get_customer(ctx, payload.get("tenantOrganizationId"))

    subscription: Optional[Subscription] = None
    if payload.get("subscriptionId"):
        subscription = get_scoped(Subscription, ctx, payload["subscriptionId"], "Subscription not found")
        if subscription.tenant_organization_id != customer.id:
            raise InvalidInput("Subscription does not belong to this customer organization")

    items = normalize_line_items(payload.get("lineItems"))
    totals = compute_totals(items, parse_money(payload.get("tax", 0), "tax"))
    currency = parse_currency(payload.get("currency"), current_app.config.get("DEFAULT_CURRENCY", "USD"))
    issue_date, due_date = invoice_dates(payload)
    notes = clean_str(payload.get("notes"), max_len=5000)

    def stage() -> Invoice:
        invoice = Invoice(
            organization_id=ctx.org_id,
            tenant_organization_id=customer.id,
            subscription_id=subscription.id if subscription else None,
            invoice_number=allocate_number(ctx.tenant, "invoice"),
            status=InvoiceStatus.DRAFT,
            subtotal=totals.subtotal,
            tax=totals.tax,
            total=totals.total,
            currency=currency,
            line_items=items,
            issue_date=issue_date,
            due_date=due_date,
            billing_name=customer.name,
            billing_email=customer.billing_email,
            billing_address=customer.billing_address,
            notes=notes,
        )
        db.session.add(invoice)
        db.session.flush()
        audit.record_event(
            ctx,
            entity_type="invoice",
            entity_id=invoice.id,
            action="created",
            tenant_organization_id=customer.id,
            new_value=invoice.invoice_number,
        )
        return invoice

    invoice = commit_with_number_retry("Create invoice", stage)
    current_app.logger.info("Invoice %s created for org %s", invoice.invoice_number, ctx.tenant.slug)

    attach_document_pdf(invoice)
    return InvoiceRecord.from_model(invoice)


# ======================
# Transitions
# ======================
def finalize_invoice(ctx: RequestContext, invoice_id: str) -> InvoiceRecord:
    invoice = _load_invoice(ctx, invoice_id, lock=True)
    if invoice.status == InvoiceStatus.FINAL:
        raise InvalidState("Invoice is already finalized")

    _transition(ctx, invoice, InvoiceStatus.FINAL, "Only draft invoices can be finalized")
    invoice.finalized_at = utcnow_naive()
    # The draft PDF still says "draft"; never serve it for a final invoice.
    stale_pdf = detach_document_pdf(invoice)
    db.session.commit()

    attach_document_pdf(invoice, stale_key=stale_pdf)
    current_app.logger.info("Invoice %s finalized", invoice.invoice_number)
    return InvoiceRecord.from_model(invoice)


def _activate_subscription(ctx: RequestContext, subscription: Subscription, now: datetime) -> None:
    months = 12 if subscription.billing_cycle == "yearly" else 1
    start = subscription.current_period_end if (
        subscription.status == "active" and subscription.current_period_end and subscription.current_period_end > now
    ) else now

    old_status = subscription.status
    subscription.status = "active"
    subscription.current_period_start = start
    subscription.current_period_end = _add_months(start, months)

    customer = subscription.tenant_organization
    if customer is not None:
        customer.subscription_status = "active"

    audit.record_event(
        ctx,
        entity_type="subscription",
        entity_id=subscription.id,
        action="activated",
        tenant_organization_id=subscription.tenant_organization_id,
        field_name="status",
        old_value=old_status,
        new_value="active",
        metadata={"periodEnd": subscription.current_period_end.isoformat()},
    )


def pay_invoice(ctx: RequestContext, invoice_id: str) -> InvoiceRecord:
    invoice = _load_invoice(ctx, invoice_id, lock=True)
    if invoice.status == InvoiceStatus.PAID:
        raise InvalidState("Invoice is already paid")
    if invoice.status == InvoiceStatus.VOID:
        raise InvalidState("Cannot pay a void invoice")

    now = utcnow_naive()
    _transition(ctx, invoice, InvoiceStatus.PAID, "Only finalized invoices can be paid")
    invoice.paid_at = now

    if invoice.subscription is not None:
        _activate_subscription(ctx, invoice.subscription, now)

    db.session.commit()
    current_app.logger.info("Invoice %s paid", invoice.invoice_number)
    return InvoiceRecord.from_model(invoice)


def void_invoice(ctx: RequestContext, invoice_id: str) -> InvoiceRecord:
    invoice = _load_invoice(ctx, invoice_id, lock=True)
    if invoice.status == InvoiceStatus.PAID:
        raise InvalidState("Paid invoices cannot be voided")

    _transition(ctx, invoice, InvoiceStatus.VOID, "Invoice is already void")
    invoice.voided_at = utcnow_naive()
    db.session.commit()
    current_app.logger.info("Invoice %s voided", invoice.invoice_number)
    return InvoiceRecord.from_model(invoice)


# ======================
# PDF
# ======================
def invoice_pdf(ctx: RequestContext, invoice_id: str) -> tuple[str, bytes]:
    invoice = _load_invoice(ctx, invoice_id)
    if not invoice.pdf_path:
        raise NotFound("PDF not available for this invoice")
    return f"{invoice.invoice_number}.pdf", load_document_pdf_bytes(invoice.pdf_path)


def regenerate_invoice_pdf(ctx: RequestContext, invoice_id: str) -> InvoiceRecord:
    invoice = _load_invoice(ctx, invoice_id)
    regenerate_document_pdf(invoice)
    return InvoiceRecord.from_model(invoice)
