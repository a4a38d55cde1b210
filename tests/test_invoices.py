import os
from datetime import datetime

import pytest

from opsdesk.errors import InvalidInput, InvalidState, NotFound
from opsdesk.extensions import db
from opsdesk.models import AuditLog, Invoice, Subscription, TenantOrganization
from opsdesk.services import document_files, invoices, quotes

INVOICE_ITEMS = [{"description": "Annual licence", "quantity": 1, "unitPrice": 50000}]


@pytest.fixture
def draft_invoice(ctx, make_quote):
    return quotes.accept_quote(ctx, make_quote(status="sent").id).invoice


@pytest.fixture
def subscription(org, customer, plan):
    sub = Subscription(
        organization_id=org.id,
        tenant_organization_id=customer.id,
        product_plan_id=plan.id,
        status="trialing",
        billing_cycle="monthly",
    )
    db.session.add(sub)
    db.session.commit()
    return sub


class TestCreateInvoice:
    def test_standalone_invoice(self, ctx, customer):
        invoice = invoices.create_invoice(ctx, {
            "tenantOrganizationId": customer.id,
            "lineItems": INVOICE_ITEMS,
            "dueDate": "2999-01-01",
        })

        assert invoice.invoice_number == "INV-ACME-1001"
        assert invoice.status == "draft"
        assert invoice.total == 50000
        assert invoice.pdf_path is not None

    def test_shares_numbering_with_conversions(self, ctx, customer, draft_invoice):
        invoice = invoices.create_invoice(ctx, {"tenantOrganizationId": customer.id, "lineItems": INVOICE_ITEMS})
        assert draft_invoice.invoice_number == "INV-ACME-1001"
        assert invoice.invoice_number == "INV-ACME-1002"

    def test_subscription_must_belong_to_customer(self, ctx, org, subscription):
        stranger = TenantOrganization(organization_id=org.id, name="Stranger")
        db.session.add(stranger)
        db.session.commit()

        with pytest.raises(InvalidInput):
            invoices.create_invoice(ctx, {
                "tenantOrganizationId": stranger.id,
                "subscriptionId": subscription.id,
                "lineItems": INVOICE_ITEMS,
            })


class TestFinalizeInvoice:
    def test_draft_becomes_final(self, ctx, draft_invoice):
        invoice = invoices.finalize_invoice(ctx, draft_invoice.id)
        assert invoice.status == "final"
        assert invoice.finalized_at is not None
        assert invoice.pdf_path is not None

    def test_final_pdf_replaces_draft_artifact(self, ctx, draft_invoice):
        draft_file = document_files._abs_path(draft_invoice.pdf_path)

        invoice = invoices.finalize_invoice(ctx, draft_invoice.id)

        assert invoice.pdf_path not in (None, draft_invoice.pdf_path)
        assert not os.path.exists(draft_file)

    def test_draft_artifact_dropped_when_render_fails(self, ctx, draft_invoice, monkeypatch):
        draft_file = document_files._abs_path(draft_invoice.pdf_path)

        def renderer_down(*args, **kwargs):
            raise RuntimeError("renderer down")

        monkeypatch.setattr(document_files, "render_invoice_pdf", renderer_down)

        invoice = invoices.finalize_invoice(ctx, draft_invoice.id)

        assert invoice.status == "final"
        assert invoice.pdf_path is None
        assert db.session.get(Invoice, draft_invoice.id).pdf_path is None
        assert not os.path.exists(draft_file)

        with pytest.raises(NotFound) as exc:
            invoices.invoice_pdf(ctx, draft_invoice.id)
        assert exc.value.message == "PDF not available for this invoice"

    def test_already_finalized(self, ctx, draft_invoice):
        invoices.finalize_invoice(ctx, draft_invoice.id)

        with pytest.raises(InvalidState) as exc:
            invoices.finalize_invoice(ctx, draft_invoice.id)
        assert exc.value.message == "Invoice is already finalized"

    def test_void_cannot_be_finalized(self, ctx, draft_invoice):
        invoices.void_invoice(ctx, draft_invoice.id)

        with pytest.raises(InvalidState) as exc:
            invoices.finalize_invoice(ctx, draft_invoice.id)
        assert exc.value.message == "Only draft invoices can be finalized"

    def test_unknown_invoice(self, ctx):
        with pytest.raises(NotFound) as exc:
            invoices.finalize_invoice(ctx, "inv_missing")
        assert exc.value.message == "Invoice not found"


class TestPayInvoice:
    def test_final_invoice_is_paid(self, ctx, draft_invoice):
        invoices.finalize_invoice(ctx, draft_invoice.id)
        invoice = invoices.pay_invoice(ctx, draft_invoice.id)

        assert invoice.status == "paid"
        assert invoice.paid_at is not None

    def test_draft_cannot_be_paid(self, ctx, draft_invoice):
        with pytest.raises(InvalidState) as exc:
            invoices.pay_invoice(ctx, draft_invoice.id)
        assert exc.value.message == "Only finalized invoices can be paid"

    def test_paying_twice(self, ctx, draft_invoice):
        invoices.finalize_invoice(ctx, draft_invoice.id)
        invoices.pay_invoice(ctx, draft_invoice.id)

        with pytest.raises(InvalidState) as exc:
            invoices.pay_invoice(ctx, draft_invoice.id)
        assert exc.value.message == "Invoice is already paid"

    def test_activates_linked_subscription(self, ctx, customer, subscription):
        invoice = invoices.create_invoice(ctx, {
            "tenantOrganizationId": customer.id,
            "subscriptionId": subscription.id,
            "lineItems": INVOICE_ITEMS,
        })
        invoices.finalize_invoice(ctx, invoice.id)
        invoices.pay_invoice(ctx, invoice.id)

        sub = db.session.get(Subscription, subscription.id)
        assert sub.status == "active"
        assert sub.current_period_end > sub.current_period_start
        assert db.session.get(TenantOrganization, customer.id).subscription_status == "active"
        assert db.session.query(AuditLog).filter_by(entity_type="subscription", action="activated").count() == 1


class TestVoidInvoice:
    def test_final_invoice_can_be_voided(self, ctx, draft_invoice):
        invoices.finalize_invoice(ctx, draft_invoice.id)
        assert invoices.void_invoice(ctx, draft_invoice.id).status == "void"

    def test_paid_invoice_cannot_be_voided(self, ctx, draft_invoice):
        invoices.finalize_invoice(ctx, draft_invoice.id)
        invoices.pay_invoice(ctx, draft_invoice.id)

        with pytest.raises(InvalidState) as exc:
            invoices.void_invoice(ctx, draft_invoice.id)
        assert exc.value.message == "Paid invoices cannot be voided"

    def test_voiding_twice(self, ctx, draft_invoice):
        invoices.void_invoice(ctx, draft_invoice.id)

        with pytest.raises(InvalidState) as exc:
            invoices.void_invoice(ctx, draft_invoice.id)
        assert exc.value.message == "Invoice is already void"

    def test_void_cannot_be_paid(self, ctx, draft_invoice):
        invoices.void_invoice(ctx, draft_invoice.id)

        with pytest.raises(InvalidState) as exc:
            invoices.pay_invoice(ctx, draft_invoice.id)
        assert exc.value.message == "Cannot pay a void invoice"


class TestListInvoices:
    def test_filters(self, ctx, customer, draft_invoice):
        other = invoices.create_invoice(ctx, {"tenantOrganizationId": customer.id, "lineItems": INVOICE_ITEMS})
        invoices.finalize_invoice(ctx, other.id)

        assert [i.id for i in invoices.list_invoices(ctx, {"status": "final"})] == [other.id]
        assert len(invoices.list_invoices(ctx, {"tenantOrganizationId": customer.id})) == 2


class TestAddMonths:
    def test_clamps_to_month_end(self):
        assert invoices._add_months(datetime(2026, 1, 31), 1) == datetime(2026, 2, 28)
        assert invoices._add_months(datetime(2026, 11, 15), 12) == datetime(2027, 11, 15)


class TestInvoicePdf:
    def test_download(self, ctx, draft_invoice):
        filename, pdf_bytes = invoices.invoice_pdf(ctx, draft_invoice.id)
        assert filename == "INV-ACME-1001.pdf"
        assert pdf_bytes.startswith(b"%PDF")

    def test_regenerate_replaces_artifact(self, ctx, draft_invoice):
        regenerated = invoices.regenerate_invoice_pdf(ctx, draft_invoice.id)
        assert regenerated.pdf_path != draft_invoice.pdf_path
