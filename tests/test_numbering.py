import pytest
from sqlalchemy.exc import IntegrityError

from opsdesk.errors import Internal
from opsdesk.extensions import db
from opsdesk.models import DocumentSequence, Quote, QuoteStatus
from opsdesk.services.numbering import allocate_number, commit_with_number_retry, format_number
from opsdesk.services.tenancy import TenantRef


class TestFormatNumber:
    def test_slug_is_uppercased(self):
        assert format_number("INV", "acme", 1001) == "INV-ACME-1001"


class TestAllocateNumber:
    def test_first_number_starts_at_1001(self, ctx):
        assert allocate_number(ctx.tenant, "invoice") == "INV-ACME-1001"
        assert allocate_number(ctx.tenant, "invoice") == "INV-ACME-1002"

    def test_quote_and_invoice_counters_are_independent(self, ctx):
        assert allocate_number(ctx.tenant, "quote") == "QUO-ACME-1001"
        assert allocate_number(ctx.tenant, "invoice") == "INV-ACME-1001"

    def test_counter_is_per_organization(self, ctx, other_org):
        other = TenantRef(id=other_org.id, slug=other_org.slug, name=other_org.name)
        assert allocate_number(ctx.tenant, "quote") == "QUO-ACME-1001"
        assert allocate_number(other, "quote") == "QUO-INITECH-1001"

    def test_seeds_from_existing_rows_and_skips_taken_numbers(self, ctx, customer):
        # Rows imported before the counter existed.
        for n in (1001, 1002, 1003):
            db.session.add(Quote(
                organization_id=ctx.org_id,
                tenant_organization_id=customer.id,
                quote_number=f"QUO-ACME-{n}",
                status=QuoteStatus.DRAFT,
                line_items=[],
            ))
        db.session.commit()

        # 3 existing rows -> counter seeded at 1004.
        assert allocate_number(ctx.tenant, "quote") == "QUO-ACME-1004"

        # A counter that lags behind skips numbers already in use.
        seq = db.session.get(DocumentSequence, (ctx.org_id, "quote"))
        seq.next_value = 1002
        db.session.commit()

        assert allocate_number(ctx.tenant, "quote") == "QUO-ACME-1004"
        assert seq.next_value == 1005


class TestCommitWithNumberRetry:
    def test_retries_once_then_succeeds(self, app):
        calls = []

        def stage():
            calls.append(1)
            if len(calls) == 1:
                raise IntegrityError("INSERT", {}, Exception("duplicate key"))
            return "ok"

        assert commit_with_number_retry("Test", stage) == "ok"
        assert len(calls) == 2

    def test_second_conflict_is_internal(self, app):
        def stage():
            raise IntegrityError("INSERT", {}, Exception("duplicate key"))

        with pytest.raises(Internal):
            commit_with_number_retry("Test", stage)
