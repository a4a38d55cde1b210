"""initial_schema

Revision ID: a1c4e7d20b31
Revises:
Create Date: 2026-10-18 09:12:44.318207

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'a1c4e7d20b31'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps(with_updated=True):
    cols = [sa.Column("created_at", sa.DateTime(), nullable=False)]
    if with_updated:
        cols.append(sa.Column("updated_at", sa.DateTime(), nullable=False))
    return cols


def _org_fk():
    return sa.Column(
        "organization_id",
        sa.String(length=40),
        sa.ForeignKey("organization.id", ondelete="CASCADE"),
        nullable=False,
    )


def _money_columns():
    return [
        sa.Column("subtotal", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("tax", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="USD"),
        sa.Column("line_items", sa.JSON(), nullable=False),
    ]


def _money_checks(table):
    return [
        sa.CheckConstraint("subtotal >= 0 and tax >= 0 and total >= 0", name=f"ck_{table}_money_non_negative"),
        sa.CheckConstraint("subtotal + tax = total", name=f"ck_{table}_total"),
    ]


def _billing_columns():
    return [
        sa.Column("billing_name", sa.String(length=160), nullable=True),
        sa.Column("billing_email", sa.String(length=255), nullable=True),
        sa.Column("billing_address", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("pdf_path", sa.String(length=500), nullable=True),
    ]


def upgrade():
    # ======================
    # Staff + tenants
    # ======================
    op.create_table(
        "user",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("email", sa.String(length=120), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_login_at", sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("email", name="user_email_key"),
    )

    op.create_table(
        "organization",
        sa.Column("id", sa.String(length=40), primary_key=True),
        sa.Column("slug", sa.String(length=80), nullable=False),
        sa.Column("name", sa.String(length=160), nullable=False),
        *_timestamps(with_updated=False),
    )
    op.create_index("ix_organization_slug", "organization", ["slug"], unique=True)

    op.create_table(
        "member",
        sa.Column("id", sa.String(length=40), primary_key=True),
        _org_fk(),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id", ondelete="CASCADE"), nullable=False),
        sa.Column("role", sa.String(length=20), nullable=False, server_default="member"),
        *_timestamps(with_updated=False),
        sa.UniqueConstraint("organization_id", "user_id", name="uq_member_org_user"),
        sa.CheckConstraint("role in ('owner','admin','member')", name="ck_member_role"),
    )
    op.create_index("ix_member_organization_id", "member", ["organization_id"])
    op.create_index("ix_member_user_id", "member", ["user_id"])

    op.create_table(
        "tenant_organization",
        sa.Column("id", sa.String(length=40), primary_key=True),
        _org_fk(),
        sa.Column("name", sa.String(length=160), nullable=False),
        sa.Column("slug", sa.String(length=80), nullable=True),
        sa.Column("billing_email", sa.String(length=255), nullable=True),
        sa.Column("billing_address", sa.Text(), nullable=True),
        sa.Column("subscription_status", sa.String(length=20), nullable=True),
        sa.Column("is_prospect", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(with_updated=False),
        sa.CheckConstraint(
            "subscription_status is null or subscription_status in ('trialing','active','past_due','canceled')",
            name="ck_tenant_org_subscription_status",
        ),
    )
    op.create_index("ix_tenant_organization_organization_id", "tenant_organization", ["organization_id"])

    op.create_table(
        "tenant_user",
        sa.Column("id", sa.String(length=40), primary_key=True),
        sa.Column(
            "tenant_organization_id",
            sa.String(length=40),
            sa.ForeignKey("tenant_organization.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(length=160), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("phone", sa.String(length=30), nullable=True),
        sa.Column("title", sa.String(length=120), nullable=True),
        sa.Column("role", sa.String(length=20), nullable=False, server_default="user"),
        sa.Column("is_owner", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("last_activity_at", sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("role in ('owner','admin','user','viewer')", name="ck_tenant_user_role"),
        sa.CheckConstraint("status in ('active','suspended','invited')", name="ck_tenant_user_status"),
    )
    op.create_index("ix_tenant_user_tenant_organization_id", "tenant_user", ["tenant_organization_id"])

    # ======================
    # Product catalog + subscriptions
    # ======================
    op.create_table(
        "product_plan",
        sa.Column("id", sa.String(length=40), primary_key=True),
        _org_fk(),
        sa.Column("name", sa.String(length=160), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="draft"),
        sa.Column("pricing_model", sa.String(length=30), nullable=False, server_default="flat"),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.CheckConstraint("status in ('draft','active','archived')", name="ck_product_plan_status"),
    )
    op.create_index("ix_product_plan_organization_id", "product_plan", ["organization_id"])
    op.create_index("ix_product_plan_status", "product_plan", ["status"])

    op.create_table(
        "product_pricing",
        sa.Column("id", sa.String(length=40), primary_key=True),
        sa.Column(
            "product_plan_id",
            sa.String(length=40),
            sa.ForeignKey("product_plan.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("pricing_type", sa.String(length=20), nullable=False, server_default="base"),
        sa.Column("region", sa.String(length=20), nullable=True),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="USD"),
        sa.Column("amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("interval", sa.String(length=20), nullable=False, server_default="monthly"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.CheckConstraint("amount >= 0", name="ck_product_pricing_amount"),
    )
    op.create_index("ix_product_pricing_product_plan_id", "product_pricing", ["product_plan_id"])

    op.create_table(
        "product_feature",
        sa.Column("id", sa.String(length=40), primary_key=True),
        sa.Column(
            "product_plan_id",
            sa.String(length=40),
            sa.ForeignKey("product_plan.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(length=160), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("included", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("ix_product_feature_product_plan_id", "product_feature", ["product_plan_id"])

    op.create_table(
        "subscription",
        sa.Column("id", sa.String(length=40), primary_key=True),
        _org_fk(),
        sa.Column(
            "tenant_organization_id",
            sa.String(length=40),
            sa.ForeignKey("tenant_organization.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "product_plan_id",
            sa.String(length=40),
            sa.ForeignKey("product_plan.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="trialing"),
        sa.Column("billing_cycle", sa.String(length=20), nullable=False, server_default="monthly"),
        sa.Column("current_period_start", sa.DateTime(), nullable=True),
        sa.Column("current_period_end", sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("status in ('trialing','active','past_due','canceled')", name="ck_subscription_status"),
        sa.CheckConstraint("billing_cycle in ('monthly','yearly')", name="ck_subscription_billing_cycle"),
    )
    op.create_index("ix_subscription_organization_id", "subscription", ["organization_id"])
    op.create_index("ix_subscription_tenant_organization_id", "subscription", ["tenant_organization_id"])

    # ======================
    # Invoices (before quotes: quote.converted_to_invoice_id points here)
    # ======================
    op.create_table(
        "invoice",
        sa.Column("id", sa.String(length=40), primary_key=True),
        _org_fk(),
        sa.Column(
            "tenant_organization_id",
            sa.String(length=40),
            sa.ForeignKey("tenant_organization.id"),
            nullable=False,
        ),
        sa.Column(
            "subscription_id",
            sa.String(length=40),
            sa.ForeignKey("subscription.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("invoice_number", sa.String(length=60), nullable=False),
        sa.Column(
            "status",
            sa.Enum(
                "draft", "final", "paid", "void",
                name="invoice_status",
                native_enum=False,
            ),
            nullable=False,
            server_default="draft",
        ),
        *_money_columns(),
        sa.Column("issue_date", sa.DateTime(), nullable=False),
        sa.Column("due_date", sa.DateTime(), nullable=False),
        sa.Column("finalized_at", sa.DateTime(), nullable=True),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        sa.Column("voided_at", sa.DateTime(), nullable=True),
        *_billing_columns(),
        *_timestamps(),
        sa.UniqueConstraint("organization_id", "invoice_number", name="uq_invoice_org_number"),
        sa.CheckConstraint("status in ('draft','final','paid','void')", name="ck_invoice_status"),
        sa.CheckConstraint("due_date >= issue_date", name="ck_invoice_due_after_issue"),
        *_money_checks("invoice"),
    )
    op.create_index("ix_invoice_organization_id", "invoice", ["organization_id"])
    op.create_index("ix_invoice_tenant_organization_id", "invoice", ["tenant_organization_id"])

    op.create_table(
        "quote",
        sa.Column("id", sa.String(length=40), primary_key=True),
        _org_fk(),
        sa.Column(
            "tenant_organization_id",
            sa.String(length=40),
            sa.ForeignKey("tenant_organization.id"),
            nullable=False,
        ),
        sa.Column(
            "product_plan_id",
            sa.String(length=40),
            sa.ForeignKey("product_plan.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("quote_number", sa.String(length=60), nullable=False),
        sa.Column(
            "status",
            sa.Enum(
                "draft", "sent", "converted", "rejected", "expired",
                name="quote_status",
                native_enum=False,
            ),
            nullable=False,
            server_default="draft",
        ),
        *_money_columns(),
        sa.Column("valid_until", sa.DateTime(), nullable=True),
        *_billing_columns(),
        sa.Column("converted_to_invoice_id", sa.String(length=40), sa.ForeignKey("invoice.id"), nullable=True),
        *_timestamps(),
        sa.Column("sent_at", sa.DateTime(), nullable=True),
        sa.Column("accepted_at", sa.DateTime(), nullable=True),
        sa.Column("rejected_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("organization_id", "quote_number", name="uq_quote_org_number"),
        sa.UniqueConstraint("converted_to_invoice_id", name="uq_quote_converted_to_invoice_id"),
        sa.CheckConstraint(
            "status in ('draft','sent','converted','rejected','expired')",
            name="ck_quote_status",
        ),
        *_money_checks("quote"),
    )
    op.create_index("ix_quote_organization_id", "quote", ["organization_id"])
    op.create_index("ix_quote_tenant_organization_id", "quote", ["tenant_organization_id"])

    op.create_table(
        "document_sequence",
        sa.Column(
            "organization_id",
            sa.String(length=40),
            sa.ForeignKey("organization.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("kind", sa.String(length=20), primary_key=True),
        sa.Column("next_value", sa.Integer(), nullable=False),
    )

    # ======================
    # Audit log + API keys
    # ======================
    op.create_table(
        "audit_log",
        sa.Column("id", sa.String(length=40), primary_key=True),
        _org_fk(),
        sa.Column("tenant_organization_id", sa.String(length=40), nullable=True),
        sa.Column(
            "performed_by_user_id",
            sa.Integer(),
            sa.ForeignKey("user.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("performed_by_name", sa.String(length=160), nullable=True),
        sa.Column("entity_type", sa.String(length=40), nullable=False),
        sa.Column("entity_id", sa.String(length=40), nullable=False),
        sa.Column("action", sa.String(length=60), nullable=False),
        sa.Column("field_name", sa.String(length=60), nullable=True),
        sa.Column("old_value", sa.Text(), nullable=True),
        sa.Column("new_value", sa.Text(), nullable=True),
        sa.Column("event_metadata", sa.JSON(), nullable=True),
        *_timestamps(with_updated=False),
    )
    op.create_index("ix_audit_log_organization_id", "audit_log", ["organization_id"])
    op.create_index("ix_audit_log_tenant_organization_id", "audit_log", ["tenant_organization_id"])
    op.create_index("ix_audit_log_created_at", "audit_log", ["created_at"])
    op.create_index("ix_audit_log_entity", "audit_log", ["entity_type", "entity_id"])

    op.create_table(
        "organization_api_key",
        sa.Column("id", sa.String(length=40), primary_key=True),
        _org_fk(),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("prefix", sa.String(length=20), nullable=False),
        sa.Column("key_hash", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=20), nullable=False, server_default="full-access"),
        sa.Column(
            "created_by_user_id",
            sa.Integer(),
            sa.ForeignKey("user.id", ondelete="SET NULL"),
            nullable=True,
        ),
        *_timestamps(with_updated=False),
        sa.Column("last_used_at", sa.DateTime(), nullable=True),
        sa.Column("revoked_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint("role in ('read-only','full-access')", name="ck_api_key_role"),
    )
    op.create_index("ix_organization_api_key_organization_id", "organization_api_key", ["organization_id"])
    op.create_index("ix_organization_api_key_prefix", "organization_api_key", ["prefix"])


def downgrade():
    op.drop_table("organization_api_key")
    op.drop_table("audit_log")
    op.drop_table("document_sequence")
    op.drop_table("quote")
    op.drop_table("invoice")
    op.drop_table("subscription")
    op.drop_table("product_feature")
    op.drop_table("product_pricing")
    op.drop_table("product_plan")
    op.drop_table("tenant_user")
    op.drop_table("tenant_organization")
    op.drop_table("member")
    op.drop_table("organization")
    op.drop_table("user")
