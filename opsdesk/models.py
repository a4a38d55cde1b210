# opsdesk/models.py
from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone

from flask_login import UserMixin
from sqlalchemy import Enum as SAEnum
from sqlalchemy.ext.mutable import MutableDict, MutableList

from .extensions import db


# Naive UTC everywhere: columns are "timestamp without time zone".
def utcnow_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:24]}"


def _id_column(prefix: str):
    return db.Column(db.String(40), primary_key=True, default=lambda: new_id(prefix))


def _enum_values(enum_cls):
    return [e.value for e in enum_cls]


# =========================================================
# User (staff login)
# =========================================================
class User(UserMixin, db.Model):
    __tablename__ = "user"

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(120), nullable=False)

    password_hash = db.Column(db.String(255), nullable=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    last_login_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utcnow_naive,
        onupdate=utcnow_naive,
    )

    memberships = db.relationship("Member", back_populates="user", cascade="all, delete-orphan")

    __table_args__ = (
        db.UniqueConstraint("email", name="user_email_key"),
    )

    def __repr__(self) -> str:
        return f"<User {self.id} {self.email}>"


# =========================================================
# Organization (tenant root) + staff membership
# =========================================================
class Organization(db.Model):
    __tablename__ = "organization"

    id = _id_column("org")
    slug = db.Column(db.String(80), nullable=False, unique=True, index=True)
    name = db.Column(db.String(160), nullable=False)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive)

    members = db.relationship("Member", back_populates="organization", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<Organization {self.id} {self.slug}>"


MEMBER_ROLES = ("owner", "admin", "member")


class Member(db.Model):
    __tablename__ = "member"

    id = _id_column("mem")

    organization_id = db.Column(
        db.String(40),
        db.ForeignKey("organization.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    organization = db.relationship("Organization", back_populates="members")

    user_id = db.Column(
        db.Integer,
        db.ForeignKey("user.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user = db.relationship("User", back_populates="memberships", lazy="joined")

    role = db.Column(db.String(20), nullable=False, default="member")

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive)

    __table_args__ = (
        db.UniqueConstraint("organization_id", "user_id", name="uq_member_org_user"),
        db.CheckConstraint("role in ('owner','admin','member')", name="ck_member_role"),
    )

    def __repr__(self) -> str:
        return f"<Member {self.organization_id} user={self.user_id} {self.role}>"


# =========================================================
# TenantOrganization (a customer account of a tenant)
# =========================================================
class TenantOrganization(db.Model):
    __tablename__ = "tenant_organization"

    id = _id_column("torg")

    organization_id = db.Column(
        db.String(40),
        db.ForeignKey("organization.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    organization = db.relationship("Organization", foreign_keys=[organization_id])

    name = db.Column(db.String(160), nullable=False)
    slug = db.Column(db.String(80), nullable=True)

    billing_email = db.Column(db.String(255), nullable=True)
    billing_address = db.Column(db.Text, nullable=True)

    subscription_status = db.Column(db.String(20), nullable=True)
    is_prospect = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive)

    users = db.relationship("TenantUser", back_populates="tenant_organization", cascade="all, delete-orphan")

    __table_args__ = (
        db.CheckConstraint(
            "subscription_status is null or subscription_status in ('trialing','active','past_due','canceled')",
            name="ck_tenant_org_subscription_status",
        ),
    )

    def __repr__(self) -> str:
        return f"<TenantOrganization {self.id} {self.name}>"


TENANT_USER_ROLES = ("owner", "admin", "user", "viewer")
TENANT_USER_STATUSES = ("active", "suspended", "invited")


class TenantUser(db.Model):
    __tablename__ = "tenant_user"

    id = _id_column("tusr")

    tenant_organization_id = db.Column(
        db.String(40),
        db.ForeignKey("tenant_organization.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    tenant_organization = db.relationship("TenantOrganization", back_populates="users", lazy="joined")

    name = db.Column(db.String(160), nullable=False)
    email = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(30), nullable=True)
    title = db.Column(db.String(120), nullable=True)

    role = db.Column(db.String(20), nullable=False, default="user")
    is_owner = db.Column(db.Boolean, nullable=False, default=False)
    status = db.Column(db.String(20), nullable=False, default="active")
    notes = db.Column(db.Text, nullable=True)

    last_activity_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive, onupdate=utcnow_naive)

    __table_args__ = (
        db.CheckConstraint("role in ('owner','admin','user','viewer')", name="ck_tenant_user_role"),
        db.CheckConstraint("status in ('active','suspended','invited')", name="ck_tenant_user_status"),
    )

    def __repr__(self) -> str:
        return f"<TenantUser {self.id} {self.email}>"


# =========================================================
# Product catalog
# =========================================================
PLAN_STATUSES = ("draft", "active", "archived")


class ProductPlan(db.Model):
    __tablename__ = "product_plan"

    id = _id_column("plan")

    organization_id = db.Column(
        db.String(40),
        db.ForeignKey("organization.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    name = db.Column(db.String(160), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), nullable=False, default="draft", index=True)
    pricing_model = db.Column(db.String(30), nullable=False, default="flat")
    display_order = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive, onupdate=utcnow_naive)

    pricing = db.relationship(
        "ProductPricing",
        back_populates="plan",
        cascade="all, delete-orphan",
        order_by="ProductPricing.amount",
    )
    features = db.relationship(
        "ProductFeature",
        back_populates="plan",
        cascade="all, delete-orphan",
        order_by="ProductFeature.display_order",
    )

    __table_args__ = (
        db.CheckConstraint("status in ('draft','active','archived')", name="ck_product_plan_status"),
    )

    def __repr__(self) -> str:
        return f"<ProductPlan {self.id} {self.name} {self.status}>"


class ProductPricing(db.Model):
    __tablename__ = "product_pricing"

    id = _id_column("price")

    product_plan_id = db.Column(
        db.String(40),
        db.ForeignKey("product_plan.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    plan = db.relationship("ProductPlan", back_populates="pricing")

    pricing_type = db.Column(db.String(20), nullable=False, default="base")  # base|per_seat|usage
    region = db.Column(db.String(20), nullable=True)
    currency = db.Column(db.String(3), nullable=False, default="USD")
    amount = db.Column(db.Integer, nullable=False, default=0)
    interval = db.Column(db.String(20), nullable=False, default="monthly")  # monthly|yearly|one_time
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    __table_args__ = (
        db.CheckConstraint("amount >= 0", name="ck_product_pricing_amount"),
    )


class ProductFeature(db.Model):
    __tablename__ = "product_feature"

    id = _id_column("feat")

    product_plan_id = db.Column(
        db.String(40),
        db.ForeignKey("product_plan.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    plan = db.relationship("ProductPlan", back_populates="features")

    name = db.Column(db.String(160), nullable=False)
    description = db.Column(db.Text, nullable=True)
    included = db.Column(db.Boolean, nullable=False, default=True)
    display_order = db.Column(db.Integer, nullable=False, default=0)


# =========================================================
# Subscription
# =========================================================
class Subscription(db.Model):
    __tablename__ = "subscription"

    id = _id_column("sub")

    organization_id = db.Column(
        db.String(40),
        db.ForeignKey("organization.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    tenant_organization_id = db.Column(
        db.String(40),
        db.ForeignKey("tenant_organization.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    tenant_organization = db.relationship("TenantOrganization", foreign_keys=[tenant_organization_id])

    product_plan_id = db.Column(
        db.String(40),
        db.ForeignKey("product_plan.id", ondelete="SET NULL"),
        nullable=True,
    )

    status = db.Column(db.String(20), nullable=False, default="trialing")
    billing_cycle = db.Column(db.String(20), nullable=False, default="monthly")

    current_period_start = db.Column(db.DateTime, nullable=True)
    current_period_end = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive, onupdate=utcnow_naive)

    __table_args__ = (
        db.CheckConstraint(
            "status in ('trialing','active','past_due','canceled')",
            name="ck_subscription_status",
        ),
        db.CheckConstraint("billing_cycle in ('monthly','yearly')", name="ck_subscription_billing_cycle"),
    )

    def __repr__(self) -> str:
        return f"<Subscription {self.id} {self.status}>"


# =========================================================
# Quotes + invoices
# =========================================================
class QuoteStatus(enum.Enum):
    DRAFT = "draft"
    SENT = "sent"
    CONVERTED = "converted"
    REJECTED = "rejected"
    EXPIRED = "expired"


class InvoiceStatus(enum.Enum):
    DRAFT = "draft"
    FINAL = "final"
    PAID = "paid"
    VOID = "void"


QUOTE_TRANSITIONS = {
    QuoteStatus.DRAFT: {QuoteStatus.SENT},
    QuoteStatus.SENT: {QuoteStatus.CONVERTED, QuoteStatus.REJECTED, QuoteStatus.EXPIRED},
    QuoteStatus.CONVERTED: set(),
    QuoteStatus.REJECTED: set(),
    QuoteStatus.EXPIRED: set(),
}

INVOICE_TRANSITIONS = {
    InvoiceStatus.DRAFT: {InvoiceStatus.FINAL, InvoiceStatus.VOID},
    InvoiceStatus.FINAL: {InvoiceStatus.PAID, InvoiceStatus.VOID},
    InvoiceStatus.PAID: set(),
    InvoiceStatus.VOID: set(),
}


def can_transition(current, target) -> bool:
    table = QUOTE_TRANSITIONS if isinstance(current, QuoteStatus) else INVOICE_TRANSITIONS
    return target in table.get(current, set())


def _money_constraints(table: str):
    return (
        db.CheckConstraint("subtotal >= 0 and tax >= 0 and total >= 0", name=f"ck_{table}_money_non_negative"),
        db.CheckConstraint("subtotal + tax = total", name=f"ck_{table}_total"),
    )


class Quote(db.Model):
    __tablename__ = "quote"

    id = _id_column("quo")

    organization_id = db.Column(
        db.String(40),
        db.ForeignKey("organization.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    organization = db.relationship("Organization", foreign_keys=[organization_id])

    tenant_organization_id = db.Column(
        db.String(40),
        db.ForeignKey("tenant_organization.id"),
        nullable=False,
        index=True,
    )
    tenant_organization = db.relationship("TenantOrganization", foreign_keys=[tenant_organization_id], lazy="joined")

    product_plan_id = db.Column(db.String(40), db.ForeignKey("product_plan.id", ondelete="SET NULL"), nullable=True)

    quote_number = db.Column(db.String(60), nullable=False)

    status = db.Column(
        SAEnum(
            QuoteStatus,
            name="quote_status",
            values_callable=_enum_values,
            native_enum=False,
        ),
        nullable=False,
        default=QuoteStatus.DRAFT,
    )

    subtotal = db.Column(db.Integer, nullable=False, default=0)
    tax = db.Column(db.Integer, nullable=False, default=0)
    total = db.Column(db.Integer, nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default="USD")

    # Ordered list of {description, quantity, unitPrice, lineTotal}.
    # MutableList so in-place edits are tracked.
    line_items = db.Column(MutableList.as_mutable(db.JSON), nullable=False, default=list)

    valid_until = db.Column(db.DateTime, nullable=True)

    billing_name = db.Column(db.String(160), nullable=True)
    billing_email = db.Column(db.String(255), nullable=True)
    billing_address = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    pdf_path = db.Column(db.String(500), nullable=True)
    converted_to_invoice_id = db.Column(db.String(40), db.ForeignKey("invoice.id"), nullable=True, unique=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive, onupdate=utcnow_naive)
    sent_at = db.Column(db.DateTime, nullable=True)
    accepted_at = db.Column(db.DateTime, nullable=True)
    rejected_at = db.Column(db.DateTime, nullable=True)

    __table_args__ = (
        db.UniqueConstraint("organization_id", "quote_number", name="uq_quote_org_number"),
        db.CheckConstraint(
            "status in ('draft','sent','converted','rejected','expired')",
            name="ck_quote_status",
        ),
        *_money_constraints("quote"),
    )

    def __repr__(self) -> str:
        return f"<Quote {self.id} {self.quote_number} {self.status}>"


class Invoice(db.Model):
    __tablename__ = "invoice"

    id = _id_column("inv")

    organization_id = db.Column(
        db.String(40),
        db.ForeignKey("organization.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    organization = db.relationship("Organization", foreign_keys=[organization_id])

    tenant_organization_id = db.Column(
        db.String(40),
        db.ForeignKey("tenant_organization.id"),
        nullable=False,
        index=True,
    )
    tenant_organization = db.relationship("TenantOrganization", foreign_keys=[tenant_organization_id], lazy="joined")

    subscription_id = db.Column(db.String(40), db.ForeignKey("subscription.id", ondelete="SET NULL"), nullable=True)
    subscription = db.relationship("Subscription", foreign_keys=[subscription_id])

    invoice_number = db.Column(db.String(60), nullable=False)

    status = db.Column(
        SAEnum(
            InvoiceStatus,
            name="invoice_status",
            values_callable=_enum_values,
            native_enum=False,
        ),
        nullable=False,
        default=InvoiceStatus.DRAFT,
    )

    subtotal = db.Column(db.Integer, nullable=False, default=0)
    tax = db.Column(db.Integer, nullable=False, default=0)
    total = db.Column(db.Integer, nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default="USD")

    line_items = db.Column(MutableList.as_mutable(db.JSON), nullable=False, default=list)

    issue_date = db.Column(db.DateTime, nullable=False, default=utcnow_naive)
    due_date = db.Column(db.DateTime, nullable=False)
    finalized_at = db.Column(db.DateTime, nullable=True)
    paid_at = db.Column(db.DateTime, nullable=True)
    voided_at = db.Column(db.DateTime, nullable=True)

    billing_name = db.Column(db.String(160), nullable=True)
    billing_email = db.Column(db.String(255), nullable=True)
    billing_address = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    pdf_path = db.Column(db.String(500), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive, onupdate=utcnow_naive)

    __table_args__ = (
        db.UniqueConstraint("organization_id", "invoice_number", name="uq_invoice_org_number"),
        db.CheckConstraint("status in ('draft','final','paid','void')", name="ck_invoice_status"),
        db.CheckConstraint("due_date >= issue_date", name="ck_invoice_due_after_issue"),
        *_money_constraints("invoice"),
    )

    def __repr__(self) -> str:
        return f"<Invoice {self.id} {self.invoice_number} {self.status}>"


# =========================================================
# Per-organization document numbering
# =========================================================
class DocumentSequence(db.Model):
    __tablename__ = "document_sequence"

    organization_id = db.Column(
        db.String(40),
        db.ForeignKey("organization.id", ondelete="CASCADE"),
        primary_key=True,
    )
    kind = db.Column(db.String(20), primary_key=True)  # quote|invoice
    next_value = db.Column(db.Integer, nullable=False)

    def __repr__(self) -> str:
        return f"<DocumentSequence {self.organization_id} {self.kind} next={self.next_value}>"


# =========================================================
# Audit log
# =========================================================
class AuditLog(db.Model):
    __tablename__ = "audit_log"

    id = _id_column("aud")

    organization_id = db.Column(
        db.String(40),
        db.ForeignKey("organization.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    tenant_organization_id = db.Column(db.String(40), nullable=True, index=True)

    performed_by_user_id = db.Column(db.Integer, db.ForeignKey("user.id", ondelete="SET NULL"), nullable=True)
    performed_by_name = db.Column(db.String(160), nullable=True)

    entity_type = db.Column(db.String(40), nullable=False)
    entity_id = db.Column(db.String(40), nullable=False)
    action = db.Column(db.String(60), nullable=False)

    field_name = db.Column(db.String(60), nullable=True)
    old_value = db.Column(db.Text, nullable=True)
    new_value = db.Column(db.Text, nullable=True)

    event_metadata = db.Column(MutableDict.as_mutable(db.JSON), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive, index=True)

    __table_args__ = (
        db.Index("ix_audit_log_entity", "entity_type", "entity_id"),
    )

    def __repr__(self) -> str:
        return f"<AuditLog {self.entity_type}:{self.entity_id} {self.action}>"


# =========================================================
# Organization API keys
# =========================================================
API_KEY_ROLES = ("read-only", "full-access")


class OrganizationApiKey(db.Model):
    __tablename__ = "organization_api_key"

    id = _id_column("key")

    organization_id = db.Column(
        db.String(40),
        db.ForeignKey("organization.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    name = db.Column(db.String(120), nullable=False)
    prefix = db.Column(db.String(20), nullable=False, index=True)
    key_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(20), nullable=False, default="full-access")

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("user.id", ondelete="SET NULL"), nullable=True)
    created_by = db.relationship("User", foreign_keys=[created_by_user_id], lazy="joined")

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive)
    last_used_at = db.Column(db.DateTime, nullable=True)
    revoked_at = db.Column(db.DateTime, nullable=True)

    __table_args__ = (
        db.CheckConstraint("role in ('read-only','full-access')", name="ck_api_key_role"),
    )

    def __repr__(self) -> str:
        return f"<OrganizationApiKey {self.id} {self.prefix} {self.role}>"
