# opsdesk/serializers.py
"""
Typed projection records returned by the service layer.

Routes only ever see these, never ORM rows: `jsonify(record.to_dict())`.
Keys are camelCase on the wire, money is integer minor units and datetimes
are ISO 8601 strings (UTC, trailing Z).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from opsdesk.utils.parsing import isoformat


def _status(v) -> str:
    return getattr(v, "value", v)


@dataclass(frozen=True)
class LineItemRecord:
    description: str
    quantity: float
    unit_price: int
    line_total: int

    @classmethod
    def from_dict(cls, item: dict) -> "LineItemRecord":
        return cls(
            description=item.get("description", ""),
            quantity=item.get("quantity", 0),
            unit_price=int(item.get("unitPrice", 0)),
            line_total=int(item.get("lineTotal", item.get("total", 0))),
        )

    def to_dict(self) -> dict:
        return {
            "description": self.description,
            "quantity": self.quantity,
            "unitPrice": self.unit_price,
            "lineTotal": self.line_total,
        }


def _items(raw) -> tuple[LineItemRecord, ...]:
    if not isinstance(raw, list):
        return ()
    return tuple(LineItemRecord.from_dict(i) for i in raw if isinstance(i, dict))


@dataclass(frozen=True)
class CustomerRef:
    id: str
    name: str

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name}


def _customer(row) -> Optional[CustomerRef]:
    org = getattr(row, "tenant_organization", None)
    if org is None:
        return None
    return CustomerRef(id=org.id, name=org.name)


# =========================================================
# Quotes / invoices
# =========================================================
@dataclass(frozen=True)
class QuoteRecord:
    id: str
    quote_number: str
    status: str
    tenant_organization_id: str
    customer: Optional[CustomerRef]
    product_plan_id: Optional[str]
    subtotal: int
    tax: int
    total: int
    currency: str
    line_items: tuple[LineItemRecord, ...]
    valid_until: Optional[datetime]
    billing_name: Optional[str]
    billing_email: Optional[str]
    billing_address: Optional[str]
    notes: Optional[str]
    pdf_path: Optional[str]
    converted_to_invoice_id: Optional[str]
    created_at: datetime
    updated_at: datetime
    sent_at: Optional[datetime]
    accepted_at: Optional[datetime]
    rejected_at: Optional[datetime]

    @classmethod
    def from_model(cls, q) -> "QuoteRecord":
        return cls(
            id=q.id,
            quote_number=q.quote_number,
            status=_status(q.status),
            tenant_organization_id=q.tenant_organization_id,
            customer=_customer(q),
            product_plan_id=q.product_plan_id,
            subtotal=q.subtotal,
            tax=q.tax,
            total=q.total,
            currency=q.currency,
            line_items=_items(q.line_items),
            valid_until=q.valid_until,
            billing_name=q.billing_name,
            billing_email=q.billing_email,
            billing_address=q.billing_address,
            notes=q.notes,
            pdf_path=q.pdf_path,
            converted_to_invoice_id=q.converted_to_invoice_id,
            created_at=q.created_at,
            updated_at=q.updated_at,
            sent_at=q.sent_at,
            accepted_at=q.accepted_at,
            rejected_at=q.rejected_at,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "quoteNumber": self.quote_number,
            "status": self.status,
            "tenantOrganizationId": self.tenant_organization_id,
            "customer": self.customer.to_dict() if self.customer else None,
            "productPlanId": self.product_plan_id,
            "subtotal": self.subtotal,
            "tax": self.tax,
            "total": self.total,
            "currency": self.currency,
            "lineItems": [i.to_dict() for i in self.line_items],
            "validUntil": isoformat(self.valid_until),
            "billingName": self.billing_name,
            "billingEmail": self.billing_email,
            "billingAddress": self.billing_address,
            "notes": self.notes,
            "pdfPath": self.pdf_path,
            "convertedToInvoiceId": self.converted_to_invoice_id,
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
            "sentAt": isoformat(self.sent_at),
            "acceptedAt": isoformat(self.accepted_at),
            "rejectedAt": isoformat(self.rejected_at),
        }


@dataclass(frozen=True)
class InvoiceRecord:
    id: str
    invoice_number: str
    status: str
    tenant_organization_id: str
    customer: Optional[CustomerRef]
    subscription_id: Optional[str]
    subtotal: int
    tax: int
    total: int
    currency: str
    line_items: tuple[LineItemRecord, ...]
    issue_date: datetime
    due_date: datetime
    finalized_at: Optional[datetime]
    paid_at: Optional[datetime]
    voided_at: Optional[datetime]
    billing_name: Optional[str]
    billing_email: Optional[str]
    billing_address: Optional[str]
    notes: Optional[str]
    pdf_path: Optional[str]
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, inv) -> "InvoiceRecord":
        return cls(
            id=inv.id,
            invoice_number=inv.invoice_number,
            status=_status(inv.status),
            tenant_organization_id=inv.tenant_organization_id,
            customer=_customer(inv),
            subscription_id=inv.subscription_id,
            subtotal=inv.subtotal,
            tax=inv.tax,
            total=inv.total,
            currency=inv.currency,
            line_items=_items(inv.line_items),
            issue_date=inv.issue_date,
            due_date=inv.due_date,
            finalized_at=inv.finalized_at,
            paid_at=inv.paid_at,
            voided_at=inv.voided_at,
            billing_name=inv.billing_name,
            billing_email=inv.billing_email,
            billing_address=inv.billing_address,
            notes=inv.notes,
            pdf_path=inv.pdf_path,
            created_at=inv.created_at,
            updated_at=inv.updated_at,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoiceNumber": self.invoice_number,
            "status": self.status,
            "tenantOrganizationId": self.tenant_organization_id,
            "customer": self.customer.to_dict() if self.customer else None,
            "subscriptionId": self.subscription_id,
            "subtotal": self.subtotal,
            "tax": self.tax,
            "total": self.total,
            "currency": self.currency,
            "lineItems": [i.to_dict() for i in self.line_items],
            "issueDate": isoformat(self.issue_date),
            "dueDate": isoformat(self.due_date),
            "finalizedAt": isoformat(self.finalized_at),
            "paidAt": isoformat(self.paid_at),
            "voidedAt": isoformat(self.voided_at),
            "billingName": self.billing_name,
            "billingEmail": self.billing_email,
            "billingAddress": self.billing_address,
            "notes": self.notes,
            "pdfPath": self.pdf_path,
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
        }


@dataclass(frozen=True)
class ConversionRecord:
    """Result of accepting a quote: the converted quote and a summary of its invoice."""

    quote: QuoteRecord
    invoice: InvoiceRecord

    def to_dict(self) -> dict:
        return {
            "quote": self.quote.to_dict(),
            "invoice": {
                "id": self.invoice.id,
                "invoiceNumber": self.invoice.invoice_number,
                "status": self.invoice.status,
                "total": self.invoice.total,
                "currency": self.invoice.currency,
                "dueDate": isoformat(self.invoice.due_date),
                "pdfPath": self.invoice.pdf_path,
            },
        }


# =========================================================
# Listings
# =========================================================
@dataclass(frozen=True)
class TenantUserRecord:
    id: str
    name: str
    email: str
    initials: str
    organization: CustomerRef
    role: str
    status: str
    last_login: Optional[datetime]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "initials": self.initials,
            "organization": self.organization.to_dict(),
            "role": self.role,
            "status": self.status,
            "lastLogin": isoformat(self.last_login),
        }


@dataclass(frozen=True)
class TenantUserDetailRecord:
    id: str
    name: str
    email: str
    phone: Optional[str]
    title: Optional[str]
    role: str
    is_owner: bool
    status: str
    notes: Optional[str]
    organization: CustomerRef
    last_activity_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, u) -> "TenantUserDetailRecord":
        return cls(
            id=u.id,
            name=u.name,
            email=u.email,
            phone=u.phone,
            title=u.title,
            role=u.role,
            is_owner=bool(u.is_owner),
            status=u.status,
            notes=u.notes,
            organization=CustomerRef(id=u.tenant_organization.id, name=u.tenant_organization.name),
            last_activity_at=u.last_activity_at,
            created_at=u.created_at,
            updated_at=u.updated_at,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "title": self.title,
            "role": self.role,
            "isOwner": self.is_owner,
            "status": self.status,
            "notes": self.notes,
            "organization": self.organization.to_dict(),
            "lastActivityAt": isoformat(self.last_activity_at),
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
        }


@dataclass(frozen=True)
class StaffMemberRecord:
    id: int
    name: str
    email: str
    role: str

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "email": self.email, "role": self.role}


@dataclass(frozen=True)
class MembershipRecord:
    is_member: bool
    role: Optional[str]
    organization: CustomerRef

    def to_dict(self) -> dict:
        return {
            "isMember": self.is_member,
            "role": self.role,
            "organization": self.organization.to_dict(),
        }


@dataclass(frozen=True)
class AuditLogRecord:
    id: str
    action: str
    field_name: Optional[str]
    old_value: Optional[str]
    new_value: Optional[str]
    performed_by: Optional[str]
    created_at: datetime
    metadata: Optional[dict] = None

    @classmethod
    def from_model(cls, row) -> "AuditLogRecord":
        return cls(
            id=row.id,
            action=row.action,
            field_name=row.field_name,
            old_value=row.old_value,
            new_value=row.new_value,
            performed_by=row.performed_by_name,
            created_at=row.created_at,
            metadata=dict(row.event_metadata) if row.event_metadata else None,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "action": self.action,
            "fieldName": self.field_name,
            "oldValue": self.old_value,
            "newValue": self.new_value,
            "performedBy": self.performed_by,
            "metadata": self.metadata,
            "createdAt": isoformat(self.created_at),
        }


@dataclass(frozen=True)
class ApiKeyRecord:
    id: str
    name: str
    role: str
    masked_key: str
    created_by: Optional[str]
    created_at: datetime
    last_used_at: Optional[datetime]

    @classmethod
    def from_model(cls, key) -> "ApiKeyRecord":
        return cls(
            id=key.id,
            name=key.name,
            role=key.role,
            masked_key=f"{key.prefix}...",
            created_by=key.created_by.name if key.created_by else None,
            created_at=key.created_at,
            last_used_at=key.last_used_at,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "role": self.role,
            "key": self.masked_key,
            "createdBy": self.created_by,
            "createdAt": isoformat(self.created_at),
            "lastUsedAt": isoformat(self.last_used_at),
        }


@dataclass(frozen=True)
class CreatedApiKeyRecord:
    """Returned once, on creation: the only time the plain key leaves the server."""

    record: ApiKeyRecord
    plain_key: str

    def to_dict(self) -> dict:
        data = self.record.to_dict()
        data["key"] = self.plain_key
        return data


@dataclass(frozen=True)
class PricingRecord:
    id: str
    pricing_type: str
    region: Optional[str]
    currency: str
    amount: int
    interval: str

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "pricingType": self.pricing_type,
            "region": self.region,
            "currency": self.currency,
            "amount": self.amount,
            "interval": self.interval,
        }


@dataclass(frozen=True)
class FeatureRecord:
    id: str
    name: str
    description: Optional[str]
    included: bool

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "included": self.included,
        }


@dataclass(frozen=True)
class PlanRecord:
    id: str
    name: str
    description: Optional[str]
    status: str
    pricing_model: str
    created_at: datetime
    updated_at: datetime
    pricing: tuple[PricingRecord, ...] = field(default_factory=tuple)
    features: tuple[FeatureRecord, ...] = field(default_factory=tuple)

    @classmethod
    def from_model(cls, plan) -> "PlanRecord":
        return cls(
            id=plan.id,
            name=plan.name,
            description=plan.description,
            status=plan.status,
            pricing_model=plan.pricing_model,
            created_at=plan.created_at,
            updated_at=plan.updated_at,
            pricing=tuple(
                PricingRecord(
                    id=p.id,
                    pricing_type=p.pricing_type,
                    region=p.region,
                    currency=p.currency,
                    amount=p.amount,
                    interval=p.interval,
                )
                for p in plan.pricing
                if p.is_active
            ),
            features=tuple(
                FeatureRecord(id=f.id, name=f.name, description=f.description, included=f.included)
                for f in plan.features
            ),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "status": self.status,
            "pricingModel": self.pricing_model,
            "pricing": [p.to_dict() for p in self.pricing],
            "features": [f.to_dict() for f in self.features],
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
        }
