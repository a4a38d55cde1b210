import pytest

from opsdesk import create_app
from opsdesk.extensions import db
from opsdesk.models import Member, Organization, ProductPlan, TenantOrganization, TenantUser, User
from opsdesk.services import quotes
from opsdesk.services.tenancy import RequestContext, TenantRef
from opsdesk.settings import TestConfig
from opsdesk.utils.hashing import hash_password

TEST_PASSWORD = "CorrectHorse42"

# 2 x 50.00 + 20.00 tax = 120.00
QUOTE_PAYLOAD = {
    "lineItems": [{"description": "Consulting", "quantity": 2, "unitPrice": 5000}],
    "tax": 2000,
    "currency": "USD",
}


@pytest.fixture
def app(tmp_path):
    class Config(TestConfig):
        DOCUMENT_STORAGE_DIR = str(tmp_path / "documents")

    app = create_app(Config)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def org(app):
    org = Organization(slug="acme", name="Acme Corp")
    db.session.add(org)
    db.session.commit()
    return org


@pytest.fixture
def other_org(app):
    org = Organization(slug="initech", name="Initech")
    db.session.add(org)
    db.session.commit()
    return org


@pytest.fixture
def user(org):
    user = User(name="Dana Scully", email="dana@acme.test", password_hash=hash_password(TEST_PASSWORD))
    db.session.add(user)
    db.session.flush()
    db.session.add(Member(organization_id=org.id, user_id=user.id, role="owner"))
    db.session.commit()
    return user


@pytest.fixture
def ctx(org, user):
    return RequestContext(
        tenant=TenantRef(id=org.id, slug=org.slug, name=org.name),
        user_id=user.id,
        user_name=user.name,
    )


@pytest.fixture
def customer(org):
    customer = TenantOrganization(
        organization_id=org.id,
        name="Globex",
        billing_email="ap@globex.test",
        billing_address="1 Globex Way",
    )
    db.session.add(customer)
    db.session.commit()
    return customer


@pytest.fixture
def tenant_user(customer):
    person = TenantUser(
        tenant_organization_id=customer.id,
        name="Hank Scorpio",
        email="hank@globex.test",
        role="owner",
        is_owner=True,
    )
    db.session.add(person)
    db.session.commit()
    return person


@pytest.fixture
def plan(org):
    plan = ProductPlan(organization_id=org.id, name="Growth", description="For growing teams", status="active")
    db.session.add(plan)
    db.session.commit()
    return plan


@pytest.fixture
def make_quote(ctx, customer):
    """Create a quote through the service layer; status="sent" sends it too."""

    def _make(status="draft", **overrides):
        payload = {"tenantOrganizationId": customer.id, **QUOTE_PAYLOAD, **overrides}
        record = quotes.create_quote(ctx, payload)
        if status == "sent":
            record = quotes.send_quote(ctx, record.id)
        return record

    return _make


@pytest.fixture
def auth_client(client, user):
    resp = client.post("/login", json={"email": user.email, "password": TEST_PASSWORD})
    assert resp.status_code == 200, resp.get_json()
    return client
