import pytest

from opsdesk.extensions import db
from opsdesk.models import OrganizationApiKey, TenantOrganization, User
from opsdesk.services import api_keys, quotes
from opsdesk.services.tenancy import RequestContext, TenantRef

from .conftest import QUOTE_PAYLOAD, TEST_PASSWORD

BASE = "/api/tenant/acme"


def _create_quote(client, customer, **headers):
    resp = client.post(f"{BASE}/quotes", json={"tenantOrganizationId": customer.id, **QUOTE_PAYLOAD}, headers=headers)
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()["quote"]


class TestAuthentication:
    def test_no_session_is_401(self, client, org):
        resp = client.get(f"{BASE}/quotes")
        assert resp.status_code == 401
        assert resp.get_json() == {"error": "Unauthorized"}

    def test_unknown_tenant_is_404(self, auth_client):
        resp = auth_client.get("/api/tenant/nope/quotes")
        assert resp.status_code == 404
        assert resp.get_json() == {"error": "Organization not found"}

    def test_login_rejects_bad_password(self, client, user):
        resp = client.post("/login", json={"email": user.email, "password": "wrong"})
        assert resp.status_code == 401
        assert resp.get_json() == {"error": "Invalid email or password."}

    def test_login_requires_fields(self, client, org):
        resp = client.post("/login", json={})
        assert resp.status_code == 400

    def test_inactive_user_cannot_login(self, client, user):
        user.is_active = False
        db.session.commit()

        resp = client.post("/login", json={"email": user.email, "password": TEST_PASSWORD})
        assert resp.status_code == 401
        assert resp.get_json() == {"error": "This account is inactive."}

    def test_non_member_is_forbidden(self, auth_client, other_org):
        foreign = TenantOrganization(organization_id=other_org.id, name="Initrode")
        db.session.add(foreign)
        db.session.commit()
        ctx = RequestContext(tenant=TenantRef(id=other_org.id, slug=other_org.slug, name=other_org.name))
        quote = quotes.create_quote(ctx, {"tenantOrganizationId": foreign.id, **QUOTE_PAYLOAD})

        forbidden = {"error": "You are not a member of this organization"}
        calls = [
            auth_client.get("/api/tenant/initech/quotes"),
            auth_client.delete(f"/api/tenant/initech/quotes/{quote.id}"),
            auth_client.post("/api/tenant/initech/settings/api-keys", json={"name": "x", "role": "full-access"}),
        ]
        assert [(r.status_code, r.get_json()) for r in calls] == [(403, forbidden)] * 3

        assert db.session.query(OrganizationApiKey).count() == 0
        assert quotes.get_quote(ctx, quote.id).status == "draft"

    def test_non_member_can_check_membership(self, auth_client, other_org):
        data = auth_client.get("/api/tenant/initech/membership").get_json()
        assert data["isMember"] is False

    def test_me_lists_organizations(self, auth_client):
        data = auth_client.get("/me").get_json()["user"]
        assert data["email"] == "dana@acme.test"
        assert data["organizations"] == [{"slug": "acme", "name": "Acme Corp", "role": "owner"}]

    def test_logout(self, auth_client):
        assert auth_client.post("/logout").get_json() == {"success": True}


class TestQuoteEndpoints:
    def test_full_lifecycle(self, auth_client, customer):
        quote = _create_quote(auth_client, customer)
        assert quote["quoteNumber"] == "QUO-ACME-1001"
        assert quote["total"] == 12000

        sent = auth_client.post(f"{BASE}/quotes/{quote['id']}/send").get_json()
        assert sent["success"] is True
        assert sent["quote"]["status"] == "sent"

        pdf = auth_client.get(f"{BASE}/quotes/{quote['id']}/pdf")
        assert pdf.status_code == 200
        assert pdf.mimetype == "application/pdf"
        assert pdf.data.startswith(b"%PDF")

        accepted = auth_client.post(f"{BASE}/quotes/{quote['id']}/accept", json={})
        body = accepted.get_json()
        assert accepted.status_code == 200
        assert body["success"] is True
        assert body["quote"]["status"] == "converted"
        assert body["invoice"]["invoiceNumber"] == "INV-ACME-1001"
        assert body["invoice"]["total"] == 12000

        again = auth_client.post(f"{BASE}/quotes/{quote['id']}/accept")
        assert again.status_code == 400
        assert again.get_json() == {"error": "Only sent quotes can be accepted"}

    def test_pdf_not_available(self, auth_client, customer):
        quote = _create_quote(auth_client, customer)

        resp = auth_client.get(f"{BASE}/quotes/{quote['id']}/pdf")
        assert resp.status_code == 404
        assert resp.get_json() == {"error": "PDF not available for this quote"}

    def test_unknown_quote(self, auth_client, org):
        resp = auth_client.get(f"{BASE}/quotes/quo_missing")
        assert resp.status_code == 404
        assert resp.get_json() == {"error": "Quote not found"}

    def test_invalid_json_body(self, auth_client, org):
        resp = auth_client.post(f"{BASE}/quotes", data="nope", content_type="application/json")
        assert resp.status_code == 400
        assert "error" in resp.get_json()

    def test_update_and_delete_draft(self, auth_client, customer):
        quote = _create_quote(auth_client, customer)

        updated = auth_client.put(f"{BASE}/quotes/{quote['id']}", json={"tax": 500}).get_json()["quote"]
        assert updated["total"] == 10500

        assert auth_client.delete(f"{BASE}/quotes/{quote['id']}").get_json() == {"success": True}
        assert auth_client.get(f"{BASE}/quotes/{quote['id']}").status_code == 404

    def test_sent_quote_is_locked(self, auth_client, customer):
        quote = _create_quote(auth_client, customer)
        auth_client.post(f"{BASE}/quotes/{quote['id']}/send")

        edit = auth_client.put(f"{BASE}/quotes/{quote['id']}", json={"tax": 0})
        assert (edit.status_code, edit.get_json()) == (400, {"error": "Only draft quotes can be edited"})

        delete = auth_client.delete(f"{BASE}/quotes/{quote['id']}")
        assert (delete.status_code, delete.get_json()) == (400, {"error": "Only draft quotes can be deleted"})


class TestInvoiceEndpoints:
    def test_finalize_twice(self, auth_client, customer):
        quote = _create_quote(auth_client, customer)
        auth_client.post(f"{BASE}/quotes/{quote['id']}/send")
        invoice_id = auth_client.post(f"{BASE}/quotes/{quote['id']}/accept").get_json()["invoice"]["id"]

        first = auth_client.post(f"{BASE}/invoices/{invoice_id}/finalize")
        assert first.get_json()["invoice"]["status"] == "final"

        second = auth_client.post(f"{BASE}/invoices/{invoice_id}/finalize")
        assert second.status_code == 400
        assert second.get_json() == {"error": "Invoice is already finalized"}

    def test_list(self, auth_client, org):
        assert auth_client.get(f"{BASE}/invoices").get_json() == {"invoices": []}


class TestErrorHandling:
    def test_unexpected_errors_are_generic_500(self, auth_client, org, monkeypatch):
        def boom(ctx, filters=None):
            raise RuntimeError("connection string with secrets")

        monkeypatch.setattr(quotes, "list_quotes", boom)

        resp = auth_client.get(f"{BASE}/quotes")
        assert resp.status_code == 500
        assert resp.get_json() == {"error": "Internal server error"}

    def test_unknown_route(self, client):
        resp = client.get("/api/nothing-here")
        assert resp.status_code == 404
        assert "error" in resp.get_json()


class TestApiKeys:
    @pytest.fixture
    def created_key(self, auth_client):
        resp = auth_client.post(f"{BASE}/settings/api-keys", json={"name": "CI", "role": "read-only"})
        assert resp.status_code == 201
        return resp.get_json()["apiKey"]

    def test_plain_key_returned_once(self, auth_client, created_key):
        assert created_key["key"].startswith("sk_live_")
        assert len(created_key["key"]) == len("sk_live_") + 48

        [listed] = auth_client.get(f"{BASE}/settings/api-keys").get_json()["apiKeys"]
        assert listed["key"] == created_key["key"][:16] + "..."
        assert listed["createdBy"] == "Dana Scully"
        assert created_key["key"] not in str(listed)

    def test_name_required(self, auth_client):
        resp = auth_client.post(f"{BASE}/settings/api-keys", json={"role": "read-only"})
        assert resp.get_json() == {"error": "API key name is required"}

    def test_revoke(self, auth_client, created_key):
        resp = auth_client.delete(f"{BASE}/settings/api-keys", json={"keyId": created_key["id"]})
        assert resp.get_json() == {"success": True}
        assert auth_client.get(f"{BASE}/settings/api-keys").get_json() == {"apiKeys": []}

        missing = auth_client.delete(f"{BASE}/settings/api-keys?keyId={created_key['id']}")
        assert missing.status_code == 404
        assert missing.get_json() == {"error": "API key not found"}


class TestApiKeyAuthentication:
    def _issue(self, org, role):
        ctx = RequestContext(tenant=TenantRef(id=org.id, slug=org.slug, name=org.name))
        return api_keys.create_api_key(ctx, {"name": f"{role} key", "role": role}).plain_key

    def test_read_only_key_can_read(self, client, org):
        key = self._issue(org, "read-only")

        resp = client.get(f"{BASE}/quotes", headers={"X-API-Key": key})
        assert resp.status_code == 200

        row = db.session.query(OrganizationApiKey).one()
        assert row.last_used_at is not None

    def test_read_only_key_cannot_write(self, client, org, customer):
        key = self._issue(org, "read-only")

        resp = client.post(
            f"{BASE}/quotes",
            json={"tenantOrganizationId": customer.id, **QUOTE_PAYLOAD},
            headers={"X-API-Key": key},
        )
        assert resp.status_code == 403
        assert resp.get_json() == {"error": "API key does not have write permission"}

    def test_full_access_key_can_write(self, client, org, customer):
        key = self._issue(org, "full-access")
        quote = _create_quote(client, customer, **{"X-API-Key": key})
        assert quote["status"] == "draft"

    def test_key_of_another_tenant_is_rejected(self, client, org, other_org):
        key = self._issue(other_org, "full-access")

        resp = client.get(f"{BASE}/quotes", headers={"X-API-Key": key})
        assert resp.status_code == 401
        assert resp.get_json() == {"error": "Invalid API key"}


class TestPeopleEndpoints:
    def test_member_update_and_audit_trail(self, auth_client, tenant_user):
        resp = auth_client.put(f"{BASE}/members/{tenant_user.id}", json={"title": "CEO"})
        assert resp.get_json()["member"]["title"] == "CEO"

        logs = auth_client.get(f"{BASE}/members/{tenant_user.id}/audit-logs").get_json()["auditLogs"]
        assert [entry["action"] for entry in logs] == ["title_changed"]
        assert logs[0]["performedBy"] == "Dana Scully"

    def test_users_listing(self, auth_client, tenant_user):
        users = auth_client.get(f"{BASE}/users").get_json()["users"]
        assert [u["email"] for u in users] == ["hank@globex.test"]

    def test_membership(self, auth_client):
        assert auth_client.get(f"{BASE}/membership").get_json()["isMember"] is True


class TestCli:
    def test_create_user_with_org(self, app):
        runner = app.test_cli_runner()
        result = runner.invoke(args=[
            "create-user",
            "--email", "Ops@Example.test",
            "--name", "Ops Person",
            "--password", "Sup3rSecretPw",
            "--org-slug", "newco",
            "--org-name", "NewCo",
        ])

        assert result.exit_code == 0, result.output
        user = db.session.query(User).filter_by(email="ops@example.test").one()
        assert [m.organization.slug for m in user.memberships] == ["newco"]

    def test_create_user_enforces_password_policy(self, app):
        result = app.test_cli_runner().invoke(args=[
            "create-user", "--email", "a@b.test", "--name", "A", "--password", "short",
        ])
        assert result.exit_code != 0
        assert "at least 10 characters" in result.output

    def test_expire_quotes(self, app, make_quote):
        make_quote(status="sent", validUntil="2020-01-01T00:00:00Z")
        result = app.test_cli_runner().invoke(args=["expire-quotes"])
        assert "Expired 1 quote(s)." in result.output
