# opsdesk/api.py
from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from opsdesk.errors import InvalidInput
from opsdesk.services import api_keys, invoices, listings, quotes
from opsdesk.utils.guards import tenant_api

api = Blueprint("api", __name__, url_prefix="/api/tenant")


# ======================
# Helpers
# ======================
def _json_body(*, required: bool = True) -> dict:
    data = request.get_json(silent=True)
    if data is None:
        if required:
            raise InvalidInput("Invalid JSON body")
        return {}
    if not isinstance(data, dict):
        raise InvalidInput("Request body must be a JSON object")
    return data


def _filters() -> dict:
    return request.args.to_dict()


def _pdf_response(filename: str, pdf_bytes: bytes):
    return current_app.response_class(
        pdf_bytes,
        mimetype="application/pdf",
        headers={"Content-Disposition": f'inline; filename="{filename}"'},
    )


# =========================================================
# Quotes
# =========================================================
@api.route("/<tenant>/quotes", methods=["GET"])
@tenant_api
def list_quotes(ctx):
    return jsonify({"quotes": [q.to_dict() for q in quotes.list_quotes(ctx, _filters())]})


@api.route("/<tenant>/quotes", methods=["POST"])
@tenant_api
def create_quote(ctx):
    record = quotes.create_quote(ctx, _json_body())
    return jsonify({"quote": record.to_dict()}), 201


@api.route("/<tenant>/quotes/<quote_id>", methods=["GET"])
@tenant_api
def get_quote(ctx, quote_id):
    return jsonify({"quote": quotes.get_quote(ctx, quote_id).to_dict()})


@api.route("/<tenant>/quotes/<quote_id>", methods=["PUT"])
@tenant_api
def update_quote(ctx, quote_id):
    record = quotes.update_quote(ctx, quote_id, _json_body())
    return jsonify({"quote": record.to_dict()})


@api.route("/<tenant>/quotes/<quote_id>", methods=["DELETE"])
@tenant_api
def delete_quote(ctx, quote_id):
    quotes.delete_quote(ctx, quote_id)
    return jsonify({"success": True})


@api.route("/<tenant>/quotes/<quote_id>/send", methods=["POST"])
@tenant_api
def send_quote(ctx, quote_id):
    return jsonify({"success": True, "quote": quotes.send_quote(ctx, quote_id).to_dict()})


@api.route("/<tenant>/quotes/<quote_id>/accept", methods=["POST"])
@tenant_api
def accept_quote(ctx, quote_id):
    result = quotes.accept_quote(ctx, quote_id, _json_body(required=False))
    return jsonify({"success": True, **result.to_dict()})


@api.route("/<tenant>/quotes/<quote_id>/reject", methods=["POST"])
@tenant_api
def reject_quote(ctx, quote_id):
    return jsonify({"success": True, "quote": quotes.reject_quote(ctx, quote_id).to_dict()})


@api.route("/<tenant>/quotes/<quote_id>/expire", methods=["POST"])
@tenant_api
def expire_quote(ctx, quote_id):
    return jsonify({"success": True, "quote": quotes.expire_quote(ctx, quote_id).to_dict()})


@api.route("/<tenant>/quotes/<quote_id>/pdf", methods=["GET"])
@tenant_api
def quote_pdf(ctx, quote_id):
    filename, pdf_bytes = quotes.quote_pdf(ctx, quote_id)
    return _pdf_response(filename, pdf_bytes)


@api.route("/<tenant>/quotes/<quote_id>/pdf", methods=["POST"])
@tenant_api
def regenerate_quote_pdf(ctx, quote_id):
    return jsonify({"quote": quotes.regenerate_quote_pdf(ctx, quote_id).to_dict()})


# =========================================================
# Invoices
# =========================================================
@api.route("/<tenant>/invoices", methods=["GET"])
@tenant_api
def list_invoices(ctx):
    return jsonify({"invoices": [i.to_dict() for i in invoices.list_invoices(ctx, _filters())]})


@api.route("/<tenant>/invoices", methods=["POST"])
@tenant_api
def create_invoice(ctx):
    record = invoices.create_invoice(ctx, _json_body())
    return jsonify({"invoice": record.to_dict()}), 201


@api.route("/<tenant>/invoices/<invoice_id>", methods=["GET"])
@tenant_api
def get_invoice(ctx, invoice_id):
    return jsonify({"invoice": invoices.get_invoice(ctx, invoice_id).to_dict()})


@api.route("/<tenant>/invoices/<invoice_id>/finalize", methods=["POST"])
@tenant_api
def finalize_invoice(ctx, invoice_id):
    return jsonify({"success": True, "invoice": invoices.finalize_invoice(ctx, invoice_id).to_dict()})


@api.route("/<tenant>/invoices/<invoice_id>/pay", methods=["POST"])
@tenant_api
def pay_invoice(ctx, invoice_id):
    return jsonify({"success": True, "invoice": invoices.pay_invoice(ctx, invoice_id).to_dict()})


@api.route("/<tenant>/invoices/<invoice_id>/void", methods=["POST"])
@tenant_api
def void_invoice(ctx, invoice_id):
    return jsonify({"success": True, "invoice": invoices.void_invoice(ctx, invoice_id).to_dict()})


@api.route("/<tenant>/invoices/<invoice_id>/pdf", methods=["GET"])
@tenant_api
def invoice_pdf(ctx, invoice_id):
    filename, pdf_bytes = invoices.invoice_pdf(ctx, invoice_id)
    return _pdf_response(filename, pdf_bytes)


@api.route("/<tenant>/invoices/<invoice_id>/pdf", methods=["POST"])
@tenant_api
def regenerate_invoice_pdf(ctx, invoice_id):
    return jsonify({"invoice": invoices.regenerate_invoice_pdf(ctx, invoice_id).to_dict()})


# =========================================================
# People
# =========================================================
@api.route("/<tenant>/users", methods=["GET"])
@tenant_api
def list_users(ctx):
    return jsonify({"users": [u.to_dict() for u in listings.list_users(ctx, _filters())]})


@api.route("/<tenant>/members", methods=["GET"])
@tenant_api
def list_members(ctx):
    return jsonify({"members": [m.to_dict() for m in listings.list_staff_members(ctx, _filters())]})


@api.route("/<tenant>/members/<member_id>", methods=["GET"])
@tenant_api
def get_member(ctx, member_id):
    return jsonify({"member": listings.get_member(ctx, member_id).to_dict()})


@api.route("/<tenant>/members/<member_id>", methods=["PUT"])
@tenant_api
def update_member(ctx, member_id):
    record = listings.update_member(ctx, member_id, _json_body())
    return jsonify({"member": record.to_dict()})


@api.route("/<tenant>/members/<member_id>/audit-logs", methods=["GET"])
@tenant_api
def member_audit_logs(ctx, member_id):
    logs = listings.list_member_audit_logs(ctx, member_id, _filters())
    return jsonify({"auditLogs": [entry.to_dict() for entry in logs]})


@api.route("/<tenant>/membership", methods=["GET"])
@tenant_api(members_only=False)
def membership(ctx):
    return jsonify(listings.get_membership(ctx).to_dict())


# =========================================================
# Settings: API keys
# =========================================================
@api.route("/<tenant>/settings/api-keys", methods=["GET"])
@tenant_api
def list_api_keys(ctx):
    return jsonify({"apiKeys": [k.to_dict() for k in api_keys.list_api_keys(ctx, _filters())]})


@api.route("/<tenant>/settings/api-keys", methods=["POST"])
@tenant_api
def create_api_key(ctx):
    created = api_keys.create_api_key(ctx, _json_body())
    return jsonify({"apiKey": created.to_dict()}), 201


@api.route("/<tenant>/settings/api-keys", methods=["DELETE"])
@tenant_api
def delete_api_key(ctx):
    body = _json_body(required=False)
    api_keys.delete_api_key(ctx, body.get("keyId") or request.args.get("keyId"))
    return jsonify({"success": True})


# =========================================================
# Product catalog
# =========================================================
@api.route("/<tenant>/product-catalog/plans", methods=["GET"])
@tenant_api
def list_plans(ctx):
    return jsonify({"plans": [p.to_dict() for p in listings.list_plans(ctx, _filters())]})


@api.route("/<tenant>/product-catalog/plans/<plan_id>", methods=["GET"])
@tenant_api
def get_plan(ctx, plan_id):
    return jsonify({"plan": listings.get_plan(ctx, plan_id).to_dict()})


@api.route("/<tenant>/product-catalog/plans/<plan_id>", methods=["DELETE"])
@tenant_api
def delete_plan(ctx, plan_id):
    outcome = listings.delete_plan(ctx, plan_id)
    return jsonify({"success": True, "result": outcome})
