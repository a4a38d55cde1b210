# opsdesk/utils/document_pdf.py

from __future__ import annotations

import io
from datetime import datetime, date
from decimal import Decimal

from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.lib import colors
from reportlab.pdfgen import canvas
from reportlab.platypus import Table, TableStyle


def _fmt_date(d):
    if not d:
        return "-"
    if isinstance(d, (datetime, date)):
        return d.strftime("%Y-%m-%d")
    return str(d)


def _money(minor_units, currency="USD"):
    if minor_units is None:
        return "-"
    amount = Decimal(int(minor_units)) / Decimal(100)
    return f"{currency} {amount:,.2f}"


def _safe_enum_value(v):
    return getattr(v, "value", v)


def _fmt_qty(q):
    if isinstance(q, float) and q.is_integer():
        return str(int(q))
    return str(q)


# --- Brand colors ---
INK = colors.HexColor("#1e3a5f")
ACCENT = colors.HexColor("#3b82f6")
GRAY = colors.HexColor("#6b7280")
DARK = colors.HexColor("#111827")
RULE = colors.HexColor("#e5e7eb")


def _render(doc, *, title: str, number: str, meta_lines: list[str], brand: str) -> bytes:
    """
    Shared layout for quotes and invoices: header bar, billed-to card, items
    table, totals block, notes, footer. Reads only attributes already loaded
    on `doc` (no DB access).
    """
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    width, height = A4
    currency = getattr(doc, "currency", None) or "USD"

    # --- Header bar ---
    c.setFillColor(INK)
    c.rect(0, height - 28 * mm, width, 28 * mm, stroke=0, fill=1)

    c.setFillColor(colors.white)
    c.setFont("Helvetica-Bold", 16)
    c.drawString(18 * mm, height - 16 * mm, brand)

    c.setFont("Helvetica-Bold", 12)
    c.drawRightString(width - 18 * mm, height - 14 * mm, f"{title} {number}")

    c.setFont("Helvetica", 9)
    c.drawRightString(width - 18 * mm, height - 20 * mm, " | ".join(meta_lines))

    y = height - 38 * mm

    # --- Billed to ---
    c.setFillColor(DARK)
    c.setFont("Helvetica-Bold", 11)
    c.drawString(18 * mm, y, "Billed To")
    y -= 6 * mm

    c.setStrokeColor(RULE)
    c.setFillColor(colors.white)
    c.roundRect(18 * mm, y - 26 * mm, width - 36 * mm, 26 * mm, 6, stroke=1, fill=1)

    customer = getattr(doc, "tenant_organization", None)
    billing_name = getattr(doc, "billing_name", None) or getattr(customer, "name", None) or "-"
    billing_email = getattr(doc, "billing_email", None) or ""
    billing_address = getattr(doc, "billing_address", None) or ""

    c.setFillColor(DARK)
    c.setFont("Helvetica-Bold", 10)
    c.drawString(22 * mm, y - 8 * mm, billing_name[:90])

    c.setFont("Helvetica", 9)
    line_y = y - 14 * mm
    if billing_email:
        c.drawString(22 * mm, line_y, billing_email[:90])
        line_y -= 5 * mm
    if billing_address:
        c.setFillColor(GRAY)
        c.drawString(22 * mm, line_y, billing_address.replace("\n", ", ")[:110])
        c.setFillColor(DARK)

    y -= 36 * mm

    # --- Items table ---
    data = [["Description", "Qty", "Unit Price", "Line Total"]]
    for it in getattr(doc, "line_items", None) or []:
        data.append([
            str(it.get("description", "-"))[:70],
            _fmt_qty(it.get("quantity", 1)),
            _money(it.get("unitPrice", 0), currency),
            _money(it.get("lineTotal", it.get("total", 0)), currency),
        ])

    if len(data) == 1:
        data.append(["(No items)", "-", "-", "-"])

    table = Table(
        data,
        colWidths=[90 * mm, 18 * mm, 34 * mm, 34 * mm],
        hAlign="LEFT",
    )
    table.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#f3f4f6")),
        ("TEXTCOLOR", (0, 0), (-1, 0), DARK),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 9),
        ("GRID", (0, 0), (-1, -1), 0.5, RULE),
        ("ALIGN", (1, 1), (-1, -1), "RIGHT"),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ("LEFTPADDING", (0, 0), (-1, -1), 6),
        ("RIGHTPADDING", (0, 0), (-1, -1), 6),
        ("TOPPADDING", (0, 0), (-1, -1), 5),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 5),
    ]))

    tw, th = table.wrapOn(c, width - 36 * mm, height)
    table.drawOn(c, 18 * mm, y - th)

    y = y - th - 10 * mm

    # --- Totals ---
    block_x = width - 18 * mm
    c.setFont("Helvetica", 9)
    c.setFillColor(GRAY)
    c.drawRightString(block_x, y, "Subtotal")
    c.drawRightString(block_x, y - 6 * mm, "Tax")
    c.setFillColor(DARK)
    c.setFont("Helvetica-Bold", 10)
    c.drawRightString(block_x, y - 14 * mm, "Total")

    c.setFont("Helvetica", 9)
    c.drawRightString(block_x - 40 * mm, y, _money(doc.subtotal, currency))
    c.drawRightString(block_x - 40 * mm, y - 6 * mm, _money(doc.tax, currency))
    c.setFont("Helvetica-Bold", 10)
    c.drawRightString(block_x - 40 * mm, y - 14 * mm, _money(doc.total, currency))

    y -= 24 * mm

    # --- Notes ---
    notes = getattr(doc, "notes", None)
    if notes:
        c.setFont("Helvetica-Bold", 10)
        c.setFillColor(DARK)
        c.drawString(18 * mm, y, "Notes")
        c.setFont("Helvetica", 9)
        c.setFillColor(GRAY)
        c.drawString(18 * mm, y - 6 * mm, notes.replace("\n", " ")[:120])

    # --- Footer ---
    c.setFillColor(RULE)
    c.rect(0, 0, width, 12 * mm, stroke=0, fill=1)

    c.setFillColor(GRAY)
    c.setFont("Helvetica", 8)
    c.drawString(18 * mm, 4 * mm, brand)
    c.drawRightString(width - 18 * mm, 4 * mm, f"Generated: {_fmt_date(date.today())}")

    c.showPage()
    c.save()

    pdf = buf.getvalue()
    buf.close()
    return pdf


def render_quote_pdf(quote, brand: str = "") -> bytes:
    """Render a Quote PDF (no DB writes). Returns PDF bytes."""
    meta = [
        f"Status: {_safe_enum_value(quote.status)}",
        f"Date: {_fmt_date(quote.sent_at or quote.created_at)}",
    ]
    if quote.valid_until:
        meta.append(f"Valid until: {_fmt_date(quote.valid_until)}")
    return _render(quote, title="QUOTE", number=quote.quote_number, meta_lines=meta, brand=brand or "Quote")


def render_invoice_pdf(invoice, brand: str = "") -> bytes:
    """Render an Invoice PDF (no DB writes). Returns PDF bytes."""
    meta = [
        f"Status: {_safe_enum_value(invoice.status)}",
        f"Issued: {_fmt_date(invoice.issue_date)}",
        f"Due: {_fmt_date(invoice.due_date)}",
    ]
    return _render(invoice, title="INVOICE", number=invoice.invoice_number, meta_lines=meta, brand=brand or "Invoice")
