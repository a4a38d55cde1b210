# opsdesk/services/document_files.py
from __future__ import annotations

import os
from typing import Optional

from flask import current_app

from opsdesk.errors import NotFound
from opsdesk.extensions import db
from opsdesk.models import Invoice, Quote, utcnow_naive
from opsdesk.utils.document_pdf import render_invoice_pdf, render_quote_pdf


# =========================================================
# Storage helpers
# =========================================================
def _docs_storage_dir() -> str:
    """
    Local storage by default. Swapping to S3/MinIO later should not change callers.
    Priority:
      1) Flask config: DOCUMENT_STORAGE_DIR
      2) Env: DOCUMENT_STORAGE_DIR
      3) instance_path/documents
    """
    base = (
        current_app.config.get("DOCUMENT_STORAGE_DIR")
        or os.getenv("DOCUMENT_STORAGE_DIR")
    )
    if not base:
        base = os.path.join(current_app.instance_path, "documents")

    os.makedirs(base, exist_ok=True)
    return base


def _abs_path(storage_key: str) -> str:
    base = os.path.abspath(_docs_storage_dir())
    abs_path = os.path.abspath(os.path.join(base, storage_key))
    # Keys come from the DB; never follow one outside the storage root.
    if os.path.commonpath([base, abs_path]) != base:
        raise NotFound("PDF file not found")
    return abs_path


def _kind_of(document) -> str:
    return "quote" if isinstance(document, Quote) else "invoice"


def _number_of(document) -> str:
    return document.quote_number if isinstance(document, Quote) else document.invoice_number


def default_storage_key(document) -> str:
    """
    Example:
      <org_id>/invoice/INV-ACME-1001_20260221T010203Z.pdf
    """
    ts = utcnow_naive().strftime("%Y%m%dT%H%M%S%fZ")
    return f"{document.organization_id}/{_kind_of(document)}/{_number_of(document)}_{ts}.pdf"


# =========================================================
# Store / load / delete
# =========================================================
def store_document_pdf(document, *, pdf_bytes: bytes, storage_key: Optional[str] = None) -> str:
    """
    Writes the PDF to the backing store and points document.pdf_path at it.
    Does NOT commit; caller controls transaction boundaries. Returns the key.
    """
    key = storage_key or default_storage_key(document)

    abs_path = _abs_path(key)
    os.makedirs(os.path.dirname(abs_path), exist_ok=True)

    with open(abs_path, "wb") as f:
        f.write(pdf_bytes)

    document.pdf_path = key
    db.session.add(document)

    return key


def load_document_pdf_bytes(storage_key: str) -> bytes:
    abs_path = _abs_path(storage_key)
    try:
        with open(abs_path, "rb") as f:
            return f.read()
    except FileNotFoundError:
        raise NotFound("PDF file not found")


def detach_document_pdf(document) -> Optional[str]:
    """Clear pdf_path (no commit) and hand back the key it pointed at."""
    key = document.pdf_path
    document.pdf_path = None
    return key


def delete_document_pdf(storage_key: Optional[str]) -> None:
    if not storage_key:
        return
    try:
        os.remove(_abs_path(storage_key))
    except (FileNotFoundError, NotFound):
        pass
    except OSError:
        current_app.logger.warning("Could not remove PDF artifact %s", storage_key)


# =========================================================
# Rendering hook
# =========================================================
def render_document_pdf(document) -> bytes:
    brand = current_app.config.get("DOCUMENT_BRAND_NAME") or getattr(document.organization, "name", "")
    if isinstance(document, Quote):
        return render_quote_pdf(document, brand=brand)
    if isinstance(document, Invoice):
        return render_invoice_pdf(document, brand=brand)
    raise TypeError(f"Cannot render {type(document).__name__}")


def regenerate_document_pdf(document) -> str:
    """Render, store and commit. Errors propagate to the caller."""
    previous = document.pdf_path
    key = store_document_pdf(document, pdf_bytes=render_document_pdf(document))
    db.session.commit()
    if previous and previous != key:
        delete_document_pdf(previous)
    return key


def attach_document_pdf(document, *, stale_key: Optional[str] = None) -> Optional[str]:
    """
    Best effort: runs after the status change has been committed and stores
    the result back on the document in its own commit. Any failure is logged
    and swallowed; pdf_path stays as it was and can be regenerated later.

    stale_key is an artifact the caller already detached in that commit. It is
    removed whether or not rendering succeeds.
    """
    key = None
    try:
        key = regenerate_document_pdf(document)
    except Exception:
        db.session.rollback()
        current_app.logger.exception(
            "PDF generation failed for %s %s",
            _kind_of(document),
            getattr(document, "id", None),
        )
    if stale_key and stale_key != key:
        delete_document_pdf(stale_key)
    return key
