from sqlalchemy import select

from cms_core.domain.exceptions import EmbargoViolation, NotFoundError
from cms_core.models.document import Document
from cms_core.utils.site_scope import SiteContext, site_first


def load_document(ctx: SiteContext, document_id: str, *, lock: bool = False) -> Document:
    """Fetch a live document of the current site or raise NotFoundError."""
    stmt = select(Document).where(Document.id == document_id, Document.deleted_at.is_(None))
    if lock:
        stmt = stmt.with_for_update()

    document = site_first(ctx, stmt)
    if document is None:
        raise NotFoundError(f"Document not found: {document_id}")
    return document


def embargo_guard(document: Document, now) -> None:
    if document.embargo_until is not None and now < document.embargo_until:
        raise EmbargoViolation(document.embargo_until)
