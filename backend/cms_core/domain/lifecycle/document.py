from typing import Dict, Set

from cms_core.domain.enums import DocumentStatus
from cms_core.domain.invariants.exceptions import InvariantViolation

# Explicit allowed status transitions; published -> published is a re-publish
ALLOWED_DOCUMENT_TRANSITIONS: Dict[DocumentStatus, Set[DocumentStatus]] = {
    DocumentStatus.DRAFT: {DocumentStatus.PUBLISHED, DocumentStatus.ARCHIVED},
    DocumentStatus.PUBLISHED: {
        DocumentStatus.PUBLISHED,
        DocumentStatus.DRAFT,
        DocumentStatus.ARCHIVED,
    },
    DocumentStatus.ARCHIVED: {DocumentStatus.DRAFT},
}


def assert_document_transition(*, from_status: DocumentStatus, to_status: DocumentStatus) -> None:
    """
    Guards document lifecycle transitions.
    Single source of truth for status changes.
    """
    allowed = ALLOWED_DOCUMENT_TRANSITIONS.get(DocumentStatus(from_status), set())

    if DocumentStatus(to_status) not in allowed:
        raise InvariantViolation(
            f"Illegal document transition: {DocumentStatus(from_status).value} → {DocumentStatus(to_status).value}"
        )
