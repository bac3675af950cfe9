from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from cms_core.domain.enums import AuditCategory, ContentFormat, DocumentStatus, VersionType
from cms_core.domain.exceptions import (
    StateConflictError,
    ValidationError,
)
from cms_core.domain.lifecycle.document import assert_document_transition
from cms_core.domain.records import Actor
from cms_core.models.document import Document
from cms_core.models.workflow import DocumentWorkflowState
from cms_core.utils.site_scope import site_all, site_first
from cms_core.utils.time import utcnow
from cms_core.utils.transaction import transactional
from .base import ScopedService
from .loaders import embargo_guard, load_document
from .collaborators import (
    index_after_commit,
    notify_after_commit,
    unindex_after_commit,
)
from .versions import VersionStore
from .workflow import WorkflowEngine

ALLOWED_UPDATE_FIELDS = ("title", "slug", "collection", "body", "content_format", "meta")
CONTENT_FIELDS = {"title", "body", "content_format", "meta"}


class DocumentService(ScopedService):
    """
    The document row itself: creation, content edits and the direct status
    changes used when no workflow governs the document.
    """

    def __init__(self, ctx, *, audit=None, versions: Optional[VersionStore] = None,
                 notifier=None, indexer=None, clock=utcnow):
        super().__init__(ctx, audit=audit, clock=clock)
        self.versions = versions or VersionStore(ctx, audit=audit, indexer=indexer, clock=clock)
        self.notifier = notifier
        self.indexer = indexer

    def get(self, document_id: str) -> Document:
        return load_document(self.ctx, document_id)

    def list(
        self,
        *,
        status: Optional[str] = None,
        collection: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Document]:
        stmt = select(Document).where(Document.deleted_at.is_(None))
        if status:
            stmt = stmt.where(Document.status == _status(status))
        if collection:
            stmt = stmt.where(Document.collection == collection)
        stmt = stmt.order_by(Document.created_at.desc(), Document.id.desc()).limit(limit).offset(offset)
        return site_all(self.ctx, stmt)

    def create(
        self,
        *,
        actor: Actor,
        title: str,
        body: str = "",
        content_format: Any = ContentFormat.HTML,
        meta: Optional[Dict[str, Any]] = None,
        collection: Optional[str] = None,
        slug: Optional[str] = None,
    ) -> Document:
        """
        Create a document in DRAFT.

        No version is written here; history starts with the first save,
        submission or publish.
        """
        if not title or not str(title).strip():
            raise ValidationError("Title is required")

        document = Document()
        document.site_id = self.ctx.require_site()
        document.title = str(title).strip()
        document.slug = slug
        document.collection = collection
        document.body = body or ""
        document.content_format = _format(content_format)
        document.meta = meta or {}
        document.status = DocumentStatus.DRAFT
        document.created_by = actor.email
        document.updated_by = actor.email
        document.created_at = self.clock()

        try:
            with transactional(self.session):
                self.session.add(document)
                self.session.flush()

                self._log(
                    actor, "document.create", AuditCategory.CONTENT, "document", document.id,
                    title=document.title,
                    metadata={"collection": collection, "slug": slug},
                )
        except IntegrityError as exc:
            # uq_document_slug_per_site
            raise StateConflictError("A document with this slug already exists") from exc

        return document

    def update(self, document_id: str, data: Dict[str, Any], *, actor: Actor) -> Document:
        """
        Update whitelisted fields.

        Content changes also write an `auto` version. The version store skips
        it only when body, title and metadata all match the latest version,
        so a title-only or metadata-only edit still reaches the history.
        """
        try:
            with transactional(self.session):
                document = load_document(self.ctx, document_id, lock=True)

                changed_fields: list[str] = []
                for field in ALLOWED_UPDATE_FIELDS:
                    if field not in data:
                        continue
                    value = data[field]
                    if field == "content_format":
                        value = _format(value)
                    if field == "title" and not (value and str(value).strip()):
                        raise ValidationError("Title cannot be empty")
                    if getattr(document, field) != value:
                        setattr(document, field, value)
                        changed_fields.append(field)

                if not changed_fields:
                    # Explicitly fail instead of silently succeeding
                    raise ValidationError("No valid fields provided for update")

                document.updated_by = actor.email

                if CONTENT_FIELDS.intersection(changed_fields):
                    self.versions.create_version(
                        document.id,
                        document.body,
                        document.content_format,
                        actor=actor,
                        title=document.title,
                        metadata=document.meta,
                        version_type=VersionType.AUTO,
                    )

                self._log(
                    actor, "document.update", AuditCategory.CONTENT, "document", document.id,
                    title=document.title,
                    metadata={"fields": changed_fields},
                )

                if document.status == DocumentStatus.PUBLISHED:
                    index_after_commit(self.session, self.indexer, document.index_payload())
        except IntegrityError as exc:
            raise StateConflictError("A document with this slug already exists") from exc

        return document

    def delete(self, document_id: str, *, actor: Actor) -> None:
        with transactional(self.session):
            document = load_document(self.ctx, document_id, lock=True)
            document.soft_delete()
            document.updated_by = actor.email

            self._log(
                actor, "document.delete", AuditCategory.CONTENT, "document", document.id,
                title=document.title,
            )
            unindex_after_commit(self.session, self.indexer, document.id)
            notify_after_commit(self.session, self.notifier, "document.deleted", {"document_id": document.id})

    def has_workflow(self, document_id: str) -> bool:
        stmt = select(DocumentWorkflowState).where(DocumentWorkflowState.document_id == document_id)
        return site_first(self.ctx, stmt) is not None

    # ------------------------
    # Direct status changes
    # ------------------------

    def publish(self, document_id: str, *, actor: Actor, reason: Optional[str] = None,
                enforce_workflow: bool = True) -> Document:
        """
        Publish without a workflow: embargo check, lifecycle guard, a
        `publish` snapshot, then the status flip.
        """
        with transactional(self.session):
            document = load_document(self.ctx, document_id, lock=True)

            if enforce_workflow and self.has_workflow(document.id):
                raise StateConflictError("Document is governed by a workflow; publish through it")

            now = self.clock()
            embargo_guard(document, now)
            assert_document_transition(from_status=document.status, to_status=DocumentStatus.PUBLISHED)

            self.versions.create_version(
                document.id,
                document.body,
                document.content_format,
                actor=actor,
                title=document.title,
                metadata=document.meta,
                version_type=VersionType.PUBLISH,
                label="Published",
                notes=reason or "Published directly",
            )

            document.status = DocumentStatus.PUBLISHED
            document.published_at = now
            document.updated_by = actor.email

            self._log(
                actor, "publish", AuditCategory.WORKFLOW, "document", document.id,
                title=document.title, summary=reason,
            )
            index_after_commit(self.session, self.indexer, document.index_payload())
            notify_after_commit(self.session, self.notifier, "document.published", {"document_id": document.id})

        return document

    def unpublish(self, document_id: str, *, actor: Actor, reason: Optional[str] = None) -> Document:
        with transactional(self.session):
            document = load_document(self.ctx, document_id, lock=True)
            assert_document_transition(from_status=document.status, to_status=DocumentStatus.DRAFT)

            document.status = DocumentStatus.DRAFT
            document.published_at = None
            document.updated_by = actor.email

            self._workflow().withdraw(document.id, actor=actor, comment=reason or "Unpublished")

            self._log(
                actor, "unpublish", AuditCategory.WORKFLOW, "document", document.id,
                title=document.title, summary=reason,
            )
            unindex_after_commit(self.session, self.indexer, document.id)
            notify_after_commit(self.session, self.notifier, "document.unpublished", {"document_id": document.id})

        return document

    def archive(self, document_id: str, *, actor: Actor, reason: Optional[str] = None) -> Document:
        with transactional(self.session):
            document = load_document(self.ctx, document_id, lock=True)
            was_published = document.status == DocumentStatus.PUBLISHED
            assert_document_transition(from_status=document.status, to_status=DocumentStatus.ARCHIVED)

            document.status = DocumentStatus.ARCHIVED
            document.updated_by = actor.email

            self._workflow().withdraw(document.id, actor=actor, comment=reason or "Archived")

            self._log(
                actor, "archive", AuditCategory.WORKFLOW, "document", document.id,
                title=document.title, summary=reason,
            )
            if was_published:
                unindex_after_commit(self.session, self.indexer, document.id)
            notify_after_commit(self.session, self.notifier, "document.archived", {"document_id": document.id})

        return document

    def _workflow(self) -> WorkflowEngine:
        # Keeps workflow state in step with direct status changes
        return WorkflowEngine(
            self.ctx,
            audit=self.audit,
            versions=self.versions,
            notifier=self.notifier,
            indexer=self.indexer,
            clock=self.clock,
        )


def _status(value) -> DocumentStatus:
    try:
        return DocumentStatus(value)
    except ValueError:
        raise ValidationError(f"Invalid document status: {value}")


def _format(value) -> ContentFormat:
    try:
        return ContentFormat(value)
    except ValueError:
        raise ValidationError(f"Invalid content format: {value}")
