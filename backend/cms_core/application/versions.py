from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import defer

from cms_core.domain.enums import AuditCategory, ContentFormat, DocumentStatus, VersionType
from cms_core.domain.exceptions import (
    ConcurrencyConflictError,
    NotFoundError,
    ValidationError,
)
from cms_core.domain.records import (
    Actor,
    FieldChange,
    VersionDetail,
    VersionDiff,
    VersionSummary,
)
from cms_core.models.base import new_id
from cms_core.models.document_version import DocumentVersion
from cms_core.utils.hashing import canonical_json, content_hash, content_size
from cms_core.utils.site_scope import site_all, site_first
from cms_core.utils.time import coerce_datetime, utcnow
from cms_core.utils.transaction import transactional
from .base import ScopedService
from .collaborators import index_after_commit
from .loaders import load_document


def to_summary(version: DocumentVersion) -> VersionSummary:
    return VersionSummary(
        id=version.id,
        version_number=version.version_number,
        created_at=version.created_at,
        created_by_email=version.created_by_email,
        created_by_name=version.created_by_name,
        title=version.title,
        version_type=version.version_type.value,
        version_label=version.version_label,
        content_size=version.content_size or 0,
    )


def to_detail(version: DocumentVersion) -> VersionDetail:
    return VersionDetail(
        id=version.id,
        document_id=version.document_id,
        version_number=version.version_number,
        content=version.content,
        content_format=version.content_format.value,
        content_hash=version.content_hash,
        title=version.title,
        metadata=version.meta,
        created_at=version.created_at,
        created_by_id=version.created_by_id,
        created_by_email=version.created_by_email,
        created_by_name=version.created_by_name,
        version_type=version.version_type.value,
        version_label=version.version_label,
        version_notes=version.version_notes,
        previous_version_id=version.previous_version_id,
    )


class VersionStore(ScopedService):
    """
    Append-only, numbered content history per document.

    Numbers are assigned under a row lock on the document and backed by the
    (document_id, version_number) unique constraint; a writer that still
    loses the race gets ConcurrencyConflictError and may simply retry.
    """

    def __init__(self, ctx, *, audit=None, indexer=None, clock=utcnow):
        super().__init__(ctx, audit=audit, clock=clock)
        self.indexer = indexer

    # ------------------------
    # Writes
    # ------------------------

    def create_version(
        self,
        document_id: str,
        content: str,
        content_format: Any = ContentFormat.HTML,
        *,
        actor: Actor,
        title: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        version_type: Any = VersionType.MANUAL,
        label: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Optional[str]:
        """
        Snapshot `content` as the next version of the document.

        Returns the new version id, or None when an `auto` version would
        repeat the latest version: same content hash, title and metadata.
        """
        version_type = VersionType(version_type)
        content = content or ""
        digest = content_hash(content)

        with transactional(self.session):
            # Serialises writers of the same document
            load_document(self.ctx, document_id, lock=True)

            latest = self._latest(document_id)
            if version_type == VersionType.AUTO and _unchanged(latest, digest, title, metadata):
                return None

            version = DocumentVersion()
            version.id = new_id()
            version.site_id = self.ctx.require_site()
            version.document_id = document_id
            version.version_number = (latest.version_number + 1) if latest else 1
            version.previous_version_id = latest.id if latest else None
            version.content = content
            version.content_format = ContentFormat(content_format)
            version.content_hash = digest
            version.content_size = content_size(content)
            version.title = title
            version.meta = metadata
            version.created_by_id = actor.id
            version.created_by_email = actor.email
            version.created_by_name = actor.name
            version.version_type = version_type
            version.version_label = label
            version.version_notes = notes
            version.created_at = self.clock()

            self.session.add(version)
            try:
                self.session.flush()
            except IntegrityError as exc:
                raise ConcurrencyConflictError(
                    f"Version {version.version_number} of document {document_id} was written concurrently"
                ) from exc

            self._log(
                actor, "version.create", AuditCategory.CONTENT, "document_version", version.id,
                title=title,
                metadata={
                    "document_id": document_id,
                    "version_number": version.version_number,
                    "version_type": version_type.value,
                },
            )

        return version.id

    def restore_version(self, document_id: str, version_id: str, *, actor: Actor) -> str:
        """
        Append a `restore` version carrying the target's content and copy it
        onto the live document. Older versions are left untouched.
        """
        with transactional(self.session):
            document = load_document(self.ctx, document_id, lock=True)
            target = self._require(version_id)
            if target.document_id != document.id:
                raise NotFoundError(f"Version not found: {version_id}")

            new_version_id = self.create_version(
                document.id,
                target.content,
                target.content_format,
                actor=actor,
                title=target.title,
                metadata=target.meta,
                version_type=VersionType.RESTORE,
                notes=f"Restored from version {target.version_number}",
            )

            document.body = target.content
            document.content_format = target.content_format
            if target.title:
                document.title = target.title
            if target.meta is not None:
                document.meta = dict(target.meta)
            document.updated_by = actor.email

            self._log(
                actor, "version.restore", AuditCategory.CONTENT, "document", document.id,
                title=document.title,
                summary=f"Restored from version {target.version_number}",
                metadata={"version_id": target.id, "new_version_id": new_version_id},
            )

            if document.status == DocumentStatus.PUBLISHED:
                index_after_commit(self.session, self.indexer, document.index_payload())

        return new_version_id

    def label_version(self, version_id: str, label: str, *, actor: Actor, notes: Optional[str] = None) -> VersionDetail:
        label = (label or "").strip()
        if not label:
            raise ValidationError("Label is required")

        with transactional(self.session):
            version = self._require(version_id)
            version.version_label = label[:100]
            if notes is not None:
                version.version_notes = notes

            self._log(
                actor, "version.label", AuditCategory.CONTENT, "document_version", version.id,
                title=version.title,
                metadata={"document_id": version.document_id, "label": version.version_label},
            )

        return to_detail(version)

    # ------------------------
    # Reads
    # ------------------------

    def list_versions(self, document_id: str, *, limit: int = 50, offset: int = 0) -> List[VersionSummary]:
        stmt = (
            select(DocumentVersion)
            .options(defer(DocumentVersion.content))
            .where(DocumentVersion.document_id == document_id)
            .order_by(DocumentVersion.version_number.desc())
            .limit(limit)
            .offset(offset)
        )
        return [to_summary(v) for v in site_all(self.ctx, stmt)]

    def list_labeled(self, document_id: str) -> List[VersionSummary]:
        stmt = (
            select(DocumentVersion)
            .options(defer(DocumentVersion.content))
            .where(
                DocumentVersion.document_id == document_id,
                DocumentVersion.version_label.is_not(None),
            )
            .order_by(DocumentVersion.version_number.desc())
        )
        return [to_summary(v) for v in site_all(self.ctx, stmt)]

    def get_version(self, version_id: str) -> VersionDetail:
        return to_detail(self._require(version_id))

    def get_latest(self, document_id: str) -> Optional[VersionDetail]:
        latest = self._latest(document_id)
        return to_detail(latest) if latest else None

    def get_at_time(self, document_id: str, when) -> Optional[VersionDetail]:
        """The version that was current at `when`."""
        when = coerce_datetime(when)
        stmt = (
            select(DocumentVersion)
            .where(
                DocumentVersion.document_id == document_id,
                DocumentVersion.created_at <= when,
            )
            .order_by(DocumentVersion.version_number.desc())
        )
        version = site_first(self.ctx, stmt)
        return to_detail(version) if version else None

    def count(self, document_id: str) -> int:
        stmt = select(func.count(DocumentVersion.id)).where(DocumentVersion.document_id == document_id)
        return site_first(self.ctx, stmt, model=DocumentVersion) or 0

    def compare_versions(self, version_a: str, version_b: str) -> VersionDiff:
        """
        Field-level diff of two versions of the same document, ordered so
        that `before` is the older one. Content is compared as a whole value.
        """
        a = self._require(version_a)
        b = self._require(version_b)
        if a.document_id != b.document_id:
            raise ValidationError("Versions belong to different documents")

        before, after = sorted((a, b), key=lambda v: (v.created_at, v.version_number))

        changes: List[FieldChange] = []
        if (before.title or "") != (after.title or ""):
            changes.append(FieldChange(type="title", before=before.title or "", after=after.title or ""))

        if before.content != after.content:
            changes.append(FieldChange(type="content", before=before.content, after=after.content))

        before_meta = before.meta or {}
        after_meta = after.meta or {}
        for key in sorted(set(before_meta) | set(after_meta)):
            old, new = before_meta.get(key), after_meta.get(key)
            if old != new:
                changes.append(
                    FieldChange(type="metadata", field=key, before=_as_text(old), after=_as_text(new))
                )

        return VersionDiff(before=to_detail(before), after=to_detail(after), changes=changes)

    # ------------------------
    # Helpers
    # ------------------------

    def _latest(self, document_id: str) -> Optional[DocumentVersion]:
        stmt = (
            select(DocumentVersion)
            .where(DocumentVersion.document_id == document_id)
            .order_by(DocumentVersion.version_number.desc())
        )
        return site_first(self.ctx, stmt)

    def _require(self, version_id: str) -> DocumentVersion:
        version = site_first(self.ctx, select(DocumentVersion).where(DocumentVersion.id == version_id))
        if version is None:
            raise NotFoundError(f"Version not found: {version_id}")
        return version


def _as_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return canonical_json(value)


def _unchanged(latest: Optional[DocumentVersion], digest: str, title, metadata) -> bool:
    if latest is None:
        return False
    return (
        latest.content_hash == digest
        and latest.title == title
        and (latest.meta or {}) == (metadata or {})
    )
