from sqlalchemy import event, inspect

from cms_core.extensions import db
from cms_core.domain.enums import ContentFormat, VersionType
from cms_core.domain.invariants.exceptions import InvariantViolation
from .base import BaseModel
from .site_mixin import SiteMixin
from .types import JSONText, UTCDateTime, enum_type

# Only labelling is allowed after a version is written
MUTABLE_VERSION_FIELDS = {"version_label", "version_notes", "updated_at"}


class DocumentVersion(BaseModel, SiteMixin):
    __tablename__ = "document_versions"

    document_id = db.Column(
        db.String(36),
        db.ForeignKey("documents.id"),
        nullable=False,
        index=True
    )
    version_number = db.Column(db.Integer, nullable=False)

    content = db.Column(db.Text, nullable=False)
    content_format = db.Column(enum_type(ContentFormat), nullable=False, default=ContentFormat.HTML)
    content_hash = db.Column(db.String(64), nullable=False, index=True)
    content_size = db.Column(db.Integer, nullable=False, default=0)

    title = db.Column(db.String(500), nullable=True)
    meta = db.Column("metadata", JSONText(dict), nullable=True)

    created_by_id = db.Column(db.String(255), nullable=False)
    created_by_email = db.Column(db.String(255), nullable=False)
    created_by_name = db.Column(db.String(255), nullable=True)

    version_type = db.Column(enum_type(VersionType), nullable=False, default=VersionType.AUTO)
    version_label = db.Column(db.String(100), nullable=True)
    version_notes = db.Column(db.Text, nullable=True)

    previous_version_id = db.Column(
        db.String(36),
        db.ForeignKey("document_versions.id"),
        nullable=True
    )

    __table_args__ = (
        db.UniqueConstraint("document_id", "version_number", name="uq_document_version_number"),
    )


@event.listens_for(DocumentVersion, "before_update")
def prevent_version_rewrite(mapper, connection, target):
    state = inspect(target)
    for attr in state.attrs:
        if attr.key in MUTABLE_VERSION_FIELDS:
            continue
        if attr.history.has_changes():
            raise InvariantViolation(
                f"Versions are immutable (attempted to change '{attr.key}')"
            )


@event.listens_for(DocumentVersion, "before_delete")
def prevent_version_delete(mapper, connection, target):
    raise InvariantViolation("Versions are never deleted")
