from sqlalchemy import event, inspect

from cms_core.extensions import db
from cms_core.domain.enums import (
    ContentFormat,
    FeedbackStatus,
    FeedbackType,
    PreviewStatus,
)
from cms_core.domain.invariants.exceptions import InvariantViolation
from .base import BaseModel
from .site_mixin import SiteMixin
from .types import JSONText, UTCDateTime, enum_type

FROZEN_PREVIEW_FIELDS = (
    "content_snapshot",
    "snapshot_title",
    "snapshot_format",
    "access_token",
    "document_id",
)


class Preview(BaseModel, SiteMixin):
    __tablename__ = "previews"

    document_id = db.Column(db.String(36), db.ForeignKey("documents.id"), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=True)

    # Point-in-time copy of the document taken when the preview is shared
    content_snapshot = db.Column(db.Text, nullable=False)
    snapshot_title = db.Column(db.String(500), nullable=True)
    snapshot_format = db.Column(enum_type(ContentFormat), nullable=False, default=ContentFormat.HTML)

    access_token = db.Column(db.String(128), nullable=False, unique=True, index=True)
    password_hash = db.Column(db.String(255), nullable=True)
    allowed_emails = db.Column(JSONText(list), default=list)

    max_views = db.Column(db.Integer, nullable=True)
    view_count = db.Column(db.Integer, nullable=False, default=0)
    expires_at = db.Column(UTCDateTime, nullable=False)

    status = db.Column(enum_type(PreviewStatus), nullable=False, default=PreviewStatus.ACTIVE)
    created_by = db.Column(db.String(255), nullable=False)
    revoked_by = db.Column(db.String(255), nullable=True)
    revoked_at = db.Column(UTCDateTime, nullable=True)

    feedback = db.relationship(
        "PreviewFeedback",
        back_populates="preview",
        order_by="PreviewFeedback.created_at.desc()",
    )

    @property
    def requires_password(self) -> bool:
        return bool(self.password_hash)


@event.listens_for(Preview, "before_update")
def protect_preview_snapshot(mapper, connection, target):
    state = inspect(target)
    for key in FROZEN_PREVIEW_FIELDS:
        if state.attrs[key].history.has_changes():
            raise InvariantViolation(f"Preview field '{key}' cannot change after creation")

    if target.revoked_at is not None and target.status != PreviewStatus.REVOKED:
        raise InvariantViolation("A revoked preview cannot be reactivated")


@event.listens_for(Preview, "before_delete")
def prevent_preview_delete(mapper, connection, target):
    raise InvariantViolation("Previews are revoked, never deleted")


class PreviewFeedback(BaseModel, SiteMixin):
    __tablename__ = "preview_feedback"

    preview_id = db.Column(db.String(36), db.ForeignKey("previews.id"), nullable=False, index=True)
    parent_id = db.Column(db.String(36), db.ForeignKey("preview_feedback.id"), nullable=True)

    page_path = db.Column(db.String(500), nullable=True)
    feedback_type = db.Column(enum_type(FeedbackType), nullable=False, default=FeedbackType.COMMENT)
    content = db.Column(db.Text, nullable=False)
    author_email = db.Column(db.String(255), nullable=False)

    status = db.Column(enum_type(FeedbackStatus), nullable=False, default=FeedbackStatus.OPEN)
    status_changed_by = db.Column(db.String(255), nullable=True)

    preview = db.relationship("Preview", back_populates="feedback")
