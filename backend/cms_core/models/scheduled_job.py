from cms_core.extensions import db
from cms_core.domain.enums import JobAction, JobStatus
from .base import BaseModel
from .site_mixin import SiteMixin
from .types import UTCDateTime, enum_type


class ScheduledJob(BaseModel, SiteMixin):
    __tablename__ = "scheduled_jobs"

    document_id = db.Column(db.String(36), db.ForeignKey("documents.id"), nullable=False, index=True)
    action = db.Column(enum_type(JobAction), nullable=False)

    scheduled_at = db.Column(UTCDateTime, nullable=False)
    timezone = db.Column(db.String(64), nullable=False, default="UTC")

    status = db.Column(enum_type(JobStatus), nullable=False, default=JobStatus.PENDING)
    processed_at = db.Column(UTCDateTime, nullable=True)
    error_message = db.Column(db.Text, nullable=True)
    retry_count = db.Column(db.Integer, nullable=False, default=0)

    is_embargo = db.Column(db.Boolean, nullable=False, default=False)
    notes = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.String(255), nullable=False)
    cancelled_by = db.Column(db.String(255), nullable=True)
    cancelled_at = db.Column(UTCDateTime, nullable=True)

    document = db.relationship("Document")

    __table_args__ = (
        db.Index("ix_scheduled_jobs_due", "status", "scheduled_at"),
        # At most one pending job per (document, action)
        db.Index(
            "uq_scheduled_jobs_one_pending",
            "document_id",
            "action",
            unique=True,
            sqlite_where=db.text("status = 'pending'"),
            postgresql_where=db.text("status = 'pending'"),
        ),
    )
