from cms_core.extensions import db
from cms_core.domain.enums import AssistAction
from .base import BaseModel
from .site_mixin import SiteMixin
from .types import enum_type


class AIUsage(BaseModel, SiteMixin):
    """One row per assist call, kept for cost accounting."""
    __tablename__ = "ai_usage"

    actor_id = db.Column(db.String(255), nullable=False, index=True)
    actor_email = db.Column(db.String(255), nullable=True)
    document_id = db.Column(db.String(36), db.ForeignKey("documents.id"), nullable=True)

    action = db.Column(enum_type(AssistAction), nullable=False)
    locale = db.Column(db.String(20), nullable=True)
    model = db.Column(db.String(100), nullable=True)

    input_tokens = db.Column(db.Integer, nullable=False, default=0)
    output_tokens = db.Column(db.Integer, nullable=False, default=0)
    duration_ms = db.Column(db.Integer, nullable=False, default=0)

    success = db.Column(db.Boolean, nullable=False)
    error_message = db.Column(db.Text, nullable=True)
