from cms_core.extensions import db
from cms_core.domain.enums import ContentFormat, DocumentStatus
from .base import BaseModel
from .site_mixin import SiteMixin
from .soft_delete_mixin import SoftDeleteMixin
from .types import JSONText, UTCDateTime, enum_type


class Document(BaseModel, SiteMixin, SoftDeleteMixin):
    __tablename__ = "documents"

    title = db.Column(db.String(500), nullable=False)
    slug = db.Column(db.String(200), nullable=True, index=True)
    collection = db.Column(db.String(100), nullable=True, index=True)

    body = db.Column(db.Text, nullable=False, default="")
    content_format = db.Column(enum_type(ContentFormat), nullable=False, default=ContentFormat.HTML)
    meta = db.Column(JSONText(dict), default=dict)

    status = db.Column(enum_type(DocumentStatus), nullable=False, default=DocumentStatus.DRAFT, index=True)
    published_at = db.Column(UTCDateTime, nullable=True)
    embargo_until = db.Column(UTCDateTime, nullable=True)

    created_by = db.Column(db.String(255), nullable=True)
    updated_by = db.Column(db.String(255), nullable=True)

    __table_args__ = (
        db.UniqueConstraint("site_id", "slug", name="uq_document_slug_per_site"),
    )

    def index_payload(self):
        """Plain snapshot handed to the search indexer after commit."""
        return {
            "id": self.id,
            "site_id": self.site_id,
            "title": self.title,
            "slug": self.slug,
            "collection": self.collection,
            "body": self.body,
            "content_format": self.content_format.value if self.content_format else None,
        }
