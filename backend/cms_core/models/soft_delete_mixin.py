from cms_core.extensions import db
from cms_core.utils.time import utcnow
from .types import UTCDateTime


class SoftDeleteMixin:
    deleted_at = db.Column(UTCDateTime, nullable=True)

    def soft_delete(self):
        self.deleted_at = utcnow()

    @property
    def is_deleted(self):
        return self.deleted_at is not None
