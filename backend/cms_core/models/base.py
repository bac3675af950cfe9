import uuid
from cms_core.extensions import db
from cms_core.utils.time import utcnow
from .types import UTCDateTime


def new_id() -> str:
    return str(uuid.uuid4())


class BaseModel(db.Model):
    __abstract__ = True

    id = db.Column(db.String(36), primary_key=True, default=new_id, index=True)
    created_at = db.Column(UTCDateTime, default=utcnow, nullable=False, index=True)
    updated_at = db.Column(UTCDateTime, default=utcnow, onupdate=utcnow, index=True)

    def __init__(self, **kwargs):
        """
        Dummy __init__ to satisfy static type checkers (Pylance, MyPy).
        SQLAlchemy ORM will populate fields dynamically.
        """
        super().__init__(**kwargs)
