from cms_core.extensions import db
from .base import BaseModel
from .types import JSONText


class Site(BaseModel):
    __tablename__ = "sites"

    name = db.Column(db.String(255), nullable=False)
    slug = db.Column(db.String(255), unique=True, nullable=False, index=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    # Per-site feature switches, e.g. {"previews": false, "assist": true}
    features = db.Column(JSONText(dict), default=dict)

    def has_feature(self, feature_name: str) -> bool:
        """
        Features are on unless the site explicitly switches them off.
        """
        value = (self.features or {}).get(feature_name)
        if value is None:
            return True
        return bool(value)
