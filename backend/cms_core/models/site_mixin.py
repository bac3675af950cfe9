from cms_core.extensions import db


class SiteMixin:
    site_id = db.Column(
        db.String(36),
        db.ForeignKey("sites.id"),
        nullable=False,
        index=True
    )


class OptionalSiteMixin:
    """For rows that are either site-owned or global (site_id IS NULL)."""
    site_id = db.Column(
        db.String(36),
        db.ForeignKey("sites.id"),
        nullable=True,
        index=True
    )
