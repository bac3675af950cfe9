from flask import current_app, g, jsonify, request

from cms_core.extensions import db
from cms_core.models.site import Site
from cms_core.utils.site_scope import SiteContext

# Routes that work without a site: health, public preview links and API docs
SITE_EXEMPT_PREFIXES = ("/api/v1/health", "/api/v1/public/", "/openapi", "/swagger")


def site_middleware(app):
    @app.before_request
    def load_site():
        g.current_site = None
        g.site_context = SiteContext(db.session, None)

        if request.endpoint is None or request.path.startswith(SITE_EXEMPT_PREFIXES):
            return None

        header = current_app.config.get("SITE_HEADER", "X-Site-ID")
        site_id = request.headers.get(header)
        if not site_id:
            return jsonify({"error": f"{header} header is missing"}), 400

        site = Site.query.filter_by(id=site_id, is_active=True).first()
        if not site:
            return jsonify({"error": "Invalid site"}), 404

        # Attach site to global context
        g.current_site = site
        g.site_context = SiteContext(db.session, site.id)
