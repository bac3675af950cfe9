from flask import Flask, send_file, current_app
from .config import config_by_name
from .extensions import db, migrate, jwt
from .api.v1 import v1_bp
from .middleware.site_middleware import site_middleware
from .errors import register_error_handlers
from .application.collaborators import BackgroundNotifier, NullSearchIndexer
from .application.services import ASSIST_CLIENT_KEY, INDEXER_KEY, NOTIFIER_KEY
from .cli import register_cli
from flask_swagger_ui import get_swaggerui_blueprint
import os


def import_models():
    """Import every model module so metadata (and Alembic) sees all tables."""
    from .models import (  # noqa: F401
        ai_usage,
        audit_log,
        document,
        document_version,
        preview,
        scheduled_job,
        site,
        workflow,
    )


def create_app(config_name: str = "development") -> Flask:
    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])
    app.logger.setLevel(app.config["LOG_LEVEL"])

    # -------------------------------------------------
    # Extensions
    # -------------------------------------------------
    import_models()
    db.init_app(app)
    migrate.init_app(app, db)
    jwt.init_app(app)

    # -------------------------------------------------
    # Collaborators (replaceable per deployment / in tests)
    # -------------------------------------------------
    app.extensions[NOTIFIER_KEY] = BackgroundNotifier(
        max_workers=app.config["NOTIFIER_MAX_WORKERS"],
        logger=app.logger,
    )
    app.extensions[INDEXER_KEY] = NullSearchIndexer()
    app.extensions[ASSIST_CLIENT_KEY] = None

    # -------------------------------------------------
    # Middleware
    # -------------------------------------------------
    site_middleware(app)

    # -------------------------------------------------
    # API Blueprints
    # -------------------------------------------------
    app.register_blueprint(v1_bp, url_prefix="/api/v1")
    register_error_handlers(app)
    register_cli(app)

    # -------------------------------------------------
    # Serve OpenAPI YAML (PUBLIC, NO SITE)
    # -------------------------------------------------
    @app.route("/openapi/cms.yaml", methods=["GET"], endpoint="openapi_cms")
    def serve_openapi():
        spec_path = os.path.join(
            current_app.root_path,
            "api",
            "v1",
            "cms_openapi.yaml",
        )

        if not os.path.exists(spec_path):
            raise FileNotFoundError("cms_openapi.yaml not found")

        return send_file(
            spec_path,
            mimetype="application/yaml",
            as_attachment=False,
        )

    # -------------------------------------------------
    # Swagger UI
    # -------------------------------------------------
    SWAGGER_URL = "/swagger"
    API_URL = "/openapi/cms.yaml"

    swaggerui_blueprint = get_swaggerui_blueprint(
        SWAGGER_URL,
        API_URL,
        config={
            "app_name": "CMS Core API",
            "deepLinking": True,
            "persistAuthorization": True,
        },
    )

    app.register_blueprint(swaggerui_blueprint, url_prefix=SWAGGER_URL)

    return app
