from flask import current_app, jsonify

from cms_core.domain.exceptions import (
    AssistError,
    EmbargoViolation,
    NotFoundError,
    StateConflictError,
    TenantContextError,
    ValidationError,
)
from cms_core.domain.invariants.exceptions import InvariantViolation
from cms_core.utils.time import isoformat


def _error(error, status, **extra):
    response = jsonify({
        "error": type(error).__name__,
        "message": str(error),
        **extra,
    })
    response.status_code = status
    return response


def register_error_handlers(app):
    @app.errorhandler(InvariantViolation)
    def handle_invariant_violation(error):
        return _error(error, 400)

    @app.errorhandler(EmbargoViolation)
    def handle_embargo_violation(error):
        return _error(error, 400, embargo_until=isoformat(error.until))

    @app.errorhandler(ValidationError)
    def handle_validation_error(error):
        return _error(error, 400)

    @app.errorhandler(NotFoundError)
    def handle_not_found(error):
        return _error(error, 404)

    @app.errorhandler(StateConflictError)
    def handle_state_conflict(error):
        return _error(error, 409)

    @app.errorhandler(TenantContextError)
    def handle_tenant_context(error):
        current_app.logger.error("Tenant context error: %s", error)
        return _error(error, 500)

    @app.errorhandler(AssistError)
    def handle_assist_error(error):
        return _error(error, 502)
