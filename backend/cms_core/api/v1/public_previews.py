"""
Public preview links. No JWT and no site header: the token in the URL is
the only credential.
"""
from flask import jsonify, request

from cms_core.application.services import request_services
from cms_core.normalizers.preview import normalize_access, normalize_feedback
from . import v1_bp

ACCESS_ERROR_STATUS = {
    "not_found": 404,
    "revoked": 410,
    "expired": 410,
    "max_views_exceeded": 403,
    "password_required": 401,
    "invalid_password": 401,
    "email_required": 401,
    "email_not_allowed": 403,
}


def _credentials():
    data = request.get_json(silent=True) or {}
    email = data.get("email") or request.headers.get("X-Preview-Email")
    password = data.get("password") or request.headers.get("X-Preview-Password")
    return email, password, data


def _denied(result):
    return jsonify(normalize_access(result)), ACCESS_ERROR_STATUS.get(result.error, 403)


@v1_bp.route("/public/previews/<token>", methods=["GET", "POST"])
def access_preview(token):
    email, password, _ = _credentials()

    result = request_services().previews.access(token, email=email, password=password)
    if not result.valid:
        return _denied(result)

    return jsonify(normalize_access(result)), 200


@v1_bp.route("/public/previews/<token>/feedback", methods=["GET"])
def list_public_feedback(token):
    email, password, _ = _credentials()
    service = request_services().previews

    result = service.validate_access(token, email=email, password=password)
    if not result.valid:
        return _denied(result)

    feedback = service.list_feedback(result.preview)
    return jsonify([normalize_feedback(f) for f in feedback]), 200


@v1_bp.route("/public/previews/<token>/feedback", methods=["POST"])
def add_public_feedback(token):
    email, password, data = _credentials()
    service = request_services().previews

    # Leaving feedback does not count as a view
    result = service.validate_access(token, email=email, password=password)
    if not result.valid:
        return _denied(result)

    feedback = service.add_feedback(
        result.preview,
        content=data.get("content"),
        author_email=email or data.get("author_email"),
        feedback_type=data.get("type", "comment"),
        page_path=data.get("page_path"),
        parent_id=data.get("parent_id"),
    )
    return jsonify(normalize_feedback(feedback)), 201
