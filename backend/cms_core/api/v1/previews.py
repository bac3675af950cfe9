from flask import jsonify, request
from flask_jwt_extended import jwt_required

from cms_core.application.services import request_services
from cms_core.normalizers.preview import normalize_feedback, normalize_preview
from cms_core.utils.decorators import current_actor, feature_enabled, roles_required, site_required
from . import EDITOR_ROLES, v1_bp


@v1_bp.route("/documents/<document_id>/previews", methods=["POST"])
@jwt_required()
@site_required
@roles_required(*EDITOR_ROLES)
@feature_enabled("previews")
def create_preview(document_id):
    data = request.get_json(silent=True) or {}

    preview = request_services().previews.create(
        document_id,
        actor=current_actor(),
        name=data.get("name"),
        expires_in=data.get("expires_in"),
        password=data.get("password"),
        allowed_emails=data.get("allowed_emails"),
        max_views=data.get("max_views"),
    )
    return jsonify(normalize_preview(preview, admin=True)), 201


@v1_bp.route("/documents/<document_id>/previews", methods=["GET"])
@jwt_required()
@site_required
def list_document_previews(document_id):
    previews = request_services().previews.list_for_document(document_id)
    return jsonify([normalize_preview(p, admin=True) for p in previews]), 200


@v1_bp.route("/previews", methods=["GET"])
@jwt_required()
@site_required
def list_active_previews():
    previews = request_services().previews.list_active()
    return jsonify([normalize_preview(p, admin=True) for p in previews]), 200


@v1_bp.route("/previews/<preview_id>", methods=["GET"])
@jwt_required()
@site_required
def get_preview(preview_id):
    return jsonify(normalize_preview(request_services().previews.get(preview_id), admin=True)), 200


@v1_bp.route("/previews/<preview_id>/revoke", methods=["POST"])
@jwt_required()
@site_required
@roles_required(*EDITOR_ROLES)
def revoke_preview(preview_id):
    data = request.get_json(silent=True) or {}
    preview = request_services().previews.revoke(preview_id, actor=current_actor(), reason=data.get("reason"))
    return jsonify(normalize_preview(preview, admin=True)), 200


@v1_bp.route("/previews/<preview_id>/feedback", methods=["GET"])
@jwt_required()
@site_required
def list_preview_feedback(preview_id):
    service = request_services().previews
    preview = service.get(preview_id)
    feedback = service.list_feedback(preview, status=request.args.get("status"))
    return jsonify([normalize_feedback(f) for f in feedback]), 200


@v1_bp.route("/feedback/<feedback_id>", methods=["PUT"])
@jwt_required()
@site_required
@roles_required(*EDITOR_ROLES)
def update_feedback_status(feedback_id):
    data = request.get_json(silent=True) or {}
    feedback = request_services().previews.update_feedback_status(
        feedback_id, data.get("status"), actor=current_actor()
    )
    return jsonify(normalize_feedback(feedback)), 200
