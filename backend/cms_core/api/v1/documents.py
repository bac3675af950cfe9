from flask import jsonify, request
from flask_jwt_extended import jwt_required

from cms_core.application.services import request_services
from cms_core.normalizers.document import normalize_document
from cms_core.normalizers.pagination import normalize_pagination
from cms_core.utils.decorators import current_actor, roles_required, site_required
from cms_core.utils.pagination import clamp_limit, parse_offset
from . import EDITOR_ROLES, v1_bp

# ------------------------
# Documents
# ------------------------


@v1_bp.route("/documents", methods=["POST"])
@jwt_required()
@site_required
@roles_required(*EDITOR_ROLES)
def create_document():
    data = request.get_json(silent=True) or {}

    document = request_services().documents.create(
        actor=current_actor(),
        title=data.get("title"),
        body=data.get("body", ""),
        content_format=data.get("content_format", "html"),
        meta=data.get("meta"),
        collection=data.get("collection"),
        slug=data.get("slug"),
    )

    return jsonify(normalize_document(document, admin=True)), 201


@v1_bp.route("/documents", methods=["GET"])
@jwt_required()
@site_required
def list_documents():
    limit = clamp_limit(request.args.get("limit"), default=20, maximum=100)
    offset = parse_offset(request.args.get("offset"))

    documents = request_services().documents.list(
        status=request.args.get("status"),
        collection=request.args.get("collection"),
        limit=limit,
        offset=offset,
    )

    return jsonify(normalize_pagination(
        documents,
        lambda d: normalize_document(d, admin=True),
        limit=limit,
        offset=offset,
    )), 200


@v1_bp.route("/documents/<document_id>", methods=["GET"])
@jwt_required()
@site_required
def get_document(document_id):
    document = request_services().documents.get(document_id)
    return jsonify(normalize_document(document, admin=True)), 200


@v1_bp.route("/documents/<document_id>", methods=["PUT"])
@jwt_required()
@site_required
@roles_required(*EDITOR_ROLES)
def update_document(document_id):
    data = request.get_json(silent=True) or {}
    document = request_services().documents.update(document_id, data, actor=current_actor())
    return jsonify(normalize_document(document, admin=True)), 200


@v1_bp.route("/documents/<document_id>", methods=["DELETE"])
@jwt_required()
@site_required
@roles_required(*EDITOR_ROLES)
def delete_document(document_id):
    request_services().documents.delete(document_id, actor=current_actor())
    return jsonify({"message": "Document deleted"}), 200


# ------------------------
# Direct status changes
# ------------------------


@v1_bp.route("/documents/<document_id>/publish", methods=["POST"])
@jwt_required()
@site_required
@roles_required(*EDITOR_ROLES)
def publish_document(document_id):
    data = request.get_json(silent=True) or {}
    document = request_services().documents.publish(
        document_id, actor=current_actor(), reason=data.get("reason")
    )
    return jsonify(normalize_document(document, admin=True)), 200


@v1_bp.route("/documents/<document_id>/unpublish", methods=["POST"])
@jwt_required()
@site_required
@roles_required(*EDITOR_ROLES)
def unpublish_document(document_id):
    data = request.get_json(silent=True) or {}
    document = request_services().documents.unpublish(
        document_id, actor=current_actor(), reason=data.get("reason")
    )
    return jsonify(normalize_document(document, admin=True)), 200


@v1_bp.route("/documents/<document_id>/archive", methods=["POST"])
@jwt_required()
@site_required
@roles_required(*EDITOR_ROLES)
def archive_document(document_id):
    data = request.get_json(silent=True) or {}
    document = request_services().documents.archive(
        document_id, actor=current_actor(), reason=data.get("reason")
    )
    return jsonify(normalize_document(document, admin=True)), 200
