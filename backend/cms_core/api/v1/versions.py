from flask import current_app, jsonify, request
from flask_jwt_extended import jwt_required

from cms_core.application.services import request_services
from cms_core.domain.exceptions import NotFoundError, ValidationError
from cms_core.normalizers.pagination import normalize_pagination
from cms_core.normalizers.version import normalize_diff, normalize_version, normalize_version_summary
from cms_core.utils.decorators import current_actor, roles_required, site_required
from cms_core.utils.pagination import clamp_limit, parse_offset
from cms_core.utils.time import parse_time_arg
from . import EDITOR_ROLES, v1_bp


@v1_bp.route("/documents/<document_id>/versions", methods=["GET"])
@jwt_required()
@site_required
def list_versions(document_id):
    services = request_services()
    services.documents.get(document_id)

    default = current_app.config["VERSION_LIST_LIMIT"]
    limit = clamp_limit(request.args.get("limit"), default=default, maximum=200)
    offset = parse_offset(request.args.get("offset"))

    versions = services.versions.list_versions(document_id, limit=limit, offset=offset)
    return jsonify(normalize_pagination(
        versions,
        normalize_version_summary,
        limit=limit,
        offset=offset,
        total=services.versions.count(document_id),
    )), 200


@v1_bp.route("/documents/<document_id>/versions", methods=["POST"])
@jwt_required()
@site_required
@roles_required(*EDITOR_ROLES)
def create_manual_version(document_id):
    """Save the document's current content as a manual version."""
    data = request.get_json(silent=True) or {}
    services = request_services()
    document = services.documents.get(document_id)

    version_id = services.versions.create_version(
        document.id,
        document.body,
        document.content_format,
        actor=current_actor(),
        title=document.title,
        metadata=document.meta,
        version_type="manual",
        label=data.get("label"),
        notes=data.get("notes"),
    )
    return jsonify(normalize_version(services.versions.get_version(version_id))), 201


@v1_bp.route("/documents/<document_id>/versions/labeled", methods=["GET"])
@jwt_required()
@site_required
def list_labeled_versions(document_id):
    versions = request_services().versions.list_labeled(document_id)
    return jsonify([normalize_version_summary(v) for v in versions]), 200


@v1_bp.route("/documents/<document_id>/versions/at", methods=["GET"])
@jwt_required()
@site_required
def get_version_at_time(document_id):
    when = parse_time_arg(request.args.get("when"), "when")
    if when is None:
        raise ValidationError("when is required")

    version = request_services().versions.get_at_time(document_id, when)
    if version is None:
        raise NotFoundError("No version existed at that time")
    return jsonify(normalize_version(version)), 200


@v1_bp.route("/documents/<document_id>/versions/<version_id>/restore", methods=["POST"])
@jwt_required()
@site_required
@roles_required(*EDITOR_ROLES)
def restore_version(document_id, version_id):
    services = request_services()
    new_version_id = services.versions.restore_version(document_id, version_id, actor=current_actor())
    return jsonify(normalize_version(services.versions.get_version(new_version_id))), 201


@v1_bp.route("/versions/<version_id>", methods=["GET"])
@jwt_required()
@site_required
def get_version(version_id):
    return jsonify(normalize_version(request_services().versions.get_version(version_id))), 200


@v1_bp.route("/versions/<version_id>/label", methods=["PUT"])
@jwt_required()
@site_required
@roles_required(*EDITOR_ROLES)
def label_version(version_id):
    data = request.get_json(silent=True) or {}
    version = request_services().versions.label_version(
        version_id, data.get("label"), actor=current_actor(), notes=data.get("notes")
    )
    return jsonify(normalize_version(version)), 200


@v1_bp.route("/versions/compare", methods=["GET"])
@jwt_required()
@site_required
def compare_versions():
    a, b = request.args.get("a"), request.args.get("b")
    if not a or not b:
        raise ValidationError("Both a and b version ids are required")

    return jsonify(normalize_diff(request_services().versions.compare_versions(a, b))), 200
