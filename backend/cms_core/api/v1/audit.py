from flask import jsonify, request
from flask_jwt_extended import jwt_required

from cms_core.application.services import request_services
from cms_core.normalizers.audit import normalize_audit_log, normalize_integrity_report
from cms_core.normalizers.pagination import normalize_pagination
from cms_core.utils.decorators import roles_required, site_required
from cms_core.utils.pagination import clamp_limit
from cms_core.utils.time import parse_time_arg
from . import ADMIN_ROLES, v1_bp


@v1_bp.route("/audit", methods=["GET"])
@jwt_required()
@site_required
@roles_required(*ADMIN_ROLES)
def list_audit_logs():
    services = request_services()

    # Cursor Pagination
    limit = clamp_limit(request.args.get("limit"), default=20, maximum=100)

    logs, meta = services.audit.search(
        site_id=services.ctx.require_site(),
        action=request.args.get("action"),
        category=request.args.get("category"),
        actor_id=request.args.get("actor_id"),
        resource_type=request.args.get("resource_type"),
        resource_id=request.args.get("resource_id"),
        since=parse_time_arg(request.args.get("since"), "since"),
        until=parse_time_arg(request.args.get("until"), "until"),
        cursor=request.args.get("cursor"),
        limit=limit,
    )

    return jsonify(normalize_pagination(logs, normalize_audit_log, cursor=meta)), 200


@v1_bp.route("/audit/resources/<resource_type>/<resource_id>", methods=["GET"])
@jwt_required()
@site_required
@roles_required(*ADMIN_ROLES)
def resource_audit_history(resource_type, resource_id):
    services = request_services()
    logs = services.audit.resource_history(resource_type, resource_id, site_id=services.ctx.require_site())
    return jsonify([normalize_audit_log(log) for log in logs]), 200


@v1_bp.route("/audit/verify", methods=["GET"])
@jwt_required()
@site_required
@roles_required(*ADMIN_ROLES)
def verify_audit_integrity():
    services = request_services()
    report = services.audit.verify_integrity(
        site_id=services.ctx.require_site(),
        since=parse_time_arg(request.args.get("since"), "since"),
        until=parse_time_arg(request.args.get("until"), "until"),
    )
    return jsonify(normalize_integrity_report(report)), 200
