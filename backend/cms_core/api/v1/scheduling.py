from flask import jsonify, request
from flask_jwt_extended import jwt_required

from cms_core.application.services import request_services
from cms_core.domain.exceptions import ValidationError
from cms_core.normalizers.scheduling import normalize_embargo, normalize_job
from cms_core.utils.decorators import current_actor, roles_required, site_required
from cms_core.utils.pagination import clamp_limit
from cms_core.utils.time import parse_time_arg
from . import EDITOR_ROLES, v1_bp


@v1_bp.route("/documents/<document_id>/schedule", methods=["POST"])
@jwt_required()
@site_required
@roles_required(*EDITOR_ROLES)
def schedule_document(document_id):
    data = request.get_json(silent=True) or {}

    scheduled_at = parse_time_arg(data.get("scheduled_at"), "scheduled_at")
    if scheduled_at is None:
        raise ValidationError("scheduled_at is required")

    job = request_services().scheduler.schedule(
        document_id,
        data.get("action"),
        scheduled_at,
        actor=current_actor(),
        timezone=data.get("timezone"),
        is_embargo=bool(data.get("is_embargo", False)),
        notes=data.get("notes"),
    )
    return jsonify(normalize_job(job)), 201


@v1_bp.route("/documents/<document_id>/schedule", methods=["GET"])
@jwt_required()
@site_required
def list_document_jobs(document_id):
    scheduler = request_services().scheduler
    if request.args.get("pending") in ("1", "true"):
        jobs = scheduler.get_pending_for_document(document_id)
    else:
        jobs = scheduler.list_for_document(document_id)
    return jsonify([normalize_job(j) for j in jobs]), 200


@v1_bp.route("/documents/<document_id>/embargo", methods=["GET"])
@jwt_required()
@site_required
def get_embargo(document_id):
    return jsonify(normalize_embargo(request_services().scheduler.is_under_embargo(document_id))), 200


@v1_bp.route("/documents/<document_id>/embargo", methods=["DELETE"])
@jwt_required()
@site_required
@roles_required(*EDITOR_ROLES)
def clear_embargo(document_id):
    scheduler = request_services().scheduler
    scheduler.clear_embargo(document_id, actor=current_actor())
    return jsonify(normalize_embargo(scheduler.is_under_embargo(document_id))), 200


@v1_bp.route("/schedule/<job_id>", methods=["GET"])
@jwt_required()
@site_required
def get_job(job_id):
    return jsonify(normalize_job(request_services().scheduler.get(job_id))), 200


@v1_bp.route("/schedule/<job_id>/cancel", methods=["POST"])
@jwt_required()
@site_required
@roles_required(*EDITOR_ROLES)
def cancel_job(job_id):
    data = request.get_json(silent=True) or {}
    job = request_services().scheduler.cancel(job_id, actor=current_actor(), reason=data.get("reason"))
    return jsonify(normalize_job(job)), 200


@v1_bp.route("/schedule/upcoming", methods=["GET"])
@jwt_required()
@site_required
def upcoming_jobs():
    limit = clamp_limit(request.args.get("limit"), default=20, maximum=100)
    include_all = request.args.get("include_all") in ("1", "true")
    jobs = request_services().scheduler.get_upcoming(limit, include_all=include_all)
    return jsonify([normalize_job(j) for j in jobs]), 200


@v1_bp.route("/schedule/recent", methods=["GET"])
@jwt_required()
@site_required
def recent_jobs():
    limit = clamp_limit(request.args.get("limit"), default=20, maximum=100)
    jobs = request_services().scheduler.get_recent(limit, status=request.args.get("status"))
    return jsonify([normalize_job(j) for j in jobs]), 200


@v1_bp.route("/schedule/counts", methods=["GET"])
@jwt_required()
@site_required
def job_counts():
    return jsonify(request_services().scheduler.counts()), 200
