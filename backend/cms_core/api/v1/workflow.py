from flask import jsonify, request
from flask_jwt_extended import jwt_required

from cms_core.application.services import request_services
from cms_core.domain.exceptions import NotFoundError
from cms_core.normalizers.workflow import (
    normalize_history_entry,
    normalize_state,
    normalize_transition_result,
    normalize_workflow,
)
from cms_core.utils.decorators import current_actor, roles_required, site_required
from . import ADMIN_ROLES, PLATFORM_ADMIN_ROLES, v1_bp


def _result_response(result):
    # Refusals are business outcomes, not server errors
    return jsonify(normalize_transition_result(result)), 200 if result.success else 409


# ------------------------
# Definitions
# ------------------------


@v1_bp.route("/workflows", methods=["POST"])
@jwt_required()
@site_required
@roles_required(*ADMIN_ROLES, *PLATFORM_ADMIN_ROLES)
def create_workflow():
    data = request.get_json(silent=True) or {}
    actor = current_actor()

    global_ = bool(data.get("global", False))
    if global_ and not actor.roles.intersection(PLATFORM_ADMIN_ROLES):
        return jsonify({"error": "Only platform administrators can create global workflows"}), 403

    workflow = request_services().workflow.create_workflow(
        data.get("name") or "",
        data.get("stages") or [],
        data.get("transitions") or [],
        actor=actor,
        description=data.get("description"),
        collection=data.get("collection"),
        is_default=bool(data.get("is_default", False)),
        global_=global_,
    )
    return jsonify(normalize_workflow(workflow)), 201


@v1_bp.route("/workflows", methods=["GET"])
@jwt_required()
@site_required
def list_workflows():
    workflows = request_services().workflow.list_workflows(request.args.get("collection"))
    return jsonify([normalize_workflow(w, include_stages=False) for w in workflows]), 200


@v1_bp.route("/workflows/<workflow_id>", methods=["GET"])
@jwt_required()
@site_required
def get_workflow(workflow_id):
    return jsonify(normalize_workflow(request_services().workflow.get_workflow(workflow_id))), 200


# ------------------------
# Document workflow
# ------------------------


@v1_bp.route("/documents/<document_id>/workflow", methods=["POST"])
@jwt_required()
@site_required
def initialize_workflow(document_id):
    data = request.get_json(silent=True) or {}
    actor = current_actor()
    engine = request_services().workflow

    engine.initialize(document_id, data.get("workflow_id"), actor=actor)
    return jsonify(normalize_state(engine.get_state(document_id, actor))), 201


@v1_bp.route("/documents/<document_id>/workflow", methods=["GET"])
@jwt_required()
@site_required
def get_workflow_state(document_id):
    state = request_services().workflow.get_state(document_id, current_actor())
    if state is None:
        raise NotFoundError(f"Document {document_id} has no active workflow")
    return jsonify(normalize_state(state)), 200


@v1_bp.route("/documents/<document_id>/workflow/submit", methods=["POST"])
@jwt_required()
@site_required
def submit_document(document_id):
    data = request.get_json(silent=True) or {}
    result = request_services().workflow.submit(
        document_id, actor=current_actor(), comment=data.get("comment")
    )
    return _result_response(result)


@v1_bp.route("/documents/<document_id>/workflow/approve", methods=["POST"])
@jwt_required()
@site_required
def approve_document(document_id):
    data = request.get_json(silent=True) or {}
    result = request_services().workflow.approve(
        document_id, actor=current_actor(), comment=data.get("comment")
    )
    return _result_response(result)


@v1_bp.route("/documents/<document_id>/workflow/reject", methods=["POST"])
@jwt_required()
@site_required
def reject_document(document_id):
    data = request.get_json(silent=True) or {}
    result = request_services().workflow.reject(
        document_id, data.get("comment"), actor=current_actor()
    )
    return _result_response(result)


@v1_bp.route("/documents/<document_id>/workflow/transitions/<transition_id>", methods=["POST"])
@jwt_required()
@site_required
def execute_transition(document_id, transition_id):
    data = request.get_json(silent=True) or {}
    result = request_services().workflow.execute_transition(
        document_id, transition_id, actor=current_actor(), comment=data.get("comment")
    )
    return _result_response(result)


@v1_bp.route("/documents/<document_id>/workflow/history", methods=["GET"])
@jwt_required()
@site_required
def workflow_history(document_id):
    entries = request_services().workflow.get_history(document_id)
    return jsonify([normalize_history_entry(e) for e in entries]), 200
