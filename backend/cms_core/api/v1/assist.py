from flask import jsonify, request
from flask_jwt_extended import jwt_required

from cms_core.application.services import request_services
from cms_core.utils.decorators import current_actor, feature_enabled, roles_required, site_required
from cms_core.utils.time import parse_time_arg
from . import ADMIN_ROLES, EDITOR_ROLES, v1_bp


@v1_bp.route("/assist", methods=["POST"])
@jwt_required()
@site_required
@roles_required(*EDITOR_ROLES)
@feature_enabled("assist")
def run_assist():
    data = request.get_json(silent=True) or {}

    response = request_services().assist.run(
        data.get("text") or "",
        data.get("action"),
        actor=current_actor(),
        locale=data.get("locale"),
        document_id=data.get("document_id"),
    )

    return jsonify({
        "text": response.text,
        "score": response.score,
        "usage": {
            "input_tokens": response.input_tokens,
            "output_tokens": response.output_tokens,
        },
    }), 200


@v1_bp.route("/assist/usage", methods=["GET"])
@jwt_required()
@site_required
@roles_required(*ADMIN_ROLES)
def assist_usage():
    summary = request_services().assist.usage_summary(
        since=parse_time_arg(request.args.get("since"), "since"),
        until=parse_time_arg(request.args.get("until"), "until"),
        actor_email=request.args.get("actor_email"),
    )
    return jsonify(summary), 200
