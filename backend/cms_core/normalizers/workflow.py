from cms_core.utils.time import isoformat


def normalize_stage(stage):
    return {
        "id": stage.id,
        "name": stage.name,
        "description": stage.description,
        "order": stage.stage_order,
        "type": stage.stage_type.value,
        "approval_type": stage.approval_type.value,
        "required_approvers": stage.required_approvers or [],
        "min_approvals": stage.min_approvals,
        "deadline_hours": stage.deadline_hours,
    }


def normalize_transition(transition):
    return {
        "id": transition.id,
        "from_stage_id": transition.from_stage_id,
        "to_stage_id": transition.to_stage_id,
        "type": transition.transition_type.value,
        "allowed_roles": transition.allowed_roles or [],
        "requires_comment": transition.requires_comment,
    }


def normalize_workflow(workflow, include_stages=True):
    data = {
        "id": workflow.id,
        "name": workflow.name,
        "description": workflow.description,
        "collection": workflow.collection,
        "is_default": workflow.is_default,
        "is_active": workflow.is_active,
        "is_global": workflow.site_id is None,
    }

    if include_stages:
        data["stages"] = [normalize_stage(s) for s in workflow.stages]
        data["transitions"] = [normalize_transition(t) for t in workflow.transitions]

    return data


def normalize_approval(approval):
    return approval.to_dict()


def normalize_state(view):
    return {
        "document_id": view.document_id,
        "workflow_id": view.workflow_id,
        "current_stage": normalize_stage(view.current_stage),
        "previous_stage_id": view.previous_stage_id,
        "approvals": [normalize_approval(a) for a in view.approvals],
        "rejections": [normalize_approval(r) for r in view.rejections],
        "entered_stage_at": isoformat(view.entered_stage_at),
        "deadline": isoformat(view.deadline),
        "available_transitions": [normalize_transition(t) for t in view.available_transitions],
        "can_current_user_approve": view.can_current_user_approve,
        "progress": view.progress,
    }


def normalize_transition_result(result):
    data = {
        "success": result.success,
        "advanced": result.advanced,
        "new_stage": normalize_stage(result.new_stage) if result.new_stage is not None else None,
    }
    if result.error:
        data["error"] = result.error
        data["error_code"] = result.error_code
    return data


def normalize_history_entry(entry):
    return {
        "id": entry.id,
        "timestamp": isoformat(entry.timestamp),
        "from_stage": entry.from_stage_name,
        "to_stage": entry.to_stage_name,
        "transition_type": entry.transition_type,
        "actor_id": entry.actor_id,
        "actor_email": entry.actor_email,
        "comment": entry.comment,
    }
