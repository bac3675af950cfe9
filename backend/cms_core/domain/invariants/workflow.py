from typing import List

from cms_core.domain.enums import ApprovalType, StageType
from cms_core.domain.records import StageSpec, TransitionSpec
from .exceptions import InvariantViolation


def assert_workflow_definition(stages: List[StageSpec], transitions: List[TransitionSpec]) -> None:
    if not stages:
        raise InvariantViolation("A workflow needs at least one stage.")

    orders = [stage.order for stage in stages]
    if len(set(orders)) != len(orders):
        raise InvariantViolation(f"Stage orders must be unique: {orders}")

    if orders != sorted(orders):
        raise InvariantViolation(f"Stage orders must be strictly increasing: {orders}")

    if orders[0] != 1:
        raise InvariantViolation("The first stage must have order 1.")

    known = set(orders)
    for transition in transitions:
        if transition.from_stage not in known or transition.to_stage not in known:
            raise InvariantViolation(
                f"Transition {transition.from_stage} → {transition.to_stage} references an unknown stage."
            )
        if transition.from_stage == transition.to_stage:
            raise InvariantViolation(f"Transition on stage {transition.from_stage} loops onto itself.")

    outgoing = {t.from_stage for t in transitions}
    for stage in stages:
        assert_stage(stage)
        if stage.stage_type != StageType.PUBLISHED and stage.order not in outgoing:
            raise InvariantViolation(
                f"Stage '{stage.name}' (order {stage.order}) has no outgoing transition."
            )


def assert_stage(stage: StageSpec) -> None:
    if not stage.name:
        raise InvariantViolation("Stage name is required.")

    if stage.min_approvals < 1:
        raise InvariantViolation(f"Stage '{stage.name}' needs min_approvals of at least 1.")

    if stage.approval_type == ApprovalType.ALL and not stage.required_approvers:
        raise InvariantViolation(
            f"Stage '{stage.name}' uses approval type 'all' but names no required approvers."
        )
