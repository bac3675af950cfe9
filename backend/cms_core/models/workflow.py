from typing import List

from sqlalchemy import event

from cms_core.extensions import db
from cms_core.domain.enums import ApprovalType, StageType, TransitionType
from cms_core.domain.records import Approval
from .base import BaseModel
from .site_mixin import OptionalSiteMixin, SiteMixin
from .types import JSONText, UTCDateTime, enum_type


class WorkflowDefinition(BaseModel, OptionalSiteMixin):
    """A workflow owned by one site, or global when site_id is NULL."""
    __tablename__ = "workflow_definitions"

    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    collection = db.Column(db.String(100), nullable=True, index=True)
    is_default = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    stages = db.relationship(
        "WorkflowStage",
        back_populates="workflow",
        order_by="WorkflowStage.stage_order",
        cascade="all, delete-orphan"
    )
    transitions = db.relationship(
        "WorkflowTransition",
        back_populates="workflow",
        cascade="all, delete-orphan"
    )

    def stage_by_id(self, stage_id):
        return next((s for s in self.stages if s.id == stage_id), None)

    def transitions_from(self, stage_id):
        return [t for t in self.transitions if t.from_stage_id == stage_id]


class WorkflowStage(BaseModel):
    __tablename__ = "workflow_stages"

    workflow_id = db.Column(
        db.String(36),
        db.ForeignKey("workflow_definitions.id"),
        nullable=False,
        index=True
    )
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    stage_order = db.Column(db.Integer, nullable=False)
    stage_type = db.Column(enum_type(StageType), nullable=False)

    approval_type = db.Column(enum_type(ApprovalType), nullable=False, default=ApprovalType.ANY)
    required_approvers = db.Column(JSONText(list), default=list)
    min_approvals = db.Column(db.Integer, nullable=False, default=1)
    deadline_hours = db.Column(db.Integer, nullable=True)

    workflow = db.relationship("WorkflowDefinition", back_populates="stages")

    __table_args__ = (
        db.UniqueConstraint("workflow_id", "stage_order", name="uq_workflow_stage_order"),
    )


class WorkflowTransition(BaseModel):
    __tablename__ = "workflow_transitions"

    workflow_id = db.Column(
        db.String(36),
        db.ForeignKey("workflow_definitions.id"),
        nullable=False,
        index=True
    )
    from_stage_id = db.Column(db.String(36), db.ForeignKey("workflow_stages.id"), nullable=False)
    to_stage_id = db.Column(db.String(36), db.ForeignKey("workflow_stages.id"), nullable=False)
    transition_type = db.Column(enum_type(TransitionType), nullable=False)
    requires_comment = db.Column(db.Boolean, nullable=False, default=False)
    allowed_roles = db.Column(JSONText(list), default=list)

    workflow = db.relationship("WorkflowDefinition", back_populates="transitions")


class DocumentWorkflowState(BaseModel, SiteMixin):
    __tablename__ = "document_workflow_states"

    document_id = db.Column(
        db.String(36),
        db.ForeignKey("documents.id"),
        nullable=False,
        unique=True
    )
    workflow_id = db.Column(db.String(36), db.ForeignKey("workflow_definitions.id"), nullable=False)
    current_stage_id = db.Column(db.String(36), db.ForeignKey("workflow_stages.id"), nullable=False)
    previous_stage_id = db.Column(db.String(36), db.ForeignKey("workflow_stages.id"), nullable=True)

    approvals_json = db.Column("approvals", JSONText(list), default=list)
    rejections_json = db.Column("rejections", JSONText(list), default=list)

    entered_stage_at = db.Column(UTCDateTime, nullable=False)
    deadline = db.Column(UTCDateTime, nullable=True)

    # Bumped on every write; a stale concurrent write raises StaleDataError
    revision = db.Column(db.Integer, nullable=False)

    workflow = db.relationship("WorkflowDefinition")

    __mapper_args__ = {"version_id_col": revision}

    @property
    def approvals(self) -> List[Approval]:
        return _parse_approvals(self.approvals_json)

    @approvals.setter
    def approvals(self, items: List[Approval]):
        self.approvals_json = [a.to_dict() for a in items]

    @property
    def rejections(self) -> List[Approval]:
        return _parse_approvals(self.rejections_json)

    @rejections.setter
    def rejections(self, items: List[Approval]):
        self.rejections_json = [a.to_dict() for a in items]


def _parse_approvals(raw) -> List[Approval]:
    parsed = []
    for item in raw or []:
        if not isinstance(item, dict):
            continue
        approval = Approval.from_dict(item)
        if approval is not None:
            parsed.append(approval)
    return parsed


class WorkflowHistory(BaseModel, SiteMixin):
    __tablename__ = "workflow_history"

    document_id = db.Column(db.String(36), db.ForeignKey("documents.id"), nullable=False, index=True)
    workflow_id = db.Column(db.String(36), db.ForeignKey("workflow_definitions.id"), nullable=False)
    from_stage_id = db.Column(db.String(36), db.ForeignKey("workflow_stages.id"), nullable=True)
    to_stage_id = db.Column(db.String(36), db.ForeignKey("workflow_stages.id"), nullable=False)
    transition_type = db.Column(enum_type(TransitionType), nullable=False)

    actor_id = db.Column(db.String(255), nullable=False)
    actor_email = db.Column(db.String(255), nullable=False)
    comment = db.Column(db.Text, nullable=True)

    __table_args__ = (
        db.Index("ix_workflow_history_document_time", "document_id", "created_at"),
    )


@event.listens_for(WorkflowHistory, "before_update")
@event.listens_for(WorkflowHistory, "before_delete")
def prevent_history_mutation(mapper, connection, target):
    raise RuntimeError("Workflow history is append-only")
