from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional, Union

from sqlalchemy import select

from cms_core.domain.enums import (
    ApprovalType,
    AuditCategory,
    DocumentStatus,
    StageType,
    TransitionType,
    VersionType,
)
from cms_core.domain.exceptions import NotFoundError, StateConflictError, ValidationError
from cms_core.domain.invariants.workflow import assert_workflow_definition
from cms_core.domain.lifecycle.document import assert_document_transition
from cms_core.domain.records import (
    Actor,
    Approval,
    StageSpec,
    TransitionResult,
    TransitionSpec,
    WorkflowHistoryEntry,
    WorkflowStateView,
)
from cms_core.models.base import new_id
from cms_core.models.document import Document
from cms_core.models.workflow import (
    DocumentWorkflowState,
    WorkflowDefinition,
    WorkflowHistory,
    WorkflowStage,
    WorkflowTransition,
)
from cms_core.utils.site_scope import site_first, site_all, site_or_global_all, unscoped_all
from cms_core.utils.time import isoformat, utcnow
from cms_core.utils.transaction import transactional
from .base import ScopedService
from .collaborators import index_after_commit, notify_after_commit, unindex_after_commit
from .loaders import load_document
from .versions import VersionStore

APPROVABLE_STAGES = {StageType.REVIEW, StageType.APPROVAL}

DEFAULT_WORKFLOW = {
    "name": "Simple Review",
    "description": "Draft, one reviewer approval, published.",
    "stages": [
        {"name": "Draft", "order": 1, "type": "draft"},
        {
            "name": "Review",
            "order": 2,
            "type": "review",
            "approval_type": "any",
            "required_approvers": ["reviewer", "admin"],
            "min_approvals": 1,
        },
        {"name": "Published", "order": 3, "type": "published"},
    ],
    "transitions": [
        {"from": 1, "to": 2, "type": "advance"},
        {"from": 2, "to": 3, "type": "advance", "allowed_roles": ["reviewer", "admin"]},
        {"from": 2, "to": 1, "type": "reject", "requires_comment": True},
        {"from": 3, "to": 1, "type": "reject", "allowed_roles": ["editor", "admin"]},
    ],
}


def transition_allowed(transition: WorkflowTransition, actor: Actor) -> bool:
    """An empty role list is open to everyone; the system actor bypasses the list."""
    if actor.is_system or not transition.allowed_roles:
        return True
    return actor.matches(transition.allowed_roles)


def approver_eligible(stage: WorkflowStage, actor: Actor) -> bool:
    if not stage.required_approvers:
        return True
    return actor.matches(stage.required_approvers)


def quorum_met(stage: WorkflowStage, approvals: List[Approval]) -> bool:
    """
    any: at least `min_approvals` approvals.
    all: every named required approver (id or email) has approved.
    Anything else falls back to the numeric minimum.
    """
    if stage.approval_type == ApprovalType.ALL and stage.required_approvers:
        approved = {a.actor_id for a in approvals} | {a.email for a in approvals}
        return all(principal in approved for principal in stage.required_approvers)

    return len(approvals) >= (stage.min_approvals or 1)


class WorkflowEngine(ScopedService):
    """
    Per-document approval state machine.

    Expected refusals (wrong stage, not allowed, already approved, embargo)
    come back as a failed TransitionResult. Bad input raises
    ValidationError; a document without workflow state raises NotFoundError.
    """

    def __init__(
        self,
        ctx,
        *,
        audit=None,
        versions: Optional[VersionStore] = None,
        notifier=None,
        indexer=None,
        clock=utcnow,
    ):
        super().__init__(ctx, audit=audit, clock=clock)
        self.versions = versions or VersionStore(ctx, audit=audit, indexer=indexer, clock=clock)
        self.notifier = notifier
        self.indexer = indexer

    # ------------------------
    # Definitions
    # ------------------------

    def create_workflow(
        self,
        name: str,
        stages: Iterable[Union[StageSpec, Dict[str, Any]]],
        transitions: Iterable[Union[TransitionSpec, Dict[str, Any]]],
        *,
        actor: Actor,
        description: Optional[str] = None,
        collection: Optional[str] = None,
        is_default: bool = False,
        global_: bool = False,
    ) -> WorkflowDefinition:
        if not name or not name.strip():
            raise ValidationError("Workflow name is required")

        stage_specs = [s if isinstance(s, StageSpec) else StageSpec.from_dict(s) for s in stages]
        transition_specs = [
            t if isinstance(t, TransitionSpec) else TransitionSpec.from_dict(t) for t in transitions
        ]
        assert_workflow_definition(stage_specs, transition_specs)

        site_id = None if global_ else self.ctx.require_site()

        with transactional(self.session):
            if is_default:
                self._clear_default(site_id, collection)

            workflow = WorkflowDefinition()
            workflow.id = new_id()
            workflow.site_id = site_id
            workflow.name = name.strip()
            workflow.description = description
            workflow.collection = collection
            workflow.is_default = is_default
            workflow.is_active = True

            by_order: Dict[int, WorkflowStage] = {}
            for spec in stage_specs:
                stage = WorkflowStage()
                stage.id = new_id()
                stage.name = spec.name
                stage.description = spec.description
                stage.stage_order = spec.order
                stage.stage_type = spec.stage_type
                stage.approval_type = spec.approval_type
                stage.required_approvers = list(spec.required_approvers)
                stage.min_approvals = spec.min_approvals
                stage.deadline_hours = spec.deadline_hours
                workflow.stages.append(stage)
                by_order[spec.order] = stage

            for spec in transition_specs:
                transition = WorkflowTransition()
                transition.id = new_id()
                transition.from_stage_id = by_order[spec.from_stage].id
                transition.to_stage_id = by_order[spec.to_stage].id
                transition.transition_type = spec.transition_type
                transition.allowed_roles = list(spec.allowed_roles)
                transition.requires_comment = spec.requires_comment
                workflow.transitions.append(transition)

            self.session.add(workflow)
            self.session.flush()

            self._log(
                actor, "workflow.create", AuditCategory.WORKFLOW, "workflow", workflow.id,
                site_id=site_id,
                title=workflow.name,
                metadata={"stages": len(stage_specs), "transitions": len(transition_specs)},
            )

        return workflow

    def seed_default_workflow(self, *, actor: Actor) -> WorkflowDefinition:
        return self.create_workflow(
            DEFAULT_WORKFLOW["name"],
            DEFAULT_WORKFLOW["stages"],
            DEFAULT_WORKFLOW["transitions"],
            actor=actor,
            description=DEFAULT_WORKFLOW["description"],
            is_default=True,
        )

    def get_workflow(self, workflow_id: str) -> WorkflowDefinition:
        stmt = select(WorkflowDefinition).where(WorkflowDefinition.id == workflow_id)
        found = site_or_global_all(self.ctx, stmt)
        if not found:
            raise NotFoundError(f"Workflow not found: {workflow_id}")
        return found[0]

    def list_workflows(self, collection: Optional[str] = None, *, include_inactive: bool = False) -> List[WorkflowDefinition]:
        stmt = select(WorkflowDefinition)
        if not include_inactive:
            stmt = stmt.where(WorkflowDefinition.is_active.is_(True))
        if collection:
            stmt = stmt.where(WorkflowDefinition.collection == collection)
        stmt = stmt.order_by(WorkflowDefinition.created_at.asc(), WorkflowDefinition.id.asc())
        return site_or_global_all(self.ctx, stmt)

    def get_default_workflow(self, collection: Optional[str] = None) -> Optional[WorkflowDefinition]:
        """
        Collection default first, then the general default, site-owned
        before global; otherwise the oldest active workflow.
        """
        candidates = self.list_workflows()
        if not candidates:
            return None

        def rank(workflow: WorkflowDefinition):
            return (
                not (collection and workflow.is_default and workflow.collection == collection),
                not (workflow.is_default and workflow.collection is None),
                workflow.site_id is None,
            )

        best = min(candidates, key=rank)
        if best.is_default:
            return best
        return candidates[0]

    # ------------------------
    # Document state
    # ------------------------

    def initialize(self, document_id: str, workflow_id: Optional[str] = None, *, actor: Actor) -> DocumentWorkflowState:
        """Put the document on the stage with order 1."""
        with transactional(self.session):
            document = load_document(self.ctx, document_id, lock=True)
            if self._load_state(document.id) is not None:
                raise StateConflictError("Document already has an active workflow")

            if workflow_id:
                workflow = self.get_workflow(workflow_id)
            else:
                workflow = self.get_default_workflow(document.collection)
                if workflow is None:
                    raise NotFoundError("No active workflow is available for this document")

            if not workflow.stages:
                raise ValidationError(f"Workflow '{workflow.name}' has no stages")

            first = next((s for s in workflow.stages if s.stage_order == 1), workflow.stages[0])
            now = self.clock()

            state = DocumentWorkflowState()
            state.id = new_id()
            state.site_id = document.site_id
            state.document_id = document.id
            state.workflow_id = workflow.id
            state.current_stage_id = first.id
            state.previous_stage_id = None
            state.approvals = []
            state.rejections = []
            state.entered_stage_at = now
            state.deadline = _deadline(first, now)
            state.created_at = now
            self.session.add(state)
            self.session.flush()

            self._log(
                actor, "workflow.initialize", AuditCategory.WORKFLOW, "document", document.id,
                title=document.title,
                metadata={"workflow_id": workflow.id, "stage": first.name},
            )

        return state

    def get_state(self, document_id: str, actor: Actor) -> Optional[WorkflowStateView]:
        state = self._load_state(document_id)
        if state is None:
            return None

        workflow = state.workflow
        stage = workflow.stage_by_id(state.current_stage_id)
        approvals = state.approvals

        usable = [t for t in workflow.transitions_from(stage.id) if transition_allowed(t, actor)]
        can_approve = (
            stage.stage_type in APPROVABLE_STAGES
            and not _has_approved(approvals, actor)
            and approver_eligible(stage, actor)
        )

        total = len(workflow.stages)
        position = next(
            (i for i, s in enumerate(workflow.stages, start=1) if s.id == stage.id), 1
        )

        return WorkflowStateView(
            document_id=state.document_id,
            workflow_id=state.workflow_id,
            current_stage=stage,
            previous_stage_id=state.previous_stage_id,
            approvals=approvals,
            rejections=state.rejections,
            entered_stage_at=state.entered_stage_at,
            deadline=state.deadline,
            available_transitions=usable,
            can_current_user_approve=can_approve,
            progress={
                "current": position,
                "total": total,
                "percentage": round(position * 100 / total) if total else 0,
            },
        )

    def submit(self, document_id: str, *, actor: Actor, comment: Optional[str] = None) -> TransitionResult:
        """Take the current stage's `advance` transition."""
        with transactional(self.session):
            state = self._require_state(document_id, lock=True)
            transition = self._outgoing(state, TransitionType.ADVANCE)
            if transition is None:
                stage = state.workflow.stage_by_id(state.current_stage_id)
                return TransitionResult.fail(
                    "no_advance_path", f"No advance transition from stage '{stage.name}'"
                )
            return self.execute_transition(document_id, transition.id, actor=actor, comment=comment)

    def approve(self, document_id: str, *, actor: Actor, comment: Optional[str] = None) -> TransitionResult:
        """
        Record one approval for the current stage entry and advance at most
        one stage once the stage's quorum is met.
        """
        with transactional(self.session):
            state = self._require_state(document_id, lock=True)
            workflow = state.workflow
            stage = workflow.stage_by_id(state.current_stage_id)

            if stage.stage_type not in APPROVABLE_STAGES:
                return TransitionResult.fail(
                    "not_approvable", f"Stage '{stage.name}' does not take approvals"
                )

            approvals = state.approvals
            if _has_approved(approvals, actor):
                return TransitionResult.fail(
                    "already_approved", f"{actor.email} already approved stage '{stage.name}'"
                )

            if not approver_eligible(stage, actor):
                return TransitionResult.fail(
                    "not_eligible", f"{actor.email} is not an approver for stage '{stage.name}'"
                )

            approvals.append(Approval(actor_id=actor.id, email=actor.email, at=self.clock(), comment=comment))
            state.approvals = approvals
            self.session.flush()

            self._log(
                actor, "workflow.approve", AuditCategory.WORKFLOW, "document", state.document_id,
                summary=comment,
                metadata={"stage": stage.name, "approvals": len(approvals)},
            )

            if not quorum_met(stage, approvals):
                return TransitionResult(success=True, advanced=False, new_stage=stage)

            transition = self._outgoing(state, TransitionType.ADVANCE)
            if transition is None:
                return TransitionResult(success=True, advanced=False, new_stage=stage)

            # Quorum is the authorisation for the advance, not the approver's roles
            result = self.execute_transition(
                document_id, transition.id, actor=actor, comment=comment, check_roles=False
            )
            if not result.success:
                # The approval itself stands
                return TransitionResult(
                    success=True,
                    advanced=False,
                    new_stage=stage,
                    error=result.error,
                    error_code=result.error_code,
                )
            return result

    def reject(self, document_id: str, comment: Optional[str], *, actor: Actor) -> TransitionResult:
        if not comment or not comment.strip():
            raise ValidationError("A comment is required to reject")

        with transactional(self.session):
            state = self._require_state(document_id, lock=True)
            transition = self._outgoing(state, TransitionType.REJECT)
            if transition is None:
                stage = state.workflow.stage_by_id(state.current_stage_id)
                return TransitionResult.fail(
                    "no_rejection_path", f"No rejection path available from stage '{stage.name}'"
                )
            return self.execute_transition(document_id, transition.id, actor=actor, comment=comment.strip())

    def execute_transition(
        self,
        document_id: str,
        transition_id: str,
        *,
        actor: Actor,
        comment: Optional[str] = None,
        check_roles: bool = True,
    ) -> TransitionResult:
        with transactional(self.session):
            state = self._require_state(document_id, lock=True)
            workflow = state.workflow

            transition = next((t for t in workflow.transitions if t.id == transition_id), None)
            if transition is None or transition.from_stage_id != state.current_stage_id:
                return TransitionResult.fail(
                    "invalid_transition", "Transition is not available from the current stage"
                )

            if check_roles and not transition_allowed(transition, actor):
                return TransitionResult.fail(
                    "not_allowed", f"{actor.email} may not perform this transition"
                )

            if transition.requires_comment and not (comment and comment.strip()):
                raise ValidationError("This transition requires a comment")

            source = workflow.stage_by_id(transition.from_stage_id)
            target = workflow.stage_by_id(transition.to_stage_id)
            document = load_document(self.ctx, state.document_id, lock=True)
            now = self.clock()

            entering_published = target.stage_type == StageType.PUBLISHED
            leaving_published = (
                source.stage_type == StageType.PUBLISHED and not entering_published
            )

            if entering_published and document.embargo_until is not None and now < document.embargo_until:
                return TransitionResult.fail(
                    "embargoed",
                    f"Cannot publish before embargo lifts at {isoformat(document.embargo_until)}",
                )

            self._enter_stage(state, source, target, transition.transition_type, actor, comment, now)

            if entering_published:
                self._publish_document(document, actor, now, stage_name=target.name)
            elif leaving_published:
                self._unpublish_document(document, actor)

            self.session.flush()

            self._log(
                actor, "workflow.transition", AuditCategory.WORKFLOW, "document", document.id,
                title=document.title,
                summary=comment,
                metadata={
                    "from": source.name,
                    "to": target.name,
                    "type": transition.transition_type.value,
                },
            )
            notify_after_commit(
                self.session,
                self.notifier,
                "workflow.transition",
                {
                    "document_id": document.id,
                    "site_id": document.site_id,
                    "from_stage": source.name,
                    "to_stage": target.name,
                    "type": transition.transition_type.value,
                    "actor": actor.email,
                },
            )

        return TransitionResult(success=True, advanced=True, new_stage=target)

    def publish_scheduled(self, document_id: str, *, actor: Actor) -> TransitionResult:
        """
        Scheduled publish of a workflow-governed document. Succeeds only when
        the next `advance` lands on a published stage and any review at the
        current stage already has its quorum; review is never skipped.
        """
        with transactional(self.session):
            state = self._require_state(document_id, lock=True)
            stage = state.workflow.stage_by_id(state.current_stage_id)

            if stage.stage_type == StageType.PUBLISHED:
                document = load_document(self.ctx, document_id)
                if document.status == DocumentStatus.PUBLISHED:
                    return TransitionResult(success=True, advanced=False, new_stage=stage)
                return TransitionResult.fail(
                    "inconsistent_state", "Workflow is published but the document is not"
                )

            transition = self._outgoing(state, TransitionType.ADVANCE)
            if transition is None:
                return TransitionResult.fail(
                    "no_advance_path", f"No advance transition from stage '{stage.name}'"
                )

            target = state.workflow.stage_by_id(transition.to_stage_id)
            if target.stage_type != StageType.PUBLISHED:
                return TransitionResult.fail(
                    "review_pending",
                    f"Document is in stage '{stage.name}'; publishing requires '{target.name}' first",
                )

            if stage.stage_type in APPROVABLE_STAGES and not quorum_met(stage, state.approvals):
                return TransitionResult.fail(
                    "review_pending", f"Stage '{stage.name}' is still awaiting approvals"
                )

            return self.execute_transition(document_id, transition.id, actor=actor, comment="Scheduled publish")

    def withdraw(self, document_id: str, *, actor: Actor, comment: Optional[str] = None) -> Optional[WorkflowStage]:
        """
        Move the workflow off its published stage after the document was
        unpublished or archived outside the engine. Follows the stage's
        `reject` transition, else returns to the first stage. The document's
        status is left to the caller.
        """
        with transactional(self.session):
            state = self._load_state(document_id, lock=True)
            if state is None:
                return None

            workflow = state.workflow
            source = workflow.stage_by_id(state.current_stage_id)
            if source.stage_type != StageType.PUBLISHED:
                return None

            transition = self._outgoing(state, TransitionType.REJECT)
            if transition is not None:
                target = workflow.stage_by_id(transition.to_stage_id)
            else:
                target = next((s for s in workflow.stages if s.stage_order == 1), workflow.stages[0])

            self._enter_stage(state, source, target, TransitionType.REJECT, actor, comment, self.clock())
            self.session.flush()

            self._log(
                actor, "workflow.withdraw", AuditCategory.WORKFLOW, "document", state.document_id,
                summary=comment,
                metadata={"from": source.name, "to": target.name},
            )

        return target

    def get_history(self, document_id: str) -> List[WorkflowHistoryEntry]:
        stmt = (
            select(WorkflowHistory)
            .where(WorkflowHistory.document_id == document_id)
            .order_by(WorkflowHistory.created_at.desc(), WorkflowHistory.id.desc())
        )
        rows = site_all(self.ctx, stmt)
        if not rows:
            return []

        stage_ids = {r.to_stage_id for r in rows} | {r.from_stage_id for r in rows if r.from_stage_id}
        # Stage ids come from site-scoped history rows
        names = {
            s.id: s.name
            for s in unscoped_all(self.session, select(WorkflowStage).where(WorkflowStage.id.in_(stage_ids)))
        }

        return [
            WorkflowHistoryEntry(
                id=r.id,
                timestamp=r.created_at,
                from_stage_name=names.get(r.from_stage_id),
                to_stage_name=names.get(r.to_stage_id, ""),
                transition_type=r.transition_type.value,
                actor_id=r.actor_id,
                actor_email=r.actor_email,
                comment=r.comment,
            )
            for r in rows
        ]

    # ------------------------
    # Helpers
    # ------------------------

    def _load_state(self, document_id: str, *, lock: bool = False) -> Optional[DocumentWorkflowState]:
        stmt = select(DocumentWorkflowState).where(DocumentWorkflowState.document_id == document_id)
        if lock:
            stmt = stmt.with_for_update()
        return site_first(self.ctx, stmt)

    def _require_state(self, document_id: str, *, lock: bool = False) -> DocumentWorkflowState:
        state = self._load_state(document_id, lock=lock)
        if state is None:
            raise NotFoundError(f"Document {document_id} has no active workflow")
        return state

    def _outgoing(self, state: DocumentWorkflowState, transition_type: TransitionType) -> Optional[WorkflowTransition]:
        workflow = state.workflow
        candidates = [
            t for t in workflow.transitions_from(state.current_stage_id)
            if t.transition_type == transition_type
        ]
        if not candidates:
            return None
        # Prefer the nearest stage when several transitions share a type
        current = workflow.stage_by_id(state.current_stage_id).stage_order
        return min(
            candidates,
            key=lambda t: abs(workflow.stage_by_id(t.to_stage_id).stage_order - current),
        )

    def _enter_stage(self, state, source, target, transition_type, actor, comment, now):
        state.previous_stage_id = source.id
        state.current_stage_id = target.id
        state.approvals = []
        if transition_type == TransitionType.REJECT:
            state.rejections = [Approval(actor_id=actor.id, email=actor.email, at=now, comment=comment)]
        else:
            state.rejections = []
        state.entered_stage_at = now
        state.deadline = _deadline(target, now)

        history = WorkflowHistory()
        history.id = new_id()
        history.site_id = state.site_id
        history.document_id = state.document_id
        history.workflow_id = state.workflow_id
        history.from_stage_id = source.id
        history.to_stage_id = target.id
        history.transition_type = transition_type
        history.actor_id = actor.id
        history.actor_email = actor.email
        history.comment = comment
        history.created_at = now
        self.session.add(history)

    def _clear_default(self, site_id: Optional[str], collection: Optional[str]):
        stmt = select(WorkflowDefinition).where(
            WorkflowDefinition.is_default.is_(True),
            WorkflowDefinition.collection.is_(None) if collection is None
            else WorkflowDefinition.collection == collection,
        )
        if site_id is None:
            stmt = stmt.where(WorkflowDefinition.site_id.is_(None))
            current = unscoped_all(self.session, stmt)
        else:
            current = site_all(self.ctx, stmt)
        for workflow in current:
            workflow.is_default = False

    def _publish_document(self, document: Document, actor: Actor, now, *, stage_name: str):
        assert_document_transition(from_status=document.status, to_status=DocumentStatus.PUBLISHED)

        self.versions.create_version(
            document.id,
            document.body,
            document.content_format,
            actor=actor,
            title=document.title,
            metadata=document.meta,
            version_type=VersionType.PUBLISH,
            label="Published",
            notes=f"Published via workflow stage '{stage_name}'",
        )

        document.status = DocumentStatus.PUBLISHED
        document.published_at = now
        document.updated_by = actor.email

        index_after_commit(self.session, self.indexer, document.index_payload())
        notify_after_commit(
            self.session, self.notifier, "document.published",
            {"document_id": document.id, "site_id": document.site_id},
        )

    def _unpublish_document(self, document: Document, actor: Actor):
        if document.status == DocumentStatus.PUBLISHED:
            assert_document_transition(from_status=document.status, to_status=DocumentStatus.DRAFT)
            document.status = DocumentStatus.DRAFT
            document.published_at = None
            document.updated_by = actor.email

        unindex_after_commit(self.session, self.indexer, document.id)
        notify_after_commit(
            self.session, self.notifier, "document.unpublished",
            {"document_id": document.id, "site_id": document.site_id},
        )


def _has_approved(approvals: List[Approval], actor: Actor) -> bool:
    return any(a.actor_id == actor.id for a in approvals)


def _deadline(stage: WorkflowStage, entered_at):
    if not stage.deadline_hours:
        return None
    return entered_at + timedelta(hours=stage.deadline_hours)
