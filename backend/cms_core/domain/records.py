"""
Typed records passed between services and the API layer.

ORM rows never leave the persistence layer as untyped dicts; anything shaped
like a JSON sub-entity (approvals, rejections) is parsed into one of these
dataclasses at the model boundary.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Optional

from cms_core.domain.enums import ApprovalType, StageType, TransitionType
from cms_core.domain.exceptions import ValidationError
from cms_core.utils.time import coerce_datetime, isoformat


@dataclass(frozen=True)
class Actor:
    id: str
    email: str
    name: Optional[str] = None
    roles: FrozenSet[str] = frozenset()
    is_system: bool = False

    def matches(self, principals) -> bool:
        """True if any principal is one of the actor's roles, its id or email."""
        return any(
            p in self.roles or p == self.id or p == self.email
            for p in principals
        )


SYSTEM_ACTOR = Actor(
    id="system",
    email="scheduler@cms.internal",
    name="Scheduled Task",
    roles=frozenset({"system"}),
    is_system=True,
)


@dataclass(frozen=True)
class Approval:
    actor_id: str
    email: str
    at: datetime
    comment: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "actor_id": self.actor_id,
            "email": self.email,
            "at": isoformat(self.at),
            "comment": self.comment,
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> Optional["Approval"]:
        try:
            return cls(
                actor_id=str(raw["actor_id"]),
                email=str(raw.get("email") or ""),
                at=coerce_datetime(raw["at"]),
                comment=raw.get("comment"),
            )
        except (KeyError, TypeError, ValueError):
            return None


@dataclass
class TransitionResult:
    success: bool
    advanced: bool = False
    new_stage: Any = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @classmethod
    def fail(cls, code: str, message: str) -> "TransitionResult":
        return cls(success=False, error=message, error_code=code)


@dataclass
class WorkflowStateView:
    document_id: str
    workflow_id: str
    current_stage: Any
    previous_stage_id: Optional[str]
    approvals: List[Approval]
    rejections: List[Approval]
    entered_stage_at: datetime
    deadline: Optional[datetime]
    available_transitions: List[Any]
    can_current_user_approve: bool
    progress: Dict[str, int]


@dataclass
class WorkflowHistoryEntry:
    id: str
    timestamp: datetime
    from_stage_name: Optional[str]
    to_stage_name: str
    transition_type: str
    actor_id: str
    actor_email: str
    comment: Optional[str]


@dataclass
class VersionSummary:
    id: str
    version_number: int
    created_at: datetime
    created_by_email: str
    created_by_name: Optional[str]
    title: Optional[str]
    version_type: str
    version_label: Optional[str]
    content_size: int


@dataclass
class VersionDetail:
    id: str
    document_id: str
    version_number: int
    content: str
    content_format: str
    content_hash: str
    title: Optional[str]
    metadata: Optional[Dict[str, Any]]
    created_at: datetime
    created_by_id: str
    created_by_email: str
    created_by_name: Optional[str]
    version_type: str
    version_label: Optional[str]
    version_notes: Optional[str]
    previous_version_id: Optional[str]


@dataclass
class FieldChange:
    type: str  # title | content | metadata
    before: str
    after: str
    field: Optional[str] = None


@dataclass
class VersionDiff:
    before: VersionDetail
    after: VersionDetail
    changes: List[FieldChange] = field(default_factory=list)


@dataclass
class ProcessResult:
    success: bool
    error: Optional[str] = None
    job_id: Optional[str] = None
    status: Optional[str] = None


@dataclass
class AccessResult:
    valid: bool
    preview: Any = None
    content: Optional[str] = None
    error: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def deny(cls, code: str, message: str) -> "AccessResult":
        return cls(valid=False, error=code, message=message)


@dataclass
class AssistResponse:
    """What an AI client returns: either text or a score, plus token usage."""
    text: Optional[str] = None
    score: Optional[float] = None
    input_tokens: int = 0
    output_tokens: int = 0
    model: Optional[str] = None


@dataclass
class StageSpec:
    """Input shape for one stage of a new workflow definition."""
    name: str
    order: int
    stage_type: StageType
    approval_type: ApprovalType = ApprovalType.ANY
    required_approvers: List[str] = field(default_factory=list)
    min_approvals: int = 1
    description: Optional[str] = None
    deadline_hours: Optional[int] = None

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "StageSpec":
        try:
            return cls(
                name=str(raw["name"]).strip(),
                order=int(raw["order"]),
                stage_type=StageType(raw["type"]),
                approval_type=ApprovalType(raw.get("approval_type") or ApprovalType.ANY),
                required_approvers=[str(a) for a in raw.get("required_approvers") or []],
                min_approvals=int(raw.get("min_approvals") or 1),
                description=raw.get("description"),
                deadline_hours=int(raw["deadline_hours"]) if raw.get("deadline_hours") else None,
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid stage definition: {exc}") from exc


@dataclass
class TransitionSpec:
    """Input shape for one transition; stages are referenced by order."""
    from_stage: int
    to_stage: int
    transition_type: TransitionType
    allowed_roles: List[str] = field(default_factory=list)
    requires_comment: bool = False

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "TransitionSpec":
        try:
            return cls(
                from_stage=int(raw["from"]),
                to_stage=int(raw["to"]),
                transition_type=TransitionType(raw.get("type") or TransitionType.ADVANCE),
                allowed_roles=[str(r) for r in raw.get("allowed_roles") or []],
                requires_comment=bool(raw.get("requires_comment", False)),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid transition definition: {exc}") from exc


@dataclass
class EmbargoStatus:
    embargoed: bool
    until: Optional[datetime] = None
