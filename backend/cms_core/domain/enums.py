from enum import Enum


class DocumentStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class ContentFormat(str, Enum):
    HTML = "html"
    JSON = "json"
    MARKDOWN = "markdown"


class VersionType(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"
    PUBLISH = "publish"
    RESTORE = "restore"


class StageType(str, Enum):
    DRAFT = "draft"
    REVIEW = "review"
    APPROVAL = "approval"
    PUBLISHED = "published"


class ApprovalType(str, Enum):
    ANY = "any"
    ALL = "all"
    SEQUENTIAL = "sequential"


class TransitionType(str, Enum):
    ADVANCE = "advance"
    REJECT = "reject"
    SKIP = "skip"


class JobAction(str, Enum):
    PUBLISH = "publish"
    UNPUBLISH = "unpublish"
    ARCHIVE = "archive"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PreviewStatus(str, Enum):
    ACTIVE = "active"
    REVOKED = "revoked"


class FeedbackType(str, Enum):
    COMMENT = "comment"
    ISSUE = "issue"
    APPROVAL = "approval"


class FeedbackStatus(str, Enum):
    OPEN = "open"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


class AuditCategory(str, Enum):
    CONTENT = "content"
    WORKFLOW = "workflow"
    ACCESS = "access"
    SYSTEM = "system"


class AssistAction(str, Enum):
    IMPROVE = "improve"
    SHORTEN = "shorten"
    EXPAND = "expand"
    SUMMARIZE = "summarize"
    TRANSLATE = "translate"
    QUALITY_CHECK = "quality_check"
