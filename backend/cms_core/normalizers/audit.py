from __future__ import annotations

from typing import Any, Dict

from cms_core.models.audit_log import AuditLog
from cms_core.utils.time import isoformat


def normalize_audit_log(log: AuditLog) -> Dict[str, Any]:
    """
    Normalizes an AuditLog model into API-safe JSON.

    Notes:
    - resource_id is always serialized as string for consistency
    - payload is assumed to be JSON-serializable
    """

    if not log:
        raise ValueError("AuditLog cannot be None")

    return {
        "id": log.id,
        "site_id": log.site_id,
        "occurred_at": isoformat(log.occurred_at),
        "action": log.action,
        "category": log.action_category.value,
        "actor_id": log.actor_id,
        "actor_email": log.actor_email,
        "actor_name": log.actor_name,
        "resource_type": log.resource_type,
        "resource_id": str(log.resource_id) if log.resource_id is not None else None,
        "resource_title": log.resource_title,
        "change_summary": log.change_summary,
        "payload": log.payload or {},
        "checksum": log.checksum,
    }


def normalize_integrity_report(report) -> Dict[str, Any]:
    return {
        "ok": report.ok,
        "checked": report.checked,
        "valid": report.valid,
        "unsigned": report.unsigned,
        "tampered": report.tampered,
    }
