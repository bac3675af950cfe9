from dataclasses import asdict

from cms_core.utils.time import isoformat


def normalize_version_summary(summary):
    data = asdict(summary)
    data["created_at"] = isoformat(summary.created_at)
    return data


def normalize_version(detail):
    data = asdict(detail)
    data["created_at"] = isoformat(detail.created_at)
    return data


def normalize_diff(diff):
    return {
        "before": normalize_diff_end(diff.before),
        "after": normalize_diff_end(diff.after),
        "changes": [
            {
                "type": change.type,
                "field": change.field,
                "before": change.before,
                "after": change.after,
            }
            for change in diff.changes
        ],
    }


def normalize_diff_end(detail):
    """Diff endpoints repeat the content in `changes`; keep the ends light."""
    return {
        "id": detail.id,
        "version_number": detail.version_number,
        "title": detail.title,
        "version_type": detail.version_type,
        "created_at": isoformat(detail.created_at),
        "created_by_email": detail.created_by_email,
    }
