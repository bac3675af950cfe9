from cms_core.utils.time import isoformat


def normalize_preview(preview, admin=False):
    data = {
        "id": preview.id,
        "name": preview.name,
        "title": preview.snapshot_title,
        "expires_at": isoformat(preview.expires_at),
        "status": preview.status.value,
    }

    if admin:
        # The token is shown to the site's editors only, never on the public side
        data["document_id"] = preview.document_id
        data["access_token"] = preview.access_token
        data["requires_password"] = preview.requires_password
        data["allowed_emails"] = preview.allowed_emails or []
        data["max_views"] = preview.max_views
        data["view_count"] = preview.view_count
        data["created_by"] = preview.created_by
        data["created_at"] = isoformat(preview.created_at)
        data["revoked_by"] = preview.revoked_by
        data["revoked_at"] = isoformat(preview.revoked_at)

    return data


def normalize_access(result):
    if not result.valid:
        return {"valid": False, "error": result.error, "message": result.message}

    preview = result.preview
    return {
        "valid": True,
        "preview": normalize_preview(preview),
        "content": result.content,
        "content_format": preview.snapshot_format.value,
    }


def normalize_feedback(feedback):
    return {
        "id": feedback.id,
        "preview_id": feedback.preview_id,
        "parent_id": feedback.parent_id,
        "page_path": feedback.page_path,
        "type": feedback.feedback_type.value,
        "content": feedback.content,
        "author_email": feedback.author_email,
        "status": feedback.status.value,
        "status_changed_by": feedback.status_changed_by,
        "created_at": isoformat(feedback.created_at),
    }
