from cms_core.utils.time import isoformat


def normalize_document(document, admin=False):
    data = {
        "id": document.id,
        "title": document.title,
        "slug": document.slug,
        "collection": document.collection,
        "body": document.body,
        "content_format": document.content_format.value,
        "meta": document.meta or {},
        "status": document.status.value,
        "published_at": isoformat(document.published_at),
    }

    if admin:
        data["site_id"] = document.site_id
        data["embargo_until"] = isoformat(document.embargo_until)
        data["created_by"] = document.created_by
        data["updated_by"] = document.updated_by
        data["created_at"] = isoformat(document.created_at)
        data["updated_at"] = isoformat(document.updated_at)

    return data
