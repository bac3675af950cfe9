from typing import Any, Callable, Dict, List, Optional

from cms_core.utils.pagination import CursorMeta


def normalize_pagination(
    items: List[Any],
    normalize_fn: Callable[[Any], Dict[str, Any]],
    *,
    cursor: Optional[CursorMeta] = None,
    limit: Optional[int] = None,
    offset: Optional[int] = None,
    total: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Normalize list responses.

    Supports:
    - Cursor-based pagination (audit log)
    - Limit/offset pagination (documents, versions)

    Exactly ONE pagination strategy should be used per response.
    """

    response: Dict[str, Any] = {
        "items": [normalize_fn(item) for item in items],
    }

    if cursor is not None:
        response["pagination"] = {
            "has_more": cursor["has_more"],
            "next_cursor": cursor["next_cursor"],
        }
        return response

    if limit is not None:
        response["pagination"] = {
            "limit": limit,
            "offset": offset or 0,
        }
        if total is not None:
            response["pagination"]["total"] = total

    return response
