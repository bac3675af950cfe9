import hashlib
import json
from typing import Any


def canonical_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def content_hash(content: str) -> str:
    """SHA-256 over the exact UTF-8 bytes of the content."""
    return hashlib.sha256((content or "").encode("utf-8")).hexdigest()


def content_size(content: str) -> int:
    return len((content or "").encode("utf-8"))


def checksum(fields: dict) -> str:
    """
    Deterministic SHA-256 over canonical JSON of `fields`.
    Any `checksum` key is excluded so a stored row can be re-verified.
    """
    material = {k: v for k, v in fields.items() if k != "checksum"}
    return hashlib.sha256(canonical_json(material).encode("utf-8")).hexdigest()
