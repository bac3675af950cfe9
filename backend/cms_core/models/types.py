import json
from datetime import timezone

from sqlalchemy.types import DateTime, Enum, Text, TypeDecorator


class UTCDateTime(TypeDecorator):
    """
    Stores naive UTC, always hands back timezone-aware UTC.

    SQLite drops tzinfo on the way out; comparing that against an aware
    "now" would raise, so every read is normalized here.
    """
    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class JSONText(TypeDecorator):
    """
    JSON serialized into a TEXT column.

    Absent or malformed values read back as the fallback produced by
    `default_factory` (empty list/dict), never as an exception.
    """
    impl = Text
    cache_ok = True

    def __init__(self, default_factory=dict, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.default_factory = default_factory

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return json.dumps(value, default=str, sort_keys=True)

    def process_result_value(self, value, dialect):
        fallback = self.default_factory()
        if value is None or value == "":
            return fallback
        try:
            parsed = json.loads(value)
        except (TypeError, ValueError):
            return fallback
        if not isinstance(parsed, type(fallback)):
            return fallback
        return parsed


def enum_type(enum_cls):
    """Enum stored by value in a VARCHAR, so new members need no DB type change."""
    return Enum(
        enum_cls,
        native_enum=False,
        length=20,
        validate_strings=True,
        values_callable=lambda members: [m.value for m in members],
    )
