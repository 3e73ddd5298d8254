# backend/live_sessions/models/types.py
"""
Custom SQLAlchemy types that work across different database backends.
"""

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import Boolean, DateTime, TypeDecorator

from ..core.enums import AutoAcceptOverride

if TYPE_CHECKING:
    from sqlalchemy.sql.type_api import TypeDecorator as _TypeDecorator

    TypeDecoratorProtocol = _TypeDecorator[Any]
else:
    TypeDecoratorProtocol = TypeDecorator


class UTCDateTime(TypeDecoratorProtocol):
    """
    Timezone-aware UTC timestamp.

    PostgreSQL stores TIMESTAMPTZ natively. SQLite has no timezone support, so
    values are normalized to UTC and stored naive, then re-tagged as UTC when
    loaded. Either way the ORM always hands back aware UTC datetimes.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        if value is None:
            return value
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        if value is None:
            return value
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class AutoAcceptOverrideType(TypeDecoratorProtocol):
    """
    Persist an AutoAcceptOverride as a nullable boolean.

    NULL is UNSET, so existing rows and omitted values defer to the next level.
    """

    impl = Boolean
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Any) -> Optional[bool]:
        if value is None:
            return None
        if isinstance(value, bool):
            return value
        return AutoAcceptOverride(value).to_optional()

    def process_result_value(self, value: Optional[bool], dialect: Any) -> AutoAcceptOverride:
        return AutoAcceptOverride.from_optional(None if value is None else bool(value))
