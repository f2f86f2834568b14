"""时区工具方法：支持根据配置动态获取当前时区。"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from zoneinfo import ZoneInfo

from filedesk.packages.files.core.config import get_settings


def get_timezone() -> ZoneInfo:
    """返回配置指定的时区信息。"""
    return get_settings().timezone_info


def to_local(value: Optional[datetime]) -> Optional[datetime]:
    """将 ``datetime`` 转换为配置时区，无时区对象按 UTC 处理（SQLite 返回的即为 UTC 时间）。"""
    if value is None:
        return None
    tz = get_timezone()
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(tz)


def format_datetime(value: Optional[datetime]) -> Optional[str]:
    """将时间格式化为 ISO-8601 字符串，空值返回 ``None``。"""
    localized = to_local(value)
    if localized is None:
        return None
    return localized.isoformat()
