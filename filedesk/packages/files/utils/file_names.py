"""文件名工具：存储 key 生成、扩展名拆分与 MIME 推断。"""

from __future__ import annotations

import mimetypes
import os
import re
import time
import uuid
from typing import Optional, Tuple

from filedesk.packages.files.core.constants import DEFAULT_MIME_TYPE

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def safe_file_name(filename: Optional[str]) -> str:
    """去掉路径部分，并把对象 key 中不安全的字符替换为下划线。"""
    base = os.path.basename((filename or "").replace("\\", "/")).strip()
    cleaned = _UNSAFE_CHARS.sub("_", base).strip("._")
    return cleaned or "file"


def generate_storage_key(filename: Optional[str], *, timestamp_ms: Optional[int] = None) -> str:
    """随机 id + 毫秒时间戳 + 原文件名：避免冲突，同时可追溯到源文件。"""
    ts = int(time.time() * 1000) if timestamp_ms is None else int(timestamp_ms)
    return f"{uuid.uuid4().hex}_{ts}_{safe_file_name(filename)}"


def storage_key_timestamp_ms(key: str) -> Optional[int]:
    """取出 ``generate_storage_key`` 写入的毫秒时间戳；其它格式的 key 返回 None。"""
    parts = os.path.basename(key or "").split("_", 2)
    if len(parts) < 3 or not parts[1].isdigit():
        return None
    return int(parts[1])


def parse_file_name_and_extension(name: str) -> Tuple[str, str]:
    """``report.final.pdf`` -> (``report.final``, ``.pdf``)；无扩展名或隐藏文件返回空扩展名。"""
    idx = name.rfind(".")
    if idx <= 0:
        return name, ""
    return name[:idx], name[idx:]


def guess_mime_type(filename: Optional[str], declared: Optional[str] = None) -> str:
    if declared:
        return declared
    mime, _ = mimetypes.guess_type(filename or "")
    return mime or DEFAULT_MIME_TYPE
