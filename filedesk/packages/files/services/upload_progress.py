"""上传进度存储：按批次记录每个文件的进度百分比，供轮询接口查询。

默认使用进程内存；配置 UPLOAD_PROGRESS_BACKEND=redis 时使用 Redis，连接不可用时回退到内存。
结构：{"<文件名>-<序号>": 0|25|75|100}
键：upload_progress:{batch_id}
"""

from __future__ import annotations

import threading
from typing import Dict, Iterable, Optional

import redis

from filedesk.packages.files.core.config import get_settings
from filedesk.packages.files.core.logger import get_logger

logger = get_logger("upload_progress")

_PROGRESS_TTL_SECONDS = 3600


class _InMemoryProgress:
    def __init__(self) -> None:
        self._store: dict[str, dict[str, int]] = {}
        self._lock = threading.Lock()

    def init(self, batch_id: str, keys: Iterable[str]) -> None:
        with self._lock:
            self._store[batch_id] = {k: 0 for k in keys}

    def update(self, batch_id: str, key: str, value: int) -> int:
        with self._lock:
            entries = self._store.setdefault(batch_id, {})
            # 进度单调不减
            entries[key] = max(entries.get(key, 0), value)
            return entries[key]

    def get(self, batch_id: str) -> Dict[str, int]:
        with self._lock:
            return dict(self._store.get(batch_id, {}))

    def clear(self, batch_id: str) -> None:
        with self._lock:
            self._store.pop(batch_id, None)


class _RedisProgress:
    def __init__(self, url: str):
        self._client = redis.Redis.from_url(url, decode_responses=True, socket_connect_timeout=1)
        try:
            self._client.ping()
        except redis.RedisError as exc:
            raise RuntimeError(f"Redis not available: {exc}") from exc

    def _key(self, batch_id: str) -> str:
        return f"upload_progress:{batch_id}"

    def init(self, batch_id: str, keys: Iterable[str]) -> None:
        mapping = {k: 0 for k in keys}
        name = self._key(batch_id)
        self._client.delete(name)
        if mapping:
            self._client.hset(name, mapping=mapping)
        self._client.expire(name, _PROGRESS_TTL_SECONDS)

    def update(self, batch_id: str, key: str, value: int) -> int:
        name = self._key(batch_id)
        current = int(self._client.hget(name, key) or 0)
        final = max(current, value)
        self._client.hset(name, key, final)
        self._client.expire(name, _PROGRESS_TTL_SECONDS)
        return final

    def get(self, batch_id: str) -> Dict[str, int]:
        raw = self._client.hgetall(self._key(batch_id)) or {}
        return {k: int(v) for k, v in raw.items()}

    def clear(self, batch_id: str) -> None:
        self._client.delete(self._key(batch_id))


class UploadProgressStore:
    def __init__(self, backend: Optional[str] = None) -> None:
        settings = get_settings()
        backend = (backend or settings.upload_progress_backend or "memory").lower()
        if backend == "redis":
            try:
                self._backend = _RedisProgress(settings.redis_url)
                logger.info("Upload progress store using Redis: %s", settings.redis_url)
                return
            except RuntimeError:
                logger.warning("Upload progress store falling back to in-memory store")
        self._backend = _InMemoryProgress()

    def init(self, batch_id: str, keys: Iterable[str]) -> None:
        self._backend.init(batch_id, keys)

    def update(self, batch_id: str, key: str, value: int) -> int:
        return self._backend.update(batch_id, key, value)

    def get(self, batch_id: str) -> Dict[str, int]:
        return self._backend.get(batch_id)

    def clear(self, batch_id: str) -> None:
        self._backend.clear(batch_id)


upload_progress_store = UploadProgressStore()
