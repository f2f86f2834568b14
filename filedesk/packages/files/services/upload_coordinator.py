"""上传协调：把一批外部文件依次写入对象存储并创建元数据记录，按文件汇报进度。

每个文件是独立的工作单元，严格串行处理（不并发）：
1. 生成节点 id 与存储 key；
2. 进度 25%；
3. 写入对象存储，失败 -> UploadError，跳过该文件，继续后续文件；
4. 进度 75%；
5. 创建元数据记录，失败 -> InsertError，对象已写入成为孤儿（不回滚，由孤儿清理处理）；
6. 进度 100%。
整批结束后调用一次完成回调（重新拉取列表），并在短暂展示后清空进度。
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import asdict, dataclass, field
from typing import Callable, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from filedesk.packages.files.core.config import get_settings
from filedesk.packages.files.core.constants import (
    UPLOAD_PROGRESS_COMPLETE,
    UPLOAD_PROGRESS_START,
    UPLOAD_PROGRESS_UPLOADED,
)
from filedesk.packages.files.core.exceptions import FileManagerError, InsertError, UploadError
from filedesk.packages.files.core.logger import get_logger
from filedesk.packages.files.crud.file_node import CRUDFileNode, file_node_crud
from filedesk.packages.files.models.file_node import new_node_id
from filedesk.packages.files.services.storage_backends import BlobStore
from filedesk.packages.files.services.upload_progress import UploadProgressStore
from filedesk.packages.files.utils.file_names import generate_storage_key, guess_mime_type

logger = get_logger("upload")

STATUS_SUCCESS = "success"
STATUS_UPLOAD_FAILED = "upload_failed"
STATUS_INSERT_FAILED = "insert_failed"

Scheduler = Callable[[float, Callable[[], None]], None]
ProgressObserver = Callable[[str, int], None]


@dataclass
class IncomingFile:
    name: str
    content: bytes
    mime_type: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass
class UploadOutcome:
    key: str
    name: str
    status: str
    storage_key: str
    node_id: Optional[str] = None
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == STATUS_SUCCESS

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class UploadBatchResult:
    batch_id: str
    outcomes: List[UploadOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> List[UploadOutcome]:
        return [o for o in self.outcomes if o.ok]

    @property
    def failed(self) -> List[UploadOutcome]:
        return [o for o in self.outcomes if not o.ok]

    @property
    def ok(self) -> bool:
        return not self.failed

    def to_dict(self) -> dict:
        return {"batchId": self.batch_id, "results": [o.to_dict() for o in self.outcomes]}


def progress_key(name: str, index: int) -> str:
    """同批次内唯一：同名文件以批内序号区分。"""
    return f"{name}-{index}"


def _timer_scheduler(delay: float, callback: Callable[[], None]) -> None:
    timer = threading.Timer(max(delay, 0.0), callback)
    timer.daemon = True
    timer.start()


class UploadCoordinator:
    def __init__(
        self,
        db: Session,
        blob_store: BlobStore,
        progress_store: UploadProgressStore,
        *,
        repository: CRUDFileNode = file_node_crud,
        clear_delay: Optional[float] = None,
        scheduler: Optional[Scheduler] = None,
        on_progress: Optional[ProgressObserver] = None,
    ) -> None:
        self.db = db
        self.blob_store = blob_store
        self.progress_store = progress_store
        self.repository = repository
        self.clear_delay = get_settings().upload_progress_clear_delay if clear_delay is None else clear_delay
        self.scheduler = scheduler or _timer_scheduler
        self.on_progress = on_progress

    def upload_batch(
        self,
        files: Sequence[IncomingFile],
        parent_id: Optional[str],
        *,
        batch_id: Optional[str] = None,
        on_complete: Optional[Callable[[], None]] = None,
    ) -> UploadBatchResult:
        batch_id = batch_id or uuid.uuid4().hex
        result = UploadBatchResult(batch_id=batch_id)
        if not files:
            return result

        keys = [progress_key(f.name, i) for i, f in enumerate(files)]
        self.progress_store.init(batch_id, keys)
        logger.info("Upload batch %s started: %s file(s) into %s", batch_id, len(files), parent_id or "root")

        for key, incoming in zip(keys, files):
            result.outcomes.append(self._upload_one(batch_id, key, incoming, parent_id))

        logger.info(
            "Upload batch %s finished: %s succeeded, %s failed",
            batch_id,
            len(result.succeeded),
            len(result.failed),
        )
        if on_complete is not None:
            try:
                on_complete()
            except FileManagerError:
                logger.exception("Upload batch %s completion callback failed", batch_id)
        self.scheduler(self.clear_delay, lambda: self.progress_store.clear(batch_id))
        return result

    def _report(self, batch_id: str, key: str, value: int) -> None:
        current = self.progress_store.update(batch_id, key, value)
        if self.on_progress is not None:
            self.on_progress(key, current)

    def _upload_one(self, batch_id: str, key: str, incoming: IncomingFile, parent_id: Optional[str]) -> UploadOutcome:
        node_id = new_node_id()
        storage_key = generate_storage_key(incoming.name)
        mime_type = guess_mime_type(incoming.name, incoming.mime_type)

        self._report(batch_id, key, UPLOAD_PROGRESS_START)

        try:
            self._write_blob(storage_key, incoming.content, mime_type)
        except UploadError as exc:
            logger.error("Upload of %s aborted: %s", incoming.name, exc)
            return UploadOutcome(key, incoming.name, STATUS_UPLOAD_FAILED, storage_key, message=str(exc))

        self._report(batch_id, key, UPLOAD_PROGRESS_UPLOADED)

        try:
            self._insert_record(
                {
                    "id": node_id,
                    "name": incoming.name,
                    "file_path": storage_key,
                    "file_size": incoming.size,
                    "mime_type": mime_type,
                    "is_folder": False,
                    "parent_folder_id": parent_id,
                    "storage_path": storage_key,
                }
            )
        except InsertError as exc:
            logger.error("Orphaned blob left in storage: %s (%s)", storage_key, exc)
            return UploadOutcome(key, incoming.name, STATUS_INSERT_FAILED, storage_key, message=str(exc))

        self._report(batch_id, key, UPLOAD_PROGRESS_COMPLETE)
        return UploadOutcome(key, incoming.name, STATUS_SUCCESS, storage_key, node_id=node_id)

    def _write_blob(self, storage_key: str, content: bytes, mime_type: str) -> None:
        try:
            self.blob_store.put_object(storage_key, content, content_type=mime_type)
        except Exception as exc:
            logger.exception("Blob write failed: %s", storage_key)
            raise UploadError(storage_key, str(exc)) from exc

    def _insert_record(self, record: dict) -> None:
        try:
            self.repository.insert(self.db, record)
        except SQLAlchemyError as exc:
            raise InsertError(record["storage_path"], str(exc)) from exc
