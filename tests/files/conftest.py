"""文件管理测试夹具：节点构造与操作层实例。"""

from typing import Callable, Optional

import pytest

from filedesk.packages.files.crud.file_node import file_node_crud
from filedesk.packages.files.models.file_node import FileNode
from filedesk.packages.files.services.file_service import FileManagerService
from filedesk.packages.files.services.upload_progress import UploadProgressStore


@pytest.fixture()
def make_node(db_session_fixture) -> Callable[..., FileNode]:
    """直接写入一条节点记录。"""

    def _make(name: str, parent_id: Optional[str] = None, *, is_folder: bool = True, **extra) -> FileNode:
        record = {"name": name, "is_folder": is_folder, "parent_folder_id": parent_id, "file_size": 0}
        record.update(extra)
        return file_node_crud.insert(db_session_fixture, record)

    return _make


@pytest.fixture()
def progress_store() -> UploadProgressStore:
    return UploadProgressStore("memory")


@pytest.fixture()
def manager(db_session_fixture, blob_store, progress_store) -> FileManagerService:
    return FileManagerService(
        db_session_fixture,
        blob_store,
        progress_store,
        scheduler=lambda delay, callback: None,
    )
