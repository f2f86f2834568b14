"""依赖注入模块：封装 FastAPI 中复用度高的依赖函数。"""

from collections.abc import Generator
from functools import lru_cache

from fastapi import Depends
from sqlalchemy.orm import Session

from filedesk.packages.files.db.session import SessionLocal
from filedesk.packages.files.services.file_service import FileManagerService
from filedesk.packages.files.services.storage_backends import BlobStore, build_blob_store
from filedesk.packages.files.services.upload_progress import UploadProgressStore, upload_progress_store


def get_db() -> Generator[Session, None, None]:
    """生成一个数据库会话，并在请求结束后自动关闭。"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@lru_cache
def get_blob_store() -> BlobStore:
    """按 ``STORAGE_TYPE`` 构造对象存储，进程内复用同一实例。"""
    return build_blob_store()


def get_progress_store() -> UploadProgressStore:
    return upload_progress_store


def get_file_manager(
    db: Session = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
    progress_store: UploadProgressStore = Depends(get_progress_store),
) -> FileManagerService:
    """每个请求一个操作层实例；节点缓存与拖拽状态不跨请求保留。"""
    return FileManagerService(db, blob_store, progress_store)
