"""测试夹具：为 pytest 提供数据库、对象存储与客户端的共享配置。"""

import os
import shutil
import tempfile
from typing import Generator

TEST_ROOT = tempfile.mkdtemp(prefix="filedesk_tests_")
TEST_DB_PATH = os.path.join(TEST_ROOT, "test.db")
TEST_DATABASE_URL = f"sqlite:///{TEST_DB_PATH}"

# 必须在导入应用之前设置，配置在首次读取后会被缓存
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ["LOCAL_STORAGE_ROOT"] = os.path.join(TEST_ROOT, "storage")
os.environ["LOG_DIR"] = os.path.join(TEST_ROOT, "log")
os.environ["UPLOAD_PROGRESS_BACKEND"] = "memory"
os.environ["UPLOAD_PROGRESS_CLEAR_DELAY"] = "30"
os.environ["STORAGE_TYPE"] = "LOCAL"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from filedesk.main import app
from filedesk.packages.files.core.dependencies import get_blob_store, get_db
from filedesk.packages.files.db import session as db_session
from filedesk.packages.files.db.init_db import init_db
from filedesk.packages.files.models.base import Base
from filedesk.packages.files.models.file_node import FileNode
from filedesk.packages.files.services.storage_backends import LocalBlobStore


@pytest.fixture(scope="session", autouse=True)
def setup_test_database() -> Generator[None, None, None]:
    """创建隔离的 SQLite 测试数据库，并在会话结束后清理。"""
    engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    db_session.engine = engine
    db_session.SessionLocal = TestingSessionLocal

    Base.metadata.create_all(bind=engine)
    init_db()
    yield

    engine.dispose()
    shutil.rmtree(TEST_ROOT, ignore_errors=True)


@pytest.fixture()
def db_session_fixture() -> Generator[Session, None, None]:
    """提供给测试用例使用的数据库会话，每个用例开始前清空节点表。"""
    session = db_session.SessionLocal()
    session.query(FileNode).delete()
    session.commit()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def blob_store(tmp_path) -> LocalBlobStore:
    return LocalBlobStore(tmp_path / "blobs")


@pytest.fixture()
def client(db_session_fixture, blob_store):
    """构建 FastAPI TestClient，并注入测试专用的数据库与对象存储依赖。"""
    def override_get_db() -> Generator[Session, None, None]:
        session = db_session.SessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_blob_store] = lambda: blob_store

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
