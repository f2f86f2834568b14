"""操作层：创建、重命名、移动、删除、标记与孤儿对象清理。"""

import json

from botocore.exceptions import ClientError
from sqlalchemy.exc import OperationalError

from filedesk.packages.files.core.constants import INTERNAL_DRAG_MIME
from filedesk.packages.files.core.security import decode_and_verify_token
from filedesk.packages.files.crud.file_node import CRUDFileNode, file_node_crud
from filedesk.packages.files.db import session as db_session
from filedesk.packages.files.models.file_node import FileNode
from filedesk.packages.files.services.drag_drop import DragPayload
from filedesk.packages.files.services.file_service import FileManagerService
from filedesk.packages.files.services.storage_backends import BLOB_READ_PURPOSE, LocalBlobStore
from filedesk.packages.files.services.upload_coordinator import IncomingFile
from filedesk.packages.files.utils.file_names import generate_storage_key


class _FlakyRemoval(LocalBlobStore):
    """对指定 key 的删除始终失败。"""

    def __init__(self, root, failing):
        super().__init__(root)
        self.failing = set(failing)

    def remove_objects(self, keys):
        keys = list(keys)
        super().remove_objects([k for k in keys if k not in self.failing])
        return [k for k in keys if k in self.failing]


class _Unreachable(CRUDFileNode):
    def list_by_parent(self, db, parent_id, *, is_folder=None):
        raise OperationalError("SELECT", {}, Exception("backend down"))

    def all_storage_paths(self, db):
        raise OperationalError("SELECT", {}, Exception("backend down"))


class _SweepOnWrite(LocalBlobStore):
    """对象写入后、元数据插入前，由另一个会话触发一次孤儿清理。"""

    def __init__(self, root):
        super().__init__(root)
        self.sweeper = None
        self.swept = []

    def put_object(self, key, data, *, content_type=None):
        super().put_object(key, data, content_type=content_type)
        self.swept.extend(self.sweeper.sweep_orphan_blobs())


class _Unlistable(LocalBlobStore):
    def list_keys(self):
        raise ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "ListObjectsV2")


class _Unremovable(LocalBlobStore):
    def remove_objects(self, keys):
        raise ClientError({"Error": {"Code": "503", "Message": "Slow Down"}}, "DeleteObjects")


def _upload(manager, parent_id, *names):
    result = manager.upload([IncomingFile(n, n.encode()) for n in names], parent_id)
    assert result.ok
    return [o.node_id for o in result.outcomes]


def test_open_folder_returns_children_breadcrumbs_and_folders(manager, make_node):
    projects = make_node("Projects")
    year = make_node("2024", projects.id)
    _upload(manager, year.id, "plan.docx")

    view = manager.open_folder(year.id)

    assert [n.name for n in view.children] == ["plan.docx"]
    assert [b.name for b in view.breadcrumbs] == ["Projects", "2024"]
    assert {f.name for f in view.folders} == {"Projects", "2024"}
    assert view.error is None
    assert view.to_dict()["items"][0]["name"] == "plan.docx"


def test_open_folder_reports_fetch_error_as_empty_view(db_session_fixture, blob_store, progress_store):
    manager = FileManagerService(
        db_session_fixture, blob_store, progress_store, repository=_Unreachable(FileNode)
    )
    view = manager.open_folder(None)
    assert view.children == [] and view.breadcrumbs == []
    assert view.error


def test_create_folder_trims_and_validates(manager, make_node):
    parent = make_node("parent")
    created = manager.create_folder("  Reports  ", parent.id)

    assert created.name == "Reports"
    assert created.is_folder and created.parent_folder_id == parent.id
    assert [n.name for n in manager.store.list_children(parent.id)] == ["Reports"]

    assert manager.create_folder("   ", None) is None
    assert manager.create_folder("ghost-child", "missing-folder") is None


def test_create_folder_under_a_file_is_refused(manager):
    [file_id] = _upload(manager, None, "a.txt")
    assert manager.create_folder("nested", file_id) is None


def test_duplicate_names_are_tolerated(manager):
    assert manager.create_folder("Same", None) is not None
    assert manager.create_folder("Same", None) is not None
    assert [n.name for n in manager.store.list_children(None)] == ["Same", "Same"]


def test_rename_changes_name_only(manager, make_node):
    folder = make_node("old", None)
    assert manager.rename(folder.id, " new ") is True
    renamed = manager.get_node(folder.id)
    assert renamed.name == "new"
    assert renamed.parent_folder_id is None


def test_rename_keeps_file_extension(manager):
    [file_id] = _upload(manager, None, "draft.v1.pdf")
    assert manager.rename(file_id, "final", keep_extension=True) is True
    assert manager.get_node(file_id).name == "final.pdf"

    assert manager.rename(file_id, "", keep_extension=True) is False
    assert manager.rename("missing", "x") is False


def test_move_is_validated_and_refreshes(manager, make_node):
    projects = make_node("Projects")
    year = make_node("2024", projects.id)
    archive = make_node("Archive")

    # 循环：Projects 移到 2024 之下
    assert manager.move(projects.id, year.id) is False
    assert manager.get_node(projects.id).parent_folder_id is None

    assert manager.move(year.id, archive.id) is True
    assert manager.get_node(year.id).parent_folder_id == archive.id
    assert [n.name for n in manager.open_folder(archive.id).children] == ["2024"]

    # 原地与非文件夹目标
    assert manager.move(year.id, archive.id) is False
    [file_id] = _upload(manager, None, "a.txt")
    assert manager.move(year.id, file_id) is False
    assert manager.move(year.id, None) is True


def test_delete_continues_when_blob_removal_fails(db_session_fixture, tmp_path, progress_store):
    store = _FlakyRemoval(tmp_path / "flaky", failing=[])
    manager = FileManagerService(db_session_fixture, store, progress_store, scheduler=lambda d, cb: None)
    ids = _upload(manager, None, "keep.txt", "gone.txt")
    first_key = manager.get_node(ids[0]).storage_path
    store.failing.add(first_key)

    assert manager.delete(ids) is True

    assert all(file_node_crud.get(db_session_fixture, i) is None for i in ids)
    # 删除失败的对象被保留下来，成为孤儿
    assert store.list_keys() == [first_key]


def test_delete_folder_cascades_to_descendants_and_blobs(manager, make_node, blob_store):
    root_id = make_node("root").id
    child_id = make_node("child", root_id).id
    sibling_id = make_node("sibling").id
    _upload(manager, child_id, "deep.txt")
    _upload(manager, root_id, "shallow.txt")

    assert manager.delete([root_id]) is True

    remaining = manager.open_folder(None)
    assert [n.name for n in remaining.children] == ["sibling"]
    assert file_node_crud.get(manager.db, child_id) is None
    assert blob_store.list_keys() == []
    assert manager.get_node(sibling_id) is not None


def test_delete_without_cascade_only_removes_requested_rows(db_session_fixture, blob_store, progress_store, make_node):
    manager = FileManagerService(db_session_fixture, blob_store, progress_store, cascade_delete=False)
    root_id = make_node("root").id
    child_id = make_node("child", root_id).id

    assert manager.delete([root_id]) is True
    assert manager.get_node(root_id) is None
    assert manager.get_node(child_id).parent_folder_id == root_id


def test_delete_of_unknown_ids_fails(manager):
    assert manager.delete([]) is False
    assert manager.delete(["nope"]) is False


def test_flag_assignment_is_exclusive(manager, make_node):
    first, second = _upload(manager, None, "handbook-2023.pdf", "handbook-2024.pdf")

    assert manager.assign_flag(first, "handbook") is True
    assert manager.assign_flag(second, "handbook") is True
    assert manager.assign_flag(first, "annual_training") is True

    holders = [n for n in manager.open_folder(None).children if n.is_employee_handbook]
    assert [n.id for n in holders] == [second]
    assert manager.get_node(first).is_annual_training is True

    assert manager.remove_flag(second, "handbook") is True
    assert manager.get_node(second).is_employee_handbook is False


def test_flags_reject_folders_and_unknown_categories(manager, make_node):
    folder = make_node("folder")
    [file_id] = _upload(manager, None, "a.pdf")

    assert manager.assign_flag(folder.id, "handbook") is False
    assert manager.remove_flag(folder.id, "handbook") is False
    assert manager.assign_flag(file_id, "unknown") is False


def test_download_and_preview_url(manager, make_node):
    [file_id] = _upload(manager, None, "notes.txt")

    name, content, mime = manager.download(file_id)
    assert (name, content, mime) == ("notes.txt", b"notes.txt", "text/plain")

    url = manager.preview_url(file_id)
    token = url.split("t=", 1)[1]
    payload = decode_and_verify_token(token)
    assert payload["purpose"] == BLOB_READ_PURPOSE
    assert payload["key"] == manager.get_node(file_id).storage_path

    folder = make_node("folder")
    assert manager.download(folder.id) is None
    assert manager.preview_url(folder.id) is None


def test_orphan_sweep_removes_unreferenced_blobs(manager, blob_store):
    [file_id] = _upload(manager, None, "kept.txt")
    blob_store.put_object("stray_1_orphan.bin", b"x")

    assert manager.find_orphan_blobs() == ["stray_1_orphan.bin"]
    assert manager.sweep_orphan_blobs() == ["stray_1_orphan.bin"]
    assert blob_store.list_keys() == [manager.get_node(file_id).storage_path]


def test_sweep_between_write_and_insert_keeps_the_new_blob(db_session_fixture, tmp_path, progress_store):
    store = _SweepOnWrite(tmp_path / "racy")
    other_session = db_session.SessionLocal()
    try:
        store.sweeper = FileManagerService(other_session, store, progress_store)
        manager = FileManagerService(db_session_fixture, store, progress_store, scheduler=lambda d, cb: None)
        [file_id] = _upload(manager, None, "report.pdf")
    finally:
        other_session.close()

    assert store.swept == []
    assert manager.download(file_id)[1] == b"report.pdf"


def test_orphan_scan_skips_recent_keys(blob_store, db_session_fixture, progress_store):
    now_ms = 1_700_000_000_000
    fresh = generate_storage_key("fresh.bin", timestamp_ms=now_ms - 1_000)
    stale = generate_storage_key("stale.bin", timestamp_ms=now_ms - 120_000)
    for key in (fresh, stale, "legacy.bin"):
        blob_store.put_object(key, b"x")

    strict = FileManagerService(db_session_fixture, blob_store, progress_store, orphan_min_age=60)
    assert strict.find_orphan_blobs(now_ms=now_ms) == sorted([stale, "legacy.bin"])

    eager = FileManagerService(db_session_fixture, blob_store, progress_store, orphan_min_age=0)
    assert eager.find_orphan_blobs(now_ms=now_ms) == sorted([fresh, stale, "legacy.bin"])


def test_orphan_scan_failures_return_empty(db_session_fixture, tmp_path, progress_store):
    unlistable = FileManagerService(db_session_fixture, _Unlistable(tmp_path / "a"), progress_store)
    assert unlistable.find_orphan_blobs() == []
    assert unlistable.sweep_orphan_blobs() == []

    store = LocalBlobStore(tmp_path / "b")
    store.put_object("stray_0_x.bin", b"x")
    no_db = FileManagerService(db_session_fixture, store, progress_store, repository=_Unreachable(FileNode))
    assert no_db.sweep_orphan_blobs() == []
    assert store.list_keys() == ["stray_0_x.bin"]

    stuck = _Unremovable(tmp_path / "c")
    stuck.put_object("stray_0_y.bin", b"y")
    assert FileManagerService(db_session_fixture, stuck, progress_store).sweep_orphan_blobs() == []


def test_drop_replays_internal_move(manager, make_node):
    open_folder = make_node("open")
    target = make_node("target", open_folder.id)
    [file_id] = _upload(manager, open_folder.id, "doc.txt")
    record = manager.get_node(file_id).to_record()

    payload = DragPayload(data={INTERNAL_DRAG_MIME: json.dumps(record)})
    outcome = manager.drop(payload, target.id, open_folder.id)

    assert outcome.accepted is True
    assert manager.get_node(file_id).parent_folder_id == target.id


def test_drop_external_files_uploads_into_current_folder(manager, make_node):
    open_folder = make_node("open")
    hovered = make_node("hovered", open_folder.id)

    payload = DragPayload(files=[IncomingFile("report.pdf", b"%PDF")])
    outcome = manager.drop(payload, hovered.id, open_folder.id)

    assert outcome.action == "upload" and outcome.accepted
    names = [n.name for n in manager.open_folder(open_folder.id).children]
    assert names == ["hovered", "report.pdf"]
    assert manager.open_folder(hovered.id).children == []
