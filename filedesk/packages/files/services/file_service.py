"""文件管理操作层：把节点存储、移动校验、面包屑、上传协调与拖拽状态机接到元数据表和对象存储上。

约定：
- 所有操作返回成功信号（bool / 对象或 None），失败只记录日志，不向调用方抛出领域异常；
- 每次成功变更后丢弃缓存并重新拉取受影响的列表，调用方不会看到过期的树；
- HTTP 状态码的映射只在 API 层完成。
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from filedesk.packages.files.core.config import get_settings
from filedesk.packages.files.core.constants import FILE_FLAG_COLUMNS
from filedesk.packages.files.core.exceptions import FetchError, MoveRejected, PartialDeleteWarning
from filedesk.packages.files.core.logger import get_logger
from filedesk.packages.files.crud.file_node import CRUDFileNode, file_node_crud
from filedesk.packages.files.models.file_node import FileNode
from filedesk.packages.files.services.breadcrumbs import Breadcrumb, resolve_breadcrumbs
from filedesk.packages.files.services.drag_drop import DragDropStateMachine, DragPayload, DropOutcome
from filedesk.packages.files.services.move_validator import check_move
from filedesk.packages.files.services.node_store import NodeStore
from filedesk.packages.files.services.storage_backends import BlobStore
from filedesk.packages.files.services.upload_coordinator import (
    IncomingFile,
    Scheduler,
    UploadBatchResult,
    UploadCoordinator,
)
from filedesk.packages.files.services.upload_progress import UploadProgressStore, upload_progress_store
from filedesk.packages.files.utils.file_names import parse_file_name_and_extension, storage_key_timestamp_ms

logger = get_logger("file_service")


@dataclass
class FolderView:
    """打开某个文件夹时视图所需的全部数据。"""

    folder_id: Optional[str]
    children: List[FileNode] = field(default_factory=list)
    breadcrumbs: List[Breadcrumb] = field(default_factory=list)
    folders: List[FileNode] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "folderId": self.folder_id,
            "items": [n.to_record() for n in self.children],
            "breadcrumbs": [b.to_dict() for b in self.breadcrumbs],
            "folders": [f.to_record() for f in self.folders],
            "error": self.error,
        }


class FileManagerService:
    def __init__(
        self,
        db: Session,
        blob_store: BlobStore,
        progress_store: UploadProgressStore = upload_progress_store,
        *,
        repository: CRUDFileNode = file_node_crud,
        cascade_delete: Optional[bool] = None,
        clear_delay: Optional[float] = None,
        scheduler: Optional[Scheduler] = None,
        orphan_min_age: Optional[float] = None,
    ) -> None:
        settings = get_settings()
        self.db = db
        self.blob_store = blob_store
        self.progress_store = progress_store
        self.repository = repository
        self.cascade_delete = settings.folder_delete_cascade if cascade_delete is None else cascade_delete
        self.orphan_min_age = settings.orphan_sweep_min_age_seconds if orphan_min_age is None else orphan_min_age
        self.store = NodeStore(db, repository=repository)
        self.uploader = UploadCoordinator(
            db,
            blob_store,
            progress_store,
            repository=repository,
            clear_delay=clear_delay,
            scheduler=scheduler,
        )
        self.drag = DragDropStateMachine(
            folders=lambda: self.store.folders_by_id,
            mover=lambda node, target_id: self.move(node.id, target_id),
            uploader=self.upload,
        )

    # ----------------------------
    # 查询
    # ----------------------------
    def get_node(self, node_id: str) -> Optional[FileNode]:
        try:
            return self.repository.get(self.db, node_id)
        except SQLAlchemyError as exc:
            logger.error("Loading node %s failed: %s", node_id, exc)
            raise FetchError(f"Failed to load node {node_id}") from exc

    def get_folder(self, folder_id: Optional[str]) -> Optional[FileNode]:
        return self.store.get_folder(folder_id)

    def open_folder(self, folder_id: Optional[str]) -> FolderView:
        try:
            children = self.store.list_children(folder_id)
            folders = self.store.list_all_folders()
        except FetchError as exc:
            # 列表失败只呈现为空视图，不中断调用方
            return FolderView(folder_id, error=str(exc))
        crumbs = resolve_breadcrumbs(folder_id, self.store.folders_by_id)
        return FolderView(folder_id, children, crumbs, folders)

    def _refresh(self, folder_id: Optional[str]) -> None:
        try:
            self.store.refresh(folder_id)
        except FetchError:
            logger.warning("Refresh of %s after mutation failed", folder_id or "root")

    # ----------------------------
    # 变更
    # ----------------------------
    def create_folder(self, name: str, parent_id: Optional[str]) -> Optional[FileNode]:
        clean = (name or "").strip()
        if not clean:
            logger.warning("Refusing to create a folder with an empty name")
            return None
        try:
            if parent_id is not None and self.store.get_folder(parent_id) is None:
                logger.warning("Parent folder %s does not exist", parent_id)
                return None
            node = self.repository.insert(
                self.db,
                {"name": clean, "is_folder": True, "file_size": 0, "parent_folder_id": parent_id},
            )
        except (SQLAlchemyError, FetchError):
            logger.exception("Creating folder %r under %s failed", clean, parent_id or "root")
            return None
        logger.info("Folder created: %s (%s) under %s", clean, node.id, parent_id or "root")
        self._refresh(parent_id)
        return node

    def rename(self, node_id: str, new_name: str, *, keep_extension: bool = False) -> bool:
        """只修改名称。``keep_extension`` 时 ``new_name`` 视为主名，文件的原扩展名会被保留。"""
        clean = (new_name or "").strip()
        if not clean:
            return False
        try:
            node = self.get_node(node_id)
            if node is None:
                return False
            if keep_extension and not node.is_folder:
                _, extension = parse_file_name_and_extension(node.name)
                clean = clean + extension
            parent_id = node.parent_folder_id
            updated = self.repository.update_fields(self.db, node_id, {"name": clean})
        except (SQLAlchemyError, FetchError):
            logger.exception("Renaming %s failed", node_id)
            return False
        if updated:
            logger.info("Node %s renamed to %r", node_id, clean)
            self._refresh(parent_id)
        return updated

    def move(self, node_id: str, target_id: Optional[str]) -> bool:
        try:
            node = self.get_node(node_id)
            if node is None:
                return False
            if target_id is not None and self.store.get_folder(target_id) is None:
                logger.warning("Move target %s is not an existing folder", target_id)
                return False
            check_move(node, target_id, self.store.folders_by_id)
            updated = self.repository.update_fields(self.db, node_id, {"parent_folder_id": target_id})
        except MoveRejected as exc:
            logger.info("%s", exc)
            return False
        except (SQLAlchemyError, FetchError):
            logger.exception("Moving %s to %s failed", node_id, target_id or "root")
            return False
        if updated:
            logger.info("Node %s moved to %s", node_id, target_id or "root")
            self._refresh(target_id)
        return updated

    def _collect_subtree(self, folder_id: str) -> List[FileNode]:
        nodes: list[FileNode] = []
        for fid in [folder_id, *self.store.descendant_ids(folder_id)]:
            nodes.extend(self.repository.list_by_parent(self.db, fid))
        return nodes

    def delete(self, ids: Iterable[str]) -> bool:
        """先尽力删除对象（失败仅告警），再删除元数据行；文件夹按配置级联删除后代。"""
        id_list = list(dict.fromkeys(i for i in ids if i))
        if not id_list:
            return False
        try:
            targets = {}
            for node_id in id_list:
                node = self.get_node(node_id)
                if node is None:
                    logger.warning("Delete skipped missing node %s", node_id)
                    continue
                targets[node.id] = node
                if node.is_folder and self.cascade_delete:
                    for child in self._collect_subtree(node.id):
                        targets.setdefault(child.id, child)
        except (SQLAlchemyError, FetchError):
            logger.exception("Resolving nodes to delete failed")
            return False
        if not targets:
            return False

        keys = [n.storage_path for n in targets.values() if not n.is_folder and n.storage_path]
        try:
            failed = self.blob_store.remove_objects(keys) if keys else []
        except Exception:
            logger.exception("Blob removal failed for %s key(s)", len(keys))
            failed = keys
        if failed:
            logger.warning("%s", PartialDeleteWarning(failed))

        try:
            deleted = self.repository.delete_ids(self.db, list(targets))
        except SQLAlchemyError:
            logger.exception("Deleting metadata rows failed")
            return False
        logger.info("Deleted %s node(s), %s blob(s) left behind", deleted, len(failed))
        self.store.invalidate()
        return True

    def assign_flag(self, file_id: str, flag: str) -> bool:
        """先清空全局该类别标记再设置到目标文件，同一类别至多一个持有者。"""
        column = FILE_FLAG_COLUMNS.get(flag)
        if column is None:
            logger.warning("Unknown flag category %r", flag)
            return False
        try:
            assigned = self.repository.set_flag_exclusive(self.db, file_id, column)
        except SQLAlchemyError:
            logger.exception("Assigning flag %s to %s failed", flag, file_id)
            return False
        if assigned:
            logger.info("Flag %s assigned to %s", flag, file_id)
            self.store.invalidate()
        return assigned

    def remove_flag(self, file_id: str, flag: str) -> bool:
        column = FILE_FLAG_COLUMNS.get(flag)
        if column is None:
            return False
        try:
            node = self.get_node(file_id)
            if node is None or node.is_folder:
                return False
            removed = self.repository.update_fields(self.db, file_id, {column: False})
        except (SQLAlchemyError, FetchError):
            logger.exception("Removing flag %s from %s failed", flag, file_id)
            return False
        if removed:
            self.store.invalidate()
        return removed

    # ----------------------------
    # 上传与拖拽
    # ----------------------------
    def upload(
        self,
        files: Sequence[IncomingFile],
        parent_id: Optional[str],
        batch_id: Optional[str] = None,
    ) -> UploadBatchResult:
        return self.uploader.upload_batch(
            files,
            parent_id,
            batch_id=batch_id,
            on_complete=lambda: self.store.refresh(parent_id),
        )

    def drop(
        self,
        payload: DragPayload,
        target_id: Optional[str],
        current_folder_id: Optional[str],
    ) -> DropOutcome:
        """服务端重放一次放下事件；``target_id`` 为放下时悬停的节点，``None`` 表示空白区域。"""
        target = None
        if target_id is not None:
            try:
                target = self.get_node(target_id)
            except FetchError:
                target = None
        node = payload.internal_node()
        if node is not None:
            self.drag.start_drag(node)
            self.drag.drag_over(target)
        return self.drag.drop(payload, target, current_folder_id)

    # ----------------------------
    # 读取对象
    # ----------------------------
    def download(self, node_id: str) -> Optional[Tuple[str, bytes, Optional[str]]]:
        try:
            node = self.get_node(node_id)
        except FetchError:
            return None
        if node is None or node.is_folder or not node.storage_path:
            return None
        try:
            content = self.blob_store.get_object(node.storage_path)
        except Exception:
            logger.exception("Reading blob %s failed", node.storage_path)
            return None
        return node.name, content, node.mime_type

    def preview_url(self, node_id: str, ttl_seconds: Optional[int] = None) -> Optional[str]:
        ttl = ttl_seconds or get_settings().preview_url_ttl_seconds
        try:
            node = self.get_node(node_id)
        except FetchError:
            return None
        if node is None or node.is_folder or not node.storage_path:
            return None
        try:
            return self.blob_store.get_temporary_read_url(node.storage_path, ttl, filename=node.name)
        except Exception:
            logger.exception("Signing URL for %s failed", node.storage_path)
            return None

    # ----------------------------
    # 孤儿对象清理
    # ----------------------------
    def find_orphan_blobs(self, *, now_ms: Optional[int] = None) -> List[str]:
        """对象存储中存在但没有任何元数据行引用的 key。

        上传先写对象再插入记录，两步之间的对象暂时没有引用。key 中的时间戳
        比 ``orphan_min_age`` 更新的对象不计入孤儿；无法解析时间戳的 key 不是
        上传流程生成的，照常参与比对。扫描失败时记录日志并返回空列表。
        """
        now_ms = int(time.time() * 1000) if now_ms is None else now_ms
        cutoff_ms = now_ms - int(self.orphan_min_age * 1000)
        try:
            # 先列对象再读引用：两次读取之间完成的插入不会被误判
            keys = self.blob_store.list_keys()
            referenced = self.repository.all_storage_paths(self.db)
        except Exception:
            logger.exception("Orphan scan failed")
            return []
        orphans = []
        for key in keys:
            if key in referenced:
                continue
            written_ms = storage_key_timestamp_ms(key)
            if written_ms is not None and written_ms > cutoff_ms:
                logger.debug("Orphan candidate %s is too recent, skipped", key)
                continue
            orphans.append(key)
        return sorted(orphans)

    def sweep_orphan_blobs(self) -> List[str]:
        orphans = self.find_orphan_blobs()
        if not orphans:
            return []
        try:
            failed = set(self.blob_store.remove_objects(orphans))
        except Exception:
            logger.exception("Orphan removal failed for %s key(s)", len(orphans))
            return []
        removed = [k for k in orphans if k not in failed]
        logger.info("Orphan sweep removed %s blob(s), %s failed", len(removed), len(failed))
        return removed
