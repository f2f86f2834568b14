"""节点存储：当前文件夹子节点与全量文件夹集合的内存视图。

- 文件夹以扁平记录 + 父引用表示：``folders_by_id`` 为 id -> 节点的索引，
  另维护 父 id -> 子文件夹 id 的二级索引，每次重新加载时重建；
- 列表结果按文件夹在前、文件在后，组内按名称不区分大小写升序；
- 只读：所有变更都经由操作层（FileManagerService），变更后调用 ``invalidate`` 触发重新拉取。
"""

from __future__ import annotations

from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from filedesk.packages.files.core.exceptions import FetchError
from filedesk.packages.files.core.logger import get_logger
from filedesk.packages.files.crud.file_node import CRUDFileNode, file_node_crud
from filedesk.packages.files.models.file_node import FileNode

logger = get_logger("node_store")


def sort_nodes(nodes: List[FileNode]) -> List[FileNode]:
    """文件夹在前，组内按名称（不区分大小写）升序。"""
    return sorted(nodes, key=lambda n: (not n.is_folder, (n.name or "").casefold(), n.id))


class NodeStore:
    def __init__(self, db: Session, *, repository: CRUDFileNode = file_node_crud) -> None:
        self.db = db
        self.repository = repository
        self._children_cache: Dict[Optional[str], List[FileNode]] = {}
        self._folders_by_id: Optional[Dict[str, FileNode]] = None
        self._folder_children: Dict[Optional[str], List[str]] = {}

    # ----------------------------
    # 查询
    # ----------------------------
    def list_children(self, folder_id: Optional[str]) -> List[FileNode]:
        if folder_id in self._children_cache:
            return list(self._children_cache[folder_id])
        try:
            rows = self.repository.list_by_parent(self.db, folder_id)
        except SQLAlchemyError as exc:
            logger.error("Listing children of %s failed: %s", folder_id or "root", exc)
            raise FetchError(f"Failed to list children of {folder_id or 'root'}") from exc
        ordered = sort_nodes(rows)
        self._children_cache[folder_id] = ordered
        return list(ordered)

    def list_all_folders(self) -> List[FileNode]:
        return sorted(self.folders_by_id.values(), key=lambda n: ((n.name or "").casefold(), n.id))

    @property
    def folders_by_id(self) -> Dict[str, FileNode]:
        if self._folders_by_id is None:
            self._load_folders()
        return self._folders_by_id  # type: ignore[return-value]

    def get_folder(self, folder_id: Optional[str]) -> Optional[FileNode]:
        if folder_id is None:
            return None
        return self.folders_by_id.get(folder_id)

    def children_of(self, folder_id: Optional[str]) -> List[FileNode]:
        """仅文件夹：基于二级索引返回某文件夹的直接子文件夹（侧边栏树使用）。"""
        if self._folders_by_id is None:
            self._load_folders()
        ids = self._folder_children.get(folder_id, [])
        return sort_nodes([self._folders_by_id[i] for i in ids])  # type: ignore[index]

    def descendant_ids(self, folder_id: str) -> List[str]:
        """文件夹的全部后代文件夹 id（广度优先，不含自身）。"""
        if self._folders_by_id is None:
            self._load_folders()
        result: list[str] = []
        seen = {folder_id}
        queue = [folder_id]
        while queue:
            current = queue.pop(0)
            for child_id in self._folder_children.get(current, []):
                if child_id in seen:
                    continue
                seen.add(child_id)
                result.append(child_id)
                queue.append(child_id)
        return result

    # ----------------------------
    # 缓存
    # ----------------------------
    def invalidate(self) -> None:
        self._children_cache.clear()
        self._folders_by_id = None
        self._folder_children = {}

    def refresh(self, folder_id: Optional[str]) -> List[FileNode]:
        """丢弃缓存并重新拉取当前文件夹与全量文件夹集合。"""
        self.invalidate()
        children = self.list_children(folder_id)
        self._load_folders()
        return children

    def _load_folders(self) -> None:
        try:
            rows = self.repository.list_folders(self.db)
        except SQLAlchemyError as exc:
            logger.error("Listing all folders failed: %s", exc)
            raise FetchError("Failed to list folders") from exc
        arena = {row.id: row for row in rows}
        index: Dict[Optional[str], List[str]] = {}
        for row in rows:
            index.setdefault(row.parent_folder_id, []).append(row.id)
        self._folders_by_id = arena
        self._folder_children = index
