"""移动校验：判断把节点移动到某文件夹之下是否在结构上合法。

纯函数，无副作用；沿父引用向上遍历，复杂度 O(深度)。
"""

from __future__ import annotations

from typing import Iterable, Mapping, Optional, Union

from filedesk.packages.files.core.exceptions import MoveRejected
from filedesk.packages.files.models.file_node import FileNode

FolderSet = Union[Mapping[str, FileNode], Iterable[FileNode]]


def _as_index(folders: FolderSet) -> Mapping[str, FileNode]:
    if isinstance(folders, Mapping):
        return folders
    return {f.id: f for f in folders}


def check_move(dragged: FileNode, target_id: Optional[str], folders: FolderSet) -> None:
    """不合法时抛出 ``MoveRejected``。

    ``target_id`` 为 ``None`` 表示移动到根级。父引用指向不存在的 id 时视为链路终止；
    数据本身成环时，重复访问到同一节点也视为终止。
    """
    if target_id is not None and target_id == dragged.id:
        raise MoveRejected(dragged.id, target_id, "a node cannot become its own parent")

    if target_id == dragged.parent_folder_id:
        raise MoveRejected(dragged.id, target_id, "node is already in the target folder")

    if target_id is None:
        return

    index = _as_index(folders)
    visited: set[str] = set()
    current_id: Optional[str] = target_id
    while current_id is not None and current_id not in visited:
        if current_id == dragged.id:
            raise MoveRejected(dragged.id, target_id, "target folder is inside the moved folder")
        visited.add(current_id)
        node = index.get(current_id)
        if node is None:
            break
        current_id = node.parent_folder_id


def validate_move(dragged: FileNode, target_id: Optional[str], folders: FolderSet) -> bool:
    try:
        check_move(dragged, target_id, folders)
    except MoveRejected:
        return False
    return True
