"""面包屑解析：基于已拉取的全量文件夹索引，生成从顶层到当前文件夹的路径。"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Iterable, List, Mapping, Optional, Union

from filedesk.packages.files.models.file_node import FileNode


@dataclass(frozen=True)
class Breadcrumb:
    id: str
    name: str

    def to_dict(self) -> dict:
        return asdict(self)


def resolve_breadcrumbs(
    folder_id: Optional[str],
    folders: Union[Mapping[str, FileNode], Iterable[FileNode]],
) -> List[Breadcrumb]:
    """返回 ``[顶层, ..., 当前]``；根目录或无法解析的当前 id 返回空列表。"""
    if folder_id is None:
        return []
    index = folders if isinstance(folders, Mapping) else {f.id: f for f in folders}

    crumbs: list[Breadcrumb] = []
    seen: set[str] = set()
    current_id: Optional[str] = folder_id
    while current_id is not None and current_id not in seen:
        node = index.get(current_id)
        if node is None:
            break
        seen.add(current_id)
        crumbs.append(Breadcrumb(id=node.id, name=node.name))
        current_id = node.parent_folder_id
    crumbs.reverse()
    return crumbs
