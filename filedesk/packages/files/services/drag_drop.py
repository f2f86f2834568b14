"""拖拽交互状态机：区分“移动已有节点”（内部拖拽）与“拖入外部文件”（上传）。

状态：
- idle：无拖拽；
- dragging_internal：正在拖拽某个已有节点，无高亮目标；
- hovering_target：正在拖拽且悬停在某个候选目标上（文件夹 id 或空白区域）。

被拖拽节点会序列化进拖拽载荷（``application/json``），放下时优先从载荷恢复，
即使中途状态被其它事件清空也能正确处理。状态不持久化，新实例总是 idle。
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Mapping, Optional

from filedesk.packages.files.core.constants import BACKGROUND_TARGET, EXTERNAL_FILES_TYPE, INTERNAL_DRAG_MIME
from filedesk.packages.files.core.exceptions import MoveRejected
from filedesk.packages.files.core.logger import get_logger
from filedesk.packages.files.models.file_node import FileNode
from filedesk.packages.files.services.move_validator import check_move
from filedesk.packages.files.services.upload_coordinator import IncomingFile, UploadBatchResult

logger = get_logger("drag_drop")

ACTION_MOVE = "move"
ACTION_UPLOAD = "upload"
ACTION_NONE = "none"

Mover = Callable[[FileNode, Optional[str]], bool]
Uploader = Callable[[List[IncomingFile], Optional[str]], UploadBatchResult]
FoldersProvider = Callable[[], Mapping[str, FileNode]]


class DragState(str, Enum):
    IDLE = "idle"
    DRAGGING_INTERNAL = "dragging_internal"
    HOVERING_TARGET = "hovering_target"


@dataclass
class DragPayload:
    """平台拖拽载荷（类似 DataTransfer）：字符串数据 + 外部文件列表。"""

    data: Dict[str, str] = field(default_factory=dict)
    files: List[IncomingFile] = field(default_factory=list)
    effect_allowed: str = "all"

    @property
    def types(self) -> List[str]:
        types = list(self.data)
        if self.files:
            types.append(EXTERNAL_FILES_TYPE)
        return types

    def internal_node(self) -> Optional[FileNode]:
        raw = self.data.get(INTERNAL_DRAG_MIME)
        if not raw:
            return None
        try:
            record = json.loads(raw)
        except ValueError:
            logger.warning("Ignoring malformed internal drag payload")
            return None
        if not isinstance(record, dict) or not record.get("id"):
            return None
        return FileNode.from_record(record)

    @property
    def is_external(self) -> bool:
        return self.internal_node() is None and bool(self.files)


@dataclass
class DropOutcome:
    action: str
    accepted: bool
    node_id: Optional[str] = None
    target_folder_id: Optional[str] = None
    upload: Optional[UploadBatchResult] = None
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "action": self.action,
            "accepted": self.accepted,
            "nodeId": self.node_id,
            "targetFolderId": self.target_folder_id,
            "upload": self.upload.to_dict() if self.upload else None,
            "reason": self.reason,
        }


class DragDropStateMachine:
    def __init__(self, *, folders: FoldersProvider, mover: Mover, uploader: Uploader) -> None:
        self._folders = folders
        self._mover = mover
        self._uploader = uploader
        self.state = DragState.IDLE
        self.dragged: Optional[FileNode] = None
        self.hover_target: Optional[str] = None

    def start_drag(self, node: FileNode) -> DragPayload:
        self.dragged = node
        self.hover_target = None
        self.state = DragState.DRAGGING_INTERNAL
        return DragPayload(
            data={INTERNAL_DRAG_MIME: json.dumps(node.to_record(), ensure_ascii=False)},
            effect_allowed="move",
        )

    def drag_over(self, target: Optional[FileNode]) -> None:
        """``target`` 为 ``None`` 表示悬停在空白区域。"""
        if self.dragged is None:
            return
        if target is None:
            self.hover_target = BACKGROUND_TARGET
        elif target.is_folder and target.id != self.dragged.id:
            self.hover_target = target.id
        else:
            self.hover_target = None
        self.state = DragState.HOVERING_TARGET if self.hover_target else DragState.DRAGGING_INTERNAL

    def drag_leave(self) -> None:
        if self.dragged is None:
            return
        self.hover_target = None
        self.state = DragState.DRAGGING_INTERNAL

    def end_drag(self) -> None:
        self.dragged = None
        self.hover_target = None
        self.state = DragState.IDLE

    def drop(
        self,
        payload: DragPayload,
        target: Optional[FileNode],
        current_folder_id: Optional[str],
    ) -> DropOutcome:
        try:
            node = payload.internal_node()
            if node is not None:
                return self._drop_internal(node, target, current_folder_id)
            if payload.files:
                # 外部文件总是上传到当前打开的文件夹，而不是悬停的子文件夹
                batch = self._uploader(list(payload.files), current_folder_id)
                return DropOutcome(ACTION_UPLOAD, batch.ok, target_folder_id=current_folder_id, upload=batch)
            return DropOutcome(ACTION_NONE, False, reason="empty drop payload")
        finally:
            self.end_drag()

    def _drop_internal(
        self,
        node: FileNode,
        target: Optional[FileNode],
        current_folder_id: Optional[str],
    ) -> DropOutcome:
        if target is None:
            target_id = current_folder_id
        elif target.is_folder:
            target_id = target.id
        else:
            target_id = target.parent_folder_id

        try:
            check_move(node, target_id, self._folders())
        except MoveRejected as exc:
            logger.info("%s", exc)
            return DropOutcome(ACTION_MOVE, False, node.id, target_id, reason=exc.reason)

        moved = self._mover(node, target_id)
        return DropOutcome(ACTION_MOVE, moved, node.id, target_id, reason=None if moved else "move failed")
