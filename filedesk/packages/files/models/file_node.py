"""统一的文件/文件夹节点模型（扁平记录 + 父节点引用）。

存储规则：
- parent_folder_id：所属文件夹 id，根级节点为 NULL；不建外键，由操作层保证引用合法；
- is_folder：文件夹为 True，此时 file_size=0、mime_type/storage_path 为空；
- storage_path / file_path：文件内容在对象存储中的 key，仅文件有效；
- is_employee_handbook / is_annual_training：类别标记，同一类别全局至多一个持有者。
"""

import uuid
from typing import Any, Optional

from sqlalchemy import BigInteger, Boolean, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import expression

from filedesk.packages.files.core.timezone import format_datetime
from filedesk.packages.files.models.base import Base, CreatedAtMixin


def new_node_id() -> str:
    return str(uuid.uuid4())


class FileNode(CreatedAtMixin, Base):
    __tablename__ = "company_files"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_node_id)
    name: Mapped[str] = mapped_column(String(255), index=True)
    file_path: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    file_size: Mapped[int] = mapped_column(BigInteger, default=0)
    mime_type: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_folder: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    parent_folder_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    storage_path: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)

    is_employee_handbook: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=expression.false(), nullable=False
    )
    is_annual_training: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=expression.false(), nullable=False
    )

    def to_record(self) -> dict[str, Any]:
        """导出对外持久化形态（亦用作拖拽载荷）。"""
        return {
            "id": self.id,
            "name": self.name,
            "file_path": self.file_path,
            "file_size": int(self.file_size or 0),
            "mime_type": self.mime_type,
            "is_folder": bool(self.is_folder),
            "parent_folder_id": self.parent_folder_id,
            "storage_path": self.storage_path,
            "created_at": format_datetime(self.created_at),
            "is_employee_handbook": bool(self.is_employee_handbook),
            "is_annual_training": bool(self.is_annual_training),
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "FileNode":
        """从持久化形态构造一个游离（未入会话）的节点。"""
        return cls(
            id=record["id"],
            name=record.get("name") or "",
            file_path=record.get("file_path"),
            file_size=int(record.get("file_size") or 0),
            mime_type=record.get("mime_type"),
            is_folder=bool(record.get("is_folder")),
            parent_folder_id=record.get("parent_folder_id"),
            storage_path=record.get("storage_path"),
            is_employee_handbook=bool(record.get("is_employee_handbook")),
            is_annual_training=bool(record.get("is_annual_training")),
        )

    def __repr__(self) -> str:
        kind = "folder" if self.is_folder else "file"
        return f"<FileNode {kind} {self.name!r} id={self.id}>"
