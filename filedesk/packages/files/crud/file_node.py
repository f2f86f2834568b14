"""FileNode CRUD：元数据集合的读写协作方。"""

from __future__ import annotations

from typing import Any, Iterable, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from filedesk.packages.files.crud.base import CRUDBase
from filedesk.packages.files.models.file_node import FileNode


class CRUDFileNode(CRUDBase[FileNode]):
    def list_by_parent(
        self,
        db: Session,
        parent_id: Optional[str],
        *,
        is_folder: Optional[bool] = None,
    ) -> list[FileNode]:
        query = self.query(db)
        # NULL 父节点需用 IS NULL 匹配
        if parent_id is None:
            query = query.filter(FileNode.parent_folder_id.is_(None))
        else:
            query = query.filter(FileNode.parent_folder_id == parent_id)
        if is_folder is not None:
            query = query.filter(FileNode.is_folder.is_(is_folder))
        return query.all()

    def list_folders(self, db: Session) -> list[FileNode]:
        return self.query(db).filter(FileNode.is_folder.is_(True)).all()

    def insert(self, db: Session, record: dict[str, Any]) -> FileNode:
        return self.create(db, record)

    def update_fields(self, db: Session, node_id: str, values: dict[str, Any]) -> bool:
        """按 id 局部更新；返回是否命中记录。"""
        try:
            result = db.execute(update(FileNode).where(FileNode.id == node_id).values(**values))
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.expire_all()
        return bool(result.rowcount)

    def delete_ids(self, db: Session, ids: Iterable[str]) -> int:
        id_list = list(ids)
        if not id_list:
            return 0
        try:
            deleted = (
                self.query(db)
                .filter(FileNode.id.in_(id_list))
                .delete(synchronize_session=False)
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.expire_all()
        return int(deleted or 0)

    def set_flag_exclusive(self, db: Session, node_id: str, column: str) -> bool:
        """先清空全表该标记，再设置到目标记录（同一事务内）。"""
        flag_col = getattr(FileNode, column)
        try:
            db.execute(update(FileNode).where(flag_col.is_(True)).values({column: False}))
            result = db.execute(
                update(FileNode)
                .where(FileNode.id == node_id)
                .where(FileNode.is_folder.is_(False))
                .values({column: True})
            )
            if not result.rowcount:
                db.rollback()
                return False
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.expire_all()
        return True

    def all_storage_paths(self, db: Session) -> set[str]:
        rows = (
            db.query(FileNode.storage_path)
            .filter(FileNode.is_folder.is_(False))
            .filter(FileNode.storage_path.is_not(None))
            .all()
        )
        return {row[0] for row in rows}


file_node_crud = CRUDFileNode(FileNode)
