"""模型包初始化，便于统一导入 ORM 实体并触发模型注册。"""

from filedesk.packages.files.models.file_node import FileNode

__all__ = ["FileNode"]
