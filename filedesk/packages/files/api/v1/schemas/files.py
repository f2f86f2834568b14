"""文件管理 - 文件/文件夹 操作请求/响应模型。"""

from typing import Any, Dict, Generic, Optional, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class ResponseEnvelope(BaseModel, Generic[T]):
    """统一外层结构 ``{msg, data, code}``。"""

    msg: str
    data: Optional[T] = None
    code: int
    meta: Optional[Dict[str, Any]] = None


class FolderCreateBody(BaseModel):
    name: str = Field(..., min_length=1)
    parentId: Optional[str] = None


class RenameBody(BaseModel):
    name: str = Field(..., min_length=1)
    keepExtension: bool = False  # 为 True 时 name 视为主名，保留文件原扩展名


class MoveBody(BaseModel):
    nodeId: str
    targetFolderId: Optional[str] = None  # None 表示移动到根级


class DeleteBody(BaseModel):
    ids: list[str] = Field(..., min_length=1)


class DropBody(BaseModel):
    """服务端重放一次放下事件。

    ``node`` 为内部拖拽时携带的节点记录（与列表返回的记录同形）；
    外部文件拖入请使用 multipart 上传接口 ``POST /files?folderId=``。
    """

    node: Optional[dict[str, Any]] = None
    targetId: Optional[str] = None
    currentFolderId: Optional[str] = None


class FileNodeOut(BaseModel):
    id: str
    name: str
    file_path: Optional[str] = None
    file_size: int = 0
    mime_type: Optional[str] = None
    is_folder: bool
    parent_folder_id: Optional[str] = None
    storage_path: Optional[str] = None
    created_at: Optional[str] = None
    is_employee_handbook: bool = False
    is_annual_training: bool = False


class BreadcrumbOut(BaseModel):
    id: str
    name: str


class FolderViewOut(BaseModel):
    folderId: Optional[str] = None
    items: list[FileNodeOut] = Field(default_factory=list)
    breadcrumbs: list[BreadcrumbOut] = Field(default_factory=list)
    folders: list[FileNodeOut] = Field(default_factory=list)
    error: Optional[str] = None


FolderViewResponse = ResponseEnvelope[FolderViewOut]
FoldersResponse = ResponseEnvelope[list[FileNodeOut]]
FileNodeResponse = ResponseEnvelope[FileNodeOut]
FilesMutationResponse = ResponseEnvelope[Any]
UploadProgressResponse = ResponseEnvelope[dict[str, int]]
PreviewUrlResponse = ResponseEnvelope[dict[str, str]]
