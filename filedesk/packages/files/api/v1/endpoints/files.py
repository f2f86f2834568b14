"""文件与文件夹操作路由。

操作层只返回成功信号，本模块负责把信号映射为状态码：
节点不存在 404，参数非法或移动被拒绝 400，元数据后端不可用 503。
"""

from __future__ import annotations

import json
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status
from fastapi.responses import Response
from starlette.concurrency import run_in_threadpool

from filedesk.packages.files.api.v1.schemas.files import (
    DeleteBody,
    DropBody,
    FileNodeResponse,
    FilesMutationResponse,
    FolderCreateBody,
    FolderViewResponse,
    FoldersResponse,
    MoveBody,
    PreviewUrlResponse,
    RenameBody,
    UploadProgressResponse,
)
from filedesk.packages.files.core.constants import (
    DEFAULT_MIME_TYPE,
    FILE_FLAG_COLUMNS,
    HTTP_STATUS_BAD_REQUEST,
    HTTP_STATUS_NOT_FOUND,
    HTTP_STATUS_OK,
    HTTP_STATUS_SERVICE_UNAVAILABLE,
    INTERNAL_DRAG_MIME,
)
from filedesk.packages.files.core.dependencies import get_blob_store, get_file_manager, get_progress_store
from filedesk.packages.files.core.exceptions import AppException, FetchError
from filedesk.packages.files.core.logger import get_logger
from filedesk.packages.files.core.responses import create_response
from filedesk.packages.files.core.security import decode_and_verify_token
from filedesk.packages.files.models.file_node import FileNode
from filedesk.packages.files.services.drag_drop import DragPayload
from filedesk.packages.files.services.file_service import FileManagerService
from filedesk.packages.files.services.storage_backends import BLOB_READ_PURPOSE, BlobStore
from filedesk.packages.files.services.upload_coordinator import IncomingFile
from filedesk.packages.files.services.upload_progress import UploadProgressStore
from filedesk.packages.files.utils.file_names import guess_mime_type

logger = get_logger("api.files")

router = APIRouter(tags=["files"])


def _require_node(manager: FileManagerService, node_id: str) -> FileNode:
    try:
        node = manager.get_node(node_id)
    except FetchError as exc:
        raise AppException(str(exc), HTTP_STATUS_SERVICE_UNAVAILABLE) from exc
    if node is None:
        raise AppException("文件或文件夹不存在", HTTP_STATUS_NOT_FOUND)
    return node


def _require_folder(manager: FileManagerService, folder_id: Optional[str]) -> None:
    """``None`` 表示根目录，总是存在。"""
    if folder_id is None:
        return
    try:
        folder = manager.get_folder(folder_id)
    except FetchError as exc:
        raise AppException(str(exc), HTTP_STATUS_SERVICE_UNAVAILABLE) from exc
    if folder is None:
        raise AppException("文件夹不存在", HTTP_STATUS_NOT_FOUND)


def _attachment(filename: str) -> str:
    return f"attachment; filename*=UTF-8''{quote(filename)}"


# ----------------------------
# 查询
# ----------------------------
@router.get("/files", response_model=FolderViewResponse)
def open_folder(
    folder_id: Optional[str] = Query(None, alias="folderId"),
    manager: FileManagerService = Depends(get_file_manager),
):
    """当前文件夹的直接子节点（文件夹在前）、面包屑与全量文件夹集合。"""
    view = manager.open_folder(folder_id)
    if view.error:
        raise AppException(view.error, HTTP_STATUS_SERVICE_UNAVAILABLE, data=view.to_dict())
    if folder_id is not None and not view.breadcrumbs:
        raise AppException("文件夹不存在", HTTP_STATUS_NOT_FOUND)
    return create_response("获取文件列表成功", view.to_dict(), HTTP_STATUS_OK)


@router.get("/folders", response_model=FoldersResponse)
def list_folders(manager: FileManagerService = Depends(get_file_manager)):
    try:
        folders = manager.store.list_all_folders()
    except FetchError as exc:
        raise AppException(str(exc), HTTP_STATUS_SERVICE_UNAVAILABLE) from exc
    return create_response("获取文件夹成功", [f.to_record() for f in folders], HTTP_STATUS_OK)


# ----------------------------
# 变更
# ----------------------------
@router.post("/folders", response_model=FileNodeResponse)
def create_folder(
    payload: FolderCreateBody,
    manager: FileManagerService = Depends(get_file_manager),
):
    _require_folder(manager, payload.parentId)
    node = manager.create_folder(payload.name, payload.parentId)
    if node is None:
        raise AppException("创建文件夹失败", HTTP_STATUS_BAD_REQUEST)
    return create_response("创建文件夹成功", node.to_record(), HTTP_STATUS_OK)


@router.patch("/files/{node_id}", response_model=FilesMutationResponse)
def rename(
    node_id: str,
    payload: RenameBody,
    manager: FileManagerService = Depends(get_file_manager),
):
    _require_node(manager, node_id)
    if not manager.rename(node_id, payload.name, keep_extension=payload.keepExtension):
        raise AppException("重命名失败", HTTP_STATUS_BAD_REQUEST)
    return create_response("重命名成功", _require_node(manager, node_id).to_record(), HTTP_STATUS_OK)


@router.post("/files/move", response_model=FilesMutationResponse)
def move(
    payload: MoveBody,
    manager: FileManagerService = Depends(get_file_manager),
):
    _require_node(manager, payload.nodeId)
    _require_folder(manager, payload.targetFolderId)
    if not manager.move(payload.nodeId, payload.targetFolderId):
        raise AppException("移动被拒绝", HTTP_STATUS_BAD_REQUEST)
    return create_response(
        "移动成功",
        {"nodeId": payload.nodeId, "targetFolderId": payload.targetFolderId},
        HTTP_STATUS_OK,
    )


@router.delete("/files", response_model=FilesMutationResponse)
def delete_items(
    payload: DeleteBody,
    manager: FileManagerService = Depends(get_file_manager),
):
    """对象删除失败不影响元数据删除，只记录告警。"""
    if not manager.delete(payload.ids):
        raise AppException("删除失败：未找到可删除的节点", HTTP_STATUS_NOT_FOUND)
    return create_response("删除成功", {"ids": payload.ids}, HTTP_STATUS_OK)


@router.put("/files/{node_id}/flags/{flag}", response_model=FilesMutationResponse)
def assign_flag(
    node_id: str,
    flag: str,
    manager: FileManagerService = Depends(get_file_manager),
):
    if flag not in FILE_FLAG_COLUMNS:
        raise AppException("未知的标记类别", HTTP_STATUS_BAD_REQUEST)
    node = _require_node(manager, node_id)
    if node.is_folder:
        raise AppException("文件夹不能设置标记", HTTP_STATUS_BAD_REQUEST)
    if not manager.assign_flag(node_id, flag):
        raise AppException("设置标记失败", HTTP_STATUS_BAD_REQUEST)
    return create_response("设置标记成功", {"nodeId": node_id, "flag": flag}, HTTP_STATUS_OK)


@router.delete("/files/{node_id}/flags/{flag}", response_model=FilesMutationResponse)
def remove_flag(
    node_id: str,
    flag: str,
    manager: FileManagerService = Depends(get_file_manager),
):
    if flag not in FILE_FLAG_COLUMNS:
        raise AppException("未知的标记类别", HTTP_STATUS_BAD_REQUEST)
    _require_node(manager, node_id)
    if not manager.remove_flag(node_id, flag):
        raise AppException("移除标记失败", HTTP_STATUS_BAD_REQUEST)
    return create_response("移除标记成功", {"nodeId": node_id, "flag": flag}, HTTP_STATUS_OK)


# ----------------------------
# 上传与拖拽
# ----------------------------
@router.post("/files", response_model=FilesMutationResponse)
async def upload_files(
    folder_id: Optional[str] = Query(None, alias="folderId"),
    batch_id: Optional[str] = Query(None, alias="batchId", description="可选，客户端据此轮询进度"),
    files: list[UploadFile] = File(...),
    manager: FileManagerService = Depends(get_file_manager),
):
    """依次上传到 ``folderId``（缺省为根目录），单个文件失败不影响其它文件。

    写对象与提交元数据都是阻塞调用，放到线程池执行，事件循环可以继续响应进度轮询。
    """
    await run_in_threadpool(_require_folder, manager, folder_id)
    incoming: list[IncomingFile] = []
    for up in files:
        content = await up.read()
        incoming.append(IncomingFile(name=up.filename or "file", content=content, mime_type=up.content_type))
    result = await run_in_threadpool(manager.upload, incoming, folder_id, batch_id=batch_id)
    msg = "上传完成" if result.ok else "部分文件上传失败"
    return create_response(msg, result.to_dict(), HTTP_STATUS_OK)


@router.get("/files/uploads/{batch_id}/progress", response_model=UploadProgressResponse)
def upload_progress(
    batch_id: str,
    progress_store: UploadProgressStore = Depends(get_progress_store),
):
    return create_response("获取上传进度成功", progress_store.get(batch_id), HTTP_STATUS_OK)


@router.post("/files/drop", response_model=FilesMutationResponse)
def drop(
    payload: DropBody,
    manager: FileManagerService = Depends(get_file_manager),
):
    """内部拖拽放下：被拒绝的移动不是错误，``accepted=false`` 原样返回。"""
    if not payload.node or not payload.node.get("id"):
        raise AppException("拖拽载荷缺少节点", HTTP_STATUS_BAD_REQUEST)
    drag_payload = DragPayload(data={INTERNAL_DRAG_MIME: json.dumps(payload.node, ensure_ascii=False)})
    outcome = manager.drop(drag_payload, payload.targetId, payload.currentFolderId)
    return create_response("拖拽处理完成", outcome.to_dict(), HTTP_STATUS_OK)


# ----------------------------
# 读取对象
# ----------------------------
@router.get("/files/{node_id}/download")
def download_file(
    node_id: str,
    manager: FileManagerService = Depends(get_file_manager),
):
    _require_node(manager, node_id)
    result = manager.download(node_id)
    if result is None:
        raise AppException("文件内容不存在", HTTP_STATUS_NOT_FOUND)
    name, content, mime_type = result
    return Response(
        content=content,
        media_type=mime_type or DEFAULT_MIME_TYPE,
        headers={"Content-Disposition": _attachment(name)},
    )


@router.get("/files/{node_id}/preview-url", response_model=PreviewUrlResponse)
def preview_url(
    node_id: str,
    ttl: Optional[int] = Query(None, ge=1, le=7 * 24 * 3600, description="有效期（秒），默认 3600"),
    manager: FileManagerService = Depends(get_file_manager),
):
    node = _require_node(manager, node_id)
    if node.is_folder:
        raise AppException("文件夹没有预览链接", HTTP_STATUS_BAD_REQUEST)
    url = manager.preview_url(node_id, ttl)
    if url is None:
        raise AppException("生成预览链接失败", HTTP_STATUS_NOT_FOUND)
    return create_response("获取预览链接成功", {"url": url}, HTTP_STATUS_OK)


@router.get("/files/blob")
def read_signed_blob(
    t: str = Query(..., alias="t", description="短期签名 token"),
    blob_store: BlobStore = Depends(get_blob_store),
):
    """本地存储的临时直链回源。"""
    payload = decode_and_verify_token(t, verify_exp=True)
    if not payload or payload.get("purpose") != BLOB_READ_PURPOSE:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="签名无效或已过期")
    key = payload.get("key")
    if not isinstance(key, str) or not key:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="签名载荷不完整")
    try:
        content = blob_store.get_object(key)
    except FileNotFoundError as exc:
        raise AppException("文件内容不存在", HTTP_STATUS_NOT_FOUND) from exc
    filename = payload.get("filename") or key
    return Response(
        content=content,
        media_type=guess_mime_type(filename),
        headers={"Content-Disposition": _attachment(filename)},
    )


# ----------------------------
# 孤儿对象清理
# ----------------------------
@router.get("/files/orphans", response_model=FilesMutationResponse)
def list_orphans(manager: FileManagerService = Depends(get_file_manager)):
    return create_response("获取孤儿对象成功", {"keys": manager.find_orphan_blobs()}, HTTP_STATUS_OK)


@router.post("/files/orphans/sweep", response_model=FilesMutationResponse)
def sweep_orphans(manager: FileManagerService = Depends(get_file_manager)):
    removed = manager.sweep_orphan_blobs()
    logger.info("Orphan sweep requested, %s blob(s) removed", len(removed))
    return create_response("清理完成", {"removed": removed}, HTTP_STATUS_OK)
