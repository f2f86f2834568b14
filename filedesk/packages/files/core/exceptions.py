"""异常处理模块：定义文件管理领域异常、统一的业务异常与响应格式。"""

from typing import Any, Optional

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


class AppException(HTTPException):
    """携带统一响应结构的业务异常，方便在全局处理中转换响应体。"""

    def __init__(self, msg: str, code: int = status.HTTP_400_BAD_REQUEST, data=None) -> None:
        super().__init__(status_code=code, detail=msg)
        self.data = data


class FileManagerError(Exception):
    """文件管理领域异常基类。"""


class FetchError(FileManagerError):
    """列表或读取元数据失败（后端不可达等）。"""


class UploadError(FileManagerError):
    """对象写入失败，仅中止当前文件。"""

    def __init__(self, storage_key: str, reason: Optional[str] = None) -> None:
        self.storage_key = storage_key
        super().__init__(f"Failed to write blob {storage_key}: {reason or 'unknown error'}")


class InsertError(FileManagerError):
    """对象已写入但元数据记录创建失败，遗留孤儿对象。"""

    def __init__(self, storage_key: str, reason: Optional[str] = None) -> None:
        self.storage_key = storage_key
        super().__init__(f"Failed to insert record for blob {storage_key}: {reason or 'unknown error'}")


class MoveRejected(FileManagerError):
    """移动校验未通过：静默不执行，仅记录日志。"""

    def __init__(self, node_id: str, target_id: Optional[str], reason: str) -> None:
        self.node_id = node_id
        self.target_id = target_id
        self.reason = reason
        super().__init__(f"Move of {node_id} to {target_id or 'root'} rejected: {reason}")


class PartialDeleteWarning(FileManagerError):
    """批量删除时部分对象未能移除；元数据仍会删除，整体视为成功。"""

    def __init__(self, failed_keys: list[str]) -> None:
        self.failed_keys = list(failed_keys)
        super().__init__(f"{len(self.failed_keys)} blob(s) could not be removed: {', '.join(self.failed_keys)}")


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:  # pragma: no cover - framework glue
    """将 FastAPI 的 ``HTTPException`` 转换为统一响应格式。"""
    payload = {"msg": exc.detail, "data": getattr(exc, "data", None), "code": exc.status_code}
    return JSONResponse(status_code=exc.status_code, content=payload)


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:  # pragma: no cover - framework glue
    """兜底处理：将未捕获异常转换为标准的 500 响应结构。"""
    payload = {
        "msg": "服务器内部错误",
        "data": None,
        "code": status.HTTP_500_INTERNAL_SERVER_ERROR,
    }
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=payload)


def _serialize_errors(obj: Any) -> Any:
    if isinstance(obj, Exception):
        return str(obj)
    if isinstance(obj, dict):
        return {key: _serialize_errors(value) for key, value in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_serialize_errors(item) for item in obj]
    return obj


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:  # pragma: no cover - framework glue
    """请求参数校验失败：422，``data`` 中携带可序列化的错误明细。"""
    payload = {
        "msg": "请求参数验证失败",
        "data": _serialize_errors(exc.errors()),
        "code": status.HTTP_422_UNPROCESSABLE_ENTITY,
    }
    return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=payload)
