"""对象存储抽象与实现：统一封装本地目录与 S3 的二进制对象读写。

对象存储只认识不透明的 key（即节点的 ``storage_path``），与文件夹层级无关；
层级关系完全由元数据表维护。
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, List, Optional
from urllib.parse import urlencode

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from filedesk.packages.files.core.config import Settings, get_settings
from filedesk.packages.files.core.constants import DEFAULT_MIME_TYPE, HTTP_STATUS_BAD_REQUEST
from filedesk.packages.files.core.exceptions import AppException
from filedesk.packages.files.core.logger import get_logger
from filedesk.packages.files.core.security import create_temporary_token

logger = get_logger("storage")

BLOB_READ_PURPOSE = "blob_read"


class BlobStore:
    """对象存储接口。"""

    def put_object(self, key: str, data: bytes, *, content_type: Optional[str] = None) -> None:
        raise NotImplementedError

    def get_object(self, key: str) -> bytes:
        raise NotImplementedError

    def get_temporary_read_url(self, key: str, ttl_seconds: int, *, filename: Optional[str] = None) -> str:
        raise NotImplementedError

    def remove_objects(self, keys: Iterable[str]) -> List[str]:
        """逐个删除对象，返回未能删除的 key 列表（尽力而为，不抛异常）。"""
        raise NotImplementedError

    def list_keys(self) -> List[str]:
        raise NotImplementedError


# ------------------------------------------
# 本地文件系统实现
# ------------------------------------------


class LocalBlobStore(BlobStore):
    def __init__(self, root: str | Path, *, url_prefix: str = "/api/v1"):
        self.root = Path(root).resolve()
        self.url_prefix = url_prefix.rstrip("/")
        self.root.mkdir(parents=True, exist_ok=True)

    # 统一的安全路径拼接，防止路径遍历
    def _resolve(self, key: str) -> Path:
        key_norm = (key or "").strip().lstrip("/")
        if not key_norm:
            raise AppException("非法对象 key", HTTP_STATUS_BAD_REQUEST)
        candidate = (self.root / key_norm).resolve()
        try:
            candidate.relative_to(self.root)
        except ValueError as exc:
            raise AppException("非法路径: 越权访问", HTTP_STATUS_BAD_REQUEST) from exc
        return candidate

    def put_object(self, key: str, data: bytes, *, content_type: Optional[str] = None) -> None:
        target = self._resolve(key)
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "wb") as f:
            f.write(data)
        logger.debug("Local blob written: %s (%s bytes)", key, len(data))

    def get_object(self, key: str) -> bytes:
        target = self._resolve(key)
        with open(target, "rb") as f:
            return f.read()

    def get_temporary_read_url(self, key: str, ttl_seconds: int, *, filename: Optional[str] = None) -> str:
        # 本地存储无原生签名能力：签发短期 JWT，由 /files/blob 接口校验后回源
        token = create_temporary_token(
            {"purpose": BLOB_READ_PURPOSE, "key": key, "filename": filename},
            expires_seconds=ttl_seconds,
        )
        return f"{self.url_prefix}/files/blob?{urlencode({'t': token})}"

    def remove_objects(self, keys: Iterable[str]) -> List[str]:
        failed: list[str] = []
        for key in keys:
            try:
                self._resolve(key).unlink()
            except FileNotFoundError:
                # 允许幂等：不存在则忽略
                continue
            except (OSError, AppException):
                logger.warning("Local blob removal failed: %s", key, exc_info=True)
                failed.append(key)
        return failed

    def list_keys(self) -> List[str]:
        return sorted(
            str(p.relative_to(self.root)).replace("\\", "/")
            for p in self.root.rglob("*")
            if p.is_file()
        )


# ------------------------------------------
# S3 实现（boto3）
# ------------------------------------------


class S3BlobStore(BlobStore):
    def __init__(
        self,
        *,
        bucket: str,
        region: Optional[str] = None,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        prefix: Optional[str] = None,
        client=None,
    ):
        self.bucket = bucket
        self.prefix = (prefix or "").strip("/")
        self._client = client or boto3.client(
            "s3",
            region_name=region,
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
        )

    # 拼接基于 path_prefix 的对象 key
    def _join_key(self, key: str) -> str:
        key_norm = key.lstrip("/")
        return f"{self.prefix}/{key_norm}" if self.prefix else key_norm

    def _strip_prefix(self, full_key: str) -> str:
        if self.prefix and full_key.startswith(self.prefix + "/"):
            return full_key[len(self.prefix) + 1 :]
        return full_key

    def put_object(self, key: str, data: bytes, *, content_type: Optional[str] = None) -> None:
        self._client.put_object(
            Bucket=self.bucket,
            Key=self._join_key(key),
            Body=data,
            ContentType=content_type or DEFAULT_MIME_TYPE,
        )

    def get_object(self, key: str) -> bytes:
        resp = self._client.get_object(Bucket=self.bucket, Key=self._join_key(key))
        return resp["Body"].read()

    def get_temporary_read_url(self, key: str, ttl_seconds: int, *, filename: Optional[str] = None) -> str:
        params = {"Bucket": self.bucket, "Key": self._join_key(key)}
        if filename:
            params["ResponseContentDisposition"] = f"attachment; filename=\"{filename}\""
        return self._client.generate_presigned_url("get_object", Params=params, ExpiresIn=int(ttl_seconds))

    def remove_objects(self, keys: Iterable[str]) -> List[str]:
        key_list = [k for k in keys if k]
        failed: list[str] = []
        # 批量删除（分批防止一次过多）
        for i in range(0, len(key_list), 1000):
            batch = key_list[i : i + 1000]
            try:
                resp = self._client.delete_objects(
                    Bucket=self.bucket,
                    Delete={"Objects": [{"Key": self._join_key(k)} for k in batch]},
                )
            except (BotoCoreError, ClientError):
                logger.warning("S3 batch delete failed for %s keys", len(batch), exc_info=True)
                failed.extend(batch)
                continue
            for err in resp.get("Errors", []):
                failed.append(self._strip_prefix(err.get("Key", "")))
        return failed

    def list_keys(self) -> List[str]:
        keys: list[str] = []
        paginator = self._client.get_paginator("list_objects_v2")
        prefix = f"{self.prefix}/" if self.prefix else ""
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
            for obj in page.get("Contents", []):
                keys.append(self._strip_prefix(obj["Key"]))
        return keys


def build_blob_store(settings: Optional[Settings] = None) -> BlobStore:
    settings = settings or get_settings()
    t = (settings.storage_type or "").upper()
    if t == "LOCAL":
        return LocalBlobStore(settings.local_storage_path, url_prefix=settings.api_v1_str)
    if t == "S3":
        if not settings.s3_bucket:
            raise AppException("S3 配置不完整", HTTP_STATUS_BAD_REQUEST)
        return S3BlobStore(
            bucket=settings.s3_bucket,
            region=settings.s3_region,
            access_key_id=settings.s3_access_key_id,
            secret_access_key=settings.s3_secret_access_key,
            endpoint_url=settings.s3_endpoint_url,
            prefix=settings.s3_path_prefix,
        )
    raise AppException("不支持的存储类型", HTTP_STATUS_BAD_REQUEST)
