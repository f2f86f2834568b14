"""对象存储实现：本地目录与 S3（注入假客户端）。"""

import io

import pytest
from botocore.exceptions import ClientError

from filedesk.packages.files.core.exceptions import AppException
from filedesk.packages.files.core.security import decode_and_verify_token
from filedesk.packages.files.services.storage_backends import BLOB_READ_PURPOSE, LocalBlobStore, S3BlobStore
from filedesk.packages.files.utils.file_names import (
    generate_storage_key,
    parse_file_name_and_extension,
    storage_key_timestamp_ms,
)


class _FakeS3Client:
    def __init__(self, fail_keys=(), raise_on_delete=False):
        self.objects = {}
        self.fail_keys = set(fail_keys)
        self.raise_on_delete = raise_on_delete

    def put_object(self, Bucket, Key, Body, ContentType):
        self.objects[Key] = (Body, ContentType)

    def get_object(self, Bucket, Key):
        return {"Body": io.BytesIO(self.objects[Key][0])}

    def delete_objects(self, Bucket, Delete):
        if self.raise_on_delete:
            raise ClientError({"Error": {"Code": "503", "Message": "Slow Down"}}, "DeleteObjects")
        errors = []
        for obj in Delete["Objects"]:
            if obj["Key"] in self.fail_keys:
                errors.append({"Key": obj["Key"], "Code": "AccessDenied"})
            else:
                self.objects.pop(obj["Key"], None)
        return {"Errors": errors}

    def generate_presigned_url(self, op, Params, ExpiresIn):
        return f"https://s3.example/{Params['Bucket']}/{Params['Key']}?expires={ExpiresIn}"


def test_local_round_trip_and_listing(tmp_path):
    store = LocalBlobStore(tmp_path)
    store.put_object("k1_a.txt", b"abc")
    store.put_object("k2_b.txt", b"def")

    assert store.get_object("k1_a.txt") == b"abc"
    assert store.list_keys() == ["k1_a.txt", "k2_b.txt"]
    assert store.remove_objects(["k1_a.txt", "never-existed"]) == []
    assert store.list_keys() == ["k2_b.txt"]


def test_local_rejects_path_traversal(tmp_path):
    store = LocalBlobStore(tmp_path / "root")
    with pytest.raises(AppException):
        store.put_object("../escape.txt", b"x")
    assert store.remove_objects(["../escape.txt"]) == ["../escape.txt"]


def test_local_temporary_url_is_signed(tmp_path):
    store = LocalBlobStore(tmp_path, url_prefix="/api/v1/")
    url = store.get_temporary_read_url("k_a.txt", 60, filename="a.txt")

    assert url.startswith("/api/v1/files/blob?t=")
    payload = decode_and_verify_token(url.split("t=", 1)[1])
    assert payload["purpose"] == BLOB_READ_PURPOSE
    assert (payload["key"], payload["filename"]) == ("k_a.txt", "a.txt")


def test_s3_prefix_and_partial_delete():
    client = _FakeS3Client(fail_keys={"tenant/bad"})
    store = S3BlobStore(bucket="files", prefix="/tenant/", client=client)

    store.put_object("good", b"1", content_type="text/plain")
    store.put_object("bad", b"2")
    assert store.get_object("good") == b"1"
    assert client.objects["tenant/bad"][1] == "application/octet-stream"

    assert store.remove_objects(["good", "bad"]) == ["bad"]
    assert "tenant/good" not in client.objects


def test_s3_delete_error_reports_whole_batch():
    store = S3BlobStore(bucket="files", client=_FakeS3Client(raise_on_delete=True))
    assert store.remove_objects(["a", "b"]) == ["a", "b"]


def test_s3_presigned_url():
    store = S3BlobStore(bucket="files", prefix="p", client=_FakeS3Client())
    assert store.get_temporary_read_url("k", 3600) == "https://s3.example/files/p/k?expires=3600"


def test_storage_key_and_extension_helpers():
    key = generate_storage_key("../My Report (final).pdf", timestamp_ms=1700000000000)
    random_part, ts, name = key.split("_", 2)
    assert len(random_part) == 32
    assert ts == "1700000000000"
    assert name == "My_Report_final_.pdf"
    assert storage_key_timestamp_ms(key) == 1700000000000
    assert storage_key_timestamp_ms("legacy.bin") is None
    assert storage_key_timestamp_ms("stray_x_y.bin") is None

    assert parse_file_name_and_extension("report.final.pdf") == ("report.final", ".pdf")
    assert parse_file_name_and_extension("README") == ("README", "")
    assert parse_file_name_and_extension(".env") == (".env", "")
