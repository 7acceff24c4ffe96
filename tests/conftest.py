"""
Test configuration and fixtures.
Store calls are served by an in-memory fake of the boto3 S3 client that
raises real botocore errors, so no MinIO instance is needed.
"""
import hashlib
import io
import os
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("LOG_FORMAT", "text")

import pytest
from botocore.exceptions import ClientError
from httpx import ASGITransport, AsyncClient

from upload_gateway.core.config import Settings
from upload_gateway.core.dependencies import GatewayServices, build_services
from upload_gateway.integrations.object_storage_client import ObjectStoreClient, StorageConfig

MIB = 1024 * 1024


def client_error(code: str, status: int, operation: str = "Operation") -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": f"{code} (fake)"},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        operation,
    )


class FakeBody:
    """Stands in for botocore's StreamingBody."""

    def __init__(self, data: bytes):
        self._stream = io.BytesIO(data)
        self.closed = False

    def read(self, size: int = -1) -> bytes:
        return self._stream.read(size)

    def close(self) -> None:
        self.closed = True


class FakeS3Client:
    """
    In-memory S3 client.

    ``fail_on[operation]`` holds an exception to raise (or a callable that
    receives the call kwargs and may raise); ``hooks[operation]`` runs before
    the operation, e.g. to sleep.
    """

    def __init__(self, page_size: int = 1000):
        self.buckets: set = set()
        self.objects: Dict[str, Dict[str, Any]] = {}
        self.multipart: Dict[str, Dict[str, Any]] = {}
        self.calls: List[str] = []
        self.fail_on: Dict[str, Any] = {}
        self.hooks: Dict[str, Callable[..., None]] = {}
        self.page_size = page_size
        self.closed = False
        self._lock = threading.Lock()

    # helpers
    def _enter(self, operation: str, **kwargs: Any) -> None:
        with self._lock:
            self.calls.append(operation)
        hook = self.hooks.get(operation)
        if hook is not None:
            hook(**kwargs)
        failure = self.fail_on.get(operation)
        if failure is None:
            return
        if isinstance(failure, BaseException):
            raise failure
        failure(**kwargs)

    def calls_to(self, operation: str) -> int:
        return self.calls.count(operation)

    def put(self, key: str, data: bytes, content_type: str = "application/octet-stream",
            metadata: Optional[Dict[str, str]] = None,
            last_modified: Optional[datetime] = None) -> None:
        """Seed an object directly, bypassing call tracking."""
        self.objects[key] = {
            "Body": bytes(data),
            "ContentType": content_type,
            "Metadata": dict(metadata or {}),
            "LastModified": last_modified or datetime.now(timezone.utc),
            "ETag": f'"{hashlib.md5(data).hexdigest()}"',
        }

    def _missing_object(self, operation: str) -> ClientError:
        return client_error("404", 404, operation)

    # bucket operations
    def head_bucket(self, Bucket: str) -> Dict[str, Any]:
        self._enter("head_bucket", Bucket=Bucket)
        if Bucket not in self.buckets:
            raise client_error("404", 404, "HeadBucket")
        return {}

    def create_bucket(self, Bucket: str, **kwargs: Any) -> Dict[str, Any]:
        self._enter("create_bucket", Bucket=Bucket, **kwargs)
        self.create_bucket_kwargs = kwargs
        if Bucket in self.buckets:
            raise client_error("BucketAlreadyOwnedByYou", 409, "CreateBucket")
        self.buckets.add(Bucket)
        return {}

    # object operations
    def put_object(self, Bucket: str, Key: str, Body: bytes, ContentType: str = "",
                   Metadata: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        self._enter("put_object", Bucket=Bucket, Key=Key)
        with self._lock:
            self.put(Key, Body, ContentType, Metadata)
            return {"ETag": self.objects[Key]["ETag"]}

    def head_object(self, Bucket: str, Key: str) -> Dict[str, Any]:
        self._enter("head_object", Bucket=Bucket, Key=Key)
        obj = self.objects.get(Key)
        if obj is None:
            raise self._missing_object("HeadObject")
        return {
            "ContentLength": len(obj["Body"]),
            "ContentType": obj["ContentType"],
            "LastModified": obj["LastModified"],
            "ETag": obj["ETag"],
            "Metadata": dict(obj["Metadata"]),
        }

    def get_object(self, Bucket: str, Key: str) -> Dict[str, Any]:
        self._enter("get_object", Bucket=Bucket, Key=Key)
        obj = self.objects.get(Key)
        if obj is None:
            raise client_error("NoSuchKey", 404, "GetObject")
        return {
            "ContentLength": len(obj["Body"]),
            "ContentType": obj["ContentType"],
            "LastModified": obj["LastModified"],
            "ETag": obj["ETag"],
            "Metadata": dict(obj["Metadata"]),
            "Body": FakeBody(obj["Body"]),
        }

    def delete_object(self, Bucket: str, Key: str) -> Dict[str, Any]:
        self._enter("delete_object", Bucket=Bucket, Key=Key)
        with self._lock:
            self.objects.pop(Key, None)
        return {}

    def list_objects_v2(self, Bucket: str, Prefix: str = "", MaxKeys: int = 1000,
                        ContinuationToken: Optional[str] = None) -> Dict[str, Any]:
        self._enter("list_objects_v2", Bucket=Bucket, Prefix=Prefix)
        keys = sorted(k for k in self.objects if k.startswith(Prefix))
        start = int(ContinuationToken or 0)
        page = keys[start:start + min(MaxKeys, self.page_size)]
        end = start + len(page)
        response: Dict[str, Any] = {
            "Contents": [
                {
                    "Key": key,
                    "Size": len(self.objects[key]["Body"]),
                    "LastModified": self.objects[key]["LastModified"],
                    "ETag": self.objects[key]["ETag"],
                }
                for key in page
            ],
            "IsTruncated": end < len(keys),
        }
        if end < len(keys):
            response["NextContinuationToken"] = str(end)
        return response

    # multipart operations
    def create_multipart_upload(self, Bucket: str, Key: str, ContentType: str = "",
                                Metadata: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        self._enter("create_multipart_upload", Bucket=Bucket, Key=Key)
        upload_id = uuid.uuid4().hex
        with self._lock:
            self.multipart[upload_id] = {
                "Key": Key,
                "ContentType": ContentType,
                "Metadata": dict(Metadata or {}),
                "Parts": {},
                "Initiated": datetime.now(timezone.utc),
            }
        return {"UploadId": upload_id}

    def upload_part(self, Bucket: str, Key: str, UploadId: str, PartNumber: int,
                    Body: bytes) -> Dict[str, Any]:
        self._enter("upload_part", Bucket=Bucket, Key=Key, UploadId=UploadId, PartNumber=PartNumber)
        with self._lock:
            session = self.multipart.get(UploadId)
            if session is None:
                raise client_error("NoSuchUpload", 404, "UploadPart")
            session["Parts"][PartNumber] = bytes(Body)
        return {"ETag": f'"{hashlib.md5(Body).hexdigest()}"'}

    def complete_multipart_upload(self, Bucket: str, Key: str, UploadId: str,
                                  MultipartUpload: Dict[str, Any]) -> Dict[str, Any]:
        self._enter("complete_multipart_upload", Bucket=Bucket, Key=Key, UploadId=UploadId)
        parts = MultipartUpload["Parts"]
        numbers = [p["PartNumber"] for p in parts]
        if numbers != sorted(numbers):
            raise client_error("InvalidPartOrder", 400, "CompleteMultipartUpload")
        with self._lock:
            session = self.multipart.pop(UploadId, None)
            if session is None:
                raise client_error("NoSuchUpload", 404, "CompleteMultipartUpload")
            data = b"".join(session["Parts"][n] for n in numbers)
            self.put(Key, data, session["ContentType"], session["Metadata"])
        return {"ETag": f'"{hashlib.md5(data).hexdigest()}-{len(parts)}"'}

    def abort_multipart_upload(self, Bucket: str, Key: str, UploadId: str) -> Dict[str, Any]:
        self._enter("abort_multipart_upload", Bucket=Bucket, Key=Key, UploadId=UploadId)
        with self._lock:
            if self.multipart.pop(UploadId, None) is None:
                raise client_error("NoSuchUpload", 404, "AbortMultipartUpload")
        return {}

    def list_parts(self, Bucket: str, Key: str, UploadId: str, **kwargs: Any) -> Dict[str, Any]:
        self._enter("list_parts", Bucket=Bucket, Key=Key, UploadId=UploadId)
        with self._lock:
            session = self.multipart.get(UploadId)
            if session is None:
                raise client_error("NoSuchUpload", 404, "ListParts")
            parts = [
                {"PartNumber": n, "Size": len(body)} for n, body in sorted(session["Parts"].items())
            ]
        return {"Parts": parts, "IsTruncated": False}

    def list_multipart_uploads(self, Bucket: str, Prefix: str = "", **kwargs: Any) -> Dict[str, Any]:
        self._enter("list_multipart_uploads", Bucket=Bucket, Prefix=Prefix)
        return {
            "Uploads": [
                {"Key": s["Key"], "UploadId": upload_id, "Initiated": s["Initiated"]}
                for upload_id, s in self.multipart.items()
                if s["Key"].startswith(Prefix)
            ],
            "IsTruncated": False,
        }

    # signing
    def generate_presigned_url(self, ClientMethod: str, Params: Dict[str, Any],
                               ExpiresIn: int) -> str:
        self._enter("generate_presigned_url", ClientMethod=ClientMethod, Params=Params)
        return (
            f"https://fake-s3.local/{Params['Bucket']}/{Params['Key']}"
            f"?X-Amz-Expires={ExpiresIn}&op={ClientMethod}"
        )

    def close(self) -> None:
        self.closed = True


def make_settings(tmp_path, **overrides: Any) -> Settings:
    values: Dict[str, Any] = {
        "environment": "test",
        "log_format": "text",
        "storage_bucket": "test-uploads",
        "public_base_url": "http://test",
        "temp_upload_dir": str(tmp_path / "staging"),
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointing at a per-test staging directory."""
    return make_settings(tmp_path)


@pytest.fixture
def fake_s3() -> FakeS3Client:
    """Empty in-memory store; the bucket is created on connect."""
    return FakeS3Client()


@pytest.fixture
async def store(settings: Settings, fake_s3: FakeS3Client) -> ObjectStoreClient:
    """Connected store client backed by the fake."""
    return await ObjectStoreClient.connect(StorageConfig.from_settings(settings), s3_client=fake_s3)


@pytest.fixture
def services(settings: Settings, store: ObjectStoreClient) -> GatewayServices:
    """All gateway components wired around the fake store."""
    return build_services(settings, store)


@pytest.fixture
async def app(settings: Settings, fake_s3: FakeS3Client):
    """Application with its lifespan running."""
    from upload_gateway.main import create_app

    application = create_app(settings, s3_client=fake_s3)
    async with application.router.lifespan_context(application):
        yield application


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP client for API testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
