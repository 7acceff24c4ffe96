"""
Object Storage Client

S3-compatible object storage client (MinIO, Cloudflare R2, AWS S3) holding
every upload category in one bucket.

boto3 is synchronous; every network call runs in a worker thread through
``asyncio.to_thread`` so FastAPI handlers never block the event loop. The
client is created once by the application lifespan and shared read-only by
all services.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import boto3
import structlog
from botocore.client import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from upload_gateway.core.config import Settings
from upload_gateway.integrations.storage_exceptions import (
    ObjectNotFoundError,
    StorageError,
    StoreConnectionError,
    StoreError,
    TransientStoreError,
)

logger = structlog.get_logger(__name__)

NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound", "NoSuchUpload"}
MISSING_BUCKET_CODES = {"404", "NoSuchBucket", "NotFound"}
BUCKET_EXISTS_CODES = {"BucketAlreadyOwnedByYou", "BucketAlreadyExists"}
TRANSIENT_CODES = {
    "SlowDown",
    "InternalError",
    "ServiceUnavailable",
    "RequestTimeout",
    "RequestTimeTooSkewed",
    "Throttling",
}
NETWORK_ERRORS = (
    EndpointConnectionError,
    ConnectTimeoutError,
    ReadTimeoutError,
    ConnectionClosedError,
)
# Regions where CreateBucket must not carry a LocationConstraint
DEFAULT_REGIONS = {"us-east-1", "auto", ""}


@dataclass
class StorageConfig:
    """Configuration for object storage client."""

    endpoint_url: str
    access_key: str
    secret_key: str
    use_ssl: bool
    region: str
    bucket: str
    force_path_style: bool
    public_base_url: str
    files_path: str
    connection_timeout: int = 10
    read_timeout: int = 60

    @classmethod
    def from_settings(cls, settings: Settings) -> "StorageConfig":
        """
        Build configuration from application settings.

        Args:
            settings: Loaded application settings

        Returns:
            StorageConfig instance
        """
        return cls(
            endpoint_url=settings.storage_endpoint_url,
            access_key=settings.storage_access_key,
            secret_key=settings.storage_secret_key,
            use_ssl=settings.storage_use_ssl,
            region=settings.storage_region,
            bucket=settings.storage_bucket,
            force_path_style=settings.storage_force_path_style,
            public_base_url=settings.public_base_url,
            files_path=f"{settings.api_prefix}/files",
            connection_timeout=settings.storage_connection_timeout,
            read_timeout=settings.storage_read_timeout,
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            ValueError: If configuration values are invalid
        """
        if not self.endpoint_url:
            raise ValueError("Storage endpoint cannot be empty")

        if not self.bucket:
            raise ValueError("Storage bucket must be configured")

        if not self.access_key or not self.secret_key:
            raise ValueError("Storage credentials must be configured")


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


def _http_status(error: ClientError) -> int:
    return int(error.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0) or 0)


class ObjectStoreClient:
    """
    Connection-managed handle to an S3-compatible endpoint.

    Use ``ObjectStoreClient.connect`` to build one; it bootstraps the bucket
    and fails fast with ``StoreConnectionError`` when the store is unusable.
    """

    def __init__(self, config: StorageConfig, s3_client: Any = None):
        """
        Initialize object storage client.

        Args:
            config: Storage configuration
            s3_client: Pre-built boto3 S3 client (built from config when omitted)
        """
        self.config = config
        self.config.validate()
        self.bucket = config.bucket

        if s3_client is not None:
            self.s3_client = s3_client
            return

        # Configure boto3 client
        boto_config = Config(
            connect_timeout=self.config.connection_timeout,
            read_timeout=self.config.read_timeout,
            retries={"max_attempts": 3, "mode": "standard"},
            signature_version="s3v4",
            s3={"addressing_style": "path" if self.config.force_path_style else "virtual"},
        )

        try:
            self.s3_client = boto3.client(
                "s3",
                endpoint_url=self.config.endpoint_url,
                aws_access_key_id=self.config.access_key,
                aws_secret_access_key=self.config.secret_key,
                region_name=self.config.region,
                use_ssl=self.config.use_ssl,
                config=boto_config,
            )
        except (BotoCoreError, ValueError) as e:
            logger.error("failed_to_initialize_storage_client", error=str(e))
            raise StoreConnectionError(self.config.endpoint_url, original_exception=e) from e

        logger.info(
            "object_storage_client_initialized",
            endpoint=self.config.endpoint_url,
            bucket=self.bucket,
            path_style=self.config.force_path_style,
        )

    @classmethod
    async def connect(cls, config: StorageConfig, s3_client: Any = None) -> "ObjectStoreClient":
        """
        Build a client and make sure its bucket exists.

        Raises:
            StoreConnectionError: If the store is unreachable or the bucket
                cannot be verified or created
        """
        client = cls(config, s3_client=s3_client)
        try:
            await client.ensure_bucket()
        except StoreConnectionError:
            raise
        except StorageError as e:
            raise StoreConnectionError(
                config.endpoint_url, original_exception=e, bucket=config.bucket
            ) from e
        return client

    async def close(self) -> None:
        """Release the underlying HTTP connection pool."""
        close = getattr(self.s3_client, "close", None)
        if close is not None:
            await asyncio.to_thread(close)
        logger.info("object_storage_client_closed", bucket=self.bucket)

    async def ensure_bucket(self, bucket: Optional[str] = None) -> bool:
        """
        Create the bucket if it doesn't exist.

        Returns:
            True when the bucket was created, False when it already existed

        Raises:
            StoreConnectionError: If the endpoint cannot be reached
            StoreError: On any other store failure
        """
        bucket = bucket or self.bucket
        try:
            await asyncio.to_thread(self.s3_client.head_bucket, Bucket=bucket)
            logger.info("bucket_exists", bucket=bucket)
            return False
        except NETWORK_ERRORS as e:
            logger.error("bucket_check_unreachable", bucket=bucket, error=str(e))
            raise StoreConnectionError(
                self.config.endpoint_url, original_exception=e, bucket=bucket
            ) from e
        except ClientError as e:
            if _error_code(e) not in MISSING_BUCKET_CODES and _http_status(e) != 404:
                logger.error("bucket_check_failed", bucket=bucket, error=str(e))
                raise StoreError("head_bucket", original_exception=e) from e

        create_kwargs: Dict[str, Any] = {"Bucket": bucket}
        if self.config.region not in DEFAULT_REGIONS:
            create_kwargs["CreateBucketConfiguration"] = {
                "LocationConstraint": self.config.region
            }

        try:
            await asyncio.to_thread(self.s3_client.create_bucket, **create_kwargs)
        except NETWORK_ERRORS as e:
            raise StoreConnectionError(
                self.config.endpoint_url, original_exception=e, bucket=bucket
            ) from e
        except ClientError as e:
            if _error_code(e) in BUCKET_EXISTS_CODES:
                logger.info("bucket_created_concurrently", bucket=bucket, code=_error_code(e))
                return False
            logger.error("bucket_creation_failed", bucket=bucket, error=str(e))
            raise StoreError("create_bucket", original_exception=e) from e

        logger.info("bucket_created", bucket=bucket, region=self.config.region)
        return True

    async def _call(
        self, operation: str, fn: Callable[..., Any], key: Optional[str] = None, **kwargs: Any
    ) -> Any:
        """
        Run a boto3 call in a worker thread and classify its failures.

        Raises:
            TransientStoreError: Network hiccups, timeouts, 5xx and throttling
            ObjectNotFoundError: 404 style answers
            StoreError: Anything else
        """
        try:
            return await asyncio.to_thread(fn, **kwargs)
        except NETWORK_ERRORS as e:
            raise TransientStoreError(operation, original_exception=e, key=key) from e
        except ClientError as e:
            code = _error_code(e)
            http_status = _http_status(e)
            if code in NOT_FOUND_CODES or http_status == 404:
                raise ObjectNotFoundError(self.bucket, key or "", original_exception=e) from e
            if code in TRANSIENT_CODES or http_status >= 500:
                raise TransientStoreError(operation, original_exception=e, key=key) from e
            raise StoreError(operation, original_exception=e, key=key) from e
        except BotoCoreError as e:
            raise StoreError(operation, original_exception=e, key=key) from e

    async def head_bucket(self) -> None:
        """Check the bucket is reachable; used by health checks."""
        await self._call("head_bucket", self.s3_client.head_bucket, Bucket=self.bucket)

    async def put_object(
        self,
        key: str,
        body: bytes,
        content_type: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> Optional[str]:
        """Write a whole object in one request and return its ETag."""
        response = await self._call(
            "put_object",
            self.s3_client.put_object,
            key=key,
            Bucket=self.bucket,
            Key=key,
            Body=body,
            ContentType=content_type,
            Metadata=metadata or {},
        )
        return response.get("ETag")

    async def create_multipart_upload(
        self,
        key: str,
        content_type: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> str:
        response = await self._call(
            "create_multipart_upload",
            self.s3_client.create_multipart_upload,
            key=key,
            Bucket=self.bucket,
            Key=key,
            ContentType=content_type,
            Metadata=metadata or {},
        )
        return response["UploadId"]

    async def upload_part(self, key: str, upload_id: str, part_number: int, body: bytes) -> str:
        response = await self._call(
            "upload_part",
            self.s3_client.upload_part,
            key=key,
            Bucket=self.bucket,
            Key=key,
            UploadId=upload_id,
            PartNumber=part_number,
            Body=body,
        )
        return response["ETag"]

    async def complete_multipart_upload(
        self, key: str, upload_id: str, parts: List[Dict[str, Any]]
    ) -> Optional[str]:
        """Assemble uploaded parts; ``parts`` must be sorted by PartNumber."""
        response = await self._call(
            "complete_multipart_upload",
            self.s3_client.complete_multipart_upload,
            key=key,
            Bucket=self.bucket,
            Key=key,
            UploadId=upload_id,
            MultipartUpload={"Parts": parts},
        )
        return response.get("ETag")

    async def abort_multipart_upload(self, key: str, upload_id: str) -> None:
        await self._call(
            "abort_multipart_upload",
            self.s3_client.abort_multipart_upload,
            key=key,
            Bucket=self.bucket,
            Key=key,
            UploadId=upload_id,
        )

    async def list_parts(self, key: str, upload_id: str) -> List[Dict[str, Any]]:
        """
        List the parts stored for an open multipart session.

        Raises:
            ObjectNotFoundError: The session no longer exists
        """
        response = await self._call(
            "list_parts",
            self.s3_client.list_parts,
            key=key,
            Bucket=self.bucket,
            Key=key,
            UploadId=upload_id,
        )
        return response.get("Parts", [])

    async def list_multipart_uploads(self, prefix: str) -> List[Dict[str, Any]]:
        """List open multipart sessions under a prefix, following pagination."""
        uploads: List[Dict[str, Any]] = []
        kwargs: Dict[str, Any] = {"Bucket": self.bucket, "Prefix": prefix}
        while True:
            response = await self._call(
                "list_multipart_uploads", self.s3_client.list_multipart_uploads, **kwargs
            )
            uploads.extend(response.get("Uploads", []))
            if not response.get("IsTruncated"):
                break
            kwargs["KeyMarker"] = response.get("NextKeyMarker")
            kwargs["UploadIdMarker"] = response.get("NextUploadIdMarker")
        return uploads

    async def head_object(self, key: str) -> Dict[str, Any]:
        """
        Raises:
            ObjectNotFoundError: If the object doesn't exist
        """
        return await self._call(
            "head_object", self.s3_client.head_object, key=key, Bucket=self.bucket, Key=key
        )

    async def get_object(self, key: str) -> Dict[str, Any]:
        """Open an object; the response ``Body`` is a streaming body."""
        return await self._call(
            "get_object", self.s3_client.get_object, key=key, Bucket=self.bucket, Key=key
        )

    async def delete_object(self, key: str) -> None:
        await self._call(
            "delete_object", self.s3_client.delete_object, key=key, Bucket=self.bucket, Key=key
        )

    async def list_objects(self, prefix: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        List objects under a prefix.

        Args:
            prefix: Key prefix (``{category}/``)
            limit: Stop after this many objects (all when omitted)

        Returns:
            List of ``Contents`` entries (Key, Size, LastModified, ETag)
        """
        objects: List[Dict[str, Any]] = []
        kwargs: Dict[str, Any] = {"Bucket": self.bucket, "Prefix": prefix}
        while True:
            if limit is not None:
                kwargs["MaxKeys"] = min(1000, limit - len(objects))
            response = await self._call("list_objects_v2", self.s3_client.list_objects_v2, **kwargs)
            objects.extend(response.get("Contents", []))
            if limit is not None and len(objects) >= limit:
                return objects[:limit]
            if not response.get("IsTruncated"):
                break
            kwargs["ContinuationToken"] = response.get("NextContinuationToken")
        return objects

    def generate_presigned_url(
        self,
        method: str,
        key: str,
        expires_in: int,
        content_type: Optional[str] = None,
    ) -> str:
        """
        Sign a URL for a single object. No request is made to the bucket.

        Args:
            method: ``put_object`` or ``get_object``
            key: Object key
            expires_in: Lifetime in seconds
            content_type: Content type the PUT must carry

        Returns:
            Presigned URL

        Raises:
            TransientStoreError: Credentials could not be fetched over the network
            StoreError: Any other signing failure
        """
        params: Dict[str, Any] = {"Bucket": self.bucket, "Key": key}
        if content_type:
            params["ContentType"] = content_type
        try:
            return self.s3_client.generate_presigned_url(
                ClientMethod=method,
                Params=params,
                ExpiresIn=expires_in,
            )
        except NETWORK_ERRORS as e:
            # Credential providers may need the network before signing
            logger.warning("presign_credentials_unreachable", key=key, method=method, error=str(e))
            raise TransientStoreError("generate_presigned_url", original_exception=e, key=key) from e
        except (BotoCoreError, ClientError) as e:
            logger.error("failed_to_generate_presigned_url", key=key, method=method, error=str(e))
            raise StoreError("generate_presigned_url", original_exception=e, key=key) from e

    def public_url(self, key: str) -> str:
        """Permanent gateway URL that serves the object."""
        return f"{self.config.public_base_url.rstrip('/')}{self.config.files_path}/{key}"

    @staticmethod
    async def iter_body(body: Any, chunk_size: int = 65536) -> AsyncIterator[bytes]:
        """Read a streaming body chunk by chunk without blocking the loop."""
        try:
            while True:
                chunk = await asyncio.to_thread(body.read, chunk_size)
                if not chunk:
                    break
                yield chunk
        finally:
            await asyncio.to_thread(body.close)
