"""
Tests for the object store client and its settings.
"""
import pytest
from botocore.exceptions import EndpointConnectionError

from tests.conftest import FakeS3Client, client_error, make_settings
from upload_gateway.integrations.object_storage_client import ObjectStoreClient, StorageConfig
from upload_gateway.integrations.storage_exceptions import (
    ObjectNotFoundError,
    StoreConnectionError,
    StoreError,
    TransientStoreError,
)


class TestSettings:
    """Tests for storage settings derived from the environment."""

    def test_endpoint_url_includes_port(self, tmp_path):
        """Host and port are combined with the scheme."""
        settings = make_settings(tmp_path, storage_endpoint="minio", storage_port=9000, storage_use_ssl=False)
        assert settings.storage_endpoint_url == "http://minio:9000"

    def test_config_validation_rejects_missing_credentials(self, tmp_path):
        """Empty credentials fail before any connection attempt."""
        config = StorageConfig.from_settings(make_settings(tmp_path, storage_access_key=""))
        with pytest.raises(ValueError):
            config.validate()

    def test_part_size_minimum_is_enforced(self, tmp_path):
        """Parts below 5 MiB are rejected at load time."""
        with pytest.raises(ValueError):
            make_settings(tmp_path, multipart_part_size_bytes=1024)


class TestConnect:
    """Tests for bucket bootstrap."""

    @pytest.mark.asyncio
    async def test_creates_missing_bucket(self, settings):
        """A missing bucket is created on connect."""
        fake = FakeS3Client()
        await ObjectStoreClient.connect(StorageConfig.from_settings(settings), s3_client=fake)
        assert settings.storage_bucket in fake.buckets
        assert "CreateBucketConfiguration" not in fake.create_bucket_kwargs

    @pytest.mark.asyncio
    async def test_existing_bucket_is_left_alone(self, settings):
        """No create call is made when the bucket exists."""
        fake = FakeS3Client()
        fake.buckets.add(settings.storage_bucket)
        client = ObjectStoreClient(StorageConfig.from_settings(settings), s3_client=fake)
        assert await client.ensure_bucket() is False
        assert fake.calls_to("create_bucket") == 0

    @pytest.mark.asyncio
    async def test_location_constraint_outside_default_region(self, tmp_path):
        """Non-default regions pass a LocationConstraint."""
        settings = make_settings(tmp_path, storage_region="eu-west-1")
        fake = FakeS3Client()
        client = ObjectStoreClient(StorageConfig.from_settings(settings), s3_client=fake)
        assert await client.ensure_bucket() is True
        assert fake.create_bucket_kwargs == {
            "CreateBucketConfiguration": {"LocationConstraint": "eu-west-1"}
        }

    @pytest.mark.asyncio
    async def test_concurrent_creation_counts_as_success(self, settings):
        """Losing the creation race is not an error."""
        fake = FakeS3Client()
        fake.fail_on["create_bucket"] = client_error("BucketAlreadyOwnedByYou", 409, "CreateBucket")
        client = ObjectStoreClient(StorageConfig.from_settings(settings), s3_client=fake)
        assert await client.ensure_bucket() is False

    @pytest.mark.asyncio
    async def test_unreachable_endpoint_fails_fast(self, settings):
        """Network failures surface as StoreConnectionError."""
        fake = FakeS3Client()
        fake.fail_on["head_bucket"] = EndpointConnectionError(endpoint_url="http://minio:9000")
        with pytest.raises(StoreConnectionError):
            await ObjectStoreClient.connect(StorageConfig.from_settings(settings), s3_client=fake)

    @pytest.mark.asyncio
    async def test_access_denied_fails_connect(self, settings):
        """Bucket errors other than not-found also fail the connection."""
        fake = FakeS3Client()
        fake.fail_on["head_bucket"] = client_error("AccessDenied", 403, "HeadBucket")
        with pytest.raises(StoreConnectionError):
            await ObjectStoreClient.connect(StorageConfig.from_settings(settings), s3_client=fake)


class TestErrorClassification:
    """Tests for mapping botocore failures."""

    @pytest.mark.asyncio
    async def test_not_found(self, store):
        """404 answers become ObjectNotFoundError."""
        with pytest.raises(ObjectNotFoundError) as exc_info:
            await store.head_object("Uploads/missing.txt")
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [
            client_error("SlowDown", 503),
            client_error("InternalError", 500),
            client_error("RequestTimeout", 400),
            EndpointConnectionError(endpoint_url="http://minio:9000"),
        ],
    )
    async def test_transient(self, store, fake_s3, error):
        """Outages, throttling and timeouts are transient."""
        fake_s3.fail_on["put_object"] = error
        with pytest.raises(TransientStoreError):
            await store.put_object("Uploads/a.txt", b"x", "text/plain")

    @pytest.mark.asyncio
    async def test_permanent(self, store, fake_s3):
        """Permission failures are permanent store errors."""
        fake_s3.fail_on["put_object"] = client_error("AccessDenied", 403)
        with pytest.raises(StoreError) as exc_info:
            await store.put_object("Uploads/a.txt", b"x", "text/plain")
        assert not isinstance(exc_info.value, TransientStoreError)


class TestUrls:
    """Tests for URL helpers."""

    def test_public_url(self, store):
        """Permanent URLs point at the gateway's file route."""
        assert store.public_url("Images/1-a.png") == "http://test/api/v1/files/Images/1-a.png"

    def test_presigned_put_carries_content_type(self, store, fake_s3):
        """Signed PUTs bind the content type."""
        store.generate_presigned_url("put_object", "Images/1-a.png", 60, content_type="image/png")
        assert fake_s3.calls[-1] == "generate_presigned_url"

    def test_presign_with_unreachable_credentials_is_transient(self, store, fake_s3):
        """Signing that needs the network and cannot reach it may be retried elsewhere."""
        fake_s3.fail_on["generate_presigned_url"] = EndpointConnectionError(
            endpoint_url="http://169.254.169.254"
        )
        with pytest.raises(TransientStoreError):
            store.generate_presigned_url("put_object", "Images/1-a.png", 60, content_type="image/png")


class TestMultipartSessions:
    """Tests for multipart session bookkeeping."""

    @pytest.mark.asyncio
    async def test_list_parts_of_open_session(self, store, fake_s3):
        """Stored parts are listed in order."""
        upload_id = await store.create_multipart_upload("Uploads/a.bin", "application/octet-stream")
        await store.upload_part("Uploads/a.bin", upload_id, 2, b"yy")
        await store.upload_part("Uploads/a.bin", upload_id, 1, b"x")
        parts = await store.list_parts("Uploads/a.bin", upload_id)
        assert [(p["PartNumber"], p["Size"]) for p in parts] == [(1, 1), (2, 2)]

    @pytest.mark.asyncio
    async def test_list_parts_of_aborted_session_is_not_found(self, store, fake_s3):
        """An aborted session no longer exists."""
        upload_id = await store.create_multipart_upload("Uploads/a.bin", "application/octet-stream")
        await store.abort_multipart_upload("Uploads/a.bin", upload_id)
        with pytest.raises(ObjectNotFoundError):
            await store.list_parts("Uploads/a.bin", upload_id)
