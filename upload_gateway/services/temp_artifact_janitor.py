"""
Temporary artifact janitor.

Stages request bodies on disk, removes each staged file once its transfer
ends, and purges aged objects and abandoned multipart sessions from the
store.
"""
import asyncio
import inspect
import os
import tempfile
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import structlog

from upload_gateway.core.exceptions import SizeExceededError
from upload_gateway.integrations.object_storage_client import ObjectStoreClient
from upload_gateway.integrations.storage_exceptions import StorageError
from upload_gateway.integrations.storage_utils import extract_extension, parse_retention_date
from upload_gateway.models.enums import FolderCategory
from upload_gateway.models.upload import PurgeReport, TempArtifact

logger = structlog.get_logger(__name__)

STAGING_PREFIX = "upload-"


class TempArtifactJanitor:
    """Owns staged files and store-side retention."""

    def __init__(
        self,
        store: ObjectStoreClient,
        staging_dir: Optional[Union[str, Path]] = None,
        chunk_size: int = 1048576,
    ):
        """
        Initialize the janitor.

        Args:
            store: Shared object store handle
            staging_dir: Directory for staged bodies (system temp dir when None)
            chunk_size: Copy chunk size when staging
        """
        self.store = store
        self.staging_dir = Path(staging_dir) if staging_dir else Path(tempfile.gettempdir())
        self.chunk_size = chunk_size
        self.staging_dir.mkdir(parents=True, exist_ok=True)

    async def stage(
        self,
        stream: Any,
        original_name: str,
        *,
        max_bytes: Optional[int] = None,
        category: Optional[FolderCategory] = None,
    ) -> TempArtifact:
        """
        Copy an incoming body to a staging file in chunks.

        Args:
            stream: Object with a sync or async ``read(size)`` method
            original_name: Client file name (extension keeps the file recognisable)
            max_bytes: Stop and fail once the body grows past this size
            category: Folder reported in the size error

        Returns:
            TempArtifact for the staged file

        Raises:
            SizeExceededError: The body is larger than ``max_bytes``
        """
        suffix = "." + extract_extension(original_name)
        fd, name = await asyncio.to_thread(
            tempfile.mkstemp, suffix, STAGING_PREFIX, str(self.staging_dir)
        )
        artifact = TempArtifact(path=Path(name))
        is_async = inspect.iscoroutinefunction(getattr(stream, "read", None))

        try:
            with os.fdopen(fd, "wb") as out:
                while True:
                    if is_async:
                        chunk = await stream.read(self.chunk_size)
                    else:
                        chunk = await asyncio.to_thread(stream.read, self.chunk_size)
                    if not chunk:
                        break
                    artifact.size_bytes += len(chunk)
                    if max_bytes is not None and artifact.size_bytes > max_bytes:
                        raise SizeExceededError(
                            category.value if category else "unknown",
                            artifact.size_bytes,
                            max_bytes,
                        )
                    await asyncio.to_thread(out.write, chunk)
        except BaseException:
            await self.cleanup_after(artifact)
            raise

        logger.debug("upload_staged", path=str(artifact.path), size_bytes=artifact.size_bytes)
        return artifact

    async def cleanup_after(self, artifact: Optional[TempArtifact]) -> None:
        """
        Delete a staged file. Safe to call more than once; failures are
        logged and never raised.
        """
        if artifact is None or artifact.removed:
            return
        try:
            await asyncio.to_thread(artifact.path.unlink, missing_ok=True)
            artifact.removed = True
            logger.debug("staged_file_removed", path=str(artifact.path))
        except OSError as e:
            logger.error("staged_file_cleanup_failed", path=str(artifact.path), error=str(e))

    async def purge_older_than(
        self,
        category: FolderCategory,
        age_days: float,
        dry_run: bool = False,
        now: Optional[datetime] = None,
    ) -> PurgeReport:
        """
        Delete objects in a category whose last modification is older than
        ``age_days``.

        A failed delete is recorded against its key and the purge carries on.

        Args:
            category: Folder to purge
            age_days: Minimum age in days
            dry_run: Report what would be deleted without deleting
            now: Reference time (defaults to the current UTC time)

        Returns:
            PurgeReport

        Raises:
            StorageError: Listing the category failed
        """
        if age_days < 0:
            raise ValueError("age_days must not be negative")

        cutoff = parse_retention_date(age_days, now)
        report = PurgeReport(category=category, cutoff=cutoff, dry_run=dry_run)
        log = logger.bind(category=category.value, cutoff=cutoff.isoformat(), dry_run=dry_run)
        log.info("purge_started")

        objects = await self.store.list_objects(f"{category.value}/")
        for obj in objects:
            last_modified = obj.get("LastModified")
            if last_modified is None:
                continue
            if last_modified.tzinfo is None:
                last_modified = last_modified.replace(tzinfo=timezone.utc)
            if last_modified >= cutoff:
                continue

            key = obj["Key"]
            if dry_run:
                report.deleted_keys.append(key)
                continue
            try:
                await self.store.delete_object(key)
            except StorageError as e:
                log.warning("purge_delete_failed", key=key, error=str(e))
                report.failed_keys[key] = str(e)
                continue
            report.deleted_keys.append(key)

        report.deleted_count = len(report.deleted_keys)
        log.info(
            "purge_completed",
            scanned=len(objects),
            deleted=report.deleted_count,
            failed=len(report.failed_keys),
        )
        return report

    async def abort_stale_multipart_uploads(
        self,
        category: FolderCategory,
        older_than_hours: float,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Abort multipart sessions left open longer than ``older_than_hours``.

        Returns:
            ``{"aborted": [keys], "failed": {key: reason}}``
        """
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(hours=older_than_hours)
        aborted, failed = [], {}
        for upload in await self.store.list_multipart_uploads(f"{category.value}/"):
            initiated = upload.get("Initiated")
            if initiated is not None and initiated.tzinfo is None:
                initiated = initiated.replace(tzinfo=timezone.utc)
            if initiated is not None and initiated >= cutoff:
                continue
            key = upload["Key"]
            try:
                await self.store.abort_multipart_upload(key, upload["UploadId"])
            except StorageError as e:
                logger.warning("stale_multipart_abort_failed", key=key, error=str(e))
                failed[key] = str(e)
                continue
            aborted.append(key)

        logger.info(
            "stale_multipart_uploads_aborted",
            category=category.value,
            aborted=len(aborted),
            failed=len(failed),
        )
        return {"aborted": aborted, "failed": failed}

    def sweep_staging_dir(self, max_age_seconds: float) -> int:
        """
        Remove staged files left behind by a crashed process.

        Returns:
            Number of files removed
        """
        cutoff = time.time() - max_age_seconds
        removed = 0
        for path in self.staging_dir.glob(f"{STAGING_PREFIX}*"):
            try:
                if path.is_file() and path.stat().st_mtime < cutoff:
                    path.unlink()
                    removed += 1
            except OSError as e:
                logger.warning("staging_sweep_failed", path=str(path), error=str(e))
        logger.info("staging_dir_swept", directory=str(self.staging_dir), removed=removed)
        return removed

    def staging_usage(self) -> Tuple[int, int]:
        """Count staged files and their total size."""
        files = 0
        size = 0
        for path in self.staging_dir.glob(f"{STAGING_PREFIX}*"):
            try:
                size += path.stat().st_size
            except FileNotFoundError:
                # Removed by a finishing transfer
                continue
            files += 1
        return files, size

    async def delete_object(self, key: str) -> None:
        """
        Delete one object after checking it exists.

        Raises:
            ObjectNotFoundError: Nothing is stored under the key; no delete is sent
        """
        await self.store.head_object(key)
        await self.store.delete_object(key)
        logger.info("object_deleted", key=key)
