"""
Multipart uploader.

Streams a source into the store in fixed-size parts with a bounded number of
parts in flight, so memory use stays near ``part_size * (concurrency + 1)``
regardless of the file size. Any failure, timeout or cancellation aborts the
multipart session before the error propagates.
"""
import asyncio
import inspect
from typing import Any, Callable, Dict, List, Optional, Set

import structlog

from upload_gateway.core.config import MIN_MULTIPART_PART_SIZE
from upload_gateway.integrations.object_storage_client import ObjectStoreClient
from upload_gateway.integrations.storage_exceptions import (
    ObjectNotFoundError,
    StorageError,
    TransientStoreError,
    TransientUploadError,
    UploadError,
    UploadTimeoutError,
)
from upload_gateway.models.enums import FolderCategory
from upload_gateway.models.upload import UploadResult, UploadSource

logger = structlog.get_logger(__name__)

ProgressCallback = Callable[[int], Any]


class PartReader:
    """
    Reads fixed-size parts from any supported source.

    Supported sources: ``bytes``/``bytearray``, synchronous binary files
    (read in a worker thread), objects with an async ``read`` method and
    async byte iterators.
    """

    def __init__(self, source: UploadSource):
        self._source = source
        self._offset = 0
        self._buffer = bytearray()
        self._exhausted = False
        self._iterator = None

        if isinstance(source, (bytes, bytearray)):
            self._mode = "buffer"
            self._view = memoryview(source)
        elif hasattr(source, "read") and inspect.iscoroutinefunction(source.read):
            self._mode = "async_file"
        elif hasattr(source, "read"):
            self._mode = "file"
        elif hasattr(source, "__aiter__"):
            self._mode = "async_iter"
            self._iterator = source.__aiter__()
        else:
            raise TypeError(f"Unsupported upload source: {type(source).__name__}")

    async def read(self, size: int) -> bytes:
        """Return exactly ``size`` bytes, or fewer only at end of stream."""
        if self._mode == "buffer":
            chunk = bytes(self._view[self._offset:self._offset + size])
            self._offset += len(chunk)
            return chunk

        while len(self._buffer) < size and not self._exhausted:
            wanted = size - len(self._buffer)
            if self._mode == "file":
                chunk = await asyncio.to_thread(self._source.read, wanted)
            elif self._mode == "async_file":
                chunk = await self._source.read(wanted)
            else:
                try:
                    chunk = await self._iterator.__anext__()
                except StopAsyncIteration:
                    chunk = b""
            if not chunk:
                self._exhausted = True
            else:
                self._buffer.extend(chunk)

        part = bytes(self._buffer[:size])
        del self._buffer[:size]
        return part


class MultipartUploader:
    """Server-mediated transfer of one object."""

    def __init__(
        self,
        store: ObjectStoreClient,
        part_size: int = MIN_MULTIPART_PART_SIZE,
        max_concurrency: int = 4,
        transfer_timeout_seconds: float = 600.0,
        part_timeout_seconds: float = 120.0,
    ):
        """
        Initialize the uploader.

        Args:
            store: Shared object store handle
            part_size: Bytes per part (at least 5 MiB)
            max_concurrency: Parts uploaded at the same time
            transfer_timeout_seconds: Deadline for the whole transfer
            part_timeout_seconds: Deadline for one part request
        """
        if part_size < MIN_MULTIPART_PART_SIZE:
            raise ValueError(f"part_size must be at least {MIN_MULTIPART_PART_SIZE} bytes")
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.store = store
        self.part_size = part_size
        self.max_concurrency = max_concurrency
        self.transfer_timeout_seconds = transfer_timeout_seconds
        self.part_timeout_seconds = part_timeout_seconds
        self._active_transfers = 0
        self._bytes_in_flight = 0

    def status(self) -> Dict[str, int]:
        """
        Snapshot of server-mediated transfers in this process.

        ``buffer_limit_bytes`` is the most the active transfers may hold in
        memory at once.
        """
        return {
            "active_transfers": self._active_transfers,
            "bytes_in_flight": self._bytes_in_flight,
            "buffer_limit_bytes": (
                self._active_transfers * self.part_size * (self.max_concurrency + 1)
            ),
        }

    async def upload(
        self,
        source: UploadSource,
        key: str,
        content_type: str,
        metadata: Optional[Dict[str, str]] = None,
        *,
        original_name: str,
        category: FolderCategory,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> UploadResult:
        """
        Stream ``source`` to ``key``.

        Returns:
            UploadResult built after the store confirmed the write

        Raises:
            UploadTimeoutError: The overall transfer deadline passed
            TransientUploadError: Network or store hiccup, or a part timed out
            UploadError: Any other transfer failure
        """
        log = logger.bind(key=key, category=category.value)
        self._active_transfers += 1
        try:
            size_bytes, etag = await asyncio.wait_for(
                self._transfer(source, key, content_type, metadata or {}, progress_callback, log),
                timeout=self.transfer_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            log.warning("upload_transfer_timed_out", timeout_seconds=self.transfer_timeout_seconds)
            raise UploadTimeoutError(
                self.store.bucket, key, original_exception=e, reason="transfer timed out"
            ) from e
        except UploadError:
            raise
        except TransientStoreError as e:
            raise TransientUploadError(self.store.bucket, key, original_exception=e) from e
        except StorageError as e:
            raise UploadError(self.store.bucket, key, original_exception=e) from e
        except OSError as e:
            raise UploadError(
                self.store.bucket, key, original_exception=e, reason="reading the source failed"
            ) from e
        finally:
            self._active_transfers -= 1

        return UploadResult(
            object_key=key,
            public_access_url=self.store.public_url(key),
            original_name=original_name,
            size_bytes=size_bytes,
            category=category,
            content_type=content_type,
            etag=etag.strip('"') if etag else None,
        )

    async def _transfer(
        self,
        source: UploadSource,
        key: str,
        content_type: str,
        metadata: Dict[str, str],
        progress_callback: Optional[ProgressCallback],
        log: Any,
    ):
        reader = PartReader(source)
        first = await reader.read(self.part_size)

        if len(first) < self.part_size:
            etag = await self._send(
                self.store.put_object(key, first, content_type, metadata), key, 1, len(first)
            )
            self._report(progress_callback, len(first))
            log.info("single_put_completed", size_bytes=len(first))
            return len(first), etag

        upload_id = await self.store.create_multipart_upload(key, content_type, metadata)
        log = log.bind(upload_id=upload_id)
        log.info("multipart_upload_started", part_size=self.part_size)

        tasks: List[asyncio.Task] = []
        pending: Set[asyncio.Task] = set()
        parts: List[Dict[str, Any]] = []
        transferred = 0

        def collect(done: Set[asyncio.Task]) -> None:
            nonlocal transferred
            for task in done:
                part, size = task.result()
                parts.append(part)
                transferred += size
                self._report(progress_callback, transferred)

        try:
            part_number = 1
            chunk = first
            while chunk:
                while len(pending) >= self.max_concurrency:
                    done, pending = await asyncio.wait(
                        pending, return_when=asyncio.FIRST_EXCEPTION
                    )
                    collect(done)
                task = asyncio.create_task(self._upload_part(key, upload_id, part_number, chunk))
                tasks.append(task)
                pending.add(task)
                part_number += 1
                chunk = await reader.read(self.part_size)

            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_EXCEPTION)
                collect(done)

            parts.sort(key=lambda p: p["PartNumber"])
            etag = await self.store.complete_multipart_upload(key, upload_id, parts)
        except BaseException as e:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            log.warning(
                "multipart_upload_failed",
                error_type=type(e).__name__,
                error=str(e),
                parts_completed=len(parts),
            )
            await asyncio.shield(self._abort(key, upload_id, log))
            raise

        log.info("multipart_upload_completed", parts=len(parts), size_bytes=transferred)
        return transferred, etag

    async def _upload_part(self, key: str, upload_id: str, part_number: int, body: bytes):
        etag = await self._send(
            self.store.upload_part(key, upload_id, part_number, body), key, part_number, len(body)
        )
        logger.debug("multipart_part_uploaded", key=key, part_number=part_number, size_bytes=len(body))
        return {"PartNumber": part_number, "ETag": etag}, len(body)

    async def _send(self, coro, key: str, part_number: int, size: int):
        self._bytes_in_flight += size
        try:
            return await asyncio.wait_for(coro, timeout=self.part_timeout_seconds)
        except asyncio.TimeoutError as e:
            raise TransientUploadError(
                self.store.bucket,
                key,
                original_exception=e,
                reason=f"part {part_number} timed out after {self.part_timeout_seconds}s",
            ) from e
        finally:
            self._bytes_in_flight -= size

    async def _abort(self, key: str, upload_id: str, log: Any) -> None:
        """
        Best-effort abort; the original failure is what the caller sees.

        A part request already on the wire can land after the first abort, so
        the session is listed afterwards and aborted again if it survived.
        """
        for attempt in (1, 2):
            try:
                await self.store.abort_multipart_upload(key, upload_id)
            except ObjectNotFoundError:
                log.info("multipart_upload_aborted", attempt=attempt)
                return
            except StorageError as e:
                log.error("multipart_abort_failed", attempt=attempt, error=str(e))
                return
            try:
                await self.store.list_parts(key, upload_id)
            except ObjectNotFoundError:
                log.info("multipart_upload_aborted", attempt=attempt)
                return
            except StorageError as e:
                log.warning("multipart_abort_unverified", attempt=attempt, error=str(e))
                return
            log.warning("multipart_upload_survived_abort", attempt=attempt)
        log.error("multipart_abort_incomplete")

    @staticmethod
    def _report(progress_callback: Optional[ProgressCallback], transferred: int) -> None:
        if progress_callback is not None:
            progress_callback(transferred)
