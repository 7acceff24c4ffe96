"""Multiple-file uploads with per-file outcomes."""
from typing import List, Optional

import structlog

from upload_gateway.core.exceptions import AppException, BatchUploadFailedError, CallerInputError
from upload_gateway.integrations.storage_exceptions import StorageError
from upload_gateway.models.enums import TransferPreference
from upload_gateway.models.upload import BatchUploadResult, SkippedFile, UploadRequest
from upload_gateway.services.temp_artifact_janitor import TempArtifactJanitor
from upload_gateway.services.upload_router import UploadRouter

logger = structlog.get_logger(__name__)


class BatchUploader:
    """
    Streams several files through the router one after another.

    A file that fails policy or transfer is reported as skipped; the call only
    fails when no file made it into the store.
    """

    def __init__(self, router: UploadRouter, janitor: TempArtifactJanitor):
        self.router = router
        self.janitor = janitor

    async def upload_many(
        self,
        requests: List[UploadRequest],
        preference: TransferPreference = TransferPreference.STREAM_ONLY,
        skipped: Optional[List[SkippedFile]] = None,
    ) -> BatchUploadResult:
        """
        Upload every request sequentially.

        Args:
            requests: Files to upload
            preference: Routing preference applied to each file
            skipped: Files already rejected before staging (reported as-is)

        Returns:
            BatchUploadResult

        Raises:
            BatchUploadFailedError: Every file failed
        """
        result = BatchUploadResult(
            skipped=list(skipped or []),
            requested_count=len(requests) + len(skipped or []),
        )
        log = logger.bind(requested=result.requested_count)

        try:
            for index, request in enumerate(requests):
                try:
                    outcome = await self.router.route_and_upload(request, preference)
                except (AppException, StorageError) as e:
                    message = e.detail if isinstance(e, AppException) else e.message
                    log.warning(
                        "batch_file_skipped",
                        index=index,
                        original_name=request.original_name,
                        error_kind=e.error_kind,
                    )
                    result.skipped.append(
                        SkippedFile(
                            original_name=request.original_name,
                            error_kind=e.error_kind,
                            message=message,
                            caller_input=isinstance(e, CallerInputError),
                        )
                    )
                    continue
                result.results.append(outcome)
        finally:
            for request in requests:
                await self.janitor.cleanup_after(request.temp_artifact)

        log.info(
            "batch_upload_completed",
            uploaded=result.uploaded_count,
            skipped=result.skipped_count,
        )
        if not result.results and result.skipped:
            raise BatchUploadFailedError(
                [
                    {"originalName": s.original_name, "errorKind": s.error_kind, "message": s.message}
                    for s in result.skipped
                ],
                caller_input_only=all(s.caller_input for s in result.skipped),
            )
        return result
