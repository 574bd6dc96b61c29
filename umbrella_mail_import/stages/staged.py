"""STAGED: persist the raw message as the resumable checkpoint."""

from __future__ import annotations

from collections.abc import Iterable

import structlog

from ..db.models import StagingAttachment
from ..downloads import AttachmentDownloadJob, AttachmentDownloadQueue
from ..errors import StagingError
from ..models import ImportStage, ImportTarget, StageContext
from .base import PassThroughBegin, StageDependencies

logger = structlog.get_logger()


def enqueue_downloads(
    queue: AttachmentDownloadQueue,
    target: ImportTarget,
    rows: Iterable[StagingAttachment],
) -> int:
    """Queue a download job for every staged attachment not yet imported."""
    count = 0
    for row in rows:
        if row.imported:
            continue
        queue.enqueue(
            AttachmentDownloadJob(
                staged_message_id=row.staging_message_id,
                staged_attachment_id=row.id,
                provider_message_id=target.provider_message_id,
                part_id=row.part_id,
                attachment_id=row.attachment_id,
                filename=row.filename,
                mime_type=row.mime_type,
            )
        )
        count += 1
    return count


class StagedStage(PassThroughBegin):
    def __init__(self, deps: StageDependencies) -> None:
        self._repos = deps.repositories
        self._downloads = deps.downloads

    async def run(self, context: StageContext) -> StageContext:
        target = context.require_target()

        record = await self._repos.staging.get_by_external_id(target.provider_message_id)
        if record is None:
            record = await self._repos.staging.create(
                target.provider_message_id,
                target.raw.to_json(),
                stage=ImportStage.STAGED,
            )
        if record is None or record.id is None or record.email_id is None:
            raise StagingError(f"Staging write returned no usable record for {target.provider_message_id}")

        target.staging_id = record.id
        target.email_id = record.email_id

        parts = [
            {
                "part_id": part.part_id or part.body.attachment_id,
                "attachment_id": part.body.attachment_id,
                "filename": part.filename,
                "mime_type": part.mime_type or "application/octet-stream",
                "size": part.body.size,
            }
            for part in target.raw.attachment_parts()
        ]
        rows = await self._repos.staged_attachments.create_many(record.id, parts) if parts else []
        queued = enqueue_downloads(self._downloads, target, rows)

        logger.info(
            "message_staged",
            staging_id=str(record.id),
            email_id=str(record.email_id),
            attachments_queued=queued,
        )
        return context
