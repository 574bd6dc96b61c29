"""ATTACHMENTS: turn finished download jobs into email attachment rows."""

from __future__ import annotations

import asyncio
import uuid

import structlog

from ..db.models import StagingAttachment
from ..downloads import AttachmentDownloadQueue
from ..errors import AttachmentImportError
from ..models import AttachmentOutcome, LimiterStatus, StageContext
from ..telemetry import ImportTelemetry
from .base import StageDependencies

logger = structlog.get_logger()


class AttachmentStage:
    """Bounded by the process-wide attachment limiter.

    Every pending attachment is attempted; the stage fails only after all
    of them have finished if any one of them failed.
    """

    def __init__(self, deps: StageDependencies) -> None:
        self._repos = deps.repositories
        self._downloads = deps.downloads
        self._limiter = deps.attachment_limiter
        self.telemetry: ImportTelemetry | None = None

    def status(self) -> LimiterStatus:
        return self._limiter.status()

    async def begin(self, context: StageContext) -> StageContext:
        self.telemetry = ImportTelemetry("attachment_stage", provider_message_id=context.provider_message_id)
        self.telemetry.start_timer("attachments")
        return context

    async def _import_one(self, row: StagingAttachment, email_id: uuid.UUID) -> AttachmentOutcome:
        async with self._limiter:
            try:
                key = AttachmentDownloadQueue.key(row.staging_message_id, row.part_id)
                result = await self._downloads.run(key)
                # The attachment row and the staged row's imported flag commit together.
                async with self._repos.attachments.transaction() as session:
                    await self._repos.attachments.create(
                        email_id=email_id,
                        part_id=row.part_id,
                        file_name=row.filename,
                        file_path=result.storage_id,
                        mime_type=row.mime_type,
                        size=result.size,
                        extracted_text=result.extracted_text,
                        session=session,
                    )
                    await self._repos.staged_attachments.mark_imported(row.id, session=session)
            except Exception as exc:
                logger.error("attachment_import_failed", part_id=row.part_id, error=str(exc))
                return AttachmentOutcome(status="error", part_id=row.part_id, error=str(exc))
        self.telemetry.increment("attachments_imported")
        return AttachmentOutcome(status="success", part_id=row.part_id)

    async def run(self, context: StageContext) -> StageContext:
        target = context.require_target()
        if target.target_id is None or target.staging_id is None:
            raise ValueError("Attachment stage needs a persisted email and staging record")
        if self.telemetry is None:
            await self.begin(context)

        rows = await self._repos.staged_attachments.list_for_message(target.staging_id)
        pending = [row for row in rows if not row.imported]
        skipped = len(rows) - len(pending)

        outcomes = await asyncio.gather(*(self._import_one(row, target.target_id) for row in pending))
        context.scratch["attachment_outcomes"] = outcomes

        failed = [o for o in outcomes if o.status == "error"]
        self.telemetry.increment("attachments_failed", len(failed))
        self.telemetry.increment("attachments_skipped", skipped)
        self.telemetry.emit()

        if failed:
            raise AttachmentImportError(list(outcomes))
        logger.info("attachments_imported", count=len(outcomes), skipped=skipped)
        return context
