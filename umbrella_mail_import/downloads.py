"""Attachment download jobs: fetch → extract text → upload → record."""

from __future__ import annotations

import asyncio
import io
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

import pdfplumber
import structlog

from .body import html_to_text
from .models import DownloadResult

if TYPE_CHECKING:
    from .db.repositories import StagedAttachmentRepository
    from .provider import GmailClient
    from .s3 import BlobStore

logger = structlog.get_logger()


def _pdf_text(data: bytes) -> str:
    with pdfplumber.open(io.BytesIO(data)) as pdf:
        pages = [page.extract_text() or "" for page in pdf.pages]
    return "\n".join(p for p in pages if p).strip()


async def extract_attachment_text(data: bytes, mime_type: str) -> str | None:
    """Searchable text for an attachment, or ``None`` for unsupported types."""
    mime_type = (mime_type or "").lower()
    if mime_type == "text/html":
        return html_to_text(data.decode("utf-8", errors="replace"))
    if mime_type.startswith("text/"):
        return data.decode("utf-8", errors="replace").strip()
    if mime_type == "application/pdf":
        try:
            return await asyncio.to_thread(_pdf_text, data)
        except Exception as exc:
            # A corrupt PDF is still stored; it just has no text.
            logger.warning("pdf_text_extraction_failed", error=str(exc))
            return None
    return None


@dataclass(frozen=True)
class AttachmentDownloadJob:
    staged_message_id: uuid.UUID
    staged_attachment_id: uuid.UUID
    provider_message_id: str
    part_id: str
    attachment_id: str
    filename: str
    mime_type: str

    @property
    def key(self) -> str:
        return AttachmentDownloadQueue.key(self.staged_message_id, self.part_id)


class AttachmentDownloader:
    """Runs a single job end to end."""

    def __init__(
        self,
        provider: GmailClient,
        blob_store: BlobStore,
        staged_attachments: StagedAttachmentRepository,
    ) -> None:
        self._provider = provider
        self._blob_store = blob_store
        self._staged_attachments = staged_attachments

    async def download(self, job: AttachmentDownloadJob) -> DownloadResult:
        data = await self._provider.get_attachment(job.provider_message_id, job.attachment_id)
        text = await extract_attachment_text(data, job.mime_type)
        storage_id = await self._blob_store.upload(
            data,
            str(job.staged_message_id),
            f"{job.part_id}_{job.filename}",
            job.mime_type,
        )
        await self._staged_attachments.mark_stored(
            job.staged_attachment_id,
            storage_id=storage_id,
            extracted_text=text,
            size=len(data),
        )
        logger.info(
            "attachment_downloaded",
            part_id=job.part_id,
            storage_id=storage_id,
            size=len(data),
            has_text=text is not None,
        )
        return DownloadResult(
            staged_message_id=job.staged_message_id,
            part_id=job.part_id,
            storage_id=storage_id,
            extracted_text=text,
            size=len(data),
        )


class AttachmentDownloadQueue:
    """Download jobs keyed by ``"<stagedMessageId>:<partId>"``.

    :meth:`run` executes a job at most once; concurrent and later callers
    share the same result.  A failed job is forgotten so a resumed import
    can enqueue and run it again.
    """

    def __init__(self, downloader: AttachmentDownloader) -> None:
        self._downloader = downloader
        self._jobs: dict[str, AttachmentDownloadJob] = {}
        self._tasks: dict[str, asyncio.Task[DownloadResult]] = {}

    @staticmethod
    def key(staged_message_id: uuid.UUID | str, part_id: str) -> str:
        return f"{staged_message_id}:{part_id}"

    def __contains__(self, key: object) -> bool:
        return key in self._jobs

    def __len__(self) -> int:
        return len(self._jobs)

    def enqueue(self, job: AttachmentDownloadJob) -> str:
        self._jobs.setdefault(job.key, job)
        return job.key

    async def run(self, key: str) -> DownloadResult:
        job = self._jobs.get(key)
        if job is None:
            raise LookupError(f"No download job queued for {key}")
        task = self._tasks.get(key)
        if task is None:
            task = asyncio.ensure_future(self._downloader.download(job))
            self._tasks[key] = task
        try:
            return await asyncio.shield(task)
        except Exception:
            if task.done():
                self._tasks.pop(key, None)
            raise

    def discard(self, staged_message_id: uuid.UUID) -> int:
        """Drop every job and cached result for one staged message.

        Downloads still in flight are cancelled; :meth:`run` shields them
        from its callers, so a timed-out stage would otherwise leave them
        running outside the attachment limiter.  Returns how many were
        cancelled.
        """
        prefix = f"{staged_message_id}:"
        cancelled = 0
        for key in [k for k in self._jobs if k.startswith(prefix)]:
            self._jobs.pop(key, None)
            task = self._tasks.pop(key, None)
            if task is not None and not task.done():
                task.cancel()
                cancelled += 1
        if cancelled:
            logger.info("attachment_downloads_cancelled", staged_message_id=str(staged_message_id), count=cancelled)
        return cancelled
