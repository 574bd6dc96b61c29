"""PipelineOrchestrator: drives one provider message through every stage."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog

from .config import PipelineConfig
from .contacts import ContactResolver, map_contacts
from .db.models import Contact
from .db.repositories import Repositories
from .downloads import AttachmentDownloader, AttachmentDownloadQueue
from .errors import StageError
from .header_types import HeaderTypeCache
from .limiter import ConcurrencyLimiter
from .logging import bind_import_context, clear_import_context
from .models import (
    ImportResult,
    ImportStage,
    ImportTarget,
    LimiterStatus,
    ProviderMessage,
    StageContext,
)
from .provider import GmailClient
from .s3 import BlobStore
from .stages.base import StageDependencies
from .stages.registry import StageRegistry, build_registry
from .stages.staged import enqueue_downloads

T = TypeVar("T")

logger = structlog.get_logger()


class PipelineOrchestrator:
    """Sequences stage processors for one provider message at a time.

    Owns the process-wide state every import shares: the header-type cache,
    the concurrency limiters and the attachment download queue.  Several
    messages may be imported concurrently through one orchestrator.
    """

    def __init__(
        self,
        config: PipelineConfig,
        repositories: Repositories,
        provider: GmailClient,
        blob_store: BlobStore,
        registry: StageRegistry | None = None,
    ) -> None:
        self._config = config
        self._repos = repositories
        self._registry = registry or build_registry(config.provider)

        self.header_types = HeaderTypeCache(repositories.property_types)
        self.attachment_limiter = ConcurrencyLimiter(config.attachment_concurrency)
        self.header_limiter = ConcurrencyLimiter(config.header_concurrency)
        self.contact_limiter = ConcurrencyLimiter(config.contact_concurrency)
        self.downloads = AttachmentDownloadQueue(
            AttachmentDownloader(provider, blob_store, repositories.staged_attachments)
        )
        self.contacts = ContactResolver(repositories.contacts, self.contact_limiter)

        self._deps = StageDependencies(
            config=config,
            repositories=repositories,
            provider=provider,
            header_types=self.header_types,
            contacts=self.contacts,
            downloads=self.downloads,
            attachment_limiter=self.attachment_limiter,
            header_limiter=self.header_limiter,
        )

    async def start(self) -> None:
        """Warm the header-type cache before the first import."""
        await self.header_types.load()

    def attachment_status(self) -> LimiterStatus:
        return self.attachment_limiter.status()

    # ------------------------------------------------------------------
    # Resume
    # ------------------------------------------------------------------

    async def _resume_point(self, provider_message_id: str) -> tuple[StageContext, list[ImportStage]]:
        """Context and remaining stages, picking up from any staging record."""
        context = StageContext(provider_message_id=provider_message_id)
        record = await self._repos.staging.get_by_external_id(provider_message_id)
        if record is None:
            return context, list(ImportStage)

        stage = ImportStage(record.stage)
        target = ImportTarget(
            provider_message_id=provider_message_id,
            raw=ProviderMessage.model_validate(record.message),
            staging_id=record.id,
            email_id=record.email_id,
        )
        if stage.position >= ImportStage.BODY.position:
            target.target_id = target.document_id = record.email_id
        context.target = target
        context.current_stage = stage

        if stage is not ImportStage.COMPLETED:
            rows = await self._repos.staged_attachments.list_for_message(record.id)
            requeued = enqueue_downloads(self.downloads, target, rows)
            logger.info("import_resumed", stage=stage.value, attachments_requeued=requeued)
        return context, stage.following()

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _within_deadline(
        self,
        stage: ImportStage,
        step: Callable[[], Awaitable[T]],
        *,
        step_name: str | None = None,
    ) -> T:
        """Await *step* under the stage deadline, wrapping any failure in :class:`StageError`."""
        timeout = self._config.stage_timeout_seconds
        label = step_name or stage.value
        try:
            async with asyncio.timeout(timeout):
                return await step()
        except TimeoutError as exc:
            logger.error("import_stage_timed_out", stage=stage.value, step=label, timeout_seconds=timeout)
            raise StageError(stage, f"{label} timed out after {timeout}s") from exc
        except Exception as exc:
            logger.exception("import_stage_failed", stage=stage.value, step=label)
            raise StageError(stage, str(exc)) from exc

    async def _run_stage(self, stage: ImportStage, context: StageContext) -> StageContext:
        processor = self._registry.create(stage, self._deps)

        async def _step() -> StageContext:
            return await processor.run(await processor.begin(context))

        return await self._within_deadline(stage, _step)

    async def run(self, provider_message_id: str) -> StageContext:
        """Import one message, resuming from its staging record if there is one.

        Raises :class:`StageError` (chained to the underlying cause) when a
        stage fails.  A returned context without a target means the provider
        no longer has the message.  Download jobs queued for the message are
        dropped when the run ends, whatever the outcome; a later run
        re-queues the ones still pending.
        """
        await self.header_types.load()
        context = StageContext(provider_message_id=provider_message_id)
        try:
            context, remaining = await self._resume_point(provider_message_id)
            for stage in remaining:
                context = await self._run_stage(stage, context)
                if context.target is None:
                    logger.info("import_skipped", reason="message_not_found")
                    return context

                context.current_stage = stage
                if context.target.staging_id is not None and stage is not ImportStage.NEW:
                    await self._repos.staging.set_stage(context.target.staging_id, stage)
                logger.debug("import_stage_completed", stage=stage.value)

                if stage is ImportStage.STAGED and self._config.presync_contacts:
                    raw = context.target.raw
                    # Fails the import as the Headers stage; Staged is already recorded.
                    await self._within_deadline(
                        ImportStage.HEADERS,
                        lambda: self._ensure_contacts(raw),
                        step_name="contact presync",
                    )
            return context
        finally:
            if context.target is not None and context.target.staging_id is not None:
                self.downloads.discard(context.target.staging_id)

    async def import_message(self, provider_message_id: str) -> ImportResult:
        """Run the pipeline and report the outcome instead of raising."""
        bind_import_context(provider_message_id)
        try:
            context = await self.run(provider_message_id)
        except StageError as exc:
            position = exc.stage.position
            cause = exc.__cause__
            return ImportResult(
                provider_message_id=provider_message_id,
                success=False,
                message=f"Import failed in the {exc.stage.value} stage",
                stage=list(ImportStage)[position - 1] if position else None,
                error=str(cause) if cause is not None and str(cause) else str(exc),
            )
        except Exception as exc:
            logger.exception("import_failed")
            return ImportResult(
                provider_message_id=provider_message_id,
                success=False,
                message="Import failed",
                error=str(exc),
            )
        finally:
            clear_import_context()

        if context.target is None:
            return ImportResult(
                provider_message_id=provider_message_id,
                success=True,
                message="Message no longer exists at the provider; nothing to import",
                stage=ImportStage.NEW,
            )
        return ImportResult(
            provider_message_id=provider_message_id,
            success=True,
            message="Import completed",
            stage=context.current_stage,
            email_id=context.target.target_id,
        )

    # ------------------------------------------------------------------
    # Contacts
    # ------------------------------------------------------------------

    async def _ensure_contacts(self, raw: ProviderMessage) -> list[Contact]:
        return await self.contacts.ensure(map_contacts(raw.headers))

    async def sync_contacts(self, provider_message_id: str) -> list[Contact]:
        """Create the contacts a message references without importing it.

        Uses the staged copy when there is one, otherwise fetches from the
        provider.  Returns the contacts that were created.
        """
        record = await self._repos.staging.get_by_external_id(provider_message_id)
        if record is not None:
            raw = ProviderMessage.model_validate(record.message)
        else:
            raw = await self._deps.provider.get_message(provider_message_id)
        created = await self._ensure_contacts(raw)
        logger.info("contacts_presynced", provider_message_id=provider_message_id, created=len(created))
        return created
