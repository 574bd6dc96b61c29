"""NEW: fetch the raw message from the provider."""

from __future__ import annotations

import structlog

from ..errors import ProviderNotFoundError
from ..models import ImportTarget, StageContext
from .base import PassThroughBegin, StageDependencies

logger = structlog.get_logger()


class NewStage(PassThroughBegin):
    def __init__(self, deps: StageDependencies) -> None:
        self._provider = deps.provider

    async def run(self, context: StageContext) -> StageContext:
        try:
            raw = await self._provider.get_message(context.provider_message_id)
        except ProviderNotFoundError as exc:
            # Nothing to import; the orchestrator stops without failing.
            logger.warning("provider_message_gone", reason=type(exc).__name__, error=str(exc))
            return context

        context.target = ImportTarget(provider_message_id=context.provider_message_id, raw=raw)
        logger.info(
            "provider_message_received",
            thread_id=raw.thread_id,
            attachments=len(raw.attachment_parts()),
        )
        return context
