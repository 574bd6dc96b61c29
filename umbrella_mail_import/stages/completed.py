"""COMPLETED: terminal marker."""

from __future__ import annotations

import structlog

from ..models import StageContext
from .base import PassThroughBegin, StageDependencies

logger = structlog.get_logger()


class CompletedStage(PassThroughBegin):
    def __init__(self, deps: StageDependencies) -> None:
        self._downloads = deps.downloads

    async def run(self, context: StageContext) -> StageContext:
        target = context.require_target()
        if target.staging_id is not None:
            self._downloads.discard(target.staging_id)
        logger.info(
            "email_import_completed",
            email_id=str(target.target_id) if target.target_id else None,
        )
        return context
