"""HEADERS: one property row per header value (or per token of a multi-valued header)."""

from __future__ import annotations

import asyncio
import uuid

import structlog

from ..headers import header_tokens
from ..models import StageContext
from ..telemetry import ImportTelemetry
from .base import StageDependencies

logger = structlog.get_logger()


class HeaderStage:
    def __init__(self, deps: StageDependencies) -> None:
        self._repos = deps.repositories
        self._types = deps.header_types
        self._limiter = deps.header_limiter
        self.telemetry: ImportTelemetry | None = None

    async def begin(self, context: StageContext) -> StageContext:
        self.telemetry = ImportTelemetry("header_stage", provider_message_id=context.provider_message_id)
        self.telemetry.start_timer("headers")
        await self._types.load()
        return context

    async def _write(self, document_id: uuid.UUID, name: str, value: str) -> None:
        async with self._limiter:
            type_id = await self._types.get_or_create(name)
            await self._repos.properties.create(document_id=document_id, type_id=type_id, value=value)
        self.telemetry.increment("header_properties")

    async def run(self, context: StageContext) -> StageContext:
        target = context.require_target()
        document_id = target.email_id
        if document_id is None:
            raise ValueError("Header properties need the staged email id")
        if self.telemetry is None:
            await self.begin(context)

        cleared = await self._repos.properties.delete_for_document(document_id)
        if cleared:
            logger.info("header_properties_cleared", document_id=str(document_id), count=cleared)

        rows = [
            (header.name, token)
            for header in target.raw.headers
            if header.name
            for token in header_tokens(header.name, header.value)
        ]
        results = await asyncio.gather(
            *(self._write(document_id, name, value) for name, value in rows),
            return_exceptions=True,
        )
        errors = [r for r in results if isinstance(r, Exception)]

        self.telemetry.increment("header_failures", len(errors))
        self.telemetry.emit()

        if errors:
            logger.error(
                "header_properties_failed",
                document_id=str(document_id),
                failed=len(errors),
                total=len(rows),
            )
            raise ExceptionGroup(f"Failed to persist {len(errors)} of {len(rows)} header properties", errors)
        logger.info("header_properties_saved", document_id=str(document_id), count=len(rows))
        return context
