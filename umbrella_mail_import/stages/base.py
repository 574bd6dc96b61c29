"""Common contract shared by every stage processor."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..config import PipelineConfig
    from ..contacts import ContactResolver
    from ..db.repositories import Repositories
    from ..downloads import AttachmentDownloadQueue
    from ..header_types import HeaderTypeCache
    from ..limiter import ConcurrencyLimiter
    from ..models import StageContext
    from ..provider import GmailClient


@runtime_checkable
class StageProcessor(Protocol):
    """One pipeline step.

    ``begin`` does optional setup (warming caches, starting timers) and
    ``run`` does the work.  Both return the context they were given,
    mutated in place.  Any exception aborts the import.
    """

    async def begin(self, context: StageContext) -> StageContext: ...

    async def run(self, context: StageContext) -> StageContext: ...


@dataclass
class StageDependencies:
    """Collaborators handed to every stage processor by the orchestrator."""

    config: PipelineConfig
    repositories: Repositories
    provider: GmailClient
    header_types: HeaderTypeCache
    contacts: ContactResolver
    downloads: AttachmentDownloadQueue
    attachment_limiter: ConcurrencyLimiter
    header_limiter: ConcurrencyLimiter


class PassThroughBegin:
    """Mixin for stages with nothing to set up."""

    async def begin(self, context: StageContext) -> StageContext:
        return context
