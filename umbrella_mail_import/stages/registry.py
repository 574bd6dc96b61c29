"""Stage registry: maps each :class:`ImportStage` to a processor factory per provider."""

from __future__ import annotations

from collections.abc import Callable, Mapping

import structlog

from ..models import ImportStage
from .attachments import AttachmentStage
from .base import StageDependencies, StageProcessor
from .body import BodyStage
from .completed import CompletedStage
from .contacts import ContactStage
from .headers import HeaderStage
from .new import NewStage
from .staged import StagedStage

logger = structlog.get_logger()

StageFactory = Callable[[StageDependencies], StageProcessor]


class StageRegistry:
    """Processor factories for one provider, covering every stage."""

    def __init__(self, provider: str, factories: Mapping[ImportStage, StageFactory]) -> None:
        missing = [stage.value for stage in ImportStage if stage not in factories]
        if missing:
            raise ValueError(f"Registry for {provider!r} has no processor for: {', '.join(missing)}")
        self.provider = provider
        self._factories = dict(factories)

    def __contains__(self, stage: object) -> bool:
        return stage in self._factories

    def create(self, stage: ImportStage, deps: StageDependencies) -> StageProcessor:
        """A fresh processor for one run of *stage*."""
        return self._factories[stage](deps)


def build_google_registry() -> StageRegistry:
    return StageRegistry(
        "google",
        {
            ImportStage.NEW: NewStage,
            ImportStage.STAGED: StagedStage,
            ImportStage.HEADERS: HeaderStage,
            ImportStage.BODY: BodyStage,
            ImportStage.ATTACHMENTS: AttachmentStage,
            ImportStage.CONTACTS: ContactStage,
            ImportStage.COMPLETED: CompletedStage,
        },
    )


REGISTRY_BUILDERS: dict[str, Callable[[], StageRegistry]] = {
    "google": build_google_registry,
}


def build_registry(provider: str) -> StageRegistry:
    try:
        builder = REGISTRY_BUILDERS[provider]
    except KeyError:
        raise ValueError(f"Unsupported mail provider: {provider!r}") from None
    registry = builder()
    logger.info("stage_registry_built", provider=provider)
    return registry
