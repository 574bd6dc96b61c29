"""CONTACTS: create every header-referenced contact missing from the store."""

from __future__ import annotations

import structlog

from ..contacts import map_contacts
from ..models import StageContext
from .base import PassThroughBegin, StageDependencies

logger = structlog.get_logger()


class ContactStage(PassThroughBegin):
    def __init__(self, deps: StageDependencies) -> None:
        self._resolver = deps.contacts

    async def run(self, context: StageContext) -> StageContext:
        target = context.require_target()
        contacts = map_contacts(target.raw.headers)
        created = await self._resolver.ensure(contacts)
        context.scratch["contacts_created"] = len(created)
        logger.info("contacts_synced", referenced=len(contacts), created=len(created))
        return context
