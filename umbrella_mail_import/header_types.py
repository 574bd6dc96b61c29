"""Process-wide cache of header name → property type id."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from .db.repositories import PropertyTypeRepository

logger = structlog.get_logger()

# document_property_type.email_property_category_id for raw email headers.
EMAIL_HEADER_CATEGORY = 1


class HeaderTypeCache:
    """Maps header names to property type ids, creating types on first sight.

    Owned by the orchestrator and handed to the header stage.  The first
    :meth:`load` reads every known type from the store; entries are never
    evicted.  Names are matched case-insensitively and a given name is
    created at most once per cache, even under concurrent imports.
    """

    def __init__(self, repository: PropertyTypeRepository, category_id: int = EMAIL_HEADER_CATEGORY) -> None:
        self._repository = repository
        self._category_id = category_id
        self._ids: dict[str, int] = {}
        self._loaded = False
        self._load_lock = asyncio.Lock()
        self._name_locks: dict[str, asyncio.Lock] = {}

    @property
    def loaded(self) -> bool:
        return self._loaded

    def __len__(self) -> int:
        return len(self._ids)

    async def load(self) -> None:
        """Populate the cache from the store; later calls are no-ops."""
        if self._loaded:
            return
        async with self._load_lock:
            if self._loaded:
                return
            rows = await self._repository.list_for_category(self._category_id)
            for row in rows:
                self._ids.setdefault(row.property_name.lower(), row.document_property_type_id)
            self._loaded = True
            logger.info("header_types_loaded", count=len(self._ids))

    def get(self, name: str) -> int | None:
        return self._ids.get(name.lower())

    async def get_or_create(self, name: str) -> int:
        key = name.lower()
        cached = self._ids.get(key)
        if cached is not None:
            return cached
        lock = self._name_locks.setdefault(key, asyncio.Lock())
        async with lock:
            cached = self._ids.get(key)
            if cached is not None:
                return cached
            row = await self._repository.create(name, self._category_id)
            self._ids[key] = row.document_property_type_id
            logger.info("header_type_created", header=name, type_id=row.document_property_type_id)
            return row.document_property_type_id
