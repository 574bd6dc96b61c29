"""Repositories over the import schema.

Every method runs in its own short transaction unless an open session is
passed in, in which case the caller owns commit and rollback.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..models import ImportStage
from .models import (
    Contact,
    DocumentProperty,
    DocumentPropertyType,
    Email,
    EmailAttachment,
    EmailRecipient,
    StagingAttachment,
    StagingMessage,
    Thread,
)

logger = structlog.get_logger()

SessionFactory = async_sessionmaker[AsyncSession]


class _Repository:
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self, session: AsyncSession | None = None) -> AsyncIterator[AsyncSession]:
        if session is not None:
            yield session
            return
        async with self._session_factory() as own, own.begin():
            yield own

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """Unit of work: everything done with the yielded session commits or rolls back together."""
        async with self._session_factory() as session, session.begin():
            yield session


class StagingRepository(_Repository):
    async def get_by_external_id(self, external_id: str) -> StagingMessage | None:
        async with self._session() as session:
            stmt = select(StagingMessage).where(StagingMessage.external_id == external_id)
            return (await session.execute(stmt)).scalar_one_or_none()

    async def create(
        self,
        external_id: str,
        message: dict[str, Any],
        stage: ImportStage = ImportStage.STAGED,
    ) -> StagingMessage:
        async with self._session() as session:
            record = StagingMessage(external_id=external_id, message=message, stage=stage.value)
            session.add(record)
            await session.flush()
            return record

    async def set_stage(self, staging_id: uuid.UUID, stage: ImportStage) -> None:
        async with self._session() as session:
            await session.execute(
                update(StagingMessage)
                .where(StagingMessage.id == staging_id)
                .values(stage=stage.value, updated_at=func.now())
            )


class StagedAttachmentRepository(_Repository):
    async def create_many(
        self,
        staging_id: uuid.UUID,
        parts: Iterable[dict[str, Any]],
    ) -> list[StagingAttachment]:
        """Insert one row per part not already staged; return every row for the message."""
        async with self._session() as session:
            stmt = select(StagingAttachment.part_id).where(
                StagingAttachment.staging_message_id == staging_id
            )
            existing = set((await session.execute(stmt)).scalars().all())
            for part in parts:
                if part["part_id"] in existing:
                    continue
                session.add(StagingAttachment(staging_message_id=staging_id, **part))
                existing.add(part["part_id"])
            await session.flush()
        return await self.list_for_message(staging_id)

    async def list_for_message(self, staging_id: uuid.UUID) -> list[StagingAttachment]:
        async with self._session() as session:
            stmt = (
                select(StagingAttachment)
                .where(StagingAttachment.staging_message_id == staging_id)
                .order_by(StagingAttachment.part_id)
            )
            return list((await session.execute(stmt)).scalars().all())

    async def mark_stored(
        self,
        attachment_id: uuid.UUID,
        *,
        storage_id: str,
        extracted_text: str | None,
        size: int,
    ) -> None:
        async with self._session() as session:
            await session.execute(
                update(StagingAttachment)
                .where(StagingAttachment.id == attachment_id)
                .values(storage_id=storage_id, extracted_text=extracted_text, size=size)
            )

    async def mark_imported(self, attachment_id: uuid.UUID, *, session: AsyncSession | None = None) -> None:
        async with self._session(session) as s:
            await s.execute(
                update(StagingAttachment)
                .where(StagingAttachment.id == attachment_id)
                .values(imported=True)
            )


class EmailRepository(_Repository):
    async def get(self, email_id: uuid.UUID) -> Email | None:
        async with self._session() as session:
            return await session.get(Email, email_id)

    async def add(self, email: Email, *, session: AsyncSession | None = None) -> Email:
        async with self._session(session) as s:
            s.add(email)
            await s.flush()
            return email

    async def add_recipients(
        self,
        email_id: uuid.UUID,
        recipients: Iterable[tuple[int, str]],
        *,
        session: AsyncSession | None = None,
    ) -> int:
        """Link ``(contact_id, recipient_type)`` pairs; duplicates keep the first type."""
        unique: dict[int, str] = {}
        for contact_id, recipient_type in recipients:
            unique.setdefault(contact_id, recipient_type)
        async with self._session(session) as s:
            s.add_all(
                EmailRecipient(email_id=email_id, recipient_id=contact_id, recipient_type=kind)
                for contact_id, kind in unique.items()
            )
            await s.flush()
        return len(unique)

    async def list_recipients(self, email_id: uuid.UUID) -> list[EmailRecipient]:
        async with self._session() as session:
            stmt = select(EmailRecipient).where(EmailRecipient.email_id == email_id)
            return list((await session.execute(stmt)).scalars().all())

    async def find_parent_id(
        self,
        message_ids: Iterable[str],
        *,
        exclude: uuid.UUID | None = None,
        session: AsyncSession | None = None,
    ) -> uuid.UUID | None:
        """Email whose stored ``Message-ID`` property matches one of *message_ids*."""
        message_ids = [m for m in message_ids if m]
        if not message_ids:
            return None
        async with self._session(session) as s:
            stmt = (
                select(Email.email_id)
                .join(DocumentProperty, DocumentProperty.document_id == Email.email_id)
                .join(
                    DocumentPropertyType,
                    DocumentPropertyType.document_property_type_id
                    == DocumentProperty.document_property_type_id,
                )
                .where(func.lower(DocumentPropertyType.property_name) == "message-id")
                .where(DocumentProperty.property_value.in_(message_ids))
            )
            if exclude is not None:
                stmt = stmt.where(Email.email_id != exclude)
            return (await s.execute(stmt.limit(1))).scalar_one_or_none()

    async def backfill_children_parent(
        self,
        email_id: uuid.UUID,
        message_ids: Iterable[str],
        *,
        session: AsyncSession | None = None,
    ) -> int:
        """Point orphaned replies at *email_id*.

        A child is any email without a parent whose stored ``In-Reply-To``
        or ``References`` property names one of *message_ids*.
        """
        message_ids = [m for m in message_ids if m]
        if not message_ids:
            return 0
        children = (
            select(DocumentProperty.document_id)
            .join(
                DocumentPropertyType,
                DocumentPropertyType.document_property_type_id
                == DocumentProperty.document_property_type_id,
            )
            .where(func.lower(DocumentPropertyType.property_name).in_(("in-reply-to", "references")))
            .where(DocumentProperty.property_value.in_(message_ids))
        )
        async with self._session(session) as s:
            result = await s.execute(
                update(Email)
                .where(Email.parent_id.is_(None))
                .where(Email.email_id != email_id)
                .where(Email.email_id.in_(children))
                .values(parent_id=email_id)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount or 0


class ThreadRepository(_Repository):
    async def get_by_external_id(
        self, external_id: str, *, session: AsyncSession | None = None
    ) -> Thread | None:
        async with self._session(session) as s:
            stmt = select(Thread).where(Thread.external_id == external_id)
            return (await s.execute(stmt)).scalar_one_or_none()

    async def create(
        self, external_id: str, subject: str, *, session: AsyncSession | None = None
    ) -> Thread:
        async with self._session(session) as s:
            thread = Thread(external_id=external_id, subject=subject)
            s.add(thread)
            await s.flush()
            return thread

    async def get_or_create(self, external_id: str, subject: str) -> Thread:
        """Existing thread for *external_id*, else a new one titled *subject*."""
        existing = await self.get_by_external_id(external_id)
        if existing is not None:
            return existing
        try:
            thread = await self.create(external_id, subject)
        except IntegrityError:
            # Created by a concurrent import of the same conversation.
            thread = await self.get_by_external_id(external_id)
            if thread is None:
                raise
            return thread
        logger.info("thread_created", external_id=external_id, thread_id=thread.thread_id)
        return thread


class ContactRepository(_Repository):
    async def find_by_emails(self, emails: Iterable[str]) -> list[Contact]:
        """Contacts whose address matches any of *emails*, ignoring case."""
        lowered = sorted({e.strip().lower() for e in emails if e})
        if not lowered:
            return []
        async with self._session() as session:
            stmt = select(Contact).where(func.lower(Contact.email).in_(lowered))
            return list((await session.execute(stmt)).scalars().all())

    async def create(self, *, name: str, email: str) -> Contact:
        """Insert a contact; if the address already exists, return the stored row."""
        try:
            async with self._session() as session:
                contact = Contact(name=name, email=email)
                session.add(contact)
                await session.flush()
                return contact
        except IntegrityError:
            logger.info("contact_already_exists", email=email)
            existing = await self.find_by_emails([email])
            if not existing:
                raise
            return existing[0]


class PropertyTypeRepository(_Repository):
    async def list_for_category(self, category_id: int) -> list[DocumentPropertyType]:
        async with self._session() as session:
            stmt = select(DocumentPropertyType).where(
                DocumentPropertyType.email_property_category_id == category_id
            )
            return list((await session.execute(stmt)).scalars().all())

    async def get_by_name(self, name: str) -> DocumentPropertyType | None:
        async with self._session() as session:
            stmt = select(DocumentPropertyType).where(
                func.lower(DocumentPropertyType.property_name) == name.lower()
            )
            return (await session.execute(stmt)).scalars().first()

    async def create(self, name: str, category_id: int) -> DocumentPropertyType:
        """Insert a property type; another process winning the race returns its row."""
        try:
            async with self._session() as session:
                row = DocumentPropertyType(property_name=name, email_property_category_id=category_id)
                session.add(row)
                await session.flush()
                return row
        except IntegrityError:
            existing = await self.get_by_name(name)
            if existing is None:
                raise
            return existing


class PropertyRepository(_Repository):
    async def create(self, *, document_id: uuid.UUID, type_id: int, value: str) -> DocumentProperty:
        async with self._session() as session:
            row = DocumentProperty(
                document_id=document_id,
                document_property_type_id=type_id,
                property_value=value,
            )
            session.add(row)
            await session.flush()
            return row

    async def delete_for_document(self, document_id: uuid.UUID) -> int:
        async with self._session() as session:
            result = await session.execute(
                delete(DocumentProperty).where(DocumentProperty.document_id == document_id)
            )
            return result.rowcount or 0

    async def list_for_document(self, document_id: uuid.UUID) -> list[DocumentProperty]:
        async with self._session() as session:
            stmt = select(DocumentProperty).where(DocumentProperty.document_id == document_id)
            return list((await session.execute(stmt)).scalars().all())


class EmailAttachmentRepository(_Repository):
    async def create(
        self,
        *,
        email_id: uuid.UUID,
        part_id: str,
        file_name: str,
        file_path: str,
        mime_type: str,
        size: int,
        extracted_text: str | None,
        session: AsyncSession | None = None,
    ) -> EmailAttachment:
        async with self._session(session) as s:
            row = EmailAttachment(
                email_id=email_id,
                part_id=part_id,
                file_name=file_name,
                file_path=file_path,
                mime_type=mime_type,
                size=size,
                extracted_text=extracted_text,
            )
            s.add(row)
            await s.flush()
            return row

    async def list_for_email(self, email_id: uuid.UUID) -> list[EmailAttachment]:
        async with self._session() as session:
            stmt = select(EmailAttachment).where(EmailAttachment.email_id == email_id)
            return list((await session.execute(stmt)).scalars().all())


@dataclass
class Repositories:
    """Every repository, built over one session factory."""

    staging: StagingRepository
    staged_attachments: StagedAttachmentRepository
    emails: EmailRepository
    threads: ThreadRepository
    contacts: ContactRepository
    property_types: PropertyTypeRepository
    properties: PropertyRepository
    attachments: EmailAttachmentRepository

    @classmethod
    def from_session_factory(cls, session_factory: SessionFactory) -> Repositories:
        return cls(
            staging=StagingRepository(session_factory),
            staged_attachments=StagedAttachmentRepository(session_factory),
            emails=EmailRepository(session_factory),
            threads=ThreadRepository(session_factory),
            contacts=ContactRepository(session_factory),
            property_types=PropertyTypeRepository(session_factory),
            properties=PropertyRepository(session_factory),
            attachments=EmailAttachmentRepository(session_factory),
        )
