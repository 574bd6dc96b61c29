"""SQLAlchemy ORM models for the email import schema."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

_JSON = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    pass


class StagingMessage(Base):
    __tablename__ = "staging_message"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    external_id: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    stage: Mapped[str] = mapped_column(Text, nullable=False)
    message: Mapped[dict[str, Any]] = mapped_column(_JSON, nullable=False)
    email_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, default=uuid.uuid4)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    attachments: Mapped[list[StagingAttachment]] = relationship(
        back_populates="staging_message",
        cascade="all, delete-orphan",
    )


class StagingAttachment(Base):
    __tablename__ = "staging_attachment"
    __table_args__ = (UniqueConstraint("staging_message_id", "part_id"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    staging_message_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("staging_message.id", ondelete="CASCADE"),
        nullable=False,
    )
    part_id: Mapped[str] = mapped_column(Text, nullable=False)
    attachment_id: Mapped[str] = mapped_column(Text, nullable=False)
    filename: Mapped[str] = mapped_column(Text, nullable=False)
    mime_type: Mapped[str] = mapped_column(Text, nullable=False)
    size: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    storage_id: Mapped[str | None] = mapped_column(Text)
    extracted_text: Mapped[str | None] = mapped_column(Text)
    imported: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    staging_message: Mapped[StagingMessage] = relationship(back_populates="attachments")


class Contact(Base):
    __tablename__ = "contacts"

    contact_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[str] = mapped_column(Text, unique=True, nullable=False)


class Thread(Base):
    __tablename__ = "threads"

    thread_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    external_id: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    subject: Mapped[str] = mapped_column(Text, nullable=False)
    created_on: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Email(Base):
    __tablename__ = "emails"

    email_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    imported_from_id: Mapped[str] = mapped_column(Text, nullable=False)
    sender_id: Mapped[int] = mapped_column(Integer, ForeignKey("contacts.contact_id"), nullable=False)
    thread_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("threads.thread_id"))
    parent_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("emails.email_id", ondelete="SET NULL"),
    )
    subject: Mapped[str] = mapped_column(Text, nullable=False)
    email_contents: Mapped[str] = mapped_column(Text, nullable=False)
    sent_timestamp: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    global_message_id: Mapped[str | None] = mapped_column(Text, index=True)

    recipients: Mapped[list[EmailRecipient]] = relationship(
        back_populates="email",
        cascade="all, delete-orphan",
    )


class EmailRecipient(Base):
    __tablename__ = "email_recipients"

    email_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("emails.email_id", ondelete="CASCADE"),
        primary_key=True,
    )
    recipient_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("contacts.contact_id"),
        primary_key=True,
    )
    recipient_type: Mapped[str] = mapped_column(Text, nullable=False)

    email: Mapped[Email] = relationship(back_populates="recipients")


class DocumentPropertyType(Base):
    __tablename__ = "document_property_type"

    document_property_type_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    property_name: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    email_property_category_id: Mapped[int] = mapped_column(Integer, nullable=False)


class DocumentProperty(Base):
    __tablename__ = "document_property"

    property_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    document_property_type_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("document_property_type.document_property_type_id"),
        nullable=False,
    )
    # Written before the email row exists; no foreign key.
    document_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    property_value: Mapped[str] = mapped_column(Text, nullable=False)
    created_on: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class EmailAttachment(Base):
    __tablename__ = "email_attachments"
    __table_args__ = (UniqueConstraint("email_id", "part_id"),)

    attachment_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("emails.email_id", ondelete="CASCADE"),
        nullable=False,
    )
    part_id: Mapped[str] = mapped_column(Text, nullable=False)
    file_name: Mapped[str] = mapped_column(Text, nullable=False)
    file_path: Mapped[str] = mapped_column(Text, nullable=False)
    mime_type: Mapped[str] = mapped_column(Text, nullable=False)
    size: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    extracted_text: Mapped[str | None] = mapped_column(Text)
