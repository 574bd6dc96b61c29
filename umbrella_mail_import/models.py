"""Data models shared across the import pipeline."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class ImportStage(str, Enum):
    """Pipeline stages, declared in execution order."""

    NEW = "new"
    STAGED = "staged"
    HEADERS = "headers"
    BODY = "body"
    ATTACHMENTS = "attachments"
    CONTACTS = "contacts"
    COMPLETED = "completed"

    @property
    def position(self) -> int:
        return _STAGE_ORDER.index(self)

    def next(self) -> ImportStage | None:
        """The stage that follows this one, or ``None`` after ``COMPLETED``."""
        index = self.position + 1
        return _STAGE_ORDER[index] if index < len(_STAGE_ORDER) else None

    def following(self) -> list[ImportStage]:
        """Every stage after this one, in order."""
        return _STAGE_ORDER[self.position + 1 :]


_STAGE_ORDER: list[ImportStage] = list(ImportStage)


# ------------------------------------------------------------------
# Provider message (Gmail ``users.messages`` resource, format=full)
# ------------------------------------------------------------------


class MessageHeader(BaseModel):
    name: str | None = None
    value: str | None = None


class MessagePartBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    attachment_id: str | None = Field(default=None, alias="attachmentId")
    size: int = 0
    data: str | None = Field(default=None, description="base64url-encoded content")


class MessagePart(BaseModel):
    """One node of the provider's MIME tree."""

    model_config = ConfigDict(populate_by_name=True)

    part_id: str | None = Field(default=None, alias="partId")
    mime_type: str | None = Field(default=None, alias="mimeType")
    filename: str | None = None
    headers: list[MessageHeader] = Field(default_factory=list)
    body: MessagePartBody | None = None
    parts: list[MessagePart] = Field(default_factory=list)

    def walk(self):
        """Yield this part and every descendant, depth-first."""
        yield self
        for child in self.parts:
            yield from child.walk()

    def header(self, name: str) -> str | None:
        lowered = name.lower()
        for header in self.headers:
            if header.name and header.name.lower() == lowered:
                return header.value
        return None

    @property
    def is_attachment(self) -> bool:
        return bool(self.filename and self.body and self.body.attachment_id)


class ProviderMessage(BaseModel):
    """Raw message as returned by the provider mail API."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    thread_id: str | None = Field(default=None, alias="threadId")
    label_ids: list[str] = Field(default_factory=list, alias="labelIds")
    snippet: str | None = None
    internal_date: str | None = Field(default=None, alias="internalDate")
    payload: MessagePart | None = None

    @property
    def headers(self) -> list[MessageHeader]:
        return self.payload.headers if self.payload else []

    def attachment_parts(self) -> list[MessagePart]:
        if self.payload is None:
            return []
        return [part for part in self.payload.walk() if part.is_attachment]

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ------------------------------------------------------------------
# Pipeline state
# ------------------------------------------------------------------


@dataclass
class ImportTarget:
    """The in-flight message and the ids it acquires as stages persist it."""

    provider_message_id: str
    raw: ProviderMessage
    staging_id: uuid.UUID | None = None
    # Allocated by the Staged stage so header properties can reference the
    # email before the Body stage inserts it.
    email_id: uuid.UUID | None = None
    target_id: uuid.UUID | None = None
    document_id: uuid.UUID | None = None


@dataclass
class StageContext:
    """Mutable state carried through one import run by the orchestrator."""

    provider_message_id: str
    current_stage: ImportStage = ImportStage.NEW
    target: ImportTarget | None = None
    scratch: dict[str, Any] = field(default_factory=dict)

    def require_target(self) -> ImportTarget:
        if self.target is None:
            raise ValueError(f"Expected an import target in stage {self.current_stage.value}")
        return self.target


@dataclass
class AttachmentOutcome:
    status: Literal["success", "error"]
    part_id: str
    error: str | None = None


@dataclass
class DownloadResult:
    """Completed attachment download job."""

    staged_message_id: uuid.UUID
    part_id: str
    storage_id: str
    extracted_text: str | None
    size: int


class LimiterStatus(BaseModel):
    """Point-in-time view of a :class:`ConcurrencyLimiter`."""

    active_downloads: int
    queued_downloads: int
    max_concurrent: int
    available_slots: int


class ImportResult(BaseModel):
    """Outcome of one message import, surfaced to the triggering caller."""

    provider_message_id: str
    success: bool
    message: str
    stage: ImportStage | None = Field(
        default=None,
        description="Last stage that completed successfully",
    )
    email_id: uuid.UUID | None = None
    error: str | None = None
