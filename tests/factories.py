"""Builders for provider messages and seeded store rows used across the tests."""

from __future__ import annotations

import base64
from unittest.mock import AsyncMock

from umbrella_mail_import.db import Repositories
from umbrella_mail_import.db.models import Contact
from umbrella_mail_import.models import ImportStage, ProviderMessage, StageContext
from umbrella_mail_import.stages import build_google_registry


async def seed_contacts(repos: Repositories, *addresses: str) -> list[Contact]:
    """Insert one contact per address, named after the local part."""
    return [
        await repos.contacts.create(name=address.split("@")[0].title(), email=address)
        for address in addresses
    ]


def b64(text: str | bytes) -> str:
    """base64url without padding, as the provider sends it."""
    raw = text.encode("utf-8") if isinstance(text, str) else text
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def text_part(body: str, *, part_id: str = "0", mime_type: str = "text/plain") -> dict:
    return {
        "partId": part_id,
        "mimeType": mime_type,
        "filename": "",
        "headers": [{"name": "Content-Type", "value": f"{mime_type}; charset=UTF-8"}],
        "body": {"size": len(body), "data": b64(body)},
    }


def attachment_part(
    filename: str,
    *,
    part_id: str,
    mime_type: str = "application/pdf",
    attachment_id: str | None = None,
    size: int = 1024,
) -> dict:
    return {
        "partId": part_id,
        "mimeType": mime_type,
        "filename": filename,
        "headers": [{"name": "Content-Disposition", "value": f'attachment; filename="{filename}"'}],
        "body": {"attachmentId": attachment_id or f"att-{part_id}", "size": size},
    }


def build_message_dict(
    *,
    message_id: str = "msg-001",
    thread_id: str | None = "thread-001",
    from_addr: str = "Alice Sender <alice@example.com>",
    to_addr: str | None = "Bob Recipient <bob@example.com>",
    cc: str | None = None,
    bcc: str | None = None,
    subject: str | None = "Quarterly report",
    global_message_id: str | None = "<m-001@mail.example.com>",
    in_reply_to: str | None = None,
    references: str | None = None,
    date: str = "Mon, 1 Jan 2024 10:00:00 +0000",
    body: str | None = "Hello Bob,\nplease find the report attached.",
    attachments: list[dict] | None = None,
    extra_headers: list[tuple[str, str]] | None = None,
) -> dict:
    headers = [{"name": "From", "value": from_addr}]
    for name, value in (
        ("Subject", subject),
        ("To", to_addr),
        ("Cc", cc),
        ("Bcc", bcc),
        ("Message-ID", global_message_id),
        ("In-Reply-To", in_reply_to),
        ("References", references),
        ("Date", date),
    ):
        if value is not None:
            headers.append({"name": name, "value": value})
    for name, value in extra_headers or []:
        headers.append({"name": name, "value": value})

    parts = []
    if body is not None:
        parts.append(text_part(body, part_id="0"))
    parts.extend(attachments or [])

    message = {
        "id": message_id,
        "snippet": (body or "")[:50],
        "internalDate": "1704103200000",
        "payload": {
            "partId": "",
            "mimeType": "multipart/mixed",
            "filename": "",
            "headers": headers,
            "body": {"size": 0},
            "parts": parts,
        },
    }
    if thread_id is not None:
        message["threadId"] = thread_id
    return message


def build_message(**kwargs) -> ProviderMessage:
    return ProviderMessage.model_validate(build_message_dict(**kwargs))


async def run_until(deps, message: ProviderMessage, last: ImportStage) -> StageContext:
    """Drive *message* through every stage up to and including *last*."""
    deps.provider.get_message = AsyncMock(return_value=message)
    registry = build_google_registry()
    context = StageContext(provider_message_id=message.id)
    for stage in ImportStage:
        processor = registry.create(stage, deps)
        context = await processor.begin(context)
        context = await processor.run(context)
        context.current_stage = stage
        if stage is last:
            break
    return context
