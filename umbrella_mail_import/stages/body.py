"""BODY: extract body text and persist the email row with its links."""

from __future__ import annotations

import email.utils
from datetime import datetime, timezone

import structlog

from ..body import extract_body_text
from ..contacts import map_contacts
from ..db.models import Email
from ..headers import ParsedHeaderMap
from ..models import ProviderMessage, StageContext
from ..telemetry import ImportTelemetry
from .base import StageDependencies

logger = structlog.get_logger()

NO_SUBJECT = "No Subject"


def _sent_timestamp(headers: ParsedHeaderMap, raw: ProviderMessage) -> datetime | None:
    date_header = headers.get_first_string("Date")
    if date_header:
        try:
            parsed = email.utils.parsedate_to_datetime(date_header)
        except (TypeError, ValueError):
            parsed = None
        if parsed is not None:
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    if raw.internal_date and raw.internal_date.isdigit():
        return datetime.fromtimestamp(int(raw.internal_date) / 1000, tz=timezone.utc)
    return None


class BodyStage:
    def __init__(self, deps: StageDependencies) -> None:
        self._repos = deps.repositories
        self._contacts = deps.contacts
        self.telemetry: ImportTelemetry | None = None

    async def begin(self, context: StageContext) -> StageContext:
        self.telemetry = ImportTelemetry("body_stage", provider_message_id=context.provider_message_id)
        self.telemetry.start_timer("body")
        return context

    async def run(self, context: StageContext) -> StageContext:
        target = context.require_target()
        email_id = target.email_id
        if email_id is None:
            raise ValueError("Body stage needs the staged email id")
        if self.telemetry is None:
            await self.begin(context)
        raw = target.raw

        if await self._repos.emails.get(email_id) is not None:
            logger.info("email_already_persisted", email_id=str(email_id))
            target.target_id = target.document_id = email_id
            return context

        headers = ParsedHeaderMap.from_headers(
            raw.headers, expand_arrays=True, parse_contacts=True, extract_brackets=True
        )
        contacts = map_contacts(headers)
        sender = await self._contacts.resolve_sender(contacts)
        recipients = await self._contacts.resolve_recipients(contacts)

        subject = headers.get_first_or_default("Subject", NO_SUBJECT)
        global_message_id = headers.get_first_string("Message-ID")
        in_reply_to = headers.get_all_strings("In-Reply-To")
        body_text = extract_body_text(raw.payload)

        thread_id = None
        if raw.thread_id:
            thread = await self._repos.threads.get_or_create(raw.thread_id, subject)
            thread_id = thread.thread_id

        try:
            async with self._repos.emails.transaction() as session:
                parent_id = await self._repos.emails.find_parent_id(
                    in_reply_to, exclude=email_id, session=session
                )
                await self._repos.emails.add(
                    Email(
                        email_id=email_id,
                        imported_from_id=target.provider_message_id,
                        sender_id=sender.contact_id,
                        thread_id=thread_id,
                        parent_id=parent_id,
                        subject=subject,
                        email_contents=body_text,
                        sent_timestamp=_sent_timestamp(headers, raw),
                        global_message_id=global_message_id,
                    ),
                    session=session,
                )
                linked = await self._repos.emails.add_recipients(
                    email_id,
                    [(contact.contact_id, kind) for contact, kind in recipients],
                    session=session,
                )
                backfilled = await self._repos.emails.backfill_children_parent(
                    email_id,
                    [global_message_id] if global_message_id else [],
                    session=session,
                )
        except Exception:
            logger.exception("email_persist_rolled_back", email_id=str(email_id))
            raise

        target.target_id = target.document_id = email_id
        self.telemetry.increment("recipients", linked)
        self.telemetry.increment("children_backfilled", backfilled)
        self.telemetry.emit()
        logger.info(
            "email_persisted",
            email_id=str(email_id),
            thread_id=thread_id,
            parent_id=str(parent_id) if parent_id else None,
        )
        return context
