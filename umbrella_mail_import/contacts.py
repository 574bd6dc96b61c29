"""Contact resolution: header text → structured contacts → contact store."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

import structlog

from .errors import DataIntegrityError
from .headers import ParsedHeaderMap
from .limiter import ConcurrencyLimiter
from .models import MessageHeader

if TYPE_CHECKING:
    from .db.models import Contact
    from .db.repositories import ContactRepository

logger = structlog.get_logger()

RecipientType = Literal["from", "to", "cc", "bcc"]

_ADDRESS_HEADERS: tuple[tuple[str, RecipientType], ...] = (
    ("From", "from"),
    ("To", "to"),
    ("Cc", "cc"),
    ("Bcc", "bcc"),
)


@dataclass(frozen=True)
class ParsedContact:
    email: str
    name: str | None
    recipient_type: RecipientType

    @property
    def key(self) -> str:
        return contact_key(self.email)


def contact_key(address: str) -> str:
    """Dedup key for an address; matching is case-insensitive."""
    return address.strip().lower()


def map_contacts(headers: ParsedHeaderMap | Iterable[MessageHeader] | None) -> list[ParsedContact]:
    """Every mailbox named in From/To/Cc/Bcc, in header order."""
    if not isinstance(headers, ParsedHeaderMap):
        headers = ParsedHeaderMap.from_headers(headers, expand_arrays=True, parse_contacts=True)
    contacts: list[ParsedContact] = []
    for header_name, recipient_type in _ADDRESS_HEADERS:
        for contact in headers.get_all_contacts(header_name):
            contacts.append(
                ParsedContact(email=contact.email, name=contact.name, recipient_type=recipient_type)
            )
    return contacts


def unique_by_address(contacts: Iterable[ParsedContact]) -> list[ParsedContact]:
    """First occurrence of each address wins."""
    seen: dict[str, ParsedContact] = {}
    for contact in contacts:
        seen.setdefault(contact.key, contact)
    return list(seen.values())


class ContactResolver:
    """Maps parsed header contacts onto rows in the contact store."""

    def __init__(self, repository: ContactRepository, limiter: ConcurrencyLimiter) -> None:
        self._repository = repository
        self._limiter = limiter

    async def _existing(self, contacts: Iterable[ParsedContact]) -> dict[str, Contact]:
        addresses = sorted({c.key for c in contacts})
        if not addresses:
            return {}
        found = await self._repository.find_by_emails(addresses)
        return {contact_key(row.email): row for row in found}

    async def resolve_sender(self, contacts: list[ParsedContact]) -> Contact:
        """The stored contact for the message's From address.

        Exactly one stored match is required.
        """
        sender = next((c for c in contacts if c.recipient_type == "from"), None)
        if sender is None or not sender.email:
            raise DataIntegrityError("No valid sender found in the message headers")
        matches = await self._repository.find_by_emails([sender.key])
        if len(matches) != 1:
            raise DataIntegrityError(
                f"Expected exactly one stored contact for sender {sender.email}, found {len(matches)}"
            )
        return matches[0]

    async def resolve_recipients(
        self, contacts: list[ParsedContact]
    ) -> list[tuple[Contact, RecipientType]]:
        """Stored contacts for every To/Cc/Bcc address, with their role.

        Raises :class:`DataIntegrityError` if any recipient is unknown.
        """
        recipients = unique_by_address(c for c in contacts if c.recipient_type != "from")
        existing = await self._existing(recipients)
        missing = [c.email for c in recipients if c.key not in existing]
        if missing:
            raise DataIntegrityError(
                f"Not all recipients were found in the contact store: {', '.join(missing)}"
            )
        return [(existing[c.key], c.recipient_type) for c in recipients]

    async def missing(self, contacts: list[ParsedContact]) -> list[ParsedContact]:
        unique = unique_by_address(contacts)
        existing = await self._existing(unique)
        return [c for c in unique if c.key not in existing]

    async def ensure(self, contacts: list[ParsedContact]) -> list[Contact]:
        """Create every contact not yet in the store.

        Creations run concurrently (bounded by the limiter) and are all
        awaited; failures are collected and raised together as an
        :class:`ExceptionGroup` once every creation has been attempted.
        """
        to_create = await self.missing(contacts)
        if not to_create:
            return []

        async def _create(contact: ParsedContact) -> Contact:
            async with self._limiter:
                return await self._repository.create(
                    name=contact.name or contact.email,
                    email=contact.email,
                )

        results = await asyncio.gather(*(_create(c) for c in to_create), return_exceptions=True)
        errors: list[Exception] = []
        created: list[Contact] = []
        for contact, result in zip(to_create, results):
            if isinstance(result, Exception):
                logger.error("contact_create_failed", email=contact.email, error=str(result))
                errors.append(result)
            else:
                created.append(result)
        if errors:
            raise ExceptionGroup("Failed to create one or more contacts", errors)
        logger.info("contacts_created", count=len(created))
        return created
