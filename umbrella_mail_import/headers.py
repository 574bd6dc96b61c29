"""Header normalization: multi-valued header rules and :class:`ParsedHeaderMap`."""

from __future__ import annotations

import email.utils
import re
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass

from .models import MessageHeader

# Splits on commas that are not inside a quoted display name.
_COMMA_OUTSIDE_QUOTES = re.compile(r',(?=(?:[^"]*"[^"]*")*[^"]*$)')
_WHITESPACE = re.compile(r"\s+")
_BRACKETED = re.compile(r"<([^>]+)>")


def strip_angle_brackets(value: str) -> str:
    """``<abc@mail>`` → ``abc@mail``; values without brackets pass through."""
    match = _BRACKETED.search(value)
    return match.group(1) if match else value


def _split_commas(value: str) -> list[str]:
    return _COMMA_OUTSIDE_QUOTES.split(value)


def _split_whitespace(value: str) -> list[str]:
    return _WHITESPACE.split(value)


@dataclass(frozen=True)
class HeaderValueRule:
    """How a multi-valued header is tokenized before persistence."""

    split: Callable[[str], list[str]] | None = None
    transform: Callable[[str], str] | None = None

    def tokens(self, value: str) -> list[str]:
        parts = self.split(value) if self.split else [value]
        transform = self.transform or (lambda x: x)
        tokens = (transform(part.strip()).strip() for part in parts)
        return [token for token in tokens if token]


RECIPIENT_HEADERS = ("To", "Cc", "Bcc")

MULTI_VALUED_HEADERS: dict[str, HeaderValueRule] = {
    "to": HeaderValueRule(split=_split_commas),
    "cc": HeaderValueRule(split=_split_commas),
    "bcc": HeaderValueRule(split=_split_commas),
    "in-reply-to": HeaderValueRule(split=_split_whitespace, transform=strip_angle_brackets),
    "references": HeaderValueRule(split=_split_whitespace, transform=strip_angle_brackets),
    "return-path": HeaderValueRule(transform=strip_angle_brackets),
    "message-id": HeaderValueRule(transform=strip_angle_brackets),
}


def header_rule(name: str) -> HeaderValueRule | None:
    """Rule for a multi-valued header (case-insensitive), or ``None``."""
    return MULTI_VALUED_HEADERS.get(name.lower())


def header_tokens(name: str, value: str | None) -> list[str]:
    """Values to persist for one raw header.

    Multi-valued headers yield one token per element; anything else yields
    the trimmed value.  Empty values yield nothing.
    """
    if value is None:
        return []
    rule = header_rule(name)
    if rule is None:
        stripped = value.strip()
        return [stripped] if stripped else []
    return rule.tokens(value)


# ------------------------------------------------------------------
# ParsedHeaderMap
# ------------------------------------------------------------------


@dataclass(frozen=True)
class HeaderContact:
    """A mailbox parsed out of an address header."""

    email: str
    name: str | None = None

    def __str__(self) -> str:
        return self.name or self.email


HeaderValue = str | HeaderContact

_CONTACT_HEADERS = frozenset({"from", "to", "cc", "bcc"})
_BRACKET_HEADERS = frozenset({"return-path", "message-id", "in-reply-to", "references"})


def _parse_contacts(value: str, *, expand: bool) -> list[HeaderContact]:
    if expand:
        pairs = email.utils.getaddresses([value])
    else:
        pairs = [email.utils.parseaddr(value)]
    contacts = []
    for name, addr in pairs:
        addr = addr.strip()
        if not addr:
            continue
        contacts.append(HeaderContact(email=addr, name=name.replace('"', "").strip() or None))
    return contacts


class ParsedHeaderMap:
    """Multi-valued, case-insensitive lookup over a message's raw headers.

    Repeated headers accumulate rather than overwrite.  With
    ``expand_arrays`` address lists and id lists are split into their
    elements; ``parse_contacts`` turns address headers into
    :class:`HeaderContact` values and ``extract_brackets`` strips
    ``<...>`` from message-id style headers.
    """

    def __init__(self, items: Iterable[tuple[str, HeaderValue | list[HeaderValue]]] = ()) -> None:
        self._values: dict[str, list[HeaderValue]] = {}
        self._names: dict[str, str] = {}
        for name, value in items:
            self._append(name, value if isinstance(value, list) else [value])

    @classmethod
    def from_headers(
        cls,
        headers: Iterable[MessageHeader] | None,
        *,
        expand_arrays: bool = False,
        parse_contacts: bool = False,
        extract_brackets: bool = False,
    ) -> ParsedHeaderMap:
        parsed = cls()
        for header in headers or ():
            if not header.name or not header.value:
                continue
            key = header.name.lower()
            values: list[HeaderValue]
            if key in _CONTACT_HEADERS and parse_contacts:
                values = list(_parse_contacts(header.value, expand=expand_arrays))
            elif key in _CONTACT_HEADERS and expand_arrays:
                values = [v.strip() for v in _split_commas(header.value) if v.strip()]
            elif key in _BRACKET_HEADERS:
                parts = _split_whitespace(header.value) if expand_arrays else [header.value]
                if extract_brackets:
                    parts = [strip_angle_brackets(p) for p in parts]
                values = [p.strip() for p in parts if p.strip()]
            else:
                values = [header.value]
            parsed._append(header.name, values)
        return parsed

    def _append(self, name: str, values: list[HeaderValue]) -> None:
        key = name.lower()
        self._names.setdefault(key, name)
        self._values.setdefault(key, []).extend(values)

    # -- Map-like protocol -------------------------------------------------

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._values

    def __len__(self) -> int:
        return len(self._values)

    def __iter__(self) -> Iterator[str]:
        return iter(self._names.values())

    def get(self, name: str) -> HeaderValue | list[HeaderValue] | None:
        """Single value, list of values (when repeated/expanded), or ``None``."""
        values = self._values.get(name.lower())
        if not values:
            return None
        return values[0] if len(values) == 1 else list(values)

    # -- Typed accessors ---------------------------------------------------

    def get_all(self, name: str) -> list[HeaderValue]:
        return list(self._values.get(name.lower(), []))

    def get_all_strings(self, name: str) -> list[str]:
        return [str(v) for v in self.get_all(name)]

    def get_all_contacts(self, name: str) -> list[HeaderContact]:
        return [v if isinstance(v, HeaderContact) else HeaderContact(email=v) for v in self.get_all(name)]

    def get_first(self, name: str) -> HeaderValue | None:
        values = self._values.get(name.lower())
        return values[0] if values else None

    def get_first_string(self, name: str) -> str | None:
        value = self.get_first(name)
        return str(value) if value is not None else None

    def get_first_contact(self, name: str) -> HeaderContact | None:
        value = self.get_first(name)
        if value is None:
            return None
        return value if isinstance(value, HeaderContact) else HeaderContact(email=value)

    def get_first_or_default(self, name: str, default: str) -> str:
        value = self.get_first_string(name)
        return value if value is not None else default

    def has_value(self, name: str, value: HeaderValue) -> bool:
        return value in self.get_all(name)

    def count_values(self, name: str) -> int:
        return len(self._values.get(name.lower(), []))
