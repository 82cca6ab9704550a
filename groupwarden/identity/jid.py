"""Identifier parsing and phone-number normalization."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal, TypeAlias

from groupwarden.core.models import Identifier, PhoneNumber

PHONE_SERVER = "s.whatsapp.net"
LID_SERVER = "lid"
GROUP_SERVER = "g.us"
PHONE_MIN_DIGITS = 10
PHONE_MAX_DIGITS = 15
DEVICE_VARIANTS = (0, 1, 2)

_NON_DIGITS = re.compile(r"\D+")

IdentifierKind: TypeAlias = Literal["phone", "lid", "group", "unknown"]


@dataclass(frozen=True, slots=True)
class ParsedIdentifier:
    """Identifier split into ``<user>[:<device>]@<server>``."""

    user: str
    device: str | None
    server: str

    @property
    def kind(self) -> IdentifierKind:
        if self.server == PHONE_SERVER:
            return "phone"
        if self.server == LID_SERVER:
            return "lid"
        if self.server == GROUP_SERVER:
            return "group"
        return "unknown"

    @property
    def base(self) -> Identifier:
        """Identifier with the device suffix removed."""
        if not self.server:
            return self.user
        return f"{self.user}@{self.server}"


def normalize_phone(value: str) -> PhoneNumber:
    """Strip separators, ``+`` and any other non-digit characters."""
    return _NON_DIGITS.sub("", value or "")


def is_valid_phone(value: str) -> bool:
    digits = normalize_phone(value)
    return PHONE_MIN_DIGITS <= len(digits) <= PHONE_MAX_DIGITS


def parse_identifier(raw: str) -> ParsedIdentifier:
    token = (raw or "").strip()
    left, _, server = token.partition("@")
    user, sep, device = left.partition(":")
    return ParsedIdentifier(user=user, device=device if sep else None, server=server.lower())


def is_opaque(identifier: Identifier) -> bool:
    return parse_identifier(identifier).kind == "lid"


def is_phone_derived(identifier: Identifier) -> bool:
    return parse_identifier(identifier).kind == "phone"


def user_part(identifier: Identifier) -> str:
    return parse_identifier(identifier).user


def same_user(a: Identifier, b: Identifier) -> bool:
    """Compare two identifiers ignoring device suffixes."""
    return parse_identifier(a).base == parse_identifier(b).base


def phone_derived_jid(phone: PhoneNumber, device: int | None = None) -> Identifier:
    digits = normalize_phone(phone)
    if device is None:
        return f"{digits}@{PHONE_SERVER}"
    return f"{digits}:{device}@{PHONE_SERVER}"


def opaque_jid(user: str) -> Identifier:
    if "@" in user:
        return user
    return f"{user}@{LID_SERVER}"


def candidate_identifiers(
    phone: PhoneNumber,
    *,
    country_code: str = "",
    trunk_prefix: str = "0",
) -> list[Identifier]:
    """Ordered, de-duplicated identifier candidates constructible from a phone number."""
    digits = normalize_phone(phone)
    candidates = [phone_derived_jid(digits), opaque_jid(digits)]
    candidates.extend(phone_derived_jid(digits, device) for device in DEVICE_VARIANTS)

    # National forms: some directory entries were registered without the country code.
    if country_code and digits.startswith(country_code) and len(digits) > PHONE_MIN_DIGITS:
        national = digits[len(country_code):]
        candidates.extend(
            [
                phone_derived_jid(national),
                opaque_jid(national),
                phone_derived_jid(f"{trunk_prefix}{national}"),
                opaque_jid(f"{trunk_prefix}{national}"),
            ]
        )

    seen: set[str] = set()
    ordered: list[Identifier] = []
    for candidate in candidates:
        if candidate not in seen:
            seen.add(candidate)
            ordered.append(candidate)
    return ordered
