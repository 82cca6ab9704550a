"""Heuristic phone-number recovery from raw participant identifiers.

Phone-derived identifiers decode exactly. Opaque (LID) identifiers carry no
decodable relationship to the phone number, so everything derived from them
is a hint with an explicit confidence, never an authority.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from loguru import logger

from groupwarden.core.models import BotIdentity, Identifier, PhoneNumber
from groupwarden.identity.jid import PHONE_MAX_DIGITS, PHONE_MIN_DIGITS, normalize_phone, parse_identifier

# (start, end) windows inspected for a country-code-prefixed run.
OPAQUE_FIXED_WINDOWS: tuple[tuple[int, int], ...] = ((0, 12), (0, 13), (1, 13), (2, 14))
OPAQUE_WINDOW_MIN_DIGITS = 12


class MatchConfidence(Enum):
    """How a candidate phone number was obtained."""

    EXACT = "exact"
    PATTERN = "pattern"
    LOCAL_PREFIX = "local_prefix"
    TRUNCATED = "truncated"


@dataclass(frozen=True, slots=True)
class MatchResult:
    phone: PhoneNumber
    confidence: MatchConfidence
    strategy: str

    @property
    def is_heuristic(self) -> bool:
        return self.confidence is not MatchConfidence.EXACT


@dataclass(frozen=True, slots=True)
class DialingPlan:
    """Numbering conventions of the operator's home country."""

    country_code: str = "62"
    trunk_prefix: str = "0"
    local_prefix: str = "8"
    national_min_length: int = 10
    canonical_length: int = 12


class ParticipantMatcher:
    """Ranked, deterministic strategies turning an identifier into a phone hint."""

    def __init__(self, plan: DialingPlan | None = None, *, bot: BotIdentity | None = None) -> None:
        self.plan = plan or DialingPlan()
        self.bot = bot
        cc = re.escape(self.plan.country_code)
        local = re.escape(self.plan.local_prefix)
        self._country_run = re.compile(rf"{cc}\d{{8,11}}")
        self._local_run = re.compile(rf"{local}\d{{8,10}}")

    def match(self, identifier: Identifier) -> MatchResult | None:
        parsed = parse_identifier(identifier)
        if not parsed.user or parsed.kind == "group":
            return None

        own = self._match_bot(identifier)
        if own is not None:
            return own

        if parsed.kind == "phone":
            return self._decode_phone_derived(parsed.user)

        result = (
            self._match_fixed_windows(parsed.user)
            or self._match_local_run(parsed.user)
            or self._match_truncated(parsed.user)
        )
        if result is None:
            logger.debug("No phone candidate derivable from {}", identifier)
        else:
            logger.debug(
                "Derived {} from {} via {} ({})",
                result.phone,
                identifier,
                result.strategy,
                result.confidence.value,
            )
        return result

    def _match_bot(self, identifier: Identifier) -> MatchResult | None:
        if self.bot is None or not self.bot.lid:
            return None
        if parse_identifier(identifier).base != parse_identifier(self.bot.lid).base:
            return None
        phone = parse_identifier(self.bot.jid).user
        if not phone.isdigit():
            return None
        return MatchResult(phone, MatchConfidence.EXACT, "bot_identity")

    def _decode_phone_derived(self, user: str) -> MatchResult | None:
        if not user.isdigit():
            return None
        plan = self.plan
        if user.startswith(plan.trunk_prefix) and len(user) > plan.national_min_length:
            user = plan.country_code + user[len(plan.trunk_prefix):]
        return MatchResult(user, MatchConfidence.EXACT, "phone_derived")

    def _match_fixed_windows(self, user: str) -> MatchResult | None:
        digits = normalize_phone(user)
        cc = self.plan.country_code
        if len(digits) >= OPAQUE_WINDOW_MIN_DIGITS:
            for start, end in OPAQUE_FIXED_WINDOWS:
                window = digits[start:end]
                if window.startswith(cc) and 11 <= len(window) <= 13:
                    return MatchResult(window, MatchConfidence.PATTERN, f"window[{start}:{end}]")
        if len(digits) >= PHONE_MIN_DIGITS:
            found = self._country_run.search(digits)
            if found:
                return MatchResult(found.group(0), MatchConfidence.PATTERN, "country_code_run")
        return None

    def _match_local_run(self, user: str) -> MatchResult | None:
        digits = normalize_phone(user)
        if len(digits) < PHONE_MIN_DIGITS:
            return None
        found = self._local_run.search(digits)
        if not found:
            return None
        return MatchResult(
            self.plan.country_code + found.group(0),
            MatchConfidence.LOCAL_PREFIX,
            "local_prefix_run",
        )

    def _match_truncated(self, user: str) -> MatchResult | None:
        digits = normalize_phone(user)
        if not PHONE_MIN_DIGITS <= len(digits) <= PHONE_MAX_DIGITS:
            return None
        return MatchResult(digits[: self.plan.canonical_length], MatchConfidence.TRUNCATED, "truncated")
