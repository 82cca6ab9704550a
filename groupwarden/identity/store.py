"""Durable, scoped identifier <-> phone-number cache."""

from __future__ import annotations

import json
import os
import threading
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from loguru import logger

from groupwarden.core.models import GroupId, GroupSnapshot, Identifier, PhoneNumber
from groupwarden.identity.jid import is_opaque, is_phone_derived, normalize_phone, opaque_jid, user_part
from groupwarden.utils.helpers import ensure_dir


class IdentifierMappingStore:
    """JSON-file backed mapping cache with Global and per-group scopes.

    A group-scoped record wins over a Global record for the same identifier
    inside that group. Within one scope a phone number maps to at most one
    identifier. Every write rewrites the whole file before returning.
    """

    def __init__(self, path: Path, *, autoload: bool = True) -> None:
        self.path = Path(path).expanduser()
        self._lock = threading.RLock()
        self._global: dict[Identifier, PhoneNumber] = {}
        self._groups: dict[GroupId, dict[Identifier, PhoneNumber]] = {}
        if autoload:
            self.load()

    def load(self) -> None:
        """Load the mapping file; a missing or malformed file yields an empty store."""
        with self._lock:
            self._global = {}
            self._groups = {}
            if not self.path.exists():
                logger.debug("Mapping file {} not found, starting empty", self.path)
                return
            try:
                with open(self.path, encoding="utf-8") as f:
                    raw = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("Ignoring unreadable mapping file {}: {}", self.path, e)
                return
            if not isinstance(raw, dict):
                logger.warning("Ignoring mapping file {} with invalid root shape", self.path)
                return

            self._global = self._coerce_scope(raw.get("global"))
            groups = raw.get("groups")
            if isinstance(groups, dict):
                for group_id, entries in groups.items():
                    scope = self._coerce_scope(entries)
                    if scope:
                        self._groups[str(group_id)] = scope
            logger.info(
                "Loaded {} global and {} group-scoped mapping sets from {}",
                len(self._global),
                len(self._groups),
                self.path,
            )

    def persist(self) -> None:
        """Atomically rewrite the full store."""
        with self._lock:
            data = {
                "global": dict(self._global),
                "groups": {gid: dict(entries) for gid, entries in self._groups.items()},
            }
            ensure_dir(self.path.parent)
            tmp_path = self.path.with_name(f".{self.path.name}.tmp-{os.getpid()}")
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, sort_keys=True)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)

    def add_mapping(
        self,
        identifier: Identifier,
        phone: PhoneNumber,
        scope: GroupId | None = None,
    ) -> None:
        """Insert or overwrite ``(identifier, scope)``; last write wins."""
        key = self._normalize_identifier(identifier)
        digits = normalize_phone(phone)
        if not key or not digits:
            logger.warning("Refusing empty mapping identifier={!r} phone={!r}", identifier, phone)
            return

        with self._lock:
            entries = self._scope_entries(scope, create=True)
            for other, other_phone in list(entries.items()):
                if other_phone == digits and other != key:
                    entries.pop(other, None)
            entries[key] = digits
            self.persist()
        logger.info("Cached mapping {} <-> {} (scope: {})", key, digits, scope or "global")

    def get_identifier_for_phone(
        self,
        phone: PhoneNumber,
        scope: GroupId | None = None,
    ) -> Identifier | None:
        digits = normalize_phone(phone)
        if not digits:
            return None
        with self._lock:
            if scope is not None:
                found = self._find_identifier(self._groups.get(scope, {}), digits)
                if found:
                    return found
            return self._find_identifier(self._global, digits)

    def get_phone_for_identifier(
        self,
        identifier: Identifier,
        scope: GroupId | None = None,
    ) -> PhoneNumber | None:
        key = self._normalize_identifier(identifier)
        with self._lock:
            if scope is not None:
                group_entries = self._groups.get(scope, {})
                if key in group_entries:
                    return group_entries[key]
            return self._global.get(key)

    def seed(self, mappings: dict[Identifier, PhoneNumber]) -> int:
        """Write known identities into the Global scope; returns records changed."""
        changed = 0
        for identifier, phone in mappings.items():
            if self.get_phone_for_identifier(identifier) == normalize_phone(phone):
                continue
            self.add_mapping(identifier, phone)
            changed += 1
        return changed

    def clear_group(self, group_id: GroupId) -> bool:
        with self._lock:
            removed = self._groups.pop(group_id, None) is not None
            if removed:
                self.persist()
        return removed

    def correlate_snapshot(
        self,
        snapshot: GroupSnapshot,
        *,
        exclude: Iterable[Identifier] = (),
    ) -> Identifier | None:
        """Learn a group-scoped record when the admin set is unambiguous.

        When a group has exactly one opaque admin and exactly one phone-derived
        admin they are taken to be the same account. Identifiers in
        ``exclude`` (the bot's own) are left out of the count.
        """
        skipped = {user_part(i) for i in exclude if i}
        admins = [p for p in snapshot.admins() if user_part(p.identifier) not in skipped]
        lid_admins = [p for p in admins if is_opaque(p.identifier)]
        phone_admins = [p for p in admins if is_phone_derived(p.identifier)]
        if len(lid_admins) != 1 or len(phone_admins) != 1:
            return None
        lid = lid_admins[0].identifier
        phone = user_part(phone_admins[0].identifier)
        if self.get_phone_for_identifier(lid, snapshot.group_id) == phone:
            return lid
        self.add_mapping(lid, phone, snapshot.group_id)
        return lid

    def snapshot(self) -> dict[str, Any]:
        """Read-only copy of the store contents."""
        with self._lock:
            return {
                "global": dict(self._global),
                "groups": {gid: dict(entries) for gid, entries in self._groups.items()},
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._global) + sum(len(entries) for entries in self._groups.values())

    def _scope_entries(self, scope: GroupId | None, *, create: bool = False) -> dict[Identifier, PhoneNumber]:
        if scope is None:
            return self._global
        if create:
            return self._groups.setdefault(scope, {})
        return self._groups.get(scope, {})

    @staticmethod
    def _find_identifier(entries: dict[Identifier, PhoneNumber], digits: str) -> Identifier | None:
        for identifier, phone in entries.items():
            if phone == digits:
                return identifier
        return None

    @staticmethod
    def _normalize_identifier(identifier: Identifier) -> Identifier:
        token = (identifier or "").strip()
        if not token:
            return ""
        # Bare digit strings are opaque user parts without their server.
        return opaque_jid(token)

    @classmethod
    def _coerce_scope(cls, raw: Any) -> dict[Identifier, PhoneNumber]:
        if not isinstance(raw, dict):
            return {}
        entries: dict[Identifier, PhoneNumber] = {}
        for identifier, phone in raw.items():
            key = cls._normalize_identifier(str(identifier))
            digits = normalize_phone(str(phone)) if phone is not None else ""
            if key and digits:
                entries[key] = digits
        return entries
