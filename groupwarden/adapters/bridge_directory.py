"""Group directory backed by the messaging bridge protocol v2 over websockets."""

from __future__ import annotations

import asyncio
import contextlib
import json
import uuid
from typing import Any

import websockets
from loguru import logger

from groupwarden.config.schema import BridgeConfig
from groupwarden.core.errors import (
    CapabilityUnsupportedError,
    DirectoryError,
    DirectoryTimeoutError,
    DirectoryUnavailableError,
    RateLimitedError,
)
from groupwarden.core.models import (
    BotIdentity,
    GroupId,
    GroupSnapshot,
    Identifier,
    NetworkPresence,
    Participant,
    ParticipantUpdateResult,
    PhoneNumber,
    Role,
)

PROTOCOL_VERSION = 2

# Bridge error codes with the directory status they stand for.
_CODE_STATUS = {"ERR_FORBIDDEN": 403, "ERR_NOT_FOUND": 404, "ERR_INVALID_TARGET": 406}

# Bridge error codes meaning "the identifier does not exist" for probes.
_PROBE_MISS_CODES = frozenset(_CODE_STATUS)


class BridgeProtocolMismatchError(DirectoryUnavailableError):
    """Bridge protocol version mismatch."""


class BridgeProtocolError(DirectoryError):
    """Bridge returned a protocol-level error."""

    def __init__(self, code: str, message: str, retryable: bool, status: int | None = None):
        super().__init__(f"{code}: {message}", status=status, retryable=retryable)
        self.code = code


def _map_bridge_error(code: str, message: str, retryable: bool, command: str) -> DirectoryError:
    if code == "ERR_TIMEOUT":
        return DirectoryTimeoutError(f"{command}: {message}")
    if code == "ERR_RATE_LIMIT":
        return RateLimitedError(f"{command}: {message}")
    if code == "ERR_UNSUPPORTED":
        return CapabilityUnsupportedError(command)
    if code == "ERR_NOT_CONNECTED":
        return DirectoryUnavailableError(f"{command}: {message}")
    return BridgeProtocolError(code, message, retryable, status=_CODE_STATUS.get(code))


def _parse_role(raw: Any) -> Role:
    if raw == "superadmin":
        return "superadmin"
    if raw == "admin":
        return "admin"
    return "member"


def _parse_status(raw: Any) -> int:
    try:
        return int(str(raw).strip())
    except (TypeError, ValueError):
        return 500


def _request_identifier(item: Any) -> Identifier:
    if isinstance(item, dict):
        return str(item.get("jid") or item.get("id") or "")
    return str(item or "")


def parse_group_metadata(group_id: GroupId, payload: dict[str, Any]) -> GroupSnapshot:
    """Turn a ``group_metadata`` result into a snapshot."""
    participants = []
    for item in payload.get("participants") or []:
        if not isinstance(item, dict):
            continue
        identifier = str(item.get("id") or item.get("jid") or "").strip()
        if identifier:
            participants.append(Participant(identifier, _parse_role(item.get("admin"))))
    pending = tuple(
        identifier
        for identifier in (_request_identifier(item) for item in payload.get("pendingParticipants") or [])
        if identifier
    )
    return GroupSnapshot(
        group_id=str(payload.get("id") or group_id),
        participants=tuple(participants),
        subject=str(payload.get("subject") or ""),
        member_add_mode=bool(payload.get("memberAddMode")),
        pending_requests=pending,
    )


class BridgeGroupDirectory:
    """``GroupDirectoryPort`` over one bridge websocket connection.

    Use as an async context manager; responses are correlated by request id
    on a background reader task.
    """

    def __init__(self, config: BridgeConfig, *, connect=None):
        self.config = config
        self.supports_existence_lookup = True
        self._connect = connect or websockets.connect
        self._ws: Any | None = None
        self._ws_cm: Any | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._send_lock = asyncio.Lock()
        self._pending: dict[str, asyncio.Future[dict[str, Any]]] = {}
        self._pending_types: dict[str, str] = {}

    def _require_token(self) -> str:
        token = (self.config.token or "").strip()
        if not token:
            raise DirectoryUnavailableError("bridge.token is required for protocol v2", retryable=False)
        return token

    @property
    def _timeout_s(self) -> float:
        return max(1.0, self.config.connect_timeout_ms / 1000.0)

    async def __aenter__(self) -> "BridgeGroupDirectory":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def connect(self) -> None:
        """Open the websocket and verify the bridge speaks protocol v2."""
        token = self._require_token()
        logger.info("Connecting to bridge at {}...", self.config.url)
        self._ws_cm = self._connect(
            self.config.url,
            max_size=self.config.max_payload_bytes,
            ping_interval=20,
            ping_timeout=20,
        )
        try:
            self._ws = await self._ws_cm.__aenter__()
        except OSError as e:
            self._ws_cm = None
            raise DirectoryUnavailableError(f"cannot connect to bridge at {self.config.url}: {e}") from e
        self._reader_task = asyncio.create_task(self._read_loop())

        try:
            response = await self._send_command("health", {}, timeout_seconds=self._timeout_s, token=token)
        except (TimeoutError, DirectoryError) as e:
            await self.close()
            if isinstance(e, DirectoryError):
                raise
            raise DirectoryTimeoutError("bridge health check timed out") from e
        version = response.get("protocolVersion", response.get("version"))
        if version != PROTOCOL_VERSION:
            await self.close()
            raise BridgeProtocolMismatchError(
                f"Bridge protocol mismatch: expected v{PROTOCOL_VERSION}, got {version!r}",
                retryable=False,
            )
        logger.info("Connected to bridge (protocol v2)")

    async def close(self) -> None:
        if self._reader_task:
            self._reader_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader_task
            self._reader_task = None
        if self._ws_cm is not None:
            cm, self._ws_cm = self._ws_cm, None
            await cm.__aexit__(None, None, None)
        self._ws = None
        self._fail_pending("Bridge connection closed")

    # ------------------------------------------------------------------
    # GroupDirectoryPort
    # ------------------------------------------------------------------

    async def bot_identity(self) -> BotIdentity:
        result = await self._command("whoami", {})
        jid = str(result.get("id") or result.get("jid") or "")
        if not jid:
            raise DirectoryUnavailableError("bridge session is not logged in")
        lid = result.get("lid")
        return BotIdentity(jid=jid, lid=str(lid) if lid else None)

    async def fetch_group_snapshot(self, group_id: GroupId) -> GroupSnapshot:
        result = await self._command("group_metadata", {"groupId": group_id})
        return parse_group_metadata(group_id, result)

    async def list_participating_groups(self) -> list[GroupSnapshot]:
        result = await self._command("group_fetch_all_participating", {})
        groups = result.get("groups")
        if isinstance(groups, dict):
            items = list(groups.items())
        elif isinstance(groups, list):
            items = [(str(g.get("id") or ""), g) for g in groups if isinstance(g, dict)]
        else:
            items = []
        return [parse_group_metadata(gid, payload) for gid, payload in items if gid and isinstance(payload, dict)]

    async def mutate_participants(
        self,
        group_id: GroupId,
        identifiers: list[Identifier],
        operation: str,
    ) -> list[ParticipantUpdateResult]:
        result = await self._command(
            "group_participants_update",
            {"groupId": group_id, "participants": list(identifiers), "action": operation},
        )
        return self._parse_update_results(result, identifiers)

    async def update_group_subject(self, group_id: GroupId, new_name: str) -> None:
        await self._command("group_update_subject", {"groupId": group_id, "subject": new_name})

    async def exists_on_network(self, phone: PhoneNumber) -> NetworkPresence | None:
        try:
            result = await self._command("on_whatsapp", {"phone": phone})
        except CapabilityUnsupportedError:
            self.supports_existence_lookup = False
            raise
        rows = result.get("results")
        if not isinstance(rows, list) or not rows or not isinstance(rows[0], dict):
            return None
        row = rows[0]
        identifier = row.get("jid")
        return NetworkPresence(exists=bool(row.get("exists")), identifier=str(identifier) if identifier else None)

    async def probe_identifier(self, identifier: Identifier) -> bool:
        try:
            await self._command("profile_picture_url", {"jid": identifier})
        except BridgeProtocolError as e:
            if e.code in _PROBE_MISS_CODES:
                return False
            raise
        return True

    async def list_pending_join_requests(self, group_id: GroupId) -> list[Identifier]:
        result = await self._command("group_request_participants_list", {"groupId": group_id})
        requests = result.get("requests")
        if not isinstance(requests, list):
            return []
        return [identifier for identifier in (_request_identifier(item) for item in requests) if identifier]

    async def approve_join_requests(
        self,
        group_id: GroupId,
        identifiers: list[Identifier],
    ) -> list[ParticipantUpdateResult]:
        result = await self._command(
            "group_request_participants_update",
            {"groupId": group_id, "participants": list(identifiers), "action": "approve"},
        )
        return self._parse_update_results(result, identifiers)

    # ------------------------------------------------------------------
    # Protocol plumbing
    # ------------------------------------------------------------------

    async def _command(self, command_type: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            return await self._send_command(command_type, payload, timeout_seconds=self._timeout_s)
        except TimeoutError as e:
            raise DirectoryTimeoutError(f"{command_type} timed out") from e

    @staticmethod
    def _parse_update_results(result: dict[str, Any], requested: list[Identifier]) -> list[ParticipantUpdateResult]:
        rows = result.get("results")
        if not isinstance(rows, list):
            return [ParticipantUpdateResult(identifier, 200) for identifier in requested]
        parsed = []
        for index, row in enumerate(rows):
            if not isinstance(row, dict):
                continue
            fallback = requested[index] if index < len(requested) else ""
            identifier = str(row.get("jid") or row.get("id") or fallback)
            parsed.append(ParticipantUpdateResult(identifier, _parse_status(row.get("status"))))
        return parsed

    async def _read_loop(self) -> None:
        if not self._ws:
            return

        try:
            async for raw in self._ws:
                self._handle_bridge_message(raw)
        except websockets.ConnectionClosed as e:
            logger.warning("Bridge connection closed: {}", e)
        finally:
            self._fail_pending("Bridge connection closed")

    def _handle_bridge_message(self, raw: str | bytes) -> None:
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Invalid JSON from bridge")
            return

        if not isinstance(data, dict):
            logger.warning("Invalid bridge frame shape")
            return

        version = data.get("version")
        if version != PROTOCOL_VERSION:
            logger.warning("Unexpected bridge protocol version: {!r}", version)
            return

        msg_type = data.get("type")
        payload = data.get("payload")
        if not isinstance(payload, dict):
            payload = {}

        if msg_type == "response":
            request_id = data.get("requestId")
            if isinstance(request_id, str):
                self._resolve_pending(request_id, payload)
            return

        if msg_type == "status":
            logger.info("Bridge status: {}", payload.get("status"))
            return

        if msg_type == "error":
            logger.error("Bridge error: {}", payload.get("error"))
            return

        logger.debug("Ignoring bridge frame of type {!r}", msg_type)

    async def _send_command(
        self,
        command_type: str,
        payload: dict[str, Any],
        timeout_seconds: float,
        token: str | None = None,
    ) -> dict[str, Any]:
        if not self._ws:
            raise DirectoryUnavailableError("Bridge websocket not connected")

        request_id = uuid.uuid4().hex
        future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        self._pending_types[request_id] = command_type

        envelope = {
            "version": PROTOCOL_VERSION,
            "type": command_type,
            "token": token or self._require_token(),
            "requestId": request_id,
            "payload": payload,
        }

        try:
            async with self._send_lock:
                await self._ws.send(json.dumps(envelope))
            return await asyncio.wait_for(future, timeout=timeout_seconds)
        finally:
            self._pending.pop(request_id, None)
            self._pending_types.pop(request_id, None)

    def _resolve_pending(self, request_id: str, payload: dict[str, Any]) -> None:
        future = self._pending.get(request_id)
        if not future or future.done():
            return

        ok = bool(payload.get("ok"))
        if ok:
            result = payload.get("result")
            future.set_result(result if isinstance(result, dict) else {})
            return

        error = payload.get("error") if isinstance(payload.get("error"), dict) else {}
        code = str(error.get("code") or "ERR_INTERNAL")
        message = str(error.get("message") or "Bridge command failed")
        retryable = bool(error.get("retryable", False))
        command = self._pending_types.get(request_id, "command")
        future.set_exception(_map_bridge_error(code, message, retryable, command))

    def _fail_pending(self, reason: str) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(DirectoryUnavailableError(reason))
        self._pending.clear()
