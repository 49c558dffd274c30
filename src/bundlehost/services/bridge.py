# src/bundlehost/services/bridge.py
"""Envelope normalization for the host channel.

Inbound traffic is whatever the native bridge hands over: a message object,
a JSON string, an argument list whose first usable element is the message,
or an ``{"event": "message", "payload": ...}`` wrapper around any of those.
``normalize`` reduces all of them to a :class:`Command` or drops them.

Outbound traffic is always a flat ``{"kind": ..., "data": ...}`` object.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping, Optional, Sequence

from bundlehost.domain import Command
from bundlehost.ports import Channel, EventBus
from bundlehost.services.eventbus import emit

_log = logging.getLogger("bundlehost.bridge")

MAX_DEPTH = 8

_DISCRIMINATORS = ("kind", "type")
_DATA_FIELDS = ("data", "payload")


def _from_mapping(raw: Mapping[str, Any]) -> Optional[Command]:
    for key in _DISCRIMINATORS:
        kind = raw.get(key)
        if isinstance(kind, str) and kind:
            data = None
            for field in _DATA_FIELDS:
                value = raw.get(field)
                if isinstance(value, Mapping):
                    data = dict(value)
                    break
            return Command(kind=kind, data=data)
    return None


def _unwrap_event(raw: Mapping[str, Any], depth: int) -> Optional[Command]:
    if raw.get("event") == "message" and "payload" in raw:
        return _normalize(raw["payload"], depth + 1)
    return None


def _from_sequence(raw: Sequence[Any], depth: int) -> Optional[Command]:
    for entry in raw:
        command = _normalize(entry, depth + 1)
        if command is not None:
            return command
    return None


def _from_string(raw: str, depth: int) -> Optional[Command]:
    text = raw.strip()
    if not text:
        return None
    try:
        decoded = json.loads(text)
    except ValueError:
        return None
    # a JSON string holding JSON (double encoding) unwraps one level per pass
    return _normalize(decoded, depth + 1)


def _normalize(raw: Any, depth: int) -> Optional[Command]:
    if depth > MAX_DEPTH or raw is None:
        return None
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = bytes(raw).decode("utf-8")
        except UnicodeDecodeError:
            return None
    if isinstance(raw, str):
        return _from_string(raw, depth)
    if isinstance(raw, Mapping):
        return _from_mapping(raw) or _unwrap_event(raw, depth)
    if isinstance(raw, (list, tuple)):
        return _from_sequence(raw, depth)
    return None


def normalize(raw: Any) -> Optional[Command]:
    """Canonical command for ``raw`` or ``None``. Never raises."""
    command = _normalize(raw, 0)
    if command is None:
        _log.debug("bridge.dropped", extra={"extra": {"raw": repr(raw)[:200]}})
    return command


def encode(kind: str, data: Optional[Mapping[str, Any]] = None) -> dict[str, Any]:
    message: dict[str, Any] = {"kind": kind}
    if data is not None:
        message["data"] = dict(data)
    return message


class MessageBridge:
    """Host-facing side of the supervisor: normalizes inbound envelopes, emits flat events."""

    def __init__(self, channel: Channel, bus: Optional[EventBus] = None) -> None:
        self.channel = channel
        self.bus = bus

    normalize = staticmethod(normalize)

    def emit(self, kind: str, data: Optional[Mapping[str, Any]] = None) -> None:
        message = encode(kind, data)
        try:
            self.channel.send(message)
        except (OSError, RuntimeError, ValueError) as e:
            _log.error("bridge.send.failed", extra={"extra": {"kind": kind, "error": str(e)}})
        if self.bus is not None:
            emit(self.bus, f"bridge.out.{kind}", message.get("data") or {}, "bridge")
