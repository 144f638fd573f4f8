"""Generator wire vocabulary and Native Messaging framing.

Outbound commands are plain dicts (the generator matches on the `type` field);
inbound objects are parsed into the `GeneratorMessage` variants below.
"""

from __future__ import annotations

import asyncio
import json
import struct
from dataclasses import dataclass
from typing import Any, Union

MAX_FRAME_BYTES = 1_000_000


# ─────────────────────────────────────────────────────────────────────────────
# Outbound
# ─────────────────────────────────────────────────────────────────────────────


def handshake() -> dict[str, Any]:
    return {"type": "INIT"}


def init(domain: str) -> dict[str, Any]:
    return {"type": "ACTIVATE", "domain": domain}


def char(code: int) -> dict[str, Any]:
    return {"charCode": int(code)}


def reset() -> dict[str, Any]:
    return {"type": "RESET"}


def finalize() -> dict[str, Any]:
    return {"type": "FINALIZE"}


def activate_preview(domain: str) -> dict[str, Any]:
    return {"type": "ACTIVATE_PREVIEW", "domain": domain}


def commit_increment(domain: str) -> dict[str, Any]:
    return {"type": "COMMIT_INCREMENT", "domain": domain}


def cancel_preview() -> dict[str, Any]:
    return {"type": "CANCEL_PREVIEW"}


def set_counter(domain: str, counter: int) -> dict[str, Any]:
    return {"type": "SET_COUNTER", "domain": domain, "counter": int(counter)}


def get_counter(domain: str) -> dict[str, Any]:
    return {"type": "GET_COUNTER", "domain": domain}


def set_rules(domain: str, max_length: int, char_types: int) -> dict[str, Any]:
    return {"type": "SET_RULES", "domain": domain, "max_length": int(max_length), "char_types": int(char_types)}


def get_rules(domain: str) -> dict[str, Any]:
    # The generator has no dedicated rules query; activation answers with the stored rules.
    return init(domain)


# ─────────────────────────────────────────────────────────────────────────────
# Inbound
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Ready:
    saved_counter: int | None = None
    active_counter: int | None = None
    max_length: int = 0
    char_type_mask: int = 127


@dataclass(frozen=True)
class Preview:
    saved_counter: int
    active_counter: int
    max_length: int = 0
    char_type_mask: int = 127


@dataclass(frozen=True)
class Committed:
    counter: int


@dataclass(frozen=True)
class Cancelled:
    counter: int


@dataclass(frozen=True)
class Success:
    pass


@dataclass(frozen=True)
class ResetAck:
    pass


@dataclass(frozen=True)
class CounterValue:
    value: int | None


@dataclass(frozen=True)
class Output:
    text: str


@dataclass(frozen=True)
class Error:
    message: str


@dataclass(frozen=True)
class Unrecognized:
    raw: dict[str, Any]


GeneratorMessage = Union[
    Ready, Preview, Committed, Cancelled, Success, ResetAck, CounterValue, Output, Error, Unrecognized
]


def _int_or_none(raw: Any) -> int | None:
    if raw is None or isinstance(raw, bool):
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


def _int_or(raw: Any, default: int) -> int:
    value = _int_or_none(raw)
    # 0 means "no rule" on the wire.
    return value if value else default


def parse_message(obj: Any) -> GeneratorMessage:
    if not isinstance(obj, dict):
        return Unrecognized(raw={"value": obj})

    if obj.get("error") is not None:
        return Error(message=str(obj.get("error")))

    status = obj.get("status")
    if status == "ready":
        return Ready(
            saved_counter=_int_or_none(obj.get("saved_counter")),
            active_counter=_int_or_none(obj.get("active_counter")),
            max_length=_int_or(obj.get("max_length"), 0),
            char_type_mask=_int_or(obj.get("char_types"), 127),
        )
    if status == "preview":
        saved = _int_or_none(obj.get("saved_counter"))
        active = _int_or_none(obj.get("active_counter"))
        if saved is None or active is None:
            return Unrecognized(raw=dict(obj))
        return Preview(
            saved_counter=saved,
            active_counter=active,
            max_length=_int_or(obj.get("max_length"), 0),
            char_type_mask=_int_or(obj.get("char_types"), 127),
        )
    if status in ("committed", "cancelled"):
        counter = _int_or_none(obj.get("counter"))
        if counter is None:
            return Unrecognized(raw=dict(obj))
        return Committed(counter=counter) if status == "committed" else Cancelled(counter=counter)
    if status == "success":
        return Success()
    if status == "reset":
        return ResetAck()

    if "counter" in obj and status is None:
        return CounterValue(value=_int_or_none(obj.get("counter")))

    output = obj.get("output")
    if isinstance(output, str):
        return Output(text=output)

    return Unrecognized(raw=dict(obj))


# ─────────────────────────────────────────────────────────────────────────────
# Framing (Chrome Native Messaging: 4-byte little-endian length + UTF-8 JSON)
# ─────────────────────────────────────────────────────────────────────────────


def encode_frame(msg: dict[str, Any]) -> bytes:
    raw = json.dumps(msg, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    return struct.pack("<I", len(raw)) + raw


async def read_frame(reader: asyncio.StreamReader) -> dict[str, Any] | None:
    """Read one frame; None on EOF, oversize frames or undecodable payloads."""
    try:
        header = await reader.readexactly(4)
    except (asyncio.IncompleteReadError, ConnectionError):
        return None
    (length,) = struct.unpack("<I", header)
    if length <= 0 or length > MAX_FRAME_BYTES:
        return None
    try:
        raw = await reader.readexactly(int(length))
    except (asyncio.IncompleteReadError, ConnectionError):
        return None
    try:
        obj = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        return None
    return obj if isinstance(obj, dict) else None
