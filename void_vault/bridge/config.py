from __future__ import annotations

import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path

NATIVE_HOST_NAME = "com.starwell.void_vault"
DEFAULT_HOST_BINARY = "starwell_password_manager"


def expand_path(raw: str) -> str:
    return str(Path(raw).expanduser())


def _float_env(name: str, *, default: float, lo: float, hi: float) -> float:
    try:
        val = float(os.environ.get(name) or default)
    except ValueError:
        val = default
    return max(lo, min(val, hi))


def _default_rules_path() -> str:
    base = os.environ.get("XDG_CONFIG_HOME") or "~/.config"
    return expand_path(str(Path(base) / "void-vault" / "domain_rules.json"))


@dataclass
class BridgeConfig:
    transport: str = "native"
    host_binary: str = DEFAULT_HOST_BINARY
    host_args: list[str] = field(default_factory=list)
    gateway_url: str | None = None
    rules_path: str = field(default_factory=_default_rules_path)
    query_timeout: float = 5.0
    check_timeout: float = 2.0
    hotkey: str = "ctrl+shift+s"
    preview_hotkey: str = "ctrl+shift+arrowup"

    @staticmethod
    def normalize_transport(raw: str | None) -> str:
        transport = (raw or "").strip().lower()
        if transport in {"websocket", "ws", "gateway"}:
            return "websocket"
        return "native"

    @classmethod
    def from_env(cls) -> BridgeConfig:
        gateway_url = (os.environ.get("VOID_VAULT_GATEWAY_URL") or "").strip() or None
        rules_raw = os.environ.get("VOID_VAULT_RULES_PATH")
        return cls(
            transport=cls.normalize_transport(os.environ.get("VOID_VAULT_TRANSPORT")),
            host_binary=expand_path(os.environ.get("VOID_VAULT_HOST_BINARY") or DEFAULT_HOST_BINARY),
            host_args=shlex.split(os.environ.get("VOID_VAULT_HOST_ARGS", "")),
            gateway_url=gateway_url,
            rules_path=expand_path(rules_raw) if rules_raw else _default_rules_path(),
            query_timeout=_float_env("VOID_VAULT_QUERY_TIMEOUT", default=5.0, lo=0.5, hi=60.0),
            check_timeout=_float_env("VOID_VAULT_CHECK_TIMEOUT", default=2.0, lo=0.5, hi=60.0),
            hotkey=(os.environ.get("VOID_VAULT_HOTKEY") or "ctrl+shift+s").strip().lower(),
            preview_hotkey=(os.environ.get("VOID_VAULT_PREVIEW_HOTKEY") or "ctrl+shift+arrowup").strip().lower(),
        )
