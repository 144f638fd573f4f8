"""Persisted per-domain normalization rules (disk-backed).

Design
- One JSON document maps domain -> policy; every call is a whole-document
  read-modify-write.
- Atomic writes: write temp file then replace.
- Best-effort reads: a missing or corrupt file reads as "no rules".
- No cross-process locking: concurrent writers race and the last write wins.
"""

from __future__ import annotations

import json
import logging
import os
import time
from contextlib import suppress
from pathlib import Path
from typing import Any

from .errors import PolicyError
from .normalizer import Policy

_LOGGER = logging.getLogger("vault.bridge.rule_store")

_DOCUMENT_KEY = "domainRules"


def normalize_domain(domain: str) -> str:
    return (domain or "").strip().lower().rstrip(".")


class RuleStore:
    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def _load(self) -> dict[str, dict[str, Any]]:
        p = self.path
        try:
            if not p.exists() or not p.is_file():
                return {}
            obj = json.loads(p.read_text(encoding="utf-8", errors="replace"))
        except (OSError, ValueError):
            _LOGGER.warning("rule_store_unreadable path=%s", p)
            return {}
        if not isinstance(obj, dict):
            return {}
        rules = obj.get(_DOCUMENT_KEY)
        if not isinstance(rules, dict):
            return {}
        return {k: dict(v) for k, v in rules.items() if isinstance(k, str) and isinstance(v, dict)}

    def _save(self, rules: dict[str, dict[str, Any]]) -> None:
        p = self.path
        p.parent.mkdir(parents=True, exist_ok=True)
        payload = {"version": 1, "updatedAt": int(time.time() * 1000), _DOCUMENT_KEY: rules}
        text = json.dumps(payload, ensure_ascii=True, indent=2, sort_keys=True)

        tmp = p.with_suffix(p.suffix + ".tmp")
        tmp.write_text(text, encoding="utf-8")
        with suppress(OSError):
            os.chmod(tmp, 0o600)
        tmp.replace(p)

    def get(self, domain: str) -> Policy | None:
        raw = self._load().get(normalize_domain(domain))
        if raw is None:
            return None
        try:
            return Policy.from_dict(raw)
        except PolicyError as exc:
            _LOGGER.warning("rule_store_bad_entry domain=%s reason=%s", domain, exc)
            return None

    def set(self, domain: str, policy: Policy) -> None:
        key = normalize_domain(domain)
        if not key:
            raise PolicyError("domain is required")
        policy.validate()
        rules = self._load()
        rules[key] = policy.to_dict()
        self._save(rules)
        _LOGGER.info("rules_saved domain=%s", key)

    def delete(self, domain: str) -> bool:
        key = normalize_domain(domain)
        rules = self._load()
        if rules.pop(key, None) is None:
            return False
        self._save(rules)
        _LOGGER.info("rules_deleted domain=%s", key)
        return True

    def all(self) -> dict[str, Policy]:
        out: dict[str, Policy] = {}
        for domain, raw in self._load().items():
            with suppress(PolicyError):
                out[domain] = Policy.from_dict(raw)
        return out
