"""Reshape generator output so it satisfies a per-domain character/length policy.

All normalization is deterministic: the same (raw output, policy) pair always
yields the same text, otherwise a site would see a different password every time.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .errors import PolicyError


class CharClass(str, Enum):
    # Declaration order is the generator's char-type bit order.
    LOWERCASE = "lowercase"
    UPPERCASE = "uppercase"
    DIGITS = "digits"
    BASIC_SYMBOLS = "basicSymbols"
    EXTENDED_SYMBOLS = "extendedSymbols"
    EMOJIS = "emojis"
    EXTENDED_UNICODE = "extendedUnicode"

    @classmethod
    def parse(cls, raw: str) -> CharClass:
        key = str(raw or "").strip()
        try:
            return cls(_ALIASES.get(key.lower(), key))
        except ValueError:
            raise PolicyError(f"unknown character class: {raw!r}") from None


_ALIASES = {
    "digit": "digits",
    "basicsymbol": "basicSymbols",
    "basicsymbols": "basicSymbols",
    "extendedsymbol": "extendedSymbols",
    "extendedsymbols": "extendedSymbols",
    "emoji": "emojis",
    "extendedunicode": "extendedUnicode",
}

CHAR_SETS: dict[CharClass, str] = {
    CharClass.LOWERCASE: "abcdefghijklmnopqrstuvwxyz",
    CharClass.UPPERCASE: "ABCDEFGHIJKLMNOPQRSTUVWXYZ",
    CharClass.DIGITS: "0123456789",
    CharClass.BASIC_SYMBOLS: "!@#$%^&*",
    CharClass.EXTENDED_SYMBOLS: "()_+-=[]{}|;:,.<>?~`'\"\\/",
}

ALL_CLASSES: frozenset[CharClass] = frozenset(CharClass)
ALL_CLASSES_MASK = (1 << len(CharClass)) - 1

_EMOJI_RANGES = (
    (0x1F600, 0x1F64F),  # emoticons
    (0x1F300, 0x1F5FF),  # misc symbols and pictographs
    (0x1F680, 0x1F6FF),  # transport and map
    (0x1F900, 0x1F9FF),  # supplemental symbols
    (0x2600, 0x26FF),  # misc symbols
    (0x2700, 0x27BF),  # dingbats
    (0x1F000, 0x1F02F),  # mahjong tiles
    (0x1F0A0, 0x1F0FF),  # playing cards
    (0x1FA70, 0x1FAFF),  # extended pictographs
)


@dataclass(frozen=True)
class Policy:
    enabled: bool = True
    min_length: int | None = None
    max_length: int | None = None
    allowed_classes: frozenset[CharClass] = field(default_factory=lambda: ALL_CLASSES)

    def validate(self) -> None:
        if self.enabled and not self.allowed_classes:
            raise PolicyError("At least one character type must be allowed")
        for name, value in (("minLength", self.min_length), ("maxLength", self.max_length)):
            if value is not None and (isinstance(value, bool) or not isinstance(value, int) or value <= 0):
                raise PolicyError(f"{name} must be a positive integer")
        if self.min_length is not None and self.max_length is not None and self.min_length > self.max_length:
            raise PolicyError("Min length cannot be greater than max length")

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": bool(self.enabled),
            "minLength": self.min_length,
            "maxLength": self.max_length,
            # Persist in canonical order so the stored document is stable.
            "allowedClasses": [c.value for c in CharClass if c in self.allowed_classes],
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Policy:
        allowed_raw = raw.get("allowedClasses")
        if allowed_raw is None:
            allowed_raw = raw.get("allowedChars")
        if allowed_raw is None:
            allowed = ALL_CLASSES
        else:
            allowed = frozenset(CharClass.parse(item) for item in allowed_raw)
        return cls(
            enabled=bool(raw.get("enabled")),
            min_length=_optional_length(raw.get("minLength")),
            max_length=_optional_length(raw.get("maxLength")),
            allowed_classes=allowed,
        )


def _optional_length(raw: Any) -> int | None:
    if raw is None or raw == "" or isinstance(raw, bool):
        return None
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return None
    return value if value > 0 else None


def is_emoji(char: str) -> bool:
    code = ord(char)
    return any(lo <= code <= hi for lo, hi in _EMOJI_RANGES)


def classify_scalar(char: str) -> CharClass | None:
    """Return EMOJIS / EXTENDED_UNICODE for non-ASCII scalars, the ASCII set it belongs to, or None."""
    if is_emoji(char):
        return CharClass.EMOJIS
    if ord(char) > 127:
        return CharClass.EXTENDED_UNICODE
    for cls, chars in CHAR_SETS.items():
        if char in chars:
            return cls
    return None


def build_alphabet(allowed: Iterable[CharClass]) -> str:
    allowed_set = set(allowed)
    return "".join(chars for cls, chars in CHAR_SETS.items() if cls in allowed_set)


def normalize(raw: str, policy: Policy | None) -> str:
    if policy is None or not policy.enabled:
        return raw

    out = raw
    # An empty class set (never valid on write, possible in a hand-edited file) filters nothing.
    if policy.allowed_classes and policy.allowed_classes != ALL_CLASSES:
        alphabet = build_alphabet(policy.allowed_classes)
        pieces: list[str] = []
        for ch in out:
            if classify_scalar(ch) in policy.allowed_classes:
                pieces.append(ch)
            elif alphabet:
                pieces.append(alphabet[ord(ch) % len(alphabet)])
        out = "".join(pieces)

    if policy.max_length and len(out) > policy.max_length:
        out = out[: policy.max_length]
    return out


def meets_minimum(text: str, policy: Policy | None) -> bool:
    if policy is None or not policy.enabled or not policy.min_length:
        return True
    return len(text) >= policy.min_length


def classes_to_mask(classes: Iterable[CharClass]) -> int:
    wanted = set(classes)
    mask = 0
    for bit, cls in enumerate(CharClass):
        if cls in wanted:
            mask |= 1 << bit
    return mask


def mask_to_classes(mask: int) -> frozenset[CharClass]:
    return frozenset(cls for bit, cls in enumerate(CharClass) if mask & (1 << bit))
