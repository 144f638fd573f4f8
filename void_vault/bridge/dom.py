"""Page DOM collaborator interfaces and password-field heuristics.

The bridge never touches a real DOM; a host (automation driver, embedding UI,
test double) implements these protocols for the page it controls.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol


class FieldKind(str, Enum):
    LOGIN = "login"
    NEW_PASSWORD = "new-password"
    RESET = "reset"


class Indicator(str, Enum):
    NONE = "none"
    HINT = "hint"
    ACTIVE = "active"
    MEETS_MINIMUM = "meets-minimum"
    BELOW_MINIMUM = "below-minimum"
    ERROR = "error"


class PasswordField(Protocol):
    type: str
    autocomplete: str
    name: str
    id: str
    value: str
    placeholder: str

    def dispatch_event(self, name: str) -> None: ...

    def set_indicator(self, indicator: Indicator) -> None: ...


class PageDom(Protocol):
    @property
    def hostname(self) -> str: ...

    def input_fields(self) -> list[PasswordField]: ...

    def active_element(self) -> PasswordField | None: ...

    def focus(self, field: PasswordField) -> None: ...

    def confirm(self, message: str) -> bool: ...


@dataclass(frozen=True)
class KeyEvent:
    key: str
    ctrl: bool = False
    shift: bool = False
    alt: bool = False
    meta: bool = False

    @property
    def printable(self) -> bool:
        return len(self.key) == 1 and not self.ctrl and not self.alt

    def matches(self, combo: str) -> bool:
        """Match a `ctrl+shift+s` style combo (modifiers exact, key case-insensitive)."""
        parts = [p.strip().lower() for p in (combo or "").split("+") if p.strip()]
        if not parts:
            return False
        *mods, key = parts
        wanted = set(mods)
        if (
            ("ctrl" in wanted) != self.ctrl
            or ("shift" in wanted) != self.shift
            or ("alt" in wanted) != self.alt
            or ("meta" in wanted) != self.meta
        ):
            return False
        return self.key.lower() == key


_NEW_HINTS = ("new", "confirm", "register", "signup", "sign-up", "repeat", "create")
_RESET_HINTS = ("reset", "change", "old")


def _attr(field: PasswordField, name: str) -> str:
    return str(getattr(field, name, "") or "").strip().lower()


def is_password_candidate(field: PasswordField) -> bool:
    ftype = _attr(field, "type")
    if ftype == "password":
        return True
    if ftype != "text":
        return False
    autocomplete = _attr(field, "autocomplete")
    if autocomplete in ("current-password", "new-password"):
        return True
    return "pass" in _attr(field, "name") or "pass" in _attr(field, "id")


def classify_field(field: PasswordField) -> FieldKind | None:
    """Best-effort guess of what a password field is for; None when it is not a candidate.

    Non-authoritative: it only drives hints, never which counter or domain is used.
    """
    if not is_password_candidate(field):
        return None
    autocomplete = _attr(field, "autocomplete")
    ident = f"{_attr(field, 'name')} {_attr(field, 'id')}"
    if any(h in ident for h in _RESET_HINTS) and autocomplete != "current-password":
        return FieldKind.RESET
    if autocomplete == "new-password" or any(h in ident for h in _NEW_HINTS):
        return FieldKind.NEW_PASSWORD
    return FieldKind.LOGIN
