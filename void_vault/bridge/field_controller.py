"""Binds a page's password field to a tab session.

The controller tracks the focused candidate field, turns keyboard events into
session operations and renders session callbacks back into the field. Field
classification is a heuristic and never decides which domain or counter is used.
"""

from __future__ import annotations

import logging

from .config import BridgeConfig
from .dom import FieldKind, Indicator, KeyEvent, PageDom, PasswordField, classify_field, is_password_candidate
from .errors import BridgeError
from .rule_store import normalize_domain
from .session_controller import SessionController, SessionSnapshot, SessionState

_LOGGER = logging.getLogger("vault.bridge.field")

ACTIVE_PLACEHOLDER = "Void Vault active, type your phrase..."


class FieldController:
    def __init__(
        self,
        tab_id: str,
        page: PageDom,
        sessions: SessionController,
        *,
        hotkey: str = "ctrl+shift+s",
        preview_hotkey: str = "ctrl+shift+arrowup",
    ) -> None:
        self.tab_id = tab_id
        self.page = page
        self.sessions = sessions
        self.hotkey = hotkey
        self.preview_hotkey = preview_hotkey

        self.current_field: PasswordField | None = None
        self.field_kind: FieldKind | None = None
        self.snapshot = SessionSnapshot(tab_id=tab_id, state=SessionState.INACTIVE)
        self.last_error: BridgeError | None = None

        self._domain = normalize_domain(page.hostname)
        self._finalize_after_commit = False

    @classmethod
    def from_config(cls, tab_id: str, page: PageDom, sessions: SessionController, config: BridgeConfig) -> FieldController:
        return cls(tab_id, page, sessions, hotkey=config.hotkey, preview_hotkey=config.preview_hotkey)

    @property
    def active(self) -> bool:
        return self.sessions.is_active(self.tab_id)

    @property
    def current_domain(self) -> str:
        return self._domain

    def navigate(self, hostname: str) -> None:
        # Output still in flight for the old domain is dropped by the session controller.
        self._domain = normalize_domain(hostname)

    # ─────────────────────────────────────────────────────────────────────────
    # DOM events
    # ─────────────────────────────────────────────────────────────────────────

    def focus_in(self, field: PasswordField) -> None:
        kind = classify_field(field)
        if kind is None:
            return
        self.current_field = field
        self.field_kind = kind
        if not self.active:
            field.set_indicator(Indicator.HINT)

    def focus_out(self, field: PasswordField) -> None:
        # Losing focus never deactivates; the user may just be switching windows.
        if field is self.current_field and not self.active:
            field.set_indicator(Indicator.NONE)

    def handle_key(self, event: KeyEvent) -> bool:
        """Route one keydown; True means the event was consumed (preventDefault)."""
        if event.matches(self.hotkey):
            self.toggle()
            return True

        field = self.current_field
        if not self.active or field is None or self.page.active_element() is not field:
            return False

        if event.matches(self.preview_hotkey):
            self.sessions.activate_preview(self.tab_id)
            return True
        if event.printable:
            self.sessions.input(self.tab_id, event.key)
            return True
        if event.key == "Backspace":
            self.sessions.reset(self.tab_id)
            return True
        if event.key == "Enter":
            self._commit_or_finalize()
            return True
        if event.key == "Escape":
            self._cancel()
            return True
        return False

    # ─────────────────────────────────────────────────────────────────────────
    # Actions
    # ─────────────────────────────────────────────────────────────────────────

    def toggle(self) -> None:
        if self.active:
            self.sessions.finalize(self.tab_id)
            return

        field = self.current_field
        if field is not None and self.page.active_element() is field:
            self.activate()
            return

        candidates = [f for f in self.page.input_fields() if is_password_candidate(f)]
        if not candidates:
            _LOGGER.info("no_password_field tab=%s", self.tab_id)
            return
        field = candidates[0]
        self.current_field = field
        self.field_kind = classify_field(field)
        self.page.focus(field)
        self.activate()

    def activate(self) -> bool:
        field = self.current_field
        if field is None:
            return False
        self._domain = normalize_domain(self.page.hostname)
        self.last_error = None
        self._write_value("")
        field.placeholder = ACTIVE_PLACEHOLDER
        field.set_indicator(Indicator.ACTIVE)
        try:
            self.sessions.activate(self.tab_id, self._domain, self)
        except BridgeError as exc:
            self.on_error(exc)
            self._restore_field()
            return False
        _LOGGER.info("activated tab=%s domain=%s kind=%s", self.tab_id, self._domain, self.field_kind)
        return True

    def set_manual_counter(self, text: str) -> int:
        return self.sessions.set_counter(self.tab_id, text)

    def _commit_or_finalize(self) -> None:
        snap = self.sessions.snapshot(self.tab_id)
        if snap.commit_in_flight:
            return
        if snap.is_preview and snap.active_counter != snap.saved_counter:
            question = (
                f"Save new password version for {snap.domain}? "
                f"Counter {snap.saved_counter} -> {snap.active_counter}"
            )
            if not self.page.confirm(question):
                self.sessions.cancel_preview(self.tab_id)
                return
            self._finalize_after_commit = self.sessions.commit(self.tab_id)
            return
        self.sessions.finalize(self.tab_id)

    def _cancel(self) -> None:
        if self.sessions.cancel_preview(self.tab_id):
            return
        self._write_value("")
        self.sessions.deactivate(self.tab_id)

    # ─────────────────────────────────────────────────────────────────────────
    # Rendering (SessionListener)
    # ─────────────────────────────────────────────────────────────────────────

    def _write_value(self, text: str) -> None:
        field = self.current_field
        if field is None:
            return
        field.value = text
        # Frameworks with controlled inputs ignore direct assignment without these.
        field.dispatch_event("input")
        field.dispatch_event("change")

    def _restore_field(self) -> None:
        field = self.current_field
        if field is None:
            return
        field.placeholder = ""
        field.set_indicator(Indicator.ERROR if self.last_error is not None else Indicator.NONE)

    def on_state_changed(self, snapshot: SessionSnapshot) -> None:
        self.snapshot = snapshot

    def on_password(self, text: str, meets_minimum: bool) -> None:
        field = self.current_field
        if field is None:
            return
        self._write_value(text)
        field.set_indicator(Indicator.MEETS_MINIMUM if meets_minimum else Indicator.BELOW_MINIMUM)

    def on_cleared(self) -> None:
        self._write_value("")
        if self.current_field is not None:
            self.current_field.set_indicator(Indicator.ACTIVE)

    def on_committed(self, counter: int) -> None:
        if self._finalize_after_commit:
            self._finalize_after_commit = False
            self.sessions.finalize(self.tab_id)

    def on_error(self, error: BridgeError) -> None:
        self.last_error = error
        _LOGGER.warning("session_error tab=%s error=%s", self.tab_id, error)
        if self.current_field is not None:
            self.current_field.set_indicator(Indicator.ERROR)

    def on_closed(self, reason: str) -> None:
        if reason == "replaced":
            return
        self._finalize_after_commit = False
        self.snapshot = SessionSnapshot(tab_id=self.tab_id, state=SessionState.INACTIVE)
        self._restore_field()
