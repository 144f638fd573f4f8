"""Per-tab generator sessions.

One `SessionController` owns the registry of live sessions (tab id -> `Session`).
Each session exclusively owns one channel to the generator and mirrors the
generator's authoritative counter through three states:

    Inactive --activate/Ready--> Active(saved, active=saved)
    Active --activate_preview/Preview--> ActivePreview(saved, active != saved)
    ActivePreview --cancel_preview | commit/Committed--> Active
    Active/ActivePreview --finalize | deactivate | disconnect--> Inactive

Every handler below runs synchronously on the event loop, so a transition is
never interleaved with another one. Messages from a channel whose session has
been replaced or torn down are ignored.
"""

from __future__ import annotations

import logging
import unicodedata
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from . import messages
from .domain_shift import shift
from .errors import (
    BridgeError,
    ChannelOpenFailure,
    GeneratorError,
    InvalidManualVersion,
    SessionNotActiveError,
    UnsolicitedDisconnect,
)
from .latch import CompletionLatch, QueryOutcome
from .messages import (
    Cancelled,
    Committed,
    CounterValue,
    Error,
    GeneratorMessage,
    Output,
    Preview,
    Ready,
    ResetAck,
    Success,
)
from .native_channel import NativeChannel
from .normalizer import meets_minimum, normalize
from .rule_store import RuleStore, normalize_domain

_LOGGER = logging.getLogger("vault.bridge.session")

MAX_COUNTER = 65535


class SessionState(str, Enum):
    INACTIVE = "inactive"
    ACTIVE = "active"
    ACTIVE_PREVIEW = "active-preview"


@dataclass(frozen=True)
class SessionSnapshot:
    tab_id: str
    state: SessionState
    domain: str | None = None
    saved_counter: int = 0
    active_counter: int = 0
    character_position: int = 0
    ready: bool = False
    commit_in_flight: bool = False

    @property
    def is_preview(self) -> bool:
        return self.state is SessionState.ACTIVE_PREVIEW


class SessionListener(Protocol):
    """Rendering side of a session (implemented by `FieldController`)."""

    @property
    def current_domain(self) -> str: ...

    def on_state_changed(self, snapshot: SessionSnapshot) -> None: ...

    def on_password(self, text: str, meets_minimum: bool) -> None: ...

    def on_cleared(self) -> None: ...

    def on_committed(self, counter: int) -> None: ...

    def on_error(self, error: BridgeError) -> None: ...

    def on_closed(self, reason: str) -> None: ...


@dataclass(eq=False)
class Session:
    tab_id: str
    domain: str
    channel: NativeChannel
    listener: SessionListener
    saved_counter: int = 0
    active_counter: int = 0
    is_preview: bool = False
    character_position: int = 0
    ready: bool = False
    commit_in_flight: bool = False
    pending_counter: int | None = None
    counter_reads: list[CompletionLatch] = field(default_factory=list)

    @property
    def state(self) -> SessionState:
        return SessionState.ACTIVE_PREVIEW if self.is_preview else SessionState.ACTIVE

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            tab_id=self.tab_id,
            state=self.state,
            domain=self.domain,
            saved_counter=self.saved_counter,
            active_counter=self.active_counter,
            character_position=self.character_position,
            ready=self.ready,
            commit_in_flight=self.commit_in_flight,
        )

    def adopt_counters(self, saved: int, active: int) -> None:
        self.saved_counter = saved
        self.active_counter = active
        self.is_preview = active != saved


def validate_counter(value: Any) -> int:
    """Parse a user-entered version number; reject anything outside 0..65535 before it is sent."""
    if isinstance(value, bool):
        raise InvalidManualVersion("Counter must be a whole number between 0 and 65535")
    if isinstance(value, str):
        text = value.strip()
        if not text.isdigit():
            raise InvalidManualVersion("Counter must be a whole number between 0 and 65535")
        value = int(text)
    if not isinstance(value, int) or not 0 <= value <= MAX_COUNTER:
        raise InvalidManualVersion("Counter must be a whole number between 0 and 65535")
    return value


class SessionController:
    def __init__(self, open_channel: Callable[[], NativeChannel], rule_store: RuleStore) -> None:
        self._open_channel = open_channel
        self._rules = rule_store
        self._sessions: dict[str, Session] = {}

    # ─────────────────────────────────────────────────────────────────────────
    # Registry
    # ─────────────────────────────────────────────────────────────────────────

    def get(self, tab_id: str) -> Session | None:
        return self._sessions.get(tab_id)

    def is_active(self, tab_id: str) -> bool:
        return tab_id in self._sessions

    def tabs(self) -> list[str]:
        return list(self._sessions)

    def snapshot(self, tab_id: str) -> SessionSnapshot:
        session = self._sessions.get(tab_id)
        if session is None:
            return SessionSnapshot(tab_id=tab_id, state=SessionState.INACTIVE)
        return session.snapshot()

    def _require(self, tab_id: str) -> Session:
        session = self._sessions.get(tab_id)
        if session is None:
            raise SessionNotActiveError(f"Tab {tab_id} is not active")
        return session

    def _is_current(self, session: Session) -> bool:
        return self._sessions.get(session.tab_id) is session

    def _teardown(self, session: Session, reason: str, *, notice: bool) -> None:
        if self._is_current(session):
            del self._sessions[session.tab_id]
        if notice:
            session.channel.send(messages.finalize())
        self._fail_counter_reads(session, QueryOutcome.disconnect("Session closed"))
        session.channel.close()
        _LOGGER.info("session_closed tab=%s domain=%s reason=%s", session.tab_id, session.domain, reason)
        session.listener.on_closed(reason)

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    def activate(self, tab_id: str, domain: str, listener: SessionListener) -> Session:
        key = normalize_domain(domain)
        if not key:
            raise BridgeError("Missing domain")

        existing = self._sessions.get(tab_id)
        if existing is not None:
            self._teardown(existing, "replaced", notice=False)

        channel = self._open_channel()
        session = Session(tab_id=tab_id, domain=key, channel=channel, listener=listener)
        self._sessions[tab_id] = session
        channel.on_message(lambda msg: self._on_message(session, msg))
        channel.on_disconnect(lambda error: self._on_disconnect(session, error))
        channel.send(messages.init(key))
        _LOGGER.info("session_activating tab=%s domain=%s", tab_id, key)
        return session

    def finalize(self, tab_id: str) -> bool:
        session = self._sessions.get(tab_id)
        if session is None:
            return False
        self._teardown(session, "finalized", notice=True)
        return True

    def deactivate(self, tab_id: str) -> bool:
        session = self._sessions.get(tab_id)
        if session is None:
            return False
        self._teardown(session, "deactivated", notice=False)
        return True

    def close_all(self) -> None:
        for session in list(self._sessions.values()):
            self._teardown(session, "deactivated", notice=False)

    # ─────────────────────────────────────────────────────────────────────────
    # Counter operations
    # ─────────────────────────────────────────────────────────────────────────

    def activate_preview(self, tab_id: str) -> None:
        session = self._require(tab_id)
        session.channel.send(messages.activate_preview(session.domain))

    def cancel_preview(self, tab_id: str) -> bool:
        session = self._sessions.get(tab_id)
        if session is None or not session.is_preview:
            return False
        session.channel.send(messages.cancel_preview())
        # The generator restarts input from scratch on cancel.
        session.adopt_counters(session.saved_counter, session.saved_counter)
        session.character_position = 0
        session.listener.on_cleared()
        session.listener.on_state_changed(session.snapshot())
        return True

    def commit(self, tab_id: str) -> bool:
        session = self._sessions.get(tab_id)
        if session is None or not session.is_preview or session.commit_in_flight:
            return False
        session.commit_in_flight = True
        session.channel.send(messages.commit_increment(session.domain))
        _LOGGER.info(
            "commit_requested tab=%s domain=%s counter=%s->%s",
            tab_id,
            session.domain,
            session.saved_counter,
            session.active_counter,
        )
        return True

    def set_counter(self, tab_id: str, value: Any) -> int:
        counter = validate_counter(value)
        session = self._require(tab_id)
        session.pending_counter = counter
        session.channel.send(messages.set_counter(session.domain, counter))
        return counter

    async def read_counter(self, tab_id: str, *, timeout: float = 5.0) -> int | None:
        """Ask the generator for the stored counter of the session's domain."""
        session = self._require(tab_id)
        latch = CompletionLatch()
        session.counter_reads.append(latch)

        def _forget(_outcome: QueryOutcome) -> None:
            if latch in session.counter_reads:
                session.counter_reads.remove(latch)

        latch.add_done_callback(_forget)
        session.channel.send(messages.get_counter(session.domain))
        outcome = await latch.wait(timeout)
        return outcome.unwrap()

    def _fail_counter_reads(self, session: Session, outcome: QueryOutcome) -> None:
        for latch in list(session.counter_reads):
            latch.fire(outcome)

    # ─────────────────────────────────────────────────────────────────────────
    # Input
    # ─────────────────────────────────────────────────────────────────────────

    def input(self, tab_id: str, char: str) -> None:
        session = self._require(tab_id)
        shifted = shift(char, session.domain, session.character_position)
        session.character_position += 1
        session.channel.send(messages.char(ord(shifted)))

    def reset(self, tab_id: str) -> None:
        session = self._require(tab_id)
        session.channel.send(messages.reset())
        session.character_position = 0
        session.listener.on_cleared()

    def rules_updated(self, domain: str) -> int:
        """Reset every live session on `domain` so the user retypes under the new policy."""
        key = normalize_domain(domain)
        count = 0
        for session in list(self._sessions.values()):
            if session.domain == key:
                self.reset(session.tab_id)
                count += 1
        if count:
            _LOGGER.info("rules_updated domain=%s sessions_reset=%d", key, count)
        return count

    # ─────────────────────────────────────────────────────────────────────────
    # Inbound
    # ─────────────────────────────────────────────────────────────────────────

    def _on_message(self, session: Session, msg: GeneratorMessage) -> None:
        if not self._is_current(session):
            _LOGGER.debug("stale_message_dropped tab=%s type=%s", session.tab_id, type(msg).__name__)
            return
        listener = session.listener

        if isinstance(msg, Ready):
            if msg.saved_counter is None or msg.active_counter is None:
                return
            session.adopt_counters(msg.saved_counter, msg.active_counter)
            session.character_position = 0
            session.ready = True
            _LOGGER.info("session_ready tab=%s domain=%s counter=%s", session.tab_id, session.domain, msg.saved_counter)
            listener.on_state_changed(session.snapshot())
        elif isinstance(msg, Preview):
            session.adopt_counters(msg.saved_counter, msg.active_counter)
            session.character_position = 0
            session.ready = True
            listener.on_cleared()
            listener.on_state_changed(session.snapshot())
        elif isinstance(msg, Committed):
            session.commit_in_flight = False
            session.adopt_counters(msg.counter, msg.counter)
            _LOGGER.info("commit_applied tab=%s domain=%s counter=%s", session.tab_id, session.domain, msg.counter)
            listener.on_state_changed(session.snapshot())
            listener.on_committed(msg.counter)
        elif isinstance(msg, Cancelled):
            session.adopt_counters(msg.counter, msg.counter)
            listener.on_state_changed(session.snapshot())
        elif isinstance(msg, Success):
            if session.pending_counter is None:
                return
            counter, session.pending_counter = session.pending_counter, None
            session.adopt_counters(counter, counter)
            session.character_position = 0
            _LOGGER.info("counter_set tab=%s domain=%s counter=%s", session.tab_id, session.domain, counter)
            listener.on_cleared()
            listener.on_state_changed(session.snapshot())
        elif isinstance(msg, CounterValue):
            if session.counter_reads:
                session.counter_reads[0].fire(QueryOutcome.success(msg.value))
        elif isinstance(msg, Output):
            self._deliver_output(session, msg.text)
        elif isinstance(msg, Error):
            session.commit_in_flight = False
            session.pending_counter = None
            _LOGGER.warning("generator_error tab=%s domain=%s error=%s", session.tab_id, session.domain, msg.message)
            listener.on_error(GeneratorError(msg.message))
        elif isinstance(msg, ResetAck):
            return
        else:
            _LOGGER.debug("unrecognized_message tab=%s", session.tab_id)

    def _deliver_output(self, session: Session, text: str) -> None:
        if normalize_domain(session.listener.current_domain) != session.domain:
            _LOGGER.info("output_dropped tab=%s reason=domain_changed", session.tab_id)
            return
        policy = self._rules.get(session.domain)
        password = normalize(unicodedata.normalize("NFC", text), policy)
        session.listener.on_password(password, meets_minimum(password, policy))

    def _on_disconnect(self, session: Session, error: str | None) -> None:
        if not self._is_current(session):
            return
        del self._sessions[session.tab_id]
        if not session.channel.opened:
            reason = error or "Generator unreachable"
            self._fail_counter_reads(session, QueryOutcome.open_failed(reason))
            _LOGGER.warning("session_open_failed tab=%s domain=%s error=%s", session.tab_id, session.domain, reason)
            session.listener.on_error(ChannelOpenFailure(reason))
            session.listener.on_closed("open-failed")
            return

        ambiguous = session.commit_in_flight or session.pending_counter is not None
        reason = error or "Native host disconnected"
        self._fail_counter_reads(session, QueryOutcome.disconnect(reason))
        _LOGGER.warning(
            "session_disconnected tab=%s domain=%s ambiguous=%s error=%s",
            session.tab_id,
            session.domain,
            ambiguous,
            reason,
        )
        session.listener.on_error(UnsolicitedDisconnect(reason, ambiguous=ambiguous))
        session.listener.on_closed("disconnected")
