from __future__ import annotations

from typing import Any

import pytest

from void_vault.bridge.dom import Indicator
from void_vault.bridge.native_channel import NativeChannel
from void_vault.bridge.rule_store import RuleStore
from void_vault.bridge.session_controller import SessionController


class FakeChannel(NativeChannel):
    """In-memory channel: records outbound messages, lets tests inject inbound ones."""

    def __init__(self) -> None:
        super().__init__()
        self.sent: list[dict[str, Any]] = []
        self.close_calls = 0

    def send(self, message: dict[str, Any]) -> None:
        if self.disconnected:
            return
        self.sent.append(message)

    def close(self) -> None:
        self.close_calls += 1
        super().close()

    @property
    def closed(self) -> bool:
        return self._closed

    def deliver(self, obj: dict[str, Any]) -> None:
        self._emit_message(obj)

    def drop(self, error: str | None = "Native host has exited.") -> None:
        self._emit_disconnect(error)

    def fail_open(self, error: str = "Failed to start native messaging host: [Errno 2] No such file") -> None:
        self._opened = False
        self._emit_disconnect(error)


class ChannelRecorder:
    def __init__(self) -> None:
        self.opened: list[FakeChannel] = []

    def __call__(self) -> FakeChannel:
        ch = FakeChannel()
        self.opened.append(ch)
        return ch

    @property
    def last(self) -> FakeChannel:
        return self.opened[-1]


class FakeField:
    def __init__(self, *, type: str = "password", autocomplete: str = "", name: str = "", id: str = "") -> None:
        self.type = type
        self.autocomplete = autocomplete
        self.name = name
        self.id = id
        self.value = ""
        self.placeholder = ""
        self.events: list[str] = []
        self.indicator = Indicator.NONE

    def dispatch_event(self, name: str) -> None:
        self.events.append(name)

    def set_indicator(self, indicator: Indicator) -> None:
        self.indicator = indicator


class FakePage:
    def __init__(self, hostname: str, fields: list[FakeField] | None = None, *, confirm_answer: bool = True) -> None:
        self._hostname = hostname
        self.fields = list(fields or [])
        self.focused: FakeField | None = None
        self.confirm_answer = confirm_answer
        self.prompts: list[str] = []

    @property
    def hostname(self) -> str:
        return self._hostname

    def input_fields(self) -> list[FakeField]:
        return list(self.fields)

    def active_element(self) -> FakeField | None:
        return self.focused

    def focus(self, field: FakeField) -> None:
        self.focused = field

    def confirm(self, message: str) -> bool:
        self.prompts.append(message)
        return self.confirm_answer


class RecordingListener:
    def __init__(self, domain: str = "example.com") -> None:
        self.current_domain = domain
        self.events: list[tuple[str, Any]] = []

    def of(self, kind: str) -> list[Any]:
        return [payload for k, payload in self.events if k == kind]

    def on_state_changed(self, snapshot) -> None:  # noqa: ANN001
        self.events.append(("state", snapshot))

    def on_password(self, text: str, meets_minimum: bool) -> None:
        self.events.append(("password", (text, meets_minimum)))

    def on_cleared(self) -> None:
        self.events.append(("cleared", None))

    def on_committed(self, counter: int) -> None:
        self.events.append(("committed", counter))

    def on_error(self, error) -> None:  # noqa: ANN001
        self.events.append(("error", error))

    def on_closed(self, reason: str) -> None:
        self.events.append(("closed", reason))


@pytest.fixture
def channels() -> ChannelRecorder:
    return ChannelRecorder()


@pytest.fixture
def rule_store(tmp_path) -> RuleStore:
    return RuleStore(tmp_path / "domain_rules.json")


@pytest.fixture
def sessions(channels: ChannelRecorder, rule_store: RuleStore) -> SessionController:
    return SessionController(channels, rule_store)


@pytest.fixture
def listener() -> RecordingListener:
    return RecordingListener()


@pytest.fixture
def make_listener():
    return RecordingListener


@pytest.fixture
def make_field():
    return FakeField


@pytest.fixture
def make_page():
    return FakePage
