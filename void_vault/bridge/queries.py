"""One-shot generator queries.

Each query opens its own channel (independent of any tab session), sends exactly
one message, and resolves through a `CompletionLatch`: the first of matching
response, timeout or disconnect wins and the channel is closed right away.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from . import messages
from .errors import BridgeError
from .latch import CompletionLatch, QueryOutcome
from .messages import Error, GeneratorMessage, Ready, Success
from .native_channel import NativeChannel
from .normalizer import CharClass, mask_to_classes

_LOGGER = logging.getLogger("vault.bridge.queries")

ChannelOpener = Callable[[], NativeChannel]
Matcher = Callable[[GeneratorMessage], QueryOutcome | None]


async def run_query(
    open_channel: ChannelOpener,
    message: dict[str, Any],
    match: Matcher,
    *,
    timeout: float,
) -> QueryOutcome:
    """Send `message` on a fresh channel and return the single outcome.

    `match` maps an inbound message to an outcome, or None to keep waiting.
    Channel open failures propagate as `ChannelOpenFailure`.
    """
    channel = open_channel()
    latch = CompletionLatch()
    latch.add_done_callback(lambda _outcome: channel.close())

    def _on_message(msg: GeneratorMessage) -> None:
        if latch.fired:
            return
        outcome = match(msg)
        if outcome is not None:
            latch.fire(outcome)

    channel.on_message(_on_message)
    channel.on_disconnect(
        lambda error: latch.fire(
            QueryOutcome.disconnect(error) if channel.opened else QueryOutcome.open_failed(error)
        )
    )
    channel.send(message)

    outcome = await latch.wait(timeout)
    if not outcome.ok:
        _LOGGER.info("query_failed type=%s outcome=%s error=%s", message.get("type"), outcome.kind.value, outcome.error)
    return outcome


@dataclass(frozen=True)
class ConfigurationCheck:
    has_shape: bool
    error: str | None = None


@dataclass(frozen=True)
class GeneratorRules:
    max_length: int
    char_type_mask: int

    @property
    def allowed_classes(self) -> frozenset[CharClass]:
        return mask_to_classes(self.char_type_mask)


def _match_ready(msg: GeneratorMessage) -> QueryOutcome | None:
    if isinstance(msg, Ready):
        return QueryOutcome.success(msg)
    if isinstance(msg, Error):
        return QueryOutcome.failed(msg.message)
    return None


def _match_success(msg: GeneratorMessage) -> QueryOutcome | None:
    if isinstance(msg, Success):
        return QueryOutcome.success(None)
    if isinstance(msg, Error):
        return QueryOutcome.failed(msg.message)
    return None


async def check_configuration(open_channel: ChannelOpener, *, timeout: float = 2.0) -> ConfigurationCheck:
    """Ask the generator whether it has been set up (it answers the handshake only when configured)."""
    try:
        outcome = await run_query(open_channel, messages.handshake(), _match_ready, timeout=timeout)
    except BridgeError as exc:
        return ConfigurationCheck(has_shape=False, error=str(exc))
    if outcome.ok:
        return ConfigurationCheck(has_shape=True)
    return ConfigurationCheck(has_shape=False, error=outcome.error)


async def fetch_rules(open_channel: ChannelOpener, domain: str, *, timeout: float = 5.0) -> GeneratorRules:
    outcome = await run_query(open_channel, messages.get_rules(domain), _match_ready, timeout=timeout)
    ready: Ready = outcome.unwrap()
    return GeneratorRules(max_length=ready.max_length, char_type_mask=ready.char_type_mask)


async def push_rules(
    open_channel: ChannelOpener,
    domain: str,
    *,
    max_length: int,
    char_type_mask: int,
    timeout: float = 5.0,
) -> None:
    outcome = await run_query(
        open_channel,
        messages.set_rules(domain, max_length, char_type_mask),
        _match_success,
        timeout=timeout,
    )
    outcome.unwrap()
