"""Settings surface for per-domain rules.

Saving or deleting a rule resets any live session on that domain so in-flight
input is retyped under the new policy.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from . import queries
from .errors import BridgeError, PolicyError
from .native_channel import NativeChannel
from .normalizer import ALL_CLASSES, CharClass, Policy, classes_to_mask
from .queries import GeneratorRules
from .rule_store import RuleStore
from .session_controller import SessionController

PRESETS: dict[str, frozenset[CharClass]] = {
    "all": ALL_CLASSES,
    "basic": frozenset(
        {CharClass.LOWERCASE, CharClass.UPPERCASE, CharClass.DIGITS, CharClass.BASIC_SYMBOLS}
    ),
    "noSymbols": frozenset({CharClass.LOWERCASE, CharClass.UPPERCASE, CharClass.DIGITS}),
}


@dataclass
class PolicyForm:
    enabled: bool = False
    min_length: int | None = None
    max_length: int | None = None
    allowed: set[CharClass] = field(default_factory=lambda: set(ALL_CLASSES))

    def apply_preset(self, name: str) -> None:
        try:
            self.allowed = set(PRESETS[name])
        except KeyError:
            raise PolicyError(f"unknown preset: {name}") from None

    def to_policy(self) -> Policy:
        return Policy(
            enabled=self.enabled,
            min_length=self.min_length,
            max_length=self.max_length,
            allowed_classes=frozenset(self.allowed),
        )

    @classmethod
    def from_policy(cls, policy: Policy | None) -> PolicyForm:
        if policy is None or not policy.enabled:
            return cls()
        return cls(
            enabled=True,
            min_length=policy.min_length,
            max_length=policy.max_length,
            allowed=set(policy.allowed_classes),
        )


class SettingsSurface:
    def __init__(
        self,
        rule_store: RuleStore,
        sessions: SessionController | None = None,
        open_channel: Callable[[], NativeChannel] | None = None,
        *,
        query_timeout: float = 5.0,
    ) -> None:
        self.rule_store = rule_store
        self.sessions = sessions
        self._open_channel = open_channel
        self.query_timeout = query_timeout

    def load(self, domain: str) -> PolicyForm:
        return PolicyForm.from_policy(self.rule_store.get(domain))

    def save(self, domain: str, form: PolicyForm) -> Policy | None:
        if not form.enabled:
            self.delete(domain)
            return None
        policy = form.to_policy()
        self.rule_store.set(domain, policy)
        self._notify(domain)
        return policy

    def delete(self, domain: str) -> bool:
        removed = self.rule_store.delete(domain)
        self._notify(domain)
        return removed

    def _notify(self, domain: str) -> None:
        if self.sessions is not None:
            self.sessions.rules_updated(domain)

    def _opener(self) -> Callable[[], NativeChannel]:
        if self._open_channel is None:
            raise BridgeError("No generator channel configured")
        return self._open_channel

    async def fetch_generator_rules(self, domain: str) -> GeneratorRules:
        return await queries.fetch_rules(self._opener(), domain, timeout=self.query_timeout)

    async def push_to_generator(self, domain: str, policy: Policy) -> None:
        """Store `policy` as the generator's default rules for `domain`."""
        policy.validate()
        await queries.push_rules(
            self._opener(),
            domain,
            max_length=policy.max_length or 0,
            char_type_mask=classes_to_mask(policy.allowed_classes),
            timeout=self.query_timeout,
        )
