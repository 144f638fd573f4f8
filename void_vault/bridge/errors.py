from __future__ import annotations


class BridgeError(Exception):
    pass


class ChannelOpenFailure(BridgeError):
    """The generator host could not be reached (missing binary, bad gateway URL, spawn failure)."""


class ChannelTimeout(BridgeError):
    pass


class UnsolicitedDisconnect(BridgeError):
    """The generator channel closed while a session was live.

    `ambiguous` is set when a commit or set-counter request was in flight: the
    generator may or may not have applied it, so the user has to reactivate and
    read the counter back.
    """

    def __init__(self, message: str, *, ambiguous: bool = False) -> None:
        super().__init__(message)
        self.ambiguous = ambiguous


class InvalidManualVersion(BridgeError):
    pass


class GeneratorError(BridgeError):
    """Error reported by the generator process, passed through verbatim."""


class SessionNotActiveError(BridgeError):
    pass


class PolicyError(BridgeError):
    pass
