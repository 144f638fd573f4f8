"""Domain-dependent keystroke substitution.

Every character the user types is shifted before it reaches the generator, so the
same phrase typed on two sites never feeds the generator the same input.
"""

from __future__ import annotations

_MAX_CODE_POINT = 0x110000
_SURROGATE_LO = 0xD800
_SURROGATE_HI = 0xDFFF


def domain_letters(domain: str) -> str:
    return "".join(ch for ch in (domain or "") if ch != ".")


def _step_over_surrogates(code: int, *, up: bool) -> int:
    if _SURROGATE_LO <= code <= _SURROGATE_HI:
        span = _SURROGATE_HI - _SURROGATE_LO + 1
        code = code + span if up else code - span
    return code % _MAX_CODE_POINT


def shift(char: str, domain: str, position: int) -> str:
    """Shift one Unicode scalar using the domain letter selected by `position`.

    The selected letter's code point mod 26 is the magnitude; even code points
    shift up, odd ones shift down. An empty domain is the identity.
    """
    if len(char) != 1:
        raise ValueError(f"expected a single character, got {len(char)}")
    letters = domain_letters(domain)
    if not letters:
        return char

    key = ord(letters[position % len(letters)])
    amount = key % 26
    up = key % 2 == 0

    code = ord(char) + amount if up else ord(char) - amount
    code %= _MAX_CODE_POINT
    return chr(_step_over_surrogates(code, up=up))


def shift_sequence(text: str, domain: str) -> str:
    return "".join(shift(ch, domain, i) for i, ch in enumerate(text))
