from __future__ import annotations

from void_vault.bridge.domain_shift import domain_letters, shift, shift_sequence


def test_shift_is_pure() -> None:
    assert shift("g", "gmail.com", 3) == shift("g", "gmail.com", 3)


def test_same_char_differs_by_position_under_multi_letter_domain() -> None:
    assert shift("x", "ab.com", 0) != shift("x", "ab.com", 1)


def test_ab_com_scenario_uses_a_then_b() -> None:
    # 'a' = 97: odd, 97 % 26 = 19 -> shift down by 19.
    # 'b' = 98: even, 98 % 26 = 20 -> shift up by 20.
    assert shift("x", "ab.com", 0) == chr(ord("x") - 19)
    assert shift("y", "ab.com", 1) == chr(ord("y") + 20)
    assert shift_sequence("xy", "ab.com") == "e\x8d"


def test_position_cycles_through_domain_letters_without_dots() -> None:
    assert domain_letters("ab.com") == "abcom"
    # position 5 wraps back to 'a'
    assert shift("x", "ab.com", 5) == shift("x", "ab.com", 0)


def test_empty_domain_is_identity() -> None:
    assert shift("q", "", 7) == "q"
    assert shift("q", "...", 0) == "q"


def test_operates_on_whole_scalars() -> None:
    # 'm' = 109: odd, 109 % 26 = 5 -> down by 5
    assert shift("😀", "m", 0) == chr(0x1F600 - 5)


def test_wraps_below_zero_and_skips_surrogates() -> None:
    assert shift("\x01", "a", 0) == chr(0x110000 - 18)
    # 'b' shifts up by 20: 0xD7F0 + 20 lands in the surrogate block and steps past it.
    out = shift(chr(0xD7F0), "b", 0)
    assert ord(out) == 0xD7F0 + 20 + 0x800
    out.encode("utf-8")
