"""
tests/test_passwords.py -- Unit tests for auth.passwords.validate().

Each rejected example trips one specific rule; the accepted ones were chosen
to sit close to a rule's threshold without crossing it.
"""

from __future__ import annotations

import pytest

from auth.errors import ValidationError
from auth.passwords import (
    MAX_PASSWORD_LENGTH,
    MIN_PASSWORD_LENGTH,
    QWERTY_NEIGHBOURS,
    build_qwerty_neighbours,
    sequence_score,
    validate,
)

STRONG = "QmzPkav-7He9ldUb!s"
LETTERS_ONLY = "qmzpkavhelcuwnf"


class TestAccepted:
    def test_mixed_password(self) -> None:
        validate(STRONG)

    def test_letters_only_password_without_sequences(self) -> None:
        validate(LETTERS_ONLY)

    def test_denylist_word_inside_password_with_three_non_letters(self) -> None:
        """A denylisted fragment is tolerated when the rest carries enough symbols."""
        validate(STRONG, "zpkav")

    def test_short_denylist_entry_only_matches_exactly(self) -> None:
        validate(LETTERS_ONLY, "kav")

    def test_shortest_password_with_little_repetition(self) -> None:
        validate("kx7kq9x2vm")

    def test_fragment_repeated_three_times(self) -> None:
        validate("k9#abcQ2mabcW7zabcP4v")


class TestLength:
    def test_too_short(self) -> None:
        with pytest.raises(ValidationError, match=f"at least {MIN_PASSWORD_LENGTH}") as exc:
            validate("short")
        assert exc.value.field == "password"

    def test_too_long(self) -> None:
        with pytest.raises(ValidationError, match=f"at most {MAX_PASSWORD_LENGTH}"):
            validate("a" * (MAX_PASSWORD_LENGTH + 1))


class TestCharacters:
    def test_control_character_rejected(self) -> None:
        with pytest.raises(ValidationError, match="printable"):
            validate("this is invalid: \u0000")

    def test_lone_surrogate_rejected(self) -> None:
        with pytest.raises(ValidationError):
            validate("QmzPkav-7He9\ud800")


class TestLowEntropy:
    @pytest.mark.parametrize(
        "password",
        [
            "mlernierbngle",  # keyboard-adjacent letters in a short password
            "qwertyuiopasdf",  # keyboard walk
            "ab" * 50,  # two characters dominate
            "aaaaaaaaaaaa",  # too few distinct characters
            "kz5cpkz5cp",  # five characters, each used twice
            "zpzkzczhzpzkz5zczhpk",  # one character fills almost half
            "k9#abcQ2mabcW7zabcP4vabc",  # same trigram four times
            "QmzpkavMoneyclw",  # built-in denylist word
        ],
    )
    def test_rejected(self, password: str) -> None:
        with pytest.raises(ValidationError, match="low entropy"):
            validate(password)

    def test_exact_denylist_match_is_case_insensitive(self) -> None:
        with pytest.raises(ValidationError, match="low entropy"):
            validate(STRONG, STRONG.lower())

    def test_exact_denylist_match(self) -> None:
        with pytest.raises(ValidationError, match="low entropy"):
            validate(STRONG, STRONG)

    def test_denylist_fragment_in_letter_heavy_password(self) -> None:
        with pytest.raises(ValidationError, match="low entropy"):
            validate(LETTERS_ONLY, "kavhe")


class TestSequenceScore:
    def test_shifted_digits_count_as_their_key(self) -> None:
        assert sequence_score("1!") == 1
        assert sequence_score("!@") == 1
        assert sequence_score("2@") == 1

    def test_unrelated_characters_score_zero(self) -> None:
        assert sequence_score(STRONG) == 0


class TestKeyboardModel:
    def test_corner_key_neighbours(self) -> None:
        assert set(QWERTY_NEIGHBOURS["q"]) == {"1", "q", "a", "2", "w", "s"}

    def test_table_is_read_only(self) -> None:
        with pytest.raises(TypeError):
            QWERTY_NEIGHBOURS["q"] = ("q",)  # type: ignore[index]

    def test_custom_layout(self) -> None:
        table = build_qwerty_neighbours(("ab", "cd"))
        assert set(table["a"]) == {"a", "b", "c", "d"}
