"""
auth/passwords.py -- Heuristic password strength validation.

Follows the spirit of NIST SP 800-63B and the OWASP Authentication Cheat
Sheet: long passphrases are welcome, composition rules are not enforced, and
the checks target the patterns leaked-password corpora are full of instead:

  - keyboard walks and alphabet runs ("qwertyuiop", "abcdefghij"),
  - low variety ("aaaaaaaaaa", "abababab..."),
  - a dictionary word with a single symbol bolted on,
  - repeated fragments ("dog-lot-barks-lot-cloud-lot-..."),
  - well-known weak words, plus a caller-supplied denylist (e.g. the user's
    own name and email).

The rules are heuristics, not an entropy estimate. Their numeric thresholds
are part of the contract: changing any of them changes which stored
passwords would have been accepted.

For a proper estimator see zxcvbn; for breach checks see the
haveibeenpwned.com range API.
"""

from __future__ import annotations

import unicodedata
from collections import Counter
from collections.abc import Mapping
from types import MappingProxyType

from auth.errors import ValidationError

MIN_PASSWORD_LENGTH = 10
# Longer inputs cost more to hash; the same bound guards check_password().
MAX_PASSWORD_LENGTH = 128

# A password requires at least this many different characters.
_MIN_DISTINCT = 5

DEFAULT_DENYLIST: tuple[str, ...] = (
    "pass",
    "password",
    "p4ss",
    "p4ssw0rd",
    "secret",
    "senha",
    "love",
    "iloveyou",
    "ronaldo",
    "computer",
    "money",
    "12345",
    "54321",
)

_LOW_ENTROPY = "password has low entropy"

# ---------------------------------------------------------------------------
# Keyboard model
# ---------------------------------------------------------------------------

# QWERTY layout approximated to a rectangle.
QWERTY_ROWS: tuple[str, ...] = (
    "1234567890",
    "qwertyuiop",
    "asdfghjkl;",
    "zxcvbnm,./",
)

# Shifted digit-row symbols map back to the digit sharing their key.
SHIFT_DIGITS: Mapping[str, str] = MappingProxyType(
    {
        "!": "1",
        "@": "2",
        "#": "3",
        "$": "4",
        "%": "5",
        "^": "6",
        "&": "7",
        "*": "8",
        "(": "9",
        ")": "0",
    }
)


def build_qwerty_neighbours(rows: tuple[str, ...] = QWERTY_ROWS) -> Mapping[str, tuple[str, ...]]:
    """Return an immutable key -> neighbouring keys table for a rectangular layout.

    Each key's neighbours are the keys in the surrounding 3x3 block, the key
    itself included, clipped at the layout edges.
    """
    height = len(rows)
    width = len(rows[0])
    table: dict[str, tuple[str, ...]] = {}
    for y, row in enumerate(rows):
        for x, key in enumerate(row):
            near = []
            for w in range(x - 1, x + 2):
                if not 0 <= w < width:
                    continue
                for h in range(y - 1, y + 2):
                    if 0 <= h < height:
                        near.append(rows[h][w])
            table[key] = tuple(near)
    return MappingProxyType(table)


QWERTY_NEIGHBOURS = build_qwerty_neighbours()

# ---------------------------------------------------------------------------
# Character scan
# ---------------------------------------------------------------------------


def _is_graphic(char: str) -> bool:
    # Letters, marks, numbers, punctuation, symbols and regular spaces.
    category = unicodedata.category(char)
    return category[0] in "LMNPS" or category == "Zs"


def _scan(
    lowered: str, neighbours: Mapping[str, tuple[str, ...]]
) -> tuple[Counter[str], int, int, int]:
    """Walk the lower-cased password once.

    Returns (histogram, sequence score, digit count, letter count). Raises
    ValidationError at the first non-printable character.
    """
    histogram: Counter[str] = Counter()
    sequence = digits = letters = 0
    last = last2 = "\x00"
    for char in lowered:
        if not _is_graphic(char):
            raise ValidationError("password should only contain printable chars", field="password")
        if char.isdecimal():
            digits += 1
        if char.isalpha():
            letters += 1
        histogram[char] += 1
        code = ord(char)
        # Same character, or the code point right before/after, as either of
        # the previous two characters.
        if abs(code - ord(last)) <= 1 or abs(code - ord(last2)) <= 1:
            sequence += 1
        else:
            near = neighbours.get(SHIFT_DIGITS.get(char, char))
            if near:
                prev = SHIFT_DIGITS.get(last, last)
                prev2 = SHIFT_DIGITS.get(last2, last2)
                sequence += sum(1 for key in near if key == prev or key == prev2)
        last2, last = last, char
    return histogram, sequence, digits, letters


def sequence_score(password: str, neighbours: Mapping[str, tuple[str, ...]] = QWERTY_NEIGHBOURS) -> int:
    """Return the adjacency score validate() uses for `password`."""
    return _scan(password.lower(), neighbours)[1]


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate(
    password: str,
    *denylist: str,
    neighbours: Mapping[str, tuple[str, ...]] = QWERTY_NEIGHBOURS,
) -> None:
    """Raise ValidationError if `password` looks weak; return None otherwise.

    `denylist` entries are matched case-insensitively in addition to
    DEFAULT_DENYLIST: an exact match always rejects, and an entry of four or
    more characters found inside a password with fewer than three non-letter
    characters also rejects. A long passphrase may contain a denylisted word
    as long as the rest of it carries enough variety.

    Rules run in a fixed order and the first failure wins.
    """
    if len(password) > MAX_PASSWORD_LENGTH:
        raise ValidationError(f"password length should be at most {MAX_PASSWORD_LENGTH}", field="password")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"password length should be at least {MIN_PASSWORD_LENGTH}", field="password")
    try:
        password.encode("utf-8")
    except UnicodeEncodeError:
        raise ValidationError("password should be valid UTF-8 text", field="password") from None

    lowered = password.lower()
    histogram, sequence, digits, letters = _scan(lowered, neighbours)
    length = len(lowered)

    # "bigstring!" style: a word with a single letter swapped for a symbol.
    if (
        letters == length - 1
        and letters < MIN_PASSWORD_LENGTH + 4
        and not lowered[0].isalpha()
        and not lowered[-1].isalpha()
    ):
        raise ValidationError(_LOW_ENTROPY, field="password")

    if (
        digits > int(0.8 * length)
        or len(histogram) < _MIN_DISTINCT
        or (length < 14 and sequence >= 3 and letters + digits > 9)
        or (length < 15 and sequence > 7)
        or (length < 16 and sequence > 9 and letters > 12)
        or 3 * sequence > 2 * length
    ):
        raise ValidationError(_LOW_ENTROPY, field="password")

    # Ascending: freq[0] is the rarest character, freq[-1] the commonest.
    freq = sorted(histogram.values())
    if freq[0] + freq[1] >= length * 0.5 or sum(freq[:5]) >= length * 0.6:
        raise ValidationError(_LOW_ENTROPY, field="password")
    if sum(freq[-5:]) - 2 > length * 0.7:
        raise ValidationError(_LOW_ENTROPY, field="password")

    for n in range(len(password) - 3):
        if password.count(password[n : n + 3]) >= 4:
            raise ValidationError(_LOW_ENTROPY, field="password")

    non_letters = length - letters
    for word in (*denylist, *DEFAULT_DENYLIST):
        word = word.lower()
        if lowered == word or (len(word) >= 4 and non_letters < 3 and word in lowered):
            raise ValidationError(_LOW_ENTROPY, field="password")
