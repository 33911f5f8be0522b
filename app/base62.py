"""Base62 encoding of counter values into short codes.

The alphabet is digits, then uppercase, then lowercase. Encoded strings are
therefore not sortable in numeric order once they grow past one symbol; code
relying on ordering must decode first.
"""

from app.exceptions import InvalidBase62CharacterError

__all__ = ["BASE62_ALPHABET", "MAX_VALUE", "encode", "decode"]

BASE62_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"
BASE = len(BASE62_ALPHABET)
MAX_VALUE = 2**63 - 1

_INDEX = {char: index for index, char in enumerate(BASE62_ALPHABET)}


def encode(number: int) -> str:
    """Encode a non-negative integer to base62.

    Example:
        >>> encode(61)
        'z'
        >>> encode(62)
        '10'
    """
    if number < 0:
        raise ValueError("Number must be non-negative")

    if number == 0:
        return BASE62_ALPHABET[0]

    result = []
    while number > 0:
        number, remainder = divmod(number, BASE)
        result.append(BASE62_ALPHABET[remainder])

    return "".join(result[::-1])


def decode(value: str) -> int:
    """Decode a base62 string back to its integer value.

    Raises:
        InvalidBase62CharacterError: if ``value`` holds a symbol outside the alphabet.
        ValueError: if the decoded number does not fit in a signed 64-bit integer.
    """
    number = 0
    for char in value:
        try:
            digit = _INDEX[char]
        except KeyError:
            raise InvalidBase62CharacterError(char) from None
        number = number * BASE + digit
        if number > MAX_VALUE:
            raise ValueError(f"base62 string '{value}' exceeds the int64 range")
    return number
