"""JSON Pointer (RFC 6901) parsing helpers."""

from __future__ import annotations

import re
from collections.abc import Iterable

END_OF_ARRAY = "-"

_ARRAY_INDEX = re.compile(r"0|[1-9][0-9]*")


def parse_pointer(pointer: str) -> tuple[str, ...]:
    """Split ``pointer`` into its unescaped reference tokens.

    The empty string designates the whole document and yields no tokens.
    Any other pointer must start with ``/``.
    """

    if not isinstance(pointer, str):
        raise TypeError("JSON pointer must be a string")
    if pointer == "":
        return ()
    if not pointer.startswith("/"):
        raise ValueError(f"JSON pointer {pointer!r} must start with '/'")
    tokens = pointer[1:].split("/")
    for token in tokens:
        # '~' may only introduce the escapes '~0' and '~1'
        if re.search(r"~(?![01])", token):
            raise ValueError(f"JSON pointer {pointer!r} contains an invalid escape")
    return tuple(token.replace("~1", "/").replace("~0", "~") for token in tokens)


def escape_token(token: str) -> str:
    return token.replace("~", "~0").replace("/", "~1")


def format_pointer(tokens: Iterable[str]) -> str:
    """Join reference tokens back into a pointer string."""

    return "".join("/" + escape_token(str(token)) for token in tokens)


def parse_array_index(token: str) -> int | None:
    """Return ``token`` as an array index, or ``None`` when it is not canonical."""

    if _ARRAY_INDEX.fullmatch(token) is None:
        return None
    return int(token)


def is_proper_prefix(prefix: tuple[str, ...], tokens: tuple[str, ...]) -> bool:
    """Whether ``tokens`` designates a location strictly inside ``prefix``."""

    return len(tokens) > len(prefix) and tokens[: len(prefix)] == prefix


__all__ = [
    "END_OF_ARRAY",
    "escape_token",
    "format_pointer",
    "is_proper_prefix",
    "parse_array_index",
    "parse_pointer",
]
