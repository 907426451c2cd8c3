"""
engine/identifiers.py
---------------------
Validation, escaping and quoting of schema / table / column / constraint
names before they are interpolated into SQL text.

Design Decisions:
    * ``validate_identifier`` is deliberately stricter than any of the
      engines: only ``[A-Za-z0-9_]`` is accepted, even though every
      dialect could quote more exotic names.
    * Quoting takes the dialect object as a parameter instead of
      branching on the engine kind; the dialect supplies the quote
      characters, the case convention and the reserved-word list.
    * Truncated names get a ``_NNNN`` suffix derived from SHA-256 so that
      two long names sharing a prefix still map to distinct, stable
      results across runs and processes.
"""
from __future__ import annotations

import hashlib
import re
from typing import TYPE_CHECKING

from engine.errors import InvalidIdentifier

if TYPE_CHECKING:
    from engine.dialects import Dialect

_VALID_IDENTIFIER = re.compile(r"^[A-Za-z0-9_]+$", re.ASCII)
_PLAIN_UPPER_WORD = re.compile(r"^[A-Z][A-Z0-9_]*$", re.ASCII)

HASH_SUFFIX_LENGTH = 5  # "_" + 4 digits


def validate_identifier(name: str) -> str:
    """
    Reject blank names and names with characters outside ``[A-Za-z0-9_]``.

    Returns:
        The name unchanged, so the call can be used inline.

    Raises:
        InvalidIdentifier: If the name is empty, whitespace-only or contains
            any other character.
    """
    if name is None or not str(name).strip():
        raise InvalidIdentifier("Identifier must not be empty")
    if not _VALID_IDENTIFIER.match(name):
        raise InvalidIdentifier(
            f"Identifier '{name}' contains characters outside [A-Za-z0-9_]"
        )
    return name


def escape_identifier(name: str, dialect: "Dialect") -> str:
    """Double the dialect's closing quote character inside *name*."""
    close = dialect.quote_close
    return name.replace(close, close * 2)


def quote_identifier(name: str, dialect: "Dialect", fold_case: bool = True) -> str:
    """
    Produce a token ready to embed in SQL text.

    The name is first case-folded per the dialect's convention (unless
    *fold_case* is False, which is used when reading source objects by
    their catalog spelling). Dialects that allow bare upper-case names
    emit them unquoted when they are plain, non-reserved words.

    Examples::

        quote_identifier("Orders", tsql)     →  [Orders]
        quote_identifier("Orders", postgres) →  "orders"
        quote_identifier("Orders", oracle)   →  ORDERS
        quote_identifier("Order", oracle)    →  ORDER is reserved → "ORDER"
    """
    folded = dialect.fold_case(name) if fold_case else name
    if (
        dialect.bare_upper_identifiers
        and _PLAIN_UPPER_WORD.match(folded)
        and folded not in dialect.reserved_words
    ):
        return folded
    return f"{dialect.quote_open}{escape_identifier(folded, dialect)}{dialect.quote_close}"


def unquote_identifier(token: str, dialect: "Dialect") -> str:
    """
    Inverse of :func:`quote_identifier` (without the case folding).

    A token wrapped in the dialect's quote characters has them stripped and
    doubled closing quotes collapsed; a bare token is returned as-is.
    """
    open_, close = dialect.quote_open, dialect.quote_close
    if len(token) >= 2 and token.startswith(open_) and token.endswith(close):
        return token[1:-1].replace(close * 2, close)
    return token


def stable_hash_suffix(name: str) -> str:
    """Return ``_NNNN``: first 4 bytes of SHA-256(name) as little-endian uint32, mod 10000."""
    digest = hashlib.sha256(name.encode("utf-8")).digest()
    value = int.from_bytes(digest[:4], "little")
    return f"_{value % 10000:04d}"


def shorten_identifier(name: str, max_length: int) -> str:
    """
    Fit *name* into *max_length* characters.

    Names that already fit are returned unchanged. Longer names are cut to
    ``max_length - 5`` characters and suffixed with :func:`stable_hash_suffix`
    of the full name, so the result is exactly *max_length* long.
    """
    if len(name) <= max_length:
        return name
    keep = max_length - HASH_SUFFIX_LENGTH
    if keep <= 0:
        return name[:max_length]
    return name[:keep] + stable_hash_suffix(name)
