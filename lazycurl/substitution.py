"""lazycurl substitution - resolve {{name}} / {{name:default}} tokens.

Tokens are resolved against the active Environment:

- ``{{name}}`` with ``name`` defined        -> its value
- ``{{name:default}}`` with ``name`` missing -> ``default``
- ``{{name}}`` with ``name`` missing         -> left verbatim
- ``{{name`` with no closing ``}}``          -> left verbatim

Nested ``{{`` inside a token is not supported; the outer braces are then
kept as literal text.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from lazycurl.errors import ValidationError
from lazycurl.models import Environment

OPEN = "{{"
CLOSE = "}}"
IDENTIFIER_RE = re.compile(r"[A-Za-z0-9_.-]+")


@dataclass(frozen=True)
class Token:
    """A well-formed substitution token found in a string."""

    start: int
    end: int
    name: str
    default: str | None

    @property
    def text(self) -> str:
        if self.default is None:
            return f"{OPEN}{self.name}{CLOSE}"
        return f"{OPEN}{self.name}:{self.default}{CLOSE}"


def parse_token(inner: str) -> tuple[str, str | None]:
    """Split the text between the braces into (name, default).

    Raises ValidationError when the identifier is malformed.
    """
    name, sep, default = inner.partition(":")
    if OPEN in inner or not IDENTIFIER_RE.fullmatch(name):
        raise ValidationError(f"Malformed substitution token: {OPEN}{inner}{CLOSE}")
    return name, (default if sep else None)


def scan_tokens(text: str) -> list[Token]:
    """Scan left to right and return every well-formed token."""
    tokens: list[Token] = []
    i = 0
    while True:
        start = text.find(OPEN, i)
        if start == -1:
            return tokens
        end = text.find(CLOSE, start + len(OPEN))
        if end == -1:
            # No closing braces anywhere after this point.
            return tokens
        try:
            name, default = parse_token(text[start + len(OPEN) : end])
        except ValidationError:
            i = start + 1
            continue
        tokens.append(Token(start, end + len(CLOSE), name, default))
        i = end + len(CLOSE)


def resolve_token(token: Token, environment: Environment | None) -> str:
    if environment is not None:
        value = environment.get(token.name)
        if value is not None:
            return value
    if token.default is not None:
        return token.default
    return token.text


def substitute(text: str, environment: Environment | None) -> str:
    """Return ``text`` with every resolvable token replaced.

    Pure and deterministic: the same text and environment always give the
    same result, and unresolved tokens are never dropped.
    """
    if not text or OPEN not in text:
        return text
    parts: list[str] = []
    pos = 0
    for token in scan_tokens(text):
        parts.append(text[pos : token.start])
        parts.append(resolve_token(token, environment))
        pos = token.end
    parts.append(text[pos:])
    return "".join(parts)


def unresolved_names(text: str, environment: Environment | None) -> list[str]:
    """Names of tokens that would be left verbatim by ``substitute``."""
    missing: list[str] = []
    for token in scan_tokens(text or ""):
        if token.default is not None:
            continue
        if environment is not None and environment.get(token.name) is not None:
            continue
        if token.name not in missing:
            missing.append(token.name)
    return missing
