"""
JSON Pointer parsing shared by the path policy and the patch interpreter.

A pointer is parsed once into a tuple of Segment values so that prefix checks
are segment-wise ("/tenant_idx" is not under "/tenant_id") and RFC 6901 escapes
are decoded in one place:

    "~1" -> "/"
    "~0" -> "~"

The document root may be written as "" or "/".

A segment is interpreted against the container it is applied to: on a dict it
is a key, on a list it must be a canonical non-negative integer ("0", "12",
not "012") or the append marker "-".
"""

import re
from dataclasses import dataclass
from typing import Any, Optional, Sequence, Tuple


APPEND_MARKER = '-'

_INDEX_RE = re.compile(r'^(0|[1-9][0-9]*)$')
_BAD_ESCAPE_RE = re.compile(r'~(?![01])')


class InvalidPointerError(ValueError):
    """Raised for strings that are not valid JSON pointers."""


@dataclass(frozen=True)
class Segment:
    """One decoded reference token."""
    key: str

    @property
    def is_append(self) -> bool:
        return self.key == APPEND_MARKER

    @property
    def index(self) -> Optional[int]:
        """Array index for canonical integer tokens, else None."""
        if _INDEX_RE.match(self.key):
            return int(self.key)
        return None

    def encode(self) -> str:
        return self.key.replace('~', '~0').replace('/', '~1')


@dataclass(frozen=True)
class JsonPointer:
    """
    Parsed JSON pointer.

    Example:
        >>> p = JsonPointer.parse('/ui/tabs/0')
        >>> [s.key for s in p.segments]
        ['ui', 'tabs', '0']
        >>> p.startswith(JsonPointer.parse('/ui'))
        True
    """
    segments: Tuple[Segment, ...]

    @classmethod
    def parse(cls, text: str) -> 'JsonPointer':
        if not isinstance(text, str):
            raise InvalidPointerError(f"Pointer must be a string, got {type(text).__name__}")
        if text in ('', '/'):
            return cls(())
        if not text.startswith('/'):
            raise InvalidPointerError(f"Pointer must start with '/': {text!r}")
        tokens = text[1:].split('/')
        segments = []
        for token in tokens:
            if _BAD_ESCAPE_RE.search(token):
                raise InvalidPointerError(f"Invalid escape sequence in pointer: {text!r}")
            segments.append(Segment(token.replace('~1', '/').replace('~0', '~')))
        return cls(tuple(segments))

    @classmethod
    def from_keys(cls, keys: Sequence[str]) -> 'JsonPointer':
        return cls(tuple(Segment(k) for k in keys))

    @property
    def is_root(self) -> bool:
        return not self.segments

    @property
    def parent(self) -> 'JsonPointer':
        return JsonPointer(self.segments[:-1])

    @property
    def last(self) -> Segment:
        return self.segments[-1]

    def startswith(self, prefix: 'JsonPointer') -> bool:
        """True when `prefix` equals this pointer or is one of its ancestors."""
        n = len(prefix.segments)
        return self.segments[:n] == prefix.segments

    def keys(self) -> Tuple[str, ...]:
        return tuple(s.key for s in self.segments)

    def __str__(self) -> str:
        if not self.segments:
            return ''
        return '/' + '/'.join(s.encode() for s in self.segments)


def resolve(document: Any, pointer: JsonPointer) -> Tuple[bool, Any]:
    """
    Look a pointer up in a document without raising.

    Returns:
        (found, value): `found` is False when any segment does not exist, when
        a scalar is traversed, or when the append marker is used.
    """
    current = document
    for segment in pointer.segments:
        if isinstance(current, dict):
            if segment.key not in current:
                return False, None
            current = current[segment.key]
        elif isinstance(current, list):
            index = segment.index
            if index is None or index >= len(current):
                return False, None
            current = current[index]
        else:
            return False, None
    return True, current
