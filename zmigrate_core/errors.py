"""
Error taxonomy for zmigrate.

Every failure surfaced by the decoders or the migration engine is a
``ZMigrateError``.  Decode failures carry the byte offset and the chain
of context labels that were active when the failure happened, so the
rendered message names the full nested path to the failing field::

    "decoding BlockLocator" → "decoding sequence<u256>" → "decoding u256" →
    offset 412: buffer underrun, needed 32 bytes, had 9
"""

from __future__ import annotations

from typing import Sequence


class ZMigrateError(Exception):
    """Base class for every error raised by zmigrate."""


class DecodeError(ZMigrateError):
    """
    A structural failure while decoding a legacy byte stream.

    ``context`` holds the active labels innermost first; ``str()``
    renders them outermost first, ending with the offset and reason.
    """

    kind = "decode error"

    def __init__(
        self,
        reason: str,
        offset: int | None = None,
        context: Sequence[str] = (),
    ) -> None:
        self.reason = reason
        self.offset = offset
        self.context: tuple[str, ...] = tuple(context)
        super().__init__(self.render())

    def render(self) -> str:
        parts = [f'"{label}"' for label in reversed(self.context)]
        tail = f"{self.kind}, {self.reason}" if self.reason else self.kind
        if self.offset is not None:
            tail = f"offset {self.offset}: {tail}"
        parts.append(tail)
        return " → ".join(parts)

    def __str__(self) -> str:
        return self.render()


class BufferUnderrun(DecodeError):
    """Fewer bytes remain than a field requires."""

    kind = "buffer underrun"

    def __init__(
        self,
        needed: int,
        available: int,
        offset: int | None = None,
        context: Sequence[str] = (),
    ) -> None:
        self.needed = needed
        self.available = available
        super().__init__(
            f"needed {needed} bytes, had {available}", offset, context
        )


class InvalidEncoding(DecodeError):
    """A decoded value lies outside its allowed domain."""

    kind = "invalid encoding"


class UnsupportedVersion(DecodeError):
    """An on-disk version tag is newer than this implementation understands."""

    kind = "unsupported version"

    def __init__(
        self,
        found: int,
        maximum: int,
        offset: int | None = None,
        context: Sequence[str] = (),
    ) -> None:
        self.found = found
        self.maximum = maximum
        super().__init__(
            f"found version {found}, maximum supported is {maximum}",
            offset,
            context,
        )


class MigrationGap(ZMigrateError):
    """A decoded legacy entity has no defined mapping into the canonical model."""

    def __init__(self, entity: str, reason: str) -> None:
        self.entity = entity
        self.reason = reason
        super().__init__(f"Failed to convert {entity}: {reason}")
