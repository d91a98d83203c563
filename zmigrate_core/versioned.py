"""
Forward-compatibility guard for versioned on-disk records.

A record class declares the newest layout it understands; reading a
newer version fails instead of silently misreading the bytes.
"""

from __future__ import annotations

from typing import ClassVar

from zmigrate_core.errors import UnsupportedVersion
from zmigrate_core.parser import Parser


class Versioned:
    """
    Mixin for records that start with (or contain) a version tag.

    Subclasses set ``MAX_VERSION`` and, when the tag is not a single
    byte, ``VERSION_WIDTH`` (``"u8"``, ``"u32"``, ``"i32"`` or ``"u64"``).
    A ``Parser`` built with ``limits`` may lower the maximum per record
    name, never raise it.
    """

    MAX_VERSION: ClassVar[int] = 0
    VERSION_WIDTH: ClassVar[str] = "u8"

    @classmethod
    def max_version(cls, p: Parser) -> int:
        override = p.limits.get(cls.__name__)
        if override is None:
            return cls.MAX_VERSION
        return min(cls.MAX_VERSION, override)

    @classmethod
    def read_version(cls, p: Parser) -> int:
        offset = p.offset
        with p.context("version"):
            version = getattr(p, f"read_{cls.VERSION_WIDTH}")()
            maximum = cls.max_version(p)
            if version > maximum:
                raise UnsupportedVersion(version, maximum, offset, p.context_chain())
        return version
