"""
Cursor-based binary decoding framework.

All legacy wallet formats are decoded with a single ``Parser`` that owns
the input buffer and a forward-only read offset.  On top of the
primitive reads sit three decode contracts:

* **context-free**   — a type exposes ``parse(p)``;
* **context-annotated** — the type additionally declares ``TYPE_NAME``
  and ``decode()`` wraps the call with ``"decoding <TYPE_NAME>"`` on the
  context stack;
* **parameterized**  — a type exposes ``parse_with_param(p, param)``
  instead of ``parse`` because its shape depends on something the caller
  already knows.  It is only reachable through ``decode_with_param()``.

``Writer`` is the encoding mirror of the primitive reads.

Usage:
    from zmigrate_core.parser import Parser, decode, decode_vec
    p = Parser(data)
    locator = decode(p, BlockLocator)
    p.check_finished()
"""

from __future__ import annotations

import struct
from contextlib import contextmanager
from typing import Any, Callable, ClassVar, Iterator, Mapping, Protocol, TypeVar

from zmigrate_core.errors import BufferUnderrun, InvalidEncoding

T = TypeVar("T")
K = TypeVar("K")
V = TypeVar("V")

MAX_COMPACT_SIZE = 0x02000000

_PREFIXES = ("compact", "u8", "u16", "u32", "u64")


# ═══════════════════════════════════════════════════════════════════
#  Decode contracts
# ═══════════════════════════════════════════════════════════════════

class Parse(Protocol[T]):
    """Context-free decode."""

    @classmethod
    def parse(cls, p: "Parser") -> T: ...


class NamedParse(Parse[T], Protocol[T]):
    """Context-annotated decode: failures are labelled with TYPE_NAME."""

    TYPE_NAME: ClassVar[str]


class ParseWithParam(Protocol[T]):
    """Parameterized decode: the caller threads a known value in."""

    @classmethod
    def parse_with_param(cls, p: "Parser", param: Any) -> T: ...


# ═══════════════════════════════════════════════════════════════════
#  Cursor
# ═══════════════════════════════════════════════════════════════════

class Parser:
    """
    Forward-only reader over an in-memory byte buffer.

    Parameters
    ----------
    buffer : bytes
        The complete input.  It is copied once; decoded values never
        reference it.
    limits : dict, optional
        Per-record lowered version maximums, keyed by record class name
        (see ``zmigrate_core.versioned``).
    """

    def __init__(
        self,
        buffer: bytes | bytearray | memoryview,
        limits: Mapping[str, int] | None = None,
    ) -> None:
        self._buffer = bytes(buffer)
        self._offset = 0
        self._context: list[str] = []
        self.limits: Mapping[str, int] = dict(limits or {})

    def __repr__(self) -> str:
        return f"Parser(offset={self._offset}, remaining={self.remaining})"

    # ── position ───────────────────────────────────────────────────

    @property
    def offset(self) -> int:
        return self._offset

    @property
    def remaining(self) -> int:
        return len(self._buffer) - self._offset

    def is_finished(self) -> bool:
        return self.remaining == 0

    def check_finished(self) -> None:
        """Fail if any bytes are left unconsumed."""
        if self.remaining:
            raise self.invalid(f"{self.remaining} unconsumed trailing bytes")

    # ── context stack ──────────────────────────────────────────────

    def push_context(self, label: str) -> None:
        self._context.append(label)

    def pop_context(self) -> str:
        return self._context.pop()

    @contextmanager
    def context(self, label: str | None) -> Iterator[None]:
        """Push *label* for the duration of the block (``None`` is a no-op)."""
        if label is None:
            yield
            return
        self._context.append(label)
        try:
            yield
        finally:
            self._context.pop()

    def context_chain(self) -> tuple[str, ...]:
        """Active labels, innermost first."""
        return tuple(reversed(self._context))

    def invalid(self, reason: str) -> InvalidEncoding:
        """Build an ``InvalidEncoding`` positioned at the current offset."""
        return InvalidEncoding(reason, self._offset, self.context_chain())

    # ── raw bytes ──────────────────────────────────────────────────

    def next(self, n: int) -> bytes:
        """Consume exactly *n* bytes."""
        if n < 0:
            raise ValueError(f"negative read length {n}")
        available = self.remaining
        if n > available:
            raise BufferUnderrun(n, available, self._offset, self.context_chain())
        start = self._offset
        self._offset += n
        return self._buffer[start:self._offset]

    read_fixed = next

    def rest(self) -> bytes:
        """Consume and return everything that is left."""
        return self.next(self.remaining)

    def peek_rest(self) -> bytes:
        """Return the remaining bytes without advancing."""
        return self._buffer[self._offset:]

    # ── fixed-width integers (little-endian) ───────────────────────

    def _unpack(self, fmt: str, size: int) -> int:
        return struct.unpack(fmt, self.next(size))[0]

    def read_u8(self) -> int:
        return self._unpack("<B", 1)

    def read_u16(self) -> int:
        return self._unpack("<H", 2)

    def read_u32(self) -> int:
        return self._unpack("<I", 4)

    def read_u64(self) -> int:
        return self._unpack("<Q", 8)

    def read_i32(self) -> int:
        return self._unpack("<i", 4)

    def read_i64(self) -> int:
        return self._unpack("<q", 8)

    def read_f64(self) -> float:
        return struct.unpack("<d", self.next(8))[0]

    def read_bool(self) -> bool:
        value = self.read_u8()
        if value > 1:
            raise self.invalid(f"boolean byte must be 0 or 1, got {value}")
        return value == 1

    def read_compact_size(self) -> int:
        """Bitcoin-style CompactSize; non-canonical encodings are rejected."""
        first = self.read_u8()
        if first < 0xFD:
            return first
        if first == 0xFD:
            value, minimum = self.read_u16(), 0xFD
        elif first == 0xFE:
            value, minimum = self.read_u32(), 0x10000
        else:
            value, minimum = self.read_u64(), 0x100000000
        if value < minimum:
            raise self.invalid(f"non-canonical compact size {value}")
        if value > MAX_COMPACT_SIZE:
            raise self.invalid(f"compact size {value} exceeds maximum")
        return value

    # ── length-prefixed data ───────────────────────────────────────

    def read_length(self, prefix: str = "compact") -> int:
        if prefix == "compact":
            return self.read_compact_size()
        if prefix == "u8":
            return self.read_u8()
        if prefix == "u16":
            return self.read_u16()
        if prefix == "u32":
            return self.read_u32()
        if prefix == "u64":
            return self.read_u64()
        raise ValueError(f"unknown length prefix {prefix!r}")

    def read_var_bytes(self, prefix: str = "compact") -> bytes:
        return self.next(self.read_length(prefix))

    def read_utf8_string(self, prefix: str = "compact") -> str:
        raw = self.read_var_bytes(prefix)
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise self.invalid(f"malformed UTF-8 at byte {exc.start}") from exc


# ═══════════════════════════════════════════════════════════════════
#  Typed decode helpers
# ═══════════════════════════════════════════════════════════════════

Decoder = Callable[[Parser], Any]


def type_name(item: Any) -> str:
    """Diagnostic name of a decodable type or decoder function."""
    name = getattr(item, "TYPE_NAME", None)
    if name:
        return name
    name = getattr(item, "__name__", repr(item))
    return name[5:] if name.startswith("read_") else name


def _decoder(item: Any) -> Decoder:
    if isinstance(item, type):
        parse = getattr(item, "parse", None)
        if parse is None:
            if hasattr(item, "parse_with_param"):
                raise TypeError(
                    f"{item.__name__} requires a parameter; use decode_with_param()"
                )
            raise TypeError(f"{item.__name__} is not decodable")
        return parse
    return item


def decode(p: Parser, item: Any, label: str | None = None) -> Any:
    """
    Decode one value of *item* (a type with ``parse`` or a decoder
    function), labelling failures with *label* and the type name.
    """
    named = getattr(item, "TYPE_NAME", None)
    with p.context(label), p.context(f"decoding {named}" if named else None):
        return _decoder(item)(p)


def decode_with_param(
    p: Parser, item: Any, param: Any, label: str | None = None
) -> Any:
    """Decode a parameterized type.  A missing parameter is a programming error."""
    if param is None:
        raise TypeError(f"{type_name(item)} decoded without its parameter")
    parse = getattr(item, "parse_with_param", None)
    if parse is None:
        raise TypeError(f"{type_name(item)} has no parameterized decoder")
    named = getattr(item, "TYPE_NAME", None)
    with p.context(label), p.context(f"decoding {named}" if named else None):
        return parse(p, param)


def decode_buf(
    item: Any,
    data: bytes,
    param: Any = None,
    limits: Mapping[str, int] | None = None,
) -> Any:
    """Decode *data* completely as one *item*; trailing bytes are an error."""
    p = Parser(data, limits)
    if param is None:
        value = decode(p, item)
    else:
        value = decode_with_param(p, item, param)
    p.check_finished()
    return value


def decode_array(p: Parser, item: Any, count: int, label: str | None = None) -> tuple:
    """Exactly *count* consecutive values, no prefix."""
    with p.context(label), p.context(f"decoding array<{type_name(item)}; {count}>"):
        return tuple(decode(p, item) for _ in range(count))


def decode_vec(p: Parser, item: Any, label: str | None = None) -> tuple:
    """CompactSize count followed by exactly that many values."""
    with p.context(label), p.context(f"decoding sequence<{type_name(item)}>"):
        count = p.read_compact_size()
        return tuple(decode(p, item) for _ in range(count))


def decode_vec_with_param(
    p: Parser, item: Any, param: Any, label: str | None = None
) -> tuple:
    with p.context(label), p.context(f"decoding sequence<{type_name(item)}>"):
        count = p.read_compact_size()
        return tuple(decode_with_param(p, item, param) for _ in range(count))


def decode_optional(p: Parser, item: Any, label: str | None = None) -> Any:
    """Presence byte (0 absent, 1 present) followed by the value if present."""
    with p.context(label), p.context(f"decoding optional<{type_name(item)}>"):
        flag = p.read_u8()
        if flag == 0:
            return None
        if flag != 1:
            raise p.invalid(f"optional presence flag must be 0 or 1, got {flag}")
        return decode(p, item)


def decode_map(
    p: Parser, key: Any, value: Any, label: str | None = None
) -> dict:
    """CompactSize count followed by that many key/value pairs."""
    name = f"decoding map<{type_name(key)}, {type_name(value)}>"
    with p.context(label), p.context(name):
        count = p.read_compact_size()
        result: dict = {}
        for _ in range(count):
            k = decode(p, key)
            result[k] = decode(p, value)
        return result


# ═══════════════════════════════════════════════════════════════════
#  Encoder
# ═══════════════════════════════════════════════════════════════════

class Writer:
    """Little-endian byte builder mirroring ``Parser``'s primitive reads."""

    def __init__(self) -> None:
        self._buf = bytearray()

    def __len__(self) -> int:
        return len(self._buf)

    def to_bytes(self) -> bytes:
        return bytes(self._buf)

    def write_bytes(self, data: bytes) -> "Writer":
        self._buf += data
        return self

    def write_u8(self, v: int) -> "Writer":
        return self.write_bytes(struct.pack("<B", v))

    def write_u16(self, v: int) -> "Writer":
        return self.write_bytes(struct.pack("<H", v))

    def write_u32(self, v: int) -> "Writer":
        return self.write_bytes(struct.pack("<I", v))

    def write_u64(self, v: int) -> "Writer":
        return self.write_bytes(struct.pack("<Q", v))

    def write_i32(self, v: int) -> "Writer":
        return self.write_bytes(struct.pack("<i", v))

    def write_i64(self, v: int) -> "Writer":
        return self.write_bytes(struct.pack("<q", v))

    def write_f64(self, v: float) -> "Writer":
        return self.write_bytes(struct.pack("<d", v))

    def write_bool(self, v: bool) -> "Writer":
        return self.write_u8(1 if v else 0)

    def write_compact_size(self, n: int) -> "Writer":
        if n < 0xFD:
            return self.write_u8(n)
        if n <= 0xFFFF:
            return self.write_u8(0xFD).write_u16(n)
        if n <= 0xFFFFFFFF:
            return self.write_u8(0xFE).write_u32(n)
        return self.write_u8(0xFF).write_u64(n)

    def write_length(self, n: int, prefix: str = "compact") -> "Writer":
        if prefix not in _PREFIXES:
            raise ValueError(f"unknown length prefix {prefix!r}")
        if prefix == "compact":
            return self.write_compact_size(n)
        return getattr(self, f"write_{prefix}")(n)

    def write_var_bytes(self, data: bytes, prefix: str = "compact") -> "Writer":
        return self.write_length(len(data), prefix).write_bytes(data)

    def write_utf8_string(self, s: str, prefix: str = "compact") -> "Writer":
        return self.write_var_bytes(s.encode("utf-8"), prefix)

    def write_optional(self, value: Any, write: Callable[["Writer", Any], Any]) -> "Writer":
        if value is None:
            return self.write_u8(0)
        self.write_u8(1)
        write(self, value)
        return self

    def write_vec(self, items: Any, write: Callable[["Writer", Any], Any]) -> "Writer":
        items = list(items)
        self.write_compact_size(len(items))
        for item in items:
            write(self, item)
        return self
