"""
Fixed-size byte blobs.

Every hash, key, signature, proof and field element that the legacy
formats store as a fixed number of bytes is a ``Blob`` subclass with a
``SIZE``.  Distinct subclasses exist only so that values carry their
meaning; handling is byte-identical.
"""

from __future__ import annotations

from typing import ClassVar

from zmigrate_core.parser import Parser, Writer


class Blob:
    """Immutable run of exactly ``SIZE`` bytes."""

    SIZE: ClassVar[int] = 0
    TYPE_NAME: ClassVar[str] = "Blob"

    __slots__ = ("_data",)

    def __init__(self, data: bytes) -> None:
        data = bytes(data)
        if len(data) != self.SIZE:
            raise ValueError(
                f"{type(self).__name__} requires {self.SIZE} bytes, got {len(data)}"
            )
        object.__setattr__(self, "_data", data)

    def __init_subclass__(cls, **kwargs) -> None:
        super().__init_subclass__(**kwargs)
        if "TYPE_NAME" not in cls.__dict__:
            cls.TYPE_NAME = cls.__name__

    def __setattr__(self, name, value):
        raise AttributeError(f"{type(self).__name__} is immutable")

    @classmethod
    def parse(cls, p: Parser):
        return cls(p.next(cls.SIZE))

    @classmethod
    def from_hex(cls, text: str):
        return cls(bytes.fromhex(text))

    @classmethod
    def zero(cls):
        return cls(bytes(cls.SIZE))

    def encode(self, w: Writer) -> Writer:
        return w.write_bytes(self._data)

    def to_bytes(self) -> bytes:
        return self._data

    def hex(self) -> str:
        return self._data.hex()

    def is_zero(self) -> bool:
        return not any(self._data)

    def __bytes__(self) -> bytes:
        return self._data

    def __len__(self) -> int:
        return self.SIZE

    def __eq__(self, other: object) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return self._data == other._data  # type: ignore[attr-defined]

    def __hash__(self) -> int:
        return hash((type(self).__name__, self._data))

    def __lt__(self, other: "Blob") -> bool:
        return self._data < other._data

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._data.hex()})"


class Blob4(Blob):
    SIZE = 4


class Blob11(Blob):
    SIZE = 11


class Blob20(Blob):
    SIZE = 20


class Blob32(Blob):
    SIZE = 32


class Blob64(Blob):
    SIZE = 64


class U160(Blob):
    """160-bit hash (RIPEMD-160 of SHA-256)."""
    SIZE = 20
    TYPE_NAME = "u160"


class U256(Blob):
    """
    256-bit little-endian value as stored by the node.  Displayed
    byte-reversed, the way block and transaction hashes are shown.
    """
    SIZE = 32
    TYPE_NAME = "u256"

    def __str__(self) -> str:
        return self._data[::-1].hex()


class U252(Blob):
    """32-byte value whose top four bits must be clear."""
    SIZE = 32
    TYPE_NAME = "u252"

    @classmethod
    def parse(cls, p: Parser):
        data = p.next(cls.SIZE)
        if data[0] & 0xF0:
            raise p.invalid("first four bits of u252 must be zero")
        return cls(data)


class TxId(U256):
    TYPE_NAME = "TxId"

    @classmethod
    def from_display(cls, text: str) -> "TxId":
        """Build from the byte-reversed hex form shown by explorers."""
        return cls(bytes.fromhex(text)[::-1])
