"""
Small scalar records shared by every wallet format: client versions,
network identity, consensus branch ids and zatoshi amounts.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from zmigrate_core.parser import Parser

COIN = 100_000_000
MAX_MONEY = 21_000_000 * COIN


# ── Network ─────────────────────────────────────────────────────

class Network(Enum):
    """Zcash network, with the address-encoding parameters of each."""

    MAIN = "main"
    TEST = "test"
    REGTEST = "regtest"

    @classmethod
    def from_identifier(cls, identifier: str) -> "Network":
        for net in cls:
            if net.value == identifier:
                return net
        raise ValueError(f"unknown network identifier {identifier!r}")

    @property
    def p2pkh_prefix(self) -> bytes:
        return bytes.fromhex("1cb8") if self is Network.MAIN else bytes.fromhex("1d25")

    @property
    def p2sh_prefix(self) -> bytes:
        return bytes.fromhex("1cbd") if self is Network.MAIN else bytes.fromhex("1cba")

    @property
    def sapling_hrp(self) -> str:
        return {
            Network.MAIN: "zs",
            Network.TEST: "ztestsapling",
            Network.REGTEST: "zregtestsapling",
        }[self]

    @property
    def sprout_prefix(self) -> bytes:
        return bytes.fromhex("169a") if self is Network.MAIN else bytes.fromhex("16b6")


@dataclass(frozen=True)
class NetworkInfo:
    """The ``("zcash", identifier)`` pair a node wallet records."""

    zcash: str
    identifier: str
    network: Network

    TYPE_NAME = "NetworkInfo"

    @classmethod
    def parse(cls, p: Parser) -> "NetworkInfo":
        zcash = p.read_utf8_string()
        identifier = p.read_utf8_string()
        try:
            network = Network.from_identifier(identifier)
        except ValueError as exc:
            raise p.invalid(str(exc)) from exc
        return cls(zcash, identifier, network)


# ── Client version ──────────────────────────────────────────────

@dataclass(frozen=True)
class ClientVersion:
    """
    Node client version packed as
    ``major * 1_000_000 + minor * 10_000 + revision * 100 + build``.
    """

    version: int
    major: int
    minor: int
    revision: int
    build: int

    TYPE_NAME = "ClientVersion"

    @classmethod
    def from_integer(cls, version: int) -> "ClientVersion":
        major, remainder = divmod(version, 1_000_000)
        minor, remainder = divmod(remainder, 10_000)
        revision, build = divmod(remainder, 100)
        return cls(version, major, minor, revision, build)

    @classmethod
    def parse(cls, p: Parser) -> "ClientVersion":
        return cls.from_integer(p.read_u32())

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.revision}.{self.build}"


# ── Consensus branch ids ────────────────────────────────────────

BRANCH_IDS: dict[int, str] = {
    0x00000000: "Sprout",
    0x5BA81B19: "Overwinter",
    0x76B809BB: "Sapling",
    0x2BB40E60: "Blossom",
    0xF5B9230B: "Heartwood",
    0xE9FF75A6: "Canopy",
    0xC2D6D0B4: "Nu5",
    0xC8E71055: "Nu6",
}


def branch_name(branch_id: int) -> str:
    return BRANCH_IDS.get(branch_id, f"Unknown({branch_id:#010x})")


# ── Amounts ─────────────────────────────────────────────────────

def format_zats(zats: int) -> str:
    """Render a zatoshi amount as a ZEC decimal string."""
    sign = "-" if zats < 0 else ""
    whole, frac = divmod(abs(zats), COIN)
    return f"{sign}{whole}.{frac:08d} ZEC"


def nonzero(value: int) -> int | None:
    """Legacy encodings use zero for "not set"; normalize it to ``None``."""
    return value or None


# ── Transaction version header ──────────────────────────────────

class TxVersionGroup(Enum):
    PRE_OVERWINTER = "pre-overwinter"
    OVERWINTER_V3 = "overwinter-v3"
    SAPLING_V4 = "sapling-v4"
    ZIP225_V5 = "zip225-v5"
    FUTURE = "future"


OVERWINTER_VERSION_GROUP_ID = 0x03C48270
SAPLING_VERSION_GROUP_ID = 0x892F2085
ZIP225_VERSION_GROUP_ID = 0x26A7270A
ZFUTURE_VERSION_GROUP_ID = 0xFFFFFFFF

_VERSION_GROUPS = {
    (OVERWINTER_VERSION_GROUP_ID, 3): TxVersionGroup.OVERWINTER_V3,
    (SAPLING_VERSION_GROUP_ID, 4): TxVersionGroup.SAPLING_V4,
    (ZIP225_VERSION_GROUP_ID, 5): TxVersionGroup.ZIP225_V5,
    (ZFUTURE_VERSION_GROUP_ID, 0xFFFF): TxVersionGroup.FUTURE,
}


@dataclass(frozen=True)
class TxVersion:
    """
    Transaction header: the overwintered bit, the version number and,
    for overwintered transactions, the version group id.
    """

    group: TxVersionGroup
    number: int
    overwintered: bool
    version_group_id: int | None = None

    TYPE_NAME = "TxVersion"

    @classmethod
    def parse(cls, p: Parser) -> "TxVersion":
        with p.context("header"):
            header = p.read_u32()
        overwintered = bool(header >> 31)
        number = header & 0x7FFFFFFF
        if not overwintered:
            return cls(TxVersionGroup.PRE_OVERWINTER, number, False)
        with p.context("version_group_id"):
            group_id = p.read_u32()
        group = _VERSION_GROUPS.get((group_id, number))
        if group is None:
            raise p.invalid(
                f"unsupported transaction format: version={number}, "
                f"version_group_id={group_id:#010x}"
            )
        return cls(group, number, True, group_id)

    def header(self) -> int:
        return (0x80000000 if self.overwintered else 0) | self.number

    def is_sapling_v4(self) -> bool:
        return self.group is TxVersionGroup.SAPLING_V4

    def is_v5(self) -> bool:
        return self.group is TxVersionGroup.ZIP225_V5

    def uses_groth(self) -> bool:
        return self.overwintered and self.number >= 4
