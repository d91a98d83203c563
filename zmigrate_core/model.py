"""
Canonical interchange model.

Every legacy wallet format migrates into the same ``WalletDB`` aggregate:
wallets keyed by ARID, transactions keyed by txid, and opaque
attachments for legacy data without a canonical home.  All entities are
frozen; the migration engine builds new ones instead of mutating.

ARIDs are derived, never random, so migrating the same snapshot twice
yields equal aggregates::

    ARID = SHA-256("zmigrate/arid" || namespace || identifier)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Union

from zmigrate_core.blob import U256, Blob32, TxId
from zmigrate_core.crypto_utils import sha256
from zmigrate_core.merkle_tree import Witness
from zmigrate_core.primitives import Network

ARID_DOMAIN = b"zmigrate/arid"


class ARID(Blob32):
    """Wallet-scoped identifier for wallets and accounts."""

    @classmethod
    def derive(cls, namespace: str, identifier: str | bytes) -> "ARID":
        if isinstance(identifier, str):
            identifier = identifier.encode("utf-8")
        return cls(sha256(ARID_DOMAIN + namespace.encode("utf-8") + identifier))

    def __str__(self) -> str:
        return f"ARID({self.hex()[:16]})"


class Protocol(Enum):
    TRANSPARENT = "transparent"
    SPROUT = "sprout"
    SAPLING = "sapling"
    ORCHARD = "orchard"
    UNIFIED = "unified"


# ═══════════════════════════════════════════════════════════════════
#  Key material
# ═══════════════════════════════════════════════════════════════════

class SpendingKeyKind(Enum):
    TRANSPARENT = "transparent"
    SPROUT = "sprout"
    SAPLING_EXTENDED = "sapling-extended"
    SAPLING_EXPANDED = "sapling-expanded"
    ORCHARD = "orchard"
    RAW = "raw"


@dataclass(frozen=True)
class SpendingKey:
    kind: SpendingKeyKind
    data: bytes


class Derived:
    """Spend authority that is derivable from the wallet seed but not stored."""

    _instance: "Derived | None" = None

    def __new__(cls) -> "Derived":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "Derived"


DERIVED = Derived()

SpendAuthority = Union[SpendingKey, Derived]


@dataclass(frozen=True)
class Bip39Mnemonic:
    phrase: str
    language: str | None = None


@dataclass(frozen=True)
class PreBip39Seed:
    seed: Blob32


SeedMaterial = Union[Bip39Mnemonic, PreBip39Seed]


# ═══════════════════════════════════════════════════════════════════
#  Addresses
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class TransparentAddress:
    address: str | None = None

    protocol = Protocol.TRANSPARENT


@dataclass(frozen=True)
class ShieldedAddress:
    """
    A shielded receiver.  ``address`` is ``None`` when the legacy wallet
    only stores key material and the string form would have to be derived.
    """

    protocol: Protocol
    address: str | None = None
    incoming_viewing_key: bytes | None = None
    diversifier_index: int | None = None
    receiver_types: tuple[str, ...] = ()


ProtocolAddress = Union[TransparentAddress, ShieldedAddress]


@dataclass(frozen=True)
class Address:
    protocol_address: ProtocolAddress
    name: str = ""
    purpose: str | None = None
    spend_authority: SpendAuthority | None = None
    derivation_path: str | None = None
    attachments: dict[str, bytes] = field(default_factory=dict)

    def is_transparent(self) -> bool:
        return isinstance(self.protocol_address, TransparentAddress)

    @property
    def protocol(self) -> Protocol:
        return self.protocol_address.protocol

    @property
    def address(self) -> str | None:
        return self.protocol_address.address

    def identity(self) -> str:
        """Stable key for this address within its account."""
        pa = self.protocol_address
        if pa.address is not None:
            return pa.address
        parts = [pa.protocol.value]
        if isinstance(pa, ShieldedAddress):
            if pa.incoming_viewing_key is not None:
                return f"{pa.protocol.value}:{pa.incoming_viewing_key.hex()}"
            if pa.diversifier_index is not None:
                parts.append(str(pa.diversifier_index))
        if isinstance(self.spend_authority, SpendingKey):
            parts.append(sha256(self.spend_authority.data).hex()[:16])
        elif self.attachments:
            material = b"".join(v for _, v in sorted(self.attachments.items()))
            parts.append(sha256(material).hex()[:16])
        return ":".join(parts)


# ═══════════════════════════════════════════════════════════════════
#  Transactions
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class NoteWitness:
    """A note's position in its commitment tree and its current witness."""

    position: int
    anchor: U256
    witness: Witness


@dataclass(frozen=True)
class TxIn:
    prev_txid: TxId
    prev_index: int
    script_sig: bytes
    sequence: int


@dataclass(frozen=True)
class TxOut:
    value: int
    script_pubkey: bytes
    address: str | None = None


@dataclass(frozen=True)
class SaplingSpendDescription:
    spend_index: int
    cv: U256
    anchor: U256
    nullifier: U256
    rk: U256
    zkproof: bytes


@dataclass(frozen=True)
class SaplingOutputDescription:
    output_index: int
    cv: U256
    commitment: U256
    ephemeral_key: U256
    enc_ciphertext: bytes
    out_ciphertext: bytes
    zkproof: bytes
    address: str | None = None
    note_witness: NoteWitness | None = None


@dataclass(frozen=True)
class OrchardActionDescription:
    action_index: int
    nullifier: bytes
    commitment: bytes
    rk: bytes
    ephemeral_key: bytes
    enc_ciphertext: bytes
    out_ciphertext: bytes
    spends_my_note: bool = False
    action_data: bytes | None = None


@dataclass(frozen=True)
class JoinSplitDescription:
    vpub_old: int
    vpub_new: int
    anchor: U256
    nullifiers: tuple[U256, ...]
    commitments: tuple[U256, ...]
    zkproof: bytes
    output_addresses: tuple[str | None, ...] = (None, None)
    note_witnesses: tuple[NoteWitness | None, ...] = (None, None)


@dataclass(frozen=True)
class Transaction:
    txid: TxId
    raw: bytes
    version: int
    consensus_branch_id: int | None = None
    lock_time: int | None = None
    expiry_height: int | None = None
    block_hash: U256 | None = None
    inputs: tuple[TxIn, ...] = ()
    outputs: tuple[TxOut, ...] = ()
    sapling_value_balance: int | None = None
    sapling_spends: tuple[SaplingSpendDescription, ...] = ()
    sapling_outputs: tuple[SaplingOutputDescription, ...] = ()
    orchard_actions: tuple[OrchardActionDescription, ...] = ()
    sprout_joinsplits: tuple[JoinSplitDescription, ...] = ()
    from_me: bool = False
    time_received: int | None = None
    attachments: dict[str, bytes] = field(default_factory=dict)


# ═══════════════════════════════════════════════════════════════════
#  Aggregate
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Account:
    arid: ARID
    name: str
    zip32_account_id: int | None = None
    addresses: dict[str, Address] = field(default_factory=dict)
    relevant_transactions: frozenset[TxId] = frozenset()
    attachments: dict[str, bytes] = field(default_factory=dict)

    def transparent_addresses(self) -> list[Address]:
        return [a for a in self.addresses.values() if a.is_transparent()]

    def shielded_addresses(self) -> list[Address]:
        return [a for a in self.addresses.values() if not a.is_transparent()]


@dataclass(frozen=True)
class Wallet:
    arid: ARID
    network: Network
    accounts: dict[ARID, Account] = field(default_factory=dict)
    seed_material: SeedMaterial | None = None

    def addresses(self) -> list[Address]:
        return [a for account in self.accounts.values() for a in account.addresses.values()]


@dataclass(frozen=True)
class WalletDB:
    wallets: dict[ARID, Wallet] = field(default_factory=dict)
    transactions: dict[TxId, Transaction] = field(default_factory=dict)
    attachments: dict[str, bytes] = field(default_factory=dict)

    def addresses(self) -> list[Address]:
        return [a for wallet in self.wallets.values() for a in wallet.addresses()]

    def summary(self) -> dict[str, int]:
        accounts = sum(len(w.accounts) for w in self.wallets.values())
        return {
            "wallets": len(self.wallets),
            "accounts": accounts,
            "addresses": len(self.addresses()),
            "transactions": len(self.transactions),
            "attachments": len(self.attachments),
        }
