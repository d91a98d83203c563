"""
Orchard (third shielded generation) structures.

Field elements and curve points are carried verbatim: an ``Fp`` is four
little-endian 64-bit limbs, an ``Ep`` three ``Fp`` coordinates.  No
arithmetic or validity checking is done on either.  An Orchard bundle
only exists in v5 transactions; an empty action list means "no bundle".
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntFlag

from zmigrate_core.blob import U256, Blob, Blob11, Blob32, Blob64
from zmigrate_core.parser import Parser, Writer, decode, decode_array, decode_map, decode_vec
from zmigrate_core.sapling import SaplingEncCiphertext, SaplingOutCiphertext
from zmigrate_core.versioned import Versioned


# ═══════════════════════════════════════════════════════════════════
#  Field and curve primitives
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Fp:
    """Pallas base-field element as four 64-bit little-endian limbs."""

    limbs: tuple[int, int, int, int]

    TYPE_NAME = "Fp"

    @classmethod
    def parse(cls, p: Parser) -> "Fp":
        return cls(tuple(p.read_u64() for _ in range(4)))  # type: ignore[arg-type]

    @classmethod
    def from_bytes(cls, data: bytes) -> "Fp":
        return cls(tuple(int.from_bytes(data[i:i + 8], "little") for i in range(0, 32, 8)))  # type: ignore[arg-type]

    def to_bytes(self) -> bytes:
        return b"".join(limb.to_bytes(8, "little") for limb in self.limbs)

    def encode(self, w: Writer) -> Writer:
        for limb in self.limbs:
            w.write_u64(limb)
        return w


class Fq(Fp):
    """Pallas scalar-field element; same limb layout as ``Fp``."""

    TYPE_NAME = "Fq"


@dataclass(frozen=True)
class Ep:
    """Pallas point in projective coordinates."""

    x: Fp
    y: Fp
    z: Fp

    TYPE_NAME = "Ep"

    @classmethod
    def parse(cls, p: Parser) -> "Ep":
        return cls(decode(p, Fp, "x"), decode(p, Fp, "y"), decode(p, Fp, "z"))

    def encode(self, w: Writer) -> Writer:
        for coord in (self.x, self.y, self.z):
            coord.encode(w)
        return w


@dataclass(frozen=True)
class PallasBase:
    value: Fp

    TYPE_NAME = "PallasBase"

    @classmethod
    def parse(cls, p: Parser):
        return cls(decode(p, Fp))

    def to_bytes(self) -> bytes:
        return self.value.to_bytes()


class Nullifier(PallasBase):
    TYPE_NAME = "Nullifier"


class ExtractedNoteCommitment(PallasBase):
    TYPE_NAME = "ExtractedNoteCommitment"


class OrchardAnchor(PallasBase):
    TYPE_NAME = "OrchardAnchor"


@dataclass(frozen=True)
class ValueCommitment:
    point: Ep

    TYPE_NAME = "ValueCommitment"

    @classmethod
    def parse(cls, p: Parser) -> "ValueCommitment":
        return cls(decode(p, Ep))


class RedPallasVerificationKey(Blob32):
    pass


class RedPallasSignature(Blob64):
    pass


class OrchardSpendingKey(Blob32):
    pass


class OrchardFullViewingKey(Blob):
    SIZE = 96


class OrchardDiversifier(Blob11):
    pass


class OrchardFlags(IntFlag):
    SPENDS_ENABLED = 0b01
    OUTPUTS_ENABLED = 0b10


# ═══════════════════════════════════════════════════════════════════
#  Bundle
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class TransmittedNoteCiphertext:
    epk_bytes: Blob32
    enc_ciphertext: SaplingEncCiphertext
    out_ciphertext: SaplingOutCiphertext

    TYPE_NAME = "TransmittedNoteCiphertext"

    @classmethod
    def parse(cls, p: Parser) -> "TransmittedNoteCiphertext":
        return cls(
            decode(p, Blob32, "epk_bytes"),
            decode(p, SaplingEncCiphertext, "enc_ciphertext"),
            decode(p, SaplingOutCiphertext, "out_ciphertext"),
        )


@dataclass(frozen=True)
class OrchardAction:
    """
    An action without its authorization; the bundle attaches the signature.

    Every commitment, key and nullifier is 32 bytes on the wire, so one
    action is 820 bytes before its signature.
    """

    cv_net: U256
    nullifier: Nullifier
    rk: RedPallasVerificationKey
    cmx: ExtractedNoteCommitment
    encrypted_note: TransmittedNoteCiphertext
    spend_auth_sig: RedPallasSignature | None = None

    TYPE_NAME = "OrchardAction"

    @classmethod
    def parse(cls, p: Parser) -> "OrchardAction":
        return cls(
            cv_net=decode(p, U256, "cv_net"),
            nullifier=decode(p, Nullifier, "nullifier"),
            rk=decode(p, RedPallasVerificationKey, "rk"),
            cmx=decode(p, ExtractedNoteCommitment, "cmx"),
            encrypted_note=decode(p, TransmittedNoteCiphertext, "encrypted_note"),
        )


@dataclass(frozen=True)
class OrchardBundle:
    actions: tuple[OrchardAction, ...]
    flags: OrchardFlags
    value_balance: int
    anchor: OrchardAnchor
    proof: bytes
    binding_sig: RedPallasSignature

    TYPE_NAME = "OrchardBundle"

    @classmethod
    def parse(cls, p: Parser) -> "OrchardBundle | None":
        actions = decode_vec(p, OrchardAction, "actions")
        if not actions:
            return None
        with p.context("flags"):
            raw_flags = p.read_u8()
            if raw_flags & ~0b11:
                raise p.invalid(f"unknown orchard flag bits {raw_flags:#04x}")
        with p.context("value_balance"):
            value_balance = p.read_i64()
        anchor = decode(p, OrchardAnchor, "anchor")
        with p.context("proof"):
            proof = p.read_var_bytes()
        sigs = decode_array(p, RedPallasSignature, len(actions), "spend_auth_sigs")
        binding_sig = decode(p, RedPallasSignature, "binding_sig")
        authorized = tuple(
            OrchardAction(a.cv_net, a.nullifier, a.rk, a.cmx, a.encrypted_note, sig)
            for a, sig in zip(actions, sigs)
        )
        return cls(authorized, OrchardFlags(raw_flags), value_balance, anchor, proof, binding_sig)


# ═══════════════════════════════════════════════════════════════════
#  Addresses and wallet metadata
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class OrchardRawAddress:
    diversifier: OrchardDiversifier
    pk_d: U256

    TYPE_NAME = "OrchardRawAddress"

    @classmethod
    def parse(cls, p: Parser) -> "OrchardRawAddress":
        return cls(decode(p, OrchardDiversifier, "diversifier"), decode(p, U256, "pk_d"))

    def to_bytes(self) -> bytes:
        return self.diversifier.to_bytes() + self.pk_d.to_bytes()


class ActionData(Blob64):
    """Per-action wallet data (IVK and diversifier index) kept by the node."""


@dataclass(frozen=True)
class OrchardTxMeta(Versioned):
    """Which actions of a transaction belong to the wallet."""

    version: int
    action_data: dict[int, ActionData]
    actions_spending_my_notes: tuple[int, ...]

    TYPE_NAME = "OrchardTxMeta"
    MAX_VERSION = 0
    VERSION_WIDTH = "u32"

    @classmethod
    def parse(cls, p: Parser) -> "OrchardTxMeta":
        version = cls.read_version(p)
        action_data = decode_map(p, Parser.read_u32, ActionData, "action_data")
        spending = decode_vec(p, Parser.read_u32, "actions_spending_my_nodes")
        return cls(version, action_data, spending)
