"""
Migration of the light-client formats (zingo, ZWL) into a ``WalletDB``.

Both formats hold key material rather than address lists, and deriving
addresses from keys is out of scope, so most addresses produced here
have no string form.  Each carries its spend authority, or its viewing
key as an attachment.  Everything lands in a single default account.

ZWL files list the wallet's transactions but not their raw bytes; their
ids become the account's relevant transactions and no canonical
``Transaction`` is built for them.
"""

from __future__ import annotations

import logging
from typing import Iterable

from zmigrate_core import model
from zmigrate_core.blob import Blob32, TxId
from zmigrate_core.config import MigrationConfig
from zmigrate_core.crypto_utils import sha256
from zmigrate_core.model import DERIVED, ARID, Address, Protocol, SpendingKey, SpendingKeyKind
from zmigrate_core.zingo import (
    Capability,
    CapabilityKind,
    LegacyExtendedPrivKey,
    UnifiedKeystore,
    UnifiedSpendingKey,
    Version1Keystore,
    Version2Keystore,
    ZingoWallet,
)
from zmigrate_core.zwl import (
    WalletOKey,
    WalletOKeyType,
    WalletTKey,
    WalletTKeyType,
    WalletZKey,
    WalletZKeyType,
    ZwlWallet,
)

logger = logging.getLogger("zmigrate_light")

ZWL_TKEY_PATH = "m/44'/133'/0'/0/{}"
ZWL_SHIELDED_PATH = "m/32'/133'/{}'"


def _build(
    label: bytes,
    key_material: Iterable[bytes],
    addresses: list[Address],
    config: MigrationConfig,
    seed: model.SeedMaterial | None = None,
    attachments: dict[str, bytes] | None = None,
    relevant: frozenset[TxId] = frozenset(),
) -> model.WalletDB:
    wallet_arid = ARID.derive("wallet", label + sha256(b"".join(key_material)))
    account_arid = ARID.derive("account", wallet_arid.to_bytes() + b"default")
    account = model.Account(
        account_arid,
        config.default_account_name,
        addresses={a.identity(): a for a in addresses},
        relevant_transactions=relevant,
    )
    wallet = model.Wallet(
        wallet_arid, config.default_network(), {account_arid: account}, seed
    )
    kept = dict(attachments or {}) if config.attach_unmapped else {}
    db = model.WalletDB({wallet_arid: wallet}, {}, kept)
    summary = db.summary()
    logger.info(
        f"Migrated {label.decode()} wallet: {summary['addresses']} addresses, "
        f"{len(relevant)} transaction ids, {summary['attachments']} attachments"
    )
    return db


# ═══════════════════════════════════════════════════════════════════
#  zingo
# ═══════════════════════════════════════════════════════════════════

def _orchard_spend(sk) -> Address:
    return Address(
        model.ShieldedAddress(Protocol.ORCHARD),
        spend_authority=SpendingKey(SpendingKeyKind.ORCHARD, sk.to_bytes()),
    )


def _sapling_spend(extsk) -> Address:
    return Address(
        model.ShieldedAddress(Protocol.SAPLING),
        spend_authority=SpendingKey(SpendingKeyKind.SAPLING_EXTENDED, extsk.to_bytes()),
    )


def _legacy_transparent_spend(key: LegacyExtendedPrivKey) -> Address:
    return Address(
        model.TransparentAddress(),
        spend_authority=SpendingKey(SpendingKeyKind.TRANSPARENT, key.private_key.to_bytes()),
        attachments={"chain_code": key.chain_code},
    )


def _capability_address(
    capability: Capability, protocol: Protocol, spend
) -> Address | None:
    if capability.kind is CapabilityKind.SPEND:
        return spend(capability.key)
    if capability.kind is CapabilityKind.VIEW:
        if protocol is Protocol.TRANSPARENT:
            protocol_address: model.ProtocolAddress = model.TransparentAddress()
        else:
            protocol_address = model.ShieldedAddress(protocol)
        return Address(protocol_address, attachments={"viewing_key": capability.key.to_bytes()})
    return None


def _unified_addresses(keystore: UnifiedKeystore) -> list[Address]:
    if keystore.kind is CapabilityKind.SPEND:
        usk: UnifiedSpendingKey = keystore.spending_key  # type: ignore[assignment]
        return [
            _orchard_spend(usk.orchard),
            _sapling_spend(usk.sapling),
            Address(
                model.TransparentAddress(),
                spend_authority=SpendingKey(SpendingKeyKind.RAW, usk.transparent.to_bytes()),
            ),
        ]
    if keystore.kind is CapabilityKind.VIEW:
        return [Address(
            model.ShieldedAddress(Protocol.UNIFIED),
            attachments={"unified_full_viewing_key": keystore.viewing_key.encode("utf-8")},
        )]
    return []


def keystore_addresses(keystore) -> list[Address]:
    """Addresses (without strings) for the key material of one keystore."""
    if isinstance(keystore, Version1Keystore):
        return [
            _orchard_spend(keystore.orchard),
            _sapling_spend(keystore.sapling),
            _legacy_transparent_spend(keystore.transparent),
        ]
    if isinstance(keystore, Version2Keystore):
        found = [
            _capability_address(keystore.orchard, Protocol.ORCHARD, _orchard_spend),
            _capability_address(keystore.sapling, Protocol.SAPLING, _sapling_spend),
            _capability_address(
                keystore.transparent, Protocol.TRANSPARENT, _legacy_transparent_spend
            ),
        ]
        return [a for a in found if a is not None]
    return _unified_addresses(keystore)


def migrate_zingo(wallet: ZingoWallet, config: MigrationConfig | None = None) -> model.WalletDB:
    config = config or MigrationConfig()
    capability = wallet.capability
    addresses = keystore_addresses(capability.keystore)
    for index, selection in enumerate(capability.receiver_selections):
        addresses.append(Address(
            model.ShieldedAddress(
                Protocol.UNIFIED,
                diversifier_index=index,
                receiver_types=selection.receiver_types(),
            ),
            spend_authority=DERIVED,
        ))
    material = [
        a.spend_authority.data if isinstance(a.spend_authority, SpendingKey) else a.identity().encode()
        for a in addresses
    ]
    attachments = {}
    if wallet.trailing:
        attachments["zingo.trailing"] = wallet.trailing
    if capability.rejection_address_count:
        attachments["zingo.rejection_address_count"] = (
            capability.rejection_address_count.to_bytes(4, "little")
        )
    return _build(b"zingo", material, addresses, config, attachments=attachments)


# ═══════════════════════════════════════════════════════════════════
#  ZWL
# ═══════════════════════════════════════════════════════════════════

def _encryption_attachments(key: WalletTKey | WalletZKey | WalletOKey) -> dict[str, bytes]:
    attachments = {}
    if key.enc_key is not None:
        attachments["enc_key"] = key.enc_key
    if key.nonce is not None:
        attachments["nonce"] = key.nonce
    return attachments


def _authority(key, secret, kind: SpendingKeyKind, hd: bool) -> model.SpendAuthority | None:
    if secret is not None:
        return SpendingKey(kind, secret.to_bytes())
    if hd and key.locked:
        return DERIVED
    return None


def _zwl_tkey(tkey: WalletTKey) -> Address:
    hd = tkey.keytype is WalletTKeyType.HD_KEY
    return Address(
        model.TransparentAddress(tkey.address),
        spend_authority=_authority(tkey, tkey.key, SpendingKeyKind.TRANSPARENT, hd),
        derivation_path=ZWL_TKEY_PATH.format(tkey.hdkey_num) if tkey.hdkey_num is not None else None,
        attachments=_encryption_attachments(tkey),
    )


def _zwl_zkey(zkey: WalletZKey) -> Address:
    hd = zkey.keytype is WalletZKeyType.HD_KEY
    return Address(
        model.ShieldedAddress(Protocol.SAPLING),
        spend_authority=_authority(zkey, zkey.extsk, SpendingKeyKind.SAPLING_EXTENDED, hd),
        derivation_path=ZWL_SHIELDED_PATH.format(zkey.hdkey_num) if zkey.hdkey_num is not None else None,
        attachments={"extended_full_viewing_key": zkey.extfvk.to_bytes(), **_encryption_attachments(zkey)},
    )


def _zwl_okey(okey: WalletOKey) -> Address:
    hd = okey.keytype is WalletOKeyType.HD_KEY
    return Address(
        model.ShieldedAddress(Protocol.ORCHARD),
        spend_authority=_authority(okey, okey.sk, SpendingKeyKind.ORCHARD, hd),
        derivation_path=ZWL_SHIELDED_PATH.format(okey.hdkey_num) if okey.hdkey_num is not None else None,
        attachments={"full_viewing_key": okey.fvk.to_bytes(), **_encryption_attachments(okey)},
    )


def migrate_zwl(wallet: ZwlWallet, config: MigrationConfig | None = None) -> model.WalletDB:
    config = config or MigrationConfig()
    keys = wallet.keys

    seed: model.SeedMaterial | None = None
    attachments: dict[str, bytes] = {}
    if keys.encrypted:
        attachments["zwl.enc_seed"] = keys.enc_seed.to_bytes()
        attachments["zwl.nonce"] = keys.nonce
    elif not keys.seed.is_zero():
        seed = model.PreBip39Seed(Blob32(keys.seed.to_bytes()))
    else:
        logger.warning("Unencrypted ZWL wallet has an all-zero seed; no seed migrated")

    addresses = [_zwl_tkey(k) for k in keys.tkeys]
    addresses += [_zwl_zkey(k) for k in keys.zkeys]
    addresses += [_zwl_okey(k) for k in keys.okeys]
    if wallet.trailing:
        attachments["zwl.trailing"] = wallet.trailing

    relevant: frozenset[TxId] = frozenset()
    if wallet.transactions is not None:
        relevant = frozenset(wallet.transactions.current)

    identifier = keys.enc_seed.to_bytes() if keys.encrypted else keys.seed.to_bytes()
    return _build(b"zwl", [identifier], addresses, config, seed, attachments, relevant)
