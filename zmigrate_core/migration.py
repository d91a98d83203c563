"""
Migration engine: decoded node wallet → canonical ``WalletDB``.

The migration is a chain of pure sub-routines, one per concern.  Each
takes the legacy snapshot and the accumulated ``MigrationState`` and
returns a new state; nothing is mutated, so running a step twice on the
same inputs yields equal results.

    migrate_seed → migrate_transactions → migrate_accounts
        → migrate_addresses → migrate_keys → migrate_tx_addresses
        → migrate_unmapped

Address placement
-----------------
Accounts come from the unified-account metadata (``Account #N``).  An
address lands in the account whose ZIP-32 index appears in its key
metadata's HD path; addresses without one go to the default account.
Transactions are linked to the accounts owning any address they touch.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Iterable

from zmigrate_core import model
from zmigrate_core.blob import U256, Blob32, TxId
from zmigrate_core.config import MigrationConfig
from zmigrate_core.errors import DecodeError, MigrationGap
from zmigrate_core.merkle_tree import Witness
from zmigrate_core.model import ARID, DERIVED, Address, Protocol, SpendingKey, SpendingKeyKind
from zmigrate_core.primitives import Network
from zmigrate_core.sapling import SaplingIncomingViewingKey, SaplingOutPoint
from zmigrate_core.sprout import JSOutPoint
from zmigrate_core.transaction import WalletTx
from zmigrate_core.transparent import KeyId, script_address, script_sig_pubkey
from zmigrate_core.crypto_utils import hash160
from zmigrate_core.zcashd_records import KeyMetadata
from zmigrate_core.zcashd_wallet import ZcashdWallet

logger = logging.getLogger("zmigrate_migration")

UNIFIED_PREFIXES = ("u1", "utest1", "uregtest1")
SPROUT_PREFIXES = ("zc", "zt")


# ═══════════════════════════════════════════════════════════════════
#  Accumulated state
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class MigrationState:
    """
    Everything built so far.  ``registry`` maps an address identity to
    the ARID of the account holding it; ``zip32_accounts`` and
    ``key_accounts`` map ZIP-32 indices and unified key ids to accounts.
    """

    network: Network
    config: MigrationConfig
    wallet_arid: ARID
    seed_material: model.SeedMaterial | None = None
    accounts: dict[ARID, model.Account] = field(default_factory=dict)
    zip32_accounts: dict[int, ARID] = field(default_factory=dict)
    key_accounts: dict[U256, ARID] = field(default_factory=dict)
    default_account: ARID | None = None
    registry: dict[str, ARID] = field(default_factory=dict)
    transactions: dict[TxId, model.Transaction] = field(default_factory=dict)
    attachments: dict[str, bytes] = field(default_factory=dict)

    @classmethod
    def initial(
        cls, wallet: ZcashdWallet, config: MigrationConfig | None = None
    ) -> "MigrationState":
        config = config or MigrationConfig()
        network = wallet.network(config.default_network())
        return cls(network, config, ARID.derive("wallet", _wallet_identifier(wallet)))

    # ── accounts ───────────────────────────────────────────────────

    def account_arid(self, identifier: str) -> ARID:
        return ARID.derive("account", self.wallet_arid.to_bytes() + identifier.encode())

    def with_account(self, account: model.Account) -> "MigrationState":
        return replace(self, accounts={**self.accounts, account.arid: account})

    def with_default_account(self) -> tuple["MigrationState", ARID]:
        if self.default_account is not None:
            return self, self.default_account
        arid = self.account_arid("default")
        account = model.Account(arid, self.config.default_account_name)
        state = replace(self.with_account(account), default_account=arid)
        return state, arid

    def place(self, metadata: KeyMetadata | None) -> tuple["MigrationState", ARID]:
        """Account for a key with *metadata*, falling back to the default account."""
        index = metadata.account_index() if metadata else None
        if index is not None and index in self.zip32_accounts:
            return self, self.zip32_accounts[index]
        return self.with_default_account()

    # ── addresses ──────────────────────────────────────────────────

    def add_address(self, arid: ARID, address: Address) -> "MigrationState":
        identity = address.identity()
        account = self.accounts[arid]
        addresses = {**account.addresses, identity: address}
        state = self.with_account(replace(account, addresses=addresses))
        return replace(state, registry={**self.registry, identity: arid})

    def find_address(self, identity: str) -> Address | None:
        arid = self.registry.get(identity)
        if arid is None:
            return None
        return self.accounts[arid].addresses[identity]

    def link_transaction(self, txid: TxId, arids: Iterable[ARID]) -> "MigrationState":
        accounts = dict(self.accounts)
        for arid in arids:
            account = accounts[arid]
            accounts[arid] = replace(
                account, relevant_transactions=account.relevant_transactions | {txid}
            )
        return replace(self, accounts=accounts)

    def attach(self, key: str, data: bytes) -> "MigrationState":
        if not self.config.attach_unmapped:
            return self
        return replace(self, attachments={**self.attachments, key: data})

    # ── result ─────────────────────────────────────────────────────

    def finish(self) -> model.WalletDB:
        wallet = model.Wallet(
            self.wallet_arid, self.network, dict(self.accounts), self.seed_material
        )
        return model.WalletDB(
            {wallet.arid: wallet}, dict(self.transactions), dict(self.attachments)
        )


def _wallet_identifier(wallet: ZcashdWallet) -> bytes:
    if wallet.hd_chain is not None:
        return wallet.hd_chain.seed_fp.to_bytes()
    if wallet.default_key is not None:
        return wallet.default_key.data
    return b"zcashd"


def _sapling_identity(ivk: SaplingIncomingViewingKey) -> str:
    """Registry key of a Sapling address known only by its viewing key."""
    return f"{Protocol.SAPLING.value}:{ivk.hex()}"


def _classify(address: str, network: Network) -> Protocol:
    if address.startswith(UNIFIED_PREFIXES):
        return Protocol.UNIFIED
    if address.startswith(network.sapling_hrp + "1"):
        return Protocol.SAPLING
    if address.startswith(SPROUT_PREFIXES):
        return Protocol.SPROUT
    return Protocol.TRANSPARENT


# ═══════════════════════════════════════════════════════════════════
#  Seed
# ═══════════════════════════════════════════════════════════════════

def migrate_seed(wallet: ZcashdWallet, state: MigrationState) -> MigrationState:
    """At most one seed: the mnemonic phrase, else the pre-BIP39 HD seed."""
    if wallet.bip39_mnemonic is not None:
        mnemonic = wallet.bip39_mnemonic
        seed = model.Bip39Mnemonic(mnemonic.mnemonic, mnemonic.language.name.lower())
        for fp, raw in sorted(wallet.hd_seeds.items()):
            state = state.attach(f"hdseed-{fp.hex()}", raw)
        return replace(state, seed_material=seed)

    if not wallet.hd_seeds:
        return replace(state, seed_material=None)

    (fp, raw), *others = sorted(wallet.hd_seeds.items())
    if len(raw) != Blob32.SIZE:
        raise MigrationGap(f"hdseed {fp.hex()}", f"seed must be 32 bytes, got {len(raw)}")
    for extra_fp, extra in others:
        logger.warning(f"Wallet holds more than one HD seed; keeping {extra_fp.hex()} as an attachment")
        state = state.attach(f"hdseed-{extra_fp.hex()}", extra)
    return replace(state, seed_material=model.PreBip39Seed(Blob32(raw)))


# ═══════════════════════════════════════════════════════════════════
#  Transactions
# ═══════════════════════════════════════════════════════════════════

def convert_transaction(
    txid: TxId, wtx: WalletTx, config: MigrationConfig
) -> model.Transaction:
    """Carry one wallet transaction's bytes and structure into the canonical form."""
    tx = wtx.transaction
    sapling = tx.sapling_bundle

    spends = tuple(
        model.SaplingSpendDescription(
            i, s.cv, s.anchor, s.nullifier, s.rk, s.zkproof.to_bytes()
        )
        for i, s in enumerate(sapling.spends)
    )
    outputs = tuple(
        model.SaplingOutputDescription(
            output_index=i,
            cv=o.cv,
            commitment=o.cmu,
            ephemeral_key=o.ephemeral_key,
            enc_ciphertext=o.enc_ciphertext.to_bytes(),
            out_ciphertext=o.out_ciphertext.to_bytes(),
            zkproof=o.zkproof.to_bytes(),
        )
        for i, o in enumerate(sapling.outputs)
    )

    actions: tuple[model.OrchardActionDescription, ...] = ()
    if tx.orchard_bundle is not None:
        meta = wtx.orchard_tx_meta
        spending = set(meta.actions_spending_my_notes) if meta else set()
        action_data = meta.action_data if meta else {}
        actions = tuple(
            model.OrchardActionDescription(
                action_index=i,
                nullifier=a.nullifier.to_bytes(),
                commitment=a.cmx.to_bytes(),
                rk=a.rk.to_bytes(),
                ephemeral_key=a.encrypted_note.epk_bytes.to_bytes(),
                enc_ciphertext=a.encrypted_note.enc_ciphertext.to_bytes(),
                out_ciphertext=a.encrypted_note.out_ciphertext.to_bytes(),
                spends_my_note=i in spending,
                action_data=action_data[i].to_bytes() if i in action_data else None,
            )
            for i, a in enumerate(tx.orchard_bundle.actions)
        )

    joinsplits: tuple[model.JoinSplitDescription, ...] = ()
    if tx.join_splits is not None:
        joinsplits = tuple(
            model.JoinSplitDescription(
                js.vpub_old, js.vpub_new, js.anchor,
                js.nullifiers, js.commitments, js.zkproof.to_bytes(),
            )
            for js in tx.join_splits.descriptions
        )

    attachments: dict[str, bytes] = {}
    if config.attach_unmapped:
        for key, value in sorted(wtx.map_value.items()):
            attachments[f"mapValue.{key}"] = value.encode("utf-8")
        for i, (key, value) in enumerate(wtx.order_form):
            attachments[f"vOrderForm.{i}.{key}"] = value.encode("utf-8")

    return model.Transaction(
        txid=txid,
        raw=tx.raw,
        version=tx.version.number,
        consensus_branch_id=tx.consensus_branch_id,
        lock_time=tx.lock_time,
        expiry_height=tx.expiry_height,
        block_hash=None if wtx.hash_block.is_zero() else wtx.hash_block,
        inputs=tuple(
            model.TxIn(i.prevout.txid, i.prevout.vout, i.script_sig, i.sequence)
            for i in tx.vin
        ),
        outputs=tuple(model.TxOut(o.value, o.script_pubkey) for o in tx.vout),
        sapling_value_balance=sapling.value_balance if sapling.has_actions() else None,
        sapling_spends=spends,
        sapling_outputs=outputs,
        orchard_actions=actions,
        sprout_joinsplits=joinsplits,
        from_me=wtx.from_me,
        time_received=wtx.time_received or None,
        attachments=attachments,
    )


def migrate_transactions(wallet: ZcashdWallet, state: MigrationState) -> MigrationState:
    transactions = {}
    for txid, wtx in sorted(wallet.transactions.items()):
        try:
            transactions[txid] = convert_transaction(txid, wtx, state.config)
        except (DecodeError, ValueError) as exc:
            raise MigrationGap(f"transaction {txid}", str(exc)) from exc
        logger.debug(f"Converted transaction {txid}")
    return replace(state, transactions=transactions)


# ═══════════════════════════════════════════════════════════════════
#  Accounts
# ═══════════════════════════════════════════════════════════════════

def migrate_accounts(wallet: ZcashdWallet, state: MigrationState) -> MigrationState:
    unified = wallet.unified_accounts
    metas = sorted(unified.account_metadata.values(), key=lambda m: m.account_id)
    if not metas:
        state, _ = state.with_default_account()
        return state

    zip32: dict[int, ARID] = {}
    by_key: dict[U256, ARID] = {}
    for meta in metas:
        arid = state.account_arid(meta.key_id.hex())
        attachments = {}
        ufvk = unified.full_viewing_keys.get(meta.key_id)
        if ufvk is not None:
            attachments["unifiedfvk"] = ufvk.encode("utf-8")
        account = model.Account(
            arid,
            f"Account #{meta.account_id}",
            zip32_account_id=meta.account_id,
            attachments=attachments,
        )
        state = state.with_account(account)
        zip32[meta.account_id] = arid
        by_key[meta.key_id] = arid
        logger.debug(f"Account #{meta.account_id} ← unified key {meta.key_id.hex()[:16]}")

    for key_id, ufvk in sorted(unified.full_viewing_keys.items()):
        if key_id not in by_key:
            state = state.attach(f"unifiedfvk-{key_id.hex()}", ufvk.encode("utf-8"))
    return replace(state, zip32_accounts=zip32, key_accounts=by_key)


# ═══════════════════════════════════════════════════════════════════
#  Addresses
# ═══════════════════════════════════════════════════════════════════

def _transparent_metadata(wallet: ZcashdWallet, network: Network) -> dict[str, KeyMetadata | None]:
    return {
        key.pubkey.to_address(network): key.metadata for key in wallet.keys.values()
    }


def migrate_addresses(wallet: ZcashdWallet, state: MigrationState) -> MigrationState:
    network = state.network
    names, purposes = wallet.address_names, wallet.address_purposes

    # Sapling addresses, with their viewing keys.
    sapling_strings = set()
    for zaddr, ivk in sorted(wallet.sapling_z_addresses.items(), key=lambda kv: kv[0].to_bytes()):
        text = zaddr.to_string(network)
        sapling_strings.add(text)
        key = wallet.sapling_keys.get(ivk)
        state, arid = state.place(key.metadata if key else None)
        shielded = model.ShieldedAddress(Protocol.SAPLING, text, ivk.to_bytes())
        address = Address(shielded, names.get(text, ""), purposes.get(text))
        state = state.add_address(arid, address)

    # Sprout addresses; the spending key is attached by migrate_keys.
    sprout_strings = set()
    for addr in sorted(wallet.sprout_keys, key=lambda a: a.a_pk.to_bytes()):
        text = addr.to_string(network)
        sprout_strings.add(text)
        state, arid = state.place(wallet.sprout_keys[addr].metadata)
        shielded = model.ShieldedAddress(Protocol.SPROUT, text)
        state = state.add_address(arid, Address(shielded, names.get(text, ""), purposes.get(text)))

    # Every other named address: transparent, or a shielded string we hold no key for.
    key_meta = _transparent_metadata(wallet, network)
    for text in sorted(set(names) | set(purposes)):
        if text in sapling_strings or text in sprout_strings:
            continue
        protocol = _classify(text, network)
        if protocol is Protocol.TRANSPARENT:
            protocol_address: model.ProtocolAddress = model.TransparentAddress(text)
        else:
            protocol_address = model.ShieldedAddress(protocol, text)
        state, arid = state.place(key_meta.get(text))
        state = state.add_address(arid, Address(protocol_address, names.get(text, ""), purposes.get(text)))
        logger.debug(f"{protocol.value} address {text} → {state.accounts[arid].name}")

    # Unified addresses: one entry per diversifier, derivable from the account.
    for meta in wallet.unified_accounts.address_metadata:
        arid = state.key_accounts.get(meta.key_id)
        if arid is None:
            logger.warning(
                f"Unified address metadata references unknown key {meta.key_id.hex()}; "
                f"placing it in the default account"
            )
            state, arid = state.with_default_account()
        shielded = model.ShieldedAddress(
            Protocol.UNIFIED,
            diversifier_index=meta.diversifier_index_value(),
            receiver_types=tuple(rt.name.lower() for rt in meta.receiver_types),
        )
        state = state.add_address(arid, Address(shielded, spend_authority=DERIVED))
    return state


# ═══════════════════════════════════════════════════════════════════
#  Keys
# ═══════════════════════════════════════════════════════════════════

def _with_key(
    state: MigrationState,
    identity: str,
    new_address: Address,
    authority: model.SpendAuthority,
    metadata: KeyMetadata | None,
) -> MigrationState:
    """Attach *authority* to the registered address, or register *new_address*."""
    path = metadata.hd_keypath if metadata else None
    existing = state.find_address(identity)
    if existing is not None:
        updated = replace(existing, spend_authority=authority, derivation_path=path)
        return state.add_address(state.registry[identity], updated)
    state, arid = state.place(metadata)
    return state.add_address(
        arid, replace(new_address, spend_authority=authority, derivation_path=path)
    )


def migrate_keys(wallet: ZcashdWallet, state: MigrationState) -> MigrationState:
    network = state.network

    for key in sorted(wallet.keys.values(), key=lambda k: k.pubkey.data):
        text = key.pubkey.to_address(network)
        authority = SpendingKey(SpendingKeyKind.TRANSPARENT, key.privkey.data)
        state = _with_key(
            state, text, Address(model.TransparentAddress(text)), authority, key.metadata
        )

    by_ivk: dict[SaplingIncomingViewingKey, list[str]] = {}
    for zaddr, ivk in wallet.sapling_z_addresses.items():
        by_ivk.setdefault(ivk, []).append(zaddr.to_string(network))
    for ivk, key in sorted(wallet.sapling_keys.items()):
        authority = SpendingKey(SpendingKeyKind.SAPLING_EXTENDED, key.key.to_bytes())
        identities = sorted(by_ivk.get(ivk, [])) or [_sapling_identity(ivk)]
        bare = Address(model.ShieldedAddress(Protocol.SAPLING, None, ivk.to_bytes()))
        for identity in identities:
            state = _with_key(state, identity, bare, authority, key.metadata)

    for addr, key in sorted(wallet.sprout_keys.items(), key=lambda kv: kv[0].a_pk.to_bytes()):
        text = addr.to_string(network)
        authority = SpendingKey(SpendingKeyKind.SPROUT, key.spending_key.to_bytes())
        bare = Address(model.ShieldedAddress(Protocol.SPROUT, text))
        state = _with_key(state, text, bare, authority, key.metadata)
    return state


# ═══════════════════════════════════════════════════════════════════
#  Transaction ↔ address linkage
# ═══════════════════════════════════════════════════════════════════

def extract_transaction_addresses(
    wallet: ZcashdWallet, txid: TxId, wtx: WalletTx, network: Network
) -> set[str]:
    """Identities of the wallet addresses a transaction touches."""
    found: set[str] = set()

    for mapping in wallet.send_recipients.get(txid, ()):
        found.add(mapping.unified_address)
        if (text := mapping.recipient_address.to_string(network)) is not None:
            found.add(text)

    for out in wtx.transaction.vout:
        if (text := script_address(out.script_pubkey, network)) is not None:
            found.add(text)

    for txin in wtx.transaction.vin:
        if (pubkey := script_sig_pubkey(txin.script_sig)) is not None:
            found.add(KeyId(hash160(pubkey)).to_address(network))

    if wtx.sapling_note_data:
        ivks = {nd.incoming_viewing_key for nd in wtx.sapling_note_data.values()}
        for zaddr, ivk in wallet.sapling_z_addresses.items():
            if ivk in ivks:
                found.add(zaddr.to_string(network))
        found.update(_sapling_identity(ivk) for ivk in ivks)

    for note in wtx.sprout_note_data.values():
        found.add(note.address.to_string(network))

    return found


def _note_witness(entity: str, witnesses: tuple[Witness, ...]) -> model.NoteWitness | None:
    # The node keeps the most recent witness first.
    if not witnesses:
        return None
    latest = witnesses[0]
    try:
        return model.NoteWitness(latest.position(), latest.root(), latest)
    except ValueError as exc:
        raise MigrationGap(entity, str(exc)) from exc


def _link_outputs(
    wallet: ZcashdWallet, txid: TxId, wtx: WalletTx, state: MigrationState
) -> model.Transaction:
    network = state.network
    tx = state.transactions[txid]
    with_witnesses = state.config.attach_witnesses

    outputs = []
    for out in tx.outputs:
        text = script_address(out.script_pubkey, network)
        outputs.append(replace(out, address=text if text in state.registry else None))

    ivk_strings: dict[SaplingIncomingViewingKey, str] = {}
    for zaddr, ivk in sorted(wallet.sapling_z_addresses.items(), key=lambda kv: kv[0].to_bytes()):
        ivk_strings.setdefault(ivk, zaddr.to_string(network))

    sapling_outputs = []
    for out in tx.sapling_outputs:
        note = (wtx.sapling_note_data or {}).get(SaplingOutPoint(txid, out.output_index))
        if note is None:
            sapling_outputs.append(out)
            continue
        ivk = note.incoming_viewing_key
        witness = None
        if with_witnesses:
            witness = _note_witness(f"sapling note {txid}:{out.output_index}", note.witnesses)
        sapling_outputs.append(replace(
            out,
            address=ivk_strings.get(ivk, _sapling_identity(ivk)),
            note_witness=witness,
        ))

    joinsplits = []
    for js_index, js in enumerate(tx.sprout_joinsplits):
        addresses = list(js.output_addresses)
        witnesses = list(js.note_witnesses)
        for n in range(len(addresses)):
            note = wtx.sprout_note_data.get(JSOutPoint(txid, js_index, n))
            if note is None:
                continue
            addresses[n] = note.address.to_string(network)
            if with_witnesses:
                witnesses[n] = _note_witness(f"sprout note {txid}:{js_index}:{n}", note.witnesses)
        joinsplits.append(replace(
            js, output_addresses=tuple(addresses), note_witnesses=tuple(witnesses)
        ))

    return replace(
        tx,
        outputs=tuple(outputs),
        sapling_outputs=tuple(sapling_outputs),
        sprout_joinsplits=tuple(joinsplits),
    )


def migrate_tx_addresses(wallet: ZcashdWallet, state: MigrationState) -> MigrationState:
    all_accounts = sorted(state.accounts)
    transactions = dict(state.transactions)
    unlinked = 0

    for txid, wtx in sorted(wallet.transactions.items()):
        try:
            identities = extract_transaction_addresses(wallet, txid, wtx, state.network)
        except (DecodeError, MigrationGap) as exc:
            logger.warning(f"Error analyzing transaction {txid}: {exc}; assigning to every account")
            arids = set(all_accounts)
        else:
            arids = {state.registry[i] for i in identities if i in state.registry}
            if not arids and wtx.from_me:
                arids = set(state.registry.values())
            if not arids:
                unlinked += 1
                logger.warning(f"Transaction {txid} matched no wallet address; assigning to every account")
                arids = set(all_accounts)
        state = state.link_transaction(txid, sorted(arids))
        transactions[txid] = _link_outputs(wallet, txid, wtx, state)

    if unlinked:
        logger.info(f"{unlinked} of {len(transactions)} transactions could not be linked to an address")
    return replace(state, transactions=transactions)


# ═══════════════════════════════════════════════════════════════════
#  Unmapped records
# ═══════════════════════════════════════════════════════════════════

def migrate_unmapped(wallet: ZcashdWallet, state: MigrationState) -> MigrationState:
    """Keep records with no canonical counterpart as attachments keyed by record name."""
    for key, value in sorted({**wallet.unmapped, **wallet.unparsed}.items()):
        state = state.attach(str(key), value)
    return state


# ═══════════════════════════════════════════════════════════════════
#  Entry point
# ═══════════════════════════════════════════════════════════════════

STEPS = (
    migrate_seed,
    migrate_transactions,
    migrate_accounts,
    migrate_addresses,
    migrate_keys,
    migrate_tx_addresses,
    migrate_unmapped,
)


def migrate_zcashd(
    wallet: ZcashdWallet, config: MigrationConfig | None = None
) -> model.WalletDB:
    """Migrate a decoded node wallet into a new ``WalletDB``."""
    state = MigrationState.initial(wallet, config)
    for step in STEPS:
        state = step(wallet, state)
    db = state.finish()
    summary = db.summary()
    logger.info(
        f"Migrated zcashd wallet ({state.network.value}): "
        f"{summary['accounts']} accounts, {summary['addresses']} addresses, "
        f"{summary['transactions']} transactions, {summary['attachments']} attachments"
    )
    return db
