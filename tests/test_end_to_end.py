"""
End-to-end: TOML configuration → wallet bytes → canonical WalletDB.

Covers:
  - load_config feeding migrate_wallet_bytes for a node wallet
  - Node wallet with a transaction, a key, names and unknown records
  - A light-client wallet under the same configuration
  - Version limits from the [limits] table
"""

import os
import tempfile
import textwrap

import pytest

from conftest import zwl_okey, zwl_tkey, zwl_wallet, zwl_zkey

from zmigrate_core.config import load_config
from zmigrate_core.errors import UnsupportedVersion
from zmigrate_core.formats import WalletFormat, migrate_wallet_bytes
from zmigrate_core.model import Protocol


@pytest.fixture
def config_path():
    with tempfile.NamedTemporaryFile(mode="w", suffix=".toml", delete=False) as f:
        f.write(textwrap.dedent("""\
            [migration]
            default-account-name = "Imported"
            attach_unmapped = true

            [logging]
            level = "WARNING"

            [limits]
            Keys = 21
        """))
    yield f.name
    os.unlink(f.name)


class TestNodeWallet:

    def test_full_run(self, config_path, small_wallet_bytes, txid, transparent_address):
        config = load_config(config_path)
        db = migrate_wallet_bytes(small_wallet_bytes, WalletFormat.from_name("zcashd"), config)

        (wallet,) = db.wallets.values()
        (account,) = wallet.accounts.values()
        assert account.name == "Imported"
        address = account.addresses[transparent_address]
        assert (address.name, address.protocol) == ("Savings", Protocol.TRANSPARENT)
        assert account.relevant_transactions == frozenset({txid})
        assert set(db.attachments) == {"orderposnext", "futurekeyname-01"}
        assert db.summary()["transactions"] == 1

    def test_same_bytes_same_result(self, config_path, small_wallet_bytes):
        config = load_config(config_path)
        first = migrate_wallet_bytes(small_wallet_bytes, WalletFormat.ZCASHD, config)
        second = migrate_wallet_bytes(small_wallet_bytes, WalletFormat.ZCASHD, config)
        assert first == second


class TestLightWallet:

    def test_limits_from_file(self, config_path):
        data = zwl_wallet(okeys=[zwl_okey()], zkeys=[zwl_zkey()], tkeys=[zwl_tkey()])
        with pytest.raises(UnsupportedVersion) as exc:
            migrate_wallet_bytes(data, WalletFormat.ZWL, load_config(config_path))
        assert (exc.value.found, exc.value.maximum) == (22, 21)

    def test_within_limits(self, config_path):
        data = zwl_wallet(zkeys=[zwl_zkey()], tkeys=[zwl_tkey()], version=21)
        db = migrate_wallet_bytes(data, WalletFormat.ZWL, load_config(config_path))
        (wallet,) = db.wallets.values()
        (account,) = wallet.accounts.values()
        assert account.name == "Imported"
        assert {a.protocol for a in account.addresses.values()} == {
            Protocol.SAPLING, Protocol.TRANSPARENT,
        }
        assert db.attachments == {}
