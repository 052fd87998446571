"""Fake chain clients and account builders shared by the bridge tests."""

import sys
from decimal import Decimal
from pathlib import Path

import requests

REPO_ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(REPO_ROOT))

from account_id import AccountIdentity, encode_account_id  # noqa: E402
from accounts import Account, BitcoinResources, Utxo  # noqa: E402
from bridge_errors import NetworkError  # noqa: E402

BTC_ADDRESS = "bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4"
BTC_RECIPIENT = "1A1zP1eP5QGefi2DMPTfTL5SLmv7DivfNa"
ETH_ADDRESS = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
ETH_RECIPIENT = "0xfB6916095ca1df60bB79Ce92cE3Ea74c37c5d359"
XRP_ADDRESS = "rHb9CJAWyB4rj91VRWn96DkukG4bwdtyTh"
XRP_RECIPIENT = "rrrrrrrrrrrrrrrrrrrrBZbvji"

FAKE_FEES = {"fastestFee": 30, "halfHourFee": 20, "hourFee": 10, "economyFee": 5, "minimumFee": 1}

FAKE_UTXOS = (
    Utxo(txid="aa" * 32, vout=0, value=Decimal(60_000), block_height=100),
    Utxo(txid="bb" * 32, vout=1, value=Decimal(30_000), block_height=101),
    Utxo(txid="cc" * 32, vout=0, value=Decimal(10_000), block_height=102),
)


def account_id(currency_id, address, bridge_type="js", version="1", derivation_mode=""):
    return encode_account_id(AccountIdentity(bridge_type, version, currency_id, address, derivation_mode))


def make_account(currency_id, address, bridge_type="js", version="1", derivation_mode="", **fields):
    fields.setdefault("balance", Decimal(0))
    return Account(
        id=account_id(currency_id, address, bridge_type, version, derivation_mode),
        currency_id=currency_id,
        fresh_address=address,
        **fields,
    )


def btc_account(bridge_type="js", utxos=FAKE_UTXOS, **fields):
    total = sum((u.value for u in utxos), Decimal(0))
    fields.setdefault("balance", total)
    fields.setdefault("spendable_balance", total)
    return make_account(
        "bitcoin",
        BTC_ADDRESS,
        bridge_type=bridge_type,
        derivation_mode="native_segwit",
        bitcoin_resources=BitcoinResources(utxos=tuple(utxos)),
        **fields,
    )


def fixed_client(client):
    return lambda currency: client


class FakeEsploraClient:
    """Serves a fixed chain state in Esplora shapes."""

    def __init__(self, tip=800_000, balance=0, utxos=(), mempool=(), chain_pages=(), fees=None, fail_on=()):
        self.tip = tip
        self.balance = balance
        self.utxos = list(utxos)
        self.mempool = list(mempool)
        self.chain_pages = [list(p) for p in chain_pages]
        self.fees = FAKE_FEES if fees is None else fees
        self.fail_on = set(fail_on)
        self.calls = []
        self.cache_clears = 0

    def _call(self, name):
        self.calls.append(name)
        if name in self.fail_on:
            raise NetworkError(f"{name} unavailable")

    def get_tip_height(self):
        self._call("get_tip_height")
        return self.tip

    def get_balance(self, address):
        self._call("get_balance")
        return Decimal(self.balance)

    def get_utxos(self, address):
        self._call("get_utxos")
        return list(self.utxos)

    def get_mempool_transactions(self, address):
        self._call("get_mempool_transactions")
        return list(self.mempool)

    def get_chain_transactions(self, address, last_seen_txid=None):
        self._call("get_chain_transactions")
        if last_seen_txid is None:
            return self.chain_pages[0] if self.chain_pages else []
        for i, page in enumerate(self.chain_pages):
            if page and page[-1]["txid"] == last_seen_txid:
                if i + 1 < len(self.chain_pages):
                    return self.chain_pages[i + 1]
        return []

    def get_recommended_fees(self):
        self._call("get_recommended_fees")
        return dict(self.fees)

    def clear_cache(self):
        self.cache_clears += 1


class FakeEthereumClient:
    def __init__(self, block_number=19_000_000, balance=0, nonce=0, gas_price=20_000_000_000, gas=21000, rows=(), fail_on=()):
        self.block_number = block_number
        self.balance = balance
        self.nonce = nonce
        self.gas_price = gas_price
        self.gas = gas
        self.rows = list(rows)
        self.fail_on = set(fail_on)
        self.calls = []

    def _call(self, name):
        self.calls.append(name)
        if name in self.fail_on:
            raise NetworkError(f"{name} unavailable")

    def get_block_number(self):
        self._call("get_block_number")
        return self.block_number

    def get_balance(self, address):
        self._call("get_balance")
        return Decimal(self.balance)

    def get_nonce(self, address):
        self._call("get_nonce")
        return self.nonce

    def get_gas_price(self):
        self._call("get_gas_price")
        return Decimal(self.gas_price)

    def estimate_gas(self, sender, recipient):
        self._call("estimate_gas")
        return Decimal(self.gas)

    def get_transactions(self, address, start_block, page):
        self._call("get_transactions")
        rows = [r for r in self.rows if int(r["blockNumber"]) >= start_block]
        return rows[(page - 1) * 100 : page * 100]

    def clear_cache(self):
        pass


class FakeRippleClient:
    def __init__(
        self,
        ledger_index=90_000_000,
        account_data=None,
        base_fee_xrp="0.00001",
        load_factor=1,
        open_ledger_fee="15",
        reserve_base_xrp=1,
        reserve_inc_xrp=0.2,
        pages=({"transactions": []},),
        fail_on=(),
    ):
        self.ledger_index = ledger_index
        self.account_data = account_data
        self.base_fee_xrp = base_fee_xrp
        self.load_factor = load_factor
        self.open_ledger_fee = open_ledger_fee
        self.reserve_base_xrp = reserve_base_xrp
        self.reserve_inc_xrp = reserve_inc_xrp
        self.pages = list(pages)
        self.fail_on = set(fail_on)
        self.calls = []
        self.ledger_index_mins = []

    def _call(self, name):
        self.calls.append(name)
        if name in self.fail_on:
            raise NetworkError(f"{name} unavailable")

    def account_info(self, address):
        self._call("account_info")
        if self.account_data is None:
            return None
        return {"account_data": dict(self.account_data)}

    def server_info(self):
        self._call("server_info")
        return {
            "info": {
                "load_factor": self.load_factor,
                "validated_ledger": {
                    "seq": self.ledger_index,
                    "base_fee_xrp": self.base_fee_xrp,
                    "reserve_base_xrp": self.reserve_base_xrp,
                    "reserve_inc_xrp": self.reserve_inc_xrp,
                },
            }
        }

    def fee(self):
        self._call("fee")
        return {"drops": {"open_ledger_fee": self.open_ledger_fee}}

    def account_tx(self, address, ledger_index_min, marker=None):
        self._call("account_tx")
        self.ledger_index_mins.append(ledger_index_min)
        return self.pages[int(marker or 0)]

    def clear_cache(self):
        pass


class DummyResponse:
    def __init__(self, payload, status_code=200):
        self._payload = payload
        self.status_code = status_code

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")
