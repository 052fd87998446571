"""
Deterministic, network-free chain clients backing the `mock` bridges.

Each client derives an account's history from a random.Random seeded with
the currency id and the address, so the same address always has the same
history. Histories span a fixed window of heights; only entries at or below
the client's tip are visible, which lets callers simulate new blocks by
raising the tip.

The clients answer with the same raw shapes as the real ones (Esplora,
Etherscan and rippled JSON), so the mock bridges run the production parsing,
selection and validation code.
"""

from __future__ import annotations

import random
from decimal import Decimal
from functools import lru_cache
from typing import Any

import btc_bridge
import eth_bridge
import xrp_bridge
from account_bridge import AccountBridge
from currencies import CryptoCurrency

MOCK_BRIDGE_TYPE = "mock"

DEFAULT_MOCK_TIP = 1_000
HISTORY_START = 1  # first height of every mock history
HISTORY_TXS = 40
MOCK_GENESIS_TIME = 1_600_000_000

MOCK_BTC_FEES = {"fastestFee": 20, "halfHourFee": 15, "hourFee": 10, "economyFee": 5, "minimumFee": 1}
MOCK_BTC_COUNTERPARTIES = ("bc1qar0srrr7xfkvy5l643lydnw9re59gtzzwf5mdq", "bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4")

MOCK_GAS_PRICE = Decimal(20_000_000_000)  # 20 gwei
MOCK_GAS_LIMIT = 21000
MOCK_ETH_COUNTERPARTIES = ("0xfB6916095ca1df60bB79Ce92cE3Ea74c37c5d359", "0x52908400098527886E0F7030069857D2E4169EE7")

MOCK_XRP_BASE_FEE = "0.00001"  # 10 drops
MOCK_XRP_OPEN_LEDGER_FEE = "12"
MOCK_XRP_TX_FEE = 12
MOCK_XRP_COUNTERPARTIES = ("rPT1Sjq2YGrBMTttX4GZHjKu9dyfzbpAYe", "rHb9CJAWyB4rj91VRWn96DkukG4bwdtyTh")
MOCK_XRP_PAGE_SIZE = 20


def _rng(currency: CryptoCurrency, address: str) -> random.Random:
    return random.Random(f"{currency.id}:{address}")


def _heights(rng: random.Random, count: int) -> list[int]:
    return sorted(HISTORY_START + rng.randrange(DEFAULT_MOCK_TIP) for _ in range(count))


def _tx_hash(rng: random.Random) -> str:
    return f"{rng.getrandbits(256):064x}"


def _counterparty(address: str, candidates: tuple[str, ...]) -> str:
    """First candidate that is not `address`, so no mock payment is a self-payment."""
    return next(c for c in candidates if c.lower() != address.lower())


class _MockClient:
    def __init__(self, currency: CryptoCurrency, tip: int = DEFAULT_MOCK_TIP) -> None:
        self.currency = currency
        self.tip = tip

    def clear_cache(self) -> None:
        pass


# ---------------------------------------------------------------------------
# Bitcoin
# ---------------------------------------------------------------------------


class MockBitcoinClient(_MockClient):
    """Incoming-only history: every transaction leaves one UTXO."""

    def _history(self, address: str) -> list[dict]:
        txs = _bitcoin_history(self.currency, address)
        return [tx for tx in txs if tx["status"]["block_height"] <= self.tip]

    def get_tip_height(self) -> int:
        return self.tip

    def get_balance(self, address: str) -> Decimal:
        return Decimal(sum(tx["vout"][0]["value"] for tx in self._history(address)))

    def get_utxos(self, address: str) -> list[dict]:
        return [
            {
                "txid": tx["txid"],
                "vout": 0,
                "value": tx["vout"][0]["value"],
                "status": {"confirmed": True, "block_height": tx["status"]["block_height"]},
            }
            for tx in self._history(address)
        ]

    def get_mempool_transactions(self, address: str) -> list[dict]:
        return []

    def get_chain_transactions(self, address: str, last_seen_txid: str | None = None) -> list[dict]:
        txs = self._history(address)
        start = 0
        if last_seen_txid is not None:
            txids = [tx["txid"] for tx in txs]
            start = txids.index(last_seen_txid) + 1 if last_seen_txid in txids else len(txs)
        return txs[start : start + btc_bridge.ESPLORA_PAGE_SIZE]

    def get_recommended_fees(self) -> dict[str, Any]:
        return dict(MOCK_BTC_FEES)


@lru_cache(maxsize=256)
def _bitcoin_history(currency: CryptoCurrency, address: str) -> tuple[dict, ...]:
    rng = _rng(currency, address)
    sender = _counterparty(address, MOCK_BTC_COUNTERPARTIES)
    txs = []
    for height in _heights(rng, HISTORY_TXS):
        value = rng.randint(10_000, 2_000_000)
        fee = rng.randint(200, 5_000)
        txs.append(
            {
                "txid": _tx_hash(rng),
                "fee": fee,
                "status": {
                    "confirmed": True,
                    "block_height": height,
                    "block_time": MOCK_GENESIS_TIME + height * 600,
                },
                "vin": [{"prevout": {"scriptpubkey_address": sender, "value": value + fee}}],
                "vout": [{"scriptpubkey_address": address, "value": value}],
            }
        )
    # Esplora lists newest first
    txs.reverse()
    return tuple(txs)


# ---------------------------------------------------------------------------
# Ethereum
# ---------------------------------------------------------------------------


class MockEthereumClient(_MockClient):
    def _history(self, address: str) -> list[dict]:
        return [tx for tx in _ethereum_history(self.currency, address) if int(tx["blockNumber"]) <= self.tip]

    def get_block_number(self) -> int:
        return self.tip

    def get_balance(self, address: str) -> Decimal:
        balance = 0
        own = address.lower()
        for tx in self._history(address):
            if tx["to"].lower() == own:
                balance += int(tx["value"])
            if tx["from"].lower() == own:
                balance -= int(tx["value"]) + int(tx["gasUsed"]) * int(tx["gasPrice"])
        return Decimal(balance)

    def get_nonce(self, address: str) -> int:
        own = address.lower()
        return sum(1 for tx in self._history(address) if tx["from"].lower() == own)

    def get_gas_price(self) -> Decimal:
        return MOCK_GAS_PRICE

    def estimate_gas(self, sender: str, recipient: str) -> Decimal:
        return Decimal(MOCK_GAS_LIMIT)

    def get_transactions(self, address: str, start_block: int, page: int) -> list[dict]:
        rows = [tx for tx in self._history(address) if int(tx["blockNumber"]) >= start_block]
        size = eth_bridge.ETHERSCAN_PAGE_SIZE
        return rows[(page - 1) * size : page * size]


@lru_cache(maxsize=256)
def _ethereum_history(currency: CryptoCurrency, address: str) -> tuple[dict, ...]:
    rng = _rng(currency, address)
    counterparty = _counterparty(address, MOCK_ETH_COUNTERPARTIES)
    fee = MOCK_GAS_LIMIT * int(MOCK_GAS_PRICE)
    balance = 0
    txs = []
    for height in _heights(rng, HISTORY_TXS):
        # outgoing payments spend at most half the balance
        outgoing = balance > 4 * 10**15 and rng.random() < 0.4
        if outgoing:
            value = rng.randrange(10**15, balance // 2)
            balance -= value + fee
            sender, recipient = address, counterparty
        else:
            value = rng.randint(1, 50) * 10**16
            balance += value
            sender, recipient = counterparty, address
        txs.append(
            {
                "hash": "0x" + _tx_hash(rng),
                "blockNumber": str(height),
                "timeStamp": str(MOCK_GENESIS_TIME + height * 12),
                "from": sender,
                "to": recipient,
                "value": str(value),
                "gasUsed": str(MOCK_GAS_LIMIT),
                "gasPrice": str(MOCK_GAS_PRICE),
                "isError": "0",
            }
        )
    return tuple(txs)


# ---------------------------------------------------------------------------
# Ripple
# ---------------------------------------------------------------------------


class MockRippleClient(_MockClient):
    def _history(self, address: str) -> list[dict]:
        return [e for e in _ripple_history(self.currency, address) if e["tx"]["ledger_index"] <= self.tip]

    def account_info(self, address: str) -> dict | None:
        history = self._history(address)
        if not history:
            return None
        balance = 0
        sequence = 1
        for entry in history:
            tx = entry["tx"]
            if tx["Destination"] == address:
                balance += int(tx["Amount"])
            if tx["Account"] == address:
                balance -= int(tx["Amount"]) + int(tx["Fee"])
                sequence += 1
        return {"account_data": {"Account": address, "Balance": str(balance), "Sequence": sequence, "OwnerCount": 0}}

    def server_info(self) -> dict:
        return {
            "info": {
                "load_factor": 1,
                "validated_ledger": {
                    "seq": self.tip,
                    "base_fee_xrp": MOCK_XRP_BASE_FEE,
                    "reserve_base_xrp": 1,
                    "reserve_inc_xrp": 0.2,
                },
            }
        }

    def fee(self) -> dict:
        return {"drops": {"base_fee": "10", "open_ledger_fee": MOCK_XRP_OPEN_LEDGER_FEE}}

    def account_tx(self, address: str, ledger_index_min: int, marker: Any = None) -> dict:
        entries = [
            e for e in reversed(self._history(address)) if ledger_index_min < 0 or e["tx"]["ledger_index"] >= ledger_index_min
        ]
        start = int(marker or 0)
        end = start + MOCK_XRP_PAGE_SIZE
        result: dict[str, Any] = {"transactions": entries[start:end]}
        if end < len(entries):
            result["marker"] = end
        return result


@lru_cache(maxsize=256)
def _ripple_history(currency: CryptoCurrency, address: str) -> tuple[dict, ...]:
    rng = _rng(currency, address)
    counterparty = _counterparty(address, MOCK_XRP_COUNTERPARTIES)
    reserve = 1_000_000
    balance = 0
    entries = []
    for height in _heights(rng, HISTORY_TXS):
        spendable = balance - reserve - MOCK_XRP_TX_FEE
        outgoing = spendable > 2_000_000 and rng.random() < 0.4
        if outgoing:
            value = rng.randint(1_000_000, spendable // 2)
            balance -= value + MOCK_XRP_TX_FEE
            sender, destination = address, counterparty
        else:
            value = rng.randint(10, 500) * 1_000_000
            balance += value
            sender, destination = counterparty, address
        entries.append(
            {
                "tx": {
                    "TransactionType": "Payment",
                    "Account": sender,
                    "Destination": destination,
                    "Amount": str(value),
                    "Fee": str(MOCK_XRP_TX_FEE),
                    "hash": _tx_hash(rng).upper(),
                    "ledger_index": height,
                    "date": MOCK_GENESIS_TIME - xrp_bridge.RIPPLE_EPOCH + height * 4,
                },
                "meta": {"TransactionResult": "tesSUCCESS", "delivered_amount": str(value)},
                "validated": True,
            }
        )
    return tuple(entries)


# ---------------------------------------------------------------------------
# Bridges
# ---------------------------------------------------------------------------


def _client_factory(client_cls, tip: int):
    clients: dict[str, _MockClient] = {}

    def client_for(currency: CryptoCurrency):
        if currency.id not in clients:
            clients[currency.id] = client_cls(currency, tip)
        return clients[currency.id]

    return client_for


def make_mock_bridges(tip: int = DEFAULT_MOCK_TIP) -> list[AccountBridge]:
    """The `mock` bridge of every family, backed by the clients above."""
    return [
        btc_bridge.make_bridge(_client_factory(MockBitcoinClient, tip), bridge_type=MOCK_BRIDGE_TYPE),
        eth_bridge.make_bridge(_client_factory(MockEthereumClient, tip), bridge_type=MOCK_BRIDGE_TYPE),
        xrp_bridge.make_bridge(_client_factory(MockRippleClient, tip), bridge_type=MOCK_BRIDGE_TYPE),
    ]
