"""
Bitcoin-family account bridge (bitcoin, bitcoin_testnet, litecoin).

Implements:
- Esplora REST client (mempool.space compatible) for tip, balance, UTXOs,
  address history and recommended fee rates
- Base58Check / bech32(m) recipient validation via bip_utils
- Greedy largest-first UTXO selection and vsize-based fee estimation
- Transaction builder, status validator and account sync
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, AsyncIterator, Callable, Protocol

import requests
from bip_utils import P2PKHAddrDecoder, P2SHAddrDecoder, SegwitBech32Decoder

from account_bridge import AccountBridge, fee_too_high
from account_id import decode_account_id
from account_sync import AccountShape, make_sync
from accounts import Account, BitcoinResources, Operation, Utxo
from bridge_config import DEFAULT_FEE_TIER, DEFAULT_REQUEST_TIMEOUT, FEE_TIERS, BridgeConfig
from bridge_errors import FeeNotLoaded, FeeRequired, FeeTooHigh, InvalidAddress, NetworkError, NotEnoughBalance
from currencies import CryptoCurrency
from transactions import (
    BitcoinFeeItem,
    BitcoinNetworkInfo,
    BitcoinTransaction,
    TransactionStatus,
    update_transaction,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

FAMILY = "bitcoin"

DUST_THRESHOLD = Decimal(546)
OUTPUT_VSIZE = 34
ESPLORA_PAGE_SIZE = 25  # confirmed txs per /txs/chain page
CHAIN_PAGE_CACHE_SIZE = 1024

# (input vsize, fixed overhead) per derivation mode
_VSIZE_BY_DERIVATION = {
    "": (148, 10),  # legacy P2PKH
    "segwit": (91, 11),  # P2SH-P2WPKH
    "native_segwit": (68, 11),  # P2WPKH
    "taproot": (58, 11),  # P2TR key path
}


# ---------------------------------------------------------------------------
# Chain client
# ---------------------------------------------------------------------------


class BitcoinChainClient(Protocol):
    """
    Chain data provider for bitcoin-family accounts.

    Transactions and UTXOs use the Esplora JSON shapes:
        utxo: {"txid", "vout", "value", "status": {"confirmed", "block_height"}}
        tx:   {"txid", "fee", "status": {...}, "vin": [{"prevout": {...}}], "vout": [...]}
    """

    def get_tip_height(self) -> int: ...

    def get_balance(self, address: str) -> Decimal: ...

    def get_utxos(self, address: str) -> list[dict]: ...

    def get_mempool_transactions(self, address: str) -> list[dict]: ...

    def get_chain_transactions(self, address: str, last_seen_txid: str | None = None) -> list[dict]: ...

    def get_recommended_fees(self) -> dict[str, Any]: ...

    def clear_cache(self) -> None: ...


class EsploraClient:
    """Esplora REST client. Every call is bounded by `timeout` seconds."""

    def __init__(self, base_url: str, timeout: float = DEFAULT_REQUEST_TIMEOUT) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        # Full confirmed pages older than a given txid do not change.
        self._chain_pages: OrderedDict[tuple[str, str], list[dict]] = OrderedDict()

    def _get(self, path: str) -> Any:
        url = f"{self.base_url}{path}"
        try:
            resp = requests.get(url, timeout=self.timeout)
            resp.raise_for_status()
            return resp.json()
        except requests.RequestException as exc:
            raise NetworkError(f"GET {url} failed: {exc}", url=url) from exc
        except ValueError as exc:
            raise NetworkError(f"GET {url} returned an invalid body", url=url) from exc

    def get_tip_height(self) -> int:
        return int(self._get("/blocks/tip/height"))

    def get_balance(self, address: str) -> Decimal:
        data = self._get(f"/address/{address}")
        total = 0
        for key in ("chain_stats", "mempool_stats"):
            stats = data.get(key) or {}
            total += int(stats.get("funded_txo_sum", 0)) - int(stats.get("spent_txo_sum", 0))
        return Decimal(total)

    def get_utxos(self, address: str) -> list[dict]:
        data = self._get(f"/address/{address}/utxo")
        return data if isinstance(data, list) else []

    def get_mempool_transactions(self, address: str) -> list[dict]:
        data = self._get(f"/address/{address}/txs/mempool")
        return data if isinstance(data, list) else []

    def get_chain_transactions(self, address: str, last_seen_txid: str | None = None) -> list[dict]:
        if last_seen_txid is None:
            data = self._get(f"/address/{address}/txs/chain")
            return data if isinstance(data, list) else []

        cache_key = (address, last_seen_txid)
        cached = self._chain_pages.get(cache_key)
        if cached is not None:
            return cached
        data = self._get(f"/address/{address}/txs/chain/{last_seen_txid}")
        page = data if isinstance(data, list) else []
        if len(page) == ESPLORA_PAGE_SIZE:
            self._chain_pages[cache_key] = page
            if len(self._chain_pages) > CHAIN_PAGE_CACHE_SIZE:
                # oldest first
                self._chain_pages.popitem(last=False)
        return page

    def get_recommended_fees(self) -> dict[str, Any]:
        data = self._get("/v1/fees/recommended")
        return data if isinstance(data, dict) else {}

    def clear_cache(self) -> None:
        self._chain_pages.clear()


# ---------------------------------------------------------------------------
# Address validation
# ---------------------------------------------------------------------------


def _is_valid_segwit_address(address: str, hrp: str) -> bool:
    if not address.lower().startswith(hrp + "1"):
        return False
    try:
        wit_ver, program = SegwitBech32Decoder.Decode(hrp, address)
    except Exception:  # noqa: BLE001
        return False
    if wit_ver == 0:
        return len(program) in (20, 32)
    return 1 <= wit_ver <= 16 and 2 <= len(program) <= 40


def is_valid_address(address: str, currency: CryptoCurrency) -> bool:
    """Checksum-validated P2PKH, P2SH or segwit address for `currency`."""
    params = currency.bitcoin_params
    if not address or params is None:
        return False
    if _is_valid_segwit_address(address, params.bech32_hrp):
        return True
    for decoder, net_ver in (
        (P2PKHAddrDecoder, params.p2pkh_version),
        (P2SHAddrDecoder, params.p2sh_version),
    ):
        try:
            decoder.DecodeAddr(address, net_ver=net_ver)
            return True
        except Exception:  # noqa: BLE001
            continue
    return False


# ---------------------------------------------------------------------------
# Fee estimation & UTXO selection
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CoinSelection:
    utxos: tuple[Utxo, ...]
    fee: Decimal
    amount: Decimal  # amount actually sent (resolved for send-max)
    change: Decimal
    sufficient: bool


def estimate_vsize(num_inputs: int, num_outputs: int, derivation_mode: str = "") -> int:
    input_vsize, overhead = _VSIZE_BY_DERIVATION.get(derivation_mode, _VSIZE_BY_DERIVATION[""])
    return overhead + num_inputs * input_vsize + num_outputs * OUTPUT_VSIZE


def select_utxos(
    utxos: tuple[Utxo, ...],
    amount: Decimal,
    fee_per_byte: Decimal,
    derivation_mode: str = "",
    use_all_amount: bool = False,
) -> CoinSelection:
    """
    Pick the fewest UTXOs (largest first) covering amount + fee.

    A change output is only added when the change is above the dust
    threshold; otherwise the remainder goes to the fee. When the UTXOs cannot
    cover the amount, all of them are returned with `sufficient=False`.
    """
    ordered = tuple(sorted(utxos, key=lambda u: (-u.value, u.txid, u.vout)))

    if use_all_amount:
        total = sum((u.value for u in ordered), Decimal(0))
        fee = estimate_vsize(max(len(ordered), 1), 1, derivation_mode) * fee_per_byte
        sent = max(total - fee, Decimal(0))
        return CoinSelection(ordered, fee, sent, Decimal(0), sent > 0)

    for n in range(1, len(ordered) + 1):
        selected = ordered[:n]
        total = sum((u.value for u in selected), Decimal(0))
        fee_with_change = estimate_vsize(n, 2, derivation_mode) * fee_per_byte
        change = total - amount - fee_with_change
        if change > DUST_THRESHOLD:
            return CoinSelection(selected, fee_with_change, amount, change, True)
        fee_without_change = estimate_vsize(n, 1, derivation_mode) * fee_per_byte
        if total >= amount + fee_without_change:
            return CoinSelection(selected, total - amount, amount, Decimal(0), True)

    fee = estimate_vsize(max(len(ordered), 1), 2, derivation_mode) * fee_per_byte
    return CoinSelection(ordered, fee, amount, Decimal(0), False)


def network_info_from_fees(fees: dict[str, Any], fee_tier: str = DEFAULT_FEE_TIER) -> BitcoinNetworkInfo:
    """Build fee tiers from a mempool.space /v1/fees/recommended payload."""
    items = []
    for tier in FEE_TIERS:
        if tier not in fees:
            continue
        try:
            rate = Decimal(str(fees[tier]))
        except ArithmeticError:
            continue
        if rate.is_finite() and rate > 0:
            items.append(BitcoinFeeItem(speed=tier, fee_per_byte=rate))
    if not items:
        raise NetworkError("Fee estimates are missing from the explorer response.")

    default = next((i.fee_per_byte for i in items if i.speed == fee_tier), items[len(items) // 2].fee_per_byte)
    return BitcoinNetworkInfo(fee_items=tuple(items), default_fee_per_byte=default)


# ---------------------------------------------------------------------------
# Builder & validator
# ---------------------------------------------------------------------------


def _account_utxos(account: Account) -> tuple[Utxo, ...]:
    if account.bitcoin_resources is None:
        return ()
    return account.bitcoin_resources.utxos


def create_transaction(account: Account) -> BitcoinTransaction:
    return BitcoinTransaction()


async def get_transaction_status(account: Account, transaction: BitcoinTransaction) -> TransactionStatus:
    recipient_error = None
    if not is_valid_address(transaction.recipient, account.currency):
        recipient_error = InvalidAddress()

    utxos = _account_utxos(account)
    spendable = sum((u.value for u in utxos), Decimal(0))
    fee_per_byte = transaction.fee_per_byte

    transaction_error = None
    estimated_fees = Decimal(0)
    amount = transaction.amount
    if fee_per_byte is None:
        transaction_error = FeeNotLoaded()
    else:
        if fee_per_byte <= 0:
            transaction_error = FeeRequired()
        selection = select_utxos(
            utxos,
            transaction.amount,
            fee_per_byte,
            account.derivation_mode,
            transaction.use_all_amount,
        )
        estimated_fees = selection.fee
        amount = selection.amount
        if transaction_error is None and (
            not selection.sufficient or amount + estimated_fees > spendable
        ):
            transaction_error = NotEnoughBalance()

    warnings = {}
    if fee_too_high(amount, estimated_fees):
        warnings["fee_too_high"] = FeeTooHigh()

    return TransactionStatus(
        recipient_error=recipient_error,
        transaction_error=transaction_error,
        warnings=warnings,
        estimated_fees=estimated_fees,
        amount=amount,
        total_spent=amount + estimated_fees,
    )


# ---------------------------------------------------------------------------
# Sync
# ---------------------------------------------------------------------------


def _utxo_from_raw(raw: dict) -> Utxo:
    status = raw.get("status") or {}
    height = status.get("block_height") if status.get("confirmed") else None
    return Utxo(
        txid=str(raw.get("txid", "")),
        vout=int(raw.get("vout", 0)),
        value=Decimal(int(raw.get("value", 0))),
        block_height=height,
    )


def operation_from_tx(account_id: str, address: str, tx: dict) -> Operation | None:
    """Net effect of an Esplora transaction on `address`, or None if unrelated."""
    inputs = [i.get("prevout") or {} for i in tx.get("vin", [])]
    outputs = tx.get("vout", [])

    sent = sum(int(p.get("value", 0)) for p in inputs if p.get("scriptpubkey_address") == address)
    received = sum(int(o.get("value", 0)) for o in outputs if o.get("scriptpubkey_address") == address)
    if sent == 0 and received == 0:
        return None

    txid = str(tx.get("txid", ""))
    fee = Decimal(int(tx.get("fee", 0)))
    status = tx.get("status") or {}
    confirmed = bool(status.get("confirmed"))
    block_time = status.get("block_time")

    if sent > 0:
        op_type = "OUT"
        value = max(Decimal(sent - received) - fee, Decimal(0))
    else:
        op_type = "IN"
        value = Decimal(received)

    senders = tuple(dict.fromkeys(p["scriptpubkey_address"] for p in inputs if p.get("scriptpubkey_address")))
    recipients = tuple(dict.fromkeys(o["scriptpubkey_address"] for o in outputs if o.get("scriptpubkey_address")))

    return Operation(
        id=f"{account_id}-{txid}-{op_type}",
        hash=txid,
        type=op_type,
        value=value,
        fee=fee,
        block_height=status.get("block_height") if confirmed else None,
        date=datetime.fromtimestamp(block_time, tz=timezone.utc) if confirmed and block_time else None,
        senders=senders,
        recipients=recipients,
    )


def _read_operation(account_id: str, address: str, tx: dict) -> Operation | None:
    try:
        return operation_from_tx(account_id, address, tx)
    except (KeyError, TypeError, ValueError, ArithmeticError) as exc:
        raise NetworkError(f"Esplora returned an unreadable transaction: {exc!r}") from exc


def _tx_height(tx: dict) -> int:
    status = tx.get("status") or {}
    return int(status.get("block_height") or 0) if status.get("confirmed") else 0


def make_account_shape_producer(client_for: Callable[[CryptoCurrency], BitcoinChainClient]):
    async def get_account_shape(account: Account, cursor: int, should_clear_cache: bool) -> AsyncIterator[AccountShape]:
        client = client_for(account.currency)
        if should_clear_cache:
            client.clear_cache()
        address = decode_account_id(account.id).xpub_or_address

        tip = await asyncio.to_thread(client.get_tip_height)
        balance = await asyncio.to_thread(client.get_balance, address)
        raw_utxos = await asyncio.to_thread(client.get_utxos, address)
        mempool = await asyncio.to_thread(client.get_mempool_transactions, address)

        utxos = tuple(
            sorted(
                (_utxo_from_raw(u) for u in raw_utxos),
                key=lambda u: (u.block_height is None, u.block_height or 0, u.txid, u.vout),
            )
        )
        resources = {"bitcoin_resources": BitcoinResources(utxos=utxos)}
        spendable = sum((u.value for u in utxos), Decimal(0))
        sync_date = datetime.now(timezone.utc)
        operations = [op for tx in mempool if (op := _read_operation(account.id, address, tx))]

        last_seen: str | None = None
        page_count = 0
        while True:
            page = await asyncio.to_thread(client.get_chain_transactions, address, last_seen)
            page_count += 1
            reached_cursor = False
            for tx in page:
                if _tx_height(tx) <= cursor:
                    reached_cursor = True
                    break
                if op := _read_operation(account.id, address, tx):
                    operations.append(op)

            logger.debug(f"{account.id}: history page {page_count}, {len(operations)} operation(s)")
            yield AccountShape(
                balance=max(balance, Decimal(0)),
                spendable_balance=spendable,
                block_height=tip,
                operations=tuple(operations),
                sync_date=sync_date,
                fresh_address=address,
                resources=resources,
            )
            if reached_cursor or len(page) < ESPLORA_PAGE_SIZE:
                break
            last_seen = str(page[-1].get("txid", ""))

    return get_account_shape


# ---------------------------------------------------------------------------
# Bridge
# ---------------------------------------------------------------------------


def make_bridge(
    client_for: Callable[[CryptoCurrency], BitcoinChainClient],
    bridge_type: str = "js",
    version: str = "1",
    fee_tier: str = DEFAULT_FEE_TIER,
) -> AccountBridge:
    """Bitcoin-family bridge backed by the chain clients `client_for` returns."""

    async def prepare_transaction(account: Account, transaction: BitcoinTransaction) -> BitcoinTransaction:
        network_info = transaction.network_info
        if network_info is None:
            client = client_for(account.currency)
            try:
                fees = await asyncio.to_thread(client.get_recommended_fees)
                network_info = network_info_from_fees(fees, fee_tier)
            except NetworkError as exc:
                logger.warning(f"Fee estimation failed for {account.id}: {exc}")
                return transaction

        fee_per_byte = transaction.fee_per_byte
        if fee_per_byte is None:
            fee_per_byte = network_info.default_fee_per_byte

        selection = select_utxos(
            _account_utxos(account),
            transaction.amount,
            fee_per_byte,
            account.derivation_mode,
            transaction.use_all_amount,
        )
        return update_transaction(
            transaction,
            network_info=network_info,
            fee_per_byte=fee_per_byte,
            selected_utxos=tuple(u.outpoint for u in selection.utxos),
        )

    return AccountBridge(
        family=FAMILY,
        type=bridge_type,
        version=version,
        create_transaction=create_transaction,
        prepare_transaction=prepare_transaction,
        get_transaction_status=get_transaction_status,
        start_sync=make_sync(make_account_shape_producer(client_for)),
    )


def make_js_bridge(cfg: BridgeConfig) -> AccountBridge:
    """Bridge talking to the configured Esplora endpoints."""
    clients: dict[str, EsploraClient] = {}

    def client_for(currency: CryptoCurrency) -> EsploraClient:
        if currency.id not in clients:
            clients[currency.id] = EsploraClient(cfg.esplora_url(currency.id), cfg.request_timeout)
        return clients[currency.id]

    return make_bridge(client_for, bridge_type="js", version="1", fee_tier=cfg.fee_tier)
