"""
Ripple account bridge.

Talks to a rippled JSON-RPC server. Amounts are in drops (1 XRP = 1,000,000
drops). Part of the balance is locked by the ledger reserve
(base reserve + owner count * owner reserve) and cannot be spent.

Two bridge versions exist: version 1 takes the transaction fee from
server_info (base fee scaled by the load factor), version 2 from the `fee`
method's open-ledger fee.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from decimal import ROUND_CEILING, Decimal
from typing import Any, AsyncIterator, Callable, Protocol

import requests
from bip_utils import XrpAddrDecoder

from account_bridge import AccountBridge, fee_too_high
from account_id import decode_account_id
from account_sync import AccountShape, make_sync
from accounts import Account, Operation, RippleResources
from bridge_config import DEFAULT_REQUEST_TIMEOUT, BridgeConfig
from bridge_errors import (
    FeeNotLoaded,
    FeeRequired,
    FeeTooHigh,
    InvalidAddress,
    InvalidAddressBecauseDestinationIsAlsoSource,
    NetworkError,
    NotEnoughBalance,
)
from currencies import CryptoCurrency
from transactions import RippleNetworkInfo, RippleTransaction, TransactionStatus, update_transaction

logger = logging.getLogger(__name__)

FAMILY = "ripple"

DROPS_PER_XRP = Decimal(1_000_000)
DEFAULT_RESERVE = Decimal(1_000_000)  # used before the first sync
RIPPLE_EPOCH = 946684800  # 2000-01-01T00:00:00Z
ACCOUNT_TX_LIMIT = 200

FEE_SOURCE_SERVER_INFO = "server_info"
FEE_SOURCE_OPEN_LEDGER = "open_ledger"


def xrp_to_drops(value: Any) -> Decimal:
    return (Decimal(str(value)) * DROPS_PER_XRP).to_integral_value(rounding=ROUND_CEILING)


# ---------------------------------------------------------------------------
# Chain client
# ---------------------------------------------------------------------------


class RippleChainClient(Protocol):
    """
    Chain data provider for ripple accounts. Methods return the `result`
    objects of the rippled JSON-RPC methods of the same name.
    """

    def account_info(self, address: str) -> dict | None: ...

    def server_info(self) -> dict: ...

    def fee(self) -> dict: ...

    def account_tx(self, address: str, ledger_index_min: int, marker: Any = None) -> dict: ...

    def clear_cache(self) -> None: ...


class RippleRpcClient:
    def __init__(self, rpc_url: str, timeout: float = DEFAULT_REQUEST_TIMEOUT) -> None:
        self.rpc_url = rpc_url
        self.timeout = timeout

    def _rpc(self, method: str, params: dict[str, Any] | None = None) -> dict:
        payload = {"method": method, "params": [params or {}]}
        try:
            resp = requests.post(self.rpc_url, json=payload, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except requests.RequestException as exc:
            raise NetworkError(f"{method} failed: {exc}", method=method) from exc
        except ValueError as exc:
            raise NetworkError(f"{method} returned an invalid body", method=method) from exc

        result = data.get("result") if isinstance(data, dict) else None
        if not isinstance(result, dict):
            raise NetworkError(f"{method} returned an invalid body", method=method)
        return result

    @staticmethod
    def _raise_for_error(method: str, result: dict) -> None:
        if result.get("status") == "error":
            message = result.get("error_message") or result.get("error")
            raise NetworkError(f"{method} failed: {message}", method=method)

    def account_info(self, address: str) -> dict | None:
        result = self._rpc("account_info", {"account": address, "ledger_index": "validated"})
        if result.get("error") == "actNotFound":
            return None
        self._raise_for_error("account_info", result)
        return result

    def server_info(self) -> dict:
        result = self._rpc("server_info")
        self._raise_for_error("server_info", result)
        return result

    def fee(self) -> dict:
        result = self._rpc("fee")
        self._raise_for_error("fee", result)
        return result

    def account_tx(self, address: str, ledger_index_min: int, marker: Any = None) -> dict:
        params: dict[str, Any] = {
            "account": address,
            "ledger_index_min": ledger_index_min,
            "ledger_index_max": -1,
            "limit": ACCOUNT_TX_LIMIT,
            "forward": False,
        }
        if marker is not None:
            params["marker"] = marker
        result = self._rpc("account_tx", params)
        if result.get("error") == "actNotFound":
            return {"transactions": []}
        self._raise_for_error("account_tx", result)
        return result

    def clear_cache(self) -> None:
        pass


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------


def network_info_from_server_info(result: dict) -> RippleNetworkInfo:
    info = result.get("info") or {}
    ledger = info.get("validated_ledger") or {}
    try:
        base_fee = xrp_to_drops(ledger["base_fee_xrp"])
        load_factor = Decimal(str(info.get("load_factor", 1)))
        return RippleNetworkInfo(
            server_fee=(base_fee * max(load_factor, Decimal(1))).to_integral_value(rounding=ROUND_CEILING),
            base_reserve=xrp_to_drops(ledger["reserve_base_xrp"]),
            owner_reserve=xrp_to_drops(ledger["reserve_inc_xrp"]),
        )
    except (KeyError, ArithmeticError) as exc:
        raise NetworkError("server_info has no validated ledger") from exc


def validated_ledger_index(result: dict) -> int:
    ledger = (result.get("info") or {}).get("validated_ledger") or {}
    if "seq" not in ledger:
        raise NetworkError("server_info has no validated ledger")
    return int(ledger["seq"])


def open_ledger_fee(result: dict) -> Decimal:
    drops = result.get("drops") or {}
    if "open_ledger_fee" not in drops:
        raise NetworkError("fee has no open ledger fee")
    return Decimal(str(drops["open_ledger_fee"]))


def operation_from_tx(account_id: str, address: str, entry: dict) -> Operation | None:
    """XRP Payment from an account_tx entry, or None for anything else."""
    tx = entry.get("tx") or entry.get("tx_json") or {}
    meta = entry.get("meta") or {}
    if tx.get("TransactionType") != "Payment" or not isinstance(tx.get("Amount"), str):
        return None

    sender = tx.get("Account", "")
    destination = tx.get("Destination", "")
    if sender == address:
        op_type = "OUT"
    elif destination == address:
        op_type = "IN"
    else:
        return None

    tx_hash = tx.get("hash") or entry.get("hash", "")
    failed = meta.get("TransactionResult", "tesSUCCESS") != "tesSUCCESS"
    # "unavailable" on payments older than 2014
    delivered = meta.get("delivered_amount")
    if not (isinstance(delivered, str) and delivered.isascii() and delivered.isdigit()):
        delivered = tx["Amount"]
    value = Decimal(delivered)
    ledger_index = tx.get("ledger_index") or entry.get("ledger_index")
    ripple_date = tx.get("date")

    return Operation(
        id=f"{account_id}-{tx_hash}-{op_type}",
        hash=tx_hash,
        type=op_type,
        value=Decimal(0) if failed else value,
        fee=Decimal(tx.get("Fee", "0")),
        block_height=int(ledger_index) if ledger_index is not None else None,
        date=(
            datetime.fromtimestamp(RIPPLE_EPOCH + int(ripple_date), tz=timezone.utc)
            if ripple_date is not None
            else None
        ),
        senders=(sender,),
        recipients=(destination,),
        has_failed=failed,
    )


def _read_operation(account_id: str, address: str, entry: dict) -> Operation | None:
    try:
        return operation_from_tx(account_id, address, entry)
    except (KeyError, TypeError, ValueError, ArithmeticError) as exc:
        raise NetworkError(f"account_tx returned an unreadable entry: {exc!r}") from exc


# ---------------------------------------------------------------------------
# Builder & validator
# ---------------------------------------------------------------------------


def is_valid_address(address: str) -> bool:
    if not address:
        return False
    try:
        XrpAddrDecoder.DecodeAddr(address)
    except Exception:  # noqa: BLE001
        return False
    return True


def _own_address(account: Account) -> str:
    return decode_account_id(account.id).xpub_or_address


def spendable_balance(account: Account) -> Decimal:
    reserve = DEFAULT_RESERVE
    if account.ripple_resources is not None:
        reserve = account.ripple_resources.reserve
    return max(account.balance - reserve, Decimal(0))


def create_transaction(account: Account) -> RippleTransaction:
    return RippleTransaction()


async def get_transaction_status(account: Account, transaction: RippleTransaction) -> TransactionStatus:
    recipient_error = None
    if not is_valid_address(transaction.recipient):
        recipient_error = InvalidAddress()
    elif transaction.recipient == _own_address(account):
        recipient_error = InvalidAddressBecauseDestinationIsAlsoSource()

    transaction_error = None
    estimated_fees = transaction.fee if transaction.fee is not None else Decimal(0)
    if transaction.fee is None:
        transaction_error = FeeNotLoaded()
    elif transaction.fee <= 0:
        transaction_error = FeeRequired()

    spendable = spendable_balance(account)
    amount = transaction.amount
    if transaction.use_all_amount:
        amount = max(spendable - estimated_fees, Decimal(0))

    if transaction_error is None and amount + estimated_fees > spendable:
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


def make_account_shape_producer(client_for: Callable[[CryptoCurrency], RippleChainClient]):
    async def get_account_shape(account: Account, cursor: int, should_clear_cache: bool) -> AsyncIterator[AccountShape]:
        client = client_for(account.currency)
        if should_clear_cache:
            client.clear_cache()
        address = _own_address(account)

        server = await asyncio.to_thread(client.server_info)
        ledger_index = validated_ledger_index(server)
        network_info = network_info_from_server_info(server)

        info = await asyncio.to_thread(client.account_info, address)
        if info is None:
            logger.info(f"{account.id}: account not found on ledger, treating as unfunded")
            balance, sequence, owner_count = Decimal(0), 0, 0
        else:
            data = info.get("account_data") or {}
            balance = Decimal(str(data.get("Balance", "0")))
            sequence = int(data.get("Sequence", 0))
            owner_count = int(data.get("OwnerCount", 0))

        reserve = network_info.base_reserve + owner_count * network_info.owner_reserve
        resources = {
            "ripple_resources": RippleResources(sequence=sequence, owner_count=owner_count, reserve=reserve)
        }
        sync_date = datetime.now(timezone.utc)
        operations: list[Operation] = []

        def shape(block_height: int) -> AccountShape:
            return AccountShape(
                balance=balance,
                spendable_balance=max(balance - reserve, Decimal(0)),
                block_height=block_height,
                operations=tuple(operations),
                sync_date=sync_date,
                fresh_address=address,
                resources=resources,
            )

        if cursor > 0 and cursor >= ledger_index:
            # rippled rejects a ledger_index_min above its validated ledger
            logger.debug(f"{account.id}: no ledger validated since {cursor}")
            yield shape(cursor)
            return

        ledger_index_min = cursor + 1 if cursor > 0 else -1
        marker = None
        page = 0
        while True:
            result = await asyncio.to_thread(client.account_tx, address, ledger_index_min, marker)
            page += 1
            for entry in result.get("transactions") or []:
                if op := _read_operation(account.id, address, entry):
                    operations.append(op)
            logger.debug(f"{account.id}: history page {page}, {len(operations)} operation(s)")
            yield shape(ledger_index)
            marker = result.get("marker")
            if not marker:
                break

    return get_account_shape


# ---------------------------------------------------------------------------
# Bridge
# ---------------------------------------------------------------------------


def make_bridge(
    client_for: Callable[[CryptoCurrency], RippleChainClient],
    bridge_type: str = "js",
    version: str = "1",
    fee_source: str = FEE_SOURCE_SERVER_INFO,
) -> AccountBridge:
    async def fetch_network_info(client: RippleChainClient) -> RippleNetworkInfo:
        info = network_info_from_server_info(await asyncio.to_thread(client.server_info))
        if fee_source == FEE_SOURCE_OPEN_LEDGER:
            fee = open_ledger_fee(await asyncio.to_thread(client.fee))
            info = RippleNetworkInfo(
                server_fee=fee, base_reserve=info.base_reserve, owner_reserve=info.owner_reserve
            )
        return info

    async def prepare_transaction(account: Account, transaction: RippleTransaction) -> RippleTransaction:
        network_info = transaction.network_info
        if network_info is None:
            try:
                network_info = await fetch_network_info(client_for(account.currency))
            except NetworkError as exc:
                logger.warning(f"Fee lookup failed for {account.id}: {exc}")
                return transaction

        fee = transaction.fee
        if fee is None:
            fee = network_info.server_fee
        return update_transaction(transaction, network_info=network_info, fee=fee)

    return AccountBridge(
        family=FAMILY,
        type=bridge_type,
        version=version,
        create_transaction=create_transaction,
        prepare_transaction=prepare_transaction,
        get_transaction_status=get_transaction_status,
        start_sync=make_sync(make_account_shape_producer(client_for)),
    )


def make_js_bridges(cfg: BridgeConfig) -> list[AccountBridge]:
    """Version 1 (server_info fee) and version 2 (open-ledger fee) bridges."""
    client = RippleRpcClient(cfg.xrp_rpc_url, cfg.request_timeout)

    def client_for(currency: CryptoCurrency) -> RippleRpcClient:
        return client

    return [
        make_bridge(client_for, bridge_type="js", version="1", fee_source=FEE_SOURCE_SERVER_INFO),
        make_bridge(client_for, bridge_type="js", version="2", fee_source=FEE_SOURCE_OPEN_LEDGER),
    ]
