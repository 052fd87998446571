"""
Ethereum-family account bridge (ethereum, ethereum_sepolia).

Balance, nonce, block number, gas price and gas estimates come from a
JSON-RPC node; operation history comes from the Etherscan v2 `txlist`
endpoint, which needs ETHERSCAN_API_KEY. All amounts are in wei.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, AsyncIterator, Callable, Protocol

import requests
from bip_utils import EthAddrDecoder

from account_bridge import AccountBridge, fee_too_high
from account_id import decode_account_id
from account_sync import AccountShape, make_sync
from accounts import Account, EthereumResources, Operation
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
from transactions import EthereumNetworkInfo, EthereumTransaction, TransactionStatus, update_transaction

logger = logging.getLogger(__name__)

FAMILY = "ethereum"

DEFAULT_GAS_LIMIT = Decimal(21000)
ETHERSCAN_PAGE_SIZE = 100


def _hex_to_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    if not isinstance(value, str):
        raise NetworkError(f"Unexpected JSON-RPC value: {value!r}")
    try:
        return int(value, 16)
    except ValueError as exc:
        raise NetworkError(f"Unexpected JSON-RPC value: {value!r}") from exc


# ---------------------------------------------------------------------------
# Chain client
# ---------------------------------------------------------------------------


class EthereumChainClient(Protocol):
    """
    Chain data provider for ethereum-family accounts.

    get_transactions returns Etherscan `txlist` rows (string fields:
    hash, blockNumber, timeStamp, from, to, value, gasUsed, gasPrice, isError),
    oldest first.
    """

    def get_block_number(self) -> int: ...

    def get_balance(self, address: str) -> Decimal: ...

    def get_nonce(self, address: str) -> int: ...

    def get_gas_price(self) -> Decimal: ...

    def estimate_gas(self, sender: str, recipient: str) -> Decimal: ...

    def get_transactions(self, address: str, start_block: int, page: int) -> list[dict]: ...

    def clear_cache(self) -> None: ...


class EthereumRpcClient:
    def __init__(
        self,
        rpc_url: str,
        chain_id: int,
        etherscan_api_url: str,
        etherscan_api_key: str | None = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ) -> None:
        self.rpc_url = rpc_url
        self.chain_id = chain_id
        self.etherscan_api_url = etherscan_api_url
        self.etherscan_api_key = etherscan_api_key
        self.timeout = timeout

    def _rpc(self, method: str, params: list[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
        try:
            resp = requests.post(self.rpc_url, json=payload, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except requests.RequestException as exc:
            raise NetworkError(f"{method} failed: {exc}", method=method) from exc
        except ValueError as exc:
            raise NetworkError(f"{method} returned an invalid body", method=method) from exc

        if not isinstance(data, dict):
            raise NetworkError(f"{method} returned an invalid body", method=method)
        if data.get("error"):
            error = data["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise NetworkError(f"{method} failed: {message}", method=method)
        return data.get("result")

    def get_block_number(self) -> int:
        return _hex_to_int(self._rpc("eth_blockNumber", []))

    def get_balance(self, address: str) -> Decimal:
        return Decimal(_hex_to_int(self._rpc("eth_getBalance", [address, "latest"])))

    def get_nonce(self, address: str) -> int:
        return _hex_to_int(self._rpc("eth_getTransactionCount", [address, "latest"]))

    def get_gas_price(self) -> Decimal:
        return Decimal(_hex_to_int(self._rpc("eth_gasPrice", [])))

    def estimate_gas(self, sender: str, recipient: str) -> Decimal:
        call = {"from": sender, "to": recipient, "value": "0x0"}
        return Decimal(_hex_to_int(self._rpc("eth_estimateGas", [call])))

    def get_transactions(self, address: str, start_block: int, page: int) -> list[dict]:
        if not self.etherscan_api_key:
            logger.info("ETHERSCAN_API_KEY is not set; skipping ethereum history")
            return []

        params = {
            "chainid": self.chain_id,
            "module": "account",
            "action": "txlist",
            "address": address,
            "startblock": start_block,
            "endblock": 99999999,
            "page": page,
            "offset": ETHERSCAN_PAGE_SIZE,
            "sort": "asc",
            "apikey": self.etherscan_api_key,
        }
        try:
            resp = requests.get(self.etherscan_api_url, params=params, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except requests.RequestException as exc:
            raise NetworkError(f"Etherscan txlist failed: {exc}") from exc
        except ValueError as exc:
            raise NetworkError("Etherscan txlist returned an invalid body") from exc

        if not isinstance(data, dict):
            raise NetworkError("Etherscan txlist returned an invalid body")
        result = data.get("result")
        if data.get("status") == "1" and isinstance(result, list):
            return result
        if str(data.get("message", "")).startswith("No transactions found"):
            return []
        raise NetworkError(f"Etherscan txlist failed: {result or data.get('message')}")

    def clear_cache(self) -> None:
        pass


# ---------------------------------------------------------------------------
# Address validation
# ---------------------------------------------------------------------------


def is_valid_address(address: str) -> bool:
    """0x-prefixed address with a valid EIP-55 mixed-case checksum."""
    if not address:
        return False
    try:
        EthAddrDecoder.DecodeAddr(address)
    except Exception:  # noqa: BLE001
        return False
    return True


def _own_address(account: Account) -> str:
    return decode_account_id(account.id).xpub_or_address


# ---------------------------------------------------------------------------
# Builder & validator
# ---------------------------------------------------------------------------


def gas_limit_of(transaction: EthereumTransaction) -> Decimal:
    if transaction.user_gas_limit is not None:
        return transaction.user_gas_limit
    if transaction.estimated_gas_limit is not None:
        return transaction.estimated_gas_limit
    return DEFAULT_GAS_LIMIT


def create_transaction(account: Account) -> EthereumTransaction:
    return EthereumTransaction()


async def get_transaction_status(account: Account, transaction: EthereumTransaction) -> TransactionStatus:
    recipient_error = None
    if not is_valid_address(transaction.recipient):
        recipient_error = InvalidAddress()
    elif transaction.recipient.lower() == _own_address(account).lower():
        recipient_error = InvalidAddressBecauseDestinationIsAlsoSource()

    transaction_error = None
    estimated_fees = Decimal(0)
    if transaction.gas_price is None:
        transaction_error = FeeNotLoaded()
    else:
        estimated_fees = transaction.gas_price * gas_limit_of(transaction)
        if estimated_fees <= 0:
            transaction_error = FeeRequired()

    spendable = account.balance
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


def operation_from_tx(account_id: str, address: str, tx: dict) -> Operation | None:
    """Etherscan txlist row as seen from `address`, or None if unrelated."""
    sender = str(tx.get("from") or "")
    recipient = str(tx.get("to") or "")
    own = address.lower()
    if own == sender.lower():
        op_type = "OUT"
    elif own == recipient.lower():
        op_type = "IN"
    else:
        return None

    tx_hash = str(tx.get("hash", ""))
    failed = str(tx.get("isError", "0")) == "1"
    value = Decimal(int(tx.get("value") or 0))
    fee = Decimal(int(tx.get("gasUsed") or 0) * int(tx.get("gasPrice") or 0))
    timestamp = tx.get("timeStamp")

    return Operation(
        id=f"{account_id}-{tx_hash}-{op_type}",
        hash=tx_hash,
        type=op_type,
        value=Decimal(0) if failed else value,
        fee=fee,
        block_height=int(tx["blockNumber"]) if tx.get("blockNumber") else None,
        date=datetime.fromtimestamp(int(timestamp), tz=timezone.utc) if timestamp else None,
        senders=(sender,) if sender else (),
        recipients=(recipient,) if recipient else (),
        has_failed=failed,
    )


def _read_operation(account_id: str, address: str, tx: dict) -> Operation | None:
    try:
        return operation_from_tx(account_id, address, tx)
    except (KeyError, TypeError, ValueError, ArithmeticError) as exc:
        raise NetworkError(f"Etherscan returned an unreadable transaction: {exc!r}") from exc


def make_account_shape_producer(client_for: Callable[[CryptoCurrency], EthereumChainClient]):
    async def get_account_shape(account: Account, cursor: int, should_clear_cache: bool) -> AsyncIterator[AccountShape]:
        client = client_for(account.currency)
        if should_clear_cache:
            client.clear_cache()
        address = _own_address(account)

        block_number = await asyncio.to_thread(client.get_block_number)
        balance = await asyncio.to_thread(client.get_balance, address)
        nonce = await asyncio.to_thread(client.get_nonce, address)
        sync_date = datetime.now(timezone.utc)
        operations: list[Operation] = []

        page = 1
        while True:
            rows = await asyncio.to_thread(client.get_transactions, address, cursor + 1, page)
            operations.extend(op for tx in rows if (op := _read_operation(account.id, address, tx)))
            logger.debug(f"{account.id}: history page {page}, {len(operations)} operation(s)")
            yield AccountShape(
                balance=balance,
                spendable_balance=balance,
                block_height=block_number,
                operations=tuple(operations),
                sync_date=sync_date,
                fresh_address=address,
                resources={"ethereum_resources": EthereumResources(nonce=nonce)},
            )
            if len(rows) < ETHERSCAN_PAGE_SIZE:
                break
            page += 1

    return get_account_shape


# ---------------------------------------------------------------------------
# Bridge
# ---------------------------------------------------------------------------


def make_bridge(
    client_for: Callable[[CryptoCurrency], EthereumChainClient],
    bridge_type: str = "js",
    version: str = "1",
) -> AccountBridge:
    async def prepare_transaction(account: Account, transaction: EthereumTransaction) -> EthereumTransaction:
        client = client_for(account.currency)
        try:
            network_info = transaction.network_info
            if network_info is None:
                network_info = EthereumNetworkInfo(gas_price=await asyncio.to_thread(client.get_gas_price))

            estimated_gas_limit = DEFAULT_GAS_LIMIT
            if is_valid_address(transaction.recipient):
                estimated_gas_limit = await asyncio.to_thread(
                    client.estimate_gas, _own_address(account), transaction.recipient
                )
        except NetworkError as exc:
            logger.warning(f"Gas estimation failed for {account.id}: {exc}")
            return transaction

        gas_price = transaction.gas_price
        if gas_price is None:
            gas_price = network_info.gas_price

        return update_transaction(
            transaction,
            network_info=network_info,
            gas_price=gas_price,
            estimated_gas_limit=estimated_gas_limit,
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
    """Bridge talking to the configured JSON-RPC nodes and Etherscan."""
    clients: dict[str, EthereumRpcClient] = {}

    def client_for(currency: CryptoCurrency) -> EthereumRpcClient:
        if currency.id not in clients:
            clients[currency.id] = EthereumRpcClient(
                cfg.eth_rpc_url(currency.id),
                chain_id=currency.chain_id,
                etherscan_api_url=cfg.etherscan_api_url,
                etherscan_api_key=cfg.etherscan_api_key,
                timeout=cfg.request_timeout,
            )
        return clients[currency.id]

    return make_bridge(client_for, bridge_type="js", version="1")
