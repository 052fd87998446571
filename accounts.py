"""
Account model and its raw (JSON-serializable) snapshot.

Accounts are immutable values. They are created by deserializing a raw
snapshot and only ever replaced by applying a sync patch; builders and
validators read them and never modify them.

Raw snapshots keep every decimal as a string and every datetime as an
ISO-8601 string, and `account_from_raw(account_to_raw(a)) == a` holds for
every valid account.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Literal

from account_id import decode_account_id, encode_account_id
from currencies import CryptoCurrency, get_currency

OperationType = Literal["IN", "OUT"]


@dataclass(frozen=True)
class Operation:
    id: str
    hash: str
    type: OperationType
    value: Decimal
    fee: Decimal
    block_height: int | None = None  # None while pending
    date: datetime | None = None
    senders: tuple[str, ...] = ()
    recipients: tuple[str, ...] = ()
    has_failed: bool = False


@dataclass(frozen=True)
class Utxo:
    txid: str
    vout: int
    value: Decimal
    block_height: int | None = None  # None when unconfirmed

    @property
    def outpoint(self) -> str:
        return f"{self.txid}:{self.vout}"


@dataclass(frozen=True)
class BitcoinResources:
    utxos: tuple[Utxo, ...] = ()


@dataclass(frozen=True)
class EthereumResources:
    nonce: int = 0


@dataclass(frozen=True)
class RippleResources:
    sequence: int = 0
    owner_count: int = 0
    reserve: Decimal = Decimal(0)  # drops that must stay on the account


@dataclass(frozen=True)
class Account:
    id: str
    currency_id: str
    fresh_address: str
    balance: Decimal
    spendable_balance: Decimal = Decimal(0)
    block_height: int = 0  # sync cursor; 0 = never synced
    operations: tuple[Operation, ...] = ()
    last_sync_date: datetime | None = None
    bitcoin_resources: BitcoinResources | None = None
    ethereum_resources: EthereumResources | None = None
    ripple_resources: RippleResources | None = None

    def __post_init__(self) -> None:
        get_currency(self.currency_id)
        if self.balance < 0:
            raise ValueError(f"Account balance cannot be negative: {self.balance}")
        if self.spendable_balance < 0:
            raise ValueError(
                f"Account spendable balance cannot be negative: {self.spendable_balance}"
            )

    @property
    def currency(self) -> CryptoCurrency:
        return get_currency(self.currency_id)

    @property
    def family(self) -> str:
        return self.currency.family

    @property
    def derivation_mode(self) -> str:
        return decode_account_id(self.id).derivation_mode


def switch_account_bridge(account: Account, type: str, version: str = "1") -> Account:
    """
    Rebind an account to another bridge implementation.

    Only the bridge type and version of the id change; everything else is kept,
    so the same account can be exercised against e.g. the mock bridge.
    """
    identity = decode_account_id(account.id).with_bridge(type, version)
    return replace(account, id=encode_account_id(identity))


# ---------------------------------------------------------------------------
# Raw snapshots
# ---------------------------------------------------------------------------


def decimal_from_raw(value: Any, field_name: str) -> Decimal:
    if not isinstance(value, str):
        raise ValueError(f"Invalid {field_name}. Must be a decimal string.")
    try:
        parsed = Decimal(value)
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"Invalid {field_name}. Must be a decimal string.") from exc
    if not parsed.is_finite():
        raise ValueError(f"Invalid {field_name}. Must be finite.")
    return parsed


def optional_decimal_from_raw(value: Any, field_name: str) -> Decimal | None:
    return None if value is None else decimal_from_raw(value, field_name)


def optional_decimal_to_raw(value: Decimal | None) -> str | None:
    return None if value is None else str(value)


def _date_to_raw(value: datetime | None) -> str | None:
    return None if value is None else value.isoformat()


def _date_from_raw(value: Any, field_name: str) -> datetime | None:
    if value is None:
        return None
    try:
        return datetime.fromisoformat(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid {field_name}. Must be an ISO-8601 date.") from exc


def _require(raw: dict[str, Any], key: str) -> Any:
    if key not in raw:
        raise ValueError(f"Missing {key}.")
    return raw[key]


def operation_to_raw(op: Operation) -> dict[str, Any]:
    return {
        "id": op.id,
        "hash": op.hash,
        "type": op.type,
        "value": str(op.value),
        "fee": str(op.fee),
        "block_height": op.block_height,
        "date": _date_to_raw(op.date),
        "senders": list(op.senders),
        "recipients": list(op.recipients),
        "has_failed": op.has_failed,
    }


def operation_from_raw(raw: dict[str, Any]) -> Operation:
    op_type = _require(raw, "type")
    if op_type not in ("IN", "OUT"):
        raise ValueError(f"Invalid operation type {op_type!r}.")
    return Operation(
        id=_require(raw, "id"),
        hash=_require(raw, "hash"),
        type=op_type,
        value=decimal_from_raw(_require(raw, "value"), "operation value"),
        fee=decimal_from_raw(_require(raw, "fee"), "operation fee"),
        block_height=raw.get("block_height"),
        date=_date_from_raw(raw.get("date"), "operation date"),
        senders=tuple(raw.get("senders") or ()),
        recipients=tuple(raw.get("recipients") or ()),
        has_failed=bool(raw.get("has_failed", False)),
    )


def _bitcoin_resources_to_raw(res: BitcoinResources) -> dict[str, Any]:
    return {
        "utxos": [
            {
                "txid": u.txid,
                "vout": u.vout,
                "value": str(u.value),
                "block_height": u.block_height,
            }
            for u in res.utxos
        ]
    }


def _bitcoin_resources_from_raw(raw: dict[str, Any]) -> BitcoinResources:
    return BitcoinResources(
        utxos=tuple(
            Utxo(
                txid=_require(u, "txid"),
                vout=int(_require(u, "vout")),
                value=decimal_from_raw(_require(u, "value"), "utxo value"),
                block_height=u.get("block_height"),
            )
            for u in raw.get("utxos") or ()
        )
    )


def account_to_raw(account: Account) -> dict[str, Any]:
    raw: dict[str, Any] = {
        "id": account.id,
        "currency_id": account.currency_id,
        "fresh_address": account.fresh_address,
        "balance": str(account.balance),
        "spendable_balance": str(account.spendable_balance),
        "block_height": account.block_height,
        "operations": [operation_to_raw(op) for op in account.operations],
        "last_sync_date": _date_to_raw(account.last_sync_date),
        "bitcoin_resources": None,
        "ethereum_resources": None,
        "ripple_resources": None,
    }
    if account.bitcoin_resources is not None:
        raw["bitcoin_resources"] = _bitcoin_resources_to_raw(account.bitcoin_resources)
    if account.ethereum_resources is not None:
        raw["ethereum_resources"] = {"nonce": account.ethereum_resources.nonce}
    if account.ripple_resources is not None:
        res = account.ripple_resources
        raw["ripple_resources"] = {
            "sequence": res.sequence,
            "owner_count": res.owner_count,
            "reserve": str(res.reserve),
        }
    return raw


def account_from_raw(raw: dict[str, Any]) -> Account:
    if not isinstance(raw, dict):
        raise ValueError("Invalid account. Expected an object.")

    bitcoin_raw = raw.get("bitcoin_resources")
    ethereum_raw = raw.get("ethereum_resources")
    ripple_raw = raw.get("ripple_resources")

    return Account(
        id=_require(raw, "id"),
        currency_id=_require(raw, "currency_id"),
        fresh_address=_require(raw, "fresh_address"),
        balance=decimal_from_raw(_require(raw, "balance"), "balance"),
        spendable_balance=decimal_from_raw(
            raw.get("spendable_balance", "0"), "spendable_balance"
        ),
        block_height=int(raw.get("block_height") or 0),
        operations=tuple(operation_from_raw(op) for op in raw.get("operations") or ()),
        last_sync_date=_date_from_raw(raw.get("last_sync_date"), "last_sync_date"),
        bitcoin_resources=(
            _bitcoin_resources_from_raw(bitcoin_raw) if bitcoin_raw is not None else None
        ),
        ethereum_resources=(
            EthereumResources(nonce=int(ethereum_raw.get("nonce", 0)))
            if ethereum_raw is not None
            else None
        ),
        ripple_resources=(
            RippleResources(
                sequence=int(ripple_raw.get("sequence", 0)),
                owner_count=int(ripple_raw.get("owner_count", 0)),
                reserve=decimal_from_raw(ripple_raw.get("reserve", "0"), "reserve"),
            )
            if ripple_raw is not None
            else None
        ),
    )
