"""
Transaction drafts, their raw snapshots and the validation status.

One frozen dataclass per bridge family. Fee fields distinguish three states:
None (not computed yet), zero (explicitly set, invalid where a positive fee
is mandatory) and positive.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Any, ClassVar, Union

from accounts import decimal_from_raw, optional_decimal_from_raw, optional_decimal_to_raw
from bridge_errors import BridgeError

MAX_RIPPLE_TAG = 2**32 - 1


@dataclass(frozen=True)
class BitcoinFeeItem:
    speed: str
    fee_per_byte: Decimal


@dataclass(frozen=True)
class BitcoinNetworkInfo:
    fee_items: tuple[BitcoinFeeItem, ...]
    default_fee_per_byte: Decimal


@dataclass(frozen=True)
class EthereumNetworkInfo:
    gas_price: Decimal


@dataclass(frozen=True)
class RippleNetworkInfo:
    server_fee: Decimal
    base_reserve: Decimal
    owner_reserve: Decimal


@dataclass(frozen=True)
class _BaseTransaction:
    amount: Decimal = Decimal(0)
    recipient: str = ""
    use_all_amount: bool = False

    def __post_init__(self) -> None:
        if self.amount < 0:
            raise ValueError(f"Transaction amount cannot be negative: {self.amount}")


@dataclass(frozen=True)
class BitcoinTransaction(_BaseTransaction):
    family: ClassVar[str] = "bitcoin"

    fee_per_byte: Decimal | None = None
    network_info: BitcoinNetworkInfo | None = None
    selected_utxos: tuple[str, ...] = ()  # "txid:vout" outpoints


@dataclass(frozen=True)
class EthereumTransaction(_BaseTransaction):
    family: ClassVar[str] = "ethereum"

    gas_price: Decimal | None = None
    user_gas_limit: Decimal | None = None
    estimated_gas_limit: Decimal | None = None
    network_info: EthereumNetworkInfo | None = None


@dataclass(frozen=True)
class RippleTransaction(_BaseTransaction):
    family: ClassVar[str] = "ripple"

    fee: Decimal | None = None
    tag: int | None = None
    network_info: RippleNetworkInfo | None = None

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.tag is not None and not 0 <= self.tag <= MAX_RIPPLE_TAG:
            raise ValueError(f"Destination tag out of range: {self.tag}")


Transaction = Union[BitcoinTransaction, EthereumTransaction, RippleTransaction]


@dataclass(frozen=True)
class TransactionStatus:
    """
    Result of validating a transaction against an account.

    Both error fields are always present; None means the corresponding check
    passed.
    """

    recipient_error: BridgeError | None = None
    transaction_error: BridgeError | None = None
    warnings: dict[str, BridgeError] = field(default_factory=dict)
    estimated_fees: Decimal = Decimal(0)
    amount: Decimal = Decimal(0)
    total_spent: Decimal = Decimal(0)

    @property
    def is_valid(self) -> bool:
        return self.recipient_error is None and self.transaction_error is None


def update_transaction(transaction: Transaction, **fields: Any) -> Transaction:
    """
    Return `transaction` itself when every field already holds the given value,
    otherwise a new instance with the fields replaced.

    Repeated prepare calls therefore converge to the same object once the
    derived fields stop changing.
    """
    if all(getattr(transaction, name) == value for name, value in fields.items()):
        return transaction
    return replace(transaction, **fields)


# ---------------------------------------------------------------------------
# Raw snapshots
# ---------------------------------------------------------------------------


def _common_to_raw(t: Transaction) -> dict[str, Any]:
    return {
        "family": t.family,
        "amount": str(t.amount),
        "recipient": t.recipient,
        "use_all_amount": t.use_all_amount,
    }


def _common_from_raw(raw: dict[str, Any]) -> dict[str, Any]:
    recipient = raw.get("recipient", "")
    if not isinstance(recipient, str):
        raise ValueError("Invalid recipient. Must be a string.")
    return {
        "amount": decimal_from_raw(raw.get("amount", "0"), "amount"),
        "recipient": recipient,
        "use_all_amount": bool(raw.get("use_all_amount", False)),
    }


def _bitcoin_to_raw(t: BitcoinTransaction) -> dict[str, Any]:
    info = None
    if t.network_info is not None:
        info = {
            "fee_items": [
                {"speed": item.speed, "fee_per_byte": str(item.fee_per_byte)}
                for item in t.network_info.fee_items
            ],
            "default_fee_per_byte": str(t.network_info.default_fee_per_byte),
        }
    return {
        **_common_to_raw(t),
        "fee_per_byte": optional_decimal_to_raw(t.fee_per_byte),
        "network_info": info,
        "selected_utxos": list(t.selected_utxos),
    }


def _bitcoin_from_raw(raw: dict[str, Any]) -> BitcoinTransaction:
    info_raw = raw.get("network_info")
    info = None
    if info_raw is not None:
        info = BitcoinNetworkInfo(
            fee_items=tuple(
                BitcoinFeeItem(
                    speed=item["speed"],
                    fee_per_byte=decimal_from_raw(item["fee_per_byte"], "fee_per_byte"),
                )
                for item in info_raw.get("fee_items") or ()
            ),
            default_fee_per_byte=decimal_from_raw(
                info_raw.get("default_fee_per_byte"), "default_fee_per_byte"
            ),
        )
    return BitcoinTransaction(
        **_common_from_raw(raw),
        fee_per_byte=optional_decimal_from_raw(raw.get("fee_per_byte"), "fee_per_byte"),
        network_info=info,
        selected_utxos=tuple(raw.get("selected_utxos") or ()),
    )


def _ethereum_to_raw(t: EthereumTransaction) -> dict[str, Any]:
    info = None
    if t.network_info is not None:
        info = {"gas_price": str(t.network_info.gas_price)}
    return {
        **_common_to_raw(t),
        "gas_price": optional_decimal_to_raw(t.gas_price),
        "user_gas_limit": optional_decimal_to_raw(t.user_gas_limit),
        "estimated_gas_limit": optional_decimal_to_raw(t.estimated_gas_limit),
        "network_info": info,
    }


def _ethereum_from_raw(raw: dict[str, Any]) -> EthereumTransaction:
    info_raw = raw.get("network_info")
    info = None
    if info_raw is not None:
        info = EthereumNetworkInfo(
            gas_price=decimal_from_raw(info_raw.get("gas_price"), "network gas_price")
        )
    return EthereumTransaction(
        **_common_from_raw(raw),
        gas_price=optional_decimal_from_raw(raw.get("gas_price"), "gas_price"),
        user_gas_limit=optional_decimal_from_raw(raw.get("user_gas_limit"), "user_gas_limit"),
        estimated_gas_limit=optional_decimal_from_raw(
            raw.get("estimated_gas_limit"), "estimated_gas_limit"
        ),
        network_info=info,
    )


def _ripple_to_raw(t: RippleTransaction) -> dict[str, Any]:
    info = None
    if t.network_info is not None:
        info = {
            "server_fee": str(t.network_info.server_fee),
            "base_reserve": str(t.network_info.base_reserve),
            "owner_reserve": str(t.network_info.owner_reserve),
        }
    return {
        **_common_to_raw(t),
        "fee": optional_decimal_to_raw(t.fee),
        "tag": t.tag,
        "network_info": info,
    }


def _ripple_from_raw(raw: dict[str, Any]) -> RippleTransaction:
    info_raw = raw.get("network_info")
    info = None
    if info_raw is not None:
        info = RippleNetworkInfo(
            server_fee=decimal_from_raw(info_raw.get("server_fee"), "server_fee"),
            base_reserve=decimal_from_raw(info_raw.get("base_reserve"), "base_reserve"),
            owner_reserve=decimal_from_raw(info_raw.get("owner_reserve"), "owner_reserve"),
        )
    tag = raw.get("tag")
    if tag is not None and (isinstance(tag, bool) or not isinstance(tag, int)):
        raise ValueError("Invalid tag. Must be an integer.")
    return RippleTransaction(
        **_common_from_raw(raw),
        fee=optional_decimal_from_raw(raw.get("fee"), "fee"),
        tag=tag,
        network_info=info,
    )


_RAW_CODECS = {
    "bitcoin": (_bitcoin_to_raw, _bitcoin_from_raw),
    "ethereum": (_ethereum_to_raw, _ethereum_from_raw),
    "ripple": (_ripple_to_raw, _ripple_from_raw),
}


def transaction_to_raw(transaction: Transaction) -> dict[str, Any]:
    to_raw, _ = _RAW_CODECS[transaction.family]
    return to_raw(transaction)


def transaction_from_raw(raw: dict[str, Any]) -> Transaction:
    if not isinstance(raw, dict):
        raise ValueError("Invalid transaction. Expected an object.")
    family = raw.get("family")
    if family not in _RAW_CODECS:
        raise ValueError(f"Invalid transaction family {family!r}.")
    _, from_raw = _RAW_CODECS[family]
    return from_raw(raw)


def status_to_raw(status: TransactionStatus) -> dict[str, Any]:
    return {
        "recipient_error": status.recipient_error.to_dict() if status.recipient_error else None,
        "transaction_error": (
            status.transaction_error.to_dict() if status.transaction_error else None
        ),
        "warnings": {name: w.to_dict() for name, w in status.warnings.items()},
        "estimated_fees": str(status.estimated_fees),
        "amount": str(status.amount),
        "total_spent": str(status.total_spent),
    }
