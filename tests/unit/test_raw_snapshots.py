import json
import sys
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(REPO_ROOT))

from accounts import (  # noqa: E402
    Account,
    EthereumResources,
    Operation,
    RippleResources,
    account_from_raw,
    account_to_raw,
)
from bridge_config import BridgeConfig  # noqa: E402
from bridge_errors import (  # noqa: E402
    BridgeConfigError,
    BridgeError,
    FeeNotLoaded,
    FeeTooHigh,
    InvalidAddress,
    InvalidAddressBecauseDestinationIsAlsoSource,
    NotEnoughBalance,
)
from transactions import (  # noqa: E402
    BitcoinFeeItem,
    BitcoinNetworkInfo,
    BitcoinTransaction,
    EthereumNetworkInfo,
    EthereumTransaction,
    RippleNetworkInfo,
    RippleTransaction,
    TransactionStatus,
    status_to_raw,
    transaction_from_raw,
    transaction_to_raw,
    update_transaction,
)

from bridge_fixtures import ETH_ADDRESS, XRP_ADDRESS, btc_account, make_account  # noqa: E402

SYNC_DATE = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


def _operations(account_id):
    return (
        Operation(
            id=f"{account_id}-ff-OUT",
            hash="ff",
            type="OUT",
            value=Decimal("1500.5"),
            fee=Decimal(21),
            senders=("a",),
            recipients=("b", "c"),
        ),
        Operation(
            id=f"{account_id}-ee-IN",
            hash="ee",
            type="IN",
            value=Decimal(10**20),
            fee=Decimal(0),
            block_height=812_345,
            date=SYNC_DATE,
            has_failed=True,
        ),
    )


def test_bitcoin_account_round_trip():
    account = btc_account(block_height=812_345, last_sync_date=SYNC_DATE)
    assert account_from_raw(account_to_raw(account)) == account


def test_ethereum_account_round_trip_with_history():
    base = make_account("ethereum", ETH_ADDRESS, balance=Decimal(10**18))
    account = replace(base, operations=_operations(base.id), ethereum_resources=EthereumResources(nonce=7))
    assert account_from_raw(account_to_raw(account)) == account


def test_ripple_account_round_trip():
    account = make_account(
        "ripple",
        XRP_ADDRESS,
        balance=Decimal(25_000_000),
        spendable_balance=Decimal(24_000_000),
        ripple_resources=RippleResources(sequence=3, owner_count=0, reserve=Decimal(1_000_000)),
    )
    assert account_from_raw(account_to_raw(account)) == account


def test_account_raw_is_json_serializable():
    account = btc_account(last_sync_date=SYNC_DATE)
    raw = account_to_raw(account)
    assert json.loads(json.dumps(raw)) == raw
    assert raw["balance"] == "100000"
    assert raw["ethereum_resources"] is None
    assert raw["bitcoin_resources"]["utxos"][0]["value"] == "60000"


def test_account_rejects_negative_balance():
    with pytest.raises(ValueError):
        make_account("ethereum", ETH_ADDRESS, balance=Decimal(-1))


def test_account_rejects_unknown_currency():
    with pytest.raises(ValueError):
        Account(id="js:1:dogecoin:D8:", currency_id="dogecoin", fresh_address="D8", balance=Decimal(0))


@pytest.mark.parametrize(
    "change",
    [
        {"balance": 12},
        {"balance": "NaN"},
        {"balance": "twelve"},
        {"last_sync_date": "yesterday"},
    ],
)
def test_account_from_raw_rejects_bad_values(change):
    raw = account_to_raw(btc_account())
    raw.update(change)
    with pytest.raises(ValueError):
        account_from_raw(raw)


def test_account_from_raw_requires_id():
    raw = account_to_raw(btc_account())
    del raw["id"]
    with pytest.raises(ValueError):
        account_from_raw(raw)


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "transaction",
    [
        BitcoinTransaction(),
        BitcoinTransaction(
            amount=Decimal(2489),
            recipient="bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4",
            fee_per_byte=Decimal(0),
            network_info=BitcoinNetworkInfo(
                fee_items=(BitcoinFeeItem("fastestFee", Decimal(30)), BitcoinFeeItem("hourFee", Decimal("2.5"))),
                default_fee_per_byte=Decimal("2.5"),
            ),
            selected_utxos=("aa:0", "bb:1"),
        ),
        EthereumTransaction(
            amount=Decimal(10**18),
            recipient=ETH_ADDRESS,
            use_all_amount=True,
            gas_price=Decimal(20_000_000_000),
            user_gas_limit=Decimal(50_000),
            estimated_gas_limit=Decimal(21000),
            network_info=EthereumNetworkInfo(gas_price=Decimal(19_000_000_000)),
        ),
        RippleTransaction(
            amount=Decimal(5),
            recipient=XRP_ADDRESS,
            fee=Decimal(12),
            tag=2**32 - 1,
            network_info=RippleNetworkInfo(Decimal(10), Decimal(1_000_000), Decimal(200_000)),
        ),
    ],
)
def test_transaction_round_trip(transaction):
    raw = transaction_to_raw(transaction)
    assert json.loads(json.dumps(raw)) == raw
    assert transaction_from_raw(raw) == transaction


def test_unset_and_zero_fees_stay_distinct_in_raw_form():
    unset = transaction_to_raw(BitcoinTransaction())
    zero = transaction_to_raw(BitcoinTransaction(fee_per_byte=Decimal(0)))
    assert unset["fee_per_byte"] is None
    assert zero["fee_per_byte"] == "0"


def test_transaction_from_raw_rejects_unknown_family():
    with pytest.raises(ValueError):
        transaction_from_raw({"family": "dogecoin", "amount": "1"})


def test_transaction_rejects_negative_amount():
    with pytest.raises(ValueError):
        BitcoinTransaction(amount=Decimal(-1))


@pytest.mark.parametrize("tag", [-1, 2**32])
def test_ripple_tag_must_fit_in_32_bits(tag):
    with pytest.raises(ValueError):
        RippleTransaction(tag=tag)


def test_update_transaction_returns_same_instance_when_unchanged():
    transaction = EthereumTransaction(gas_price=Decimal(5))
    assert update_transaction(transaction, gas_price=Decimal("5.0")) is transaction

    updated = update_transaction(transaction, gas_price=Decimal(6))
    assert updated is not transaction
    assert updated.gas_price == Decimal(6)
    assert transaction.gas_price == Decimal(5)


# ---------------------------------------------------------------------------
# Status and errors
# ---------------------------------------------------------------------------


def test_status_to_raw():
    status = TransactionStatus(
        recipient_error=InvalidAddress(),
        transaction_error=None,
        warnings={"fee_too_high": FeeTooHigh()},
        estimated_fees=Decimal(294),
        amount=Decimal(2489),
        total_spent=Decimal(2783),
    )

    raw = status_to_raw(status)

    assert raw["recipient_error"]["name"] == "InvalidAddress"
    assert raw["transaction_error"] is None
    assert raw["warnings"]["fee_too_high"]["name"] == "FeeTooHigh"
    assert raw["total_spent"] == "2783"
    assert not status.is_valid
    json.dumps(raw)


def test_errors_compare_by_type():
    assert NotEnoughBalance() == NotEnoughBalance("custom message", needed=5)
    assert NotEnoughBalance() != FeeNotLoaded()
    assert InvalidAddress() != InvalidAddressBecauseDestinationIsAlsoSource()
    assert isinstance(InvalidAddressBecauseDestinationIsAlsoSource(), InvalidAddress)
    assert NotEnoughBalance().kind == "NotEnoughBalance"
    assert str(FeeNotLoaded()) == "Fees have not been loaded yet."


def test_missing_endpoint_is_a_bridge_error():
    with pytest.raises(BridgeConfigError) as excinfo:
        BridgeConfig().esplora_url("ripple")

    assert isinstance(excinfo.value, BridgeError)
    assert excinfo.value.to_dict() == {
        "name": "BridgeConfigError",
        "message": "No Esplora endpoint configured for 'ripple'.",
        "context": {"currency_id": "ripple"},
    }
