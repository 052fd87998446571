"""
The account bridge contract.

A bridge is a value holding the four capabilities every currency family
implements. Families build their bridge with a factory function; the registry
picks one by the account's decoded identity.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable

from account_sync import AccountPatch
from accounts import Account
from transactions import Transaction, TransactionStatus


@dataclass(frozen=True)
class AccountBridge:
    family: str
    type: str
    version: str
    create_transaction: Callable[[Account], Transaction]
    prepare_transaction: Callable[[Account, Transaction], Awaitable[Transaction]]
    get_transaction_status: Callable[[Account, Transaction], Awaitable[TransactionStatus]]
    start_sync: Callable[[Account, bool], AsyncIterator[AccountPatch]]

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.family, self.type, self.version)


def fee_too_high(amount, estimated_fees) -> bool:
    """Fees above 10% of a non-zero amount."""
    return amount > 0 and estimated_fees * 10 > amount
