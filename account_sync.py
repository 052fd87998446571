"""
Account synchronization as a stream of patches.

A bridge's start_sync is an async generator of pure functions
Account -> Account. Each family provides an account-shape producer that
yields cumulative AccountShape snapshots (one per fetched history page, say);
every snapshot becomes a patch. The last patch is the complete reconciliation,
and earlier ones only report progress.

sync_account() folds the stream and applies the last patch only after the
stream has completed, so a NetworkError or a cancellation mid-way leaves the
caller with the account it started from.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, AsyncIterator, Callable, Iterable

from accounts import Account, Operation

if TYPE_CHECKING:
    from account_bridge import AccountBridge

logger = logging.getLogger(__name__)

AccountPatch = Callable[[Account], Account]


@dataclass(frozen=True)
class AccountShape:
    """Chain state of an account as fetched so far."""

    balance: Decimal
    spendable_balance: Decimal
    block_height: int
    operations: tuple[Operation, ...]
    sync_date: datetime
    fresh_address: str | None = None
    # Family resource fields, passed through to dataclasses.replace
    resources: dict[str, Any] = field(default_factory=dict)


AccountShapeProducer = Callable[[Account, int, bool], AsyncIterator[AccountShape]]


def _operation_sort_key(op: Operation) -> tuple[int, int, str]:
    # pending first, then newest block first
    if op.block_height is None:
        return (0, 0, op.id)
    return (1, -op.block_height, op.id)


def sort_operations(operations: Iterable[Operation]) -> tuple[Operation, ...]:
    return tuple(sorted(operations, key=_operation_sort_key))


def merge_operations(
    existing: Iterable[Operation], fetched: Iterable[Operation]
) -> tuple[Operation, ...]:
    """
    Merge freshly fetched operations into an existing history.

    Fetched operations win over existing ones with the same id (a pending
    operation becoming confirmed). Existing pending operations are dropped:
    the fetch reports the complete current mempool.
    """
    by_id = {op.id: op for op in existing if op.block_height is not None}
    for op in fetched:
        by_id[op.id] = op
    return sort_operations(by_id.values())


def patch_from_shape(shape: AccountShape, replace_history: bool) -> AccountPatch:
    def patch(previous: Account) -> Account:
        if replace_history:
            operations = sort_operations(shape.operations)
        else:
            operations = merge_operations(previous.operations, shape.operations)
        return replace(
            previous,
            balance=shape.balance,
            spendable_balance=shape.spendable_balance,
            block_height=shape.block_height,
            operations=operations,
            last_sync_date=shape.sync_date,
            fresh_address=shape.fresh_address or previous.fresh_address,
            **shape.resources,
        )

    return patch


def make_sync(
    get_account_shape: AccountShapeProducer,
) -> Callable[[Account, bool], AsyncIterator[AccountPatch]]:
    """
    Build a start_sync function from an account-shape producer.

    The producer receives the account, the cursor to resume from (0 for a full
    resync) and the clear-cache flag.
    """

    async def start_sync(account: Account, should_clear_cache: bool) -> AsyncIterator[AccountPatch]:
        cursor = 0 if should_clear_cache else account.block_height
        logger.debug(f"Sync {account.id} from cursor {cursor} (clear cache: {should_clear_cache})")
        emitted = 0
        async for shape in get_account_shape(account, cursor, should_clear_cache):
            emitted += 1
            yield patch_from_shape(shape, replace_history=should_clear_cache)
        logger.info(f"Synced {account.id} in {emitted} step(s)")

    return start_sync


async def sync_account(
    bridge: AccountBridge, account: Account, should_clear_cache: bool = False
) -> Account:
    """Run a full sync and apply the last emitted patch."""
    last_patch: AccountPatch | None = None
    async for patch in bridge.start_sync(account, should_clear_cache):
        last_patch = patch
    if last_patch is None:
        return account
    return last_patch(account)
