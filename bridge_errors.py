"""
Error values shared by every account bridge.

Validation errors (InvalidAddress, FeeNotLoaded, FeeRequired, NotEnoughBalance,
FeeTooHigh) are returned inside a TransactionStatus and never raised.
Configuration errors (UnsupportedBridge, MalformedIdentity) and NetworkError
are raised.

Two error values are equal when they have the same concrete type, so callers
can compare a status field against a fresh instance:

    status.transaction_error == NotEnoughBalance()
"""

from __future__ import annotations

from typing import Any


class BridgeError(Exception):
    """Base class for all bridge errors."""

    def __init__(self, message: str | None = None, **context: Any) -> None:
        super().__init__(message or self.default_message())
        self.context = context

    @classmethod
    def default_message(cls) -> str:
        return (cls.__doc__ or cls.__name__).strip().splitlines()[0]

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.kind, "message": str(self)}
        if self.context:
            data["context"] = {k: str(v) for k, v in self.context.items()}
        return data

    def __eq__(self, other: object) -> bool:
        return type(self) is type(other)

    def __hash__(self) -> int:
        return hash(type(self))

    def __repr__(self) -> str:
        return f"{self.kind}()"


# ---------------------------------------------------------------------------
# Validation errors
# ---------------------------------------------------------------------------


class InvalidAddress(BridgeError):
    """Recipient address is not valid for this currency."""


class InvalidAddressBecauseDestinationIsAlsoSource(InvalidAddress):
    """Recipient address is the account's own address."""


class FeeNotLoaded(BridgeError):
    """Fees have not been loaded yet."""


class FeeRequired(BridgeError):
    """A strictly positive fee is required."""


class NotEnoughBalance(BridgeError):
    """Amount plus fees exceeds the spendable balance."""


class FeeTooHigh(BridgeError):
    """Fees exceed 10% of the amount."""


# ---------------------------------------------------------------------------
# Configuration errors
# ---------------------------------------------------------------------------


class UnsupportedBridge(BridgeError):
    """No bridge implementation is registered for this account."""


class MalformedIdentity(BridgeError):
    """Account id does not match the identity encoding."""


class BridgeConfigError(BridgeError):
    """No endpoint is configured for a currency."""


# ---------------------------------------------------------------------------
# Transient errors
# ---------------------------------------------------------------------------


class NetworkError(BridgeError):
    """A chain data lookup failed."""
