"""Supported currencies, grouped by bridge family."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

Family = Literal["bitcoin", "ethereum", "ripple"]


@dataclass(frozen=True)
class BitcoinNetworkParams:
    p2pkh_version: bytes
    p2sh_version: bytes
    bech32_hrp: str


@dataclass(frozen=True)
class CryptoCurrency:
    id: str
    name: str
    ticker: str
    family: Family
    magnitude: int  # decimals of the main unit
    chain_id: int | None = None  # EVM only
    bitcoin_params: BitcoinNetworkParams | None = None


_CURRENCIES = (
    CryptoCurrency(
        id="bitcoin",
        name="Bitcoin",
        ticker="BTC",
        family="bitcoin",
        magnitude=8,
        bitcoin_params=BitcoinNetworkParams(b"\x00", b"\x05", "bc"),
    ),
    CryptoCurrency(
        id="bitcoin_testnet",
        name="Bitcoin Testnet",
        ticker="tBTC",
        family="bitcoin",
        magnitude=8,
        bitcoin_params=BitcoinNetworkParams(b"\x6f", b"\xc4", "tb"),
    ),
    CryptoCurrency(
        id="litecoin",
        name="Litecoin",
        ticker="LTC",
        family="bitcoin",
        magnitude=8,
        bitcoin_params=BitcoinNetworkParams(b"\x30", b"\x32", "ltc"),
    ),
    CryptoCurrency(
        id="ethereum",
        name="Ethereum",
        ticker="ETH",
        family="ethereum",
        magnitude=18,
        chain_id=1,
    ),
    CryptoCurrency(
        id="ethereum_sepolia",
        name="Ethereum Sepolia",
        ticker="ETH",
        family="ethereum",
        magnitude=18,
        chain_id=11155111,
    ),
    CryptoCurrency(
        id="ripple",
        name="XRP",
        ticker="XRP",
        family="ripple",
        magnitude=6,
    ),
)

CURRENCIES: dict[str, CryptoCurrency] = {c.id: c for c in _CURRENCIES}


def find_currency(currency_id: str) -> CryptoCurrency | None:
    return CURRENCIES.get(currency_id)


def get_currency(currency_id: str) -> CryptoCurrency:
    currency = CURRENCIES.get(currency_id)
    if currency is None:
        raise ValueError(f"Unknown currency {currency_id!r}")
    return currency


def list_currencies(family: Family | None = None) -> list[CryptoCurrency]:
    return [c for c in _CURRENCIES if family is None or c.family == family]
