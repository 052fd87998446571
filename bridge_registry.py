"""
Currency bridge registry.

Bridges are registered under (family, type) and then by version. Resolution
prefers an exact version and otherwise falls back to the newest registered
numeric version that is not newer than the requested one, so accounts
created against an older bridge revision keep working.

The default table is built once at import time and is read-only afterwards.
"""

from __future__ import annotations

import logging

import btc_bridge
import eth_bridge
import xrp_bridge
from account_bridge import AccountBridge
from account_id import AccountIdentity, decode_account_id
from accounts import Account
from bridge_config import BridgeConfig
from bridge_errors import UnsupportedBridge
from currencies import find_currency
from mock_chain import make_mock_bridges

logger = logging.getLogger(__name__)

BridgeTable = dict[tuple[str, str], dict[str, AccountBridge]]

BRIDGES: BridgeTable = {}


def _version_number(version: str) -> int | None:
    return int(version) if version.isascii() and version.isdigit() else None


def register_bridge(bridge: AccountBridge, table: BridgeTable | None = None) -> None:
    table = BRIDGES if table is None else table
    table.setdefault((bridge.family, bridge.type), {})[bridge.version] = bridge


def resolve_bridge(identity: AccountIdentity, table: BridgeTable | None = None) -> AccountBridge:
    table = BRIDGES if table is None else table

    currency = find_currency(identity.currency_id)
    if currency is None:
        raise UnsupportedBridge(f"Unknown currency {identity.currency_id!r}.", currency=identity.currency_id)

    versions = table.get((currency.family, identity.type))
    if not versions:
        raise UnsupportedBridge(
            f"No {identity.type!r} bridge for the {currency.family} family.",
            family=currency.family,
            type=identity.type,
        )

    if identity.version in versions:
        return versions[identity.version]

    requested = _version_number(identity.version)
    compatible = []
    if requested is not None:
        for version, bridge in versions.items():
            number = _version_number(version)
            if number is not None and number <= requested:
                compatible.append((number, bridge))
    if not compatible:
        raise UnsupportedBridge(
            f"No {identity.type!r} bridge version compatible with {identity.version!r} for the {currency.family} family.",
            family=currency.family,
            type=identity.type,
            version=identity.version,
        )
    number, bridge = max(compatible, key=lambda item: item[0])
    logger.debug(f"{currency.family}/{identity.type}: version {identity.version} served by version {number}")
    return bridge


def get_account_bridge(account: Account, table: BridgeTable | None = None) -> AccountBridge:
    """Bridge for an account, chosen by its decoded id."""
    return resolve_bridge(decode_account_id(account.id), table)


def list_bridges(table: BridgeTable | None = None) -> list[AccountBridge]:
    table = BRIDGES if table is None else table
    return sorted(
        (bridge for versions in table.values() for bridge in versions.values()),
        key=lambda b: b.key,
    )


def build_default_bridges(cfg: BridgeConfig) -> list[AccountBridge]:
    return [
        btc_bridge.make_js_bridge(cfg),
        eth_bridge.make_js_bridge(cfg),
        *xrp_bridge.make_js_bridges(cfg),
        *make_mock_bridges(),
    ]


for _bridge in build_default_bridges(BridgeConfig.from_env()):
    register_bridge(_bridge)
