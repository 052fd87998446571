import sys
from decimal import Decimal
from pathlib import Path

import pytest
import requests

REPO_ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(REPO_ROOT))

import bridge_registry  # noqa: E402
import btc_bridge  # noqa: E402
from account_id import AccountIdentity  # noqa: E402
from accounts import Account  # noqa: E402
from bridge_errors import MalformedIdentity, UnsupportedBridge  # noqa: E402

from bridge_fixtures import (  # noqa: E402
    BTC_ADDRESS,
    ETH_ADDRESS,
    XRP_ADDRESS,
    FakeEsploraClient,
    fixed_client,
    make_account,
)


# ---------------------------------------------------------------------------
# Default table
# ---------------------------------------------------------------------------


def test_default_table_has_js_and_mock_bridges_for_every_family():
    keys = {bridge.key for bridge in bridge_registry.list_bridges()}
    for family in ("bitcoin", "ethereum", "ripple"):
        assert (family, "js", "1") in keys
        assert (family, "mock", "1") in keys
    assert ("ripple", "js", "2") in keys


def test_list_bridges_is_sorted():
    keys = [bridge.key for bridge in bridge_registry.list_bridges()]
    assert keys == sorted(keys)


@pytest.mark.parametrize(
    "currency_id, address, family",
    [
        ("bitcoin", BTC_ADDRESS, "bitcoin"),
        ("litecoin", "ltc1qg82tl8lrt0vx8wqkxsmm6vw4jf2wm0yr9p6q0d", "bitcoin"),
        ("ethereum", ETH_ADDRESS, "ethereum"),
        ("ethereum_sepolia", ETH_ADDRESS, "ethereum"),
        ("ripple", XRP_ADDRESS, "ripple"),
    ],
)
def test_get_account_bridge_picks_family_and_type(currency_id, address, family):
    for bridge_type in ("js", "mock"):
        account = make_account(currency_id, address, bridge_type=bridge_type)
        bridge = bridge_registry.get_account_bridge(account)
        assert bridge.family == family
        assert bridge.type == bridge_type


# ---------------------------------------------------------------------------
# Version resolution
# ---------------------------------------------------------------------------


def test_exact_version_wins():
    v1 = bridge_registry.resolve_bridge(AccountIdentity("js", "1", "ripple", XRP_ADDRESS))
    v2 = bridge_registry.resolve_bridge(AccountIdentity("js", "2", "ripple", XRP_ADDRESS))
    assert v1.version == "1"
    assert v2.version == "2"
    assert v1 is not v2


def test_newer_requested_version_falls_back_to_latest_compatible():
    bridge = bridge_registry.resolve_bridge(AccountIdentity("js", "7", "ripple", XRP_ADDRESS))
    assert bridge.version == "2"

    bridge = bridge_registry.resolve_bridge(AccountIdentity("js", "3", "bitcoin", BTC_ADDRESS))
    assert bridge.version == "1"


@pytest.mark.parametrize("version", ["0", "beta", "²"])
def test_no_compatible_version(version):
    with pytest.raises(UnsupportedBridge):
        bridge_registry.resolve_bridge(AccountIdentity("js", version, "bitcoin", BTC_ADDRESS))


def test_unknown_type_is_unsupported():
    with pytest.raises(UnsupportedBridge) as excinfo:
        bridge_registry.resolve_bridge(AccountIdentity("libcore", "1", "bitcoin", BTC_ADDRESS))
    assert excinfo.value.context["type"] == "libcore"


def test_unknown_currency_is_unsupported():
    with pytest.raises(UnsupportedBridge):
        bridge_registry.resolve_bridge(AccountIdentity("js", "1", "dogecoin", "DAddress"))


def test_malformed_account_id():
    account = Account(id="not-an-account-id", currency_id="bitcoin", fresh_address=BTC_ADDRESS, balance=Decimal(0))
    with pytest.raises(MalformedIdentity):
        bridge_registry.get_account_bridge(account)


# ---------------------------------------------------------------------------
# Custom tables
# ---------------------------------------------------------------------------


def test_register_into_private_table():
    table = {}
    v1 = btc_bridge.make_bridge(fixed_client(FakeEsploraClient()), bridge_type="test", version="1")
    v3 = btc_bridge.make_bridge(fixed_client(FakeEsploraClient()), bridge_type="test", version="3")
    bridge_registry.register_bridge(v1, table)
    bridge_registry.register_bridge(v3, table)

    assert bridge_registry.resolve_bridge(AccountIdentity("test", "2", "bitcoin", BTC_ADDRESS), table) is v1
    assert bridge_registry.resolve_bridge(AccountIdentity("test", "4", "bitcoin", BTC_ADDRESS), table) is v3
    assert bridge_registry.list_bridges(table) == [v1, v3]
    assert ("bitcoin", "test", "1") not in {b.key for b in bridge_registry.list_bridges()}

    with pytest.raises(UnsupportedBridge):
        bridge_registry.resolve_bridge(AccountIdentity("test", "1", "ethereum", ETH_ADDRESS), table)


def test_build_default_bridges_does_not_touch_the_network(monkeypatch):
    def _fail(*_args, **_kwargs):
        raise AssertionError("network access during bridge construction")

    monkeypatch.setattr(requests, "get", _fail)
    monkeypatch.setattr(requests, "post", _fail)

    bridges = bridge_registry.build_default_bridges(bridge_registry.BridgeConfig())
    assert len(bridges) == 7
