import asyncio
import json
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(REPO_ROOT))

import account_bridge_mcp_server as server  # noqa: E402

from bridge_fixtures import BTC_ADDRESS, BTC_RECIPIENT, ETH_ADDRESS  # noqa: E402

MOCK_BTC_ACCOUNT = {
    "id": f"mock:1:bitcoin:{BTC_ADDRESS}:native_segwit",
    "currency_id": "bitcoin",
    "fresh_address": BTC_ADDRESS,
    "balance": "0",
}


def _parse(response):
    return json.loads(response[0].text)


def _call(name, arguments):
    return _parse(asyncio.run(server.call_tool(name, arguments)))


# ---------------------------------------------------------------------------
# Tool listing & dispatch
# ---------------------------------------------------------------------------


def test_list_tools_includes_all_bridge_tools():
    tools = asyncio.run(server.list_tools())
    names = {tool.name for tool in tools}

    assert names == {
        "bridge_list_bridges",
        "bridge_encode_account_id",
        "bridge_decode_account_id",
        "bridge_switch_account_bridge",
        "bridge_sync_account",
        "bridge_create_transaction",
        "bridge_prepare_transaction",
        "bridge_get_transaction_status",
    }


def test_unknown_tool():
    result = _call("bridge_broadcast", {})
    assert result["success"] is False
    assert "Unknown tool" in result["error"]


def test_arguments_must_be_an_object():
    result = _parse(asyncio.run(server.call_tool("bridge_list_bridges", ["nope"])))
    assert result["success"] is False


def test_list_bridges():
    result = _call("bridge_list_bridges", {})
    assert result["success"] is True
    assert {"family": "ripple", "type": "js", "version": "2"} in result["bridges"]


# ---------------------------------------------------------------------------
# Identity tools
# ---------------------------------------------------------------------------


def test_encode_then_decode_account_id():
    encoded = _call(
        "bridge_encode_account_id",
        {"type": "js", "version": "1", "currency_id": "ethereum", "xpub_or_address": ETH_ADDRESS},
    )
    assert encoded == {"success": True, "account_id": f"js:1:ethereum:{ETH_ADDRESS}:"}

    decoded = _call("bridge_decode_account_id", {"account_id": encoded["account_id"]})
    assert decoded["success"] is True
    assert decoded["family"] == "ethereum"
    assert decoded["xpub_or_address"] == ETH_ADDRESS
    assert decoded["derivation_mode"] == ""


def test_decode_malformed_account_id():
    result = _call("bridge_decode_account_id", {"account_id": "js:1:bitcoin"})
    assert result["success"] is False
    assert "5 fields" in result["error"]


def test_switch_account_bridge():
    account = dict(MOCK_BTC_ACCOUNT, id=f"js:1:bitcoin:{BTC_ADDRESS}:native_segwit")
    result = _call("bridge_switch_account_bridge", {"account": account, "type": "mock"})
    assert result["success"] is True
    assert result["account"]["id"] == MOCK_BTC_ACCOUNT["id"]


# ---------------------------------------------------------------------------
# Bridge tools on the mock chain
# ---------------------------------------------------------------------------


def test_sync_prepare_and_validate_on_mock_account():
    synced = _call("bridge_sync_account", {"account": MOCK_BTC_ACCOUNT})
    assert synced["success"] is True
    account = synced["account"]
    assert account["block_height"] > 0
    assert account["bitcoin_resources"]["utxos"]

    created = _call("bridge_create_transaction", {"account": account})
    assert created["transaction"]["family"] == "bitcoin"
    assert created["transaction"]["amount"] == "0"

    draft = dict(created["transaction"], recipient=BTC_RECIPIENT, amount="5000")
    prepared = _call("bridge_prepare_transaction", {"account": account, "transaction": draft})
    assert prepared["success"] is True
    assert prepared["transaction"]["fee_per_byte"] == "10"
    assert prepared["transaction"]["selected_utxos"]

    status = _call("bridge_get_transaction_status", {"account": account, "transaction": prepared["transaction"]})
    assert status["success"] is True
    assert status["is_valid"] is True
    assert status["status"]["recipient_error"] is None
    assert status["status"]["transaction_error"] is None


def test_status_reports_validation_errors_without_failing():
    created = _call("bridge_create_transaction", {"account": MOCK_BTC_ACCOUNT})
    status = _call("bridge_get_transaction_status", {"account": MOCK_BTC_ACCOUNT, "transaction": created["transaction"]})

    assert status["success"] is True
    assert status["is_valid"] is False
    assert status["status"]["recipient_error"]["name"] == "InvalidAddress"
    assert status["status"]["transaction_error"]["name"] == "FeeNotLoaded"


def test_transaction_family_must_match_account():
    transaction = {"family": "ethereum", "amount": "1", "recipient": ETH_ADDRESS}
    result = _call("bridge_get_transaction_status", {"account": MOCK_BTC_ACCOUNT, "transaction": transaction})
    assert result["success"] is False
    assert "does not match" in result["error"]


def test_unsupported_bridge_is_reported():
    account = dict(MOCK_BTC_ACCOUNT, id=f"libcore:1:bitcoin:{BTC_ADDRESS}:")
    result = _call("bridge_create_transaction", {"account": account})
    assert result["success"] is False


def test_missing_account():
    result = _call("bridge_sync_account", {})
    assert result == {"success": False, "error": "Missing account."}
