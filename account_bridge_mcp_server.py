#!/usr/bin/env python3
"""
MCP server for the account bridges.

Exposes identity encoding, account sync, transaction building, preparation
and validation as MCP tools. Accounts and transactions travel as raw JSON
snapshots (see accounts.account_to_raw and transactions.transaction_to_raw).
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any, List

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from account_id import AccountIdentity, decode_account_id, encode_account_id
from account_sync import sync_account
from accounts import Account, account_from_raw, account_to_raw, switch_account_bridge
from bridge_config import BridgeConfig
from bridge_registry import get_account_bridge, list_bridges
from currencies import find_currency
from transactions import Transaction, status_to_raw, transaction_from_raw, transaction_to_raw

logger = logging.getLogger(__name__)

app = Server("account_bridge")

_ACCOUNT_SCHEMA = {"type": "object", "description": "Raw account snapshot."}
_TRANSACTION_SCHEMA = {"type": "object", "description": "Raw transaction snapshot."}


def _error_response(message: str) -> List[TextContent]:
    return [TextContent(type="text", text=json.dumps({"success": False, "error": message}))]


def _success_response(**fields: Any) -> List[TextContent]:
    return [TextContent(type="text", text=json.dumps({"success": True, **fields}))]


def _parse_account(arguments: dict[str, Any]) -> Account:
    raw = arguments.get("account")
    if raw is None:
        raise ValueError("Missing account.")
    return account_from_raw(raw)


def _parse_transaction(arguments: dict[str, Any], account: Account) -> Transaction:
    raw = arguments.get("transaction")
    if raw is None:
        raise ValueError("Missing transaction.")
    transaction = transaction_from_raw(raw)
    if transaction.family != account.family:
        raise ValueError(
            f"Transaction family {transaction.family!r} does not match account family {account.family!r}."
        )
    return transaction


@app.list_tools()
async def list_tools() -> List[Tool]:
    return [
        Tool(
            name="bridge_list_bridges",
            description="List the registered account bridges (family, type, version).",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="bridge_encode_account_id",
            description="Encode an account identity into an account id string.",
            inputSchema={
                "type": "object",
                "properties": {
                    "type": {"type": "string", "description": "Bridge type, e.g. js or mock."},
                    "version": {"type": "string", "description": "Bridge version, e.g. 1."},
                    "currency_id": {"type": "string", "description": "Currency id, e.g. bitcoin."},
                    "xpub_or_address": {"type": "string"},
                    "derivation_mode": {
                        "type": "string",
                        "description": "Derivation mode: '', segwit, native_segwit or taproot.",
                    },
                },
                "required": ["type", "version", "currency_id", "xpub_or_address"],
            },
        ),
        Tool(
            name="bridge_decode_account_id",
            description="Decode an account id string into its identity fields.",
            inputSchema={
                "type": "object",
                "properties": {"account_id": {"type": "string"}},
                "required": ["account_id"],
            },
        ),
        Tool(
            name="bridge_switch_account_bridge",
            description="Rebind an account to another bridge type/version.",
            inputSchema={
                "type": "object",
                "properties": {
                    "account": _ACCOUNT_SCHEMA,
                    "type": {"type": "string"},
                    "version": {"type": "string", "description": "Defaults to 1."},
                },
                "required": ["account", "type"],
            },
        ),
        Tool(
            name="bridge_sync_account",
            description="Synchronize an account with the chain and return the updated snapshot.",
            inputSchema={
                "type": "object",
                "properties": {
                    "account": _ACCOUNT_SCHEMA,
                    "should_clear_cache": {
                        "type": "boolean",
                        "description": "Resync from scratch and replace the operation history.",
                    },
                },
                "required": ["account"],
            },
        ),
        Tool(
            name="bridge_create_transaction",
            description="Create the empty transaction draft for an account.",
            inputSchema={
                "type": "object",
                "properties": {"account": _ACCOUNT_SCHEMA},
                "required": ["account"],
            },
        ),
        Tool(
            name="bridge_prepare_transaction",
            description="Fill network fees and derived fields of a transaction draft.",
            inputSchema={
                "type": "object",
                "properties": {"account": _ACCOUNT_SCHEMA, "transaction": _TRANSACTION_SCHEMA},
                "required": ["account", "transaction"],
            },
        ),
        Tool(
            name="bridge_get_transaction_status",
            description="Validate a transaction against an account and estimate its fees.",
            inputSchema={
                "type": "object",
                "properties": {"account": _ACCOUNT_SCHEMA, "transaction": _TRANSACTION_SCHEMA},
                "required": ["account", "transaction"],
            },
        ),
    ]


@app.call_tool()
async def call_tool(name: str, arguments: Any) -> List[TextContent]:
    if not isinstance(arguments, dict):
        return _error_response("Invalid arguments. Expected an object.")

    if name == "bridge_list_bridges":
        return await _handle_list_bridges()
    if name == "bridge_encode_account_id":
        return await _handle_encode_account_id(arguments)
    if name == "bridge_decode_account_id":
        return await _handle_decode_account_id(arguments)
    if name == "bridge_switch_account_bridge":
        return await _handle_switch_account_bridge(arguments)
    if name == "bridge_sync_account":
        return await _handle_sync_account(arguments)
    if name == "bridge_create_transaction":
        return await _handle_create_transaction(arguments)
    if name == "bridge_prepare_transaction":
        return await _handle_prepare_transaction(arguments)
    if name == "bridge_get_transaction_status":
        return await _handle_get_transaction_status(arguments)

    return _error_response(f"Unknown tool: {name}")


async def _handle_list_bridges() -> List[TextContent]:
    bridges = [{"family": b.family, "type": b.type, "version": b.version} for b in list_bridges()]
    return _success_response(bridges=bridges)


async def _handle_encode_account_id(arguments: dict[str, Any]) -> List[TextContent]:
    try:
        identity = AccountIdentity(
            type=arguments.get("type") or "",
            version=str(arguments.get("version") or ""),
            currency_id=arguments.get("currency_id") or "",
            xpub_or_address=arguments.get("xpub_or_address") or "",
            derivation_mode=arguments.get("derivation_mode") or "",
        )
        return _success_response(account_id=encode_account_id(identity))
    except Exception as exc:  # noqa: BLE001
        return _error_response(str(exc))


async def _handle_decode_account_id(arguments: dict[str, Any]) -> List[TextContent]:
    account_id = arguments.get("account_id")
    if not account_id:
        return _error_response("Missing account_id.")

    try:
        identity = decode_account_id(account_id)
        currency = find_currency(identity.currency_id)
        return _success_response(
            type=identity.type,
            version=identity.version,
            currency_id=identity.currency_id,
            xpub_or_address=identity.xpub_or_address,
            derivation_mode=identity.derivation_mode,
            family=currency.family if currency else None,
        )
    except Exception as exc:  # noqa: BLE001
        return _error_response(str(exc))


async def _handle_switch_account_bridge(arguments: dict[str, Any]) -> List[TextContent]:
    bridge_type = (arguments.get("type") or "").strip()
    if not bridge_type:
        return _error_response("Missing type.")

    try:
        account = _parse_account(arguments)
        switched = switch_account_bridge(account, bridge_type, str(arguments.get("version") or "1"))
        return _success_response(account=account_to_raw(switched))
    except Exception as exc:  # noqa: BLE001
        return _error_response(str(exc))


async def _handle_sync_account(arguments: dict[str, Any]) -> List[TextContent]:
    try:
        account = _parse_account(arguments)
        bridge = get_account_bridge(account)
        synced = await sync_account(bridge, account, bool(arguments.get("should_clear_cache", False)))
        return _success_response(account=account_to_raw(synced))
    except Exception as exc:  # noqa: BLE001
        logger.warning(f"Sync failed: {exc}")
        return _error_response(str(exc))


async def _handle_create_transaction(arguments: dict[str, Any]) -> List[TextContent]:
    try:
        account = _parse_account(arguments)
        bridge = get_account_bridge(account)
        return _success_response(transaction=transaction_to_raw(bridge.create_transaction(account)))
    except Exception as exc:  # noqa: BLE001
        return _error_response(str(exc))


async def _handle_prepare_transaction(arguments: dict[str, Any]) -> List[TextContent]:
    try:
        account = _parse_account(arguments)
        transaction = _parse_transaction(arguments, account)
        bridge = get_account_bridge(account)
        prepared = await bridge.prepare_transaction(account, transaction)
        return _success_response(transaction=transaction_to_raw(prepared))
    except Exception as exc:  # noqa: BLE001
        return _error_response(str(exc))


async def _handle_get_transaction_status(arguments: dict[str, Any]) -> List[TextContent]:
    try:
        account = _parse_account(arguments)
        transaction = _parse_transaction(arguments, account)
        bridge = get_account_bridge(account)
        status = await bridge.get_transaction_status(account, transaction)
        return _success_response(status=status_to_raw(status), is_valid=status.is_valid)
    except Exception as exc:  # noqa: BLE001
        return _error_response(str(exc))


async def main() -> None:
    cfg = BridgeConfig.from_env()
    # stdout carries the MCP protocol
    logging.basicConfig(
        stream=sys.stderr,
        level=getattr(logging, cfg.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    async with stdio_server() as (read_stream, write_stream):
        await app.run(read_stream, write_stream, app.create_initialization_options())


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
