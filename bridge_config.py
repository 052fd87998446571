"""
Configuration for the account bridges.

Values are sourced from environment variables or a .env file at the project
root:

- BRIDGE_REQUEST_TIMEOUT: HTTP timeout in seconds for every chain lookup (default 10).
- BRIDGE_LOG_LEVEL: log level of the MCP server (default INFO).
- BTC_FEE_TIER: mempool.space tier used as the default fee per byte.
  One of: fastestFee, halfHourFee, hourFee, economyFee, minimumFee.
  Default hourFee to avoid overpaying for non-urgent payments.
- BTC_ESPLORA_URL, BTC_TESTNET_ESPLORA_URL, LTC_ESPLORA_URL: Esplora REST roots.
- ETH_RPC_URL, ETH_SEPOLIA_RPC_URL: Ethereum JSON-RPC endpoints.
- ETHERSCAN_API_URL, ETHERSCAN_API_KEY: Etherscan v2 API used for history.
  Without a key, ethereum history is not synced (balance and nonce still are).
- XRP_RPC_URL: rippled JSON-RPC endpoint.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from bridge_errors import BridgeConfigError

PROJECT_ROOT = Path(__file__).resolve().parent
load_dotenv(PROJECT_ROOT / ".env")

FEE_TIERS = ("fastestFee", "halfHourFee", "hourFee", "economyFee", "minimumFee")
DEFAULT_FEE_TIER = "hourFee"
DEFAULT_REQUEST_TIMEOUT = 10.0

DEFAULT_ESPLORA_URLS = {
    "bitcoin": "https://mempool.space/api",
    "bitcoin_testnet": "https://mempool.space/testnet/api",
    "litecoin": "https://litecoinspace.org/api",
}

DEFAULT_ETH_RPC_URLS = {
    "ethereum": "https://cloudflare-eth.com",
    "ethereum_sepolia": "https://rpc.sepolia.org",
}

DEFAULT_ETHERSCAN_API_URL = "https://api.etherscan.io/v2/api"
DEFAULT_XRP_RPC_URL = "https://s1.ripple.com:51234/"


@dataclass
class BridgeConfig:
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    fee_tier: str = DEFAULT_FEE_TIER
    esplora_urls: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_ESPLORA_URLS))
    eth_rpc_urls: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_ETH_RPC_URLS))
    etherscan_api_url: str = DEFAULT_ETHERSCAN_API_URL
    etherscan_api_key: str | None = None
    xrp_rpc_url: str = DEFAULT_XRP_RPC_URL
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> BridgeConfig:
        request_timeout = DEFAULT_REQUEST_TIMEOUT
        timeout_env = os.getenv("BRIDGE_REQUEST_TIMEOUT")
        if timeout_env is not None and timeout_env.strip():
            try:
                request_timeout = float(timeout_env)
            except ValueError:
                pass
            if request_timeout <= 0:
                request_timeout = DEFAULT_REQUEST_TIMEOUT

        fee_tier_raw = os.getenv("BTC_FEE_TIER", DEFAULT_FEE_TIER).strip()
        fee_tier = fee_tier_raw if fee_tier_raw in FEE_TIERS else DEFAULT_FEE_TIER

        esplora_urls = dict(DEFAULT_ESPLORA_URLS)
        for currency_id, env_name in (
            ("bitcoin", "BTC_ESPLORA_URL"),
            ("bitcoin_testnet", "BTC_TESTNET_ESPLORA_URL"),
            ("litecoin", "LTC_ESPLORA_URL"),
        ):
            if url := os.getenv(env_name, "").strip():
                esplora_urls[currency_id] = url.rstrip("/")

        eth_rpc_urls = dict(DEFAULT_ETH_RPC_URLS)
        for currency_id, env_name in (
            ("ethereum", "ETH_RPC_URL"),
            ("ethereum_sepolia", "ETH_SEPOLIA_RPC_URL"),
        ):
            if url := os.getenv(env_name, "").strip():
                eth_rpc_urls[currency_id] = url

        return cls(
            request_timeout=request_timeout,
            fee_tier=fee_tier,
            esplora_urls=esplora_urls,
            eth_rpc_urls=eth_rpc_urls,
            etherscan_api_url=os.getenv("ETHERSCAN_API_URL", "").strip() or DEFAULT_ETHERSCAN_API_URL,
            etherscan_api_key=os.getenv("ETHERSCAN_API_KEY", "").strip() or None,
            xrp_rpc_url=os.getenv("XRP_RPC_URL", "").strip() or DEFAULT_XRP_RPC_URL,
            log_level=os.getenv("BRIDGE_LOG_LEVEL", "INFO").strip().upper() or "INFO",
        )

    def esplora_url(self, currency_id: str) -> str:
        url = self.esplora_urls.get(currency_id)
        if not url:
            raise BridgeConfigError(f"No Esplora endpoint configured for {currency_id!r}.", currency_id=currency_id)
        return url

    def eth_rpc_url(self, currency_id: str) -> str:
        url = self.eth_rpc_urls.get(currency_id)
        if not url:
            raise BridgeConfigError(f"No Ethereum RPC endpoint configured for {currency_id!r}.", currency_id=currency_id)
        return url
