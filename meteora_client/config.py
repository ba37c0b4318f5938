"""Shared configuration for the Meteora pool client."""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import List

from solana.rpc.commitment import Confirmed

METEORA_PROGRAM_ID = os.getenv("METEORA_PROGRAM_ID", "Eo7WjKq67rjJQSZxS6z3YkapzY3eMj6Xy8X5EQVn5UaB")
METAPLEX_PROGRAM_ID = "metaqbxxUerdq28cj1RbAWkYQm3ybzjb6a8bt518x1s"
TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"

WSOL_MINT = "So11111111111111111111111111111111111111112"
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"

DEFAULT_RPC_ENDPOINTS = [
    "https://api.mainnet-beta.solana.com",
    os.getenv("METEORA_RPC_URL"),
    os.getenv("HELIUS_SOLANA_RPC"),
]

# Filter out None / empty values while preserving order
RPC_ENDPOINTS: List[str] = [endpoint for endpoint in DEFAULT_RPC_ENDPOINTS if endpoint]

if not RPC_ENDPOINTS:
    RPC_ENDPOINTS = ["https://api.mainnet-beta.solana.com"]

DEFAULT_COMMITMENT = Confirmed
RPC_TIMEOUT = float(os.getenv("METEORA_RPC_TIMEOUT", "30"))

# Pool account layout: 8-byte discriminator then six 32-byte keys
POOL_ACCOUNT_MIN_SIZE = 300
DEFAULT_TRADE_FEE_BPS = int(os.getenv("METEORA_DEFAULT_FEE_BPS", "30"))

POOL_CACHE_TTL = float(os.getenv("METEORA_POOL_CACHE_TTL", "300"))
HISTORY_CACHE_TTL = float(os.getenv("METEORA_HISTORY_CACHE_TTL", "300"))
FALLBACK_SOL_USD_PRICE = float(os.getenv("METEORA_FALLBACK_SOL_USD", "100.0"))
MIN_POOL_LIQUIDITY = int(os.getenv("METEORA_MIN_POOL_LIQUIDITY", "1000"))
MAX_SLIPPAGE_BPS = 5000
MAX_CACHED_CANDLES = 1000
MAX_HISTORY_POOLS = int(os.getenv("METEORA_MAX_HISTORY_POOLS", "5"))
FANOUT_CONCURRENCY = int(os.getenv("METEORA_FANOUT_CONCURRENCY", "8"))

CONFIRM_TIMEOUT_SECONDS = int(os.getenv("METEORA_CONFIRM_TIMEOUT", "30"))
FALLBACK_FEE_LAMPORTS = 5000
FALLBACK_FEE_NO_BLOCKHASH_LAMPORTS = 10000

LISTENER_INTERVAL_SECONDS = float(os.getenv("METEORA_LISTENER_INTERVAL", "5"))
LISTENER_CHANGE_THRESHOLD = 0.01
LISTENER_QUEUE_SIZE = 100


@dataclass(frozen=True)
class FeedSettings:
    """Tunables shared by the discovery, pricing and trade components."""

    pool_cache_ttl: float = POOL_CACHE_TTL
    history_cache_ttl: float = HISTORY_CACHE_TTL
    fallback_sol_usd_price: float = FALLBACK_SOL_USD_PRICE
    default_trade_fee_bps: int = DEFAULT_TRADE_FEE_BPS
    min_pool_liquidity: int = MIN_POOL_LIQUIDITY
    max_slippage_bps: int = MAX_SLIPPAGE_BPS
    max_cached_candles: int = MAX_CACHED_CANDLES
    max_history_pools: int = MAX_HISTORY_POOLS
    fanout_concurrency: int = FANOUT_CONCURRENCY
    confirm_timeout_seconds: int = CONFIRM_TIMEOUT_SECONDS

    @classmethod
    def from_env(cls) -> "FeedSettings":
        """Re-read the environment; module constants are frozen at import."""
        return cls(
            pool_cache_ttl=float(os.getenv("METEORA_POOL_CACHE_TTL", str(POOL_CACHE_TTL))),
            history_cache_ttl=float(os.getenv("METEORA_HISTORY_CACHE_TTL", str(HISTORY_CACHE_TTL))),
            fallback_sol_usd_price=float(
                os.getenv("METEORA_FALLBACK_SOL_USD", str(FALLBACK_SOL_USD_PRICE))
            ),
            default_trade_fee_bps=int(os.getenv("METEORA_DEFAULT_FEE_BPS", str(DEFAULT_TRADE_FEE_BPS))),
            min_pool_liquidity=int(os.getenv("METEORA_MIN_POOL_LIQUIDITY", str(MIN_POOL_LIQUIDITY))),
            max_history_pools=int(os.getenv("METEORA_MAX_HISTORY_POOLS", str(MAX_HISTORY_POOLS))),
            fanout_concurrency=int(os.getenv("METEORA_FANOUT_CONCURRENCY", str(FANOUT_CONCURRENCY))),
            confirm_timeout_seconds=int(os.getenv("METEORA_CONFIRM_TIMEOUT", str(CONFIRM_TIMEOUT_SECONDS))),
        )
