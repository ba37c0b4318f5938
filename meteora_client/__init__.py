"""Async client for Meteora AMM pools: discovery, pricing, candles and swap quotes."""
from .candles import CandleSynthesizer, HistoricalCache
from .config import FeedSettings
from .errors import ErrorKind, MeteoraError
from .listener import PriceListener
from .models import (
    CandleStick,
    PoolInfo,
    SwapEvent,
    SwapSimulation,
    TimeFrame,
    TokenInfo,
    TokenMetadata,
    TokenPrice,
    TradeParams,
    TradeQuote,
)
from .pools import PoolCache, PoolManager
from .price import PriceEngine
from .rpc import MeteoraClient
from .tokens import TokenManager
from .trade import TradeQuoter, calculate_price_impact, calculate_swap_output

__all__ = [
    "CandleStick",
    "CandleSynthesizer",
    "ErrorKind",
    "FeedSettings",
    "HistoricalCache",
    "MeteoraClient",
    "MeteoraError",
    "PoolCache",
    "PoolInfo",
    "PoolManager",
    "PriceEngine",
    "PriceListener",
    "SwapEvent",
    "SwapSimulation",
    "TimeFrame",
    "TokenInfo",
    "TokenManager",
    "TokenMetadata",
    "TokenPrice",
    "TradeParams",
    "TradeQuote",
    "TradeQuoter",
    "calculate_price_impact",
    "calculate_swap_output",
]
