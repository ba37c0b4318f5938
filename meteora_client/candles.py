"""Synthetic OHLCV candles built from pool state.

There is no trade replay here. Swap events are estimated from the pool's
current reserves with bounded jitter, and timestamps come from the block
times of recent signatures touching the pool. When no events can be
estimated the series is a random walk anchored on the current spot price.
Treat the output as a best-effort chart, not market history.
"""
from __future__ import annotations

import asyncio
import logging
import math
import time
from collections import deque
from typing import Callable, Deque, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from solders.pubkey import Pubkey
from solders.signature import Signature

from .config import FeedSettings
from .errors import ErrorKind, MeteoraError
from .models import CandleStick, PoolInfo, SwapEvent, TimeFrame
from .pools import PoolManager
from .price import PriceEngine, pool_price

logger = logging.getLogger(__name__)

EVENT_PRICE_JITTER = 0.05
EVENT_VOLUME_DIVISOR = 1000.0
EVENT_TIME_SPREAD_SECONDS = 86400
GAP_BAND = 0.01
WALK_DAILY_VOLATILITY = 0.02
WALK_WICK = 0.015
WALK_VOLUME_FRACTION = 0.01


class HistoricalCache:
    """Bounded candle series per (mint, frame) and a refresh stamp per mint."""

    def __init__(self, max_candles: int = 1000, clock: Callable[[], float] = time.time):
        self.max_candles = max_candles
        self._clock = clock
        self._lock = asyncio.Lock()
        self._series: Dict[Tuple[Pubkey, TimeFrame], Deque[CandleStick]] = {}
        self._last_fetch: Dict[Pubkey, float] = {}

    async def should_refresh(self, mint: Pubkey, ttl: float) -> bool:
        async with self._lock:
            last = self._last_fetch.get(mint)
        return last is None or self._clock() - last > ttl

    async def get_cached_prices(
        self, mint: Pubkey, time_frame: TimeFrame, limit: int
    ) -> Optional[List[CandleStick]]:
        """Most recent ``limit`` candles, or ``None`` if fewer are cached."""
        async with self._lock:
            series = self._series.get((mint, time_frame))
            if series is None or len(series) < limit:
                return None
            return list(series)[-limit:]

    async def update_cache(
        self, mint: Pubkey, time_frame: TimeFrame, candles: Sequence[CandleStick]
    ) -> None:
        async with self._lock:
            series = self._series.setdefault((mint, time_frame), deque())
            incoming = {candle.key for candle in candles}
            kept = [candle for candle in series if candle.key not in incoming]
            # A refresh may return candles older than what is cached
            merged = sorted(kept + list(candles), key=lambda candle: candle.timestamp)
            series.clear()
            series.extend(merged)
            while len(series) > self.max_candles:
                series.popleft()
            self._last_fetch[mint] = self._clock()


def bucket_events(events: Sequence[SwapEvent], time_frame: TimeFrame) -> List[CandleStick]:
    """Group events into frame-aligned candles, oldest first."""
    frame_seconds = time_frame.seconds
    buckets: Dict[int, List[SwapEvent]] = {}
    for event in sorted(events, key=lambda e: e.timestamp):
        bucket = event.timestamp // frame_seconds * frame_seconds
        buckets.setdefault(bucket, []).append(event)

    candles = []
    for timestamp, group in buckets.items():
        prices = [event.price for event in group]
        candles.append(
            CandleStick(
                open=prices[0],
                high=max(prices),
                low=min(prices),
                close=prices[-1],
                volume=sum(event.volume_usd for event in group),
                timestamp=timestamp,
                time_frame=time_frame,
            )
        )
    return candles


def interpolate_price(candles: Sequence[CandleStick], target_time: int) -> Optional[float]:
    """Linear interpolation between the closes surrounding ``target_time``.

    ``candles`` must be sorted by timestamp. With only one side available the
    nearest close is returned.
    """
    before = None
    after = None
    for candle in candles:
        if candle.timestamp <= target_time:
            before = candle
        if candle.timestamp >= target_time and after is None:
            after = candle
    if before is not None and after is not None and before.timestamp != after.timestamp:
        ratio = (target_time - before.timestamp) / (after.timestamp - before.timestamp)
        return before.close + (after.close - before.close) * ratio
    if before is not None:
        return before.close
    if after is not None:
        return after.close
    return None


def fill_gaps(
    candles: Sequence[CandleStick], time_frame: TimeFrame, limit: int, now: int
) -> List[CandleStick]:
    """Build the ``limit`` frame slots ending at the current bucket.

    Slots with no candle get an interpolated close, a +/-1% band and zero volume.
    """
    frame_seconds = time_frame.seconds
    end = now // frame_seconds * frame_seconds
    start = end - (limit - 1) * frame_seconds
    existing = {candle.timestamp: candle for candle in candles}

    timeline = []
    for timestamp in range(start, end + 1, frame_seconds):
        candle = existing.get(timestamp)
        if candle is None:
            price = interpolate_price(candles, timestamp)
            if price is None:
                price = 1.0
            candle = CandleStick(
                open=price,
                high=price * (1 + GAP_BAND),
                low=price * (1 - GAP_BAND),
                close=price,
                volume=0.0,
                timestamp=timestamp,
                time_frame=time_frame,
            )
        timeline.append(candle)
    return timeline


def candles_to_frame(candles: Sequence[CandleStick]) -> pd.DataFrame:
    rows = [
        {
            "timestamp": candle.timestamp,
            "open": candle.open,
            "high": candle.high,
            "low": candle.low,
            "close": candle.close,
            "volume": candle.volume,
            "time_frame": candle.time_frame.value,
        }
        for candle in candles
    ]
    df = pd.DataFrame(rows, columns=["timestamp", "open", "high", "low", "close", "volume", "time_frame"])
    df["datetime"] = pd.to_datetime(df["timestamp"], unit="s", utc=True)
    return df


class CandleSynthesizer:
    """Serves candle series per (mint, frame), recomputing them when the cache is stale."""

    def __init__(
        self,
        pool_manager: PoolManager,
        price_engine: PriceEngine,
        settings: Optional[FeedSettings] = None,
        cache: Optional[HistoricalCache] = None,
        seed: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.pool_manager = pool_manager
        self.price_engine = price_engine
        self.settings = settings or pool_manager.settings
        self._clock = clock
        self.cache = cache or HistoricalCache(self.settings.max_cached_candles, clock=clock)
        self.rng = np.random.default_rng(seed)

    async def get_historical_prices(
        self, mint: Pubkey, time_frame: TimeFrame, limit: int
    ) -> List[CandleStick]:
        if limit <= 0:
            raise MeteoraError(ErrorKind.INVALID_INPUT, "limit must be positive")

        if not await self.cache.should_refresh(mint, self.settings.history_cache_ttl):
            cached = await self.cache.get_cached_prices(mint, time_frame, limit)
            if cached is not None:
                logger.debug("Candle cache hit for %s %s", mint, time_frame)
                return cached

        candles = await self._synthesize(mint, time_frame, limit)
        await self.cache.update_cache(mint, time_frame, candles)
        return candles

    async def _synthesize(self, mint: Pubkey, time_frame: TimeFrame, limit: int) -> List[CandleStick]:
        pools = await self.pool_manager.find_pools_for_token(mint)
        if not pools:
            raise MeteoraError(ErrorKind.NO_LIQUIDITY_POOL_FOUND, f"no pool holds {mint}")

        events: List[SwapEvent] = []
        for pool in pools[: self.settings.max_history_pools]:
            try:
                events.extend(await self.estimate_pool_events(pool, mint, limit * 2))
            except MeteoraError as exc:
                logger.debug("No events from pool %s: %s", pool.address, exc)

        if not events:
            logger.info("No swap events for %s, generating a random walk", mint)
            return await self.random_walk(mint, time_frame, limit)

        candles = bucket_events(events, time_frame)
        if len(candles) < limit:
            candles = fill_gaps(candles, time_frame, limit, int(self._clock()))
        return candles[-limit:]

    async def estimate_pool_events(
        self, pool: PoolInfo, mint: Pubkey, max_events: int
    ) -> List[SwapEvent]:
        """Estimate one event per recent successful signature on the pool."""
        client = self.pool_manager.client
        try:
            signatures = await client.get_signatures_for_address(pool.address, max_events)
        except MeteoraError as exc:
            logger.warning("Failed to get signatures for pool %s: %s", pool.address, exc)
            return []
        signatures = signatures[:max_events]
        if not signatures:
            return []

        spot = pool_price(pool, mint)
        reference = await self.price_engine.reference_price()
        block_times = await self._block_times(signatures)

        now = int(self._clock())
        base_volume = pool.liquidity / EVENT_VOLUME_DIVISOR
        output_mint = pool.other_mint(mint)
        events = []
        for block_time in block_times:
            if block_time is None:
                block_time = now - int(self.rng.integers(0, EVENT_TIME_SPREAD_SECONDS))
            price = spot * (1.0 + (self.rng.random() - 0.5) * EVENT_PRICE_JITTER * 2.0)
            volume = base_volume * (0.1 + self.rng.random() * 0.9)
            events.append(
                SwapEvent(
                    timestamp=block_time,
                    input_mint=mint,
                    output_mint=output_mint,
                    input_amount=int(volume * 0.5),
                    output_amount=int(volume * 0.5 / price),
                    price=price,
                    volume_usd=volume * reference,
                )
            )
        return events

    async def _block_times(self, signatures: Sequence[Signature]) -> List[Optional[int]]:
        client = self.pool_manager.client
        semaphore = asyncio.Semaphore(self.settings.fanout_concurrency)

        async def lookup(signature: Signature) -> Optional[int]:
            async with semaphore:
                try:
                    return await client.get_transaction_block_time(signature)
                except MeteoraError as exc:
                    logger.debug("No block time for %s: %s", signature, exc)
                    return None

        return list(await asyncio.gather(*(lookup(signature) for signature in signatures)))

    async def random_walk(self, mint: Pubkey, time_frame: TimeFrame, limit: int) -> List[CandleStick]:
        """Walk backwards from the current spot price with frame-scaled volatility."""
        try:
            current = await self.price_engine.current_price(mint)
        except MeteoraError as exc:
            raise MeteoraError(
                ErrorKind.NO_HISTORICAL_DATA, f"no events and no current price for {mint}: {exc.message}"
            ) from exc

        frame_seconds = time_frame.seconds
        end = int(self._clock()) // frame_seconds * frame_seconds
        volatility = WALK_DAILY_VOLATILITY * math.sqrt(frame_seconds / 86400)

        candles = []
        close = current.sol_price
        for step in range(limit):
            change = 1.0 + (self.rng.random() - 0.5) * volatility * 2.0
            open_ = close / change
            volume = current.liquidity * (0.5 + self.rng.random() * 0.5) * WALK_VOLUME_FRACTION
            candles.append(
                CandleStick(
                    open=open_,
                    high=max(open_, close) * (1.0 + self.rng.random() * WALK_WICK),
                    low=min(open_, close) * (1.0 - self.rng.random() * WALK_WICK),
                    close=close,
                    volume=volume,
                    timestamp=end - step * frame_seconds,
                    time_frame=time_frame,
                )
            )
            close = open_
        candles.reverse()
        return candles
