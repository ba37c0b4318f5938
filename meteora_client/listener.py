"""Polling price listener that pushes notable moves onto per-mint queues."""
from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional

from solders.pubkey import Pubkey

from .config import LISTENER_CHANGE_THRESHOLD, LISTENER_INTERVAL_SECONDS, LISTENER_QUEUE_SIZE
from .errors import MeteoraError
from .models import TokenPrice
from .price import PriceEngine

logger = logging.getLogger(__name__)


class PriceListener:
    """Polls the current price of every subscribed mint.

    A notification goes out on the first observation of a mint and whenever
    the native price moves more than ``change_threshold`` from the last
    notified value. Slow consumers lose updates; the queue never blocks the poll.
    """

    def __init__(
        self,
        price_engine: PriceEngine,
        change_threshold: float = LISTENER_CHANGE_THRESHOLD,
        queue_size: int = LISTENER_QUEUE_SIZE,
    ):
        self.price_engine = price_engine
        self.change_threshold = change_threshold
        self.queue_size = queue_size
        self._queues: Dict[Pubkey, asyncio.Queue] = {}
        self._last_prices: Dict[Pubkey, float] = {}
        self._running = False

    def subscribe(self, mint: Pubkey) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._queues[mint] = queue
        return queue

    def unsubscribe(self, mint: Pubkey) -> None:
        self._queues.pop(mint, None)
        self._last_prices.pop(mint, None)

    @property
    def subscription_count(self) -> int:
        return len(self._queues)

    @property
    def running(self) -> bool:
        return self._running

    def _should_notify(self, mint: Pubkey, price: TokenPrice) -> bool:
        last = self._last_prices.get(mint)
        if last is None or last == 0:
            return True
        return abs(price.sol_price - last) / last > self.change_threshold

    def _notify(self, mint: Pubkey, price: TokenPrice) -> bool:
        queue = self._queues.get(mint)
        if queue is None:
            return False
        try:
            queue.put_nowait(price)
        except asyncio.QueueFull:
            logger.debug("Dropping price update for %s: queue full", mint)
            return False
        self._last_prices[mint] = price.sol_price
        return True

    async def poll_once(self) -> int:
        """Check every subscribed mint once; return the number of notifications sent."""
        sent = 0
        for mint in list(self._queues):
            try:
                price = await self.price_engine.current_price(mint)
            except MeteoraError as exc:
                logger.warning("Price poll failed for %s: %s", mint, exc)
                continue
            if self._should_notify(mint, price) and self._notify(mint, price):
                sent += 1
        return sent

    async def start_listening(self, interval: Optional[float] = None) -> None:
        interval = LISTENER_INTERVAL_SECONDS if interval is None else interval
        self._running = True
        logger.info("Price listener started for %d mints", self.subscription_count)
        while self._running:
            await self.poll_once()
            await asyncio.sleep(interval)
        logger.info("Price listener stopped")

    def stop(self) -> None:
        self._running = False
