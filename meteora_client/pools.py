"""Pool discovery with TTL caching."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Dict, List, Optional, Tuple

from solders.pubkey import Pubkey

from .config import METEORA_PROGRAM_ID, FeedSettings
from .errors import MeteoraError
from .models import PoolInfo
from .reserves import ReserveReader
from .rpc import MeteoraClient

logger = logging.getLogger(__name__)


class PoolCache:
    """Pool address list plus per-pool snapshots, each entry timestamped.

    The lock only guards reads and writes of the maps. Callers fetch outside
    the lock and store afterwards, so two concurrent misses may both fetch;
    the later store wins.
    """

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._lock = asyncio.Lock()
        self._all_pools: List[Pubkey] = []
        self._last_update: Optional[float] = None
        self._pools: Dict[Pubkey, Tuple[PoolInfo, float]] = {}

    def _is_fresh(self, stamp: Optional[float]) -> bool:
        return stamp is not None and self._clock() - stamp < self.ttl

    async def get_pool_list(self) -> Optional[List[Pubkey]]:
        async with self._lock:
            if self._all_pools and self._is_fresh(self._last_update):
                return list(self._all_pools)
        return None

    async def store_pool_list(self, pools: List[Pubkey]) -> None:
        async with self._lock:
            self._all_pools = list(pools)
            self._last_update = self._clock()

    async def get_pool_info(self, address: Pubkey) -> Optional[PoolInfo]:
        async with self._lock:
            entry = self._pools.get(address)
            if entry is not None and self._is_fresh(entry[1]):
                return entry[0]
        return None

    async def store_pool_info(self, pool_info: PoolInfo) -> None:
        async with self._lock:
            self._pools[pool_info.address] = (pool_info, self._clock())


class PoolManager:
    """Enumerates pools owned by the AMM program and serves cached snapshots."""

    def __init__(
        self,
        client: MeteoraClient,
        settings: Optional[FeedSettings] = None,
        cache: Optional[PoolCache] = None,
        program_id: Optional[Pubkey] = None,
    ):
        self.client = client
        self.settings = settings or FeedSettings()
        self.cache = cache or PoolCache(self.settings.pool_cache_ttl)
        self.program_id = program_id or Pubkey.from_string(METEORA_PROGRAM_ID)
        self.reader = ReserveReader(client, trade_fee_bps=self.settings.default_trade_fee_bps)

    async def find_all_pools(self) -> List[Pubkey]:
        """Scan the program without touching the cache."""
        accounts = await self.client.get_program_accounts(self.program_id)
        return [address for address, _ in accounts]

    async def list_all_pools(self) -> List[Pubkey]:
        cached = await self.cache.get_pool_list()
        if cached is not None:
            logger.debug("Pool list cache hit (%d pools)", len(cached))
            return cached
        pools = await self.find_all_pools()
        await self.cache.store_pool_list(pools)
        logger.info("Discovered %d pools for program %s", len(pools), self.program_id)
        return pools

    async def get_pool_info(self, pool_address: Pubkey) -> PoolInfo:
        """Fresh snapshot straight from RPC."""
        return await self.reader.read_pool(pool_address)

    async def get_pool_info_cached(self, pool_address: Pubkey) -> PoolInfo:
        cached = await self.cache.get_pool_info(pool_address)
        if cached is not None:
            return cached
        pool_info = await self.get_pool_info(pool_address)
        await self.cache.store_pool_info(pool_info)
        return pool_info

    async def get_pool_liquidity(self, pool_address: Pubkey) -> int:
        pool_info = await self.get_pool_info_cached(pool_address)
        return pool_info.liquidity

    async def find_pools_for_token(self, mint: Pubkey) -> List[PoolInfo]:
        return await self._scan(lambda pool: pool.contains(mint))

    async def find_pools_for_pair(self, mint_x: Pubkey, mint_y: Pubkey) -> List[PoolInfo]:
        return await self._scan(lambda pool: pool.matches_pair(mint_x, mint_y))

    async def _scan(self, predicate: Callable[[PoolInfo], bool]) -> List[PoolInfo]:
        """Decode every known pool and keep matches, in discovery order.

        Pools that fail to load are treated as non-matching.
        """
        addresses = await self.list_all_pools()
        semaphore = asyncio.Semaphore(self.settings.fanout_concurrency)

        async def load(address: Pubkey) -> Optional[PoolInfo]:
            async with semaphore:
                try:
                    return await self.get_pool_info_cached(address)
                except MeteoraError as exc:
                    logger.debug("Skipping pool %s: %s", address, exc)
                    return None

        loaded = await asyncio.gather(*(load(address) for address in addresses))
        return [pool for pool in loaded if pool is not None and predicate(pool)]
