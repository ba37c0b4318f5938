"""Spot and liquidity-weighted prices from pool reserves."""
from __future__ import annotations

import logging
import time
from typing import Callable, List, Optional, Tuple

from solders.pubkey import Pubkey

from .config import USDC_MINT, WSOL_MINT, FeedSettings
from .errors import ErrorKind, MeteoraError
from .models import PoolInfo, TokenPrice
from .pools import PoolManager

logger = logging.getLogger(__name__)


def pool_price(pool: PoolInfo, mint: Pubkey) -> float:
    """Units of the pool's other token per unit of ``mint``, decimals applied."""
    normalized_a, normalized_b = pool.normalized_reserves()
    if mint == pool.token_a_mint:
        numerator, denominator = normalized_b, normalized_a
    else:
        numerator, denominator = normalized_a, normalized_b
    if numerator == 0 or denominator == 0:
        raise MeteoraError(ErrorKind.INVALID_PRICE, f"pool {pool.address} has an empty reserve")
    return numerator / denominator


class PriceEngine:
    """Prices a token against the pools that hold it.

    ``sol_price`` is the reserve ratio against the pool's counter token and
    ``usd_price`` scales it by the SOL/USDC reference price.
    """

    def __init__(
        self,
        pool_manager: PoolManager,
        settings: Optional[FeedSettings] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.pool_manager = pool_manager
        self.settings = settings or pool_manager.settings
        self._clock = clock
        self.native_mint = Pubkey.from_string(WSOL_MINT)
        self.stable_mint = Pubkey.from_string(USDC_MINT)

    async def reference_price(self) -> float:
        """SOL priced in USDC from the first SOL/USDC pool, or the configured fallback."""
        fallback = self.settings.fallback_sol_usd_price
        try:
            pools = await self.pool_manager.find_pools_for_pair(self.native_mint, self.stable_mint)
            if not pools:
                logger.warning("No SOL/USDC pool found, using fallback price %.2f", fallback)
                return fallback
            return pool_price(pools[0], self.native_mint)
        except MeteoraError as exc:
            logger.warning("Reference price lookup failed (%s), using fallback %.2f", exc, fallback)
            return fallback

    async def spot_price(self, pool: PoolInfo, mint: Pubkey) -> Tuple[float, float]:
        """Return ``(sol_price, usd_price)`` for ``mint`` in one pool."""
        price = pool_price(pool, mint)
        return price, price * await self.reference_price()

    async def weighted_price(self, mint: Pubkey) -> TokenPrice:
        """Liquidity-weighted mean across every pool holding ``mint``, ignoring dust pools."""
        pools = await self.pool_manager.find_pools_for_token(mint)
        if not pools:
            raise MeteoraError(ErrorKind.NO_LIQUIDITY_POOL_FOUND, f"no pool holds {mint}")

        weighted: List[Tuple[float, int]] = []
        for pool in pools:
            liquidity = pool.liquidity
            if liquidity <= self.settings.min_pool_liquidity:
                logger.debug("Ignoring dust pool %s (liquidity %d)", pool.address, liquidity)
                continue
            try:
                weighted.append((pool_price(pool, mint), liquidity))
            except MeteoraError as exc:
                logger.debug("Ignoring pool %s: %s", pool.address, exc)

        if not weighted:
            raise MeteoraError(
                ErrorKind.NO_LIQUIDITY_POOL_FOUND, f"no pool for {mint} above the liquidity floor"
            )

        total_liquidity = sum(liquidity for _, liquidity in weighted)
        sol_price = sum(price * liquidity for price, liquidity in weighted) / total_liquidity
        usd_price = sol_price * await self.reference_price()
        return TokenPrice(
            token_mint=mint,
            sol_price=sol_price,
            usd_price=usd_price,
            timestamp=int(self._clock()),
            liquidity=total_liquidity,
        )

    async def current_price(self, mint: Pubkey) -> TokenPrice:
        """Price from the single deepest pool; first discovered wins ties."""
        pools = await self.pool_manager.find_pools_for_token(mint)
        if not pools:
            raise MeteoraError(ErrorKind.NO_LIQUIDITY_POOL_FOUND, f"no pool holds {mint}")

        best: Optional[PoolInfo] = None
        for pool in pools:
            if pool.liquidity > (best.liquidity if best else 0):
                best = pool
        if best is None:
            raise MeteoraError(ErrorKind.NO_LIQUIDITY_POOL_FOUND, f"every pool for {mint} is empty")

        sol_price, usd_price = await self.spot_price(best, mint)
        return TokenPrice(
            token_mint=mint,
            sol_price=sol_price,
            usd_price=usd_price,
            timestamp=int(self._clock()),
            liquidity=best.liquidity,
        )
