"""Data records shared across discovery, pricing and trading."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from solders.pubkey import Pubkey

from .errors import ErrorKind, MeteoraError


class TimeFrame(str, Enum):
    """Candle width, labelled the way the CLI accepts it."""

    M1 = "1m"
    M5 = "5m"
    M15 = "15m"
    H1 = "1h"
    H4 = "4h"
    D1 = "1d"

    @property
    def seconds(self) -> int:
        return _TIMEFRAME_SECONDS[self]

    @classmethod
    def from_label(cls, label: str) -> "TimeFrame":
        try:
            return cls(label.lower())
        except ValueError:
            choices = ", ".join(frame.value for frame in cls)
            raise ValueError(f"Unknown time frame {label!r} (expected one of {choices})") from None

    def __str__(self) -> str:
        return self.value


_TIMEFRAME_SECONDS = {
    TimeFrame.M1: 60,
    TimeFrame.M5: 300,
    TimeFrame.M15: 900,
    TimeFrame.H1: 3600,
    TimeFrame.H4: 14400,
    TimeFrame.D1: 86400,
}


@dataclass(frozen=True)
class PoolInfo:
    """Snapshot of a pool and the balances of its referenced accounts.

    Reserve amounts, decimals and LP supply come from a single multi-account
    fetch, so they always describe the same instant.
    """

    address: Pubkey
    token_a_mint: Pubkey
    token_b_mint: Pubkey
    token_a_reserve: Pubkey
    token_b_reserve: Pubkey
    lp_mint: Pubkey
    fee_account: Pubkey
    trade_fee_bps: int
    token_a_decimals: int
    token_b_decimals: int
    token_a_reserve_amount: int
    token_b_reserve_amount: int
    lp_supply: int

    @property
    def liquidity(self) -> int:
        """Raw reserve total, both sides summed in base units."""
        return self.token_a_reserve_amount + self.token_b_reserve_amount

    def contains(self, mint: Pubkey) -> bool:
        return mint == self.token_a_mint or mint == self.token_b_mint

    def _require_side(self, mint: Pubkey) -> None:
        if not self.contains(mint):
            raise MeteoraError(ErrorKind.INVALID_INPUT, f"{mint} is not a side of pool {self.address}")

    def matches_pair(self, mint_x: Pubkey, mint_y: Pubkey) -> bool:
        return (self.token_a_mint == mint_x and self.token_b_mint == mint_y) or (
            self.token_a_mint == mint_y and self.token_b_mint == mint_x
        )

    def reserves_for(self, input_mint: Pubkey) -> Tuple[int, int]:
        """Return ``(reserve_in, reserve_out)`` when swapping ``input_mint``."""
        self._require_side(input_mint)
        if input_mint == self.token_a_mint:
            return self.token_a_reserve_amount, self.token_b_reserve_amount
        return self.token_b_reserve_amount, self.token_a_reserve_amount

    def reserve_accounts_for(self, input_mint: Pubkey) -> Tuple[Pubkey, Pubkey]:
        self._require_side(input_mint)
        if input_mint == self.token_a_mint:
            return self.token_a_reserve, self.token_b_reserve
        return self.token_b_reserve, self.token_a_reserve

    def other_mint(self, mint: Pubkey) -> Pubkey:
        return self.token_b_mint if mint == self.token_a_mint else self.token_a_mint

    def normalized_reserves(self) -> Tuple[float, float]:
        return (
            self.token_a_reserve_amount / 10 ** self.token_a_decimals,
            self.token_b_reserve_amount / 10 ** self.token_b_decimals,
        )


@dataclass(frozen=True)
class TokenPrice:
    token_mint: Pubkey
    sol_price: float
    usd_price: float
    timestamp: int
    liquidity: int


@dataclass(frozen=True)
class CandleStick:
    """OHLCV bar whose timestamp is the start of its frame."""

    open: float
    high: float
    low: float
    close: float
    volume: float
    timestamp: int
    time_frame: TimeFrame

    @property
    def key(self) -> Tuple[int, TimeFrame]:
        return self.timestamp, self.time_frame


@dataclass(frozen=True)
class SwapEvent:
    """Estimated swap derived from pool state; not a decoded on-chain trade."""

    timestamp: int
    input_mint: Pubkey
    output_mint: Pubkey
    input_amount: int
    output_amount: int
    price: float
    volume_usd: float


@dataclass(frozen=True)
class TradeParams:
    input_mint: Pubkey
    output_mint: Pubkey
    amount_in: int
    slippage_bps: int
    user: Pubkey


@dataclass(frozen=True)
class TradeQuote:
    amount_out: int
    min_amount_out: int
    price_impact: float
    fee_amount: int
    route: Tuple[Pubkey, ...]


@dataclass(frozen=True)
class SwapSimulation:
    success: bool
    logs: List[str] = field(default_factory=list)
    units_consumed: int = 0
    price_impact: float = 0.0
    actual_output: int = 0


@dataclass(frozen=True)
class TokenMetadata:
    name: str
    symbol: str
    uri: str


@dataclass(frozen=True)
class TokenInfo:
    mint: Pubkey
    decimals: int
    supply: int
    holder_count: int
    metadata: Optional[TokenMetadata] = None
