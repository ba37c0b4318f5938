"""Command-line entry point for pool discovery, pricing, candles and quotes."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

from solders.pubkey import Pubkey

from . import config
from .candles import CandleSynthesizer, candles_to_frame
from .errors import MeteoraError
from .models import PoolInfo, TimeFrame, TokenPrice, TradeParams
from .pools import PoolManager
from .price import PriceEngine
from .rpc import MeteoraClient
from .trade import TradeQuoter

logger = logging.getLogger(__name__)


def parse_pubkey(value: str) -> Pubkey:
    try:
        return Pubkey.from_string(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid address {value!r}") from exc


def pool_row(pool: PoolInfo) -> Dict[str, Any]:
    return {
        "address": str(pool.address),
        "token_a_mint": str(pool.token_a_mint),
        "token_b_mint": str(pool.token_b_mint),
        "token_a_reserve_amount": pool.token_a_reserve_amount,
        "token_b_reserve_amount": pool.token_b_reserve_amount,
        "liquidity": pool.liquidity,
        "trade_fee_bps": pool.trade_fee_bps,
    }


def price_row(price: TokenPrice) -> Dict[str, Any]:
    return {
        "token_mint": str(price.token_mint),
        "sol_price": price.sol_price,
        "usd_price": price.usd_price,
        "liquidity": price.liquidity,
        "timestamp": price.timestamp,
    }


async def cmd_pools(args: argparse.Namespace, manager: PoolManager) -> None:
    if args.pair is not None:
        pools = await manager.find_pools_for_pair(args.token, args.pair)
    else:
        pools = await manager.find_pools_for_token(args.token)
    logger.info("Found %d pools", len(pools))
    print(json.dumps([pool_row(pool) for pool in pools], indent=2))


async def cmd_price(args: argparse.Namespace, manager: PoolManager) -> None:
    engine = PriceEngine(manager)
    if args.weighted:
        price = await engine.weighted_price(args.mint)
    else:
        price = await engine.current_price(args.mint)
    print(json.dumps(price_row(price), indent=2))


async def cmd_candles(args: argparse.Namespace, manager: PoolManager) -> None:
    synthesizer = CandleSynthesizer(manager, PriceEngine(manager), seed=args.seed)
    candles = await synthesizer.get_historical_prices(args.mint, args.frame, args.limit)
    df = candles_to_frame(candles)
    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        df.to_csv(args.output, index=False)
        logger.info("Wrote %d candles to %s", len(df), args.output)
    else:
        print(df.to_string(index=False))


async def cmd_quote(args: argparse.Namespace, manager: PoolManager) -> None:
    quoter = TradeQuoter(manager)
    params = TradeParams(
        input_mint=args.input,
        output_mint=args.output,
        amount_in=args.amount,
        slippage_bps=args.slippage_bps,
        user=args.user,
    )
    quote = await quoter.get_quote_with_validation(params)
    print(
        json.dumps(
            {
                "amount_out": quote.amount_out,
                "min_amount_out": quote.min_amount_out,
                "price_impact": quote.price_impact,
                "fee_amount": quote.fee_amount,
                "route": [str(address) for address in quote.route],
            },
            indent=2,
        )
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Meteora AMM pool client")
    parser.add_argument("--rpc", default=config.RPC_ENDPOINTS[0], help="RPC endpoint to use")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    pools = sub.add_parser("pools", help="List pools holding a token")
    pools.add_argument("--token", type=parse_pubkey, required=True, help="Token mint")
    pools.add_argument("--pair", type=parse_pubkey, help="Restrict to pools pairing --token with this mint")
    pools.set_defaults(func=cmd_pools)

    price = sub.add_parser("price", help="Price a token from pool reserves")
    price.add_argument("mint", type=parse_pubkey)
    price.add_argument("--weighted", action="store_true", help="Liquidity-weighted across all pools")
    price.set_defaults(func=cmd_price)

    candles = sub.add_parser("candles", help="Synthesize OHLCV candles")
    candles.add_argument("mint", type=parse_pubkey)
    candles.add_argument("--frame", type=TimeFrame.from_label, default=TimeFrame.H1, help="1m, 5m, 15m, 1h, 4h or 1d")
    candles.add_argument("--limit", type=int, default=100, help="Number of candles")
    candles.add_argument("--output", type=Path, help="Write candles to this CSV instead of stdout")
    candles.add_argument("--seed", type=int, help="Seed for reproducible synthesis")
    candles.set_defaults(func=cmd_candles)

    quote = sub.add_parser("quote", help="Quote a swap with slippage checks")
    quote.add_argument("--input", type=parse_pubkey, required=True, help="Input mint")
    quote.add_argument("--output", type=parse_pubkey, required=True, help="Output mint")
    quote.add_argument("--amount", type=int, required=True, help="Input amount in base units")
    quote.add_argument("--slippage-bps", type=int, default=50, help="Maximum slippage in basis points")
    quote.add_argument("--user", type=parse_pubkey, default=Pubkey.default(), help="Trader wallet")
    quote.set_defaults(func=cmd_quote)

    return parser


async def run(args: argparse.Namespace) -> None:
    command: Callable[[argparse.Namespace, PoolManager], Awaitable[None]] = args.func
    async with MeteoraClient(args.rpc) as client:
        manager = PoolManager(client, config.FeedSettings.from_env())
        await command(args, manager)


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(levelname)s] %(message)s",
    )
    try:
        asyncio.run(run(args))
    except MeteoraError as exc:
        logger.error("%s", exc)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
