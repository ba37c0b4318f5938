"""Reserve reader: decode a pool account and read live balances for it."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from solders.pubkey import Pubkey

from .config import DEFAULT_TRADE_FEE_BPS, POOL_ACCOUNT_MIN_SIZE
from .errors import ErrorKind, MeteoraError
from .layouts import unpack_mint, unpack_token_account
from .models import PoolInfo
from .rpc import MeteoraClient

logger = logging.getLogger(__name__)

# After the 8-byte discriminator: mint A, mint B, reserve A, reserve B, LP mint, fee account
POOL_KEY_FIELDS = (
    "token_a_mint",
    "token_b_mint",
    "token_a_reserve",
    "token_b_reserve",
    "lp_mint",
    "fee_account",
)
POOL_KEYS_OFFSET = 8
PUBKEY_LEN = 32


@dataclass(frozen=True)
class PoolLayout:
    """Addresses referenced by a pool account."""

    token_a_mint: Pubkey
    token_b_mint: Pubkey
    token_a_reserve: Pubkey
    token_b_reserve: Pubkey
    lp_mint: Pubkey
    fee_account: Pubkey


def decode_pool_account(data: bytes) -> PoolLayout:
    if len(data) < POOL_ACCOUNT_MIN_SIZE:
        raise MeteoraError(
            ErrorKind.INVALID_POOL_DATA,
            f"pool account is {len(data)} bytes, expected at least {POOL_ACCOUNT_MIN_SIZE}",
        )
    keys = {}
    for index, name in enumerate(POOL_KEY_FIELDS):
        start = POOL_KEYS_OFFSET + index * PUBKEY_LEN
        keys[name] = Pubkey.from_bytes(data[start : start + PUBKEY_LEN])
    return PoolLayout(**keys)


class ReserveReader:
    """Builds ``PoolInfo`` snapshots from the pool account and its referenced accounts."""

    def __init__(self, client: MeteoraClient, trade_fee_bps: int = DEFAULT_TRADE_FEE_BPS):
        self.client = client
        # The pool account carries no fee field we decode; every pool uses the default
        self.trade_fee_bps = trade_fee_bps

    async def read_pool(self, pool_address: Pubkey) -> PoolInfo:
        layout = decode_pool_account(await self.client.get_account_data(pool_address))

        # One request so decimals, balances and supply describe the same slot
        referenced = [
            layout.token_a_mint,
            layout.token_b_mint,
            layout.token_a_reserve,
            layout.token_b_reserve,
            layout.lp_mint,
        ]
        accounts = await self.client.get_multiple_accounts_data(referenced)
        if len(accounts) != len(referenced):
            raise MeteoraError(
                ErrorKind.RPC_ERROR,
                f"expected {len(referenced)} accounts for pool {pool_address}, got {len(accounts)}",
            )
        for address, data in zip(referenced, accounts):
            if not data:
                raise MeteoraError(ErrorKind.ACCOUNT_NOT_FOUND, f"Account {address} not found")

        mint_a, mint_b, reserve_a, reserve_b, lp_mint = accounts
        mint_a_state = unpack_mint(mint_a)
        mint_b_state = unpack_mint(mint_b)
        pool_info = PoolInfo(
            address=pool_address,
            token_a_mint=layout.token_a_mint,
            token_b_mint=layout.token_b_mint,
            token_a_reserve=layout.token_a_reserve,
            token_b_reserve=layout.token_b_reserve,
            lp_mint=layout.lp_mint,
            fee_account=layout.fee_account,
            trade_fee_bps=self.trade_fee_bps,
            token_a_decimals=mint_a_state.decimals,
            token_b_decimals=mint_b_state.decimals,
            token_a_reserve_amount=unpack_token_account(reserve_a).amount,
            token_b_reserve_amount=unpack_token_account(reserve_b).amount,
            lp_supply=unpack_mint(lp_mint).supply,
        )
        logger.debug(
            "Read pool %s: reserves %d / %d",
            pool_address,
            pool_info.token_a_reserve_amount,
            pool_info.token_b_reserve_amount,
        )
        return pool_info
