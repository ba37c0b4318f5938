"""Mint details: decimals, supply, holder count and Metaplex metadata."""
from __future__ import annotations

import logging
from typing import Optional

from solders.pubkey import Pubkey

from .config import METAPLEX_PROGRAM_ID
from .errors import MeteoraError
from .layouts import parse_metadata, unpack_mint
from .models import TokenInfo, TokenMetadata
from .rpc import MeteoraClient

logger = logging.getLogger(__name__)


def metadata_address(mint: Pubkey) -> Pubkey:
    metaplex = Pubkey.from_string(METAPLEX_PROGRAM_ID)
    address, _bump = Pubkey.find_program_address([b"metadata", bytes(metaplex), bytes(mint)], metaplex)
    return address


class TokenManager:
    def __init__(self, client: MeteoraClient):
        self.client = client

    async def get_token_info(self, mint: Pubkey) -> TokenInfo:
        mint_state = unpack_mint(await self.client.get_account_data(mint))
        holder_count = await self.get_holder_count(mint)
        try:
            metadata: Optional[TokenMetadata] = await self.get_token_metadata(mint)
        except MeteoraError as exc:
            logger.debug("No metadata for %s: %s", mint, exc)
            metadata = None
        return TokenInfo(
            mint=mint,
            decimals=mint_state.decimals,
            supply=mint_state.supply,
            holder_count=holder_count,
            metadata=metadata,
        )

    async def get_holder_count(self, mint: Pubkey) -> int:
        """Number of SPL token accounts for ``mint``, empty ones included."""
        accounts = await self.client.get_spl_token_accounts_by_mint(mint)
        return len(accounts)

    async def get_token_metadata(self, mint: Pubkey) -> TokenMetadata:
        data = await self.client.get_account_data(metadata_address(mint))
        return parse_metadata(data)
