"""Byte layouts for SPL mint, SPL token account and Metaplex metadata accounts."""
from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Tuple

from solders.pubkey import Pubkey

from .errors import ErrorKind, MeteoraError
from .models import TokenMetadata

MINT_ACCOUNT_SIZE = 82
TOKEN_ACCOUNT_SIZE = 165
METADATA_MIN_SIZE = 100

# Mint: COption<Pubkey> authority (4 + 32), supply u64, decimals u8, is_initialized u8
MINT_SUPPLY_OFFSET = 36
MINT_DECIMALS_OFFSET = 44
MINT_INITIALIZED_OFFSET = 45

# Token account: mint, owner, amount u64, ... state u8 at 108
TOKEN_MINT_OFFSET = 0
TOKEN_OWNER_OFFSET = 32
TOKEN_AMOUNT_OFFSET = 64
TOKEN_STATE_OFFSET = 108

# Metadata: key u8, update authority, mint, then borsh strings
METADATA_NAME_OFFSET = 1 + 32 + 32


@dataclass(frozen=True)
class MintAccount:
    supply: int
    decimals: int


@dataclass(frozen=True)
class TokenAccount:
    mint: Pubkey
    owner: Pubkey
    amount: int


def _read_u64(data: bytes, offset: int) -> int:
    return struct.unpack_from("<Q", data, offset)[0]


def _read_pubkey(data: bytes, offset: int) -> Pubkey:
    return Pubkey.from_bytes(data[offset : offset + 32])


def unpack_mint(data: bytes) -> MintAccount:
    if len(data) < MINT_ACCOUNT_SIZE:
        raise MeteoraError(
            ErrorKind.DESERIALIZATION_ERROR,
            f"mint account is {len(data)} bytes, expected {MINT_ACCOUNT_SIZE}",
        )
    if data[MINT_INITIALIZED_OFFSET] == 0:
        raise MeteoraError(ErrorKind.DESERIALIZATION_ERROR, "mint account is not initialized")
    return MintAccount(
        supply=_read_u64(data, MINT_SUPPLY_OFFSET),
        decimals=data[MINT_DECIMALS_OFFSET],
    )


def unpack_token_account(data: bytes) -> TokenAccount:
    if len(data) < TOKEN_ACCOUNT_SIZE:
        raise MeteoraError(
            ErrorKind.DESERIALIZATION_ERROR,
            f"token account is {len(data)} bytes, expected {TOKEN_ACCOUNT_SIZE}",
        )
    if data[TOKEN_STATE_OFFSET] == 0:
        raise MeteoraError(ErrorKind.DESERIALIZATION_ERROR, "token account is not initialized")
    return TokenAccount(
        mint=_read_pubkey(data, TOKEN_MINT_OFFSET),
        owner=_read_pubkey(data, TOKEN_OWNER_OFFSET),
        amount=_read_u64(data, TOKEN_AMOUNT_OFFSET),
    )


def _read_borsh_string(data: bytes, offset: int) -> Tuple[str, int]:
    if offset + 4 > len(data):
        raise MeteoraError(ErrorKind.INVALID_ACCOUNT_DATA, "metadata string header out of bounds")
    (length,) = struct.unpack_from("<I", data, offset)
    start = offset + 4
    end = start + length
    if end > len(data):
        raise MeteoraError(ErrorKind.INVALID_ACCOUNT_DATA, "metadata string out of bounds")
    # Metaplex pads fixed-width fields with NULs
    value = data[start:end].decode("utf-8", errors="replace").rstrip("\x00")
    return value, end


def parse_metadata(data: bytes) -> TokenMetadata:
    if len(data) < METADATA_MIN_SIZE:
        raise MeteoraError(ErrorKind.INVALID_ACCOUNT_DATA, "metadata account too short")
    name, cursor = _read_borsh_string(data, METADATA_NAME_OFFSET)
    symbol, cursor = _read_borsh_string(data, cursor)
    uri, _ = _read_borsh_string(data, cursor)
    return TokenMetadata(name=name, symbol=symbol, uri=uri)

