"""In-memory chain state and byte builders shared by the tests."""
import struct
from itertools import count
from typing import Dict, List, Optional
from unittest.mock import AsyncMock

from solders.hash import Hash
from solders.pubkey import Pubkey
from spl.token.instructions import get_associated_token_address

from meteora_client.errors import ErrorKind, MeteoraError
from meteora_client.models import PoolInfo

_auto_keys = count(1_000_000)


def make_pubkey(seed: Optional[int] = None) -> Pubkey:
    """Deterministic address; explicit seeds below 1_000_000 never collide with generated ones."""
    if seed is None:
        seed = next(_auto_keys)
    return Pubkey.from_bytes(seed.to_bytes(32, "big"))


def mint_bytes(decimals: int, supply: int = 0) -> bytes:
    data = bytearray(82)
    struct.pack_into("<Q", data, 36, supply)
    data[44] = decimals
    data[45] = 1
    return bytes(data)


def token_account_bytes(mint: Pubkey, owner: Pubkey, amount: int) -> bytes:
    data = bytearray(165)
    data[0:32] = bytes(mint)
    data[32:64] = bytes(owner)
    struct.pack_into("<Q", data, 64, amount)
    data[108] = 1
    return bytes(data)


def pool_bytes(*keys: Pubkey, size: int = 300) -> bytes:
    data = bytearray(size)
    for index, key in enumerate(keys):
        start = 8 + index * 32
        data[start : start + 32] = bytes(key)
    return bytes(data)


def borsh_string(value: str, width: int) -> bytes:
    raw = value.encode().ljust(width, b"\x00")
    return struct.pack("<I", len(raw)) + raw


def make_pool_info(
    reserve_a: int,
    reserve_b: int,
    decimals_a: int = 6,
    decimals_b: int = 6,
    fee_bps: int = 30,
    mint_a: Optional[Pubkey] = None,
    mint_b: Optional[Pubkey] = None,
    address: Optional[Pubkey] = None,
) -> PoolInfo:
    return PoolInfo(
        address=address or make_pubkey(),
        token_a_mint=mint_a or make_pubkey(),
        token_b_mint=mint_b or make_pubkey(),
        token_a_reserve=make_pubkey(),
        token_b_reserve=make_pubkey(),
        lp_mint=make_pubkey(),
        fee_account=make_pubkey(),
        trade_fee_bps=fee_bps,
        token_a_decimals=decimals_a,
        token_b_decimals=decimals_b,
        token_a_reserve_amount=reserve_a,
        token_b_reserve_amount=reserve_b,
        lp_supply=0,
    )


class FakeChain:
    """Stands in for ``MeteoraClient``; every RPC method is an ``AsyncMock`` over ``accounts``."""

    def __init__(self):
        self.accounts: Dict[Pubkey, bytes] = {}
        self.program_accounts: List[Pubkey] = []
        self.signatures: Dict[Pubkey, list] = {}
        self.block_times: Dict[object, Optional[int]] = {}

        self.get_account_data = AsyncMock(side_effect=self._account_data)
        self.get_multiple_accounts_data = AsyncMock(
            side_effect=lambda addresses: [self.accounts.get(address, b"") for address in addresses]
        )
        self.get_program_accounts = AsyncMock(
            side_effect=lambda program_id, filters=None: [
                (address, self.accounts[address]) for address in self.program_accounts
            ]
        )
        self.get_spl_token_accounts_by_mint = AsyncMock(side_effect=self._token_accounts_by_mint)
        self.get_signatures_for_address = AsyncMock(
            side_effect=lambda address, limit: list(self.signatures.get(address, []))[:limit]
        )
        self.get_transaction_block_time = AsyncMock(side_effect=lambda signature: self.block_times.get(signature))
        self.get_latest_blockhash = AsyncMock(return_value=Hash.default())
        self.get_fee_for_message = AsyncMock(return_value=5000)
        self.simulate_transaction = AsyncMock()
        self.send_and_confirm_transaction = AsyncMock()
        self.get_signature_status = AsyncMock(return_value=None)

    def _account_data(self, address: Pubkey) -> bytes:
        if address not in self.accounts:
            raise MeteoraError(ErrorKind.ACCOUNT_NOT_FOUND, f"Account {address} not found")
        return self.accounts[address]

    def _token_accounts_by_mint(self, mint: Pubkey):
        return [
            (address, data)
            for address, data in self.accounts.items()
            if len(data) == 165 and data[0:32] == bytes(mint)
        ]

    def add_mint(self, decimals: int = 6, supply: int = 0, mint: Optional[Pubkey] = None) -> Pubkey:
        mint = mint or make_pubkey()
        self.accounts[mint] = mint_bytes(decimals, supply)
        return mint

    def add_token_account(self, owner: Pubkey, mint: Pubkey, amount: int) -> Pubkey:
        address = get_associated_token_address(owner, mint)
        self.accounts[address] = token_account_bytes(mint, owner, amount)
        return address

    def add_pool(
        self,
        reserve_a: int,
        reserve_b: int,
        decimals_a: int = 6,
        decimals_b: int = 6,
        mint_a: Optional[Pubkey] = None,
        mint_b: Optional[Pubkey] = None,
        address: Optional[Pubkey] = None,
        lp_supply: int = 0,
    ) -> Pubkey:
        mint_a = self.add_mint(decimals_a, mint=mint_a)
        mint_b = self.add_mint(decimals_b, mint=mint_b)
        address = address or make_pubkey()
        vault_owner = make_pubkey()
        reserve_a_key, reserve_b_key = make_pubkey(), make_pubkey()
        self.accounts[reserve_a_key] = token_account_bytes(mint_a, vault_owner, reserve_a)
        self.accounts[reserve_b_key] = token_account_bytes(mint_b, vault_owner, reserve_b)
        lp_mint = self.add_mint(6, supply=lp_supply)
        fee_account = make_pubkey()
        self.accounts[address] = pool_bytes(mint_a, mint_b, reserve_a_key, reserve_b_key, lp_mint, fee_account)
        self.program_accounts.append(address)
        return address


def metadata_bytes(name: str, symbol: str, uri: str) -> bytes:
    header = bytes([4]) + bytes(make_pubkey()) + bytes(make_pubkey())
    return header + borsh_string(name, 32) + borsh_string(symbol, 10) + borsh_string(uri, 200) + bytes(16)
