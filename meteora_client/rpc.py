"""Async RPC access for the Meteora pool client.

Thin wrapper over ``solana.rpc.async_api.AsyncClient`` that exposes only the
calls the discovery, pricing and trade components consume, returns plain
bytes / solders objects, and translates transport failures into
``MeteoraError(RPC_ERROR)``. Nothing here retries.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator, List, Optional, Sequence, Tuple, Union

import base58
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from solana.rpc.core import RPCException, UnconfirmedTxError
from solana.rpc.types import MemcmpOpts, TxOpts
from solders.hash import Hash
from solders.message import Message
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction

from .config import DEFAULT_COMMITMENT, RPC_ENDPOINTS, RPC_TIMEOUT, TOKEN_PROGRAM_ID
from .errors import ErrorKind, MeteoraError
from .layouts import TOKEN_ACCOUNT_SIZE

logger = logging.getLogger(__name__)

# getMultipleAccounts accepts at most 100 keys per request
MULTIPLE_ACCOUNTS_BATCH = 100

ProgramFilter = Union[int, MemcmpOpts]


@contextmanager
def _rpc_errors(action: str) -> Iterator[None]:
    try:
        yield
    except (SolanaRpcException, RPCException, UnconfirmedTxError) as exc:
        raise MeteoraError(ErrorKind.RPC_ERROR, f"{action} failed: {exc}") from exc


class MeteoraClient:
    """Shared handle to a Solana RPC endpoint."""

    def __init__(
        self,
        rpc_endpoint: Optional[str] = None,
        commitment: Commitment = DEFAULT_COMMITMENT,
        timeout: float = RPC_TIMEOUT,
    ):
        self.rpc_endpoint = rpc_endpoint or RPC_ENDPOINTS[0]
        if not self.rpc_endpoint.startswith(("http://", "https://")):
            raise MeteoraError(ErrorKind.GENERIC, f"unsupported RPC endpoint {self.rpc_endpoint!r}")
        self.commitment = commitment
        self.client = AsyncClient(self.rpc_endpoint, commitment=commitment, timeout=timeout)
        logger.info("RPC endpoint: %s (commitment %s)", self.rpc_endpoint, commitment)

    async def __aenter__(self) -> "MeteoraClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self.client.close()

    async def get_account_data(self, address: Pubkey) -> bytes:
        with _rpc_errors(f"getAccountInfo {address}"):
            response = await self.client.get_account_info(address, commitment=self.commitment)
        if response.value is None:
            raise MeteoraError(ErrorKind.ACCOUNT_NOT_FOUND, f"Account {address} not found")
        return bytes(response.value.data)

    async def get_multiple_accounts_data(self, addresses: Sequence[Pubkey]) -> List[bytes]:
        """Fetch several accounts; missing accounts come back as empty bytes."""
        results: List[bytes] = []
        for start in range(0, len(addresses), MULTIPLE_ACCOUNTS_BATCH):
            chunk = list(addresses[start : start + MULTIPLE_ACCOUNTS_BATCH])
            with _rpc_errors(f"getMultipleAccounts ({len(chunk)} keys)"):
                response = await self.client.get_multiple_accounts(chunk, commitment=self.commitment)
            results.extend(bytes(account.data) if account is not None else b"" for account in response.value)
        return results

    async def get_program_accounts(
        self,
        program_id: Pubkey,
        filters: Optional[Sequence[ProgramFilter]] = None,
    ) -> List[Tuple[Pubkey, bytes]]:
        logger.debug("Fetching program accounts for %s", program_id)
        with _rpc_errors(f"getProgramAccounts {program_id}"):
            response = await self.client.get_program_accounts(
                program_id,
                commitment=self.commitment,
                encoding="base64",
                filters=list(filters) if filters else None,
            )
        accounts = [(keyed.pubkey, bytes(keyed.account.data)) for keyed in response.value]
        logger.info("Fetched %d accounts owned by %s", len(accounts), program_id)
        return accounts

    async def get_spl_token_accounts_by_mint(self, mint: Pubkey) -> List[Tuple[Pubkey, bytes]]:
        filters: List[ProgramFilter] = [
            TOKEN_ACCOUNT_SIZE,
            MemcmpOpts(offset=0, bytes=base58.b58encode(bytes(mint)).decode()),
        ]
        return await self.get_program_accounts(Pubkey.from_string(TOKEN_PROGRAM_ID), filters)

    async def get_signatures_for_address(self, address: Pubkey, limit: int) -> List[Signature]:
        """Recent signatures touching ``address``; failed transactions are dropped."""
        with _rpc_errors(f"getSignaturesForAddress {address}"):
            response = await self.client.get_signatures_for_address(
                address, limit=limit, commitment=self.commitment
            )
        return [entry.signature for entry in response.value if entry.err is None]

    async def get_transaction_block_time(self, signature: Signature) -> Optional[int]:
        with _rpc_errors(f"getTransaction {signature}"):
            response = await self.client.get_transaction(
                signature,
                encoding="json",
                commitment=self.commitment,
                max_supported_transaction_version=0,
            )
        if response.value is None:
            return None
        return response.value.block_time

    async def simulate_transaction(self, transaction: Transaction) -> Any:
        """Return the simulation result (``err``, ``logs``, ``units_consumed``)."""
        with _rpc_errors("simulateTransaction"):
            response = await self.client.simulate_transaction(
                transaction, sig_verify=False, commitment=self.commitment
            )
        return response.value

    async def send_and_confirm_transaction(self, transaction: Transaction) -> Signature:
        opts = TxOpts(skip_confirmation=False, preflight_commitment=self.commitment)
        with _rpc_errors("sendTransaction"):
            response = await self.client.send_transaction(transaction, opts=opts)
        logger.info("Submitted transaction %s", response.value)
        return response.value

    async def get_signature_status(self, signature: Signature) -> Any:
        """Return the signature's ``TransactionStatus`` or ``None`` if unknown."""
        with _rpc_errors(f"getSignatureStatuses {signature}"):
            response = await self.client.get_signature_statuses([signature])
        return response.value[0] if response.value else None

    async def get_latest_blockhash(self) -> Hash:
        with _rpc_errors("getLatestBlockhash"):
            response = await self.client.get_latest_blockhash(commitment=self.commitment)
        return response.value.blockhash

    async def get_fee_for_message(self, message: Message) -> Optional[int]:
        with _rpc_errors("getFeeForMessage"):
            response = await self.client.get_fee_for_message(message, commitment=self.commitment)
        return response.value
