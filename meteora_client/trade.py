"""Swap quoting, validation and execution against a single pool."""
from __future__ import annotations

import asyncio
import logging
import struct
from typing import List, Optional, Sequence

from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import (
    ApproveParams,
    TransferParams,
    approve,
    create_associated_token_account,
    get_associated_token_address,
    transfer,
)

from .config import FALLBACK_FEE_LAMPORTS, FALLBACK_FEE_NO_BLOCKHASH_LAMPORTS, FeedSettings
from .errors import ErrorKind, MeteoraError
from .layouts import unpack_token_account
from .models import PoolInfo, SwapSimulation, TradeParams, TradeQuote
from .pools import PoolManager

logger = logging.getLogger(__name__)

BPS_DENOMINATOR = 10_000
SWAP_INSTRUCTION_TAG = 9
POOL_AUTHORITY_SEED = b"amm"


def calculate_swap_output(amount_in: int, pool: PoolInfo, input_mint: Pubkey) -> int:
    """Constant-product output with the pool fee taken from the input, integer math."""
    reserve_in, reserve_out = pool.reserves_for(input_mint)
    if reserve_in == 0:
        raise MeteoraError(ErrorKind.CALCULATION_ERROR, f"pool {pool.address} input reserve is empty")
    amount_in_with_fee = amount_in * (BPS_DENOMINATOR - pool.trade_fee_bps) // BPS_DENOMINATOR
    numerator = amount_in_with_fee * reserve_out
    denominator = reserve_in * BPS_DENOMINATOR + amount_in_with_fee
    if denominator == 0:
        raise MeteoraError(ErrorKind.CALCULATION_ERROR, "Division by zero")
    return numerator // denominator


def calculate_price_impact(amount_in: int, pool: PoolInfo, input_mint: Pubkey) -> float:
    """Percentage of the input reserve the trade represents; 100.0 for an empty reserve."""
    reserve_in, _ = pool.reserves_for(input_mint)
    if reserve_in == 0:
        return 100.0
    return amount_in / (reserve_in + amount_in) * 100.0


def pool_score(pool: PoolInfo) -> float:
    return pool.liquidity * (1.0 - pool.trade_fee_bps / BPS_DENOMINATOR)


class TradeQuoter:
    """Quotes and executes single-pool swaps."""

    def __init__(self, pool_manager: PoolManager, settings: Optional[FeedSettings] = None):
        self.pool_manager = pool_manager
        self.client = pool_manager.client
        self.settings = settings or pool_manager.settings
        self.program_id = pool_manager.program_id

    def validate_trade_params(self, params: TradeParams) -> None:
        if params.amount_in <= 0:
            raise MeteoraError(ErrorKind.INVALID_INPUT, "Amount cannot be zero")
        if params.slippage_bps < 0 or params.slippage_bps > self.settings.max_slippage_bps:
            raise MeteoraError(ErrorKind.INVALID_INPUT, "Slippage too high")
        if params.input_mint == params.output_mint:
            raise MeteoraError(ErrorKind.INVALID_INPUT, "Cannot swap same token")

    @staticmethod
    def select_best_pool(pools: Sequence[PoolInfo]) -> PoolInfo:
        """Highest ``liquidity * (1 - fee)``; equal scores go to the lowest address."""
        if not pools:
            raise MeteoraError(ErrorKind.NO_LIQUIDITY_POOL_FOUND, "no pool to select from")
        ranked = sorted(pools, key=lambda pool: (-pool_score(pool), str(pool.address)))
        return ranked[0]

    def _build_quote(self, params: TradeParams, pool: PoolInfo, price_impact: float) -> TradeQuote:
        amount_out = calculate_swap_output(params.amount_in, pool, params.input_mint)
        return TradeQuote(
            amount_out=amount_out,
            min_amount_out=amount_out * (BPS_DENOMINATOR - params.slippage_bps) // BPS_DENOMINATOR,
            price_impact=price_impact,
            fee_amount=params.amount_in * pool.trade_fee_bps // BPS_DENOMINATOR,
            route=(pool.address,),
        )

    async def get_quote(self, params: TradeParams) -> TradeQuote:
        """Quick quote on the first pool for the pair; no validation, no slippage guard."""
        pools = await self.pool_manager.find_pools_for_pair(params.input_mint, params.output_mint)
        if not pools:
            raise MeteoraError(ErrorKind.NO_LIQUIDITY_POOL_FOUND, "no pool for pair")
        pool = pools[0]
        return self._build_quote(
            params, pool, calculate_price_impact(params.amount_in, pool, params.input_mint)
        )

    async def get_quote_with_validation(self, params: TradeParams) -> TradeQuote:
        self.validate_trade_params(params)
        pools = await self.pool_manager.find_pools_for_pair(params.input_mint, params.output_mint)
        pool = self.select_best_pool(pools)

        price_impact = calculate_price_impact(params.amount_in, pool, params.input_mint)
        if price_impact > params.slippage_bps / 100.0:
            raise MeteoraError(
                ErrorKind.SLIPPAGE_EXCEEDED,
                f"price impact {price_impact:.4f}% exceeds {params.slippage_bps} bps",
            )
        quote = self._build_quote(params, pool, price_impact)
        logger.debug("Quote via %s: %d -> %d", pool.address, params.amount_in, quote.amount_out)
        return quote

    async def execute_swap_safe(self, params: TradeParams, user_keypair: Keypair) -> Signature:
        """Quote, simulate, check balance, then submit and wait for confirmation."""
        quote = await self.get_quote_with_validation(params)
        simulation = await self.simulate_swap(params, quote)
        if not simulation.success:
            raise MeteoraError(
                ErrorKind.SIMULATION_FAILED, "; ".join(simulation.logs[-3:]) or "simulation failed"
            )
        if simulation.actual_output < quote.min_amount_out:
            raise MeteoraError(
                ErrorKind.SLIPPAGE_EXCEEDED,
                f"simulated output {simulation.actual_output} below minimum {quote.min_amount_out}",
            )
        await self.check_user_balance(params.user, params.input_mint, params.amount_in)
        fee_estimate = await self.estimate_transaction_fees()
        logger.info("Estimated network fee %d lamports", fee_estimate)

        instructions = await self.build_swap_instructions(params, quote)
        signature = await self.send_transaction(instructions, user_keypair)
        if not await self.confirm_transaction_with_timeout(
            signature, self.settings.confirm_timeout_seconds
        ):
            raise MeteoraError(ErrorKind.TRANSACTION_FAILED, f"transaction {signature} failed on chain")
        return signature

    async def simulate_swap(self, params: TradeParams, quote: TradeQuote) -> SwapSimulation:
        instructions = await self.build_swap_instructions(params, quote)
        blockhash = await self.client.get_latest_blockhash()
        message = Message.new_with_blockhash(instructions, params.user, blockhash)
        result = await self.client.simulate_transaction(Transaction.new_unsigned(message))

        # Re-price against a fresh snapshot rather than the one the quote used
        fresh_pool = await self.pool_manager.get_pool_info(quote.route[0])
        return SwapSimulation(
            success=result.err is None,
            logs=list(result.logs or []),
            units_consumed=result.units_consumed or 0,
            price_impact=quote.price_impact,
            actual_output=calculate_swap_output(params.amount_in, fresh_pool, params.input_mint),
        )

    async def check_user_balance(self, user: Pubkey, mint: Pubkey, required_amount: int) -> None:
        token_account = get_associated_token_address(user, mint)
        try:
            data = await self.client.get_account_data(token_account)
        except MeteoraError as exc:
            if exc.kind is ErrorKind.ACCOUNT_NOT_FOUND:
                raise MeteoraError(ErrorKind.ACCOUNT_NOT_FOUND, "Token account not found") from exc
            raise
        balance = unpack_token_account(data).amount
        if balance < required_amount:
            raise MeteoraError(
                ErrorKind.INSUFFICIENT_BALANCE, f"balance {balance} below required {required_amount}"
            )

    async def estimate_transaction_fees(self) -> int:
        try:
            blockhash = await self.client.get_latest_blockhash()
        except MeteoraError as exc:
            logger.warning("Failed to get blockhash for fee estimation: %s", exc)
            return FALLBACK_FEE_NO_BLOCKHASH_LAMPORTS
        try:
            fee = await self.client.get_fee_for_message(Message.new_with_blockhash([], None, blockhash))
        except MeteoraError as exc:
            logger.warning("Failed to get fee estimate: %s, using fallback", exc)
            return FALLBACK_FEE_LAMPORTS
        return fee if fee is not None else FALLBACK_FEE_LAMPORTS

    async def build_swap_instructions(self, params: TradeParams, quote: TradeQuote) -> List[Instruction]:
        pool = await self.pool_manager.get_pool_info_cached(quote.route[0])
        user_input_account = get_associated_token_address(params.user, params.input_mint)
        user_output_account = get_associated_token_address(params.user, params.output_mint)

        instructions: List[Instruction] = []
        try:
            await self.client.get_account_data(user_output_account)
        except MeteoraError as exc:
            if exc.kind is not ErrorKind.ACCOUNT_NOT_FOUND:
                raise
            instructions.append(
                create_associated_token_account(params.user, params.user, params.output_mint)
            )
        instructions.append(
            self.build_swap_instruction(params, quote, pool, user_input_account, user_output_account)
        )
        return instructions

    def build_swap_instruction(
        self,
        params: TradeParams,
        quote: TradeQuote,
        pool: PoolInfo,
        user_input_account: Pubkey,
        user_output_account: Pubkey,
    ) -> Instruction:
        input_reserve, output_reserve = pool.reserve_accounts_for(params.input_mint)
        accounts = [
            AccountMeta(pool.address, is_signer=False, is_writable=True),
            AccountMeta(self.get_pool_authority(pool.address), is_signer=False, is_writable=False),
            AccountMeta(params.user, is_signer=True, is_writable=True),
            AccountMeta(user_input_account, is_signer=False, is_writable=True),
            AccountMeta(input_reserve, is_signer=False, is_writable=True),
            AccountMeta(output_reserve, is_signer=False, is_writable=True),
            AccountMeta(user_output_account, is_signer=False, is_writable=True),
            AccountMeta(pool.fee_account, is_signer=False, is_writable=True),
            AccountMeta(TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        ]
        data = struct.pack("<BQQ", SWAP_INSTRUCTION_TAG, params.amount_in, quote.min_amount_out)
        return Instruction(self.program_id, data, accounts)

    def get_pool_authority(self, pool_address: Pubkey) -> Pubkey:
        authority, _bump = Pubkey.find_program_address(
            [POOL_AUTHORITY_SEED, bytes(pool_address)], self.program_id
        )
        return authority

    @staticmethod
    def build_approve_instruction(
        owner: Pubkey, token_account: Pubkey, delegate: Pubkey, amount: int
    ) -> Instruction:
        return approve(
            ApproveParams(
                program_id=TOKEN_PROGRAM_ID,
                source=token_account,
                delegate=delegate,
                owner=owner,
                amount=amount,
            )
        )

    @staticmethod
    def build_transfer_instruction(source: Pubkey, dest: Pubkey, owner: Pubkey, amount: int) -> Instruction:
        return transfer(
            TransferParams(
                program_id=TOKEN_PROGRAM_ID,
                source=source,
                dest=dest,
                owner=owner,
                amount=amount,
            )
        )

    async def send_transaction(self, instructions: List[Instruction], user_keypair: Keypair) -> Signature:
        blockhash = await self.client.get_latest_blockhash()
        message = Message.new_with_blockhash(instructions, user_keypair.pubkey(), blockhash)
        transaction = Transaction([user_keypair], message, blockhash)
        try:
            return await self.client.send_and_confirm_transaction(transaction)
        except MeteoraError as exc:
            raise MeteoraError(ErrorKind.TRANSACTION_FAILED, exc.message) from exc

    async def confirm_transaction(self, signature: Signature) -> bool:
        status = await self.client.get_signature_status(signature)
        return status is not None and status.err is None

    async def confirm_transaction_with_timeout(self, signature: Signature, timeout_seconds: int) -> bool:
        """Poll once a second; ``True`` on success, ``False`` if it landed with an error."""
        for _ in range(timeout_seconds):
            try:
                status = await self.client.get_signature_status(signature)
            except MeteoraError as exc:
                logger.debug("Status poll for %s failed: %s", signature, exc)
                status = None
            if status is not None:
                return status.err is None
            await asyncio.sleep(1)
        raise MeteoraError(
            ErrorKind.TRANSACTION_TIMEOUT, f"{signature} not confirmed within {timeout_seconds}s"
        )
