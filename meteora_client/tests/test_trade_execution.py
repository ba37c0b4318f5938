import struct
from unittest.mock import AsyncMock, Mock, patch

import pytest
from solders.keypair import Keypair
from solders.signature import Signature
from spl.token.constants import ASSOCIATED_TOKEN_PROGRAM_ID

from meteora_client.errors import ErrorKind, MeteoraError
from meteora_client.models import TradeParams
from meteora_client.trade import TradeQuoter

from .fixtures import make_pubkey, token_account_bytes


@pytest.fixture
def wallet():
    return Keypair()


@pytest.fixture
def market(chain, manager, wallet):
    mint_a, mint_b = make_pubkey(), make_pubkey()
    pool = chain.add_pool(1_000_000, 2_000_000_000, mint_a=mint_a, mint_b=mint_b)
    params = TradeParams(mint_a, mint_b, 10_000, 100, wallet.pubkey())
    return pool, params, TradeQuoter(manager)


@pytest.mark.asyncio
async def test_swap_instruction_layout(chain, manager, market):
    pool, params, quoter = market
    chain.add_token_account(params.user, params.output_mint, 0)
    quote = await quoter.get_quote_with_validation(params)
    pool_info = await manager.get_pool_info(pool)

    instructions = await quoter.build_swap_instructions(params, quote)

    assert len(instructions) == 1
    swap = instructions[0]
    assert swap.program_id == quoter.program_id
    assert bytes(swap.data) == bytes([9]) + struct.pack("<QQ", 10_000, quote.min_amount_out)
    keys = [meta.pubkey for meta in swap.accounts]
    assert keys[0] == pool
    assert keys[1] == quoter.get_pool_authority(pool)
    assert keys[2] == params.user and swap.accounts[2].is_signer
    assert keys[4] == pool_info.token_a_reserve
    assert keys[5] == pool_info.token_b_reserve
    assert keys[7] == pool_info.fee_account
    assert not swap.accounts[8].is_writable


@pytest.mark.asyncio
async def test_missing_output_account_is_created_first(chain, market):
    _, params, quoter = market
    quote = await quoter.get_quote_with_validation(params)

    instructions = await quoter.build_swap_instructions(params, quote)

    assert len(instructions) == 2
    assert instructions[0].program_id == ASSOCIATED_TOKEN_PROGRAM_ID
    assert instructions[1].program_id == quoter.program_id


@pytest.mark.asyncio
async def test_check_user_balance(chain, market):
    _, params, quoter = market
    user = params.user

    with pytest.raises(MeteoraError) as excinfo:
        await quoter.check_user_balance(user, params.input_mint, 1)
    assert excinfo.value.kind is ErrorKind.ACCOUNT_NOT_FOUND

    chain.add_token_account(user, params.input_mint, 5_000)
    with pytest.raises(MeteoraError) as excinfo:
        await quoter.check_user_balance(user, params.input_mint, 10_000)
    assert excinfo.value.kind is ErrorKind.INSUFFICIENT_BALANCE

    await quoter.check_user_balance(user, params.input_mint, 5_000)


@pytest.mark.asyncio
async def test_fee_estimate_fallbacks(chain, market):
    _, _, quoter = market
    chain.get_fee_for_message.return_value = 7_000
    assert await quoter.estimate_transaction_fees() == 7_000

    chain.get_fee_for_message.side_effect = MeteoraError(ErrorKind.RPC_ERROR, "boom")
    assert await quoter.estimate_transaction_fees() == 5_000

    chain.get_latest_blockhash.side_effect = MeteoraError(ErrorKind.RPC_ERROR, "boom")
    assert await quoter.estimate_transaction_fees() == 10_000


@pytest.mark.asyncio
async def test_simulation_reprices_against_fresh_reserves(chain, manager, market):
    pool, params, quoter = market
    chain.add_token_account(params.user, params.output_mint, 0)
    chain.simulate_transaction.return_value = Mock(err=None, logs=["Program log: ok"], units_consumed=4321)
    quote = await quoter.get_quote_with_validation(params)

    pool_info = await manager.get_pool_info(pool)
    chain.accounts[pool_info.token_b_reserve] = token_account_bytes(params.output_mint, make_pubkey(), 1_000_000_000)

    simulation = await quoter.simulate_swap(params, quote)
    assert simulation.success
    assert simulation.units_consumed == 4321
    assert simulation.logs == ["Program log: ok"]
    assert quote.amount_out == 1993
    assert simulation.actual_output == 996


@pytest.mark.asyncio
async def test_send_failure_is_transaction_failed(chain, market, wallet):
    _, _, quoter = market
    chain.send_and_confirm_transaction.side_effect = MeteoraError(ErrorKind.RPC_ERROR, "blockhash not found")

    with pytest.raises(MeteoraError) as excinfo:
        await quoter.send_transaction([], wallet)
    assert excinfo.value.kind is ErrorKind.TRANSACTION_FAILED


@pytest.mark.asyncio
async def test_confirmation_times_out(chain, market):
    _, _, quoter = market
    with patch("meteora_client.trade.asyncio.sleep", new=AsyncMock()) as sleep:
        with pytest.raises(MeteoraError) as excinfo:
            await quoter.confirm_transaction_with_timeout(Signature.default(), 3)
    assert excinfo.value.kind is ErrorKind.TRANSACTION_TIMEOUT
    assert sleep.await_count == 3
    assert chain.get_signature_status.await_count == 3


@pytest.mark.asyncio
async def test_confirmation_treats_poll_errors_as_pending(chain, market):
    _, _, quoter = market
    chain.get_signature_status.side_effect = [
        MeteoraError(ErrorKind.RPC_ERROR, "timeout"),
        None,
        Mock(err=None),
    ]
    with patch("meteora_client.trade.asyncio.sleep", new=AsyncMock()):
        assert await quoter.confirm_transaction_with_timeout(Signature.default(), 5)
    assert chain.get_signature_status.await_count == 3


@pytest.mark.asyncio
async def test_confirm_transaction_single_check(chain, market):
    _, _, quoter = market
    assert not await quoter.confirm_transaction(Signature.default())
    chain.get_signature_status.return_value = Mock(err="InstructionError")
    assert not await quoter.confirm_transaction(Signature.default())
    chain.get_signature_status.return_value = Mock(err=None)
    assert await quoter.confirm_transaction(Signature.default())


def _fund(chain, params):
    chain.add_token_account(params.user, params.input_mint, 50_000)
    chain.add_token_account(params.user, params.output_mint, 0)
    chain.simulate_transaction.return_value = Mock(err=None, logs=[], units_consumed=1)


@pytest.mark.asyncio
async def test_execute_swap_safe(chain, market, wallet):
    _, params, quoter = market
    _fund(chain, params)
    signature = Signature.default()
    chain.send_and_confirm_transaction.return_value = signature
    chain.get_signature_status.return_value = Mock(err=None)

    assert await quoter.execute_swap_safe(params, wallet) == signature
    assert chain.send_and_confirm_transaction.await_count == 1


@pytest.mark.asyncio
async def test_execute_swap_safe_confirmed_with_error(chain, market, wallet):
    _, params, quoter = market
    _fund(chain, params)
    chain.send_and_confirm_transaction.return_value = Signature.default()
    chain.get_signature_status.return_value = Mock(err="InstructionError")

    with pytest.raises(MeteoraError) as excinfo:
        await quoter.execute_swap_safe(params, wallet)
    assert excinfo.value.kind is ErrorKind.TRANSACTION_FAILED


@pytest.mark.asyncio
async def test_execute_swap_safe_stops_on_failed_simulation(chain, market, wallet):
    _, params, quoter = market
    _fund(chain, params)
    chain.simulate_transaction.return_value = Mock(err="custom program error", logs=["failed"], units_consumed=0)

    with pytest.raises(MeteoraError) as excinfo:
        await quoter.execute_swap_safe(params, wallet)
    assert excinfo.value.kind is ErrorKind.SIMULATION_FAILED
    assert chain.send_and_confirm_transaction.await_count == 0


@pytest.mark.asyncio
async def test_execute_swap_safe_checks_balance_before_sending(chain, market, wallet):
    _, params, quoter = market
    chain.add_token_account(params.user, params.input_mint, 10)
    chain.add_token_account(params.user, params.output_mint, 0)
    chain.simulate_transaction.return_value = Mock(err=None, logs=[], units_consumed=1)

    with pytest.raises(MeteoraError) as excinfo:
        await quoter.execute_swap_safe(params, wallet)
    assert excinfo.value.kind is ErrorKind.INSUFFICIENT_BALANCE
    assert chain.send_and_confirm_transaction.await_count == 0


def test_token_program_builders():
    owner, source, dest = make_pubkey(), make_pubkey(), make_pubkey()
    approve_ix = TradeQuoter.build_approve_instruction(owner, source, dest, 42)
    transfer_ix = TradeQuoter.build_transfer_instruction(source, dest, owner, 42)
    assert [meta.pubkey for meta in approve_ix.accounts] == [source, dest, owner]
    assert [meta.pubkey for meta in transfer_ix.accounts] == [source, dest, owner]
