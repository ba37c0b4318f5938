from unittest.mock import AsyncMock, Mock, patch

import pytest
from solana.rpc.core import RPCException

from meteora_client.errors import ErrorKind, MeteoraError
from meteora_client.rpc import MeteoraClient

from .fixtures import make_pubkey


def test_rejects_non_http_endpoint():
    with pytest.raises(MeteoraError) as excinfo:
        MeteoraClient("ws://localhost:8900")
    assert excinfo.value.kind is ErrorKind.GENERIC


@pytest.mark.asyncio
async def test_missing_account_is_account_not_found():
    client = MeteoraClient("http://localhost:8899")
    with patch.object(client.client, "get_account_info", new=AsyncMock(return_value=Mock(value=None))):
        with pytest.raises(MeteoraError) as excinfo:
            await client.get_account_data(make_pubkey())
    assert excinfo.value.kind is ErrorKind.ACCOUNT_NOT_FOUND


@pytest.mark.asyncio
async def test_transport_errors_become_rpc_error():
    client = MeteoraClient("http://localhost:8899")
    failure = RPCException("connection refused")
    with patch.object(client.client, "get_account_info", new=AsyncMock(side_effect=failure)):
        with pytest.raises(MeteoraError) as excinfo:
            await client.get_account_data(make_pubkey())
    assert excinfo.value.kind is ErrorKind.RPC_ERROR
    assert excinfo.value.__cause__ is failure


@pytest.mark.asyncio
async def test_multiple_accounts_batches_and_marks_missing():
    client = MeteoraClient("http://localhost:8899")
    addresses = [make_pubkey() for _ in range(150)]

    async def fake_fetch(keys, commitment=None):
        return Mock(value=[None if index % 2 else Mock(data=b"\x01") for index in range(len(keys))])

    fetch = AsyncMock(side_effect=fake_fetch)
    with patch.object(client.client, "get_multiple_accounts", new=fetch):
        data = await client.get_multiple_accounts_data(addresses)

    assert fetch.await_count == 2
    assert len(data) == 150
    assert data[:2] == [b"\x01", b""]


@pytest.mark.asyncio
async def test_failed_signatures_are_dropped():
    client = MeteoraClient("http://localhost:8899")
    entries = [Mock(signature="ok", err=None), Mock(signature="bad", err="InstructionError")]
    with patch.object(
        client.client, "get_signatures_for_address", new=AsyncMock(return_value=Mock(value=entries))
    ):
        assert await client.get_signatures_for_address(make_pubkey(), 10) == ["ok"]
