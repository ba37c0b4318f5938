"""Typed errors raised by the Meteora pool client."""
from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    # transport
    RPC_ERROR = "rpc_error"
    # missing / malformed accounts
    ACCOUNT_NOT_FOUND = "account_not_found"
    INVALID_POOL_DATA = "invalid_pool_data"
    INVALID_ACCOUNT_DATA = "invalid_account_data"
    DESERIALIZATION_ERROR = "deserialization_error"
    # domain logic
    NO_LIQUIDITY_POOL_FOUND = "no_liquidity_pool_found"
    NO_HISTORICAL_DATA = "no_historical_data"
    CALCULATION_ERROR = "calculation_error"
    INVALID_PRICE = "invalid_price"
    # trade safety
    SLIPPAGE_EXCEEDED = "slippage_exceeded"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    TRANSACTION_FAILED = "transaction_failed"
    TRANSACTION_TIMEOUT = "transaction_timeout"
    SIMULATION_FAILED = "simulation_failed"
    # input validation
    INVALID_INPUT = "invalid_input"
    GENERIC = "error"


class MeteoraError(Exception):
    """Single exception type; branch on ``kind``, read details from ``message``."""

    def __init__(self, kind: ErrorKind, message: str = ""):
        self.kind = kind
        self.message = message
        super().__init__(f"{kind.value}: {message}" if message else kind.value)

    def __repr__(self) -> str:
        return f"MeteoraError(kind={self.kind.name}, message={self.message!r})"
