"""Balance, stats, copy-trade and operation result entities."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

ENTRY_KIND_PATTERN = "^(deposit|withdraw|winning|bet)$"


class UserBalance(BaseModel):
    """Per-wallet spendable ledger (materialized from the balance journal)."""

    wallet_address: str
    balance: float = 0.0
    total_deposited: float = 0.0
    total_withdrawn: float = 0.0
    total_winnings: float = 0.0
    last_updated: int = 0


class BalanceEntry(BaseModel):
    """One journaled balance adjustment. `key` makes re-application a no-op."""

    key: str
    wallet_address: str
    delta: float
    kind: str = Field(..., pattern=ENTRY_KIND_PATTERN)
    timestamp: int
    market_id: str | None = None
    note: str = ""


class PlatformStats(BaseModel):
    """Dashboard cache, always reconstructible from the market collection."""

    total_volume: float = 0.0
    total_fees: float = 0.0
    total_users: int = 0
    active_markets: int = 0
    total_pool_money: float = 0.0
    last_24h_volume: float = 0.0
    last_24h_fees: float = 0.0
    last_updated: int = 0


class CopyTradeAction(BaseModel):
    """Audit record of a copy trade. Not authoritative for payouts."""

    id: str
    copier_wallet: str
    target_wallet: str
    market_id: str
    amount: float
    prediction: str = Field(..., pattern="^(yes|no)$")
    timestamp: int
    transaction_signature: str = ""


class UserAgreement(BaseModel):
    wallet_address: str
    accepted_terms: bool = False
    accepted_privacy: bool = False
    timestamp: int = 0


class OperationResult(BaseModel):
    """Outcome of an engine operation: success, or a human-readable reason."""

    success: bool
    error: str | None = None
    code: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def ok(cls, data: dict[str, Any] | None = None) -> OperationResult:
        return cls(success=True, data=data or {})

    @classmethod
    def fail(cls, error: str, code: str) -> OperationResult:
        return cls(success=False, error=error, code=code)
