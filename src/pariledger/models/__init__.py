"""Canonical schema (Pydantic) - Market, Bet, Outcome, balances and stats."""

from pariledger.models.ledger import (
    BalanceEntry,
    CopyTradeAction,
    OperationResult,
    PlatformStats,
    UserAgreement,
    UserBalance,
)
from pariledger.models.market import Bet, Market, MarketComment, MarketNews, MarketRule, Outcome

__all__ = [
    "Market",
    "Bet",
    "Outcome",
    "MarketNews",
    "MarketRule",
    "MarketComment",
    "UserBalance",
    "BalanceEntry",
    "PlatformStats",
    "CopyTradeAction",
    "UserAgreement",
    "OperationResult",
]
