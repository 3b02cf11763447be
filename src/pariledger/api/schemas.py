"""Pydantic schemas for API request/response consistency and OpenAPI docs."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from pariledger.models.market import SIDE_PATTERN


# --- Health ---
class HealthResponse(BaseModel):
    status: str = "ok"


# --- Error (consistent shape for 4xx/5xx) ---
class ErrorResponse(BaseModel):
    detail: str = Field(..., description="Human-readable message")
    code: str | None = Field(None, description="Machine-readable code, e.g. not_found, invalid_state")


# --- Markets ---
class MarketListItem(BaseModel):
    market_id: str
    title: str
    category: str
    market_type: str
    status: str
    total_yes_amount: float
    total_no_amount: float
    total_volume: float
    volume_24h: float
    closes_at: int | None = None
    price_change: float = 0.0


class MarketsListResponse(BaseModel):
    markets: list[MarketListItem]
    total: int


class ChartPointItem(BaseModel):
    timestamp: int
    yes_price: float
    no_price: float
    volume: float


class ChartResponse(BaseModel):
    market_id: str
    points: list[ChartPointItem]


class PayoutPreviewResponse(BaseModel):
    market_id: str
    amount: float
    prediction: str
    outcome_id: str | None = None
    potential_payout: float


class CreateMarketRequest(BaseModel):
    admin_wallet: str
    title: str
    description: str = ""
    image_url: str = ""
    category: str = "other"
    initial_yes_price: float = Field(0.5, ge=0, le=1)
    closes_at: int | None = None
    resolve_time: int | None = None
    timing_type: str = "fixed"
    timing_note: str | None = None
    outcomes: list[str] | None = Field(None, description="Two or more names make a multi-outcome market")
    rules: list[str] | None = None


class AdminRequest(BaseModel):
    admin_wallet: str


class ResolveRequest(BaseModel):
    admin_wallet: str
    outcome: str | None = Field(None, pattern=SIDE_PATTERN, description="Winning side of a yes/no market")
    winning_outcome_id: str | None = Field(None, description="Winning outcome of a multi-outcome market")


# --- Bets ---
class PlaceBetRequest(BaseModel):
    wallet_address: str
    amount: float = Field(..., gt=0, description="Gross stake, platform fee included")
    prediction: str = Field(..., pattern=SIDE_PATTERN)
    transaction_signature: str = ""
    outcome_id: str | None = None


class CopyTradeRequest(BaseModel):
    copier_wallet: str
    target_wallet: str
    transaction_signature: str = ""


# --- Users ---
class BalanceResponse(BaseModel):
    wallet_address: str
    balance: float
    total_deposited: float
    total_withdrawn: float
    total_winnings: float
    last_updated: int


class PositionItem(BaseModel):
    market_id: str
    title: str
    status: str
    yes_amount: float
    no_amount: float
    invested: float
    returned: float
    profit: float
    bet_count: int
    outcome_id: str | None = None


class PortfolioResponse(BaseModel):
    wallet_address: str
    invested: float
    returned: float
    profit: float
    active_positions: int
    positions: list[PositionItem]


class LeaderboardItem(BaseModel):
    rank: int
    wallet_address: str
    winnings: float
    volume: float
    profit: float
    bets: int


class OperationResponse(BaseModel):
    success: bool = True
    data: dict[str, Any] = Field(default_factory=dict)
