"""Market, Bet, Outcome and content entities - the persisted market collection."""

from __future__ import annotations

from pydantic import BaseModel, Field

SIDE_PATTERN = "^(yes|no)$"
STATUS_PATTERN = "^(active|closed|resolved)$"
MARKET_TYPE_PATTERN = "^(simple|multi-outcome)$"
TIMING_PATTERN = "^(fixed|flexible|tbd)$"

MARKET_CATEGORIES = (
    "crypto",
    "politics",
    "sports",
    "entertainment",
    "technology",
    "economy",
    "finance",
    "weather",
    "science",
    "elections",
    "esports",
    "ai",
    "other",
)


class Bet(BaseModel):
    """One stake. Amount is net of the platform fee."""

    id: str
    wallet_address: str
    amount: float = Field(..., ge=0)
    prediction: str = Field(..., pattern=SIDE_PATTERN)
    timestamp: int  # ms epoch
    transaction_signature: str = ""
    platform_fee: float = Field(0.0, ge=0)
    outcome_id: str | None = None  # multi-outcome markets only


class Outcome(BaseModel):
    """Named sub-market of a multi-outcome market with its own yes/no pools."""

    id: str
    name: str
    image_url: str | None = None
    total_yes_amount: float = 0.0
    total_no_amount: float = 0.0
    yes_price: float = 0.5
    no_price: float = 0.5
    unique_yes_bettors: list[str] = Field(default_factory=list)
    unique_no_bettors: list[str] = Field(default_factory=list)
    is_winner: bool | None = None


class MarketNews(BaseModel):
    id: str
    content: str
    link: str | None = None
    created_at: int
    created_by: str


class MarketRule(BaseModel):
    id: str
    content: str
    order: int = 0


class MarketComment(BaseModel):
    id: str
    wallet_address: str
    content: str
    timestamp: int
    likes: list[str] = Field(default_factory=list)
    parent_id: str | None = None


class Market(BaseModel):
    """One wagering event (binary or multi-outcome)."""

    id: str
    title: str
    description: str = ""
    image_url: str = ""
    category: str = "other"
    market_type: str = Field("simple", pattern=MARKET_TYPE_PATTERN)
    initial_yes_price: float = Field(0.5, ge=0, le=1)
    created_at: int
    closes_at: int | None = None
    resolve_time: int | None = None
    timing_type: str = Field("fixed", pattern=TIMING_PATTERN)
    timing_note: str | None = None
    resolved_at: int | None = None
    refunded_at: int | None = None
    status: str = Field("active", pattern=STATUS_PATTERN)
    outcome: str | None = Field(None, pattern=SIDE_PATTERN)
    winning_outcome_id: str | None = None
    total_yes_amount: float = 0.0
    total_no_amount: float = 0.0
    total_volume: float = 0.0  # gross, pre-fee
    volume_24h: float = 0.0
    platform_fees_collected: float = 0.0
    settlement_fees_collected: float = 0.0
    house_retained: float = 0.0  # pool kept when nobody backed the winning side
    unique_yes_bettors: list[str] = Field(default_factory=list)
    unique_no_bettors: list[str] = Field(default_factory=list)
    bets: list[Bet] = Field(default_factory=list)
    outcomes: list[Outcome] = Field(default_factory=list)
    news: list[MarketNews] = Field(default_factory=list)
    comments: list[MarketComment] = Field(default_factory=list)
    rules: list[MarketRule] = Field(default_factory=list)
    created_by: str = ""
    last_edited_at: int | None = None
    last_edited_by: str | None = None

    @property
    def is_multi_outcome(self) -> bool:
        return self.market_type == "multi-outcome"

    @property
    def total_pool(self) -> float:
        return self.total_yes_amount + self.total_no_amount

    def find_outcome(self, outcome_id: str) -> Outcome | None:
        return next((o for o in self.outcomes if o.id == outcome_id), None)

    def find_bet(self, bet_id: str) -> Bet | None:
        return next((b for b in self.bets if b.id == bet_id), None)

    def bettors(self) -> set[str]:
        return {b.wallet_address for b in self.bets}
