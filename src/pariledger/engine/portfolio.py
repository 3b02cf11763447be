"""Per-wallet positions and leaderboard, derived from the market collection."""

from __future__ import annotations

from dataclasses import dataclass, field

from pariledger.engine.pricing import parimutuel_payout
from pariledger.models import Market

LEADERBOARD_SORTS = ("winnings", "volume", "profit", "bets")


@dataclass
class Position:
    """A wallet's stake in one market."""

    market_id: str
    title: str
    status: str  # active | won | lost | refunded | closed
    yes_amount: float = 0.0
    no_amount: float = 0.0
    invested: float = 0.0  # gross, fee included
    returned: float = 0.0
    bet_count: int = 0
    outcome_id: str | None = None

    @property
    def profit(self) -> float:
        return self.returned - self.invested


@dataclass
class Portfolio:
    wallet_address: str
    positions: list[Position] = field(default_factory=list)

    @property
    def invested(self) -> float:
        return sum(p.invested for p in self.positions)

    @property
    def returned(self) -> float:
        return sum(p.returned for p in self.positions)

    @property
    def profit(self) -> float:
        return self.returned - self.invested

    @property
    def active_positions(self) -> int:
        return sum(1 for p in self.positions if p.status == "active")


@dataclass
class LeaderboardEntry:
    wallet_address: str
    winnings: float = 0.0
    volume: float = 0.0
    profit: float = 0.0
    bets: int = 0


def _winning_stake(market: Market, wallet_address: str) -> tuple[float, float, float]:
    """(wallet's winning stake, winning pool, total pool) for a resolved market."""
    if market.is_multi_outcome:
        winner = market.find_outcome(market.winning_outcome_id or "")
        if winner is None:
            return 0.0, 0.0, 0.0
        stake = sum(
            b.amount
            for b in market.bets
            if b.wallet_address == wallet_address and b.outcome_id == winner.id and b.prediction == "yes"
        )
        total = sum(o.total_yes_amount + o.total_no_amount for o in market.outcomes)
        return stake, winner.total_yes_amount, total
    stake = sum(b.amount for b in market.bets if b.wallet_address == wallet_address and b.prediction == market.outcome)
    winning_pool = market.total_yes_amount if market.outcome == "yes" else market.total_no_amount
    return stake, winning_pool, market.total_pool


def position_for(market: Market, wallet_address: str, settlement_rate: float) -> Position | None:
    bets = [b for b in market.bets if b.wallet_address == wallet_address]
    if not bets:
        return None
    position = Position(market_id=market.id, title=market.title, status=market.status, bet_count=len(bets))
    for bet in bets:
        position.invested += bet.amount + bet.platform_fee
        if bet.prediction == "yes":
            position.yes_amount += bet.amount
        else:
            position.no_amount += bet.amount
    if market.is_multi_outcome and len({b.outcome_id for b in bets}) == 1:
        position.outcome_id = bets[0].outcome_id

    if market.refunded_at is not None:
        position.status = "refunded"
        position.returned = sum(b.amount for b in bets)
    elif market.status == "resolved":
        stake, winning_pool, total_pool = _winning_stake(market, wallet_address)
        payout = parimutuel_payout(stake, winning_pool, total_pool, settlement_rate)
        position.status = "won" if payout.net > 0 else "lost"
        position.returned = payout.net
    return position


def build_portfolio(markets: list[Market], wallet_address: str, settlement_rate: float) -> Portfolio:
    portfolio = Portfolio(wallet_address=wallet_address)
    for market in markets:
        position = position_for(market, wallet_address, settlement_rate)
        if position is not None:
            portfolio.positions.append(position)
    return portfolio


def build_leaderboard(
    markets: list[Market],
    settlement_rate: float,
    sort_by: str = "winnings",
    limit: int = 50,
) -> list[LeaderboardEntry]:
    """Rank every wallet that has bet. Winnings count settled payouts and refunds."""
    if sort_by not in LEADERBOARD_SORTS:
        raise ValueError(f"sort_by must be one of {LEADERBOARD_SORTS}")
    entries: dict[str, LeaderboardEntry] = {}
    for market in markets:
        for wallet in market.bettors():
            position = position_for(market, wallet, settlement_rate)
            entry = entries.setdefault(wallet, LeaderboardEntry(wallet_address=wallet))
            entry.winnings += position.returned
            entry.volume += position.invested
            entry.profit += position.profit
            entry.bets += position.bet_count
    ranked = sorted(entries.values(), key=lambda e: getattr(e, sort_by), reverse=True)
    return ranked[:limit]
