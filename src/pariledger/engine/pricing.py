"""
Fee and pari-mutuel payout math.

All stakes on both sides form one pool. Winners split the whole pool pro rata to their stake,
then a settlement fee is taken from each individual gross payout, so only winners pay it.
Pools hold net amounts: the entry fee is taken once when a stake is placed.
"""

from __future__ import annotations

from dataclasses import dataclass

from pariledger.models import Market


@dataclass(frozen=True)
class Payout:
    """Settlement of one winning stake."""

    gross: float
    fee: float
    net: float


@dataclass(frozen=True)
class ChartPoint:
    timestamp: int
    yes_price: float
    no_price: float
    volume: float


def split_platform_fee(amount: float, fee_rate: float) -> tuple[float, float]:
    """Return (platform_fee, net_amount) for a gross stake."""
    fee = amount * fee_rate
    return fee, amount - fee


def parimutuel_payout(stake: float, winning_pool: float, total_pool: float, settlement_rate: float) -> Payout:
    """
    share = stake / winning_pool; gross = total_pool * share; net = gross - gross * rate.
    No payout when either pool is empty.
    """
    if winning_pool <= 0 or total_pool <= 0 or stake <= 0:
        return Payout(0.0, 0.0, 0.0)
    gross = total_pool * (stake / winning_pool)
    fee = gross * settlement_rate
    return Payout(gross=gross, fee=fee, net=gross - fee)


def exit_value(stake: float, side_pool: float, total_pool: float) -> float:
    """Marked value of a stake if its side won right now. No settlement fee."""
    if side_pool <= 0:
        return 0.0
    return (stake / side_pool) * total_pool


def side_pools(market: Market, side: str, outcome_id: str | None = None) -> tuple[float, float]:
    """
    (side_pool, total_pool) for a side. For outcome stakes the total spans every outcome,
    the same scope multi-outcome resolution uses.
    """
    if outcome_id is not None:
        outcome = market.find_outcome(outcome_id)
        if outcome is None:
            return 0.0, 0.0
        side_pool = outcome.total_yes_amount if side == "yes" else outcome.total_no_amount
        total = sum(o.total_yes_amount + o.total_no_amount for o in market.outcomes)
        return side_pool, total
    side_pool = market.total_yes_amount if side == "yes" else market.total_no_amount
    return side_pool, market.total_pool


def potential_payout(
    market: Market,
    amount: float,
    side: str,
    fee_rate: float,
    settlement_rate: float,
    outcome_id: str | None = None,
) -> float:
    """What-if net payout for a new gross stake, assuming its side wins with today's pools."""
    _, net_stake = split_platform_fee(amount, fee_rate)
    side_pool, total = side_pools(market, side, outcome_id)
    side_pool += net_stake
    total += net_stake
    payout = parimutuel_payout(net_stake, side_pool, total, settlement_rate)
    return payout.net


def implied_prices(yes_pool: float, no_pool: float, initial_yes_price: float = 0.5) -> tuple[float, float]:
    """Pool-implied (yes_price, no_price); falls back to the initial price on an empty pool."""
    total = yes_pool + no_pool
    if total <= 0:
        return initial_yes_price, 1 - initial_yes_price
    return yes_pool / total, no_pool / total


def refresh_outcome_prices(market: Market) -> None:
    for outcome in market.outcomes:
        outcome.yes_price, outcome.no_price = implied_prices(outcome.total_yes_amount, outcome.total_no_amount)


def chart_data(market: Market) -> list[ChartPoint]:
    """Cumulative pool-implied price after each bet, starting from the initial price."""
    points = [
        ChartPoint(
            timestamp=market.created_at,
            yes_price=market.initial_yes_price,
            no_price=1 - market.initial_yes_price,
            volume=0.0,
        )
    ]
    yes = no = volume = 0.0
    for bet in sorted(market.bets, key=lambda b: b.timestamp):
        if bet.prediction == "yes":
            yes += bet.amount
        else:
            no += bet.amount
        volume += bet.amount
        yes_price, no_price = implied_prices(yes, no, market.initial_yes_price)
        points.append(ChartPoint(bet.timestamp, yes_price, no_price, volume))
    return points


def price_change(market: Market) -> float:
    """Percentage-point move of the yes price since creation."""
    if not market.bets:
        return 0.0
    yes_price, _ = implied_prices(market.total_yes_amount, market.total_no_amount, market.initial_yes_price)
    return (yes_price - market.initial_yes_price) * 100
