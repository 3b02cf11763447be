"""
Market accounting engine - bet placement, resolution, copy trades, early exit, auto-refund.

Every mutating operation is one load-mutate-save cycle over the market collection, held under
the collection lock, followed by secondary writes (balance journal, platform stats). Public
operations return an OperationResult; LedgerError subclasses never escape to the caller.
"""

from __future__ import annotations

import functools
import time
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import structlog
from pydantic import ValidationError

from pariledger.errors import (
    InsufficientFunds,
    InvalidInput,
    InvalidState,
    LedgerError,
    NotFound,
    StorageUnavailable,
    Unauthorized,
)
from pariledger.engine.portfolio import (
    LEADERBOARD_SORTS,
    LeaderboardEntry,
    Portfolio,
    build_leaderboard,
    build_portfolio,
)
from pariledger.engine.pricing import (
    exit_value,
    parimutuel_payout,
    potential_payout,
    refresh_outcome_prices,
    side_pools,
    split_platform_fee,
)
from pariledger.ledger.balances import BalanceLedger
from pariledger.ledger.stats import DAY_MS, PlatformStatsAggregator, market_volume_since
from pariledger.models import (
    BalanceEntry,
    Bet,
    CopyTradeAction,
    Market,
    MarketComment,
    MarketNews,
    MarketRule,
    OperationResult,
    Outcome,
    PlatformStats,
    UserAgreement,
    UserBalance,
)
from pariledger.models.market import MARKET_CATEGORIES
from pariledger.storage.ledger_store import LedgerStore, MarketSession
from pariledger.storage.object_store import build_object_store

log = structlog.get_logger(__name__)

HOUR_MS = 60 * 60 * 1000
MAX_COMMENT_LENGTH = 1000
EDITABLE_FIELDS = frozenset(
    {"title", "description", "image_url", "category", "closes_at", "resolve_time", "timing_type", "timing_note"}
)


def now_ms() -> int:
    return int(time.time() * 1000)


def _new_id(prefix: str, ts: int) -> str:
    return f"{prefix}-{ts}-{uuid.uuid4().hex[:7]}"


@dataclass(frozen=True)
class EngineConfig:
    """Injected policy: who the admin is, fee rates, refund age, minimum stake."""

    admin_wallet: str
    platform_fee_pct: float = 2.5
    settlement_fee_pct: float = 3.0
    refund_threshold_ms: int = 78 * HOUR_MS
    minimum_bet: float = 0.01

    @property
    def platform_fee_rate(self) -> float:
        return self.platform_fee_pct / 100

    @property
    def settlement_fee_rate(self) -> float:
        return self.settlement_fee_pct / 100

    @classmethod
    def from_settings(cls, settings: Any) -> EngineConfig:
        return cls(
            admin_wallet=settings.admin_wallet,
            platform_fee_pct=settings.platform_fee_pct,
            settlement_fee_pct=settings.settlement_fee_pct,
            refund_threshold_ms=int(settings.refund_threshold_hours * HOUR_MS),
            minimum_bet=settings.minimum_bet,
        )


def ledger_operation(func: Callable[..., Awaitable[dict[str, Any]]]) -> Callable[..., Awaitable[OperationResult]]:
    """Run an engine operation and turn LedgerError into a failed OperationResult."""

    @functools.wraps(func)
    async def wrapper(self: MarketEngine, *args: Any, **kwargs: Any) -> OperationResult:
        with structlog.contextvars.bound_contextvars(operation=func.__name__):
            try:
                data = await func(self, *args, **kwargs)
            except StorageUnavailable as e:
                log.error("operation_failed", code=e.code, error=e.message)
                return OperationResult.fail(e.message, e.code)
            except LedgerError as e:
                log.info("operation_rejected", code=e.code, error=e.message)
                return OperationResult.fail(e.message, e.code)
        return OperationResult.ok(data)

    return wrapper


def _validate_side(prediction: str) -> None:
    if prediction not in ("yes", "no"):
        raise InvalidInput("Prediction must be 'yes' or 'no'")


def _add_stake(pool: Market | Outcome, side: str, amount: float, wallet: str) -> None:
    if side == "yes":
        pool.total_yes_amount += amount
        if wallet not in pool.unique_yes_bettors:
            pool.unique_yes_bettors.append(wallet)
    else:
        pool.total_no_amount += amount
        if wallet not in pool.unique_no_bettors:
            pool.unique_no_bettors.append(wallet)


def _remove_stake(pool: Market | Outcome, side: str, amount: float, wallet: str, still_holding: bool) -> None:
    if side == "yes":
        pool.total_yes_amount = max(0.0, pool.total_yes_amount - amount)
        if not still_holding and wallet in pool.unique_yes_bettors:
            pool.unique_yes_bettors.remove(wallet)
    else:
        pool.total_no_amount = max(0.0, pool.total_no_amount - amount)
        if not still_holding and wallet in pool.unique_no_bettors:
            pool.unique_no_bettors.remove(wallet)


def _require_market(session: MarketSession, market_id: str) -> Market:
    market = session.find(market_id)
    if market is None:
        raise NotFound("Market not found")
    return market


def _check_resolvable(market: Market) -> None:
    if market.status == "resolved":
        raise InvalidState("Market already resolved")
    if market.refunded_at is not None:
        raise InvalidState("Market was refunded and cannot be resolved")


class MarketEngine:
    """Owns every mutation of the market collection and the writes that follow it."""

    def __init__(
        self,
        store: LedgerStore,
        config: EngineConfig,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self.store = store
        self.config = config
        self.clock = clock or now_ms
        self.balances = BalanceLedger(store, clock=self.clock)
        self.stats = PlatformStatsAggregator(store, clock=self.clock)

    # --- helpers ---
    def _require_admin(self, wallet: str, action: str) -> None:
        if wallet != self.config.admin_wallet:
            raise Unauthorized(f"Unauthorized: Only admin can {action}")

    async def _after_commit(self, entries: list[BalanceEntry] | None = None) -> None:
        """Secondary writes once the collection is saved: balances, then stats."""
        if entries:
            try:
                await self.balances.apply(entries)
            except StorageUnavailable:
                log.error("balance_write_failed", entries=[e.model_dump() for e in entries])
                raise
        try:
            await self.stats.refresh()
        except StorageUnavailable as e:
            # Derived document; the next mutation or `stats rebuild` restores it.
            log.warning("stats_refresh_failed", error=e.message)

    async def _void_entries(self, entries: list[BalanceEntry], note: str) -> None:
        """Journal the reversal of entries whose market write never landed."""
        reversals = [
            self.balances.entry(f"void:{e.key}", e.wallet_address, -e.delta, e.kind, e.market_id, note=note)
            for e in entries
        ]
        try:
            await self.balances.apply(reversals)
        except StorageUnavailable:
            log.error("balance_write_failed", entries=[e.model_dump() for e in reversals])
            return
        log.warning("balance_entries_voided", keys=[e.key for e in entries], note=note)

    def _settle(self, market: Market, winning_bets: list[Bet], winning_pool: float, total_pool: float):
        """Pay the grouped winning stakes. Returns (winners, balance entries, settlement fees)."""
        stakes: dict[str, float] = {}
        for bet in winning_bets:
            stakes[bet.wallet_address] = stakes.get(bet.wallet_address, 0.0) + bet.amount
        if winning_pool <= 0 or not stakes:
            market.house_retained = total_pool
            if total_pool > 0:
                log.info("house_retained_pool", market_id=market.id, amount=round(total_pool, 9))
            return [], [], 0.0

        winners = []
        entries = []
        fees = 0.0
        for wallet, stake in stakes.items():
            payout = parimutuel_payout(stake, winning_pool, total_pool, self.config.settlement_fee_rate)
            fees += payout.fee
            winners.append({"wallet_address": wallet, "stake": stake, "gross": payout.gross, "payout": payout.net})
            entries.append(
                self.balances.entry(f"payout:{market.id}:{wallet}", wallet, payout.net, "winning", market.id)
            )
        market.settlement_fees_collected = fees
        return winners, entries, fees

    # --- market lifecycle (admin) ---
    @ledger_operation
    async def create_market(
        self,
        admin_wallet: str,
        title: str,
        description: str = "",
        image_url: str = "",
        category: str = "other",
        initial_yes_price: float = 0.5,
        closes_at: int | None = None,
        resolve_time: int | None = None,
        timing_type: str = "fixed",
        timing_note: str | None = None,
        outcomes: list[str] | None = None,
        rules: list[str] | None = None,
    ) -> dict[str, Any]:
        self._require_admin(admin_wallet, "create markets")
        if not title.strip():
            raise InvalidInput("Title is required")
        if category not in MARKET_CATEGORIES:
            raise InvalidInput(f"Unknown category: {category}")
        if not 0 <= initial_yes_price <= 1:
            raise InvalidInput("Initial yes price must be between 0 and 1")
        now = self.clock()
        if closes_at is not None and closes_at <= now:
            raise InvalidInput("Closing time must be in the future")
        names = [n.strip() for n in (outcomes or []) if n.strip()]
        if outcomes is not None and len(set(names)) < 2:
            raise InvalidInput("Multi-outcome markets need at least two distinct outcomes")

        market = Market(
            id=_new_id("market", now),
            title=title.strip(),
            description=description,
            image_url=image_url,
            category=category,
            market_type="multi-outcome" if names else "simple",
            initial_yes_price=initial_yes_price,
            created_at=now,
            closes_at=closes_at,
            resolve_time=resolve_time,
            timing_type=timing_type,
            timing_note=timing_note,
            created_by=admin_wallet,
            outcomes=[
                Outcome(id=f"outcome-{i + 1}-{uuid.uuid4().hex[:5]}", name=name)
                for i, name in enumerate(dict.fromkeys(names))
            ],
            rules=[
                MarketRule(id=f"rule-{i + 1}", content=content, order=i) for i, content in enumerate(rules or [])
            ],
        )
        async with self.store.editing_markets() as session:
            session.markets.insert(0, market)
            session.mark_dirty()
        log.info("market_created", market_id=market.id, market_type=market.market_type, outcomes=len(market.outcomes))
        await self._after_commit()
        return {"market_id": market.id}

    @ledger_operation
    async def edit_market(self, market_id: str, admin_wallet: str, updates: dict[str, Any]) -> dict[str, Any]:
        self._require_admin(admin_wallet, "edit markets")
        unknown = set(updates) - EDITABLE_FIELDS
        if unknown:
            raise InvalidInput(f"Fields cannot be edited: {', '.join(sorted(unknown))}")
        if "category" in updates and updates["category"] not in MARKET_CATEGORIES:
            raise InvalidInput(f"Unknown category: {updates['category']}")
        if "title" in updates and not str(updates["title"] or "").strip():
            raise InvalidInput("Title is required")
        now = self.clock()
        if updates.get("closes_at") is not None and updates["closes_at"] <= now:
            raise InvalidInput("Closing time must be in the future")
        async with self.store.editing_markets() as session:
            market = _require_market(session, market_id)
            if market.status == "resolved":
                raise InvalidState("Resolved markets cannot be edited")
            # The edited record replaces the stored one only after full validation
            try:
                edited = Market.model_validate(
                    {**market.model_dump(), **updates, "last_edited_at": now, "last_edited_by": admin_wallet}
                )
            except ValidationError as e:
                fields = ", ".join(str(err["loc"][0]) for err in e.errors() if err["loc"])
                raise InvalidInput(f"Invalid value for: {fields}") from e
            session.markets[session.markets.index(market)] = edited
            session.mark_dirty()
        log.info("market_edited", market_id=market_id, fields=sorted(updates))
        return {"market_id": market_id}

    @ledger_operation
    async def delete_market(self, market_id: str, admin_wallet: str) -> dict[str, Any]:
        self._require_admin(admin_wallet, "delete markets")
        async with self.store.editing_markets() as session:
            market = _require_market(session, market_id)
            if market.bets:
                raise InvalidState("Cannot delete a market that has bets")
            session.markets.remove(market)
            session.mark_dirty()
        log.info("market_deleted", market_id=market_id)
        await self._after_commit()
        return {"market_id": market_id}

    @ledger_operation
    async def close_market(self, market_id: str, admin_wallet: str) -> dict[str, Any]:
        self._require_admin(admin_wallet, "close markets")
        async with self.store.editing_markets() as session:
            market = _require_market(session, market_id)
            if market.status != "active":
                raise InvalidState("Market is not active")
            market.status = "closed"
            session.mark_dirty()
        log.info("market_closed", market_id=market_id)
        await self._after_commit()
        return {"market_id": market_id}

    @ledger_operation
    async def add_news(self, market_id: str, admin_wallet: str, content: str, link: str | None = None) -> dict[str, Any]:
        self._require_admin(admin_wallet, "post news")
        if not content.strip():
            raise InvalidInput("News content is required")
        now = self.clock()
        news = MarketNews(id=_new_id("news", now), content=content.strip(), link=link, created_at=now, created_by=admin_wallet)
        async with self.store.editing_markets() as session:
            market = _require_market(session, market_id)
            market.news.insert(0, news)
            session.mark_dirty()
        return {"news_id": news.id}

    @ledger_operation
    async def set_rules(self, market_id: str, admin_wallet: str, rules: list[str]) -> dict[str, Any]:
        self._require_admin(admin_wallet, "edit rules")
        async with self.store.editing_markets() as session:
            market = _require_market(session, market_id)
            market.rules = [
                MarketRule(id=f"rule-{i + 1}", content=content.strip(), order=i)
                for i, content in enumerate(r for r in rules if r.strip())
            ]
            session.mark_dirty()
            count = len(market.rules)
        return {"rules": count}

    # --- comments ---
    @ledger_operation
    async def add_comment(
        self, market_id: str, wallet_address: str, content: str, parent_id: str | None = None
    ) -> dict[str, Any]:
        content = content.strip()
        if not content:
            raise InvalidInput("Comment cannot be empty")
        if len(content) > MAX_COMMENT_LENGTH:
            raise InvalidInput(f"Comment exceeds {MAX_COMMENT_LENGTH} characters")
        now = self.clock()
        comment = MarketComment(
            id=_new_id("comment", now), wallet_address=wallet_address, content=content, timestamp=now, parent_id=parent_id
        )
        async with self.store.editing_markets() as session:
            market = _require_market(session, market_id)
            if parent_id is not None and not any(c.id == parent_id for c in market.comments):
                raise NotFound("Parent comment not found")
            market.comments.append(comment)
            session.mark_dirty()
        return {"comment_id": comment.id}

    @ledger_operation
    async def toggle_comment_like(self, market_id: str, comment_id: str, wallet_address: str) -> dict[str, Any]:
        async with self.store.editing_markets() as session:
            market = _require_market(session, market_id)
            comment = next((c for c in market.comments if c.id == comment_id), None)
            if comment is None:
                raise NotFound("Comment not found")
            liked = wallet_address not in comment.likes
            if liked:
                comment.likes.append(wallet_address)
            else:
                comment.likes.remove(wallet_address)
            session.mark_dirty()
            likes = len(comment.likes)
        return {"liked": liked, "likes": likes}

    @ledger_operation
    async def delete_comment(self, market_id: str, comment_id: str, wallet_address: str) -> dict[str, Any]:
        async with self.store.editing_markets() as session:
            market = _require_market(session, market_id)
            comment = next((c for c in market.comments if c.id == comment_id), None)
            if comment is None:
                raise NotFound("Comment not found")
            if wallet_address not in (comment.wallet_address, self.config.admin_wallet):
                raise Unauthorized("Unauthorized: Only the author or admin can delete this comment")
            doomed = {comment_id}
            changed = True
            while changed:
                replies = {c.id for c in market.comments if c.parent_id in doomed} - doomed
                changed = bool(replies)
                doomed |= replies
            market.comments = [c for c in market.comments if c.id not in doomed]
            session.mark_dirty()
        return {"deleted": len(doomed)}

    # --- betting ---
    def _append_bet(
        self,
        market: Market,
        wallet_address: str,
        amount: float,
        prediction: str,
        transaction_signature: str,
        now: int,
        outcome_id: str | None = None,
    ) -> Bet:
        """Add one bet to a loaded, open market: fee split, pools, bettor sets, volume."""
        outcome = None
        if market.is_multi_outcome:
            if outcome_id is None:
                raise InvalidInput("An outcome is required for multi-outcome markets")
            outcome = market.find_outcome(outcome_id)
            if outcome is None:
                raise NotFound("Outcome not found")
        elif outcome_id is not None:
            raise InvalidState("Market has no outcomes")

        fee, net = split_platform_fee(amount, self.config.platform_fee_rate)
        bet = Bet(
            id=_new_id("bet", now),
            wallet_address=wallet_address,
            amount=net,
            prediction=prediction,
            timestamp=now,
            transaction_signature=transaction_signature,
            platform_fee=fee,
            outcome_id=outcome_id,
        )
        market.bets.append(bet)
        if outcome is not None:
            _add_stake(outcome, prediction, net, wallet_address)
            refresh_outcome_prices(market)
        # Outcome stakes roll up into the market totals as well
        _add_stake(market, prediction, net, wallet_address)
        market.total_volume += amount
        market.volume_24h = market_volume_since(market, now - DAY_MS)
        market.platform_fees_collected += fee
        return bet

    async def _place_bet(
        self,
        market_id: str,
        wallet_address: str,
        amount: float,
        prediction: str,
        transaction_signature: str,
        outcome_id: str | None = None,
    ) -> Bet:
        _validate_side(prediction)
        if amount <= 0:
            raise InvalidInput("Bet amount must be positive")
        if amount < self.config.minimum_bet:
            raise InvalidInput(f"Minimum bet is {self.config.minimum_bet}")

        closed_by_time = False
        bet = None
        async with self.store.editing_markets() as session:
            market = _require_market(session, market_id)
            if market.status != "active":
                raise InvalidState("Market is not active")
            now = self.clock()
            if market.closes_at is not None and now >= market.closes_at:
                market.status = "closed"
                session.mark_dirty()
                closed_by_time = True
            else:
                bet = self._append_bet(
                    market, wallet_address, amount, prediction, transaction_signature, now, outcome_id
                )
                session.mark_dirty()

        if closed_by_time:
            log.info("market_closed_by_time", market_id=market_id)
            await self._after_commit()
            raise InvalidState("Market has closed for betting")

        log.info(
            "bet_placed",
            market_id=market_id,
            bet_id=bet.id,
            wallet=wallet_address,
            prediction=prediction,
            outcome_id=outcome_id,
            gross=amount,
            net=round(bet.amount, 9),
            fee=round(bet.platform_fee, 9),
        )
        debit = self.balances.entry(f"bet:{bet.id}", wallet_address, -amount, "bet", market_id)
        await self._after_commit([debit])
        return bet

    @ledger_operation
    async def place_bet(
        self,
        market_id: str,
        wallet_address: str,
        amount: float,
        prediction: str,
        transaction_signature: str = "",
    ) -> dict[str, Any]:
        bet = await self._place_bet(market_id, wallet_address, amount, prediction, transaction_signature)
        return {"bet": bet.model_dump()}

    @ledger_operation
    async def place_bet_on_outcome(
        self,
        market_id: str,
        outcome_id: str,
        wallet_address: str,
        amount: float,
        prediction: str,
        transaction_signature: str = "",
    ) -> dict[str, Any]:
        bet = await self._place_bet(
            market_id, wallet_address, amount, prediction, transaction_signature, outcome_id=outcome_id
        )
        return {"bet": bet.model_dump()}

    @ledger_operation
    async def copy_trade(
        self,
        market_id: str,
        copier_wallet: str,
        target_wallet: str,
        transaction_signature: str = "",
    ) -> dict[str, Any]:
        """
        Mirror the target's stakes in one market, split like theirs and capped by the copier's
        balance. Both legs are appended and their debits journaled, with a funds check, inside
        one market session. If the collection save then fails the debits are voided.
        """
        if copier_wallet == target_wallet:
            raise InvalidInput("Cannot copy your own position")
        applied: list[BalanceEntry] = []
        try:
            async with self.store.editing_markets() as session:
                market = _require_market(session, market_id)
                if market.is_multi_outcome:
                    raise InvalidState("Copy trading is only available on yes/no markets")
                if market.status != "active":
                    raise InvalidState("Market is not active")
                now = self.clock()
                if market.closes_at is not None and now >= market.closes_at:
                    raise InvalidState("Market has closed for betting")
                target_bets = self.get_user_bets(market, target_wallet)
                if not target_bets:
                    raise NotFound("Target wallet has no bets in this market")

                target_yes = sum(b.amount for b in target_bets if b.prediction == "yes")
                target_no = sum(b.amount for b in target_bets if b.prediction == "no")
                target_total = target_yes + target_no
                copier = await self.balances.get_balance(copier_wallet)
                copy_amount = min(copier.balance, target_total)
                if copy_amount <= 0:
                    raise InsufficientFunds("Insufficient balance to copy trade")

                placed = []
                debits = []
                for side, side_total in (("yes", target_yes), ("no", target_no)):
                    if side_total > 0:
                        stake = (side_total / target_total) * copy_amount
                        bet = self._append_bet(
                            market, copier_wallet, stake, side, f"{transaction_signature}-{side}", now
                        )
                        placed.append(bet)
                        debits.append(self.balances.entry(f"bet:{bet.id}", copier_wallet, -stake, "bet", market_id))
                # Lock order markets -> balances; the funds check sees every earlier copy's debits
                applied = await self.balances.apply(debits, check_funds=True)
                session.mark_dirty()
        except StorageUnavailable:
            if applied:
                await self._void_entries(applied, "copy trade not saved")
            raise

        action = CopyTradeAction(
            id=_new_id("copy", now),
            copier_wallet=copier_wallet,
            target_wallet=target_wallet,
            market_id=market_id,
            amount=copy_amount,
            prediction="yes" if target_yes >= target_no else "no",
            timestamp=now,
            transaction_signature=transaction_signature,
        )
        log.info("copy_trade", market_id=market_id, copier=copier_wallet, target=target_wallet, amount=copy_amount)
        await self._after_commit()
        await self.store.append_copy_trade(action)
        return {"copy_trade": action.model_dump(), "bets": [b.model_dump() for b in placed]}

    @ledger_operation
    async def sell_position(self, market_id: str, bet_id: str, wallet_address: str) -> dict[str, Any]:
        async with self.store.editing_markets() as session:
            market = _require_market(session, market_id)
            bet = market.find_bet(bet_id)
            if bet is None:
                raise NotFound("Bet not found")
            if bet.wallet_address != wallet_address:
                raise Unauthorized("Bet belongs to another wallet")
            if market.status != "active":
                raise InvalidState("Market is not active")
            side_pool, total_pool = side_pools(market, bet.prediction, bet.outcome_id)
            if side_pool <= 0:
                raise InsufficientFunds("No liquidity on this side of the market")
            value = exit_value(bet.amount, side_pool, total_pool)

            market.bets = [b for b in market.bets if b.id != bet_id]
            holds_side = any(
                b.wallet_address == wallet_address and b.prediction == bet.prediction for b in market.bets
            )
            _remove_stake(market, bet.prediction, bet.amount, wallet_address, holds_side)
            if bet.outcome_id is not None:
                outcome = market.find_outcome(bet.outcome_id)
                if outcome is not None:
                    holds_outcome = any(
                        b.wallet_address == wallet_address
                        and b.prediction == bet.prediction
                        and b.outcome_id == bet.outcome_id
                        for b in market.bets
                    )
                    _remove_stake(outcome, bet.prediction, bet.amount, wallet_address, holds_outcome)
                    refresh_outcome_prices(market)
            session.mark_dirty()

        log.info("position_exited", market_id=market_id, bet_id=bet_id, wallet=wallet_address, value=round(value, 9))
        credit = self.balances.entry(f"exit:{bet_id}", wallet_address, value, "withdraw", market_id)
        await self._after_commit([credit])
        return {"bet_id": bet_id, "amount": bet.amount, "exit_value": value}

    # --- resolution ---
    @ledger_operation
    async def resolve_market(self, market_id: str, outcome: str, admin_wallet: str) -> dict[str, Any]:
        self._require_admin(admin_wallet, "resolve markets")
        _validate_side(outcome)
        async with self.store.editing_markets() as session:
            market = _require_market(session, market_id)
            if market.is_multi_outcome:
                raise InvalidState("Multi-outcome markets resolve to an outcome")
            _check_resolvable(market)
            total_pool = market.total_pool
            winning_pool = market.total_yes_amount if outcome == "yes" else market.total_no_amount
            winning_bets = [b for b in market.bets if b.prediction == outcome]
            winners, entries, fees = self._settle(market, winning_bets, winning_pool, total_pool)
            market.status = "resolved"
            market.outcome = outcome
            market.resolved_at = self.clock()
            session.mark_dirty()

        log.info(
            "market_resolved",
            market_id=market_id,
            outcome=outcome,
            pool=round(total_pool, 9),
            winners=len(winners),
            settlement_fees=round(fees, 9),
        )
        await self._after_commit(entries)
        return {"winners": winners, "settlement_fees": fees, "pool": total_pool}

    @ledger_operation
    async def resolve_multi_outcome_market(
        self, market_id: str, winning_outcome_id: str, admin_wallet: str
    ) -> dict[str, Any]:
        self._require_admin(admin_wallet, "resolve markets")
        async with self.store.editing_markets() as session:
            market = _require_market(session, market_id)
            if not market.is_multi_outcome:
                raise InvalidState("Market is not a multi-outcome market")
            _check_resolvable(market)
            winner = market.find_outcome(winning_outcome_id)
            if winner is None:
                raise NotFound("Outcome not found")
            # Every outcome's stakes, yes and no, fund the winning outcome's yes-backers
            total_pool = sum(o.total_yes_amount + o.total_no_amount for o in market.outcomes)
            winning_pool = winner.total_yes_amount
            winning_bets = [b for b in market.bets if b.outcome_id == winner.id and b.prediction == "yes"]
            winners, entries, fees = self._settle(market, winning_bets, winning_pool, total_pool)
            for o in market.outcomes:
                o.is_winner = o.id == winner.id
            market.status = "resolved"
            market.winning_outcome_id = winner.id
            market.resolved_at = self.clock()
            session.mark_dirty()

        log.info(
            "market_resolved",
            market_id=market_id,
            winning_outcome_id=winning_outcome_id,
            pool=round(total_pool, 9),
            winners=len(winners),
            settlement_fees=round(fees, 9),
        )
        await self._after_commit(entries)
        return {"winners": winners, "settlement_fees": fees, "pool": total_pool}

    # --- maintenance ---
    @ledger_operation
    async def check_and_refund_single_bettor_markets(self) -> dict[str, Any]:
        """Close and refund active markets past the age threshold with exactly one bettor."""
        now = self.clock()
        refunds: list[tuple[str, str, float]] = []
        async with self.store.editing_markets() as session:
            for market in session.markets:
                if market.status != "active":
                    continue
                if now - market.created_at < self.config.refund_threshold_ms:
                    continue
                wallets = market.bettors()
                if len(wallets) != 1:
                    continue
                wallet = next(iter(wallets))
                amount = sum(b.amount for b in market.bets)
                market.status = "closed"
                market.outcome = None
                market.refunded_at = now
                refunds.append((market.id, wallet, amount))
            if refunds:
                session.mark_dirty()

        if refunds:
            entries = [
                self.balances.entry(f"refund:{market_id}", wallet, amount, "winning", market_id, note="auto-refund")
                for market_id, wallet, amount in refunds
            ]
            for market_id, wallet, amount in refunds:
                log.info("auto_refund", market_id=market_id, wallet=wallet, amount=round(amount, 9))
            await self._after_commit(entries)
        return {
            "refunded": [market_id for market_id, _, _ in refunds],
            "refunds": [{"market_id": m, "wallet_address": w, "amount": a} for m, w, a in refunds],
        }

    # --- balances & agreements ---
    @ledger_operation
    async def deposit(self, wallet_address: str, amount: float, reference: str) -> dict[str, Any]:
        balance = await self.balances.deposit(wallet_address, amount, reference)
        return {"balance": balance.model_dump()}

    @ledger_operation
    async def withdraw(self, wallet_address: str, amount: float, reference: str) -> dict[str, Any]:
        balance = await self.balances.withdraw(wallet_address, amount, reference)
        return {"balance": balance.model_dump()}

    @ledger_operation
    async def record_agreement(
        self, wallet_address: str, accepted_terms: bool, accepted_privacy: bool
    ) -> dict[str, Any]:
        agreement = UserAgreement(
            wallet_address=wallet_address,
            accepted_terms=accepted_terms,
            accepted_privacy=accepted_privacy,
            timestamp=self.clock(),
        )
        await self.store.save_agreement(agreement)
        return {"agreement": agreement.model_dump()}

    async def get_agreement(self, wallet_address: str) -> UserAgreement | None:
        return (await self.store.load_agreements()).get(wallet_address)

    async def get_balance(self, wallet_address: str) -> UserBalance:
        return await self.balances.get_balance(wallet_address)

    # --- reads ---
    async def _load_markets(self) -> list[Market]:
        """Stored collection with volume_24h as of now rather than as of each market's last bet."""
        markets = await self.store.load_markets()
        cutoff = self.clock() - DAY_MS
        for market in markets:
            market.volume_24h = market_volume_since(market, cutoff)
        return markets

    async def get_market(self, market_id: str) -> Market | None:
        markets = await self._load_markets()
        return next((m for m in markets if m.id == market_id), None)

    async def list_markets(self, status: str | None = None, category: str | None = None) -> list[Market]:
        markets = await self._load_markets()
        return [
            m
            for m in markets
            if (status is None or m.status == status) and (category is None or m.category == category)
        ]

    async def trending_markets(self, limit: int = 10) -> list[Market]:
        active = await self.list_markets(status="active")
        active.sort(key=lambda m: (m.volume_24h, m.total_volume), reverse=True)
        return active[:limit]

    async def preview_payout(
        self, market_id: str, amount: float, prediction: str, outcome_id: str | None = None
    ) -> float | None:
        market = await self.get_market(market_id)
        if market is None:
            return None
        return potential_payout(
            market,
            amount,
            prediction,
            self.config.platform_fee_rate,
            self.config.settlement_fee_rate,
            outcome_id=outcome_id,
        )

    async def platform_stats(self) -> PlatformStats:
        return await self.stats.load()

    async def copy_trade_log(self) -> list[CopyTradeAction]:
        return await self.store.load_copy_trades()

    async def portfolio(self, wallet_address: str) -> Portfolio:
        markets = await self.store.load_markets()
        return build_portfolio(markets, wallet_address, self.config.settlement_fee_rate)

    async def leaderboard(self, sort_by: str = "winnings", limit: int = 50) -> list[LeaderboardEntry]:
        if sort_by not in LEADERBOARD_SORTS:
            raise InvalidInput(f"Leaderboard can be sorted by {', '.join(LEADERBOARD_SORTS)}")
        markets = await self.store.load_markets()
        return build_leaderboard(markets, self.config.settlement_fee_rate, sort_by=sort_by, limit=limit)

    @staticmethod
    def get_user_bets(market: Market, wallet_address: str) -> list[Bet]:
        return [b for b in market.bets if b.wallet_address == wallet_address]


def build_engine(settings: Any, clock: Callable[[], int] | None = None) -> MarketEngine:
    """Engine over the configured object store."""
    store = LedgerStore(build_object_store(settings))
    return MarketEngine(store, EngineConfig.from_settings(settings), clock=clock)
