"""FastAPI backend - market, betting, balance and maintenance endpoints."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pariledger.api.schemas import (
    AdminRequest,
    BalanceResponse,
    ChartPointItem,
    ChartResponse,
    CopyTradeRequest,
    CreateMarketRequest,
    ErrorResponse,
    HealthResponse,
    LeaderboardItem,
    MarketListItem,
    MarketsListResponse,
    OperationResponse,
    PayoutPreviewResponse,
    PlaceBetRequest,
    PortfolioResponse,
    PositionItem,
    ResolveRequest,
)
from pariledger.config import configure_logging, get_settings
from pariledger.engine.core import MarketEngine, build_engine
from pariledger.engine.pricing import chart_data, price_change
from pariledger.engine.sweeper import run_refund_sweeper
from pariledger.errors import LedgerError
from pariledger.models import Market, OperationResult, PlatformStats


# Set by run_api() so lifespan can start the refund sweeper in the same process.
_run_with_sweeper = False
_config_profile: str | None = None
_engine: MarketEngine | None = None

STATUS_BY_CODE = {
    "unauthorized": 403,
    "not_found": 404,
    "invalid_state": 409,
    "insufficient_funds": 402,
    "invalid_input": 422,
    "storage_unavailable": 503,
}

NOT_FOUND = {404: {"description": "Market not found", "model": ErrorResponse}}


def get_engine() -> MarketEngine:
    global _engine
    if _engine is None:
        _engine = build_engine(get_settings(_config_profile))
    return _engine


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings(_config_profile)
    configure_logging(settings)
    engine = get_engine()
    await engine.store.initialize()

    sweeper_task = None
    sweeper_stop = None
    if _run_with_sweeper:
        sweeper_stop = asyncio.Event()
        sweeper_task = asyncio.create_task(
            run_refund_sweeper(engine, interval_sec=settings.sweep_interval_sec, stop_event=sweeper_stop)
        )

    yield

    if sweeper_task is not None and sweeper_stop is not None:
        sweeper_stop.set()
        await sweeper_task


app = FastAPI(title="PariLedger API", version="0.1.0", lifespan=lifespan)
app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])


def _error_json(code: str, message: str, status_code: int = 404) -> JSONResponse:
    """Return consistent error JSON: { detail, code }."""
    return JSONResponse(
        status_code=status_code,
        content={"detail": message, "code": code},
    )


def _result_json(result: OperationResult) -> OperationResponse | JSONResponse:
    if not result.success:
        code = result.code or "invalid_state"
        return _error_json(code, result.error or "Operation failed", STATUS_BY_CODE.get(code, 400))
    return OperationResponse(success=True, data=result.data)


def _list_item(market: Market) -> MarketListItem:
    return MarketListItem(
        market_id=market.id,
        title=market.title,
        category=market.category,
        market_type=market.market_type,
        status=market.status,
        total_yes_amount=market.total_yes_amount,
        total_no_amount=market.total_no_amount,
        total_volume=market.total_volume,
        volume_24h=market.volume_24h,
        closes_at=market.closes_at,
        price_change=price_change(market),
    )


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Any, exc: LedgerError) -> JSONResponse:
    return _error_json(exc.code, exc.message, STATUS_BY_CODE.get(exc.code, 400))


@app.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    return HealthResponse(status="ok")


@app.get("/markets", response_model=MarketsListResponse)
async def markets_list(
    status: str | None = Query(None, description="active, closed or resolved"),
    category: str | None = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    engine: MarketEngine = Depends(get_engine),
) -> MarketsListResponse:
    """List markets with optional status/category filter and limit/offset."""
    markets = await engine.list_markets(status=status, category=category)
    page = markets[offset : offset + limit]
    return MarketsListResponse(markets=[_list_item(m) for m in page], total=len(markets))


@app.get("/markets/trending", response_model=list[MarketListItem])
async def markets_trending(
    limit: int = Query(10, ge=1, le=100),
    engine: MarketEngine = Depends(get_engine),
) -> list[MarketListItem]:
    """Active markets by 24h volume."""
    return [_list_item(m) for m in await engine.trending_markets(limit=limit)]


@app.get("/markets/{market_id}", response_model=Market, responses=NOT_FOUND)
async def market_detail(market_id: str, engine: MarketEngine = Depends(get_engine)):
    market = await engine.get_market(market_id)
    if market is None:
        return _error_json("not_found", "Market not found")
    return market


@app.get("/markets/{market_id}/chart", response_model=ChartResponse, responses=NOT_FOUND)
async def market_chart(market_id: str, engine: MarketEngine = Depends(get_engine)):
    """Pool-implied yes/no price after each bet."""
    market = await engine.get_market(market_id)
    if market is None:
        return _error_json("not_found", "Market not found")
    points = [ChartPointItem(**vars(p)) for p in chart_data(market)]
    return ChartResponse(market_id=market_id, points=points)


@app.get("/markets/{market_id}/payout", response_model=PayoutPreviewResponse, responses=NOT_FOUND)
async def market_payout_preview(
    market_id: str,
    amount: float = Query(..., gt=0),
    prediction: str = Query(..., pattern="^(yes|no)$"),
    outcome_id: str | None = Query(None),
    engine: MarketEngine = Depends(get_engine),
):
    """What a new stake would pay if its side won with the current pools."""
    payout = await engine.preview_payout(market_id, amount, prediction, outcome_id=outcome_id)
    if payout is None:
        return _error_json("not_found", "Market not found")
    return PayoutPreviewResponse(
        market_id=market_id, amount=amount, prediction=prediction, outcome_id=outcome_id, potential_payout=payout
    )


@app.post("/markets", response_model=OperationResponse, status_code=201)
async def market_create(body: CreateMarketRequest, engine: MarketEngine = Depends(get_engine)):
    result = await engine.create_market(**body.model_dump())
    return _result_json(result)


@app.post("/markets/{market_id}/bets", response_model=OperationResponse)
async def market_bet(market_id: str, body: PlaceBetRequest, engine: MarketEngine = Depends(get_engine)):
    if body.outcome_id is not None:
        result = await engine.place_bet_on_outcome(
            market_id,
            body.outcome_id,
            body.wallet_address,
            body.amount,
            body.prediction,
            body.transaction_signature,
        )
    else:
        result = await engine.place_bet(
            market_id, body.wallet_address, body.amount, body.prediction, body.transaction_signature
        )
    return _result_json(result)


@app.delete("/markets/{market_id}/bets/{bet_id}", response_model=OperationResponse)
async def market_sell(
    market_id: str,
    bet_id: str,
    wallet_address: str = Query(..., description="Wallet that owns the bet"),
    engine: MarketEngine = Depends(get_engine),
):
    """Exit a position early at the current pool-implied value."""
    return _result_json(await engine.sell_position(market_id, bet_id, wallet_address))


@app.post("/markets/{market_id}/copy", response_model=OperationResponse)
async def market_copy(market_id: str, body: CopyTradeRequest, engine: MarketEngine = Depends(get_engine)):
    result = await engine.copy_trade(market_id, body.copier_wallet, body.target_wallet, body.transaction_signature)
    return _result_json(result)


@app.post("/markets/{market_id}/close", response_model=OperationResponse)
async def market_close(market_id: str, body: AdminRequest, engine: MarketEngine = Depends(get_engine)):
    return _result_json(await engine.close_market(market_id, body.admin_wallet))


@app.post("/markets/{market_id}/resolve", response_model=OperationResponse)
async def market_resolve(market_id: str, body: ResolveRequest, engine: MarketEngine = Depends(get_engine)):
    """Resolve a yes/no market by `outcome`, or a multi-outcome market by `winning_outcome_id`."""
    if body.winning_outcome_id is not None:
        result = await engine.resolve_multi_outcome_market(market_id, body.winning_outcome_id, body.admin_wallet)
    elif body.outcome is not None:
        result = await engine.resolve_market(market_id, body.outcome, body.admin_wallet)
    else:
        return _error_json("invalid_input", "Either outcome or winning_outcome_id is required", 422)
    return _result_json(result)


@app.get("/users/{wallet_address}/balance", response_model=BalanceResponse)
async def user_balance(wallet_address: str, engine: MarketEngine = Depends(get_engine)) -> BalanceResponse:
    balance = await engine.get_balance(wallet_address)
    return BalanceResponse(**balance.model_dump())


@app.get("/users/{wallet_address}/portfolio", response_model=PortfolioResponse)
async def user_portfolio(wallet_address: str, engine: MarketEngine = Depends(get_engine)) -> PortfolioResponse:
    portfolio = await engine.portfolio(wallet_address)
    return PortfolioResponse(
        wallet_address=wallet_address,
        invested=portfolio.invested,
        returned=portfolio.returned,
        profit=portfolio.profit,
        active_positions=portfolio.active_positions,
        positions=[PositionItem(**vars(p), profit=p.profit) for p in portfolio.positions],
    )


@app.get("/leaderboard", response_model=list[LeaderboardItem])
async def leaderboard(
    sort_by: str = Query("winnings", description="winnings, volume, profit or bets"),
    limit: int = Query(50, ge=1, le=500),
    engine: MarketEngine = Depends(get_engine),
) -> list[LeaderboardItem]:
    entries = await engine.leaderboard(sort_by=sort_by, limit=limit)
    return [LeaderboardItem(rank=i + 1, **vars(e)) for i, e in enumerate(entries)]


@app.get("/platform-stats", response_model=PlatformStats)
async def platform_stats(engine: MarketEngine = Depends(get_engine)) -> PlatformStats:
    return await engine.platform_stats()


@app.post("/maintenance/refund-sweep", response_model=OperationResponse)
async def refund_sweep(engine: MarketEngine = Depends(get_engine)):
    """Run one auto-refund sweep now."""
    return _result_json(await engine.check_and_refund_single_bettor_markets())


def run_api(
    host: str = "127.0.0.1",
    port: int = 8000,
    with_sweeper: bool = False,
    profile: str | None = None,
) -> None:
    global _run_with_sweeper, _config_profile
    _run_with_sweeper = with_sweeper
    _config_profile = profile
    import uvicorn
    uvicorn.run("pariledger.api.main:app", host=host, port=port, reload=False)
