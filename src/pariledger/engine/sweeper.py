"""Periodic auto-refund sweep - runs until stop_event is set."""

from __future__ import annotations

import asyncio

import structlog

from pariledger.engine.core import MarketEngine

log = structlog.get_logger(__name__)


async def run_refund_sweeper(
    engine: MarketEngine,
    *,
    interval_sec: float = 600.0,
    stop_event: asyncio.Event | None = None,
    max_sweeps: int = 0,
) -> int:
    """
    Call check_and_refund_single_bettor_markets every interval_sec, then push any writes the
    storage fallback is still holding. A failed sweep is logged and retried on the next tick.
    max_sweeps=0 means unlimited. Returns the number of markets refunded.
    """
    stop = stop_event or asyncio.Event()
    sweeps = 0
    refunded = 0
    log.info("sweeper_started", interval_sec=interval_sec)
    while not stop.is_set():
        result = await engine.check_and_refund_single_bettor_markets()
        sweeps += 1
        if result.success:
            count = len(result.data.get("refunded", []))
            refunded += count
            if count:
                log.info("sweep_complete", refunded=count)
        else:
            log.warning("sweep_failed", code=result.code, error=result.error)
        pending = await engine.store.flush_pending()
        if pending:
            log.warning("storage_writes_pending", keys=pending)
        if max_sweeps and sweeps >= max_sweeps:
            break
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval_sec)
        except asyncio.TimeoutError:
            pass
    log.info("sweeper_stopped", sweeps=sweeps, refunded=refunded)
    return refunded
