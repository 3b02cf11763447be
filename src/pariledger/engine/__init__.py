"""Market accounting engine, pricing math and derived views."""

from pariledger.engine.core import EngineConfig, MarketEngine, build_engine, ledger_operation
from pariledger.engine.sweeper import run_refund_sweeper

__all__ = ["EngineConfig", "MarketEngine", "build_engine", "ledger_operation", "run_refund_sweeper"]
