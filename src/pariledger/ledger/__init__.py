"""Balance ledger and platform statistics."""

from pariledger.ledger.balances import BalanceLedger
from pariledger.ledger.stats import PlatformStatsAggregator, compute_platform_stats

__all__ = ["BalanceLedger", "PlatformStatsAggregator", "compute_platform_stats"]
