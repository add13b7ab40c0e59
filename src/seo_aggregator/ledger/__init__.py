"""Cost ledger: extraction, background writer and read-side aggregates."""

from seo_aggregator.ledger.costs import CostLedger, extract_task_costs
from seo_aggregator.ledger.dashboard import DashboardService
from seo_aggregator.ledger.writer import CostLedgerWriter

__all__ = ["CostLedger", "CostLedgerWriter", "DashboardService", "extract_task_costs"]
