"""
Ledger Engines - Pure calculation layer.

Engines take movements and master data in, return value objects out.  They
never read a clock, never touch storage and never notify anybody.

Engines:
    lot_resolver  - canonical lot codes per facility lot master
    projector     - stock balances per (product, lot, warehouse)
    synchronizer  - derived-row plan for one facility-to-facility route
    coverage      - supply-risk tiers, potential series, expiry
    summaries     - period, per-client and control-list aggregates
"""

from ledger_engines.coverage import (
    CoverageRow,
    ExpiryRow,
    ExpiryStatus,
    PotentialCoverageRow,
    RiskThresholds,
    RiskTier,
    classify,
    classify_expiry,
    classify_tier,
    expiry_alerts,
    potential_coverage,
    risk_ranking,
)
from ledger_engines.lot_resolver import LotResolution, LotResolver, ResolutionOutcome
from ledger_engines.projector import (
    ProjectionFilters,
    StockBalance,
    project,
    raw_balance_for,
)
from ledger_engines.summaries import (
    ADJUSTMENT_CATEGORIES,
    OUTPUT_CATEGORIES,
    ControlRow,
    control_rows,
    control_total,
    count_by_type,
    totals_by_client,
    totals_by_period,
    totals_by_product_lot,
)
from ledger_engines.synchronizer import (
    SyncFlag,
    SyncFlagKind,
    SyncPlan,
    SyncRoute,
    plan_sync,
    qualifies_for_auto_transfer,
)

__all__ = [
    "ADJUSTMENT_CATEGORIES",
    "OUTPUT_CATEGORIES",
    "ControlRow",
    "CoverageRow",
    "ExpiryRow",
    "ExpiryStatus",
    "LotResolution",
    "LotResolver",
    "PotentialCoverageRow",
    "ProjectionFilters",
    "ResolutionOutcome",
    "RiskThresholds",
    "RiskTier",
    "StockBalance",
    "SyncFlag",
    "SyncFlagKind",
    "SyncPlan",
    "SyncRoute",
    "classify",
    "classify_expiry",
    "classify_tier",
    "control_rows",
    "control_total",
    "count_by_type",
    "expiry_alerts",
    "plan_sync",
    "potential_coverage",
    "project",
    "qualifies_for_auto_transfer",
    "raw_balance_for",
    "risk_ranking",
    "totals_by_client",
    "totals_by_period",
    "totals_by_product_lot",
]
