"""Services for the Revenue Optimization Engine.

Services implement the revenue analytics:
- Aggregation: RevenueSnapshot loading and the group-by primitive
- LeakageDetector: Six leakage rules over billing records
- FeeScheduleOptimizer: Fee recommendations and effectiveness tracking
- ServiceMixAnalyzer: Category, payer and provider views
- CodingOptimizer: E&M, modifier, bundling and documentation review
- ContractAnalyzer: Payer scorecards and what-if rate modeling
- RevenueForecaster: Scenarios, goal variance and actions
- OpportunityLedger: Persistence and lifecycle of findings
- RevenueEngine: Orchestrates load, score and persist
"""

from app.services.aggregation import (
    Dimension,
    InMemoryRevenueDataSource,
    RevenueDataSource,
    RevenueSnapshot,
    SnapshotRequest,
    aggregate,
)
from app.services.aggregation_db import DatabaseRevenueDataSource
from app.services.benchmarks import BenchmarkTables, EngineAssumptions
from app.services.coding_optimizer import (
    CodingAnalysisResult,
    CodingOptimizer,
    get_coding_optimizer,
    reset_coding_optimizer,
)
from app.services.contract_analyzer import (
    ContractAnalysisResult,
    ContractAnalyzer,
    get_contract_analyzer,
    reset_contract_analyzer,
)
from app.services.errors import (
    InvalidTransitionError,
    InvalidWindowError,
    NothingToImplementError,
    RecordNotFoundError,
    RevenueEngineError,
)
from app.services.fee_optimizer import (
    FeeAnalysisResult,
    FeeScheduleOptimizer,
    get_fee_optimizer,
    reset_fee_optimizer,
)
from app.services.leakage_detector import (
    LeakageDetectionResult,
    LeakageDetector,
    LeakageFinding,
    get_leakage_detector,
    reset_leakage_detector,
)
from app.services.opportunity_ledger import BatchWriteResult, OpportunityLedger
from app.services.revenue_engine import AnalysisRun, RevenueEngine
from app.services.revenue_forecaster import (
    ForecastResult,
    RevenueForecaster,
    get_revenue_forecaster,
    reset_revenue_forecaster,
)
from app.services.service_mix import (
    ServiceMixAnalyzer,
    ServiceMixResult,
    get_service_mix_analyzer,
    reset_service_mix_analyzer,
)

__all__ = [
    # Aggregation
    "Dimension",
    "InMemoryRevenueDataSource",
    "DatabaseRevenueDataSource",
    "RevenueDataSource",
    "RevenueSnapshot",
    "SnapshotRequest",
    "aggregate",
    "BenchmarkTables",
    "EngineAssumptions",
    # Analyzers
    "LeakageDetector",
    "LeakageDetectionResult",
    "LeakageFinding",
    "get_leakage_detector",
    "reset_leakage_detector",
    "FeeScheduleOptimizer",
    "FeeAnalysisResult",
    "get_fee_optimizer",
    "reset_fee_optimizer",
    "ServiceMixAnalyzer",
    "ServiceMixResult",
    "get_service_mix_analyzer",
    "reset_service_mix_analyzer",
    "CodingOptimizer",
    "CodingAnalysisResult",
    "get_coding_optimizer",
    "reset_coding_optimizer",
    "ContractAnalyzer",
    "ContractAnalysisResult",
    "get_contract_analyzer",
    "reset_contract_analyzer",
    "RevenueForecaster",
    "ForecastResult",
    "get_revenue_forecaster",
    "reset_revenue_forecaster",
    # Ledger and orchestration
    "OpportunityLedger",
    "BatchWriteResult",
    "RevenueEngine",
    "AnalysisRun",
    # Errors
    "RevenueEngineError",
    "RecordNotFoundError",
    "InvalidTransitionError",
    "InvalidWindowError",
    "NothingToImplementError",
]
