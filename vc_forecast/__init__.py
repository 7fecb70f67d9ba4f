"""
vc_forecast — Venture fund lifecycle forecasting.

Public API surface:

    from vc_forecast import FundConfiguration, StageStrategy, default_configuration
    from vc_forecast import validate, forecast, analyze
    from vc_forecast import ScenarioDefinition, ParameterOverrides, run_scenarios
    from vc_forecast import metrics
"""
from __future__ import annotations

# Configuration records
from vc_forecast.config import (
    ExitOutcome,
    FeeBasis,
    FeeProfile,
    FundConfiguration,
    Methodology,
    ModelAssumptions,
    Stage,
    StageStrategy,
    TargetReturns,
    WaterfallType,
    default_configuration,
)
from vc_forecast.errors import (
    CalculationFailure,
    FundModelError,
    ScenarioFailure,
    ValidationError,
    ValidationFailure,
    ValidationWarning,
)
from vc_forecast.validation import ValidationReport, validate

# Engines
from vc_forecast.portfolio import CompanyStatus, Portfolio, PortfolioCompany, simulate_portfolio
from vc_forecast.fund import CashFlowPoint, Fund
from vc_forecast.waterfall import WaterfallSummary, run_waterfall
from vc_forecast.forecast import (
    CompanyResult,
    ForecastResult,
    ForecastWarning,
    StageComposition,
    forecast,
)
from vc_forecast.scenarios import (
    ParameterOverrides,
    ScenarioDefinition,
    ScenarioResult,
    ScenarioResults,
    TimingAdjustments,
    run_scenarios,
    standard_scenarios,
)
from vc_forecast.analytics import EnhancedAnalytics, analyze

# Submodules available for direct import
from vc_forecast import metrics

__version__ = "1.0.0"
__author__ = "vc-forecast"

__all__ = [
    # Configuration
    "ExitOutcome",
    "FeeBasis",
    "FeeProfile",
    "FundConfiguration",
    "Methodology",
    "ModelAssumptions",
    "Stage",
    "StageStrategy",
    "TargetReturns",
    "WaterfallType",
    "default_configuration",
    # Errors and validation
    "CalculationFailure",
    "FundModelError",
    "ScenarioFailure",
    "ValidationError",
    "ValidationFailure",
    "ValidationReport",
    "ValidationWarning",
    "validate",
    # Simulation and cash flows
    "CompanyStatus",
    "Portfolio",
    "PortfolioCompany",
    "simulate_portfolio",
    "CashFlowPoint",
    "Fund",
    "WaterfallSummary",
    "run_waterfall",
    # Forecast
    "CompanyResult",
    "ForecastResult",
    "ForecastWarning",
    "StageComposition",
    "forecast",
    # Scenarios
    "ParameterOverrides",
    "ScenarioDefinition",
    "ScenarioResult",
    "ScenarioResults",
    "TimingAdjustments",
    "run_scenarios",
    "standard_scenarios",
    # Analytics
    "EnhancedAnalytics",
    "analyze",
    # Submodules
    "metrics",
    # Version
    "__version__",
]
