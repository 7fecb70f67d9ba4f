"""
forecast.py — End-to-end forecast pipeline and result records.

Depends on: config.py, errors.py, validation.py, portfolio.py, fund.py,
waterfall.py, metrics.py

    result = forecast(default_configuration())
    result.net_moic, result.timeline_frame()

The pipeline is a pure function of its configuration: identical inputs
(including the Monte Carlo seed) give equal results.
"""
from __future__ import annotations

import logging
import math
import uuid
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Literal, Optional

import numpy as np
import pandas as pd

from vc_forecast.config import FundConfiguration, Stage, WaterfallType
from vc_forecast.errors import CalculationFailure, ValidationFailure
from vc_forecast.fund import (
    CashFlowPoint,
    Fund,
    RiskMetrics,
    collect_realizations,
    timeline_frame,
)
from vc_forecast.metrics import calc_moic, quarterly_irr
from vc_forecast.portfolio import CompanyStatus, Portfolio, PortfolioCompany, RandomSource, simulate_portfolio
from vc_forecast.validation import validate
from vc_forecast.waterfall import WaterfallSummary, run_waterfall

logger = logging.getLogger(__name__)

# tvpi must equal dpi + rvpi within this tolerance.
RATIO_TOLERANCE = 1e-9


@dataclass(frozen=True)
class ForecastWarning:
    type: Literal["validation", "calculation", "assumption"]
    message: str
    severity: Literal["high", "medium", "low"] = "medium"
    field: Optional[str] = None


@dataclass(frozen=True)
class CompanyResult:
    """Per-company outcome, including its share of the waterfall."""

    company_id: str
    name: str
    entry_stage: Stage
    exit_stage: Stage
    status: CompanyStatus
    invested: float
    exit_proceeds: float
    unrealized_value: float
    total_value: float
    realized_multiple: float
    total_multiple: float
    irr: Optional[float]
    lp_proceeds: float
    gp_carry: float
    holding_period_quarters: int
    exit_quarter: Optional[int]


@dataclass(frozen=True)
class StageComposition:
    """Companies, capital and value by entry stage."""

    stage: Stage
    companies: int
    invested: float
    total_value: float


@dataclass(frozen=True)
class ForecastResult:
    calculation_id: str
    fund_name: str
    vintage: int
    config: FundConfiguration
    timeline: tuple[CashFlowPoint, ...]
    portfolio: Portfolio
    company_results: tuple[CompanyResult, ...]
    waterfall: WaterfallSummary
    total_invested: float
    total_realized: float
    total_unrealized: float
    total_value: float
    total_management_fees: float
    total_carried_interest: float
    organizational_expenses: float
    fund_expenses: float
    gross_moic: float
    net_moic: float
    gross_irr: Optional[float]
    net_irr: Optional[float]
    tvpi: float
    dpi: float
    rvpi: float
    composition_by_stage: tuple[StageComposition, ...] = ()
    composition_by_status: tuple[tuple[CompanyStatus, int], ...] = ()
    risk_metrics: RiskMetrics = field(
        default_factory=lambda: RiskMetrics(0.0, None, 0.0, 0.0, 0.0)
    )
    warnings: tuple[ForecastWarning, ...] = ()

    def stage_composition(self, stage: Stage) -> Optional[StageComposition]:
        stage = Stage.parse(stage)
        return next((row for row in self.composition_by_stage if row.stage is stage), None)

    def status_count(self, status: CompanyStatus) -> int:
        return dict(self.composition_by_status).get(CompanyStatus(status), 0)

    def timeline_frame(self) -> pd.DataFrame:
        return timeline_frame(self.timeline)

    def company_frame(self) -> pd.DataFrame:
        """One row per company with enum values flattened to strings."""
        rows = []
        for c in self.company_results:
            rows.append(
                {
                    "company_id": c.company_id,
                    "name": c.name,
                    "entry_stage": c.entry_stage.value,
                    "exit_stage": c.exit_stage.value,
                    "status": c.status.value,
                    "invested": c.invested,
                    "exit_proceeds": c.exit_proceeds,
                    "unrealized_value": c.unrealized_value,
                    "total_value": c.total_value,
                    "total_multiple": c.total_multiple,
                    "irr": c.irr,
                    "lp_proceeds": c.lp_proceeds,
                    "gp_carry": c.gp_carry,
                    "holding_period_quarters": c.holding_period_quarters,
                    "exit_quarter": c.exit_quarter,
                }
            )
        return pd.DataFrame(rows)

    def summary(self) -> dict[str, Any]:
        """Return a summary dict of key fund metrics."""
        return {
            "fund_name": self.fund_name,
            "vintage": self.vintage,
            "total_invested": self.total_invested,
            "total_realized": self.total_realized,
            "total_unrealized": self.total_unrealized,
            "total_management_fees": self.total_management_fees,
            "total_carried_interest": self.total_carried_interest,
            "gross_moic": self.gross_moic,
            "net_moic": self.net_moic,
            "gross_irr": self.gross_irr,
            "net_irr": self.net_irr,
            "tvpi": self.tvpi,
            "dpi": self.dpi,
            "rvpi": self.rvpi,
        }

    def __repr__(self) -> str:
        irr = f"{self.net_irr:.1%}" if self.net_irr is not None else "n/a"
        return (
            f"ForecastResult(fund={self.fund_name!r}, invested=${self.total_invested:,.0f}, "
            f"net_moic={self.net_moic:.2f}x, net_irr={irr})"
        )


def calculation_id(config: FundConfiguration) -> str:
    """Stable identifier derived from the full configuration."""
    return str(uuid.uuid5(uuid.NAMESPACE_OID, repr(config)))


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

def forecast(config: FundConfiguration, rng: Optional[RandomSource] = None) -> ForecastResult:
    """
    Run the full forecast for ``config``.

    Parameters
    ----------
    config:
        Fund configuration. Never modified.
    rng:
        Optional uniform generator for Monte Carlo runs. Defaults to
        ``numpy.random.default_rng(config.assumptions.random_seed)``.

    Returns
    -------
    ForecastResult

    Raises
    ------
    ValidationFailure
        The configuration has blocking validation errors.
    CalculationFailure
        Nothing was invested, or a ledger invariant broke.
    """
    report = validate(config)
    if not report.is_valid:
        raise ValidationFailure(report.errors)
    warnings = [
        ForecastWarning(type="validation", message=w.message, severity=w.impact, field=w.field)
        for w in report.warnings
    ]

    logger.info(
        "Forecasting %s (%s, %s waterfall)",
        config.fund_name,
        config.assumptions.methodology.value,
        config.waterfall_type.value,
    )
    if rng is None and config.assumptions.is_monte_carlo:
        rng = np.random.default_rng(config.assumptions.random_seed)
    portfolio = simulate_portfolio(config, rng=rng)
    if portfolio.total_invested <= 0:
        raise CalculationFailure("Total invested capital is zero", {"fund_name": config.fund_name})

    fund = Fund.from_portfolio(config, portfolio)
    management_fees = float(np.sum(fund.management_fees))
    contributions = [(inv.quarter, inv.amount) for inv in portfolio.investments]
    waterfall = run_waterfall(
        config,
        collect_realizations(portfolio),
        contributions,
        management_fees=management_fees,
    )
    fund.apply_waterfall(waterfall)
    timeline = fund.timeline()
    for point in timeline:
        if abs(point.tvpi - (point.dpi + point.rvpi)) > RATIO_TOLERANCE:
            raise CalculationFailure(
                f"TVPI does not reconcile at quarter {point.quarter}",
                {"tvpi": point.tvpi, "dpi": point.dpi, "rvpi": point.rvpi},
            )

    assumptions = config.assumptions
    gross = quarterly_irr(
        fund.gross_cashflows(),
        max_iterations=assumptions.ir_max_iterations,
        tolerance=assumptions.ir_tolerance,
    )
    net = quarterly_irr(
        fund.lp_cashflows(),
        max_iterations=assumptions.ir_max_iterations,
        tolerance=assumptions.ir_tolerance,
    )
    for label, result in (("Gross", gross), ("Net", net)):
        if not result.converged:
            logger.warning("%s IRR did not converge for %s", label, config.fund_name)
            warnings.append(
                ForecastWarning(
                    type="calculation",
                    message=f"{label} IRR did not converge after {result.iterations} iterations",
                    severity="medium",
                )
            )

    invested = portfolio.total_invested
    realized = portfolio.total_realized
    unrealized = portfolio.total_unrealized
    expenses = fund.expenses
    organizational = min(config.fee_profile.organizational_expenses, float(np.sum(expenses)))
    operating = float(np.sum(expenses)) - organizational
    lp_received = waterfall.lp_total
    dpi = lp_received / invested
    rvpi = fund.final_nav / invested

    result = ForecastResult(
        calculation_id=calculation_id(config),
        fund_name=config.fund_name,
        vintage=config.vintage,
        config=config,
        timeline=timeline,
        portfolio=portfolio,
        company_results=tuple(_company_result(c, waterfall, config) for c in portfolio),
        waterfall=waterfall,
        total_invested=invested,
        total_realized=realized,
        total_unrealized=unrealized,
        total_value=realized + unrealized,
        total_management_fees=management_fees,
        total_carried_interest=waterfall.gp_catch_up + waterfall.gp_carried_interest - waterfall.clawback_adjustment,
        organizational_expenses=organizational,
        fund_expenses=operating,
        gross_moic=calc_moic(invested, realized + unrealized),
        net_moic=calc_moic(invested + management_fees + float(np.sum(expenses)), lp_received + fund.final_nav),
        gross_irr=gross.rate if gross.converged else None,
        net_irr=net.rate if net.converged else None,
        tvpi=dpi + rvpi,
        dpi=dpi,
        rvpi=rvpi,
        composition_by_stage=_composition_by_stage(portfolio),
        composition_by_status=_composition_by_status(portfolio),
        risk_metrics=fund.risk_metrics(),
        warnings=tuple(warnings),
    )
    logger.info("Forecast complete: %r", result)
    return result


def _company_result(
    company: PortfolioCompany,
    waterfall: WaterfallSummary,
    config: FundConfiguration,
) -> CompanyResult:
    flows = np.zeros(config.fund_life_quarters, dtype=np.float64)
    for inv in company.investments:
        flows[inv.quarter] -= inv.amount
    for event in company.exit_events:
        flows[event.quarter] += event.proceeds
    flows[-1] += company.unrealized_value
    irr = quarterly_irr(
        flows,
        max_iterations=config.assumptions.ir_max_iterations,
        tolerance=config.assumptions.ir_tolerance,
    )

    invested = company.total_invested
    calcs = [c for c in waterfall.calculations if c.company_id == company.id]
    return CompanyResult(
        company_id=company.id,
        name=company.name,
        entry_stage=company.entry_stage,
        exit_stage=company.current_stage,
        status=company.status,
        invested=invested,
        exit_proceeds=company.exit_value,
        unrealized_value=company.unrealized_value,
        total_value=company.total_value,
        realized_multiple=company.exit_value / invested if invested > 0 else 0.0,
        total_multiple=company.total_value / invested if invested > 0 else 0.0,
        irr=irr.rate if irr.converged else None,
        lp_proceeds=sum(c.lp_total for c in calcs),
        gp_carry=sum(c.gp_total for c in calcs),
        holding_period_quarters=company.holding_period(config.fund_life_quarters - 1),
        exit_quarter=company.exit_quarter,
    )


def _composition_by_stage(portfolio: Portfolio) -> tuple[StageComposition, ...]:
    rows = []
    for stage in Stage:
        members = [c for c in portfolio if c.entry_stage is stage]
        if not members:
            continue
        rows.append(
            StageComposition(
                stage=stage,
                companies=len(members),
                invested=sum(c.total_invested for c in members),
                total_value=sum(c.total_value for c in members),
            )
        )
    return tuple(rows)


def _composition_by_status(portfolio: Portfolio) -> tuple[tuple[CompanyStatus, int], ...]:
    counts = Counter(c.status for c in portfolio)
    return tuple((status, counts.get(status, 0)) for status in CompanyStatus)


# ---------------------------------------------------------------------------
# Placeholder for failed runs
# ---------------------------------------------------------------------------

def empty_waterfall(waterfall_type: WaterfallType) -> WaterfallSummary:
    return WaterfallSummary(
        waterfall_type=waterfall_type,
        total_invested=0.0,
        total_proceeds=0.0,
        total_profit=0.0,
        lp_capital_returned=0.0,
        lp_preferred_return=0.0,
        lp_catch_up=0.0,
        lp_profit_share=0.0,
        lp_total=0.0,
        gp_management_fees=0.0,
        gp_catch_up=0.0,
        gp_carried_interest=0.0,
        clawback_adjustment=0.0,
        gp_total_compensation=0.0,
        lp_net_multiple=0.0,
        effective_carry_rate=0.0,
    )


def placeholder_forecast(config: FundConfiguration, message: str) -> ForecastResult:
    """Neutral result standing in for a forecast that could not run."""
    return ForecastResult(
        calculation_id=calculation_id(config),
        fund_name=config.fund_name,
        vintage=config.vintage,
        config=config,
        timeline=(),
        portfolio=Portfolio(companies=(), fund_life_quarters=config.fund_life_quarters),
        company_results=(),
        waterfall=empty_waterfall(config.waterfall_type),
        total_invested=0.0,
        total_realized=0.0,
        total_unrealized=0.0,
        total_value=0.0,
        total_management_fees=0.0,
        total_carried_interest=0.0,
        organizational_expenses=0.0,
        fund_expenses=0.0,
        gross_moic=0.0,
        net_moic=0.0,
        gross_irr=None,
        net_irr=None,
        tvpi=0.0,
        dpi=0.0,
        rvpi=0.0,
        warnings=(ForecastWarning(type="calculation", message=message, severity="high"),),
    )


def is_placeholder(result: ForecastResult) -> bool:
    return not result.timeline and math.isclose(result.total_invested, 0.0)
