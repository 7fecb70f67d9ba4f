"""
analytics.py — Read-only analysis of a finished forecast.

Depends on: config.py, forecast.py, metrics.py, portfolio.py

    analytics = analyze(forecast(config))
    analytics.reserves.sufficiency_ratio
    analytics.pacing.quarterly_frame()
"""
from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Literal, Optional

import numpy as np
import pandas as pd

from vc_forecast.config import FundConfiguration, Stage
from vc_forecast.forecast import ForecastResult
from vc_forecast.metrics import QUARTERS_PER_YEAR, quarterly_irr
from vc_forecast.portfolio import CompanyStatus, PortfolioCompany

Severity = Literal["high", "medium", "low"]

# Net MOIC / net IRR benchmarks for a venture vintage.
BENCHMARKS: dict[str, tuple[float, float]] = {
    "top-quartile": (3.0, 0.25),
    "median": (2.0, 0.15),
    "bottom-quartile": (1.3, 0.08),
}

MAX_OPPORTUNITIES = 10
PACING_TOLERANCE = 0.10


# ---------------------------------------------------------------------------
# Reserves
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StageReserves:
    stage: Stage
    companies_needing_reserves: int
    estimated_need: float
    allocated_reserves: float
    sufficiency_ratio: float


@dataclass(frozen=True)
class ReserveOpportunity:
    company_id: str
    company_name: str
    current_stage: Stage
    recommended_reserve: float
    expected_return: float
    priority: Severity
    rationale: str


@dataclass(frozen=True)
class ReserveRisk:
    type: Literal["insufficient-reserves", "over-reserved", "concentration"]
    severity: Severity
    description: str
    affected_companies: tuple[str, ...]
    recommended_action: str


@dataclass(frozen=True)
class ReserveAnalysis:
    planned_reserves: float
    deployed_follow_ons: float
    remaining_reserves: float
    estimated_need: float
    sufficiency_ratio: float
    by_stage: tuple[StageReserves, ...]
    opportunities: tuple[ReserveOpportunity, ...]
    risks: tuple[ReserveRisk, ...]

    def by_stage_frame(self) -> pd.DataFrame:
        rows = [{**asdict(s), "stage": s.stage.value} for s in self.by_stage]
        return pd.DataFrame(rows)


def expected_multiple(config: FundConfiguration, stage: Stage) -> float:
    """Probability-weighted exit multiple for a stage."""
    probabilities = config.exit_probabilities.get(stage, {})
    multiples = config.exit_multiples.get(stage, {})
    return sum(p * multiples.get(o, 0.0) for o, p in probabilities.items())


def _reserve_ratio(config: FundConfiguration, company: PortfolioCompany) -> float:
    strategy = config.strategy_for(company.entry_stage)
    if strategy is None:
        return config.assumptions.default_follow_on_reserve_ratio
    return strategy.reserve_ratio


def reserve_analysis(result: ForecastResult) -> ReserveAnalysis:
    """
    Compare reserves still available against what active companies need.

    Each active company needs ``invested × reserve_ratio`` of further
    capital, scaled by the share of the company still active.
    """
    config = result.config
    planned = sum(s.planned_reserves for s in config.stage_strategies)
    deployed = sum(c.follow_on_invested for c in result.portfolio)
    remaining = max(planned - deployed, 0.0)

    active = [c for c in result.portfolio if c.status is CompanyStatus.ACTIVE]
    needs = {
        c.id: c.total_invested * _reserve_ratio(config, c) * c.active_weight for c in active
    }
    total_need = sum(needs.values())
    sufficiency = remaining / total_need if total_need > 0 else 1.0

    by_stage = []
    for stage in Stage:
        members = [c for c in active if c.current_stage is stage]
        if not members:
            continue
        need = sum(needs[c.id] for c in members)
        allocated = remaining * need / total_need if total_need > 0 else 0.0
        by_stage.append(
            StageReserves(
                stage=stage,
                companies_needing_reserves=len(members),
                estimated_need=need,
                allocated_reserves=allocated,
                sufficiency_ratio=allocated / need if need > 0 else 1.0,
            )
        )

    opportunities = []
    for company in active:
        if company.current_stage is Stage.SERIES_D_PLUS or needs[company.id] <= 0:
            continue
        expected = expected_multiple(config, company.current_stage)
        if expected >= 3.0:
            priority = "high"
        elif expected >= 2.0:
            priority = "medium"
        else:
            priority = "low"
        opportunities.append(
            ReserveOpportunity(
                company_id=company.id,
                company_name=company.name,
                current_stage=company.current_stage,
                recommended_reserve=needs[company.id],
                expected_return=expected,
                priority=priority,
                rationale=(
                    f"Follow-on for {company.current_stage.value} company "
                    f"({expected:.1f}x expected exit multiple)"
                ),
            )
        )
    opportunities.sort(key=lambda o: (-o.expected_return, -o.recommended_reserve))

    return ReserveAnalysis(
        planned_reserves=planned,
        deployed_follow_ons=deployed,
        remaining_reserves=remaining,
        estimated_need=total_need,
        sufficiency_ratio=sufficiency,
        by_stage=tuple(by_stage),
        opportunities=tuple(opportunities[:MAX_OPPORTUNITIES]),
        risks=tuple(_reserve_risks(sufficiency, needs, total_need)),
    )


def _reserve_risks(sufficiency: float, needs: dict[str, float], total_need: float) -> list[ReserveRisk]:
    risks = []
    if total_need > 0 and sufficiency < 0.8:
        risks.append(
            ReserveRisk(
                type="insufficient-reserves",
                severity="high" if sufficiency < 0.5 else "medium",
                description=f"Remaining reserves cover {sufficiency:.0%} of estimated follow-on need",
                affected_companies=tuple(needs),
                recommended_action="Prioritise follow-ons by expected return or raise an opportunity fund",
            )
        )
    elif sufficiency > 1.5:
        risks.append(
            ReserveRisk(
                type="over-reserved",
                severity="low",
                description=f"Remaining reserves are {sufficiency:.1f}x the estimated need",
                affected_companies=(),
                recommended_action="Release excess reserves into new initial checks",
            )
        )
    heavy = tuple(cid for cid, need in needs.items() if total_need > 0 and need / total_need > 0.25)
    if heavy:
        risks.append(
            ReserveRisk(
                type="concentration",
                severity="medium",
                description="A single company accounts for more than 25% of reserve need",
                affected_companies=heavy,
                recommended_action="Cap follow-on exposure per company",
            )
        )
    return risks


# ---------------------------------------------------------------------------
# Pacing
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class QuarterlyDeployment:
    quarter: int
    planned: float
    actual: float
    variance: float
    cumulative_variance: float


@dataclass(frozen=True)
class PacingRecommendation:
    type: Literal["speed-up", "slow-down", "maintain"]
    urgency: Severity
    description: str
    suggested_actions: tuple[str, ...]


@dataclass(frozen=True)
class PacingAnalysis:
    deployment_rate: float
    projected_completion_quarter: Optional[int]
    pacing_score: float  # 0-100
    is_on_track: bool
    quarterly_deployment: tuple[QuarterlyDeployment, ...]
    recommendations: tuple[PacingRecommendation, ...]

    def quarterly_frame(self) -> pd.DataFrame:
        return pd.DataFrame([asdict(q) for q in self.quarterly_deployment])


def pacing_analysis(result: ForecastResult) -> PacingAnalysis:
    """Initial-check deployment against a straight-line plan."""
    config = result.config
    period = config.investment_period_quarters
    planned_total = sum(s.initial_capital for s in config.stage_strategies)
    planned = planned_total / period if period > 0 else 0.0

    actual = np.zeros(max(period, 0), dtype=np.float64)
    for inv in result.portfolio.investments:
        if not inv.is_follow_on and inv.quarter < period:
            actual[inv.quarter] += inv.amount

    rows = []
    cumulative = 0.0
    for q in range(period):
        variance = float(actual[q]) - planned
        cumulative += variance
        rows.append(QuarterlyDeployment(q, planned, float(actual[q]), variance, cumulative))

    deployed = float(actual.sum())
    rate = deployed / planned_total if planned_total > 0 else 0.0

    completion = None
    running = np.cumsum(actual)
    reached = np.nonzero(running >= planned_total * (1 - 1e-9))[0] if planned_total > 0 else []
    if len(reached):
        completion = int(reached[0])

    worst = max((r.cumulative_variance for r in rows), key=abs, default=0.0)
    drift = worst / planned_total if planned_total > 0 else 0.0
    score = float(np.clip(100.0 * (1.0 - abs(drift) / (2 * PACING_TOLERANCE)), 0.0, 100.0))
    on_track = abs(drift) <= PACING_TOLERANCE

    return PacingAnalysis(
        deployment_rate=rate,
        projected_completion_quarter=completion,
        pacing_score=score,
        is_on_track=on_track,
        quarterly_deployment=tuple(rows),
        recommendations=(_pacing_recommendation(drift),),
    )


def _pacing_recommendation(drift: float) -> PacingRecommendation:
    urgency: Severity = "high" if abs(drift) > 2.5 * PACING_TOLERANCE else "medium"
    if drift < -PACING_TOLERANCE:
        return PacingRecommendation(
            type="speed-up",
            urgency=urgency,
            description=f"Deployment trails plan by up to {abs(drift):.0%} of initial capital",
            suggested_actions=("Increase sourcing capacity", "Consider larger initial checks"),
        )
    if drift > PACING_TOLERANCE:
        return PacingRecommendation(
            type="slow-down",
            urgency=urgency,
            description=f"Deployment runs ahead of plan by up to {drift:.0%} of initial capital",
            suggested_actions=("Spread remaining checks across the investment period",),
        )
    return PacingRecommendation(
        type="maintain",
        urgency="low",
        description="Deployment is tracking the straight-line plan",
        suggested_actions=(),
    )


# ---------------------------------------------------------------------------
# Stage exits and cohorts
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StageExitStats:
    stage: Stage
    companies: int
    total_invested: float
    total_exited: float
    average_multiple: float
    median_multiple: float
    success_rate: float
    average_hold_years: float


@dataclass(frozen=True)
class CohortPerformance:
    year: int
    companies: int
    invested: float
    realized: float
    unrealized: float
    multiple: float
    irr: Optional[float]


@dataclass(frozen=True)
class StageExitAnalysis:
    by_stage: tuple[StageExitStats, ...]
    by_entry_year: tuple[CohortPerformance, ...]

    def frame(self) -> pd.DataFrame:
        return pd.DataFrame([{**asdict(s), "stage": s.stage.value} for s in self.by_stage])


def stage_exit_analysis(result: ForecastResult) -> StageExitAnalysis:
    companies = list(result.portfolio)
    end = result.config.fund_life_quarters - 1

    by_stage = []
    for stage in Stage:
        members = [c for c in companies if c.entry_stage is stage]
        if not members:
            continue
        exited = [c for c in members if c.status is CompanyStatus.EXITED]
        multiples = [
            c.exit_value / c.total_invested for c in exited if c.total_invested > 0 and c.exit_value > 0
        ]
        by_stage.append(
            StageExitStats(
                stage=stage,
                companies=len(members),
                total_invested=sum(c.total_invested for c in members),
                total_exited=sum(c.exit_value for c in members),
                average_multiple=float(np.mean(multiples)) if multiples else 0.0,
                median_multiple=float(np.median(multiples)) if multiples else 0.0,
                success_rate=len(exited) / len(members),
                average_hold_years=(
                    float(np.mean([c.holding_period(end) for c in exited])) / QUARTERS_PER_YEAR
                    if exited
                    else 0.0
                ),
            )
        )

    cohorts: dict[int, list[PortfolioCompany]] = {}
    for company in companies:
        year = result.config.vintage + company.entry_quarter // QUARTERS_PER_YEAR
        cohorts.setdefault(year, []).append(company)

    by_year = []
    for year in sorted(cohorts):
        members = cohorts[year]
        invested = sum(c.total_invested for c in members)
        realized = sum(c.exit_value for c in members)
        unrealized = sum(c.unrealized_value for c in members)
        by_year.append(
            CohortPerformance(
                year=year,
                companies=len(members),
                invested=invested,
                realized=realized,
                unrealized=unrealized,
                multiple=(realized + unrealized) / invested if invested > 0 else 0.0,
                irr=_cohort_irr(members, result.config),
            )
        )
    return StageExitAnalysis(by_stage=tuple(by_stage), by_entry_year=tuple(by_year))


def _cohort_irr(members: list[PortfolioCompany], config: FundConfiguration) -> Optional[float]:
    flows = np.zeros(config.fund_life_quarters, dtype=np.float64)
    for company in members:
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
    return irr.rate if irr.converged else None


# ---------------------------------------------------------------------------
# Concentration and benchmarks
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ConcentrationAnalysis:
    top_5_share_of_nav: float
    top_10_share_of_nav: float
    herfindahl_index: float
    diversification_score: float


def concentration_analysis(result: ForecastResult) -> ConcentrationAnalysis:
    """
    Concentration of the remaining NAV across active companies.

    Returns
    -------
    ConcentrationAnalysis
        herfindahl_index: HHI of NAV weights (0=diversified, 1=concentrated)
    """
    navs = np.array(
        [c.unrealized_value for c in result.portfolio if c.status is CompanyStatus.ACTIVE],
        dtype=np.float64,
    )
    total = navs.sum() if len(navs) else 0.0
    if total <= 0:
        return ConcentrationAnalysis(0.0, 0.0, 0.0, 0.0)
    weights = np.sort(navs / total)[::-1]
    hhi = float(np.sum(weights**2))
    return ConcentrationAnalysis(
        top_5_share_of_nav=float(weights[:5].sum()),
        top_10_share_of_nav=float(weights[:10].sum()),
        herfindahl_index=hhi,
        diversification_score=1.0 - hhi,
    )


@dataclass(frozen=True)
class VintageComparison:
    percentile: float
    quartile: Literal["top-quartile", "median", "bottom-quartile"]
    versus_median_irr_bps: Optional[float]


def vintage_comparison(result: ForecastResult) -> VintageComparison:
    """Place the fund's net MOIC against fixed vintage benchmarks."""
    top_moic, _ = BENCHMARKS["top-quartile"]
    median_moic, median_irr = BENCHMARKS["median"]
    bottom_moic, _ = BENCHMARKS["bottom-quartile"]
    moic = result.net_moic

    if moic >= top_moic:
        quartile = "top-quartile"
        percentile = 75 + (moic - top_moic) / (top_moic * 0.5) * 25
    elif moic >= median_moic:
        quartile = "median"
        percentile = 50 + (moic - median_moic) / (top_moic - median_moic) * 25
    else:
        quartile = "bottom-quartile"
        percentile = (moic - bottom_moic) / (median_moic - bottom_moic) * 50

    versus = None
    if result.net_irr is not None:
        versus = (result.net_irr - median_irr) * 10_000
    return VintageComparison(
        percentile=float(np.clip(percentile, 0.0, 100.0)),
        quartile=quartile,
        versus_median_irr_bps=versus,
    )


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EnhancedAnalytics:
    reserves: ReserveAnalysis
    pacing: PacingAnalysis
    stage_exits: StageExitAnalysis
    concentration: ConcentrationAnalysis
    vintage: VintageComparison


def analyze(result: ForecastResult) -> EnhancedAnalytics:
    """Run every analysis over ``result``. Nothing in ``result`` changes."""
    return EnhancedAnalytics(
        reserves=reserve_analysis(result),
        pacing=pacing_analysis(result),
        stage_exits=stage_exit_analysis(result),
        concentration=concentration_analysis(result),
        vintage=vintage_comparison(result),
    )
