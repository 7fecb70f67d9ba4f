"""
fund.py — Quarterly cash flow ledger for a VC fund.

Depends only on: config.py, metrics.py, portfolio.py, waterfall.py

The ledger is filled from a simulated portfolio (contributions, gross
proceeds, NAV marks), charged management fees and expenses, and then
credited with the waterfall's LP distributions and carry. Every derived
quarter is reported as a CashFlowPoint.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Optional

import numpy as np
import pandas as pd

from vc_forecast.config import ExitOutcome, FeeBasis, FeeProfile, FundConfiguration
from vc_forecast.metrics import QUARTERS_PER_YEAR, IRRResult, quarterly_irr
from vc_forecast.portfolio import CompanyStatus, Portfolio
from vc_forecast.waterfall import Realization, WaterfallSummary


# ---------------------------------------------------------------------------
# Fees and expenses
# ---------------------------------------------------------------------------

def calc_management_fees(
    config: FundConfiguration,
    contributions: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Management fee charged in each quarter of the fund life.

    Parameters
    ----------
    config:
        Fund terms; the fee basis and step-down come from its fee profile.
    contributions:
        Capital invested per quarter. Needed for the ``invested`` basis.

    Returns
    -------
    ndarray
        Fee per quarter, length ``fund_life_quarters``.
    """
    profile = config.fee_profile
    n = config.fund_life_quarters
    inv_period_end = config.investment_period_quarters

    if profile.management_fee_basis is FeeBasis.INVESTED:
        if contributions is None:
            contributions = np.zeros(n, dtype=np.float64)
        basis = np.cumsum(np.asarray(contributions, dtype=np.float64))
    elif profile.management_fee_basis is FeeBasis.CUSTOM:
        schedule = list(profile.custom_fee_schedule) or [0.0]
        # The last scheduled basis carries forward.
        basis = np.array(
            [schedule[min(q, len(schedule) - 1)] for q in range(n)], dtype=np.float64
        )
    else:
        basis = np.full(n, config.committed_capital, dtype=np.float64)

    fees = np.zeros(n, dtype=np.float64)
    for t in range(n):
        rate = profile.management_fee_rate
        if t >= inv_period_end:
            # Step-down applies from the first post-investment quarter.
            years_post = (t - inv_period_end + 1) / QUARTERS_PER_YEAR
            rate = max(rate - profile.fee_step_down_rate * years_post, 0.0)
        fees[t] = basis[t] * rate / QUARTERS_PER_YEAR
    return fees


def calc_fund_expenses(profile: FeeProfile, n_quarters: int) -> np.ndarray:
    """Organisational expenses in quarter 0 plus capped operating expenses."""
    expenses = np.zeros(n_quarters, dtype=np.float64)
    if n_quarters == 0:
        return expenses
    annual = profile.fund_expenses
    if profile.annual_expenses_cap is not None:
        annual = min(annual, profile.annual_expenses_cap)
    expenses += max(annual, 0.0) / QUARTERS_PER_YEAR
    expenses[0] += profile.organizational_expenses
    return expenses


# ---------------------------------------------------------------------------
# Realizations
# ---------------------------------------------------------------------------

def collect_realizations(portfolio: Portfolio) -> list[Realization]:
    """
    Chronological realization ledger for the waterfall.

    Each exit event carries the company's dated investments up to the
    event quarter, scaled so they sum to the event's cost basis.
    """
    ledger = []
    for company in portfolio:
        for n, event in enumerate(company.exit_events, start=1):
            invested = company.invested_through(event.quarter)
            scale = event.cost_basis / invested if invested > 0 else 0.0
            dated = tuple(
                (inv.quarter, inv.amount * scale)
                for inv in company.investments
                if inv.quarter <= event.quarter
            )
            ledger.append(
                Realization(
                    id=f"{company.id}-exit-{n}",
                    company_id=company.id,
                    quarter=event.quarter,
                    stage=event.stage,
                    outcome=event.outcome,
                    cost_basis=event.cost_basis,
                    proceeds=event.proceeds,
                    contributions=dated,
                )
            )
    # Stable sort keeps creation order within a quarter.
    ledger.sort(key=lambda r: r.quarter)
    return ledger


# ---------------------------------------------------------------------------
# Ledger records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CashFlowPoint:
    """One quarter of the fund timeline."""

    quarter: int
    year: int
    year_quarter: str
    contributions: float
    distributions: float  # LP share of proceeds
    management_fees: float
    fund_expenses: float
    carried_interest: float
    gross_proceeds: float
    net_cash_flow: float
    cumulative_contributions: float
    cumulative_distributions: float
    cumulative_management_fees: float
    cumulative_expenses: float
    cumulative_carried_interest: float
    cumulative_gross_proceeds: float
    nav: float
    unrealized_gain: float
    dpi: float
    rvpi: float
    tvpi: float
    gross_moic: float
    net_moic: float
    gross_irr: Optional[float]
    net_irr: Optional[float]
    active_companies: int = 0
    exited_companies: int = 0
    written_off_companies: int = 0


@dataclass(frozen=True)
class RiskMetrics:
    j_curve_depth: float  # deepest cumulative net outflow, as a fraction of commitments
    time_to_breakeven: Optional[int]  # quarter, None if never reached
    loss_ratio: float
    concentration_risk: float  # Herfindahl index of company value
    diversification_score: float


class Fund:
    """
    Quarterly cash flow ledger for a VC fund.

    Records investments, gross proceeds, NAV marks and the waterfall's
    split of each realization, and derives the LP-level timeline.

    Supports method chaining for a builder pattern:

        fund = (
            Fund(config)
            .deploy_capital({0: 5e6, 4: 3e6})
            .record_proceeds(9e6, quarter=12, cost_basis=3e6)
            .set_nav(12, 10e6)
        )

    ``Fund.from_portfolio`` fills the ledger from a simulation.
    """

    def __init__(self, config: FundConfiguration, portfolio: Optional[Portfolio] = None) -> None:
        self.config = config
        self.portfolio = portfolio
        n = config.fund_life_quarters
        self._contributions: np.ndarray = np.zeros(n, dtype=np.float64)
        self._gross_proceeds: np.ndarray = np.zeros(n, dtype=np.float64)
        self._realized_cost: np.ndarray = np.zeros(n, dtype=np.float64)
        self._distributions: np.ndarray = np.zeros(n, dtype=np.float64)
        self._carry: np.ndarray = np.zeros(n, dtype=np.float64)
        self._nav: np.ndarray = np.zeros(n, dtype=np.float64)
        self._expenses: np.ndarray = calc_fund_expenses(config.fee_profile, n)
        self.clawback = 0.0

    @classmethod
    def from_portfolio(cls, config: FundConfiguration, portfolio: Portfolio) -> "Fund":
        fund = cls(config, portfolio)
        fund._contributions += portfolio.contributions_by_quarter()
        for event in portfolio.exit_events:
            fund.record_proceeds(event.proceeds, event.quarter, event.cost_basis)
        fund._nav = portfolio.nav_by_quarter()
        return fund

    @property
    def n_quarters(self) -> int:
        return self.config.fund_life_quarters

    def _check_quarter(self, quarter: int) -> None:
        if quarter < 0 or quarter >= self.n_quarters:
            raise ValueError(f"Quarter {quarter} out of range [0, {self.n_quarters - 1}]")

    # ------------------------------------------------------------------
    # Builder methods (method chaining)
    # ------------------------------------------------------------------

    def deploy_capital(self, schedule: dict[int, float]) -> "Fund":
        """
        Record investments according to a deployment schedule.

        Parameters
        ----------
        schedule:
            Mapping of {quarter: amount_invested}. Amounts are positive.

        Returns
        -------
        self (for chaining)
        """
        for quarter, amount in schedule.items():
            self._check_quarter(quarter)
            if amount < 0:
                raise ValueError("Investment amount must be non-negative")
            self._contributions[quarter] += amount
        return self

    def record_proceeds(self, amount: float, quarter: int, cost_basis: float = 0.0) -> "Fund":
        """Record gross exit proceeds and the cost basis they retire."""
        self._check_quarter(quarter)
        if amount < 0 or cost_basis < 0:
            raise ValueError("Proceeds and cost basis must be non-negative")
        self._gross_proceeds[quarter] += amount
        self._realized_cost[quarter] += cost_basis
        return self

    def add_distribution(self, amount: float, quarter: int, carry: float = 0.0) -> "Fund":
        """
        Record an LP distribution and the carry paid alongside it.

        Parameters
        ----------
        amount:
            LP share (positive).
        quarter:
            Quarter of the distribution.
        carry:
            GP share of the same proceeds.

        Returns
        -------
        self (for chaining)
        """
        self._check_quarter(quarter)
        if amount < 0 or carry < 0:
            raise ValueError("Distribution amount must be non-negative")
        self._distributions[quarter] += amount
        self._carry[quarter] += carry
        return self

    def set_nav(self, quarter: int, nav: float) -> "Fund":
        """Set the NAV mark at the end of ``quarter``."""
        self._check_quarter(quarter)
        if nav < 0:
            raise ValueError("NAV cannot be negative")
        self._nav[quarter] = nav
        return self

    def apply_waterfall(self, summary: WaterfallSummary) -> "Fund":
        """Credit each waterfall calculation as LP distribution and carry."""
        for calc in summary.calculations:
            self.add_distribution(calc.lp_total, calc.quarter, carry=calc.gp_total)
        self.clawback = summary.clawback_adjustment
        return self

    # ------------------------------------------------------------------
    # Computed properties
    # ------------------------------------------------------------------

    @property
    def management_fees(self) -> np.ndarray:
        return calc_management_fees(self.config, self._contributions)

    @property
    def expenses(self) -> np.ndarray:
        return self._expenses

    @property
    def total_invested(self) -> float:
        return float(np.sum(self._contributions))

    @property
    def total_proceeds(self) -> float:
        return float(np.sum(self._gross_proceeds))

    @property
    def total_distributions(self) -> float:
        return float(np.sum(self._distributions))

    @property
    def total_carry(self) -> float:
        return float(np.sum(self._carry))

    @property
    def final_nav(self) -> float:
        return float(self._nav[-1]) if self.n_quarters else 0.0

    def contributions_by_quarter(self) -> np.ndarray:
        return self._contributions.copy()

    # ------------------------------------------------------------------
    # Cash flow vectors
    # ------------------------------------------------------------------

    def gross_cashflows(self) -> np.ndarray:
        """Portfolio-level flows: −investments, +proceeds, final NAV."""
        flows = self._gross_proceeds - self._contributions
        if self.n_quarters:
            flows[-1] += self.final_nav
        return flows

    def lp_cashflows(self) -> np.ndarray:
        """
        LP-perspective cash flows.

        Outflows (investments, fees, expenses) are negative. Inflows are the
        LP share of proceeds; the final quarter adds remaining NAV and any
        clawback.
        """
        flows = self._distributions - self._contributions - self.management_fees - self._expenses
        if self.n_quarters:
            flows[-1] += self.final_nav + self.clawback
        return flows

    def _irr_to_date(self, flows: np.ndarray, quarter: int) -> IRRResult:
        window = flows[: quarter + 1].copy()
        window[-1] += self._nav[quarter]
        return quarterly_irr(
            window,
            max_iterations=self.config.assumptions.ir_max_iterations,
            tolerance=self.config.assumptions.ir_tolerance,
        )

    # ------------------------------------------------------------------
    # Timeline
    # ------------------------------------------------------------------

    def timeline(self) -> tuple[CashFlowPoint, ...]:
        """One CashFlowPoint per quarter, 0 .. fund_life - 1."""
        fees = self.management_fees
        expenses = self._expenses
        gross_flows = self._gross_proceeds - self._contributions
        net_flows = self._distributions - self._contributions - fees - expenses

        cum_contrib = np.cumsum(self._contributions)
        cum_dist = np.cumsum(self._distributions)
        cum_fees = np.cumsum(fees)
        cum_expenses = np.cumsum(expenses)
        cum_carry = np.cumsum(self._carry)
        cum_proceeds = np.cumsum(self._gross_proceeds)

        points = []
        prior_nav = 0.0
        for q in range(self.n_quarters):
            nav = float(self._nav[q])
            paid_in = float(cum_contrib[q])
            if paid_in > 0:
                dpi = float(cum_dist[q]) / paid_in
                rvpi = nav / paid_in
                gross_moic = (float(cum_proceeds[q]) + nav) / paid_in
                net_paid_in = paid_in + float(cum_fees[q] + cum_expenses[q])
                net_moic = (float(cum_dist[q]) + nav) / net_paid_in
                gross_irr = self._irr_to_date(gross_flows, q)
                net_irr = self._irr_to_date(net_flows, q)
            else:
                dpi = rvpi = gross_moic = net_moic = 0.0
                gross_irr = net_irr = None

            counts = (
                self.portfolio.status_counts(q)
                if self.portfolio is not None
                else dict.fromkeys(CompanyStatus, 0)
            )
            year_index = q // QUARTERS_PER_YEAR
            points.append(
                CashFlowPoint(
                    quarter=q,
                    year=self.config.vintage + year_index,
                    year_quarter=f"Y{year_index + 1}Q{q % QUARTERS_PER_YEAR + 1}",
                    contributions=float(self._contributions[q]),
                    distributions=float(self._distributions[q]),
                    management_fees=float(fees[q]),
                    fund_expenses=float(expenses[q]),
                    carried_interest=float(self._carry[q]),
                    gross_proceeds=float(self._gross_proceeds[q]),
                    net_cash_flow=float(net_flows[q]),
                    cumulative_contributions=paid_in,
                    cumulative_distributions=float(cum_dist[q]),
                    cumulative_management_fees=float(cum_fees[q]),
                    cumulative_expenses=float(cum_expenses[q]),
                    cumulative_carried_interest=float(cum_carry[q]),
                    cumulative_gross_proceeds=float(cum_proceeds[q]),
                    nav=nav,
                    unrealized_gain=(
                        nav - prior_nav - float(self._contributions[q]) + float(self._realized_cost[q])
                    ),
                    dpi=dpi,
                    rvpi=rvpi,
                    tvpi=dpi + rvpi,
                    gross_moic=gross_moic,
                    net_moic=net_moic,
                    gross_irr=_rate(gross_irr),
                    net_irr=_rate(net_irr),
                    active_companies=counts[CompanyStatus.ACTIVE],
                    exited_companies=counts[CompanyStatus.EXITED],
                    written_off_companies=counts[CompanyStatus.WRITTEN_OFF],
                )
            )
            prior_nav = nav
        return tuple(points)

    def get_cashflows(self) -> pd.DataFrame:
        """Return the quarter-by-quarter timeline as a DataFrame."""
        return timeline_frame(self.timeline())

    # ------------------------------------------------------------------
    # Risk
    # ------------------------------------------------------------------

    def risk_metrics(self) -> RiskMetrics:
        """
        Fund-level risk measures.

        J-curve depth is the deepest cumulative net LP outflow relative to
        commitments. Breakeven is the first quarter in which LP
        distributions plus NAV cover everything paid in.
        """
        net_flows = self._distributions - self._contributions - self.management_fees - self._expenses
        cumulative = np.cumsum(net_flows)
        trough = float(min(cumulative.min(), 0.0)) if self.n_quarters else 0.0
        committed = self.config.committed_capital
        depth = -trough / committed if committed > 0 else 0.0

        breakeven = None
        started = False
        for q in range(self.n_quarters):
            started = started or self._contributions[q] > 0
            if started and cumulative[q] + self._nav[q] >= 0:
                breakeven = q
                break

        loss_ratio = hhi = 0.0
        if self.portfolio is not None and len(self.portfolio):
            invested = self.portfolio.total_invested
            written_off = sum(
                ev.cost_basis for ev in self.portfolio.exit_events if ev.outcome is ExitOutcome.FAIL
            )
            loss_ratio = written_off / invested if invested > 0 else 0.0
            values = np.array([c.total_value for c in self.portfolio], dtype=np.float64)
            total = values.sum()
            weights = values / total if total > 0 else np.zeros_like(values)
            # Herfindahl-Hirschman Index
            hhi = float(np.sum(weights**2))
        return RiskMetrics(
            j_curve_depth=depth,
            time_to_breakeven=breakeven,
            loss_ratio=loss_ratio,
            concentration_risk=hhi,
            diversification_score=1.0 - hhi if hhi > 0 else 0.0,
        )

    def __repr__(self) -> str:
        cfg = self.config
        return (
            f"Fund(name={cfg.fund_name!r}, vintage={cfg.vintage}, "
            f"committed=${cfg.committed_capital:,.0f}, "
            f"invested=${self.total_invested:,.0f})"
        )


def _rate(result: Optional[IRRResult]) -> Optional[float]:
    if result is None or not result.converged:
        return None
    return result.rate


def timeline_frame(points: tuple[CashFlowPoint, ...]) -> pd.DataFrame:
    """Tabular view of a timeline, one row per quarter."""
    return pd.DataFrame([asdict(p) for p in points])
