"""
portfolio.py — Cohort simulation of portfolio companies.

Depends only on: config.py

Companies are synthesized from each StageStrategy, deployed on a linear
schedule across the investment period, and advanced quarter by quarter.
At every evaluation boundary a company first resolves graduation, then
exit. Under the deterministic methodology weight is apportioned across
destinations by probability; under Monte Carlo a single seeded generator
moves the whole company atomically.
"""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, Optional, Protocol

import numpy as np
import pandas as pd

from vc_forecast.config import (
    ExitOutcome,
    FundConfiguration,
    Stage,
    StageStrategy,
)

logger = logging.getLogger(__name__)

# Remaining active weight below this is treated as fully resolved.
_WEIGHT_EPSILON = 1e-12


class RandomSource(Protocol):
    """Anything that yields uniform draws in [0, 1), e.g. numpy's Generator."""

    def random(self) -> float: ...


class CompanyStatus(str, Enum):
    ACTIVE = "active"
    EXITED = "exited"
    WRITTEN_OFF = "written-off"


# ---------------------------------------------------------------------------
# Ledger records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Investment:
    """A single capital deployment. Immutable once recorded."""

    id: str
    company_id: str
    stage: Stage
    amount: float
    quarter: int
    ownership: float  # ownership acquired by this check
    valuation: float  # post-money valuation of the round
    is_follow_on: bool = False
    round: str = ""


@dataclass(frozen=True)
class ExitEvent:
    """Resolution of (part of) a company's position."""

    company_id: str
    quarter: int
    stage: Stage
    outcome: ExitOutcome
    weight: float
    cost_basis: float
    proceeds: float

    @property
    def multiple(self) -> float:
        return self.proceeds / self.cost_basis if self.cost_basis > 0 else 0.0

    @property
    def is_realization(self) -> bool:
        return self.proceeds > 0


@dataclass(frozen=True)
class PortfolioCompany:
    """A company's full history as produced by the simulator."""

    id: str
    name: str
    entry_stage: Stage
    current_stage: Stage
    investments: tuple[Investment, ...]
    status: CompanyStatus
    current_valuation: float
    ownership: float
    active_weight: float
    exit_events: tuple[ExitEvent, ...] = ()
    nav_history: tuple[float, ...] = ()  # mark at the end of each quarter
    exit_value: float = 0.0
    exit_quarter: Optional[int] = None

    @property
    def entry_quarter(self) -> int:
        return self.investments[0].quarter

    @property
    def total_invested(self) -> float:
        return sum(inv.amount for inv in self.investments)

    @property
    def follow_on_invested(self) -> float:
        return sum(inv.amount for inv in self.investments if inv.is_follow_on)

    @property
    def unrealized_value(self) -> float:
        return self.nav_history[-1] if self.nav_history else 0.0

    @property
    def total_value(self) -> float:
        return self.exit_value + self.unrealized_value

    @property
    def is_active(self) -> bool:
        return self.status is CompanyStatus.ACTIVE

    def invested_through(self, quarter: int) -> float:
        return sum(inv.amount for inv in self.investments if inv.quarter <= quarter)

    def holding_period(self, end_quarter: int) -> int:
        """Quarters held, up to the exit quarter or ``end_quarter``."""
        last = self.exit_quarter if self.exit_quarter is not None else end_quarter
        return max(last - self.entry_quarter, 0)


@dataclass(frozen=True)
class Portfolio:
    """
    Immutable collection of simulated companies in creation order.

    Provides the portfolio-level views that the aggregator and analytics
    need without mutating any company.
    """

    companies: tuple[PortfolioCompany, ...]
    fund_life_quarters: int

    def __iter__(self) -> Iterator[PortfolioCompany]:
        return iter(self.companies)

    def __len__(self) -> int:
        return len(self.companies)

    def __getitem__(self, index: int) -> PortfolioCompany:
        return self.companies[index]

    @property
    def investments(self) -> list[Investment]:
        return [inv for c in self.companies for inv in c.investments]

    @property
    def exit_events(self) -> list[ExitEvent]:
        return [ev for c in self.companies for ev in c.exit_events]

    @property
    def total_invested(self) -> float:
        return sum(c.total_invested for c in self.companies)

    @property
    def total_realized(self) -> float:
        return sum(c.exit_value for c in self.companies)

    @property
    def total_unrealized(self) -> float:
        return sum(c.unrealized_value for c in self.companies)

    def contributions_by_quarter(self) -> np.ndarray:
        out = np.zeros(self.fund_life_quarters, dtype=np.float64)
        for inv in self.investments:
            out[inv.quarter] += inv.amount
        return out

    def proceeds_by_quarter(self) -> np.ndarray:
        out = np.zeros(self.fund_life_quarters, dtype=np.float64)
        for ev in self.exit_events:
            out[ev.quarter] += ev.proceeds
        return out

    def nav_by_quarter(self) -> np.ndarray:
        out = np.zeros(self.fund_life_quarters, dtype=np.float64)
        for company in self.companies:
            out += np.asarray(company.nav_history, dtype=np.float64)
        return out

    def status_counts(self, quarter: int) -> dict[CompanyStatus, int]:
        """Company counts by status as of the end of ``quarter``."""
        counts = Counter()
        for company in self.companies:
            if company.entry_quarter > quarter:
                continue
            if company.exit_quarter is not None and company.exit_quarter <= quarter:
                counts[company.status] += 1
            else:
                counts[CompanyStatus.ACTIVE] += 1
        return {status: counts.get(status, 0) for status in CompanyStatus}

    def breakdown(self) -> pd.DataFrame:
        """Return company-level breakdown DataFrame."""
        if not self.companies:
            return pd.DataFrame()

        total_invested = self.total_invested
        rows = []
        for company in self.companies:
            rows.append(
                {
                    "company": company.name,
                    "company_id": company.id,
                    "entry_stage": company.entry_stage.value,
                    "current_stage": company.current_stage.value,
                    "status": company.status.value,
                    "entry_quarter": company.entry_quarter,
                    "exit_quarter": company.exit_quarter,
                    "invested": company.total_invested,
                    "follow_on": company.follow_on_invested,
                    "exit_value": company.exit_value,
                    "unrealized_value": company.unrealized_value,
                    "ownership": company.ownership,
                    "portfolio_weight": (
                        company.total_invested / total_invested if total_invested > 0 else 0.0
                    ),
                }
            )
        return pd.DataFrame(rows)

    def __repr__(self) -> str:
        return (
            f"Portfolio(n_companies={len(self.companies)}, "
            f"total_invested=${self.total_invested:,.0f})"
        )


# ---------------------------------------------------------------------------
# Simulation state (mutable, private to a single run)
# ---------------------------------------------------------------------------

@dataclass
class _Holding:
    """Fraction of a company sitting in one stage."""

    stage: Stage
    weight: float
    cost: float  # cost basis carried by this weight
    mark: float  # weight × last-round valuation × ownership
    valuation: float
    ownership: float

    def merge(self, other: "_Holding") -> None:
        total = self.weight + other.weight
        if total > 0:
            self.valuation = (self.valuation * self.weight + other.valuation * other.weight) / total
            self.ownership = (self.ownership * self.weight + other.ownership * other.weight) / total
        self.weight = total
        self.cost += other.cost
        self.mark += other.mark


@dataclass
class _CompanyState:
    id: str
    name: str
    strategy: StageStrategy
    holdings: dict[Stage, _Holding] = field(default_factory=dict)
    investments: list[Investment] = field(default_factory=list)
    exit_events: list[ExitEvent] = field(default_factory=list)
    nav_history: list[float] = field(default_factory=list)
    current_stage: Optional[Stage] = None
    exit_quarter: Optional[int] = None

    @property
    def active_weight(self) -> float:
        return sum(h.weight for h in self.holdings.values())

    @property
    def is_active(self) -> bool:
        return self.active_weight > _WEIGHT_EPSILON

    @property
    def nav(self) -> float:
        return sum(h.mark for h in self.holdings.values())

    def ordered_holdings(self) -> list[_Holding]:
        return sorted(self.holdings.values(), key=lambda h: h.stage.order)

    def add(self, holding: _Holding) -> None:
        if holding.stage in self.holdings:
            self.holdings[holding.stage].merge(holding)
        else:
            self.holdings[holding.stage] = holding

    def record_investment(
        self,
        stage: Stage,
        amount: float,
        quarter: int,
        ownership: float,
        valuation: float,
        is_follow_on: bool,
    ) -> None:
        n = len(self.investments) + 1
        self.investments.append(
            Investment(
                id=f"{self.id}-inv-{n}",
                company_id=self.id,
                stage=stage,
                amount=amount,
                quarter=quarter,
                ownership=ownership,
                valuation=valuation,
                is_follow_on=is_follow_on,
                round=f"{stage.value} follow-on" if is_follow_on else stage.value,
            )
        )

    def refresh_stage(self) -> None:
        if self.holdings:
            heaviest = max(self.ordered_holdings(), key=lambda h: h.weight)
            self.current_stage = heaviest.stage

    def prune(self) -> None:
        for stage in [s for s, h in self.holdings.items() if h.weight <= _WEIGHT_EPSILON]:
            del self.holdings[stage]

    def freeze(self) -> PortfolioCompany:
        holdings = self.ordered_holdings()
        weight = self.active_weight
        if self.is_active:
            status = CompanyStatus.ACTIVE
        elif any(ev.proceeds > 0 for ev in self.exit_events):
            status = CompanyStatus.EXITED
        else:
            status = CompanyStatus.WRITTEN_OFF
        valuation = ownership = 0.0
        if weight > 0:
            valuation = sum(h.valuation * h.weight for h in holdings) / weight
            ownership = sum(h.ownership * h.weight for h in holdings) / weight
        elif self.investments:
            last = self.investments[-1]
            valuation = last.valuation
            ownership = sum(inv.ownership for inv in self.investments)
        return PortfolioCompany(
            id=self.id,
            name=self.name,
            entry_stage=self.strategy.stage,
            current_stage=self.current_stage or self.strategy.stage,
            investments=tuple(self.investments),
            status=status,
            current_valuation=valuation,
            ownership=ownership,
            active_weight=weight if status is CompanyStatus.ACTIVE else 0.0,
            exit_events=tuple(self.exit_events),
            nav_history=tuple(self.nav_history),
            exit_value=sum(ev.proceeds for ev in self.exit_events),
            exit_quarter=None if status is CompanyStatus.ACTIVE else self.exit_quarter,
        )


# ---------------------------------------------------------------------------
# Simulator
# ---------------------------------------------------------------------------

def deployment_quarter(index: int, count: int, investment_period_quarters: int) -> int:
    """Quarter in which entry ``index`` of ``count`` lands on a linear schedule."""
    return (index * investment_period_quarters) // count


class CohortSimulator:
    """
    Quarter-by-quarter simulator for every cohort in a configuration.

    Monte Carlo runs draw from one generator in a fixed order: companies in
    creation order, quarters ascending, graduation before exit. Identical
    configuration and seed therefore give identical portfolios.

        portfolio = CohortSimulator(config).run()
    """

    def __init__(
        self,
        config: FundConfiguration,
        rng: Optional[RandomSource] = None,
    ) -> None:
        self.config = config
        self.assumptions = config.assumptions
        self.monte_carlo = config.assumptions.is_monte_carlo
        if rng is None and self.monte_carlo:
            rng = np.random.default_rng(config.assumptions.random_seed)
        self._rng = rng

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def run(self) -> Portfolio:
        companies = []
        for strategy in self.config.stage_strategies:
            for i in range(strategy.check_count):
                state = self._create_company(strategy, i)
                self._advance(state)
                company = state.freeze()
                logger.debug(
                    "%s %s: invested %.0f, exit value %.0f",
                    company.id,
                    company.status.value,
                    company.total_invested,
                    company.exit_value,
                )
                companies.append(company)
        return Portfolio(
            companies=tuple(companies),
            fund_life_quarters=self.config.fund_life_quarters,
        )

    def _create_company(self, strategy: StageStrategy, index: int) -> _CompanyState:
        slug = strategy.stage.name.lower().replace("_", "-")
        state = _CompanyState(
            id=f"{slug}-{index + 1:03d}",
            name=f"{strategy.stage.value} Company {index + 1}",
            strategy=strategy,
        )
        quarter = deployment_quarter(
            index, strategy.check_count, self.config.investment_period_quarters
        )
        check = strategy.avg_initial_check
        valuation = check / strategy.ownership if strategy.ownership > 0 else check
        state.record_investment(
            strategy.stage, check, quarter, strategy.ownership, valuation, is_follow_on=False
        )
        state.add(
            _Holding(
                stage=strategy.stage,
                weight=1.0,
                cost=check,
                mark=valuation * strategy.ownership,
                valuation=valuation,
                ownership=strategy.ownership,
            )
        )
        state.current_stage = strategy.stage
        return state

    # ------------------------------------------------------------------
    # Time loop
    # ------------------------------------------------------------------

    def _advance(self, state: _CompanyState) -> None:
        entry = state.investments[0].quarter
        interval = self.assumptions.evaluation_interval_quarters
        state.nav_history.extend([0.0] * entry)
        for quarter in range(entry, self.config.fund_life_quarters):
            if (
                state.is_active
                and quarter > entry
                and quarter % interval == 0
            ):
                self._graduate(state, quarter)
                if quarter - entry >= self.assumptions.exit_min_hold_quarters:
                    self._resolve_exit(state, quarter)
                if not state.is_active and state.exit_quarter is None:
                    state.exit_quarter = quarter
            state.nav_history.append(state.nav)

    def _graduate(self, state: _CompanyState, quarter: int) -> None:
        moves: list[tuple[_Holding, Stage, float]] = []
        for holding in state.ordered_holdings():
            row = self.config.graduation_matrix.get(holding.stage)
            if not row:
                continue
            destinations = sorted(
                ((dst, p) for dst, p in row.items() if p > 0), key=lambda item: item[0].order
            )
            if not destinations:
                continue
            if self.monte_carlo:
                chosen = self._pick([p for _, p in destinations], allow_none=True)
                if chosen is not None:
                    moves.append((holding, destinations[chosen][0], 1.0))
            else:
                moves.extend((holding, dst, p) for dst, p in destinations)

        # Splits are taken from the pre-graduation snapshot.
        snapshot = {id(h): (h.weight, h.cost, h.mark) for h, _, _ in moves}
        for holding, dst, fraction in moves:
            weight0, cost0, mark0 = snapshot[id(holding)]
            self._move(state, holding, dst, weight0 * fraction, cost0 * fraction, mark0 * fraction, quarter)
        state.prune()
        state.refresh_stage()

    def _move(
        self,
        state: _CompanyState,
        source: _Holding,
        destination: Stage,
        weight: float,
        cost: float,
        mark: float,
        quarter: int,
    ) -> None:
        source.weight -= weight
        source.cost -= cost
        source.mark -= mark

        valuation = source.valuation * self.assumptions.graduation_step_up
        moved = _Holding(
            stage=destination,
            weight=weight,
            cost=cost,
            mark=mark * self.assumptions.graduation_step_up,
            valuation=valuation,
            ownership=source.ownership,
        )

        # One follow-on per stage transition, sized by the weight that moved.
        amount = state.strategy.follow_on_check * weight
        if amount > 0:
            stake = state.strategy.follow_on_check / valuation if valuation > 0 else 0.0
            state.record_investment(
                destination, amount, quarter, stake * weight, valuation, is_follow_on=True
            )
            moved.cost += amount
            moved.mark += amount
            moved.ownership += stake
        state.add(moved)

    def _resolve_exit(self, state: _CompanyState, quarter: int) -> None:
        for holding in state.ordered_holdings():
            probabilities = self.config.exit_probabilities[holding.stage]
            multiples = self.config.exit_multiples[holding.stage]
            outcomes = [o for o in ExitOutcome if probabilities.get(o, 0.0) > 0]
            if not outcomes:
                continue
            if self.monte_carlo:
                chosen = self._pick([probabilities[o] for o in outcomes], allow_none=False)
                resolved = [(outcomes[chosen], 1.0)]
            else:
                resolved = [(o, probabilities[o]) for o in outcomes]

            weight0, cost0, mark0 = holding.weight, holding.cost, holding.mark
            for outcome, fraction in resolved:
                cost = cost0 * fraction
                state.exit_events.append(
                    ExitEvent(
                        company_id=state.id,
                        quarter=quarter,
                        stage=holding.stage,
                        outcome=outcome,
                        weight=weight0 * fraction,
                        cost_basis=cost,
                        proceeds=cost * multiples[outcome],
                    )
                )
            resolved_fraction = sum(f for _, f in resolved)
            if resolved_fraction >= 1.0 - _WEIGHT_EPSILON:
                holding.weight = holding.cost = holding.mark = 0.0
            else:
                holding.weight -= weight0 * resolved_fraction
                holding.cost -= cost0 * resolved_fraction
                holding.mark -= mark0 * resolved_fraction
        state.prune()

    def _pick(self, probabilities: list[float], allow_none: bool) -> Optional[int]:
        """
        Compare one uniform draw against cumulative thresholds.

        With ``allow_none`` a draw above the cumulative total selects
        nothing (the company stays put); otherwise the last index absorbs
        any rounding shortfall.
        """
        u = float(self._rng.random())
        cumulative = 0.0
        for index, p in enumerate(probabilities):
            cumulative += p
            if u < cumulative:
                return index
        return None if allow_none else len(probabilities) - 1


def simulate_portfolio(
    config: FundConfiguration,
    rng: Optional[RandomSource] = None,
) -> Portfolio:
    """Run the cohort simulator for ``config``."""
    return CohortSimulator(config, rng=rng).run()
