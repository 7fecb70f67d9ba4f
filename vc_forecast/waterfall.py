"""
waterfall.py — Split realized proceeds between LPs and the GP.

Depends only on: config.py, errors.py, metrics.py

Both variants share one tier function: return of capital, preferred
return, GP catch-up, then the residual carry split. American runs the
tiers deal by deal; European runs them on the cumulative whole fund and
records the increment at each realization.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

import numpy as np

from vc_forecast.config import ExitOutcome, FeeProfile, FundConfiguration, Stage, WaterfallType
from vc_forecast.errors import CalculationFailure
from vc_forecast.metrics import compound_growth

# Maximum tolerated drift between proceeds and the LP + GP split.
SPLIT_TOLERANCE = 1e-6

DatedAmounts = Sequence[tuple[int, float]]


@dataclass(frozen=True)
class Realization:
    """One dated exit event as seen by the waterfall."""

    id: str
    company_id: str
    quarter: int
    stage: Stage
    outcome: ExitOutcome
    cost_basis: float
    proceeds: float
    contributions: tuple[tuple[int, float], ...] = ()  # dated capital behind cost_basis


@dataclass(frozen=True)
class TierAllocation:
    lp_capital: float = 0.0
    lp_preferred: float = 0.0
    lp_catch_up: float = 0.0
    lp_profit: float = 0.0
    gp_catch_up: float = 0.0
    gp_carry: float = 0.0

    @property
    def gp_total(self) -> float:
        return self.gp_catch_up + self.gp_carry

    @property
    def lp_total(self) -> float:
        return self.lp_capital + self.lp_preferred + self.lp_catch_up + self.lp_profit


@dataclass(frozen=True)
class WaterfallCalculation:
    deal_id: str
    company_id: str
    quarter: int
    invested: float
    proceeds: float
    preferred_return: float
    lp_capital_return: float
    lp_preferred_return: float
    lp_catch_up: float
    lp_profit_share: float
    lp_total: float
    gp_catch_up: float
    gp_carry: float
    gp_total: float
    hurdle_achieved: bool
    effective_carry_rate: float


@dataclass(frozen=True)
class WaterfallSummary:
    waterfall_type: WaterfallType
    total_invested: float
    total_proceeds: float
    total_profit: float
    lp_capital_returned: float
    lp_preferred_return: float
    lp_catch_up: float
    lp_profit_share: float
    lp_total: float
    gp_management_fees: float
    gp_catch_up: float
    gp_carried_interest: float
    clawback_adjustment: float
    gp_total_compensation: float
    lp_net_multiple: float
    effective_carry_rate: float
    calculations: tuple[WaterfallCalculation, ...] = ()

    def lp_by_quarter(self, n_quarters: int) -> np.ndarray:
        """LP distributions per quarter, before any clawback."""
        out = np.zeros(n_quarters, dtype=np.float64)
        for calc in self.calculations:
            out[calc.quarter] += calc.lp_total
        return out

    def gp_by_quarter(self, n_quarters: int) -> np.ndarray:
        """Carried interest (catch-up included) paid per quarter."""
        out = np.zeros(n_quarters, dtype=np.float64)
        for calc in self.calculations:
            out[calc.quarter] += calc.gp_total
        return out


# ---------------------------------------------------------------------------
# Tier arithmetic
# ---------------------------------------------------------------------------

def preferred_return(contributions: Iterable[tuple[int, float]], quarter: int, hurdle_rate: float) -> float:
    """
    Preferred return owed at ``quarter`` on dated contributions.

    Each contribution compounds at ``hurdle_rate`` (annual, quarterly
    compounding) from its own quarter. Contributions dated after
    ``quarter`` accrue nothing.
    """
    return sum(
        amount * (compound_growth(hurdle_rate, quarter - q) - 1.0)
        for q, amount in contributions
    )


def allocate_proceeds(
    proceeds: float,
    capital: float,
    preferred: float,
    fees: FeeProfile,
) -> TierAllocation:
    """
    Run ``proceeds`` through the distribution tiers.

    Parameters
    ----------
    proceeds:
        Cash available for distribution.
    capital:
        Contributed capital to return first.
    preferred:
        Preferred return owed after capital.
    fees:
        Source of carry, catch-up and catch-up rate.

    Returns
    -------
    TierAllocation
        Tier amounts; ``lp_total + gp_total == proceeds``.
    """
    remaining = max(proceeds, 0.0)
    carry = fees.carry_rate

    lp_capital = min(remaining, max(capital, 0.0))
    remaining -= lp_capital
    lp_preferred = min(remaining, max(preferred, 0.0))
    remaining -= lp_preferred

    gp_catch_up = lp_catch_up = 0.0
    if fees.catch_up and carry > 0 and remaining > 0:
        rate = fees.catch_up_rate
        if rate > carry:
            # Catch-up ends once GP holds ``carry`` of all profit distributed.
            band = min(remaining, carry * lp_preferred / (rate - carry))
        else:
            band = remaining
        gp_catch_up = rate * band
        lp_catch_up = band - gp_catch_up
        remaining -= band

    gp_carry = carry * remaining
    return TierAllocation(
        lp_capital=lp_capital,
        lp_preferred=lp_preferred,
        lp_catch_up=lp_catch_up,
        lp_profit=remaining - gp_carry,
        gp_catch_up=gp_catch_up,
        gp_carry=gp_carry,
    )


def _calculation(
    realization: Realization,
    preferred: float,
    tiers: TierAllocation,
    capital: float,
) -> WaterfallCalculation:
    gp_total = tiers.gp_catch_up + tiers.gp_carry
    lp_total = realization.proceeds - gp_total
    if abs(lp_total - tiers.lp_total) > SPLIT_TOLERANCE * max(1.0, realization.proceeds):
        raise CalculationFailure(
            f"Waterfall split for {realization.id} does not sum to proceeds",
            {"proceeds": realization.proceeds, "lp": tiers.lp_total, "gp": gp_total},
        )
    profit = realization.proceeds - realization.cost_basis
    return WaterfallCalculation(
        deal_id=realization.id,
        company_id=realization.company_id,
        quarter=realization.quarter,
        invested=realization.cost_basis,
        proceeds=realization.proceeds,
        preferred_return=preferred,
        lp_capital_return=tiers.lp_capital,
        lp_preferred_return=tiers.lp_preferred,
        lp_catch_up=tiers.lp_catch_up,
        lp_profit_share=tiers.lp_profit,
        lp_total=lp_total,
        gp_catch_up=tiers.gp_catch_up,
        gp_carry=tiers.gp_carry,
        gp_total=gp_total,
        hurdle_achieved=realization.proceeds >= capital + preferred,
        effective_carry_rate=gp_total / profit if profit > 0 else 0.0,
    )


# ---------------------------------------------------------------------------
# Variants
# ---------------------------------------------------------------------------

def american_waterfall(
    realizations: Sequence[Realization],
    fees: FeeProfile,
) -> list[WaterfallCalculation]:
    """Deal-by-deal: each realization returns only its own capital and hurdle."""
    calculations = []
    for realization in realizations:
        if realization.proceeds <= 0:
            continue
        preferred = preferred_return(realization.contributions, realization.quarter, fees.hurdle_rate)
        tiers = allocate_proceeds(realization.proceeds, realization.cost_basis, preferred, fees)
        calculations.append(_calculation(realization, preferred, tiers, realization.cost_basis))
    return calculations


def european_waterfall(
    realizations: Sequence[Realization],
    contributions: DatedAmounts,
    fees: FeeProfile,
) -> list[WaterfallCalculation]:
    """
    Whole-fund: the cumulative allocation against all capital called to
    date is recomputed at every realization and the increment paid out.

    A GP increment can never be negative; any overpayment that results is
    settled by the clawback.
    """
    calculations = []
    cumulative = 0.0
    paid = TierAllocation()
    for realization in realizations:
        if realization.proceeds <= 0:
            continue
        cumulative += realization.proceeds
        called = [(q, a) for q, a in contributions if q <= realization.quarter]
        capital = sum(a for _, a in called)
        preferred = preferred_return(called, realization.quarter, fees.hurdle_rate)
        target = allocate_proceeds(cumulative, capital, preferred, fees)

        gp_increment = min(max(target.gp_total - paid.gp_total, 0.0), realization.proceeds)
        gp_catch_up = min(gp_increment, max(target.gp_catch_up - paid.gp_catch_up, 0.0))
        gp_carry = gp_increment - gp_catch_up

        lp_left = realization.proceeds - gp_increment
        lp_capital = min(lp_left, max(target.lp_capital - paid.lp_capital, 0.0))
        lp_left -= lp_capital
        lp_preferred = min(lp_left, max(target.lp_preferred - paid.lp_preferred, 0.0))
        lp_left -= lp_preferred
        lp_catch_up = min(lp_left, max(target.lp_catch_up - paid.lp_catch_up, 0.0))
        lp_left -= lp_catch_up

        increment = TierAllocation(
            lp_capital=lp_capital,
            lp_preferred=lp_preferred,
            lp_catch_up=lp_catch_up,
            lp_profit=lp_left,
            gp_catch_up=gp_catch_up,
            gp_carry=gp_carry,
        )
        calculations.append(_calculation(realization, preferred, increment, capital))
        paid = _add(paid, increment)
    return calculations


def _add(a: TierAllocation, b: TierAllocation) -> TierAllocation:
    return TierAllocation(
        lp_capital=a.lp_capital + b.lp_capital,
        lp_preferred=a.lp_preferred + b.lp_preferred,
        lp_catch_up=a.lp_catch_up + b.lp_catch_up,
        lp_profit=a.lp_profit + b.lp_profit,
        gp_catch_up=a.gp_catch_up + b.gp_catch_up,
        gp_carry=a.gp_carry + b.gp_carry,
    )


def whole_fund_entitlement(
    realizations: Sequence[Realization],
    contributions: DatedAmounts,
    fees: FeeProfile,
) -> TierAllocation:
    """Terminal European allocation of every realization at once."""
    total = sum(r.proceeds for r in realizations if r.proceeds > 0)
    if total <= 0:
        return TierAllocation()
    last = max(r.quarter for r in realizations if r.proceeds > 0)
    called = [(q, a) for q, a in contributions if q <= last]
    capital = sum(a for _, a in called)
    preferred = preferred_return(called, last, fees.hurdle_rate)
    return allocate_proceeds(total, capital, preferred, fees)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def run_waterfall(
    config: FundConfiguration,
    realizations: Sequence[Realization],
    contributions: DatedAmounts,
    management_fees: float = 0.0,
) -> WaterfallSummary:
    """
    Distribute every realization under the configured waterfall.

    Parameters
    ----------
    config:
        Source of waterfall type, clawback flag and fee terms.
    realizations:
        Exit events in chronological order.
    contributions:
        Every dated investment of the fund as ``(quarter, amount)``.
    management_fees:
        Total management fees, reported as GP compensation.

    Returns
    -------
    WaterfallSummary
    """
    fees = config.fee_profile
    realizations = sorted(realizations, key=lambda r: r.quarter)
    if config.waterfall_type is WaterfallType.EUROPEAN:
        calculations = european_waterfall(realizations, contributions, fees)
    else:
        calculations = american_waterfall(realizations, fees)

    total_invested = sum(a for _, a in contributions)
    total_proceeds = sum(c.proceeds for c in calculations)
    total_profit = total_proceeds - total_invested
    gp_catch_up = sum(c.gp_catch_up for c in calculations)
    gp_carry = sum(c.gp_carry for c in calculations)

    clawback = 0.0
    if config.lp_clawback and calculations:
        entitlement = whole_fund_entitlement(realizations, contributions, fees)
        clawback = max(0.0, gp_catch_up + gp_carry - entitlement.gp_total)

    lp_total = sum(c.lp_total for c in calculations) + clawback
    paid_in = total_invested + management_fees
    gp_earned = gp_catch_up + gp_carry - clawback
    return WaterfallSummary(
        waterfall_type=config.waterfall_type,
        total_invested=total_invested,
        total_proceeds=total_proceeds,
        total_profit=total_profit,
        lp_capital_returned=sum(c.lp_capital_return for c in calculations),
        lp_preferred_return=sum(c.lp_preferred_return for c in calculations),
        lp_catch_up=sum(c.lp_catch_up for c in calculations),
        lp_profit_share=sum(c.lp_profit_share for c in calculations) + clawback,
        lp_total=lp_total,
        gp_management_fees=management_fees,
        gp_catch_up=gp_catch_up,
        gp_carried_interest=gp_carry,
        clawback_adjustment=clawback,
        gp_total_compensation=management_fees + gp_earned,
        lp_net_multiple=lp_total / paid_in if paid_in > 0 else 0.0,
        effective_carry_rate=gp_earned / total_profit if total_profit > 0 else 0.0,
        calculations=tuple(calculations),
    )
