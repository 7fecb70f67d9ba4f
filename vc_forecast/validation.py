"""
validation.py — Gate run before any simulation.

Depends only on: config.py, errors.py

Every rule is independent: a configuration with several problems reports
all of them at once. ``validate`` never raises for a bad configuration; it
is ``forecast`` that refuses to run while errors exist.
"""
from __future__ import annotations

import math
from collections import Counter
from dataclasses import dataclass, field
from numbers import Integral, Real
from typing import Any, Literal

from vc_forecast.config import (
    ExitOutcome,
    FeeBasis,
    FeeProfile,
    FundConfiguration,
    StageStrategy,
)
from vc_forecast.errors import ValidationError, ValidationWarning, suggestion_for


MIN_FUND_SIZE = 10_000_000
MAX_FUND_SIZE = 10_000_000_000
ALLOCATION_TOLERANCE = 0.001
PROBABILITY_TOLERANCE = 1e-6
MAX_FUND_LIFE_QUARTERS = 60


def _finite(value: Any) -> bool:
    # NaN fails every comparison, so range checks alone let it through.
    return isinstance(value, Real) and math.isfinite(value)


def _whole(value: Any) -> bool:
    return isinstance(value, Integral) and not isinstance(value, bool)


@dataclass
class ValidationReport:
    errors: list[ValidationError] = field(default_factory=list)
    warnings: list[ValidationWarning] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def error_codes(self) -> list[str]:
        return [e.code for e in self.errors]

    @property
    def warning_codes(self) -> list[str]:
        return [w.code for w in self.warnings]

    def error(self, field_name: str, message: str, code: str, value: Any = None) -> None:
        self.errors.append(
            ValidationError(
                field=field_name,
                message=message,
                code=code,
                value=value,
                suggestion=suggestion_for(code),
            )
        )

    def warn(
        self,
        field_name: str,
        message: str,
        code: str,
        impact: Literal["high", "medium", "low"] = "medium",
        value: Any = None,
    ) -> None:
        self.warnings.append(
            ValidationWarning(
                field=field_name,
                message=message,
                code=code,
                impact=impact,
                value=value,
                suggestion=suggestion_for(code),
            )
        )


def validate(config: FundConfiguration) -> ValidationReport:
    """
    Check a configuration against every documented rule.

    Parameters
    ----------
    config:
        The fund configuration to check. Not modified.

    Returns
    -------
    ValidationReport
        ``errors`` block simulation, ``warnings`` do not.
    """
    report = ValidationReport()
    _check_fund_size(config, report)
    _check_strategies(config, report)
    _check_fees(config.fee_profile, report)
    _check_graduation(config, report)
    _check_exit_tables(config, report)
    _check_timeline(config, report)
    _check_assumptions(config, report)
    return report


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

def _check_fund_size(config: FundConfiguration, report: ValidationReport) -> None:
    size = config.fund_size
    if not _finite(size) or size <= 0:
        report.error("fundSize", "Fund size must be positive", "INVALID_FUND_SIZE", size)
    elif size < MIN_FUND_SIZE:
        report.warn(
            "fundSize",
            "Fund size should be at least $10M for institutional viability",
            "FUND_SIZE_TOO_SMALL",
            impact="medium",
            value=size,
        )
    elif size > MAX_FUND_SIZE:
        report.error("fundSize", "Fund size exceeds $10B maximum", "FUND_SIZE_TOO_LARGE", size)


def _check_strategies(config: FundConfiguration, report: ValidationReport) -> None:
    strategies = config.stage_strategies
    if not strategies:
        report.error(
            "stageStrategies",
            "At least one stage strategy is required",
            "MISSING_STAGE_STRATEGIES",
        )
        return

    total = sum(s.allocation_pct for s in strategies)
    if not math.isfinite(total) or abs(total - 1.0) > ALLOCATION_TOLERANCE:
        report.error(
            "stageStrategies",
            f"Stage allocations must sum to 100% (currently {total * 100:.1f}%)",
            "INVALID_ALLOCATION_SUM",
            total,
        )

    for stage, count in Counter(s.stage for s in strategies).items():
        if count > 1:
            report.error(
                "stageStrategies",
                f"{stage.value} appears in {count} strategies",
                "DUPLICATE_STAGE",
                stage.value,
            )

    for index, strategy in enumerate(strategies):
        _check_strategy(strategy, index, config, report)

    if len(strategies) < 2:
        report.warn(
            "stageStrategies",
            "Limited stage diversification may increase risk",
            "LOW_DIVERSIFICATION",
            impact="high",
        )
    largest = max(s.allocation_pct for s in strategies)
    if largest > 0.6:
        report.warn(
            "stageStrategies",
            f"High concentration in single stage ({largest * 100:.0f}%)",
            "HIGH_CONCENTRATION",
            impact="medium",
            value=largest,
        )


def _check_strategy(
    strategy: StageStrategy,
    index: int,
    config: FundConfiguration,
    report: ValidationReport,
) -> None:
    prefix = f"stageStrategies[{index}]"

    if not 0 <= strategy.allocation_pct <= 1:
        report.error(
            f"{prefix}.allocationPct",
            "Allocation percentage must be between 0% and 100%",
            "INVALID_ALLOCATION_PCT",
            strategy.allocation_pct,
        )
    if not _whole(strategy.check_count) or not 1 <= strategy.check_count <= 100:
        report.error(
            f"{prefix}.checkCount",
            "Check count must be between 1 and 100",
            "INVALID_CHECK_COUNT",
            strategy.check_count,
        )
    if not _finite(strategy.avg_initial_check) or strategy.avg_initial_check <= 0:
        report.error(
            f"{prefix}.avgInitialCheck",
            "Average initial check must be positive",
            "INVALID_CHECK_SIZE",
            strategy.avg_initial_check,
        )
    if not 0 <= strategy.ownership <= 0.5:
        report.error(
            f"{prefix}.ownership",
            "Ownership target must be between 0% and 50%",
            "INVALID_OWNERSHIP",
            strategy.ownership,
        )
    elif strategy.ownership == 0:
        report.warn(
            f"{prefix}.ownership",
            f"Zero ownership target for {strategy.stage.value}",
            "ZERO_OWNERSHIP",
            impact="low",
        )
    if not 0 <= strategy.reserve_ratio <= 3:
        report.error(
            f"{prefix}.reserveRatio",
            "Reserve ratio must be between 0 and 3",
            "INVALID_RESERVE_RATIO",
            strategy.reserve_ratio,
        )

    if strategy.target_returns.high > 50:
        report.warn(
            f"{prefix}.targetReturns.high",
            f"Very high target return ({strategy.target_returns.high}x) for {strategy.stage.value}",
            "AGGRESSIVE_RETURNS",
            impact="medium",
            value=strategy.target_returns.high,
        )

    planned = strategy.initial_capital + strategy.planned_reserves
    budget = config.fund_size * strategy.allocation_pct
    if budget > 0 and planned > budget * (1 + ALLOCATION_TOLERANCE):
        report.warn(
            prefix,
            f"Planned deployment ${planned:,.0f} exceeds the ${budget:,.0f} allocated to "
            f"{strategy.stage.value}",
            "DEPLOYMENT_EXCEEDS_ALLOCATION",
            impact="medium",
            value=planned,
        )


def _check_fees(fees: FeeProfile, report: ValidationReport) -> None:
    if not 0 <= fees.management_fee_rate <= 0.05:
        report.error(
            "feeProfile.managementFeeRate",
            "Management fee should be between 0% and 5%",
            "INVALID_MGMT_FEE",
            fees.management_fee_rate,
        )
    if not 0 <= fees.carry_rate <= 0.30:
        report.error(
            "feeProfile.carryRate",
            "Carry should be between 0% and 30%",
            "INVALID_CARRY",
            fees.carry_rate,
        )
    if not 0 <= fees.hurdle_rate <= 0.15:
        report.error(
            "feeProfile.hurdleRate",
            "Hurdle rate should be between 0% and 15%",
            "INVALID_HURDLE",
            fees.hurdle_rate,
        )
    if not 0 <= fees.gp_commitment <= 0.10:
        report.error(
            "feeProfile.gpCommitment",
            "GP commitment should be between 0% and 10%",
            "INVALID_GP_COMMIT",
            fees.gp_commitment,
        )
    if fees.catch_up and not 0 <= fees.catch_up_rate <= 1:
        report.error(
            "feeProfile.catchUpRate",
            "Catch-up rate should be between 0% and 100%",
            "INVALID_CATCH_UP",
            fees.catch_up_rate,
        )
    if fees.management_fee_basis is FeeBasis.CUSTOM and not fees.custom_fee_schedule:
        report.error(
            "feeProfile.customFeeSchedule",
            "Custom fee basis requires a fee schedule",
            "MISSING_FEE_SCHEDULE",
        )


def _check_graduation(config: FundConfiguration, report: ValidationReport) -> None:
    for src, row in config.graduation_matrix.items():
        if any(not _finite(p) or p < 0 for p in row.values()):
            report.error(
                f"graduationMatrix.{src.value}",
                f"Graduation rates from {src.value} must be finite and non-negative",
                "INVALID_GRADUATION_RATE",
                dict(row),
            )
            continue
        total = sum(row.values())
        if total > 1.0:
            report.error(
                f"graduationMatrix.{src.value}",
                f"Graduation rates from {src.value} exceed 100% ({total * 100:.1f}%)",
                "EXCESSIVE_GRADUATION",
                total,
            )


def _check_exit_tables(config: FundConfiguration, report: ValidationReport) -> None:
    for stage in sorted(config.reachable_stages(), key=lambda s: s.order):
        probabilities = config.exit_probabilities.get(stage)
        if probabilities is None:
            report.error(
                f"exitProbabilities.{stage.value}",
                f"No exit probabilities for {stage.value}",
                "MISSING_EXIT_PROBABILITIES",
            )
        else:
            total = sum(probabilities.get(o, 0.0) for o in ExitOutcome)
            if (
                any(not _finite(p) or p < 0 for p in probabilities.values())
                or abs(total - 1.0) > PROBABILITY_TOLERANCE
            ):
                report.error(
                    f"exitProbabilities.{stage.value}",
                    f"Exit probabilities for {stage.value} must sum to 100% "
                    f"(currently {total * 100:.1f}%)",
                    "INVALID_EXIT_PROBABILITIES",
                    total,
                )

        multiples = config.exit_multiples.get(stage)
        if multiples is None or any(o not in multiples for o in ExitOutcome):
            report.error(
                f"exitMultiples.{stage.value}",
                f"Exit multiples for {stage.value} must cover every outcome",
                "MISSING_EXIT_MULTIPLES",
            )
        elif multiples[ExitOutcome.FAIL] != 0 or any(
            not _finite(m) or m < 0 for m in multiples.values()
        ):
            report.error(
                f"exitMultiples.{stage.value}",
                f"Invalid exit multiples for {stage.value}",
                "INVALID_EXIT_MULTIPLE",
                {o.value: m for o, m in multiples.items()},
            )


def _check_timeline(config: FundConfiguration, report: ValidationReport) -> None:
    period = config.investment_period_quarters
    life = config.fund_life_quarters
    if not (_whole(period) and _whole(life)):
        report.error(
            "investmentPeriodQuarters",
            "Investment period and fund life must be whole numbers of quarters",
            "INVALID_TIMELINE",
            (period, life),
        )
        return
    if period <= 0 or life <= 0:
        report.error(
            "investmentPeriodQuarters",
            "Investment period and fund life must be positive",
            "INVALID_TIMELINE",
            (period, life),
        )
    elif period > life:
        report.error(
            "investmentPeriodQuarters",
            "Investment period cannot exceed fund life",
            "INVALID_TIMELINE",
            period,
        )
    if life > MAX_FUND_LIFE_QUARTERS:
        report.warn(
            "fundLifeQuarters",
            "Fund life exceeds typical 15-year maximum",
            "EXCESSIVE_FUND_LIFE",
            impact="low",
            value=life,
        )


def _check_assumptions(config: FundConfiguration, report: ValidationReport) -> None:
    assumptions = config.assumptions
    if assumptions.is_monte_carlo and assumptions.random_seed is None:
        report.error(
            "assumptions.randomSeed",
            "Monte Carlo methodology requires a random seed",
            "MISSING_RANDOM_SEED",
        )
    counts = (
        assumptions.ir_max_iterations,
        assumptions.evaluation_interval_quarters,
    )
    if (
        not all(_whole(n) and n > 0 for n in counts)
        or not _whole(assumptions.exit_min_hold_quarters)
        or assumptions.exit_min_hold_quarters < 0
        or not _finite(assumptions.ir_tolerance)
        or assumptions.ir_tolerance <= 0
        or not _finite(assumptions.graduation_step_up)
        or assumptions.graduation_step_up <= 0
    ):
        report.error(
            "assumptions",
            "Solver iterations, evaluation interval and minimum hold must be whole "
            "numbers, and tolerance and graduation step-up positive",
            "INVALID_SOLVER_SETTINGS",
            (
                assumptions.ir_max_iterations,
                assumptions.ir_tolerance,
                assumptions.evaluation_interval_quarters,
                assumptions.exit_min_hold_quarters,
                assumptions.graduation_step_up,
            ),
        )
