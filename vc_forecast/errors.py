"""
errors.py — Exception taxonomy and validation records.

No imports from within this library.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Optional


# Corrective suggestion per code, shown alongside the originating field.
SUGGESTIONS: dict[str, str] = {
    "INVALID_FUND_SIZE": "Enter a positive fund size",
    "FUND_SIZE_TOO_SMALL": "Consider increasing fund size to at least $10M",
    "FUND_SIZE_TOO_LARGE": "Reduce fund size to $10B or less",
    "MISSING_STAGE_STRATEGIES": "Add at least one stage strategy",
    "DUPLICATE_STAGE": "Merge strategies that target the same stage",
    "INVALID_ALLOCATION_SUM": "Adjust allocations to sum to exactly 100%",
    "INVALID_ALLOCATION_PCT": "Use an allocation between 0% and 100%",
    "INVALID_CHECK_COUNT": "Use a whole number between 1 and 100 checks per stage",
    "INVALID_CHECK_SIZE": "Use a positive average check size",
    "INVALID_OWNERSHIP": "Target ownership between 0% and 50%",
    "INVALID_RESERVE_RATIO": "Use a reserve ratio between 0 and 3",
    "INVALID_MGMT_FEE": "Typical management fees are 2-2.5%",
    "INVALID_CARRY": "Standard carry is 20%",
    "INVALID_HURDLE": "Typical hurdle rate is 8%",
    "INVALID_GP_COMMIT": "Standard GP commitment is 1-2%",
    "INVALID_CATCH_UP": "Use a catch-up rate between 0% and 100%",
    "MISSING_FEE_SCHEDULE": "Provide a per-quarter fee basis schedule or switch basis",
    "EXCESSIVE_GRADUATION": "Reduce graduation rates so they sum to 100% or less",
    "INVALID_GRADUATION_RATE": "Graduation rates cannot be negative",
    "MISSING_EXIT_PROBABILITIES": "Provide an exit distribution for every reachable stage",
    "INVALID_EXIT_PROBABILITIES": "Exit probabilities for a stage must sum to 100%",
    "MISSING_EXIT_MULTIPLES": "Provide exit multiples for every reachable stage",
    "INVALID_EXIT_MULTIPLE": "Multiples must be non-negative and the fail multiple must be 0",
    "INVALID_TIMELINE": "Use a positive whole number of quarters that fits inside the fund life",
    "EXCESSIVE_FUND_LIFE": "Consider reducing fund life to 10-12 years",
    "MISSING_RANDOM_SEED": "Set assumptions.random_seed for reproducible Monte Carlo runs",
    "INVALID_SOLVER_SETTINGS": "Use whole-number quarter and iteration settings and a positive tolerance",
    "AGGRESSIVE_RETURNS": "Revisit the high end of the target return band",
    "LOW_DIVERSIFICATION": "Spread capital across at least two stages",
    "HIGH_CONCENTRATION": "Keep any single stage at or below 60% of the fund",
    "ZERO_OWNERSHIP": "Set a target ownership so unrealized holdings carry NAV",
    "DEPLOYMENT_EXCEEDS_ALLOCATION": "Reduce check count, check size or reserves for this stage",
}


def suggestion_for(code: str) -> Optional[str]:
    return SUGGESTIONS.get(code)


@dataclass(frozen=True)
class ValidationError:
    """A blocking configuration problem."""

    field: str
    message: str
    code: str
    value: Any = None
    suggestion: Optional[str] = None

    def __str__(self) -> str:
        text = f"{self.field}: {self.message}"
        if self.suggestion:
            text += f" ({self.suggestion})"
        return text


@dataclass(frozen=True)
class ValidationWarning:
    """A non-blocking configuration concern."""

    field: str
    message: str
    code: str
    impact: Literal["high", "medium", "low"] = "medium"
    value: Any = None
    suggestion: Optional[str] = None

    def __str__(self) -> str:
        text = f"{self.field}: {self.message}"
        if self.suggestion:
            text += f" ({self.suggestion})"
        return text


class FundModelError(Exception):
    """Base class for every error raised by the forecasting engine."""

    code = "FUND_MODEL_ERROR"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationFailure(FundModelError):
    """Configuration failed validation; the simulation was not run."""

    code = "VALIDATION_ERROR"

    def __init__(self, errors: list[ValidationError]) -> None:
        self.errors = list(errors)
        lines = "; ".join(str(e) for e in self.errors)
        super().__init__(
            f"Configuration has {len(self.errors)} blocking error(s): {lines}",
            {"errors": self.errors},
        )


class CalculationFailure(FundModelError):
    """Numeric impossibility or broken invariant during a forecast."""

    code = "CALCULATION_ERROR"


class ScenarioFailure(FundModelError):
    """A single scenario in a batch could not be evaluated."""

    code = "SCENARIO_ERROR"

    def __init__(self, scenario_id: str, cause: BaseException) -> None:
        super().__init__(
            f"Scenario {scenario_id!r} failed: {cause}",
            {"scenario_id": scenario_id, "cause": type(cause).__name__},
        )
        self.scenario_id = scenario_id
