"""
config.py — Immutable input records for a fund forecast.

No imports from within this library. Every stage-keyed mapping is coerced
to enum keys when the record is built, so an unknown stage name fails here
rather than halfway through a simulation.
"""
from __future__ import annotations

import copy
import re
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Mapping, Optional


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class Stage(str, Enum):
    """Closed, ordered set of financing stages."""

    PRE_SEED = "Pre-Seed"
    SEED = "Seed"
    SERIES_A = "Series A"
    SERIES_B = "Series B"
    SERIES_C = "Series C"
    SERIES_D_PLUS = "Series D+"

    @property
    def order(self) -> int:
        return _STAGE_ORDER[self]

    @classmethod
    def parse(cls, value: "Stage | str") -> "Stage":
        """
        Resolve a stage from its enum, display value or member name.

        Accepts "Series A", "SERIES_A" and "series_a". Raises ValueError
        for anything outside the closed stage set.
        """
        if isinstance(value, cls):
            return value
        text = str(value).strip()
        for stage in cls:
            if text == stage.value or text.upper() == stage.name:
                return stage
        raise ValueError(f"Unknown stage {value!r}")


_STAGE_ORDER: dict[Stage, int] = {stage: i for i, stage in enumerate(Stage)}


class ExitOutcome(str, Enum):
    FAIL = "fail"
    LOW = "low"
    MED = "med"
    HIGH = "high"
    MEGA = "mega"

    @classmethod
    def parse(cls, value: "ExitOutcome | str") -> "ExitOutcome":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown exit outcome {value!r}") from None


class WaterfallType(str, Enum):
    AMERICAN = "american"
    EUROPEAN = "european"


class FeeBasis(str, Enum):
    COMMITTED = "committed"
    INVESTED = "invested"
    CUSTOM = "custom"


class Methodology(str, Enum):
    DETERMINISTIC = "deterministic"
    MONTE_CARLO = "monte-carlo"

    @classmethod
    def parse(cls, value: "Methodology | str") -> "Methodology":
        if isinstance(value, cls):
            return value
        return cls(str(value).strip().lower().replace("_", "-"))


GraduationMatrix = dict[Stage, dict[Stage, float]]
OutcomeTable = dict[Stage, dict[ExitOutcome, float]]


# ---------------------------------------------------------------------------
# Reference tables
# ---------------------------------------------------------------------------

DEFAULT_GRADUATION_MATRIX: GraduationMatrix = {
    Stage.PRE_SEED: {Stage.SEED: 0.65},
    Stage.SEED: {Stage.SERIES_A: 0.60},
    Stage.SERIES_A: {Stage.SERIES_B: 0.55},
    Stage.SERIES_B: {Stage.SERIES_C: 0.50},
    Stage.SERIES_C: {Stage.SERIES_D_PLUS: 0.45},
}


def _outcomes(fail: float, low: float, med: float, high: float, mega: float) -> dict[ExitOutcome, float]:
    return {
        ExitOutcome.FAIL: fail,
        ExitOutcome.LOW: low,
        ExitOutcome.MED: med,
        ExitOutcome.HIGH: high,
        ExitOutcome.MEGA: mega,
    }


DEFAULT_EXIT_PROBABILITIES: OutcomeTable = {
    Stage.PRE_SEED: _outcomes(0.90, 0.06, 0.02, 0.01, 0.01),
    Stage.SEED: _outcomes(0.80, 0.10, 0.05, 0.03, 0.02),
    Stage.SERIES_A: _outcomes(0.65, 0.15, 0.10, 0.07, 0.03),
    Stage.SERIES_B: _outcomes(0.50, 0.20, 0.15, 0.10, 0.05),
    Stage.SERIES_C: _outcomes(0.35, 0.25, 0.20, 0.15, 0.05),
    Stage.SERIES_D_PLUS: _outcomes(0.10, 0.20, 0.30, 0.25, 0.15),
}

DEFAULT_EXIT_MULTIPLES: OutcomeTable = {
    Stage.PRE_SEED: _outcomes(0.0, 3.0, 10.0, 50.0, 100.0),
    Stage.SEED: _outcomes(0.0, 2.5, 8.0, 30.0, 75.0),
    Stage.SERIES_A: _outcomes(0.0, 2.0, 5.0, 15.0, 50.0),
    Stage.SERIES_B: _outcomes(0.0, 1.5, 3.0, 10.0, 30.0),
    Stage.SERIES_C: _outcomes(0.0, 1.25, 2.5, 7.0, 20.0),
    Stage.SERIES_D_PLUS: _outcomes(0.0, 1.0, 2.0, 5.0, 15.0),
}


def whole_number(value: Any) -> Any:
    """Turn integral floats (``8.0``) into ints; anything else is left for validation."""
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def graduation_matrix(mapping: Mapping[Any, Mapping[Any, float]]) -> GraduationMatrix:
    """Coerce a nested mapping into an enum-keyed graduation matrix."""
    return {
        Stage.parse(src): {Stage.parse(dst): float(p) for dst, p in row.items()}
        for src, row in mapping.items()
    }


def outcome_table(mapping: Mapping[Any, Mapping[Any, float]]) -> OutcomeTable:
    """Coerce a nested mapping into an enum-keyed stage × outcome table."""
    return {
        Stage.parse(stage): {ExitOutcome.parse(o): float(v) for o, v in row.items()}
        for stage, row in mapping.items()
    }


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TargetReturns:
    """Target gross multiple band for a stage."""

    low: float = 2.0
    target: float = 5.0
    high: float = 15.0


@dataclass(frozen=True)
class StageStrategy:
    """Deployment plan for one stage of the portfolio."""

    stage: Stage
    allocation_pct: float
    check_count: int
    avg_initial_check: float
    ownership: float = 0.10
    reserve_ratio: float = 0.0
    target_returns: TargetReturns = field(default_factory=TargetReturns)

    def __post_init__(self) -> None:
        object.__setattr__(self, "stage", Stage.parse(self.stage))
        object.__setattr__(self, "check_count", whole_number(self.check_count))
        if isinstance(self.target_returns, Mapping):
            object.__setattr__(self, "target_returns", TargetReturns(**self.target_returns))

    @property
    def initial_capital(self) -> float:
        return self.check_count * self.avg_initial_check

    @property
    def follow_on_check(self) -> float:
        return self.avg_initial_check * self.reserve_ratio

    @property
    def planned_reserves(self) -> float:
        return self.check_count * self.follow_on_check


@dataclass(frozen=True)
class FeeProfile:
    """Management fee, expense and carried-interest terms."""

    management_fee_rate: float = 0.02
    management_fee_basis: FeeBasis = FeeBasis.COMMITTED
    custom_fee_schedule: tuple[float, ...] = ()  # per-quarter basis amounts
    fee_step_down_rate: float = 0.0  # annual, after the investment period
    carry_rate: float = 0.20
    hurdle_rate: float = 0.08
    catch_up: bool = True
    catch_up_rate: float = 1.0
    gp_commitment: float = 0.02
    organizational_expenses: float = 0.0
    fund_expenses: float = 0.0  # annual
    annual_expenses_cap: Optional[float] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "management_fee_basis", FeeBasis(self.management_fee_basis))
        object.__setattr__(
            self, "custom_fee_schedule", tuple(float(v) for v in self.custom_fee_schedule)
        )


@dataclass(frozen=True)
class ModelAssumptions:
    """Calculation knobs that are not part of the fund's legal terms."""

    methodology: Methodology = Methodology.DETERMINISTIC
    random_seed: Optional[int] = None
    ir_max_iterations: int = 100
    ir_tolerance: float = 1e-6
    evaluation_interval_quarters: int = 4
    exit_min_hold_quarters: int = 0
    graduation_step_up: float = 2.0
    default_follow_on_reserve_ratio: float = 0.5
    version: str = "1.0.0"

    def __post_init__(self) -> None:
        object.__setattr__(self, "methodology", Methodology.parse(self.methodology))
        for name in ("ir_max_iterations", "evaluation_interval_quarters", "exit_min_hold_quarters"):
            object.__setattr__(self, name, whole_number(getattr(self, name)))

    @property
    def is_monte_carlo(self) -> bool:
        return self.methodology is Methodology.MONTE_CARLO


@dataclass(frozen=True)
class FundConfiguration:
    """
    Complete, immutable description of a fund to forecast.

    The engine treats this record as read-only. Scenario overrides build
    new instances with ``dataclasses.replace``.
    """

    fund_name: str
    fund_size: float
    stage_strategies: tuple[StageStrategy, ...]
    vintage: int = 2024
    currency: str = "USD"
    fee_profile: FeeProfile = field(default_factory=FeeProfile)
    graduation_matrix: GraduationMatrix = field(
        default_factory=lambda: copy.deepcopy(DEFAULT_GRADUATION_MATRIX)
    )
    exit_probabilities: OutcomeTable = field(
        default_factory=lambda: copy.deepcopy(DEFAULT_EXIT_PROBABILITIES)
    )
    exit_multiples: OutcomeTable = field(
        default_factory=lambda: copy.deepcopy(DEFAULT_EXIT_MULTIPLES)
    )
    investment_period_quarters: int = 20
    fund_life_quarters: int = 40
    waterfall_type: WaterfallType = WaterfallType.AMERICAN
    lp_clawback: bool = True
    assumptions: ModelAssumptions = field(default_factory=ModelAssumptions)

    def __post_init__(self) -> None:
        strategies = tuple(
            s if isinstance(s, StageStrategy) else StageStrategy(**_snake_keys(s))
            for s in self.stage_strategies
        )
        object.__setattr__(self, "stage_strategies", strategies)
        object.__setattr__(self, "graduation_matrix", graduation_matrix(self.graduation_matrix))
        object.__setattr__(self, "exit_probabilities", outcome_table(self.exit_probabilities))
        object.__setattr__(self, "exit_multiples", outcome_table(self.exit_multiples))
        for name in ("investment_period_quarters", "fund_life_quarters"):
            object.__setattr__(self, name, whole_number(getattr(self, name)))
        object.__setattr__(self, "waterfall_type", WaterfallType(self.waterfall_type))

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def committed_capital(self) -> float:
        return self.fund_size

    @property
    def periods_per_year(self) -> int:
        return 4

    @property
    def stages(self) -> tuple[Stage, ...]:
        return tuple(s.stage for s in self.stage_strategies)

    def strategy_for(self, stage: Stage) -> Optional[StageStrategy]:
        stage = Stage.parse(stage)
        for strategy in self.stage_strategies:
            if strategy.stage is stage:
                return strategy
        return None

    def reachable_stages(self) -> set[Stage]:
        """Stages a company can occupy, starting from any strategy's stage."""
        reached = set(self.stages)
        frontier = list(reached)
        while frontier:
            stage = frontier.pop()
            for dst in self.graduation_matrix.get(stage, {}):
                if dst not in reached:
                    reached.add(dst)
                    frontier.append(dst)
        return reached

    # ------------------------------------------------------------------
    # Construction from plain mappings
    # ------------------------------------------------------------------

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FundConfiguration":
        """
        Build a configuration from a plain mapping.

        Keys may be camelCase ("fundSize") or snake_case ("fund_size").
        ``exitProbabilityMatrix`` is accepted as an alias of
        ``exit_probabilities``. Unknown keys raise TypeError.
        """
        kwargs = _snake_keys(data)
        if "exit_probability_matrix" in kwargs:
            kwargs["exit_probabilities"] = kwargs.pop("exit_probability_matrix")
        if "fee_profile" in kwargs and isinstance(kwargs["fee_profile"], Mapping):
            kwargs["fee_profile"] = FeeProfile(**_snake_keys(kwargs["fee_profile"]))
        if "assumptions" in kwargs and isinstance(kwargs["assumptions"], Mapping):
            kwargs["assumptions"] = ModelAssumptions(**_snake_keys(kwargs["assumptions"]))
        kwargs["stage_strategies"] = tuple(kwargs.get("stage_strategies", ()))
        return cls(**kwargs)

    def to_dict(self) -> dict[str, Any]:
        """Plain snake_case mapping with enum values as strings."""
        return _plain(self)


def _snake(key: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", key).lower()


def _snake_keys(data: Mapping[str, Any]) -> dict[str, Any]:
    return {_snake(k): v for k, v in data.items()}


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if hasattr(value, "__dataclass_fields__"):
        return {f.name: _plain(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, Mapping):
        return {_plain(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


def default_configuration(**overrides: Any) -> FundConfiguration:
    """
    Reference $100M three-stage fund.

    Pre-Seed 15% / Seed 35% / Series A 50%, 2 and 20 with an 8% hurdle,
    five-year investment period inside a ten-year life.

    The reference assumptions have ``exit_min_hold_quarters=0`` and exit
    rows that sum to 1, so every company graduates once and then fully
    resolves at its first annual evaluation. Holding periods are therefore
    at most four quarters and gross IRRs come out very high. Raise
    ``assumptions.exit_min_hold_quarters`` (e.g. to 20) for a conventional
    five-year hold.
    """
    config = FundConfiguration(
        fund_name="New Fund",
        fund_size=100_000_000,
        stage_strategies=(
            StageStrategy(
                stage=Stage.PRE_SEED,
                allocation_pct=0.15,
                check_count=20,
                avg_initial_check=500_000,
                ownership=0.07,
                reserve_ratio=1.0,
                target_returns=TargetReturns(low=3, target=10, high=50),
            ),
            StageStrategy(
                stage=Stage.SEED,
                allocation_pct=0.35,
                check_count=25,
                avg_initial_check=1_500_000,
                ownership=0.10,
                reserve_ratio=0.8,
                target_returns=TargetReturns(low=2.5, target=8, high=30),
            ),
            StageStrategy(
                stage=Stage.SERIES_A,
                allocation_pct=0.50,
                check_count=15,
                avg_initial_check=3_000_000,
                ownership=0.08,
                reserve_ratio=0.5,
                target_returns=TargetReturns(low=2, target=5, high=15),
            ),
        ),
        fee_profile=FeeProfile(
            management_fee_rate=0.02,
            management_fee_basis=FeeBasis.COMMITTED,
            carry_rate=0.20,
            hurdle_rate=0.08,
            catch_up=True,
            catch_up_rate=1.0,
            gp_commitment=0.02,
            organizational_expenses=500_000,
            fund_expenses=200_000,
            annual_expenses_cap=100_000,
        ),
        investment_period_quarters=20,
        fund_life_quarters=40,
        waterfall_type=WaterfallType.AMERICAN,
        lp_clawback=True,
    )
    if overrides:
        config = replace(config, **overrides)
    return config
