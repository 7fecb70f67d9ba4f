"""
scenarios.py — Batch runner for parameter-override scenarios.

Depends on: config.py, errors.py, forecast.py

Each scenario is an isolated forecast of the baseline configuration with
overrides applied. Small batches run in-process; larger ones fan out to a
process pool. A failing scenario never stops the batch.
"""
from __future__ import annotations

import copy
import logging
import os
import time
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass, field, fields, replace
from typing import Any, Callable, Iterator, Literal, Mapping, Optional

import pandas as pd

from vc_forecast.config import (
    ExitOutcome,
    FeeProfile,
    FundConfiguration,
    OutcomeTable,
    Stage,
    outcome_table,
)
from vc_forecast.errors import ScenarioFailure
from vc_forecast.forecast import ForecastResult, forecast, is_placeholder, placeholder_forecast

logger = logging.getLogger(__name__)

# Batches at or below this size run sequentially.
SEQUENTIAL_THRESHOLD = 5

# Full acceleration (1.0) shortens these periods by the given fraction.
DEPLOYMENT_ACCELERATION_FACTOR = 0.2
EXIT_ACCELERATION_FACTOR = 0.5

ScenarioCategory = Literal["base", "upside", "downside", "stress", "custom"]
ProgressCallback = Callable[[float], None]


# ---------------------------------------------------------------------------
# Scenario definitions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TimingAdjustments:
    deployment_acceleration: float = 0.0  # in [-1, 1]
    exit_acceleration: float = 0.0  # in [-1, 1]

    def __post_init__(self) -> None:
        for f in fields(self):
            value = getattr(self, f.name)
            if not -1.0 <= value <= 1.0:
                raise ValueError(f"{f.name} must be within [-1, 1], got {value}")


@dataclass(frozen=True)
class ParameterOverrides:
    """
    Changes applied on top of the baseline configuration.

    ``exit_multiples`` may be partial: only the listed stage/outcome cells
    change. ``fee_adjustments`` maps FeeProfile field names to new values.
    """

    fund_size: Optional[float] = None
    stage_allocations: Optional[Mapping[Stage, float]] = None
    exit_probabilities: Optional[OutcomeTable] = None
    exit_multiples: Optional[OutcomeTable] = None
    fee_adjustments: Optional[Mapping[str, Any]] = None
    timing: TimingAdjustments = field(default_factory=TimingAdjustments)

    def __post_init__(self) -> None:
        if self.stage_allocations is not None:
            object.__setattr__(
                self,
                "stage_allocations",
                {Stage.parse(k): float(v) for k, v in self.stage_allocations.items()},
            )
        if self.exit_probabilities is not None:
            object.__setattr__(self, "exit_probabilities", outcome_table(self.exit_probabilities))
        if self.exit_multiples is not None:
            object.__setattr__(self, "exit_multiples", outcome_table(self.exit_multiples))
        if isinstance(self.timing, Mapping):
            object.__setattr__(self, "timing", TimingAdjustments(**self.timing))


@dataclass(frozen=True)
class ScenarioDefinition:
    id: str
    name: str
    description: str = ""
    category: ScenarioCategory = "custom"
    overrides: ParameterOverrides = field(default_factory=ParameterOverrides)
    weight: float = 1.0
    is_baseline: bool = False


def apply_overrides(config: FundConfiguration, overrides: ParameterOverrides) -> FundConfiguration:
    """
    Return a new configuration with ``overrides`` applied.

    The input is deep-copied first and never modified.

    Raises
    ------
    ValueError
        An override names a stage with no strategy, or an unknown fee field.
    """
    config = copy.deepcopy(config)
    changes: dict[str, Any] = {}

    if overrides.fund_size is not None:
        changes["fund_size"] = overrides.fund_size

    if overrides.stage_allocations:
        unknown = set(overrides.stage_allocations) - set(config.stages)
        if unknown:
            names = ", ".join(sorted(s.value for s in unknown))
            raise ValueError(f"No stage strategy for allocation override: {names}")
        changes["stage_strategies"] = tuple(
            replace(s, allocation_pct=overrides.stage_allocations[s.stage])
            if s.stage in overrides.stage_allocations
            else s
            for s in config.stage_strategies
        )

    if overrides.exit_probabilities:
        merged = dict(config.exit_probabilities)
        merged.update(copy.deepcopy(overrides.exit_probabilities))
        changes["exit_probabilities"] = merged

    if overrides.exit_multiples:
        merged = {stage: dict(row) for stage, row in config.exit_multiples.items()}
        for stage, row in overrides.exit_multiples.items():
            merged.setdefault(stage, {}).update(row)
        changes["exit_multiples"] = merged

    if overrides.fee_adjustments:
        known = {f.name for f in fields(FeeProfile)}
        unknown = set(overrides.fee_adjustments) - known
        if unknown:
            raise ValueError(f"Unknown fee fields: {', '.join(sorted(unknown))}")
        changes["fee_profile"] = replace(config.fee_profile, **overrides.fee_adjustments)

    timing = overrides.timing
    if timing.deployment_acceleration:
        period = config.investment_period_quarters
        changes["investment_period_quarters"] = max(
            1, round(period * (1 - timing.deployment_acceleration * DEPLOYMENT_ACCELERATION_FACTOR))
        )
    if timing.exit_acceleration:
        interval = config.assumptions.evaluation_interval_quarters
        changes["assumptions"] = replace(
            config.assumptions,
            evaluation_interval_quarters=max(
                1, round(interval * (1 - timing.exit_acceleration * EXIT_ACCELERATION_FACTOR))
            ),
        )

    return replace(config, **changes) if changes else config


def standard_scenarios(config: FundConfiguration) -> list[ScenarioDefinition]:
    """
    Base, bull and bear scenarios for ``config``.

    Bear compresses every positive exit multiple to 65% and slows exits;
    bull expands them to 150% and speeds exits up.
    """

    def scaled(factor: float) -> OutcomeTable:
        return {
            stage: {o: m * factor for o, m in row.items() if o is not ExitOutcome.FAIL}
            for stage, row in config.exit_multiples.items()
        }

    return [
        ScenarioDefinition(
            id="base",
            name="Base",
            description="Historical median VC market conditions",
            category="base",
            weight=0.5,
            is_baseline=True,
        ),
        ScenarioDefinition(
            id="bear",
            name="Bear",
            description="Prolonged downturn: compressed multiples, delayed exits",
            category="downside",
            overrides=ParameterOverrides(
                exit_multiples=scaled(0.65),
                timing=TimingAdjustments(exit_acceleration=-0.5),
            ),
            weight=0.25,
        ),
        ScenarioDefinition(
            id="bull",
            name="Bull",
            description="Favorable exit environment: expanded multiples, faster exits",
            category="upside",
            overrides=ParameterOverrides(
                exit_multiples=scaled(1.5),
                timing=TimingAdjustments(exit_acceleration=0.5),
            ),
            weight=0.25,
        ),
    ]


# ---------------------------------------------------------------------------
# Worker (module-level for ProcessPoolExecutor compatibility)
# ---------------------------------------------------------------------------

def _run_single_scenario(
    args: tuple[FundConfiguration, ScenarioDefinition],
) -> tuple[ForecastResult, tuple[str, ...], float]:
    """
    Forecast one scenario.

    Returns
    -------
    (result, warnings, execution_time) tuple. A failed scenario yields a
    placeholder result and its failure message as the only warning.
    """
    baseline, scenario = args
    started = time.perf_counter()
    config = baseline
    try:
        config = apply_overrides(baseline, scenario.overrides)
        result = forecast(config)
        warnings = tuple(w.message for w in result.warnings)
    except Exception as exc:
        failure = ScenarioFailure(scenario.id, exc)
        logger.exception(failure.message)
        result = placeholder_forecast(config, failure.message)
        warnings = (failure.message,)
    return result, warnings, time.perf_counter() - started


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ScenarioVariance:
    """Scenario minus baseline."""

    net_moic: float
    net_irr: Optional[float]
    total_value: float


@dataclass(frozen=True)
class ScenarioResult:
    scenario_id: str
    definition: ScenarioDefinition
    result: ForecastResult
    variance: Optional[ScenarioVariance] = None
    execution_time: float = field(default=0.0, compare=False)
    warnings: tuple[str, ...] = ()

    @property
    def failed(self) -> bool:
        return is_placeholder(self.result)


def calc_variance(result: ForecastResult, baseline: ForecastResult) -> ScenarioVariance:
    net_irr = None
    if result.net_irr is not None and baseline.net_irr is not None:
        net_irr = result.net_irr - baseline.net_irr
    return ScenarioVariance(
        net_moic=result.net_moic - baseline.net_moic,
        net_irr=net_irr,
        total_value=result.total_value - baseline.total_value,
    )


class ScenarioResults:
    """Scenario results in input order."""

    def __init__(self, results: list[ScenarioResult]) -> None:
        self._results = results

    def __iter__(self) -> Iterator[ScenarioResult]:
        return iter(self._results)

    def __len__(self) -> int:
        return len(self._results)

    def __getitem__(self, index: int) -> ScenarioResult:
        return self._results[index]

    def by_id(self, scenario_id: str) -> ScenarioResult:
        for result in self._results:
            if result.scenario_id == scenario_id:
                return result
        raise KeyError(scenario_id)

    @property
    def baseline(self) -> Optional[ScenarioResult]:
        for result in self._results:
            if result.definition.is_baseline:
                return result
        return None

    @property
    def variances(self) -> list[ScenarioVariance]:
        return [r.variance for r in self._results if r.variance is not None]

    def weighted_net_moic(self) -> float:
        """Weight-averaged net MOIC over scenarios that ran."""
        ran = [r for r in self._results if not r.failed]
        total_weight = sum(r.definition.weight for r in ran)
        if total_weight <= 0:
            return 0.0
        return sum(r.definition.weight * r.result.net_moic for r in ran) / total_weight

    def compare(self) -> pd.DataFrame:
        """
        Return a comparison DataFrame across scenarios.

        Rows are scenarios in input order; variance columns are empty for
        the baseline and failed scenarios.
        """
        rows = []
        for r in self._results:
            rows.append(
                {
                    "scenario": r.definition.name,
                    "scenario_id": r.scenario_id,
                    "category": r.definition.category,
                    "weight": r.definition.weight,
                    "is_baseline": r.definition.is_baseline,
                    "net_moic": r.result.net_moic,
                    "net_irr": r.result.net_irr,
                    "gross_moic": r.result.gross_moic,
                    "tvpi": r.result.tvpi,
                    "total_value": r.result.total_value,
                    "net_moic_variance": r.variance.net_moic if r.variance else None,
                    "net_irr_variance": r.variance.net_irr if r.variance else None,
                    "total_value_variance": r.variance.total_value if r.variance else None,
                    "failed": r.failed,
                    "execution_time": r.execution_time,
                }
            )
        return pd.DataFrame(rows)

    def __repr__(self) -> str:
        failed = sum(r.failed for r in self._results)
        return f"ScenarioResults(n={len(self._results)}, failed={failed})"


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------

def run_scenarios(
    baseline: FundConfiguration,
    scenarios: list[ScenarioDefinition],
    on_progress: Optional[ProgressCallback] = None,
    max_workers: Optional[int] = None,
) -> ScenarioResults:
    """
    Forecast every scenario against ``baseline``.

    Parameters
    ----------
    baseline:
        Configuration the overrides apply to. Each scenario gets its own
        deep copy.
    scenarios:
        Scenario definitions. The first one flagged ``is_baseline`` is the
        reference for variance.
    on_progress:
        Called with the completed percentage after each scenario; the
        last call is exactly 100.
    max_workers:
        Process pool size for large batches. Defaults to ``os.cpu_count()``.

    Returns
    -------
    ScenarioResults
        One result per scenario, in input order.
    """
    total = len(scenarios)
    logger.info("Running %d scenarios for %s", total, baseline.fund_name)
    if total == 0:
        if on_progress is not None:
            on_progress(100.0)
        return ScenarioResults([])

    outputs: list[Optional[tuple[ForecastResult, tuple[str, ...], float]]] = [None] * total
    args_list = [(copy.deepcopy(baseline), scenario) for scenario in scenarios]

    def _report(completed: int) -> None:
        if on_progress is not None:
            on_progress(100.0 * completed / total)

    if total <= SEQUENTIAL_THRESHOLD:
        for i, args in enumerate(args_list):
            outputs[i] = _run_single_scenario(args)
            _report(i + 1)
    else:
        with ProcessPoolExecutor(max_workers=max_workers or os.cpu_count()) as executor:
            futures = {
                executor.submit(_run_single_scenario, args): i
                for i, args in enumerate(args_list)
            }
            for completed, future in enumerate(as_completed(futures), start=1):
                outputs[futures[future]] = future.result()
                _report(completed)

    reference = next(
        (i for i, s in enumerate(scenarios) if s.is_baseline and not is_placeholder(outputs[i][0])),
        None,
    )
    results = []
    for scenario, (result, warnings, elapsed) in zip(scenarios, outputs):
        variance = None
        if reference is not None and not scenario.is_baseline and not is_placeholder(result):
            variance = calc_variance(result, outputs[reference][0])
        results.append(
            ScenarioResult(
                scenario_id=scenario.id,
                definition=scenario,
                result=result,
                variance=variance,
                execution_time=elapsed,
                warnings=warnings,
            )
        )

    batch = ScenarioResults(results)
    logger.info("Scenario batch complete: %r", batch)
    return batch
