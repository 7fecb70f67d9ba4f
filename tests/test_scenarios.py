"""Tests for vc_forecast.scenarios — overrides and batch runner."""
from __future__ import annotations

from dataclasses import replace

import pandas as pd
import pytest

from vc_forecast.config import ExitOutcome, Stage
from vc_forecast.forecast import forecast
from vc_forecast.scenarios import (
    SEQUENTIAL_THRESHOLD,
    ParameterOverrides,
    ScenarioDefinition,
    TimingAdjustments,
    apply_overrides,
    run_scenarios,
    standard_scenarios,
)


@pytest.fixture
def three_scenarios(seed_config):
    return standard_scenarios(seed_config)


@pytest.fixture(scope="module")
def standard_results(seed_config):
    progress: list[float] = []
    results = run_scenarios(seed_config, standard_scenarios(seed_config), on_progress=progress.append)
    return results, progress


class TestTimingAdjustments:
    @pytest.mark.parametrize("value", [-1.5, 1.01])
    def test_out_of_range_rejected(self, value):
        with pytest.raises(ValueError):
            TimingAdjustments(deployment_acceleration=value)

    def test_bounds_accepted(self):
        timing = TimingAdjustments(deployment_acceleration=-1.0, exit_acceleration=1.0)
        assert timing.exit_acceleration == 1.0

    def test_mapping_coerced(self):
        overrides = ParameterOverrides(timing={"exit_acceleration": 0.5})
        assert overrides.timing == TimingAdjustments(exit_acceleration=0.5)


class TestApplyOverrides:
    def test_no_overrides_is_identity(self, seed_config):
        assert apply_overrides(seed_config, ParameterOverrides()) == seed_config

    def test_fund_size(self, seed_config):
        cfg = apply_overrides(seed_config, ParameterOverrides(fund_size=40_000_000))
        assert cfg.fund_size == 40_000_000
        assert seed_config.fund_size == 20_000_000

    def test_stage_allocations(self, reference_config):
        overrides = ParameterOverrides(stage_allocations={"Seed": 0.30, "Series A": 0.55})
        cfg = apply_overrides(reference_config, overrides)
        assert cfg.strategy_for(Stage.SEED).allocation_pct == 0.30
        assert cfg.strategy_for(Stage.SERIES_A).allocation_pct == 0.55
        assert cfg.strategy_for(Stage.PRE_SEED).allocation_pct == 0.15

    def test_allocation_for_missing_stage(self, seed_config):
        with pytest.raises(ValueError, match="Series A"):
            apply_overrides(seed_config, ParameterOverrides(stage_allocations={Stage.SERIES_A: 1.0}))

    def test_partial_exit_multiples(self, seed_config):
        overrides = ParameterOverrides(exit_multiples={"Seed": {"mega": 100.0}})
        cfg = apply_overrides(seed_config, overrides)
        assert cfg.exit_multiples[Stage.SEED][ExitOutcome.MEGA] == 100.0
        assert cfg.exit_multiples[Stage.SEED][ExitOutcome.LOW] == 2.5
        assert seed_config.exit_multiples[Stage.SEED][ExitOutcome.MEGA] == 75

    def test_exit_probabilities_replace_rows(self, seed_config):
        row = {"fail": 0.5, "low": 0.5, "med": 0.0, "high": 0.0, "mega": 0.0}
        cfg = apply_overrides(seed_config, ParameterOverrides(exit_probabilities={"Seed": row}))
        assert cfg.exit_probabilities[Stage.SEED][ExitOutcome.FAIL] == 0.5
        assert cfg.exit_probabilities[Stage.SERIES_A] == seed_config.exit_probabilities[Stage.SERIES_A]

    def test_fee_adjustments(self, seed_config):
        cfg = apply_overrides(seed_config, ParameterOverrides(fee_adjustments={"carry_rate": 0.25}))
        assert cfg.fee_profile.carry_rate == 0.25
        assert cfg.fee_profile.hurdle_rate == seed_config.fee_profile.hurdle_rate

    def test_unknown_fee_field(self, seed_config):
        with pytest.raises(ValueError, match="performance_fee"):
            apply_overrides(seed_config, ParameterOverrides(fee_adjustments={"performance_fee": 0.1}))

    def test_deployment_acceleration(self, seed_config):
        fast = apply_overrides(
            seed_config, ParameterOverrides(timing=TimingAdjustments(deployment_acceleration=1.0))
        )
        slow = apply_overrides(
            seed_config, ParameterOverrides(timing=TimingAdjustments(deployment_acceleration=-1.0))
        )
        assert fast.investment_period_quarters == round(8 * 0.8)
        assert slow.investment_period_quarters == round(8 * 1.2)

    def test_exit_acceleration(self, seed_config):
        fast = apply_overrides(
            seed_config, ParameterOverrides(timing=TimingAdjustments(exit_acceleration=0.5))
        )
        slow = apply_overrides(
            seed_config, ParameterOverrides(timing=TimingAdjustments(exit_acceleration=-0.5))
        )
        assert fast.assumptions.evaluation_interval_quarters == 3
        assert slow.assumptions.evaluation_interval_quarters == 5

    def test_interval_never_below_one(self, seed_config):
        cfg = replace(seed_config, assumptions=replace(seed_config.assumptions, evaluation_interval_quarters=1))
        fast = apply_overrides(cfg, ParameterOverrides(timing=TimingAdjustments(exit_acceleration=1.0)))
        assert fast.assumptions.evaluation_interval_quarters == 1


class TestStandardScenarios:
    def test_ids_and_weights(self, three_scenarios):
        assert [s.id for s in three_scenarios] == ["base", "bear", "bull"]
        assert sum(s.weight for s in three_scenarios) == pytest.approx(1.0)
        assert [s.is_baseline for s in three_scenarios] == [True, False, False]

    def test_bear_compresses_multiples(self, seed_config, three_scenarios):
        bear = apply_overrides(seed_config, three_scenarios[1].overrides)
        assert bear.exit_multiples[Stage.SEED][ExitOutcome.LOW] == pytest.approx(2.5 * 0.65)
        assert bear.exit_multiples[Stage.SEED][ExitOutcome.FAIL] == 0.0
        assert bear.assumptions.evaluation_interval_quarters == 5


class TestRunScenariosSequential:
    def test_results_in_input_order(self, standard_results):
        results, _ = standard_results
        assert [r.scenario_id for r in results] == ["base", "bear", "bull"]
        assert results.baseline.scenario_id == "base"

    def test_progress_ends_at_100(self, standard_results):
        _, progress = standard_results
        assert len(progress) == 3
        assert progress == sorted(progress)
        assert progress[-1] == 100.0

    def test_baseline_matches_plain_forecast(self, seed_result, standard_results):
        results, _ = standard_results
        assert results.by_id("base").result == seed_result

    def test_variance_against_baseline(self, standard_results):
        results, _ = standard_results
        base = results.by_id("base").result
        assert results.by_id("base").variance is None
        assert len(results.variances) == 2
        for scenario_id in ("bear", "bull"):
            r = results.by_id(scenario_id)
            assert r.variance.net_moic == r.result.net_moic - base.net_moic
            assert r.variance.total_value == r.result.total_value - base.total_value

    def test_bull_beats_bear(self, standard_results):
        results, _ = standard_results
        assert results.by_id("bull").result.gross_moic > results.by_id("bear").result.gross_moic

    def test_weighted_net_moic(self, standard_results):
        results, _ = standard_results
        expected = sum(r.definition.weight * r.result.net_moic for r in results)
        assert results.weighted_net_moic() == pytest.approx(expected)

    def test_compare_frame(self, standard_results):
        results, _ = standard_results
        df = results.compare()
        assert isinstance(df, pd.DataFrame)
        assert list(df["scenario_id"]) == ["base", "bear", "bull"]
        assert df["net_moic_variance"].isna().iloc[0]
        assert not df["failed"].any()

    def test_unknown_id(self, standard_results):
        results, _ = standard_results
        with pytest.raises(KeyError):
            results.by_id("sideways")


class TestRunScenariosFailures:
    def test_failed_scenario_does_not_stop_batch(self, seed_config):
        scenarios = [
            ScenarioDefinition(id="base", name="Base", is_baseline=True),
            ScenarioDefinition(
                id="broken",
                name="Broken",
                overrides=ParameterOverrides(stage_allocations={Stage.SERIES_B: 1.0}),
            ),
            ScenarioDefinition(
                id="invalid", name="Invalid", overrides=ParameterOverrides(fund_size=-1)
            ),
            ScenarioDefinition(id="bigger", name="Bigger", overrides=ParameterOverrides(fund_size=25_000_000)),
        ]
        results = run_scenarios(seed_config, scenarios)
        assert len(results) == 4
        assert results.by_id("broken").failed
        assert results.by_id("invalid").failed
        assert results.by_id("broken").variance is None
        assert "'broken'" in results.by_id("broken").warnings[0]
        assert not results.by_id("bigger").failed
        assert results.by_id("bigger").variance is not None
        assert repr(results) == "ScenarioResults(n=4, failed=2)"

    def test_no_baseline_means_no_variance(self, seed_config):
        scenarios = [ScenarioDefinition(id="a", name="A"), ScenarioDefinition(id="b", name="B")]
        results = run_scenarios(seed_config, scenarios)
        assert results.baseline is None
        assert results.variances == []

    def test_empty_batch_reports_completion(self, seed_config):
        progress: list[float] = []
        results = run_scenarios(seed_config, [], on_progress=progress.append)
        assert len(results) == 0
        assert progress == [100.0]

    def test_baseline_not_modified(self, seed_config, three_scenarios):
        before = seed_config.to_dict()
        run_scenarios(seed_config, three_scenarios)
        assert seed_config.to_dict() == before


class TestRunScenariosParallel:
    def test_process_pool_matches_sequential(self, seed_config):
        scenarios = [
            ScenarioDefinition(
                id=f"carry-{i}",
                name=f"Carry {carry:.0%}",
                overrides=ParameterOverrides(fee_adjustments={"carry_rate": carry}),
                is_baseline=(i == 0),
            )
            for i, carry in enumerate([0.15, 0.16, 0.17, 0.18, 0.19, 0.20])
        ]
        assert len(scenarios) > SEQUENTIAL_THRESHOLD
        progress: list[float] = []
        results = run_scenarios(seed_config, scenarios, on_progress=progress.append, max_workers=2)

        assert [r.scenario_id for r in results] == [s.id for s in scenarios]
        assert len(progress) == len(scenarios)
        assert progress[-1] == 100.0
        assert len(results.variances) == len(scenarios) - 1
        for scenario, r in zip(scenarios, results):
            expected = forecast(apply_overrides(seed_config, scenario.overrides))
            assert r.result == expected
