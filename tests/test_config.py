"""Tests for vc_forecast.config — immutable input records."""
from __future__ import annotations

import dataclasses

import pytest

from vc_forecast.config import (
    DEFAULT_EXIT_PROBABILITIES,
    ExitOutcome,
    FeeBasis,
    FeeProfile,
    FundConfiguration,
    Methodology,
    ModelAssumptions,
    Stage,
    StageStrategy,
    WaterfallType,
    default_configuration,
)


class TestStage:
    @pytest.mark.parametrize("text", ["Series A", "SERIES_A", "series_a"])
    def test_parse_accepts_value_and_name(self, text):
        assert Stage.parse(text) is Stage.SERIES_A

    def test_parse_rejects_unknown(self):
        with pytest.raises(ValueError):
            Stage.parse("Series Z")

    def test_order_follows_financing_sequence(self):
        ordered = sorted(Stage, key=lambda s: s.order)
        assert ordered[0] is Stage.PRE_SEED
        assert ordered[-1] is Stage.SERIES_D_PLUS

    def test_str_enum_compares_to_value(self):
        assert Stage.SEED == "Seed"


class TestEnums:
    def test_methodology_accepts_underscore(self):
        assert Methodology.parse("monte_carlo") is Methodology.MONTE_CARLO

    def test_exit_outcome_parse(self):
        assert ExitOutcome.parse("MEGA") is ExitOutcome.MEGA

    def test_exit_outcome_unknown(self):
        with pytest.raises(ValueError):
            ExitOutcome.parse("unicorn")


class TestStageStrategy:
    def test_capital_properties(self):
        s = StageStrategy(Stage.SEED, 0.5, 10, 1_000_000, reserve_ratio=0.5)
        assert s.initial_capital == pytest.approx(10_000_000)
        assert s.follow_on_check == pytest.approx(500_000)
        assert s.planned_reserves == pytest.approx(5_000_000)

    def test_stage_coerced_from_string(self):
        s = StageStrategy("Pre-Seed", 1.0, 5, 250_000)
        assert s.stage is Stage.PRE_SEED

    def test_target_returns_from_mapping(self):
        s = StageStrategy(Stage.SEED, 1.0, 5, 1e6, target_returns={"low": 1, "target": 3, "high": 9})
        assert s.target_returns.high == 9

    def test_frozen(self):
        s = StageStrategy(Stage.SEED, 1.0, 5, 1e6)
        with pytest.raises(dataclasses.FrozenInstanceError):
            s.check_count = 6


class TestFundConfiguration:
    def test_default_allocations_sum_to_one(self, reference_config):
        total = sum(s.allocation_pct for s in reference_config.stage_strategies)
        assert total == pytest.approx(1.0)

    def test_default_terms(self, reference_config):
        assert reference_config.fund_size == 100_000_000
        assert reference_config.investment_period_quarters == 20
        assert reference_config.fund_life_quarters == 40
        assert reference_config.waterfall_type is WaterfallType.AMERICAN
        assert reference_config.fee_profile.management_fee_basis is FeeBasis.COMMITTED

    def test_default_configuration_overrides(self):
        cfg = default_configuration(fund_size=50_000_000)
        assert cfg.fund_size == 50_000_000
        assert cfg.fund_name == "New Fund"

    def test_unknown_stage_key_rejected_at_construction(self, seed_config):
        with pytest.raises(ValueError):
            dataclasses.replace(seed_config, graduation_matrix={"Seed": {"Series Q": 0.5}})

    def test_matrix_keys_coerced_to_enums(self, seed_config):
        cfg = dataclasses.replace(seed_config, graduation_matrix={"Seed": {"Series A": 0.5}})
        assert cfg.graduation_matrix == {Stage.SEED: {Stage.SERIES_A: 0.5}}

    def test_default_tables_not_shared(self, seed_config):
        cfg = FundConfiguration("A", 1e7, seed_config.stage_strategies)
        assert cfg.exit_probabilities == DEFAULT_EXIT_PROBABILITIES
        assert cfg.exit_probabilities is not DEFAULT_EXIT_PROBABILITIES

    def test_strategy_for(self, reference_config):
        assert reference_config.strategy_for("Seed").check_count == 25
        assert reference_config.strategy_for(Stage.SERIES_C) is None

    def test_reachable_stages_follow_graduation(self, seed_config):
        assert seed_config.reachable_stages() == {
            Stage.SEED,
            Stage.SERIES_A,
            Stage.SERIES_B,
            Stage.SERIES_C,
            Stage.SERIES_D_PLUS,
        }

    def test_periods_per_year(self, seed_config):
        assert seed_config.periods_per_year == 4


class TestFromDict:
    def test_camel_case_mapping(self):
        cfg = FundConfiguration.from_dict(
            {
                "fundName": "Dict Fund",
                "fundSize": 50_000_000,
                "stageStrategies": [
                    {"stage": "Seed", "allocationPct": 1.0, "checkCount": 10, "avgInitialCheck": 2e6}
                ],
                "feeProfile": {"carryRate": 0.25, "managementFeeBasis": "invested"},
                "assumptions": {"methodology": "monte-carlo", "randomSeed": 7},
                "waterfallType": "european",
            }
        )
        assert cfg.fund_name == "Dict Fund"
        assert cfg.stage_strategies[0].stage is Stage.SEED
        assert cfg.fee_profile.carry_rate == 0.25
        assert cfg.fee_profile.management_fee_basis is FeeBasis.INVESTED
        assert cfg.assumptions.is_monte_carlo
        assert cfg.assumptions.random_seed == 7
        assert cfg.waterfall_type is WaterfallType.EUROPEAN

    def test_exit_probability_matrix_alias(self):
        row = {"fail": 0.5, "low": 0.5, "med": 0.0, "high": 0.0, "mega": 0.0}
        cfg = FundConfiguration.from_dict(
            {
                "fundName": "Alias",
                "fundSize": 5e7,
                "stageStrategies": [],
                "exitProbabilityMatrix": {"Seed": row},
            }
        )
        assert cfg.exit_probabilities[Stage.SEED][ExitOutcome.FAIL] == 0.5

    def test_integral_floats_become_ints(self):
        cfg = FundConfiguration.from_dict(
            {
                "fundName": "Float Fund",
                "fundSize": 2e7,
                "stageStrategies": [
                    {"stage": "Seed", "allocationPct": 1.0, "checkCount": 10.0, "avgInitialCheck": 2e6}
                ],
                "investmentPeriodQuarters": 8.0,
                "fundLifeQuarters": 20.0,
                "assumptions": {"evaluationIntervalQuarters": 4.0, "irMaxIterations": 50.0},
            }
        )
        assert cfg.investment_period_quarters == 8
        assert isinstance(cfg.investment_period_quarters, int)
        assert isinstance(cfg.fund_life_quarters, int)
        assert isinstance(cfg.stage_strategies[0].check_count, int)
        assert isinstance(cfg.assumptions.evaluation_interval_quarters, int)
        assert isinstance(cfg.assumptions.ir_max_iterations, int)

    def test_fractional_values_left_for_validation(self):
        strategy = StageStrategy(Stage.SEED, 1.0, 10.5, 2e6)
        assert strategy.check_count == 10.5

    def test_unknown_key_raises(self):
        with pytest.raises(TypeError):
            FundConfiguration.from_dict({"fundName": "X", "fundSize": 1e7, "sideCar": True})

    def test_to_dict_uses_plain_values(self, reference_config):
        data = reference_config.to_dict()
        assert data["waterfall_type"] == "american"
        assert data["stage_strategies"][0]["stage"] == "Pre-Seed"
        assert data["graduation_matrix"]["Pre-Seed"] == {"Seed": 0.65}


class TestAssumptions:
    def test_defaults(self):
        a = ModelAssumptions()
        assert a.methodology is Methodology.DETERMINISTIC
        assert a.ir_max_iterations == 100
        assert a.ir_tolerance == 1e-6
        assert a.evaluation_interval_quarters == 4
        assert not a.is_monte_carlo

    def test_fee_profile_schedule_coerced_to_tuple(self):
        profile = FeeProfile(management_fee_basis="custom", custom_fee_schedule=[1, 2])
        assert profile.custom_fee_schedule == (1.0, 2.0)
        assert profile.management_fee_basis is FeeBasis.CUSTOM
