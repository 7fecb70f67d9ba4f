"""Tests for vc_forecast.portfolio — cohort simulation."""
from __future__ import annotations

from dataclasses import replace

import numpy as np
import pandas as pd
import pytest

from vc_forecast.config import ExitOutcome, ModelAssumptions, Stage
from vc_forecast.portfolio import (
    CohortSimulator,
    CompanyStatus,
    Portfolio,
    deployment_quarter,
    simulate_portfolio,
)


class _ConstantRng:
    """Random source that always returns the same draw."""

    def __init__(self, value: float) -> None:
        self.value = value
        self.calls = 0

    def random(self) -> float:
        self.calls += 1
        return self.value


# Expected exit multiples of the default Seed and Series A outcome tables.
SEED_EXPECTED = 0.10 * 2.5 + 0.05 * 8 + 0.03 * 30 + 0.02 * 75
SERIES_A_EXPECTED = 0.15 * 2 + 0.10 * 5 + 0.07 * 15 + 0.03 * 50


class TestDeploymentSchedule:
    def test_linear_entry_quarters(self, seed_portfolio: Portfolio):
        assert [c.entry_quarter for c in seed_portfolio] == [0, 0, 1, 2, 3, 4, 4, 5, 6, 7]

    def test_entries_stay_inside_investment_period(self):
        quarters = [deployment_quarter(i, 7, 12) for i in range(7)]
        assert quarters == sorted(quarters)
        assert max(quarters) < 12

    def test_contributions_by_quarter(self, seed_portfolio: Portfolio):
        contributions = seed_portfolio.contributions_by_quarter()
        assert len(contributions) == 20
        assert contributions[0] == pytest.approx(4_000_000)
        assert contributions[4] == pytest.approx(4_000_000)
        assert contributions.sum() == pytest.approx(20_000_000)


class TestDeterministicSimulation:
    def test_company_count_and_total_invested(self, seed_portfolio: Portfolio):
        assert len(seed_portfolio) == 10
        assert seed_portfolio.total_invested == pytest.approx(20_000_000)

    def test_ids_and_names(self, seed_portfolio: Portfolio):
        company = seed_portfolio[0]
        assert company.id == "seed-001"
        assert company.name == "Seed Company 1"
        assert company.investments[0].id == "seed-001-inv-1"
        assert not company.investments[0].is_follow_on

    def test_every_company_resolves_at_first_boundary(self, seed_portfolio: Portfolio):
        for company in seed_portfolio:
            assert company.status is CompanyStatus.EXITED
            assert company.active_weight == 0.0
            assert company.exit_quarter == (4 if company.entry_quarter < 4 else 8)

    def test_exit_value_is_expected_multiple(self, seed_portfolio: Portfolio):
        # 40% stays in Seed, 60% graduates to Series A before resolving.
        company = seed_portfolio[0]
        expected = 800_000 * SEED_EXPECTED + 1_200_000 * SERIES_A_EXPECTED
        assert company.exit_value == pytest.approx(expected)
        assert company.exit_value == pytest.approx(6_460_000)

    def test_exit_events_carry_cost_basis(self, seed_portfolio: Portfolio):
        company = seed_portfolio[0]
        assert sum(ev.cost_basis for ev in company.exit_events) == pytest.approx(2_000_000)
        assert sum(ev.weight for ev in company.exit_events) == pytest.approx(1.0)
        fails = [ev for ev in company.exit_events if ev.outcome is ExitOutcome.FAIL]
        assert all(ev.proceeds == 0 for ev in fails)
        assert all(not ev.is_realization for ev in fails)

    def test_nav_history_before_and_after_exit(self, seed_portfolio: Portfolio):
        company = seed_portfolio[2]  # enters in quarter 1
        assert len(company.nav_history) == 20
        assert company.nav_history[0] == 0.0
        assert company.nav_history[1] == pytest.approx(2_000_000)
        assert company.nav_history[4] == 0.0
        assert company.unrealized_value == 0.0

    def test_proceeds_by_quarter(self, seed_portfolio: Portfolio):
        proceeds = seed_portfolio.proceeds_by_quarter()
        assert proceeds[4] == pytest.approx(5 * 6_460_000)
        assert proceeds[8] == pytest.approx(5 * 6_460_000)
        assert proceeds.sum() == pytest.approx(seed_portfolio.total_realized)

    def test_nav_by_quarter(self, seed_portfolio: Portfolio):
        nav = seed_portfolio.nav_by_quarter()
        assert nav[0] == pytest.approx(4_000_000)
        assert np.all(nav[8:] == 0.0)

    def test_holding_period(self, seed_portfolio: Portfolio):
        assert seed_portfolio[0].holding_period(19) == 4
        assert seed_portfolio[9].holding_period(19) == 1

    def test_same_config_same_portfolio(self, seed_config, seed_portfolio: Portfolio):
        assert simulate_portfolio(seed_config) == seed_portfolio


class TestHoldAndCadence:
    def test_minimum_hold_delays_exit(self, seed_config):
        cfg = replace(seed_config, assumptions=ModelAssumptions(exit_min_hold_quarters=8))
        company = simulate_portfolio(cfg)[0]
        assert company.nav_history[0] == pytest.approx(2_000_000)
        # Seed remainder at cost plus the graduated part marked up 2x.
        assert company.nav_history[4] == pytest.approx(800_000 + 2_400_000)
        assert company.exit_quarter == 8
        assert company.nav_history[8] == 0.0

    def test_shorter_interval_resolves_earlier(self, seed_config):
        cfg = replace(seed_config, assumptions=ModelAssumptions(evaluation_interval_quarters=2))
        assert simulate_portfolio(cfg)[0].exit_quarter == 2

    def test_held_companies_stay_active(self, held_config):
        portfolio = simulate_portfolio(held_config)
        assert all(c.is_active for c in portfolio)
        assert all(c.unrealized_value > 0 for c in portfolio)
        assert portfolio.total_realized == 0.0
        assert portfolio.exit_events == []


class TestFollowOns:
    def test_follow_on_sized_by_graduating_weight(self, seed_config):
        strategy = replace(seed_config.stage_strategies[0], reserve_ratio=0.5)
        cfg = replace(seed_config, fund_size=30_000_000, stage_strategies=(strategy,))
        company = simulate_portfolio(cfg)[0]
        follow_ons = [inv for inv in company.investments if inv.is_follow_on]
        assert len(follow_ons) == 1
        assert follow_ons[0].amount == pytest.approx(600_000)
        assert follow_ons[0].stage is Stage.SERIES_A
        assert follow_ons[0].quarter == 4
        assert company.follow_on_invested == pytest.approx(600_000)
        assert company.total_invested == pytest.approx(2_600_000)

    def test_no_reserves_no_follow_ons(self, seed_portfolio: Portfolio):
        assert all(c.follow_on_invested == 0 for c in seed_portfolio)


class TestMonteCarlo:
    def test_same_seed_same_portfolio(self, monte_carlo_config):
        assert simulate_portfolio(monte_carlo_config) == simulate_portfolio(monte_carlo_config)

    def test_companies_move_atomically(self, monte_carlo_config):
        for company in simulate_portfolio(monte_carlo_config):
            assert company.status in (CompanyStatus.EXITED, CompanyStatus.WRITTEN_OFF)
            assert len(company.exit_events) == 1
            assert company.exit_events[0].weight == 1.0

    def test_low_draw_graduates_then_fails(self, monte_carlo_config):
        rng = _ConstantRng(0.0)
        company = CohortSimulator(monte_carlo_config, rng=rng).run()[0]
        assert company.current_stage is Stage.SERIES_A
        assert company.status is CompanyStatus.WRITTEN_OFF
        assert company.exit_value == 0.0
        assert company.exit_quarter == 4

    def test_high_draw_stays_and_hits_mega(self, monte_carlo_config):
        company = simulate_portfolio(monte_carlo_config, rng=_ConstantRng(0.99))[0]
        assert company.current_stage is Stage.SEED
        assert company.exit_events[0].outcome is ExitOutcome.MEGA
        assert company.exit_value == pytest.approx(150_000_000)

    def test_graduation_draw_precedes_exit_draw(self, monte_carlo_config):
        rng = _ConstantRng(0.99)
        simulate_portfolio(monte_carlo_config, rng=rng)
        # One graduation draw and one exit draw per company.
        assert rng.calls == 20

    def test_deterministic_run_ignores_rng(self, seed_config, seed_portfolio):
        rng = _ConstantRng(0.0)
        assert simulate_portfolio(seed_config, rng=rng) == seed_portfolio
        assert rng.calls == 0


class TestPortfolioViews:
    def test_status_counts_before_first_exit(self, seed_portfolio: Portfolio):
        counts = seed_portfolio.status_counts(3)
        assert counts[CompanyStatus.ACTIVE] == 5
        assert counts[CompanyStatus.EXITED] == 0
        assert counts[CompanyStatus.WRITTEN_OFF] == 0

    def test_status_counts_at_end(self, seed_portfolio: Portfolio):
        counts = seed_portfolio.status_counts(19)
        assert counts == {
            CompanyStatus.ACTIVE: 0,
            CompanyStatus.EXITED: 10,
            CompanyStatus.WRITTEN_OFF: 0,
        }

    def test_breakdown_frame(self, seed_portfolio: Portfolio):
        df = seed_portfolio.breakdown()
        assert isinstance(df, pd.DataFrame)
        assert len(df) == 10
        assert "exit_value" in df.columns
        assert df["portfolio_weight"].sum() == pytest.approx(1.0)
        assert set(df["status"]) == {"exited"}

    def test_empty_breakdown(self):
        assert Portfolio(companies=(), fund_life_quarters=4).breakdown().empty

    def test_repr(self, seed_portfolio: Portfolio):
        assert "n_companies=10" in repr(seed_portfolio)
