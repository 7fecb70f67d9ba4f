"""Tests for vc_forecast.fund — quarterly cash flow ledger."""
from __future__ import annotations

from dataclasses import replace

import numpy as np
import pytest

from vc_forecast.config import ExitOutcome, FeeProfile
from vc_forecast.fund import (
    Fund,
    calc_fund_expenses,
    calc_management_fees,
    collect_realizations,
)
from vc_forecast.portfolio import Portfolio


@pytest.fixture
def built_fund(seed_config) -> Fund:
    return (
        Fund(seed_config)
        .deploy_capital({0: 5_000_000, 4: 3_000_000})
        .record_proceeds(9_000_000, quarter=12, cost_basis=3_000_000)
        .set_nav(12, 10_000_000)
    )


class TestManagementFees:
    def test_committed_basis(self, seed_config):
        fees = calc_management_fees(seed_config)
        assert len(fees) == 20
        assert np.allclose(fees, 100_000)

    def test_reference_fund_committed_fee(self, reference_config):
        fees = calc_management_fees(reference_config)
        assert fees[0] == pytest.approx(500_000)

    def test_step_down_after_investment_period(self, seed_config):
        cfg = replace(seed_config, fee_profile=FeeProfile(fee_step_down_rate=0.0025))
        fees = calc_management_fees(cfg)
        assert fees[7] == pytest.approx(100_000)
        assert fees[8] == pytest.approx(20_000_000 * (0.02 - 0.0025 * 0.25) / 4)
        assert fees[19] < fees[8]

    def test_step_down_never_negative(self, seed_config):
        cfg = replace(seed_config, fee_profile=FeeProfile(fee_step_down_rate=0.5))
        assert calc_management_fees(cfg).min() == 0.0

    def test_invested_basis(self, seed_config, seed_portfolio: Portfolio):
        cfg = replace(seed_config, fee_profile=FeeProfile(management_fee_basis="invested"))
        fees = calc_management_fees(cfg, seed_portfolio.contributions_by_quarter())
        assert fees[0] == pytest.approx(4_000_000 * 0.02 / 4)
        assert fees[19] == pytest.approx(20_000_000 * 0.02 / 4)

    def test_custom_schedule_carries_last_value(self, seed_config):
        cfg = replace(
            seed_config,
            fee_profile=FeeProfile(
                management_fee_basis="custom", custom_fee_schedule=(10_000_000, 20_000_000)
            ),
        )
        fees = calc_management_fees(cfg)
        assert fees[0] == pytest.approx(50_000)
        assert fees[1] == pytest.approx(100_000)
        assert fees[19] == pytest.approx(100_000)


class TestFundExpenses:
    def test_reference_expenses(self, reference_config):
        expenses = calc_fund_expenses(reference_config.fee_profile, 40)
        # $500k organisational plus the $100k cap spread quarterly.
        assert expenses[0] == pytest.approx(525_000)
        assert expenses[1] == pytest.approx(25_000)
        assert expenses.sum() == pytest.approx(500_000 + 40 * 25_000)

    def test_no_cap(self):
        expenses = calc_fund_expenses(FeeProfile(fund_expenses=400_000), 8)
        assert np.allclose(expenses, 100_000)

    def test_zero_quarters(self):
        assert len(calc_fund_expenses(FeeProfile(organizational_expenses=1.0), 0)) == 0


class TestFundBuilderMethods:
    def test_method_chaining_returns_self(self, seed_config):
        fund = Fund(seed_config)
        assert fund.deploy_capital({0: 1_000_000}) is fund
        assert fund.set_nav(0, 1_000_000) is fund

    def test_totals(self, built_fund: Fund):
        assert built_fund.total_invested == pytest.approx(8_000_000)
        assert built_fund.total_proceeds == pytest.approx(9_000_000)
        assert built_fund.final_nav == 0.0

    def test_quarter_out_of_range(self, seed_config):
        with pytest.raises(ValueError):
            Fund(seed_config).deploy_capital({20: 1_000_000})
        with pytest.raises(ValueError):
            Fund(seed_config).set_nav(-1, 0.0)

    def test_negative_amounts_rejected(self, seed_config):
        with pytest.raises(ValueError):
            Fund(seed_config).deploy_capital({0: -1.0})
        with pytest.raises(ValueError):
            Fund(seed_config).record_proceeds(-1.0, quarter=3)
        with pytest.raises(ValueError):
            Fund(seed_config).add_distribution(1.0, quarter=3, carry=-1.0)
        with pytest.raises(ValueError):
            Fund(seed_config).set_nav(3, -1.0)

    def test_gross_cashflows_include_final_nav(self, built_fund: Fund):
        flows = built_fund.gross_cashflows()
        assert flows[0] == pytest.approx(-5_000_000)
        assert flows[12] == pytest.approx(9_000_000)
        built_fund.set_nav(19, 1_000_000)
        assert built_fund.gross_cashflows()[-1] == pytest.approx(1_000_000)
        built_fund.set_nav(19, 0.0)

    def test_lp_cashflows_charge_fees(self, built_fund: Fund):
        flows = built_fund.lp_cashflows()
        # No distributions recorded: LPs only pay in.
        assert flows.sum() == pytest.approx(-8_000_000 - 2_000_000)

    def test_repr(self, built_fund: Fund):
        assert "Seed Fund I" in repr(built_fund)


class TestTimeline:
    def test_one_point_per_quarter(self, built_fund: Fund):
        timeline = built_fund.timeline()
        assert [p.quarter for p in timeline] == list(range(20))

    def test_calendar_labels(self, built_fund: Fund):
        point = built_fund.timeline()[5]
        assert point.year == 2025
        assert point.year_quarter == "Y2Q2"

    def test_ratios_zero_before_first_contribution(self, seed_config):
        point = Fund(seed_config).deploy_capital({2: 1_000_000}).timeline()[0]
        assert point.dpi == 0.0
        assert point.tvpi == 0.0
        assert point.net_irr is None

    def test_cumulatives_non_decreasing(self, seed_result):
        for name in (
            "cumulative_contributions",
            "cumulative_distributions",
            "cumulative_management_fees",
            "cumulative_carried_interest",
        ):
            values = [getattr(p, name) for p in seed_result.timeline]
            assert all(b >= a for a, b in zip(values, values[1:])), name

    def test_tvpi_is_dpi_plus_rvpi(self, seed_result):
        for point in seed_result.timeline:
            assert point.tvpi == pytest.approx(point.dpi + point.rvpi)

    def test_distributions_plus_carry_equal_proceeds(self, seed_result):
        last = seed_result.timeline[-1]
        assert last.cumulative_distributions + last.cumulative_carried_interest == pytest.approx(
            last.cumulative_gross_proceeds
        )

    def test_company_counts(self, seed_result):
        assert seed_result.timeline[3].active_companies == 5
        assert seed_result.timeline[19].exited_companies == 10

    def test_unrealized_gain_sums_to_markup(self, held_result):
        gains = sum(p.unrealized_gain for p in held_result.timeline)
        assert gains == pytest.approx(held_result.total_unrealized - held_result.total_invested)

    def test_frame(self, built_fund: Fund):
        df = built_fund.get_cashflows()
        assert len(df) == 20
        assert "net_cash_flow" in df.columns


class TestRealizations:
    def test_fails_carry_no_proceeds(self, seed_portfolio: Portfolio):
        ledger = collect_realizations(seed_portfolio)
        assert len(ledger) == len(seed_portfolio.exit_events)
        assert all(r.proceeds == 0 for r in ledger if r.outcome is ExitOutcome.FAIL)

    def test_chronological(self, seed_portfolio: Portfolio):
        quarters = [r.quarter for r in collect_realizations(seed_portfolio)]
        assert quarters == sorted(quarters)

    def test_dated_contributions_match_cost_basis(self, seed_portfolio: Portfolio):
        for realization in collect_realizations(seed_portfolio):
            dated = sum(amount for _, amount in realization.contributions)
            assert dated == pytest.approx(realization.cost_basis)
            assert all(q <= realization.quarter for q, _ in realization.contributions)

    def test_ids(self, seed_portfolio: Portfolio):
        ledger = collect_realizations(seed_portfolio)
        assert ledger[0].id == "seed-001-exit-1"


class TestRiskMetrics:
    def test_seed_fund(self, seed_result):
        risk = seed_result.risk_metrics
        # Ten $2M checks by quarter 3 = $10M plus $400k of fees.
        assert risk.j_curve_depth == pytest.approx(10_400_000 / 20_000_000)
        assert risk.time_to_breakeven == 4
        # Seed fail weight 80% of $0.8M, Series A 65% of $1.2M, per company.
        assert risk.loss_ratio == pytest.approx(14_200_000 / 20_000_000)
        assert risk.concentration_risk == pytest.approx(0.1)
        assert risk.diversification_score == pytest.approx(0.9)

    def test_without_portfolio(self, built_fund: Fund):
        risk = built_fund.risk_metrics()
        assert risk.loss_ratio == 0.0
        assert risk.concentration_risk == 0.0
        assert risk.diversification_score == 0.0
        assert risk.j_curve_depth > 0
