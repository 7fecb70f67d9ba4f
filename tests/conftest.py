"""
conftest.py — Shared pytest fixtures for vc_forecast test suite.
"""
from __future__ import annotations

from dataclasses import replace

import pytest

from vc_forecast.config import (
    FundConfiguration,
    Methodology,
    ModelAssumptions,
    Stage,
    StageStrategy,
    default_configuration,
)
from vc_forecast.forecast import ForecastResult, forecast
from vc_forecast.portfolio import Portfolio, simulate_portfolio


@pytest.fixture(scope="session")
def reference_config() -> FundConfiguration:
    """$100M three-stage reference fund."""
    return default_configuration()


@pytest.fixture(scope="session")
def seed_config() -> FundConfiguration:
    """Single Seed cohort: 10 × $2M, no reserves, 8/20 quarters."""
    return FundConfiguration(
        fund_name="Seed Fund I",
        fund_size=20_000_000,
        stage_strategies=(
            StageStrategy(
                stage=Stage.SEED,
                allocation_pct=1.0,
                check_count=10,
                avg_initial_check=2_000_000,
                reserve_ratio=0.0,
            ),
        ),
        investment_period_quarters=8,
        fund_life_quarters=20,
    )


@pytest.fixture(scope="session")
def monte_carlo_config(seed_config: FundConfiguration) -> FundConfiguration:
    return replace(
        seed_config,
        assumptions=ModelAssumptions(methodology=Methodology.MONTE_CARLO, random_seed=42),
    )


@pytest.fixture(scope="session")
def held_config(seed_config: FundConfiguration) -> FundConfiguration:
    """Seed cohort with reserves whose companies never reach an exit."""
    strategy = replace(seed_config.stage_strategies[0], reserve_ratio=0.5)
    return replace(
        seed_config,
        fund_size=30_000_000,
        stage_strategies=(strategy,),
        assumptions=ModelAssumptions(exit_min_hold_quarters=40),
    )


@pytest.fixture(scope="session")
def seed_portfolio(seed_config: FundConfiguration) -> Portfolio:
    return simulate_portfolio(seed_config)


@pytest.fixture(scope="session")
def seed_result(seed_config: FundConfiguration) -> ForecastResult:
    return forecast(seed_config)


@pytest.fixture(scope="session")
def reference_result(reference_config: FundConfiguration) -> ForecastResult:
    return forecast(reference_config)


@pytest.fixture(scope="session")
def held_result(held_config: FundConfiguration) -> ForecastResult:
    return forecast(held_config)
