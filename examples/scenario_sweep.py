"""
scenario_sweep.py — Bear / base / bull plus a carry sweep.

Demonstrates:
- The standard scenario set
- Custom parameter overrides
- Progress reporting and the comparison table
- A seeded Monte Carlo run

Run:
    python examples/scenario_sweep.py
"""
from __future__ import annotations

from dataclasses import replace

from vc_forecast import (
    ModelAssumptions,
    ParameterOverrides,
    ScenarioDefinition,
    default_configuration,
    forecast,
    run_scenarios,
    standard_scenarios,
)


def main() -> None:
    config = default_configuration(fund_name="Acme Ventures Fund II")

    # -------------------------------------------------------------------
    # 1. Standard scenarios plus custom overrides
    # -------------------------------------------------------------------
    scenarios = standard_scenarios(config) + [
        ScenarioDefinition(
            id=f"carry-{int(carry * 100)}",
            name=f"Carry {carry:.0%}",
            category="custom",
            overrides=ParameterOverrides(fee_adjustments={"carry_rate": carry}),
            weight=0.0,
        )
        for carry in (0.15, 0.25, 0.30)
    ]

    def on_progress(percent: float) -> None:
        print(f"  {percent:5.1f}% complete")

    results = run_scenarios(config, scenarios, on_progress=on_progress)

    # -------------------------------------------------------------------
    # 2. Comparison table
    # -------------------------------------------------------------------
    df = results.compare()
    print("\nScenario Comparison:")
    print(
        df[["scenario", "net_moic", "net_irr", "tvpi", "net_moic_variance", "failed"]]
        .to_string(index=False, float_format=lambda x: f"{x:.3f}")
    )
    print(f"\nProbability-weighted net MOIC: {results.weighted_net_moic():.2f}x")

    # -------------------------------------------------------------------
    # 3. One seeded Monte Carlo draw
    # -------------------------------------------------------------------
    mc_config = replace(
        config,
        assumptions=ModelAssumptions(methodology="monte-carlo", random_seed=42),
    )
    mc = forecast(mc_config)
    print(f"\nMonte Carlo (seed 42): {mc!r}")
    print(mc.company_frame().groupby("status")["invested"].agg(["count", "sum"]))


if __name__ == "__main__":
    main()
