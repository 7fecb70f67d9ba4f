"""
basic_forecast.py — Forecasts the reference $100M fund end to end.

Run:
    python examples/basic_forecast.py
"""
from __future__ import annotations

import logging

from vc_forecast import analyze, default_configuration, forecast, validate


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    # -------------------------------------------------------------------
    # 1. Configure and validate
    # -------------------------------------------------------------------
    config = default_configuration(fund_name="Acme Ventures Fund I", vintage=2024)
    report = validate(config)
    for warning in report.warnings:
        print(f"  warning [{warning.impact}] {warning.field}: {warning.message}")
    if not report.is_valid:
        for error in report.errors:
            print(f"  error {error}")
        return

    # -------------------------------------------------------------------
    # 2. Run the forecast
    # -------------------------------------------------------------------
    result = forecast(config)
    summary = result.summary()

    def pct(value):
        return f"{value:>14.1%}" if value is not None else f"{'n/a':>14}"

    print("=" * 60)
    print(f"  {summary['fund_name']} — Forecast Summary")
    print("=" * 60)
    print(f"  Vintage:            {summary['vintage']}")
    print(f"  Total Invested:     ${summary['total_invested']:>15,.0f}")
    print(f"  Realized:           ${summary['total_realized']:>15,.0f}")
    print(f"  Unrealized (NAV):   ${summary['total_unrealized']:>15,.0f}")
    print(f"  Management Fees:    ${summary['total_management_fees']:>15,.0f}")
    print(f"  Carry (GP):         ${summary['total_carried_interest']:>15,.0f}")
    print("-" * 60)
    print(f"  Gross IRR:          {pct(summary['gross_irr'])}")
    print(f"  Net IRR (LP):       {pct(summary['net_irr'])}")
    print(f"  Gross MOIC:         {summary['gross_moic']:>14.2f}x")
    print(f"  Net MOIC:           {summary['net_moic']:>14.2f}x")
    print(f"  TVPI:               {summary['tvpi']:>14.2f}x")
    print(f"  DPI:                {summary['dpi']:>14.2f}x")
    print(f"  RVPI:               {summary['rvpi']:>14.2f}x")
    print("=" * 60)

    # -------------------------------------------------------------------
    # 3. Annual cash flow table (last quarter of each year)
    # -------------------------------------------------------------------
    df = result.timeline_frame()
    annual = df[df["quarter"] % 4 == 3]
    print("\nAnnual Cash Flows:")
    print(
        annual[["year", "cumulative_contributions", "cumulative_distributions", "nav", "tvpi"]]
        .to_string(index=False, float_format=lambda x: f"{x:>14,.2f}")
    )

    # -------------------------------------------------------------------
    # 4. Analytics
    # -------------------------------------------------------------------
    analytics = analyze(result)
    risk = result.risk_metrics
    print("\nRisk:")
    print(f"  J-curve depth:      {risk.j_curve_depth:.1%} of commitments")
    print(f"  Breakeven quarter:  {risk.time_to_breakeven}")
    print(f"  Loss ratio:         {risk.loss_ratio:.1%}")
    print(f"\nPacing score:         {analytics.pacing.pacing_score:.0f}/100")
    print(f"Reserve sufficiency:  {analytics.reserves.sufficiency_ratio:.2f}x")
    print(
        f"Vintage benchmark:    {analytics.vintage.quartile} "
        f"({analytics.vintage.percentile:.0f}th percentile)"
    )


if __name__ == "__main__":
    main()
