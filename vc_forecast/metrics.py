"""
metrics.py — Pure mathematical functions for fund return metrics.

No imports from within this library. All functions are stateless and
have no side effects. Safe to import from any module.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Literal, Optional

import numpy as np
import numpy.typing as npt
from scipy import optimize


QUARTERS_PER_YEAR = 4

# Search window for the bisection fallback.
_RATE_FLOOR = -0.9999
_RATE_CEILING = 1_000.0


# ---------------------------------------------------------------------------
# IRR
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class IRRResult:
    """Outcome of an IRR solve."""

    rate: Optional[float]
    converged: bool
    iterations: int
    method: Literal["newton", "bisection", "none"]
    npv: Optional[float] = None

    @property
    def value(self) -> float:
        """Rate as a float, nan when the solve did not converge."""
        return self.rate if self.converged and self.rate is not None else float("nan")


def calc_npv(
    cashflows: npt.NDArray[np.float64],
    rate: float,
    periods: Optional[npt.NDArray[np.float64]] = None,
) -> float:
    """Net Present Value at given discount rate."""
    cashflows = np.asarray(cashflows, dtype=np.float64)
    if periods is None:
        periods = np.arange(len(cashflows), dtype=np.float64)
    else:
        periods = np.asarray(periods, dtype=np.float64)
    return float(np.sum(cashflows / (1 + rate) ** periods))


def solve_irr(
    cashflows: npt.NDArray[np.float64],
    periods: Optional[npt.NDArray[np.float64]] = None,
    max_iterations: int = 100,
    tolerance: float = 1e-6,
    guess: float = 0.10,
) -> IRRResult:
    """
    Solve for the Internal Rate of Return.

    Newton-Raphson first; if it fails to converge, or converges to a rate
    whose NPV is still outside ``tolerance``, fall back to bisection over a
    bracketing interval. Both stages are capped at ``max_iterations``, so
    the call always terminates.

    Parameters
    ----------
    cashflows:
        Dated cash flows. Negative = contributions, positive = distributions.
    periods:
        Time of each cash flow in years. If None, assumes [0, 1, 2, ...].
    max_iterations:
        Iteration cap applied separately to each stage.
    tolerance:
        Maximum absolute NPV accepted at the returned rate.
    guess:
        Initial guess for Newton-Raphson.

    Returns
    -------
    IRRResult
        ``converged`` is False when no rate satisfying ``tolerance`` was found.
    """
    cashflows = np.asarray(cashflows, dtype=np.float64)
    if periods is None:
        periods = np.arange(len(cashflows), dtype=np.float64)
    else:
        periods = np.asarray(periods, dtype=np.float64)

    if len(cashflows) != len(periods):
        raise ValueError("cashflows and periods must have the same length")

    # Need at least one sign change
    if not (np.any(cashflows > 0) and np.any(cashflows < 0)):
        return IRRResult(rate=None, converged=False, iterations=0, method="none")

    def npv_func(r: float) -> float:
        return float(np.sum(cashflows / (1 + r) ** periods))

    def dnpv_func(r: float) -> float:
        return float(np.sum(-periods * cashflows / (1 + r) ** (periods + 1)))

    iterations = 0

    # Attempt Newton-Raphson first
    with np.errstate(all="ignore"):
        try:
            root, info = optimize.newton(
                npv_func,
                x0=guess,
                fprime=dnpv_func,
                tol=tolerance * 1e-3,
                maxiter=max_iterations,
                full_output=True,
                disp=False,
            )
            iterations += int(info.iterations)
            root = float(root)
            if info.converged and _RATE_FLOOR < root < _RATE_CEILING:
                npv = npv_func(root)
                if abs(npv) <= tolerance:
                    return IRRResult(root, True, iterations, "newton", npv)
        except (RuntimeError, ValueError, ZeroDivisionError, OverflowError):
            pass

        # Bisection fallback: find a sign-changing bracket first
        bracket = _find_bracket(npv_func)
        if bracket is not None:
            lo, hi = bracket
            root, info = optimize.bisect(
                npv_func,
                lo,
                hi,
                xtol=1e-15,
                maxiter=max_iterations,
                full_output=True,
                disp=False,
            )
            iterations += int(info.iterations)
            root = float(root)
            npv = npv_func(root)
            if abs(npv) <= tolerance:
                return IRRResult(root, True, iterations, "bisection", npv)
            return IRRResult(root, False, iterations, "bisection", npv)

    return IRRResult(rate=None, converged=False, iterations=iterations, method="none")


def _find_bracket(npv_func) -> Optional[tuple[float, float]]:
    """Return (lo, hi) with opposite NPV signs inside the search window."""
    grid = [_RATE_FLOOR, -0.99, -0.9, -0.5, 0.0, 0.1, 0.5, 1.0, 5.0, 25.0, 100.0, _RATE_CEILING]
    values = []
    for r in grid:
        v = npv_func(r)
        values.append(v if math.isfinite(v) else None)
    for (lo, v_lo), (hi, v_hi) in zip(zip(grid, values), zip(grid[1:], values[1:])):
        if v_lo is None or v_hi is None:
            continue
        if v_lo == 0:
            return lo, lo + 1e-12
        if v_lo * v_hi < 0:
            return lo, hi
    return None


def calc_irr(
    cashflows: npt.NDArray[np.float64],
    periods: Optional[npt.NDArray[np.float64]] = None,
    max_iterations: int = 100,
    tolerance: float = 1e-6,
) -> float:
    """
    Compute IRR as a decimal (e.g. 0.25 = 25%).

    Returns nan if no solution found.
    """
    return solve_irr(cashflows, periods, max_iterations, tolerance).value


def quarterly_irr(
    cashflows: npt.NDArray[np.float64],
    quarters: Optional[npt.NDArray[np.float64]] = None,
    max_iterations: int = 100,
    tolerance: float = 1e-6,
) -> IRRResult:
    """Annualised IRR of cash flows dated by quarter index."""
    cashflows = np.asarray(cashflows, dtype=np.float64)
    if quarters is None:
        quarters = np.arange(len(cashflows), dtype=np.float64)
    years = np.asarray(quarters, dtype=np.float64) / QUARTERS_PER_YEAR
    return solve_irr(cashflows, years, max_iterations, tolerance)


# ---------------------------------------------------------------------------
# Basic return metrics
# ---------------------------------------------------------------------------

def calc_tvpi(
    invested: float,
    nav: float,
    distributions: float,
) -> float:
    """
    Total Value to Paid-In capital (TVPI).

    TVPI = DPI + RVPI, i.e. (distributions + NAV) / paid-in capital.
    """
    if invested <= 0:
        return float("nan")
    return calc_dpi(invested, distributions) + calc_rvpi(invested, nav)


def calc_dpi(invested: float, distributions: float) -> float:
    """Distributions to Paid-In capital (DPI)."""
    if invested <= 0:
        return float("nan")
    return distributions / invested


def calc_rvpi(invested: float, nav: float) -> float:
    """Residual Value to Paid-In capital (RVPI)."""
    if invested <= 0:
        return float("nan")
    return nav / invested


def calc_moic(invested: float, total_value: float) -> float:
    """Multiple on Invested Capital."""
    if invested <= 0:
        return float("nan")
    return total_value / invested


# ---------------------------------------------------------------------------
# Compounding
# ---------------------------------------------------------------------------

def compound_growth(rate: float, quarters: float) -> float:
    """Growth factor of an annual ``rate`` compounded quarterly."""
    return (1 + rate / QUARTERS_PER_YEAR) ** max(quarters, 0)
