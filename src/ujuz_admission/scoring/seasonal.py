"""Seasonal admission-cycle calendar.

Admissions are not uniform across the year: most seats open around the
March school-year start and very few in mid-summer.  Each calendar month
carries an intensity multiplier; summing multipliers over a forward window
gives the *effective horizon* in month-equivalents.
"""

from __future__ import annotations

from ujuz_admission.config import DEFAULT_CALIBRATION, CalibrationProfile


def monthly_multiplier(month: int, calibration: CalibrationProfile = DEFAULT_CALIBRATION) -> float:
    """Admission-cycle intensity for *month* (1-12)."""
    if not 1 <= month <= 12:
        raise ValueError(f"month must be in 1..12, got {month}")
    return calibration.seasonal_multipliers[month]


def months_ahead(horizon: int, start_month: int) -> list[int]:
    """Calendar months covered by a *horizon* starting at *start_month*."""
    if horizon <= 0:
        return []
    return [(start_month - 1 + i) % 12 + 1 for i in range(horizon)]


def effective_horizon(
    horizon: int,
    start_month: int,
    calibration: CalibrationProfile = DEFAULT_CALIBRATION,
) -> float:
    """Sum of monthly multipliers over *horizon* months from *start_month*.

    Wraps across December → January.  Returns ``0`` for ``horizon <= 0``.
    """
    if horizon <= 0:
        return 0
    return sum(monthly_multiplier(m, calibration) for m in months_ahead(horizon, start_month))


def seasonal_factor(
    horizon: int,
    start_month: int,
    calibration: CalibrationProfile = DEFAULT_CALIBRATION,
) -> float:
    """Average multiplier over the horizon (1.0 = a neutral season)."""
    if horizon <= 0:
        return 1.0
    return effective_horizon(horizon, start_month, calibration) / horizon
