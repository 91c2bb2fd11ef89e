"""Engine settings and the versioned calibration set.

Runtime settings are read from environment variables (prefix ``UJUZ_``,
case-insensitive) and optionally from a ``.env`` file in the working
directory.

Every tunable constant of the scoring formula lives in a single
``CalibrationProfile``.  ``engine_version`` identifies the constant set:
bump it whenever any value below changes, so that cached results and
downstream consumers can tell two calibrations apart.
"""

from __future__ import annotations

import logging
from datetime import timedelta, timezone
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

ENGINE_VERSION = "1.8.0"

# Admission calendar months are Korean calendar months (KST, no DST).
SERVICE_TIMEZONE = timezone(timedelta(hours=9), "KST")

# ---------------------------------------------------------------------------
# Calibration
# ---------------------------------------------------------------------------


class LogitWeights(BaseModel):
    """Coefficients of the linear combination fed to the sigmoid."""

    model_config = ConfigDict(frozen=True)

    bias: float = -1.0
    turnover: float = 1.1
    regional_base: float = 2.0
    priority: float = 0.08
    seasonal: float = 1.5
    position: float = 2.2


class CalibrationProfile(BaseModel):
    """All constants of the admission formula, versioned together."""

    model_config = ConfigDict(frozen=True)

    engine_version: str = ENGINE_VERSION

    # Admission-cycle intensity per calendar month.  Peak at the March
    # school-year start, trough in July.
    seasonal_multipliers: dict[int, float] = Field(
        default_factory=lambda: {
            1: 1.10,
            2: 1.30,
            3: 1.50,
            4: 1.05,
            5: 1.00,
            6: 0.95,
            7: 0.90,
            8: 0.95,
            9: 1.00,
            10: 1.00,
            11: 1.05,
            12: 1.15,
        }
    )

    weights: LogitWeights = Field(default_factory=LogitWeights)
    turnover_reference: float = 0.01  # vacancies / seat-month mapped to ln(2)

    # Gamma prior mean of the turnover rate, by region then age band.
    gamma_prior_means: dict[str, dict[int, float]] = Field(
        default_factory=lambda: {
            "gangnam": {0: 0.005, 1: 0.007, 2: 0.008, 3: 0.010, 4: 0.012, 5: 0.012},
            "seocho": {0: 0.006, 1: 0.008, 2: 0.009, 3: 0.011, 4: 0.012, 5: 0.012},
            "bundang": {0: 0.007, 1: 0.008, 2: 0.010, 3: 0.012, 4: 0.013, 5: 0.013},
            "wirye": {0: 0.007, 1: 0.009, 2: 0.010, 3: 0.012, 4: 0.013, 5: 0.013},
            "seongnam": {0: 0.008, 1: 0.009, 2: 0.011, 3: 0.012, 4: 0.014, 5: 0.014},
            "songpa": {0: 0.006, 1: 0.008, 2: 0.009, 3: 0.011, 4: 0.012, 5: 0.012},
            "default": {0: 0.008, 1: 0.010, 2: 0.011, 3: 0.012, 4: 0.015, 5: 0.015},
        }
    )
    prior_strength_seat_months: float = 3.0

    # Share of total capacity per age band when per-class capacity is unknown.
    age_band_capacity_ratio: dict[int, float] = Field(
        default_factory=lambda: {0: 0.10, 1: 0.15, 2: 0.20, 3: 0.20, 4: 0.20, 5: 0.15}
    )

    # Waiting-position inflation per region (how many applicants compete
    # for the same seat for every listed position).
    region_competition: dict[str, float] = Field(
        default_factory=lambda: {
            "gangnam": 1.40,
            "seocho": 1.35,
            "bundang": 1.30,
            "wirye": 1.30,
            "songpa": 1.30,
            "seongnam": 1.20,
            "default": 1.15,
        }
    )

    # Baseline admission likelihood of a region, 0-1.
    regional_base_rates: dict[str, float] = Field(
        default_factory=lambda: {
            "gangnam": 0.30,
            "seocho": 0.32,
            "songpa": 0.36,
            "bundang": 0.38,
            "wirye": 0.38,
            "seongnam": 0.42,
            "default": 0.45,
        }
    )

    # Priority bonus, expressed in waiting positions skipped.
    priority_bonus: dict[str, float] = Field(
        default_factory=lambda: {
            "disability": 8.0,
            "single_parent": 7.0,
            "low_income": 6.0,
            "multi_child": 5.0,
            "sibling": 4.0,
            "dual_income": 3.0,
            "general": 0.0,
        }
    )

    position_scale: float = 15.0
    default_prior_turnover: float = 0.01
    fallback_confidence_cap: float = 0.2

    # Snapshot aggregation
    vacancy_event_timeout_hours: float = 48.0
    community_pseudo_event_weight: float = 0.3
    community_exposure_weight: float = 0.5
    community_min_sources: int = 2

    # Evidence confidence curve
    confidence_floor: float = 0.05
    confidence_span: float = 0.94
    confidence_half_volume: float = 12.0
    confidence_diversity_weight: float = 2.0
    confidence_ceiling: float = 0.99

    @model_validator(mode="after")
    def _validate_tables(self) -> CalibrationProfile:
        missing = [m for m in range(1, 13) if m not in self.seasonal_multipliers]
        if missing:
            raise ValueError(f"seasonal_multipliers is missing months {missing}")
        if min(self.seasonal_multipliers.values()) <= 0:
            raise ValueError("seasonal multipliers must be positive")
        if "default" not in self.gamma_prior_means or "default" not in self.region_competition:
            raise ValueError("calibration tables require a 'default' region entry")
        return self

    @property
    def min_seasonal_multiplier(self) -> float:
        return min(self.seasonal_multipliers.values())

    def prior_turnover(self, region_key: str, age_band: int) -> float:
        table = self.gamma_prior_means.get(region_key) or self.gamma_prior_means["default"]
        return table.get(age_band, self.gamma_prior_means["default"].get(age_band, 0.01))

    def competition(self, region_key: str) -> float:
        return self.region_competition.get(region_key, self.region_competition["default"])

    def base_rate(self, region_key: str) -> float:
        return self.regional_base_rates.get(region_key, self.regional_base_rates["default"])


DEFAULT_CALIBRATION = CalibrationProfile()


def load_calibration(path: Path | str | None) -> CalibrationProfile:
    """Load a calibration override from a JSON file.

    Returns the built-in profile when *path* is ``None``.  Any field absent
    from the file keeps its default value.
    """
    if path is None:
        return DEFAULT_CALIBRATION
    raw = Path(path).read_text(encoding="utf-8")
    profile = CalibrationProfile.model_validate_json(raw)
    logger.info("Loaded calibration %s from %s", profile.engine_version, path)
    return profile


# ---------------------------------------------------------------------------
# Runtime settings
# ---------------------------------------------------------------------------


class EngineSettings(BaseSettings):
    """Runtime configuration for the admission engine."""

    data_dir: Path = Path.home() / ".ujuz"
    cache_ttl_seconds: int = Field(default=300, gt=0)
    evidence_window_days: int = Field(default=365, gt=0)
    horizon_months: int = Field(default=6, gt=0)
    max_wait_months: int = Field(default=36, gt=0)
    calibration_file: Path | None = None

    model_config = {
        "env_prefix": "UJUZ_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def evidence_db_path(self) -> Path:
        return self.data_dir / "evidence.db"

    @property
    def cache_db_path(self) -> Path:
        return self.data_dir / "admission_cache.db"
