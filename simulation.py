"""
Physio Revenue Simulation Engine
Monte-Carlo annual revenue for synthetic Swiss physiotherapy practices.

Pipeline (single forward pass, one seeded numpy Generator):
  1. Sample   — staffing, daily volume, tariff position, canton for N practices.
  2. Join     — resolve tariff points and canton TPW from the reference tables.
  3. Revenue  — session → day → month → practice-month → year → CHF.
  4. Supplements — per practice, each Zuschlag triggers independently;
                   point supplements scale with volume and TPW, flat ones
                   add a fixed CHF amount once per year.
  5. Finalize — total revenue + numeric domain check.

Random draw order is part of the output contract: changing it changes every
number under the same seed.
  Sampler:     all n_physio → all n_treatments_per_day → all tariff codes
               → all canton codes (each a single batch of N draws).
  Supplements: practice-major, rule-minor; one uniform per (practice, rule).
"""

import math
import numbers
from dataclasses import dataclass, field, fields, replace
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from loguru import logger

from tariffs import (AnnualFlatAmount, ConfigurationError, PointAmount,
                     ReferenceTables, SupplementRule, load_reference_tables)

MONTHS_PER_YEAR = 12

DATASET_COLUMNS = [
    "id", "n_physio", "n_treatments_per_day",
    "treatment_code", "treatment_name", "points",
    "canton_code", "multiplier",
    "points_per_session", "points_per_day", "points_per_month",
    "points_per_month_practice", "points_per_year",
    "base_annual_revenue", "supplement_points_annual", "supplement_flat_annual",
    "total_annual_revenue",
]
CATEGORY_COLUMNS = ["treatment_code", "treatment_name", "canton_code"]
INTEGER_COLUMNS  = ["id", "n_physio", "n_treatments_per_day", "points"]


class NumericDomainError(ArithmeticError):
    """A derived numeric field is negative or non-finite."""


# ══════════════════════════════════════════════════════════════════════════════
# SIMULATION CONFIG
# ══════════════════════════════════════════════════════════════════════════════
@dataclass
class SimulationConfig:
    # ── Run ───────────────────────────────────────────────────────────────────
    n_practices: int = 160
    seed:        int = 42

    # ── Calendar & Conversion ─────────────────────────────────────────────────
    working_days_per_month: float = 21     # excludes weekends
    point_to_chf_rate:      float = 1.0    # 1 point = 1 CHF (simplification)

    # ── Sampling Bounds (continuous uniform, then rounded) ────────────────────
    physio_range:     Tuple[float, float] = (1.0, 6.0)
    treatments_range: Tuple[float, float] = (8.0, 20.0)

    # ── Supplements ───────────────────────────────────────────────────────────
    # A triggered point supplement is billed on this share of working days.
    # Flat approximation, not a per-day trigger.
    supplement_day_fraction: float = 0.6

    # ── Derived ───────────────────────────────────────────────────────────────
    @property
    def working_days_per_year(self) -> float:
        return self.working_days_per_month * MONTHS_PER_YEAR

    @property
    def supplement_days_per_year(self) -> float:
        return self.working_days_per_year * self.supplement_day_fraction

    def validate(self) -> None:
        errs = []
        n = self.n_practices
        if (not isinstance(n, numbers.Real) or isinstance(n, bool) or not math.isfinite(n)
                or int(n) != n or n < 1):
            errs.append(f"n_practices must be a positive integer, got {self.n_practices}")
        if not math.isfinite(self.working_days_per_month) or self.working_days_per_month <= 0:
            errs.append(f"working_days_per_month must be positive, got {self.working_days_per_month}")
        if not math.isfinite(self.point_to_chf_rate) or self.point_to_chf_rate < 0:
            errs.append(f"point_to_chf_rate must be >= 0, got {self.point_to_chf_rate}")
        for name in ("physio_range", "treatments_range"):
            lo, hi = getattr(self, name)
            if not (0 <= lo <= hi) or not math.isfinite(hi):
                errs.append(f"{name} must satisfy 0 <= low <= high, got {(lo, hi)}")
        if not 0.0 <= self.supplement_day_fraction <= 1.0:
            errs.append(f"supplement_day_fraction must be in [0, 1], got {self.supplement_day_fraction}")
        if errs:
            raise ConfigurationError("Invalid simulation config:\n- " + "\n- ".join(errs))


# ══════════════════════════════════════════════════════════════════════════════
# PRACTICE RECORD
# ══════════════════════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class Practice:
    # ── Sampled ───────────────────────────────────────────────────────────────
    id:                   int
    n_physio:             int
    n_treatments_per_day: int
    treatment_code:       str
    canton_code:          str

    # ── Joined ────────────────────────────────────────────────────────────────
    treatment_name: Optional[str]   = None
    points:         Optional[int]   = None
    multiplier:     Optional[float] = None

    # ── Base revenue chain ────────────────────────────────────────────────────
    points_per_session:        Optional[float] = None
    points_per_day:            Optional[float] = None
    points_per_month:          Optional[float] = None
    points_per_month_practice: Optional[float] = None
    points_per_year:           Optional[float] = None
    base_annual_revenue:       Optional[float] = None

    # ── Supplements & total ───────────────────────────────────────────────────
    supplement_points_annual: Optional[float] = None
    supplement_flat_annual:   Optional[float] = None
    total_annual_revenue:     Optional[float] = None

    @property
    def is_resolved(self) -> bool:
        return self.points is not None and self.multiplier is not None

    @property
    def is_complete(self) -> bool:
        return self.total_annual_revenue is not None

    def to_row(self) -> Dict:
        return {name: getattr(self, name) for name in DATASET_COLUMNS}


# ══════════════════════════════════════════════════════════════════════════════
# 1. SAMPLER
# ══════════════════════════════════════════════════════════════════════════════
def _uniform_rounded(rng: np.random.Generator, bounds: Tuple[float, float],
                     n: int) -> np.ndarray:
    """
    Continuous uniform then round-half-to-even.

    Endpoints get half the mass of interior integers; this is not a
    discrete uniform and must not be replaced by one.
    """
    lo, hi = bounds
    return np.rint(rng.uniform(lo, hi, n)).astype(int)


def generate_practices(n: int, rng: np.random.Generator,
                       tables: Optional[ReferenceTables] = None,
                       cfg: Optional[SimulationConfig] = None) -> List[Practice]:
    """
    Draw n partially populated practices (ids 1..n).

    Each field is drawn as one batch of n before the next field starts.
    """
    tables = tables or load_reference_tables()
    cfg    = cfg or SimulationConfig()

    tariffs      = tables.all_tariffs()
    tariff_codes = [t.code for t in tariffs]
    tariff_probs = np.array([t.probability for t in tariffs], dtype=float)
    canton_codes = tables.canton_codes()

    n_physio = _uniform_rounded(rng, cfg.physio_range, n)
    n_beh    = _uniform_rounded(rng, cfg.treatments_range, n)
    tariff   = rng.choice(tariff_codes, size=n, replace=True, p=tariff_probs)
    canton   = rng.choice(canton_codes, size=n, replace=True)

    return [
        Practice(id=i + 1,
                 n_physio=int(n_physio[i]),
                 n_treatments_per_day=int(n_beh[i]),
                 treatment_code=str(tariff[i]),
                 canton_code=str(canton[i]))
        for i in range(n)
    ]


# ══════════════════════════════════════════════════════════════════════════════
# 2. JOINER
# ══════════════════════════════════════════════════════════════════════════════
def resolve_practice(practice: Practice,
                     tables: Optional[ReferenceTables] = None) -> Practice:
    """Attach tariff name/points and canton TPW. Unknown codes raise UnknownCodeError."""
    tables = tables or load_reference_tables()
    tariff = tables.tariff_for(practice.treatment_code)
    return replace(practice,
                   treatment_name=tariff.name,
                   points=tariff.points,
                   multiplier=tables.multiplier_for(practice.canton_code))


# ══════════════════════════════════════════════════════════════════════════════
# 3. REVENUE CALCULATOR
# ══════════════════════════════════════════════════════════════════════════════
def base_revenue_chain(points: float, multiplier: float, n_treatments_per_day: float,
                       n_physio: float, cfg: SimulationConfig) -> Dict[str, float]:
    """
    Session → annual revenue. Works on scalars or numpy arrays alike.
    No rounding at any stage.
    """
    per_session   = points * multiplier
    per_day       = n_treatments_per_day * per_session
    per_month     = per_day * cfg.working_days_per_month
    per_month_all = per_month * n_physio
    per_year      = per_month_all * MONTHS_PER_YEAR
    return {
        "points_per_session":        per_session,
        "points_per_day":            per_day,
        "points_per_month":          per_month,
        "points_per_month_practice": per_month_all,
        "points_per_year":           per_year,
        "base_annual_revenue":       per_year * cfg.point_to_chf_rate,
    }


def compute_base_revenue(practice: Practice,
                         cfg: Optional[SimulationConfig] = None) -> Practice:
    if not practice.is_resolved:
        raise ValueError(f"Practice {practice.id} must be resolved before revenue calculation")
    cfg = cfg or SimulationConfig()
    chain = base_revenue_chain(practice.points, practice.multiplier,
                               practice.n_treatments_per_day, practice.n_physio, cfg)
    return replace(practice, **chain)


# ══════════════════════════════════════════════════════════════════════════════
# 4. SUPPLEMENT ENGINE
# ══════════════════════════════════════════════════════════════════════════════
def supplement_totals(practice: Practice, rules: Sequence[SupplementRule],
                      draws: Sequence[float],
                      cfg: Optional[SimulationConfig] = None) -> Tuple[float, float]:
    """
    Fold one practice's uniform draws over the ordered rules.

    Returns (point-based CHF per year, flat CHF per year). Rule j is active
    when draws[j] < its trigger probability.
    """
    if len(draws) != len(rules):
        raise ValueError(f"Expected {len(rules)} draws, got {len(draws)}")
    cfg = cfg or SimulationConfig()
    days = cfg.supplement_days_per_year

    points_annual = 0.0
    flat_annual   = 0.0
    for rule, u in zip(rules, draws):
        if not u < rule.trigger_probability:
            continue
        if isinstance(rule.value, PointAmount):
            points_annual += (rule.value.points * practice.n_treatments_per_day
                              * days * practice.multiplier)
        elif isinstance(rule.value, AnnualFlatAmount):
            flat_annual += float(rule.value.chf)
    return points_annual, flat_annual


def apply_supplements(practice: Practice, rules: Sequence[SupplementRule],
                      rng: np.random.Generator,
                      cfg: Optional[SimulationConfig] = None) -> Practice:
    """Draw one uniform per rule for this practice, then fold."""
    draws = rng.random(len(rules))
    pts, flat = supplement_totals(practice, rules, draws, cfg)
    return replace(practice, supplement_points_annual=pts, supplement_flat_annual=flat)


# ══════════════════════════════════════════════════════════════════════════════
# 5. FINALIZE
# ══════════════════════════════════════════════════════════════════════════════
_NUMERIC_FIELDS = [f.name for f in fields(Practice)
                   if f.name not in ("id", "treatment_code", "canton_code", "treatment_name")]


def check_numeric_domain(practice: Practice) -> Practice:
    """Raise NumericDomainError if any populated numeric field is < 0 or not finite."""
    for name in _NUMERIC_FIELDS:
        value = getattr(practice, name)
        if value is None:
            continue
        if not math.isfinite(value) or value < 0:
            raise NumericDomainError(f"Practice {practice.id}: {name}={value!r} out of domain")
    return practice


def finalize_practice(practice: Practice) -> Practice:
    total = (practice.base_annual_revenue
             + practice.supplement_points_annual
             + practice.supplement_flat_annual)
    return check_numeric_domain(replace(practice, total_annual_revenue=total))


# ══════════════════════════════════════════════════════════════════════════════
# PIPELINE
# ══════════════════════════════════════════════════════════════════════════════
@dataclass
class SimulationResult:
    config:    SimulationConfig
    practices: List[Practice] = field(default_factory=list)

    def to_frame(self) -> pd.DataFrame:
        return practices_to_frame(self.practices)


def practices_to_frame(practices: Sequence[Practice]) -> pd.DataFrame:
    """Dataset table with typed columns (ints, categories, floats)."""
    df = pd.DataFrame([p.to_row() for p in practices], columns=DATASET_COLUMNS)
    for col in INTEGER_COLUMNS:
        df[col] = df[col].astype("int64")
    for col in CATEGORY_COLUMNS:
        df[col] = df[col].astype("category")
    float_cols = [c for c in DATASET_COLUMNS if c not in INTEGER_COLUMNS + CATEGORY_COLUMNS]
    df[float_cols] = df[float_cols].astype("float64")
    return df


def run_simulation(cfg: Optional[SimulationConfig] = None,
                   tables: Optional[ReferenceTables] = None,
                   rng: Optional[np.random.Generator] = None) -> SimulationResult:
    """
    Full forward pass. With no rng given, one is seeded from cfg.seed, so two
    calls with equal configs return identical practices.
    """
    cfg    = cfg or SimulationConfig()
    cfg.validate()
    tables = tables or load_reference_tables()
    rng    = rng if rng is not None else np.random.default_rng(cfg.seed)

    logger.info("Simulating {} practices (seed={}, {} working days/month, {} CHF/point)",
                cfg.n_practices, cfg.seed, cfg.working_days_per_month, cfg.point_to_chf_rate)

    practices = generate_practices(cfg.n_practices, rng, tables, cfg)
    practices = [resolve_practice(p, tables) for p in practices]
    practices = [compute_base_revenue(p, cfg) for p in practices]
    logger.debug("Sampled and priced {} practices", len(practices))

    rules = tables.all_supplements()
    practices = [apply_supplements(p, rules, rng, cfg) for p in practices]
    practices = [finalize_practice(p) for p in practices]

    n_with_supp = sum(1 for p in practices
                      if p.supplement_points_annual > 0 or p.supplement_flat_annual > 0)
    logger.info("Simulation complete: {} practices, {} with at least one supplement",
                len(practices), n_with_supp)
    return SimulationResult(config=cfg, practices=practices)


# ══════════════════════════════════════════════════════════════════════════════
# SENSITIVITY GRID
# ══════════════════════════════════════════════════════════════════════════════
def sensitivity_grid(cfg: Optional[SimulationConfig] = None,
                     tables: Optional[ReferenceTables] = None,
                     treatment_code: str = "7301", canton_code: str = "ZH",
                     physio_values: Sequence[int] = range(1, 7),
                     treatment_values: Sequence[int] = range(8, 21, 2)) -> pd.DataFrame:
    """
    Expected base revenue (no supplements) over a staffing × volume grid for
    one tariff position and canton. Defaults: 7301 in ZH (48 × 1.11).
    """
    cfg    = cfg or SimulationConfig()
    tables = tables or load_reference_tables()
    points     = tables.tariff_for(treatment_code).points
    multiplier = tables.multiplier_for(canton_code)

    rows = []
    for n_beh in treatment_values:
        for n_physio in physio_values:
            chain = base_revenue_chain(points, multiplier, n_beh, n_physio, cfg)
            rows.append({
                "n_physio":             int(n_physio),
                "n_treatments_per_day": int(n_beh),
                "expected_revenue":     chain["base_annual_revenue"],
            })
    return pd.DataFrame(rows, columns=["n_physio", "n_treatments_per_day", "expected_revenue"])
