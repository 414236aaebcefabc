"""
Tariff reference data — Swiss physiotherapy (KVG, TPW 2024)

Static tables the simulation joins against:
  - Canton tariff point values (TPW) — one multiplier per canton.
  - Main tariff positions 7301–7340 — points per session + sampling weight.
  - Supplements (Zuschläge) 7350–7363 — trigger probability + either a point
    amount or a flat annual CHF amount, parsed once from the tariff text.

Tables are validated when built; anything malformed raises ConfigurationError
before a single practice is simulated.
"""

import math
import re
from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache
from typing import Dict, List, Tuple, Union


# ══════════════════════════════════════════════════════════════════════════════
# ERRORS
# ══════════════════════════════════════════════════════════════════════════════
class ConfigurationError(ValueError):
    """Reference table or simulation config is malformed."""


class UnknownCodeError(LookupError):
    """A canton or tariff code is not in its reference table."""


# ══════════════════════════════════════════════════════════════════════════════
# RAW TABLES
# ══════════════════════════════════════════════════════════════════════════════
# Source: Physioswiss TPW 2024 (as published, not re-verified here)
CANTON_TPW: List[Tuple[str, float]] = [
    ("AG", 1.05), ("AI", 0.97), ("AR", 0.99), ("BE", 1.03), ("BL", 1.03),
    ("BS", 1.08), ("FR", 0.98), ("GE", 1.07), ("GL", 1.01), ("GR", 0.94),
    ("JU", 0.95), ("LU", 0.99), ("NE", 0.96), ("NW", 1.01), ("OW", 0.95),
    ("SG", 0.98), ("SH", 1.05), ("SO", 1.03), ("SZ", 0.99), ("TG", 1.00),
    ("TI", 0.95), ("UR", 0.98), ("VD", 1.00), ("VS", 0.96), ("ZG", 1.11),
    ("ZH", 1.11),
]

# (code, name, points, sampling probability)
MAIN_TARIFFS: List[Tuple[str, str, int, float]] = [
    ("7301", "Allgemeine Physiotherapie",                 48, 0.50),
    ("7311", "Komplexe Kinesiotherapie",                  77, 0.15),
    ("7312", "Manuelle Lymphdrainage",                    77, 0.10),
    ("7313", "Hippotherapie",                             77, 0.02),
    ("7320", "Elektro- & Thermotherapie / Instruktion",   10, 0.08),
    ("7330", "Gruppentherapie",                           25, 0.10),
    ("7340", "Muskelaufbautraining (MTT)",                22, 0.05),
]

# (code, name, trigger probability, tariff text)
SUPPLEMENTS: List[Tuple[str, str, float, str]] = [
    ("7350", "Erstbehandlung",                                0.05,    "24 Punkte"),
    ("7351", "Kinder mit chronischer Behinderung (bis 6 J.)", 0.0002,  "30 Punkte"),
    ("7352", "Therapiebad / Gehbecken",                       0.0002,  "19 Punkte"),
    ("7353", "Infrastruktur Hippotherapie",                   0.02,    "67 Punkte"),
    ("7354", "Weg-/Zeitentschädigung (Hausbesuch)",           0.10,    "34 Punkte"),
    ("7360", "Hilfsmittel gemäss Lima",                       0.002,   "77 Punkte"),
    ("7362", "Materialpauschale vaginale Sonde",              0.003,   "CHF 50.– (jährlich)"),
    ("7363", "Materialpauschale anale Sonde",                 0.00001, "CHF 90.– (jährlich)"),
]

PROBABILITY_TOLERANCE = 1e-9

_LEADING_INT = re.compile(r"(\d+)")


# ══════════════════════════════════════════════════════════════════════════════
# RECORD TYPES
# ══════════════════════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class CantonMultiplier:
    code:       str
    multiplier: float


@dataclass(frozen=True)
class TreatmentTariff:
    code:        str
    name:        str
    points:      int
    probability: float


@dataclass(frozen=True)
class PointAmount:
    """Supplement billed in tariff points per treatment."""
    points: int


@dataclass(frozen=True)
class AnnualFlatAmount:
    """Supplement billed once per year as a fixed CHF amount."""
    chf: Decimal


SupplementValue = Union[PointAmount, AnnualFlatAmount]


@dataclass(frozen=True)
class SupplementRule:
    code:                str
    name:                str
    trigger_probability: float
    raw_text:            str
    value:               SupplementValue

    @property
    def is_flat(self) -> bool:
        return isinstance(self.value, AnnualFlatAmount)


def parse_supplement_value(text: str) -> SupplementValue:
    """
    Parse tariff text like "24 Punkte" or "CHF 50.– (jährlich)".

    The first integer in the text is the amount; a "CHF" marker makes it a
    flat annual amount, anything else is a point amount.
    """
    match = _LEADING_INT.search(text or "")
    if match is None:
        raise ConfigurationError(f"Supplement value has no amount: {text!r}")
    amount = int(match.group(1))
    if "CHF" in text:
        return AnnualFlatAmount(chf=Decimal(amount))
    return PointAmount(points=amount)


# ══════════════════════════════════════════════════════════════════════════════
# REFERENCE TABLES
# ══════════════════════════════════════════════════════════════════════════════
class ReferenceTables:
    """
    Read-only lookups over the three reference tables.

    List accessors return entries in canonical table order; seeded sampling
    depends on that order, so it must never be re-sorted.
    """

    def __init__(self, cantons: List[CantonMultiplier],
                 tariffs: List[TreatmentTariff],
                 supplements: List[SupplementRule]):
        self._cantons     = tuple(cantons)
        self._tariffs     = tuple(tariffs)
        self._supplements = tuple(supplements)
        self._canton_idx: Dict[str, CantonMultiplier] = {c.code: c for c in self._cantons}
        self._tariff_idx: Dict[str, TreatmentTariff]  = {t.code: t for t in self._tariffs}
        self.validate()

    # ── Lookups ───────────────────────────────────────────────────────────────
    def canton_for(self, code: str) -> CantonMultiplier:
        try:
            return self._canton_idx[code]
        except KeyError:
            raise UnknownCodeError(f"Unknown canton code: {code!r}") from None

    def multiplier_for(self, code: str) -> float:
        return self.canton_for(code).multiplier

    def tariff_for(self, code: str) -> TreatmentTariff:
        try:
            return self._tariff_idx[code]
        except KeyError:
            raise UnknownCodeError(f"Unknown tariff position: {code!r}") from None

    def all_cantons(self) -> List[CantonMultiplier]:
        return list(self._cantons)

    def canton_codes(self) -> List[str]:
        return [c.code for c in self._cantons]

    def all_tariffs(self) -> List[TreatmentTariff]:
        return list(self._tariffs)

    def all_supplements(self) -> List[SupplementRule]:
        return list(self._supplements)

    # ── Derived ───────────────────────────────────────────────────────────────
    def baseline_treatment(self) -> TreatmentTariff:
        """Most probable tariff position; first in table order on ties."""
        return max(self._tariffs, key=lambda t: t.probability)

    def max_flat_supplement_total(self) -> Decimal:
        return sum((s.value.chf for s in self._supplements if s.is_flat), Decimal(0))

    # ── Validation ────────────────────────────────────────────────────────────
    def validate(self) -> None:
        errs: List[str] = []

        if not self._cantons:
            errs.append("canton table is empty")
        if not self._tariffs:
            errs.append("tariff table is empty")

        for label, codes in (("canton", [c.code for c in self._cantons]),
                             ("tariff", [t.code for t in self._tariffs]),
                             ("supplement", [s.code for s in self._supplements])):
            dupes = sorted({c for c in codes if codes.count(c) > 1})
            if dupes:
                errs.append(f"duplicate {label} codes: {', '.join(dupes)}")

        for c in self._cantons:
            if not math.isfinite(c.multiplier) or c.multiplier <= 0:
                errs.append(f"canton {c.code}: multiplier must be positive, got {c.multiplier}")

        for t in self._tariffs:
            if t.points <= 0:
                errs.append(f"tariff {t.code}: points must be positive, got {t.points}")
            if not 0.0 < t.probability <= 1.0:
                errs.append(f"tariff {t.code}: probability must be in (0, 1], got {t.probability}")

        total_p = math.fsum(t.probability for t in self._tariffs)
        if self._tariffs and abs(total_p - 1.0) > PROBABILITY_TOLERANCE:
            errs.append(f"tariff probabilities sum to {total_p!r}, expected 1.0")

        for s in self._supplements:
            if not 0.0 <= s.trigger_probability <= 1.0:
                errs.append(f"supplement {s.code}: trigger probability must be in [0, 1], "
                            f"got {s.trigger_probability}")
            if not isinstance(s.value, (PointAmount, AnnualFlatAmount)):
                errs.append(f"supplement {s.code}: unparsed value {s.value!r}")

        if errs:
            raise ConfigurationError("Invalid reference tables:\n- " + "\n- ".join(errs))


def build_reference_tables(cantons=CANTON_TPW, tariffs=MAIN_TARIFFS,
                           supplements=SUPPLEMENTS) -> ReferenceTables:
    """Build and validate tables from raw tuples (supplement text parsed here)."""
    return ReferenceTables(
        cantons=[CantonMultiplier(code, float(m)) for code, m in cantons],
        tariffs=[TreatmentTariff(code, name, int(pts), float(p))
                 for code, name, pts, p in tariffs],
        supplements=[SupplementRule(code, name, float(p), text, parse_supplement_value(text))
                     for code, name, p, text in supplements],
    )


@lru_cache(maxsize=1)
def load_reference_tables() -> ReferenceTables:
    """The built-in TPW 2024 tables, built once per process."""
    return build_reference_tables()
