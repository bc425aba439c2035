"""
grading.py — 1-9 grade scale, category bands and series ordering.

Two ways to turn a 0-100 composite into a grade:
  - static: the configured threshold table (highest matching minimum wins)
  - distribution: stanine bands cut from the class mean/std with Student's t

Category labels are looked up from the aggregate (6-54, lower is better).
"""

import re
from typing import TYPE_CHECKING, List, Optional, Sequence, Tuple

from scipy import stats as sp_stats

if TYPE_CHECKING:
    from core.models import CategoryThreshold, GlobalConfig, GradingThreshold, SubjectStatistics


BEST_GRADE = 1
WORST_GRADE = 9

# (min_composite, grade), ordered high to low.
DEFAULT_GRADING_THRESHOLDS = [
    (85.0, 1),
    (75.0, 2),
    (70.0, 3),
    (65.0, 4),
    (60.0, 5),
    (55.0, 6),
    (50.0, 7),
    (40.0, 8),
    (0.0, 9),
]

# (max_aggregate, label), ordered best to worst. Bounds are inclusive.
DEFAULT_CATEGORY_THRESHOLDS = [
    (10, "EXCELLENT"),
    (20, "HIGH"),
    (36, "PASS"),
    (54, "REMEDIAL"),
]

GRADE_DESCRIPTIONS = {
    1: "Highest",
    2: "Higher",
    3: "High",
    4: "High Average",
    5: "Average",
    6: "Low Average",
    7: "Low",
    8: "Lower",
    9: "Lowest",
}

# Cumulative share of the cohort (in percent, from the top) that sits at or
# above grades 1..8. Whatever is left falls in grade 9.
STANINE_SHARES = [4.0, 11.0, 23.0, 40.0, 60.0, 77.0, 89.0, 96.0]

# Below this the distribution is treated as flat.
MIN_STD = 1e-9


def clamp_grade(grade) -> int:
    try:
        value = int(grade)
    except (TypeError, ValueError):
        return WORST_GRADE
    return max(BEST_GRADE, min(WORST_GRADE, value))


def grade_description(grade: int) -> str:
    return GRADE_DESCRIPTIONS[clamp_grade(grade)]


# ── Static thresholds ───────────────────────────────────────────────

def grade_from_thresholds(composite: float, thresholds: Sequence["GradingThreshold"]) -> int:
    """Return the grade of the highest threshold whose minimum the composite reaches."""
    for threshold in thresholds:
        if composite >= threshold.min_score:
            return clamp_grade(threshold.grade)
    return WORST_GRADE


def get_all_grade_thresholds(thresholds: Sequence["GradingThreshold"]) -> List[dict]:
    """Full static scale for legend/reference."""
    scale = []
    for idx, threshold in enumerate(thresholds):
        max_score = 100.0 if idx == 0 else thresholds[idx - 1].min_score - 0.01
        scale.append({
            "min": threshold.min_score,
            "max": round(max_score, 2),
            "grade": clamp_grade(threshold.grade),
            "description": grade_description(threshold.grade),
        })
    return scale


# ── Distribution (T-score) banding ──────────────────────────────────

def t_distribution_cutoffs(mean: float, std: float, count: int) -> Optional[List[float]]:
    """
    Minimum composite for grades 1..8 derived from the cohort.

    Each cutoff is ``mean + t.ppf(1 - share) * std`` with ``count - 1``
    degrees of freedom. Returns None when the cohort cannot be banded
    (fewer than two scores or no spread).
    """
    if count < 2 or std < MIN_STD:
        return None
    dof = count - 1
    return [
        float(mean + sp_stats.t.ppf(1.0 - share / 100.0, dof) * std)
        for share in STANINE_SHARES
    ]


def grade_from_distribution(composite: float, cutoffs: Sequence[float]) -> int:
    for idx, cutoff in enumerate(cutoffs):
        if composite >= cutoff:
            return idx + 1
    return WORST_GRADE


def resolve_grade(
    composite: float,
    subject_stats: Optional["SubjectStatistics"],
    config: "GlobalConfig",
) -> int:
    """
    Grade one composite for one subject.

    Static thresholds apply when distribution grading is off or the subject
    has no recorded cohort. A flat cohort gets the neutral grade.
    """
    if not config.use_t_distribution or subject_stats is None or subject_stats.count == 0:
        return grade_from_thresholds(composite, config.grading_thresholds)
    if subject_stats.std < MIN_STD or not subject_stats.cutoffs:
        return clamp_grade(config.neutral_grade)
    return grade_from_distribution(composite, subject_stats.cutoffs)


# ── Categories ──────────────────────────────────────────────────────

def categorize_aggregate(aggregate: int, thresholds: Sequence["CategoryThreshold"]) -> Tuple[str, int]:
    """
    Map an aggregate to ``(label, weight)``.

    A value equal to a bound belongs to that (better) band. Weight is the
    band's distance from the bottom, so the best band carries the most.
    """
    count = len(thresholds)
    for idx, threshold in enumerate(thresholds):
        if aggregate <= threshold.max_aggregate:
            return threshold.label, count - idx
    return thresholds[-1].label, 1


def category_weight(label: Optional[str], thresholds: Sequence["CategoryThreshold"]) -> int:
    count = len(thresholds)
    for idx, threshold in enumerate(thresholds):
        if threshold.label == label:
            return count - idx
    return 0


# ── Series ordering ─────────────────────────────────────────────────

def sort_series(series_list) -> List[str]:
    """Sort series labels numerically (MOCK 2 before MOCK 10)."""

    def key(name):
        text = str(name).strip()
        nums = re.findall(r"\d+", text)
        return (int(nums[-1]) if nums else 999, text)

    return sorted(series_list, key=key)
