"""
stats.py — Class statistics for one series.

Computes:
- Per-subject mean / population std / min / max of composites
- Per-subject stanine cutoffs for distribution grading
- Aggregate-level summary (class average aggregate, spread, percentiles,
  category counts) once students are processed
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

import numpy as np

from core.grading import t_distribution_cutoffs
from core.models import ClassStatistics, GlobalConfig, ProcessedStudent, StudentRecord, SubjectStatistics
from core.normalizer import NormalizedScore, normalize_subject_score

logger = logging.getLogger(__name__)

PERCENTILES = (25, 50, 75, 90)


# ── Helpers ─────────────────────────────────────────────────────────

def _safe_float(val) -> Optional[float]:
    """Convert to float or return None."""
    try:
        v = float(val)
        return None if np.isnan(v) or np.isinf(v) else round(v, 2)
    except (TypeError, ValueError):
        return None


def _sanitize(obj):
    """Recursively coerce numpy scalars to JSON-safe Python types."""
    if isinstance(obj, dict):
        return {k: _sanitize(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_sanitize(v) for v in obj]
    if isinstance(obj, (np.bool_,)):
        return bool(obj)
    if isinstance(obj, (np.integer,)):
        return int(obj)
    if isinstance(obj, (np.floating, float)):
        v = float(obj)
        return None if (np.isnan(v) or np.isinf(v)) else v
    return obj


def population_std(values: Sequence[float]) -> float:
    """Standard deviation over the whole cohort (divide by N)."""
    if len(values) == 0:
        return 0.0
    return float(np.std(np.asarray(values, dtype=float), ddof=0))


def _percentiles(values: Sequence[float]) -> Dict[str, float]:
    if len(values) == 0:
        return {}
    arr = np.asarray(values, dtype=float)
    return {f"p{p}": _safe_float(np.percentile(arr, p)) for p in PERCENTILES}


# ── Subject level ───────────────────────────────────────────────────

def subject_order(records: Iterable[StudentRecord], config: GlobalConfig) -> List[str]:
    """Configured subjects first, then any extra subject seen in the series."""
    seen = []
    for record in records:
        data = record.series(config.active_mock)
        if data is None:
            continue
        for subject in data.subjects:
            if subject not in config.subjects and subject not in seen:
                seen.append(subject)
    return list(config.subjects) + sorted(seen)


def normalize_class(
    records: Sequence[StudentRecord], config: GlobalConfig
) -> Dict[int, Dict[str, NormalizedScore]]:
    """Normalized scores per student id, active series only, recorded subjects only."""
    normalized: Dict[int, Dict[str, NormalizedScore]] = {}
    for record in records:
        data = record.series(config.active_mock)
        scores: Dict[str, NormalizedScore] = {}
        if data is not None:
            for subject, entry in data.subjects.items():
                result = normalize_subject_score(subject, entry, config)
                if result is not None:
                    scores[subject] = result
        normalized[record.id] = scores
    return normalized


def compute_subject_statistics(subject: str, composites: Sequence[float], config: GlobalConfig) -> SubjectStatistics:
    count = len(composites)
    if count == 0:
        return SubjectStatistics(subject=subject, count=0, mean=0.0, std=0.0)

    arr = np.asarray(composites, dtype=float)
    mean = float(arr.mean())
    std = population_std(arr)
    cutoffs = t_distribution_cutoffs(mean, std, count) if config.use_t_distribution else None
    if config.use_t_distribution and cutoffs is None:
        logger.debug("%s: flat or single-score cohort, neutral grade applies.", subject)

    return SubjectStatistics(
        subject=subject,
        count=count,
        mean=mean,
        std=std,
        min=float(arr.min()),
        max=float(arr.max()),
        cutoffs=cutoffs,
        uses_distribution=cutoffs is not None,
    )


def compute_class_statistics(
    records: Sequence[StudentRecord],
    config: GlobalConfig,
    normalized: Optional[Dict[int, Dict[str, NormalizedScore]]] = None,
) -> ClassStatistics:
    """Subject-level statistics for the active series."""
    if normalized is None:
        normalized = normalize_class(records, config)

    subjects: Dict[str, SubjectStatistics] = {}
    for subject in subject_order(records, config):
        composites = [
            scores[subject].composite
            for scores in normalized.values()
            if subject in scores
        ]
        subjects[subject] = compute_subject_statistics(subject, composites, config)

    logger.debug(
        "Statistics for %s: %d students, %d subjects with data.",
        config.active_mock, len(records), sum(1 for s in subjects.values() if s.count),
    )
    return ClassStatistics(
        series=config.active_mock,
        use_t_distribution=config.use_t_distribution,
        subjects=subjects,
        student_count=len(records),
    )


# ── Aggregate level ─────────────────────────────────────────────────

def summarize_class(
    stats: ClassStatistics,
    processed: Sequence[ProcessedStudent],
    config: GlobalConfig,
) -> ClassStatistics:
    """Attach aggregate-level figures; students without results are left out."""
    ranked = [p for p in processed if p.has_results]
    aggregates = [p.best_six_aggregate for p in ranked]
    totals = [p.total_score for p in ranked]

    counts = {t.label: 0 for t in config.category_thresholds}
    for p in ranked:
        counts[p.category] = counts.get(p.category, 0) + 1

    return stats.model_copy(update={
        "student_count": len(processed),
        "ranked_count": len(ranked),
        "class_average_aggregate": _safe_float(np.mean(aggregates)) if aggregates else None,
        "aggregate_std": _safe_float(population_std(aggregates)) if aggregates else None,
        "aggregate_percentiles": _percentiles(aggregates),
        "total_score_percentiles": _percentiles(totals),
        "category_counts": counts,
    })


def statistics_payload(stats: ClassStatistics) -> Dict[str, Any]:
    """JSON-ready view with rounded figures."""
    payload = stats.model_dump(by_alias=True)
    for entry in payload["subjects"].values():
        entry["mean"] = _safe_float(entry["mean"])
        entry["std"] = _safe_float(entry["std"])
        if entry["cutoffs"] is not None:
            entry["cutoffs"] = [_safe_float(c) for c in entry["cutoffs"]]
    return _sanitize(payload)
