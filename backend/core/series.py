"""
series.py — Committed series history and trend analysis.

- commit_series: freeze the processed results of a series into each
  student's history (the only producer of SeriesSnapshot)
- growth_ratio / student_growth / subject_growth: current vs previous
- series_progression: category movement across committed series plus an
  overall least-squares trend of aggregates
"""

import logging
from typing import Dict, List, Optional, Sequence

import numpy as np

from core.grading import categorize_aggregate, sort_series
from core.models import (
    FrozenModel,
    GlobalConfig,
    ProcessedStudent,
    SectionScores,
    SeriesSnapshot,
    StudentRecord,
)
from core.normalizer import normalize_subject_score

logger = logging.getLogger(__name__)

# Aggregate slope (points per series) beyond which a trend is not "stable".
TREND_SLOPE = 0.5


class SubjectGrowth(FrozenModel):
    subject: str
    current_mean: Optional[float] = None
    previous_mean: Optional[float] = None
    composite_growth: float = 1.0
    objective_growth: float = 1.0
    theory_growth: float = 1.0
    current_count: int = 0
    previous_count: int = 0


class StudentGrowth(FrozenModel):
    student_id: int
    current_series: str
    previous_series: str
    current_total: Optional[float] = None
    previous_total: Optional[float] = None
    total_growth: float = 1.0
    subjects: Dict[str, float] = {}


class ProgressionPoint(FrozenModel):
    series: str
    aggregate: int
    rank: Optional[int] = None
    rate: float
    category: str
    weight: int
    progression: Optional[str] = None


class SeriesProgression(FrozenModel):
    student_id: int
    points: List[ProgressionPoint] = []
    slope: Optional[float] = None
    trend: str = "insufficient_data"


# ── Commit ──────────────────────────────────────────────────────────

def _snapshot(processed: ProcessedStudent, series_name: str) -> SeriesSnapshot:
    return SeriesSnapshot(
        series=series_name,
        aggregate=processed.best_six_aggregate,
        total_score=processed.total_score,
        rank=processed.rank,
        category=processed.category,
        is_complete=processed.is_complete,
        composites={s: r.composite for s, r in processed.subjects.items()},
        grades={s: r.grade for s, r in processed.subjects.items()},
        sub_scores={
            s: SectionScores(section_a=r.section_a, section_b=r.section_b)
            for s, r in processed.subjects.items()
        },
    )


def commit_series(
    records: Sequence[StudentRecord],
    processed: Sequence[ProcessedStudent],
    series_name: Optional[str] = None,
) -> List[StudentRecord]:
    """
    Freeze processed results into ``series_history``.

    Returns new records; the inputs are left untouched. Committing the same
    series again replaces its snapshot. Students with no results in the
    processed set keep their history as is.
    """
    by_id = {p.id: p for p in processed}
    name = series_name or (processed[0].series if processed else None)
    if name is None:
        return list(records)

    committed: List[StudentRecord] = []
    skipped = 0
    for record in records:
        result = by_id.get(record.id)
        if result is None or not result.has_results or result.series != name:
            skipped += 1
            committed.append(record)
            continue
        if name in record.series_history:
            logger.info("Re-committing %s for student %s.", name, record.id)
        history = dict(record.series_history)
        history[name] = _snapshot(result, name)
        committed.append(record.model_copy(update={"series_history": history}))

    logger.info("Committed %s for %d students (%d skipped).", name, len(records) - skipped, skipped)
    return committed


def with_committed(config: GlobalConfig, series_name: str) -> GlobalConfig:
    """Configuration listing ``series_name`` among the committed series."""
    if series_name in config.committed_mocks:
        return config
    mocks = sort_series(list(config.committed_mocks) + [series_name])
    return config.model_copy(update={"committed_mocks": mocks})


def previous_series(config: GlobalConfig, series_name: Optional[str] = None) -> Optional[str]:
    """The committed series immediately before ``series_name`` (default: active)."""
    name = series_name or config.active_mock
    ordered = sort_series(config.committed_mocks)
    if name in ordered:
        idx = ordered.index(name)
        return ordered[idx - 1] if idx > 0 else None
    earlier = [m for m in ordered if sort_series([m, name])[0] == m]
    return earlier[-1] if earlier else None


# ── Growth ──────────────────────────────────────────────────────────

def growth_ratio(current: Optional[float], previous: Optional[float]) -> float:
    """current / previous, or exactly 1.0 when either side is missing or previous is 0."""
    if current is None or previous is None:
        return 1.0
    try:
        current, previous = float(current), float(previous)
    except (TypeError, ValueError):
        return 1.0
    if previous == 0 or np.isnan(previous) or np.isnan(current):
        return 1.0
    return current / previous


def student_growth(
    record: StudentRecord,
    current_series: str,
    previous_series: str,
    live: Optional[ProcessedStudent] = None,
) -> StudentGrowth:
    """
    Growth of one student's composite totals between two series.

    Values come from committed snapshots. ``live`` stands in for the
    current series when it has not been committed yet.
    """
    current = record.series_history.get(current_series)
    previous = record.series_history.get(previous_series)

    current_total: Optional[float] = None
    current_composites: Dict[str, float] = {}
    if current is not None:
        current_total = current.total_score
        current_composites = dict(current.composites)
    elif live is not None and live.series == current_series and live.has_results:
        current_total = live.total_score
        current_composites = {s: r.composite for s, r in live.subjects.items()}

    previous_total = previous.total_score if previous is not None else None
    previous_composites = previous.composites if previous is not None else {}

    return StudentGrowth(
        student_id=record.id,
        current_series=current_series,
        previous_series=previous_series,
        current_total=current_total,
        previous_total=previous_total,
        total_growth=growth_ratio(current_total, previous_total),
        subjects={
            subject: growth_ratio(value, previous_composites.get(subject))
            for subject, value in current_composites.items()
        },
    )


def _subject_means(records: Sequence[StudentRecord], subject: str, series_name: str, config: GlobalConfig):
    composites, section_a, section_b = [], [], []
    for record in records:
        data = record.series(series_name)
        if data is None:
            continue
        score = normalize_subject_score(subject, data.subjects.get(subject), config)
        if score is None:
            continue
        composites.append(score.composite)
        section_a.append(score.section_a)
        section_b.append(score.section_b)
    if not composites:
        return None
    return {
        "count": len(composites),
        "composite": float(np.mean(composites)),
        "section_a": float(np.mean(section_a)),
        "section_b": float(np.mean(section_b)),
    }


def subject_growth(
    records: Sequence[StudentRecord],
    subject: str,
    current_series: str,
    previous_series: Optional[str],
    config: GlobalConfig,
) -> SubjectGrowth:
    """Class-level growth of one subject's composite, objective and theory means."""
    current = _subject_means(records, subject, current_series, config)
    previous = _subject_means(records, subject, previous_series, config) if previous_series else None
    if current is None:
        return SubjectGrowth(subject=subject)
    if previous is None:
        return SubjectGrowth(
            subject=subject,
            current_mean=round(current["composite"], 2),
            current_count=current["count"],
        )
    return SubjectGrowth(
        subject=subject,
        current_mean=round(current["composite"], 2),
        previous_mean=round(previous["composite"], 2),
        composite_growth=growth_ratio(current["composite"], previous["composite"]),
        objective_growth=growth_ratio(current["section_a"], previous["section_a"]),
        theory_growth=growth_ratio(current["section_b"], previous["section_b"]),
        current_count=current["count"],
        previous_count=previous["count"],
    )


# ── Progression ─────────────────────────────────────────────────────

def series_rate(snapshot: SeriesSnapshot, config: GlobalConfig) -> float:
    """Raw exam marks as a percentage of every configured subject's maximum."""
    total = sum(s.section_a + s.section_b for s in snapshot.sub_scores.values())
    possible = len(config.subjects) * config.max_exam_total
    if possible <= 0:
        return 0.0
    return round(total / possible * 100, 1)


def _direction(current: int, previous: int) -> str:
    if current > previous:
        return "improved"
    if current < previous:
        return "declined"
    return "stable"


def series_progression(
    record: StudentRecord,
    config: GlobalConfig,
    series_names: Optional[Sequence[str]] = None,
) -> SeriesProgression:
    """
    Category movement across committed series, oldest first.

    Progression compares category weights with the previous committed
    point; the overall trend is the negated slope of aggregates so that a
    falling aggregate reads as improving.
    """
    names = sort_series(series_names if series_names is not None else config.committed_mocks)
    points: List[ProgressionPoint] = []
    previous_weight = None
    for name in names:
        snapshot = record.series_history.get(name)
        if snapshot is None:
            continue
        label, weight = categorize_aggregate(snapshot.aggregate, config.category_thresholds)
        points.append(ProgressionPoint(
            series=name,
            aggregate=snapshot.aggregate,
            rank=snapshot.rank,
            rate=series_rate(snapshot, config),
            category=label,
            weight=weight,
            progression=_direction(weight, previous_weight) if previous_weight is not None else None,
        ))
        previous_weight = weight

    if len(points) < 2:
        return SeriesProgression(student_id=record.id, points=points)

    x = np.arange(len(points))
    y = np.array([p.aggregate for p in points], dtype=float)
    slope = -float(np.polyfit(x, y, 1)[0])
    trend = "improving" if slope > TREND_SLOPE else "declining" if slope < -TREND_SLOPE else "stable"
    return SeriesProgression(student_id=record.id, points=points, slope=round(slope, 3), trend=trend)
