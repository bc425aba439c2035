"""
aggregator.py — Best-six aggregate, categories and the class pipeline.

Pipeline for the active series:
  records -> normalized composites -> class statistics -> grades
          -> best-six aggregate + category -> merit ranks

Best six = every core subject the student sat plus the best electives
(lowest grade, then highest composite, then name) up to six subjects.
"""

import logging
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from core.grading import categorize_aggregate, grade_description, resolve_grade
from core.models import (
    ClampEvent,
    ClassStatistics,
    GlobalConfig,
    ProcessedStudent,
    StudentRecord,
    SubjectResult,
)
from core.normalizer import NormalizedScore
from core.ranking import assign_ranks
from core.stats import compute_class_statistics, normalize_class, subject_order, summarize_class

logger = logging.getLogger(__name__)

BEST_SIX = 6


def select_best_six(results: Mapping[str, SubjectResult], config: GlobalConfig) -> Tuple[List[str], bool]:
    """
    Pick the subjects that make up the aggregate.

    Returns ``(subjects, is_complete)``. The selection is incomplete when a
    core subject is missing or fewer than six subjects were recorded.
    """
    cores = [s for s in config.core_subjects if s in results][:BEST_SIX]
    electives = sorted(
        (r for s, r in results.items() if s not in cores and not config.is_core(s)),
        key=lambda r: (r.grade, -r.composite, r.subject),
    )
    selected = cores + [r.subject for r in electives[: BEST_SIX - len(cores)]]
    complete = len(selected) == BEST_SIX and all(s in results for s in config.core_subjects)
    return selected, complete


def process_student(
    record: StudentRecord,
    scores: Mapping[str, NormalizedScore],
    stats: ClassStatistics,
    config: GlobalConfig,
    staff: Optional[Mapping[str, str]] = None,
    order: Optional[Sequence[str]] = None,
) -> ProcessedStudent:
    """Grade and aggregate one student. Rank is filled in by the ranker."""
    staff = staff or {}
    order = order or list(scores)

    results: Dict[str, SubjectResult] = {}
    clamped: List[ClampEvent] = []
    for subject in order:
        score = scores.get(subject)
        if score is None:
            continue
        grade = resolve_grade(score.composite, stats.subjects.get(subject), config)
        results[subject] = SubjectResult(
            subject=subject,
            section_a=score.section_a,
            section_b=score.section_b,
            sba_score=score.sba_score,
            exam_score=score.exam_score,
            composite=score.composite,
            grade=grade,
            grade_description=grade_description(grade),
            is_core=config.is_core(subject),
            facilitator=staff.get(subject, "") or "",
        )
        clamped.extend(score.clamped)

    selected, complete = select_best_six(results, config)
    aggregate = sum(results[s].grade for s in selected)
    total = round(sum(r.composite for r in results.values()), 2)

    if results:
        category, weight = categorize_aggregate(aggregate, config.category_thresholds)
    else:
        category, weight = "", 0

    extra = {}
    data = record.series(config.active_mock)
    if data is not None:
        extra = {
            "attendance": data.attendance,
            "conduct_remark": data.conduct_remark,
            "observations": data.observations,
        }
        if data.attendance is not None and config.attendance_total:
            rate = min(data.attendance / config.attendance_total, 1.0) * 100
            extra["attendance_rate"] = round(rate, 2)

    return ProcessedStudent(
        id=record.id,
        name=record.name,
        series=config.active_mock,
        subjects=results,
        best_six_subjects=selected,
        best_six_aggregate=aggregate,
        total_score=total,
        category=category,
        category_weight=weight,
        is_complete=complete,
        missing_subjects=[s for s in config.subjects if s not in results],
        clamped=clamped,
        **extra,
    )


def process_students(
    records: Sequence[StudentRecord],
    config: GlobalConfig,
    stats: Optional[ClassStatistics] = None,
    staff: Optional[Mapping[str, str]] = None,
    normalized: Optional[Dict[int, Dict[str, NormalizedScore]]] = None,
) -> List[ProcessedStudent]:
    """Process and rank every student for the active series, in merit order."""
    if normalized is None:
        normalized = normalize_class(records, config)
    if stats is None:
        stats = compute_class_statistics(records, config, normalized=normalized)

    order = subject_order(records, config)
    processed = [
        process_student(record, normalized.get(record.id, {}), stats, config, staff=staff, order=order)
        for record in records
    ]
    incomplete = sum(1 for p in processed if p.has_results and not p.is_complete)
    if incomplete:
        logger.info("%d of %d students have an incomplete best-six in %s.", incomplete, len(processed), config.active_mock)
    return assign_ranks(processed)


def analyze_class(
    records: Sequence[StudentRecord],
    config: GlobalConfig,
    staff: Optional[Mapping[str, str]] = None,
) -> Tuple[ClassStatistics, List[ProcessedStudent]]:
    """Statistics and ranked students for the active series in one pass."""
    normalized = normalize_class(records, config)
    stats = compute_class_statistics(records, config, normalized=normalized)
    processed = process_students(records, config, stats=stats, staff=staff, normalized=normalized)
    return summarize_class(stats, processed, config), processed


def class_average_aggregate(processed: Sequence[ProcessedStudent]) -> Optional[float]:
    aggregates = [p.best_six_aggregate for p in processed if p.has_results]
    if not aggregates:
        return None
    return round(float(np.mean(aggregates)), 2)
