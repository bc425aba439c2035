"""
Analyze routes — process the active series: grades, aggregates, ranks, statistics.
"""

from fastapi import APIRouter, Depends, HTTPException

from core.aggregator import analyze_class
from core.grading import categorize_aggregate, get_all_grade_thresholds
from core.stats import _sanitize, statistics_payload
from routes.common import (
    config_from_payload,
    get_store,
    records_from_payload,
    staff_from_payload,
)

router = APIRouter()


def _analyze(payload: dict, store):
    config = config_from_payload(payload)
    records = records_from_payload(payload, store)
    staff, _ = staff_from_payload(payload)
    stats, processed = analyze_class(records, config, staff=staff)
    return config, stats, processed


@router.post("/process")
async def process(payload: dict, store=Depends(get_store)):
    """Grade, aggregate and rank every student for the active series."""
    _, stats, processed = _analyze(payload, store)
    return {
        "statistics": statistics_payload(stats),
        "students": [_sanitize(p.model_dump(by_alias=True)) for p in processed],
    }


@router.post("/statistics")
async def statistics(payload: dict, store=Depends(get_store)):
    """Per-subject and aggregate-level statistics for the active series."""
    _, stats, _ = _analyze(payload, store)
    return statistics_payload(stats)


@router.post("/student/{student_id}")
async def student_result(student_id: int, payload: dict, store=Depends(get_store)):
    """One processed student, ranked within the class."""
    _, _, processed = _analyze(payload, store)
    for student in processed:
        if student.id == student_id:
            return _sanitize(student.model_dump(by_alias=True))
    raise HTTPException(404, f"Student '{student_id}' not found.")


@router.get("/grading-scale")
async def grading_scale():
    """Static grade scale and aggregate categories from the default configuration."""
    config = config_from_payload({})
    categories = []
    lower = 6
    for threshold in config.category_thresholds:
        label, weight = categorize_aggregate(threshold.max_aggregate, config.category_thresholds)
        categories.append({
            "label": label,
            "minAggregate": lower,
            "maxAggregate": threshold.max_aggregate,
            "weight": weight,
        })
        lower = threshold.max_aggregate + 1
    return {
        "useTDistribution": config.use_t_distribution,
        "neutralGrade": config.neutral_grade,
        "grades": get_all_grade_thresholds(config.grading_thresholds),
        "categories": categories,
    }
