"""
Series routes — commit a mock series, trends, growth and cross-institution rank.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from core.aggregator import process_students
from core.ranking import global_rank
from core.series import (
    commit_series,
    previous_series,
    series_progression,
    student_growth,
    subject_growth,
    with_committed,
)
from routes.common import (
    config_from_payload,
    get_store,
    load_institution,
    parse_records,
    records_from_payload,
    save_institution,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _dump(models):
    return [m.model_dump(by_alias=True) for m in models]


@router.post("/commit")
async def commit(payload: dict, store=Depends(get_store)):
    """
    Freeze the active (or named) series into every student's history.
    With an ``institutionId`` the committed records are saved to the store.
    """
    config = config_from_payload(payload)
    series_name = payload.get("series") or config.active_mock
    config = config.model_copy(update={"active_mock": series_name})
    records = records_from_payload(payload, store)

    processed = process_students(records, config)
    committed = commit_series(records, processed, series_name)

    institution_id = payload.get("institutionId")
    if institution_id:
        save_institution(store, institution_id, committed)

    return {
        "series": series_name,
        "committedMocks": with_committed(config, series_name).committed_mocks,
        "students": _dump(committed),
    }


@router.post("/progression/{student_id}")
async def progression(student_id: int, payload: dict, store=Depends(get_store)):
    """Category movement and aggregate trend across committed series."""
    config = config_from_payload(payload)
    records = records_from_payload(payload, store)
    record = next((r for r in records if r.id == student_id), None)
    if record is None:
        raise HTTPException(404, f"Student '{student_id}' not found.")
    return series_progression(record, config, payload.get("seriesNames")).model_dump(by_alias=True)


@router.post("/growth")
async def growth(payload: dict, store=Depends(get_store)):
    """Per-student and per-subject growth between two series."""
    config = config_from_payload(payload)
    records = records_from_payload(payload, store)
    current = payload.get("currentSeries") or config.active_mock
    previous = payload.get("previousSeries") or previous_series(config, current)
    if not previous:
        raise HTTPException(400, f"No committed series before '{current}' to compare with.")

    live = {}
    if current == config.active_mock:
        live = {p.id: p for p in process_students(records, config)}

    return {
        "currentSeries": current,
        "previousSeries": previous,
        "students": _dump(student_growth(r, current, previous, live=live.get(r.id)) for r in records),
        "subjects": _dump(subject_growth(records, s, current, previous, config) for s in config.subjects),
    }


@router.post("/global-rank")
async def global_rank_route(payload: dict, store=Depends(get_store)):
    """
    Rank one student among every institution's committed snapshots.

    Body: ``series``, ``institutionId``, ``studentId`` and either ``pool``
    ({institution id: [students]}) or ``institutionIds`` to load from the store.
    """
    series_name = payload.get("series")
    institution_id = payload.get("institutionId")
    student_id = payload.get("studentId")
    if not series_name or not institution_id or student_id is None:
        raise HTTPException(400, "Provide 'series', 'institutionId' and 'studentId'.")

    if payload.get("pool"):
        pool = {str(inst): parse_records(rows) for inst, rows in payload["pool"].items()}
    elif payload.get("institutionIds"):
        pool = {str(inst): load_institution(store, inst) for inst in payload["institutionIds"]}
    else:
        raise HTTPException(400, "Provide 'pool' or 'institutionIds'.")

    try:
        student_id = int(student_id)
    except (TypeError, ValueError):
        raise HTTPException(400, "'studentId' must be a number.")

    result = global_rank(pool, series_name, institution_id, student_id)
    logger.debug("Global rank for %s/%s in %s: %s of %s.", institution_id, student_id, series_name, result.rank, result.total)
    return result.model_dump(by_alias=True)
