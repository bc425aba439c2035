"""
Rewards routes — facilitator TEI, BECE significant difference, pupil and school rankings.
"""

from typing import Dict, List

from fastapi import APIRouter, Depends, HTTPException
from fastapi.exceptions import RequestValidationError
from pydantic import TypeAdapter, ValidationError

from core.aggregator import process_students
from core.grading import sort_series
from core.rewards import (
    SeriesSummary,
    facilitator_rewards,
    pupil_rewards,
    school_strength_ranking,
    series_summary,
    sig_diff_ranking,
)
from routes.common import (
    config_from_payload,
    get_store,
    parse_records,
    records_from_payload,
    staff_from_payload,
)

router = APIRouter()

_histories_adapter = TypeAdapter(Dict[str, List[SeriesSummary]])


def _dump(models):
    return [m.model_dump(by_alias=True) for m in models]


@router.post("/facilitators")
async def facilitators(payload: dict, store=Depends(get_store)):
    """Teaching Efficiency Index per subject facilitator, with reward pool shares."""
    config = config_from_payload(payload)
    records = records_from_payload(payload, store)
    staff, staff_ids = staff_from_payload(payload)
    if not staff:
        raise HTTPException(400, "No facilitators provided.")
    try:
        pool = float(payload.get("rewardPool") or 0)
    except (TypeError, ValueError):
        raise HTTPException(400, "'rewardPool' must be a number.")
    return _dump(facilitator_rewards(
        records, config, staff,
        previous_mock=payload.get("previousMock"),
        reward_pool=pool,
        staff_ids=staff_ids,
    ))


@router.post("/sig-diff")
async def sig_diff(payload: dict, store=Depends(get_store)):
    """Subjects ranked by mock standard minus mean BECE grade."""
    year = payload.get("year")
    if not year:
        raise HTTPException(400, "Provide the BECE 'year'.")
    config = config_from_payload(payload)
    records = records_from_payload(payload, store)
    subjects = payload.get("subjects") or config.subjects
    mean = payload.get("mockStandardMean")
    kwargs = {"mock_standard_mean": float(mean)} if mean is not None else {}
    return _dump(sig_diff_ranking(records, subjects, str(year), **kwargs))


@router.post("/pupils")
async def pupils(payload: dict, store=Depends(get_store)):
    """Pupils ranked by committed aggregate for a series."""
    config = config_from_payload(payload)
    records = records_from_payload(payload, store)
    committed = sort_series(config.committed_mocks)
    series_name = payload.get("series") or (committed[-1] if committed else config.active_mock)
    return {"series": series_name, "pupils": _dump(pupil_rewards(records, series_name))}


def _histories_from_pool(pool: dict, config) -> Dict[str, List[SeriesSummary]]:
    histories: Dict[str, List[SeriesSummary]] = {}
    for inst_id, rows in pool.items():
        records = parse_records(rows)
        summaries = []
        for name in sort_series(config.committed_mocks or [config.active_mock]):
            processed = process_students(records, config.model_copy(update={"active_mock": name}))
            summary = series_summary(processed)
            if summary is not None:
                summaries.append(summary)
        histories[str(inst_id)] = summaries
    return histories


@router.post("/schools")
async def schools(payload: dict):
    """
    Institutions ranked by strength index.

    Body: ``histories`` ({institution id: [series summaries]}) or ``pool``
    ({institution id: [students]}) summarised over the committed series.
    """
    if payload.get("histories"):
        try:
            histories = _histories_adapter.validate_python(payload["histories"])
        except ValidationError as exc:
            raise RequestValidationError(exc.errors(include_url=False)) from exc
    elif payload.get("pool"):
        histories = _histories_from_pool(payload["pool"], config_from_payload(payload))
    else:
        raise HTTPException(400, "Provide 'histories' or 'pool'.")
    return _dump(school_strength_ranking(histories))
