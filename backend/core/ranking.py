"""
ranking.py — Merit order and competition ranks.

Order: aggregate ascending, total score descending, then id ascending.
Equal (aggregate, total score) pairs share a rank and the next distinct
pair resumes at its position ("1, 1, 3").
"""

import logging
from typing import Hashable, List, Mapping, Optional, Sequence, Tuple

from core.models import FrozenModel, ProcessedStudent, StudentRecord

logger = logging.getLogger(__name__)


class GlobalRank(FrozenModel):
    institution_id: str
    student_id: int
    series: str
    rank: Optional[int] = None
    total: int = 0
    aggregate: Optional[int] = None


def merit_key(aggregate: int, total_score: float) -> Tuple[int, float]:
    """The part of the order that decides a shared rank."""
    return (int(aggregate), -round(float(total_score), 2))


def competition_ranks(keys: Sequence[Hashable]) -> List[int]:
    """Ranks for keys that are already in merit order."""
    ranks: List[int] = []
    for position, key in enumerate(keys):
        if position > 0 and key == keys[position - 1]:
            ranks.append(ranks[-1])
        else:
            ranks.append(position + 1)
    return ranks


def merit_sort_key(student: ProcessedStudent) -> Tuple[int, float, int]:
    """Full sort key: aggregate asc, total score desc, id asc."""
    return merit_key(student.best_six_aggregate, student.total_score) + (student.id,)


def assign_ranks(processed: Sequence[ProcessedStudent]) -> List[ProcessedStudent]:
    """
    Return students in merit order with ranks filled in.

    Students without any recorded subject are appended unranked.

    Incomplete students are ranked on the aggregate of the subjects they
    sat, so a pupil with one grade-1 subject (aggregate 1) ranks above a
    complete pupil on aggregate 6. Check ``is_complete`` before treating a
    rank or category as comparable.
    """
    with_results = [p for p in processed if p.has_results]
    without = sorted((p for p in processed if not p.has_results), key=lambda p: p.id)

    ordered = sorted(with_results, key=merit_sort_key)
    ranks = competition_ranks([merit_key(p.best_six_aggregate, p.total_score) for p in ordered])

    ranked = [p.model_copy(update={"rank": r}) for p, r in zip(ordered, ranks)]
    ranked.extend(p.model_copy(update={"rank": None}) for p in without)
    return ranked


def global_rank(
    pool: Mapping[str, Sequence[StudentRecord]],
    series_name: str,
    institution_id: str,
    student_id: int,
) -> GlobalRank:
    """
    Rank one student among every institution's committed snapshot of a series.

    ``pool`` maps institution identifier to that institution's records.
    Only committed snapshots count; live scores never enter the pool.
    """
    entries = []
    for inst_id, records in pool.items():
        for record in records:
            snapshot = record.series_history.get(series_name)
            if snapshot is None:
                continue
            entries.append((
                merit_key(snapshot.aggregate, snapshot.total_score),
                str(inst_id),
                record.id,
                snapshot.aggregate,
            ))

    entries.sort(key=lambda e: (e[0], e[1], e[2]))
    ranks = competition_ranks([e[0] for e in entries])

    for (key, inst_id, sid, aggregate), rank in zip(entries, ranks):
        if inst_id == str(institution_id) and sid == student_id:
            return GlobalRank(
                institution_id=inst_id, student_id=sid, series=series_name,
                rank=rank, total=len(entries), aggregate=aggregate,
            )

    logger.debug("Student %s of %s has no committed %s snapshot.", student_id, institution_id, series_name)
    return GlobalRank(
        institution_id=str(institution_id), student_id=student_id,
        series=series_name, total=len(entries),
    )
