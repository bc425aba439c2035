"""
rewards.py — Staff and pupil reward rankings built on series results.

- Teaching Efficiency Index (TEI) per facilitator:
      grade factor x composite growth x objective growth x theory growth
  with grade factor = max(1, 10 - mean composite / 10); a reward pool is
  shared in proportion to TEI.
- Significant difference per subject: mock standard mean minus the mean
  external (BECE) grade; larger is better.
- Pupil rewards from committed aggregates.
- Institution strength index from per-series summaries.
"""

import logging
from typing import List, Mapping, Optional, Sequence

import numpy as np

from core.models import FrozenModel, GlobalConfig, ProcessedStudent, StudentRecord
from core.ranking import competition_ranks, merit_key
from core.series import previous_series, subject_growth

logger = logging.getLogger(__name__)

MOCK_STANDARD_MEAN = 5.5
WORST_AGGREGATE = 54


class FacilitatorReward(FrozenModel):
    subject: str
    name: str
    staff_id: str = ""
    mean_composite: float
    grade_factor: float
    composite_growth: float
    objective_growth: float
    theory_growth: float
    tei: float
    rank: int = 0
    share: float = 0.0


class SigDiffEntry(FrozenModel):
    subject: str
    bece_mean_grade: float
    candidates: int
    sig_diff: float
    rank: int = 0


class PupilReward(FrozenModel):
    student_id: int
    name: str
    aggregate: int
    total_score: Optional[float] = None
    committed: bool
    rank: int = 0


class SeriesSummary(FrozenModel):
    series: str
    avg_composite: float
    avg_aggregate: float
    student_count: int


class SchoolStrength(FrozenModel):
    institution_id: str
    composite_avg: float
    aggregate_avg: float
    series_count: int
    strength_index: float
    rank: int = 0


# ── Facilitators ────────────────────────────────────────────────────

def facilitator_rewards(
    records: Sequence[StudentRecord],
    config: GlobalConfig,
    staff: Mapping[str, str],
    previous_mock: Optional[str] = None,
    reward_pool: float = 0.0,
    staff_ids: Optional[Mapping[str, str]] = None,
) -> List[FacilitatorReward]:
    """
    Rank facilitators of the active series by TEI.

    Subjects without a named facilitator or without recorded pupils are
    skipped. ``previous_mock`` defaults to the committed series before the
    active one; with none, every growth factor is 1.0.
    """
    staff_ids = staff_ids or {}
    if previous_mock is None:
        previous_mock = previous_series(config)

    rewards = []
    for subject in config.subjects:
        name = (staff.get(subject) or "").strip()
        if not name:
            continue
        growth = subject_growth(records, subject, config.active_mock, previous_mock, config)
        if growth.current_count == 0:
            continue
        grade_factor = max(1.0, 10.0 - growth.current_mean / 10.0)
        tei = grade_factor * growth.composite_growth * growth.objective_growth * growth.theory_growth
        rewards.append(FacilitatorReward(
            subject=subject,
            name=name,
            staff_id=staff_ids.get(subject, ""),
            mean_composite=growth.current_mean,
            grade_factor=round(grade_factor, 4),
            composite_growth=round(growth.composite_growth, 4),
            objective_growth=round(growth.objective_growth, 4),
            theory_growth=round(growth.theory_growth, 4),
            tei=round(tei, 4),
        ))

    rewards.sort(key=lambda r: (-r.tei, r.subject))
    ranks = competition_ranks([r.tei for r in rewards])
    total_tei = sum(r.tei for r in rewards)
    pool = max(0.0, float(reward_pool or 0.0))
    return [
        r.model_copy(update={
            "rank": rank,
            "share": round(r.tei / total_tei * pool, 2) if total_tei > 0 else 0.0,
        })
        for r, rank in zip(rewards, ranks)
    ]


# ── External exam comparison ────────────────────────────────────────

def sig_diff_ranking(
    records: Sequence[StudentRecord],
    subjects: Sequence[str],
    year: str,
    mock_standard_mean: float = MOCK_STANDARD_MEAN,
) -> List[SigDiffEntry]:
    """Compare the mock standard with each subject's mean BECE grade for ``year``."""
    entries = []
    for subject in subjects:
        grades = []
        for record in records:
            result = record.bece_results.get(str(year))
            if result is None:
                continue
            grade = result.grades.get(subject)
            if grade:
                grades.append(grade)
        if grades:
            mean_grade = float(np.mean(grades))
            sig_diff = mock_standard_mean - mean_grade
        else:
            mean_grade, sig_diff = 9.0, 0.0
        entries.append(SigDiffEntry(
            subject=subject,
            bece_mean_grade=round(mean_grade, 2),
            candidates=len(grades),
            sig_diff=round(sig_diff, 2),
        ))

    entries.sort(key=lambda e: (-e.sig_diff, e.subject))
    ranks = competition_ranks([e.sig_diff for e in entries])
    return [e.model_copy(update={"rank": r}) for e, r in zip(entries, ranks)]


# ── Pupils ──────────────────────────────────────────────────────────

def pupil_rewards(records: Sequence[StudentRecord], series_name: str) -> List[PupilReward]:
    """Pupils by committed aggregate for a series; uncommitted pupils rank last."""
    pupils = []
    for record in records:
        snapshot = record.series_history.get(series_name)
        pupils.append(PupilReward(
            student_id=record.id,
            name=record.name,
            aggregate=snapshot.aggregate if snapshot else WORST_AGGREGATE,
            total_score=snapshot.total_score if snapshot else None,
            committed=snapshot is not None,
        ))

    def key(p: PupilReward):
        return (not p.committed,) + merit_key(p.aggregate, p.total_score or 0.0)

    pupils.sort(key=lambda p: key(p) + (p.student_id,))
    ranks = competition_ranks([key(p) for p in pupils])
    return [p.model_copy(update={"rank": r}) for p, r in zip(pupils, ranks)]


# ── Institutions ────────────────────────────────────────────────────

def series_summary(processed: Sequence[ProcessedStudent]) -> Optional[SeriesSummary]:
    """Institution-level summary of one processed series."""
    sat = [p for p in processed if p.has_results]
    if not sat:
        return None
    composites = [r.composite for p in sat for r in p.subjects.values()]
    return SeriesSummary(
        series=sat[0].series,
        avg_composite=round(float(np.mean(composites)), 2),
        avg_aggregate=round(float(np.mean([p.best_six_aggregate for p in sat])), 2),
        student_count=len(sat),
    )


def school_strength_ranking(histories: Mapping[str, Sequence[SeriesSummary]]) -> List[SchoolStrength]:
    """Rank institutions by composite average over aggregate average."""
    schools = []
    for inst_id, history in histories.items():
        count = len(history)
        composite_avg = float(np.mean([h.avg_composite for h in history])) if count else 0.0
        aggregate_avg = float(np.mean([h.avg_aggregate for h in history])) if count else 0.0
        strength = composite_avg / (aggregate_avg or 1.0) * 10
        schools.append(SchoolStrength(
            institution_id=str(inst_id),
            composite_avg=round(composite_avg, 2),
            aggregate_avg=round(aggregate_avg, 2),
            series_count=count,
            strength_index=round(strength, 4),
        ))

    schools.sort(key=lambda s: (-s.strength_index, s.institution_id))
    ranks = competition_ranks([s.strength_index for s in schools])
    return [s.model_copy(update={"rank": r}) for s, r in zip(schools, ranks)]
