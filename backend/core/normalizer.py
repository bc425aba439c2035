"""
normalizer.py — Raw section/SBA scores to a 0-100 composite.

exam ratio  = (sectionA + sectionB) / (maxSectionA + maxSectionB)
composite   = exam ratio * examWeight + sba / 100 * sbaWeight   (SBA active)
            = exam ratio * 100                                  (otherwise)

SBA counts only when it is enabled, unlocked and recorded for the subject.
Out-of-range inputs are clamped and reported as ClampEvents.
"""

import logging
from typing import List, Optional, Tuple

from core.models import ClampEvent, FrozenModel, GlobalConfig, SubjectScoreEntry

logger = logging.getLogger(__name__)


class NormalizedScore(FrozenModel):
    subject: str
    section_a: float
    section_b: float
    sba_score: Optional[float] = None
    exam_score: float
    composite: float
    sba_applied: bool = False
    clamped: List[ClampEvent] = []


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _clamp_field(
    subject: str, field: str, raw: float, high: float, events: List[ClampEvent]
) -> float:
    value = clamp(raw, 0.0, high)
    if value != raw:
        events.append(ClampEvent(subject=subject, field=field, raw=raw, value=value))
        logger.warning("Clamped %s %s from %s to %s.", subject, field, raw, value)
    return value


def exam_ratio(section_a: float, section_b: float, config: GlobalConfig) -> float:
    return clamp((section_a + section_b) / config.max_exam_total, 0.0, 1.0)


def compose(section_a: float, section_b: float, sba_score: Optional[float], config: GlobalConfig) -> Tuple[float, bool]:
    """Return ``(composite, sba_applied)`` for already-clamped inputs."""
    ratio = exam_ratio(section_a, section_b, config)
    if config.sba.active and sba_score is not None:
        composite = ratio * config.sba.exam_weight + (sba_score / 100.0) * config.sba.sba_weight
        applied = True
    else:
        composite = ratio * 100.0
        applied = False
    return round(clamp(composite, 0.0, 100.0), 2), applied


def normalize_subject_score(
    subject: str,
    entry: Optional[SubjectScoreEntry],
    config: GlobalConfig,
) -> Optional[NormalizedScore]:
    """
    Normalize one subject's raw scores.

    Returns None when the subject has no recorded exam section; such a
    subject is absent from the student's results rather than a zero.
    A single recorded section counts the other as 0.
    """
    if entry is None or not entry.is_recorded:
        return None

    events: List[ClampEvent] = []
    section_a = _clamp_field(subject, "sectionA", entry.section_a or 0.0, config.max_section_a, events)
    section_b = _clamp_field(subject, "sectionB", entry.section_b or 0.0, config.max_section_b, events)
    sba = None
    if entry.sba_score is not None:
        sba = _clamp_field(subject, "sbaScore", entry.sba_score, 100.0, events)

    composite, applied = compose(section_a, section_b, sba, config)
    return NormalizedScore(
        subject=subject,
        section_a=section_a,
        section_b=section_b,
        sba_score=sba,
        exam_score=round(section_a + section_b, 2),
        composite=composite,
        sba_applied=applied,
        clamped=events,
    )
