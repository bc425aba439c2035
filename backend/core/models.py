"""
models.py — Typed records shared by the computation modules.

Working data (StudentRecord and its mock series) is what score entry edits.
SeriesSnapshot is the frozen copy written by committing a series.
ProcessedStudent / ClassStatistics are derived on every read and never stored.

All models are immutable and serialise with camelCase aliases so payloads
from the browser client (``sectionA``, ``mockData``...) load unchanged.
"""

import logging
import math
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from core.grading import (
    DEFAULT_CATEGORY_THRESHOLDS,
    DEFAULT_GRADING_THRESHOLDS,
    clamp_grade,
)

logger = logging.getLogger(__name__)

DEFAULT_CORE_SUBJECTS = [
    "English Language",
    "Mathematics",
    "Integrated Science",
    "Social Studies",
]

DEFAULT_SUBJECTS = DEFAULT_CORE_SUBJECTS + [
    "Career Technology",
    "Creative Arts and Design",
    "Ghanaian Language",
    "Religious and Moral Education",
    "Computing",
    "French",
]

DEFAULT_MAX_SECTION_A = 40.0
DEFAULT_MAX_SECTION_B = 60.0


class FrozenModel(BaseModel):
    """Immutable base with camelCase aliases."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


def _nan_to_none(value):
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(number) or math.isinf(number) else number


def _take(data: Dict[str, Any], name: str, default):
    """Pop a field given by name or by its camelCase alias."""
    alias = to_camel(name)
    if name in data:
        return data.pop(name)
    if alias in data:
        return data.pop(alias)
    return default


# ── Configuration ───────────────────────────────────────────────────

class GradingThreshold(FrozenModel):
    min_score: float
    grade: int

    @field_validator("grade", mode="before")
    @classmethod
    def _grade_in_range(cls, value):
        return clamp_grade(value)


class CategoryThreshold(FrozenModel):
    max_aggregate: int
    label: str


class SbaConfig(FrozenModel):
    enabled: bool = True
    is_locked: bool = False
    sba_weight: float = 30.0
    exam_weight: float = 70.0

    @model_validator(mode="before")
    @classmethod
    def _rescale_weights(cls, data):
        if not isinstance(data, dict):
            return data
        data = dict(data)
        sba = max(0.0, float(_take(data, "sba_weight", 30.0) or 0.0))
        exam = max(0.0, float(_take(data, "exam_weight", 70.0) or 0.0))
        total = sba + exam
        if total <= 0:
            logger.warning("SBA and exam weights are both non-positive; using exam-only weighting.")
            sba, exam = 0.0, 100.0
        elif abs(total - 100.0) > 1e-9:
            logger.warning("SBA/exam weights %.2f/%.2f do not sum to 100; rescaling.", sba, exam)
            sba, exam = sba / total * 100.0, exam / total * 100.0
        data["sba_weight"] = sba
        data["exam_weight"] = exam
        return data

    @property
    def active(self) -> bool:
        return self.enabled and not self.is_locked


def _default_grading_thresholds():
    return [GradingThreshold(min_score=m, grade=g) for m, g in DEFAULT_GRADING_THRESHOLDS]


def _default_category_thresholds():
    return [CategoryThreshold(max_aggregate=m, label=l) for m, l in DEFAULT_CATEGORY_THRESHOLDS]


class GlobalConfig(FrozenModel):
    """Read-only settings for one computation."""

    grading_thresholds: List[GradingThreshold] = Field(default_factory=_default_grading_thresholds)
    category_thresholds: List[CategoryThreshold] = Field(default_factory=_default_category_thresholds)
    sba: SbaConfig = Field(default_factory=SbaConfig)
    max_section_a: float = DEFAULT_MAX_SECTION_A
    max_section_b: float = DEFAULT_MAX_SECTION_B
    use_t_distribution: bool = True
    active_mock: str = "MOCK 1"
    committed_mocks: List[str] = Field(default_factory=list)
    core_subjects: List[str] = Field(default_factory=lambda: list(DEFAULT_CORE_SUBJECTS))
    subjects: List[str] = Field(default_factory=lambda: list(DEFAULT_SUBJECTS))
    neutral_grade: int = 5
    attendance_total: Optional[float] = None

    @field_validator("grading_thresholds")
    @classmethod
    def _monotonic_grades(cls, value: List[GradingThreshold]):
        if not value:
            return _default_grading_thresholds()
        ordered = sorted(value, key=lambda t: t.min_score, reverse=True)
        fixed = []
        worst_so_far = 1
        for threshold in ordered:
            grade = max(threshold.grade, worst_so_far)
            worst_so_far = grade
            fixed.append(GradingThreshold(min_score=threshold.min_score, grade=grade))
        if fixed != list(value):
            logger.warning("Grading thresholds were not monotonic; reordered.")
        return fixed

    @field_validator("category_thresholds")
    @classmethod
    def _ordered_categories(cls, value: List[CategoryThreshold]):
        if not value:
            return _default_category_thresholds()
        ordered = sorted(value, key=lambda t: t.max_aggregate)
        if ordered != list(value):
            logger.warning("Category thresholds were not ascending; reordered.")
        return ordered

    @field_validator("max_section_a", "max_section_b", mode="before")
    @classmethod
    def _positive_maximum(cls, value, info):
        default = DEFAULT_MAX_SECTION_A if info.field_name == "max_section_a" else DEFAULT_MAX_SECTION_B
        number = _nan_to_none(value)
        if number is None or number <= 0:
            logger.warning("%s=%r is not a positive number; using %.0f.", info.field_name, value, default)
            return default
        return number

    @field_validator("neutral_grade", mode="before")
    @classmethod
    def _neutral_in_range(cls, value):
        return clamp_grade(value)

    @property
    def max_exam_total(self) -> float:
        return self.max_section_a + self.max_section_b

    def is_core(self, subject: str) -> bool:
        return subject in self.core_subjects


# ── Working records ─────────────────────────────────────────────────

class SubjectScoreEntry(FrozenModel):
    """Raw scores for one subject in one series."""

    section_a: Optional[float] = None
    section_b: Optional[float] = None
    sba_score: Optional[float] = None

    @field_validator("section_a", "section_b", "sba_score", mode="before")
    @classmethod
    def _blank_is_missing(cls, value):
        return _nan_to_none(value)

    @property
    def is_recorded(self) -> bool:
        return self.section_a is not None or self.section_b is not None


class Observations(FrozenModel):
    facilitator: str = ""
    invigilator: str = ""
    examiner: str = ""


class MockSeriesData(FrozenModel):
    subjects: Dict[str, SubjectScoreEntry] = Field(default_factory=dict)
    attendance: Optional[float] = None
    conduct_remark: str = ""
    observations: Observations = Field(default_factory=Observations)
    facilitator_remarks: Dict[str, str] = Field(default_factory=dict)


class SectionScores(FrozenModel):
    section_a: float = 0.0
    section_b: float = 0.0


class SeriesSnapshot(FrozenModel):
    """Frozen result of one committed series."""

    series: str
    aggregate: int
    total_score: float
    rank: Optional[int] = None
    category: str
    is_complete: bool
    composites: Dict[str, float] = Field(default_factory=dict)
    grades: Dict[str, int] = Field(default_factory=dict)
    sub_scores: Dict[str, SectionScores] = Field(default_factory=dict)


class BeceResult(FrozenModel):
    year: str
    grades: Dict[str, int] = Field(default_factory=dict)


class StudentRecord(FrozenModel):
    id: int
    name: str
    mock_data: Dict[str, MockSeriesData] = Field(default_factory=dict)
    series_history: Dict[str, SeriesSnapshot] = Field(default_factory=dict)
    bece_results: Dict[str, BeceResult] = Field(default_factory=dict)

    def series(self, name: str) -> Optional[MockSeriesData]:
        return self.mock_data.get(name)


# ── Derived values ──────────────────────────────────────────────────

class ClampEvent(FrozenModel):
    subject: str
    field: str
    raw: float
    value: float


class SubjectResult(FrozenModel):
    subject: str
    section_a: float
    section_b: float
    sba_score: Optional[float] = None
    exam_score: float
    composite: float
    grade: int
    grade_description: str
    is_core: bool
    facilitator: str = ""


class ProcessedStudent(FrozenModel):
    id: int
    name: str
    series: str
    subjects: Dict[str, SubjectResult] = Field(default_factory=dict)
    best_six_subjects: List[str] = Field(default_factory=list)
    best_six_aggregate: int = 0
    total_score: float = 0.0
    rank: Optional[int] = None
    category: str = ""
    category_weight: int = 0
    is_complete: bool = False
    missing_subjects: List[str] = Field(default_factory=list)
    attendance: Optional[float] = None
    attendance_rate: Optional[float] = None
    conduct_remark: str = ""
    observations: Observations = Field(default_factory=Observations)
    clamped: List[ClampEvent] = Field(default_factory=list)

    @property
    def has_results(self) -> bool:
        return bool(self.subjects)


class SubjectStatistics(FrozenModel):
    subject: str
    count: int
    mean: float
    std: float
    min: Optional[float] = None
    max: Optional[float] = None
    cutoffs: Optional[List[float]] = None
    uses_distribution: bool = False


class ClassStatistics(FrozenModel):
    series: str
    use_t_distribution: bool
    subjects: Dict[str, SubjectStatistics] = Field(default_factory=dict)
    student_count: int = 0
    ranked_count: int = 0
    class_average_aggregate: Optional[float] = None
    aggregate_std: Optional[float] = None
    aggregate_percentiles: Dict[str, float] = Field(default_factory=dict)
    total_score_percentiles: Dict[str, float] = Field(default_factory=dict)
    category_counts: Dict[str, int] = Field(default_factory=dict)
