"""
Tests for core/series.py — committing, growth and progression across series.
"""

import os
import sys
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.aggregator import process_students
from core.models import (
    GlobalConfig,
    MockSeriesData,
    SbaConfig,
    SectionScores,
    SeriesSnapshot,
    StudentRecord,
    SubjectScoreEntry,
)
from core.series import (
    commit_series,
    growth_ratio,
    previous_series,
    series_progression,
    series_rate,
    student_growth,
    subject_growth,
    with_committed,
)


def _series(scores):
    return MockSeriesData(subjects={
        s: SubjectScoreEntry(section_a=a, section_b=b) for s, (a, b) in scores.items()
    })


def _snapshot(series, aggregate, total=300.0, sub_scores=None):
    return SeriesSnapshot(
        series=series, aggregate=aggregate, total_score=total,
        category="", is_complete=True,
        sub_scores={s: SectionScores(section_a=a, section_b=b) for s, (a, b) in (sub_scores or {}).items()},
    )


@pytest.fixture
def config():
    return GlobalConfig(sba=SbaConfig(enabled=False), use_t_distribution=False)


@pytest.fixture
def records():
    return [
        StudentRecord(id=1, name="Ama", mock_data={
            "MOCK 1": _series({"Mathematics": (20, 30), "English Language": (20, 40)}),
            "MOCK 2": _series({"Mathematics": (30, 30), "English Language": (20, 40)}),
        }),
        StudentRecord(id=2, name="Kofi", mock_data={
            "MOCK 2": _series({"Mathematics": (30, 30)}),
        }),
        StudentRecord(id=3, name="Esi"),
    ]


class TestCommitSeries:
    """Snapshots are produced only by committing."""

    def test_snapshots_written(self, records, config):
        processed = process_students(records, config)
        committed = commit_series(records, processed, "MOCK 1")
        snapshot = committed[0].series_history["MOCK 1"]
        assert snapshot.aggregate == processed[0].best_six_aggregate
        assert snapshot.composites == {"Mathematics": 50.0, "English Language": 60.0}
        assert snapshot.sub_scores["Mathematics"].section_a == 20
        assert snapshot.rank == 1

    def test_students_without_results_skipped(self, records, config):
        committed = commit_series(records, process_students(records, config), "MOCK 1")
        assert committed[1].series_history == {}
        assert committed[2].series_history == {}

    def test_inputs_untouched(self, records, config):
        commit_series(records, process_students(records, config), "MOCK 1")
        assert records[0].series_history == {}

    def test_recommit_overwrites(self, records, config):
        first = commit_series(records, process_students(records, config), "MOCK 1")
        changed = [first[0].model_copy(update={"mock_data": {
            "MOCK 1": _series({"Mathematics": (40, 60), "English Language": (40, 60)}),
        }})] + first[1:]
        second = commit_series(changed, process_students(changed, config), "MOCK 1")
        assert second[0].series_history["MOCK 1"].total_score == pytest.approx(200.0)

    def test_mismatched_series_is_skipped(self, records, config):
        processed = process_students(records, config)
        committed = commit_series(records, processed, "MOCK 2")
        assert all(r.series_history == {} for r in committed)

    def test_committed_list(self, config):
        updated = with_committed(config, "MOCK 2")
        assert updated.committed_mocks == ["MOCK 2"]
        assert with_committed(updated, "MOCK 2") is updated


class TestGrowth:
    """Ratios of current to previous, 1.0 when there is nothing to compare."""

    @pytest.mark.parametrize("current,previous,expected", [
        (60, 50, 1.2), (None, 50, 1.0), (60, None, 1.0), (60, 0, 1.0), (0, 40, 0.0),
    ])
    def test_growth_ratio(self, current, previous, expected):
        assert growth_ratio(current, previous) == pytest.approx(expected)

    def test_subject_growth(self, records, config):
        growth = subject_growth(records, "Mathematics", "MOCK 2", "MOCK 1", config)
        assert growth.current_mean == pytest.approx(60.0)
        assert growth.previous_mean == pytest.approx(50.0)
        assert growth.composite_growth == pytest.approx(1.2)
        assert growth.objective_growth == pytest.approx(1.5)
        assert growth.theory_growth == pytest.approx(1.0)
        assert growth.current_count == 2
        assert growth.previous_count == 1

    def test_subject_growth_without_previous(self, records, config):
        growth = subject_growth(records, "Mathematics", "MOCK 2", None, config)
        assert growth.composite_growth == 1.0
        assert growth.previous_mean is None

    def test_student_growth_from_snapshots(self):
        record = StudentRecord(id=1, name="Ama", series_history={
            "MOCK 1": _snapshot("MOCK 1", 20, total=400.0).model_copy(update={"composites": {"Mathematics": 50.0}}),
            "MOCK 2": _snapshot("MOCK 2", 15, total=500.0).model_copy(update={"composites": {"Mathematics": 60.0, "French": 70.0}}),
        })
        growth = student_growth(record, "MOCK 2", "MOCK 1")
        assert growth.total_growth == pytest.approx(1.25)
        assert growth.subjects["Mathematics"] == pytest.approx(1.2)
        assert growth.subjects["French"] == 1.0

    def test_student_growth_uses_live_results(self, records, config):
        committed = commit_series(records, process_students(records, config), "MOCK 1")
        live_config = config.model_copy(update={"active_mock": "MOCK 2"})
        live = process_students(committed, live_config)
        by_id = {p.id: p for p in live}
        growth = student_growth(committed[0], "MOCK 2", "MOCK 1", live=by_id[1])
        assert growth.total_growth == pytest.approx(120.0 / 110.0)

    def test_previous_series(self):
        config = GlobalConfig(active_mock="MOCK 3", committed_mocks=["MOCK 2", "MOCK 1"])
        assert previous_series(config) == "MOCK 2"
        assert previous_series(config, "MOCK 2") == "MOCK 1"
        assert previous_series(config, "MOCK 1") is None


class TestProgression:
    """Category movement across committed series."""

    def test_improving_pupil(self, config):
        record = StudentRecord(id=1, name="Ama", series_history={
            "MOCK 1": _snapshot("MOCK 1", 30),
            "MOCK 2": _snapshot("MOCK 2", 18),
            "MOCK 3": _snapshot("MOCK 3", 9),
        })
        cfg = config.model_copy(update={"committed_mocks": ["MOCK 3", "MOCK 1", "MOCK 2"]})
        result = series_progression(record, cfg)
        assert [p.category for p in result.points] == ["PASS", "HIGH", "EXCELLENT"]
        assert [p.progression for p in result.points] == [None, "improved", "improved"]
        assert result.slope == pytest.approx(10.5)
        assert result.trend == "improving"

    def test_declining_and_stable(self, config):
        record = StudentRecord(id=1, name="Ama", series_history={
            "MOCK 1": _snapshot("MOCK 1", 12),
            "MOCK 2": _snapshot("MOCK 2", 14),
            "MOCK 3": _snapshot("MOCK 3", 25),
        })
        cfg = config.model_copy(update={"committed_mocks": ["MOCK 1", "MOCK 2", "MOCK 3"]})
        result = series_progression(record, cfg)
        assert [p.progression for p in result.points] == [None, "stable", "declined"]
        assert result.trend == "declining"

    def test_single_point_is_insufficient(self, config):
        record = StudentRecord(id=1, name="Ama", series_history={"MOCK 1": _snapshot("MOCK 1", 20)})
        cfg = config.model_copy(update={"committed_mocks": ["MOCK 1"]})
        result = series_progression(record, cfg)
        assert len(result.points) == 1
        assert result.trend == "insufficient_data"
        assert result.slope is None

    def test_uncommitted_series_skipped(self, config):
        record = StudentRecord(id=1, name="Ama", series_history={"MOCK 2": _snapshot("MOCK 2", 20)})
        cfg = config.model_copy(update={"committed_mocks": ["MOCK 1", "MOCK 2"]})
        assert [p.series for p in series_progression(record, cfg).points] == ["MOCK 2"]

    def test_series_rate(self, config):
        snapshot = _snapshot("MOCK 1", 20, sub_scores={"Mathematics": (30, 50), "French": (10, 10)})
        # 100 raw marks out of 10 subjects x 100
        assert series_rate(snapshot, config) == pytest.approx(10.0)
