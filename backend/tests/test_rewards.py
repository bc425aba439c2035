"""
Tests for core/rewards.py — TEI, BECE significant difference, pupil and school rankings.
"""

import os
import sys
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.aggregator import process_students
from core.models import (
    BeceResult,
    GlobalConfig,
    MockSeriesData,
    SbaConfig,
    SeriesSnapshot,
    StudentRecord,
    SubjectScoreEntry,
)
from core.rewards import (
    SeriesSummary,
    facilitator_rewards,
    pupil_rewards,
    school_strength_ranking,
    series_summary,
    sig_diff_ranking,
)


def _series(scores):
    return MockSeriesData(subjects={
        s: SubjectScoreEntry(section_a=a, section_b=b) for s, (a, b) in scores.items()
    })


@pytest.fixture
def config():
    return GlobalConfig(
        sba=SbaConfig(enabled=False),
        use_t_distribution=False,
        active_mock="MOCK 2",
        committed_mocks=["MOCK 1"],
    )


@pytest.fixture
def records():
    return [
        StudentRecord(id=1, name="Ama", mock_data={
            "MOCK 1": _series({"Mathematics": (20, 30)}),
            "MOCK 2": _series({
                "Mathematics": (30, 30),
                "Integrated Science": (40, 60),
                "English Language": (20, 20),
            }),
        }),
    ]


class TestFacilitatorRewards:
    """Teaching Efficiency Index per subject facilitator."""

    def test_tei_and_ranking(self, records, config):
        staff = {"Mathematics": "Mr. Mensah", "Integrated Science": "Ms. Owusu", "English Language": ""}
        rewards = facilitator_rewards(records, config, staff, reward_pool=100)
        assert [r.subject for r in rewards] == ["Mathematics", "Integrated Science"]

        maths = rewards[0]
        assert maths.grade_factor == pytest.approx(4.0)
        assert maths.composite_growth == pytest.approx(1.2)
        assert maths.objective_growth == pytest.approx(1.5)
        assert maths.theory_growth == pytest.approx(1.0)
        assert maths.tei == pytest.approx(7.2)
        assert maths.rank == 1

        science = rewards[1]
        assert science.grade_factor == pytest.approx(1.0)
        assert science.tei == pytest.approx(1.0)
        assert science.rank == 2

    def test_reward_pool_shared_by_tei(self, records, config):
        staff = {"Mathematics": "Mr. Mensah", "Integrated Science": "Ms. Owusu"}
        rewards = facilitator_rewards(records, config, staff, reward_pool=100)
        assert rewards[0].share == pytest.approx(87.8, abs=0.01)
        assert rewards[1].share == pytest.approx(12.2, abs=0.01)

    def test_no_pool_no_share(self, records, config):
        rewards = facilitator_rewards(records, config, {"Mathematics": "Mr. Mensah"})
        assert rewards[0].share == 0.0

    def test_staff_ids_carried(self, records, config):
        rewards = facilitator_rewards(
            records, config, {"Mathematics": "Mr. Mensah"}, staff_ids={"Mathematics": "UBA/STF/004"},
        )
        assert rewards[0].staff_id == "UBA/STF/004"

    def test_subject_without_pupils_skipped(self, records, config):
        assert facilitator_rewards(records, config, {"French": "Mme. Boateng"}) == []


class TestSigDiff:
    """Mock standard mean minus mean BECE grade."""

    @pytest.fixture
    def bece_records(self):
        return [
            StudentRecord(id=1, name="Ama", bece_results={
                "2024": BeceResult(year="2024", grades={"Mathematics": 2, "English Language": 4}),
            }),
            StudentRecord(id=2, name="Kofi", bece_results={
                "2024": BeceResult(year="2024", grades={"Mathematics": 4, "English Language": 6}),
            }),
        ]

    def test_ranking(self, bece_records):
        entries = sig_diff_ranking(bece_records, ["English Language", "Mathematics", "Integrated Science"], "2024")
        assert [(e.subject, e.sig_diff, e.rank) for e in entries] == [
            ("Mathematics", 2.5, 1),
            ("English Language", 0.5, 2),
            ("Integrated Science", 0.0, 3),
        ]

    def test_subject_without_results(self, bece_records):
        entry = sig_diff_ranking(bece_records, ["French"], "2024")[0]
        assert entry.bece_mean_grade == 9.0
        assert entry.candidates == 0

    def test_other_year_ignored(self, bece_records):
        entry = sig_diff_ranking(bece_records, ["Mathematics"], "2023")[0]
        assert entry.candidates == 0

    def test_custom_standard(self, bece_records):
        entry = sig_diff_ranking(bece_records, ["Mathematics"], "2024", mock_standard_mean=4.0)[0]
        assert entry.sig_diff == pytest.approx(1.0)


class TestPupilRewards:
    """Committed aggregates, uncommitted pupils last."""

    def _committed(self, sid, aggregate, total):
        snapshot = SeriesSnapshot(
            series="MOCK 1", aggregate=aggregate, total_score=total,
            category="HIGH", is_complete=True,
        )
        return StudentRecord(id=sid, name=f"Pupil {sid}", series_history={"MOCK 1": snapshot})

    def test_ranking(self):
        records = [
            StudentRecord(id=9, name="Uncommitted"),
            self._committed(3, 20, 350),
            self._committed(2, 12, 400),
            self._committed(1, 12, 400),
        ]
        pupils = pupil_rewards(records, "MOCK 1")
        assert [(p.student_id, p.rank) for p in pupils] == [(1, 1), (2, 1), (3, 3), (9, 4)]
        assert pupils[-1].aggregate == 54
        assert pupils[-1].committed is False


class TestSchoolStrength:
    """Composite average over aggregate average."""

    def test_series_summary(self, records, config):
        summary = series_summary(process_students(records, config))
        assert summary.series == "MOCK 2"
        assert summary.student_count == 1
        assert summary.avg_composite == pytest.approx(66.67)

    def test_series_summary_empty(self, config):
        assert series_summary(process_students([StudentRecord(id=1, name="New")], config)) is None

    def test_ranking(self):
        histories = {
            "CBA-2025-001": [SeriesSummary(series="MOCK 1", avg_composite=60, avg_aggregate=20, student_count=30)],
            "KSA-2025-014": [
                SeriesSummary(series="MOCK 1", avg_composite=40, avg_aggregate=10, student_count=25),
                SeriesSummary(series="MOCK 2", avg_composite=60, avg_aggregate=10, student_count=25),
            ],
            "NEW-2025-100": [],
        }
        schools = school_strength_ranking(histories)
        assert [(s.institution_id, s.rank) for s in schools] == [
            ("KSA-2025-014", 1), ("CBA-2025-001", 2), ("NEW-2025-100", 3),
        ]
        assert schools[0].strength_index == pytest.approx(50.0)
        assert schools[1].strength_index == pytest.approx(30.0)
        assert schools[2].strength_index == 0.0
