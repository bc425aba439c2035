"""
Tests for core/ranking.py — merit order, competition ranks, global rank.
"""

import os
import sys
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.models import ProcessedStudent, SeriesSnapshot, StudentRecord, SubjectResult
from core.ranking import assign_ranks, competition_ranks, global_rank, merit_sort_key

MOCK = "MOCK 1"


def _processed(sid, aggregate, total):
    result = SubjectResult(
        subject="Mathematics", section_a=20, section_b=30, exam_score=50,
        composite=50, grade=5, grade_description="Average", is_core=True,
    )
    return ProcessedStudent(
        id=sid, name=f"Pupil {sid}", series=MOCK,
        subjects={"Mathematics": result},
        best_six_aggregate=aggregate, total_score=total,
    )


def _committed(sid, aggregate, total, series=MOCK):
    snapshot = SeriesSnapshot(
        series=series, aggregate=aggregate, total_score=total,
        category="PASS", is_complete=True,
    )
    return StudentRecord(id=sid, name=f"Pupil {sid}", series_history={series: snapshot})


class TestAssignRanks:
    """Aggregate asc, total score desc, id asc."""

    def test_total_score_breaks_aggregate_tie(self):
        ranked = assign_ranks([_processed(1, 15, 390), _processed(2, 15, 420)])
        assert [(p.id, p.rank) for p in ranked] == [(2, 1), (1, 2)]

    def test_competition_ranking(self):
        ranked = assign_ranks([
            _processed(5, 12, 300),
            _processed(3, 10, 300),
            _processed(1, 10, 300),
        ])
        assert [(p.id, p.rank) for p in ranked] == [(1, 1), (3, 1), (5, 3)]

    def test_lower_aggregate_wins(self):
        ranked = assign_ranks([_processed(1, 20, 500), _processed(2, 8, 100)])
        assert ranked[0].id == 2

    def test_incomplete_ranked_on_subset_aggregate(self):
        partial = _processed(2, 1, 90)
        complete = _processed(1, 6, 540).model_copy(update={"is_complete": True})
        ranked = assign_ranks([complete, partial])
        assert [(p.id, p.rank, p.is_complete) for p in ranked] == [(2, 1, False), (1, 2, True)]

    def test_unranked_appended(self):
        empty = ProcessedStudent(id=9, name="New", series=MOCK)
        ranked = assign_ranks([empty, _processed(1, 10, 300)])
        assert [(p.id, p.rank) for p in ranked] == [(1, 1), (9, None)]

    def test_ranks_are_dense_from_one(self):
        ranked = assign_ranks([_processed(i, 6 + i, 300) for i in range(5)])
        assert [p.rank for p in ranked] == [1, 2, 3, 4, 5]

    def test_total_rounding_does_not_split_ties(self):
        ranked = assign_ranks([_processed(1, 10, 300.001), _processed(2, 10, 300.004)])
        assert [p.rank for p in ranked] == [1, 1]

    def test_sort_key(self):
        assert merit_sort_key(_processed(4, 15, 420)) == (15, -420.0, 4)

    def test_competition_ranks(self):
        assert competition_ranks(["a", "a", "b", "c", "c", "d"]) == [1, 1, 3, 4, 4, 6]
        assert competition_ranks([]) == []


class TestGlobalRank:
    """Committed snapshots pooled across institutions."""

    @pytest.fixture
    def pool(self):
        return {
            "CBA-2025-001": [_committed(1, 12, 400), _committed(2, 20, 350)],
            "KSA-2025-014": [_committed(1, 12, 410), _committed(7, 30, 200)],
        }

    def test_rank_across_institutions(self, pool):
        result = global_rank(pool, MOCK, "CBA-2025-001", 1)
        assert result.rank == 2
        assert result.total == 4
        assert result.aggregate == 12

    def test_same_student_id_in_other_institution(self, pool):
        assert global_rank(pool, MOCK, "KSA-2025-014", 1).rank == 1

    def test_uncommitted_student(self, pool):
        pool["CBA-2025-001"].append(StudentRecord(id=3, name="Live only"))
        result = global_rank(pool, MOCK, "CBA-2025-001", 3)
        assert result.rank is None
        assert result.total == 4

    def test_other_series_not_pooled(self, pool):
        pool["KSA-2025-014"].append(_committed(8, 6, 500, series="MOCK 2"))
        assert global_rank(pool, MOCK, "CBA-2025-001", 2).rank == 3

    def test_empty_pool(self):
        result = global_rank({}, MOCK, "CBA-2025-001", 1)
        assert result.rank is None
        assert result.total == 0
