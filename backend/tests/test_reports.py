"""
Tests for core/report_builder.py — broad-sheet frames and the Excel workbook.
"""

import os
import sys
import pytest
from openpyxl import load_workbook

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.aggregator import analyze_class
from core.models import GlobalConfig, MockSeriesData, SbaConfig, StudentRecord, SubjectScoreEntry
from core.report_builder import (
    build_broadsheet,
    build_series_sheet,
    build_subject_sheet,
    generate_excel_export,
)
from core.series import commit_series, with_committed

SCHOOL_NAME = "Test School"


def _record(sid, scores, series="MOCK 1"):
    subjects = {s: SubjectScoreEntry(section_a=a, section_b=b) for s, (a, b) in scores.items()}
    return StudentRecord(id=sid, name=f"Pupil {sid}", mock_data={series: MockSeriesData(subjects=subjects)})


@pytest.fixture
def config():
    return GlobalConfig(sba=SbaConfig(enabled=False), use_t_distribution=False)


@pytest.fixture
def records():
    return [
        _record(1, {"Mathematics": (20, 30), "English Language": (20, 30)}),
        _record(2, {"Mathematics": (38, 55), "English Language": (35, 50)}),
        StudentRecord(id=3, name="Absent Pupil"),
    ]


@pytest.fixture
def analysis(records, config):
    return analyze_class(records, config)


class TestBuildBroadsheet:
    """One row per pupil, rank order."""

    def test_rank_order(self, analysis):
        stats, processed = analysis
        df = build_broadsheet(processed, list(stats.subjects))
        assert list(df["id"]) == [2, 1, 3]
        assert df["rank"].iloc[0] == 1

    def test_columns(self, analysis):
        stats, processed = analysis
        df = build_broadsheet(processed, list(stats.subjects))
        for col in ("Mathematics score", "Mathematics grade", "total_score", "aggregate", "category", "complete"):
            assert col in df.columns

    def test_unrecorded_cells_blank(self, analysis):
        stats, processed = analysis
        df = build_broadsheet(processed, list(stats.subjects))
        absent = df[df["id"] == 3].iloc[0]
        assert absent["aggregate"] is None or absent["aggregate"] != absent["aggregate"]

    def test_empty(self):
        assert build_broadsheet([], ["Mathematics"]).empty

    def test_subject_sheet(self, analysis):
        stats, _ = analysis
        df = build_subject_sheet(stats)
        maths = df[df["subject"] == "Mathematics"].iloc[0]
        assert maths["candidates"] == 2
        assert maths["grading"] == "thresholds"


class TestBuildSeriesSheet:
    def test_committed_series_columns(self, records, analysis, config):
        _, processed = analysis
        committed = commit_series(records, processed, "MOCK 1")
        df = build_series_sheet(committed, with_committed(config, "MOCK 1"))
        assert "MOCK 1 aggregate" in df.columns
        assert "overall_trend" in df.columns
        assert df.loc[df["id"] == 1, "MOCK 1 aggregate"].iloc[0] == processed[1].best_six_aggregate


class TestGenerateExcelExport:
    """Workbook is written with the expected sheets."""

    def test_creates_workbook(self, tmp_path, analysis, config):
        stats, processed = analysis
        path = tmp_path / "broadsheet.xlsx"
        generate_excel_export(str(path), processed, stats, config, SCHOOL_NAME)
        wb = load_workbook(path)
        assert wb.sheetnames == ["Broad Sheet", "Subject Statistics"]
        ws = wb["Broad Sheet"]
        assert SCHOOL_NAME in ws["A1"].value
        assert ws["A2"].value == "rank"
        assert ws.freeze_panes == "A3"

    def test_series_tracker_sheet(self, tmp_path, records, analysis, config):
        stats, processed = analysis
        committed = commit_series(records, processed, "MOCK 1")
        path = tmp_path / "broadsheet.xlsx"
        generate_excel_export(
            str(path), processed, stats, with_committed(config, "MOCK 1"), SCHOOL_NAME, records=committed,
        )
        assert "Series Tracker" in load_workbook(path).sheetnames

    def test_no_tracker_without_commits(self, tmp_path, records, analysis, config):
        stats, processed = analysis
        path = tmp_path / "broadsheet.xlsx"
        generate_excel_export(str(path), processed, stats, config, SCHOOL_NAME, records=records)
        assert "Series Tracker" not in load_workbook(path).sheetnames
