"""
report_builder.py — Broad-sheet tables and Excel workbook export.

Builds:
- Broad sheet: one row per pupil, composite + grade per subject, total,
  aggregate, category, rank
- Subject statistics sheet
- Series tracker: committed aggregates / rates / categories per pupil
"""

import logging
from typing import List, Optional, Sequence

import pandas as pd
from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils.dataframe import dataframe_to_rows

from core.grading import sort_series
from core.models import ClassStatistics, GlobalConfig, ProcessedStudent, StudentRecord
from core.series import series_progression
from core.stats import _safe_float

logger = logging.getLogger(__name__)

BRAND_DARK = "1a1a2e"

CATEGORY_FILLS = {
    4: "d5f5e3",  # best band
    3: "d6eaf8",
    2: "fef9e7",
    1: "fadbd8",  # remedial
}

PROGRESSION_MARKS = {"improved": "▲", "declined": "▼", "stable": "▬"}


def build_broadsheet(processed: Sequence[ProcessedStudent], subjects: Sequence[str]) -> pd.DataFrame:
    """Broad sheet for one series, in rank order."""
    rows = []
    for student in processed:
        row = {
            "rank": student.rank,
            "id": student.id,
            "name": student.name,
        }
        for subject in subjects:
            result = student.subjects.get(subject)
            row[f"{subject} score"] = result.composite if result else None
            row[f"{subject} grade"] = result.grade if result else None
        row["total_score"] = student.total_score
        row["aggregate"] = student.best_six_aggregate if student.has_results else None
        row["category"] = student.category or None
        row["complete"] = student.is_complete
        rows.append(row)

    df = pd.DataFrame(rows)
    if df.empty:
        return df
    return df.sort_values(["rank", "id"], na_position="last", kind="stable").reset_index(drop=True)


def build_subject_sheet(stats: ClassStatistics) -> pd.DataFrame:
    rows = []
    for subject, s in stats.subjects.items():
        rows.append({
            "subject": subject,
            "candidates": s.count,
            "mean": _safe_float(s.mean),
            "std": _safe_float(s.std),
            "min": _safe_float(s.min),
            "max": _safe_float(s.max),
            "grading": "distribution" if s.uses_distribution else (
                "neutral" if stats.use_t_distribution and s.count else "thresholds"
            ),
        })
    return pd.DataFrame(rows)


def build_series_sheet(records: Sequence[StudentRecord], config: GlobalConfig) -> pd.DataFrame:
    """One row per pupil with every committed series side by side."""
    names = sort_series(config.committed_mocks)
    rows = []
    for record in records:
        progression = series_progression(record, config, names)
        points = {p.series: p for p in progression.points}
        row = {"id": record.id, "name": record.name}
        for name in names:
            point = points.get(name)
            row[f"{name} aggregate"] = point.aggregate if point else None
            row[f"{name} rate"] = point.rate if point else None
            row[f"{name} category"] = point.category if point else None
            row[f"{name} trend"] = PROGRESSION_MARKS.get(point.progression) if point else None
        row["overall_trend"] = progression.trend
        rows.append(row)
    return pd.DataFrame(rows)


def generate_excel_export(
    output_path: str,
    processed: Sequence[ProcessedStudent],
    stats: ClassStatistics,
    config: GlobalConfig,
    school_name: str,
    records: Optional[Sequence[StudentRecord]] = None,
):
    """Write the broad sheet, subject statistics and (optionally) series tracker."""
    broadsheet = build_broadsheet(processed, list(stats.subjects))
    weights = {p.id: p.category_weight for p in processed}

    header_font = Font(bold=True, color="FFFFFF", size=11)
    header_fill = PatternFill(start_color=BRAND_DARK, end_color=BRAND_DARK, fill_type="solid")
    thin_border = Border(
        left=Side(style="thin"), right=Side(style="thin"),
        top=Side(style="thin"), bottom=Side(style="thin"),
    )

    def _style_sheet(ws, row_weights: Optional[List[int]] = None):
        """Apply formatting to a worksheet."""
        for cell in ws[2]:
            cell.font = header_font
            cell.fill = header_fill
            cell.alignment = Alignment(horizontal="center")
            cell.border = thin_border

        for offset, row in enumerate(ws.iter_rows(min_row=3, max_row=ws.max_row)):
            for cell in row:
                cell.border = thin_border
                cell.alignment = Alignment(horizontal="center")
            if row_weights and offset < len(row_weights):
                color = CATEGORY_FILLS.get(row_weights[offset])
                if color:
                    fill = PatternFill(start_color=color, end_color=color, fill_type="solid")
                    for cell in row:
                        cell.fill = fill

        ws.freeze_panes = "A3"

        for col_cells in ws.iter_cols(min_row=2):
            max_len = max(len(str(cell.value or "")) for cell in col_cells)
            ws.column_dimensions[col_cells[0].column_letter].width = min(max_len + 4, 30)

    def _fill(ws, title: str, dataframe: pd.DataFrame):
        ws.append([f"{school_name} — {title}"])
        ws["A1"].font = Font(bold=True, size=13)
        cleaned = dataframe.astype(object).where(pd.notna(dataframe), None)
        for row in dataframe_to_rows(cleaned, index=False, header=True):
            ws.append(row)

    wb = Workbook()

    # ── Sheet 1: Broad sheet ────────────────────────────────────────
    ws_broad = wb.active
    ws_broad.title = "Broad Sheet"
    ws_broad.sheet_properties.tabColor = BRAND_DARK
    _fill(ws_broad, f"{config.active_mock} Broad Sheet", broadsheet)
    row_weights = [weights.get(i, 0) for i in broadsheet["id"]] if not broadsheet.empty else []
    _style_sheet(ws_broad, row_weights)

    # ── Sheet 2: Subject statistics ─────────────────────────────────
    subject_df = build_subject_sheet(stats)
    ws_subjects = wb.create_sheet(title="Subject Statistics")
    ws_subjects.sheet_properties.tabColor = "0f3460"
    _fill(ws_subjects, f"{config.active_mock} Subject Statistics", subject_df)
    _style_sheet(ws_subjects)

    # ── Sheet 3: Series tracker ─────────────────────────────────────
    if records is not None and config.committed_mocks:
        series_df = build_series_sheet(records, config)
        ws_series = wb.create_sheet(title="Series Tracker")
        ws_series.sheet_properties.tabColor = "2ecc71"
        _fill(ws_series, "Series Tracker", series_df)
        _style_sheet(ws_series)

    wb.save(output_path)
    logger.info("Broad sheet workbook written to %s (%d pupils).", output_path, len(broadsheet))
