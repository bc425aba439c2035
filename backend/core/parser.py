"""
parser.py — Score-sheet ingestion (CSV, Excel, ODS).

Supports:
- CSV / .xlsx / .ods files, single and multi-sheet
- Long layout: one row per pupil and subject
- Wide layout: one row per pupil with "<Subject> A", "<Subject> B" and
  optional "<Subject> SBA" columns
- Fuzzy column name mapping
- Merging a sheet into student records for one series
"""

import logging
import re
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import pandas as pd

from core.models import (
    GlobalConfig,
    MockSeriesData,
    StudentRecord,
    SubjectScoreEntry,
)

logger = logging.getLogger(__name__)

COLUMN_ALIASES = {
    "student_id": [
        "student_id", "studentid", "student id", "id", "index_no", "index no",
        "index_number", "index number", "admission_no", "adm_no", "reg_no",
    ],
    "name": [
        "name", "student_name", "student name", "pupil_name", "pupil name",
        "candidate", "candidate_name", "candidate name", "full_name", "full name",
    ],
    "subject": [
        "subject", "subject_name", "subject name", "course", "paper",
    ],
    "section_a": [
        "section_a", "section a", "sectiona", "sec a", "objective", "obj", "paper 1",
    ],
    "section_b": [
        "section_b", "section b", "sectionb", "sec b", "theory", "thy", "paper 2",
    ],
    "sba": [
        "sba", "sba_score", "sba score", "class score", "continuous assessment", "ca",
    ],
    "attendance": [
        "attendance", "days present", "days_present",
    ],
    "conduct": [
        "conduct", "conduct_remark", "conduct remark", "behaviour", "behavior",
    ],
}

METADATA_FIELDS = ("student_id", "name", "attendance", "conduct")

WIDE_SUFFIXES = {
    "section_a": ("a", "obj", "objective", "section a", "sec a"),
    "section_b": ("b", "thy", "theory", "section b", "sec b"),
    "sba": ("sba",),
}

SUPPORTED_EXTENSIONS = (".csv", ".xlsx", ".ods")


def parse_upload(file_path: str) -> Dict[str, pd.DataFrame]:
    """
    Parse an uploaded file and return a dict of {sheet_name: DataFrame}.
    For CSV files, returns {"Sheet1": df}.
    """
    path = Path(file_path)
    ext = path.suffix.lower()

    if ext == ".csv":
        df = pd.read_csv(file_path, dtype=str)
        return {"Sheet1": df}

    if ext in (".xlsx", ".ods"):
        engine = "openpyxl" if ext == ".xlsx" else "odf"
        xls = pd.ExcelFile(file_path, engine=engine)
        sheets = {}
        for sheet_name in xls.sheet_names:
            df = pd.read_excel(xls, sheet_name=sheet_name, dtype=str)
            if not df.empty and len(df.columns) > 1:
                sheets[sheet_name] = df
        if not sheets:
            raise ValueError(f"No valid sheets found in the {ext} file.")
        return sheets

    raise ValueError(f"Unsupported file type: {ext}")


def _normal(col) -> str:
    return re.sub(r"\s+", " ", str(col).lower().replace("_", " ")).strip()


def suggest_column_mapping(df: pd.DataFrame) -> Dict[str, Optional[str]]:
    """
    Suggest a mapping from expected field names to actual column names.
    Returns: { expected_field: actual_column_name_or_None }
    """
    cols_lower = {_normal(c): c for c in df.columns}
    mapping: Dict[str, Optional[str]] = {}
    for field, aliases in COLUMN_ALIASES.items():
        mapping[field] = next(
            (cols_lower[_normal(a)] for a in aliases if _normal(a) in cols_lower),
            None,
        )
    return mapping


def _wide_columns(df: pd.DataFrame, mapping: Dict[str, Optional[str]]) -> Dict[str, Dict[str, str]]:
    """{subject: {field: column}} for wide sheets."""
    taken = {c for c in mapping.values() if c}
    found: Dict[str, Dict[str, str]] = {}
    for col in df.columns:
        if col in taken:
            continue
        label = str(col).strip()
        for field, suffixes in WIDE_SUFFIXES.items():
            match = next(
                (s for s in sorted(suffixes, key=len, reverse=True)
                 if _normal(label).endswith(" " + s) or _normal(label).endswith("(" + s + ")")),
                None,
            )
            if match:
                subject = re.sub(r"[\s(]*" + re.escape(match) + r"\)?$", "", label, flags=re.I).strip(" -_")
                if subject:
                    found.setdefault(subject, {})[field] = col
                break
    return found


def detect_layout(df: pd.DataFrame) -> str:
    """'long' when a subject column exists, 'wide' when per-subject section columns do."""
    mapping = suggest_column_mapping(df)
    if mapping.get("subject"):
        return "long"
    if _wide_columns(df, mapping):
        return "wide"
    return "long"


def convert_wide_to_long(df: pd.DataFrame, mapping: Optional[Dict[str, Optional[str]]] = None) -> pd.DataFrame:
    """Reshape a wide sheet into one row per pupil and subject."""
    mapping = mapping or suggest_column_mapping(df)
    subjects = _wide_columns(df, mapping)
    meta_cols = {field: mapping.get(field) for field in METADATA_FIELDS}

    frames = []
    for subject, cols in subjects.items():
        part = pd.DataFrame(index=df.index)
        for field, col in meta_cols.items():
            if col:
                part[field] = df[col]
        part["subject"] = subject
        for field in WIDE_SUFFIXES:
            part[field] = df[cols[field]] if field in cols else None
        frames.append(part)

    if not frames:
        return df
    return pd.concat(frames, ignore_index=True)


def _standardize(df: pd.DataFrame) -> pd.DataFrame:
    """Long frame with canonical column names."""
    if detect_layout(df) == "wide":
        df = convert_wide_to_long(df)
    mapping = suggest_column_mapping(df)
    renamed = {col: field for field, col in mapping.items() if col and col != field}
    return df.rename(columns=renamed)


def validate_score_sheet(df: pd.DataFrame, config: GlobalConfig) -> List[Dict]:
    """Return a list of issues found in a score sheet."""
    issues = []
    df = _standardize(df)

    for field in ("student_id", "subject"):
        if field not in df.columns:
            issues.append({
                "type": "missing_column",
                "severity": "critical",
                "message": f"Required column '{field}' not found. "
                           f"Expected one of: {COLUMN_ALIASES.get(field, [])}",
            })
    if "section_a" not in df.columns and "section_b" not in df.columns:
        issues.append({
            "type": "missing_column",
            "severity": "critical",
            "message": "No section A or section B score column found.",
        })

    if len(df) == 0:
        issues.append({
            "type": "empty_data",
            "severity": "critical",
            "message": "The uploaded file contains no data rows.",
        })

    limits = {"section_a": config.max_section_a, "section_b": config.max_section_b, "sba": 100.0}
    for field, limit in limits.items():
        if field not in df.columns:
            continue
        raw = df[field]
        blank = raw.isna() | (raw.astype(str).str.strip() == "")
        values = pd.to_numeric(raw, errors="coerce")
        invalid = int((values.isna() & ~blank).sum())
        if invalid > 0:
            issues.append({
                "type": "invalid_scores",
                "severity": "warning",
                "message": f"{invalid} {field} values could not be parsed as numbers.",
            })
        over = int((values > limit).sum())
        if over:
            issues.append({
                "type": "scores_over_max",
                "severity": "warning",
                "message": f"{over} {field} values exceed {limit:g} and will be clamped.",
            })
        if (values < 0).any():
            issues.append({
                "type": "negative_scores",
                "severity": "warning",
                "message": f"Some {field} values are negative and will be clamped to 0.",
            })

    if "student_id" in df.columns and "subject" in df.columns:
        dupes = int(df.duplicated(subset=["student_id", "subject"], keep=False).sum())
        if dupes:
            issues.append({
                "type": "duplicates",
                "severity": "warning",
                "message": f"{dupes} duplicate entries detected (same student + subject); the last one wins.",
            })

    return issues


def _cell(row, field):
    value = row.get(field)
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return None
    text = str(value).strip()
    return text or None


def _student_id(value) -> Optional[int]:
    """Whole value when numeric, otherwise the trailing number ("UBA/007" -> 7)."""
    text = str(value or "").strip()
    try:
        number = float(text)
    except ValueError:
        digits = re.findall(r"\d+", text)
        return int(digits[-1]) if digits else None
    return int(number) if number.is_integer() and number >= 0 else None


def records_from_frame(
    df: pd.DataFrame,
    series_name: str,
    existing: Optional[Sequence[StudentRecord]] = None,
) -> Tuple[List[StudentRecord], List[Dict]]:
    """
    Merge a score sheet into student records for ``series_name``.

    Existing records keep their other series and history; the sheet's
    subjects overwrite the same subjects in this series. New pupils are
    appended. Returns ``(records, skipped_rows)``.
    """
    df = _standardize(df)
    if "student_id" not in df.columns or "subject" not in df.columns:
        raise ValueError("Score sheet needs a student id and a subject column.")

    by_id: Dict[int, StudentRecord] = {r.id: r for r in (existing or [])}
    order: List[int] = [r.id for r in (existing or [])]
    pending: Dict[int, Dict] = {}
    raw_ids: Dict[int, str] = {}
    skipped: List[Dict] = []

    for idx, row in df.iterrows():
        raw_id = _cell(row, "student_id")
        sid = _student_id(raw_id)
        subject = _cell(row, "subject")
        if sid is None or subject is None:
            skipped.append({"row": int(idx) + 2, "reason": "missing student id or subject"})
            continue
        claimed = raw_ids.setdefault(sid, raw_id)
        if claimed != raw_id:
            skipped.append({
                "row": int(idx) + 2,
                "student_id": raw_id,
                "reason": f"student id clashes with '{claimed}' (both read as {sid})",
            })
            continue

        entry = SubjectScoreEntry(
            section_a=_cell(row, "section_a"),
            section_b=_cell(row, "section_b"),
            sba_score=_cell(row, "sba"),
        )
        slot = pending.setdefault(sid, {"name": None, "subjects": {}, "attendance": None, "conduct": None})
        slot["subjects"][subject] = entry
        slot["name"] = slot["name"] or _cell(row, "name")
        slot["attendance"] = _cell(row, "attendance") or slot["attendance"]
        slot["conduct"] = _cell(row, "conduct") or slot["conduct"]

    for sid, slot in pending.items():
        record = by_id.get(sid)
        if record is None:
            record = StudentRecord(id=sid, name=slot["name"] or f"Pupil {sid}")
            order.append(sid)
        current = record.series(series_name) or MockSeriesData()
        subjects = dict(current.subjects)
        subjects.update(slot["subjects"])
        update = {"subjects": subjects}
        if slot["attendance"] is not None:
            try:
                update["attendance"] = float(slot["attendance"])
            except ValueError:
                skipped.append({"student_id": sid, "reason": "attendance is not a number"})
        if slot["conduct"]:
            update["conduct_remark"] = slot["conduct"]
        mock_data = dict(record.mock_data)
        mock_data[series_name] = current.model_copy(update=update)
        by_id[sid] = record.model_copy(update={"mock_data": mock_data})

    logger.info("Imported %d pupils into %s (%d rows skipped).", len(pending), series_name, len(skipped))
    return [by_id[sid] for sid in order], skipped
