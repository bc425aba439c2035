"""
Upload routes — score-sheet preview and import into a mock series.
"""

import json
import logging
import uuid
from pathlib import Path
from typing import Optional

import pandas as pd
from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from core.parser import (
    SUPPORTED_EXTENSIONS,
    detect_layout,
    parse_upload,
    records_from_frame,
    suggest_column_mapping,
    validate_score_sheet,
)
from routes.common import (
    config_from_payload,
    get_store,
    parse_records,
    save_institution,
)

logger = logging.getLogger(__name__)

router = APIRouter()

# Keep upload path stable regardless of process working directory.
UPLOAD_DIR = Path(__file__).resolve().parent.parent / "uploads"
UPLOAD_DIR.mkdir(exist_ok=True)


def _df_records(df):
    """JSON-safe rows; NaN becomes null."""
    return json.loads(df.to_json(orient="records"))


def _json_form(value: Optional[str], field: str, default):
    if not value:
        return default
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        raise HTTPException(400, f"Invalid JSON in '{field}'.")


async def _read_sheets(file: UploadFile):
    """Save the upload, parse every sheet, and always remove the temp file."""
    ext = Path(file.filename or "").suffix.lower()
    if ext not in SUPPORTED_EXTENSIONS:
        raise HTTPException(400, f"Unsupported file type: {ext}. Use CSV, Excel (.xlsx) or ODS.")

    save_path = UPLOAD_DIR / f"{uuid.uuid4()}{ext}"
    try:
        with open(save_path, "wb") as f:
            while True:
                chunk = await file.read(1024 * 1024)
                if not chunk:
                    break
                f.write(chunk)
        return parse_upload(str(save_path))
    except Exception as e:
        logger.warning("Could not parse upload %s: %s", file.filename, e)
        raise HTTPException(400, f"Failed to process upload '{file.filename}': {e}")
    finally:
        save_path.unlink(missing_ok=True)


@router.post("/preview")
async def preview(file: UploadFile = File(...)):
    """Detected layout, suggested column mapping and the first rows of each sheet."""
    sheets = await _read_sheets(file)
    first = next(iter(sheets.values()))
    return {
        "filename": file.filename,
        "sheets": list(sheets.keys()),
        "sheet_row_counts": {k: len(v) for k, v in sheets.items()},
        "layout": detect_layout(first),
        "suggested_mapping": suggest_column_mapping(first),
        "columns": [str(c) for c in first.columns],
        "preview": _df_records(first.head(10)),
    }


@router.post("/scores")
async def import_scores(
    file: UploadFile = File(...),
    series: Optional[str] = Form(None),
    students: Optional[str] = Form(None),
    config: Optional[str] = Form(None),
    institution_id: Optional[str] = Form(None, alias="institutionId"),
    store=Depends(get_store),
):
    """
    Import a score sheet into one mock series.

    ``students`` (JSON) holds the existing records to merge into; every
    sheet of the workbook is read. With ``institutionId`` the merged records
    are saved to the store.
    """
    cfg = config_from_payload({"config": _json_form(config, "config", {})})
    series_name = series or cfg.active_mock
    existing = parse_records(_json_form(students, "students", []))

    sheets = await _read_sheets(file)
    df = pd.concat(sheets.values(), ignore_index=True) if len(sheets) > 1 else next(iter(sheets.values()))

    issues = validate_score_sheet(df, cfg)
    if any(i["severity"] == "critical" for i in issues):
        return {"series": series_name, "issues": issues, "students": [], "skipped": []}

    try:
        records, skipped = records_from_frame(df, series_name, existing=existing)
    except ValueError as e:
        raise HTTPException(400, str(e))

    if institution_id:
        save_institution(store, institution_id, records)

    logger.info("Upload '%s' imported into %s: %d records.", file.filename, series_name, len(records))
    return {
        "series": series_name,
        "issues": issues,
        "skipped": skipped,
        "students": [r.model_dump(by_alias=True) for r in records],
    }
