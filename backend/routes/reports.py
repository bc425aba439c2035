"""
Report routes — broad sheet as JSON rows and as an Excel workbook.
"""

import json
import uuid
from pathlib import Path

from fastapi import APIRouter, Depends
from fastapi.responses import FileResponse
from starlette.background import BackgroundTask

from core.aggregator import analyze_class
from core.report_builder import build_broadsheet, generate_excel_export
from routes.common import (
    config_from_payload,
    get_store,
    records_from_payload,
    school_name_from_payload,
    staff_from_payload,
)

router = APIRouter()

UPLOAD_DIR = Path(__file__).resolve().parent.parent / "uploads"
REPORTS_DIR = UPLOAD_DIR / "reports"
REPORTS_DIR.mkdir(parents=True, exist_ok=True)


def _safe_unlink(path: str):
    """Remove the generated file once the response is sent."""
    Path(path).unlink(missing_ok=True)


@router.post("/broadsheet")
async def broadsheet(payload: dict, store=Depends(get_store)):
    """Broad sheet rows for the active series, in rank order."""
    config = config_from_payload(payload)
    records = records_from_payload(payload, store)
    staff, _ = staff_from_payload(payload)
    stats, processed = analyze_class(records, config, staff=staff)
    df = build_broadsheet(processed, list(stats.subjects))
    return {
        "series": config.active_mock,
        "columns": list(df.columns),
        "rows": json.loads(df.to_json(orient="records")),
    }


@router.post("/excel")
async def excel_export(payload: dict, store=Depends(get_store)):
    """Broad sheet, subject statistics and series tracker as an Excel workbook."""
    config = config_from_payload(payload)
    records = records_from_payload(payload, store)
    staff, _ = staff_from_payload(payload)
    stats, processed = analyze_class(records, config, staff=staff)

    report_id = str(uuid.uuid4())[:8]
    output_path = REPORTS_DIR / f"broadsheet_{report_id}.xlsx"

    generate_excel_export(
        output_path=str(output_path),
        processed=processed,
        stats=stats,
        config=config,
        school_name=school_name_from_payload(payload),
        records=records,
    )

    return FileResponse(
        str(output_path),
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        filename=f"MockSheet_{config.active_mock.replace(' ', '_')}_{report_id}.xlsx",
        background=BackgroundTask(_safe_unlink, str(output_path)),
    )
