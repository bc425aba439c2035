"""
Shared request helpers — config merging, record loading, staff lookup, store.
"""

import logging
import os
from typing import Any, Dict, List, Optional, Tuple

from fastapi import HTTPException
from fastapi.exceptions import RequestValidationError
from pydantic import TypeAdapter, ValidationError
from pydantic.alias_generators import to_snake

from core.models import GlobalConfig, StudentRecord
from core.store import PayloadStore, StoreError, institution_key, store_from_env

logger = logging.getLogger(__name__)

_records_adapter = TypeAdapter(List[StudentRecord])
_store: Optional[PayloadStore] = None


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def env_config_defaults() -> Dict[str, Any]:
    """Process-level configuration defaults, read on every request."""
    return {
        "active_mock": os.getenv("ACTIVE_MOCK", "MOCK 1"),
        "max_section_a": os.getenv("MAX_SECTION_A", "40"),
        "max_section_b": os.getenv("MAX_SECTION_B", "60"),
        "use_t_distribution": _env_bool("USE_T_DISTRIBUTION", "true"),
        "sba": {
            "sba_weight": os.getenv("SBA_WEIGHT", "30"),
            "exam_weight": os.getenv("EXAM_WEIGHT", "70"),
        },
    }


def _snake_keys(data: Dict[str, Any]) -> Dict[str, Any]:
    return {to_snake(k): v for k, v in data.items()}


def config_from_payload(payload: dict) -> GlobalConfig:
    """Request ``config`` merged over the environment defaults."""
    merged = env_config_defaults()
    requested = _snake_keys(payload.get("config") or {})
    sba = dict(merged.pop("sba"))
    if isinstance(requested.get("sba"), dict):
        sba.update(_snake_keys(requested.pop("sba")))
    merged.update(requested)
    merged["sba"] = sba
    try:
        return GlobalConfig.model_validate(merged)
    except ValidationError as exc:
        raise RequestValidationError(exc.errors(include_url=False)) from exc


def get_store() -> PayloadStore:
    global _store
    if _store is None:
        _store = store_from_env()
    return _store


def parse_records(data) -> List[StudentRecord]:
    try:
        return _records_adapter.validate_python(data)
    except ValidationError as exc:
        raise RequestValidationError(exc.errors(include_url=False)) from exc


def load_institution(store: PayloadStore, institution_id: str) -> List[StudentRecord]:
    try:
        stored = store.load(institution_key(institution_id, "students"))
    except StoreError as exc:
        logger.error("Store read failed for %s: %s", institution_id, exc)
        raise HTTPException(502, str(exc))
    if not stored:
        raise HTTPException(404, f"No stored students for institution '{institution_id}'.")
    return parse_records(stored.get("students") or [])


def save_institution(store: PayloadStore, institution_id: str, records: List[StudentRecord]):
    payload = {"students": [r.model_dump(by_alias=True) for r in records]}
    try:
        store.save(institution_key(institution_id, "students"), payload)
    except StoreError as exc:
        logger.error("Store write failed for %s: %s", institution_id, exc)
        raise HTTPException(502, str(exc))


def records_from_payload(payload: dict, store: Optional[PayloadStore] = None) -> List[StudentRecord]:
    """Students from the request body, or from the store by ``institutionId``."""
    data = payload.get("students")
    if data:
        return parse_records(data)
    institution_id = payload.get("institutionId") or payload.get("institution_id")
    if institution_id and store is not None:
        return load_institution(store, institution_id)
    raise HTTPException(400, "No data provided.")


def staff_from_payload(payload: dict) -> Tuple[Dict[str, str], Dict[str, str]]:
    """
    Facilitator lookup as ``({subject: name}, {subject: staff id})``.

    Accepts either ``{"Mathematics": "Mr. Mensah"}`` or a list of
    ``{"subject", "name", "staffId"}`` entries.
    """
    raw = payload.get("staff") or {}
    names: Dict[str, str] = {}
    ids: Dict[str, str] = {}
    if isinstance(raw, dict):
        names = {str(k): str(v or "") for k, v in raw.items()}
    elif isinstance(raw, list):
        for entry in raw:
            if not isinstance(entry, dict) or not entry.get("subject"):
                continue
            subject = str(entry["subject"])
            names[subject] = str(entry.get("name") or "")
            staff_id = entry.get("staffId") or entry.get("staff_id")
            if staff_id:
                ids[subject] = str(staff_id)
    else:
        raise HTTPException(400, "'staff' must be an object or a list.")
    return names, ids


def school_name_from_payload(payload: dict) -> str:
    return str(payload.get("schoolName") or payload.get("school_name") or os.getenv("SCHOOL_NAME", "My School"))
