"""
store.py — Persistence collaborator for institution payloads.

Payloads are JSON documents keyed by "<institution id>:<kind>", e.g.
"CBA-2025-001:students" or "CBA-2025-001:settings". The computation modules
never touch a store; routes load records, compute, and save the result.

Backends:
- InMemoryStore: process-local dict (tests, single-user dev)
- HttpPayloadStore: PostgREST-style table of {id, payload, last_updated} rows
"""

import copy
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TABLE = "uba_persistence"


class StoreError(RuntimeError):
    """A payload could not be read from or written to the store."""


class PayloadStore(Protocol):
    def load(self, key: str) -> Optional[Dict[str, Any]]:
        ...

    def save(self, key: str, payload: Dict[str, Any]) -> None:
        ...


def institution_key(institution_id: str, kind: str) -> str:
    inst = str(institution_id or "").strip()
    if not inst:
        raise ValueError("Institution id is required.")
    return f"{inst}:{kind}"


class InMemoryStore:
    def __init__(self):
        self._rows: Dict[str, Dict[str, Any]] = {}

    def load(self, key: str) -> Optional[Dict[str, Any]]:
        payload = self._rows.get(key)
        return copy.deepcopy(payload) if payload is not None else None

    def save(self, key: str, payload: Dict[str, Any]) -> None:
        self._rows[key] = copy.deepcopy(payload)

    def keys(self) -> List[str]:
        return sorted(self._rows)


class HttpPayloadStore:
    """
    Payload rows behind a REST table endpoint.

    ``GET  {base_url}/rest/v1/{table}?id=eq.<key>&select=payload``
    ``POST {base_url}/rest/v1/{table}`` with merge-duplicates for upserts.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        table: str = DEFAULT_TABLE,
        timeout: float = 20.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        if not base_url:
            raise ValueError("Store base URL is required.")
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["apikey"] = api_key
            headers["Authorization"] = f"Bearer {api_key}"
        self.table = table
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @property
    def _path(self) -> str:
        return f"/rest/v1/{self.table}"

    def load(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            res = self._client.get(self._path, params={"id": f"eq.{key}", "select": "payload"})
            res.raise_for_status()
            rows = res.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise StoreError(f"Failed to load '{key}': {exc}") from exc

        if not rows:
            logger.debug("No stored payload for %s.", key)
            return None
        return rows[0].get("payload")

    def save(self, key: str, payload: Dict[str, Any]) -> None:
        row = {
            "id": key,
            "payload": payload,
            "last_updated": datetime.now(timezone.utc).isoformat(),
        }
        try:
            res = self._client.post(
                self._path,
                json=row,
                headers={"Prefer": "resolution=merge-duplicates"},
            )
            res.raise_for_status()
        except httpx.HTTPError as exc:
            raise StoreError(f"Failed to save '{key}': {exc}") from exc
        logger.info("Saved %s.", key)

    def close(self):
        self._client.close()


def store_from_env() -> PayloadStore:
    """HTTP store when STORE_URL is set, otherwise an in-memory one."""
    url = os.getenv("STORE_URL", "").strip()
    if not url:
        return InMemoryStore()
    return HttpPayloadStore(
        url,
        api_key=os.getenv("STORE_API_KEY", "").strip(),
        table=os.getenv("STORE_TABLE", DEFAULT_TABLE).strip() or DEFAULT_TABLE,
    )
