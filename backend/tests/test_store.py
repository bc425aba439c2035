"""
Tests for core/store.py — in-memory and HTTP payload stores.
"""

import json
import os
import sys
import pytest
import httpx

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.store import (
    HttpPayloadStore,
    InMemoryStore,
    StoreError,
    institution_key,
    store_from_env,
)


class TestInstitutionKey:
    def test_key(self):
        assert institution_key("CBA-2025-001", "students") == "CBA-2025-001:students"

    def test_blank_institution(self):
        with pytest.raises(ValueError):
            institution_key("  ", "students")


class TestInMemoryStore:
    def test_round_trip(self):
        store = InMemoryStore()
        store.save("CBA-2025-001:students", {"students": [{"id": 1}]})
        assert store.load("CBA-2025-001:students") == {"students": [{"id": 1}]}
        assert store.keys() == ["CBA-2025-001:students"]

    def test_missing_key(self):
        assert InMemoryStore().load("nope") is None

    def test_returns_copies(self):
        store = InMemoryStore()
        payload = {"students": []}
        store.save("k", payload)
        payload["students"].append({"id": 1})
        loaded = store.load("k")
        loaded["students"].append({"id": 2})
        assert store.load("k") == {"students": []}


class TestHttpPayloadStore:
    """REST table of {id, payload} rows, no network."""

    def _store(self, handler, **kwargs):
        return HttpPayloadStore(
            "https://db.example.org/", api_key="anon-key",
            transport=httpx.MockTransport(handler), **kwargs,
        )

    def test_load(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["id"] = request.url.params["id"]
            seen["apikey"] = request.headers["apikey"]
            return httpx.Response(200, json=[{"payload": {"students": []}}])

        store = self._store(handler)
        assert store.load("CBA-2025-001:students") == {"students": []}
        assert seen == {
            "path": "/rest/v1/uba_persistence",
            "id": "eq.CBA-2025-001:students",
            "apikey": "anon-key",
        }

    def test_load_missing_row(self):
        store = self._store(lambda request: httpx.Response(200, json=[]))
        assert store.load("CBA-2025-001:students") is None

    def test_save_upserts(self):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["prefer"] = request.headers["prefer"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(201)

        store = self._store(handler, table="mock_payloads")
        store.save("CBA-2025-001:settings", {"activeMock": "MOCK 2"})
        assert seen["method"] == "POST"
        assert seen["prefer"] == "resolution=merge-duplicates"
        assert seen["body"]["id"] == "CBA-2025-001:settings"
        assert seen["body"]["payload"] == {"activeMock": "MOCK 2"}
        assert "last_updated" in seen["body"]

    def test_http_error_wrapped(self):
        store = self._store(lambda request: httpx.Response(500, json={"message": "down"}))
        with pytest.raises(StoreError):
            store.load("CBA-2025-001:students")
        with pytest.raises(StoreError):
            store.save("CBA-2025-001:students", {})

    def test_transport_error_wrapped(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(StoreError):
            self._store(handler).load("CBA-2025-001:students")

    def test_requires_url(self):
        with pytest.raises(ValueError):
            HttpPayloadStore("")


class TestStoreFromEnv:
    def test_in_memory_without_url(self, monkeypatch):
        monkeypatch.delenv("STORE_URL", raising=False)
        assert isinstance(store_from_env(), InMemoryStore)

    def test_http_with_url(self, monkeypatch):
        monkeypatch.setenv("STORE_URL", "https://db.example.org")
        monkeypatch.setenv("STORE_TABLE", "mock_payloads")
        store = store_from_env()
        assert isinstance(store, HttpPayloadStore)
        assert store.table == "mock_payloads"
        store.close()
