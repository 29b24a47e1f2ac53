"""
Tests for the Needs AI Router
=============================

HTTP-level tests of the flow and provider endpoints with FastAPI's TestClient.
"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from conftest import reply
from needs_ai import api, directory
from needs_ai.directory import InMemoryDirectoryStore
from needs_ai.router import router


@pytest.fixture
def http():
    app = FastAPI()
    app.include_router(router, prefix="/api")
    return TestClient(app)


@pytest.fixture
def use_engine(monkeypatch, make_engine, store):
    """Install a scripted engine and the default directory as the shared ones."""
    def _use(*responses):
        engine, client = make_engine(*responses)
        monkeypatch.setattr(api, "_engine", engine)
        directory.set_directory_store(store)
        return client
    return _use


class TestFlowEndpoints:
    """Tests for /api/flows."""

    def test_execute_success(self, http, use_engine):
        """Should return the output with execution details."""
        use_engine(reply({"description": "A red bicycle."}))
        response = http.post(
            "/api/flows/describe_image",
            json={"inputs": {"imageDataUri": "data:image/png;base64,iVBORw0KGgo="}},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["flow_id"] == "describe_image"
        assert body["state"] == "done"
        assert body["output"] == {"description": "A red bicycle."}
        assert body["tools"] == []
        assert body["degraded"] is False

    def test_execute_reports_degraded(self, http, use_engine):
        """Should mark default-value answers as degraded."""
        use_engine(reply("garbage"))
        response = http.post(
            "/api/flows/find_profiles",
            json={"inputs": {"jobDescription": "Senior data engineer"}},
        )

        assert response.status_code == 200
        assert response.json()["output"] == {"suggestedCandidates": []}
        assert response.json()["degraded"] is True

    def test_invalid_input_is_422(self, http, use_engine):
        """Should list the offending fields."""
        use_engine()
        response = http.post("/api/flows/analyze_need", json={"inputs": {}})

        assert response.status_code == 422
        detail = response.json()["detail"]
        assert detail["message"]
        assert "description" in detail["fields"]

    def test_unknown_flow_is_404(self, http, use_engine):
        use_engine()
        response = http.post("/api/flows/nope", json={"inputs": {}})
        assert response.status_code == 404

    def test_flow_error_is_502(self, http, use_engine):
        """Should return only the caller-safe message."""
        use_engine(reply("garbage"))
        response = http.post(
            "/api/flows/analyze_document_for_roles",
            json={"inputs": {"documentText": "We need a data team."}},
        )

        assert response.status_code == 502
        assert response.json()["detail"] == (
            "The AI service could not analyze the document. Please try again later."
        )

    def test_list_flows(self, http):
        """Should list every registered flow."""
        response = http.get("/api/flows")
        assert response.status_code == 200
        flow_ids = {f["flow_id"] for f in response.json()["flows"]}
        assert {"analyze_need", "chat_support", "match_category"} <= flow_ids
        assert len(flow_ids) == 9

    def test_list_flows_by_tag(self, http):
        """Should only list flows carrying the tag."""
        response = http.get("/api/flows", params={"tag": "hiring"})
        flow_ids = {f["flow_id"] for f in response.json()["flows"]}
        assert {"hiring_assistant", "generate_linkedin_post", "find_profiles"} <= flow_ids
        assert "match_category" not in flow_ids

    def test_flow_detail(self, http):
        """Should describe tools, policy and fallback."""
        response = http.get("/api/flows/chat_support")
        assert response.status_code == 200
        body = response.json()
        assert body["short_circuit"] is True
        assert body["resolver"] == "chat_support"
        assert body["fallback"] == "default_value"
        assert body["tools"][0]["name"] == "findProvidersForProject"

    def test_flow_detail_missing(self, http):
        assert http.get("/api/flows/nope").status_code == 404

    def test_flows_health(self, http):
        body = http.get("/api/flows-health").json()
        assert body == {"status": "ok", "tools_loaded": 2, "flows_loaded": 9}


class TestProviderEndpoints:
    """Tests for /api/providers."""

    def test_by_category(self, http, store):
        """Should return available providers of the exact category."""
        directory.set_directory_store(store)
        response = http.get("/api/providers", params={"category": "Moving"})

        assert response.status_code == 200
        assert [p["id"] for p in response.json()] == ["prov1"]

    def test_blank_category(self, http, store):
        directory.set_directory_store(store)
        assert http.get("/api/providers").json() == []

    def test_smart_search(self, http, use_engine):
        """Should match the need to a category and return its providers."""
        use_engine(reply({"matchedCategory": "Plumbing"}))
        response = http.post("/api/providers/smart-search", json={"description": "my sink is leaking"})

        assert response.status_code == 200
        assert [p["name"] for p in response.json()] == ["Fix-It-Fast"]

    def test_smart_search_matcher_failure(self, http, use_engine):
        use_engine(reply("garbage"))
        response = http.post("/api/providers/smart-search", json={"description": "pipes"})
        assert response.status_code == 502

    def test_seed(self, http):
        """Should seed the process directory."""
        seeded = InMemoryDirectoryStore()
        directory.set_directory_store(seeded)
        response = http.post("/api/providers/seed")

        assert response.json() == {"success": True, "message": "Successfully seeded 9 providers."}
