"""API endpoint tests using TestClient.

The client is not used as a context manager, so the lifespan never runs:
each test puts its own orchestrator on app.state and the document
repository is replaced with a mock. No request touches the database.
"""
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from app.core.dependencies import get_document_repository
from app.main import app
from app.pipeline.orchestrator import create_orchestrator


@pytest.fixture
def mock_document_repo() -> MagicMock:
    repo = MagicMock()
    repo.save_document = AsyncMock()
    repo.append_decisions = AsyncMock(return_value=[])
    repo.get_by_id = AsyncMock(return_value=None)
    repo.list_decisions = AsyncMock(return_value=[])
    return repo


@pytest.fixture
def client(test_settings, reference_data, mock_document_repo: MagicMock):
    app.state.orchestrator = create_orchestrator(test_settings(), reference_data)
    app.dependency_overrides[get_document_repository] = lambda: mock_document_repo
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_root_returns_app_info(client: TestClient) -> None:
    response = client.get("/")
    assert response.status_code == 200
    data = response.json()
    assert "app_name" in data
    assert "app_version" in data


def test_get_agents_lists_every_agent(client: TestClient) -> None:
    response = client.get("/api/agents")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["health"] == {"totalAgents": 6, "idle": 6, "processing": 0, "error": 0}
    assert {agent["id"] for agent in data["agents"]} == {
        "agent-capture",
        "agent-classification",
        "agent-compliance",
        "agent-matching",
        "agent-risk",
        "agent-approval",
    }
    first = data["agents"][0]
    assert first["processedCount"] == 0
    assert first["capabilities"] == ["extraction"]
    assert first["lastProcessedAt"] is None


def test_process_minimal_fields(client: TestClient, mock_document_repo: MagicMock) -> None:
    response = client.post(
        "/api/agents/process",
        json={"invoiceNumber": "INV-100", "vendorName": "Acme", "amount": 499},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["document"]["invoiceNumber"] == "INV-100"
    assert data["document"]["amount"] == {"amount": 499.0, "currency": "USD"}
    assert data["pipeline"]["status"] == "approved"
    assert data["pipeline"]["stagesCompleted"] == 6
    assert "errors" not in data
    decision = data["decisions"][0]
    assert decision["agent"] == "agent-capture"
    assert set(decision) == {"agent", "action", "outcome", "confidence", "reasoning", "timestamp"}
    mock_document_repo.save_document.assert_awaited_once()


def test_process_reports_stage_errors(client: TestClient) -> None:
    # no extracted data and no raw text: the capture stage fails
    response = client.post("/api/agents/process", json={"document": {"id": "doc-empty"}})
    assert response.status_code == 200
    data = response.json()
    assert data["pipeline"]["status"] == "ingested"
    assert data["pipeline"]["stagesCompleted"] == 0
    [error] = data["errors"]
    assert error["agentId"] == "agent-capture"
    assert error["kind"] == "agent_error"


def test_process_rejects_invalid_document(client: TestClient) -> None:
    response = client.post(
        "/api/agents/process",
        json={"document": {"id": "doc-1", "status": "lost"}},
    )
    assert response.status_code == 400
    assert response.json()["error"] == "Invalid document"


def test_run_pipeline_requires_document_id(client: TestClient) -> None:
    response = client.post("/api/agents", json={"document": {"tenantId": "tenant-a"}})
    assert response.status_code == 400
    assert response.json() == {"error": "Missing required field: document with id"}


def test_run_pipeline_with_full_document(client: TestClient) -> None:
    response = client.post("/api/agents", json={
        "document": {
            "id": "doc-full",
            "extractedData": {
                "header": {
                    "invoiceNumber": "INV-200",
                    "vendorName": "Acme",
                    "invoiceDate": "2026-01-15",
                    "totalAmount": {"amount": 320.5},
                }
            },
        }
    })
    assert response.status_code == 200
    result = response.json()["result"]
    assert result["documentId"] == "doc-full"
    assert result["status"] == "approved"
    assert result["decisionsCount"] == 6
    assert result["errors"] == []
    assert result["decisions"][-1]["agentId"] == "agent-approval"


def test_run_pipeline_unexpected_failure(client: TestClient) -> None:
    broken = MagicMock()
    broken.process_document = AsyncMock(side_effect=RuntimeError("graph exploded"))
    app.state.orchestrator = broken

    response = client.post("/api/agents", json={"document": {"id": "doc-1"}})
    assert response.status_code == 500
    assert response.json() == {"error": "Processing failed", "details": "graph exploded"}


def test_decisions_for_unknown_document(client: TestClient) -> None:
    response = client.get("/api/documents/missing/decisions", params={"tenantId": "tenant-a"})
    assert response.status_code == 404


def test_get_agents_reports_last_run_after_processing(client: TestClient) -> None:
    client.post(
        "/api/agents/process",
        json={"invoiceNumber": "INV-101", "vendorName": "Acme", "amount": 120},
    )
    data = client.get("/api/agents").json()
    for agent in data["agents"]:
        assert set(agent) == {
            "id",
            "name",
            "capabilities",
            "status",
            "lastProcessedAt",
            "processedCount",
            "averageLatencyMs",
        }
        assert agent["lastProcessedAt"] is not None
        assert agent["processedCount"] == 1
