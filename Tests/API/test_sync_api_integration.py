# Tests/API/test_sync_api_integration.py
#
# End-to-end tests through the FastAPI app over real temporary databases, plus error-mapping
# tests against a mocked service via dependency_overrides.
#
# Imports
import uuid
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from hive_sync import __version__
from hive_sync.DB.SQLite_Base import DatabaseError, NotFoundError
from hive_sync.Sync.Sync_Service import CatalogSyncService
from hive_sync.Sync.sync_errors import ConflictAlreadyResolvedError, ConflictNotFoundError
from hive_sync.api import sync_endpoints
from hive_sync.app import create_app
from hive_sync.config import DEFAULT_CONFIG
from hive_sync.Utils.timestamps import parse_timestamp, to_db_timestamp, utc_now
#
########################################################################################################################
#
# Fixtures:

BIZ = "biz-nairobi"
BASE_URL = f"/businesses/{BIZ}/sync"
HEADERS = {"X-User-ID": "user-wanjiku"}


@pytest.fixture
def client(sync_service):
    app = create_app(settings=DEFAULT_CONFIG, sync_service=sync_service)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def mock_service():
    return MagicMock(spec=CatalogSyncService)


@pytest.fixture
def mocked_client(sync_service, mock_service):
    app = create_app(settings=DEFAULT_CONFIG, sync_service=sync_service)
    app.dependency_overrides[sync_endpoints.get_sync_service] = lambda: mock_service
    yield TestClient(app)
    app.dependency_overrides.clear()


def change(entity_type, operation, entity_id, payload=None, client_timestamp=None):
    return {
        "entityType": entity_type,
        "entityId": entity_id,
        "syncId": f"sync-{uuid.uuid4().hex[:8]}",
        "operation": operation,
        "payload": payload,
        "clientTimestamp": to_db_timestamp(client_timestamp or utc_now() + timedelta(seconds=1)),
    }


def push(client, device_id, changes):
    return client.post(f"{BASE_URL}/push", json={"deviceId": device_id, "changes": changes}, headers=HEADERS)

#
########################################################################################################################
#
# Tests:


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "version": __version__}


class TestPushPull:

    def test_push_then_pull_from_another_device(self, client):
        pushed = push(client, "device-a", [
            change("category", "create", "c-1", {"name": "Textiles"}),
            change("product", "create", "p-1", {"name": "Kikoi", "price": 800, "categoryId": "c-1"}),
        ])
        assert pushed.status_code == 200
        body = pushed.json()
        assert [r["success"] for r in body["results"]] == [True, True]
        assert body["results"][1]["entityId"] == "p-1"
        assert "serverTimestamp" in body

        pulled = client.post(f"{BASE_URL}/pull", json={"deviceId": "device-b", "lastSyncAt": None}, headers=HEADERS)
        assert pulled.status_code == 200
        data = pulled.json()
        assert {c["entityId"] for c in data["changes"]} == {"c-1", "p-1"}
        assert data["hasMore"] is False
        assert data["fullSyncRequired"] is False

        checkpoint = client.get(f"{BASE_URL}/checkpoint", params={"deviceId": "device-b"}, headers=HEADERS)
        assert parse_timestamp(checkpoint.json()["lastSyncAt"]) == parse_timestamp(data["serverTimestamp"])

    def test_full_sync_snapshot(self, client):
        push(client, "device-a", [change("product", "create", "p-1", {"name": "Kikoi", "price": 800})])
        response = client.get(f"{BASE_URL}/full", params={"deviceId": "device-new"}, headers=HEADERS)
        assert response.status_code == 200
        assert [p["id"] for p in response.json()["products"]] == ["p-1"]
        assert response.json()["categories"] == []

    def test_unknown_pull_entity_type_is_bad_request(self, client):
        response = client.post(f"{BASE_URL}/pull", json={"deviceId": "d", "entityTypes": ["orders"]},
                                headers=HEADERS)
        assert response.status_code == 400
        assert "Unknown entity type" in response.json()["detail"]

    def test_never_synced_device_reads_epoch(self, client):
        response = client.get(f"{BASE_URL}/checkpoint", params={"deviceId": "fresh"}, headers=HEADERS)
        assert response.status_code == 200
        assert parse_timestamp(response.json()["lastSyncAt"]).year == 1970


class TestConflictEndpoints:

    def _make_conflict(self, client):
        push(client, "device-a", [change("product", "create", "p-1", {"name": "Kikoi", "price": 800})])
        stale = utc_now() - timedelta(hours=1)
        response = push(client, "device-b", [change("product", "update", "p-1", {"price": 1}, stale)])
        [result] = response.json()["results"]
        assert result["success"] is False
        assert result["error"] == "Conflict detected"
        assert result["conflictData"]["price"] == 800
        [conflict] = client.get(f"{BASE_URL}/conflicts", headers=HEADERS).json()
        return conflict

    def test_list_and_resolve(self, client):
        conflict = self._make_conflict(client)
        assert conflict["status"] == "conflict"
        assert conflict["deviceId"] == "device-b"

        url = f"{BASE_URL}/conflicts/{conflict['id']}/resolve"
        resolved = client.post(url, json={"resolution": "keep_client"}, headers=HEADERS)
        assert resolved.status_code == 200
        assert resolved.json()["message"] == "Conflict resolved"
        assert resolved.json()["entity"]["price"] == 1

        again = client.post(url, json={"resolution": "keep_server"}, headers=HEADERS)
        assert again.status_code == 409
        assert client.get(f"{BASE_URL}/conflicts", headers=HEADERS).json() == []

    def test_merge_without_data_is_bad_request(self, client):
        conflict = self._make_conflict(client)
        response = client.post(f"{BASE_URL}/conflicts/{conflict['id']}/resolve", json={"resolution": "merge"},
                               headers=HEADERS)
        assert response.status_code == 400

    def test_keep_client_on_removed_image_is_not_found(self, client):
        push(client, "device-a", [
            change("product", "create", "p-1", {"name": "Kikoi", "price": 800}),
            change("image", "create", "i-1", {"productId": "p-1", "url": "https://cdn/k.jpg"}),
        ])
        stale = utc_now() - timedelta(hours=1)
        stale_edit = push(client, "device-b", [change("image", "update", "i-1", {"altText": "Front"}, stale)])
        assert stale_edit.json()["results"][0]["error"] == "Conflict detected"
        removed = push(client, "device-a", [change("image", "delete", "i-1")])
        assert removed.json()["results"][0]["success"] is True

        [conflict] = client.get(f"{BASE_URL}/conflicts", headers=HEADERS).json()
        url = f"{BASE_URL}/conflicts/{conflict['id']}/resolve"
        response = client.post(url, json={"resolution": "keep_client"}, headers=HEADERS)
        assert response.status_code == 404
        assert "not found" in response.json()["detail"]

        assert client.post(url, json={"resolution": "keep_server"}, headers=HEADERS).status_code == 200
        assert client.get(f"{BASE_URL}/conflicts", headers=HEADERS).json() == []

    def test_unknown_conflict_is_not_found(self, client):
        response = client.post(f"{BASE_URL}/conflicts/nope/resolve", json={"resolution": "keep_server"},
                               headers=HEADERS)
        assert response.status_code == 404


class TestValidation:

    def test_missing_user_header_is_unauthorized(self, client):
        response = client.post(f"{BASE_URL}/push", json={"deviceId": "d", "changes": []})
        assert response.status_code == 401

    @pytest.mark.parametrize("body", [
        {"changes": []},
        {"deviceId": "", "changes": []},
        {"deviceId": "d", "changes": [{"entityType": "product", "entityId": "p", "operation": "upsert",
                                       "clientTimestamp": "2024-01-01T00:00:00Z"}]},
        {"deviceId": "d", "changes": [{"entityType": "product", "entityId": "p", "operation": "create"}]},
    ])
    def test_malformed_push_is_unprocessable(self, client, body):
        assert client.post(f"{BASE_URL}/push", json=body, headers=HEADERS).status_code == 422

    def test_full_sync_requires_device_query(self, client):
        assert client.get(f"{BASE_URL}/full", headers=HEADERS).status_code == 422

    def test_invalid_resolution_is_unprocessable(self, client):
        response = client.post(f"{BASE_URL}/conflicts/x/resolve", json={"resolution": "coin_flip"}, headers=HEADERS)
        assert response.status_code == 422

    def test_missing_service_is_unavailable(self, client):
        client.app.state.sync_service = None
        response = client.get(f"{BASE_URL}/conflicts", headers=HEADERS)
        assert response.status_code == 503


class TestErrorMapping:

    def test_database_error_is_500_without_details(self, mocked_client, mock_service):
        mock_service.list_conflicts.side_effect = DatabaseError("disk I/O error")
        response = mocked_client.get(f"{BASE_URL}/conflicts", headers=HEADERS)
        assert response.status_code == 500
        assert "disk" not in response.json()["detail"]

    def test_unexpected_error_is_500(self, mocked_client, mock_service):
        mock_service.pull.side_effect = RuntimeError("boom")
        response = mocked_client.post(f"{BASE_URL}/pull", json={"deviceId": "d"}, headers=HEADERS)
        assert response.status_code == 500

    @pytest.mark.parametrize("error, status_code", [
        (ConflictNotFoundError("q-1"), 404),
        (ConflictAlreadyResolvedError("q-1"), 409),
        (NotFoundError("Product not found: p-1", entity="Product", identifier="p-1"), 404),
    ])
    def test_resolution_errors(self, mocked_client, mock_service, error, status_code):
        mock_service.resolve_conflict.side_effect = error
        response = mocked_client.post(f"{BASE_URL}/conflicts/q-1/resolve", json={"resolution": "keep_server"},
                                      headers=HEADERS)
        assert response.status_code == status_code

    def test_user_id_is_forwarded(self, mocked_client, mock_service):
        mock_service.list_conflicts.return_value = []
        mocked_client.get(f"{BASE_URL}/conflicts", headers={"X-User-ID": "  user-7 "})
        mock_service.list_conflicts.assert_called_once_with("user-7", BIZ)
