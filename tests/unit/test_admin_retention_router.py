"""Contract tests for the admin retention endpoints."""

import uuid
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from app.database import get_db
from app.main import app
from app.models import ExportRequest, ExportStatus, Project, ProjectStatus
from app.storage.factory import set_storage_provider
from app.utils.time import utcnow

ADMIN_HEADERS = {"X-API-Key": "test-admin-key"}


@pytest.fixture
def client(session_factory, storage):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    set_storage_provider(storage)
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestAuth:
    @pytest.mark.parametrize(
        "method,path",
        [
            ("get", "/v1/admin/retention/policies"),
            ("get", "/v1/admin/retention/status"),
            ("post", "/v1/admin/retention/run"),
            ("post", "/v1/admin/retention/expire-exports"),
        ],
    )
    def test_requires_api_key(self, client, method, path):
        response = getattr(client, method)(path, headers={"X-API-Key": "wrong"})
        assert response.status_code == 401


class TestPolicies:
    def test_list_policies(self, client):
        response = client.get("/v1/admin/retention/policies", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        policies = response.json()
        assert len(policies) == 4
        assert policies[1]["name"] == "export-requests-cleanup"
        assert policies[1]["retention_period_days"] == 90

    def test_status(self, client):
        response = client.get("/v1/admin/retention/status", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["total_policies"] == 4
        assert data["enabled_policies"] == 4
        assert "next_execution" in data


class TestRunRetention:
    def test_run_single_policy(self, client, db, seeded):
        db.add(
            ExportRequest(
                project_id=seeded.project.id,
                facilitator_id=seeded.facilitator.id,
                status=ExportStatus.FAILED.value,
                format="archive",
                options={},
                created_at=utcnow() - timedelta(days=100),
            )
        )
        db.commit()

        response = client.post(
            "/v1/admin/retention/run",
            json={"policy": "export-requests-cleanup"},
            headers=ADMIN_HEADERS,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert len(data["reports"]) == 1
        assert data["reports"][0]["items_deleted"] == 1
        assert data["expired_exports"]["items_processed"] == 0
        db.expire_all()
        assert db.query(ExportRequest).count() == 0

    def test_run_all_policies(self, client):
        response = client.post("/v1/admin/retention/run", json={}, headers=ADMIN_HEADERS)

        assert response.status_code == 200
        assert len(response.json()["reports"]) == 4

    def test_skip_export_expiry(self, client):
        response = client.post(
            "/v1/admin/retention/run",
            json={"policy": "temp-files-cleanup", "expire_exports": False},
            headers=ADMIN_HEADERS,
        )
        assert response.json()["expired_exports"] is None

    def test_unknown_policy_404(self, client):
        response = client.post("/v1/admin/retention/run", json={"policy": "nope"}, headers=ADMIN_HEADERS)
        assert response.status_code == 404

    def test_expire_exports(self, client, db, seeded):
        db.add(
            ExportRequest(
                project_id=seeded.project.id,
                facilitator_id=seeded.facilitator.id,
                status=ExportStatus.READY.value,
                format="archive",
                options={},
                download_url="/v1/exports/x/download",
                expires_at=utcnow() - timedelta(hours=1),
            )
        )
        db.commit()

        response = client.post("/v1/admin/retention/expire-exports", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        assert response.json()["items_deleted"] == 1
        db.expire_all()
        assert db.query(ExportRequest).one().status == ExportStatus.EXPIRED.value


class TestPurgeProject:
    def test_requires_confirmation(self, client, db, seeded):
        response = client.post(
            f"/v1/admin/retention/projects/{seeded.project_id}/purge",
            json={},
            headers=ADMIN_HEADERS,
        )

        assert response.status_code == 400
        assert db.query(Project).count() == 1

    def test_purge(self, client, db, make_project):
        seeded = make_project(status=ProjectStatus.ARCHIVED.value, with_media=True)

        response = client.post(
            f"/v1/admin/retention/projects/{seeded.project_id}/purge",
            json={"confirm": True},
            headers=ADMIN_HEADERS,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["project_id"] == seeded.project_id
        assert data["records_deleted"]["stories"] == 2
        assert data["blobs_deleted"] == 2
        db.expire_all()
        assert db.query(Project).count() == 0

    def test_unknown_project_404(self, client):
        response = client.post(
            f"/v1/admin/retention/projects/{uuid.uuid4()}/purge",
            json={"confirm": True},
            headers=ADMIN_HEADERS,
        )
        assert response.status_code == 404
