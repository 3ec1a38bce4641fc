"""
HTTP-level tests for the import endpoints.
"""
import pytest
from fastapi.testclient import TestClient

from crm_import.api.dependencies import get_import_service, get_storage
from crm_import.main import app


@pytest.fixture
def client(service, storage):
    app.dependency_overrides[get_import_service] = lambda: service
    app.dependency_overrides[get_storage] = lambda: storage
    yield TestClient(app)
    app.dependency_overrides.clear()


def _upload(client, content, entity_type="contacts", filename="people.csv"):
    return client.post(
        "/api/imports/upload",
        files={"file": (filename, content, "text/csv")},
        data={"entity_type": entity_type, "created_by": "9"},
    )


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_template_download(client):
    response = client.get("/api/imports/template/deals")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert response.text.splitlines()[0].startswith("title,value,currency")


def test_template_for_unknown_entity_type(client):
    assert client.get("/api/imports/template/widgets").status_code == 400


def test_full_import_flow(client):
    upload = _upload(client, b"Name,Mail\nAda Lovelace,ada@example.com\nCher,cher@example.com\n")
    assert upload.status_code == 200
    job = upload.json()["job"]
    assert job["status"] == "pending"
    assert job["created_by"] == 9

    preview = client.get(f"/api/imports/{job['id']}/preview")
    assert preview.status_code == 200
    assert preview.json()["headers"] == ["Name", "Mail"]

    mapping = client.post(
        f"/api/imports/{job['id']}/mapping",
        json={
            "column_mapping": [
                {"csvColumn": "Name", "dbField": "first_name", "transformation": "split_name_first"},
                {"csvColumn": "Name", "dbField": "last_name", "transformation": "split_name_last"},
                {"csvColumn": "Mail", "dbField": "email"},
            ]
        },
    )
    assert mapping.status_code == 200

    validation = client.post(f"/api/imports/{job['id']}/validate")
    assert validation.status_code == 200
    report = validation.json()["report"]
    assert report["error_rows"] == 1
    assert report["quality_score"] == 50

    processed = client.post(f"/api/imports/{job['id']}/process")
    assert processed.status_code == 200
    result = processed.json()["job"]
    assert result["status"] == "completed"
    assert (result["success_count"], result["error_count"]) == (1, 1)
    assert result["error_log"][0]["row"] == 2

    again = client.post(f"/api/imports/{job['id']}/process")
    assert again.status_code == 400


def test_listing_and_lookup(client):
    job_id = _upload(client, b"name\nAcme\n", entity_type="companies").json()["job"]["id"]

    listing = client.get("/api/imports", params={"entity_type": "companies"})
    assert listing.status_code == 200
    assert listing.json()["total_count"] == 1
    assert listing.json()["jobs"][0]["id"] == job_id

    assert client.get(f"/api/imports/{job_id}").json()["job"]["filename"] == "people.csv"


def test_change_entity_type(client):
    job_id = _upload(client, b"first_name,last_name\nAda,Lovelace\n").json()["job"]["id"]

    response = client.put(f"/api/imports/{job_id}/entity-type", json={"entity_type": "leads"})

    assert response.status_code == 200
    assert response.json()["job"]["entity_type"] == "leads"


def test_error_translation(client):
    assert client.get("/api/imports/999").status_code == 404
    assert client.post("/api/imports/999/process").status_code == 404
    assert _upload(client, b"a\n1\n", entity_type="widgets").status_code == 400

    job_id = _upload(client, b"a\n1\n").json()["job"]["id"]
    assert client.post(f"/api/imports/{job_id}/validate").status_code == 400
    assert client.post(f"/api/imports/{job_id}/mapping", json={"column_mapping": 42}).status_code == 400
