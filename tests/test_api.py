import json

import pytest
from fastapi.testclient import TestClient

from model_ingest.applier import RemoteUpsertSink, StoreSink
from model_ingest.services import build_services
from server.app import create_app


FILENAME = "women_newfaces.csv"


@pytest.fixture
def app(config, tmp_path, proposer, rec_client):
    def factory(cfg):
        return build_services(cfg, proposer=proposer, client=rec_client)

    return create_app(config, data_dir=tmp_path / "data", services_factory=factory)


@pytest.fixture
def client(app):
    return TestClient(app)


def _confirm(client, upload, mapping_doc, **form):
    return client.post(
        "/ingest/confirm",
        files={"file": (FILENAME, upload, "text/csv")},
        data={"mapping": json.dumps(mapping_doc), **form},
    )


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_check(client):
    r = client.post("/ingest/check", json={"filename": FILENAME})
    assert r.status_code == 200
    assert r.json() == {"success": True, "data": {"exists": False, "data_source": FILENAME}}

    r = client.post("/ingest/check", json={})
    assert r.status_code == 400
    assert r.json() == {"success": False, "message": "Missing filename"}


def test_preview(client, upload):
    r = client.post("/ingest/preview", files={"file": (FILENAME, upload, "text/csv")})
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["data"]["inferred"]["gender"] == "female"
    assert body["data"]["samplePreview"][0]["height"] == 175
    # nulls inside data survive
    assert body["data"]["samplePreview"][1]["model_name"] is None


def test_preview_without_gender(client, upload):
    r = client.post("/ingest/preview", files={"file": ("export.csv", upload, "text/csv")})
    assert r.status_code == 400
    assert r.json()["success"] is False
    assert "Could not infer gender" in r.json()["message"]

    r = client.post("/ingest/preview", files={"file": ("export.csv", upload, "text/csv")}, data={"gender": "male"})
    assert r.status_code == 200


def test_regenerate_requires_previous_mapping(client, upload, proposer, mapping_doc):
    r = client.post("/ingest/regenerate", files={"file": (FILENAME, upload, "text/csv")}, data={"feedback": "x"})
    assert r.status_code == 400

    r = client.post(
        "/ingest/regenerate",
        files={"file": (FILENAME, upload, "text/csv")},
        data={"previous_mapping": json.dumps(mapping_doc), "feedback": "map IG"},
    )
    assert r.status_code == 200
    assert proposer.calls[-1]["feedback"] == "map IG"


def test_confirm_conflict_and_delete(client, upload, mapping_doc):
    r = _confirm(client, upload, mapping_doc)
    assert r.status_code == 200
    body = r.json()
    assert body["message"] == "Processed 3 models (succeeded 2, failed 0, skipped 1)."
    assert body["data"]["warnings"]["count"] == 1
    assert len(body["data"]["modelIds"]) == 2

    r = _confirm(client, upload, mapping_doc)
    assert r.status_code == 409
    assert r.json()["data"] == {"data_source": FILENAME, "exists": True}

    r = client.post("/ingest/check", files={"file": (FILENAME, upload, "text/csv")})
    assert r.json()["data"]["exists"] is True

    r = client.post("/ingest/delete-by-source", json={"data_source": FILENAME})
    assert r.status_code == 200
    assert r.json()["data"] == {"deleted": 2, "data_source": FILENAME}
    assert _confirm(client, upload, mapping_doc).status_code == 200


def test_confirm_bad_mapping(client, upload):
    r = client.post(
        "/ingest/confirm",
        files={"file": (FILENAME, upload, "text/csv")},
        data={"mapping": json.dumps({"targetTables": ["models"], "fieldMappings": {"models.data_source": "x"}})},
    )
    assert r.status_code == 500
    assert r.json()["message"] == "Mapping failed validation"


def test_cv_infer(client, app, upload, mapping_doc, rec_client):
    model_id = _confirm(client, upload, mapping_doc).json()["data"]["modelIds"][0]

    assert client.post("/ingest/cv-infer", json={}).status_code == 400
    assert client.post("/ingest/cv-infer", json={"model_id": "abc"}).status_code == 400
    assert client.post("/ingest/cv-infer", json={"model_id": 99999}).status_code == 404

    r = client.post("/ingest/cv-infer", json={"modelId": model_id})
    assert r.status_code == 200
    assert r.json()["data"]["status"] == "done"
    assert rec_client.updated == [model_id]

    app.state.services().store.set_cv_infer(model_id)
    r = client.post("/ingest/cv-infer", json={"model_id": model_id})
    assert r.json()["message"] == "cv_infer already TRUE"


def test_agencies(client, upload):
    r = client.post("/agencies/create", json={"name": "Storm London", "website": "storm.test"})
    assert r.status_code == 200
    created = r.json()["data"]
    assert created["website"] == "https://storm.test/"

    r = client.post("/agencies/create", json={"name": "storm london"})
    assert r.status_code == 409
    assert r.json()["data"]["id"] == created["id"]

    assert client.post("/agencies/create", json={"name": ""}).status_code == 400

    r = client.post("/agencies/suggest", files={"file": ("storm_london.csv", upload, "text/csv")})
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["totalAgencies"] == 1
    assert [s["name"] for s in data["suggestions"]] == ["Storm London"]


def test_enrich_job(client, upload, mapping_doc, rec_client):
    ids = _confirm(client, upload, mapping_doc).json()["data"]["modelIds"]

    r = client.post("/jobs/enrich", json={"data_source": FILENAME})
    assert r.status_code == 200
    job = r.json()
    assert job["kind"] == "enrich"
    assert job["counters"]["total"] == 2

    r = client.get(f"/jobs/{job['id']}")
    assert r.json()["status"] == "succeeded"
    assert r.json()["counters"] == {"total": 2, "done": 2, "skipped": 0, "failed": 0}
    assert sorted(rec_client.updated) == sorted(ids)
    assert [j["id"] for j in client.get("/jobs").json()] == [job["id"]]

    assert client.post("/jobs/enrich", json={}).status_code == 400
    assert client.get("/jobs/nope").status_code == 404
    assert client.post("/jobs/nope/cancel").status_code == 404


def test_settings_round_trip_rebuilds_services(client, app):
    s = client.get("/settings").json()
    assert s["persistence"] == "store"
    assert s["batch_size"] == 50
    assert isinstance(app.state.services().orchestrator.applier.sink, StoreSink)

    old = app.state.services()
    r = client.post("/settings", json={"persistence": "remote", "batch_size": 10})
    assert r.status_code == 200
    assert r.json()["data"]["persistence"] == "remote"
    assert old.enrichment._executor._shutdown
    svc = app.state.services()
    assert svc is not old
    assert isinstance(svc.orchestrator.applier.sink, RemoteUpsertSink)
    assert svc.orchestrator.applier.batch_size == 10

    assert client.post("/settings", json={"persistence": "cloud"}).status_code == 400
    assert client.post("/settings", json={"batch_size": 0}).status_code == 400
    assert client.post("/settings", json={"colour": "red"}).status_code == 400


def test_remote_confirm_requires_agency(client, upload, mapping_doc):
    client.post("/settings", json={"persistence": "remote"})
    r = _confirm(client, upload, mapping_doc)
    assert r.status_code == 400
    assert r.json()["message"] == "agency_id is required"

    r = _confirm(client, upload, mapping_doc, agency_id="ag-1")
    assert r.status_code == 200
    assert r.json()["data"]["succeeded"] == 2
