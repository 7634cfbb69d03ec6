from __future__ import annotations
import csv
import io
import json
from typing import Dict, List, Optional

import pytest

from model_ingest.applier import BatchApplier, StoreSink
from model_ingest.config import IngestConfig
from model_ingest.enrichment import EnrichmentRunner
from model_ingest.orchestrator import IngestOrchestrator
from model_ingest.store import ModelStore


MAPPING_DOC = {
    "targetTables": ["models", "models_media"],
    "fieldMappings": {
        "models.model_name": {"from": "Name"},
        "models.instagram_account": {"from": ["Instagram", "IG"]},
        "models.height": {"from": "Height"},
        "models.shoe_size": {"from": "Shoe(EU)"},
        "models.hair_colour": {"from": "Hair"},
    },
    "mediaMappings": {"models_media.link": {"from": "Photos"}},
}

HEADERS = ["Name", "Instagram", "Height", "Shoe(EU)", "Hair", "Photos"]

ROWS = [
    {
        "Name": "o'brien-smith",
        "Instagram": "https://instagram.com/obs",
        "Height": "5'9\"",
        "Shoe(EU)": "40",
        "Hair": "Dark Blond",
        "Photos": "https://cdn.test/img/100234.jpg, https://cdn.test/img/100235.jpg",
    },
    {
        "Name": "",
        "Instagram": "",
        "Height": "180cm",
        "Shoe(EU)": "",
        "Hair": "",
        "Photos": "",
    },
    {
        "Name": "jane doe",
        "Instagram": "",
        "Height": "172 cm",
        "Shoe(EU)": "39",
        "Hair": "black",
        "Photos": "https://cdn.test/img/100300.jpg",
    },
]


def csv_bytes(headers: List[str], rows: List[Dict[str, str]]) -> bytes:
    buf = io.StringIO()
    w = csv.DictWriter(buf, fieldnames=headers)
    w.writeheader()
    for r in rows:
        w.writerow(r)
    return buf.getvalue().encode("utf-8")


class FakeProposer:
    """Stands in for MappingProposer; returns canned model output."""

    def __init__(self, replies: Optional[List[str]] = None) -> None:
        self.replies = list(replies or [json.dumps(MAPPING_DOC)])
        self.calls: List[dict] = []

    def propose(self, headers, sample_rows, context, previous_mapping=None, feedback=None) -> str:
        self.calls.append(
            {
                "headers": list(headers),
                "sample_rows": list(sample_rows),
                "context": context,
                "previous_mapping": previous_mapping,
                "feedback": feedback,
            }
        )
        return self.replies[min(len(self.calls), len(self.replies)) - 1]

    def complete(self, system, payload, max_tokens=None) -> str:
        self.calls.append({"system": system, "payload": payload})
        return self.replies[min(len(self.calls), len(self.replies)) - 1]


class FakeRecommendationClient:
    def __init__(self, update_ok: bool = True, photos_ok: bool = True, batch_results=None, batch_error=None) -> None:
        self.update_ok = update_ok
        self.photos_ok = photos_ok
        self.batch_results = batch_results
        self.batch_error = batch_error
        self.updated: List = []
        self.photos: List = []
        self.batches: List[List[dict]] = []

    def update_model(self, model_id):
        self.updated.append(model_id)
        return {"ok": self.update_ok, "status": 200 if self.update_ok else 500, "data": {"model_id": model_id}}

    def update_model_photos(self, model_id):
        self.photos.append(model_id)
        return {"ok": self.photos_ok, "status": 200 if self.photos_ok else 502, "data": {}}

    def batch_upsert_models(self, models):
        self.batches.append(list(models))
        if self.batch_error is not None:
            raise self.batch_error
        if self.batch_results is not None:
            return self.batch_results(models)
        return [
            {"status": "success", "result": {"model_id": f"m-{len(self.batches)}-{i}"}}
            for i, _ in enumerate(models)
        ]


@pytest.fixture
def config(tmp_path) -> IngestConfig:
    return IngestConfig(anthropic_api_key="sk-ant-test", db_path=tmp_path / "models.db")


@pytest.fixture
def store(config) -> ModelStore:
    return ModelStore(config.db_path).init()


@pytest.fixture
def proposer() -> FakeProposer:
    return FakeProposer()


@pytest.fixture
def rec_client() -> FakeRecommendationClient:
    return FakeRecommendationClient()


@pytest.fixture
def orchestrator(config, store, proposer, rec_client) -> IngestOrchestrator:
    applier = BatchApplier(StoreSink(store), batch_size=2)
    return IngestOrchestrator(config, store, proposer, applier, enrichment=EnrichmentRunner(store, rec_client))


@pytest.fixture
def upload() -> bytes:
    return csv_bytes(HEADERS, ROWS)


@pytest.fixture
def mapping_doc() -> dict:
    return json.loads(json.dumps(MAPPING_DOC))


@pytest.fixture
def make_csv():
    return csv_bytes


@pytest.fixture
def make_proposer():
    return FakeProposer


@pytest.fixture
def make_client():
    return FakeRecommendationClient
