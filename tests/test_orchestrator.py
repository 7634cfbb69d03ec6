import json

import pytest

from model_ingest.applier import BatchApplier, StoreSink
from model_ingest.errors import ConfigError, ConflictError, MappingShapeError, UserInputError
from model_ingest.orchestrator import MISSING_GENDER_MESSAGE, IngestOrchestrator


FILENAME = "women_newfaces.csv"


class ExplodingSink:
    requires_agency = False

    def write(self, chunk, context, agency_id):
        raise RuntimeError("sink crashed")


def test_check(orchestrator, store):
    assert orchestrator.check(FILENAME) == {"exists": False, "data_source": FILENAME}
    store.claim_source(FILENAME)
    assert orchestrator.check(f"  {FILENAME} ") == {"exists": True, "data_source": FILENAME}
    with pytest.raises(UserInputError):
        orchestrator.check(" ")


def test_preview_proposes_and_transforms_sample(orchestrator, proposer, upload):
    result = orchestrator.preview(FILENAME, upload)
    out = result.to_dict()

    assert out["inferred"] == {"gender": "female", "model_board_category": "a_new_face", "data_source": FILENAME}
    assert out["mapping"]["fieldMappings"]["models.model_name"] == {"from": "Name"}
    assert len(out["samplePreview"]) == 3
    first = out["samplePreview"][0]
    assert first["model_name"] == "O'Brien-Smith"
    assert first["height"] == 175
    assert first["shoe_size"] == 7
    assert first["hair_colour"] == "dark_blonde"

    call = proposer.calls[0]
    assert call["headers"][0] == "Name"
    assert len(call["sample_rows"]) == 3
    assert call["previous_mapping"] is None


def test_preview_gender_override(orchestrator, upload):
    result = orchestrator.preview("export.csv", upload, gender="male")
    assert result.inferred.gender == "male"
    # EU 40 for men is UK 6
    assert result.sample_preview[0]["shoe_size"] == 6


def test_preview_requires_gender(orchestrator, proposer, upload):
    with pytest.raises(UserInputError) as exc:
        orchestrator.preview("export.csv", upload)
    assert exc.value.message == MISSING_GENDER_MESSAGE
    assert proposer.calls == []


def test_preview_requires_proposer_key(config, store, proposer, upload):
    orch = IngestOrchestrator(config.with_overrides(anthropic_api_key=""), store, proposer, BatchApplier(StoreSink(store)))
    with pytest.raises(ConfigError):
        orch.preview(FILENAME, upload)
    assert proposer.calls == []


def test_preview_unparseable_model_output(config, store, make_proposer, upload):
    orch = IngestOrchestrator(config, store, make_proposer(["sorry, no idea"]), BatchApplier(StoreSink(store)))
    with pytest.raises(MappingShapeError) as exc:
        orch.preview(FILENAME, upload)
    assert exc.value.message == "Failed to parse mapping from Claude."
    assert exc.value.data["snippet"] == "sorry, no idea"


def test_regenerate_passes_previous_mapping_and_feedback(orchestrator, proposer, upload, mapping_doc):
    orchestrator.regenerate(FILENAME, upload, json.dumps(mapping_doc), feedback="use IG column")
    call = proposer.calls[0]
    assert call["previous_mapping"].field_mappings["models.model_name"].candidates == ["Name"]
    assert call["feedback"] == "use IG column"

    with pytest.raises(UserInputError):
        orchestrator.regenerate(FILENAME, upload, None)


def test_regenerate_ignores_broken_previous_mapping(orchestrator, proposer, upload):
    orchestrator.regenerate(FILENAME, upload, "{not json", feedback="again")
    assert proposer.calls[0]["previous_mapping"] is None


def test_confirm_applies_and_claims_source(orchestrator, store, upload, mapping_doc):
    report = orchestrator.confirm(FILENAME, upload, mapping_doc)
    assert (report.processed, report.succeeded, report.failed, report.skipped) == (3, 2, 0, 1)
    assert store.source_exists(FILENAME)

    ids = store.model_ids_by_key(FILENAME)
    obs = store.get_model(ids[("female", "a_new_face", "O'Brien-Smith")])
    assert obs["record"]["shoe_size"] == 7
    assert obs["record"]["data_source"] == FILENAME
    assert store.media_links(obs["id"]) == ["https://cdn.test/img/100234.jpg", "https://cdn.test/img/100235.jpg"]

    other = {"targetTables": ["models"], "fieldMappings": {"models.model_name": {"from": "Name"}}}
    with pytest.raises(ConflictError):
        orchestrator.confirm(FILENAME, upload, other)
    with pytest.raises(ConflictError):
        orchestrator.preview(FILENAME, upload)


def test_confirm_routes_shoe_headers(orchestrator, store, make_csv):
    data = make_csv(["Name", "Shoes"], [{"Name": "ada", "Shoes": "EU 39"}])
    mapping = {"targetTables": ["models"], "fieldMappings": {"models.model_name": {"from": "Name"}}}
    orchestrator.confirm(FILENAME, data, mapping)
    (model_id,) = store.model_ids_for_source(FILENAME)
    assert store.get_model(model_id)["record"]["shoe_size"] == 6


def test_confirm_releases_claim_when_nothing_succeeds(orchestrator, store, make_csv, mapping_doc):
    data = make_csv(["Name", "Height"], [{"Name": "", "Height": "170"}])
    report = orchestrator.confirm(FILENAME, data, mapping_doc)
    assert report.succeeded == 0
    assert report.skipped == 1
    assert not store.source_exists(FILENAME)


def test_confirm_releases_claim_when_apply_raises(config, store, proposer, upload, mapping_doc):
    orch = IngestOrchestrator(config, store, proposer, BatchApplier(ExplodingSink()))
    with pytest.raises(RuntimeError):
        orch.confirm(FILENAME, upload, mapping_doc)
    assert not store.source_exists(FILENAME)


def test_confirm_input_checks(orchestrator, upload, mapping_doc):
    with pytest.raises(UserInputError):
        orchestrator.confirm(FILENAME, upload, None)
    with pytest.raises(UserInputError):
        orchestrator.confirm(FILENAME, b"", mapping_doc)
    with pytest.raises(UserInputError):
        orchestrator.confirm("export.csv", upload, mapping_doc)
    with pytest.raises(MappingShapeError):
        orchestrator.confirm(FILENAME, upload, {"targetTables": ["models"], "fieldMappings": {"models.data_source": "x"}})


def test_confirm_auto_enrich(config, store, proposer, rec_client, upload, mapping_doc):
    from model_ingest.enrichment import EnrichmentRunner

    runner = EnrichmentRunner(store, rec_client)
    orch = IngestOrchestrator(
        config.with_overrides(auto_enrich=True), store, proposer, BatchApplier(StoreSink(store)), enrichment=runner
    )
    report = orch.confirm(FILENAME, upload, mapping_doc)
    runner.shutdown(wait=True)
    assert sorted(rec_client.updated) == sorted(report.model_ids)


def test_delete_by_source_allows_reingest(orchestrator, store, upload, mapping_doc):
    orchestrator.confirm(FILENAME, upload, mapping_doc)
    assert orchestrator.delete_by_source(FILENAME) == 2
    assert orchestrator.check(FILENAME)["exists"] is False
    assert orchestrator.confirm(FILENAME, upload, mapping_doc).succeeded == 2
    with pytest.raises(UserInputError):
        orchestrator.delete_by_source("")
