from model_ingest.filename import infer_context
from model_ingest.mapper import MappedRow, apply_mapping, ensure_shoe_mapping, lookup, transform_rows
from model_ingest.mapping import Mapping


def _mapping(fields, media=None):
    doc = {"targetTables": ["models"], "fieldMappings": fields}
    if media:
        doc["mediaMappings"] = media
    return Mapping.model_validate(doc)


def test_lookup_exact_then_normalized_first_non_blank():
    row = {"First Name": "", "first-name": "Ada", "Last Name": "Lovelace"}
    assert lookup(row, ["First Name"]) == ("Ada", "first-name")
    assert lookup(row, ["missing", "last_name"]) == ("Lovelace", "Last Name")
    assert lookup(row, ["missing"]) == (None, None)
    assert lookup(row, []) == (None, None)


def test_apply_mapping_full_row(mapping_doc):
    mapping = Mapping.model_validate(mapping_doc)
    ctx = infer_context("women_newfaces.csv")
    row = {
        "Name": "o'brien-smith",
        "IG": "https://instagram.com/obs",
        "Height": "5'9\"",
        "Shoe(EU)": "40",
        "Hair": "Dark Blond",
        "Photos": "https://a.test/1.jpg, https://a.test/2.jpg; https://a.test/1.jpg",
    }
    mapped = apply_mapping(row, mapping, ctx)
    assert mapped.record == {
        "model_name": "O'Brien-Smith",
        "instagram_account": "https://instagram.com/obs",
        "height": 175,
        "shoe_size": 7,
        "hair_colour": "dark_blonde",
        "gender": "female",
        "model_board_category": "a_new_face",
        "data_source": "women_newfaces.csv",
    }
    assert mapped.media == [{"link": "https://a.test/1.jpg"}, {"link": "https://a.test/2.jpg"}]
    assert mapped.name == "O'Brien-Smith"
    assert mapped.has_identity()


def test_apply_mapping_is_pure_and_repeatable(mapping_doc):
    mapping = Mapping.model_validate(mapping_doc)
    ctx = infer_context("women_newfaces.csv")
    row = {
        "Name": "jane doe",
        "IG": "https://instagram.com/jd",
        "Height": "170cm",
        "Shoe(EU)": "39",
        "Hair": "light-brown",
        "Photos": "https://a.test/3.jpg https://a.test/4.jpg",
    }
    row_before = dict(row)
    doc_before = mapping.to_document()

    first = apply_mapping(row, mapping, ctx)
    second = apply_mapping(row, mapping, ctx)

    assert first.record == second.record
    assert first.media == second.media
    assert first.record["hair_colour"] == "light_brown"
    assert row == row_before
    assert mapping.to_document() == doc_before


def test_apply_mapping_defaults_and_missing_values():
    mapping = _mapping(
        {
            "models.model_name": {"from": "Name"},
            "models.location": {"from": "City", "default": "Unknown"},
            "models.eye_colour": {"from": "Eyes"},
        }
    )
    mapped = apply_mapping({"Name": "", "Eyes": "violet"}, mapping, infer_context("export.csv"))
    assert mapped.record["location"] == "Unknown"
    assert mapped.record["model_name"] is None
    assert mapped.record["eye_colour"] is None
    assert mapped.record["gender"] is None
    assert "model_board_category" not in mapped.record
    assert not mapped.has_identity()


def test_provenance_cannot_be_overridden_by_mapping():
    mapping = _mapping({"models.gender": {"from": "Gender"}, "models.model_board_category": {"from": "Board"}})
    ctx = infer_context("men_mainboard.csv")
    mapped = apply_mapping({"Gender": "female", "Board": "petite"}, mapping, ctx)
    assert mapped.record["gender"] == "male"
    assert mapped.record["model_board_category"] == "mainboard"
    assert mapped.record["data_source"] == "men_mainboard.csv"


def test_gender_override_feeds_shoe_conversion():
    mapping = _mapping({"models.shoe_size": {"from": "Shoe EU"}})
    row = {"Shoe EU": "41"}
    assert apply_mapping(row, mapping, infer_context("export.csv", "male")).record["shoe_size"] == 7
    assert apply_mapping(row, mapping, infer_context("export.csv", "female")).record["shoe_size"] == 8


def test_media_links_from_several_columns():
    mapping = _mapping(
        {"models.model_name": {"from": "Name"}},
        media={"models_media.link": {"from": ["Photo 1", "Photo 2"]}},
    )
    row = {"Name": "A", "Photo 1": "https://x.test/1.jpg not-a-url", "Photo 2": "https://x.test/1.jpg https://x.test/2.jpg"}
    mapped = apply_mapping(row, mapping, infer_context("women.csv"))
    assert [m["link"] for m in mapped.media] == ["https://x.test/1.jpg", "https://x.test/2.jpg"]


def test_transform_rows_keeps_order():
    mapping = _mapping({"models.model_name": {"from": "Name"}})
    out = transform_rows([{"Name": "b"}, {"Name": "a"}], mapping, infer_context("women.csv"))
    assert [r.name for r in out] == ["B", "A"]
    assert all(isinstance(r, MappedRow) for r in out)


def test_ensure_shoe_mapping_merges_shoe_headers():
    mapping = _mapping({"models.shoe_size": {"from": "Shoe Size UK"}})
    out = ensure_shoe_mapping(mapping, ["Name", "Shoes", "shoe size"])
    spec = out.field_mappings["models.shoe_size"]
    assert spec.candidates == ["Shoe Size UK", "Shoes", "shoe size"]
    assert spec.transform == "parseNumber"
    # input mapping is untouched
    assert mapping.field_mappings["models.shoe_size"].candidates == ["Shoe Size UK"]


def test_ensure_shoe_mapping_adds_field_and_table():
    mapping = Mapping.model_validate({"targetTables": ["models_media"], "fieldMappings": {}})
    out = ensure_shoe_mapping(mapping, ["Shoe"])
    assert out.field_mappings["models.shoe_size"].candidates == ["Shoe"]
    assert out.target_tables == ["models_media", "models"]
    assert ensure_shoe_mapping(mapping, ["Name"]) is mapping
