#!/usr/bin/env python3
"""Network-free self-check of filename inference, transforms and row mapping.

Builds a small mapping by hand, runs one CSV row through it and checks the
canonical record. Exits non-zero on the first mismatch.
"""
from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / 'src'))

from model_ingest.filename import infer_board_category, infer_context, infer_gender  # type: ignore
from model_ingest.mapper import apply_mapping  # type: ignore
from model_ingest.parser import extract_mapping  # type: ignore
from model_ingest.transforms import apply_transform  # type: ignore


CASES = [
    (apply_transform("5'9\"", "toCentimeters"), 175),
    (apply_transform("34 in", "toCentimeters"), 86),
    (apply_transform("180cm", "toCentimeters"), 180),
    (apply_transform("EU 40", "toUkShoeMin:female"), 7),
    (apply_transform("UK 6-7", "toUkShoeMax"), 7),
    (apply_transform("Dark Blond", "enum:dark_blonde,brown"), "dark_blonde"),
    (apply_transform("F", "normalizeGender"), "female"),
    (infer_gender("women_newfaces.csv"), "female"),
    (infer_board_category("women_newfaces.csv"), "a_new_face"),
    (infer_gender("trans_man_board.csv"), "transman"),
]


def main() -> int:
    for i, (got, want) in enumerate(CASES, start=1):
        if got != want:
            print(f"case {i}: expected {want!r}, got {got!r}")
            return 1

    raw = (
        'Here you go:\n```json\n{"targetTables": ["models", "models_media"], '
        '"fieldMappings": {"models.model_name": "Name", "models.height": {"from": "Height"}, '
        '"models.shoe_size": {"from": "Shoe(EU)"}, "models.hair_colour": {"from": "Hair"}}, '
        '"mediaMappings": {"models_media.link": {"from": ["Photos"]}}}\n```'
    )
    mapping = extract_mapping(raw)
    ctx = infer_context("women_newfaces.csv")
    row = {
        "Name": "o'brien-smith",
        "Height": "5'9\"",
        "Shoe(EU)": "40",
        "Hair": "Dark Blond",
        "Photos": "https://a.test/1.jpg, https://a.test/2.jpg; https://a.test/1.jpg",
    }
    mapped = apply_mapping(row, mapping, ctx)
    expected = {
        "model_name": "O'Brien-Smith",
        "height": 175,
        "shoe_size": 7,
        "hair_colour": "dark_blonde",
        "gender": "female",
        "model_board_category": "a_new_face",
        "data_source": "women_newfaces.csv",
    }
    for k, v in expected.items():
        if mapped.record.get(k) != v:
            print(f"record[{k!r}]: expected {v!r}, got {mapped.record.get(k)!r}")
            return 1
    if [m["link"] for m in mapped.media] != ["https://a.test/1.jpg", "https://a.test/2.jpg"]:
        print(f"media mismatch: {mapped.media}")
        return 1

    print("Self-test ok")
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
