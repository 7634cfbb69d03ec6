from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from . import schema
from .filename import InferredContext
from .mapping import FieldSpec, Mapping, normalize_from
from .normalize import extract_urls, is_blank, normalize_key, title_case_name
from .transforms import TransformKind, apply_spec, select_transform


# Headers that always feed models.shoe_size at apply time.
SHOE_HEADER_KEYS = ("shoe", "shoes", "shoe_size", "shoe_size_uk", "shoe_size_eu", "shoe_size_us")


@dataclass(frozen=True)
class MappedRow:
    record: Dict[str, Any]
    media: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def name(self) -> Optional[str]:
        return self.record.get(schema.NAME_FIELD)

    def has_identity(self) -> bool:
        return not (is_blank(self.record.get(schema.NAME_FIELD)) and is_blank(self.record.get(schema.IDENTITY_ALT_FIELD)))


def lookup(row: Dict[str, Any], candidates: Sequence[str]) -> Tuple[Any, Optional[str]]:
    """First non-empty value among candidate headers, plus the header it came from."""
    if not candidates:
        return None, None
    normalized = {normalize_key(k): k for k in row}
    for cand in candidates:
        if cand in row and not is_blank(row[cand]):
            return row[cand], cand
        actual = normalized.get(normalize_key(cand))
        if actual is not None and not is_blank(row[actual]):
            return row[actual], actual
    return None, None


def _media_links(row: Dict[str, Any], spec: FieldSpec) -> List[Dict[str, Any]]:
    links: List[str] = []
    for cand in spec.candidates:
        value, _ = lookup(row, [cand])
        for url in extract_urls(value):
            if url not in links:
                links.append(url)
    return [{"link": url} for url in links]


def apply_mapping(row: Dict[str, Any], mapping: Mapping, context: InferredContext) -> MappedRow:
    record: Dict[str, Any] = {}
    for target, spec in mapping.field_mappings.items():
        table, _, column = target.partition(".")
        if table != schema.MODELS_TABLE or column == "data_source":
            continue
        value, source_key = lookup(row, spec.candidates)
        transform = select_transform(table, column, spec.transform, context.gender, source_key)
        out = apply_spec(value, transform)
        record[column] = spec.default if out is None else out

    media: List[Dict[str, Any]] = []
    if mapping.media_mappings:
        link_spec = mapping.media_mappings.get(schema.MEDIA_LINK_KEY)
        if link_spec is not None:
            media = _media_links(row, link_spec)

    # Provenance fields are never taken from the mapping
    record["gender"] = context.gender
    if context.board_category:
        record["model_board_category"] = context.board_category
    record["data_source"] = context.source_id

    if record.get(schema.NAME_FIELD) is not None:
        record[schema.NAME_FIELD] = title_case_name(record[schema.NAME_FIELD])

    return MappedRow(record, media)


def transform_rows(rows: Iterable[Dict[str, Any]], mapping: Mapping, context: InferredContext) -> List[MappedRow]:
    return [apply_mapping(r, mapping, context) for r in rows]


def ensure_shoe_mapping(mapping: Mapping, headers: Sequence[str]) -> Mapping:
    """Route any shoe-looking header into models.shoe_size.

    Returns a new Mapping; the input is left untouched.
    """
    found = [h for h in headers if normalize_key(str(h or "")) in SHOE_HEADER_KEYS]
    if not found:
        return mapping
    key = f"{schema.MODELS_TABLE}.shoe_size"
    existing = mapping.field_mappings.get(key)
    merged = normalize_from((existing.candidates if existing else []) + found)
    spec = FieldSpec(from_=merged, transform=TransformKind.PARSE_NUMBER.value)
    return mapping.with_field(key, spec)
