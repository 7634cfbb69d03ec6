from __future__ import annotations
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from . import schema
from .transforms import is_known_transform


FromSpec = Union[str, List[str]]


def normalize_from(value) -> Optional[FromSpec]:
    """Trim, drop empties and dedupe; one candidate collapses to a plain string."""
    if value is None:
        return None
    items = [value] if isinstance(value, str) else list(value)
    out: List[str] = []
    for item in items:
        s = str(item).strip()
        if s and s not in out:
            out.append(s)
    if not out:
        return None
    return out[0] if len(out) == 1 else out


def split_target(key: str) -> tuple:
    table, sep, column = key.partition(".")
    if not sep or not table or not column or "." in column:
        raise ValueError(f"Mapping key {key!r} must look like 'table.column'")
    if table not in schema.TARGET_TABLES:
        raise ValueError(f"Mapping key {key!r} targets unknown table {table!r}")
    if schema.is_reserved(table, column):
        raise ValueError(f"Mapping key {key!r} is system-controlled and cannot be mapped")
    if not schema.is_known_column(table, column):
        raise ValueError(f"Mapping key {key!r} targets unknown column {column!r}")
    return table, column


class FieldSpec(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    from_: Optional[FromSpec] = Field(default=None, alias="from")
    transform: Optional[str] = None
    default: Any = None

    @field_validator("from_", mode="before")
    @classmethod
    def _normalize_from(cls, v):
        return normalize_from(v)

    @field_validator("transform")
    @classmethod
    def _known_transform(cls, v):
        if v is None:
            return v
        v = v.strip()
        if not v:
            return None
        if not is_known_transform(v):
            raise ValueError(f"unknown transform {v!r}")
        return v

    @property
    def candidates(self) -> List[str]:
        if self.from_ is None:
            return []
        return [self.from_] if isinstance(self.from_, str) else list(self.from_)


class Mapping(BaseModel):
    """Validated column mapping document.

    Serialized with the camelCase keys used on the wire
    (targetTables/fieldMappings/mediaMappings/notes, and ``from`` inside specs).
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    target_tables: List[Literal["models", "models_media"]] = Field(alias="targetTables", min_length=1)
    field_mappings: Dict[str, FieldSpec] = Field(alias="fieldMappings")
    media_mappings: Optional[Dict[str, FieldSpec]] = Field(default=None, alias="mediaMappings")
    notes: Optional[str] = None

    @field_validator("target_tables")
    @classmethod
    def _dedupe_tables(cls, v):
        out: list = []
        for t in v:
            if t not in out:
                out.append(t)
        return out

    @field_validator("field_mappings")
    @classmethod
    def _check_field_keys(cls, v):
        for key in v:
            split_target(key)
        return v

    @field_validator("media_mappings")
    @classmethod
    def _check_media_keys(cls, v):
        if v is None:
            return v
        for key in v:
            if key != schema.MEDIA_LINK_KEY:
                raise ValueError(f"mediaMappings only accepts {schema.MEDIA_LINK_KEY!r}, got {key!r}")
        return v or None

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)

    def with_field(self, key: str, spec: FieldSpec) -> "Mapping":
        fields = dict(self.field_mappings)
        fields[key] = spec
        tables = list(self.target_tables)
        table = key.split(".", 1)[0]
        if table not in tables:
            tables.append(table)
        return self.model_copy(update={"field_mappings": fields, "target_tables": tables})
