from __future__ import annotations
import json
import logging
import re
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from . import schema
from .errors import MappingShapeError
from .mapping import Mapping, normalize_from


logger = logging.getLogger(__name__)

FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)

# Keys a language model sometimes uses instead of a plain header string.
FROM_OBJECT_KEYS = ("from", "name", "column", "header")


def _loads_object(text: str) -> Optional[dict]:
    try:
        obj = json.loads(text)
    except (ValueError, TypeError):
        return None
    return obj if isinstance(obj, dict) else None


def _balanced_objects(text: str) -> List[str]:
    """Every top-level balanced ``{...}`` span, in order of appearance."""
    spans: List[str] = []
    depth = 0
    start = -1
    in_str = False
    escape = False
    for i, ch in enumerate(text):
        if in_str:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_str = False
            continue
        if ch == '"' and depth > 0:
            in_str = True
        elif ch == "{":
            if depth == 0:
                start = i
            depth += 1
        elif ch == "}" and depth > 0:
            depth -= 1
            if depth == 0:
                spans.append(text[start:i + 1])
    return spans


def extract_json_object(text: str) -> Optional[dict]:
    """Pull the first JSON object out of free-form model output."""
    if not text:
        return None
    direct = _loads_object(text.strip())
    if direct is not None:
        return direct

    for m in FENCE_RE.finditer(text):
        obj = _loads_object(m.group(1).strip())
        if obj is not None:
            return obj

    for candidate in _balanced_objects(text):
        obj = _loads_object(candidate)
        if obj is not None:
            return obj
    return None


def _flatten_from(value) -> Union[str, List[str], None]:
    if isinstance(value, dict):
        found = [value[k] for k in FROM_OBJECT_KEYS if isinstance(value.get(k), str)]
        return found or None
    if isinstance(value, list):
        out = []
        for item in value:
            flat = _flatten_from(item)
            if isinstance(flat, list):
                out.extend(flat)
            elif flat is not None:
                out.append(flat)
        return out
    if value is None:
        return None
    return str(value)


def _normalize_spec(spec) -> Dict[str, Any]:
    if spec is None:
        return {}
    if isinstance(spec, (str, list)):
        spec = {"from": spec}
    if not isinstance(spec, dict):
        return {}
    out = dict(spec)
    if "from" in out:
        normalized = normalize_from(_flatten_from(out["from"]))
        if normalized is None:
            out.pop("from")
        else:
            out["from"] = normalized
    if isinstance(out.get("transform"), str):
        out["transform"] = out["transform"].strip() or None
    return out


def normalize_mapping_shape(obj: Dict[str, Any]) -> Dict[str, Any]:
    """Coerce the loose shapes a proposer tends to emit into the Mapping shape."""
    out = dict(obj)
    fields = out.get("fieldMappings")
    if isinstance(fields, dict):
        out["fieldMappings"] = {str(k).strip(): _normalize_spec(v) for k, v in fields.items()}

    media = out.get("mediaMappings")
    if isinstance(media, dict):
        kept = {k: _normalize_spec(v) for k, v in media.items() if str(k).strip() == schema.MEDIA_LINK_KEY}
        if kept:
            out["mediaMappings"] = kept
        else:
            out.pop("mediaMappings")
    elif media is None:
        out.pop("mediaMappings", None)
    return out


def _validate(obj: Dict[str, Any], raw: str) -> Mapping:
    try:
        return Mapping.model_validate(normalize_mapping_shape(obj))
    except ValidationError as e:
        raise MappingShapeError("Mapping failed validation", snippet=raw, error=str(e))


def extract_mapping(raw_text: str) -> Mapping:
    """Parse proposer output into a validated Mapping or raise MappingShapeError."""
    obj = extract_json_object(raw_text or "")
    if obj is None:
        raise MappingShapeError(
            "Could not parse mapping JSON from model output",
            snippet=raw_text or "",
            error="no JSON object found",
        )
    return _validate(obj, raw_text)


def parse_mapping_document(doc: Union[str, Dict[str, Any], Mapping]) -> Mapping:
    """Validate a mapping handed back by a client (previous or confirmed mapping)."""
    if isinstance(doc, Mapping):
        return doc
    if isinstance(doc, str):
        obj = _loads_object(doc.strip())
        if obj is None:
            raise MappingShapeError("Mapping must be a JSON object", snippet=doc, error="invalid JSON")
        return _validate(obj, doc)
    if isinstance(doc, dict):
        return _validate(doc, json.dumps(doc, default=str))
    raise MappingShapeError("Mapping must be a JSON object", snippet=repr(doc), error=type(doc).__name__)
