"""
Named value transforms applied while mapping a CSV cell onto a schema column.

Transforms are referred to by string identifiers inside a Mapping document
(``"trim"``, ``"toCentimeters"``, ``"enum:black,blonde"``,
``"toUkShoeMin:female:eu"`` ...). Those identifiers are parsed exactly once
into a :class:`TransformSpec` (a kind plus typed parameters) and dispatched
through a fixed table, so the string form only exists at the document edge.

Public API:
- parse_transform(transform_id) -> TransformSpec
- apply_transform(value, transform_id)
- apply_spec(value, spec)
- select_transform(table, column, requested, gender, source_key)
"""
from __future__ import annotations
import logging
import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from .errors import UnknownTransformError
from .normalize import (
    SHOE_FRACTIONS,
    js_round,
    normalize_fractions,
    normalize_key,
    tidy_number,
)
from . import schema


logger = logging.getLogger(__name__)


class TransformKind(str, Enum):
    TRIM = "trim"
    LOWERCASE = "lowercase"
    UPPERCASE = "uppercase"
    PARSE_NUMBER = "parseNumber"
    TO_CENTIMETERS = "toCentimeters"
    NORMALIZE_GENDER = "normalizeGender"
    ENUM = "enum"
    UK_SHOE_MIN = "toUkShoeMin"
    UK_SHOE_MAX = "toUkShoeMax"
    # Only read explicit UK values; kept for mappings written before the
    # gender-aware shoe transforms existed.
    LEGACY_UK_SHOE_MIN = "parseUkShoeMin"
    LEGACY_UK_SHOE_MAX = "parseUkShoeMax"


SHOE_KINDS = (TransformKind.UK_SHOE_MIN, TransformKind.UK_SHOE_MAX)
UNIT_HINTS = ("uk", "eu", "us")


@dataclass(frozen=True)
class EnumParams:
    choices: Tuple[str, ...]


@dataclass(frozen=True)
class ShoeParams:
    gender: str = ""
    unit_hint: str = ""


@dataclass(frozen=True)
class TransformSpec:
    kind: TransformKind
    params: Union[EnumParams, ShoeParams, None] = None

    def to_id(self) -> str:
        if self.kind is TransformKind.ENUM:
            return "enum:" + ",".join(self.params.choices)  # type: ignore[union-attr]
        if self.kind in SHOE_KINDS and self.params and (self.params.gender or self.params.unit_hint):
            return f"{self.kind.value}:{self.params.gender}:{self.params.unit_hint}"
        return self.kind.value


def parse_transform(transform_id: str) -> TransformSpec:
    tid = (transform_id or "").strip()
    if tid.startswith("enum:"):
        choices = tuple(c.strip() for c in tid[len("enum:"):].split(","))
        return TransformSpec(TransformKind.ENUM, EnumParams(choices))
    head, _, rest = tid.partition(":")
    try:
        kind = TransformKind(head)
    except ValueError:
        raise UnknownTransformError(f"Unknown transform: {transform_id!r}", snippet=str(transform_id))
    if kind is TransformKind.ENUM:
        # bare "enum" carries no choices
        raise UnknownTransformError("enum transform requires choices (enum:<a,b,c>)", snippet=tid)
    if kind in SHOE_KINDS:
        parts = rest.split(":") if rest else []
        gender = (parts[0] if parts else "").strip().lower()
        hint = (parts[1] if len(parts) > 1 else "").strip().lower()
        return TransformSpec(kind, ShoeParams(gender, hint if hint in UNIT_HINTS else ""))
    if rest:
        raise UnknownTransformError(f"Transform {head!r} takes no parameters", snippet=tid)
    return TransformSpec(kind)


def is_known_transform(transform_id: str) -> bool:
    try:
        parse_transform(transform_id)
    except UnknownTransformError:
        return False
    return True


# --- string normalization -------------------------------------------------

def _trim(v, _p=None):
    return v.strip() if isinstance(v, str) else v


def _lowercase(v, _p=None):
    return v.strip().lower() if isinstance(v, str) else v


def _uppercase(v, _p=None):
    return v.strip().upper() if isinstance(v, str) else v


# --- numbers --------------------------------------------------------------

def parse_number(v, _p=None):
    if v is None or v == "":
        return None
    cleaned = re.sub(r"[^0-9.\-]", "", str(v))
    if not cleaned:
        return None
    try:
        num = float(cleaned)
    except ValueError:
        return None
    if not math.isfinite(num):
        return None
    return tidy_number(num)


CM_RE = re.compile(r"(\d+(?:\.\d+)?)\s*cm")
FT_IN_RE = re.compile(r"(\d+(?:\.\d+)?)\s*(?:ft|')\s*(\d*(?:\.\d+)?)?\s*(?:in|inch|inches|\"|)?")
IN_RE = re.compile(r"(\d+(?:\.\d+)?)\s*(?:in|inch|inches|\")")


def _length_text(v) -> str:
    s = normalize_fractions(str(v).lower().strip())
    # 32'' -> 32", and prime marks to ASCII
    return s.replace("''", '"').replace("″", '"').replace("′", "'")


def to_centimeters(v, _p=None) -> Optional[int]:
    if v is None or v == "":
        return None
    s = _length_text(v)

    m = CM_RE.search(s)
    if m:
        return js_round(float(m.group(1)))

    m = FT_IN_RE.search(s)
    if m:
        ft = float(m.group(1))
        inch = float(m.group(2)) if m.group(2) else 0.0
        return js_round((ft * 12 + inch) * 2.54)

    m = IN_RE.search(s)
    if m:
        return js_round(float(m.group(1)) * 2.54)

    plain = re.sub(r"[^0-9.\-]", "", s)
    if not plain:
        return None
    try:
        n = float(plain)
    except ValueError:
        return None
    return js_round(n) if math.isfinite(n) else None


# --- enums ----------------------------------------------------------------

GENDER_SYNONYMS = {
    "male": "male", "m": "male", "man": "male",
    "female": "female", "f": "female", "woman": "female",
    "transgender": "transgender", "trans": "transgender",
    "non-binary": "non-binary", "nonbinary": "non-binary", "nb": "non-binary",
    "transman": "transman", "transwoman": "transwoman",
}


def normalize_gender(v, _p=None) -> Optional[str]:
    s = str(v or "").lower().strip()
    return GENDER_SYNONYMS.get(s)


def _enum_token(s: str) -> str:
    s = re.sub(r"\s+", "_", s.lower().strip())
    return re.sub(r"[^a-z0-9_]", "", s)


SPELLING_VARIANTS = [("blonde", "blond"), ("blond", "blonde"), ("gray", "grey"), ("grey", "gray")]


def enum_aliases(choices) -> Dict[str, str]:
    """Alias -> canonical choice. Later choices win when two share an alias."""
    index: Dict[str, str] = {}
    for choice in choices:
        c = _enum_token(choice)
        forms = [c]
        for needle, repl in SPELLING_VARIANTS:
            if needle in c:
                forms.append(c.replace(needle, repl))
        for f in forms:
            index[f] = choice
            index[f.replace("_", "")] = choice
    return index


def enum_sanitize(v, params: EnumParams) -> Optional[str]:
    if v is None:
        return None
    index = enum_aliases(params.choices)
    token = _enum_token(str(v))
    return index.get(token) or index.get(token.replace("_", ""))


# --- shoe sizes -----------------------------------------------------------

_NUM = r"([0-9]+(?:\.[0-9]+)?)"
_RANGE_SEP = r"\s*[-/–]\s*"

# EU and US offsets to UK, by gender; anything else gets the midpoint.
SHOE_OFFSETS = {
    "female": {"eu": 33.0, "us": 2.0},
    "male": {"eu": 34.0, "us": 1.0},
}
SHOE_GENDER_ALIASES = {"female": "female", "woman": "female", "male": "male", "man": "male"}


def _unit_values(raw: str, unit: str) -> List[float]:
    vals: List[float] = []
    for m in re.finditer(rf"{unit}\s*{_NUM}{_RANGE_SEP}{_NUM}", raw):
        vals += [float(m.group(1)), float(m.group(2))]
    for m in re.finditer(rf"{_NUM}{_RANGE_SEP}{_NUM}\s*{unit}", raw):
        vals += [float(m.group(1)), float(m.group(2))]
    for m in re.finditer(rf"{unit}\s*{_NUM}", raw):
        vals.append(float(m.group(1)))
    for m in re.finditer(rf"{_NUM}\s*{unit}", raw):
        vals.append(float(m.group(1)))
    return vals


def shoe_to_uk(n: float, unit: str, gender: str) -> float:
    if unit == "uk":
        return n
    g = SHOE_GENDER_ALIASES.get((gender or "").lower())
    if g:
        return n - SHOE_OFFSETS[g][unit]
    return n - (SHOE_OFFSETS["female"][unit] + SHOE_OFFSETS["male"][unit]) / 2


def shoe_bounds(value, gender: str = "", unit_hint: str = "") -> Optional[Tuple[float, float]]:
    if value is None:
        return None
    raw = normalize_fractions(str(value).lower().strip(), SHOE_FRACTIONS)
    if not raw:
        return None

    converted: List[float] = []
    uk = _unit_values(raw, "(?:uk)")
    eu = _unit_values(raw, "(?:eu|eur)")
    us = _unit_values(raw, "(?:us|usa)")
    if uk:
        converted = uk
    elif eu:
        converted = [shoe_to_uk(n, "eu", gender) for n in eu]
    elif us:
        converted = [shoe_to_uk(n, "us", gender) for n in us]
    else:
        bare = [float(m.group(1)) for m in re.finditer(_NUM, raw)]
        unit = unit_hint if unit_hint in ("eu", "us") else "uk"
        converted = [shoe_to_uk(n, unit, gender) for n in bare]

    if not converted:
        return None
    return min(converted), max(converted)


def legacy_uk_shoe_bounds(value) -> Optional[Tuple[float, float]]:
    if value is None:
        return None
    raw = normalize_fractions(str(value), SHOE_FRACTIONS).lower().strip()
    idx = raw.find("uk")
    if idx == -1:
        return None
    nums = [float(m) for m in re.findall(r"(\d+(?:\.\d+)?)", raw[idx:])]
    if not nums:
        return None
    return min(nums), max(nums)


def _shoe(pick: int) -> Callable:
    def run(v, params: ShoeParams):
        b = shoe_bounds(v, params.gender, params.unit_hint)
        return tidy_number(b[pick]) if b else None
    return run


def _legacy_shoe(pick: int) -> Callable:
    def run(v, _p=None):
        b = legacy_uk_shoe_bounds(v)
        return tidy_number(b[pick]) if b else None
    return run


DISPATCH: Dict[TransformKind, Callable[[Any, Any], Any]] = {
    TransformKind.TRIM: _trim,
    TransformKind.LOWERCASE: _lowercase,
    TransformKind.UPPERCASE: _uppercase,
    TransformKind.PARSE_NUMBER: parse_number,
    TransformKind.TO_CENTIMETERS: to_centimeters,
    TransformKind.NORMALIZE_GENDER: normalize_gender,
    TransformKind.ENUM: enum_sanitize,
    TransformKind.UK_SHOE_MIN: _shoe(0),
    TransformKind.UK_SHOE_MAX: _shoe(1),
    TransformKind.LEGACY_UK_SHOE_MIN: _legacy_shoe(0),
    TransformKind.LEGACY_UK_SHOE_MAX: _legacy_shoe(1),
}

def apply_spec(value, spec: Optional[TransformSpec]):
    if spec is None:
        return value
    return DISPATCH[spec.kind](value, spec.params)


def apply_transform(value, transform_id: Optional[str]):
    if not transform_id:
        return value
    try:
        spec = parse_transform(transform_id)
    except UnknownTransformError:
        logger.warning(f"Ignoring unknown transform {transform_id!r}")
        return value
    return apply_spec(value, spec)


def prompt_transform_names() -> List[str]:
    names = [k.value for k in TransformKind if k is not TransformKind.ENUM]
    return names + ["enum:<comma_separated_choices>"]


# --- selection policy -----------------------------------------------------

_EU_KEY = re.compile(r"(?<![a-z])(?:eu|eur)(?![a-z])|european")
_US_KEY = re.compile(r"(?<![a-z])(?:us|usa)(?![a-z])|american")
_UK_KEY = re.compile(r"(?<![a-z])uk(?![a-z])|british")


def unit_hint_from_header(header: Optional[str]) -> str:
    if not header:
        return ""
    k = normalize_key(header)
    if _EU_KEY.search(k):
        return "eu"
    if _US_KEY.search(k):
        return "us"
    if _UK_KEY.search(k):
        return "uk"
    return ""


def select_transform(
    table: str,
    column: str,
    requested: Optional[str],
    gender: Optional[str] = None,
    source_key: Optional[str] = None,
) -> Optional[TransformSpec]:
    """Pick the transform actually applied for a target column.

    Lengths always go through toCentimeters. Shoe sizes get the gender/unit
    aware UK conversion unless something other than parseNumber was asked
    for. Enum columns get their canonicalizer unless the mapping already
    names an enum transform.
    """
    requested = (requested or "").strip() or None

    if column in schema.LENGTH_FIELDS:
        return TransformSpec(TransformKind.TO_CENTIMETERS)

    spec: Optional[TransformSpec] = None
    if requested:
        try:
            spec = parse_transform(requested)
        except UnknownTransformError:
            logger.warning(f"{table}.{column}: ignoring unknown transform {requested!r}")
            spec = None

    if table == schema.MODELS_TABLE:
        shoe_base = schema.SHOE_TRANSFORM_BY_FIELD.get(column)
        if shoe_base and (requested is None or requested == TransformKind.PARSE_NUMBER.value):
            spec = TransformSpec(
                TransformKind(shoe_base),
                ShoeParams((gender or "").lower(), unit_hint_from_header(source_key)),
            )

        values = schema.enum_values(column)
        if values and (spec is None or spec.kind is not TransformKind.ENUM):
            spec = TransformSpec(TransformKind.ENUM, EnumParams(values))

    return spec
