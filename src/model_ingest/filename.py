from __future__ import annotations
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .normalize import filename_tokens
from .schema import GENDERS


FEMALE_HINTS = [
    "female", "females",
    "women", "womens", "woman", "womxn",
    "girls", "girl",
    "ladies", "lady",
]

MALE_HINTS = [
    "male", "males",
    "men", "mens", "man",
    "boys", "boy",
    "guys", "gentlemen", "gentleman", "gents",
]

# Ordered; earlier entries win when a filename matches several boards.
BOARD_CANDIDATES: List[Tuple[str, List[str]]] = [
    ("image", ["image"]),
    ("mainboard", ["mainboard", "main_board"]),
    ("a_new_face", ["a_new_face", "new_face", "new_faces", "newface", "newfaces"]),
    ("development", ["development"]),
    ("non_binary_aka_x_division", ["non_binary_aka_x_division", "x_division", "non_binary", "non-binary", "nonbinary", "nb"]),
    ("direct", ["direct"]),
    ("youth", ["youth"]),
    ("classic", ["classic"]),
    ("timeless", ["timeless"]),
    ("curve", ["curve"]),
    ("teen", ["teen"]),
    ("commercial", ["commercial"]),
    ("preview", ["preview"]),
    ("verve", ["verve"]),
    ("big_and_tall", ["big_and_tall", "bigandtall", "big_tall", "big-tall"]),
    ("a_family", ["a_family", "family"]),
    ("couples", ["couples"]),
    ("petite", ["petite"]),
    ("lifestyle", ["lifestyle"]),
    ("fit", ["fit"]),
    ("runway", ["runway"]),
    ("streetcast", ["streetcast"]),
    ("elite", ["elite"]),
    ("premier", ["premier"]),
]

# Multi-word compounds whose words may appear anywhere in the name.
BOARD_COMPOUNDS: List[Tuple[Tuple[str, ...], str]] = [
    (("new", "face"), "a_new_face"),
    (("new", "faces"), "a_new_face"),
    (("main", "board"), "mainboard"),
    (("big", "and", "tall"), "big_and_tall"),
    (("x", "division"), "non_binary_aka_x_division"),
    (("non", "binary"), "non_binary_aka_x_division"),
]


class _Name:
    def __init__(self, filename: str) -> None:
        self.underscored, self.tokens = filename_tokens(filename)

    def has(self, token: str) -> bool:
        return token in self.tokens

    def bounded(self, phrase: str) -> bool:
        return re.search(rf"(^|_){re.escape(phrase)}(_|$)", self.underscored) is not None

    def either(self, token: str) -> bool:
        return self.has(token) or self.bounded(token)

    def has_all(self, *tokens: str) -> bool:
        return all(t in self.tokens for t in tokens)


def infer_gender(filename: str) -> Optional[str]:
    """Infer the gender tag from an uploaded file name, or None when no hint matches."""
    n = _Name(filename)

    # Most specific first
    if n.has("transman") or n.bounded("trans_man"):
        return "transman"
    if n.has("transwoman") or n.bounded("trans_woman"):
        return "transwoman"
    if n.has("transgender") or n.bounded("trans"):
        return "transgender"
    if n.has("nonbinary") or n.bounded("non_binary") or n.has("nb") or n.bounded("x_division") or n.has("enby"):
        return "non-binary"

    for h in FEMALE_HINTS:
        if n.either(h):
            return "female"
    for h in MALE_HINTS:
        if n.either(h):
            return "male"
    return None


def expand_variants(token: str) -> List[str]:
    """Declined forms of a board token: plurals and separator-free spellings."""
    u = token.replace("-", "_")
    variants = [u]

    def add(v: str) -> None:
        if v not in variants:
            variants.append(v)

    if not u.endswith("s"):
        add(u + "s")
    if u.endswith("y"):
        add(u[:-1] + "ies")
    if re.search(r"(s|x|ch|sh)$", u):
        add(u + "es")
    add(u.replace("_", ""))
    return variants


def infer_board_category(filename: str) -> Optional[str]:
    """Infer the model board category from an uploaded file name, or None."""
    n = _Name(filename)

    for words, board in BOARD_COMPOUNDS:
        if n.has_all(*words):
            return board

    # A lone "main" means mainboard
    if n.either("main"):
        return "mainboard"

    for board, tokens in BOARD_CANDIDATES:
        for tok in tokens:
            for t in expand_variants(tok):
                if n.bounded(t) or n.has(t) or n.bounded(t.replace("_", "")):
                    return board
    return None


@dataclass(frozen=True)
class InferredContext:
    gender: Optional[str]
    board_category: Optional[str]
    source_id: str


def infer_context(filename: str, gender_override: Optional[str] = None) -> InferredContext:
    """Context stamped onto every record of an upload.

    The source id is the uploaded file name as given; a recognised explicit gender
    wins over whatever the name suggests.
    """
    source_id = (filename or "").strip()
    override = (gender_override or "").strip().lower()
    gender = override if override in GENDERS else infer_gender(source_id)
    return InferredContext(gender, infer_board_category(source_id), source_id)
