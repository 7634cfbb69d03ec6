import math
import re


FRACTIONS = {
    "½": ".5",
    "¼": ".25",
    "¾": ".75",
    "⅓": ".3333",
    "⅔": ".6667",
    "⅛": ".125",
    "⅜": ".375",
    "⅝": ".625",
    "⅞": ".875",
}

# Shoe sizes only ever carry halves and quarters.
SHOE_FRACTIONS = {k: FRACTIONS[k] for k in ("½", "¼", "¾")}

URL_RE = re.compile(r"^https?://", re.IGNORECASE)
NAME_DELIMS_RE = re.compile(r"([\s\-'’]+)")
NAME_SEGMENT_RE = re.compile(r"([\-'’])")


def normalize_fractions(s: str, table: dict = FRACTIONS) -> str:
    for ch, dec in table.items():
        s = s.replace(ch, dec)
    return s


def normalize_key(key: str) -> str:
    """Header/candidate key form used for tolerant column lookup."""
    s = str(key or "").lower().strip()
    s = re.sub(r"\s+", "_", s)
    s = re.sub(r"-+", "_", s)
    return s


def filename_tokens(name: str) -> tuple:
    lower = str(name or "").lower()
    underscored = re.sub(r"[^a-z0-9]+", "_", lower)
    underscored = re.sub(r"_+", "_", underscored)
    tokens = {t for t in underscored.split("_") if t}
    return underscored, tokens


def is_blank(v) -> bool:
    return v is None or str(v).strip() == ""


def js_round(x: float) -> int:
    # Math.round: halves go up, also for negatives (-2.5 -> -2)
    return int(math.floor(x + 0.5))


def tidy_number(n: float):
    if isinstance(n, float) and n.is_integer():
        return int(n)
    return n


def extract_urls(value) -> list:
    if value is None:
        return []
    parts = [p.strip() for p in re.split(r"[\s,;]+", str(value))]
    urls: list[str] = []
    for p in parts:
        if p and URL_RE.match(p) and p not in urls:
            urls.append(p)
    return urls


def title_case_name(value):
    if value is None:
        return None
    s = str(value).strip()
    if not s:
        return None

    def cap(word: str) -> str:
        segs = NAME_SEGMENT_RE.split(word)
        return "".join(seg if NAME_SEGMENT_RE.fullmatch(seg) else seg[:1].upper() + seg[1:] for seg in segs)

    parts = NAME_DELIMS_RE.split(s.lower())
    titled = "".join(p if NAME_DELIMS_RE.fullmatch(p) else cap(p) for p in parts)
    return re.sub(r"\s+", " ", titled).strip()


def strip_extension(filename: str) -> str:
    return re.sub(r"\.[a-z0-9]+$", "", filename or "", flags=re.IGNORECASE)
