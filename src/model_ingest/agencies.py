from __future__ import annotations
import logging
import re
from typing import Any, Dict, List, Optional, Set
from urllib.parse import urlsplit, urlunsplit

from .errors import ConflictError, IngestError, UserInputError
from .io import Table
from .normalize import strip_extension
from .parser import extract_json_object
from .proposer import MappingProposer
from .store import ModelStore


logger = logging.getLogger(__name__)

GENERIC_TOKENS = {
    "agency", "agencies", "management", "models", "model", "group", "the", "official",
    "inc", "ltd", "llc", "company", "co", "studio",
}

AGENCY_FIELDS = ("name", "country", "city", "continent", "website")

AGENCY_SYSTEM_PROMPT = (
    "You are an assistant helping extract the likely modelling agency associated with a CSV export.\n"
    "Use only the provided filename, headers, and sample rows. Do not browse the web.\n"
    "Infer the best candidate agency details if present (e.g., from filename, headers like agency, source, "
    "website, copyright, about, footer, etc.).\n"
    "Output a single JSON object with keys: proposedAgency { name, country, city, continent, website }, "
    "confidence (0-1), evidence (string).\n"
    "If you cannot infer a value, set it to null. Do not invent facts."
)


def _with_scheme(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    u = str(url).strip()
    if not u:
        return None
    if not re.match(r"^https?://", u, re.IGNORECASE):
        u = f"https://{u}"
    return u


def normalize_url(url: Optional[str]) -> Optional[str]:
    """Add a scheme when missing and drop a leading www."""
    u = _with_scheme(url)
    if u is None:
        return None
    parts = urlsplit(u)
    if not parts.hostname:
        return None
    netloc = re.sub(r"^www\.", "", parts.netloc.lower())
    return urlunsplit((parts.scheme.lower(), netloc, parts.path or "/", parts.query, parts.fragment))


def domain_of(url: Optional[str]) -> Optional[str]:
    u = _with_scheme(url)
    if u is None:
        return None
    host = urlsplit(u).hostname
    return re.sub(r"^www\.", "", host) if host else None


def normalize_name(name: str) -> str:
    s = str(name or "").lower().replace("&", " and ")
    s = re.sub(r"[^a-z0-9\s]", " ", s)
    return re.sub(r"\s+", " ", s).strip()


def tokenize_name(name: str) -> Set[str]:
    return {t for t in normalize_name(name).split(" ") if t and t not in GENERIC_TOKENS}


def jaccard(a: Set[str], b: Set[str]) -> float:
    if not a or not b:
        return 0.0
    inter = len(a & b)
    union = len(a) + len(b) - inter
    return inter / union if union else 0.0


def _sanitize(name: str) -> str:
    s = re.sub(r"aida", "", name, flags=re.IGNORECASE)
    return re.sub(r"[_\-\s]+", " ", s).strip()


def propose_agency_name(filename: str) -> str:
    base = strip_extension(filename or "")
    return _sanitize(base) or base


def suggest_agencies(store: ModelStore, name: Optional[str], website: Optional[str] = None, limit: int = 5) -> List[Dict]:
    cand_tokens = tokenize_name(name or "")
    cand_domain = domain_of(website)
    scored = []
    for a in store.list_agencies():
        name_sim = jaccard(cand_tokens, tokenize_name(a.get("name") or ""))
        a_domain = domain_of(a.get("website"))
        bonus = 0.3 if a_domain and cand_domain and a_domain == cand_domain else 0.0
        score = min(1.0, name_sim * 0.9 + bonus)
        if score > 0.2:
            scored.append({**a, "score": score})
    scored.sort(key=lambda a: a["score"], reverse=True)
    return scored[:limit]


def propose_agency(proposer: Optional[MappingProposer], filename: str, table: Table) -> Dict[str, Any]:
    """Best guess at the agency behind an export; falls back to the cleaned file name."""
    sanitized = propose_agency_name(filename)
    proposed: Dict[str, Any] = {k: None for k in AGENCY_FIELDS}
    if proposer is not None:
        payload = {"filename": sanitized, "headers": table.headers, "sampleRows": table.sample(10)}
        try:
            obj = extract_json_object(proposer.complete(AGENCY_SYSTEM_PROMPT, payload, max_tokens=800))
            found = (obj or {}).get("proposedAgency")
            if isinstance(found, dict):
                proposed.update({k: found.get(k) for k in AGENCY_FIELDS})
                if isinstance(proposed["name"], str):
                    proposed["name"] = _sanitize(proposed["name"]) or proposed["name"]
        except IngestError as e:
            logger.warning(f"Agency proposal failed for {filename}: {e}")
    if not proposed["name"]:
        proposed["name"] = sanitized or None
    return proposed


def suggest_for_upload(
    store: ModelStore, proposer: Optional[MappingProposer], filename: str, table: Table
) -> Dict[str, Any]:
    proposed = propose_agency(proposer, filename, table)
    suggestions = suggest_agencies(store, proposed.get("name"), proposed.get("website"))
    return {
        "suggestions": suggestions,
        "proposedAgency": proposed,
        "totalAgencies": len(store.list_agencies()),
    }


def create_agency(
    store: ModelStore,
    name: str,
    country: Optional[str] = None,
    city: Optional[str] = None,
    continent: Optional[str] = None,
    website: Optional[str] = None,
) -> Dict:
    name = (name or "").strip()
    if not name:
        raise UserInputError("Agency name is required")
    existing = store.find_agency_by_name(name)
    if existing:
        err = ConflictError(name, "An agency with a similar name already exists")
        err.data = existing
        raise err
    return store.insert_agency(
        {
            "name": name,
            "country": (country or "").strip() or None,
            "city": (city or "").strip() or None,
            "continent": (continent or "").strip() or None,
            "website": normalize_url(website),
        }
    )
