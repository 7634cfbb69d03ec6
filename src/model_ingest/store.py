from __future__ import annotations
import json
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from .errors import ConflictError


ModelKey = Tuple[Optional[str], Optional[str], Optional[str]]

# Stored as columns so the composite key and enrichment checks are queryable;
# the full record is kept as JSON alongside.
KEY_COLUMNS = ("data_source", "gender", "model_board_category", "model_name", "instagram_account")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ModelStore:
    """sqlite-backed persistent store for models, their media and agency links."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def init(self) -> "ModelStore":
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS models (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    data_source TEXT NOT NULL,
                    gender TEXT,
                    model_board_category TEXT,
                    model_name TEXT,
                    instagram_account TEXT,
                    cv_infer INTEGER NOT NULL DEFAULT 0,
                    record TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
                """
            )
            cur.execute("CREATE INDEX IF NOT EXISTS idx_models_data_source ON models(data_source)")
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS models_media (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    model_id INTEGER NOT NULL REFERENCES models(id),
                    link TEXT NOT NULL,
                    UNIQUE(model_id, link)
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS agencies (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    country TEXT,
                    city TEXT,
                    continent TEXT,
                    website TEXT,
                    created_at TEXT NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS models_agencies (
                    model_id INTEGER NOT NULL REFERENCES models(id),
                    agency_id TEXT NOT NULL,
                    UNIQUE(model_id, agency_id)
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS ingestions (
                    data_source TEXT PRIMARY KEY,
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.commit()
        return self

    # --- source bookkeeping ---------------------------------------------

    def source_exists(self, data_source: str) -> bool:
        with self._connect() as conn:
            r = conn.execute("SELECT 1 FROM models WHERE data_source=? LIMIT 1", (data_source,)).fetchone()
            if r is not None:
                return True
            r = conn.execute("SELECT 1 FROM ingestions WHERE data_source=?", (data_source,)).fetchone()
        return r is not None

    def claim_source(self, data_source: str) -> None:
        """Reserve a source id for one ingestion; a second claim raises ConflictError."""
        try:
            with self._connect() as conn:
                conn.execute("INSERT INTO ingestions(data_source, created_at) VALUES(?,?)", (data_source, _now()))
                conn.commit()
        except sqlite3.IntegrityError:
            raise ConflictError(data_source)

    def release_source(self, data_source: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM ingestions WHERE data_source=?", (data_source,))
            conn.commit()

    def delete_by_source(self, data_source: str) -> int:
        with self._connect() as conn:
            ids = [r["id"] for r in conn.execute("SELECT id FROM models WHERE data_source=?", (data_source,))]
            # Dependents first
            for chunk_start in range(0, len(ids), 500):
                chunk = ids[chunk_start : chunk_start + 500]
                marks = ",".join("?" * len(chunk))
                conn.execute(f"DELETE FROM models_media WHERE model_id IN ({marks})", chunk)
                conn.execute(f"DELETE FROM models_agencies WHERE model_id IN ({marks})", chunk)
            cur = conn.execute("DELETE FROM models WHERE data_source=?", (data_source,))
            conn.execute("DELETE FROM ingestions WHERE data_source=?", (data_source,))
            conn.commit()
            return cur.rowcount or 0

    # --- models -----------------------------------------------------------

    def insert_models(self, records: Sequence[Dict]) -> List[int]:
        """Insert all records in one transaction and return their ids in input order.

        Any failure rolls back the whole chunk.
        """
        now = _now()
        rows = [
            tuple(r.get(c) for c in KEY_COLUMNS) + (json.dumps(r, default=str), now)
            for r in records
        ]
        ids: List[int] = []
        with self._connect() as conn:
            for row in rows:
                cur = conn.execute(
                    "INSERT INTO models(data_source,gender,model_board_category,model_name,instagram_account,record,created_at)"
                    " VALUES(?,?,?,?,?,?,?)",
                    row,
                )
                ids.append(cur.lastrowid)
            conn.commit()
        return ids

    def model_ids_by_key(self, data_source: str) -> Dict[ModelKey, int]:
        """(gender, model_board_category, model_name) -> id for one source; later rows win."""
        out: Dict[ModelKey, int] = {}
        with self._connect() as conn:
            for r in conn.execute(
                "SELECT id, gender, model_board_category, model_name FROM models WHERE data_source=? ORDER BY id",
                (data_source,),
            ):
                out[(r["gender"], r["model_board_category"], r["model_name"])] = r["id"]
        return out

    def get_model(self, model_id: int) -> Optional[Dict]:
        with self._connect() as conn:
            r = conn.execute("SELECT * FROM models WHERE id=?", (model_id,)).fetchone()
        if r is None:
            return None
        d = dict(r)
        d["record"] = json.loads(d.get("record") or "{}")
        d["cv_infer"] = bool(d.get("cv_infer"))
        return d

    def set_cv_infer(self, model_id: int, value: bool = True) -> None:
        with self._connect() as conn:
            conn.execute("UPDATE models SET cv_infer=? WHERE id=?", (1 if value else 0, model_id))
            conn.commit()

    def model_ids_for_source(self, data_source: str) -> List[int]:
        with self._connect() as conn:
            return [r["id"] for r in conn.execute("SELECT id FROM models WHERE data_source=? ORDER BY id", (data_source,))]

    # --- media and agency links ---------------------------------------------

    def count_media(self, model_id: int) -> int:
        with self._connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM models_media WHERE model_id=?", (model_id,)).fetchone()[0]

    def media_links(self, model_id: int) -> List[str]:
        with self._connect() as conn:
            return [r["link"] for r in conn.execute("SELECT link FROM models_media WHERE model_id=? ORDER BY id", (model_id,))]

    def existing_media(self, model_ids: Iterable[int]) -> Set[Tuple[int, str]]:
        ids = list(set(model_ids))
        found: Set[Tuple[int, str]] = set()
        with self._connect() as conn:
            for start in range(0, len(ids), 500):
                chunk = ids[start : start + 500]
                marks = ",".join("?" * len(chunk))
                for r in conn.execute(f"SELECT model_id, link FROM models_media WHERE model_id IN ({marks})", chunk):
                    found.add((r["model_id"], r["link"]))
        return found

    def insert_media(self, pairs: Sequence[Tuple[int, str]]) -> int:
        if not pairs:
            return 0
        with self._connect() as conn:
            conn.executemany("INSERT INTO models_media(model_id, link) VALUES(?,?)", list(pairs))
            conn.commit()
        return len(pairs)

    def existing_agency_links(self, model_ids: Iterable[int], agency_id: str) -> Set[int]:
        ids = list(set(model_ids))
        found: Set[int] = set()
        with self._connect() as conn:
            for start in range(0, len(ids), 500):
                chunk = ids[start : start + 500]
                marks = ",".join("?" * len(chunk))
                for r in conn.execute(
                    f"SELECT model_id FROM models_agencies WHERE agency_id=? AND model_id IN ({marks})",
                    [agency_id, *chunk],
                ):
                    found.add(r["model_id"])
        return found

    def insert_agency_links(self, model_ids: Sequence[int], agency_id: str) -> int:
        if not model_ids:
            return 0
        with self._connect() as conn:
            conn.executemany(
                "INSERT INTO models_agencies(model_id, agency_id) VALUES(?,?)",
                [(m, agency_id) for m in model_ids],
            )
            conn.commit()
        return len(model_ids)

    # --- agencies -----------------------------------------------------------

    def list_agencies(self) -> List[Dict]:
        with self._connect() as conn:
            return [
                dict(r)
                for r in conn.execute("SELECT id,name,country,city,continent,website FROM agencies ORDER BY name")
            ]

    def find_agency_by_name(self, name: str) -> Optional[Dict]:
        with self._connect() as conn:
            r = conn.execute(
                "SELECT id,name,website FROM agencies WHERE lower(name)=lower(?) LIMIT 1", (name,)
            ).fetchone()
        return dict(r) if r else None

    def insert_agency(self, agency: Dict) -> Dict:
        row = {
            "id": agency.get("id") or str(uuid.uuid4()),
            "name": agency["name"],
            "country": agency.get("country"),
            "city": agency.get("city"),
            "continent": agency.get("continent"),
            "website": agency.get("website"),
        }
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO agencies(id,name,country,city,continent,website,created_at) VALUES(?,?,?,?,?,?,?)",
                (row["id"], row["name"], row["country"], row["city"], row["continent"], row["website"], _now()),
            )
            conn.commit()
        return row
