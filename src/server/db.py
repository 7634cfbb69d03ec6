from __future__ import annotations
import json
import sqlite3
from pathlib import Path
from typing import Dict, List, Optional


DB_PATH: Optional[Path] = None

JOB_COLUMNS = ("id", "kind", "status", "created_at", "started_at", "finished_at", "params", "error", "counters")


def init_db(db_path: Path) -> None:
    """Job bookkeeping for the server; model data lives in the ingest store."""
    global DB_PATH
    DB_PATH = db_path
    db_path.parent.mkdir(parents=True, exist_ok=True)
    with sqlite3.connect(str(db_path)) as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS jobs (
                id TEXT PRIMARY KEY,
                kind TEXT NOT NULL,
                status TEXT NOT NULL,
                created_at TEXT NOT NULL,
                started_at TEXT,
                finished_at TEXT,
                params TEXT NOT NULL,
                error TEXT,
                counters TEXT
            )
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_jobs_created ON jobs(created_at)")
        conn.commit()


def _encode(job: Dict) -> tuple:
    def ts(key: str) -> Optional[str]:
        v = job.get(key)
        return str(v) if v else None

    return (
        job["id"],
        job.get("kind") or "enrich",
        job.get("status") or "queued",
        ts("created_at"),
        ts("started_at"),
        ts("finished_at"),
        json.dumps(job.get("params") or {}, default=str),
        job.get("error"),
        json.dumps(job.get("counters") or {}, default=str),
    )


def _decode(row: sqlite3.Row) -> Dict:
    d = dict(row)
    for key in ("params", "counters"):
        try:
            d[key] = json.loads(d.get(key) or "{}")
        except ValueError:
            d[key] = {}
    return d


def update_job(job: Dict) -> None:
    """Insert or overwrite the row for one job."""
    assert DB_PATH is not None
    marks = ",".join("?" * len(JOB_COLUMNS))
    with sqlite3.connect(str(DB_PATH)) as conn:
        conn.execute(f"INSERT OR REPLACE INTO jobs({','.join(JOB_COLUMNS)}) VALUES({marks})", _encode(job))
        conn.commit()


def get_job(job_id: str) -> Optional[Dict]:
    assert DB_PATH is not None
    with sqlite3.connect(str(DB_PATH)) as conn:
        conn.row_factory = sqlite3.Row
        r = conn.execute("SELECT * FROM jobs WHERE id=?", (job_id,)).fetchone()
        return _decode(r) if r else None


def list_jobs(kind: Optional[str] = None, limit: int = 50) -> List[Dict]:
    assert DB_PATH is not None
    sql = "SELECT * FROM jobs"
    args: list = []
    if kind:
        sql += " WHERE kind=?"
        args.append(kind)
    sql += " ORDER BY created_at DESC LIMIT ?"
    args.append(limit)
    with sqlite3.connect(str(DB_PATH)) as conn:
        conn.row_factory = sqlite3.Row
        return [_decode(r) for r in conn.execute(sql, args)]
