from __future__ import annotations
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import quote

import requests

from .config import IngestConfig


logger = logging.getLogger(__name__)


@dataclass
class RecommendationConfig:
    base_url: str
    timeout: float = 120.0
    update_model_params: Dict[str, bool] = field(
        default_factory=lambda: {"use_claude_basic": False, "use_claude_job_types": True}
    )
    use_advanced_vision: bool = True
    max_attempts: int = 5

    @classmethod
    def from_ingest(cls, cfg: IngestConfig) -> "RecommendationConfig":
        return cls(
            base_url=cfg.recommendation_base_url.rstrip("/"),
            timeout=cfg.recommendation_timeout,
            update_model_params=dict(cfg.update_model_params),
            use_advanced_vision=cfg.use_advanced_vision,
        )


def build_session() -> requests.Session:
    s = requests.Session()
    s.headers.update(
        {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": "model-ingest/1.0",
        }
    )
    return s


def _parse_body(resp: requests.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return {"raw": resp.text}


class RecommendationClient:
    """HTTP client for the model recommendation service's ingestion endpoints."""

    def __init__(
        self,
        cfg: RecommendationConfig,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.cfg = cfg
        self.session = session or build_session()
        self.sleep = sleep

    def _post(self, path: str, payload: Optional[Dict] = None, params: Optional[Dict] = None) -> requests.Response:
        url = self.cfg.base_url + path
        backoff = 1.0
        attempt = 0
        while True:
            attempt += 1
            resp = self.session.post(
                url,
                data=json.dumps(payload) if payload is not None else None,
                params=params,
                timeout=self.cfg.timeout,
            )
            if resp.status_code == 429 and attempt < self.cfg.max_attempts:
                retry_after = float(resp.headers.get("Retry-After", backoff))
                logger.warning(f"429 from {path}; retrying in {retry_after}s")
                self.sleep(retry_after)
                backoff = min(backoff * 2, 10.0)
                continue
            return resp

    def update_model(self, model_id) -> Dict[str, Any]:
        params = {k: str(bool(v)).lower() for k, v in self.cfg.update_model_params.items()}
        resp = self._post(f"/data_ingestion/update_model/{quote(str(model_id), safe='')}", params=params)
        return {"ok": resp.ok, "status": resp.status_code, "data": _parse_body(resp)}

    def update_model_photos(self, model_id) -> Dict[str, Any]:
        resp = self._post(
            "/data_ingestion/update_model_photos",
            {"model_id": model_id, "claude": self.cfg.use_advanced_vision},
        )
        return {"ok": resp.ok, "status": resp.status_code, "data": _parse_body(resp)}

    def batch_upsert_models(self, models: List[Dict]) -> List[Optional[Dict]]:
        """Upsert a batch; returns the per-item results array, parallel to ``models``.

        Raises requests.HTTPError when the service rejects the batch as a whole.
        """
        resp = self._post("/data_ingestion/batch_upsert_models", {"models": models})
        resp.raise_for_status()
        body = _parse_body(resp)
        results = body.get("results") if isinstance(body, dict) else None
        return list(results) if isinstance(results, list) else []
