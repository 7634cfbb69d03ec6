"""
Best-effort enrichment through the recommendation service.

Enrichment never fails an ingestion: every outcome (done, skipped, failed)
is returned as a value and logged. Sweeps over many models run sequentially
and can be cancelled between records.
"""
from __future__ import annotations
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from typing import Callable, Iterable, List, Optional

import requests

from .recommendation_client import RecommendationClient
from .store import ModelStore


logger = logging.getLogger(__name__)
outcome_logger = logging.getLogger(__name__ + ".outcomes")

MODEL_NOT_FOUND = "model not found"


@dataclass
class EnrichmentOutcome:
    model_id: int
    status: str  # done | skipped | failed
    reason: Optional[str] = None
    update_status: Optional[int] = None
    photos_status: Optional[int] = None
    data: Optional[dict] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class SweepResult:
    total: int = 0
    done: int = 0
    skipped: int = 0
    failed: int = 0
    cancelled: bool = False
    outcomes: List[EnrichmentOutcome] = field(default_factory=list)

    def counters(self) -> dict:
        return {"total": self.total, "done": self.done, "skipped": self.skipped, "failed": self.failed}


class EnrichmentRunner:
    def __init__(self, store: ModelStore, client: RecommendationClient, max_workers: int = 2) -> None:
        self.store = store
        self.client = client
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="enrich")

    def enrich_model(self, model_id: int) -> EnrichmentOutcome:
        model = self.store.get_model(model_id)
        if model is None:
            return EnrichmentOutcome(model_id, "skipped", MODEL_NOT_FOUND)
        if model.get("cv_infer"):
            return EnrichmentOutcome(model_id, "skipped", "cv_infer already TRUE")
        if self.store.count_media(model_id) == 0:
            return EnrichmentOutcome(model_id, "skipped", "no medias for model")

        try:
            upd = self.client.update_model(model_id)
        except requests.RequestException as e:
            logger.warning(f"update_model failed for model {model_id}: {e}")
            upd = {"ok": False, "status": None, "data": {"error": str(e)}}

        # Photos run after update_model whatever its result
        photos_status = None
        try:
            photos = self.client.update_model_photos(model_id)
            photos_status = photos["status"]
            if photos["ok"]:
                logger.info(f"update_model_photos successful for model {model_id}")
            else:
                logger.warning(f"update_model_photos failed for model {model_id} status {photos_status}")
        except requests.RequestException as e:
            logger.warning(f"Error calling update_model_photos for model {model_id}: {e}")

        if not upd["ok"]:
            return EnrichmentOutcome(
                model_id, "failed", "update_model failed", upd["status"], photos_status, upd.get("data")
            )
        return EnrichmentOutcome(model_id, "done", None, upd["status"], photos_status, upd.get("data"))

    def sweep(
        self,
        model_ids: Iterable[int],
        cancel_event: Optional[threading.Event] = None,
        on_outcome: Optional[Callable[[EnrichmentOutcome, SweepResult], None]] = None,
    ) -> SweepResult:
        ids = list(model_ids)
        result = SweepResult(total=len(ids))
        for model_id in ids:
            if cancel_event is not None and cancel_event.is_set():
                result.cancelled = True
                logger.info(f"Enrichment sweep cancelled after {len(result.outcomes)}/{result.total}")
                break
            outcome = self.enrich_model(model_id)
            result.outcomes.append(outcome)
            if outcome.status == "done":
                result.done += 1
            elif outcome.status == "skipped":
                result.skipped += 1
            else:
                result.failed += 1
            outcome_logger.info(f"model {model_id}: {outcome.status}" + (f" ({outcome.reason})" if outcome.reason else ""))
            if on_outcome is not None:
                on_outcome(outcome, result)
        return result

    def spawn(self, model_ids: Iterable[int]) -> Future:
        """Fire-and-forget sweep; errors are logged, never raised to the caller."""
        ids = list(model_ids)

        def _run() -> SweepResult:
            try:
                return self.sweep(ids)
            except Exception:
                logger.exception("Background enrichment sweep crashed")
                raise

        return self._executor.submit(_run)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
