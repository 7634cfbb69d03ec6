from __future__ import annotations
import logging
import re
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple
from urllib.parse import urlsplit

import requests

from . import schema
from .errors import UserInputError
from .filename import InferredContext
from .mapper import MappedRow, apply_mapping
from .mapping import Mapping
from .recommendation_client import RecommendationClient
from .store import ModelStore


logger = logging.getLogger(__name__)

SKIP_REASON = "no model_name and no instagram_account"


@dataclass
class PreparedRow:
    row_index: int  # 1-based position in the upload
    mapped: MappedRow

    @property
    def label(self) -> str:
        r = self.mapped.record
        return str(r.get(schema.NAME_FIELD) or r.get(schema.IDENTITY_ALT_FIELD) or f"Row {self.row_index}")


@dataclass
class RowOutcome:
    row_index: int
    model_id: Any = None
    error: Optional[str] = None
    potential_twins: Optional[Dict[str, Any]] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.model_id is not None


@dataclass
class ApplyReport:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    model_ids: List[Any] = field(default_factory=list)
    warnings: List[Dict[str, Any]] = field(default_factory=list)
    failures: List[Dict[str, Any]] = field(default_factory=list)
    potential_twins: List[Dict[str, Any]] = field(default_factory=list)
    failures_truncated: bool = False

    @property
    def summary(self) -> str:
        return (
            f"Processed {self.processed} models (succeeded {self.succeeded}, "
            f"failed {self.failed}, skipped {self.skipped})."
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "modelIds": list(self.model_ids),
            "potentialTwins": list(self.potential_twins),
            "warnings": {"count": len(self.warnings), "items": list(self.warnings)},
            "failures": {"count": self.failed, "items": list(self.failures), "truncated": self.failures_truncated},
        }


class Sink(Protocol):
    requires_agency: bool

    def write(
        self, chunk: Sequence[PreparedRow], context: InferredContext, agency_id: Optional[str]
    ) -> Tuple[List[RowOutcome], List[Dict[str, Any]]]:
        ...


def is_likely_valid_media_link(link: str) -> bool:
    """Media URLs worth sending to the remote upsert: path or query carries a 4+ digit id."""
    try:
        u = urlsplit(link)
    except ValueError:
        return False
    if u.scheme not in ("http", "https") or not u.netloc:
        return False
    return re.search(r"\d{4,}", u.path + ("?" + u.query if u.query else "")) is not None


class StoreSink:
    """Writes records straight into the store and links media and agency rows."""

    requires_agency = False

    def __init__(self, store: ModelStore) -> None:
        self.store = store

    def write(self, chunk, context, agency_id):
        ids = self.store.insert_models([p.mapped.record for p in chunk])

        outcomes = [RowOutcome(p.row_index, model_id=model_id) for p, model_id in zip(chunk, ids)]

        warnings: List[Dict[str, Any]] = []
        try:
            self.link(chunk, outcomes, agency_id)
        except sqlite3.Error as e:
            logger.error(f"Linking failed for rows {chunk[0].row_index}-{chunk[-1].row_index}: {e}")
            warnings.append({"rowIndex": chunk[0].row_index, "reason": f"linking failed: {e}"})
        return outcomes, warnings

    def link(self, chunk: Sequence[PreparedRow], outcomes: Sequence[RowOutcome], agency_id: Optional[str]) -> None:
        resolved = [(p, o.model_id) for p, o in zip(chunk, outcomes) if o.ok]
        if not resolved:
            return
        model_ids = [m for _, m in resolved]

        existing = self.store.existing_media(model_ids)
        pairs: List[Tuple[int, str]] = []
        seen = set(existing)
        for p, model_id in resolved:
            for media in p.mapped.media:
                key = (model_id, media["link"])
                if key not in seen:
                    seen.add(key)
                    pairs.append(key)
        self.store.insert_media(pairs)

        if agency_id:
            linked = self.store.existing_agency_links(model_ids, agency_id)
            fresh: List[int] = []
            for m in model_ids:
                if m not in linked:
                    linked.add(m)
                    fresh.append(m)
            self.store.insert_agency_links(fresh, agency_id)


class RemoteUpsertSink:
    """Forwards records to the recommendation service's batch upsert."""

    requires_agency = True

    def __init__(self, client: RecommendationClient) -> None:
        self.client = client

    def _payload(self, p: PreparedRow, agency_id: str) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"record": dict(p.mapped.record), "agency_id": agency_id}
        links = [m.get("link") for m in p.mapped.media]
        links = [link for link in links if isinstance(link, str) and link.strip() and is_likely_valid_media_link(link)]
        if links:
            payload["model_media"] = links
        return payload

    def write(self, chunk, context, agency_id):
        results = self.client.batch_upsert_models([self._payload(p, agency_id) for p in chunk])
        outcomes: List[RowOutcome] = []
        for j, p in enumerate(chunk):
            item = results[j] if j < len(results) else None
            if not isinstance(item, dict):
                outcomes.append(RowOutcome(p.row_index, error="no result returned for this record"))
                continue
            result = item.get("result") or {}
            model_id = result.get("model_id") if isinstance(result, dict) else None
            if item.get("status") == "success" and model_id:
                twins = result.get("potential_twins") or {}
                candidates = twins.get("candidate_model_ids")
                candidates = candidates if isinstance(candidates, list) else []
                twin_info = None
                if twins.get("group_id") or candidates:
                    twin_info = {"group_id": twins.get("group_id"), "candidate_model_ids": candidates}
                outcomes.append(RowOutcome(p.row_index, model_id=model_id, potential_twins=twin_info))
            elif item.get("status") == "error":
                outcomes.append(RowOutcome(p.row_index, error=str(item.get("error") or "Unknown error")))
            else:
                outcomes.append(RowOutcome(p.row_index, error=f"unexpected result status {item.get('status')!r}"))
        return outcomes, []


class BatchApplier:
    def __init__(self, sink: Sink, batch_size: int = 50, max_failures_reported: int = 100) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.sink = sink
        self.batch_size = batch_size
        self.max_failures_reported = max_failures_reported

    def _fail(self, report: ApplyReport, row_index: int, label: str, error: str) -> None:
        report.failed += 1
        if len(report.failures) < self.max_failures_reported:
            report.failures.append({"rowIndex": row_index, "modelName": label, "error": error})
        else:
            report.failures_truncated = True

    def prepare(
        self, rows: Sequence[Dict[str, Any]], mapping: Mapping, context: InferredContext, report: ApplyReport
    ) -> List[PreparedRow]:
        prepared: List[PreparedRow] = []
        for i, row in enumerate(rows, start=1):
            report.processed += 1
            mapped = apply_mapping(row, mapping, context)
            if not mapped.has_identity():
                report.skipped += 1
                report.warnings.append({"rowIndex": i, "reason": SKIP_REASON})
                continue
            prepared.append(PreparedRow(i, mapped))
        return prepared

    def apply(
        self,
        rows: Sequence[Dict[str, Any]],
        mapping: Mapping,
        context: InferredContext,
        agency_id: Optional[str] = None,
    ) -> ApplyReport:
        if self.sink.requires_agency and not agency_id:
            raise UserInputError("agency_id is required")

        report = ApplyReport()
        prepared = self.prepare(rows, mapping, context, report)

        for start in range(0, len(prepared), self.batch_size):
            chunk = prepared[start : start + self.batch_size]
            try:
                outcomes, warnings = self.sink.write(chunk, context, agency_id)
            except (sqlite3.Error, requests.RequestException, ValueError) as e:
                logger.error(f"Batch of rows {chunk[0].row_index}-{chunk[-1].row_index} failed: {e}")
                for p in chunk:
                    self._fail(report, p.row_index, p.label, str(e))
                continue

            report.warnings.extend(warnings)
            for p, outcome in zip(chunk, outcomes):
                if outcome.ok:
                    report.succeeded += 1
                    report.model_ids.append(outcome.model_id)
                    if outcome.potential_twins:
                        report.potential_twins.append(
                            {"modelId": outcome.model_id, "potential_twins": outcome.potential_twins}
                        )
                else:
                    self._fail(report, p.row_index, p.label, outcome.error or "Unknown error")

        logger.info(f"{context.source_id}: {report.summary}")
        return report
