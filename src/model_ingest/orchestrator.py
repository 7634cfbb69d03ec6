"""
Preview/confirm flow for one uploaded file.

An upload moves through IngestState: the context is inferred from the file
name, a mapping is proposed (and possibly regenerated with feedback), the
user reviews a small transformed preview, then confirms. The orchestrator
keeps no state between calls; the client carries the mapping from one step
to the next.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from .applier import ApplyReport, BatchApplier
from .config import IngestConfig
from .enrichment import EnrichmentRunner
from .errors import ConflictError, MappingShapeError, UserInputError
from .filename import InferredContext, infer_context
from .io import read_table
from .mapper import ensure_shoe_mapping, transform_rows
from .mapping import Mapping
from .parser import extract_mapping, parse_mapping_document
from .proposer import MappingProposer
from .store import ModelStore


logger = logging.getLogger(__name__)

MISSING_GENDER_MESSAGE = (
    "Could not infer gender from filename. Include a clear indicator such as girls, boys, men, women, "
    "female, male, transgender, non-binary, transman, or transwoman."
)


class IngestState(str, Enum):
    IDLE = "idle"
    CONTEXT_INFERRED = "context_inferred"
    MAPPING_PROPOSED = "mapping_proposed"
    PREVIEW_REVIEWED = "preview_reviewed"
    CONFIRMED = "confirmed"


@dataclass
class PreviewResult:
    mapping: Mapping
    sample_preview: List[Dict[str, Any]]
    inferred: InferredContext

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mapping": self.mapping.to_document(),
            "samplePreview": self.sample_preview,
            "inferred": {
                "gender": self.inferred.gender,
                "model_board_category": self.inferred.board_category,
                "data_source": self.inferred.source_id,
            },
        }


MappingInput = Union[str, Dict[str, Any], Mapping]


class IngestOrchestrator:
    def __init__(
        self,
        config: IngestConfig,
        store: ModelStore,
        proposer: MappingProposer,
        applier: BatchApplier,
        enrichment: Optional[EnrichmentRunner] = None,
    ) -> None:
        self.config = config
        self.store = store
        self.proposer = proposer
        self.applier = applier
        self.enrichment = enrichment

    def _transition(self, source_id: str, state: IngestState) -> None:
        logger.debug(f"{source_id}: -> {state.value}")

    def _guard_source(self, source_id: str) -> None:
        if self.store.source_exists(source_id):
            raise ConflictError(source_id)

    def _context(self, filename: str, gender: Optional[str]) -> InferredContext:
        ctx = infer_context(filename, gender)
        if not ctx.gender:
            raise UserInputError(MISSING_GENDER_MESSAGE)
        self._transition(ctx.source_id, IngestState.CONTEXT_INFERRED)
        return ctx

    def check(self, source_id: str) -> Dict[str, Any]:
        source_id = (source_id or "").strip()
        if not source_id:
            raise UserInputError("Missing filename")
        return {"exists": self.store.source_exists(source_id), "data_source": source_id}

    def preview(
        self,
        filename: str,
        content: bytes,
        gender: Optional[str] = None,
        feedback: Optional[str] = None,
        previous_mapping: Optional[MappingInput] = None,
    ) -> PreviewResult:
        if not filename or not content:
            raise UserInputError("Missing file")
        source_id = filename.strip()
        self._guard_source(source_id)
        ctx = self._context(source_id, gender)
        # Proposer credentials are checked before any parsing work
        self.config.require_proposer()

        previous: Optional[Mapping] = None
        if previous_mapping:
            try:
                previous = parse_mapping_document(previous_mapping)
            except MappingShapeError as e:
                logger.warning(f"{source_id}: ignoring unparseable previous mapping: {e.message}")

        table = read_table(content, source_id, limit=self.config.sample_size)
        raw = self.proposer.propose(
            table.headers,
            table.sample(self.config.proposer_sample_rows),
            ctx,
            previous_mapping=previous,
            feedback=feedback,
        )
        try:
            mapping = extract_mapping(raw)
        except MappingShapeError as e:
            raise MappingShapeError("Failed to parse mapping from Claude.", snippet=raw, error=e.data["error"])
        self._transition(source_id, IngestState.MAPPING_PROPOSED)

        rows = transform_rows(table.sample(self.config.preview_rows), mapping, ctx)
        self._transition(source_id, IngestState.PREVIEW_REVIEWED)
        return PreviewResult(mapping, [r.record for r in rows], ctx)

    def regenerate(
        self,
        filename: str,
        content: bytes,
        previous_mapping: MappingInput,
        feedback: Optional[str] = None,
        gender: Optional[str] = None,
    ) -> PreviewResult:
        if not previous_mapping:
            raise UserInputError("Missing previous mapping")
        return self.preview(filename, content, gender=gender, feedback=feedback, previous_mapping=previous_mapping)

    def confirm(
        self,
        filename: str,
        content: bytes,
        mapping: MappingInput,
        gender: Optional[str] = None,
        agency_id: Optional[str] = None,
    ) -> ApplyReport:
        if not filename or not content or not mapping:
            raise UserInputError("Missing file or mapping")
        source_id = filename.strip()
        if self.applier.sink.requires_agency and not agency_id:
            raise UserInputError("agency_id is required")

        # Checked again here: another upload of the same file may have landed since preview
        self._guard_source(source_id)
        parsed = parse_mapping_document(mapping)
        ctx = self._context(source_id, gender)

        table = read_table(content, source_id)
        effective = ensure_shoe_mapping(parsed, table.headers)

        self.store.claim_source(source_id)
        try:
            report = self.applier.apply(table.rows, effective, ctx, agency_id=agency_id)
        except Exception:
            self.store.release_source(source_id)
            raise
        if report.succeeded == 0:
            self.store.release_source(source_id)
        self._transition(source_id, IngestState.CONFIRMED)

        if self.enrichment is not None and self.config.auto_enrich and report.model_ids:
            self.enrichment.spawn(report.model_ids)
        return report

    def delete_by_source(self, source_id: str) -> int:
        source_id = (source_id or "").strip()
        if not source_id:
            raise UserInputError("Missing data_source")
        deleted = self.store.delete_by_source(source_id)
        logger.info(f"Deleted {deleted} models for data_source {source_id}")
        return deleted
