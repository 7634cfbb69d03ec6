"""
Model CSV ingestion library.

This package provides the building blocks for:
- Inferring gender and board category from an upload's file name
- Proposing a column mapping with a language model and validating it
- Transforming CSV rows into canonical model records
- Applying records in batches to the store or the remote upsert service
- Best-effort enrichment through the recommendation service

Public API:
- filename.infer_gender, filename.infer_board_category, filename.infer_context
- transforms.apply_transform, transforms.parse_transform, transforms.select_transform
- mapper.apply_mapping, mapper.transform_rows, mapper.ensure_shoe_mapping
- parser.extract_mapping, parser.parse_mapping_document
- orchestrator.IngestOrchestrator
- applier.BatchApplier, applier.StoreSink, applier.RemoteUpsertSink
- services.build_services
"""

from . import filename, transforms, mapper, mapping, parser, io  # re-export modules

__all__ = [
    "filename",
    "transforms",
    "mapper",
    "mapping",
    "parser",
    "io",
]
