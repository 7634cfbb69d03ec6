from __future__ import annotations
from dataclasses import dataclass
from typing import Optional

import requests

from .applier import BatchApplier, RemoteUpsertSink, StoreSink
from .config import IngestConfig
from .enrichment import EnrichmentRunner
from .orchestrator import IngestOrchestrator
from .proposer import MappingProposer
from .recommendation_client import RecommendationClient, RecommendationConfig
from .store import ModelStore


@dataclass
class Services:
    config: IngestConfig
    store: ModelStore
    proposer: MappingProposer
    client: RecommendationClient
    enrichment: EnrichmentRunner
    orchestrator: IngestOrchestrator


def build_services(
    config: IngestConfig,
    proposer: Optional[MappingProposer] = None,
    client: Optional[RecommendationClient] = None,
    session: Optional[requests.Session] = None,
) -> Services:
    """Wire the store, clients and orchestrator for one configuration."""
    store = ModelStore(config.db_path).init()
    proposer = proposer or MappingProposer(config, session=session)
    client = client or RecommendationClient(RecommendationConfig.from_ingest(config), session=session)
    if config.persistence == "remote":
        sink = RemoteUpsertSink(client)
    else:
        sink = StoreSink(store)
    applier = BatchApplier(sink, batch_size=config.batch_size, max_failures_reported=config.max_failures_reported)
    enrichment = EnrichmentRunner(store, client)
    orchestrator = IngestOrchestrator(config, store, proposer, applier, enrichment=enrichment)
    return Services(config, store, proposer, client, enrichment, orchestrator)
