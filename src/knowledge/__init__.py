"""
Knowledge Layer - Temporal Knowledge Graph.

SQLite repository + NetworkX working graph, with entity resolution,
temporal invalidation and embedding-ranked retrieval.

The MemoryGraph facade lives in src.knowledge.memory_graph; it is not
re-exported here because it depends on the ingestion layer.
"""

from src.knowledge.entity_resolver import EntityResolver, ResolutionResult
from src.knowledge.graph_store import GraphStore, GraphStoreError
from src.knowledge.repository import GraphRepository, RepositoryError
from src.knowledge.retrieval import RetrievalRanker, format_context
from src.knowledge.schemas import (
    DEFAULT_ENTITY_TYPES,
    EntityNode,
    EntityTypeDescriptor,
    Episode,
    EpisodeCreate,
    EpisodeType,
    FactEdge,
    IngestionStage,
    LocalEntity,
    RankedFact,
    RelationType,
    SearchResult,
)
from src.knowledge.temporal_resolver import TemporalResolver, parse_timestamp, resolve_interval

__all__ = [
    # Stores
    "GraphRepository",
    "RepositoryError",
    "GraphStore",
    "GraphStoreError",
    # Resolution
    "EntityResolver",
    "ResolutionResult",
    "TemporalResolver",
    "parse_timestamp",
    "resolve_interval",
    # Retrieval
    "RetrievalRanker",
    "format_context",
    # Schemas
    "DEFAULT_ENTITY_TYPES",
    "EntityNode",
    "EntityTypeDescriptor",
    "Episode",
    "EpisodeCreate",
    "EpisodeType",
    "FactEdge",
    "IngestionStage",
    "LocalEntity",
    "RankedFact",
    "RelationType",
    "SearchResult",
]
