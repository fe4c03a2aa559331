"""
Agents Layer - Language Model Extraction.

The oracle client and the agents built on it:
1. Entity Extractor - entities introduced by an episode
2. Edge Extractor - dated facts between those entities
3. Entity Summarizer - rolling summaries of resolved entities

Both extractors refine their answer with a bounded reflection loop.
"""

from src.agents.edge_extractor import EdgeExtractor
from src.agents.entity_extractor import EntityExtractor
from src.agents.oracle import OracleClient, OracleError, OracleTimeoutError
from src.agents.reflection import ReflectionLoop
from src.agents.schemas import (
    CandidateFact,
    EntityExtractionResponse,
    EntitySummaryResponse,
    ExtractedEntity,
    ExtractedFact,
    FactExtractionResponse,
    MissingEntitiesResponse,
    MissingFactsResponse,
)
from src.agents.summarizer import EntitySummarizer

__all__ = [
    # Oracle
    "OracleClient",
    "OracleError",
    "OracleTimeoutError",
    # Agents
    "EntityExtractor",
    "EdgeExtractor",
    "EntitySummarizer",
    "ReflectionLoop",
    # Schemas
    "CandidateFact",
    "EntityExtractionResponse",
    "EntitySummaryResponse",
    "ExtractedEntity",
    "ExtractedFact",
    "FactExtractionResponse",
    "MissingEntitiesResponse",
    "MissingFactsResponse",
]
