"""
Test suite for the Temporal Memory Graph.

Organized by module:
- test_repository.py - SQLite persistence
- test_graph_store.py - In-memory tenant graph
- test_entity_resolver.py - Entity resolution
- test_temporal_resolver.py - Timestamps and contradiction invalidation
- test_extractors.py - Extraction agents and reflection loop
- test_oracle.py - Structured LLM requests
- test_embeddings.py - Embedding client and similarity
- test_retrieval.py - Ranked search context
- test_pipeline.py - Ingestion pipeline, queue and memory graph
- test_api.py - FastAPI endpoint tests
- test_llm_factory.py - Settings and backend creation
- test_logger.py - Logging context fields
"""

# Test fixtures are provided in conftest.py
