"""
Temporal Memory Graph - Source Package.

This package contains the core functionality for:
- Extracting entities and dated facts from conversation episodes
- Resolving them into a per-tenant temporal knowledge graph
- Ranking stored facts as context for agent prompts
- Utility functions

Import from the subpackages (src.agents, src.knowledge, src.ingestion,
src.utils) or use src.knowledge.memory_graph.MemoryGraph.
"""
