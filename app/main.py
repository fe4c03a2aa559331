"""
FastAPI Application Entry Point.

Temporal Memory Graph API.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from fastapi import Depends, FastAPI, HTTPException, Query, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse

from app.config import get_settings
from src.knowledge.memory_graph import MemoryGraph
from src.knowledge.repository import RepositoryError
from src.knowledge.schemas import EpisodeCreate
from src.utils.embeddings import EmbeddingError
from src.utils.logger import get_logger, setup_logging

logger = get_logger(__name__)
settings = get_settings()

_memory_graph: MemoryGraph | None = None


def get_memory_graph() -> MemoryGraph:
    """Process-wide memory graph, built from settings on first use."""
    global _memory_graph
    if _memory_graph is None:
        _memory_graph = MemoryGraph.from_settings(settings)
    return _memory_graph


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan events."""
    # Startup
    setup_logging(settings.log_level)
    logger.info("Starting Memory Graph API...")
    logger.info(f"LLM Backend: {settings.llm_backend.value}")
    logger.info(f"Embedding Backend: {settings.embedding_backend.value}")
    settings.ensure_directories()
    yield
    # Shutdown
    logger.info("Shutting down Memory Graph API...")
    if _memory_graph is not None:
        await _memory_graph.close()


app = FastAPI(
    title="Temporal Memory Graph",
    description="Temporal knowledge-graph memory for conversational agents",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware for agent frontends
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy", "version": "0.1.0"}


@app.get("/config")
async def get_config() -> dict[str, Any]:
    """Get current configuration (non-sensitive values only)."""
    return {
        "llm_backend": settings.llm_backend.value,
        "embedding_backend": settings.embedding_backend.value,
        "embedding_model": settings.embedding_model,
        "embedding_dimensions": settings.embedding_dimensions,
        "ollama_model": settings.ollama_model if settings.llm_backend.value == "ollama" else "N/A",
        "search_top_k": settings.search_top_k,
    }


@app.post("/messages", status_code=status.HTTP_202_ACCEPTED)
async def add_message(
    message: EpisodeCreate,
    memory: MemoryGraph = Depends(get_memory_graph),
) -> dict[str, str]:
    """
    Record a message and enrich it in the background.

    Returns as soon as the episode is stored. Follow the enrichment with
    GET /episodes/{episode_id}/status.
    """
    logger.info(f"Message received for group {message.group_id}")

    try:
        episode = await memory.ingest(message)
    except RepositoryError as e:
        logger.error(f"Failed to record message: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to record message: {str(e)}")

    return {
        "status": "accepted",
        "episode_id": episode.id,
        "group_id": episode.group_id,
    }


@app.get("/episodes/{episode_id}/status")
async def get_episode_status(
    episode_id: str,
    memory: MemoryGraph = Depends(get_memory_graph),
) -> dict[str, Any]:
    """Enrichment status of an episode."""
    task_status = memory.status(episode_id)
    if task_status is None:
        raise HTTPException(status_code=404, detail=f"Unknown episode: {episode_id}")

    return task_status.model_dump(mode="json")


@app.get("/search")
async def search(
    q: str = Query(..., min_length=1, description="Free-text query"),
    group_id: str = Query(..., min_length=1, description="Tenant/session id"),
    top_k: int | None = Query(None, ge=1, le=100),
    memory: MemoryGraph = Depends(get_memory_graph),
) -> dict[str, Any]:
    """
    Retrieve ranked facts and entities for a query.

    An empty match is a normal response with "empty": true.
    """
    logger.info(f"Search in group {group_id}: '{q}'")

    try:
        result = await memory.search(q, group_id, top_k)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except EmbeddingError as e:
        logger.error(f"Search embedding failed: {e}")
        raise HTTPException(status_code=503, detail=f"Embedding failed: {str(e)}")
    except RepositoryError as e:
        logger.error(f"Search failed: {e}")
        raise HTTPException(status_code=500, detail=f"Search failed: {str(e)}")

    return {
        "status": "success",
        "query": q,
        "group_id": group_id,
        "empty": result.empty,
        "result": result.context,
        "facts": [
            {
                "id": ranked.edge.id,
                "fact": ranked.edge.fact,
                "relation": ranked.edge.label,
                "valid_at": ranked.edge.valid_at.isoformat(),
                "invalid_at": ranked.edge.invalid_at.isoformat() if ranked.edge.invalid_at else None,
                "score": ranked.score,
            }
            for ranked in result.facts
        ],
        "entities": [
            {"id": node.id, "name": node.name, "summary": node.summary}
            for node in result.entities
        ],
    }


@app.get("/graph", response_class=HTMLResponse)
async def get_graph_html(
    group_id: str = Query(..., min_length=1),
    include_invalid: bool = True,
    memory: MemoryGraph = Depends(get_memory_graph),
) -> HTMLResponse:
    """Interactive PyVis view of a tenant graph."""
    logger.info(f"Graph HTML requested for group {group_id}")

    try:
        graph = await memory.load_graph(group_id)
        html_content = graph.visualize(include_invalid=include_invalid)
    except RepositoryError as e:
        logger.error(f"Graph HTML generation failed: {e}")
        raise HTTPException(status_code=500, detail=f"Graph HTML failed: {str(e)}")

    return HTMLResponse(content=html_content)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=True,
    )
