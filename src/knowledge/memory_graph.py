"""
Memory Graph - Service Facade.

The single entry point used by the API and scripts: record an episode and
enrich it in the background, or retrieve ranked context for a query.
"""

from typing import Any

from app.config import Settings, get_settings
from src.agents.oracle import OracleClient
from src.ingestion.pipeline import IngestionPipeline
from src.ingestion.queue import IngestionQueue, TaskStatus
from src.knowledge.graph_store import GraphStore
from src.knowledge.repository import GraphRepository
from src.knowledge.retrieval import RetrievalRanker
from src.knowledge.schemas import EntityTypeDescriptor, Episode, EpisodeCreate, SearchResult
from src.utils.embeddings import EmbeddingClient
from src.utils.logger import get_logger

logger = get_logger(__name__)


class MemoryGraph:
    """
    Temporal memory of conversational agents.

    Usage:
        memory = MemoryGraph.from_settings()
        episode = await memory.ingest(EpisodeCreate(
            name="Fernando",
            group_id="session-1",
            content="Fernando: I am the CEO of Doxa Code",
            description="chat message",
        ))
        await memory.wait(episode.id)
        result = await memory.search("Who runs Doxa Code?", "session-1")
        print(result.context)
    """

    def __init__(
        self,
        repository: GraphRepository,
        oracle: OracleClient,
        embeddings: EmbeddingClient,
        history_window: int = 10,
        max_iterations: int = 3,
        contradiction_threshold: float = 0.7,
        search_top_k: int = 10,
        search_history_window: int = 3,
        entity_types: list[EntityTypeDescriptor] | None = None,
        ingest_timeout: float | None = None,
        task_retention: int = 1000,
    ) -> None:
        """
        Initialize the memory graph.

        Args:
            repository: Persistence backend
            oracle: Language model client
            embeddings: Embedding client
            history_window: Prior episodes given to the oracle as context
            max_iterations: Maximum extraction passes of each reflection loop
            contradiction_threshold: Similarity above which older facts are invalidated
            search_top_k: Default number of facts returned by search
            search_history_window: Recent episodes appended to search results
            entity_types: Entity classifications (default: built-in set)
            ingest_timeout: Default bound on one enrichment in seconds
            task_retention: Finished ingestion tasks kept for status lookups
        """
        self.repository = repository
        self.pipeline = IngestionPipeline(
            repository,
            oracle,
            embeddings,
            history_window=history_window,
            max_iterations=max_iterations,
            contradiction_threshold=contradiction_threshold,
            entity_types=entity_types,
        )
        self.queue = IngestionQueue(self.pipeline, timeout=ingest_timeout, retention=task_retention)
        self.ranker = RetrievalRanker(
            repository,
            embeddings,
            top_k=search_top_k,
            history_window=search_history_window,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        llm: Any = None,
        embed_model: Any = None,
    ) -> "MemoryGraph":
        """
        Build a memory graph from application settings.

        Args:
            settings: Settings (default: cached environment settings)
            llm: LLM override (default: built from settings on first use)
            embed_model: Embedding model override (default: built from settings on first use)
        """
        settings = settings or get_settings()

        return cls(
            repository=GraphRepository(settings.database_path),
            oracle=OracleClient(llm=llm, timeout=settings.oracle_timeout_seconds),
            embeddings=EmbeddingClient(
                model=embed_model,
                dimensions=settings.embedding_dimensions,
                timeout=settings.embedding_timeout_seconds,
            ),
            history_window=settings.history_window,
            max_iterations=settings.reflection_max_iterations,
            contradiction_threshold=settings.contradiction_threshold,
            search_top_k=settings.search_top_k,
            search_history_window=settings.search_history_window,
            task_retention=settings.task_retention,
        )

    async def initialize(self) -> None:
        """Create the database tables if needed."""
        await self.repository.initialize()

    async def ingest(self, data: EpisodeCreate, timeout: float | None = None) -> Episode:
        """
        Record an episode and schedule its enrichment.

        Returns once the episode is durably stored; extraction, resolution
        and invalidation run in the background. Use status() or wait() to
        follow them.

        Args:
            data: Episode fields; a known id re-ingests that episode
            timeout: Bound on the enrichment in seconds

        Returns:
            The stored episode

        Raises:
            RepositoryError: If the episode cannot be stored
        """
        await self.initialize()

        episode = await self.pipeline.record(data.to_episode())
        self.queue.submit(episode, timeout=timeout)
        return episode

    async def search(
        self,
        query: str,
        group_id: str,
        top_k: int | None = None,
    ) -> SearchResult:
        """Ranked facts, their entities and recent history for a query."""
        await self.initialize()
        return await self.ranker.search(query, group_id, top_k)

    def status(self, episode_id: str) -> TaskStatus | None:
        """Enrichment status of an episode ingested by this instance."""
        task = self.queue.get(episode_id)
        return task.status() if task else None

    async def wait(self, episode_id: str) -> TaskStatus | None:
        """Wait for the enrichment of an episode to finish."""
        task = self.queue.get(episode_id)
        if task is None:
            return None
        await task.wait()
        return task.status()

    async def load_graph(self, group_id: str) -> GraphStore:
        """Committed graph of a tenant."""
        await self.initialize()
        return await GraphStore.load(self.repository, group_id)

    async def close(self, cancel: bool = False) -> None:
        """
        Stop background enrichment.

        Args:
            cancel: Cancel unfinished enrichments instead of waiting for them
        """
        await self.queue.shutdown(cancel=cancel)
