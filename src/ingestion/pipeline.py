"""
Ingestion Pipeline - Episode to Temporal Graph.

Runs one episode through the write path:

    RECEIVED -> PERSISTED -> EXTRACTING -> RESOLVING -> ENRICHING
             -> EMBEDDING -> INVALIDATING -> COMMITTED

The episode is recorded first, on its own. Everything after that is the
enrichment: it either commits all its nodes and edges in one transaction
or commits nothing.
"""

import asyncio
from collections.abc import Callable

from pydantic import BaseModel, Field

from src.agents.edge_extractor import EdgeExtractor
from src.agents.entity_extractor import EntityExtractor
from src.agents.oracle import OracleClient, OracleError
from src.agents.schemas import CandidateFact
from src.agents.summarizer import EntitySummarizer
from src.knowledge.entity_resolver import EntityResolver, ResolutionResult
from src.knowledge.graph_store import GraphStore, GraphStoreError
from src.knowledge.repository import GraphRepository, RepositoryError
from src.knowledge.schemas import (
    EntityNode,
    EntityTypeDescriptor,
    Episode,
    FactEdge,
    IngestionStage,
)
from src.knowledge.temporal_resolver import TemporalResolver, resolve_interval
from src.utils.embeddings import EmbeddingClient, EmbeddingError
from src.utils.logger import LogContext, get_logger

logger = get_logger(__name__)

StageCallback = Callable[[IngestionStage], None]


class IngestionError(Exception):
    """Raised when the enrichment of an episode fails."""

    def __init__(self, message: str, stage: IngestionStage) -> None:
        super().__init__(message)
        self.stage = stage


class IngestionReport(BaseModel):
    """Outcome of one committed enrichment."""

    episode_id: str
    group_id: str
    nodes_created: int = 0
    nodes_updated: int = 0
    edges_created: int = 0
    edges_invalidated: int = 0
    edges_dropped: int = 0
    edges_skipped: int = 0
    edge_ids: list[str] = Field(default_factory=list)


class IngestionPipeline:
    """
    Write path of the memory graph.

    Usage:
        pipeline = IngestionPipeline(repository, oracle, embeddings)
        episode = await pipeline.record(episode)
        report = await pipeline.process(episode)
    """

    def __init__(
        self,
        repository: GraphRepository,
        oracle: OracleClient,
        embeddings: EmbeddingClient,
        history_window: int = 10,
        max_iterations: int = 3,
        contradiction_threshold: float = 0.7,
        entity_types: list[EntityTypeDescriptor] | None = None,
    ) -> None:
        """
        Initialize the pipeline.

        Args:
            repository: Persistence backend
            oracle: Language model client shared by all extraction agents
            embeddings: Client embedding node names and fact strings
            history_window: Prior episodes given to the oracle as context
            max_iterations: Maximum extraction passes of each reflection loop
            contradiction_threshold: Similarity above which older facts are invalidated
            entity_types: Entity classifications (default: built-in set)
        """
        self.repository = repository
        self.embeddings = embeddings
        self.history_window = history_window

        self.entity_extractor = EntityExtractor(oracle, entity_types, max_iterations)
        self.edge_extractor = EdgeExtractor(oracle, max_iterations)
        self.summarizer = EntitySummarizer(oracle)
        self.entity_resolver = EntityResolver()
        self.temporal_resolver = TemporalResolver(contradiction_threshold)

    async def record(self, episode: Episode) -> Episode:
        """
        Durably write the episode (RECEIVED -> PERSISTED).

        Re-recording an existing id updates its mutable fields only.

        Raises:
            RepositoryError: If the write fails
        """
        stored = await self.repository.upsert_episode(episode)
        logger.info(f"Recorded episode {stored.id} in group {stored.group_id}")
        return stored

    async def process(
        self,
        episode: Episode,
        on_stage: StageCallback | None = None,
    ) -> IngestionReport:
        """
        Enrich a recorded episode and commit the result.

        Args:
            episode: Episode previously returned by record()
            on_stage: Called with each stage as it starts

        Returns:
            IngestionReport of the committed batch

        Raises:
            IngestionError: If any step fails; nothing has been committed
        """
        stage = IngestionStage.PERSISTED

        def advance(next_stage: IngestionStage) -> None:
            nonlocal stage
            stage = next_stage
            logger.debug(f"Episode {episode.id} -> {stage.value}")
            if on_stage is not None:
                on_stage(stage)

        with LogContext(logger, group_id=episode.group_id, episode_id=episode.id):
            try:
                return await self._run(episode, advance)
            except (OracleError, EmbeddingError, RepositoryError, GraphStoreError) as e:
                raise IngestionError(
                    f"Enrichment of episode {episode.id} failed while {stage.value}: {e}",
                    stage,
                ) from e

    async def _run(
        self,
        episode: Episode,
        advance: StageCallback,
    ) -> IngestionReport:
        group_id = episode.group_id

        advance(IngestionStage.EXTRACTING)
        history = await self.repository.get_recent_episodes(
            group_id, self.history_window, exclude_id=episode.id
        )
        entities = await self.entity_extractor.extract(episode, history)

        advance(IngestionStage.RESOLVING)
        resolution = await self.entity_resolver.resolve_with(self.repository, group_id, entities)

        advance(IngestionStage.ENRICHING)
        candidates, summaries = await asyncio.gather(
            self.edge_extractor.extract(episode, history, entities),
            self.summarizer.summarize(resolution.nodes, episode, history),
        )
        for node in resolution.nodes:
            if summaries.get(node.id):
                node.summary = summaries[node.id]

        # Facts this episode already produced when it was processed before
        recorded = {
            self._fact_key(edge.source_id, edge.target_id, edge.label, edge.fact)
            for edge in await self.repository.get_edges_for_episode(group_id, episode.id)
            if edge.is_valid
        }
        edges, skipped = self._build_edges(episode, candidates, resolution, recorded)
        dropped = len(candidates) - len(edges) - skipped

        advance(IngestionStage.EMBEDDING)
        await self._embed(resolution.nodes, edges)

        advance(IngestionStage.INVALIDATING)
        store = await GraphStore.load(self.repository, group_id)
        for node in resolution.nodes:
            store.put_node(node)
        invalidated = self.temporal_resolver.apply(store, edges)

        await store.save(self.repository)
        advance(IngestionStage.COMMITTED)

        report = IngestionReport(
            episode_id=episode.id,
            group_id=group_id,
            nodes_created=len(resolution.created),
            nodes_updated=len(resolution.updated),
            edges_created=len(edges),
            edges_invalidated=len(invalidated),
            edges_dropped=dropped,
            edges_skipped=skipped,
            edge_ids=[edge.id for edge in edges],
        )
        logger.info(
            f"Committed episode {episode.id}: {report.nodes_created} new nodes, "
            f"{report.nodes_updated} updated, {report.edges_created} facts, "
            f"{report.edges_invalidated} invalidated"
        )
        return report

    @staticmethod
    def _fact_key(source_id: str, target_id: str, label: str, fact: str) -> tuple[str, str, str, str]:
        return (source_id, target_id, label, fact.lower())

    def _build_edges(
        self,
        episode: Episode,
        candidates: list[CandidateFact],
        resolution: ResolutionResult,
        recorded: set[tuple[str, str, str, str]] | None = None,
    ) -> tuple[list[FactEdge], int]:
        """
        Map candidate facts onto resolved nodes and attach their interval.

        Args:
            episode: Episode the candidates were extracted from
            candidates: Extracted facts between local entities
            resolution: Local entity id to node mapping
            recorded: Keys of still-valid facts the episode already produced

        Returns:
            New edges, and the number of candidates skipped as already recorded
        """
        edges: list[FactEdge] = []
        seen: set[tuple[str, str, str, str]] = set()
        recorded = recorded or set()
        skipped = 0

        for candidate in candidates:
            source = resolution.node_for(candidate.source_local_id)
            target = resolution.node_for(candidate.target_local_id)

            if source is None or target is None:
                logger.warning(f"Dropping fact with unresolved endpoint: {candidate.fact!r}")
                continue

            if source.id == target.id:
                logger.warning(f"Dropping fact whose endpoints resolved to one node: {candidate.fact!r}")
                continue

            interval = resolve_interval(
                candidate.valid_at, candidate.invalid_at, episode.created_at
            )
            if interval is None:
                logger.warning(f"Dropping fact with inverted interval: {candidate.fact!r}")
                continue

            key = self._fact_key(source.id, target.id, candidate.relation_type.value, candidate.fact)
            if key in recorded:
                logger.debug(f"Fact already recorded for episode {episode.id}: {candidate.fact!r}")
                skipped += 1
                continue
            if key in seen:
                continue
            seen.add(key)

            valid_at, invalid_at = interval
            edges.append(
                FactEdge(
                    group_id=episode.group_id,
                    source_id=source.id,
                    target_id=target.id,
                    label=candidate.relation_type.value,
                    fact=candidate.fact,
                    episodes=[episode.id],
                    valid_at=valid_at,
                    invalid_at=invalid_at,
                )
            )

        return edges, skipped

    async def _embed(self, nodes: list[EntityNode], edges: list[FactEdge]) -> None:
        """Embed node names and fact strings as one batch."""
        texts = [node.name for node in nodes] + [edge.fact for edge in edges]
        vectors = await self.embeddings.embed(texts)

        for node, vector in zip(nodes, vectors[: len(nodes)]):
            node.embedding = vector
        for edge, vector in zip(edges, vectors[len(nodes):]):
            edge.embedding = vector
