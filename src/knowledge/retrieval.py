"""
Retrieval Ranker - Embedding-Ranked Context Assembly.

Scores a tenant's valid facts against a query embedding, keeps the top-K and
formats them, together with the entities they connect and the most recent
episodes, as context for an agent prompt.
"""

from src.knowledge.repository import GraphRepository
from src.knowledge.schemas import EntityNode, Episode, FactEdge, RankedFact, SearchResult
from src.utils.embeddings import EmbeddingClient
from src.utils.logger import get_logger
from src.utils.similarity import cosine_scores

logger = get_logger(__name__)

NO_RESULTS_MESSAGE = "No relevant facts found."


def format_fact(edge: FactEdge) -> str:
    """Render one fact with its validity window."""
    end = edge.invalid_at.isoformat() if edge.invalid_at else "present"
    return f"- {edge.fact} (Date range: {edge.valid_at.isoformat()} - {end})"


def format_entity(node: EntityNode) -> str:
    """Render one entity with its name and summary."""
    return f"<ENTITY>\n- Name: {node.name}\n- Summary: {node.summary}\n</ENTITY>"


def format_context(
    facts: list[RankedFact],
    entities: list[EntityNode],
    history: list[Episode],
) -> str:
    """Assemble the facts, entities and history sections."""
    if not facts:
        sections = [NO_RESULTS_MESSAGE]
    else:
        sections = [
            "# Relevant facts",
            "<FACTS>",
            *(format_fact(f.edge) for f in facts),
            "</FACTS>",
            "",
            "# Relevant entities",
            "<ENTITIES>",
            *(format_entity(node) for node in entities),
            "</ENTITIES>",
        ]

    if history:
        sections += [
            "",
            "# Recent conversation history",
            "<HISTORY>",
            *(episode.content for episode in history),
            "</HISTORY>",
        ]

    return "\n".join(sections)


class RetrievalRanker:
    """
    Read path of the memory graph.

    Only committed state is observed: every query reads the repository
    through its own connection and never waits on ingestion.

    Usage:
        ranker = RetrievalRanker(repository, embeddings)
        result = await ranker.search("Where does Fernando work?", group_id)
        print(result.context)
    """

    def __init__(
        self,
        repository: GraphRepository,
        embeddings: EmbeddingClient,
        top_k: int = 10,
        history_window: int = 3,
    ) -> None:
        """
        Initialize the ranker.

        Args:
            repository: Persistence backend
            embeddings: Client used to embed the query
            top_k: Default number of facts returned
            history_window: Recent episodes appended to each result
        """
        self.repository = repository
        self.embeddings = embeddings
        self.top_k = top_k
        self.history_window = history_window

    def rank(
        self,
        query_embedding: list[float],
        edges: list[FactEdge],
        top_k: int,
    ) -> list[RankedFact]:
        """
        Order edges by similarity to the query, highest first.

        Ties keep the input (storage) order. Edges whose embedding dimension
        differs from the query are skipped.
        """
        dimension = len(query_embedding)
        comparable = [e for e in edges if len(e.embedding) == dimension]

        skipped = len(edges) - len(comparable)
        if skipped:
            logger.warning(f"Skipped {skipped} facts with embedding dimension != {dimension}")

        scores = cosine_scores(query_embedding, [e.embedding for e in comparable])
        ranked = sorted(zip(comparable, scores), key=lambda pair: pair[1], reverse=True)

        return [RankedFact(edge=edge, score=score) for edge, score in ranked[:top_k]]

    async def search(
        self,
        query: str,
        group_id: str,
        top_k: int | None = None,
    ) -> SearchResult:
        """
        Retrieve the facts most relevant to a query.

        Args:
            query: Free-text query
            group_id: Tenant id
            top_k: Maximum number of facts (default: ranker's top_k)

        Returns:
            SearchResult; result.empty is True when no fact matched

        Raises:
            ValueError: If the query is blank or top_k is not positive
            EmbeddingError: If the query cannot be embedded
        """
        if not query.strip():
            raise ValueError("query must not be blank")

        limit = self.top_k if top_k is None else top_k
        if limit < 1:
            raise ValueError("top_k must be at least 1")

        edges = await self.repository.get_valid_edges(group_id)
        history = await self.repository.get_recent_episodes(group_id, self.history_window)

        facts: list[RankedFact] = []
        if edges:
            query_embedding = await self.embeddings.embed_one(query)
            facts = self.rank(query_embedding, edges, limit)

        node_ids: list[str] = []
        for ranked in facts:
            node_ids += [ranked.edge.source_id, ranked.edge.target_id]
        entities = await self.repository.get_nodes_by_ids(group_id, node_ids)

        logger.info(
            f"Search in group {group_id} returned {len(facts)} facts, {len(entities)} entities"
        )

        return SearchResult(
            query=query,
            group_id=group_id,
            facts=facts,
            entities=entities,
            history=history,
            context=format_context(facts, entities, history),
        )
