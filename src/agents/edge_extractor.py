"""
Edge Extractor - Facts Between Extracted Entities.

Asks the language model for the relationships between the entities of the
current episode, refined by the reflection loop. Malformed items are
dropped individually while the answer is assembled.
"""

from src.agents.oracle import OracleClient
from src.agents.prompts import fact_extraction_messages, missing_facts_messages
from src.agents.reflection import ReflectionLoop
from src.agents.schemas import (
    CandidateFact,
    ExtractedFact,
    FactExtractionResponse,
    MissingFactsResponse,
)
from src.knowledge.schemas import Episode, LocalEntity, RelationType
from src.knowledge.temporal_resolver import parse_timestamp
from src.utils.logger import get_logger

logger = get_logger(__name__)


class EdgeExtractor:
    """
    LLM-based fact extractor.

    Usage:
        extractor = EdgeExtractor(oracle)
        facts = await extractor.extract(episode, history, entities)
    """

    def __init__(self, oracle: OracleClient, max_iterations: int = 3) -> None:
        """
        Initialize the edge extractor.

        Args:
            oracle: Client used for every model request
            max_iterations: Maximum number of extraction passes
        """
        self.oracle = oracle
        self.max_iterations = max_iterations

    async def extract(
        self,
        episode: Episode,
        history: list[Episode],
        entities: list[LocalEntity],
    ) -> list[CandidateFact]:
        """
        Extract the facts stated by an episode.

        Args:
            episode: Episode being ingested
            history: Prior episodes of the tenant in chronological order
            entities: Entities extracted from the episode

        Returns:
            Well-formed facts in extraction order

        Raises:
            OracleError: If the first extraction pass fails
        """
        if len(entities) < 2:
            logger.debug(f"Fewer than two entities in episode {episode.id}, no facts to extract")
            return []

        previous = [e.content for e in history]

        async def extract_pass(hint: str) -> FactExtractionResponse:
            messages = fact_extraction_messages(
                episode.content, previous, episode.created_at, entities, hint
            )
            return await self.oracle.predict(messages, FactExtractionResponse)

        async def find_missing(response: FactExtractionResponse) -> list[str]:
            facts = [edge.fact for edge in response.edges]
            messages = missing_facts_messages(episode.content, previous, entities, facts)
            missing = await self.oracle.predict(messages, MissingFactsResponse)
            return missing.missing_facts

        loop = ReflectionLoop(
            extract_pass, find_missing, kind="facts", max_iterations=self.max_iterations
        )
        response = await loop.run()

        facts = self.assemble(response.edges, len(entities))
        logger.info(f"Extracted {len(facts)} facts from episode {episode.id}")
        return facts

    def assemble(self, extracted: list[ExtractedFact], entity_count: int) -> list[CandidateFact]:
        """
        Validate raw extracted facts.

        Drops facts with ids outside 0..entity_count-1, self-referential
        facts, blank facts, repeats of an earlier fact, and facts whose
        explicit interval is inverted. Unknown relation types become
        RELATED_TO.
        """
        facts: list[CandidateFact] = []
        seen: set[tuple[int, int, RelationType, str]] = set()

        for item in extracted:
            source, target = item.source_entity_id, item.target_entity_id
            fact = item.fact.strip()

            if not (0 <= source < entity_count and 0 <= target < entity_count):
                logger.warning(f"Dropping fact with unknown entity id: {item.fact!r}")
                continue

            if source == target:
                logger.warning(f"Dropping self-referential fact: {item.fact!r}")
                continue

            if not fact:
                logger.warning("Dropping fact with blank text")
                continue

            relation = RelationType.parse(item.relation_type) or RelationType.RELATED_TO
            key = (source, target, relation, fact.lower())
            if key in seen:
                logger.debug(f"Dropping duplicate fact: {fact!r}")
                continue

            valid_at = parse_timestamp(item.valid_at)
            invalid_at = parse_timestamp(item.invalid_at)
            if valid_at and invalid_at and invalid_at < valid_at:
                logger.warning(f"Dropping fact with inverted interval: {fact!r}")
                continue

            seen.add(key)
            facts.append(
                CandidateFact(
                    source_local_id=source,
                    target_local_id=target,
                    relation_type=relation,
                    fact=fact,
                    valid_at=valid_at,
                    invalid_at=invalid_at,
                )
            )

        return facts
