"""
Entity Extractor - Entities Introduced by an Episode.

Asks the language model for the entities of the current episode, refined by
the reflection loop, and turns the answer into local entities carrying their
type label.
"""

from src.agents.oracle import OracleClient
from src.agents.prompts import entity_extraction_messages, missing_entities_messages
from src.agents.reflection import ReflectionLoop
from src.agents.schemas import (
    EntityExtractionResponse,
    MissingEntitiesResponse,
)
from src.knowledge.schemas import (
    DEFAULT_ENTITY_TYPES,
    Episode,
    EntityTypeDescriptor,
    LocalEntity,
)
from src.utils.logger import get_logger

logger = get_logger(__name__)


class EntityExtractor:
    """
    LLM-based entity extractor.

    Usage:
        extractor = EntityExtractor(oracle)
        entities = await extractor.extract(episode, history)
    """

    def __init__(
        self,
        oracle: OracleClient,
        entity_types: list[EntityTypeDescriptor] | None = None,
        max_iterations: int = 3,
    ) -> None:
        """
        Initialize the entity extractor.

        Args:
            oracle: Client used for every model request
            entity_types: Classifications offered to the model; the one with
                id 0 is the fallback for unknown ids
            max_iterations: Maximum number of extraction passes
        """
        self.oracle = oracle
        self.entity_types = entity_types or DEFAULT_ENTITY_TYPES
        self.max_iterations = max_iterations

        self._types_by_id = {t.id: t for t in self.entity_types}
        self._default_type = self._types_by_id.get(0, self.entity_types[0])

    async def extract(self, episode: Episode, history: list[Episode]) -> list[LocalEntity]:
        """
        Extract the entities introduced by an episode.

        Args:
            episode: Episode being ingested
            history: Prior episodes of the tenant in chronological order

        Returns:
            Local entities numbered 0..n-1 in extraction order. Names may
            repeat; the resolver collapses repeats.

        Raises:
            OracleError: If the first extraction pass fails
        """
        previous = [e.content for e in history]

        async def extract_pass(hint: str) -> EntityExtractionResponse:
            messages = entity_extraction_messages(
                episode.content, previous, episode.created_at, self.entity_types, hint
            )
            return await self.oracle.predict(messages, EntityExtractionResponse)

        async def find_missing(response: EntityExtractionResponse) -> list[str]:
            names = [e.name for e in response.extracted_entities]
            messages = missing_entities_messages(episode.content, previous, names)
            missing = await self.oracle.predict(messages, MissingEntitiesResponse)
            return missing.missed_entities

        loop = ReflectionLoop(
            extract_pass, find_missing, kind="entities", max_iterations=self.max_iterations
        )
        response = await loop.run()

        entities: list[LocalEntity] = []
        for extracted in response.extracted_entities:
            name = extracted.name.strip()
            if not name:
                logger.debug("Dropping entity with blank name")
                continue

            entity_type = self._types_by_id.get(extracted.entity_type_id, self._default_type)
            entities.append(
                LocalEntity(local_id=len(entities), name=name, labels=[entity_type.name])
            )

        logger.info(f"Extracted {len(entities)} entities from episode {episode.id}")
        return entities
