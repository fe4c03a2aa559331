"""
Pydantic Schemas for the Extraction Agents.

Response models the language model must fill in, plus the intermediate
records handed from the extractors to the resolvers.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from src.knowledge.schemas import RelationType


# ============================================================================
# Oracle Response Models
# ============================================================================


class ExtractedEntity(BaseModel):
    """One entity named in the current message."""

    name: str = Field(..., description="Name of the extracted entity")
    entity_type_id: int = Field(
        ...,
        description="ID of the classified entity type. Must be one of the listed entity type ids.",
    )


class EntityExtractionResponse(BaseModel):
    """Entities extracted from the current message."""

    extracted_entities: list[ExtractedEntity] = Field(
        default_factory=list, description="List of extracted entities"
    )


class MissingEntitiesResponse(BaseModel):
    """Entities the previous extraction pass did not return."""

    missed_entities: list[str] = Field(
        default_factory=list, description="Names of entities that were not extracted"
    )


class ExtractedFact(BaseModel):
    """One relationship between two listed entities."""

    relation_type: str = Field(..., description="Relation type in UPPER_SNAKE_CASE")
    source_entity_id: int = Field(..., description="Id of the source entity")
    target_entity_id: int = Field(..., description="Id of the target entity")
    fact: str = Field(..., description="Natural-language statement of the relationship")
    valid_at: str | None = Field(
        ..., description="ISO 8601 time the fact became true, or null when unknown"
    )
    invalid_at: str | None = Field(
        ..., description="ISO 8601 time the fact stopped being true, or null"
    )


class FactExtractionResponse(BaseModel):
    """Relationships extracted from the current message."""

    edges: list[ExtractedFact] = Field(default_factory=list)


class MissingFactsResponse(BaseModel):
    """Facts the previous extraction pass did not return."""

    missing_facts: list[str] = Field(
        default_factory=list, description="Facts that were not extracted"
    )


class EntitySummaryResponse(BaseModel):
    """Rewritten rolling summary of one entity."""

    summary: str = Field(
        ...,
        description="Summary of the important information about the entity. Under 250 words",
    )


# ============================================================================
# Extractor Outputs
# ============================================================================


class CandidateFact(BaseModel):
    """
    A well-formed extracted relationship between two local entities.

    Timestamps are already parsed; None means the model supplied no value.
    """

    source_local_id: int
    target_local_id: int
    relation_type: RelationType
    fact: str
    valid_at: datetime | None = None
    invalid_at: datetime | None = None
