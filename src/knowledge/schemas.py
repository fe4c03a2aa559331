"""
Pydantic Schemas for the Knowledge Layer.

Defines episodes, entity nodes, fact edges and retrieval results.
These models form the temporal knowledge graph of each tenant.
"""

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator


def utc_now() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid4())


class EpisodeType(str, Enum):
    """Content type of an ingested episode."""

    MESSAGE = "message"
    JSON = "json"
    TEXT = "text"


class RelationType(str, Enum):
    """
    Fixed vocabulary of fact relation labels.

    These are the edge labels of the knowledge graph.
    """

    WORKS_AT = "WORKS_AT"
    HAS_ROLE = "HAS_ROLE"
    KNOWS = "KNOWS"
    LIVES_IN = "LIVES_IN"
    LOCATED_IN = "LOCATED_IN"
    OWNS = "OWNS"
    MEMBER_OF = "MEMBER_OF"
    PART_OF = "PART_OF"
    LIKES = "LIKES"
    DISLIKES = "DISLIKES"
    PREFERS = "PREFERS"
    HAS_PROPERTY = "HAS_PROPERTY"
    PARTICIPATED_IN = "PARTICIPATED_IN"
    CREATED = "CREATED"
    USES = "USES"
    RELATED_TO = "RELATED_TO"

    @classmethod
    def parse(cls, value: str) -> "RelationType | None":
        """Map a free-form label ('works at', 'Works_At') to a member, or None."""
        normalized = "_".join(value.replace("-", " ").split()).upper()
        try:
            return cls(normalized)
        except ValueError:
            return None


class EntityTypeDescriptor(BaseModel):
    """An entity classification offered to the extraction oracle."""

    id: int = Field(..., ge=0, description="Integer id the oracle answers with")
    name: str = Field(..., description="Label stored on the node")
    description: str = Field(..., description="When to use this classification")


DEFAULT_ENTITY_TYPES: list[EntityTypeDescriptor] = [
    EntityTypeDescriptor(
        id=0,
        name="Entity",
        description=(
            "Default classification. Use it when the entity is none of the "
            "other listed types."
        ),
    ),
    EntityTypeDescriptor(
        id=1,
        name="Person",
        description="A human being, including the speaker of the message.",
    ),
    EntityTypeDescriptor(
        id=2,
        name="Organization",
        description="A company, institution, team or other group of people.",
    ),
    EntityTypeDescriptor(
        id=3,
        name="Location",
        description="A city, country, address or other physical place.",
    ),
]


class LocalEntity(BaseModel):
    """An extracted entity addressed by its position in the extraction batch."""

    local_id: int = Field(..., ge=0)
    name: str
    labels: list[str] = Field(default_factory=list)


class Episode(BaseModel):
    """
    One ingested unit of conversation or content.

    Identity (id, group_id) and created_at never change after the first write.
    """

    id: str = Field(default_factory=_new_id, description="Episode id")
    group_id: str = Field(..., min_length=1, description="Tenant partition key")
    name: str = Field(..., description="Display name")
    content: str = Field(..., description="Raw content of the episode")
    description: str = Field(default="", description="Free-text description of the source")
    labels: list[str] = Field(default_factory=list)
    type: EpisodeType = Field(default=EpisodeType.TEXT)
    created_at: datetime = Field(default_factory=utc_now)


class EpisodeCreate(BaseModel):
    """Caller-supplied fields of a new (or re-ingested) episode."""

    name: str = Field(..., min_length=1, description="Display name, e.g. the speaker")
    group_id: str = Field(..., min_length=1, description="Tenant/session id")
    content: str = Field(..., min_length=1, description="Message or document content")
    description: str = Field(..., min_length=1, description="Source description")
    labels: list[str] = Field(default_factory=list)
    type: EpisodeType = Field(default=EpisodeType.TEXT)
    id: str | None = Field(default=None, description="Stable id to upsert an existing episode")

    @field_validator("name", "group_id", "content", "description")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value

    def to_episode(self) -> Episode:
        """Build the episode record, keeping a caller-supplied id."""
        fields = self.model_dump(exclude={"id"})
        if self.id:
            return Episode(id=self.id, **fields)
        return Episode(**fields)


class EntityNode(BaseModel):
    """
    A deduplicated named entity of one tenant.

    The name is the deduplication key within a tenant; the id is generated.
    """

    id: str = Field(default_factory=_new_id)
    group_id: str = Field(..., description="Tenant partition key")
    name: str = Field(..., description="Display name, unique within the tenant")
    labels: list[str] = Field(default_factory=list, description="Type labels")
    summary: str = Field(default="", description="Rolling summary")
    embedding: list[float] = Field(default_factory=list, description="Embedding of the name")
    created_at: datetime = Field(default_factory=utc_now)

    def merge_labels(self, labels: list[str]) -> None:
        """Add labels not yet present, keeping first-seen order."""
        for label in labels:
            if label not in self.labels:
                self.labels.append(label)


class FactEdge(BaseModel):
    """
    A dated, directed fact between two entity nodes of the same tenant.

    Facts are never deleted; a superseded fact gets invalid_at set.
    """

    id: str = Field(default_factory=_new_id)
    group_id: str = Field(..., description="Tenant partition key")
    source_id: str = Field(..., description="Source node id")
    target_id: str = Field(..., description="Target node id")
    label: str = Field(..., description="Relation type label")
    fact: str = Field(..., description="Natural-language statement of the fact")
    episodes: list[str] = Field(default_factory=list, description="Attesting episode ids")
    valid_at: datetime = Field(default_factory=utc_now)
    invalid_at: datetime | None = Field(default=None)
    embedding: list[float] = Field(default_factory=list, description="Embedding of the fact")

    @model_validator(mode="after")
    def _check_interval(self) -> "FactEdge":
        if self.invalid_at is not None and self.invalid_at < self.valid_at:
            raise ValueError("invalid_at must not precede valid_at")
        return self

    @property
    def is_valid(self) -> bool:
        """Whether the fact is currently considered true."""
        return self.invalid_at is None

    def invalidate(self, at: datetime | None = None) -> None:
        """
        Mark the fact as no longer true.

        The timestamp is clamped to valid_at so the interval never inverts.
        """
        moment = at or utc_now()
        self.invalid_at = max(moment, self.valid_at)


class IngestionStage(str, Enum):
    """States of the ingestion pipeline for one episode."""

    RECEIVED = "received"
    PERSISTED = "persisted"
    EXTRACTING = "extracting"
    RESOLVING = "resolving"
    ENRICHING = "enriching"
    EMBEDDING = "embedding"
    INVALIDATING = "invalidating"
    COMMITTED = "committed"
    FAILED = "failed"


class RankedFact(BaseModel):
    """A fact selected by retrieval, with its similarity to the query."""

    edge: FactEdge
    score: float


class SearchResult(BaseModel):
    """Ranked, formatted retrieval context for one query."""

    query: str
    group_id: str
    facts: list[RankedFact] = Field(default_factory=list)
    entities: list[EntityNode] = Field(default_factory=list)
    history: list[Episode] = Field(default_factory=list)
    context: str = Field(default="", description="Formatted context for the agent prompt")

    @property
    def empty(self) -> bool:
        """True when no fact matched."""
        return not self.facts
