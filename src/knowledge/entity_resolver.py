"""
Entity Resolver - Map Extracted Entities to Tenant Nodes.

An extracted entity is the same node as an existing one when the names are
identical (case-sensitive) within the tenant. There is no fuzzy or semantic
matching: "Fernando" and "fernando" are different nodes.
"""

from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from src.knowledge.schemas import EntityNode, LocalEntity
from src.utils.logger import get_logger

if TYPE_CHECKING:
    from src.knowledge.repository import GraphRepository

logger = get_logger(__name__)


class ResolutionResult(BaseModel):
    """Outcome of resolving one extraction batch."""

    mapping: dict[int, EntityNode] = Field(
        default_factory=dict, description="Local entity id -> resolved node"
    )
    nodes: list[EntityNode] = Field(
        default_factory=list, description="Unique nodes to persist, first-seen order"
    )
    created: list[str] = Field(default_factory=list, description="Ids of new nodes")
    updated: list[str] = Field(default_factory=list, description="Ids of existing nodes")

    def node_for(self, local_id: int) -> EntityNode | None:
        """Resolved node of a local entity, or None if it was left unresolved."""
        return self.mapping.get(local_id)


class EntityResolver:
    """
    Exact-name entity resolver.

    For each extracted entity, in order:
    1. Reuse the node already resolved for the same name in this batch
    2. Otherwise bind to the tenant's existing node with that name,
       merging labels
    3. Otherwise create a new node

    Usage:
        resolver = EntityResolver()
        result = await resolver.resolve_with(repository, group_id, entities)
    """

    def resolve(
        self,
        group_id: str,
        entities: list[LocalEntity],
        existing: list[EntityNode],
    ) -> ResolutionResult:
        """
        Resolve extracted entities against existing nodes.

        Args:
            group_id: Tenant id
            entities: Entities extracted from one episode
            existing: Tenant nodes whose name matches an extracted name

        Returns:
            ResolutionResult with the local id mapping and nodes to persist
        """
        existing_by_name: dict[str, EntityNode] = {}
        for node in existing:
            if node.group_id == group_id:
                existing_by_name.setdefault(node.name, node)

        result = ResolutionResult()
        batch: dict[str, EntityNode] = {}

        for entity in entities:
            name = entity.name.strip()
            if not name:
                logger.debug(f"Leaving blank-named entity {entity.local_id} unresolved")
                continue

            node = batch.get(name)
            if node is not None:
                node.merge_labels(entity.labels)
                result.mapping[entity.local_id] = node
                continue

            node = existing_by_name.get(name)
            if node is not None:
                node.merge_labels(entity.labels)
                result.updated.append(node.id)
            else:
                node = EntityNode(group_id=group_id, name=name, labels=list(entity.labels))
                result.created.append(node.id)

            batch[name] = node
            result.mapping[entity.local_id] = node
            result.nodes.append(node)

        logger.debug(
            f"Resolved {len(result.mapping)} entities: "
            f"{len(result.created)} new, {len(result.updated)} existing"
        )
        return result

    async def resolve_with(
        self,
        repository: "GraphRepository",
        group_id: str,
        entities: list[LocalEntity],
    ) -> ResolutionResult:
        """Fetch matching nodes in one batch, then resolve."""
        names = [e.name.strip() for e in entities if e.name.strip()]
        existing = await repository.find_nodes_by_names(group_id, names)
        return self.resolve(group_id, entities, existing)
