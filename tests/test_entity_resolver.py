"""
Tests for Entity Resolver.

Exact-name resolution within a tenant, without LLM.
"""

import pytest

from src.knowledge.entity_resolver import EntityResolver
from src.knowledge.repository import GraphRepository
from src.knowledge.schemas import EntityNode, LocalEntity


def _local(local_id: int, name: str, *labels: str) -> LocalEntity:
    return LocalEntity(local_id=local_id, name=name, labels=list(labels) or ["Entity"])


class TestEntityResolver:
    """Unit tests for EntityResolver."""

    @pytest.fixture
    def resolver(self) -> EntityResolver:
        """Create resolver."""
        return EntityResolver()

    def test_new_entities_create_nodes(self, resolver) -> None:
        """Test unknown names become new nodes in extraction order."""
        result = resolver.resolve("g1", [_local(0, "Fernando"), _local(1, "Doxa Code")], [])

        assert [n.name for n in result.nodes] == ["Fernando", "Doxa Code"]
        assert len(result.created) == 2
        assert result.updated == []
        assert all(n.group_id == "g1" for n in result.nodes)

    def test_existing_name_binds_to_node(self, resolver) -> None:
        """Test a known name reuses the node and merges labels."""
        existing = EntityNode(group_id="g1", name="Fernando", labels=["Entity"])

        result = resolver.resolve("g1", [_local(0, "Fernando", "Person")], [existing])

        assert result.node_for(0).id == existing.id
        assert result.updated == [existing.id]
        assert result.created == []
        assert existing.labels == ["Entity", "Person"]

    def test_repeated_name_in_batch_first_wins(self, resolver) -> None:
        """Test a name repeated in one batch maps to one node."""
        entities = [_local(0, "Fernando", "Person"), _local(1, "Doxa"), _local(2, "Fernando", "Entity")]

        result = resolver.resolve("g1", entities, [])

        assert result.node_for(0) is result.node_for(2)
        assert len(result.nodes) == 2
        assert result.node_for(0).labels == ["Person", "Entity"]

    def test_names_are_case_sensitive(self, resolver) -> None:
        """Test 'Fernando' and 'fernando' are different nodes."""
        result = resolver.resolve("g1", [_local(0, "Fernando"), _local(1, "fernando")], [])

        assert result.node_for(0).id != result.node_for(1).id

    def test_blank_name_left_unresolved(self, resolver) -> None:
        """Test blank names do not produce nodes."""
        result = resolver.resolve("g1", [_local(0, "   "), _local(1, "Doxa")], [])

        assert result.node_for(0) is None
        assert [n.name for n in result.nodes] == ["Doxa"]

    def test_other_tenant_nodes_ignored(self, resolver) -> None:
        """Test a node of another tenant is never reused."""
        foreign = EntityNode(group_id="g2", name="Fernando")

        result = resolver.resolve("g1", [_local(0, "Fernando")], [foreign])

        assert result.node_for(0).id != foreign.id
        assert result.node_for(0).group_id == "g1"

    @pytest.mark.asyncio
    async def test_resolve_with_repository(self, resolver, repository: GraphRepository) -> None:
        """Test resolution against stored nodes fetched by name."""
        stored = EntityNode(group_id="g1", name="Fernando", summary="CEO")
        await repository.save_graph([stored], [])

        result = await resolver.resolve_with(
            repository, "g1", [_local(0, "Fernando"), _local(1, "Doxa Code")]
        )

        assert result.node_for(0).id == stored.id
        assert result.node_for(0).summary == "CEO"
        assert result.node_for(1).id in result.created
