"""
Tests for the Extraction Agents.

Entity/edge extraction, the reflection loop and entity summaries, driven
by the scripted oracle.
"""

from datetime import datetime, timezone

import pytest

from src.agents.edge_extractor import EdgeExtractor
from src.agents.entity_extractor import EntityExtractor
from src.agents.oracle import OracleError, OracleTimeoutError
from src.agents.reflection import ReflectionLoop
from src.agents.schemas import (
    EntityExtractionResponse,
    EntitySummaryResponse,
    ExtractedEntity,
    ExtractedFact,
    FactExtractionResponse,
    MissingEntitiesResponse,
    MissingFactsResponse,
)
from src.agents.summarizer import EntitySummarizer
from src.knowledge.schemas import EntityNode, Episode, LocalEntity, RelationType
from tests.conftest import ScriptedOracle, current_message

UTC = timezone.utc


@pytest.fixture
def episode(reference_time) -> Episode:
    return Episode(
        group_id="g1",
        name="Fernando",
        content="Fernando: I am the CEO of Doxa Code",
        description="chat message",
        created_at=reference_time,
    )


@pytest.fixture
def history() -> list[Episode]:
    return [Episode(group_id="g1", name="Ana", content="Ana: Welcome to the team!")]


def _entities(*names: str) -> EntityExtractionResponse:
    return EntityExtractionResponse(
        extracted_entities=[ExtractedEntity(name=n, entity_type_id=0) for n in names]
    )


def _fact(source: int, target: int, fact: str, relation: str = "WORKS_AT", **kwargs) -> ExtractedFact:
    fields = {"valid_at": None, "invalid_at": None, **kwargs}
    return ExtractedFact(
        relation_type=relation,
        source_entity_id=source,
        target_entity_id=target,
        fact=fact,
        **fields,
    )


# ============================================================================
# Reflection Loop
# ============================================================================


class TestReflectionLoop:
    """Tests for the bounded reflection loop."""

    @pytest.mark.asyncio
    async def test_stops_when_nothing_missing(self) -> None:
        hints: list[str] = []

        async def extract(hint: str) -> str:
            hints.append(hint)
            return "result"

        async def find_missing(result: str) -> list[str]:
            return []

        loop = ReflectionLoop(extract, find_missing, kind="entities", max_iterations=3)

        assert await loop.run() == "result"
        assert loop.passes == 1
        assert hints == [""]

    @pytest.mark.asyncio
    async def test_always_missing_is_capped(self) -> None:
        """Test an oracle that always reports missing items cannot loop forever."""
        calls = {"extract": 0, "missing": 0}

        async def extract(hint: str) -> int:
            calls["extract"] += 1
            return calls["extract"]

        async def find_missing(result: int) -> list[str]:
            calls["missing"] += 1
            return ["Doxa Code"]

        loop = ReflectionLoop(extract, find_missing, kind="entities", max_iterations=3)
        result = await loop.run()

        assert result == 3
        assert calls == {"extract": 3, "missing": 2}

    @pytest.mark.asyncio
    async def test_hint_names_missing_items(self) -> None:
        hints: list[str] = []

        async def extract(hint: str) -> str:
            hints.append(hint)
            return hint

        missing = iter([["Doxa Code"], []])

        async def find_missing(result: str) -> list[str]:
            return next(missing)

        await ReflectionLoop(extract, find_missing, kind="entities").run()

        assert len(hints) == 2
        assert "Doxa Code" in hints[1]
        assert "entities" in hints[1]

    @pytest.mark.asyncio
    async def test_failed_followup_keeps_last_result(self) -> None:
        async def extract(hint: str) -> str:
            if hint:
                raise OracleError("boom")
            return "first"

        async def find_missing(result: str) -> list[str]:
            return ["x"]

        assert await ReflectionLoop(extract, find_missing, kind="facts").run() == "first"

    @pytest.mark.asyncio
    async def test_failed_first_pass_raises(self) -> None:
        async def extract(hint: str) -> str:
            raise OracleTimeoutError("slow")

        async def find_missing(result: str) -> list[str]:
            return []

        with pytest.raises(OracleError):
            await ReflectionLoop(extract, find_missing, kind="facts").run()

    def test_requires_one_iteration(self) -> None:
        async def noop(*args):
            return []

        with pytest.raises(ValueError):
            ReflectionLoop(noop, noop, kind="facts", max_iterations=0)


# ============================================================================
# Entity Extraction
# ============================================================================


class TestEntityExtractor:
    """Tests for EntityExtractor."""

    @pytest.mark.asyncio
    async def test_extracts_local_entities(self, oracle: ScriptedOracle, episode, history) -> None:
        oracle.queue(
            EntityExtractionResponse,
            EntityExtractionResponse(
                extracted_entities=[
                    ExtractedEntity(name="Fernando", entity_type_id=1),
                    ExtractedEntity(name="Doxa Code", entity_type_id=2),
                ]
            ),
        )

        entities = await EntityExtractor(oracle).extract(episode, history)

        assert entities == [
            LocalEntity(local_id=0, name="Fernando", labels=["Person"]),
            LocalEntity(local_id=1, name="Doxa Code", labels=["Organization"]),
        ]

    @pytest.mark.asyncio
    async def test_prompt_carries_context(self, oracle: ScriptedOracle, episode, history) -> None:
        """Test history, content and reference time reach the oracle."""
        await EntityExtractor(oracle).extract(episode, history)

        _, messages = oracle.calls[0]
        assert current_message(messages) == episode.content
        assert "Ana: Welcome to the team!" in messages[-1].content
        assert episode.created_at.isoformat() in messages[-1].content

    @pytest.mark.asyncio
    async def test_unknown_type_maps_to_default(self, oracle: ScriptedOracle, episode) -> None:
        oracle.queue(
            EntityExtractionResponse,
            EntityExtractionResponse(extracted_entities=[ExtractedEntity(name="Doxa", entity_type_id=42)]),
        )

        entities = await EntityExtractor(oracle).extract(episode, [])

        assert entities[0].labels == ["Entity"]

    @pytest.mark.asyncio
    async def test_blank_names_dropped(self, oracle: ScriptedOracle, episode) -> None:
        oracle.queue(EntityExtractionResponse, _entities("  ", "Fernando", ""))

        entities = await EntityExtractor(oracle).extract(episode, [])

        assert [(e.local_id, e.name) for e in entities] == [(0, "Fernando")]

    @pytest.mark.asyncio
    async def test_reflection_reextracts_missing(self, oracle: ScriptedOracle, episode) -> None:
        """Test a reported miss triggers one more pass whose result is kept."""
        oracle.queue(EntityExtractionResponse, _entities("Fernando"), _entities("Fernando", "Doxa Code"))
        oracle.queue(MissingEntitiesResponse, MissingEntitiesResponse(missed_entities=["Doxa Code"]))

        entities = await EntityExtractor(oracle).extract(episode, [])

        assert [e.name for e in entities] == ["Fernando", "Doxa Code"]
        assert oracle.count(EntityExtractionResponse) == 2
        assert oracle.count(MissingEntitiesResponse) == 2

    @pytest.mark.asyncio
    async def test_always_missing_oracle_bounded(self, oracle: ScriptedOracle, episode) -> None:
        oracle.on(MissingEntitiesResponse, lambda messages: MissingEntitiesResponse(missed_entities=["X"]))

        await EntityExtractor(oracle, max_iterations=3).extract(episode, [])

        assert oracle.count(EntityExtractionResponse) == 3
        assert oracle.count(MissingEntitiesResponse) == 2

    @pytest.mark.asyncio
    async def test_first_pass_failure_propagates(self, oracle: ScriptedOracle, episode) -> None:
        oracle.queue(EntityExtractionResponse, OracleTimeoutError("timed out"))

        with pytest.raises(OracleError):
            await EntityExtractor(oracle).extract(episode, [])


# ============================================================================
# Edge Extraction
# ============================================================================


class TestEdgeExtractor:
    """Tests for EdgeExtractor."""

    @pytest.fixture
    def entities(self) -> list[LocalEntity]:
        return [
            LocalEntity(local_id=0, name="Fernando", labels=["Person"]),
            LocalEntity(local_id=1, name="Doxa Code", labels=["Organization"]),
        ]

    @pytest.mark.asyncio
    async def test_extracts_facts(self, oracle: ScriptedOracle, episode, entities) -> None:
        oracle.queue(
            FactExtractionResponse,
            FactExtractionResponse(
                edges=[_fact(0, 1, "Fernando is the CEO of Doxa Code", "HAS_ROLE", valid_at="2025-03-01T12:00:00Z")]
            ),
        )

        facts = await EdgeExtractor(oracle).extract(episode, [], entities)

        assert len(facts) == 1
        assert facts[0].relation_type == RelationType.HAS_ROLE
        assert facts[0].valid_at == datetime(2025, 3, 1, 12, tzinfo=UTC)
        assert facts[0].invalid_at is None

    @pytest.mark.asyncio
    async def test_prompt_lists_entities_with_ids(self, oracle: ScriptedOracle, episode, entities) -> None:
        await EdgeExtractor(oracle).extract(episode, [], entities)

        _, messages = oracle.calls[0]
        assert "0: Fernando (Person)" in messages[-1].content
        assert "1: Doxa Code (Organization)" in messages[-1].content

    @pytest.mark.asyncio
    async def test_fewer_than_two_entities_skips_oracle(self, oracle: ScriptedOracle, episode) -> None:
        facts = await EdgeExtractor(oracle).extract(
            episode, [], [LocalEntity(local_id=0, name="Fernando")]
        )

        assert facts == []
        assert oracle.calls == []

    @pytest.mark.asyncio
    async def test_missing_facts_reflection(self, oracle: ScriptedOracle, episode, entities) -> None:
        oracle.queue(
            FactExtractionResponse,
            FactExtractionResponse(edges=[]),
            FactExtractionResponse(edges=[_fact(0, 1, "Fernando works at Doxa Code")]),
        )
        oracle.queue(MissingFactsResponse, MissingFactsResponse(missing_facts=["Fernando works at Doxa Code"]))

        facts = await EdgeExtractor(oracle).extract(episode, [], entities)

        assert [f.fact for f in facts] == ["Fernando works at Doxa Code"]

    def test_assemble_drops_malformed(self, oracle: ScriptedOracle) -> None:
        """Test each malformed item is dropped on its own."""
        extracted = [
            _fact(0, 1, "Fernando works at Doxa Code"),
            _fact(0, 5, "out of range target"),
            _fact(-1, 1, "negative source"),
            _fact(1, 1, "self reference"),
            _fact(0, 1, "fernando works at doxa code"),
            _fact(0, 1, "   "),
            _fact(0, 1, "inverted", valid_at="2024-01-01", invalid_at="2023-01-01"),
            _fact(1, 0, "Doxa Code employs Fernando", "employs"),
        ]

        facts = EdgeExtractor(oracle).assemble(extracted, entity_count=2)

        assert [f.fact for f in facts] == ["Fernando works at Doxa Code", "Doxa Code employs Fernando"]
        assert facts[1].relation_type == RelationType.RELATED_TO

    def test_relation_type_normalized(self, oracle: ScriptedOracle) -> None:
        facts = EdgeExtractor(oracle).assemble([_fact(0, 1, "f", "works at")], entity_count=2)

        assert facts[0].relation_type == RelationType.WORKS_AT

    def test_timestamps_normalized(self, oracle: ScriptedOracle) -> None:
        facts = EdgeExtractor(oracle).assemble(
            [_fact(0, 1, "Fernando joined Doxa Code", valid_at="2020", invalid_at="not a date")],
            entity_count=2,
        )

        assert facts[0].valid_at == datetime(2020, 1, 1, tzinfo=UTC)
        assert facts[0].invalid_at is None


# ============================================================================
# Entity Summaries
# ============================================================================


class TestEntitySummarizer:
    """Tests for EntitySummarizer."""

    @pytest.mark.asyncio
    async def test_summarizes_each_node(self, oracle: ScriptedOracle, episode) -> None:
        nodes = [
            EntityNode(group_id="g1", name="Fernando", summary="Joined in 2020"),
            EntityNode(group_id="g1", name="Doxa Code"),
        ]

        summaries = await EntitySummarizer(oracle).summarize(nodes, episode, [])

        assert summaries == {
            nodes[0].id: "Summary of Fernando",
            nodes[1].id: "Summary of Doxa Code",
        }
        assert oracle.count(EntitySummaryResponse) == 2
        assert "Joined in 2020" in oracle.calls[0][1][-1].content

    @pytest.mark.asyncio
    async def test_no_nodes_no_requests(self, oracle: ScriptedOracle, episode) -> None:
        assert await EntitySummarizer(oracle).summarize([], episode, []) == {}
        assert oracle.calls == []

    @pytest.mark.asyncio
    async def test_failure_propagates(self, oracle: ScriptedOracle, episode) -> None:
        oracle.queue(EntitySummaryResponse, OracleError("bad json"))

        with pytest.raises(OracleError):
            await EntitySummarizer(oracle).summarize(
                [EntityNode(group_id="g1", name="Fernando")], episode, []
            )
