"""
Tests for the Temporal Resolver.

Timestamp parsing, interval defaults and contradiction invalidation.
"""

from datetime import datetime, timedelta, timezone

import pytest

from src.knowledge.graph_store import GraphStore
from src.knowledge.schemas import EntityNode, FactEdge
from src.knowledge.temporal_resolver import TemporalResolver, parse_timestamp, resolve_interval

UTC = timezone.utc


class TestParseTimestamp:
    """Tests for model-supplied timestamp parsing."""

    def test_full_iso_timestamp(self) -> None:
        assert parse_timestamp("2024-05-01T10:30:00Z") == datetime(2024, 5, 1, 10, 30, tzinfo=UTC)

    def test_offset_is_kept(self) -> None:
        parsed = parse_timestamp("2024-05-01T10:30:00+02:00")
        assert parsed == datetime(2024, 5, 1, 8, 30, tzinfo=UTC)

    def test_date_only_is_midnight(self) -> None:
        assert parse_timestamp("2024-05-01") == datetime(2024, 5, 1, tzinfo=UTC)

    def test_year_only_is_january_first(self) -> None:
        assert parse_timestamp("2020") == datetime(2020, 1, 1, tzinfo=UTC)

    def test_year_month(self) -> None:
        assert parse_timestamp("2020-07") == datetime(2020, 7, 1, tzinfo=UTC)

    def test_naive_is_utc(self) -> None:
        assert parse_timestamp("2024-05-01T10:30:00").tzinfo == UTC

    @pytest.mark.parametrize("value", [None, "", "null", "last summer", "2024-13-45"])
    def test_unusable_values_are_null(self, value) -> None:
        assert parse_timestamp(value) is None


class TestResolveInterval:
    """Tests for validity interval defaults."""

    reference = datetime(2025, 3, 1, tzinfo=UTC)

    def test_missing_valid_at_defaults_to_reference(self) -> None:
        assert resolve_interval(None, None, self.reference) == (self.reference, None)

    def test_explicit_interval_kept(self) -> None:
        start = datetime(2020, 1, 1, tzinfo=UTC)
        end = datetime(2022, 1, 1, tzinfo=UTC)
        assert resolve_interval(start, end, self.reference) == (start, end)

    def test_defaulted_start_moves_back_to_end(self) -> None:
        """Test a past end with no start never yields an inverted interval."""
        end = datetime(2022, 1, 1, tzinfo=UTC)
        assert resolve_interval(None, end, self.reference) == (end, end)

    def test_explicit_inverted_interval_is_malformed(self) -> None:
        start = datetime(2022, 1, 1, tzinfo=UTC)
        end = datetime(2020, 1, 1, tzinfo=UTC)
        assert resolve_interval(start, end, self.reference) is None


class TestContradictionInvalidation:
    """Tests for embedding-based invalidation."""

    @pytest.fixture
    def store(self) -> GraphStore:
        store = GraphStore("g1")
        store.add_nodes([
            EntityNode(id="fernando", group_id="g1", name="Fernando"),
            EntityNode(id="doxa", group_id="g1", name="Doxa Code"),
        ])
        return store

    @staticmethod
    def _fact(fact: str, embedding: list[float], **kwargs) -> FactEdge:
        return FactEdge(
            group_id="g1",
            source_id="fernando",
            target_id="doxa",
            label="WORKS_AT",
            fact=fact,
            embedding=embedding,
            **kwargs,
        )

    def test_similar_fact_invalidated(self, store: GraphStore) -> None:
        """Test a near-duplicate fact closes the older one."""
        old = self._fact("Fernando works at Doxa Code", [1.0, 0.0, 0.0])
        store.add_edge(old)
        new = self._fact("Fernando left Doxa Code", [0.9, 0.1, 0.0])
        now = datetime(2025, 6, 1, tzinfo=UTC)

        invalidated = TemporalResolver(0.7).apply(store, [new], now=now)

        assert [e.id for e in invalidated] == [old.id]
        assert old.invalid_at == now
        assert new.id in [e.id for e in store.get_valid_edges()]

    def test_dissimilar_fact_untouched(self, store: GraphStore) -> None:
        old = self._fact("Fernando works at Doxa Code", [1.0, 0.0, 0.0])
        store.add_edge(old)

        invalidated = TemporalResolver(0.7).apply(store, [self._fact("Fernando likes tea", [0.0, 1.0, 0.0])])

        assert invalidated == []
        assert old.is_valid

    def test_threshold_is_strict(self, store: GraphStore) -> None:
        """Test similarity equal to the threshold does not invalidate."""
        old = self._fact("a", [1.0, 0.0])
        store.add_edge(old)

        TemporalResolver(1.0).apply(store, [self._fact("b", [2.0, 0.0])])

        assert old.is_valid

    def test_explicit_invalid_at_never_overwritten(self, store: GraphStore) -> None:
        """Test an already-closed fact keeps its own end time."""
        ended = datetime(2021, 1, 1, tzinfo=UTC)
        old = self._fact(
            "Fernando worked at Doxa Code",
            [1.0, 0.0],
            valid_at=datetime(2019, 1, 1, tzinfo=UTC),
            invalid_at=ended,
        )
        store.add_edge(old)

        invalidated = TemporalResolver(0.7).apply(store, [self._fact("Fernando works at Doxa", [1.0, 0.0])])

        assert invalidated == []
        assert old.invalid_at == ended

    def test_invalidation_never_precedes_valid_at(self, store: GraphStore) -> None:
        """Test invalid_at is clamped to a future valid_at."""
        future = datetime(2030, 1, 1, tzinfo=UTC)
        old = self._fact("Fernando will join Doxa Code", [1.0, 0.0], valid_at=future)
        store.add_edge(old)

        TemporalResolver(0.7).apply(
            store, [self._fact("Fernando joins Doxa Code", [1.0, 0.0])], now=future - timedelta(days=1)
        )

        assert old.invalid_at == future

    def test_later_fact_in_batch_invalidates_earlier(self, store: GraphStore) -> None:
        """Test batch facts are checked in order against each other."""
        first = self._fact("Fernando is an engineer at Doxa Code", [1.0, 0.0])
        second = self._fact("Fernando is the CTO of Doxa Code", [0.95, 0.05])

        invalidated = TemporalResolver(0.7).apply(store, [first, second])

        assert [e.id for e in invalidated] == [first.id]
        assert [e.id for e in store.get_valid_edges()] == [second.id]

    def test_mismatched_dimensions_ignored(self, store: GraphStore) -> None:
        old = self._fact("Fernando works at Doxa Code", [1.0, 0.0, 0.0])
        store.add_edge(old)

        TemporalResolver(0.7).apply(store, [self._fact("Fernando works at Doxa", [1.0, 0.0])])

        assert old.is_valid

    def test_ended_fact_invalidates_current(self, store: GraphStore) -> None:
        """Test a fact reported as over closes the matching current fact."""
        current = self._fact(
            "Fernando works at Doxa Code", [1.0, 0.0], valid_at=datetime(2024, 1, 1, tzinfo=UTC)
        )
        store.add_edge(current)
        ended = datetime(2025, 3, 1, tzinfo=UTC)
        departure = self._fact(
            "Fernando no longer works at Doxa Code", [0.9, 0.1], valid_at=ended, invalid_at=ended
        )
        now = datetime(2025, 3, 2, tzinfo=UTC)

        invalidated = TemporalResolver(0.7).apply(store, [departure], now=now)

        assert [e.id for e in invalidated] == [current.id]
        assert current.invalid_at == now
        assert departure.invalid_at == ended
        assert store.get_valid_edges() == []

    def test_ended_fact_ignores_later_facts(self, store: GraphStore) -> None:
        """Test a fact that ended before another began leaves it valid."""
        later = self._fact(
            "Fernando works at Doxa Code", [1.0, 0.0], valid_at=datetime(2023, 1, 1, tzinfo=UTC)
        )
        store.add_edge(later)
        ended = datetime(2020, 1, 1, tzinfo=UTC)
        past = self._fact("Fernando worked at Doxa Code", [1.0, 0.0], valid_at=ended, invalid_at=ended)

        invalidated = TemporalResolver(0.7).apply(store, [past])

        assert invalidated == []
        assert later.is_valid
        assert store.edge_count() == 2
