"""
Temporal Resolver - Validity Intervals and Contradictions.

Turns model-supplied timestamps into validity intervals and invalidates
existing facts that a new fact supersedes.

Invalidation is embedding based: every still-valid fact of the tenant whose
embedding is close enough to a new fact's embedding is considered replaced
by it. Facts are never deleted, only closed with invalid_at.
"""

import re
from datetime import datetime, timezone

from src.knowledge.graph_store import GraphStore
from src.knowledge.schemas import FactEdge, utc_now
from src.utils.logger import get_logger
from src.utils.similarity import cosine_scores

logger = get_logger(__name__)

_YEAR_ONLY = re.compile(r"^\d{4}$")
_YEAR_MONTH = re.compile(r"^(\d{4})-(\d{2})$")


def parse_timestamp(value: str | None) -> datetime | None:
    """
    Parse a model-supplied timestamp.

    A date without a time is midnight, a year alone is January 1st, a
    year-month is the first of that month, and naive values are UTC.

    Returns:
        Timezone-aware datetime, or None for null or unparseable input
    """
    if value is None:
        return None

    text = value.strip()
    if not text or text.lower() in ("null", "none"):
        return None

    try:
        if _YEAR_ONLY.match(text):
            return datetime(int(text), 1, 1, tzinfo=timezone.utc)

        if match := _YEAR_MONTH.match(text):
            return datetime(int(match.group(1)), int(match.group(2)), 1, tzinfo=timezone.utc)

        parsed = datetime.fromisoformat(text)
    except ValueError:
        logger.debug(f"Unparseable timestamp treated as null: {value!r}")
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def resolve_interval(
    valid_at: datetime | None,
    invalid_at: datetime | None,
    reference_time: datetime,
) -> tuple[datetime, datetime | None] | None:
    """
    Compute the validity interval of a fact.

    An absent valid_at defaults to the reference time. When only valid_at was
    defaulted and the explicit invalid_at precedes it, valid_at moves back to
    invalid_at.

    Returns:
        (valid_at, invalid_at), or None when both bounds are explicit and inverted
    """
    if valid_at is None:
        start = reference_time
        if invalid_at is not None and invalid_at < start:
            start = invalid_at
        return start, invalid_at

    if invalid_at is not None and invalid_at < valid_at:
        return None

    return valid_at, invalid_at


class TemporalResolver:
    """
    Contradiction invalidation over a tenant's working graph.

    Usage:
        resolver = TemporalResolver(threshold=0.7)
        invalidated = resolver.apply(store, new_edges)
    """

    def __init__(self, threshold: float = 0.7) -> None:
        """
        Initialize the resolver.

        Args:
            threshold: Cosine similarity above which an existing fact is superseded
        """
        self.threshold = threshold

    def find_contradictions(self, edge: FactEdge, candidates: list[FactEdge]) -> list[FactEdge]:
        """
        Valid candidates whose embedding is similar enough to edge's.

        When edge already ended, candidates that only started after its end
        are not contradicted by it.
        """
        dimension = len(edge.embedding)
        pool = [
            c
            for c in candidates
            if c.is_valid
            and c.id != edge.id
            and len(c.embedding) == dimension
            and (edge.invalid_at is None or c.valid_at <= edge.invalid_at)
        ]
        if not pool or not edge.embedding:
            return []

        scores = cosine_scores(edge.embedding, [c.embedding for c in pool])
        return [c for c, score in zip(pool, scores) if score > self.threshold]

    def apply(
        self,
        store: GraphStore,
        new_edges: list[FactEdge],
        now: datetime | None = None,
    ) -> list[FactEdge]:
        """
        Add new edges to the store, invalidating what each one supersedes.

        Edges are processed in order and each is added right after its own
        check, so a later edge of the batch can invalidate an earlier one.
        Facts that already carry invalid_at are never touched. A new fact
        that ends ('no longer works at') still supersedes the facts it
        contradicts.

        Args:
            store: Working graph of the tenant, endpoints already added
            new_edges: Freshly extracted facts with embeddings
            now: Invalidation time (default: current time)

        Returns:
            Existing or batch edges that were invalidated
        """
        moment = now or utc_now()
        invalidated: list[FactEdge] = []

        for edge in new_edges:
            for existing in self.find_contradictions(edge, store.get_valid_edges()):
                existing.invalidate(moment)
                invalidated.append(existing)
                logger.info(f"Invalidated fact '{existing.fact}' superseded by '{edge.fact}'")

            store.add_edge(edge)

        return invalidated
