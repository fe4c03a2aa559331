"""
Graph Repository - SQLite Persistence.

Durable storage for episodes, entity nodes and fact edges of every tenant.
Each operation opens its own connection, so readers only ever observe
committed state, and a graph save is one transaction that either fully
applies or fully rolls back.
"""

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiosqlite
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.knowledge.schemas import EntityNode, Episode, EpisodeType, FactEdge
from src.utils.logger import get_logger

logger = get_logger(__name__)


class RepositoryError(Exception):
    """Raised when a persistence operation fails."""

    pass


SCHEMA = """
CREATE TABLE IF NOT EXISTS episodes (
    id TEXT PRIMARY KEY,
    group_id TEXT NOT NULL,
    name TEXT NOT NULL,
    labels TEXT NOT NULL DEFAULT '[]',
    type TEXT NOT NULL DEFAULT 'text',
    content TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_episodes_group_created ON episodes (group_id, created_at);

CREATE TABLE IF NOT EXISTS nodes (
    id TEXT PRIMARY KEY,
    group_id TEXT NOT NULL,
    name TEXT NOT NULL,
    summary TEXT NOT NULL DEFAULT '',
    labels TEXT NOT NULL DEFAULT '[]',
    embedding TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_nodes_group_name ON nodes (group_id, name);

CREATE TABLE IF NOT EXISTS edges (
    id TEXT PRIMARY KEY,
    group_id TEXT NOT NULL,
    source_id TEXT NOT NULL REFERENCES nodes (id) ON DELETE CASCADE,
    target_id TEXT NOT NULL REFERENCES nodes (id) ON DELETE CASCADE,
    label TEXT NOT NULL,
    fact TEXT NOT NULL DEFAULT '',
    episodes TEXT NOT NULL DEFAULT '[]',
    valid_at TEXT NOT NULL,
    invalid_at TEXT,
    embedding TEXT NOT NULL DEFAULT '[]'
);
CREATE INDEX IF NOT EXISTS idx_edges_group_invalid ON edges (group_id, invalid_at);
"""

_UPSERT_EPISODE = """
INSERT INTO episodes (id, group_id, name, labels, type, content, description, created_at)
VALUES (?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT (id) DO UPDATE SET
    name = excluded.name,
    labels = excluded.labels,
    type = excluded.type,
    content = excluded.content,
    description = excluded.description
"""

_UPSERT_NODE = """
INSERT INTO nodes (id, group_id, name, summary, labels, embedding, created_at)
VALUES (?, ?, ?, ?, ?, ?, ?)
ON CONFLICT (id) DO UPDATE SET
    name = excluded.name,
    summary = excluded.summary,
    labels = excluded.labels,
    embedding = excluded.embedding
"""

_UPSERT_EDGE = """
INSERT INTO edges (
    id, group_id, source_id, target_id, label, fact, episodes, valid_at, invalid_at, embedding
)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT (id) DO UPDATE SET
    source_id = excluded.source_id,
    target_id = excluded.target_id,
    label = excluded.label,
    fact = excluded.fact,
    episodes = excluded.episodes,
    valid_at = excluded.valid_at,
    invalid_at = excluded.invalid_at,
    embedding = excluded.embedding
"""

# A locked database is the only failure worth retrying; everything else rolls back.
_retry_when_locked = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
    retry=retry_if_exception_type(aiosqlite.OperationalError),
    reraise=True,
)


def _format_dt(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_dt(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class GraphRepository:
    """
    aiosqlite-backed store of the episodes/nodes/edges tables.

    Usage:
        repository = GraphRepository(Path("./data/memory.db"))
        await repository.initialize()
        await repository.save_graph(nodes, edges)
    """

    def __init__(self, db_path: Path, timeout: float = 5.0) -> None:
        """
        Initialize the repository.

        Args:
            db_path: SQLite database file
            timeout: Seconds a connection waits on a locked database
        """
        self.db_path = db_path
        self.timeout = timeout
        self._initialized = False

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[aiosqlite.Connection]:
        async with aiosqlite.connect(self.db_path, timeout=self.timeout) as conn:
            conn.row_factory = aiosqlite.Row
            await conn.execute("PRAGMA foreign_keys = ON")
            yield conn

    async def initialize(self) -> None:
        """Create the database file and tables if they don't exist."""
        if self._initialized:
            return

        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            async with self._connect() as conn:
                await conn.execute("PRAGMA journal_mode = WAL")
                await conn.executescript(SCHEMA)
                await conn.commit()
        except aiosqlite.Error as e:
            raise RepositoryError(f"Failed to initialize database {self.db_path}: {e}") from e

        self._initialized = True
        logger.info(f"Graph repository ready at {self.db_path}")

    # ------------------------------------------------------------------
    # Episodes
    # ------------------------------------------------------------------

    async def upsert_episode(self, episode: Episode) -> Episode:
        """
        Insert an episode, or update its mutable fields if the id exists.

        Returns:
            The stored episode (with the original created_at on re-ingestion)
        """
        try:
            await self._write_episode(episode)
        except aiosqlite.Error as e:
            raise RepositoryError(f"Failed to store episode {episode.id}: {e}") from e

        stored = await self.get_episode(episode.id)
        if stored is None:
            raise RepositoryError(f"Episode {episode.id} missing after write")
        return stored

    @_retry_when_locked
    async def _write_episode(self, episode: Episode) -> None:
        async with self._connect() as conn:
            await conn.execute(
                _UPSERT_EPISODE,
                (
                    episode.id,
                    episode.group_id,
                    episode.name,
                    json.dumps(episode.labels),
                    episode.type.value,
                    episode.content,
                    episode.description,
                    _format_dt(episode.created_at),
                ),
            )
            await conn.commit()

    async def get_episode(self, episode_id: str) -> Episode | None:
        """Get an episode by id."""
        rows = await self._fetch("SELECT * FROM episodes WHERE id = ?", (episode_id,))
        return self._row_to_episode(rows[0]) if rows else None

    async def get_recent_episodes(
        self,
        group_id: str,
        limit: int,
        exclude_id: str | None = None,
    ) -> list[Episode]:
        """
        Get the tenant's latest episodes in chronological order.

        Args:
            group_id: Tenant id
            limit: Maximum number of episodes
            exclude_id: Episode to leave out (usually the one being processed)
        """
        if limit <= 0:
            return []

        rows = await self._fetch(
            """
            SELECT * FROM episodes
            WHERE group_id = ? AND id != ?
            ORDER BY created_at DESC, rowid DESC
            LIMIT ?
            """,
            (group_id, exclude_id or "", limit),
        )
        return [self._row_to_episode(row) for row in reversed(rows)]

    # ------------------------------------------------------------------
    # Nodes & edges
    # ------------------------------------------------------------------

    async def find_nodes_by_names(self, group_id: str, names: list[str]) -> list[EntityNode]:
        """Fetch the tenant's nodes whose name is in names, in one query."""
        unique = list(dict.fromkeys(names))
        if not unique:
            return []

        placeholders = ", ".join("?" for _ in unique)
        rows = await self._fetch(
            f"SELECT * FROM nodes WHERE group_id = ? AND name IN ({placeholders}) ORDER BY rowid",
            (group_id, *unique),
        )
        return [self._row_to_node(row) for row in rows]

    async def get_nodes_by_ids(self, group_id: str, node_ids: list[str]) -> list[EntityNode]:
        """Fetch nodes by id, returned in the order of node_ids."""
        unique = list(dict.fromkeys(node_ids))
        if not unique:
            return []

        placeholders = ", ".join("?" for _ in unique)
        rows = await self._fetch(
            f"SELECT * FROM nodes WHERE group_id = ? AND id IN ({placeholders})",
            (group_id, *unique),
        )
        by_id = {row["id"]: self._row_to_node(row) for row in rows}
        return [by_id[node_id] for node_id in unique if node_id in by_id]

    async def get_nodes(self, group_id: str) -> list[EntityNode]:
        """All nodes of a tenant in storage order."""
        rows = await self._fetch("SELECT * FROM nodes WHERE group_id = ? ORDER BY rowid", (group_id,))
        return [self._row_to_node(row) for row in rows]

    async def get_edges(self, group_id: str) -> list[FactEdge]:
        """All edges of a tenant, including invalidated ones, in storage order."""
        rows = await self._fetch("SELECT * FROM edges WHERE group_id = ? ORDER BY rowid", (group_id,))
        return [self._row_to_edge(row) for row in rows]

    async def get_valid_edges(self, group_id: str) -> list[FactEdge]:
        """Edges of a tenant that have not been invalidated, in storage order."""
        rows = await self._fetch(
            "SELECT * FROM edges WHERE group_id = ? AND invalid_at IS NULL ORDER BY rowid",
            (group_id,),
        )
        return [self._row_to_edge(row) for row in rows]

    async def get_edges_for_episode(self, group_id: str, episode_id: str) -> list[FactEdge]:
        """Edges attested by the given episode."""
        rows = await self._fetch(
            """
            SELECT * FROM edges
            WHERE group_id = ?
              AND EXISTS (SELECT 1 FROM json_each(edges.episodes) WHERE json_each.value = ?)
            ORDER BY rowid
            """,
            (group_id, episode_id),
        )
        return [self._row_to_edge(row) for row in rows]

    async def save_graph(self, nodes: list[EntityNode], edges: list[FactEdge]) -> None:
        """
        Upsert nodes and edges in a single transaction.

        Raises:
            RepositoryError: If anything fails; no part of the batch is kept
        """
        if not nodes and not edges:
            return

        try:
            await self._write_graph(nodes, edges)
        except aiosqlite.Error as e:
            logger.error(f"Graph commit rolled back: {e}")
            raise RepositoryError(f"Failed to save graph batch: {e}") from e

        logger.info(f"Committed {len(nodes)} nodes and {len(edges)} edges")

    @_retry_when_locked
    async def _write_graph(self, nodes: list[EntityNode], edges: list[FactEdge]) -> None:
        async with self._connect() as conn:
            try:
                await conn.executemany(_UPSERT_NODE, [self._node_params(n) for n in nodes])
                await conn.executemany(_UPSERT_EDGE, [self._edge_params(e) for e in edges])
                await conn.commit()
            except BaseException:
                await conn.rollback()
                raise

    async def delete_node(self, group_id: str, node_id: str) -> int:
        """
        Delete a node; edges referencing it are removed by cascade.

        Returns:
            Number of nodes deleted (0 or 1)
        """
        try:
            async with self._connect() as conn:
                cursor = await conn.execute(
                    "DELETE FROM nodes WHERE group_id = ? AND id = ?",
                    (group_id, node_id),
                )
                await conn.commit()
                return cursor.rowcount
        except aiosqlite.Error as e:
            raise RepositoryError(f"Failed to delete node {node_id}: {e}") from e

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    async def _fetch(self, sql: str, params: tuple[Any, ...]) -> list[aiosqlite.Row]:
        try:
            async with self._connect() as conn:
                async with conn.execute(sql, params) as cursor:
                    return list(await cursor.fetchall())
        except aiosqlite.Error as e:
            raise RepositoryError(f"Query failed: {e}") from e

    @staticmethod
    def _node_params(node: EntityNode) -> tuple[Any, ...]:
        return (
            node.id,
            node.group_id,
            node.name,
            node.summary,
            json.dumps(node.labels),
            json.dumps(node.embedding),
            _format_dt(node.created_at),
        )

    @staticmethod
    def _edge_params(edge: FactEdge) -> tuple[Any, ...]:
        return (
            edge.id,
            edge.group_id,
            edge.source_id,
            edge.target_id,
            edge.label,
            edge.fact,
            json.dumps(edge.episodes),
            _format_dt(edge.valid_at),
            _format_dt(edge.invalid_at) if edge.invalid_at else None,
            json.dumps(edge.embedding),
        )

    @staticmethod
    def _row_to_episode(row: aiosqlite.Row) -> Episode:
        return Episode(
            id=row["id"],
            group_id=row["group_id"],
            name=row["name"],
            labels=json.loads(row["labels"]),
            type=EpisodeType(row["type"]),
            content=row["content"],
            description=row["description"],
            created_at=_parse_dt(row["created_at"]),
        )

    @staticmethod
    def _row_to_node(row: aiosqlite.Row) -> EntityNode:
        return EntityNode(
            id=row["id"],
            group_id=row["group_id"],
            name=row["name"],
            summary=row["summary"],
            labels=json.loads(row["labels"]),
            embedding=json.loads(row["embedding"]),
            created_at=_parse_dt(row["created_at"]),
        )

    @staticmethod
    def _row_to_edge(row: aiosqlite.Row) -> FactEdge:
        return FactEdge(
            id=row["id"],
            group_id=row["group_id"],
            source_id=row["source_id"],
            target_id=row["target_id"],
            label=row["label"],
            fact=row["fact"],
            episodes=json.loads(row["episodes"]),
            valid_at=_parse_dt(row["valid_at"]),
            invalid_at=_parse_dt(row["invalid_at"]) if row["invalid_at"] else None,
            embedding=json.loads(row["embedding"]),
        )
