"""
Graph Store - NetworkX Working Set.

Holds the nodes and edges of one tenant in memory for the duration of an
ingestion or query call. Nodes are addressed by id and edges store endpoint
ids, so the working set can be loaded, extended and saved back without any
object cross-references.
"""

from typing import TYPE_CHECKING

import networkx as nx
from pyvis.network import Network

from src.knowledge.schemas import EntityNode, FactEdge
from src.utils.logger import get_logger

if TYPE_CHECKING:
    from src.knowledge.repository import GraphRepository

logger = get_logger(__name__)


class GraphStoreError(Exception):
    """Raised when graph store operations fail."""
    pass


class GraphStore:
    """
    In-memory graph of one tenant.

    Provides:
    - Idempotent node insertion keyed by id
    - Append-only, insertion-ordered edges
    - Neighbourhood lookups for a node
    - Load/save against the graph repository
    - Visualization with pyvis

    Usage:
        store = await GraphStore.load(repository, group_id)
        store.add_node(node)
        store.add_edge(edge)
        await store.save(repository)
    """

    def __init__(self, group_id: str) -> None:
        """
        Initialize an empty graph store.

        Args:
            group_id: Tenant every node and edge must belong to
        """
        self.group_id = group_id
        self._graph: nx.MultiDiGraph = nx.MultiDiGraph()
        self._edges: dict[str, FactEdge] = {}

    @property
    def graph(self) -> nx.MultiDiGraph:
        """Get the underlying NetworkX graph."""
        return self._graph

    def add_node(self, node: EntityNode) -> EntityNode:
        """
        Add a node. Re-adding an id already present is a no-op.

        Returns:
            The node stored under that id
        """
        self._check_group(node.group_id)

        if self._graph.has_node(node.id):
            return self._graph.nodes[node.id]["node"]

        self._graph.add_node(node.id, node=node)
        logger.debug(f"Added node: {node.name}")
        return node

    def put_node(self, node: EntityNode) -> EntityNode:
        """Insert a node, replacing the stored record if the id exists."""
        self._check_group(node.group_id)
        self._graph.add_node(node.id, node=node)
        return node

    def add_edge(self, edge: FactEdge) -> FactEdge:
        """
        Append an edge. Re-adding an id already present is a no-op.

        Raises:
            GraphStoreError: If an endpoint is not a node of this store
        """
        self._check_group(edge.group_id)

        if edge.id in self._edges:
            return self._edges[edge.id]

        for endpoint in (edge.source_id, edge.target_id):
            if not self._graph.has_node(endpoint):
                raise GraphStoreError(f"Edge {edge.id} references unknown node {endpoint}")

        self._edges[edge.id] = edge
        self._graph.add_edge(edge.source_id, edge.target_id, key=edge.id)

        logger.debug(f"Added edge: {edge.source_id} --[{edge.label}]--> {edge.target_id}")
        return edge

    def add_nodes(self, nodes: list[EntityNode]) -> list[EntityNode]:
        """Add multiple nodes."""
        return [self.add_node(n) for n in nodes]

    def add_edges(self, edges: list[FactEdge]) -> list[FactEdge]:
        """Add multiple edges."""
        return [self.add_edge(e) for e in edges]

    def get_node(self, node_id: str) -> EntityNode | None:
        """Get a node by id."""
        if not self._graph.has_node(node_id):
            return None
        return self._graph.nodes[node_id]["node"]

    def get_node_by_name(self, name: str) -> EntityNode | None:
        """Get a node by its exact name."""
        for node in self.get_nodes():
            if node.name == name:
                return node
        return None

    def get_nodes(self) -> list[EntityNode]:
        """All nodes in insertion order."""
        return [data["node"] for _, data in self._graph.nodes(data=True)]

    def get_edges(self) -> list[FactEdge]:
        """All edges in insertion order, including invalidated ones."""
        return list(self._edges.values())

    def get_valid_edges(self) -> list[FactEdge]:
        """Edges that have not been invalidated."""
        return [edge for edge in self._edges.values() if edge.is_valid]

    def get_edge(self, edge_id: str) -> FactEdge | None:
        """Get an edge by id."""
        return self._edges.get(edge_id)

    def get_edges_for_node(self, node_id: str) -> list[FactEdge]:
        """Edges having node_id as source or target."""
        return [
            edge
            for edge in self._edges.values()
            if node_id in (edge.source_id, edge.target_id)
        ]

    def get_connected_nodes(self, node_id: str) -> list[EntityNode]:
        """
        Nodes sharing an edge with node_id, through either endpoint.

        Each neighbour appears once, in edge insertion order.
        """
        if not self._graph.has_node(node_id):
            return []

        neighbour_ids: dict[str, None] = {}
        for edge in self.get_edges_for_node(node_id):
            other = edge.target_id if edge.source_id == node_id else edge.source_id
            if other != node_id:
                neighbour_ids[other] = None

        return [self._graph.nodes[nid]["node"] for nid in neighbour_ids]

    def node_count(self) -> int:
        """Get total number of nodes."""
        return self._graph.number_of_nodes()

    def edge_count(self) -> int:
        """Get total number of edges."""
        return len(self._edges)

    @classmethod
    async def load(cls, repository: "GraphRepository", group_id: str) -> "GraphStore":
        """
        Load the full graph of a tenant.

        Args:
            repository: Persistence backend
            group_id: Tenant to load

        Returns:
            GraphStore holding every node and edge of the tenant
        """
        store = cls(group_id)
        store.add_nodes(await repository.get_nodes(group_id))

        for edge in await repository.get_edges(group_id):
            try:
                store.add_edge(edge)
            except GraphStoreError as e:
                logger.warning(f"Skipping dangling edge while loading: {e}")

        logger.debug(
            f"Loaded graph for group {group_id} "
            f"({store.node_count()} nodes, {store.edge_count()} edges)"
        )
        return store

    async def save(self, repository: "GraphRepository") -> None:
        """Upsert the whole working set in one atomic transaction."""
        await repository.save_graph(self.get_nodes(), self.get_edges())
        logger.info(
            f"Saved graph for group {self.group_id} "
            f"({self.node_count()} nodes, {self.edge_count()} edges)"
        )

    def visualize(
        self,
        height: str = "800px",
        width: str = "100%",
        include_invalid: bool = True,
    ) -> str:
        """
        Render an interactive HTML view of the graph.

        Args:
            height: Height of the visualization
            width: Width of the visualization
            include_invalid: Draw invalidated facts as dashed grey edges

        Returns:
            Standalone HTML document
        """
        net = Network(
            height=height,
            width=width,
            directed=True,
            notebook=False,
            cdn_resources="remote",
        )

        for node in self.get_nodes():
            net.add_node(
                node.id,
                label=node.name,
                title=node.summary or node.name,
                group=node.labels[0] if node.labels else "Entity",
            )

        for edge in self.get_edges():
            if not edge.is_valid and not include_invalid:
                continue

            window = f"{edge.valid_at.isoformat()} - "
            window += edge.invalid_at.isoformat() if edge.invalid_at else "present"
            net.add_edge(
                edge.source_id,
                edge.target_id,
                label=edge.label,
                title=f"{edge.fact} ({window})",
                color="#4CAF50" if edge.is_valid else "#9E9E9E",
                dashes=not edge.is_valid,
            )

        net.set_options("""
        {
            "physics": {
                "barnesHut": {
                    "gravitationalConstant": -30000,
                    "springLength": 200
                }
            }
        }
        """)

        return net.generate_html()

    def _check_group(self, group_id: str) -> None:
        if group_id != self.group_id:
            raise GraphStoreError(
                f"Record of group {group_id} cannot be stored in graph of group {self.group_id}"
            )
