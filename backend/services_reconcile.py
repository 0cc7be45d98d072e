"""
Full-state graph save.

The client always sends its complete node and edge lists; this module diffs
them against the stored graph and applies deletes and upserts in one
transaction. The server decides which node is the root, where it sits and
what kind every node is, whatever the client claims.
"""
import logging
import sqlite3
import threading
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Sequence, Set

from config import SAVE_TRANSACTION_TIMEOUT_SECONDS
from db_sqlite import fetch_all, fetch_one, transaction
from errors import (
    NotFoundError,
    ReferentialIntegrityError,
    TransactionInterrupted,
    ValidationError,
)
from models import ROLE_CATEGORIES, ClientEdge, ClientNode, ReconcileResult
from services_graph_store import ROOT_KIND, derived_kind, find_root_node, require_graph, touch_graph
from services_registries import get_relationship_type
from utils.structured_log import structured_log_line

logger = logging.getLogger("casemap")

# One save at a time per graph; later saves queue on the lock. An entry lives
# only while some save holds or waits for it.
_graph_locks: Dict[str, List[Any]] = {}
_graph_locks_guard = threading.Lock()


@contextmanager
def _graph_lock(graph_id: str, timeout_seconds: float) -> Iterator[None]:
    with _graph_locks_guard:
        entry = _graph_locks.setdefault(graph_id, [threading.Lock(), 0])
        entry[1] += 1
    try:
        if not entry[0].acquire(timeout=timeout_seconds):
            raise TransactionInterrupted(
                "Another save for this graph is still running. Please try again.",
                details={"graph_id": graph_id},
            )
        try:
            yield
        finally:
            entry[0].release()
    finally:
        with _graph_locks_guard:
            entry[1] -= 1
            if entry[1] == 0:
                del _graph_locks[graph_id]


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _validate_shape(nodes: Sequence[ClientNode], edges: Sequence[ClientEdge]) -> None:
    """Reject the payload on the first structural problem."""
    seen_nodes: Set[str] = set()
    for index, node in enumerate(nodes):
        where = {"index": index, "node_id": node.id}
        if not node.id:
            raise ValidationError("Node is missing an id", details=where)
        if node.id in seen_nodes:
            raise ValidationError(f"Duplicate node id {node.id}", details=where)
        seen_nodes.add(node.id)
        if not node.entity_id:
            raise ValidationError(f"Node {node.id} is missing an entity_id", details=where)
        position = node.position
        if not isinstance(position, dict) or not _is_number(position.get("x")) or not _is_number(position.get("y")):
            raise ValidationError(f"Node {node.id} has no numeric position", details=where)
        if node.category is not None and node.category not in ROLE_CATEGORIES:
            raise ValidationError(
                f"Node {node.id} has invalid category '{node.category}'",
                details={**where, "allowed": sorted(ROLE_CATEGORIES)},
            )

    seen_edges: Set[str] = set()
    for index, edge in enumerate(edges):
        where = {"index": index, "edge_id": edge.id}
        if not edge.id:
            raise ValidationError("Edge is missing an id", details=where)
        if edge.id in seen_edges:
            raise ValidationError(f"Duplicate edge id {edge.id}", details=where)
        seen_edges.add(edge.id)
        if not edge.source or not edge.target:
            raise ValidationError(f"Edge {edge.id} is missing source or target", details=where)


def _entity_role_names(conn: sqlite3.Connection, entity_ids: Set[str]) -> Dict[str, str]:
    if not entity_ids:
        return {}
    placeholders = ",".join("?" for _ in entity_ids)
    rows = fetch_all(
        conn,
        f"""
        SELECT e.id, r.name AS role_name
        FROM entities e JOIN roles r ON r.id = e.role_id
        WHERE e.id IN ({placeholders})
        """,
        tuple(entity_ids),
    )
    return {r["id"]: r["role_name"] for r in rows}


def _existing_owner(conn: sqlite3.Connection, table: str, row_id: str) -> Optional[str]:
    row = fetch_one(conn, f"SELECT graph_id FROM {table} WHERE id = ?", (row_id,))
    return row["graph_id"] if row else None


def _apply_nodes(
    conn: sqlite3.Connection,
    graph_id: str,
    nodes: Sequence[ClientNode],
    result: ReconcileResult,
) -> None:
    persisted = fetch_all(conn, "SELECT id, kind, entity_id FROM nodes WHERE graph_id = ?", (graph_id,))
    client_ids = {n.id for n in nodes}

    to_delete = [r["id"] for r in persisted if r["id"] not in client_ids and r["kind"] != ROOT_KIND]
    for node_id in to_delete:
        conn.execute("DELETE FROM nodes WHERE id = ?", (node_id,))
    result.nodes_deleted = len(to_delete)

    stored_root = find_root_node(conn, graph_id)
    if stored_root is not None:
        root_id = stored_root["id"]
    else:
        # Graph has no root yet: the first node the client flags as root becomes it
        root_id = next((n.id for n in nodes if n.kind == ROOT_KIND), None)

    stored_entities = {r["id"]: r["entity_id"] for r in persisted}
    role_names = _entity_role_names(conn, {n.entity_id for n in nodes} | set(stored_entities.values()))

    for node in nodes:
        entity_id = stored_entities.get(node.id, node.entity_id)
        if node.entity_id not in role_names:
            raise NotFoundError(
                f"Entity {node.entity_id} for node {node.id} does not exist",
                details={"node_id": node.id, "entity_id": node.entity_id},
            )
        if node.id not in stored_entities:
            owner = _existing_owner(conn, "nodes", node.id)
            if owner is not None:
                raise ReferentialIntegrityError(
                    f"Node {node.id} belongs to another graph",
                    details={"node_id": node.id, "graph_id": owner},
                )

        is_root = node.id == root_id
        if is_root:
            x, y = 0.0, 0.0
            kind = ROOT_KIND
        else:
            x, y = float(node.position["x"]), float(node.position["y"])
            kind = derived_kind(None, role_names.get(entity_id))

        conn.execute(
            """
            INSERT INTO nodes (id, graph_id, entity_id, x, y, kind, category)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                x = excluded.x,
                y = excluded.y,
                kind = excluded.kind,
                category = excluded.category
            """,
            (node.id, graph_id, node.entity_id, x, y, kind, node.category),
        )
    result.nodes_upserted = len(nodes)


def _apply_edges(
    conn: sqlite3.Connection,
    graph_id: str,
    edges: Sequence[ClientEdge],
    result: ReconcileResult,
) -> None:
    persisted_ids = {r["id"] for r in fetch_all(conn, "SELECT id FROM edges WHERE graph_id = ?", (graph_id,))}
    client_ids = {e.id for e in edges}

    to_delete = persisted_ids - client_ids
    for edge_id in to_delete:
        conn.execute("DELETE FROM edges WHERE id = ?", (edge_id,))
    result.edges_deleted = len(to_delete)

    node_ids = {r["id"] for r in fetch_all(conn, "SELECT id FROM nodes WHERE graph_id = ?", (graph_id,))}

    for edge in edges:
        for endpoint in (edge.source, edge.target):
            if endpoint not in node_ids:
                raise ReferentialIntegrityError(
                    f"Edge {edge.id} references node {endpoint} outside this graph",
                    details={"edge_id": edge.id, "node_id": endpoint},
                )
        if edge.id not in persisted_ids:
            owner = _existing_owner(conn, "edges", edge.id)
            if owner is not None:
                raise ReferentialIntegrityError(
                    f"Edge {edge.id} belongs to another graph",
                    details={"edge_id": edge.id, "graph_id": owner},
                )

        label = edge.label
        if edge.relationship_type_id:
            if get_relationship_type(conn, edge.relationship_type_id) is None:
                raise ValidationError(
                    f"Unknown relationship type {edge.relationship_type_id}",
                    details={"edge_id": edge.id},
                )
            # The relationship reference is authoritative over free text
            label = None

        conn.execute(
            """
            INSERT INTO edges (id, graph_id, source_id, target_id, label, relationship_type_id,
                               source_handle, target_handle)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                source_id = excluded.source_id,
                target_id = excluded.target_id,
                label = excluded.label,
                relationship_type_id = excluded.relationship_type_id,
                source_handle = excluded.source_handle,
                target_handle = excluded.target_handle
            """,
            (
                edge.id,
                graph_id,
                edge.source,
                edge.target,
                label,
                edge.relationship_type_id or None,
                edge.source_handle,
                edge.target_handle,
            ),
        )
    result.edges_upserted = len(edges)


def reconcile(
    conn: sqlite3.Connection,
    graph_id: str,
    client_nodes: List[ClientNode],
    client_edges: List[ClientEdge],
    timeout_seconds: float = SAVE_TRANSACTION_TIMEOUT_SECONDS,
) -> ReconcileResult:
    """
    Make the stored graph match the client's full node and edge lists.

    All-or-nothing: any error leaves the stored graph untouched. The root node
    is never deleted and always ends up at (0, 0).

    Raises:
        ValidationError: malformed payload or unknown relationship type
        NotFoundError: unknown graph or entity
        ReferentialIntegrityError: a node or edge id owned by another graph,
            or an edge endpoint outside this graph
        TransactionInterrupted: deadline passed or the database stayed locked
    """
    _validate_shape(client_nodes, client_edges)

    started = time.perf_counter()
    result = ReconcileResult()
    with _graph_lock(graph_id, timeout_seconds):
        with transaction(conn, timeout_seconds=timeout_seconds):
            require_graph(conn, graph_id)
            _apply_nodes(conn, graph_id, client_nodes, result)
            _apply_edges(conn, graph_id, client_edges, result)
            touch_graph(conn, graph_id)

    logger.info(
        structured_log_line(
            {
                "event": "graph_saved",
                "graph_id": graph_id,
                "nodes_deleted": result.nodes_deleted,
                "nodes_upserted": result.nodes_upserted,
                "edges_deleted": result.edges_deleted,
                "edges_upserted": result.edges_upserted,
                "latency_ms": int((time.perf_counter() - started) * 1000),
            }
        )
    )
    return result
