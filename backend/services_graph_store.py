"""
Graph store: investigation graphs and their structural state (nodes, edges).

Loading is self-healing: an unknown graph id is created on first access and a
graph without a root node gets one synthesized, so every load returns at least
one node. Node kind is recomputed from the entity's role on every read.
"""
import logging
import sqlite3
from typing import Any, Dict, List, Optional

from db_sqlite import fetch_all, fetch_one, transaction
from errors import NotFoundError, ValidationError
from models import (
    DirectionLabels,
    EdgeView,
    Graph,
    GraphSummary,
    GraphView,
    NodeView,
    Position,
)
from seed_data import ROOT_ROLE_CATEGORY, ROOT_ROLE_NAME
from services_entities import avatar_url
from services_registries import get_or_create_role
from utils.ids import new_id
from utils.timestamp import utcnow_iso

logger = logging.getLogger("casemap")

ROOT_KIND = "root"
EVIDENCE_LEADER_KIND = "evidenceLeader"
CUSTOM_KIND = "custom"
_EVIDENCE_LEADER_MARKERS = ("evidence leader", "evidenceleader")

_NODE_SELECT = """
SELECT n.id, n.graph_id, n.entity_id, n.x, n.y, n.kind, n.category,
       e.name AS entity_name, e.description AS entity_description, e.avatar AS entity_avatar,
       e.role_id AS role_id, r.name AS role_name, r.category AS role_category
FROM nodes n
JOIN entities e ON e.id = n.entity_id
JOIN roles r ON r.id = e.role_id
"""

_EDGE_SELECT = """
SELECT ed.*, rt.name AS relationship_name
FROM edges ed
LEFT JOIN relationship_types rt ON rt.id = ed.relationship_type_id
"""


def derived_kind(stored_kind: Optional[str], role_name: Optional[str]) -> str:
    """
    Node kind as a function of the root flag and the entity's current role.

    Root stays root. Otherwise a role name containing "evidence leader"
    (any case, with or without the space) makes an evidence leader, and
    everything else is custom. Stored non-root kinds are never trusted.
    """
    if stored_kind == ROOT_KIND:
        return ROOT_KIND
    name = (role_name or "").lower()
    if any(marker in name for marker in _EVIDENCE_LEADER_MARKERS):
        return EVIDENCE_LEADER_KIND
    return CUSTOM_KIND


# ---------------------------------------------------------------------------
# Graph rows
# ---------------------------------------------------------------------------

def _graph_from_row(row: Dict[str, Any]) -> Graph:
    return Graph(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        root_label_top=row["root_label_top"],
        root_label_bottom=row["root_label_bottom"],
        root_label_left=row["root_label_left"],
        root_label_right=row["root_label_right"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def find_graph(conn: sqlite3.Connection, graph_id: str) -> Optional[Graph]:
    row = fetch_one(conn, "SELECT * FROM graphs WHERE id = ?", (graph_id,))
    return _graph_from_row(row) if row else None


def require_graph(conn: sqlite3.Connection, graph_id: str) -> Graph:
    graph = find_graph(conn, graph_id)
    if graph is None:
        raise NotFoundError("Graph not found", details={"graph_id": graph_id})
    return graph


def touch_graph(conn: sqlite3.Connection, graph_id: str) -> None:
    conn.execute("UPDATE graphs SET updated_at = ? WHERE id = ?", (utcnow_iso(), graph_id))


def _insert_graph(conn: sqlite3.Connection, graph_id: str, name: str, description: Optional[str]) -> Graph:
    now = utcnow_iso()
    conn.execute(
        "INSERT INTO graphs (id, name, description, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
        (graph_id, name, description, now, now),
    )
    return Graph(id=graph_id, name=name, description=description, created_at=now, updated_at=now)


def find_root_node(conn: sqlite3.Connection, graph_id: str) -> Optional[Dict[str, Any]]:
    return fetch_one(
        conn,
        "SELECT * FROM nodes WHERE graph_id = ? AND kind = ? ORDER BY rowid ASC LIMIT 1",
        (graph_id, ROOT_KIND),
    )


def ensure_root_node(conn: sqlite3.Connection, graph: Graph) -> Dict[str, Any]:
    """Return the graph's root node row, synthesizing root entity + node if missing."""
    with transaction(conn):
        root = find_root_node(conn, graph.id)
        if root:
            return root
        role = get_or_create_role(conn, ROOT_ROLE_NAME, ROOT_ROLE_CATEGORY, is_system=True)
        entity_id = new_id()
        now = utcnow_iso()
        conn.execute(
            """
            INSERT INTO entities (id, name, role_id, entity_type, description, avatar, created_at, updated_at)
            VALUES (?, ?, ?, 'organization', ?, ?, ?, ?)
            """,
            (entity_id, graph.name, role.id, graph.description, avatar_url(graph.name), now, now),
        )
        node_id = new_id()
        conn.execute(
            "INSERT INTO nodes (id, graph_id, entity_id, x, y, kind) VALUES (?, ?, ?, 0, 0, ?)",
            (node_id, graph.id, entity_id, ROOT_KIND),
        )
    logger.warning(f"Graph {graph.id} was missing its root node; created node {node_id} (entity {entity_id})")
    return {"id": node_id, "graph_id": graph.id, "entity_id": entity_id, "x": 0.0, "y": 0.0,
            "kind": ROOT_KIND, "category": None}


# ---------------------------------------------------------------------------
# Graph CRUD
# ---------------------------------------------------------------------------

def list_graphs(conn: sqlite3.Connection) -> List[GraphSummary]:
    rows = fetch_all(
        conn,
        """
        SELECT g.id, g.name, g.description, g.created_at, g.updated_at,
               (SELECT COUNT(*) FROM nodes n WHERE n.graph_id = g.id) AS node_count,
               (SELECT COUNT(*) FROM edges ed WHERE ed.graph_id = g.id) AS edge_count,
               (SELECT COUNT(*) FROM events ev WHERE ev.graph_id = g.id) AS event_count
        FROM graphs g
        ORDER BY g.updated_at DESC
        """,
    )
    return [GraphSummary(**row) for row in rows]


def get_graph_summary(conn: sqlite3.Connection, graph_id: str) -> GraphSummary:
    row = fetch_one(
        conn,
        """
        SELECT g.id, g.name, g.description, g.created_at, g.updated_at,
               (SELECT COUNT(*) FROM nodes n WHERE n.graph_id = g.id) AS node_count,
               (SELECT COUNT(*) FROM edges ed WHERE ed.graph_id = g.id) AS edge_count,
               (SELECT COUNT(*) FROM events ev WHERE ev.graph_id = g.id) AS event_count
        FROM graphs g WHERE g.id = ?
        """,
        (graph_id,),
    )
    if row is None:
        raise NotFoundError("Graph not found", details={"graph_id": graph_id})
    return GraphSummary(**row)


def create_graph(conn: sqlite3.Connection, name: str, description: Optional[str] = None) -> GraphView:
    """Create a graph together with its root node."""
    name = (name or "").strip()
    if not name:
        raise ValidationError("Graph name is required")
    description = (description or "").strip() or None
    with transaction(conn):
        graph = _insert_graph(conn, new_id(), name, description)
        root = ensure_root_node(conn, graph)
    logger.info(f"Created graph {graph.id} '{name}' with root node {root['id']}")
    return build_graph_view(conn, graph.id)


_ROOT_LABEL_FIELDS = ("root_label_top", "root_label_bottom", "root_label_left", "root_label_right")


def update_graph(conn: sqlite3.Connection, graph_id: str, fields: Dict[str, Any]) -> Graph:
    """Partial metadata update; empty root labels are stored as NULL."""
    updates: Dict[str, Any] = {}
    if "name" in fields and fields["name"] is not None:
        name = fields["name"].strip()
        if not name:
            raise ValidationError("Graph name cannot be empty")
        updates["name"] = name
    if "description" in fields:
        updates["description"] = (fields["description"] or "").strip() or None
    for label in _ROOT_LABEL_FIELDS:
        if label in fields:
            updates[label] = fields[label] or None

    with transaction(conn):
        require_graph(conn, graph_id)
        updates["updated_at"] = utcnow_iso()
        assignments = ", ".join(f"{column} = ?" for column in updates)
        conn.execute(f"UPDATE graphs SET {assignments} WHERE id = ?", (*updates.values(), graph_id))
    return require_graph(conn, graph_id)


def delete_graph(conn: sqlite3.Connection, graph_id: str) -> None:
    """Delete a graph; nodes, edges and events go with it. Entities stay."""
    with transaction(conn):
        require_graph(conn, graph_id)
        conn.execute("DELETE FROM graphs WHERE id = ?", (graph_id,))
    logger.info(f"Deleted graph {graph_id}")


# ---------------------------------------------------------------------------
# Hydration
# ---------------------------------------------------------------------------

def _direction_labels(graph: Graph) -> Optional[DirectionLabels]:
    labels = DirectionLabels(
        top=graph.root_label_top,
        bottom=graph.root_label_bottom,
        left=graph.root_label_left,
        right=graph.root_label_right,
    )
    if not any((labels.top, labels.bottom, labels.left, labels.right)):
        return None
    return labels


def _node_view_from_row(row: Dict[str, Any], graph: Optional[Graph] = None) -> NodeView:
    kind = derived_kind(row["kind"], row["role_name"])
    return NodeView(
        id=row["id"],
        kind=kind,
        position=Position(x=row["x"], y=row["y"]),
        entity_id=row["entity_id"],
        label=row["entity_name"],
        role_id=row["role_id"],
        role=row["role_name"],
        category=row["category"] or row["role_category"],
        description=row["entity_description"],
        avatar=row["entity_avatar"],
        direction_labels=_direction_labels(graph) if graph is not None and kind == ROOT_KIND else None,
    )


def _edge_view_from_row(row: Dict[str, Any]) -> EdgeView:
    return EdgeView(
        id=row["id"],
        source=row["source_id"],
        target=row["target_id"],
        label=row["relationship_name"] or row["label"],
        relationship_type_id=row["relationship_type_id"],
        source_handle=row["source_handle"],
        target_handle=row["target_handle"],
        created_from_event_id=row["created_from_event_id"],
    )


def get_node_view(conn: sqlite3.Connection, node_id: str) -> Optional[NodeView]:
    row = fetch_one(conn, _NODE_SELECT + " WHERE n.id = ?", (node_id,))
    if row is None:
        return None
    return _node_view_from_row(row, find_graph(conn, row["graph_id"]))


def get_edge_view(conn: sqlite3.Connection, edge_id: str) -> Optional[EdgeView]:
    row = fetch_one(conn, _EDGE_SELECT + " WHERE ed.id = ?", (edge_id,))
    return _edge_view_from_row(row) if row else None


def list_node_rows(conn: sqlite3.Connection, graph_id: str) -> List[Dict[str, Any]]:
    return fetch_all(conn, "SELECT * FROM nodes WHERE graph_id = ? ORDER BY rowid ASC", (graph_id,))


def get_graph_node(conn: sqlite3.Connection, graph_id: str, node_id: str) -> Optional[Dict[str, Any]]:
    return fetch_one(conn, "SELECT * FROM nodes WHERE id = ? AND graph_id = ?", (node_id, graph_id))


def find_edge_for_pair(conn: sqlite3.Connection, graph_id: str, source_id: str, target_id: str) -> Optional[Dict[str, Any]]:
    return fetch_one(
        conn,
        "SELECT * FROM edges WHERE graph_id = ? AND source_id = ? AND target_id = ? LIMIT 1",
        (graph_id, source_id, target_id),
    )


def build_graph_view(conn: sqlite3.Connection, graph_id: str) -> GraphView:
    graph = require_graph(conn, graph_id)
    node_rows = fetch_all(conn, _NODE_SELECT + " WHERE n.graph_id = ? ORDER BY n.rowid ASC", (graph_id,))
    edge_rows = fetch_all(conn, _EDGE_SELECT + " WHERE ed.graph_id = ? ORDER BY ed.rowid ASC", (graph_id,))
    return GraphView(
        graph=graph,
        nodes=[_node_view_from_row(r, graph) for r in node_rows],
        edges=[_edge_view_from_row(r) for r in edge_rows],
    )


def load_graph(conn: sqlite3.Connection, graph_id: str) -> GraphView:
    """
    Load a graph for the editor.

    Unknown ids are created on first access ("Investigation <suffix>"), and a
    graph without a root node gets one before it is returned.
    """
    with transaction(conn):
        graph = find_graph(conn, graph_id)
        if graph is None:
            graph = _insert_graph(conn, graph_id, f"Investigation {graph_id[-6:]}", None)
            logger.info(f"Graph {graph_id} not found; created it on first access")
        ensure_root_node(conn, graph)
    return build_graph_view(conn, graph_id)
