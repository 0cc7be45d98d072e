"""
Timeline events and the graph changes they derive.

An event can request an edge between its source and target nodes. The edge is
created after the event is committed and never duplicates an existing edge for
the same ordered pair; if creating it fails the event still stands and the
failure is reported next to it. Node derivation places an entity on the graph
next to the nodes it relates to, reusing the entity's node when it already has
one.
"""
import logging
import sqlite3
from datetime import date as date_cls
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from db_sqlite import fetch_all, fetch_one, transaction
from errors import CaseMapError, NotFoundError, ValidationError
from models import (
    EdgeView,
    Event,
    EventCreateRequest,
    EventResult,
    EventType,
    EventUpdateRequest,
    NodeView,
    Position,
    Tag,
)
from services_entities import find_or_create_by_exact_name, get_entity
from services_graph_store import (
    derived_kind,
    find_edge_for_pair,
    get_edge_view,
    get_graph_node,
    get_node_view,
    list_node_rows,
    require_graph,
)
from services_positioning import place_and_resolve
from services_registries import get_event_type, get_or_create_event_type
from utils.ids import new_id
from utils.timestamp import utcnow_iso

logger = logging.getLogger("casemap")

EDGE_EXISTS = "edge_exists"

_EVENT_ORDER = """
ORDER BY (ev.date IS NULL) ASC, ev.date DESC, ev.series_day DESC, ev.sort_order ASC, ev.created_at ASC
"""


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------

def _parse_date(value: Optional[str]) -> Optional[str]:
    """Normalize a date or datetime string to its calendar day, YYYY-MM-DD."""
    if value is None or not str(value).strip():
        return None
    raw = str(value).strip()
    try:
        return date_cls.fromisoformat(raw).isoformat()
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00")).date().isoformat()
    except ValueError:
        raise ValidationError("Invalid date format", details={"date": value})


def _clean_ids(ids: Optional[Sequence[str]]) -> List[str]:
    seen: Dict[str, None] = {}
    for node_id in ids or []:
        if node_id and node_id.strip():
            seen.setdefault(node_id.strip(), None)
    return list(seen)


def _resolve_event_type(
    conn: sqlite3.Connection, event_type_id: Optional[str], custom_type_name: Optional[str]
) -> EventType:
    if event_type_id:
        event_type = get_event_type(conn, event_type_id)
        if event_type is None:
            raise ValidationError("Invalid event type ID", details={"event_type_id": event_type_id})
        return event_type
    if custom_type_name and custom_type_name.strip():
        return get_or_create_event_type(conn, custom_type_name)
    raise ValidationError("Event type is required")


def _require_nodes_in_graph(conn: sqlite3.Connection, graph_id: str, node_ids: Sequence[str], what: str) -> None:
    for node_id in node_ids:
        if get_graph_node(conn, graph_id, node_id) is None:
            raise NotFoundError(
                f"{what} node not found in this graph",
                details={"node_id": node_id, "graph_id": graph_id},
            )


def _require_tags(conn: sqlite3.Connection, tag_ids: Sequence[str]) -> None:
    for tag_id in tag_ids:
        if not fetch_one(conn, "SELECT id FROM tags WHERE id = ?", (tag_id,)):
            raise NotFoundError("Tag not found", details={"tag_id": tag_id})


def _validate_common(
    title: Optional[str],
    event_date: Optional[str],
    series_day: Optional[int],
    source_graph_id: Optional[str],
    source_node_id: Optional[str],
    target_node_id: Optional[str],
    participant_ids: List[str],
) -> str:
    title = (title or "").strip()
    if not title:
        raise ValidationError("Event title is required")
    if event_date is None and series_day is None and not source_graph_id:
        raise ValidationError("Event date or series day is required")
    if not source_node_id and not target_node_id and not participant_ids:
        raise ValidationError("At least one node must be linked to the event")
    return title


def _same_day_clause(event_date: Optional[str], series_day: Optional[int]) -> Tuple[str, tuple]:
    if event_date is not None:
        return "date = ?", (event_date,)
    if series_day is not None:
        return "date IS NULL AND series_day = ?", (series_day,)
    return "date IS NULL AND series_day IS NULL", ()


def _next_sort_order(
    conn: sqlite3.Connection,
    graph_id: str,
    event_date: Optional[str],
    series_day: Optional[int],
    exclude_event_id: Optional[str] = None,
) -> int:
    clause, params = _same_day_clause(event_date, series_day)
    query = f"SELECT MAX(sort_order) AS max_order FROM events WHERE graph_id = ? AND {clause}"
    args: tuple = (graph_id, *params)
    if exclude_event_id:
        query += " AND id != ?"
        args += (exclude_event_id,)
    row = fetch_one(conn, query, args)
    max_order = row["max_order"] if row else None
    return 0 if max_order is None else max_order + 1


# ---------------------------------------------------------------------------
# Hydration
# ---------------------------------------------------------------------------

def _hydrate_events(conn: sqlite3.Connection, rows: List[Dict[str, Any]]) -> List[Event]:
    if not rows:
        return []
    ids = [r["id"] for r in rows]
    placeholders = ",".join("?" for _ in ids)

    participants: Dict[str, List[str]] = {}
    for r in fetch_all(
        conn,
        f"SELECT event_id, node_id FROM event_participants WHERE event_id IN ({placeholders}) ORDER BY rowid ASC",
        ids,
    ):
        participants.setdefault(r["event_id"], []).append(r["node_id"])

    tags: Dict[str, List[Tag]] = {}
    for r in fetch_all(
        conn,
        f"""
        SELECT et.event_id, t.id, t.name, t.color
        FROM event_tags et JOIN tags t ON t.id = et.tag_id
        WHERE et.event_id IN ({placeholders})
        ORDER BY t.name ASC
        """,
        ids,
    ):
        tags.setdefault(r["event_id"], []).append(Tag(id=r["id"], name=r["name"], color=r["color"]))

    events = []
    for r in rows:
        event_type = None
        if r.get("type_name") is not None:
            event_type = EventType(
                id=r["event_type_id"],
                name=r["type_name"],
                icon=r["type_icon"],
                color=r["type_color"],
                is_system=bool(r["type_is_system"]),
            )
        events.append(
            Event(
                id=r["id"],
                graph_id=r["graph_id"],
                title=r["title"],
                description=r["description"],
                date=r["date"],
                series_day=r["series_day"],
                source_graph_id=r["source_graph_id"],
                sort_order=r["sort_order"],
                event_type_id=r["event_type_id"],
                event_type=event_type,
                source_node_id=r["source_node_id"],
                target_node_id=r["target_node_id"],
                participant_node_ids=participants.get(r["id"], []),
                tags=tags.get(r["id"], []),
                created_edge_id=r["created_edge_id"],
                created_at=r["created_at"],
                updated_at=r["updated_at"],
            )
        )
    return events


_EVENT_SELECT = """
SELECT ev.*, t.name AS type_name, t.icon AS type_icon, t.color AS type_color, t.is_system AS type_is_system
FROM events ev
LEFT JOIN event_types t ON t.id = ev.event_type_id
"""


def get_event(conn: sqlite3.Connection, event_id: str) -> Event:
    row = fetch_one(conn, _EVENT_SELECT + " WHERE ev.id = ?", (event_id,))
    if row is None:
        raise NotFoundError("Event not found", details={"event_id": event_id})
    return _hydrate_events(conn, [row])[0]


def list_events(conn: sqlite3.Connection, graph_id: str, node_id: Optional[str] = None) -> List[Event]:
    """
    Events of a graph, newest day first, then by their order within the day.
    With `node_id`, only events where that node is source, target or a
    participant.
    """
    if node_id:
        rows = fetch_all(
            conn,
            _EVENT_SELECT
            + """
            WHERE ev.graph_id = ? AND (
                ev.source_node_id = ? OR ev.target_node_id = ?
                OR ev.id IN (SELECT event_id FROM event_participants WHERE node_id = ?)
            )
            """
            + _EVENT_ORDER,
            (graph_id, node_id, node_id, node_id),
        )
    else:
        rows = fetch_all(conn, _EVENT_SELECT + " WHERE ev.graph_id = ?" + _EVENT_ORDER, (graph_id,))
    return _hydrate_events(conn, rows)


# ---------------------------------------------------------------------------
# Derived edges
# ---------------------------------------------------------------------------

def _derive_edge(
    conn: sqlite3.Connection,
    graph_id: str,
    event_id: str,
    source_node_id: str,
    target_node_id: str,
    title: str,
) -> Tuple[Optional[EdgeView], Optional[str], Optional[str]]:
    """
    Create the event's edge unless the pair is already connected.

    Returns (created_edge, skipped_reason, error). Runs in its own transaction
    so a failure here never touches the committed event.
    """
    try:
        with transaction(conn):
            existing = find_edge_for_pair(conn, graph_id, source_node_id, target_node_id)
            if existing:
                logger.info(
                    f"Edge {existing['id']} already connects {source_node_id} -> {target_node_id}; "
                    f"not creating one for event {event_id}"
                )
                return None, EDGE_EXISTS, None
            edge_id = new_id()
            conn.execute(
                """
                INSERT INTO edges (id, graph_id, source_id, target_id, label, created_from_event_id)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (edge_id, graph_id, source_node_id, target_node_id, title, event_id),
            )
            conn.execute("UPDATE events SET created_edge_id = ? WHERE id = ?", (edge_id, event_id))
    except CaseMapError as e:
        logger.warning(f"Event {event_id} saved but its edge could not be created: {e.message}")
        return None, None, e.message
    return get_edge_view(conn, edge_id), None, None


# ---------------------------------------------------------------------------
# Event operations
# ---------------------------------------------------------------------------

def create_event(conn: sqlite3.Connection, payload: EventCreateRequest) -> EventResult:
    """
    Create an event, then its edge when `create_edge` is set and both
    endpoints are given.

    Raises:
        ValidationError: missing title, day, event type or node reference,
            or an invalid date
        NotFoundError: unknown graph, or a node or tag outside this graph
    """
    if not payload.graph_id:
        raise ValidationError("Graph ID is required")
    event_date = _parse_date(payload.date)
    participant_ids = _clean_ids(payload.participant_node_ids)
    tag_ids = _clean_ids(payload.tag_ids)
    title = _validate_common(
        payload.title,
        event_date,
        payload.series_day,
        payload.source_graph_id,
        payload.source_node_id,
        payload.target_node_id,
        participant_ids,
    )
    if not payload.event_type_id and not (payload.custom_type_name or "").strip():
        raise ValidationError("Event type is required")

    graph_id = payload.graph_id
    event_id = new_id()
    with transaction(conn):
        require_graph(conn, graph_id)
        if payload.source_node_id:
            _require_nodes_in_graph(conn, graph_id, [payload.source_node_id], "Source")
        if payload.target_node_id:
            _require_nodes_in_graph(conn, graph_id, [payload.target_node_id], "Target")
        _require_nodes_in_graph(conn, graph_id, participant_ids, "Participant")
        _require_tags(conn, tag_ids)
        if payload.source_graph_id:
            require_graph(conn, payload.source_graph_id)
        event_type = _resolve_event_type(conn, payload.event_type_id, payload.custom_type_name)

        now = utcnow_iso()
        conn.execute(
            """
            INSERT INTO events (id, graph_id, title, description, date, series_day, source_graph_id,
                                sort_order, event_type_id, source_node_id, target_node_id,
                                created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                event_id,
                graph_id,
                title,
                (payload.description or "").strip() or None,
                event_date,
                payload.series_day,
                payload.source_graph_id or None,
                _next_sort_order(conn, graph_id, event_date, payload.series_day),
                event_type.id,
                payload.source_node_id or None,
                payload.target_node_id or None,
                now,
                now,
            ),
        )
        conn.executemany(
            "INSERT INTO event_participants (event_id, node_id) VALUES (?, ?)",
            [(event_id, node_id) for node_id in participant_ids],
        )
        conn.executemany(
            "INSERT INTO event_tags (event_id, tag_id) VALUES (?, ?)",
            [(event_id, tag_id) for tag_id in tag_ids],
        )
    logger.info(f"Created event {event_id} '{title}' in graph {graph_id}")

    result = EventResult(event=get_event(conn, event_id))
    if payload.create_edge and payload.source_node_id and payload.target_node_id:
        edge, skipped, error = _derive_edge(
            conn, graph_id, event_id, payload.source_node_id, payload.target_node_id, title
        )
        result.created_edge = edge
        result.edge_skipped_reason = skipped
        result.edge_error = error
        if edge is not None:
            result.event = get_event(conn, event_id)
    return result


def update_event(conn: sqlite3.Connection, event_id: str, payload: EventUpdateRequest) -> EventResult:
    """
    Replace an event's fields. Participant and tag sets are replaced only when
    supplied. A provenance edge follows the new title; an event without one
    gets one under the same rule as on creation.
    """
    existing = fetch_one(conn, "SELECT * FROM events WHERE id = ?", (event_id,))
    if existing is None:
        raise NotFoundError("Event not found", details={"event_id": event_id})
    graph_id = existing["graph_id"]

    event_date = _parse_date(payload.date)
    participant_ids = (
        _clean_ids(payload.participant_node_ids)
        if payload.participant_node_ids is not None
        else [r["node_id"] for r in fetch_all(
            conn, "SELECT node_id FROM event_participants WHERE event_id = ?", (event_id,)
        )]
    )
    tag_ids = _clean_ids(payload.tag_ids) if payload.tag_ids is not None else None
    title = _validate_common(
        payload.title,
        event_date,
        payload.series_day,
        payload.source_graph_id,
        payload.source_node_id,
        payload.target_node_id,
        participant_ids,
    )
    if not payload.event_type_id and not (payload.custom_type_name or "").strip():
        raise ValidationError("Event type is required")

    with transaction(conn):
        if payload.source_node_id:
            _require_nodes_in_graph(conn, graph_id, [payload.source_node_id], "Source")
        if payload.target_node_id:
            _require_nodes_in_graph(conn, graph_id, [payload.target_node_id], "Target")
        if payload.participant_node_ids is not None:
            _require_nodes_in_graph(conn, graph_id, participant_ids, "Participant")
        if tag_ids is not None:
            _require_tags(conn, tag_ids)
        if payload.source_graph_id:
            require_graph(conn, payload.source_graph_id)
        event_type = _resolve_event_type(conn, payload.event_type_id, payload.custom_type_name)

        sort_order = existing["sort_order"]
        if (event_date, payload.series_day) != (existing["date"], existing["series_day"]):
            sort_order = _next_sort_order(conn, graph_id, event_date, payload.series_day, exclude_event_id=event_id)

        conn.execute(
            """
            UPDATE events SET title = ?, description = ?, date = ?, series_day = ?, source_graph_id = ?,
                              sort_order = ?, event_type_id = ?, source_node_id = ?, target_node_id = ?,
                              updated_at = ?
            WHERE id = ?
            """,
            (
                title,
                (payload.description or "").strip() or None,
                event_date,
                payload.series_day,
                payload.source_graph_id or None,
                sort_order,
                event_type.id,
                payload.source_node_id or None,
                payload.target_node_id or None,
                utcnow_iso(),
                event_id,
            ),
        )
        if payload.participant_node_ids is not None:
            conn.execute("DELETE FROM event_participants WHERE event_id = ?", (event_id,))
            conn.executemany(
                "INSERT INTO event_participants (event_id, node_id) VALUES (?, ?)",
                [(event_id, node_id) for node_id in participant_ids],
            )
        if tag_ids is not None:
            conn.execute("DELETE FROM event_tags WHERE event_id = ?", (event_id,))
            conn.executemany(
                "INSERT INTO event_tags (event_id, tag_id) VALUES (?, ?)",
                [(event_id, tag_id) for tag_id in tag_ids],
            )
        if existing["created_edge_id"]:
            conn.execute("UPDATE edges SET label = ? WHERE id = ?", (title, existing["created_edge_id"]))

    result = EventResult(event=get_event(conn, event_id))
    if (
        not existing["created_edge_id"]
        and payload.create_edge
        and payload.source_node_id
        and payload.target_node_id
    ):
        edge, skipped, error = _derive_edge(
            conn, graph_id, event_id, payload.source_node_id, payload.target_node_id, title
        )
        result.created_edge = edge
        result.edge_skipped_reason = skipped
        result.edge_error = error
        if edge is not None:
            result.event = get_event(conn, event_id)
    return result


def delete_event(conn: sqlite3.Connection, event_id: str) -> None:
    """Delete an event. Its provenance edge stays on the graph."""
    with transaction(conn):
        if not fetch_one(conn, "SELECT id FROM events WHERE id = ?", (event_id,)):
            raise NotFoundError("Event not found", details={"event_id": event_id})
        conn.execute("DELETE FROM events WHERE id = ?", (event_id,))
    logger.info(f"Deleted event {event_id}")


def reorder_events(
    conn: sqlite3.Connection,
    graph_id: str,
    event_ids: List[str],
    event_date: Optional[str] = None,
    series_day: Optional[int] = None,
) -> None:
    """
    Rewrite sort_order to match `event_ids` for one day of a graph.

    `event_ids` must be exactly the events on that day; anything else is a
    ValidationError and nothing changes.
    """
    event_date = _parse_date(event_date)
    if event_date is None and series_day is None:
        raise ValidationError("A date or series day is required to reorder events")
    if len(set(event_ids)) != len(event_ids):
        raise ValidationError("Duplicate event ids in reorder request")

    clause, params = _same_day_clause(event_date, series_day)
    with transaction(conn):
        require_graph(conn, graph_id)
        rows = fetch_all(conn, f"SELECT id FROM events WHERE graph_id = ? AND {clause}", (graph_id, *params))
        on_day = {r["id"] for r in rows}
        if on_day != set(event_ids):
            raise ValidationError(
                "Some events not found or not on the specified date",
                details={
                    "unknown": sorted(set(event_ids) - on_day),
                    "missing": sorted(on_day - set(event_ids)),
                },
            )
        conn.executemany(
            "UPDATE events SET sort_order = ? WHERE id = ?",
            [(index, eid) for index, eid in enumerate(event_ids)],
        )


# ---------------------------------------------------------------------------
# Node derivation
# ---------------------------------------------------------------------------

def derive_node_for_entity(
    conn: sqlite3.Connection,
    graph_id: str,
    entity_id: str,
    related_node_ids: Sequence[str] = (),
    viewport_center: Optional[Position] = None,
) -> Tuple[NodeView, bool]:
    """
    Place `entity_id` on the graph, next to `related_node_ids`.

    An entity has at most one node per graph: when it is already placed the
    existing node is returned with created=False.
    """
    with transaction(conn):
        require_graph(conn, graph_id)
        entity = get_entity(conn, entity_id)
        existing = fetch_one(
            conn,
            "SELECT id FROM nodes WHERE graph_id = ? AND entity_id = ? ORDER BY rowid ASC LIMIT 1",
            (graph_id, entity_id),
        )
        if existing:
            return get_node_view(conn, existing["id"]), False

        rows = list_node_rows(conn, graph_id)
        by_id = {r["id"]: Position(x=r["x"], y=r["y"]) for r in rows}
        related = [by_id[node_id] for node_id in related_node_ids if node_id in by_id]
        position = place_and_resolve(related, list(by_id.values()), viewport_center)

        node_id = new_id()
        kind = derived_kind(None, entity.role.name if entity.role else None)
        conn.execute(
            "INSERT INTO nodes (id, graph_id, entity_id, x, y, kind) VALUES (?, ?, ?, ?, ?, ?)",
            (node_id, graph_id, entity.id, position.x, position.y, kind),
        )
    logger.info(f"Placed entity {entity_id} as node {node_id} at ({position.x:.0f}, {position.y:.0f})")
    return get_node_view(conn, node_id), True


def derive_node_from_name(
    conn: sqlite3.Connection,
    graph_id: str,
    name: str,
    role_id: str,
    related_node_ids: Sequence[str] = (),
    entity_type: Optional[str] = None,
    description: Optional[str] = None,
    viewport_center: Optional[Position] = None,
) -> Tuple[NodeView, bool]:
    """Find or create the entity called `name`, then place it on the graph."""
    with transaction(conn):
        require_graph(conn, graph_id)
        entity, _ = find_or_create_by_exact_name(
            conn, name, role_id, entity_type=entity_type, description=description
        )
        return derive_node_for_entity(conn, graph_id, entity.id, related_node_ids, viewport_center)
