"""
Entity store: canonical identity and content (name, role, description) for
the people and organizations placed in investigation graphs.

Nodes never carry their own copy of these fields; every read hydrates them
from here.
"""
import logging
import sqlite3
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

from config import ENTITY_AVATAR_BASE_URL
from db_sqlite import fetch_all, fetch_one, transaction
from errors import NotFoundError, ValidationError
from models import ENTITY_TYPES, Entity, EntitySearchResult, Role
from services_registries import get_role
from utils.ids import new_id
from utils.timestamp import utcnow_iso

logger = logging.getLogger("casemap")

MIN_NAME_LENGTH = 2
SEARCH_MIN_QUERY_LENGTH = 2
SEARCH_LIMIT = 10

_ENTITY_SELECT = """
SELECT e.*, r.name AS role_name, r.category AS role_category, r.is_system AS role_is_system
FROM entities e
JOIN roles r ON r.id = e.role_id
"""


def avatar_url(name: str) -> str:
    """Placeholder avatar derived from the entity name."""
    return f"{ENTITY_AVATAR_BASE_URL}?name={quote(name)}&background=random"


def _entity_from_row(row: Dict[str, Any]) -> Entity:
    role = None
    if row.get("role_name") is not None:
        role = Role(
            id=row["role_id"],
            name=row["role_name"],
            category=row["role_category"],
            is_system=bool(row["role_is_system"]),
        )
    return Entity(
        id=row["id"],
        name=row["name"],
        role_id=row["role_id"],
        entity_type=row["entity_type"] or "human",
        description=row["description"],
        avatar=row["avatar"],
        role=role,
    )


def _validate_name(name: Optional[str]) -> str:
    cleaned = (name or "").strip()
    if len(cleaned) < MIN_NAME_LENGTH:
        raise ValidationError(f"Entity name must be at least {MIN_NAME_LENGTH} characters")
    return cleaned


def _validate_entity_type(entity_type: Optional[str]) -> str:
    if entity_type not in ENTITY_TYPES:
        raise ValidationError(
            f"Invalid entity type '{entity_type}'",
            details={"allowed": sorted(ENTITY_TYPES)},
        )
    return entity_type


def _require_role(conn: sqlite3.Connection, role_id: Optional[str]) -> Role:
    role = get_role(conn, role_id) if role_id else None
    if role is None:
        raise ValidationError("Invalid role ID", details={"role_id": role_id})
    return role


def get_entity(conn: sqlite3.Connection, entity_id: str) -> Entity:
    row = fetch_one(conn, _ENTITY_SELECT + " WHERE e.id = ?", (entity_id,))
    if row is None:
        raise NotFoundError("Entity not found", details={"entity_id": entity_id})
    return _entity_from_row(row)


def create_entity(
    conn: sqlite3.Connection,
    name: str,
    role_id: str,
    entity_type: Optional[str] = None,
    description: Optional[str] = None,
) -> Entity:
    name = _validate_name(name)
    entity_type = _validate_entity_type(entity_type or "human")
    with transaction(conn):
        role = _require_role(conn, role_id)
        entity_id = new_id()
        now = utcnow_iso()
        avatar = avatar_url(name)
        conn.execute(
            """
            INSERT INTO entities (id, name, role_id, entity_type, description, avatar, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (entity_id, name, role.id, entity_type, description, avatar, now, now),
        )
    return Entity(
        id=entity_id,
        name=name,
        role_id=role.id,
        entity_type=entity_type,
        description=description,
        avatar=avatar,
        role=role,
    )


def update_entity(conn: sqlite3.Connection, entity_id: str, fields: Dict[str, Any]) -> Entity:
    """
    Apply a partial update. Only keys present in `fields` change; an explicit
    None description clears it.
    """
    updates: Dict[str, Any] = {}
    if fields.get("name") is not None:
        updates["name"] = _validate_name(fields["name"])
    if fields.get("entity_type") is not None:
        updates["entity_type"] = _validate_entity_type(fields["entity_type"])
    if "description" in fields:
        updates["description"] = fields["description"]

    with transaction(conn):
        if not fetch_one(conn, "SELECT id FROM entities WHERE id = ?", (entity_id,)):
            raise NotFoundError("Entity not found", details={"entity_id": entity_id})
        if fields.get("role_id") is not None:
            updates["role_id"] = _require_role(conn, fields["role_id"]).id
        if updates:
            updates["updated_at"] = utcnow_iso()
            assignments = ", ".join(f"{column} = ?" for column in updates)
            conn.execute(
                f"UPDATE entities SET {assignments} WHERE id = ?",
                (*updates.values(), entity_id),
            )
    return get_entity(conn, entity_id)


def find_by_exact_name(conn: sqlite3.Connection, name: str) -> Optional[Entity]:
    """Case-insensitive, whitespace-trimmed exact name match."""
    cleaned = (name or "").strip()
    if not cleaned:
        return None
    row = fetch_one(
        conn,
        _ENTITY_SELECT + " WHERE lower(trim(e.name)) = lower(?) ORDER BY e.created_at ASC LIMIT 1",
        (cleaned,),
    )
    return _entity_from_row(row) if row else None


def find_or_create_by_exact_name(
    conn: sqlite3.Connection,
    name: str,
    candidate_role_id: str,
    entity_type: Optional[str] = None,
    description: Optional[str] = None,
) -> Tuple[Entity, bool]:
    """
    Return the existing entity named `name` or create one.

    An existing identity wins: the candidate role and fields are ignored when a
    match is found. Returns (entity, created).
    """
    with transaction(conn):
        existing = find_by_exact_name(conn, name)
        if existing:
            logger.info(f"Reusing entity {existing.id} for name '{existing.name}'")
            return existing, False
        entity = create_entity(conn, name, candidate_role_id, entity_type=entity_type, description=description)
    return entity, True


def _graph_entity_ids(conn: sqlite3.Connection, graph_id: str) -> set:
    rows = fetch_all(conn, "SELECT DISTINCT entity_id FROM nodes WHERE graph_id = ?", (graph_id,))
    return {r["entity_id"] for r in rows}


def search_entities(
    conn: sqlite3.Connection,
    query: Optional[str] = None,
    graph_id: Optional[str] = None,
) -> List[EntitySearchResult]:
    """
    Without a query, list every entity placed in `graph_id`. With a query of
    at least two characters, substring-match entity names and flag the ones
    already present in `graph_id`.
    """
    query = (query or "").strip()
    if not query and graph_id:
        rows = fetch_all(
            conn,
            _ENTITY_SELECT
            + " WHERE e.id IN (SELECT entity_id FROM nodes WHERE graph_id = ?) ORDER BY e.name ASC",
            (graph_id,),
        )
        return [EntitySearchResult(entity=_entity_from_row(r), in_current_graph=True) for r in rows]

    if len(query) < SEARCH_MIN_QUERY_LENGTH:
        return []

    rows = fetch_all(
        conn,
        _ENTITY_SELECT + " WHERE lower(e.name) LIKE ? ESCAPE '\\' ORDER BY e.name ASC LIMIT ?",
        (f"%{_escape_like(query.lower())}%", SEARCH_LIMIT),
    )
    in_graph = _graph_entity_ids(conn, graph_id) if graph_id else set()
    return [
        EntitySearchResult(entity=_entity_from_row(r), in_current_graph=r["id"] in in_graph)
        for r in rows
    ]


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
