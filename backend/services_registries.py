"""
Reference vocabularies: roles, relationship types, event types and tags.

Roles, relationship types and event types only ever grow. `get_or_create_*`
is idempotent and never rewrites an existing row, which is what backs every
"custom ..." text entry in the editor.
"""
import logging
import sqlite3
from collections import OrderedDict
from typing import Dict, List, Optional

from db_sqlite import fetch_all, fetch_one, transaction
from errors import NotFoundError, ValidationError
from models import ROLE_CATEGORIES, EventType, RelationshipType, Role, Tag
from seed_data import (
    CUSTOM_EVENT_TYPE_COLOR,
    CUSTOM_EVENT_TYPE_ICON,
    SYSTEM_EVENT_TYPES,
    SYSTEM_RELATIONSHIP_TYPES,
    SYSTEM_ROLES,
)
from utils.ids import new_id
from utils.timestamp import utcnow_iso

logger = logging.getLogger("casemap")


def _role_from_row(row: dict) -> Role:
    return Role(id=row["id"], name=row["name"], category=row["category"], is_system=bool(row["is_system"]))


def _relationship_from_row(row: dict) -> RelationshipType:
    return RelationshipType(
        id=row["id"], name=row["name"], category=row["category"], is_system=bool(row["is_system"])
    )


def _event_type_from_row(row: dict) -> EventType:
    return EventType(
        id=row["id"],
        name=row["name"],
        icon=row["icon"],
        color=row["color"],
        is_system=bool(row["is_system"]),
    )


def _tag_from_row(row: dict) -> Tag:
    return Tag(id=row["id"], name=row["name"], color=row["color"])


def _group_by_category(items: list) -> Dict[str, list]:
    grouped: Dict[str, list] = OrderedDict()
    for item in items:
        grouped.setdefault(item.category, []).append(item)
    return grouped


def _clean_name(name: Optional[str], what: str) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationError(f"{what} name is required")
    return cleaned


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------

def list_roles(conn: sqlite3.Connection) -> List[Role]:
    rows = fetch_all(conn, "SELECT * FROM roles ORDER BY category ASC, name ASC")
    return [_role_from_row(r) for r in rows]


def list_roles_grouped(conn: sqlite3.Connection) -> Dict[str, List[Role]]:
    return _group_by_category(list_roles(conn))


def get_role(conn: sqlite3.Connection, role_id: str) -> Optional[Role]:
    row = fetch_one(conn, "SELECT * FROM roles WHERE id = ?", (role_id,))
    return _role_from_row(row) if row else None


def get_role_by_name(conn: sqlite3.Connection, name: str) -> Optional[Role]:
    row = fetch_one(conn, "SELECT * FROM roles WHERE name = ?", (name,))
    return _role_from_row(row) if row else None


def get_or_create_role(
    conn: sqlite3.Connection, name: str, category: str, is_system: bool = False
) -> Role:
    """Return the role called `name`, creating it with `category` if absent."""
    name = _clean_name(name, "Role")
    if category not in ROLE_CATEGORIES:
        raise ValidationError(
            f"Invalid role category '{category}'",
            details={"allowed": sorted(ROLE_CATEGORIES)},
        )
    with transaction(conn):
        existing = get_role_by_name(conn, name)
        if existing:
            return existing
        role_id = new_id()
        conn.execute(
            "INSERT INTO roles (id, name, category, is_system, created_at) VALUES (?, ?, ?, ?, ?)",
            (role_id, name, category, int(is_system), utcnow_iso()),
        )
    logger.debug(f"Created role '{name}' ({category})")
    return Role(id=role_id, name=name, category=category, is_system=is_system)


# ---------------------------------------------------------------------------
# Relationship types
# ---------------------------------------------------------------------------

def list_relationship_types(conn: sqlite3.Connection) -> List[RelationshipType]:
    rows = fetch_all(conn, "SELECT * FROM relationship_types ORDER BY category ASC, name ASC")
    return [_relationship_from_row(r) for r in rows]


def list_relationship_types_grouped(conn: sqlite3.Connection) -> Dict[str, List[RelationshipType]]:
    return _group_by_category(list_relationship_types(conn))


def get_relationship_type(conn: sqlite3.Connection, relationship_type_id: str) -> Optional[RelationshipType]:
    row = fetch_one(conn, "SELECT * FROM relationship_types WHERE id = ?", (relationship_type_id,))
    return _relationship_from_row(row) if row else None


def get_or_create_relationship_type(
    conn: sqlite3.Connection, name: str, category: str, is_system: bool = False
) -> RelationshipType:
    name = _clean_name(name, "Relationship")
    category = (category or "").strip()
    if not category:
        raise ValidationError("Relationship category is required")
    with transaction(conn):
        row = fetch_one(conn, "SELECT * FROM relationship_types WHERE name = ?", (name,))
        if row:
            return _relationship_from_row(row)
        rel_id = new_id()
        conn.execute(
            "INSERT INTO relationship_types (id, name, category, is_system, created_at) VALUES (?, ?, ?, ?, ?)",
            (rel_id, name, category, int(is_system), utcnow_iso()),
        )
    return RelationshipType(id=rel_id, name=name, category=category, is_system=is_system)


# ---------------------------------------------------------------------------
# Event types
# ---------------------------------------------------------------------------

def list_event_types(conn: sqlite3.Connection) -> List[EventType]:
    rows = fetch_all(conn, "SELECT * FROM event_types ORDER BY name ASC")
    return [_event_type_from_row(r) for r in rows]


def get_event_type(conn: sqlite3.Connection, event_type_id: str) -> Optional[EventType]:
    row = fetch_one(conn, "SELECT * FROM event_types WHERE id = ?", (event_type_id,))
    return _event_type_from_row(row) if row else None


def get_or_create_event_type(
    conn: sqlite3.Connection,
    name: str,
    icon: str = CUSTOM_EVENT_TYPE_ICON,
    color: str = CUSTOM_EVENT_TYPE_COLOR,
    is_system: bool = False,
) -> EventType:
    name = _clean_name(name, "Event type")
    with transaction(conn):
        row = fetch_one(conn, "SELECT * FROM event_types WHERE name = ?", (name,))
        if row:
            return _event_type_from_row(row)
        type_id = new_id()
        conn.execute(
            "INSERT INTO event_types (id, name, icon, color, is_system, created_at) VALUES (?, ?, ?, ?, ?, ?)",
            (type_id, name, icon, color, int(is_system), utcnow_iso()),
        )
    return EventType(id=type_id, name=name, icon=icon, color=color, is_system=is_system)


# ---------------------------------------------------------------------------
# Tags
# ---------------------------------------------------------------------------

def list_tags(conn: sqlite3.Connection) -> List[Tag]:
    return [_tag_from_row(r) for r in fetch_all(conn, "SELECT * FROM tags ORDER BY name ASC")]


def create_tag(conn: sqlite3.Connection, name: str, color: Optional[str] = None) -> Tag:
    name = _clean_name(name, "Tag")
    color = (color or "").strip() or None
    with transaction(conn):
        if fetch_one(conn, "SELECT id FROM tags WHERE name = ?", (name,)):
            raise ValidationError("Tag with this name already exists")
        tag_id = new_id()
        conn.execute(
            "INSERT INTO tags (id, name, color, created_at) VALUES (?, ?, ?, ?)",
            (tag_id, name, color, utcnow_iso()),
        )
    return Tag(id=tag_id, name=name, color=color)


def update_tag(conn: sqlite3.Connection, tag_id: str, name: str, color: Optional[str] = None) -> Tag:
    name = _clean_name(name, "Tag")
    color = (color or "").strip() or None
    with transaction(conn):
        if not fetch_one(conn, "SELECT id FROM tags WHERE id = ?", (tag_id,)):
            raise NotFoundError("Tag not found")
        if fetch_one(conn, "SELECT id FROM tags WHERE name = ? AND id != ?", (name, tag_id)):
            raise ValidationError("Tag with this name already exists")
        conn.execute("UPDATE tags SET name = ?, color = ? WHERE id = ?", (name, color, tag_id))
    return Tag(id=tag_id, name=name, color=color)


def delete_tag(conn: sqlite3.Connection, tag_id: str) -> None:
    with transaction(conn):
        if not fetch_one(conn, "SELECT id FROM tags WHERE id = ?", (tag_id,)):
            raise NotFoundError("Tag not found")
        conn.execute("DELETE FROM tags WHERE id = ?", (tag_id,))


# ---------------------------------------------------------------------------
# Seeding
# ---------------------------------------------------------------------------

def seed_registries(conn: sqlite3.Connection) -> None:
    """Insert the system vocabularies. Safe to run on every startup."""
    with transaction(conn):
        for role in SYSTEM_ROLES:
            get_or_create_role(conn, role["name"], role["category"], is_system=True)
        for rel in SYSTEM_RELATIONSHIP_TYPES:
            get_or_create_relationship_type(conn, rel["name"], rel["category"], is_system=True)
        for et in SYSTEM_EVENT_TYPES:
            get_or_create_event_type(conn, et["name"], icon=et["icon"], color=et["color"], is_system=True)
    logger.info(
        f"Seeded registries: {len(SYSTEM_ROLES)} roles, "
        f"{len(SYSTEM_RELATIONSHIP_TYPES)} relationship types, {len(SYSTEM_EVENT_TYPES)} event types"
    )
