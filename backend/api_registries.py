from typing import List

from fastapi import APIRouter, Depends

from db_sqlite import get_db
from models import (
    EventType,
    EventTypeCreateRequest,
    RelationshipCreateRequest,
    RelationshipListResponse,
    RelationshipType,
    Role,
    RoleCreateRequest,
    RoleListResponse,
    Tag,
    TagCreateRequest,
    TagUpdateRequest,
)
from services_registries import (
    create_tag,
    delete_tag,
    get_or_create_event_type,
    get_or_create_relationship_type,
    get_or_create_role,
    list_event_types,
    list_relationship_types,
    list_relationship_types_grouped,
    list_roles,
    list_roles_grouped,
    list_tags,
    update_tag,
)

router = APIRouter(tags=["registries"])


# ---- Roles ----

@router.get("/roles", response_model=RoleListResponse)
def list_roles_endpoint(conn=Depends(get_db)):
    return {"roles": list_roles(conn), "roles_by_category": list_roles_grouped(conn)}


@router.post("/roles", response_model=Role)
def create_role_endpoint(payload: RoleCreateRequest, conn=Depends(get_db)):
    return get_or_create_role(conn, payload.name, payload.category)


# ---- Relationship types ----

@router.get("/relationships", response_model=RelationshipListResponse)
def list_relationships_endpoint(conn=Depends(get_db)):
    return {
        "relationships": list_relationship_types(conn),
        "relationships_by_category": list_relationship_types_grouped(conn),
    }


@router.post("/relationships", response_model=RelationshipType)
def create_relationship_endpoint(payload: RelationshipCreateRequest, conn=Depends(get_db)):
    return get_or_create_relationship_type(conn, payload.name, payload.category)


# ---- Event types ----

@router.get("/event-types", response_model=List[EventType])
def list_event_types_endpoint(conn=Depends(get_db)):
    return list_event_types(conn)


@router.post("/event-types", response_model=EventType)
def create_event_type_endpoint(payload: EventTypeCreateRequest, conn=Depends(get_db)):
    return get_or_create_event_type(conn, payload.name)


# ---- Tags ----

@router.get("/tags", response_model=List[Tag])
def list_tags_endpoint(conn=Depends(get_db)):
    return list_tags(conn)


@router.post("/tags", response_model=Tag)
def create_tag_endpoint(payload: TagCreateRequest, conn=Depends(get_db)):
    return create_tag(conn, payload.name, payload.color)


@router.put("/tags/{tag_id}", response_model=Tag)
def update_tag_endpoint(tag_id: str, payload: TagUpdateRequest, conn=Depends(get_db)):
    return update_tag(conn, tag_id, payload.name, payload.color)


@router.delete("/tags/{tag_id}")
def delete_tag_endpoint(tag_id: str, conn=Depends(get_db)):
    delete_tag(conn, tag_id)
    return {"status": "ok"}
