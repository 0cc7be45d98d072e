from typing import Optional

from fastapi import APIRouter, Depends, Query

from db_sqlite import get_db
from models import Entity, EntityCreateRequest, EntityUpdateRequest
from services_entities import create_entity, get_entity, search_entities, update_entity

router = APIRouter(prefix="/entities", tags=["entities"])


@router.get("/")
def search_entities_endpoint(
    q: Optional[str] = Query(None, description="Name substring, at least 2 characters"),
    graph_id: Optional[str] = Query(None, description="Flag (or, without q, list) entities placed in this graph"),
    conn=Depends(get_db),
):
    return {"results": search_entities(conn, q, graph_id)}


@router.post("/", response_model=Entity)
def create_entity_endpoint(payload: EntityCreateRequest, conn=Depends(get_db)):
    return create_entity(
        conn,
        payload.name,
        payload.role_id,
        entity_type=payload.entity_type,
        description=payload.description,
    )


@router.get("/{entity_id}", response_model=Entity)
def get_entity_endpoint(entity_id: str, conn=Depends(get_db)):
    return get_entity(conn, entity_id)


@router.patch("/{entity_id}", response_model=Entity)
def update_entity_endpoint(entity_id: str, payload: EntityUpdateRequest, conn=Depends(get_db)):
    return update_entity(conn, entity_id, payload.model_dump(exclude_unset=True))
