from typing import Optional

from fastapi import APIRouter, Depends, Query

from db_sqlite import get_db
from models import (
    Event,
    EventCreateRequest,
    EventListResponse,
    EventReorderRequest,
    EventResult,
    EventUpdateRequest,
)
from services_events import (
    create_event,
    delete_event,
    get_event,
    list_events,
    reorder_events,
    update_event,
)

router = APIRouter(prefix="/events", tags=["events"])


@router.get("/", response_model=EventListResponse)
def list_events_endpoint(
    graph_id: str = Query(..., description="Graph whose timeline to list"),
    node_id: Optional[str] = Query(None, description="Only events touching this node"),
    conn=Depends(get_db),
):
    return {"events": list_events(conn, graph_id, node_id)}


@router.post("/", response_model=EventResult)
def create_event_endpoint(payload: EventCreateRequest, conn=Depends(get_db)):
    """
    Create an event. When create_edge is set and both source and target are
    given, an edge labelled with the title is derived. The event is kept even
    if that edge fails; see edge_error / edge_skipped_reason.
    """
    return create_event(conn, payload)


@router.post("/reorder")
def reorder_events_endpoint(payload: EventReorderRequest, conn=Depends(get_db)):
    reorder_events(conn, payload.graph_id, payload.event_ids, payload.date, payload.series_day)
    return {"status": "ok"}


@router.get("/{event_id}", response_model=Event)
def get_event_endpoint(event_id: str, conn=Depends(get_db)):
    return get_event(conn, event_id)


@router.put("/{event_id}", response_model=EventResult)
def update_event_endpoint(event_id: str, payload: EventUpdateRequest, conn=Depends(get_db)):
    return update_event(conn, event_id, payload)


@router.delete("/{event_id}")
def delete_event_endpoint(event_id: str, conn=Depends(get_db)):
    delete_event(conn, event_id)
    return {"status": "ok"}
