# Timeline event models.
from typing import List, Optional

from pydantic import BaseModel, Field

from models.graph import EdgeView
from models.registry import EventType, Tag


class Event(BaseModel):
    id: str
    graph_id: str
    title: str
    description: Optional[str] = None
    date: Optional[str] = None          # ISO calendar day, "YYYY-MM-DD"
    series_day: Optional[int] = None    # e.g. day 56 of a hearing series
    source_graph_id: Optional[str] = None
    sort_order: int = 0
    event_type_id: str
    event_type: Optional[EventType] = None
    source_node_id: Optional[str] = None
    target_node_id: Optional[str] = None
    participant_node_ids: List[str] = Field(default_factory=list)
    tags: List[Tag] = Field(default_factory=list)
    created_edge_id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class EventCreateRequest(BaseModel):
    graph_id: Optional[str] = None
    title: str = ""
    description: Optional[str] = None
    date: Optional[str] = None
    series_day: Optional[int] = None
    source_graph_id: Optional[str] = None
    event_type_id: Optional[str] = None
    custom_type_name: Optional[str] = None
    source_node_id: Optional[str] = None
    target_node_id: Optional[str] = None
    participant_node_ids: Optional[List[str]] = None
    tag_ids: Optional[List[str]] = None
    create_edge: bool = False


class EventUpdateRequest(BaseModel):
    title: str = ""
    description: Optional[str] = None
    date: Optional[str] = None
    series_day: Optional[int] = None
    source_graph_id: Optional[str] = None
    event_type_id: Optional[str] = None
    custom_type_name: Optional[str] = None
    source_node_id: Optional[str] = None
    target_node_id: Optional[str] = None
    # None leaves the set untouched, a list replaces it
    participant_node_ids: Optional[List[str]] = None
    tag_ids: Optional[List[str]] = None
    create_edge: bool = False


class EventResult(BaseModel):
    event: Event
    created_edge: Optional[EdgeView] = None
    # "edge_exists" when an edge for the pair was already there
    edge_skipped_reason: Optional[str] = None
    # Set when the event was stored but its derived edge could not be
    edge_error: Optional[str] = None


class EventListResponse(BaseModel):
    events: List[Event]


class EventReorderRequest(BaseModel):
    graph_id: str
    date: Optional[str] = None
    series_day: Optional[int] = None
    event_ids: List[str]
