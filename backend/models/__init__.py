"""
Pydantic records and request/response models for the investigation graph.

Split by domain; everything is re-exported here so callers can simply
`from models import Entity, GraphView, ...`.
"""
from models.registry import (
    ROLE_CATEGORIES,
    EventType,
    EventTypeCreateRequest,
    RelationshipCreateRequest,
    RelationshipListResponse,
    RelationshipType,
    Role,
    RoleCategory,
    RoleCreateRequest,
    RoleListResponse,
    Tag,
    TagCreateRequest,
    TagUpdateRequest,
)
from models.entity import (
    ENTITY_TYPES,
    Entity,
    EntityCreateRequest,
    EntitySearchResult,
    EntityType,
    EntityUpdateRequest,
)
from models.graph import (
    ClientEdge,
    ClientNode,
    DirectionLabels,
    EdgeView,
    Graph,
    GraphCreateRequest,
    GraphSaveRequest,
    GraphSummary,
    GraphUpdateRequest,
    GraphView,
    NodeDeriveRequest,
    NodeDeriveResponse,
    NodeKind,
    NodeView,
    Position,
    ReconcileResult,
)
from models.event import (
    Event,
    EventCreateRequest,
    EventListResponse,
    EventReorderRequest,
    EventResult,
    EventUpdateRequest,
)
