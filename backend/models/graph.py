# Graph, node and edge models, plus the full-state save payload.
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


NodeKind = Literal["root", "evidenceLeader", "custom"]


class Position(BaseModel):
    x: float = 0.0
    y: float = 0.0


class DirectionLabels(BaseModel):
    top: Optional[str] = None
    bottom: Optional[str] = None
    left: Optional[str] = None
    right: Optional[str] = None


class Graph(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    root_label_top: Optional[str] = None
    root_label_bottom: Optional[str] = None
    root_label_left: Optional[str] = None
    root_label_right: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class GraphSummary(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    node_count: int = 0
    edge_count: int = 0
    event_count: int = 0


class GraphCreateRequest(BaseModel):
    name: str
    description: Optional[str] = None


class GraphUpdateRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    root_label_top: Optional[str] = None
    root_label_bottom: Optional[str] = None
    root_label_left: Optional[str] = None
    root_label_right: Optional[str] = None


class NodeView(BaseModel):
    """Node hydrated from its entity, as handed to the canvas."""
    id: str
    kind: NodeKind
    position: Position
    entity_id: str
    label: str
    role_id: str
    role: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    avatar: Optional[str] = None
    direction_labels: Optional[DirectionLabels] = None


class EdgeView(BaseModel):
    id: str
    source: str
    target: str
    label: Optional[str] = None
    relationship_type_id: Optional[str] = None
    source_handle: Optional[str] = None
    target_handle: Optional[str] = None
    created_from_event_id: Optional[str] = None


class GraphView(BaseModel):
    graph: Graph
    nodes: List[NodeView]
    edges: List[EdgeView]


# Client payload: fields are deliberately loose so the reconciler reports
# structural problems itself instead of the request parser.
class ClientNode(BaseModel):
    id: Optional[str] = None
    kind: Optional[str] = None
    entity_id: Optional[str] = None
    position: Optional[Dict[str, Any]] = None
    category: Optional[str] = None


class ClientEdge(BaseModel):
    id: Optional[str] = None
    source: Optional[str] = None
    target: Optional[str] = None
    label: Optional[str] = None
    relationship_type_id: Optional[str] = None
    source_handle: Optional[str] = None
    target_handle: Optional[str] = None


class GraphSaveRequest(BaseModel):
    nodes: List[ClientNode] = Field(default_factory=list)
    edges: List[ClientEdge] = Field(default_factory=list)


class ReconcileResult(BaseModel):
    success: bool = True
    nodes_deleted: int = 0
    nodes_upserted: int = 0
    edges_deleted: int = 0
    edges_upserted: int = 0


class NodeDeriveRequest(BaseModel):
    # Either an existing entity, or a name to find-or-create one
    entity_id: Optional[str] = None
    name: Optional[str] = None
    role_id: Optional[str] = None
    entity_type: Optional[str] = None
    description: Optional[str] = None
    related_node_ids: List[str] = Field(default_factory=list)
    viewport_center: Optional[Position] = None


class NodeDeriveResponse(BaseModel):
    node: NodeView
    created: bool
