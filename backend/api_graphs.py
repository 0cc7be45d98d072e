from fastapi import APIRouter, Depends

from db_sqlite import get_db
from errors import ValidationError
from models import (
    Graph,
    GraphCreateRequest,
    GraphSaveRequest,
    GraphSummary,
    GraphUpdateRequest,
    GraphView,
    NodeDeriveRequest,
    NodeDeriveResponse,
    ReconcileResult,
)
from services_events import derive_node_for_entity, derive_node_from_name
from services_graph_store import (
    create_graph,
    delete_graph,
    get_graph_summary,
    list_graphs,
    load_graph,
    update_graph,
)
from services_reconcile import reconcile

router = APIRouter(prefix="/graphs", tags=["graphs"])


@router.get("/")
def list_graphs_endpoint(conn=Depends(get_db)):
    return {"graphs": list_graphs(conn)}


@router.post("/", response_model=GraphView)
def create_graph_endpoint(payload: GraphCreateRequest, conn=Depends(get_db)):
    return create_graph(conn, payload.name, payload.description)


@router.get("/{graph_id}", response_model=GraphSummary)
def get_graph_endpoint(graph_id: str, conn=Depends(get_db)):
    return get_graph_summary(conn, graph_id)


@router.patch("/{graph_id}", response_model=Graph)
def update_graph_endpoint(graph_id: str, payload: GraphUpdateRequest, conn=Depends(get_db)):
    return update_graph(conn, graph_id, payload.model_dump(exclude_unset=True))


@router.delete("/{graph_id}")
def delete_graph_endpoint(graph_id: str, conn=Depends(get_db)):
    delete_graph(conn, graph_id)
    return {"status": "ok"}


@router.get("/{graph_id}/state", response_model=GraphView)
def load_graph_state_endpoint(graph_id: str, conn=Depends(get_db)):
    """
    Load nodes and edges for the editor. Unknown graph ids are created on
    first access, and a missing root node is recreated.
    """
    return load_graph(conn, graph_id)


@router.put("/{graph_id}/state", response_model=ReconcileResult)
def save_graph_state_endpoint(graph_id: str, payload: GraphSaveRequest, conn=Depends(get_db)):
    """Full-state save: the payload replaces the stored nodes and edges."""
    return reconcile(conn, graph_id, payload.nodes, payload.edges)


@router.post("/{graph_id}/nodes/derive", response_model=NodeDeriveResponse)
def derive_node_endpoint(graph_id: str, payload: NodeDeriveRequest, conn=Depends(get_db)):
    """Place an existing entity, or find-or-create one by name, next to related nodes."""
    if payload.entity_id:
        node, created = derive_node_for_entity(
            conn, graph_id, payload.entity_id, payload.related_node_ids, payload.viewport_center
        )
    elif payload.name:
        if not payload.role_id:
            raise ValidationError("role_id is required when deriving a node from a name")
        node, created = derive_node_from_name(
            conn,
            graph_id,
            payload.name,
            payload.role_id,
            payload.related_node_ids,
            entity_type=payload.entity_type,
            description=payload.description,
            viewport_center=payload.viewport_center,
        )
    else:
        raise ValidationError("Either entity_id or name is required")
    return {"node": node, "created": created}
