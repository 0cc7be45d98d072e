"""Tests for timeline events, derived edges and node derivation."""
import pytest

pytestmark = pytest.mark.unit

from errors import NotFoundError, ReferentialIntegrityError, ValidationError
from models import EventCreateRequest, EventUpdateRequest, Position
from services_events import (
    EDGE_EXISTS,
    create_event,
    delete_event,
    derive_node_for_entity,
    derive_node_from_name,
    get_event,
    list_events,
    reorder_events,
    update_event,
)
from services_graph_store import create_graph, load_graph
from services_registries import create_tag


@pytest.fixture
def meeting_type(seeded_db):
    return seeded_db.execute("SELECT id FROM event_types WHERE name = 'Meeting'").fetchone()[0]


@pytest.fixture
def jane_node(seeded_db, graph, make_entity):
    node, _ = derive_node_for_entity(seeded_db, graph.graph.id, make_entity("Jane Doe").id)
    return node


def event_request(graph, event_type_id, **fields):
    data = {"graph_id": graph.graph.id, "title": "Meeting", "date": "2024-03-01", "event_type_id": event_type_id}
    data.update(fields)
    return EventCreateRequest(**data)


def edge_count(conn, graph_id):
    return conn.execute("SELECT COUNT(*) FROM edges WHERE graph_id = ?", (graph_id,)).fetchone()[0]


def test_minimal_event(seeded_db, graph, root_node, meeting_type):
    result = create_event(seeded_db, event_request(graph, meeting_type, source_node_id=root_node.id))
    assert result.created_edge is None
    assert result.edge_skipped_reason is None
    assert result.event.sort_order == 0
    assert result.event.date == "2024-03-01"
    assert result.event.event_type.name == "Meeting"


def test_empty_title_creates_nothing(seeded_db, graph, root_node, meeting_type):
    with pytest.raises(ValidationError):
        create_event(seeded_db, event_request(graph, meeting_type, title="", source_node_id=root_node.id))
    assert list_events(seeded_db, graph.graph.id) == []


@pytest.mark.parametrize(
    "fields",
    [
        {"title": "   "},
        {"date": None},
        {"date": "not-a-date"},
        {"event_type_id": None},
        {"event_type_id": "no-such-type"},
        {"source_node_id": None},
        {"graph_id": None},
    ],
)
def test_event_preconditions(seeded_db, graph, root_node, meeting_type, fields):
    request = event_request(graph, meeting_type, source_node_id=root_node.id)
    with pytest.raises(ValidationError):
        create_event(seeded_db, request.model_copy(update=fields))
    assert list_events(seeded_db, graph.graph.id) == []


def test_series_day_or_source_graph_replace_date(seeded_db, graph, root_node, meeting_type):
    by_day = create_event(seeded_db, event_request(graph, meeting_type, date=None, series_day=56, source_node_id=root_node.id))
    assert by_day.event.series_day == 56

    other = create_graph(seeded_db, "Earlier Inquiry")
    sourced = create_event(
        seeded_db,
        event_request(graph, meeting_type, date=None, source_graph_id=other.graph.id, source_node_id=root_node.id),
    )
    assert sourced.event.source_graph_id == other.graph.id


def test_node_from_other_graph_is_not_found(seeded_db, graph, meeting_type):
    other = create_graph(seeded_db, "Other Inquiry")
    with pytest.raises(NotFoundError):
        create_event(seeded_db, event_request(graph, meeting_type, source_node_id=other.nodes[0].id))
    with pytest.raises(NotFoundError):
        create_event(
            seeded_db,
            event_request(graph, meeting_type, participant_node_ids=[other.nodes[0].id]),
        )


def test_unknown_graph_is_not_found(seeded_db, graph, root_node, meeting_type):
    with pytest.raises(NotFoundError):
        create_event(seeded_db, event_request(graph, meeting_type, graph_id="missing", source_node_id=root_node.id))


def test_custom_type_is_registered(seeded_db, graph, root_node):
    request = event_request(graph, None, custom_type_name="Raid", source_node_id=root_node.id)
    result = create_event(seeded_db, request)
    assert result.event.event_type.name == "Raid"
    assert result.event.event_type.color == "#6366f1"
    again = create_event(seeded_db, request)
    assert again.event.event_type_id == result.event.event_type_id


def test_participants_only_event(seeded_db, graph, root_node, jane_node, meeting_type):
    result = create_event(
        seeded_db,
        event_request(graph, meeting_type, participant_node_ids=[root_node.id, jane_node.id, root_node.id, " "]),
    )
    assert result.event.participant_node_ids == [root_node.id, jane_node.id]


def test_sort_order_is_per_day(seeded_db, graph, root_node, meeting_type):
    orders = [
        create_event(seeded_db, event_request(graph, meeting_type, source_node_id=root_node.id)).event.sort_order
        for _ in range(3)
    ]
    assert orders == [0, 1, 2]
    other_day = create_event(seeded_db, event_request(graph, meeting_type, date="2024-03-02", source_node_id=root_node.id))
    assert other_day.event.sort_order == 0
    # A datetime lands on its calendar day
    same_day = create_event(
        seeded_db, event_request(graph, meeting_type, date="2024-03-01T15:30:00Z", source_node_id=root_node.id)
    )
    assert same_day.event.sort_order == 3


def test_event_with_new_target_derives_edge(seeded_db, graph, root_node, make_entity, meeting_type):
    gid = graph.graph.id
    entity = make_entity("Witness Two")
    target, created = derive_node_for_entity(seeded_db, gid, entity.id, [root_node.id])
    assert created
    assert (target.position.x, target.position.y) == (300, 150)

    result = create_event(
        seeded_db,
        event_request(graph, meeting_type, source_node_id=root_node.id, target_node_id=target.id, create_edge=True),
    )
    edge = result.created_edge
    assert edge is not None
    assert edge.label == "Meeting"
    assert (edge.source, edge.target) == (root_node.id, target.id)
    assert edge.created_from_event_id == result.event.id
    assert result.event.created_edge_id == edge.id
    assert get_event(seeded_db, result.event.id).created_edge_id == edge.id


def test_edge_derivation_is_idempotent(seeded_db, graph, root_node, jane_node, meeting_type):
    request = event_request(graph, meeting_type, source_node_id=root_node.id, target_node_id=jane_node.id, create_edge=True)
    first = create_event(seeded_db, request)
    second = create_event(seeded_db, request)

    assert first.created_edge is not None
    assert second.created_edge is None
    assert second.edge_skipped_reason == EDGE_EXISTS
    assert second.event.created_edge_id is None
    assert len(list_events(seeded_db, graph.graph.id)) == 2
    assert edge_count(seeded_db, graph.graph.id) == 1


def test_reverse_pair_is_a_different_edge(seeded_db, graph, root_node, jane_node, meeting_type):
    create_event(seeded_db, event_request(graph, meeting_type, source_node_id=root_node.id, target_node_id=jane_node.id, create_edge=True))
    reverse = create_event(
        seeded_db, event_request(graph, meeting_type, source_node_id=jane_node.id, target_node_id=root_node.id, create_edge=True)
    )
    assert reverse.created_edge is not None
    assert edge_count(seeded_db, graph.graph.id) == 2


def test_edge_failure_keeps_event(seeded_db, graph, root_node, jane_node, meeting_type, monkeypatch):
    import services_events

    def broken_lookup(*args, **kwargs):
        raise ReferentialIntegrityError("Constraint violated")

    monkeypatch.setattr(services_events, "find_edge_for_pair", broken_lookup)
    result = create_event(
        seeded_db,
        event_request(graph, meeting_type, source_node_id=root_node.id, target_node_id=jane_node.id, create_edge=True),
    )
    assert result.created_edge is None
    assert result.edge_error == "Constraint violated"
    assert get_event(seeded_db, result.event.id).title == "Meeting"


def test_update_syncs_provenance_edge_label(seeded_db, graph, root_node, jane_node, meeting_type):
    created = create_event(
        seeded_db,
        event_request(graph, meeting_type, source_node_id=root_node.id, target_node_id=jane_node.id, create_edge=True),
    )
    update_event(
        seeded_db,
        created.event.id,
        EventUpdateRequest(
            title="Secret Meeting",
            date="2024-03-01",
            event_type_id=meeting_type,
            source_node_id=root_node.id,
            target_node_id=jane_node.id,
        ),
    )
    view = load_graph(seeded_db, graph.graph.id)
    assert [e.label for e in view.edges] == ["Secret Meeting"]


def test_update_creates_missing_edge(seeded_db, graph, root_node, jane_node, meeting_type):
    created = create_event(seeded_db, event_request(graph, meeting_type, source_node_id=root_node.id))
    result = update_event(
        seeded_db,
        created.event.id,
        EventUpdateRequest(
            title="Meeting",
            date="2024-03-01",
            event_type_id=meeting_type,
            source_node_id=root_node.id,
            target_node_id=jane_node.id,
            create_edge=True,
        ),
    )
    assert result.created_edge is not None
    assert result.event.created_edge_id == result.created_edge.id


def test_update_replaces_participants_and_tags(seeded_db, graph, root_node, jane_node, meeting_type):
    tag = create_tag(seeded_db, "Key Evidence")
    created = create_event(
        seeded_db,
        event_request(graph, meeting_type, participant_node_ids=[root_node.id], tag_ids=[tag.id]),
    )
    base = dict(title="Meeting", date="2024-03-01", event_type_id=meeting_type)

    untouched = update_event(seeded_db, created.event.id, EventUpdateRequest(**base))
    assert untouched.event.participant_node_ids == [root_node.id]
    assert [t.name for t in untouched.event.tags] == ["Key Evidence"]

    replaced = update_event(
        seeded_db, created.event.id, EventUpdateRequest(**base, participant_node_ids=[jane_node.id], tag_ids=[])
    )
    assert replaced.event.participant_node_ids == [jane_node.id]
    assert replaced.event.tags == []

    with pytest.raises(ValidationError):
        update_event(seeded_db, created.event.id, EventUpdateRequest(**base, participant_node_ids=[]))


def test_update_moves_event_to_end_of_new_day(seeded_db, graph, root_node, meeting_type):
    first = create_event(seeded_db, event_request(graph, meeting_type, source_node_id=root_node.id))
    create_event(seeded_db, event_request(graph, meeting_type, date="2024-03-02", source_node_id=root_node.id))
    moved = update_event(
        seeded_db,
        first.event.id,
        EventUpdateRequest(title="Meeting", date="2024-03-02", event_type_id=meeting_type, source_node_id=root_node.id),
    )
    assert moved.event.sort_order == 1


def test_update_unknown_event(seeded_db, meeting_type):
    with pytest.raises(NotFoundError):
        update_event(seeded_db, "missing", EventUpdateRequest(title="x", date="2024-03-01", event_type_id=meeting_type))


def test_delete_event_keeps_derived_edge(seeded_db, graph, root_node, jane_node, meeting_type):
    created = create_event(
        seeded_db,
        event_request(graph, meeting_type, source_node_id=root_node.id, target_node_id=jane_node.id, create_edge=True),
    )
    delete_event(seeded_db, created.event.id)
    with pytest.raises(NotFoundError):
        get_event(seeded_db, created.event.id)
    edges = load_graph(seeded_db, graph.graph.id).edges
    assert len(edges) == 1
    assert edges[0].created_from_event_id is None
    with pytest.raises(NotFoundError):
        delete_event(seeded_db, created.event.id)


def test_list_events_order_and_node_filter(seeded_db, graph, root_node, jane_node, meeting_type):
    gid = graph.graph.id
    older = create_event(seeded_db, event_request(graph, meeting_type, title="Older", date="2024-01-01", source_node_id=root_node.id))
    a = create_event(seeded_db, event_request(graph, meeting_type, title="A", source_node_id=root_node.id))
    b = create_event(seeded_db, event_request(graph, meeting_type, title="B", participant_node_ids=[jane_node.id]))

    assert [e.title for e in list_events(seeded_db, gid)] == ["A", "B", "Older"]
    assert [e.id for e in list_events(seeded_db, gid, jane_node.id)] == [b.event.id]
    assert {e.id for e in list_events(seeded_db, gid, root_node.id)} == {older.event.id, a.event.id}


def test_reorder_events(seeded_db, graph, root_node, meeting_type):
    gid = graph.graph.id
    e1, e2, e3 = (
        create_event(seeded_db, event_request(graph, meeting_type, title=t, source_node_id=root_node.id)).event.id
        for t in ("One", "Two", "Three")
    )
    reorder_events(seeded_db, gid, [e3, e1, e2], event_date="2024-03-01")
    assert [e.title for e in list_events(seeded_db, gid)] == ["Three", "One", "Two"]


def test_reorder_mismatch_changes_nothing(seeded_db, graph, root_node, meeting_type):
    gid = graph.graph.id
    e1 = create_event(seeded_db, event_request(graph, meeting_type, source_node_id=root_node.id)).event.id
    e2 = create_event(seeded_db, event_request(graph, meeting_type, source_node_id=root_node.id)).event.id
    elsewhere = create_event(
        seeded_db, event_request(graph, meeting_type, date="2024-03-02", source_node_id=root_node.id)
    ).event.id

    for ids in ([e2, e1, elsewhere], [e2, e1, "e3"], [e2], [e2, e2, e1]):
        with pytest.raises(ValidationError):
            reorder_events(seeded_db, gid, ids, event_date="2024-03-01")
    assert [get_event(seeded_db, e).sort_order for e in (e1, e2)] == [0, 1]


def test_reorder_unknown_graph(seeded_db):
    with pytest.raises(NotFoundError):
        reorder_events(seeded_db, "no-such-graph", [], event_date="2024-03-01")


def test_reorder_by_series_day(seeded_db, graph, root_node, meeting_type):
    gid = graph.graph.id
    first = create_event(seeded_db, event_request(graph, meeting_type, date=None, series_day=3, source_node_id=root_node.id))
    second = create_event(seeded_db, event_request(graph, meeting_type, date=None, series_day=3, source_node_id=root_node.id))
    reorder_events(seeded_db, gid, [second.event.id, first.event.id], series_day=3)
    assert get_event(seeded_db, second.event.id).sort_order == 0
    with pytest.raises(ValidationError):
        reorder_events(seeded_db, gid, [first.event.id])


def test_derive_node_reuses_existing_node(seeded_db, graph, make_entity):
    entity = make_entity("Jane Doe")
    first, created = derive_node_for_entity(seeded_db, graph.graph.id, entity.id)
    again, created_again = derive_node_for_entity(seeded_db, graph.graph.id, entity.id)
    assert created and not created_again
    assert again.id == first.id
    assert len(load_graph(seeded_db, graph.graph.id).nodes) == 2


def test_derive_node_avoids_overlap(seeded_db, graph, root_node, make_entity):
    gid = graph.graph.id
    first, _ = derive_node_for_entity(seeded_db, gid, make_entity("Jane Doe").id, [root_node.id])
    second, _ = derive_node_for_entity(seeded_db, gid, make_entity("John Smith").id, [root_node.id])
    assert (first.position.x, first.position.y) == (300, 150)
    assert (second.position.x, second.position.y) != (300, 150)


def test_derive_node_uses_viewport_without_anchors(seeded_db, graph, make_entity):
    node, _ = derive_node_for_entity(
        seeded_db, graph.graph.id, make_entity("Jane Doe").id, viewport_center=Position(x=800, y=-600)
    )
    assert (node.position.x, node.position.y) == (800, -600)


def test_derive_node_kind_from_role(seeded_db, graph, make_entity):
    node, _ = derive_node_for_entity(seeded_db, graph.graph.id, make_entity("Adv. Lead", role="Evidence Leader").id)
    assert node.kind == "evidenceLeader"


def test_derive_node_from_name_reuses_entity(seeded_db, graph, role_id, make_entity):
    existing = make_entity("Jane Doe")
    node, created = derive_node_from_name(seeded_db, graph.graph.id, " jane doe ", role_id("Detective"))
    assert created
    assert node.entity_id == existing.id
    assert node.role == "General Witness"

    fresh, _ = derive_node_from_name(seeded_db, graph.graph.id, "New Person", role_id("Detective"))
    assert fresh.label == "New Person"
    assert fresh.role == "Detective"


def test_derive_node_errors(seeded_db, graph, make_entity):
    with pytest.raises(NotFoundError):
        derive_node_for_entity(seeded_db, graph.graph.id, "no-entity")
    with pytest.raises(NotFoundError):
        derive_node_for_entity(seeded_db, "missing-graph", make_entity("Jane Doe").id)
