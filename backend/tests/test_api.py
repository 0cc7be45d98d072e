"""
Tests for the HTTP routes and their error mapping.
"""


def _role_id(client, name):
    roles = client.get("/roles").json()["roles"]
    return next(r["id"] for r in roles if r["name"] == name)


def _event_type_id(client, name):
    return next(t["id"] for t in client.get("/event-types").json() if t["name"] == name)


def _new_graph(client, name="Commission of Inquiry"):
    response = client.post("/graphs/", json={"name": name})
    assert response.status_code == 200
    return response.json()


def test_read_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert "x-request-id" in response.headers


def test_graph_crud(client):
    created = _new_graph(client)
    graph_id = created["graph"]["id"]
    assert [n["kind"] for n in created["nodes"]] == ["root"]

    listed = client.get("/graphs/").json()["graphs"]
    assert graph_id in [g["id"] for g in listed]

    patched = client.patch(f"/graphs/{graph_id}", json={"root_label_top": "Evidence"})
    assert patched.status_code == 200
    assert patched.json()["root_label_top"] == "Evidence"
    assert patched.json()["name"] == "Commission of Inquiry"

    assert client.get(f"/graphs/{graph_id}").json()["node_count"] == 1
    assert client.delete(f"/graphs/{graph_id}").status_code == 200
    missing = client.get(f"/graphs/{graph_id}")
    assert missing.status_code == 404
    assert missing.json()["error"] == "NotFoundError"


def test_state_load_creates_unknown_graph(client):
    response = client.get("/graphs/brand-new-graph/state")
    assert response.status_code == 200
    body = response.json()
    assert body["graph"]["name"] == "Investigation -graph"
    assert body["nodes"][0]["kind"] == "root"


def test_state_save_round_trip(client):
    state = client.get("/graphs/g1/state").json()
    root = state["nodes"][0]
    entity = client.post("/entities/", json={"name": "Jane Doe", "role_id": _role_id(client, "Victim")}).json()

    payload = {
        "nodes": [
            {"id": root["id"], "entity_id": root["entity_id"], "kind": "root", "position": {"x": 90, "y": 90}},
            {"id": "n-jane", "entity_id": entity["id"], "kind": "custom", "position": {"x": 300, "y": 150}},
        ],
        "edges": [{"id": "e1", "source": root["id"], "target": "n-jane", "label": "Harmed"}],
    }
    saved = client.put("/graphs/g1/state", json=payload)
    assert saved.status_code == 200
    assert saved.json()["success"] is True
    assert saved.json()["nodes_upserted"] == 2

    loaded = client.get("/graphs/g1/state").json()
    by_id = {n["id"]: n for n in loaded["nodes"]}
    assert by_id[root["id"]]["position"] == {"x": 0.0, "y": 0.0}
    assert by_id["n-jane"]["label"] == "Jane Doe"
    assert by_id["n-jane"]["category"] == "victim"
    assert loaded["edges"][0]["label"] == "Harmed"


def test_state_save_error_mapping(client):
    root = client.get("/graphs/g2/state").json()["nodes"][0]
    base = {"id": root["id"], "entity_id": root["entity_id"], "kind": "root", "position": {"x": 0, "y": 0}}

    bad_shape = client.put("/graphs/g2/state", json={"nodes": [base, {"id": "n1", "position": {"x": 0, "y": 0}}]})
    assert bad_shape.status_code == 400
    assert bad_shape.json()["retryable"] is False

    unknown_entity = client.put(
        "/graphs/g2/state",
        json={"nodes": [base, {"id": "n1", "entity_id": "ghost", "position": {"x": 0, "y": 0}}]},
    )
    assert unknown_entity.status_code == 404

    cross_graph = client.put(
        "/graphs/g2/state", json={"nodes": [base], "edges": [{"id": "e1", "source": root["id"], "target": "elsewhere"}]}
    )
    assert cross_graph.status_code == 409

    assert client.put("/graphs/never-loaded/state", json={"nodes": [], "edges": []}).status_code == 404


def test_derive_node_endpoint(client):
    state = client.get("/graphs/g3/state").json()
    root_id = state["nodes"][0]["id"]

    by_name = client.post(
        "/graphs/g3/nodes/derive",
        json={"name": "Jane Doe", "role_id": _role_id(client, "Journalist"), "related_node_ids": [root_id]},
    )
    assert by_name.status_code == 200
    body = by_name.json()
    assert body["created"] is True
    assert body["node"]["position"] == {"x": 300.0, "y": 150.0}

    again = client.post("/graphs/g3/nodes/derive", json={"entity_id": body["node"]["entity_id"]})
    assert again.json() == {"node": body["node"], "created": False}

    assert client.post("/graphs/g3/nodes/derive", json={"related_node_ids": []}).status_code == 400
    assert client.post("/graphs/g3/nodes/derive", json={"name": "Nobody"}).status_code == 400


def test_entity_endpoints(client):
    role_id = _role_id(client, "Detective")
    created = client.post("/entities/", json={"name": "John Smith", "role_id": role_id})
    assert created.status_code == 200
    entity_id = created.json()["id"]

    assert client.post("/entities/", json={"name": "John Smith", "role_id": "nope"}).status_code == 400
    assert client.get("/entities/missing").status_code == 404

    patched = client.patch(f"/entities/{entity_id}", json={"description": "Lead detective"})
    assert patched.json()["description"] == "Lead detective"
    assert patched.json()["role"]["name"] == "Detective"

    results = client.get("/entities/", params={"q": "smi"}).json()["results"]
    assert [r["entity"]["id"] for r in results] == [entity_id]


def test_event_endpoints(client):
    state = client.get("/graphs/g4/state").json()
    root_id = state["nodes"][0]["id"]
    target = client.post(
        "/graphs/g4/nodes/derive",
        json={"name": "Jane Doe", "role_id": _role_id(client, "Whistleblower"), "related_node_ids": [root_id]},
    ).json()["node"]
    event = {
        "graph_id": "g4",
        "title": "Testimony given",
        "date": "2024-03-01",
        "event_type_id": _event_type_id(client, "Testimony"),
        "source_node_id": root_id,
        "target_node_id": target["id"],
        "create_edge": True,
    }

    first = client.post("/events/", json=event)
    assert first.status_code == 200
    assert first.json()["created_edge"]["label"] == "Testimony given"
    second = client.post("/events/", json=event).json()
    assert second["created_edge"] is None
    assert second["edge_skipped_reason"] == "edge_exists"

    listed = client.get("/events/", params={"graph_id": "g4"}).json()["events"]
    assert [e["sort_order"] for e in listed] == [0, 1]

    ids = [second["event"]["id"], first.json()["event"]["id"]]
    assert client.post("/events/reorder", json={"graph_id": "g4", "date": "2024-03-01", "event_ids": ids}).status_code == 200
    assert [e["id"] for e in client.get("/events/", params={"graph_id": "g4"}).json()["events"]] == ids

    mismatch = client.post("/events/reorder", json={"graph_id": "g4", "date": "2024-03-01", "event_ids": ids + ["e3"]})
    assert mismatch.status_code == 400

    updated = client.put(f"/events/{ids[0]}", json={**event, "title": "Testimony recorded", "create_edge": False})
    assert updated.status_code == 200
    assert updated.json()["event"]["title"] == "Testimony recorded"

    assert client.delete(f"/events/{ids[0]}").status_code == 200
    assert client.get(f"/events/{ids[0]}").status_code == 404
    assert client.post("/events/", json={**event, "title": ""}).status_code == 400


def test_registry_endpoints(client):
    roles = client.get("/roles").json()
    assert "official" in roles["roles_by_category"]
    created = client.post("/roles", json={"name": "Auditor", "category": "business"})
    assert created.json()["is_system"] is False
    assert client.post("/roles", json={"name": "Oracle", "category": "mystic"}).status_code == 400

    rels = client.get("/relationships").json()
    assert "Financial" in rels["relationships_by_category"]
    assert client.post("/relationships", json={"name": "Co-signed", "category": "Financial"}).status_code == 200

    et = client.post("/event-types", json={"name": "Raid"}).json()
    assert et["icon"] == "HelpCircle"

    tag = client.post("/tags", json={"name": "Urgent", "color": "#f00"}).json()
    assert client.post("/tags", json={"name": "Urgent"}).status_code == 400
    assert client.put(f"/tags/{tag['id']}", json={"name": "Critical"}).json()["name"] == "Critical"
    assert client.delete(f"/tags/{tag['id']}").status_code == 200
    assert client.delete(f"/tags/{tag['id']}").status_code == 404


def test_request_shape_errors_are_422(client):
    assert client.post("/graphs/", json={}).status_code == 422
    assert client.get("/events/").status_code == 422
