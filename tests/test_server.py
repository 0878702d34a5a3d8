import pytest
from fastapi.testclient import TestClient

from resflow.builder.constants import ToolType
from resflow.server import create_app


@pytest.fixture
def client(manager):
    with TestClient(create_app(manager)) as test_client:
        yield test_client


def test_tools_and_presets(client):
    tools = client.get("/tools").json()["tools"]
    assert {tool["toolType"] for tool in tools} == {tool.value for tool in ToolType}
    names = [preset["name"] for preset in client.get("/presets").json()["presets"]]
    assert "fact-check" in names


def test_apply_preset_returns_document(client):
    response = client.post("/presets/basic-research")
    assert response.status_code == 200
    document = response.json()
    assert [node["id"] for node in document["nodes"]] == ["basic_src", "basic_review", "basic_export"]
    assert client.get("/workflow").json()["version"] > 0


def test_unknown_preset_is_404(client):
    response = client.post("/presets/time-travel")
    assert response.status_code == 404
    body = response.json()
    assert body["error"] == "NotFoundError"
    assert body["code"] == "resflow.not_found"


def test_node_and_edge_editing(client):
    created = client.post("/workflow/nodes", json={"toolType": "Source Finder", "config": {"query": "gnn"}})
    assert created.status_code == 201
    source = created.json()
    target = client.post("/workflow/nodes", json={"toolType": "AI Literature Review"}).json()

    edge = client.post("/workflow/edges", json={"source": source["id"], "target": target["id"]})
    assert edge.status_code == 201

    patched = client.patch(
        f"/workflow/nodes/{target['id']}",
        json={"config": {"reviewTopicScope": "GNN survey"}, "position": {"x": 5, "y": 6}},
    ).json()
    assert patched["config"]["reviewTopicScope"] == "GNN survey"
    assert patched["position"] == {"x": 5.0, "y": 6.0}

    removed = client.delete(f"/workflow/nodes/{source['id']}").json()
    assert removed["removedEdges"] == [edge.json()["id"]]
    assert client.get(f"/workflow/nodes/{source['id']}").status_code == 404


def test_editing_errors(client):
    assert client.post("/workflow/nodes", json={"toolType": "Mind Reader"}).status_code == 400
    assert client.post("/workflow/nodes", json={"toolType": " "}).status_code == 422
    assert client.post("/workflow/edges", json={"source": "a", "target": "b"}).status_code == 404


def test_invalid_document_is_400_and_graph_unchanged(client):
    client.post("/presets/fact-check")
    response = client.put("/workflow", json={"nodes": []})
    assert response.status_code == 400
    assert response.json()["code"] == "resflow.workflow_document_error"
    assert len(client.get("/workflow").json()["nodes"]) == 4


def test_document_round_trip(client):
    client.post("/presets/bibliography")
    document = client.get("/workflow/document").json()
    assert client.delete("/workflow").json() == {"cleared": True}
    assert client.get("/workflow").json()["nodes"] == []
    reloaded = client.put("/workflow", json=document).json()
    assert [node["id"] for node in reloaded["nodes"]] == ["bib_src", "bib_ref", "bib_export"]


def test_save_and_load_local(client):
    client.post("/presets/basic-research")
    assert client.post("/workflow/save").json()["saved"] is True
    client.delete("/workflow")
    assert client.post("/workflow/load").json() == {"loaded": True}
    assert len(client.get("/workflow").json()["nodes"]) == 3


def test_commands(client):
    client.post("/presets/basic-research")
    client.put("/workflow/selection", json={"nodeIds": ["basic_src", "basic_review"]})
    assert client.post("/workflow/commands/copy").json()["executed"] is True
    pasted = client.post("/workflow/commands/paste").json()
    assert pasted["nodeCount"] == 5
    assert pasted["canUndo"] is True

    focused = client.post("/workflow/commands/undo", params={"text_entry_focused": "true"}).json()
    assert focused["executed"] is False
    assert focused["nodeCount"] == 5

    undone = client.post("/workflow/commands/undo").json()
    assert undone["nodeCount"] == 3
    assert undone["canRedo"] is True

    assert client.post("/workflow/commands/explode").status_code == 400


def test_run_and_wait(client, invoker):
    client.post("/presets/basic-research")
    client.patch("/workflow/nodes/basic_src", json={"config": {"query": "graph neural networks"}})

    record = client.post("/workflow/run", params={"wait": "true"}).json()

    assert record["status"] == "completed"
    assert "errors" not in record
    assert invoker.calls[0]["input"] == "graph neural networks"
    status = client.get("/workflow/status").json()
    assert status["state"] == "idle"
    assert set(status["nodes"].values()) == {"success"}
    history = client.get("/workflow/history").json()["runs"]
    assert history[-1]["execution_id"] == record["execution_id"]


def test_run_empty_workflow_is_400(client):
    response = client.post("/workflow/run", params={"wait": "true"})
    assert response.status_code == 400
    assert response.json()["code"] == "resflow.topology_error"


def test_stop_when_idle(client):
    assert client.post("/workflow/stop").json() == {"stopped": False, "record": None}


def test_run_single_node(client, invoker):
    client.post("/presets/basic-research")
    client.patch("/workflow/nodes/basic_src", json={"config": {"query": "gnn"}})
    node = client.post("/workflow/nodes/basic_src/run").json()
    assert node["status"] == "success"
    assert node["output"] == {"text": "Source Finder done"}
    assert invoker.calls[0]["input"] == "gnn"
    assert client.post("/workflow/nodes/ghost/run").status_code == 404
