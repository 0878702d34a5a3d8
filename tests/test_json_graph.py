import json

import pytest

from resflow.builder.constants import NodeStatus, ToolType
from resflow.builder.graph_store import GraphStore
from resflow.builder.json_graph import (
    deserialize_document,
    document_to_graph,
    load_document_from_file,
    save_document_to_file,
    snapshot_to_document,
)
from resflow.builder.presets import PRESETS, get_preset, list_presets
from resflow.builder.types import ReviewConfig
from resflow.exceptions import NotFoundError, SerializationError, TopologyError, WorkflowDocumentError

from helpers import build_store, make_node


def sample_document():
    return {
        "nodes": [
            {
                "id": "s1",
                "type": "toolNode",
                "position": {"x": 10, "y": 20},
                "data": {"id": "s1", "label": "Find papers", "toolType": "Source Finder",
                         "config": {"query": "gnn", "yearFrom": 2019}, "status": "pending"},
            },
            {
                "id": "r1",
                "type": "toolNode",
                "position": {"x": 400, "y": 20},
                "data": {"id": "r1", "label": "Review", "toolType": "AI Literature Review",
                         "config": {"reviewTopicScope": "GNNs", "customKnob": True}, "status": "pending"},
            },
        ],
        "edges": [{"id": "e1", "source": "s1", "target": "r1"}],
        "savedAt": "2026-01-01T00:00:00+00:00",
    }


def test_document_to_graph_builds_typed_nodes():
    nodes, edges = document_to_graph(sample_document())
    assert [node.id for node in nodes] == ["s1", "r1"]
    assert nodes[0].tool_type is ToolType.SEARCH
    assert nodes[0].config.year_from == 2019
    assert isinstance(nodes[1].config, ReviewConfig)
    assert nodes[1].config.topic == "GNNs"
    assert (nodes[0].position.x, nodes[0].position.y) == (10, 20)
    assert [(edge.source, edge.target) for edge in edges] == [("s1", "r1")]


def test_snapshot_to_document_drops_execution_state():
    store = GraphStore(*document_to_graph(sample_document()))
    store.patch_node("s1", status=NodeStatus.SUCCESS, output={"papers": [1]}, session_id="sess")
    document = snapshot_to_document(store.snapshot(), saved_at="2026-02-02T00:00:00+00:00")

    first = document["nodes"][0]
    assert first["type"] == "toolNode"
    assert first["data"]["status"] == "pending"
    assert first["data"]["toolType"] == "Source Finder"
    assert "output" not in first["data"] and "sessionId" not in first["data"]
    assert document["savedAt"] == "2026-02-02T00:00:00+00:00"
    # Unknown config keys survive the round trip.
    assert document["nodes"][1]["data"]["config"]["customKnob"] is True
    assert document["edges"] == [{"id": "e1", "source": "s1", "target": "r1"}]


@pytest.mark.parametrize("missing", ["nodes", "edges"])
def test_document_missing_collection_rejected(missing):
    document = sample_document()
    del document[missing]
    with pytest.raises(WorkflowDocumentError) as exc:
        document_to_graph(document)
    assert missing in str(exc.value)
    assert isinstance(exc.value, TopologyError)


def test_unknown_tool_type_rejected():
    document = sample_document()
    document["nodes"][0]["data"]["toolType"] = "Mind Reader"
    with pytest.raises(WorkflowDocumentError):
        document_to_graph(document)


def test_dangling_edge_and_duplicate_ids_rejected():
    document = sample_document()
    document["edges"].append({"id": "e2", "source": "r1", "target": "ghost"})
    with pytest.raises(WorkflowDocumentError) as exc:
        document_to_graph(document)
    assert "ghost" in str(exc.value)

    document = sample_document()
    document["nodes"].append(document["nodes"][0])
    with pytest.raises(WorkflowDocumentError):
        document_to_graph(document)


def test_invalid_json_text_rejected():
    with pytest.raises(WorkflowDocumentError):
        deserialize_document("{not json")


def test_file_round_trip(tmp_path):
    store = build_store([make_node("a"), make_node("b", ToolType.REVIEW)], [("a", "b")])
    path = tmp_path / "flows" / "wf.json"
    save_document_to_file(snapshot_to_document(store.snapshot()), path)
    assert json.loads(path.read_text(encoding="utf-8"))["nodes"][0]["id"] == "a"
    assert not list(path.parent.glob("*.tmp"))

    nodes, edges = load_document_from_file(path)
    assert [node.id for node in nodes] == ["a", "b"]
    assert [edge.id for edge in edges] == ["a->b"]


def test_missing_file_is_serialization_error(tmp_path):
    with pytest.raises(SerializationError):
        load_document_from_file(tmp_path / "nope.json")


# --- Presets ---

def test_presets_are_valid_chains():
    expected = {
        "basic-research": ["Source Finder", "AI Literature Review", "Export TXT"],
        "fact-check": ["Source Finder", "Claim Extractor", "Contradiction Checker", "Export DOC"],
        "bibliography": ["Source Finder", "Reference & Citation Management", "Export TXT"],
        "literature-review": ["Source Finder", "AI Literature Review", "Export DOC"],
    }
    for name, tools in expected.items():
        nodes, edges = get_preset(name)
        assert [node.tool_type.value for node in nodes] == tools
        assert len(edges) == len(nodes) - 1
        GraphStore(nodes, edges)


def test_fact_check_preset_layout():
    nodes, edges = get_preset("Fact Check")
    assert [node.id for node in nodes] == ["fact_src", "fact_claim", "fact_contra", "fact_export"]
    assert [edge.id for edge in edges] == ["e3", "e4", "e5"]
    assert [(node.position.x, node.position.y) for node in nodes] == [
        (50, 150), (450, 150), (850, 150), (1250, 150),
    ]


def test_unknown_preset_and_listing():
    with pytest.raises(NotFoundError):
        get_preset("time-travel")
    assert [preset["name"] for preset in list_presets()] == list(PRESETS)
