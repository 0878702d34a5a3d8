import pytest

from resflow.builder.constants import NodeStatus, ToolType
from resflow.builder.graph_store import GraphStore, new_tool_node
from resflow.builder.types import Position, ReviewConfig
from resflow.exceptions import ConflictError, NotFoundError, ValidationError

from helpers import build_store, make_edge, make_node


def test_add_node_and_snapshot_is_immutable_view():
    store = GraphStore()
    before = store.snapshot()
    store.add_node(make_node("a"))
    after = store.snapshot()
    assert before.node_ids() == []
    assert after.node_ids() == ["a"]
    assert after.version == store.version == 1


def test_duplicate_node_rejected_without_change():
    store = build_store([make_node("a")], [])
    version = store.version
    with pytest.raises(ConflictError):
        store.add_node(make_node("a"))
    assert store.version == version
    assert len(store) == 1


def test_edge_to_missing_node_is_noop():
    store = build_store([make_node("a")], [])
    version = store.version
    assert store.add_edge(make_edge("a", "ghost")) is None
    assert store.add_edge(make_edge("ghost", "a")) is None
    assert store.snapshot().edges == ()
    assert store.version == version


def test_dangling_edge_in_batch_insert_rejected():
    store = build_store([make_node("a")], [])
    with pytest.raises(NotFoundError) as exc:
        store.insert([make_node("b")], [make_edge("b", "ghost")])
    assert "ghost" in str(exc.value)
    assert store.snapshot().node_ids() == ["a"]


def test_remove_node_cascades_to_incident_edges_only():
    store = build_store(
        [make_node(n) for n in ("a", "b", "c", "d")],
        [("a", "b"), ("b", "c"), ("c", "d"), ("a", "d")],
    )
    removed = store.remove_node("b")
    assert sorted(edge.id for edge in removed) == ["a->b", "b->c"]
    assert sorted(edge.id for edge in store.snapshot().edges) == ["a->d", "c->d"]
    assert not store.has_node("b")


def test_missing_ids_are_noops():
    store = build_store([make_node("a")], [])
    version = store.version
    assert store.remove_node("nope") == []
    assert store.remove_edge("nope") is None
    assert store.patch_node("nope", status=NodeStatus.SUCCESS) is None
    assert store.version == version


def test_patch_node_never_changes_tool_type():
    store = build_store([make_node("a")], [])
    node = store.patch_node("a", tool_type=ToolType.REVIEW, label="renamed")
    assert node.tool_type is ToolType.SEARCH
    assert node.label == "renamed"


def test_patch_node_unknown_field_raises():
    store = build_store([make_node("a")], [])
    with pytest.raises(ValidationError):
        store.patch_node("a", colour="red")


def test_patch_config_merges_into_typed_variant():
    store = GraphStore()
    store.add_node(make_node("r", ToolType.REVIEW, reviewTopicScope="GNNs"))
    node = store.patch_node("r", config={"reviewTone": "academic", "year_from": 2019})
    assert isinstance(node.config, ReviewConfig)
    assert node.config.topic == "GNNs"
    assert node.config.tone == "academic"
    assert node.config.year_from == 2019


def test_config_locked_while_in_flight():
    store = build_store([make_node("a")], [])
    store.lock_config("a")
    with pytest.raises(ConflictError):
        store.patch_node("a", config={"query": "changed"})
    # Status and output stay writable.
    store.patch_node("a", status=NodeStatus.SUCCESS, output={"text": "ok"})
    store.unlock_config("a")
    assert store.patch_node("a", config={"query": "changed"}).config.query == "changed"


def test_subscribers_receive_events_and_can_unsubscribe():
    store = GraphStore()
    events = []
    unsubscribe = store.subscribe(lambda event, payload: events.append((event, payload["version"])))
    store.add_node(make_node("a"))
    unsubscribe()
    store.add_node(make_node("b"))
    assert events == [("inserted", 1)]


def test_subscriber_errors_do_not_break_mutation():
    store = GraphStore()

    def broken(event, payload):
        raise RuntimeError("listener bug")

    store.subscribe(broken)
    store.add_node(make_node("a"))
    assert store.has_node("a")


def test_insert_batch_is_all_or_nothing():
    store = build_store([make_node("a")], [])
    with pytest.raises(NotFoundError):
        store.insert([make_node("b")], [make_edge("b", "missing")])
    assert store.snapshot().node_ids() == ["a"]


def test_replace_validates_before_dropping_graph():
    store = build_store([make_node("a"), make_node("b")], [("a", "b")])
    with pytest.raises(NotFoundError):
        store.replace([make_node("x")], [make_edge("x", "y")])
    assert store.snapshot().node_ids() == ["a", "b"]
    store.replace([make_node("x")], [])
    assert store.snapshot().node_ids() == ["x"]
    assert store.snapshot().edges == ()


def test_new_ids_skip_existing_and_strip_whitespace():
    store = GraphStore()
    node = new_tool_node(store, ToolType.REVIEW, position=Position(x=5, y=6))
    assert node.id == "AILiteratureReview_1"
    assert node.label == "AI Literature Review"
    store.add_node(node)
    store.add_node(make_node("e_2"))
    assert store.new_edge_id() == "e_2"  # edge ids live in their own namespace
    assert store.new_node_id("AI Literature Review") == "AILiteratureReview_3"


def test_set_status_bulk_and_clear():
    store = build_store([make_node("a"), make_node("b")], [("a", "b")])
    store.set_status(["a", "b", "ghost"], NodeStatus.RUNNING)
    assert {node.status for node in store.snapshot().nodes} == {NodeStatus.RUNNING}
    store.clear()
    assert store.snapshot().is_empty()
