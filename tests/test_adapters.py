import json

import pytest

from resflow.builder.adapters import (
    AdapterRegistry,
    adapt_output,
    default_registry,
    format_paper,
)
from resflow.builder.constants import NodeStatus, ToolType
from resflow.exceptions import ConfigurationError

from helpers import make_node


def finished(node_id, output, tool_type=ToolType.SEARCH):
    return make_node(node_id, tool_type).with_changes(status=NodeStatus.SUCCESS, output=output)


def test_review_consumer_receives_paper_list_unchanged(three_papers):
    adapted = adapt_output(ToolType.REVIEW, {"papers": three_papers, "total": 3})
    assert adapted == three_papers
    assert isinstance(adapted, list)


def test_non_review_consumer_gets_one_line_per_paper():
    papers = [
        {"title": "Attention Is All You Need", "authors": ["Vaswani", "Shazeer"], "year": 2017},
        {"title": "BERT", "authors": "Devlin et al.", "published": "2018-10-11"},
    ]
    adapted = adapt_output(ToolType.CLAIM_EXTRACT, {"papers": papers})
    assert adapted == (
        "Attention Is All You Need. Vaswani, Shazeer (2017)\n"
        "BERT. Devlin et al. (2018-10-11)"
    )
    assert len(adapted.split("\n")) == 2


def test_format_paper_accepts_author_objects():
    paper = {"title": "T", "authors": [{"name": "Ada"}, {"name": "Alan"}], "year": 1950}
    assert format_paper(paper) == "T. Ada, Alan (1950)"


def test_claims_joined_with_separator():
    output = {"claims": ["Water boils at 100C.", {"text": "Ice floats."}]}
    assert adapt_output(ToolType.CONTRADICTION_CHECK, output) == "Water boils at 100C.\n---\nIce floats."


def test_review_and_text_fields_pass_through():
    assert adapt_output(ToolType.EXPORT_TEXT, {"review": "A review.", "text": "ignored"}) == "A review."
    assert adapt_output(ToolType.EXPORT_TEXT, {"text": "Some text"}) == "Some text"
    assert adapt_output(ToolType.EXPORT_TEXT, "plain string") == "plain string"


def test_structured_fallback_uses_stable_key_order():
    output = {"zeta": 1, "alpha": {"b": 2, "a": 1}}
    adapted = adapt_output(ToolType.EXPORT_DOCUMENT, output)
    assert adapted == json.dumps(output, indent=2, sort_keys=True)
    assert adapted.index('"alpha"') < adapted.index('"zeta"')


def test_adaptation_is_pure(three_papers):
    output = {"papers": three_papers}
    first = adapt_output(ToolType.CLAIM_EXTRACT, output)
    second = adapt_output(ToolType.CLAIM_EXTRACT, output)
    assert first == second
    assert output == {"papers": three_papers}


def test_rule_order_is_priority_order():
    assert default_registry().list_rules() == [
        "papers_to_review",
        "papers_to_text",
        "claims_to_text",
        "review_text",
        "generic_text",
        "string_passthrough",
        "structured_fallback",
    ]


def test_register_before_existing_rule_takes_priority():
    registry = default_registry()
    registry.register(
        "summary_text",
        lambda consumer, output: isinstance(output, dict) and "summary" in output,
        lambda output: output["summary"].upper(),
        before="review_text",
    )
    assert registry.list_rules().index("summary_text") == registry.list_rules().index("review_text") - 1
    assert registry.adapt(ToolType.EXPORT_TEXT, {"summary": "short", "review": "long"}) == "SHORT"


def test_register_rejects_duplicate_or_unknown_anchor():
    registry = default_registry()
    with pytest.raises(ValueError):
        registry.register("review_text", lambda c, o: True, lambda o: o)
    with pytest.raises(ValueError):
        registry.register("new_rule", lambda c, o: True, lambda o: o, before="missing")


def test_empty_registry_falls_back_to_json():
    assert AdapterRegistry().adapt(ToolType.EXPORT_TEXT, {"a": 1}) == '{\n  "a": 1\n}'


# --- resolve_input ---

def test_resolve_uses_literal_config_without_predecessors():
    node = make_node("s", ToolType.SEARCH, query="  graph neural networks ")
    assert default_registry().resolve_input(node, []) == "  graph neural networks "


def test_blank_literal_falls_through_to_prompt_or_error():
    search = make_node("s", ToolType.SEARCH, query="   ", prompt="protein folding")
    assert default_registry().resolve_input(search, []) == "protein folding"
    claims = make_node("c", ToolType.CLAIM_EXTRACT, prompt=" \n ")
    with pytest.raises(ConfigurationError):
        default_registry().resolve_input(claims, [])


def test_resolve_without_input_is_configuration_error():
    node = make_node("c", ToolType.CLAIM_EXTRACT)
    with pytest.raises(ConfigurationError) as exc:
        default_registry().resolve_input(node, [])
    assert exc.value.details["node_id"] == "c"


def test_resolve_prefers_predecessor_output_over_literal(three_papers):
    review = make_node("r", ToolType.REVIEW, reviewTopicScope="GNNs")
    resolved = default_registry().resolve_input(review, [finished("s", {"papers": three_papers})])
    assert resolved == three_papers


def test_resolve_merges_multiple_predecessors_in_edge_order(three_papers):
    consumer = make_node("x", ToolType.EXPORT_TEXT)
    resolved = default_registry().resolve_input(consumer, [
        finished("a", {"review": "First."}, ToolType.REVIEW),
        finished("b", {"text": "Second."}, ToolType.CLAIM_EXTRACT),
    ])
    assert resolved == "First.\n\nSecond."

    review = make_node("r", ToolType.REVIEW)
    merged = default_registry().resolve_input(review, [
        finished("s1", {"papers": three_papers[:1]}),
        finished("s2", {"papers": three_papers[1:]}),
    ])
    assert merged == three_papers
