"""
Adapter Registry for resflow

Translates one tool's captured output into the input the next tool expects.
Each tool produces a differently shaped payload (paper lists, claim lists,
review text, export confirmations), so the scheduler never feeds raw output
forward: it asks this registry for the consumer's effective input.

Rules are checked in priority order; the first rule whose matcher accepts
(consumer tool type, predecessor output) wins. All rules are pure functions.
"""

import json
from typing import Any, Callable, List, Optional, Sequence, Union

from resflow.builder.constants import ToolType, is_review_consumer
from resflow.builder.types import Node
from resflow.exceptions import ConfigurationError
from resflow.utilities.logging import get_logger

logger = get_logger(__name__)

Matcher = Callable[[ToolType, Any], bool]
Transform = Callable[[Any], Any]
ResolvedInput = Union[str, List[Any]]

CLAIM_SEPARATOR = "\n---\n"
MERGE_SEPARATOR = "\n\n"


# --- Output shape helpers ---

def _has_list(output: Any, key: str) -> bool:
    return isinstance(output, dict) and isinstance(output.get(key), list)


def _has_str(output: Any, key: str) -> bool:
    return isinstance(output, dict) and isinstance(output.get(key), str)


def format_paper(paper: Any) -> str:
    """``<title>. <authors> (<year>)`` for one paper record."""
    if not isinstance(paper, dict):
        return str(paper)
    authors = paper.get("authors")
    if isinstance(authors, list):
        authors_text = ", ".join(
            a.get("name", "") if isinstance(a, dict) else str(a) for a in authors
        )
    else:
        authors_text = authors or ""
    year = paper.get("year") or paper.get("published") or ""
    return f"{paper.get('title', '')}. {authors_text} ({year})"


def format_claim(claim: Any) -> str:
    if isinstance(claim, str):
        return claim
    if isinstance(claim, dict) and isinstance(claim.get("text"), str):
        return claim["text"]
    return json.dumps(claim, sort_keys=True)


# --- Default rules ---

def _papers_for_review(consumer: ToolType, output: Any) -> bool:
    return is_review_consumer(consumer) and _has_list(output, "papers")


def _papers(consumer: ToolType, output: Any) -> bool:
    return _has_list(output, "papers")


def _claims(consumer: ToolType, output: Any) -> bool:
    return _has_list(output, "claims")


def _review(consumer: ToolType, output: Any) -> bool:
    return _has_str(output, "review")


def _text(consumer: ToolType, output: Any) -> bool:
    return _has_str(output, "text")


def _string(consumer: ToolType, output: Any) -> bool:
    return isinstance(output, str)


def _anything(consumer: ToolType, output: Any) -> bool:
    return True


class AdapterRule:
    """A named (matcher, transform) pair."""

    def __init__(self, name: str, matches: Matcher, transform: Transform) -> None:
        self.name = name
        self.matches = matches
        self.transform = transform

    def __repr__(self) -> str:
        return f"AdapterRule({self.name!r})"


class AdapterRegistry:
    """
    Ordered table of adapter rules.
    """

    def __init__(self, rules: Optional[Sequence[AdapterRule]] = None) -> None:
        self._rules: List[AdapterRule] = list(rules or [])

    def register(self, name: str, matches: Matcher, transform: Transform, before: Optional[str] = None) -> None:
        """
        Register a rule. By default it is appended (lowest priority); pass
        ``before`` to insert it ahead of an existing rule.

        Raises:
            ValueError: If the name is taken or ``before`` is unknown.
        """
        if any(rule.name == name for rule in self._rules):
            raise ValueError(f"Adapter rule '{name}' is already registered.")
        rule = AdapterRule(name, matches, transform)
        if before is None:
            self._rules.append(rule)
            return
        for index, existing in enumerate(self._rules):
            if existing.name == before:
                self._rules.insert(index, rule)
                return
        raise ValueError(f"Unknown adapter rule '{before}'.")

    def list_rules(self) -> List[str]:
        return [rule.name for rule in self._rules]

    def adapt(self, consumer: ToolType, output: Any) -> ResolvedInput:
        """Adapt one predecessor's output for a consumer of type ``consumer``."""
        for rule in self._rules:
            if rule.matches(consumer, output):
                logger.debug("adapter %s selected for %s", rule.name, consumer.value)
                return rule.transform(output)
        return json.dumps(output, indent=2, sort_keys=True)

    def resolve_input(self, consumer: Node, predecessors: Sequence[Node]) -> ResolvedInput:
        """
        Effective input for ``consumer``.

        Predecessors are adapted in edge-insertion order. With several
        predecessors, list results are concatenated and text results are
        joined with a blank line; a review consumer takes the paper lists when
        any predecessor provides them. Without usable predecessor output the
        node's literal config input is used.

        Raises:
            ConfigurationError: If there is neither predecessor output nor a
                literal config value.
        """
        adapted = [
            self.adapt(consumer.tool_type, pred.output)
            for pred in predecessors
            if pred.output is not None
        ]
        lists = [value for value in adapted if isinstance(value, list)]
        texts = [value for value in adapted if isinstance(value, str) and value]

        if lists and is_review_consumer(consumer.tool_type):
            merged: List[Any] = []
            for value in lists:
                merged.extend(value)
            return merged
        if texts:
            return MERGE_SEPARATOR.join(texts)
        if lists:
            # Only reachable through custom rules returning lists.
            return [item for value in lists for item in value]

        literal = consumer.config.literal_input()
        if literal:
            return literal
        raise ConfigurationError(
            f"{consumer.tool_type.value} node '{consumer.id}' needs input: "
            "connect a predecessor or fill in its input field.",
            details={"node_id": consumer.id, "tool_type": consumer.tool_type.value},
        )


def default_rules() -> List[AdapterRule]:
    return [
        AdapterRule("papers_to_review", _papers_for_review, lambda output: list(output["papers"])),
        AdapterRule("papers_to_text", _papers, lambda output: "\n".join(format_paper(p) for p in output["papers"])),
        AdapterRule("claims_to_text", _claims, lambda output: CLAIM_SEPARATOR.join(format_claim(c) for c in output["claims"])),
        AdapterRule("review_text", _review, lambda output: output["review"]),
        AdapterRule("generic_text", _text, lambda output: output["text"]),
        AdapterRule("string_passthrough", _string, lambda output: output),
        AdapterRule("structured_fallback", _anything, lambda output: json.dumps(output, indent=2, sort_keys=True)),
    ]


def default_registry() -> AdapterRegistry:
    """A registry populated with the standard rule table."""
    return AdapterRegistry(default_rules())


def adapt_output(consumer: ToolType, output: Any) -> ResolvedInput:
    """Adapt ``output`` for ``consumer`` using the standard rule table."""
    return default_registry().adapt(ToolType(consumer), output)
