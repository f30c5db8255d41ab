"""
Step definitions for the Prerequisite Graph.

Feature: prerequisite_graph.feature
Scenarios: 8

Implements BDD steps for:
- Edge insertion and rejection (cycles, self-loops, unknown endpoints)
- Cascading concept removal
- Centrality and topological levels
- Integrity validation
"""

import pytest
from pytest_bdd import given, when, then, parsers

import sys
from pathlib import Path

# Add src to path
src_path = Path(__file__).parent.parent.parent / "src"
sys.path.insert(0, str(src_path))

from learnpath import (
    ConceptNode,
    CycleDetected,
    GraphStore,
    LearningPathError,
    SelfLoop,
    UnknownConcept,
)


def _split(names):
    """'"A", "B"' or 'A, B' -> ['A', 'B']"""
    return [n.strip().strip('"') for n in names.split(",") if n.strip()]


# ─────────────────────────────────────────────────────────────────────────────
# Shared Context
# ─────────────────────────────────────────────────────────────────────────────

class GraphContext:
    """Shared test context across steps."""

    def __init__(self):
        self.graph = GraphStore()
        self.error = None
        self.centrality = {}
        self.levels = []
        self.report = None


@pytest.fixture
def ctx():
    """Fresh test context for each scenario."""
    return GraphContext()


# ─────────────────────────────────────────────────────────────────────────────
# Given
# ─────────────────────────────────────────────────────────────────────────────

@given("an empty prerequisite graph")
def empty_graph(ctx):
    assert ctx.graph.all_concepts() == []


@given(parsers.parse("concepts {names} exist"))
def concepts_exist(ctx, names):
    for cid in _split(names):
        ctx.graph.add_concept(ConceptNode(id=cid, name=cid))


@given(parsers.parse('an edge from "{prerequisite}" to "{dependent}"'))
def existing_edge(ctx, prerequisite, dependent):
    ctx.graph.add_edge(prerequisite, dependent)


# ─────────────────────────────────────────────────────────────────────────────
# When
# ─────────────────────────────────────────────────────────────────────────────

@when(parsers.parse('I add an edge from "{prerequisite}" to "{dependent}" with strength {strength:f}'))
def add_edge(ctx, prerequisite, dependent, strength):
    try:
        ctx.graph.add_edge(prerequisite, dependent, strength)
    except LearningPathError as e:
        ctx.error = e


@when(parsers.parse('I remove concept "{concept_id}"'))
def remove_concept(ctx, concept_id):
    ctx.graph.remove_concept(concept_id)


@when("I compute centrality")
def compute_centrality(ctx):
    ctx.centrality = ctx.graph.compute_centrality()


@when("I compute topological levels")
def compute_levels(ctx):
    ctx.levels = ctx.graph.topological_levels()


@when("I validate the graph")
def validate_graph(ctx):
    ctx.report = ctx.graph.validate_integrity()


# ─────────────────────────────────────────────────────────────────────────────
# Then
# ─────────────────────────────────────────────────────────────────────────────

@then(parsers.parse('"{prerequisite}" is a prerequisite of "{dependent}"'))
def is_prerequisite(ctx, prerequisite, dependent):
    assert ctx.error is None
    assert prerequisite in ctx.graph.prerequisites_of(dependent)


@then(parsers.parse('"{dependent}" is a dependent of "{prerequisite}"'))
def is_dependent(ctx, dependent, prerequisite):
    assert dependent in ctx.graph.dependents_of(prerequisite)


@then(parsers.parse('a cycle is reported as "{cycle}"'))
def cycle_reported(ctx, cycle):
    assert isinstance(ctx.error, CycleDetected)
    assert ctx.error.cycle == cycle.split(" -> ")


@then(parsers.re(r"the graph has (?P<count>\d+) edges?"), converters={"count": int})
def edge_count(ctx, count):
    assert len(ctx.graph.all_edges()) == count


@then("the edge is rejected as a self-loop")
def self_loop_rejected(ctx):
    assert isinstance(ctx.error, SelfLoop)
    assert ctx.graph.all_edges() == []


@then(parsers.parse('the edge is rejected naming unknown concept "{concept_id}"'))
def unknown_concept_rejected(ctx, concept_id):
    assert isinstance(ctx.error, UnknownConcept)
    assert ctx.error.concept_id == concept_id


@then(parsers.parse('"{concept_id}" has no prerequisites'))
def no_prerequisites(ctx, concept_id):
    assert ctx.graph.prerequisites_of(concept_id) == frozenset()


@then(parsers.parse('the centrality of "{concept_id}" is {value:d}'))
def centrality_is(ctx, concept_id, value):
    assert ctx.centrality[concept_id] == value


@then(parsers.parse('level {index:d} is "{names}"'))
def level_is(ctx, index, names):
    assert ctx.levels[index] == _split(names)


@then(parsers.parse('validation fails with isolated concept "{concept_id}"'))
def isolated_reported(ctx, concept_id):
    assert not ctx.report.ok
    assert concept_id in ctx.report.isolated
