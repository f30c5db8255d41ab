"""
Unit tests for the prerequisite graph store.
"""

import random
import threading

import pytest

from learnpath import (
    ChangeType,
    ConceptCandidate,
    ConceptNode,
    CycleDetected,
    DependencyEdge,
    DuplicateConcept,
    DuplicateEdge,
    EdgeCandidate,
    GraphIntegrityViolation,
    GraphStore,
    InvalidScoreRange,
    SelfLoop,
    UnknownConcept,
    UnknownEdge,
)


def _state(graph):
    return (
        {n.id: n for n in graph.all_concepts()},
        {e.key: e.strength for e in graph.all_edges()},
    )


def _add(graph, *ids, complexity=3):
    for cid in ids:
        graph.add_concept(ConceptNode(id=cid, name=cid, complexity=complexity))


class TestConceptCRUD:
    """Test CRUD operations for concepts."""

    def test_add_and_get_concept(self, graph):
        node = ConceptNode(id="limits", name="Limits", exam_weight=0.4, complexity=2)
        graph.add_concept(node)

        assert graph.get_concept("limits") == node
        assert graph.prerequisites_of("limits") == frozenset()
        assert graph.version == 1

    def test_duplicate_concept_rejected(self, graph):
        _add(graph, "A")
        with pytest.raises(DuplicateConcept):
            graph.add_concept(ConceptNode(id="A"))
        assert len(graph.all_concepts()) == 1

    @pytest.mark.parametrize("complexity", [0, 6, 2.5])
    def test_complexity_out_of_range(self, complexity):
        with pytest.raises(InvalidScoreRange):
            ConceptNode(id="x", complexity=complexity)

    @pytest.mark.parametrize("weight", [-0.1, 1.5, float("nan")])
    def test_exam_weight_out_of_range(self, weight):
        with pytest.raises(InvalidScoreRange):
            ConceptNode(id="x", exam_weight=weight)

    def test_update_concept_records_change(self, graph):
        _add(graph, "A")
        updated = graph.update_concept("A", exam_weight=0.7)

        assert updated.exam_weight == 0.7
        entry = graph.get_changelog("A")[-1]
        assert entry.event_type == ChangeType.PROPERTY_UPDATE
        assert entry.details["exam_weight"] == {"old_value": 0.0, "new_value": 0.7}

    def test_update_unknown_field(self, graph):
        _add(graph, "A")
        with pytest.raises(TypeError):
            graph.update_concept("A", centrality=3)

    def test_remove_concept_cascades_edges(self, graph):
        _add(graph, "A", "B", "C")
        graph.add_edge("A", "B")
        graph.add_edge("B", "C")

        removed = graph.remove_concept("B")

        assert {e.key for e in removed} == {("A", "B"), ("B", "C")}
        assert graph.all_edges() == []
        assert graph.dependents_of("A") == frozenset()
        assert graph.prerequisites_of("C") == frozenset()

    def test_remove_unknown_concept(self, graph):
        with pytest.raises(UnknownConcept):
            graph.remove_concept("ghost")


class TestEdges:
    """Test edge insertion, rejection and removal."""

    def test_add_edge_updates_both_indexes(self, graph):
        _add(graph, "A", "B")
        edge = graph.add_edge("A", "B", 0.9)

        assert edge == DependencyEdge("A", "B", 0.9)
        assert graph.prerequisites_of("B") == {"A"}
        assert graph.dependents_of("A") == {"B"}

    def test_self_loop_rejected(self, graph):
        _add(graph, "A")
        with pytest.raises(SelfLoop):
            graph.add_edge("A", "A")

    def test_unknown_endpoint_rejected(self, graph):
        _add(graph, "A")
        with pytest.raises(UnknownConcept) as exc_info:
            graph.add_edge("A", "missing")
        assert exc_info.value.concept_id == "missing"

    def test_duplicate_edge_rejected(self, graph):
        _add(graph, "A", "B")
        graph.add_edge("A", "B")
        with pytest.raises(DuplicateEdge):
            graph.add_edge("A", "B", 0.3)
        assert graph.get_edge("A", "B").strength == 1.0

    def test_strength_out_of_range(self, graph):
        _add(graph, "A", "B")
        with pytest.raises(InvalidScoreRange):
            graph.add_edge("A", "B", 1.2)

    def test_reverse_edge_is_a_cycle(self, graph):
        _add(graph, "A", "B")
        graph.add_edge("A", "B")
        before = _state(graph)
        version = graph.version

        with pytest.raises(CycleDetected) as exc_info:
            graph.add_edge("B", "A")

        assert exc_info.value.cycle == ["A", "B", "A"]
        assert _state(graph) == before
        assert graph.version == version

    def test_long_cycle_rejected(self, graph):
        _add(graph, "A", "B", "C", "D")
        graph.add_edge("A", "B")
        graph.add_edge("B", "C")
        graph.add_edge("C", "D")

        with pytest.raises(CycleDetected) as exc_info:
            graph.add_edge("D", "A")

        assert exc_info.value.cycle == ["A", "B", "C", "D", "A"]

    def test_redundant_shortcut_is_allowed(self, graph):
        _add(graph, "A", "B", "C")
        graph.add_edge("A", "B")
        graph.add_edge("B", "C")
        graph.add_edge("A", "C")
        assert graph.validate_integrity().ok

    def test_random_edge_sequences_stay_acyclic(self):
        rng = random.Random(7)
        ids = [f"n{i}" for i in range(12)]
        for _ in range(20):
            graph = GraphStore()
            _add(graph, *ids)
            for _ in range(60):
                a, b = rng.sample(ids, 2)
                before = _state(graph)
                try:
                    graph.add_edge(a, b, round(rng.random(), 2))
                except (CycleDetected, DuplicateEdge):
                    assert _state(graph) == before
            assert graph.validate_integrity().is_acyclic
            graph.topological_levels()

    def test_update_edge_strength(self, graph):
        _add(graph, "A", "B")
        graph.add_edge("A", "B", 0.2)
        graph.update_edge_strength("A", "B", 0.8)
        assert graph.get_edge("A", "B").strength == 0.8

    def test_remove_edge(self, graph):
        _add(graph, "A", "B")
        graph.add_edge("A", "B")
        graph.remove_edge("A", "B")
        assert graph.get_edge("A", "B") is None
        with pytest.raises(UnknownEdge):
            graph.remove_edge("A", "B")


class TestCentrality:
    """Downstream-impact centrality."""

    def test_counts_distinct_descendants(self, graph):
        # Diamond: A -> B, A -> C, B -> D, C -> D
        _add(graph, "A", "B", "C", "D")
        for a, b in [("A", "B"), ("A", "C"), ("B", "D"), ("C", "D")]:
            graph.add_edge(a, b)

        assert graph.compute_centrality() == {"A": 3, "B": 1, "C": 1, "D": 0}

    def test_cache_invalidated_by_mutation(self, graph):
        _add(graph, "A", "B", "C")
        graph.add_edge("A", "B")
        first = graph.compute_centrality()
        assert graph.compute_centrality() is first

        graph.add_edge("B", "C")
        assert graph.compute_centrality()["A"] == 2

    def test_normalized_centrality_edgeless(self, graph):
        _add(graph, "A")
        assert graph.snapshot().normalized_centrality() == {"A": 0.0}


class TestIntegrityAndLevels:
    """Integrity validation and topological levels."""

    def test_connected_dag_is_valid(self, graph):
        _add(graph, "A", "B", "C")
        graph.add_edge("A", "B")
        graph.add_edge("A", "C")
        report = graph.validate_integrity()
        assert report.ok
        assert report.describe() == "ok"

    def test_single_concept_is_valid(self, graph):
        _add(graph, "A")
        assert graph.validate_integrity().ok

    def test_isolated_concept_fails(self, graph):
        _add(graph, "A", "B", "Z")
        graph.add_edge("A", "B")

        report = graph.validate_integrity()

        assert not report.ok
        assert report.is_acyclic
        assert report.isolated == {"Z"}

    def test_levels(self, graph):
        _add(graph, "A", "B", "C", "D", "E")
        for a, b in [("A", "C"), ("B", "C"), ("C", "D"), ("A", "E"), ("D", "E")]:
            graph.add_edge(a, b)

        assert graph.topological_levels() == [["A", "B"], ["C"], ["D"], ["E"]]
        assert graph.stats()["max_depth"] == 3

    def test_ancestors_and_descendants(self, graph):
        _add(graph, "A", "B", "C")
        graph.add_edge("A", "B")
        graph.add_edge("B", "C")
        assert graph.ancestors("C") == {"A", "B"}
        assert graph.descendants("A") == {"B", "C"}


class TestBulkImport:
    """Bulk import with defensive re-validation."""

    def test_import_valid_graph(self, graph):
        graph.import_graph(
            [ConceptNode(id=c) for c in "ABC"],
            [DependencyEdge("A", "B", 0.9), DependencyEdge("B", "C", 0.5)],
        )
        assert graph.topological_levels() == [["A"], ["B"], ["C"]]
        assert graph.get_changelog()[-1].event_type == ChangeType.BULK_IMPORT

    def test_cyclic_import_rejected_atomically(self, graph):
        _add(graph, "X")
        before = _state(graph)

        with pytest.raises(GraphIntegrityViolation) as exc_info:
            graph.import_graph(
                [ConceptNode(id=c) for c in "ABC"],
                [DependencyEdge("A", "B"), DependencyEdge("B", "C"), DependencyEdge("C", "A")],
            )

        assert not exc_info.value.report.is_acyclic
        assert _state(graph) == before

    def test_import_rejects_unknown_endpoint(self, graph):
        with pytest.raises(UnknownConcept):
            graph.import_graph([ConceptNode(id="A")], [DependencyEdge("A", "B")])
        assert graph.all_concepts() == []

    def test_ingest_collaborator_candidates(self, graph):
        graph.ingest_candidates(
            [
                ConceptCandidate(id="vectors", name="Vectors", complexity=2),
                ConceptCandidate(id="matrices", name="Matrices", complexity=3),
            ],
            [EdgeCandidate(prerequisite_id="vectors", dependent_id="matrices", strength=0.8)],
        )
        assert graph.get_concept("matrices").complexity == 3
        assert graph.get_edge("vectors", "matrices").strength == 0.8


class TestSnapshots:
    """Copy-on-write snapshot isolation."""

    def test_snapshot_unaffected_by_later_mutation(self, graph):
        _add(graph, "A", "B")
        snapshot = graph.snapshot()
        graph.add_edge("A", "B")

        assert snapshot.edges == {}
        assert graph.snapshot().edges.keys() == {("A", "B")}

    def test_concurrent_writers_never_publish_a_cycle(self, graph):
        ids = [f"n{i}" for i in range(8)]
        _add(graph, *ids)
        errors = []

        def writer(seed):
            rng = random.Random(seed)
            for _ in range(50):
                a, b = rng.sample(ids, 2)
                try:
                    graph.add_edge(a, b)
                except (CycleDetected, DuplicateEdge):
                    pass
                except Exception as e:  # pragma: no cover
                    errors.append(e)

        threads = [threading.Thread(target=writer, args=(s,)) for s in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert graph.validate_integrity().is_acyclic

    def test_snapshot_maps_are_read_only(self, graph):
        _add(graph, "A", "B")
        snapshot = graph.snapshot()

        with pytest.raises(TypeError):
            snapshot.edges[("A", "B")] = DependencyEdge("A", "B")
        with pytest.raises(TypeError):
            snapshot.concepts["C"] = ConceptNode(id="C")

        assert graph.all_edges() == []
        assert graph.get_concept("C") is None


class TestDeepGraphs:
    """Graphs deeper than the interpreter recursion limit."""

    def test_edge_on_long_chain(self, graph):
        ids = [f"n{i:05d}" for i in range(3000)]
        graph.import_graph(
            [ConceptNode(id=cid) for cid in ids],
            [DependencyEdge(a, b) for a, b in zip(ids, ids[1:])],
        )
        graph.add_concept(ConceptNode(id="X"))

        graph.add_edge("X", ids[0])

        assert graph.prerequisites_of(ids[0]) == {"X"}

    def test_cycle_across_long_chain(self, graph):
        ids = [f"n{i:05d}" for i in range(3000)]
        graph.import_graph(
            [ConceptNode(id=cid) for cid in ids],
            [DependencyEdge(a, b) for a, b in zip(ids, ids[1:])],
        )

        with pytest.raises(CycleDetected) as exc_info:
            graph.add_edge(ids[-1], ids[0])

        assert exc_info.value.cycle == ids + [ids[0]]
        assert len(graph.all_edges()) == len(ids) - 1
