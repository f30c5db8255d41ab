"""
Unit tests for root gap detection.
"""

import pytest

from learnpath import ConceptNode, UnknownConcept

from conftest import score_as


class TestRootGaps:

    def test_no_search_when_concept_is_understood(self, chain_core):
        score_as(chain_core, "u1", "A", 0.25)
        score_as(chain_core, "u1", "C", 0.9)

        assert chain_core.root_gaps("C", "u1") == []

    def test_weak_root_reported_with_affected_descendants(self, chain_core):
        score_as(chain_core, "u1", "A", 0.25)
        score_as(chain_core, "u1", "B", 0.8)
        score_as(chain_core, "u1", "C", 0.25)

        gaps = chain_core.root_gaps("C", "u1")

        assert [g.concept_id for g in gaps] == ["A"]
        gap = gaps[0]
        assert gap.understanding_score == 0.25
        assert gap.affected_concepts == {"B", "C"}
        assert gap.centrality_score == 2
        assert gap.normalized_centrality == 1.0
        assert gap.priority == pytest.approx(0.75 * 0.5 + 1.0 * 0.5)

    def test_understood_concept_with_weak_root_returns_no_gaps(self, chain_core):
        # A is weak, but C itself is understood, so no search runs
        score_as(chain_core, "u1", "A", 0.3)
        score_as(chain_core, "u1", "B", 0.9)
        score_as(chain_core, "u1", "C", 0.9)

        assert chain_core.root_gaps("C", "u1") == []
        assert chain_core.current_score("u1", "A") < 0.5

    def test_concept_itself_is_not_a_gap(self, chain_core):
        score_as(chain_core, "u1", "C", 0.1)
        assert chain_core.root_gaps("C", "u1") == []

    def test_unassessed_prerequisites_are_not_gaps(self, chain_core):
        score_as(chain_core, "u1", "C", 0.25)
        assert chain_core.root_gaps("C", "u1") == []

    def test_unassessed_concept_triggers_search(self, chain_core):
        score_as(chain_core, "u1", "A", 0.25)
        assert [g.concept_id for g in chain_core.root_gaps("C", "u1")] == ["A"]

    def test_ranked_by_priority(self, core):
        # R -> X -> T, R -> Y, Y -> T
        for cid in ["R", "X", "Y", "T"]:
            core.add_concept(ConceptNode(id=cid))
        for a, b in [("R", "X"), ("R", "Y"), ("X", "T"), ("Y", "T")]:
            core.add_edge(a, b)
        score_as(core, "u1", "R", 0.25)
        score_as(core, "u1", "X", 0.25)
        score_as(core, "u1", "Y", 0.0)
        score_as(core, "u1", "T", 0.25)

        gaps = core.root_gaps("T", "u1")

        # R: 0.75*0.5 + 1.0*0.5 = 0.875, Y: 1.0*0.5 + (1/3)*0.5, X: 0.75*0.5 + (1/3)*0.5
        assert [g.concept_id for g in gaps] == ["R", "Y", "X"]
        assert gaps[0].affected_concepts == {"X", "Y", "T"}

    def test_equal_priority_breaks_on_id(self, core):
        for cid in ["P2", "P1", "T"]:
            core.add_concept(ConceptNode(id=cid))
        core.add_edge("P2", "T")
        core.add_edge("P1", "T")
        for cid in ["P1", "P2", "T"]:
            score_as(core, "u1", cid, 0.25)

        gaps = core.root_gaps("T", "u1")

        assert [g.concept_id for g in gaps] == ["P1", "P2"]
        assert gaps[0].priority == gaps[1].priority

    def test_unknown_concept(self, core):
        with pytest.raises(UnknownConcept):
            core.root_gaps("missing", "u1")
