"""
Pytest configuration for learning path core tests.

Provides shared fixtures for unit tests and BDD step definitions.
"""

import pytest
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from learnpath import (
    ConceptNode,
    GraphStore,
    LearningPathRepository,
    ScoringAggregator,
    Settings,
)


class FakeClock:
    """Deterministic clock advancing one second per call."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


def score_as(core, user_id: str, concept_id: str, score: float):
    """Record a session whose three signals all equal `score`."""
    return core.record_session(user_id, concept_id, score, score, score)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def graph():
    """Fresh in-memory concept graph for each test."""
    return GraphStore()


@pytest.fixture
def scoring(graph, clock):
    return ScoringAggregator(graph, clock=clock)


@pytest.fixture
def core(clock):
    """Learning path core with in-memory backends."""
    return LearningPathRepository(settings=Settings(), clock=clock, current_year=2024)


@pytest.fixture
def chain_core(core):
    """Core holding the chain A -> B -> C."""
    for cid in ["A", "B", "C"]:
        core.add_concept(ConceptNode(id=cid, name=f"Concept {cid}", complexity=2))
    core.add_edge("A", "B", 0.9)
    core.add_edge("B", "C", 0.5)
    return core


@pytest.fixture
def fan_core(core):
    """Core holding root R with six dependents c1..c6."""
    core.add_concept(ConceptNode(id="R", name="Root", complexity=1))
    for i in range(1, 7):
        core.add_concept(ConceptNode(id=f"c{i}", name=f"Leaf {i}", complexity=2))
        core.add_edge("R", f"c{i}")
    return core
