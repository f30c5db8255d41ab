"""
Learning path domain models.

Scientific Foundation:
- Knowledge Space Theory (Doignon & Falmagne, 1999)
- Mastery Learning (Bloom, 1968)
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from .errors import InvalidScoreRange


MIN_COMPLEXITY = 1
MAX_COMPLEXITY = 5


def utcnow() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(timezone.utc)


def check_unit_interval(name: str, value: float) -> float:
    """Reject values outside [0, 1] (NaN included)."""
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        raise InvalidScoreRange(name, value)
    if math.isnan(value) or value < 0.0 or value > 1.0:
        raise InvalidScoreRange(name, value)
    return float(value)


def check_complexity(value: int) -> int:
    """Reject complexities outside 1-5."""
    if (
        not isinstance(value, int)
        or isinstance(value, bool)
        or not MIN_COMPLEXITY <= value <= MAX_COMPLEXITY
    ):
        raise InvalidScoreRange("complexity", value, f"{MIN_COMPLEXITY}-{MAX_COMPLEXITY}")
    return value


class LearningMode(str, Enum):
    """Study strategy selecting the priority weighting."""
    SURVIVAL = "survival"    # Pass the exam
    RANK = "rank"            # Top the exam
    INTERVIEW = "interview"  # Deep understanding


@dataclass(frozen=True)
class ModeWeights:
    """Priority weight triple for one learning mode."""
    exam_weight: float
    centrality: float
    weakness: float
    root_bonus: float = 0.0

    @property
    def triple(self) -> tuple[float, float, float]:
        return (self.exam_weight, self.centrality, self.weakness)


MODE_WEIGHTS: dict[LearningMode, ModeWeights] = {
    LearningMode.SURVIVAL: ModeWeights(0.7, 0.2, 0.1),
    LearningMode.RANK: ModeWeights(0.3, 0.5, 0.2),
    LearningMode.INTERVIEW: ModeWeights(0.2, 0.3, 0.5, root_bonus=0.1),
}

DEFAULT_MODE = LearningMode.RANK


class ChangeType(str, Enum):
    """Graph mutation kinds recorded in the changelog."""
    NODE_CREATED = "NODE_CREATED"
    NODE_DELETED = "NODE_DELETED"
    EDGE_CREATED = "EDGE_CREATED"
    EDGE_DELETED = "EDGE_DELETED"
    EDGE_UPDATED = "EDGE_UPDATED"
    PROPERTY_UPDATE = "PROPERTY_UPDATE"
    BULK_IMPORT = "BULK_IMPORT"


@dataclass(frozen=True)
class ConceptNode:
    """
    A concept node in the prerequisite graph.

    Adjacency lives in the graph store's index mappings, and centrality
    lives in a derived lookup; the node only carries its own attributes.
    """
    id: str
    name: str = ""
    description: str = ""
    exam_weight: float = 0.0  # 0.0 to 1.0
    complexity: int = 3       # 1 to 5

    def __post_init__(self) -> None:
        check_unit_interval("exam_weight", self.exam_weight)
        check_complexity(self.complexity)


@dataclass(frozen=True)
class DependencyEdge:
    """A prerequisite edge: `prerequisite_id` must be learned before `dependent_id`."""
    prerequisite_id: str
    dependent_id: str
    strength: float = 1.0  # 0.0 to 1.0

    def __post_init__(self) -> None:
        check_unit_interval("strength", self.strength)

    @property
    def key(self) -> tuple[str, str]:
        return (self.prerequisite_id, self.dependent_id)


@dataclass(frozen=True)
class Misconception:
    """A misconception reported by the assessment collaborator."""
    description: str
    severity: str = "medium"
    related_concept: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "description": self.description,
            "severity": self.severity,
            "related_concept": self.related_concept,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Misconception":
        return cls(
            description=data["description"],
            severity=data.get("severity", "medium"),
            related_concept=data.get("related_concept"),
        )


@dataclass(frozen=True)
class UnderstandingRecord:
    """
    One scored session for a (user, concept) pair.

    Records are append-only; the latest by timestamp is the current score.
    `sequence` is the append order and breaks timestamp ties.
    """
    user_id: str
    concept_id: str
    completeness: float
    coherence: float
    question_accuracy: float
    score: float
    misconceptions: tuple[Misconception, ...] = ()
    prerequisite_gaps: frozenset[str] = frozenset()
    timestamp: datetime = field(default_factory=utcnow)
    sequence: int = 0


@dataclass
class RootGap:
    """A weak prerequisite behind downstream weakness."""
    concept_id: str
    understanding_score: float
    affected_concepts: set[str] = field(default_factory=set)
    centrality_score: int = 0
    normalized_centrality: float = 0.0
    priority: float = 0.0


@dataclass
class IntegrityReport:
    """Result of a structural validation pass."""
    is_acyclic: bool = True
    cycle: list[str] = field(default_factory=list)
    isolated: set[str] = field(default_factory=set)
    unreachable: set[str] = field(default_factory=set)

    @property
    def ok(self) -> bool:
        return self.is_acyclic and not self.isolated and not self.unreachable

    def describe(self) -> str:
        """Human-readable summary of the problems found."""
        problems = []
        if not self.is_acyclic:
            problems.append(f"cycle: {' -> '.join(self.cycle)}")
        if self.isolated:
            problems.append(f"isolated: {sorted(self.isolated)}")
        if self.unreachable:
            problems.append(f"unreachable: {sorted(self.unreachable)}")
        return "; ".join(problems) or "ok"


@dataclass
class ConceptStep:
    """One concept in a learning path."""
    concept_id: str
    position: int
    level: int
    priority: float
    understanding_score: float
    estimated_hours: float
    week: int = 0


@dataclass
class WeekPlan:
    """Concepts scheduled for one study week."""
    week: int
    concept_ids: list[str] = field(default_factory=list)
    hours: float = 0.0
    over_budget: bool = False


@dataclass
class LearningPath:
    """A prioritized, topologically valid study plan."""
    user_id: str
    mode: LearningMode
    steps: list[ConceptStep] = field(default_factory=list)
    total_estimated_hours: float = 0.0
    weekly_roadmap: list[WeekPlan] = field(default_factory=list)
    available_hours_per_week: float = 0.0
    graph_version: int = 0
    generated_at: datetime = field(default_factory=utcnow)

    @property
    def order(self) -> list[str]:
        return [step.concept_id for step in self.steps]


@dataclass
class ChangelogEntry:
    """
    A changelog entry for tracking graph modifications.

    Supports audit trails of every accepted mutation.
    """
    timestamp: datetime
    event_type: ChangeType
    entity_id: str
    graph_version: int
    details: dict[str, Any] = field(default_factory=dict)
    # e.g., {"field": "exam_weight", "old_value": 0.50, "new_value": 0.62}
