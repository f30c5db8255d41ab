"""
Error taxonomy for the learning path core.

Every failure raised by this package is a local, synchronous,
recoverable-by-caller error. Nothing here is retried internally.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import IntegrityReport


class LearningPathError(Exception):
    """Base exception for learning path core operations."""
    pass


# ============================================================================
# Graph errors
# ============================================================================

class GraphError(LearningPathError):
    """Base exception for graph store operations."""
    pass


class DuplicateConcept(GraphError):
    """Raised when a concept id is already present."""

    def __init__(self, concept_id: str):
        super().__init__(f"Concept already exists: {concept_id}")
        self.concept_id = concept_id


class UnknownConcept(GraphError):
    """Raised when an operation references a concept that does not exist."""

    def __init__(self, concept_id: str):
        super().__init__(f"Concept not found: {concept_id}")
        self.concept_id = concept_id


class SelfLoop(GraphError):
    """Raised when an edge would connect a concept to itself."""

    def __init__(self, concept_id: str):
        super().__init__(f"Concept cannot be its own prerequisite: {concept_id}")
        self.concept_id = concept_id


class DuplicateEdge(GraphError):
    """Raised when an ordered prerequisite pair already exists."""

    def __init__(self, prerequisite_id: str, dependent_id: str):
        super().__init__(f"Edge already exists: {prerequisite_id} -> {dependent_id}")
        self.prerequisite_id = prerequisite_id
        self.dependent_id = dependent_id


class UnknownEdge(GraphError):
    """Raised when an edge to update or remove does not exist."""

    def __init__(self, prerequisite_id: str, dependent_id: str):
        super().__init__(f"Edge not found: {prerequisite_id} -> {dependent_id}")
        self.prerequisite_id = prerequisite_id
        self.dependent_id = dependent_id


class CycleDetected(GraphError):
    """Raised when a prerequisite edge would close a cycle."""

    def __init__(self, cycle: list[str]):
        super().__init__(f"Prerequisite cycle detected: {' -> '.join(cycle)}")
        self.cycle = cycle


class GraphIntegrityViolation(GraphError):
    """
    Raised when the graph fails structural validation.

    Carries the full integrity report when one was produced. `internal`
    is set when the failure indicates a broken invariant inside the core
    rather than bad input.
    """

    def __init__(
        self,
        message: str,
        report: "IntegrityReport | None" = None,
        internal: bool = False,
    ):
        super().__init__(message)
        self.report = report
        self.internal = internal


# ============================================================================
# Validation errors
# ============================================================================

class InvalidScoreRange(LearningPathError, ValueError):
    """Raised for a score outside [0, 1] or a complexity outside 1-5."""

    def __init__(self, field: str, value: object, expected: str = "[0, 1]"):
        super().__init__(f"{field}={value!r} is outside {expected}")
        self.field = field
        self.value = value


# ============================================================================
# Persistence errors
# ============================================================================

class PersistenceError(LearningPathError):
    """Raised when saving or loading persisted state fails."""
    pass
