"""
Learning Path Core.

This module provides the core infrastructure for prerequisite-aware study
planning:
- Prerequisite graph (acyclic, copy-on-write snapshots)
- Exam weight calibration
- Understanding score history
- Root gap detection
- Prioritized learning paths with weekly roadmaps

Quick Start:
    from learnpath import LearningPathRepository, ConceptNode, LearningMode

    # Initialize (uses in-memory stores by default)
    core = LearningPathRepository()

    core.add_concept(ConceptNode(id="vectors", name="Vectors", complexity=2))
    core.add_concept(ConceptNode(id="matrices", name="Matrices", complexity=3))
    core.add_edge("vectors", "matrices", strength=0.9)

    core.record_session("u1", "vectors", completeness=0.4, coherence=0.5, question_accuracy=0.3)
    path = core.build_path(LearningMode.SURVIVAL, "u1", available_hours_per_week=8)

For persistence, set environment variables:
    LEARNPATH_MODE=sqlite
    LEARNPATH_DB_PATH=/var/lib/learnpath/state.db
"""

# Models
from .models import (
    ConceptNode,
    DependencyEdge,
    UnderstandingRecord,
    Misconception,
    RootGap,
    ConceptStep,
    WeekPlan,
    LearningPath,
    LearningMode,
    ModeWeights,
    MODE_WEIGHTS,
    IntegrityReport,
    ChangelogEntry,
    ChangeType,
)

# Errors
from .errors import (
    LearningPathError,
    GraphError,
    DuplicateConcept,
    UnknownConcept,
    SelfLoop,
    DuplicateEdge,
    UnknownEdge,
    CycleDetected,
    GraphIntegrityViolation,
    InvalidScoreRange,
    PersistenceError,
)

# Collaborator inputs
from .collaborators import (
    ConceptCandidate,
    EdgeCandidate,
    QuestionMapping,
    ExamPaper,
    MisconceptionInput,
    AssessmentResult,
)

# Components
from .graph_store import GraphStore, GraphSnapshot
from .exam_weights import ExamWeightCalibrator
from .scoring import (
    ScoringAggregator,
    compute_understanding_score,
    average_question_accuracy,
)
from .weakness import WeaknessAnalyzer
from .path_compiler import PathCompiler, estimate_hours, build_weekly_roadmap

# Persistence and configuration
from .persistence import SQLiteGraphRepository
from .config import Settings

# Repository (main entry point)
from .repository import LearningPathRepository


__version__ = "0.1.0"

__all__ = [
    # Models
    "ConceptNode",
    "DependencyEdge",
    "UnderstandingRecord",
    "Misconception",
    "RootGap",
    "ConceptStep",
    "WeekPlan",
    "LearningPath",
    "LearningMode",
    "ModeWeights",
    "MODE_WEIGHTS",
    "IntegrityReport",
    "ChangelogEntry",
    "ChangeType",
    # Errors
    "LearningPathError",
    "GraphError",
    "DuplicateConcept",
    "UnknownConcept",
    "SelfLoop",
    "DuplicateEdge",
    "UnknownEdge",
    "CycleDetected",
    "GraphIntegrityViolation",
    "InvalidScoreRange",
    "PersistenceError",
    # Collaborator inputs
    "ConceptCandidate",
    "EdgeCandidate",
    "QuestionMapping",
    "ExamPaper",
    "MisconceptionInput",
    "AssessmentResult",
    # Components
    "GraphStore",
    "GraphSnapshot",
    "ExamWeightCalibrator",
    "ScoringAggregator",
    "compute_understanding_score",
    "average_question_accuracy",
    "WeaknessAnalyzer",
    "PathCompiler",
    "estimate_hours",
    "build_weekly_roadmap",
    # Persistence and configuration
    "SQLiteGraphRepository",
    "Settings",
    # Repository
    "LearningPathRepository",
]
