"""
Unified repository interface for the learning path core.

Provides a single facade for:
- Graph mutation and queries
- Exam weight recalibration
- Session scoring
- Root gap detection
- Learning path generation
- Save / reload through SQLite

This is the main entry point for persistence and API layers.
"""

import logging
import threading
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping

from .collaborators import AssessmentResult, ConceptCandidate, EdgeCandidate, ExamPaper
from .config import Settings
from .errors import PersistenceError
from .exam_weights import ExamWeightCalibrator
from .graph_store import GraphStore
from .models import (
    ConceptNode,
    DependencyEdge,
    IntegrityReport,
    LearningMode,
    LearningPath,
    RootGap,
    UnderstandingRecord,
    utcnow,
)
from .path_compiler import PathCompiler
from .persistence import SQLiteGraphRepository
from .scoring import ScoringAggregator
from .weakness import WeaknessAnalyzer


logger = logging.getLogger(__name__)


class LearningPathRepository:
    """
    Learning path core facade.

    Coordinates:
    - GraphStore (prerequisite DAG)
    - ExamWeightCalibrator (exam importance)
    - ScoringAggregator (understanding history)
    - WeaknessAnalyzer (root gaps)
    - PathCompiler (study order and roadmap)

    Configuration via environment variables (see `learnpath.config`):
    - LEARNPATH_MODE: 'memory' for testing, 'sqlite' for a persistent file
    - LEARNPATH_DB_PATH, LEARNPATH_EXAM_DECAY, LEARNPATH_DEFAULT_HOURS_PER_WEEK
    """

    def __init__(
        self,
        graph: GraphStore | None = None,
        storage: SQLiteGraphRepository | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
        current_year: int | None = None,
    ) -> None:
        """
        Initialize the repository.

        Args:
            graph: Override the graph store
            storage: Override the persistence backend
            settings: Override environment configuration
            clock: Timestamp source for new records
            current_year: Reference year for exam recency weighting
        """
        self._settings = settings or Settings.from_env()

        if storage is None and self._settings.mode == "sqlite":
            storage = SQLiteGraphRepository(self._settings.db_path)
        self._storage = storage

        self._graph = graph or GraphStore()
        self._calibrator = ExamWeightCalibrator(
            decay=self._settings.exam_decay,
            current_year=current_year,
        )
        self._scoring = ScoringAggregator(self._graph, clock=clock)
        self._analyzer = WeaknessAnalyzer(self._graph, self._scoring)
        self._compiler = PathCompiler(self._graph, self._scoring)

        # Serializes mutations that span more than one component
        self._lock = threading.RLock()

        logger.info(f"LearningPathRepository initialized in '{self._settings.mode}' mode")

    @property
    def graph(self) -> GraphStore:
        return self._graph

    @property
    def scoring(self) -> ScoringAggregator:
        return self._scoring

    @property
    def calibrator(self) -> ExamWeightCalibrator:
        return self._calibrator

    @property
    def compiler(self) -> PathCompiler:
        return self._compiler

    @property
    def storage(self) -> SQLiteGraphRepository | None:
        return self._storage

    # ─────────────────────────────────────────────────────────────────────────
    # Graph Operations
    # ─────────────────────────────────────────────────────────────────────────

    def add_concept(self, node: ConceptNode) -> ConceptNode:
        return self._graph.add_concept(node)

    def add_edge(self, prerequisite_id: str, dependent_id: str, strength: float = 1.0) -> DependencyEdge:
        return self._graph.add_edge(prerequisite_id, dependent_id, strength)

    def remove_edge(self, prerequisite_id: str, dependent_id: str) -> DependencyEdge:
        return self._graph.remove_edge(prerequisite_id, dependent_id)

    def update_edge_strength(self, prerequisite_id: str, dependent_id: str, strength: float) -> DependencyEdge:
        return self._graph.update_edge_strength(prerequisite_id, dependent_id, strength)

    def remove_concept(self, concept_id: str) -> dict[str, Any]:
        """
        Delete a concept with full cascade: edges, score history and any
        sticky exam weight override.
        """
        with self._lock:
            removed_edges = self._graph.remove_concept(concept_id)
            removed_records = self._scoring.purge_concept(concept_id)
            self._calibrator.clear_override(concept_id)
        return {
            "concept_id": concept_id,
            "removed_edges": removed_edges,
            "removed_records": removed_records,
        }

    def ingest_candidates(
        self,
        concepts: Iterable[ConceptCandidate],
        edges: Iterable[EdgeCandidate] = (),
    ) -> int:
        """Load text-analysis output. Returns the new graph version."""
        return self._graph.ingest_candidates(concepts, edges).version

    def validate_integrity(self) -> IntegrityReport:
        return self._graph.validate_integrity()

    def topological_levels(self) -> list[list[str]]:
        return self._graph.topological_levels()

    def compute_centrality(self) -> dict[str, int]:
        return self._graph.compute_centrality()

    # ─────────────────────────────────────────────────────────────────────────
    # Exam Weights
    # ─────────────────────────────────────────────────────────────────────────

    def recalculate_weights(
        self,
        papers: Iterable[ExamPaper] = (),
        overrides: Mapping[str, float] | None = None,
    ) -> dict[str, float]:
        """Recalibrate exam weights and write them onto the graph."""
        with self._lock:
            concept_ids = [node.id for node in self._graph.all_concepts()]
            weights = self._calibrator.recalculate(concept_ids, papers, overrides)
            self._graph.update_exam_weights(weights)
        return weights

    def clear_weight_override(self, concept_id: str) -> bool:
        return self._calibrator.clear_override(concept_id)

    # ─────────────────────────────────────────────────────────────────────────
    # Scoring
    # ─────────────────────────────────────────────────────────────────────────

    def record_session(
        self,
        user_id: str,
        concept_id: str,
        completeness: float,
        coherence: float,
        question_accuracy: float,
        misconceptions: Iterable[Any] = (),
    ) -> UnderstandingRecord:
        with self._lock:
            return self._scoring.record_session(
                user_id, concept_id, completeness, coherence, question_accuracy, misconceptions,
            )

    def record_assessment(
        self,
        user_id: str,
        concept_id: str,
        assessment: AssessmentResult,
    ) -> UnderstandingRecord:
        """Record a session straight from the assessment collaborator's output."""
        return self.record_session(
            user_id,
            concept_id,
            assessment.completeness,
            assessment.coherence,
            assessment.question_accuracy,
            assessment.misconceptions,
        )

    def current_score(self, user_id: str, concept_id: str) -> float:
        return self._scoring.current_score(user_id, concept_id)

    def history(self, user_id: str, concept_id: str | None = None) -> list[UnderstandingRecord]:
        return self._scoring.history(user_id, concept_id)

    # ─────────────────────────────────────────────────────────────────────────
    # Analysis and Paths
    # ─────────────────────────────────────────────────────────────────────────

    def root_gaps(self, concept_id: str, user_id: str) -> list[RootGap]:
        return self._analyzer.detect_root_gaps(concept_id, user_id)

    def build_path(
        self,
        mode: LearningMode | str | None,
        user_id: str,
        available_hours_per_week: float | None = None,
    ) -> LearningPath:
        """Learning path, or GraphIntegrityViolation if the graph is unsound."""
        hours = available_hours_per_week
        if hours is None:
            hours = self._settings.default_hours_per_week
        return self._compiler.build_path(mode, user_id, hours)

    # ─────────────────────────────────────────────────────────────────────────
    # Persistence
    # ─────────────────────────────────────────────────────────────────────────

    def _require_storage(self) -> SQLiteGraphRepository:
        if self._storage is None:
            raise PersistenceError("No storage configured. Set LEARNPATH_MODE=sqlite or pass storage.")
        return self._storage

    def save(self) -> None:
        """Write graph, score history and overrides to storage."""
        storage = self._require_storage()
        with self._lock:
            storage.save_state(
                self._graph.all_concepts(),
                self._graph.all_edges(),
                self._scoring.all_records(),
                self._calibrator.overrides,
            )

    def load(self) -> None:
        """Replace in-memory state with the stored state."""
        storage = self._require_storage()
        nodes, edges = storage.load_graph()
        records = storage.load_records()
        overrides = storage.load_overrides()
        with self._lock:
            self._graph.import_graph(nodes, edges, replace_existing=True)
            self._scoring.import_records(records, replace=True)
            for concept_id in list(self._calibrator.overrides):
                self._calibrator.clear_override(concept_id)
            for concept_id, weight in overrides.items():
                self._calibrator.set_override(concept_id, weight)
            self._compiler.invalidate()
        logger.info(f"Loaded {len(nodes)} concept(s), {len(edges)} edge(s), {len(records)} record(s)")
