"""
Learning path compilation.

Implements:
- Mode-weighted priority scores
- Priority-ordered topological sort (Kahn's algorithm with a max-heap)
- Study-time estimation
- Greedy weekly roadmap
- Drift-gated regeneration of cached paths

Priority per concept:

    priority = exam_weight * w1 + normalized_centrality * w2 + (1 - score) * w3
             (+ root bonus for zero-prerequisite concepts in Interview mode)
"""

import heapq
import logging
import threading

from .errors import GraphIntegrityViolation
from .graph_store import GraphSnapshot, GraphStore
from .models import (
    DEFAULT_MODE,
    MODE_WEIGHTS,
    ConceptStep,
    LearningMode,
    LearningPath,
    WeekPlan,
)
from .scoring import ScoringAggregator


logger = logging.getLogger(__name__)

MASTERY_THRESHOLD = 0.8
DRIFT_THRESHOLD = 2  # Max positions any concept may move before regenerating
HOURS_PER_COMPLEXITY = 2.0


def estimate_hours(complexity: int, understanding_score: float) -> float:
    """complexity * 2 * (1 + (1 - understanding_score))"""
    return complexity * HOURS_PER_COMPLEXITY * (1.0 + (1.0 - understanding_score))


def build_weekly_roadmap(steps: list[ConceptStep], hours_per_week: float) -> list[WeekPlan]:
    """
    Greedily pack steps into weeks in path order.

    A step that does not fit the remaining capacity starts a new week.
    Steps are never split; one larger than a whole week sits alone in its
    week and the week is flagged over budget. Assigns `step.week`.
    """
    if hours_per_week <= 0:
        raise ValueError(f"available_hours_per_week must be positive, got {hours_per_week}")

    weeks: list[WeekPlan] = []
    for step in steps:
        current = weeks[-1] if weeks else None
        if current is None or (
            current.concept_ids and current.hours + step.estimated_hours > hours_per_week
        ):
            current = WeekPlan(week=len(weeks) + 1)
            weeks.append(current)
        current.concept_ids.append(step.concept_id)
        current.hours += step.estimated_hours
        current.over_budget = current.hours > hours_per_week
        step.week = current.week
    return weeks


def resolve_mode(mode: LearningMode | str | None) -> LearningMode:
    """Mode for a value such as `LearningMode.RANK`, "rank" or "Rank"; None gives the default."""
    if not mode:
        return DEFAULT_MODE
    if isinstance(mode, LearningMode):
        return mode
    return LearningMode(str(mode).strip().lower())


def max_displacement(old_order: list[str], new_order: list[str]) -> int | None:
    """
    Largest position change of any concept between two orderings.

    None when the orderings do not contain the same concepts.
    """
    if len(old_order) != len(new_order) or set(old_order) != set(new_order):
        return None
    old_pos = {cid: i for i, cid in enumerate(old_order)}
    return max((abs(old_pos[cid] - i) for i, cid in enumerate(new_order)), default=0)


class PathCompiler:
    """
    Builds and caches learning paths per (user, mode).

    A cached path is reused while a fresh ordering keeps every concept
    within DRIFT_THRESHOLD positions of its cached place.
    """

    def __init__(
        self,
        graph: GraphStore,
        scoring: ScoringAggregator,
        mastery_threshold: float = MASTERY_THRESHOLD,
        drift_threshold: int = DRIFT_THRESHOLD,
    ) -> None:
        self._graph = graph
        self._scoring = scoring
        self.mastery_threshold = mastery_threshold
        self.drift_threshold = drift_threshold
        self._cache: dict[tuple[str, LearningMode], LearningPath] = {}
        self._cache_lock = threading.Lock()

    # ─────────────────────────────────────────────────────────────────────────
    # Scoring
    # ─────────────────────────────────────────────────────────────────────────

    def compute_priority_scores(
        self,
        user_id: str,
        mode: LearningMode | str | None = None,
        snapshot: GraphSnapshot | None = None,
    ) -> dict[str, float]:
        """Mode-weighted priority for every concept in the graph."""
        snapshot = snapshot or self._graph.snapshot()
        weights = MODE_WEIGHTS[resolve_mode(mode)]
        normalized = snapshot.normalized_centrality()

        priorities: dict[str, float] = {}
        for cid, node in snapshot.concepts.items():
            score = self._scoring.current_score(user_id, cid)
            priority = (
                node.exam_weight * weights.exam_weight
                + normalized[cid] * weights.centrality
                + (1.0 - score) * weights.weakness
            )
            if weights.root_bonus and not snapshot.prerequisites[cid]:
                priority += weights.root_bonus
            priorities[cid] = priority
        return priorities

    def eligible_concepts(self, user_id: str, snapshot: GraphSnapshot | None = None) -> set[str]:
        """Concepts below the mastery threshold."""
        snapshot = snapshot or self._graph.snapshot()
        return {
            cid for cid in snapshot.concepts
            if self._scoring.current_score(user_id, cid) < self.mastery_threshold
        }

    # ─────────────────────────────────────────────────────────────────────────
    # Ordering
    # ─────────────────────────────────────────────────────────────────────────

    def _check_integrity(self, snapshot: GraphSnapshot) -> None:
        report = snapshot.validate_integrity()
        if not report.ok:
            logger.warning(f"Refusing path generation on v{snapshot.version}: {report.describe()}")
            raise GraphIntegrityViolation(
                f"Graph failed integrity validation: {report.describe()}",
                report=report,
            )

    def generate_optimal_path(
        self,
        user_id: str,
        mode: LearningMode | str | None = None,
        snapshot: GraphSnapshot | None = None,
    ) -> list[str]:
        """
        Topologically valid order of eligible concepts, highest priority first.

        Seeds a max-priority heap with eligible concepts whose eligible
        prerequisites are all done (mastered prerequisites count as done),
        pops the best, and releases its dependents as their in-degree
        reaches zero. Ties break on ascending concept id.
        """
        snapshot = snapshot or self._graph.snapshot()
        self._check_integrity(snapshot)

        eligible = self.eligible_concepts(user_id, snapshot)
        priorities = self.compute_priority_scores(user_id, mode, snapshot)

        in_degree = {
            cid: sum(1 for p in snapshot.prerequisites[cid] if p in eligible)
            for cid in eligible
        }
        heap = [(-priorities[cid], cid) for cid, deg in in_degree.items() if deg == 0]
        heapq.heapify(heap)

        order: list[str] = []
        while heap:
            _, cid = heapq.heappop(heap)
            order.append(cid)
            for dependent in snapshot.dependents[cid]:
                if dependent not in in_degree:
                    continue
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    heapq.heappush(heap, (-priorities[dependent], dependent))

        if len(order) != len(eligible):
            raise GraphIntegrityViolation(
                f"Ordered {len(order)} of {len(eligible)} eligible concepts; "
                "graph contains a cycle despite constructive rejection",
                report=snapshot.validate_integrity(),
                internal=True,
            )
        return order

    # ─────────────────────────────────────────────────────────────────────────
    # Path building
    # ─────────────────────────────────────────────────────────────────────────

    def build_path(
        self,
        mode: LearningMode | str | None,
        user_id: str,
        available_hours_per_week: float,
    ) -> LearningPath:
        """
        Return the learning path for a user and mode.

        Raises GraphIntegrityViolation (no partial path) if the graph fails
        validation. Reuses the cached path unless the fresh ordering drifts
        by more than `drift_threshold` positions, the concept set or weekly
        capacity changed, or the cached order is no longer topologically
        valid.
        """
        mode = resolve_mode(mode)
        if available_hours_per_week <= 0:
            raise ValueError(
                f"available_hours_per_week must be positive, got {available_hours_per_week}"
            )
        snapshot = self._graph.snapshot()
        order = self.generate_optimal_path(user_id, mode, snapshot)

        key = (user_id, mode)
        with self._cache_lock:
            cached = self._cache.get(key)
        if cached is not None and self._can_reuse(cached, order, available_hours_per_week, snapshot):
            logger.debug(f"Reusing cached path for user={user_id} mode={mode.value}")
            return cached

        path = self._assemble(user_id, mode, order, available_hours_per_week, snapshot)
        with self._cache_lock:
            self._cache[key] = path
        logger.info(
            f"Generated path for user={user_id} mode={mode.value}: "
            f"{len(path.steps)} concept(s), {path.total_estimated_hours:.1f}h, "
            f"{len(path.weekly_roadmap)} week(s)"
        )
        return path

    def _can_reuse(
        self,
        cached: LearningPath,
        order: list[str],
        hours_per_week: float,
        snapshot: GraphSnapshot,
    ) -> bool:
        if cached.available_hours_per_week != hours_per_week:
            return False
        drift = max_displacement(cached.order, order)
        if drift is None or drift > self.drift_threshold:
            return False
        return all(cid in snapshot for cid in cached.order) and snapshot.is_topological(cached.order)

    def _assemble(
        self,
        user_id: str,
        mode: LearningMode,
        order: list[str],
        hours_per_week: float,
        snapshot: GraphSnapshot,
    ) -> LearningPath:
        priorities = self.compute_priority_scores(user_id, mode, snapshot)
        levels = snapshot.level_index()

        steps = []
        for position, cid in enumerate(order):
            score = self._scoring.current_score(user_id, cid)
            steps.append(ConceptStep(
                concept_id=cid,
                position=position,
                level=levels[cid],
                priority=priorities[cid],
                understanding_score=score,
                estimated_hours=estimate_hours(snapshot.concepts[cid].complexity, score),
            ))

        roadmap = build_weekly_roadmap(steps, hours_per_week)
        return LearningPath(
            user_id=user_id,
            mode=mode,
            steps=steps,
            total_estimated_hours=sum(step.estimated_hours for step in steps),
            weekly_roadmap=roadmap,
            available_hours_per_week=hours_per_week,
            graph_version=snapshot.version,
        )

    def cached_path(self, user_id: str, mode: LearningMode | str | None = None) -> LearningPath | None:
        with self._cache_lock:
            return self._cache.get((user_id, resolve_mode(mode)))

    def invalidate(self, user_id: str | None = None) -> None:
        """Drop cached paths for one user, or for everyone."""
        with self._cache_lock:
            if user_id is None:
                self._cache.clear()
            else:
                for key in [k for k in self._cache if k[0] == user_id]:
                    del self._cache[key]
