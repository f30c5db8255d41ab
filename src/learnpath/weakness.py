"""
Root gap detection.

When a learner is weak on a concept, walk its prerequisites breadth-first
and surface every weak prerequisite as a root gap, ranked by

    priority = (1 - understanding_score) * 0.5 + normalized_centrality * 0.5

Scientific Foundation:
- Knowledge Space Theory (Doignon & Falmagne, 1999)
"""

import logging
from collections import deque

from .errors import UnknownConcept
from .graph_store import GraphStore
from .models import RootGap
from .scoring import ScoringAggregator


logger = logging.getLogger(__name__)

SEARCH_THRESHOLD = 0.6  # At or above this, no gap search is needed
ROOT_GAP_THRESHOLD = 0.5
WEAKNESS_WEIGHT = 0.5
CENTRALITY_WEIGHT = 0.5


class WeaknessAnalyzer:
    """Finds and ranks the prerequisites behind downstream weakness."""

    def __init__(self, graph: GraphStore, scoring: ScoringAggregator) -> None:
        self._graph = graph
        self._scoring = scoring

    def detect_root_gaps(self, concept_id: str, user_id: str) -> list[RootGap]:
        """
        Ranked root gaps for a concept the user is struggling with.

        Returns an empty list when the concept's current score is >= 0.6.
        Every prerequisite reachable by BFS (the concept itself excluded)
        scoring < 0.5 is a root gap; traversal continues through weak and
        strong prerequisites alike.
        """
        snapshot = self._graph.snapshot()
        if concept_id not in snapshot:
            raise UnknownConcept(concept_id)

        score = self._scoring.current_score(user_id, concept_id)
        # An understood concept ends the search, even when an ancestor is weak
        if score >= SEARCH_THRESHOLD:
            logger.debug(f"No gap search for {concept_id}: score {score:.3f} >= {SEARCH_THRESHOLD}")
            return []

        centrality = snapshot.centrality()
        normalized = snapshot.normalized_centrality()

        gaps: list[RootGap] = []
        visited = {concept_id}
        queue = deque([concept_id])
        while queue:
            current = queue.popleft()
            for prereq in sorted(snapshot.prerequisites[current]):
                if prereq in visited:
                    continue
                visited.add(prereq)
                queue.append(prereq)

                prereq_score = self._scoring.current_score(user_id, prereq)
                if prereq_score >= ROOT_GAP_THRESHOLD:
                    continue
                gaps.append(RootGap(
                    concept_id=prereq,
                    understanding_score=prereq_score,
                    affected_concepts=snapshot.descendants(prereq),
                    centrality_score=centrality[prereq],
                    normalized_centrality=normalized[prereq],
                    priority=(
                        (1.0 - prereq_score) * WEAKNESS_WEIGHT
                        + normalized[prereq] * CENTRALITY_WEIGHT
                    ),
                ))

        gaps.sort(key=lambda gap: (-gap.priority, gap.concept_id))
        logger.info(
            f"Root gaps for {concept_id} (user={user_id}): "
            f"{[gap.concept_id for gap in gaps]}"
        )
        return gaps
