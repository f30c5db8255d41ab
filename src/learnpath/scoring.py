"""
Understanding score aggregation.

Turns per-session assessment signals into an UnderstandingRecord:

    score = completeness * 0.4 + question_accuracy * 0.4 + coherence * 0.2

and records which direct prerequisites were weak (< 0.5) at the time.
History is append-only; the current score for a (user, concept) pair is
the most recent record by timestamp.
"""

import logging
import threading
from datetime import datetime
from typing import Any, Callable, Iterable

from .collaborators import MisconceptionInput
from .errors import InvalidScoreRange, UnknownConcept
from .graph_store import GraphStore
from .models import Misconception, UnderstandingRecord, check_unit_interval, utcnow


logger = logging.getLogger(__name__)

COMPLETENESS_WEIGHT = 0.4
QUESTION_ACCURACY_WEIGHT = 0.4
COHERENCE_WEIGHT = 0.2

GAP_THRESHOLD = 0.5
UNASSESSED_SCORE = 0.5  # Neutral prior for concepts with no record

RecordKey = tuple[str, str]


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def compute_understanding_score(
    completeness: float,
    question_accuracy: float,
    coherence: float,
) -> float:
    """Weighted combination of the three signals, each clamped to [0, 1]."""
    return (
        _clamp(completeness) * COMPLETENESS_WEIGHT
        + _clamp(question_accuracy) * QUESTION_ACCURACY_WEIGHT
        + _clamp(coherence) * COHERENCE_WEIGHT
    )


def average_question_accuracy(evaluations: Iterable[float]) -> float:
    """Mean accuracy across a session's adversarial question evaluations."""
    values = [
        check_unit_interval(f"evaluation[{i}]", value)
        for i, value in enumerate(evaluations)
    ]
    if not values:
        raise InvalidScoreRange("evaluations", [], "a non-empty list")
    return sum(values) / len(values)


def _to_misconception(item: Any) -> Misconception:
    if isinstance(item, Misconception):
        return item
    if isinstance(item, MisconceptionInput):
        return item.to_misconception()
    if isinstance(item, dict):
        return Misconception.from_dict(item)
    raise TypeError(f"Unsupported misconception value: {item!r}")


class ScoringAggregator:
    """
    Owner of the UnderstandingRecord history.

    Appends are serialized; `sequence` numbers increase monotonically and
    break ties between records sharing a timestamp.
    """

    def __init__(
        self,
        graph: GraphStore,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._graph = graph
        self._clock = clock
        self._lock = threading.RLock()
        self._records: list[UnderstandingRecord] = []
        self._latest: dict[RecordKey, UnderstandingRecord] = {}
        self._next_sequence = 1

    # ─────────────────────────────────────────────────────────────────────────
    # Recording
    # ─────────────────────────────────────────────────────────────────────────

    def record_session(
        self,
        user_id: str,
        concept_id: str,
        completeness: float,
        coherence: float,
        question_accuracy: float,
        misconceptions: Iterable[Any] = (),
        timestamp: datetime | None = None,
    ) -> UnderstandingRecord:
        """
        Score one session and append the resulting record.

        Raises InvalidScoreRange for any signal outside [0, 1] and
        UnknownConcept if the concept is not in the graph.
        """
        check_unit_interval("completeness", completeness)
        check_unit_interval("coherence", coherence)
        check_unit_interval("question_accuracy", question_accuracy)
        parsed = tuple(_to_misconception(m) for m in misconceptions)

        with self._lock:
            snapshot = self._graph.snapshot()
            if concept_id not in snapshot:
                raise UnknownConcept(concept_id)

            gaps = frozenset(
                prereq for prereq in snapshot.prerequisites[concept_id]
                if self.current_score(user_id, prereq) < GAP_THRESHOLD
            )
            record = UnderstandingRecord(
                user_id=user_id,
                concept_id=concept_id,
                completeness=float(completeness),
                coherence=float(coherence),
                question_accuracy=float(question_accuracy),
                score=compute_understanding_score(completeness, question_accuracy, coherence),
                misconceptions=parsed,
                prerequisite_gaps=gaps,
                timestamp=timestamp or self._clock(),
                sequence=self._next_sequence,
            )
            self._append(record)

        logger.info(
            f"Recorded session: user={user_id} concept={concept_id} "
            f"score={record.score:.3f} gaps={sorted(gaps)}"
        )
        return record

    def _append(self, record: UnderstandingRecord) -> None:
        """Caller must hold the lock."""
        self._records.append(record)
        self._next_sequence = max(self._next_sequence, record.sequence) + 1
        key = (record.user_id, record.concept_id)
        latest = self._latest.get(key)
        if latest is None or (record.timestamp, record.sequence) >= (latest.timestamp, latest.sequence):
            self._latest[key] = record

    def import_records(self, records: Iterable[UnderstandingRecord], replace: bool = False) -> int:
        """
        Load previously persisted records, preserving their sequence numbers.

        Returns the number of records imported.
        """
        records = sorted(records, key=lambda r: r.sequence)
        with self._lock:
            if replace:
                self._records = []
                self._latest = {}
                self._next_sequence = 1
            for record in records:
                self._append(record)
        logger.info(f"Imported {len(records)} understanding record(s)")
        return len(records)

    def purge_concept(self, concept_id: str) -> int:
        """Delete all history for a concept (cascade from concept removal)."""
        with self._lock:
            before = len(self._records)
            self._records = [r for r in self._records if r.concept_id != concept_id]
            self._latest = {
                key: record for key, record in self._latest.items()
                if key[1] != concept_id
            }
            removed = before - len(self._records)
        if removed:
            logger.info(f"Purged {removed} record(s) for deleted concept {concept_id}")
        return removed

    # ─────────────────────────────────────────────────────────────────────────
    # Lookups
    # ─────────────────────────────────────────────────────────────────────────

    def current_record(self, user_id: str, concept_id: str) -> UnderstandingRecord | None:
        """Most recent record by timestamp for the pair, if any."""
        return self._latest.get((user_id, concept_id))

    def current_score(
        self,
        user_id: str,
        concept_id: str,
        default: float = UNASSESSED_SCORE,
    ) -> float:
        record = self._latest.get((user_id, concept_id))
        return record.score if record is not None else default

    def current_scores(self, user_id: str) -> dict[str, float]:
        """Current scores for every concept the user has been assessed on."""
        with self._lock:
            return {
                concept_id: record.score
                for (uid, concept_id), record in self._latest.items()
                if uid == user_id
            }

    def history(self, user_id: str, concept_id: str | None = None) -> list[UnderstandingRecord]:
        """A user's records in timestamp order (append order breaks ties)."""
        with self._lock:
            records = [
                r for r in self._records
                if r.user_id == user_id and (concept_id is None or r.concept_id == concept_id)
            ]
        return sorted(records, key=lambda r: (r.timestamp, r.sequence))

    def all_records(self) -> list[UnderstandingRecord]:
        """Full history in append order."""
        with self._lock:
            return list(self._records)
