"""
Exam weight calibration.

Derives per-concept importance from past exam papers:

    weighted_total(c) = sum over papers p of marks(p, c) * decay ** (year_now - year(p))
    weight(c)         = weighted_total(c) / max over c' of weighted_total(c')

Recent papers dominate. With no papers every concept gets 1 / N.
Manual overrides are sticky: they replace the computed weight on every
recalculation until explicitly cleared.
"""

import logging
import threading
from collections import defaultdict
from datetime import date
from typing import Iterable, Mapping

from .collaborators import ExamPaper
from .errors import InvalidScoreRange, UnknownConcept
from .models import check_unit_interval


logger = logging.getLogger(__name__)

DEFAULT_DECAY = 0.8


class ExamWeightCalibrator:
    """
    Pure weighting over externally resolved question marks,
    plus the sticky manual override set.
    """

    def __init__(self, decay: float = DEFAULT_DECAY, current_year: int | None = None) -> None:
        if not 0.0 < decay < 1.0:
            raise ValueError(f"decay must be in (0, 1), got {decay}")
        self.decay = decay
        self._current_year = current_year
        self._overrides: dict[str, float] = {}
        self._lock = threading.RLock()

    @property
    def current_year(self) -> int:
        return self._current_year if self._current_year is not None else date.today().year

    @property
    def overrides(self) -> dict[str, float]:
        """Active manual overrides."""
        with self._lock:
            return dict(self._overrides)

    def set_override(self, concept_id: str, weight: float) -> None:
        with self._lock:
            self._overrides[concept_id] = check_unit_interval(f"override[{concept_id}]", weight)
        logger.info(f"Exam weight override set: {concept_id} = {weight}")

    def clear_override(self, concept_id: str) -> bool:
        """Drop a manual override. Returns False if none was active."""
        with self._lock:
            removed = self._overrides.pop(concept_id, None) is not None
        if removed:
            logger.info(f"Exam weight override cleared: {concept_id}")
        return removed

    def recency_factor(self, paper_year: int) -> float:
        """decay ** age, with future-dated papers treated as current."""
        age = max(0, self.current_year - paper_year)
        return self.decay ** age

    def weighted_totals(
        self,
        concept_ids: Iterable[str],
        papers: Iterable[ExamPaper],
    ) -> dict[str, float]:
        """Recency-weighted marks per concept (0.0 for concepts never examined)."""
        known = set(concept_ids)
        totals: dict[str, float] = {cid: 0.0 for cid in known}
        for paper in papers:
            per_paper: dict[str, float] = defaultdict(float)
            for question in paper.questions:
                if question.concept_id not in known:
                    raise UnknownConcept(question.concept_id)
                if question.marks < 0:
                    raise InvalidScoreRange("marks", question.marks, ">= 0")
                per_paper[question.concept_id] += question.marks
            factor = self.recency_factor(paper.year)
            for cid, marks in per_paper.items():
                totals[cid] += marks * factor
        return totals

    def recalculate(
        self,
        concept_ids: Iterable[str],
        papers: Iterable[ExamPaper] = (),
        overrides: Mapping[str, float] | None = None,
    ) -> dict[str, float]:
        """
        Compute the weight map for `concept_ids`.

        New `overrides` are validated and merged into the sticky set before
        the map is built; overrides for concepts outside `concept_ids` raise
        UnknownConcept and leave the sticky set unchanged.
        """
        concept_ids = sorted(set(concept_ids))
        papers = list(papers)
        known = set(concept_ids)

        staged: dict[str, float] = {}
        for cid, value in (overrides or {}).items():
            if cid not in known:
                raise UnknownConcept(cid)
            staged[cid] = check_unit_interval(f"override[{cid}]", value)

        if not concept_ids:
            return {}

        totals = self.weighted_totals(concept_ids, papers)
        top = max(totals.values(), default=0.0)
        if not papers or top <= 0.0:
            uniform = 1.0 / len(concept_ids)
            weights = {cid: uniform for cid in concept_ids}
            logger.info(f"No usable exam papers; uniform weight {uniform:.4f} for {len(concept_ids)} concept(s)")
        else:
            weights = {cid: totals[cid] / top for cid in concept_ids}
            logger.info(f"Calibrated exam weights from {len(papers)} paper(s)")

        with self._lock:
            self._overrides.update(staged)
            for cid, value in self._overrides.items():
                if cid in weights:
                    weights[cid] = value
        return weights
