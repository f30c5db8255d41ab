"""
Input shapes produced by external collaborators.

The text-analysis service yields concept candidates, edge candidates and
exam-question mappings; the understanding-assessment service yields
per-session scores and misconceptions. These are storage-agnostic
Pydantic models; the core only consumes their values.
"""

from typing import List, Optional

from pydantic import BaseModel, Field

from .models import ConceptNode, DependencyEdge, Misconception


class ConceptCandidate(BaseModel):
    """A concept extracted from course material."""

    id: str = Field(..., min_length=1, description="Stable concept identifier")
    name: str = ""
    description: str = ""
    complexity: int = Field(default=3, ge=1, le=5)
    exam_weight: float = Field(default=0.0, ge=0.0, le=1.0)

    model_config = {"from_attributes": True}

    def to_node(self) -> ConceptNode:
        return ConceptNode(
            id=self.id,
            name=self.name or self.id,
            description=self.description,
            exam_weight=self.exam_weight,
            complexity=self.complexity,
        )


class EdgeCandidate(BaseModel):
    """A prerequisite relationship extracted from course material."""

    prerequisite_id: str = Field(..., description="Concept learned first")
    dependent_id: str = Field(..., description="Concept that requires the prerequisite")
    strength: float = Field(default=1.0, ge=0.0, le=1.0)

    model_config = {"from_attributes": True}

    def to_edge(self) -> DependencyEdge:
        return DependencyEdge(
            prerequisite_id=self.prerequisite_id,
            dependent_id=self.dependent_id,
            strength=self.strength,
        )


class QuestionMapping(BaseModel):
    """Marks of one exam question attributed to a concept."""

    concept_id: str
    marks: float = Field(..., description="Marks carried by the question")


class ExamPaper(BaseModel):
    """One past exam paper with its question-to-concept mappings."""

    year: int = Field(..., description="Year the paper was set")
    questions: List[QuestionMapping] = Field(default_factory=list)
    title: Optional[str] = None


class MisconceptionInput(BaseModel):
    """A misconception detected in a learner's explanation."""

    description: str
    severity: str = Field(default="medium", description="low|medium|high")
    related_concept: Optional[str] = None

    def to_misconception(self) -> Misconception:
        return Misconception(
            description=self.description,
            severity=self.severity,
            related_concept=self.related_concept,
        )


class AssessmentResult(BaseModel):
    """
    Quality signals for one explanation session.

    `question_accuracy` is the mean accuracy over every adversarial
    question evaluated in the session.
    """

    completeness: float = Field(..., ge=0.0, le=1.0)
    coherence: float = Field(..., ge=0.0, le=1.0)
    question_accuracy: float = Field(..., ge=0.0, le=1.0)
    misconceptions: List[MisconceptionInput] = Field(default_factory=list)
