"""
Scoring Engine

Turns the six stress-test answers into a commitment score and a
PROCEED/REJECT decision.

RULES:
- Exactly 6 answers, question indices 0..5 each exactly once
- Indices 0-2 are PAIN answers, 3-5 are DRIVE answers
- pain/drive scores are the means, rounded to 2 decimals
- score = round2((pain * 0.4 + drive * 0.6) * 20)
- score >= 60 -> PROCEED, otherwise REJECT

Pure and deterministic. Creating the goal on PROCEED belongs to the service layer.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Dict, Any, List, Sequence, Union

from .errors import ValidationError


# -----------------------------------------------------------------------------
# Constants
# -----------------------------------------------------------------------------
QUESTION_COUNT = 6
PAIN_INDICES = (0, 1, 2)
DRIVE_INDICES = (3, 4, 5)
PAIN_WEIGHT = 0.4
DRIVE_WEIGHT = 0.6
SCORE_SCALE = 20
PROCEED_THRESHOLD = 60
MIN_ANSWER_SCORE = 1
MAX_ANSWER_SCORE = 5


class ScoringDecision(str, Enum):
    PROCEED = "PROCEED"
    REJECT = "REJECT"


@dataclass(frozen=True)
class StressTestAnswer:
    question_index: int
    selected_score: int

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StressTestAnswer":
        """Accepts both questionIndex/selectedScore and snake_case keys."""
        index = data.get("question_index", data.get("questionIndex"))
        score = data.get("selected_score", data.get("selectedScore"))
        return cls(question_index=index, selected_score=score)


@dataclass(frozen=True)
class ScoringResult:
    score: float
    pain_score: float
    drive_score: float
    decision: ScoringDecision

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "pain_score": self.pain_score,
            "drive_score": self.drive_score,
            "decision": self.decision.value,
        }


AnswerInput = Union[StressTestAnswer, Dict[str, Any]]


def round2(value: float) -> float:
    """Round half up to 2 decimals."""
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_answers(answers: Sequence[AnswerInput]) -> List[StressTestAnswer]:
    """
    Check the answer set and return it sorted by question index.

    Raises:
        ValidationError: wrong count, index out of range, duplicate or
            missing index, or a score outside 1..5
    """
    if answers is None or len(answers) != QUESTION_COUNT:
        count = 0 if answers is None else len(answers)
        raise ValidationError(f"Expected exactly {QUESTION_COUNT} answers, got {count}")

    for answer in answers:
        if not isinstance(answer, (StressTestAnswer, dict)):
            raise ValidationError(f"Invalid answer: {answer!r}")
    parsed = [a if isinstance(a, StressTestAnswer) else StressTestAnswer.from_dict(a) for a in answers]

    for answer in parsed:
        if not _is_int(answer.question_index) or not 0 <= answer.question_index < QUESTION_COUNT:
            raise ValidationError(f"Invalid question index: {answer.question_index!r}")
        if not _is_int(answer.selected_score) or not MIN_ANSWER_SCORE <= answer.selected_score <= MAX_ANSWER_SCORE:
            raise ValidationError(
                f"Invalid score {answer.selected_score!r} for question {answer.question_index}"
            )

    indices = {a.question_index for a in parsed}
    if len(indices) != QUESTION_COUNT:
        missing = sorted(set(range(QUESTION_COUNT)) - indices)
        raise ValidationError(f"Answers must cover each question once; missing indices: {missing}")

    return sorted(parsed, key=lambda a: a.question_index)


def calculate_score(answers: Sequence[AnswerInput]) -> ScoringResult:
    """Score a complete answer set."""
    ordered = validate_answers(answers)
    pain = [a.selected_score for a in ordered if a.question_index in PAIN_INDICES]
    drive = [a.selected_score for a in ordered if a.question_index in DRIVE_INDICES]

    pain_score = round2(sum(pain) / len(pain))
    drive_score = round2(sum(drive) / len(drive))
    score = round2((pain_score * PAIN_WEIGHT + drive_score * DRIVE_WEIGHT) * SCORE_SCALE)

    decision = ScoringDecision.PROCEED if score >= PROCEED_THRESHOLD else ScoringDecision.REJECT
    return ScoringResult(score=score, pain_score=pain_score, drive_score=drive_score, decision=decision)
