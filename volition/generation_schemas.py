"""
Generation Schemas

Pydantic models for every structured payload the content-generation
service may return. A payload that fails its model is rejected outright:
nothing is clamped, truncated or padded into compliance.
"""

import math
from typing import List

from pydantic import BaseModel, Field, RootModel, field_validator, model_validator

from .goal_model import (
    ComplexitySize,
    JobType,
    MAX_JOB_MINUTES,
    MAX_MILESTONES_PER_PHASE,
    MAX_TRIAL_TASK_MINUTES,
    MAX_TRIAL_TASKS,
    MIN_TRIAL_TASKS,
    size_for_hours,
)


def _not_blank(value: str) -> str:
    if not value or not value.strip():
        raise ValueError("must not be blank")
    return value.strip()


# -----------------------------------------------------------------------------
# Stress Test
# -----------------------------------------------------------------------------
class AnswerOption(BaseModel):
    text: str
    score: int = Field(..., ge=1, le=5)

    check_text = field_validator("text")(_not_blank)


class StressTestQuestion(BaseModel):
    type: str = Field(..., pattern="^(PAIN|DRIVE)$")
    question: str
    answer_options: List[AnswerOption] = Field(..., alias="answerOptions", min_length=5, max_length=5)

    model_config = {"populate_by_name": True}

    check_question = field_validator("question")(_not_blank)

    @model_validator(mode="after")
    def _scores_cover_scale(self) -> "StressTestQuestion":
        if sorted(o.score for o in self.answer_options) != [1, 2, 3, 4, 5]:
            raise ValueError("answer option scores must be exactly 1..5")
        return self


class StressTestQuestionSet(RootModel[List[StressTestQuestion]]):
    """Six questions, three PAIN and three DRIVE, returned PAIN first."""

    @model_validator(mode="after")
    def _balanced(self) -> "StressTestQuestionSet":
        questions = self.root
        if len(questions) != 6:
            raise ValueError(f"expected 6 questions, got {len(questions)}")
        pain = [q for q in questions if q.type == "PAIN"]
        drive = [q for q in questions if q.type == "DRIVE"]
        if len(pain) != 3 or len(drive) != 3:
            raise ValueError("expected exactly 3 PAIN and 3 DRIVE questions")
        # Scoring reads indices 0-2 as PAIN and 3-5 as DRIVE
        self.root = pain + drive
        return self


# -----------------------------------------------------------------------------
# Trial Plan
# -----------------------------------------------------------------------------
class TrialTaskPlan(BaseModel):
    day_number: int = Field(..., ge=1, le=MAX_TRIAL_TASKS)
    task_title: str
    est_minutes: int = Field(..., ge=1, le=MAX_TRIAL_TASK_MINUTES)
    acceptance_criteria: str

    check_task_title = field_validator("task_title")(_not_blank)
    check_criteria = field_validator("acceptance_criteria")(_not_blank)


class TrialPlan(RootModel[List[TrialTaskPlan]]):

    @model_validator(mode="after")
    def _sequential_days(self) -> "TrialPlan":
        tasks = self.root
        if not MIN_TRIAL_TASKS <= len(tasks) <= MAX_TRIAL_TASKS:
            raise ValueError(f"trial plan must have {MIN_TRIAL_TASKS}-{MAX_TRIAL_TASKS} tasks, got {len(tasks)}")
        days = sorted(t.day_number for t in tasks)
        if days != list(range(1, len(tasks) + 1)):
            raise ValueError(f"day numbers must be unique and sequential from 1, got {days}")
        self.root = sorted(tasks, key=lambda t: t.day_number)
        return self


# -----------------------------------------------------------------------------
# Complexity
# -----------------------------------------------------------------------------
class ComplexityEstimate(BaseModel):
    size: ComplexitySize
    estimated_total_hours: float = Field(..., gt=0)
    projected_end_date: str

    check_end_date = field_validator("projected_end_date")(_not_blank)

    @field_validator("estimated_total_hours")
    @classmethod
    def _finite(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError("estimated_total_hours must be finite")
        return value

    @model_validator(mode="after")
    def _recompute_size(self) -> "ComplexityEstimate":
        self.size = size_for_hours(self.estimated_total_hours)
        return self


# -----------------------------------------------------------------------------
# Blueprint
# -----------------------------------------------------------------------------
class MilestonePlan(BaseModel):
    title: str
    acceptance_criteria: str

    check_title = field_validator("title")(_not_blank)
    check_criteria = field_validator("acceptance_criteria")(_not_blank)


class PhasePlan(BaseModel):
    title: str
    milestones: List[MilestonePlan] = Field(..., min_length=1, max_length=MAX_MILESTONES_PER_PHASE)

    check_title = field_validator("title")(_not_blank)


class BlueprintPlan(RootModel[List[PhasePlan]]):

    @model_validator(mode="after")
    def _has_phases(self) -> "BlueprintPlan":
        if not self.root:
            raise ValueError("blueprint must contain at least one phase")
        return self


# -----------------------------------------------------------------------------
# Jobs
# -----------------------------------------------------------------------------
class JobPlan(BaseModel):
    title: str
    type: JobType
    est_minutes: int = Field(..., ge=1, le=MAX_JOB_MINUTES)

    check_title = field_validator("title")(_not_blank)


class JobClusterPlan(BaseModel):
    title: str
    jobs: List[JobPlan] = Field(..., min_length=1)

    check_title = field_validator("title")(_not_blank)


class JobAtomizerPlan(RootModel[List[JobClusterPlan]]):

    @model_validator(mode="after")
    def _has_clusters(self) -> "JobAtomizerPlan":
        if not self.root:
            raise ValueError("job plan must contain at least one cluster")
        return self


# -----------------------------------------------------------------------------
# Recovery
# -----------------------------------------------------------------------------
class NegotiationResult(BaseModel):
    advice: str
    recommendation: str = Field(..., pattern="^(INSIST|CHANGE)$")

    check_advice = field_validator("advice")(_not_blank)


class MutatedJob(BaseModel):
    title: str
    type: JobType
    est_minutes: int = Field(..., ge=1, le=MAX_JOB_MINUTES)

    check_title = field_validator("title")(_not_blank)
