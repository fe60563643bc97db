"""
Failure Recovery Rules

A job marked failed (with a mandatory reason) is moved to FAILED first, and
only then does one of the recovery paths apply:

- RETRY:     FAILED -> PENDING, reason appended to failure_history, type
             escalated (QUICK_WIN/DEEP_WORK -> ANCHOR, ANCHOR stays)
- NEGOTIATE: advisory INSIST/CHANGE verdict from the generation service;
             CHANGE opens the mutation flow, INSIST still allows it manually
- MUTATE:    preview (never stored) then confirm: title/type/est_minutes
             replaced, status -> ACTIVE, failure_count + 1, the rest preserved
- GIVE UP:   the whole goal -> FAILED; no recovery applies afterwards
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any

from . import work_sessions
from .errors import StatePreconditionError, ValidationError
from .goal_model import (
    Goal,
    GoalStatus,
    FailureNote,
    Job,
    JobStatus,
    JobType,
    MAX_JOB_MINUTES,
)

logger = logging.getLogger("recovery_engine")


class Recommendation(str, Enum):
    INSIST = "INSIST"
    CHANGE = "CHANGE"


# Failure escalates perceived difficulty; it never downgrades.
TYPE_UPGRADES: Dict[JobType, JobType] = {
    JobType.QUICK_WIN: JobType.ANCHOR,
    JobType.DEEP_WORK: JobType.ANCHOR,
    JobType.ANCHOR: JobType.ANCHOR,
}


def _require_reason(reason: Optional[str]) -> str:
    if reason is None or not reason.strip():
        raise ValidationError("A failure reason is required")
    return reason.strip()


def _require_status(job: Job, expected: JobStatus, action: str) -> None:
    if job.status != expected:
        raise StatePreconditionError(
            f"Cannot {action} job: job is in {job.status.value} status. Expected {expected.value}.",
            expected=expected.value,
            actual=job.status.value,
        )


def ensure_goal_recoverable(goal: Goal) -> None:
    if goal.status == GoalStatus.FAILED:
        raise StatePreconditionError(
            "Goal has been given up; its jobs cannot be recovered",
            expected="non-FAILED goal",
            actual=goal.status.value,
        )


# -----------------------------------------------------------------------------
# Mark Failed
# -----------------------------------------------------------------------------
def mark_job_failed(job: Job, reason: Optional[str], now: Optional[datetime] = None) -> Job:
    """ACTIVE -> FAILED. Closes the running session and bumps failure_count."""
    _require_reason(reason)
    _require_status(job, JobStatus.ACTIVE, "fail")
    work_sessions.end_current_session(job.work_sessions, now)
    job.status = JobStatus.FAILED
    job.failure_count += 1
    logger.info(f"Job {job.job_id} marked FAILED (failure_count={job.failure_count})")
    return job


# -----------------------------------------------------------------------------
# Retry
# -----------------------------------------------------------------------------
def upgrade_job_type(job_type: JobType) -> JobType:
    return TYPE_UPGRADES[job_type]


def retry_job(job: Job, reason: Optional[str], now: Optional[datetime] = None) -> Job:
    """"Try next time": FAILED -> PENDING with an escalated type."""
    text = _require_reason(reason)
    _require_status(job, JobStatus.FAILED, "retry")
    job.failure_history.append(FailureNote(timestamp=now or datetime.utcnow(), reason=text))
    job.type = upgrade_job_type(job.type)
    job.status = JobStatus.PENDING
    logger.info(f"Job {job.job_id} queued for retry as {job.type.value}")
    return job


# -----------------------------------------------------------------------------
# Negotiate
# -----------------------------------------------------------------------------
@dataclass
class NegotiationOutcome:
    advice: str
    recommendation: Recommendation

    @property
    def open_mutation_flow(self) -> bool:
        return self.recommendation == Recommendation.CHANGE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "advice": self.advice,
            "recommendation": self.recommendation.value,
            "open_mutation_flow": self.open_mutation_flow,
            "allow_manual_change": True,
        }


def ensure_negotiable(job: Job) -> None:
    _require_status(job, JobStatus.FAILED, "negotiate")


# -----------------------------------------------------------------------------
# Mutate
# -----------------------------------------------------------------------------
@dataclass
class MutationPreview:
    """Proposed replacement content for a failed job. Never stored."""
    job_id: str
    title: str
    type: JobType
    est_minutes: int

    def validate(self) -> "MutationPreview":
        if not self.title or not self.title.strip():
            raise ValidationError("Mutated job title must not be empty")
        if not 1 <= self.est_minutes <= MAX_JOB_MINUTES:
            raise ValidationError(
                f"Mutated job is {self.est_minutes} minutes; jobs must be 1-{MAX_JOB_MINUTES} minutes"
            )
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "title": self.title,
            "type": self.type.value,
            "est_minutes": self.est_minutes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MutationPreview":
        return cls(
            job_id=data["job_id"],
            title=data["title"],
            type=JobType(data["type"]),
            est_minutes=data["est_minutes"],
        )


def ensure_mutable(job: Job) -> None:
    _require_status(job, JobStatus.FAILED, "mutate")


def apply_mutation(job: Job, preview: MutationPreview) -> Job:
    """Overwrite the failed job in place with a confirmed preview."""
    ensure_mutable(job)
    if preview.job_id != job.job_id:
        raise ValidationError(f"Preview belongs to job {preview.job_id}, not {job.job_id}")
    preview.validate()

    job.title = preview.title.strip()
    job.type = preview.type
    job.est_minutes = preview.est_minutes
    job.status = JobStatus.ACTIVE
    job.failure_count += 1
    logger.info(f"Job {job.job_id} mutated into '{job.title}' ({job.est_minutes} min)")
    return job
