"""
Goal Hierarchy - Data Models

Enums and dataclasses for the goal lifecycle:
Goal -> Phase -> Milestone -> JobCluster -> Job, plus the TrialTask micro-plan
that a goal runs before it is scoped.

HARD LIMITS (enforced by the engines, declared here):
- A Phase holds at most 7 Milestones
- A Job is at most 120 minutes
- A TrialTask is at most 19 minutes, a trial plan has 3-7 tasks
- Complexity size is always derived from estimated_total_hours

This module defines data only. State transitions live in the *_engine modules.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, List


# -----------------------------------------------------------------------------
# Limits
# -----------------------------------------------------------------------------
MAX_MILESTONES_PER_PHASE = 7
MAX_JOB_MINUTES = 120
MAX_TRIAL_TASK_MINUTES = 19
MIN_TRIAL_TASKS = 3
MAX_TRIAL_TASKS = 7

# Size thresholds in hours: SMALL < 20, MEDIUM 20..100 inclusive, LARGE > 100
MEDIUM_MIN_HOURS = 20
LARGE_ABOVE_HOURS = 100


# -----------------------------------------------------------------------------
# Status Enums
# -----------------------------------------------------------------------------
class GoalStatus(str, Enum):
    """Goal lifecycle status."""
    PENDING_SCOPE = "PENDING_SCOPE"
    SCOPING = "SCOPING"
    PLANNING = "PLANNING"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    QUARANTINE = "QUARANTINE"
    FAILED = "FAILED"


# A goal that passed the stress test sits here while its trial runs.
TRIAL_STATUS = GoalStatus.QUARANTINE

TERMINAL_GOAL_STATUSES = {GoalStatus.COMPLETED, GoalStatus.FAILED}


class PhaseStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    QUARANTINE = "QUARANTINE"


class MilestoneStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    PENDING_VERIFICATION = "PENDING_VERIFICATION"
    COMPLETED = "COMPLETED"


class JobStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class JobType(str, Enum):
    """
    Job type, roughly the effort profile of a job.

    QUICK_WIN: short, low activation energy
    ANCHOR: steady, medium effort
    DEEP_WORK: long, focused effort
    """
    QUICK_WIN = "QUICK_WIN"
    DEEP_WORK = "DEEP_WORK"
    ANCHOR = "ANCHOR"


class TrialTaskStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"


class ComplexitySize(str, Enum):
    SMALL = "SMALL"
    MEDIUM = "MEDIUM"
    LARGE = "LARGE"


class BackgroundLevel(str, Enum):
    BEGINNER = "BEGINNER"
    INTERMEDIATE = "INTERMEDIATE"
    ADVANCED = "ADVANCED"
    EXPERT = "EXPERT"


class EnergyLevel(str, Enum):
    HIGH = "HIGH"
    MED = "MED"
    LOW = "LOW"


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def _dt(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def size_for_hours(hours: float) -> ComplexitySize:
    """Derive the complexity size from total hours."""
    if hours > LARGE_ABOVE_HOURS:
        return ComplexitySize.LARGE
    if hours >= MEDIUM_MIN_HOURS:
        return ComplexitySize.MEDIUM
    return ComplexitySize.SMALL


# -----------------------------------------------------------------------------
# Goal Value Objects
# -----------------------------------------------------------------------------
@dataclass
class Scope:
    hours_per_week: float
    tech_stack: List[str]
    definition_of_done: str
    background_level: BackgroundLevel = BackgroundLevel.INTERMEDIATE

    def is_valid(self) -> bool:
        return (
            isinstance(self.hours_per_week, (int, float))
            and math.isfinite(self.hours_per_week)
            and self.hours_per_week > 0
            and bool(self.definition_of_done and self.definition_of_done.strip())
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hours_per_week": self.hours_per_week,
            "tech_stack": list(self.tech_stack),
            "definition_of_done": self.definition_of_done,
            "background_level": self.background_level.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Scope":
        return cls(
            hours_per_week=data["hours_per_week"],
            tech_stack=list(data.get("tech_stack") or []),
            definition_of_done=data["definition_of_done"],
            background_level=BackgroundLevel(
                data.get("background_level") or BackgroundLevel.INTERMEDIATE.value
            ),
        )


@dataclass
class Complexity:
    """
    Complexity estimate for a goal.

    size is never trusted from a producer: build instances through
    from_estimate() or from_dict(), both of which recompute it.
    """
    size: ComplexitySize
    estimated_total_hours: float
    projected_end_date: str

    @classmethod
    def from_estimate(cls, estimated_total_hours: float, projected_end_date: str) -> "Complexity":
        return cls(
            size=size_for_hours(estimated_total_hours),
            estimated_total_hours=estimated_total_hours,
            projected_end_date=projected_end_date,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "size": self.size.value,
            "estimated_total_hours": self.estimated_total_hours,
            "projected_end_date": self.projected_end_date,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Complexity":
        return cls.from_estimate(data["estimated_total_hours"], data["projected_end_date"])


# -----------------------------------------------------------------------------
# Entities
# -----------------------------------------------------------------------------
@dataclass
class Goal:
    goal_id: str
    owner_id: str
    title: str
    status: GoalStatus
    created_at: datetime
    updated_at: datetime
    scope: Optional[Scope] = None
    complexity: Optional[Complexity] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "goal_id": self.goal_id,
            "owner_id": self.owner_id,
            "title": self.title,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "scope": self.scope.to_dict() if self.scope else None,
            "complexity": self.complexity.to_dict() if self.complexity else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Goal":
        return cls(
            goal_id=data["goal_id"],
            owner_id=data["owner_id"],
            title=data["title"],
            status=GoalStatus(data["status"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            scope=Scope.from_dict(data["scope"]) if data.get("scope") else None,
            complexity=Complexity.from_dict(data["complexity"]) if data.get("complexity") else None,
        )


@dataclass
class TrialTask:
    task_id: str
    goal_id: str
    day_number: int
    title: str
    est_minutes: int
    acceptance_criteria: str
    status: TrialTaskStatus
    created_at: datetime
    scheduled_date: Optional[str] = None
    completed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "goal_id": self.goal_id,
            "day_number": self.day_number,
            "title": self.title,
            "est_minutes": self.est_minutes,
            "acceptance_criteria": self.acceptance_criteria,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "scheduled_date": self.scheduled_date,
            "completed_at": _dt(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TrialTask":
        return cls(
            task_id=data["task_id"],
            goal_id=data["goal_id"],
            day_number=data["day_number"],
            title=data["title"],
            est_minutes=data["est_minutes"],
            acceptance_criteria=data["acceptance_criteria"],
            status=TrialTaskStatus(data["status"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            scheduled_date=data.get("scheduled_date"),
            completed_at=_parse_dt(data.get("completed_at")),
        )


@dataclass
class Phase:
    phase_id: str
    goal_id: str
    index: int
    title: str
    status: PhaseStatus
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase_id": self.phase_id,
            "goal_id": self.goal_id,
            "index": self.index,
            "title": self.title,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Phase":
        return cls(
            phase_id=data["phase_id"],
            goal_id=data["goal_id"],
            index=data["index"],
            title=data["title"],
            status=PhaseStatus(data["status"]),
            created_at=datetime.fromisoformat(data["created_at"]),
        )


@dataclass
class Milestone:
    milestone_id: str
    phase_id: str
    title: str
    acceptance_criteria: str
    status: MilestoneStatus
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "milestone_id": self.milestone_id,
            "phase_id": self.phase_id,
            "title": self.title,
            "acceptance_criteria": self.acceptance_criteria,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Milestone":
        return cls(
            milestone_id=data["milestone_id"],
            phase_id=data["phase_id"],
            title=data["title"],
            acceptance_criteria=data.get("acceptance_criteria") or "",
            status=MilestoneStatus(data["status"]),
            created_at=datetime.fromisoformat(data["created_at"]),
        )


@dataclass
class JobCluster:
    cluster_id: str
    milestone_id: str
    title: str
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cluster_id": self.cluster_id,
            "milestone_id": self.milestone_id,
            "title": self.title,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JobCluster":
        return cls(
            cluster_id=data["cluster_id"],
            milestone_id=data["milestone_id"],
            title=data["title"],
            created_at=datetime.fromisoformat(data["created_at"]),
        )


@dataclass
class WorkSession:
    """One active interval of work on a job. ended_at is None while running."""
    started_at: datetime
    ended_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.ended_at is None

    def to_dict(self) -> Dict[str, Any]:
        return {"started_at": self.started_at.isoformat(), "ended_at": _dt(self.ended_at)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkSession":
        return cls(
            started_at=datetime.fromisoformat(data["started_at"]),
            ended_at=_parse_dt(data.get("ended_at")),
        )


@dataclass
class FailureNote:
    timestamp: datetime
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {"timestamp": self.timestamp.isoformat(), "reason": self.reason}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FailureNote":
        return cls(timestamp=datetime.fromisoformat(data["timestamp"]), reason=data["reason"])


@dataclass
class Job:
    job_id: str
    job_cluster_id: str
    title: str
    type: JobType
    est_minutes: int
    status: JobStatus
    created_at: datetime
    failure_count: int = 0
    failure_history: List[FailureNote] = field(default_factory=list)
    work_sessions: List[WorkSession] = field(default_factory=list)
    deadline: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "job_cluster_id": self.job_cluster_id,
            "title": self.title,
            "type": self.type.value,
            "est_minutes": self.est_minutes,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "failure_count": self.failure_count,
            "failure_history": [n.to_dict() for n in self.failure_history],
            "work_sessions": [s.to_dict() for s in self.work_sessions],
            "deadline": _dt(self.deadline),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Job":
        return cls(
            job_id=data["job_id"],
            job_cluster_id=data["job_cluster_id"],
            title=data["title"],
            type=JobType(data["type"]),
            est_minutes=data["est_minutes"],
            status=JobStatus(data["status"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            failure_count=data.get("failure_count", 0),
            failure_history=[FailureNote.from_dict(n) for n in data.get("failure_history") or []],
            work_sessions=[WorkSession.from_dict(s) for s in data.get("work_sessions") or []],
            deadline=_parse_dt(data.get("deadline")),
        )
