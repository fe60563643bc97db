"""
Milestone Verification & Completion Cascade

ACTIVE milestone, all jobs COMPLETED -> PENDING_VERIFICATION (automatic)
PENDING_VERIFICATION -> COMPLETED (explicit user confirmation only)

After a confirmation is committed, a post-commit hook list runs:
1. complete the milestone's phase if all its milestones are COMPLETED
2. activate the next PENDING milestone of the goal (created order)
3. complete the goal if every milestone is COMPLETED

Each hook is best-effort: a failure is logged and the remaining hooks still
run. Nothing a hook does can undo or fail the confirmation.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Callable, Dict, Any, List, Sequence

from .errors import StatePreconditionError
from .goal_model import (
    Goal,
    GoalStatus,
    Job,
    JobCluster,
    JobStatus,
    Milestone,
    MilestoneStatus,
    TERMINAL_GOAL_STATUSES,
)

logger = logging.getLogger("verification_engine")


# -----------------------------------------------------------------------------
# Completion Checks
# -----------------------------------------------------------------------------
def check_milestone_completion(clusters: Sequence[JobCluster], jobs: Sequence[Job]) -> bool:
    """True iff there is at least one cluster, one job, and every job is COMPLETED."""
    if not clusters:
        return False
    cluster_ids = {c.cluster_id for c in clusters}
    milestone_jobs = [j for j in jobs if j.job_cluster_id in cluster_ids]
    if not milestone_jobs:
        return False
    return all(j.status == JobStatus.COMPLETED for j in milestone_jobs)


def sync_milestone_status(milestone: Milestone, clusters: Sequence[JobCluster],
                          jobs: Sequence[Job]) -> bool:
    """
    ACTIVE -> PENDING_VERIFICATION when all jobs are done.

    Returns:
        True if the status changed
    """
    if milestone.status != MilestoneStatus.ACTIVE:
        return False
    if not check_milestone_completion(clusters, jobs):
        return False
    milestone.status = MilestoneStatus.PENDING_VERIFICATION
    logger.info(f"Milestone {milestone.milestone_id} is awaiting verification")
    return True


def confirm_verification(milestone: Milestone, clusters: Sequence[JobCluster],
                         jobs: Sequence[Job]) -> Milestone:
    """PENDING_VERIFICATION -> COMPLETED, re-checking that all jobs are done."""
    if milestone.status != MilestoneStatus.PENDING_VERIFICATION:
        raise StatePreconditionError(
            "Milestone must be in PENDING_VERIFICATION status to verify. "
            f"Current status: {milestone.status.value}",
            expected=MilestoneStatus.PENDING_VERIFICATION.value,
            actual=milestone.status.value,
        )
    if not check_milestone_completion(clusters, jobs):
        raise StatePreconditionError(
            "Cannot verify milestone: not all jobs are completed",
            expected=JobStatus.COMPLETED.value,
            actual="incomplete jobs",
        )
    milestone.status = MilestoneStatus.COMPLETED
    return milestone


def find_next_pending_milestone(ordered: Sequence[Milestone], completed_id: str) -> Optional[Milestone]:
    """First PENDING milestone strictly after completed_id in created order."""
    position = next((i for i, m in enumerate(ordered) if m.milestone_id == completed_id), None)
    if position is None:
        return None
    for milestone in ordered[position + 1:]:
        if milestone.status == MilestoneStatus.PENDING:
            return milestone
    return None


def complete_goal_if_done(goal: Goal, milestones: Sequence[Milestone],
                          now: Optional[datetime] = None) -> bool:
    if goal.status in TERMINAL_GOAL_STATUSES:
        return False
    if not milestones or any(m.status != MilestoneStatus.COMPLETED for m in milestones):
        return False
    goal.status = GoalStatus.COMPLETED
    goal.updated_at = now or datetime.utcnow()
    logger.info(f"Goal {goal.goal_id} completed: all milestones verified")
    return True


# -----------------------------------------------------------------------------
# Post-Commit Hooks
# -----------------------------------------------------------------------------
@dataclass
class HookResult:
    name: str
    succeeded: bool
    result: Any = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "succeeded": self.succeeded, "error": self.error}


@dataclass
class CascadeReport:
    results: List[HookResult] = field(default_factory=list)

    @property
    def all_succeeded(self) -> bool:
        return all(r.succeeded for r in self.results)

    def result_of(self, name: str) -> Any:
        for entry in self.results:
            if entry.name == name:
                return entry.result
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {"steps": [r.to_dict() for r in self.results], "all_succeeded": self.all_succeeded}


class PostCommitHooks:
    """Ordered best-effort steps run after a committed transition."""

    def __init__(self):
        self._hooks: List[tuple] = []

    def add(self, name: str, action: Callable[[], Any]) -> "PostCommitHooks":
        self._hooks.append((name, action))
        return self

    def run(self) -> CascadeReport:
        report = CascadeReport()
        for name, action in self._hooks:
            try:
                result = action()
                report.results.append(HookResult(name=name, succeeded=True, result=result))
            except Exception as e:
                logger.exception(f"Post-commit step '{name}' failed: {e}")
                report.results.append(HookResult(name=name, succeeded=False, error=str(e)))
        return report
