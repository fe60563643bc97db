"""
Job Atomization Rules

Builds the JobCluster -> Job tree under one milestone.

ATOMIC CONSTRAINT: no job may exceed 120 minutes. It is checked when the
generated plan is validated and again on the built jobs before and after
they are stored. A violation is fatal; jobs are never split or clamped.

Generation is refused unless the milestone is ACTIVE, and refused when the
milestone already has clusters (delete them first to regenerate).
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Optional, List, Sequence, Tuple

from .errors import StatePreconditionError, ValidationError
from .goal_model import (
    Goal,
    Job,
    JobCluster,
    JobStatus,
    JobType,
    MAX_JOB_MINUTES,
    Milestone,
    MilestoneStatus,
)

logger = logging.getLogger("job_atomizer")


def ensure_can_generate_jobs(goal: Goal, milestone: Milestone,
                             existing_clusters: Sequence[JobCluster]) -> None:
    """Pre-check-then-act guard for job generation."""
    if milestone.status != MilestoneStatus.ACTIVE:
        raise StatePreconditionError(
            f"Milestone must be ACTIVE to generate jobs. Current status: {milestone.status.value}",
            expected=MilestoneStatus.ACTIVE.value,
            actual=milestone.status.value,
        )
    if goal.complexity is None:
        raise StatePreconditionError("Goal has no complexity estimate")
    if goal.scope is None or not goal.scope.is_valid():
        raise StatePreconditionError("Goal scope is missing or invalid")
    if existing_clusters:
        raise StatePreconditionError(
            "Jobs already exist for this milestone. Delete existing jobs before generating new ones."
        )


def check_atomic_constraint(jobs: Sequence[Job]) -> None:
    """Raise ValidationError if any job is outside 1..120 minutes."""
    for job in jobs:
        if job.est_minutes > MAX_JOB_MINUTES:
            raise ValidationError(
                f"Job '{job.title}' is {job.est_minutes} minutes; "
                f"jobs must not exceed {MAX_JOB_MINUTES} minutes"
            )
        if job.est_minutes < 1:
            raise ValidationError(f"Job '{job.title}' has a non-positive duration")


def build_job_tree(milestone: Milestone, plan: Sequence[object],
                   now: Optional[datetime] = None) -> Tuple[List[JobCluster], List[Job]]:
    """
    Materialize clusters and PENDING jobs from a validated plan.

    plan items carry title and jobs; jobs carry title, type and est_minutes
    (see generation_schemas.JobClusterPlan).
    """
    if not plan:
        raise ValidationError("Job plan must contain at least one cluster")

    base = now or datetime.utcnow()
    tick = 0
    clusters: List[JobCluster] = []
    jobs: List[Job] = []
    for cluster_plan in plan:
        if not cluster_plan.jobs:
            raise ValidationError(f"Cluster '{cluster_plan.title}' has no jobs")
        cluster = JobCluster(
            cluster_id=str(uuid.uuid4()),
            milestone_id=milestone.milestone_id,
            title=cluster_plan.title,
            created_at=base + timedelta(microseconds=tick),
        )
        tick += 1
        clusters.append(cluster)
        for job_plan in cluster_plan.jobs:
            jobs.append(Job(
                job_id=str(uuid.uuid4()),
                job_cluster_id=cluster.cluster_id,
                title=job_plan.title,
                type=JobType(job_plan.type),
                est_minutes=job_plan.est_minutes,
                status=JobStatus.PENDING,
                created_at=base + timedelta(microseconds=tick),
            ))
            tick += 1

    check_atomic_constraint(jobs)
    logger.info(
        f"Built {len(clusters)} cluster(s) with {len(jobs)} job(s) for milestone {milestone.milestone_id}"
    )
    return clusters, jobs
