"""
Energy-Based Job Filter

Chooses up to three jobs to present for the user's current energy.

ELIGIBILITY (monotonic: more energy never means fewer types):
- LOW:  QUICK_WIN
- MED:  QUICK_WIN, ANCHOR
- HIGH: QUICK_WIN, ANCHOR, DEEP_WORK

ACTIVE jobs are always presented. Ordering: ACTIVE before PENDING, then at
HIGH energy heavier types first, then cluster order, then job creation order.

The cluster explorer bypasses the filter and groups every job by status.
"""

from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, Sequence

from .goal_model import EnergyLevel, Job, JobCluster, JobStatus, JobType

RECOMMENDATION_LIMIT = 3

ENERGY_ELIGIBLE_TYPES: Dict[EnergyLevel, frozenset] = {
    EnergyLevel.LOW: frozenset({JobType.QUICK_WIN}),
    EnergyLevel.MED: frozenset({JobType.QUICK_WIN, JobType.ANCHOR}),
    EnergyLevel.HIGH: frozenset({JobType.QUICK_WIN, JobType.ANCHOR, JobType.DEEP_WORK}),
}

TYPE_PRIORITY = {
    JobType.DEEP_WORK: 1,
    JobType.ANCHOR: 2,
    JobType.QUICK_WIN: 3,
}

STATUS_PRIORITY = {
    JobStatus.ACTIVE: 0,
    JobStatus.PENDING: 1,
}

EMPTY_STATE_MESSAGES = {
    EnergyLevel.LOW: "No quick wins available. Consider breaking down a task.",
    EnergyLevel.MED: "No quick wins or anchor jobs available right now.",
    EnergyLevel.HIGH: "No pending jobs left for this milestone.",
}


@dataclass
class FilteredJobs:
    energy: EnergyLevel
    jobs: List[Job] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.jobs

    @property
    def empty_state_message(self) -> Optional[str]:
        return EMPTY_STATE_MESSAGES[self.energy] if self.is_empty else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "energy": self.energy.value,
            "jobs": [j.to_dict() for j in self.jobs],
            "is_empty": self.is_empty,
            "empty_state_message": self.empty_state_message,
        }


def is_eligible(job: Job, energy: EnergyLevel) -> bool:
    if job.status == JobStatus.ACTIVE:
        return True
    return job.status == JobStatus.PENDING and job.type in ENERGY_ELIGIBLE_TYPES[energy]


def filter_jobs(jobs: Sequence[Job], energy: EnergyLevel,
                clusters: Optional[Sequence[JobCluster]] = None,
                limit: int = RECOMMENDATION_LIMIT) -> FilteredJobs:
    cluster_order: Dict[str, int] = {}
    if clusters:
        ordered_clusters = sorted(clusters, key=lambda c: c.created_at)
        cluster_order = {c.cluster_id: i for i, c in enumerate(ordered_clusters)}

    def sort_key(job: Job):
        type_rank = TYPE_PRIORITY[job.type] if energy == EnergyLevel.HIGH else 0
        return (
            STATUS_PRIORITY[job.status],
            type_rank,
            cluster_order.get(job.job_cluster_id, len(cluster_order)),
            job.created_at,
        )

    eligible = sorted((j for j in jobs if is_eligible(j, energy)), key=sort_key)
    return FilteredJobs(energy=energy, jobs=eligible[:limit])


def group_by_status(jobs: Sequence[Job]) -> Dict[str, List[Job]]:
    """Cluster explorer view: every job, grouped by status, creation order kept."""
    groups: Dict[str, List[Job]] = {status.value: [] for status in JobStatus}
    for job in sorted(jobs, key=lambda j: j.created_at):
        groups[job.status.value].append(job)
    return groups
