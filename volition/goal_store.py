"""
Goal Store

Owner-scoped persistence for the goal hierarchy, kept in a single JSON state
file written atomically (temp file, then replace). A store created without a
state file lives in memory only.

Tables: goals, trial_tasks, phases, milestones, job_clusters, jobs.
Each table maps record id -> serialized record; insertion order is creation
order.

Deleting a goal deletes its whole subtree. Deleting a milestone's clusters
deletes their jobs.
"""

import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional, Dict, Any, Iterable, List

from .errors import NotFoundError
from .goal_model import (
    Goal,
    GoalStatus,
    Job,
    JobCluster,
    Milestone,
    Phase,
    TrialTask,
)

logger = logging.getLogger("goal_store")

TABLES = ("goals", "trial_tasks", "phases", "milestones", "job_clusters", "jobs")


def _empty_state() -> Dict[str, Any]:
    state: Dict[str, Any] = {table: {} for table in TABLES}
    state["created_at"] = datetime.utcnow().isoformat()
    return state


class GoalStore:
    """JSON-file backed store for goals and everything under them."""

    def __init__(self, state_file: Optional[Path] = None):
        self._state_file = Path(state_file) if state_file else None
        self._lock = threading.RLock()
        self._state = self._load_state()

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def _load_state(self) -> Dict[str, Any]:
        if self._state_file is None or not self._state_file.exists():
            return _empty_state()
        try:
            state = json.loads(self._state_file.read_text())
        except (json.JSONDecodeError, IOError) as e:
            logger.error(f"Failed to load state file {self._state_file}: {e}")
            raise
        for table in TABLES:
            state.setdefault(table, {})
        return state

    def _save_state(self) -> None:
        """Write the state file atomically. Failures propagate."""
        if self._state_file is None:
            return
        self._state["last_updated"] = datetime.utcnow().isoformat()
        self._state_file.parent.mkdir(parents=True, exist_ok=True)
        temp_file = self._state_file.with_suffix(".tmp")
        try:
            temp_file.write_text(json.dumps(self._state, indent=2, default=str))
            temp_file.replace(self._state_file)
        except IOError as e:
            logger.error(f"Failed to save state file: {e}")
            if temp_file.exists():
                temp_file.unlink()
            raise

    def _put(self, table: str, records: Iterable[Any], key: str) -> None:
        with self._lock:
            for record in records:
                data = record.to_dict()
                self._state[table][data[key]] = data
            self._save_state()

    def _update(self, table: str, records: Iterable[Any], key: str) -> None:
        rows = [record.to_dict() for record in records]
        with self._lock:
            for data in rows:
                if data[key] not in self._state[table]:
                    raise NotFoundError(f"{table} record {data[key]} not found")
            for data in rows:
                self._state[table][data[key]] = data
            self._save_state()

    def rows(self, table: str) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._state[table].values())

    def _row(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._state[table].get(record_id)

    # -------------------------------------------------------------------------
    # Goals
    # -------------------------------------------------------------------------

    def insert_goal(self, goal: Goal) -> Goal:
        self._put("goals", [goal], "goal_id")
        return goal

    def update_goal(self, goal: Goal) -> Goal:
        self._update("goals", [goal], "goal_id")
        return goal

    def get_goal(self, goal_id: str) -> Optional[Goal]:
        row = self._row("goals", goal_id)
        return Goal.from_dict(row) if row else None

    def list_goals(self, owner_id: str, status: Optional[GoalStatus] = None) -> List[Goal]:
        """Goals of one owner, most recently updated first."""
        goals = [Goal.from_dict(r) for r in self.rows("goals") if r["owner_id"] == owner_id]
        if status:
            goals = [g for g in goals if g.status == status]
        goals.sort(key=lambda g: g.updated_at, reverse=True)
        return goals

    def delete_goal(self, goal_id: str) -> None:
        with self._lock:
            if goal_id not in self._state["goals"]:
                raise NotFoundError(f"Goal {goal_id} not found")
            phase_ids = {r["phase_id"] for r in self._state["phases"].values() if r["goal_id"] == goal_id}
            milestone_ids = {
                r["milestone_id"] for r in self._state["milestones"].values() if r["phase_id"] in phase_ids
            }
            self._drop_clusters(milestone_ids)
            for table, key, keep in (
                ("milestones", "milestone_id", lambda r: r["phase_id"] not in phase_ids),
                ("phases", "phase_id", lambda r: r["goal_id"] != goal_id),
                ("trial_tasks", "task_id", lambda r: r["goal_id"] != goal_id),
            ):
                self._state[table] = {r[key]: r for r in self._state[table].values() if keep(r)}
            del self._state["goals"][goal_id]
            self._save_state()
        logger.info(f"Deleted goal {goal_id} and its subtree")

    # -------------------------------------------------------------------------
    # Trial Tasks
    # -------------------------------------------------------------------------

    def insert_trial_tasks(self, tasks: List[TrialTask]) -> List[TrialTask]:
        self._put("trial_tasks", tasks, "task_id")
        return tasks

    def update_trial_tasks(self, tasks: List[TrialTask]) -> None:
        self._update("trial_tasks", tasks, "task_id")

    def list_trial_tasks(self, goal_id: str) -> List[TrialTask]:
        tasks = [TrialTask.from_dict(r) for r in self.rows("trial_tasks") if r["goal_id"] == goal_id]
        return sorted(tasks, key=lambda t: t.day_number)

    # -------------------------------------------------------------------------
    # Phases & Milestones
    # -------------------------------------------------------------------------

    def insert_phases(self, phases: List[Phase]) -> List[Phase]:
        self._put("phases", phases, "phase_id")
        return phases

    def update_phases(self, phases: List[Phase]) -> None:
        self._update("phases", phases, "phase_id")

    def get_phase(self, phase_id: str) -> Optional[Phase]:
        row = self._row("phases", phase_id)
        return Phase.from_dict(row) if row else None

    def list_phases(self, goal_id: str) -> List[Phase]:
        phases = [Phase.from_dict(r) for r in self.rows("phases") if r["goal_id"] == goal_id]
        return sorted(phases, key=lambda p: p.index)

    def insert_milestones(self, milestones: List[Milestone]) -> List[Milestone]:
        self._put("milestones", milestones, "milestone_id")
        return milestones

    def update_milestones(self, milestones: List[Milestone]) -> None:
        self._update("milestones", milestones, "milestone_id")

    def get_milestone(self, milestone_id: str) -> Optional[Milestone]:
        row = self._row("milestones", milestone_id)
        return Milestone.from_dict(row) if row else None

    def list_milestones(self, phase_ids: Iterable[str]) -> List[Milestone]:
        wanted = set(phase_ids)
        milestones = [Milestone.from_dict(r) for r in self.rows("milestones") if r["phase_id"] in wanted]
        return sorted(milestones, key=lambda m: m.created_at)

    # -------------------------------------------------------------------------
    # Job Clusters & Jobs
    # -------------------------------------------------------------------------

    def insert_job_tree(self, clusters: List[JobCluster], jobs: List[Job]) -> None:
        """Insert clusters and their jobs in one write."""
        with self._lock:
            for cluster in clusters:
                self._state["job_clusters"][cluster.cluster_id] = cluster.to_dict()
            for job in jobs:
                self._state["jobs"][job.job_id] = job.to_dict()
            self._save_state()

    def list_job_clusters(self, milestone_ids: Iterable[str]) -> List[JobCluster]:
        wanted = set(milestone_ids)
        clusters = [JobCluster.from_dict(r) for r in self.rows("job_clusters") if r["milestone_id"] in wanted]
        return sorted(clusters, key=lambda c: c.created_at)

    def delete_job_clusters(self, milestone_id: str) -> int:
        """Delete every cluster (and job) of a milestone. Returns clusters removed."""
        with self._lock:
            removed = self._drop_clusters({milestone_id})
            self._save_state()
        return removed

    def _drop_clusters(self, milestone_ids: set) -> int:
        cluster_ids = {
            r["cluster_id"] for r in self._state["job_clusters"].values() if r["milestone_id"] in milestone_ids
        }
        self._state["jobs"] = {
            k: r for k, r in self._state["jobs"].items() if r["job_cluster_id"] not in cluster_ids
        }
        self._state["job_clusters"] = {
            k: r for k, r in self._state["job_clusters"].items() if k not in cluster_ids
        }
        return len(cluster_ids)

    def get_job(self, job_id: str) -> Optional[Job]:
        row = self._row("jobs", job_id)
        return Job.from_dict(row) if row else None

    def update_job(self, job: Job) -> Job:
        self._update("jobs", [job], "job_id")
        return job

    def list_jobs(self, cluster_ids: Iterable[str]) -> List[Job]:
        wanted = set(cluster_ids)
        jobs = [Job.from_dict(r) for r in self.rows("jobs") if r["job_cluster_id"] in wanted]
        return sorted(jobs, key=lambda j: j.created_at)

    def get_job_cluster(self, cluster_id: str) -> Optional[JobCluster]:
        row = self._row("job_clusters", cluster_id)
        return JobCluster.from_dict(row) if row else None


# -----------------------------------------------------------------------------
# Ownership Index
# -----------------------------------------------------------------------------
class OwnershipIndex:
    """
    Maps every record id under one owner's goals to its goal id.

    Built once per request. An id that does not resolve to one of the owner's
    goals is reported as not found, whether or not it exists for someone else.
    """

    def __init__(self, store: GoalStore, owner_id: str):
        self._store = store
        self.owner_id = owner_id
        self._goal_ids: set = set()
        self._by_record: Dict[str, str] = {}
        self._stale = True

    def _build(self) -> None:
        goal_ids = {r["goal_id"] for r in self._store.rows("goals") if r["owner_id"] == self.owner_id}
        by_record: Dict[str, str] = {}
        for r in self._store.rows("trial_tasks"):
            if r["goal_id"] in goal_ids:
                by_record[r["task_id"]] = r["goal_id"]
        for r in self._store.rows("phases"):
            if r["goal_id"] in goal_ids:
                by_record[r["phase_id"]] = r["goal_id"]
        for r in self._store.rows("milestones"):
            if r["phase_id"] in by_record:
                by_record[r["milestone_id"]] = by_record[r["phase_id"]]
        for r in self._store.rows("job_clusters"):
            if r["milestone_id"] in by_record:
                by_record[r["cluster_id"]] = by_record[r["milestone_id"]]
        for r in self._store.rows("jobs"):
            if r["job_cluster_id"] in by_record:
                by_record[r["job_id"]] = by_record[r["job_cluster_id"]]
        self._goal_ids = goal_ids
        self._by_record = by_record
        self._stale = False

    def invalidate(self) -> None:
        self._stale = True

    def _lookup(self, record_id: str) -> Optional[str]:
        if self._stale:
            self._build()
        if record_id in self._goal_ids:
            return record_id
        return self._by_record.get(record_id)

    def goal_id_for(self, record_id: str, kind: str = "Record") -> str:
        goal_id = self._lookup(record_id)
        if goal_id is None:
            # Rebuild once so records created earlier in this request resolve
            self._build()
            goal_id = self._lookup(record_id)
        if goal_id is None:
            raise NotFoundError(f"{kind} {record_id} not found")
        return goal_id

    def owns_goal(self, goal_id: str) -> bool:
        try:
            return self.goal_id_for(goal_id, "Goal") == goal_id
        except NotFoundError:
            return False
