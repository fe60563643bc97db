"""
Goal Service

Orchestrates the lifecycle engines against the store and the content
generator. Every call takes an explicit RequestContext (current user and
current energy level); nothing here reads ambient per-user state.

ORDERING GUARANTEES:
- A job is stored as FAILED before any recovery path reads or changes it
- A confirmed milestone is stored as COMPLETED before the cascade runs
- Cascade steps (phase completion, next milestone, goal completion) and the
  post-job milestone sync are best-effort and never fail the parent call
"""

import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Callable, Dict, Any, List, Sequence, Tuple

from . import (
    blueprint_engine,
    context_engine,
    job_atomizer,
    recovery_engine,
    trial_engine,
    verification_engine,
    work_sessions,
)
from .config import Settings, load_settings
from .content_generator import ContentGenerator
from .errors import (
    GenerationError,
    MalformedContentError,
    NotFoundError,
    StatePreconditionError,
    UnauthorizedError,
    ValidationError,
)
from .goal_model import (
    BackgroundLevel,
    EnergyLevel,
    Goal,
    GoalStatus,
    Job,
    JobCluster,
    JobStatus,
    Milestone,
    MilestoneStatus,
    Phase,
    Scope,
    TERMINAL_GOAL_STATUSES,
    TRIAL_STATUS,
    TrialTask,
)
from .goal_store import GoalStore, OwnershipIndex
from .recovery_engine import MutationPreview, NegotiationOutcome, Recommendation
from .scoring_engine import ScoringDecision, ScoringResult, calculate_score
from .verification_engine import CascadeReport, PostCommitHooks

logger = logging.getLogger("goal_service")


# -----------------------------------------------------------------------------
# Request Context
# -----------------------------------------------------------------------------
@dataclass
class RequestContext:
    """Per-request identity and energy. The ownership index is cached here."""
    user_id: Optional[str]
    energy: EnergyLevel = EnergyLevel.MED
    _index: Optional[OwnershipIndex] = field(default=None, repr=False)

    def ownership(self, store: GoalStore) -> OwnershipIndex:
        if not self.user_id:
            raise UnauthorizedError("Not authenticated")
        if self._index is None:
            self._index = OwnershipIndex(store, self.user_id)
        return self._index

    def invalidate(self) -> None:
        if self._index is not None:
            self._index.invalidate()


# -----------------------------------------------------------------------------
# Results
# -----------------------------------------------------------------------------
@dataclass
class StressTestOutcome:
    result: ScoringResult
    goal: Optional[Goal] = None
    trial_tasks: List[TrialTask] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = self.result.to_dict()
        data["goal"] = self.goal.to_dict() if self.goal else None
        data["trial_tasks"] = [t.to_dict() for t in self.trial_tasks]
        return data


@dataclass
class TrialTaskOutcome:
    goal: Goal
    progress: trial_engine.TrialProgress
    graduated: bool

    def to_dict(self) -> Dict[str, Any]:
        return {"goal": self.goal.to_dict(), "trial": self.progress.to_dict(), "graduated": self.graduated}


@dataclass
class MilestoneJobs:
    milestone: Milestone
    clusters: List[JobCluster]
    jobs: List[Job]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "milestone": self.milestone.to_dict(),
            "clusters": [
                dict(c.to_dict(), jobs=[j.to_dict() for j in self.jobs if j.job_cluster_id == c.cluster_id])
                for c in self.clusters
            ],
        }


@dataclass
class JobDoneOutcome:
    job: Job
    milestone: Milestone
    cascade: CascadeReport

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job": self.job.to_dict(),
            "milestone_status": self.milestone.status.value,
            "cascade": self.cascade.to_dict(),
        }


@dataclass
class VerificationOutcome:
    milestone: Milestone
    cascade: CascadeReport

    @property
    def next_milestone_id(self) -> Optional[str]:
        return self.cascade.result_of("activate_next_milestone")

    @property
    def goal_completed(self) -> bool:
        return bool(self.cascade.result_of("complete_goal"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "milestone": self.milestone.to_dict(),
            "next_milestone_id": self.next_milestone_id,
            "goal_completed": self.goal_completed,
            "cascade": self.cascade.to_dict(),
        }


# -----------------------------------------------------------------------------
# Service
# -----------------------------------------------------------------------------
class GoalService:

    def __init__(self, store: GoalStore, generator: Any,
                 clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.generator = generator
        self._clock = clock or datetime.utcnow

    def _now(self) -> datetime:
        return self._clock()

    # -------------------------------------------------------------------------
    # Owner-scoped loading
    # -------------------------------------------------------------------------

    def _goal(self, ctx: RequestContext, goal_id: str) -> Goal:
        index = ctx.ownership(self.store)
        if not index.owns_goal(goal_id):
            raise NotFoundError(f"Goal {goal_id} not found")
        goal = self.store.get_goal(goal_id)
        if goal is None:
            raise NotFoundError(f"Goal {goal_id} not found")
        return goal

    def _milestone(self, ctx: RequestContext, milestone_id: str,
                   goal_id: Optional[str] = None) -> Tuple[Goal, Phase, Milestone]:
        owner_goal_id = ctx.ownership(self.store).goal_id_for(milestone_id, "Milestone")
        if goal_id is not None and owner_goal_id != goal_id:
            raise NotFoundError(f"Milestone {milestone_id} not found in goal {goal_id}")
        milestone = self.store.get_milestone(milestone_id)
        if milestone is None:
            raise NotFoundError(f"Milestone {milestone_id} not found")
        phase = self.store.get_phase(milestone.phase_id)
        if phase is None or phase.goal_id != owner_goal_id:
            raise NotFoundError(f"Milestone {milestone_id} not found")
        return self._goal(ctx, owner_goal_id), phase, milestone

    def _job(self, ctx: RequestContext, job_id: str) -> Tuple[Goal, Milestone, Job]:
        ctx.ownership(self.store).goal_id_for(job_id, "Job")
        job = self.store.get_job(job_id)
        if job is None:
            raise NotFoundError(f"Job {job_id} not found")
        cluster = self.store.get_job_cluster(job.job_cluster_id)
        if cluster is None:
            raise NotFoundError(f"Job {job_id} not found")
        goal, _, milestone = self._milestone(ctx, cluster.milestone_id)
        return goal, milestone, job

    def _milestone_jobs(self, milestone_id: str) -> Tuple[List[JobCluster], List[Job]]:
        clusters = self.store.list_job_clusters([milestone_id])
        jobs = self.store.list_jobs([c.cluster_id for c in clusters])
        return clusters, jobs

    def _goal_tree(self, goal_id: str) -> Tuple[List[Phase], List[Milestone]]:
        phases = self.store.list_phases(goal_id)
        milestones = self.store.list_milestones([p.phase_id for p in phases])
        return phases, milestones

    def _touch(self, goal: Goal) -> None:
        goal.updated_at = self._now()
        self.store.update_goal(goal)

    @staticmethod
    def _ensure_goal_open(goal: Goal) -> None:
        if goal.status in TERMINAL_GOAL_STATUSES:
            raise StatePreconditionError(
                f"Goal is {goal.status.value}; no further changes are allowed",
                expected="non-terminal status",
                actual=goal.status.value,
            )

    # -------------------------------------------------------------------------
    # Gatekeeper
    # -------------------------------------------------------------------------

    def classify_intent(self, ctx: RequestContext, text: str) -> str:
        ctx.ownership(self.store)
        if not text or not text.strip():
            raise ValidationError("Input text is required")
        return self.generator.classify_intent(text.strip())

    def generate_stress_test(self, ctx: RequestContext, goal_title: str) -> List[Any]:
        ctx.ownership(self.store)
        if not goal_title or not goal_title.strip():
            raise ValidationError("Goal title is required")
        return self.generator.generate_stress_test(goal_title.strip())

    def submit_stress_test(self, ctx: RequestContext, goal_title: Optional[str],
                           answers: Sequence[Any]) -> StressTestOutcome:
        """
        Score the answers; on PROCEED create the goal in trial and plan its trial.

        If trial planning fails the goal is kept (in trial, with no tasks) and
        the generation error propagates; regenerate_trial_plan() recovers it.
        """
        ctx.ownership(self.store)
        result = calculate_score(answers)
        if result.decision == ScoringDecision.REJECT:
            logger.info(f"Stress test rejected for user {ctx.user_id} (score={result.score})")
            return StressTestOutcome(result=result)

        title = (goal_title or "").strip()
        if not title:
            raise ValidationError("Goal title is required to proceed")

        now = self._now()
        goal = Goal(
            goal_id=str(uuid.uuid4()),
            owner_id=ctx.user_id,
            title=title,
            status=TRIAL_STATUS,
            created_at=now,
            updated_at=now,
        )
        self.store.insert_goal(goal)
        ctx.invalidate()
        logger.info(f"Goal {goal.goal_id} created in trial (score={result.score})")

        tasks = self._plan_trial(goal)
        return StressTestOutcome(result=result, goal=goal, trial_tasks=tasks)

    def _plan_trial(self, goal: Goal) -> List[TrialTask]:
        try:
            plan = self.generator.generate_trial_plan(goal.title)
        except (GenerationError, MalformedContentError) as e:
            logger.error(f"Trial plan generation failed for goal {goal.goal_id}: {e}")
            raise
        tasks = trial_engine.build_trial_tasks(goal.goal_id, plan, now=self._now())
        self.store.insert_trial_tasks(tasks)
        return tasks

    def regenerate_trial_plan(self, ctx: RequestContext, goal_id: str) -> List[TrialTask]:
        goal = self._goal(ctx, goal_id)
        if goal.status != TRIAL_STATUS:
            raise StatePreconditionError(
                f"Goal is not in trial. Current status: {goal.status.value}",
                expected=TRIAL_STATUS.value,
                actual=goal.status.value,
            )
        if self.store.list_trial_tasks(goal_id):
            raise StatePreconditionError("Trial plan already exists for this goal")
        tasks = self._plan_trial(goal)
        ctx.invalidate()
        return tasks

    # -------------------------------------------------------------------------
    # Trial
    # -------------------------------------------------------------------------

    def get_trial(self, ctx: RequestContext, goal_id: str) -> trial_engine.TrialProgress:
        self._goal(ctx, goal_id)
        tasks = self.store.list_trial_tasks(goal_id)
        activated = trial_engine.activate_first_task_if_fresh(tasks)
        if activated is not None:
            self.store.update_trial_tasks([activated])
        return trial_engine.get_trial_progress(tasks)

    def complete_trial_task(self, ctx: RequestContext, goal_id: str, task_id: str) -> TrialTaskOutcome:
        goal = self._goal(ctx, goal_id)
        if ctx.ownership(self.store).goal_id_for(task_id, "Trial task") != goal_id:
            raise NotFoundError(f"Trial task {task_id} not found")
        if goal.status == GoalStatus.FAILED:
            raise StatePreconditionError(
                "Trial was given up", expected=TRIAL_STATUS.value, actual=goal.status.value
            )

        tasks = self.store.list_trial_tasks(goal_id)
        changed = trial_engine.complete_task(tasks, task_id, now=self._now())
        if changed:
            self.store.update_trial_tasks(changed)

        graduated = trial_engine.graduate_if_complete(goal, tasks, now=self._now())
        if graduated:
            self.store.update_goal(goal)
        return TrialTaskOutcome(goal=goal, progress=trial_engine.get_trial_progress(tasks), graduated=graduated)

    def give_up_goal(self, ctx: RequestContext, goal_id: str) -> Goal:
        goal = self._goal(ctx, goal_id)
        trial_engine.give_up(goal, now=self._now())
        self.store.update_goal(goal)
        return goal

    # -------------------------------------------------------------------------
    # Goals
    # -------------------------------------------------------------------------

    def create_goal(self, ctx: RequestContext, title: str) -> Goal:
        """Create a goal directly in PENDING_SCOPE, skipping the stress test."""
        ctx.ownership(self.store)
        if not title or not title.strip():
            raise ValidationError("Goal title is required")
        now = self._now()
        goal = Goal(
            goal_id=str(uuid.uuid4()),
            owner_id=ctx.user_id,
            title=title.strip(),
            status=GoalStatus.PENDING_SCOPE,
            created_at=now,
            updated_at=now,
        )
        self.store.insert_goal(goal)
        ctx.invalidate()
        return goal

    def list_goals(self, ctx: RequestContext, status: Optional[GoalStatus] = None) -> List[Goal]:
        ctx.ownership(self.store)
        return self.store.list_goals(ctx.user_id, status)

    def get_goal(self, ctx: RequestContext, goal_id: str) -> Goal:
        return self._goal(ctx, goal_id)

    def rename_goal(self, ctx: RequestContext, goal_id: str, title: str) -> Goal:
        goal = self._goal(ctx, goal_id)
        if not title or not title.strip():
            raise ValidationError("Goal title is required")
        goal.title = title.strip()
        self._touch(goal)
        return goal

    def delete_goal(self, ctx: RequestContext, goal_id: str) -> None:
        self._goal(ctx, goal_id)
        self.store.delete_goal(goal_id)
        ctx.invalidate()

    # -------------------------------------------------------------------------
    # Architect: scope, complexity, blueprint
    # -------------------------------------------------------------------------

    def update_scope(self, ctx: RequestContext, goal_id: str, hours_per_week: float,
                     tech_stack: Sequence[str], definition_of_done: str,
                     background_level: Optional[BackgroundLevel] = None) -> Goal:
        goal = self._goal(ctx, goal_id)
        allowed = {GoalStatus.PENDING_SCOPE, GoalStatus.SCOPING}
        if goal.status not in allowed:
            raise StatePreconditionError(
                f"Scope can only be edited in PENDING_SCOPE or SCOPING. Current status: {goal.status.value}",
                expected="PENDING_SCOPE|SCOPING",
                actual=goal.status.value,
            )
        if (not isinstance(hours_per_week, (int, float)) or isinstance(hours_per_week, bool)
                or not math.isfinite(hours_per_week) or hours_per_week <= 0):
            raise ValidationError("hours_per_week must be a positive number")
        if not definition_of_done or not definition_of_done.strip():
            raise ValidationError("definition_of_done is required")

        goal.scope = Scope(
            hours_per_week=hours_per_week,
            tech_stack=[s.strip() for s in (tech_stack or []) if s and s.strip()],
            definition_of_done=definition_of_done.strip(),
            background_level=background_level or BackgroundLevel.INTERMEDIATE,
        )
        goal.status = GoalStatus.SCOPING
        self._touch(goal)
        logger.info(f"Goal {goal_id} scoped ({hours_per_week}h/week)")
        return goal

    def estimate_complexity(self, ctx: RequestContext, goal_id: str) -> Goal:
        goal = self._goal(ctx, goal_id)
        allowed = {GoalStatus.PENDING_SCOPE, GoalStatus.SCOPING, GoalStatus.PLANNING}
        if goal.status not in allowed:
            raise StatePreconditionError(
                f"Complexity can only be estimated before a blueprint exists. Current status: {goal.status.value}",
                expected="SCOPING",
                actual=goal.status.value,
            )
        if goal.scope is None or not goal.scope.is_valid():
            raise StatePreconditionError("Goal scope is missing or invalid; update the scope first")

        goal.complexity = self.generator.estimate_complexity(goal)
        goal.status = GoalStatus.PLANNING
        self._touch(goal)
        logger.info(f"Goal {goal_id} estimated as {goal.complexity.size.value} "
                    f"({goal.complexity.estimated_total_hours}h)")
        return goal

    def generate_blueprint(self, ctx: RequestContext, goal_id: str) -> blueprint_engine.BlueprintView:
        goal = self._goal(ctx, goal_id)
        blueprint_engine.ensure_blueprint_allowed(goal, self.store.list_phases(goal_id))

        plan = self.generator.generate_blueprint(goal)
        phases, milestones = blueprint_engine.build_blueprint(goal, plan, now=self._now())
        self.store.insert_phases(phases)
        self.store.insert_milestones(milestones)

        goal.status = GoalStatus.ACTIVE
        self._touch(goal)
        ctx.invalidate()
        logger.info(f"Goal {goal_id} blueprint: {len(phases)} phase(s), {len(milestones)} milestone(s)")
        return blueprint_engine.BlueprintView(phases=phases, milestones=milestones)

    def get_blueprint(self, ctx: RequestContext, goal_id: str) -> blueprint_engine.BlueprintView:
        self._goal(ctx, goal_id)
        phases, milestones = self._goal_tree(goal_id)
        return blueprint_engine.BlueprintView(phases=phases, milestones=milestones)

    def set_active_milestone(self, ctx: RequestContext, goal_id: str, milestone_id: str) -> Milestone:
        goal, phase, milestone = self._milestone(ctx, milestone_id, goal_id)
        self._ensure_goal_open(goal)
        phases, milestones = self._goal_tree(goal_id)
        siblings = blueprint_engine.milestones_in_phase(phase.phase_id, milestones)
        target = next(m for m in siblings if m.milestone_id == milestone_id)

        if not blueprint_engine.can_enter_milestone(phases, phase, siblings, target):
            raise StatePreconditionError(
                "Milestone is locked until the previous milestone and phase are completed",
                expected="unlocked",
                actual="locked",
            )

        phase_status = phase.status
        changed = blueprint_engine.activate_milestone(phase, siblings, milestone_id, now=self._now())
        if changed:
            self.store.update_milestones(changed)
        if phase.status != phase_status:
            self.store.update_phases([phase])
        return target

    # -------------------------------------------------------------------------
    # Job Atomizer
    # -------------------------------------------------------------------------

    def generate_jobs(self, ctx: RequestContext, goal_id: str, milestone_id: str) -> MilestoneJobs:
        goal, _, milestone = self._milestone(ctx, milestone_id, goal_id)
        self._ensure_goal_open(goal)
        job_atomizer.ensure_can_generate_jobs(goal, milestone, self.store.list_job_clusters([milestone_id]))

        plan = self.generator.generate_jobs(goal, milestone)
        clusters, jobs = job_atomizer.build_job_tree(milestone, plan, now=self._now())
        self.store.insert_job_tree(clusters, jobs)
        ctx.invalidate()

        stored_clusters, stored_jobs = self._milestone_jobs(milestone_id)
        job_atomizer.check_atomic_constraint(stored_jobs)
        return MilestoneJobs(milestone=milestone, clusters=stored_clusters, jobs=stored_jobs)

    def delete_jobs(self, ctx: RequestContext, goal_id: str, milestone_id: str) -> int:
        self._milestone(ctx, milestone_id, goal_id)
        removed = self.store.delete_job_clusters(milestone_id)
        ctx.invalidate()
        logger.info(f"Deleted {removed} job cluster(s) from milestone {milestone_id}")
        return removed

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def _sync_milestone(self, milestone_id: str) -> str:
        milestone = self.store.get_milestone(milestone_id)
        clusters, jobs = self._milestone_jobs(milestone_id)
        if verification_engine.sync_milestone_status(milestone, clusters, jobs):
            self.store.update_milestones([milestone])
        return milestone.status.value

    def get_milestone_jobs(self, ctx: RequestContext, milestone_id: str) -> MilestoneJobs:
        self._milestone(ctx, milestone_id)
        PostCommitHooks().add("sync_milestone", lambda: self._sync_milestone(milestone_id)).run()
        _, _, milestone = self._milestone(ctx, milestone_id)
        clusters, jobs = self._milestone_jobs(milestone_id)
        return MilestoneJobs(milestone=milestone, clusters=clusters, jobs=jobs)

    def recommend_jobs(self, ctx: RequestContext, milestone_id: str) -> context_engine.FilteredJobs:
        self._milestone(ctx, milestone_id)
        clusters, jobs = self._milestone_jobs(milestone_id)
        return context_engine.filter_jobs(jobs, ctx.energy, clusters)

    def explore_jobs(self, ctx: RequestContext, milestone_id: str) -> Dict[str, List[Job]]:
        self._milestone(ctx, milestone_id)
        _, jobs = self._milestone_jobs(milestone_id)
        return context_engine.group_by_status(jobs)

    @staticmethod
    def _require_job_status(job: Job, expected: JobStatus, action: str) -> None:
        if job.status != expected:
            raise StatePreconditionError(
                f"Cannot {action} job: job is in {job.status.value} status. Expected {expected.value}.",
                expected=expected.value,
                actual=job.status.value,
            )

    def start_job(self, ctx: RequestContext, job_id: str) -> Job:
        goal, _, job = self._job(ctx, job_id)
        self._ensure_goal_open(goal)
        self._require_job_status(job, JobStatus.PENDING, "start")
        work_sessions.start_session(job.work_sessions, self._now())
        job.status = JobStatus.ACTIVE
        return self.store.update_job(job)

    def pause_job(self, ctx: RequestContext, job_id: str) -> Job:
        goal, _, job = self._job(ctx, job_id)
        self._ensure_goal_open(goal)
        self._require_job_status(job, JobStatus.ACTIVE, "pause")
        work_sessions.end_current_session(job.work_sessions, self._now())
        return self.store.update_job(job)

    def resume_job(self, ctx: RequestContext, job_id: str) -> Job:
        goal, _, job = self._job(ctx, job_id)
        self._ensure_goal_open(goal)
        self._require_job_status(job, JobStatus.ACTIVE, "resume")
        work_sessions.start_session(job.work_sessions, self._now())
        return self.store.update_job(job)

    def mark_job_done(self, ctx: RequestContext, job_id: str) -> JobDoneOutcome:
        goal, milestone, job = self._job(ctx, job_id)
        self._ensure_goal_open(goal)
        self._require_job_status(job, JobStatus.ACTIVE, "complete")
        work_sessions.end_current_session(job.work_sessions, self._now())
        job.status = JobStatus.COMPLETED
        self.store.update_job(job)

        report = PostCommitHooks().add(
            "sync_milestone", lambda: self._sync_milestone(milestone.milestone_id)
        ).run()
        milestone = self.store.get_milestone(milestone.milestone_id) or milestone
        return JobDoneOutcome(job=job, milestone=milestone, cascade=report)

    def get_job_timer(self, ctx: RequestContext, job_id: str,
                      now: Optional[datetime] = None) -> Dict[str, Any]:
        _, _, job = self._job(ctx, job_id)
        stamp = now or self._now()
        return {
            "job_id": job.job_id,
            "is_running": work_sessions.is_session_active(job.work_sessions),
            "total_seconds": work_sessions.get_total_duration(job.work_sessions, stamp),
            "current_session_seconds": work_sessions.get_current_session_duration(job.work_sessions, stamp),
        }

    # -------------------------------------------------------------------------
    # Failure Recovery
    # -------------------------------------------------------------------------

    def fail_job(self, ctx: RequestContext, job_id: str, reason: str) -> Job:
        goal, _, job = self._job(ctx, job_id)
        recovery_engine.ensure_goal_recoverable(goal)
        recovery_engine.mark_job_failed(job, reason, self._now())
        return self.store.update_job(job)

    def retry_job(self, ctx: RequestContext, job_id: str, reason: str) -> Job:
        goal, _, job = self._job(ctx, job_id)
        recovery_engine.ensure_goal_recoverable(goal)
        recovery_engine.retry_job(job, reason, self._now())
        return self.store.update_job(job)

    def negotiate_job(self, ctx: RequestContext, job_id: str, reason: str) -> NegotiationOutcome:
        goal, milestone, job = self._job(ctx, job_id)
        recovery_engine.ensure_goal_recoverable(goal)
        recovery_engine.ensure_negotiable(job)
        if not reason or not reason.strip():
            raise ValidationError("A failure reason is required")
        result = self.generator.negotiate_job(goal, milestone, job, reason.strip())
        return NegotiationOutcome(advice=result.advice, recommendation=Recommendation(result.recommendation))

    def preview_job_mutation(self, ctx: RequestContext, job_id: str, reason: str) -> MutationPreview:
        """Generate replacement content. Nothing is stored."""
        goal, milestone, job = self._job(ctx, job_id)
        recovery_engine.ensure_goal_recoverable(goal)
        recovery_engine.ensure_mutable(job)
        if not reason or not reason.strip():
            raise ValidationError("A failure reason is required")
        mutated = self.generator.mutate_job(goal, milestone, job, reason.strip())
        return MutationPreview(
            job_id=job.job_id,
            title=mutated.title,
            type=mutated.type,
            est_minutes=mutated.est_minutes,
        ).validate()

    def confirm_job_mutation(self, ctx: RequestContext, job_id: str, preview: MutationPreview) -> Job:
        goal, _, job = self._job(ctx, job_id)
        recovery_engine.ensure_goal_recoverable(goal)
        recovery_engine.apply_mutation(job, preview)
        return self.store.update_job(job)

    # -------------------------------------------------------------------------
    # Verification & Completion Cascade
    # -------------------------------------------------------------------------

    def get_pending_verification_milestones(self, ctx: RequestContext, goal_id: str) -> List[Milestone]:
        self._goal(ctx, goal_id)
        _, milestones = self._goal_tree(goal_id)
        return [m for m in milestones if m.status == MilestoneStatus.PENDING_VERIFICATION]

    def get_milestone_verification_data(self, ctx: RequestContext, milestone_id: str) -> Dict[str, Any]:
        _, _, milestone = self._milestone(ctx, milestone_id)
        clusters, jobs = self._milestone_jobs(milestone_id)
        return {
            "milestone": milestone.to_dict(),
            "acceptance_criteria": milestone.acceptance_criteria,
            "all_jobs_completed": verification_engine.check_milestone_completion(clusters, jobs),
        }

    def confirm_milestone_verification(self, ctx: RequestContext, milestone_id: str) -> VerificationOutcome:
        goal, phase, milestone = self._milestone(ctx, milestone_id)
        self._ensure_goal_open(goal)
        clusters, jobs = self._milestone_jobs(milestone_id)
        verification_engine.confirm_verification(milestone, clusters, jobs)
        self.store.update_milestones([milestone])
        logger.info(f"Milestone {milestone_id} verified and COMPLETED")

        hooks = PostCommitHooks()
        hooks.add("complete_phase", lambda: self._complete_phase_if_done(phase.phase_id))
        hooks.add("activate_next_milestone", lambda: self._activate_next_milestone(goal.goal_id, milestone_id))
        hooks.add("complete_goal", lambda: self._complete_goal_if_done(goal.goal_id))
        report = hooks.run()
        return VerificationOutcome(milestone=milestone, cascade=report)

    def _complete_phase_if_done(self, phase_id: str) -> bool:
        phase = self.store.get_phase(phase_id)
        siblings = self.store.list_milestones([phase_id])
        if blueprint_engine.complete_phase_if_done(phase, siblings):
            self.store.update_phases([phase])
            return True
        return False

    def _activate_next_milestone(self, goal_id: str, completed_id: str) -> Optional[str]:
        phases, milestones = self._goal_tree(goal_id)
        ordered = blueprint_engine.order_milestones(phases, milestones)
        upcoming = verification_engine.find_next_pending_milestone(ordered, completed_id)
        if upcoming is None:
            logger.info(f"Goal {goal_id} has no further pending milestone")
            return None
        phase = next(p for p in phases if p.phase_id == upcoming.phase_id)
        siblings = blueprint_engine.milestones_in_phase(phase.phase_id, milestones)
        phase_status = phase.status
        changed = blueprint_engine.activate_milestone(phase, siblings, upcoming.milestone_id, now=self._now())
        if changed:
            self.store.update_milestones(changed)
        if phase.status != phase_status:
            self.store.update_phases([phase])
        return upcoming.milestone_id

    def _complete_goal_if_done(self, goal_id: str) -> bool:
        goal = self.store.get_goal(goal_id)
        _, milestones = self._goal_tree(goal_id)
        if verification_engine.complete_goal_if_done(goal, milestones, now=self._now()):
            self.store.update_goal(goal)
            return True
        return False

    def get_active_focus(self, ctx: RequestContext) -> Optional[Dict[str, Any]]:
        """
        Most recently updated ACTIVE goal and its focus milestone, preferring
        one awaiting verification over the ACTIVE one.
        """
        ctx.ownership(self.store)
        goals = self.store.list_goals(ctx.user_id, GoalStatus.ACTIVE)
        if not goals:
            return None
        goal = goals[0]
        _, milestones = self._goal_tree(goal.goal_id)
        focus = next((m for m in milestones if m.status == MilestoneStatus.PENDING_VERIFICATION), None)
        if focus is None:
            focus = next((m for m in milestones if m.status == MilestoneStatus.ACTIVE), None)
        return {"goal": goal.to_dict(), "milestone": focus.to_dict() if focus else None}


# -----------------------------------------------------------------------------
# Global Service Instance
# -----------------------------------------------------------------------------

_service_instance: Optional[GoalService] = None


def get_goal_service(settings: Optional[Settings] = None) -> GoalService:
    """Get or create the goal service singleton."""
    global _service_instance
    if _service_instance is None:
        settings = settings or load_settings()
        _service_instance = GoalService(
            store=GoalStore(settings.state_file),
            generator=ContentGenerator.from_settings(settings),
        )
    return _service_instance
