"""
Pytest configuration for Volition tests.

This module provides:
1. A scripted stand-in for the content-generation service
2. A controllable clock
3. Store, service and request-context fixtures
4. Entity factories shared by the engine tests
"""

import uuid
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, List

import pytest

from volition.generation_schemas import (
    BlueprintPlan,
    ComplexityEstimate,
    JobAtomizerPlan,
    MutatedJob,
    NegotiationResult,
    StressTestQuestionSet,
    TrialPlan,
)
from volition.goal_model import (
    Complexity,
    Goal,
    GoalStatus,
    Job,
    JobCluster,
    JobStatus,
    JobType,
    Milestone,
    MilestoneStatus,
    Phase,
    PhaseStatus,
    Scope,
    TrialTask,
    TrialTaskStatus,
)
from volition.goal_service import GoalService, RequestContext
from volition.goal_store import GoalStore


# -----------------------------------------------------------------------------
# Test Constants
# -----------------------------------------------------------------------------
TEST_USER_ID = "user-123"
OTHER_USER_ID = "user-456"
BASE_TIME = datetime(2025, 1, 6, 9, 0, 0)


def stress_test_payload() -> List[Dict[str, Any]]:
    questions = []
    for kind in ("DRIVE", "PAIN", "PAIN", "DRIVE", "PAIN", "DRIVE"):
        questions.append({
            "type": kind,
            "question": f"{kind.title()} question?",
            "answerOptions": [{"text": f"Option {s}", "score": s} for s in range(1, 6)],
        })
    return questions


def trial_plan_payload(days: int = 3) -> List[Dict[str, Any]]:
    return [
        {
            "day_number": day,
            "task_title": f"Day {day} task",
            "est_minutes": 10,
            "acceptance_criteria": f"Day {day} done",
        }
        for day in range(1, days + 1)
    ]


def blueprint_payload(milestones_per_phase=(2, 1)) -> List[Dict[str, Any]]:
    return [
        {
            "title": f"Phase {p + 1}",
            "milestones": [
                {"title": f"Milestone {p + 1}.{m + 1}", "acceptance_criteria": f"Criteria {p + 1}.{m + 1}"}
                for m in range(count)
            ],
        }
        for p, count in enumerate(milestones_per_phase)
    ]


def jobs_payload() -> List[Dict[str, Any]]:
    return [
        {
            "title": "Setup",
            "jobs": [
                {"title": "Create repository", "type": "QUICK_WIN", "est_minutes": 15},
                {"title": "Write data model", "type": "DEEP_WORK", "est_minutes": 120},
            ],
        },
        {
            "title": "Build",
            "jobs": [{"title": "Implement endpoint", "type": "ANCHOR", "est_minutes": 60}],
        },
    ]


# -----------------------------------------------------------------------------
# Fakes
# -----------------------------------------------------------------------------
class FakeGenerator:
    """Scripted content generator. Payloads go through the real schemas."""

    def __init__(self):
        self.intent = "GATEKEEPER"
        self.trial_plan = trial_plan_payload()
        self.complexity = {"size": "SMALL", "estimated_total_hours": 40, "projected_end_date": "2025-03-01"}
        self.blueprint = blueprint_payload()
        self.jobs = jobs_payload()
        self.negotiation = {"advice": "Break it down and try again.", "recommendation": "CHANGE"}
        self.mutation = {"title": "Write half the data model", "type": "QUICK_WIN", "est_minutes": 45}
        self.failures: Dict[str, Exception] = {}
        self.calls: List[str] = []

    def _call(self, role: str) -> None:
        self.calls.append(role)
        if role in self.failures:
            raise self.failures[role]

    def classify_intent(self, text):
        self._call("classifier")
        return self.intent

    def generate_stress_test(self, goal_title):
        self._call("stress_test")
        return StressTestQuestionSet.model_validate(stress_test_payload()).root

    def generate_trial_plan(self, goal_title):
        self._call("trial")
        return TrialPlan.model_validate(self.trial_plan).root

    def estimate_complexity(self, goal):
        self._call("complexity")
        estimate = ComplexityEstimate.model_validate(self.complexity)
        return Complexity.from_estimate(estimate.estimated_total_hours, estimate.projected_end_date)

    def generate_blueprint(self, goal):
        self._call("blueprint")
        return BlueprintPlan.model_validate(self.blueprint).root

    def generate_jobs(self, goal, milestone):
        self._call("jobs")
        return JobAtomizerPlan.model_validate(self.jobs).root

    def negotiate_job(self, goal, milestone, job, reason):
        self._call("negotiator")
        return NegotiationResult.model_validate(self.negotiation)

    def mutate_job(self, goal, milestone, job, reason):
        self._call("mutator")
        return MutatedJob.model_validate(self.mutation)


class FakeClock:
    """Returns a time one second later on every call."""

    def __init__(self, start: datetime = BASE_TIME):
        self.current = start

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


# -----------------------------------------------------------------------------
# Fixtures
# -----------------------------------------------------------------------------
@pytest.fixture
def store(tmp_path) -> GoalStore:
    return GoalStore(tmp_path / "volition_state.json")


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def service(store, generator, clock) -> GoalService:
    return GoalService(store=store, generator=generator, clock=clock)


@pytest.fixture
def ctx() -> RequestContext:
    return RequestContext(user_id=TEST_USER_ID)


@pytest.fixture
def other_ctx() -> RequestContext:
    return RequestContext(user_id=OTHER_USER_ID)


def build_active_goal(service: GoalService, ctx: RequestContext, title: str = "Build a Telegram bot") -> Goal:
    """Drive a goal from creation to ACTIVE with a blueprint."""
    goal = service.create_goal(ctx, title)
    service.update_scope(ctx, goal.goal_id, 10, ["python"], "Bot answers /start")
    service.estimate_complexity(ctx, goal.goal_id)
    service.generate_blueprint(ctx, goal.goal_id)
    return service.get_goal(ctx, goal.goal_id)


def first_milestone(service: GoalService, ctx: RequestContext, goal_id: str) -> Milestone:
    phases, milestones = service._goal_tree(goal_id)
    return milestones[0]


# -----------------------------------------------------------------------------
# Entity Factories
# -----------------------------------------------------------------------------
def _id() -> str:
    return str(uuid.uuid4())


def make_goal(status: GoalStatus = GoalStatus.ACTIVE, owner_id: str = TEST_USER_ID,
              with_plan_inputs: bool = True) -> Goal:
    goal = Goal(
        goal_id=_id(),
        owner_id=owner_id,
        title="Learn Spanish",
        status=status,
        created_at=BASE_TIME,
        updated_at=BASE_TIME,
    )
    if with_plan_inputs:
        goal.scope = Scope(hours_per_week=5, tech_stack=["duolingo"], definition_of_done="Hold a conversation")
        goal.complexity = Complexity.from_estimate(30, "2025-04-01")
    return goal


def make_phase(goal_id: str = "goal-1", index: int = 0,
               status: PhaseStatus = PhaseStatus.ACTIVE) -> Phase:
    return Phase(
        phase_id=_id(),
        goal_id=goal_id,
        index=index,
        title=f"Phase {index}",
        status=status,
        created_at=BASE_TIME + timedelta(minutes=index),
    )


def make_milestones(phase: Phase, statuses: List[MilestoneStatus], offset: int = 0) -> List[Milestone]:
    return [
        Milestone(
            milestone_id=_id(),
            phase_id=phase.phase_id,
            title=f"Milestone {i}",
            acceptance_criteria=f"Criteria {i}",
            status=status,
            created_at=BASE_TIME + timedelta(seconds=offset + i),
        )
        for i, status in enumerate(statuses)
    ]


def make_cluster(milestone_id: str = "milestone-1", order: int = 0) -> JobCluster:
    return JobCluster(
        cluster_id=_id(),
        milestone_id=milestone_id,
        title=f"Cluster {order}",
        created_at=BASE_TIME + timedelta(seconds=order),
    )


def make_job(cluster_id: str = "cluster-1", job_type: JobType = JobType.QUICK_WIN,
             status: JobStatus = JobStatus.PENDING, est_minutes: int = 30,
             order: int = 0, title: Optional[str] = None) -> Job:
    return Job(
        job_id=_id(),
        job_cluster_id=cluster_id,
        title=title or f"Job {order}",
        type=job_type,
        est_minutes=est_minutes,
        status=status,
        created_at=BASE_TIME + timedelta(seconds=order),
    )


def make_trial_tasks(statuses: List[TrialTaskStatus], goal_id: str = "goal-1") -> List[TrialTask]:
    return [
        TrialTask(
            task_id=_id(),
            goal_id=goal_id,
            day_number=i + 1,
            title=f"Day {i + 1}",
            est_minutes=10,
            acceptance_criteria="Done",
            status=status,
            created_at=BASE_TIME,
        )
        for i, status in enumerate(statuses)
    ]


# -----------------------------------------------------------------------------
# Session Configuration
# -----------------------------------------------------------------------------
def pytest_configure(config):
    """Configure pytest session."""
    config.addinivalue_line("markers", "api: tests that go through the HTTP layer")
