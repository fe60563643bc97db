"""
Integration Tests for the Goal Service

Drives the engines through the service against a real store and a scripted
content generator.

Test coverage for:
- Stress test -> trial -> graduation
- Scope -> complexity -> blueprint
- Job generation and execution
- Failure recovery
- Verification cascade up to goal completion
- Owner scoping
"""

import pytest

from volition.errors import (
    GenerationError,
    MalformedContentError,
    NotFoundError,
    StatePreconditionError,
    UnauthorizedError,
    ValidationError,
)
from volition.goal_model import (
    ComplexitySize,
    EnergyLevel,
    GoalStatus,
    JobStatus,
    JobType,
    MilestoneStatus,
    PhaseStatus,
    TRIAL_STATUS,
    TrialTaskStatus,
)
from volition.goal_service import RequestContext
from volition.scoring_engine import ScoringDecision

from tests.conftest import TEST_USER_ID, build_active_goal, first_milestone


def all_answers(score):
    return [{"questionIndex": i, "selectedScore": score} for i in range(6)]


def finish_milestone(service, ctx, goal_id, milestone_id):
    """Generate jobs for a milestone and complete every one of them."""
    generated = service.generate_jobs(ctx, goal_id, milestone_id)
    outcome = None
    for job in generated.jobs:
        service.start_job(ctx, job.job_id)
        outcome = service.mark_job_done(ctx, job.job_id)
    return outcome


def milestone_statuses(service, goal_id):
    _, milestones = service._goal_tree(goal_id)
    return [m.status for m in milestones]


# -----------------------------------------------------------------------------
# Gatekeeper & Trial
# -----------------------------------------------------------------------------
class TestStressTestAndTrial:

    def test_rejected_creates_nothing(self, service, ctx):
        outcome = service.submit_stress_test(ctx, "Learn Go", all_answers(1))
        assert outcome.result.decision == ScoringDecision.REJECT
        assert outcome.goal is None
        assert service.list_goals(ctx) == []

    def test_proceed_creates_goal_in_trial(self, service, ctx, generator):
        outcome = service.submit_stress_test(ctx, "Learn Go", all_answers(5))
        assert outcome.result.score == 100.0
        assert outcome.goal.status == TRIAL_STATUS
        assert outcome.goal.owner_id == TEST_USER_ID
        assert [t.day_number for t in outcome.trial_tasks] == [1, 2, 3]
        assert generator.calls == ["trial"]

    def test_stress_test_questions(self, service, ctx):
        questions = service.generate_stress_test(ctx, "Learn Go")
        assert [q.type for q in questions] == ["PAIN"] * 3 + ["DRIVE"] * 3

    def test_blank_title_rejected(self, service, ctx):
        with pytest.raises(ValidationError):
            service.generate_stress_test(ctx, "  ")

    def test_trial_graduates_exactly_once(self, service, ctx):
        goal = service.submit_stress_test(ctx, "Learn Go", all_answers(4)).goal

        progress = service.get_trial(ctx, goal.goal_id)
        assert progress.active.day_number == 1
        assert progress.active.status == TrialTaskStatus.ACTIVE

        outcomes = []
        while progress.active is not None:
            outcome = service.complete_trial_task(ctx, goal.goal_id, progress.active.task_id)
            outcomes.append(outcome)
            progress = outcome.progress

        assert [o.graduated for o in outcomes] == [False, False, True]
        assert service.get_goal(ctx, goal.goal_id).status == GoalStatus.PENDING_SCOPE

        last_task = progress.completed[-1]
        repeat = service.complete_trial_task(ctx, goal.goal_id, last_task.task_id)
        assert repeat.graduated is False
        assert service.get_goal(ctx, goal.goal_id).status == GoalStatus.PENDING_SCOPE

    def test_future_task_cannot_be_completed(self, service, ctx):
        goal = service.submit_stress_test(ctx, "Learn Go", all_answers(4)).goal
        progress = service.get_trial(ctx, goal.goal_id)
        with pytest.raises(StatePreconditionError):
            service.complete_trial_task(ctx, goal.goal_id, progress.future[-1].task_id)

    def test_trial_plan_failure_keeps_goal(self, service, ctx, generator):
        generator.failures["trial"] = GenerationError("service down")
        with pytest.raises(GenerationError):
            service.submit_stress_test(ctx, "Learn Go", all_answers(5))

        [goal] = service.list_goals(ctx)
        assert goal.status == TRIAL_STATUS
        assert service.get_trial(ctx, goal.goal_id).active is None

        del generator.failures["trial"]
        tasks = service.regenerate_trial_plan(ctx, goal.goal_id)
        assert len(tasks) == 3
        with pytest.raises(StatePreconditionError):
            service.regenerate_trial_plan(ctx, goal.goal_id)

    def test_give_up(self, service, ctx):
        goal = service.submit_stress_test(ctx, "Learn Go", all_answers(5)).goal
        assert service.give_up_goal(ctx, goal.goal_id).status == GoalStatus.FAILED
        progress = service.get_trial(ctx, goal.goal_id)
        with pytest.raises(StatePreconditionError):
            service.complete_trial_task(ctx, goal.goal_id, progress.active.task_id)


# -----------------------------------------------------------------------------
# Architect
# -----------------------------------------------------------------------------
class TestArchitect:

    def test_scope_complexity_blueprint(self, service, ctx):
        goal = service.create_goal(ctx, "Build a Telegram bot")
        assert goal.status == GoalStatus.PENDING_SCOPE

        goal = service.update_scope(ctx, goal.goal_id, 10, ["python", " "], "Bot answers /start")
        assert goal.status == GoalStatus.SCOPING
        assert goal.scope.tech_stack == ["python"]

        goal = service.estimate_complexity(ctx, goal.goal_id)
        assert goal.status == GoalStatus.PLANNING
        assert goal.complexity.size == ComplexitySize.MEDIUM

        view = service.generate_blueprint(ctx, goal.goal_id).to_dict()
        assert service.get_goal(ctx, goal.goal_id).status == GoalStatus.ACTIVE
        assert [len(p["milestones"]) for p in view["phases"]] == [2, 1]
        assert view["phases"][0]["milestones"][0]["status"] == "ACTIVE"

    def test_complexity_requires_scope(self, service, ctx):
        goal = service.create_goal(ctx, "Build a Telegram bot")
        with pytest.raises(StatePreconditionError):
            service.estimate_complexity(ctx, goal.goal_id)

    @pytest.mark.parametrize("hours", [0, -1, float("nan"), float("inf")])
    def test_scope_hours_validated(self, service, ctx, hours):
        goal = service.create_goal(ctx, "Build a Telegram bot")
        with pytest.raises(ValidationError):
            service.update_scope(ctx, goal.goal_id, hours, [], "Done")

    def test_blueprint_only_once(self, service, ctx):
        goal = build_active_goal(service, ctx)
        with pytest.raises(StatePreconditionError):
            service.generate_blueprint(ctx, goal.goal_id)

    def test_malformed_blueprint_stores_nothing(self, service, ctx, generator):
        generator.failures["blueprint"] = MalformedContentError("bad blueprint")
        goal = service.create_goal(ctx, "Build a Telegram bot")
        service.update_scope(ctx, goal.goal_id, 10, [], "Done")
        service.estimate_complexity(ctx, goal.goal_id)
        with pytest.raises(MalformedContentError):
            service.generate_blueprint(ctx, goal.goal_id)
        assert service.get_goal(ctx, goal.goal_id).status == GoalStatus.PLANNING
        assert service.get_blueprint(ctx, goal.goal_id).to_dict() == {"phases": []}

    def test_locked_milestone_cannot_be_activated(self, service, ctx):
        goal = build_active_goal(service, ctx)
        _, milestones = service._goal_tree(goal.goal_id)
        with pytest.raises(StatePreconditionError):
            service.set_active_milestone(ctx, goal.goal_id, milestones[2].milestone_id)

    def test_active_milestone_reactivation_is_noop(self, service, ctx):
        goal = build_active_goal(service, ctx)
        milestone = first_milestone(service, ctx, goal.goal_id)
        service.set_active_milestone(ctx, goal.goal_id, milestone.milestone_id)
        assert milestone_statuses(service, goal.goal_id).count(MilestoneStatus.ACTIVE) == 1

    def test_rename_and_delete(self, service, ctx):
        goal = build_active_goal(service, ctx)
        assert service.rename_goal(ctx, goal.goal_id, "Ship the bot").title == "Ship the bot"
        service.delete_goal(ctx, goal.goal_id)
        with pytest.raises(NotFoundError):
            service.get_goal(ctx, goal.goal_id)
        assert service.store.rows("milestones") == []


# -----------------------------------------------------------------------------
# Jobs & Execution
# -----------------------------------------------------------------------------
class TestJobs:

    def test_generate_jobs(self, service, ctx):
        goal = build_active_goal(service, ctx)
        milestone = first_milestone(service, ctx, goal.goal_id)
        result = service.generate_jobs(ctx, goal.goal_id, milestone.milestone_id)
        assert [c.title for c in result.clusters] == ["Setup", "Build"]
        assert len(result.jobs) == 3
        assert all(j.est_minutes <= 120 for j in result.jobs)

    def test_jobs_only_for_active_milestone(self, service, ctx):
        goal = build_active_goal(service, ctx)
        _, milestones = service._goal_tree(goal.goal_id)
        with pytest.raises(StatePreconditionError):
            service.generate_jobs(ctx, goal.goal_id, milestones[1].milestone_id)

    def test_regenerate_requires_delete(self, service, ctx):
        goal = build_active_goal(service, ctx)
        milestone = first_milestone(service, ctx, goal.goal_id)
        service.generate_jobs(ctx, goal.goal_id, milestone.milestone_id)
        with pytest.raises(StatePreconditionError):
            service.generate_jobs(ctx, goal.goal_id, milestone.milestone_id)
        assert service.delete_jobs(ctx, goal.goal_id, milestone.milestone_id) == 2
        assert len(service.generate_jobs(ctx, goal.goal_id, milestone.milestone_id).jobs) == 3

    def test_recommendations_follow_energy(self, service, ctx):
        goal = build_active_goal(service, ctx)
        milestone = first_milestone(service, ctx, goal.goal_id)
        service.generate_jobs(ctx, goal.goal_id, milestone.milestone_id)

        low = service.recommend_jobs(RequestContext(TEST_USER_ID, EnergyLevel.LOW), milestone.milestone_id)
        assert [j.type for j in low.jobs] == [JobType.QUICK_WIN]

        high = service.recommend_jobs(RequestContext(TEST_USER_ID, EnergyLevel.HIGH), milestone.milestone_id)
        assert [j.type for j in high.jobs] == [JobType.DEEP_WORK, JobType.ANCHOR, JobType.QUICK_WIN]

        explorer = service.explore_jobs(ctx, milestone.milestone_id)
        assert len(explorer["PENDING"]) == 3

    def test_timer(self, service, ctx, clock):
        goal = build_active_goal(service, ctx)
        milestone = first_milestone(service, ctx, goal.goal_id)
        job = service.generate_jobs(ctx, goal.goal_id, milestone.milestone_id).jobs[0]

        started = service.start_job(ctx, job.job_id).work_sessions[0].started_at
        clock.advance(minutes=5)
        paused = service.pause_job(ctx, job.job_id)
        assert paused.status == JobStatus.ACTIVE
        assert paused.work_sessions[0].ended_at > started

        service.resume_job(ctx, job.job_id)
        timer = service.get_job_timer(ctx, job.job_id)
        assert timer["is_running"] is True
        assert timer["total_seconds"] >= 300

    def test_start_requires_pending(self, service, ctx):
        goal = build_active_goal(service, ctx)
        milestone = first_milestone(service, ctx, goal.goal_id)
        job = service.generate_jobs(ctx, goal.goal_id, milestone.milestone_id).jobs[0]
        service.start_job(ctx, job.job_id)
        with pytest.raises(StatePreconditionError):
            service.start_job(ctx, job.job_id)

    def test_last_job_moves_milestone_to_verification(self, service, ctx):
        goal = build_active_goal(service, ctx)
        milestone = first_milestone(service, ctx, goal.goal_id)
        outcome = finish_milestone(service, ctx, goal.goal_id, milestone.milestone_id)
        assert outcome.milestone.status == MilestoneStatus.PENDING_VERIFICATION
        assert outcome.cascade.all_succeeded
        assert [m.milestone_id for m in service.get_pending_verification_milestones(ctx, goal.goal_id)] == [
            milestone.milestone_id
        ]


# -----------------------------------------------------------------------------
# Failure Recovery
# -----------------------------------------------------------------------------
class TestRecovery:

    @pytest.fixture
    def failed_job(self, service, ctx):
        goal = build_active_goal(service, ctx)
        milestone = first_milestone(service, ctx, goal.goal_id)
        job = service.generate_jobs(ctx, goal.goal_id, milestone.milestone_id).jobs[1]
        service.start_job(ctx, job.job_id)
        return service.fail_job(ctx, job.job_id, "Too big for one sitting")

    def test_fail_closes_session(self, failed_job):
        assert failed_job.status == JobStatus.FAILED
        assert failed_job.failure_count == 1
        assert failed_job.work_sessions[-1].ended_at is not None

    def test_retry(self, service, ctx, failed_job):
        job = service.retry_job(ctx, failed_job.job_id, "Too big for one sitting")
        assert job.status == JobStatus.PENDING
        assert job.type == JobType.ANCHOR
        assert len(job.failure_history) == 1

    def test_negotiate(self, service, ctx, failed_job):
        outcome = service.negotiate_job(ctx, failed_job.job_id, "Too big")
        assert outcome.open_mutation_flow is True

    def test_preview_is_not_stored(self, service, ctx, failed_job):
        preview = service.preview_job_mutation(ctx, failed_job.job_id, "Too big")
        assert preview.title == "Write half the data model"
        stored = service.store.get_job(failed_job.job_id)
        assert stored.title == failed_job.title
        assert stored.status == JobStatus.FAILED

    def test_confirm_mutation(self, service, ctx, failed_job):
        preview = service.preview_job_mutation(ctx, failed_job.job_id, "Too big")
        job = service.confirm_job_mutation(ctx, failed_job.job_id, preview)
        assert job.status == JobStatus.ACTIVE
        assert job.failure_count == 2
        assert job.type == JobType.QUICK_WIN
        assert job.job_cluster_id == failed_job.job_cluster_id

    def test_no_recovery_after_give_up(self, service, ctx, failed_job):
        goal_id = ctx.ownership(service.store).goal_id_for(failed_job.job_id)
        service.give_up_goal(ctx, goal_id)
        with pytest.raises(StatePreconditionError):
            service.retry_job(ctx, failed_job.job_id, "again")

    def test_given_up_goal_jobs_cannot_be_finished(self, service, ctx):
        goal = build_active_goal(service, ctx)
        milestone = first_milestone(service, ctx, goal.goal_id)
        jobs = service.generate_jobs(ctx, goal.goal_id, milestone.milestone_id).jobs
        for job in jobs:
            service.start_job(ctx, job.job_id)
        service.give_up_goal(ctx, goal.goal_id)

        with pytest.raises(StatePreconditionError):
            service.mark_job_done(ctx, jobs[0].job_id)
        with pytest.raises(StatePreconditionError):
            service.pause_job(ctx, jobs[0].job_id)
        assert service.get_goal(ctx, goal.goal_id).status == GoalStatus.FAILED
        assert service.store.get_milestone(milestone.milestone_id).status == MilestoneStatus.ACTIVE

    def test_given_up_goal_cannot_be_verified(self, service, ctx):
        goal = build_active_goal(service, ctx)
        milestone = first_milestone(service, ctx, goal.goal_id)
        finish_milestone(service, ctx, goal.goal_id, milestone.milestone_id)
        service.give_up_goal(ctx, goal.goal_id)

        with pytest.raises(StatePreconditionError):
            service.confirm_milestone_verification(ctx, milestone.milestone_id)
        assert service.get_goal(ctx, goal.goal_id).status == GoalStatus.FAILED
        stored = service.store.get_milestone(milestone.milestone_id)
        assert stored.status == MilestoneStatus.PENDING_VERIFICATION


# -----------------------------------------------------------------------------
# Verification Cascade
# -----------------------------------------------------------------------------
class TestVerificationCascade:

    def test_confirm_requires_pending_verification(self, service, ctx):
        goal = build_active_goal(service, ctx)
        milestone = first_milestone(service, ctx, goal.goal_id)
        with pytest.raises(StatePreconditionError):
            service.confirm_milestone_verification(ctx, milestone.milestone_id)

    def test_cascade_to_goal_completion(self, service, ctx):
        goal = build_active_goal(service, ctx)
        _, milestones = service._goal_tree(goal.goal_id)
        ids = [m.milestone_id for m in milestones]

        finish_milestone(service, ctx, goal.goal_id, ids[0])
        first = service.confirm_milestone_verification(ctx, ids[0])
        assert first.next_milestone_id == ids[1]
        assert first.goal_completed is False
        assert milestone_statuses(service, goal.goal_id) == [
            MilestoneStatus.COMPLETED, MilestoneStatus.ACTIVE, MilestoneStatus.PENDING
        ]

        finish_milestone(service, ctx, goal.goal_id, ids[1])
        second = service.confirm_milestone_verification(ctx, ids[1])
        assert second.next_milestone_id == ids[2]
        phases, _ = service._goal_tree(goal.goal_id)
        assert [p.status for p in phases] == [PhaseStatus.COMPLETED, PhaseStatus.ACTIVE]

        finish_milestone(service, ctx, goal.goal_id, ids[2])
        last = service.confirm_milestone_verification(ctx, ids[2])
        assert last.next_milestone_id is None
        assert last.goal_completed is True
        assert last.cascade.all_succeeded
        assert service.get_goal(ctx, goal.goal_id).status == GoalStatus.COMPLETED

    def test_failed_activation_step_keeps_confirmation(self, service, ctx, monkeypatch):
        goal = build_active_goal(service, ctx)
        _, milestones = service._goal_tree(goal.goal_id)
        ids = [m.milestone_id for m in milestones]
        finish_milestone(service, ctx, goal.goal_id, ids[0])

        def broken(goal_id, completed_id):
            raise RuntimeError("store unavailable")

        monkeypatch.setattr(service, "_activate_next_milestone", broken)
        outcome = service.confirm_milestone_verification(ctx, ids[0])

        assert outcome.milestone.status == MilestoneStatus.COMPLETED
        assert outcome.cascade.all_succeeded is False
        assert outcome.next_milestone_id is None
        assert [r.succeeded for r in outcome.cascade.results] == [True, False, True]
        assert milestone_statuses(service, goal.goal_id) == [
            MilestoneStatus.COMPLETED, MilestoneStatus.PENDING, MilestoneStatus.PENDING
        ]

    def test_failed_goal_step_keeps_confirmation(self, service, ctx, monkeypatch):
        goal = build_active_goal(service, ctx)
        _, milestones = service._goal_tree(goal.goal_id)
        ids = [m.milestone_id for m in milestones]
        finish_milestone(service, ctx, goal.goal_id, ids[0])

        def broken(goal_id):
            raise RuntimeError("store unavailable")

        monkeypatch.setattr(service, "_complete_goal_if_done", broken)
        outcome = service.confirm_milestone_verification(ctx, ids[0])

        assert outcome.milestone.status == MilestoneStatus.COMPLETED
        assert outcome.next_milestone_id == ids[1]
        assert outcome.goal_completed is False
        assert outcome.cascade.results[-1].name == "complete_goal"
        assert outcome.cascade.results[-1].error == "store unavailable"
        assert milestone_statuses(service, goal.goal_id) == [
            MilestoneStatus.COMPLETED, MilestoneStatus.ACTIVE, MilestoneStatus.PENDING
        ]

    def test_verification_data(self, service, ctx):
        goal = build_active_goal(service, ctx)
        milestone = first_milestone(service, ctx, goal.goal_id)
        data = service.get_milestone_verification_data(ctx, milestone.milestone_id)
        assert data["acceptance_criteria"] == "Criteria 1.1"
        assert data["all_jobs_completed"] is False

    def test_active_focus(self, service, ctx):
        assert service.get_active_focus(ctx) is None
        goal = build_active_goal(service, ctx)
        focus = service.get_active_focus(ctx)
        assert focus["goal"]["goal_id"] == goal.goal_id
        assert focus["milestone"]["title"] == "Milestone 1.1"


# -----------------------------------------------------------------------------
# Owner Scoping
# -----------------------------------------------------------------------------
class TestOwnerScoping:

    def test_other_user_sees_not_found(self, service, ctx, other_ctx):
        goal = build_active_goal(service, ctx)
        milestone = first_milestone(service, ctx, goal.goal_id)
        job = service.generate_jobs(ctx, goal.goal_id, milestone.milestone_id).jobs[0]

        with pytest.raises(NotFoundError):
            service.get_goal(other_ctx, goal.goal_id)
        with pytest.raises(NotFoundError):
            service.get_milestone_jobs(other_ctx, milestone.milestone_id)
        with pytest.raises(NotFoundError):
            service.start_job(other_ctx, job.job_id)
        assert service.list_goals(other_ctx) == []

    def test_milestone_must_belong_to_goal(self, service, ctx):
        goal = build_active_goal(service, ctx)
        other_goal = build_active_goal(service, ctx, "Second goal")
        milestone = first_milestone(service, ctx, other_goal.goal_id)
        with pytest.raises(NotFoundError):
            service.generate_jobs(ctx, goal.goal_id, milestone.milestone_id)

    def test_no_user(self, service):
        with pytest.raises(UnauthorizedError):
            service.list_goals(RequestContext(user_id=None))
