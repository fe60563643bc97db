"""
Unit Tests for the Trial Lifecycle

Test coverage for:
- Active / future / completed partition
- Completing tasks in order
- Graduation exactly once
- Give up
- Defensive errors
"""

from datetime import date

import pytest

from volition.errors import InvariantViolation, NotFoundError, StatePreconditionError
from volition.generation_schemas import TrialPlan
from volition.goal_model import GoalStatus, TRIAL_STATUS, TrialTaskStatus
from volition.trial_engine import (
    activate_first_task_if_fresh,
    build_trial_tasks,
    complete_task,
    get_active_task,
    get_trial_progress,
    give_up,
    graduate_if_complete,
    is_trial_complete,
)

from tests.conftest import make_goal, make_trial_tasks, trial_plan_payload

P, A, C = TrialTaskStatus.PENDING, TrialTaskStatus.ACTIVE, TrialTaskStatus.COMPLETED


class TestBuildTrialTasks:

    def test_one_task_per_day(self):
        plan = TrialPlan.model_validate(trial_plan_payload(4)).root
        tasks = build_trial_tasks("goal-1", plan, start=date(2025, 1, 6))
        assert [t.day_number for t in tasks] == [1, 2, 3, 4]
        assert [t.scheduled_date for t in tasks] == ["2025-01-06", "2025-01-07", "2025-01-08", "2025-01-09"]
        assert all(t.status == TrialTaskStatus.PENDING for t in tasks)
        assert all(t.goal_id == "goal-1" for t in tasks)


class TestProgress:

    def test_zero_tasks(self):
        progress = get_trial_progress([])
        assert progress.active is None
        assert progress.future == []
        assert progress.completed == []
        assert progress.is_complete is False
        assert is_trial_complete([]) is False

    def test_partition(self):
        tasks = make_trial_tasks([C, A, P, P])
        progress = get_trial_progress(tasks)
        assert progress.active.day_number == 2
        assert [t.day_number for t in progress.future] == [3, 4]
        assert [t.day_number for t in progress.completed] == [1]

    def test_pending_counts_as_active_candidate(self):
        tasks = make_trial_tasks([C, P, P])
        assert get_active_task(tasks).day_number == 2

    def test_all_completed(self):
        tasks = make_trial_tasks([C, C, C])
        progress = get_trial_progress(tasks)
        assert progress.active is None
        assert progress.is_complete is True

    def test_unfinished_without_active_is_an_error(self):
        tasks = make_trial_tasks([C, C, C])
        # Simulate a status outside the known lifecycle
        tasks[2].status = "SKIPPED"
        with pytest.raises(InvariantViolation):
            get_active_task(tasks)


class TestTransitions:

    def test_fresh_trial_activates_day_one(self):
        tasks = make_trial_tasks([P, P, P])
        activated = activate_first_task_if_fresh(tasks)
        assert activated.day_number == 1
        assert tasks[0].status == A

    def test_started_trial_is_left_alone(self):
        tasks = make_trial_tasks([C, P, P])
        assert activate_first_task_if_fresh(tasks) is None
        assert tasks[1].status == P

    def test_complete_activates_next_day(self):
        tasks = make_trial_tasks([A, P, P])
        changed = complete_task(tasks, tasks[0].task_id)
        assert tasks[0].status == C
        assert tasks[0].completed_at is not None
        assert tasks[1].status == A
        assert len(changed) == 2

    def test_cannot_complete_future_task(self):
        tasks = make_trial_tasks([A, P, P])
        with pytest.raises(StatePreconditionError):
            complete_task(tasks, tasks[2].task_id)
        assert tasks[2].status == P

    def test_completing_completed_task_is_noop(self):
        tasks = make_trial_tasks([C, A, P])
        assert complete_task(tasks, tasks[0].task_id) == []

    def test_unknown_task(self):
        with pytest.raises(NotFoundError):
            complete_task(make_trial_tasks([A]), "missing")


class TestGraduation:

    def test_graduates_when_all_completed(self):
        goal = make_goal(status=TRIAL_STATUS)
        tasks = make_trial_tasks([C, C, A], goal_id=goal.goal_id)
        complete_task(tasks, tasks[2].task_id)
        assert graduate_if_complete(goal, tasks) is True
        assert goal.status == GoalStatus.PENDING_SCOPE

    def test_graduates_exactly_once(self):
        goal = make_goal(status=TRIAL_STATUS)
        tasks = make_trial_tasks([C, C, C], goal_id=goal.goal_id)
        assert graduate_if_complete(goal, tasks) is True
        assert graduate_if_complete(goal, tasks) is False
        assert goal.status == GoalStatus.PENDING_SCOPE

    def test_no_graduation_while_tasks_remain(self):
        goal = make_goal(status=TRIAL_STATUS)
        assert graduate_if_complete(goal, make_trial_tasks([C, A, P])) is False
        assert goal.status == TRIAL_STATUS

    def test_no_graduation_without_tasks(self):
        goal = make_goal(status=TRIAL_STATUS)
        assert graduate_if_complete(goal, []) is False


class TestGiveUp:

    def test_give_up_fails_goal(self):
        goal = make_goal(status=TRIAL_STATUS)
        give_up(goal)
        assert goal.status == GoalStatus.FAILED

    def test_give_up_is_idempotent(self):
        goal = make_goal(status=GoalStatus.FAILED)
        assert give_up(goal).status == GoalStatus.FAILED

    def test_cannot_give_up_completed_goal(self):
        with pytest.raises(StatePreconditionError):
            give_up(make_goal(status=GoalStatus.COMPLETED))
