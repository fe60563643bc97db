"""
Trial Lifecycle

A goal that passes the stress test runs a 3-7 day micro-plan before it is
scoped. This module owns the rules for that plan.

RULES:
- The active task is the lowest day_number task that is not COMPLETED
- Future tasks are the ones after the active task
- Completing the active task activates the next day's task
- When every task is COMPLETED the goal graduates: trial status -> PENDING_SCOPE
- Graduation flips the goal at most once; repeating the completing call is a no-op
- Give up moves the goal to FAILED and ends the trial
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Optional, Dict, Any, List, Sequence

from .errors import InvariantViolation, NotFoundError, StatePreconditionError
from .goal_model import (
    Goal,
    GoalStatus,
    TERMINAL_GOAL_STATUSES,
    TRIAL_STATUS,
    TrialTask,
    TrialTaskStatus,
)

logger = logging.getLogger("trial_engine")

OPEN_TASK_STATUSES = {TrialTaskStatus.PENDING, TrialTaskStatus.ACTIVE}


@dataclass
class TrialProgress:
    """Trial tasks split around the active task."""
    active: Optional[TrialTask]
    future: List[TrialTask] = field(default_factory=list)
    completed: List[TrialTask] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return self.active is None and bool(self.completed) and not self.future

    def to_dict(self) -> Dict[str, Any]:
        return {
            "active": self.active.to_dict() if self.active else None,
            "future": [t.to_dict() for t in self.future],
            "completed": [t.to_dict() for t in self.completed],
            "is_complete": self.is_complete,
        }


# -----------------------------------------------------------------------------
# Plan Construction
# -----------------------------------------------------------------------------
def build_trial_tasks(goal_id: str, plan: Sequence[Any], start: Optional[date] = None,
                      now: Optional[datetime] = None) -> List[TrialTask]:
    """
    Turn a validated trial plan into PENDING tasks, one per day from start.

    plan items carry day_number, task_title, est_minutes and acceptance_criteria
    (see generation_schemas.TrialTaskPlan).
    """
    stamp = now or datetime.utcnow()
    first_day = start or stamp.date()
    return [
        TrialTask(
            task_id=str(uuid.uuid4()),
            goal_id=goal_id,
            day_number=item.day_number,
            title=item.task_title,
            est_minutes=item.est_minutes,
            acceptance_criteria=item.acceptance_criteria,
            status=TrialTaskStatus.PENDING,
            created_at=stamp,
            scheduled_date=(first_day + timedelta(days=item.day_number - 1)).isoformat(),
        )
        for item in sorted(plan, key=lambda p: p.day_number)
    ]


# -----------------------------------------------------------------------------
# Derived State
# -----------------------------------------------------------------------------
def get_active_task(tasks: Sequence[TrialTask]) -> Optional[TrialTask]:
    """
    Lowest day_number task that is still PENDING or ACTIVE.

    Raises:
        InvariantViolation: tasks remain unfinished but none is PENDING/ACTIVE
    """
    ordered = sorted(tasks, key=lambda t: t.day_number)
    for task in ordered:
        if task.status in OPEN_TASK_STATUSES:
            return task
    unfinished = [t for t in ordered if t.status != TrialTaskStatus.COMPLETED]
    if unfinished:
        raise InvariantViolation(
            f"Trial has {len(unfinished)} unfinished task(s) but no active task"
        )
    return None


def get_trial_progress(tasks: Sequence[TrialTask]) -> TrialProgress:
    active = get_active_task(tasks)
    ordered = sorted(tasks, key=lambda t: t.day_number)
    completed = [t for t in ordered if t.status == TrialTaskStatus.COMPLETED]
    future = [t for t in ordered if active is not None and t.day_number > active.day_number]
    return TrialProgress(active=active, future=future, completed=completed)


def is_trial_complete(tasks: Sequence[TrialTask]) -> bool:
    return bool(tasks) and all(t.status == TrialTaskStatus.COMPLETED for t in tasks)


# -----------------------------------------------------------------------------
# Transitions
# -----------------------------------------------------------------------------
def activate_first_task_if_fresh(tasks: Sequence[TrialTask]) -> Optional[TrialTask]:
    """Mark the day-1 task ACTIVE when nothing has been started yet."""
    if not tasks or any(t.status != TrialTaskStatus.PENDING for t in tasks):
        return None
    first = min(tasks, key=lambda t: t.day_number)
    first.status = TrialTaskStatus.ACTIVE
    return first


def complete_task(tasks: Sequence[TrialTask], task_id: str,
                  now: Optional[datetime] = None) -> List[TrialTask]:
    """
    Mark the active task COMPLETED and activate the next day's task.

    Completing a task that is already COMPLETED changes nothing.

    Returns:
        The tasks that changed
    """
    task = next((t for t in tasks if t.task_id == task_id), None)
    if task is None:
        raise NotFoundError(f"Trial task {task_id} not found")
    if task.status == TrialTaskStatus.COMPLETED:
        return []

    active = get_active_task(tasks)
    if active is None or active.task_id != task.task_id:
        raise StatePreconditionError(
            f"Only the active trial task can be completed (day {active.day_number if active else '-'}), "
            f"got day {task.day_number}",
            expected=TrialTaskStatus.ACTIVE.value,
            actual=task.status.value,
        )

    task.status = TrialTaskStatus.COMPLETED
    task.completed_at = now or datetime.utcnow()
    changed = [task]

    following = next((t for t in tasks if t.day_number == task.day_number + 1), None)
    if following is not None and following.status == TrialTaskStatus.PENDING:
        following.status = TrialTaskStatus.ACTIVE
        changed.append(following)
    return changed


def graduate_if_complete(goal: Goal, tasks: Sequence[TrialTask], now: Optional[datetime] = None) -> bool:
    """
    Move the goal out of its trial when every task is COMPLETED.

    Returns:
        True only on the call that actually flipped the status
    """
    if goal.status != TRIAL_STATUS or not is_trial_complete(tasks):
        return False
    goal.status = GoalStatus.PENDING_SCOPE
    goal.updated_at = now or datetime.utcnow()
    logger.info(f"Goal {goal.goal_id} graduated from trial")
    return True


def give_up(goal: Goal, now: Optional[datetime] = None) -> Goal:
    """Archive the goal as FAILED."""
    if goal.status == GoalStatus.FAILED:
        return goal
    if goal.status in TERMINAL_GOAL_STATUSES:
        raise StatePreconditionError(
            f"Cannot give up a goal in {goal.status.value} status",
            expected="non-terminal status",
            actual=goal.status.value,
        )
    goal.status = GoalStatus.FAILED
    goal.updated_at = now or datetime.utcnow()
    logger.info(f"Goal {goal.goal_id} archived as FAILED")
    return goal
