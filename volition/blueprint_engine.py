"""
Blueprint Hierarchy Rules

Builds and guards the Phase -> Milestone tree of a goal.

INVARIANTS:
- Every phase holds 1..7 milestones, checked at construction and on every read
  through check_milestone_cap(); violations are fatal, never truncated
- Within one phase at most one milestone is ACTIVE
- Activating a milestone resets its unfinished siblings to PENDING first
- Phase i>0 is locked until phase i-1 is COMPLETED
- Milestone i>0 in a phase is locked until milestone i-1 is COMPLETED
- An ACTIVE milestone is always enterable, whatever its lock state

Lock state is derived, never stored.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, List, Sequence, Tuple

from .errors import NotFoundError, StatePreconditionError, ValidationError
from .goal_model import (
    Goal,
    GoalStatus,
    MAX_MILESTONES_PER_PHASE,
    Milestone,
    MilestoneStatus,
    Phase,
    PhaseStatus,
)

logger = logging.getLogger("blueprint_engine")


# -----------------------------------------------------------------------------
# Construction
# -----------------------------------------------------------------------------
def check_milestone_cap(phase_title: str, milestone_count: int) -> None:
    """Raise ValidationError unless 1 <= milestone_count <= 7."""
    if milestone_count > MAX_MILESTONES_PER_PHASE:
        raise ValidationError(
            f"Phase '{phase_title}' has {milestone_count} milestones; "
            f"the maximum is {MAX_MILESTONES_PER_PHASE}"
        )
    if milestone_count < 1:
        raise ValidationError(f"Phase '{phase_title}' has no milestones")


def validate_blueprint(plan: Sequence[Any]) -> None:
    """
    Check a phase plan before anything is stored.

    plan items carry title and milestones (see generation_schemas.PhasePlan).
    """
    if not plan:
        raise ValidationError("Blueprint must contain at least one phase")
    for phase_plan in plan:
        check_milestone_cap(phase_plan.title, len(phase_plan.milestones))


def build_blueprint(goal: Goal, plan: Sequence[Any],
                    now: Optional[datetime] = None) -> Tuple[List[Phase], List[Milestone]]:
    """
    Materialize phases and milestones for a goal.

    The first milestone of the first phase starts ACTIVE (and its phase with it);
    everything else starts PENDING. Creation timestamps are strictly increasing
    in plan order so created-order matches the plan.
    """
    validate_blueprint(plan)
    base = now or datetime.utcnow()
    tick = 0

    phases: List[Phase] = []
    milestones: List[Milestone] = []
    for index, phase_plan in enumerate(plan):
        phase = Phase(
            phase_id=str(uuid.uuid4()),
            goal_id=goal.goal_id,
            index=index,
            title=phase_plan.title,
            status=PhaseStatus.ACTIVE if index == 0 else PhaseStatus.PENDING,
            created_at=base + timedelta(microseconds=tick),
        )
        tick += 1
        phases.append(phase)
        for position, milestone_plan in enumerate(phase_plan.milestones):
            first = index == 0 and position == 0
            milestones.append(Milestone(
                milestone_id=str(uuid.uuid4()),
                phase_id=phase.phase_id,
                title=milestone_plan.title,
                acceptance_criteria=milestone_plan.acceptance_criteria,
                status=MilestoneStatus.ACTIVE if first else MilestoneStatus.PENDING,
                created_at=base + timedelta(microseconds=tick),
            ))
            tick += 1

    return phases, milestones


def ensure_blueprint_allowed(goal: Goal, existing_phases: Sequence[Phase]) -> None:
    if goal.status != GoalStatus.PLANNING:
        raise StatePreconditionError(
            f"Goal must be in PLANNING status to generate a blueprint. Current status: {goal.status.value}",
            expected=GoalStatus.PLANNING.value,
            actual=goal.status.value,
        )
    if goal.complexity is None:
        raise StatePreconditionError("Goal has no complexity estimate")
    if goal.scope is None or not goal.scope.is_valid():
        raise StatePreconditionError("Goal scope is missing or invalid")
    if existing_phases:
        raise StatePreconditionError(
            "Blueprint already exists for this goal. Delete it before generating a new one."
        )


# -----------------------------------------------------------------------------
# Ordering
# -----------------------------------------------------------------------------
def order_phases(phases: Sequence[Phase]) -> List[Phase]:
    return sorted(phases, key=lambda p: p.index)


def milestones_in_phase(phase_id: str, milestones: Sequence[Milestone]) -> List[Milestone]:
    return sorted((m for m in milestones if m.phase_id == phase_id), key=lambda m: m.created_at)


def order_milestones(phases: Sequence[Phase], milestones: Sequence[Milestone]) -> List[Milestone]:
    """All milestones of a goal in created order."""
    phase_ids = {p.phase_id for p in phases}
    return sorted((m for m in milestones if m.phase_id in phase_ids), key=lambda m: m.created_at)


# -----------------------------------------------------------------------------
# Activation
# -----------------------------------------------------------------------------
def activate_milestone(phase: Phase, siblings: Sequence[Milestone], milestone_id: str,
                       now: Optional[datetime] = None) -> List[Milestone]:
    """
    Reset-siblings-then-activate. The one sanctioned way to change which
    milestone of a phase is ACTIVE.

    COMPLETED siblings keep their status; every other sibling goes back to
    PENDING. A PENDING phase becomes ACTIVE with it.
    Verified work is never reset, so a goal can still reach COMPLETED.

    Returns:
        The milestones whose status changed
    """
    target = next((m for m in siblings if m.milestone_id == milestone_id), None)
    if target is None or target.phase_id != phase.phase_id:
        raise NotFoundError(f"Milestone {milestone_id} not found in phase {phase.phase_id}")
    if target.status == MilestoneStatus.COMPLETED:
        raise StatePreconditionError(
            "Cannot activate a COMPLETED milestone",
            expected=MilestoneStatus.PENDING.value,
            actual=target.status.value,
        )

    changed = []
    for milestone in siblings:
        if milestone.milestone_id == milestone_id or milestone.status == MilestoneStatus.COMPLETED:
            continue
        if milestone.status != MilestoneStatus.PENDING:
            milestone.status = MilestoneStatus.PENDING
            changed.append(milestone)

    if target.status != MilestoneStatus.ACTIVE:
        target.status = MilestoneStatus.ACTIVE
        changed.append(target)

    if phase.status == PhaseStatus.PENDING:
        phase.status = PhaseStatus.ACTIVE

    logger.info(f"Milestone {milestone_id} is now ACTIVE in phase {phase.phase_id}")
    return changed


def complete_phase_if_done(phase: Phase, siblings: Sequence[Milestone]) -> bool:
    """Mark the phase COMPLETED once all of its milestones are."""
    if phase.status == PhaseStatus.COMPLETED or not siblings:
        return False
    if all(m.status == MilestoneStatus.COMPLETED for m in siblings):
        phase.status = PhaseStatus.COMPLETED
        logger.info(f"Phase {phase.phase_id} completed")
        return True
    return False


# -----------------------------------------------------------------------------
# Locks
# -----------------------------------------------------------------------------
def is_phase_locked(phases: Sequence[Phase], phase: Phase) -> bool:
    ordered = order_phases(phases)
    position = next(i for i, p in enumerate(ordered) if p.phase_id == phase.phase_id)
    if position == 0:
        return False
    return ordered[position - 1].status != PhaseStatus.COMPLETED


def is_milestone_locked(siblings: Sequence[Milestone], milestone: Milestone) -> bool:
    ordered = sorted(siblings, key=lambda m: m.created_at)
    position = next(i for i, m in enumerate(ordered) if m.milestone_id == milestone.milestone_id)
    if position == 0:
        return False
    return ordered[position - 1].status != MilestoneStatus.COMPLETED


def can_enter_milestone(phases: Sequence[Phase], phase: Phase, siblings: Sequence[Milestone],
                        milestone: Milestone) -> bool:
    if milestone.status == MilestoneStatus.ACTIVE:
        return True
    return not is_phase_locked(phases, phase) and not is_milestone_locked(siblings, milestone)


@dataclass
class BlueprintView:
    """Phases with their milestones and derived lock flags."""
    phases: List[Phase]
    milestones: List[Milestone]

    def to_dict(self) -> Dict[str, Any]:
        result = []
        for phase in order_phases(self.phases):
            siblings = milestones_in_phase(phase.phase_id, self.milestones)
            check_milestone_cap(phase.title, len(siblings))
            entry = phase.to_dict()
            entry["is_locked"] = is_phase_locked(self.phases, phase)
            entry["milestones"] = []
            for milestone in siblings:
                data = milestone.to_dict()
                data["is_locked"] = is_milestone_locked(siblings, milestone)
                data["can_enter"] = can_enter_milestone(self.phases, phase, siblings, milestone)
                entry["milestones"].append(data)
            result.append(entry)
        return {"phases": result}
