"""
API Router for the goal lifecycle

Routes for:
- Gatekeeper: intent classification, stress test
- Trial: view, complete task, give up, regenerate plan
- Architect: scope, complexity, blueprint, milestone activation
- Engine: job generation, recommendations, execution, timers
- Recovery: fail, retry, negotiate, mutate
- Verification: pending list, data, confirmation

Identity comes from the X-User-Id header and energy from X-Energy-Level.
Both are packed into a RequestContext that is passed to every service call.
"""

import logging
from typing import Optional, List

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from pydantic import BaseModel, Field

from .goal_model import BackgroundLevel, EnergyLevel, GoalStatus, JobType
from .goal_service import GoalService, RequestContext, get_goal_service
from .recovery_engine import MutationPreview

logger = logging.getLogger("lifecycle_router")

router = APIRouter(tags=["lifecycle"])


# -----------------------------------------------------------------------------
# Dependencies
# -----------------------------------------------------------------------------
def get_service() -> GoalService:
    return get_goal_service()


def get_request_context(
    x_user_id: Optional[str] = Header(None),
    x_energy_level: Optional[str] = Header(None),
) -> RequestContext:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Not authenticated")
    energy = EnergyLevel.MED
    if x_energy_level:
        try:
            energy = EnergyLevel(x_energy_level.strip().upper())
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid energy level '{x_energy_level}'")
    return RequestContext(user_id=x_user_id.strip(), energy=energy)


# -----------------------------------------------------------------------------
# Request Models
# -----------------------------------------------------------------------------
class IntentRequest(BaseModel):
    text: str = Field(..., min_length=1)


class StressTestRequest(BaseModel):
    goal_title: str = Field(..., min_length=1)


class AnswerModel(BaseModel):
    question_index: int = Field(..., alias="questionIndex")
    selected_score: int = Field(..., alias="selectedScore")

    model_config = {"populate_by_name": True}


class StressTestSubmission(BaseModel):
    goal_title: Optional[str] = None
    answers: List[AnswerModel]


class GoalCreateRequest(BaseModel):
    title: str = Field(..., min_length=1)


class ScopeRequest(BaseModel):
    hours_per_week: float
    tech_stack: List[str] = Field(default_factory=list)
    definition_of_done: str
    background_level: Optional[BackgroundLevel] = None


class ReasonRequest(BaseModel):
    reason: str


class MutationConfirmRequest(BaseModel):
    title: str
    type: JobType
    est_minutes: int


# -----------------------------------------------------------------------------
# Gatekeeper
# -----------------------------------------------------------------------------
@router.post("/intent")
def classify_intent(request: IntentRequest, ctx: RequestContext = Depends(get_request_context),
                    service: GoalService = Depends(get_service)):
    return {"route": service.classify_intent(ctx, request.text)}


@router.post("/stress-test")
def generate_stress_test(request: StressTestRequest, ctx: RequestContext = Depends(get_request_context),
                         service: GoalService = Depends(get_service)):
    questions = service.generate_stress_test(ctx, request.goal_title)
    return {"questions": [q.model_dump(by_alias=True) for q in questions]}


@router.post("/stress-test/submit")
def submit_stress_test(request: StressTestSubmission, ctx: RequestContext = Depends(get_request_context),
                       service: GoalService = Depends(get_service)):
    answers = [a.model_dump() for a in request.answers]
    return service.submit_stress_test(ctx, request.goal_title, answers).to_dict()


# -----------------------------------------------------------------------------
# Goals
# -----------------------------------------------------------------------------
@router.get("/goals")
def list_goals(status: Optional[GoalStatus] = Query(None), ctx: RequestContext = Depends(get_request_context),
               service: GoalService = Depends(get_service)):
    return {"goals": [g.to_dict() for g in service.list_goals(ctx, status)]}


@router.post("/goals")
def create_goal(request: GoalCreateRequest, ctx: RequestContext = Depends(get_request_context),
                service: GoalService = Depends(get_service)):
    return service.create_goal(ctx, request.title).to_dict()


@router.get("/goals/{goal_id}")
def get_goal(goal_id: str, ctx: RequestContext = Depends(get_request_context),
             service: GoalService = Depends(get_service)):
    return service.get_goal(ctx, goal_id).to_dict()


@router.patch("/goals/{goal_id}")
def rename_goal(goal_id: str, request: GoalCreateRequest, ctx: RequestContext = Depends(get_request_context),
                service: GoalService = Depends(get_service)):
    return service.rename_goal(ctx, goal_id, request.title).to_dict()


@router.delete("/goals/{goal_id}")
def delete_goal(goal_id: str, ctx: RequestContext = Depends(get_request_context),
                service: GoalService = Depends(get_service)):
    service.delete_goal(ctx, goal_id)
    return {"deleted": goal_id}


@router.post("/goals/{goal_id}/give-up")
def give_up_goal(goal_id: str, ctx: RequestContext = Depends(get_request_context),
                 service: GoalService = Depends(get_service)):
    return service.give_up_goal(ctx, goal_id).to_dict()


# -----------------------------------------------------------------------------
# Trial
# -----------------------------------------------------------------------------
@router.get("/goals/{goal_id}/trial")
def get_trial(goal_id: str, ctx: RequestContext = Depends(get_request_context),
              service: GoalService = Depends(get_service)):
    return service.get_trial(ctx, goal_id).to_dict()


@router.post("/goals/{goal_id}/trial/regenerate")
def regenerate_trial(goal_id: str, ctx: RequestContext = Depends(get_request_context),
                     service: GoalService = Depends(get_service)):
    return {"trial_tasks": [t.to_dict() for t in service.regenerate_trial_plan(ctx, goal_id)]}


@router.post("/goals/{goal_id}/trial/tasks/{task_id}/complete")
def complete_trial_task(goal_id: str, task_id: str, ctx: RequestContext = Depends(get_request_context),
                        service: GoalService = Depends(get_service)):
    return service.complete_trial_task(ctx, goal_id, task_id).to_dict()


# -----------------------------------------------------------------------------
# Architect
# -----------------------------------------------------------------------------
@router.put("/goals/{goal_id}/scope")
def update_scope(goal_id: str, request: ScopeRequest, ctx: RequestContext = Depends(get_request_context),
                 service: GoalService = Depends(get_service)):
    goal = service.update_scope(
        ctx, goal_id,
        hours_per_week=request.hours_per_week,
        tech_stack=request.tech_stack,
        definition_of_done=request.definition_of_done,
        background_level=request.background_level,
    )
    return goal.to_dict()


@router.post("/goals/{goal_id}/complexity")
def estimate_complexity(goal_id: str, ctx: RequestContext = Depends(get_request_context),
                        service: GoalService = Depends(get_service)):
    return service.estimate_complexity(ctx, goal_id).to_dict()


@router.post("/goals/{goal_id}/blueprint")
def generate_blueprint(goal_id: str, ctx: RequestContext = Depends(get_request_context),
                       service: GoalService = Depends(get_service)):
    return service.generate_blueprint(ctx, goal_id).to_dict()


@router.get("/goals/{goal_id}/blueprint")
def get_blueprint(goal_id: str, ctx: RequestContext = Depends(get_request_context),
                  service: GoalService = Depends(get_service)):
    return service.get_blueprint(ctx, goal_id).to_dict()


@router.post("/goals/{goal_id}/milestones/{milestone_id}/activate")
def activate_milestone(goal_id: str, milestone_id: str, ctx: RequestContext = Depends(get_request_context),
                       service: GoalService = Depends(get_service)):
    return service.set_active_milestone(ctx, goal_id, milestone_id).to_dict()


@router.get("/goals/{goal_id}/verification")
def pending_verification(goal_id: str, ctx: RequestContext = Depends(get_request_context),
                         service: GoalService = Depends(get_service)):
    milestones = service.get_pending_verification_milestones(ctx, goal_id)
    return {"milestones": [m.to_dict() for m in milestones]}


@router.get("/focus")
def active_focus(ctx: RequestContext = Depends(get_request_context),
                 service: GoalService = Depends(get_service)):
    return service.get_active_focus(ctx) or {"goal": None, "milestone": None}


# -----------------------------------------------------------------------------
# Engine: jobs per milestone
# -----------------------------------------------------------------------------
@router.post("/goals/{goal_id}/milestones/{milestone_id}/jobs")
def generate_jobs(goal_id: str, milestone_id: str, ctx: RequestContext = Depends(get_request_context),
                  service: GoalService = Depends(get_service)):
    return service.generate_jobs(ctx, goal_id, milestone_id).to_dict()


@router.delete("/goals/{goal_id}/milestones/{milestone_id}/jobs")
def delete_jobs(goal_id: str, milestone_id: str, ctx: RequestContext = Depends(get_request_context),
                service: GoalService = Depends(get_service)):
    return {"deleted_clusters": service.delete_jobs(ctx, goal_id, milestone_id)}


@router.get("/milestones/{milestone_id}/jobs")
def milestone_jobs(milestone_id: str, ctx: RequestContext = Depends(get_request_context),
                   service: GoalService = Depends(get_service)):
    return service.get_milestone_jobs(ctx, milestone_id).to_dict()


@router.get("/milestones/{milestone_id}/recommended")
def recommended_jobs(milestone_id: str, ctx: RequestContext = Depends(get_request_context),
                     service: GoalService = Depends(get_service)):
    return service.recommend_jobs(ctx, milestone_id).to_dict()


@router.get("/milestones/{milestone_id}/explore")
def explore_jobs(milestone_id: str, ctx: RequestContext = Depends(get_request_context),
                 service: GoalService = Depends(get_service)):
    groups = service.explore_jobs(ctx, milestone_id)
    return {status: [j.to_dict() for j in jobs] for status, jobs in groups.items()}


@router.get("/milestones/{milestone_id}/verification")
def verification_data(milestone_id: str, ctx: RequestContext = Depends(get_request_context),
                      service: GoalService = Depends(get_service)):
    return service.get_milestone_verification_data(ctx, milestone_id)


@router.post("/milestones/{milestone_id}/verify")
def confirm_verification(milestone_id: str, ctx: RequestContext = Depends(get_request_context),
                         service: GoalService = Depends(get_service)):
    return service.confirm_milestone_verification(ctx, milestone_id).to_dict()


# -----------------------------------------------------------------------------
# Engine: job actions
# -----------------------------------------------------------------------------
@router.post("/jobs/{job_id}/start")
def start_job(job_id: str, ctx: RequestContext = Depends(get_request_context),
              service: GoalService = Depends(get_service)):
    return service.start_job(ctx, job_id).to_dict()


@router.post("/jobs/{job_id}/pause")
def pause_job(job_id: str, ctx: RequestContext = Depends(get_request_context),
              service: GoalService = Depends(get_service)):
    return service.pause_job(ctx, job_id).to_dict()


@router.post("/jobs/{job_id}/resume")
def resume_job(job_id: str, ctx: RequestContext = Depends(get_request_context),
               service: GoalService = Depends(get_service)):
    return service.resume_job(ctx, job_id).to_dict()


@router.post("/jobs/{job_id}/done")
def mark_job_done(job_id: str, ctx: RequestContext = Depends(get_request_context),
                  service: GoalService = Depends(get_service)):
    return service.mark_job_done(ctx, job_id).to_dict()


@router.get("/jobs/{job_id}/timer")
def job_timer(job_id: str, ctx: RequestContext = Depends(get_request_context),
              service: GoalService = Depends(get_service)):
    return service.get_job_timer(ctx, job_id)


@router.post("/jobs/{job_id}/fail")
def fail_job(job_id: str, request: ReasonRequest, ctx: RequestContext = Depends(get_request_context),
             service: GoalService = Depends(get_service)):
    return service.fail_job(ctx, job_id, request.reason).to_dict()


@router.post("/jobs/{job_id}/retry")
def retry_job(job_id: str, request: ReasonRequest, ctx: RequestContext = Depends(get_request_context),
              service: GoalService = Depends(get_service)):
    return service.retry_job(ctx, job_id, request.reason).to_dict()


@router.post("/jobs/{job_id}/negotiate")
def negotiate_job(job_id: str, request: ReasonRequest, ctx: RequestContext = Depends(get_request_context),
                  service: GoalService = Depends(get_service)):
    return service.negotiate_job(ctx, job_id, request.reason).to_dict()


@router.post("/jobs/{job_id}/mutation/preview")
def preview_mutation(job_id: str, request: ReasonRequest, ctx: RequestContext = Depends(get_request_context),
                     service: GoalService = Depends(get_service)):
    return service.preview_job_mutation(ctx, job_id, request.reason).to_dict()


@router.post("/jobs/{job_id}/mutation/confirm")
def confirm_mutation(job_id: str, request: MutationConfirmRequest,
                     ctx: RequestContext = Depends(get_request_context),
                     service: GoalService = Depends(get_service)):
    preview = MutationPreview(job_id=job_id, title=request.title, type=request.type,
                              est_minutes=request.est_minutes)
    return service.confirm_job_mutation(ctx, job_id, preview).to_dict()
