"""
Content Generator

Client for an OpenAI-compatible chat-completions endpoint (DeepSeek by
default) that produces question sets, plans, blueprints and job content.

Every response goes through one extract-then-validate step:
1. take the body of a ``` / ```json fence if there is one
2. json.loads
3. validate against the role's pydantic model

Anything that fails is rejected. Nothing is clamped or repaired, and no
fallback content is produced when the service fails.
"""

import json
import logging
import re
from typing import Optional, Dict, Any, List, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError as SchemaError

from . import prompts
from .config import DEFAULT_LLM_BASE_URL, DEFAULT_LLM_MODEL, DEFAULT_LLM_TIMEOUT, Settings
from .errors import GenerationError, MalformedContentError
from .generation_schemas import (
    BlueprintPlan,
    ComplexityEstimate,
    JobAtomizerPlan,
    JobClusterPlan,
    MutatedJob,
    NegotiationResult,
    PhasePlan,
    StressTestQuestion,
    StressTestQuestionSet,
    TrialPlan,
    TrialTaskPlan,
)
from .goal_model import Complexity, Goal, Job, Milestone

logger = logging.getLogger("content_generator")

ModelT = TypeVar("ModelT", bound=BaseModel)

FENCE_PATTERN = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")

INTENT_ROUTES = ("INCUBATOR", "GATEKEEPER")

# role -> (temperature, max_tokens)
ROLE_SETTINGS = {
    "classifier": (0.2, 10),
    "stress_test": (0.7, 2000),
    "trial": (0.7, 1500),
    "complexity": (0.3, 500),
    "blueprint": (0.4, 2000),
    "jobs": (0.4, 3000),
    "negotiator": (0.3, 300),
    "mutator": (0.4, 500),
}


# -----------------------------------------------------------------------------
# Extract-then-validate
# -----------------------------------------------------------------------------
def extract_json_payload(raw: str) -> Any:
    """Parse the JSON in a response, inside a code fence or bare."""
    if raw is None or not raw.strip():
        raise MalformedContentError("Empty response from LLM")
    match = FENCE_PATTERN.search(raw)
    text = match.group(1) if match else raw.strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedContentError(f"Response is not valid JSON: {e}")


def parse_structured(raw: str, model: Type[ModelT]) -> ModelT:
    payload = extract_json_payload(raw)
    try:
        return model.model_validate(payload)
    except SchemaError as e:
        raise MalformedContentError(f"Response failed {model.__name__} validation: {e}")


def parse_intent(raw: str) -> str:
    """Classifier output is a bare word; allow quotes, case and trailing punctuation only."""
    word = (raw or "").strip().strip("\"'`").rstrip(".!").strip().upper()
    if word not in INTENT_ROUTES:
        raise MalformedContentError(f"Unexpected classification: {raw!r}")
    return word


def build_context_payload(goal: Optional[Goal] = None, milestone: Optional[Milestone] = None,
                          job: Optional[Job] = None, **extra: Any) -> str:
    """JSON user message carrying whatever context the role needs."""
    payload: Dict[str, Any] = {}
    if goal is not None:
        payload["goal_title"] = goal.title
        if goal.scope:
            payload["scope"] = goal.scope.to_dict()
        if goal.complexity:
            payload["complexity"] = goal.complexity.to_dict()
    if milestone is not None:
        payload["milestone"] = {
            "title": milestone.title,
            "acceptance_criteria": milestone.acceptance_criteria,
        }
    if job is not None:
        payload["job"] = {
            "title": job.title,
            "type": job.type.value,
            "est_minutes": job.est_minutes,
            "status": job.status.value,
            "failure_count": job.failure_count,
        }
    payload.update({k: v for k, v in extra.items() if v is not None})
    return json.dumps(payload, ensure_ascii=False)


# -----------------------------------------------------------------------------
# Client
# -----------------------------------------------------------------------------
class ContentGenerator:
    """Synchronous chat-completions client. Timeouts belong to the HTTP call."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = DEFAULT_LLM_BASE_URL,
        model: str = DEFAULT_LLM_MODEL,
        timeout: float = DEFAULT_LLM_TIMEOUT,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "ContentGenerator":
        return cls(
            api_key=settings.llm_api_key,
            base_url=settings.llm_base_url,
            model=settings.llm_model,
            timeout=settings.llm_timeout,
        )

    def complete(self, role: str, system_prompt: str, user_message: str) -> str:
        """Send one chat completion and return the raw text."""
        if not self.api_key:
            raise GenerationError("DEEPSEEK_API_KEY is not configured")
        temperature, max_tokens = ROLE_SETTINGS[role]
        body = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_message},
            ],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}

        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.post(f"{self.base_url}/chat/completions", json=body, headers=headers)
        except httpx.TimeoutException as e:
            raise GenerationError(f"{role} generation timed out: {e}")
        except httpx.HTTPError as e:
            raise GenerationError(f"{role} generation failed: {e}")

        if response.status_code != 200:
            logger.error(f"{role} generation returned HTTP {response.status_code}: {response.text[:200]}")
            raise GenerationError(f"{role} generation failed with HTTP {response.status_code}")

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError):
            raise GenerationError(f"{role} generation returned an unexpected body")
        if not content or not content.strip():
            raise GenerationError("Empty response from LLM")
        return content

    # -------------------------------------------------------------------------
    # Roles
    # -------------------------------------------------------------------------

    def classify_intent(self, text: str) -> str:
        raw = self.complete("classifier", prompts.CLASSIFIER_PROMPT, text)
        return parse_intent(raw)

    def generate_stress_test(self, goal_title: str) -> List[StressTestQuestion]:
        raw = self.complete("stress_test", prompts.STRESS_TEST_PROMPT,
                            build_context_payload(goal_title=goal_title))
        return parse_structured(raw, StressTestQuestionSet).root

    def generate_trial_plan(self, goal_title: str) -> List[TrialTaskPlan]:
        raw = self.complete("trial", prompts.TRIAL_PROMPT, build_context_payload(goal_title=goal_title))
        return parse_structured(raw, TrialPlan).root

    def estimate_complexity(self, goal: Goal) -> Complexity:
        raw = self.complete("complexity", prompts.COMPLEXITY_PROMPT, build_context_payload(goal=goal))
        estimate = parse_structured(raw, ComplexityEstimate)
        return Complexity.from_estimate(estimate.estimated_total_hours, estimate.projected_end_date)

    def generate_blueprint(self, goal: Goal) -> List[PhasePlan]:
        raw = self.complete("blueprint", prompts.BLUEPRINT_PROMPT, build_context_payload(goal=goal))
        return parse_structured(raw, BlueprintPlan).root

    def generate_jobs(self, goal: Goal, milestone: Milestone) -> List[JobClusterPlan]:
        raw = self.complete("jobs", prompts.JOB_ATOMIZER_PROMPT,
                            build_context_payload(goal=goal, milestone=milestone))
        return parse_structured(raw, JobAtomizerPlan).root

    def negotiate_job(self, goal: Goal, milestone: Milestone, job: Job, reason: str) -> NegotiationResult:
        raw = self.complete("negotiator", prompts.NEGOTIATOR_PROMPT,
                            build_context_payload(goal=goal, milestone=milestone, job=job, failure_reason=reason))
        return parse_structured(raw, NegotiationResult)

    def mutate_job(self, goal: Goal, milestone: Milestone, job: Job, reason: str) -> MutatedJob:
        raw = self.complete("mutator", prompts.JOB_MUTATOR_PROMPT,
                            build_context_payload(goal=goal, milestone=milestone, job=job, failure_reason=reason))
        return parse_structured(raw, MutatedJob)
