"""
Volition - Goal Lifecycle Engine

Users state a goal, pass a commitment stress test, run a short trial, then
have the goal broken down into phases -> milestones -> job clusters -> jobs,
executed one at a time with an energy-aware recommender.

- scoring_engine: stress-test score and PROCEED/REJECT decision
- trial_engine: 3-7 day trial plan, active task, graduation
- blueprint_engine: phase/milestone tree, 7-milestone cap, single active milestone, locks
- job_atomizer: job clusters and jobs, 120-minute atomic constraint
- verification_engine: milestone verification and the completion cascade
- recovery_engine: retry, negotiate, mutate, give up
- work_sessions: time accounting from pause/resume intervals
- context_engine: energy-based job filter
- goal_store / goal_service / lifecycle_router / main: persistence, orchestration, HTTP
"""

__version__ = "1.0.0"
