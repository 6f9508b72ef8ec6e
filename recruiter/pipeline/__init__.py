"""Candidate status graph and multi-stage outreach pipelines."""

from recruiter.pipeline.state_machine import (
    PipelineStatus,
    PipelineStateMachine,
    TransitionCheck,
    VALID_TRANSITIONS,
    TIMING_RULES,
)
from recruiter.pipeline.stages import (
    seed_default_pipeline,
    enroll_candidate,
    complete_stage,
    close_stage,
)
