"""Candidate scoring: hard filters and weighted rubric."""

from recruiter.scoring.models import CandidateProfile, JobSpec, ScoreBreakdown, ScoringResult
from recruiter.scoring.hard_filters import apply_hard_filters
from recruiter.scoring.scorer import ClaudeScorer, ScoringAdapter, assign_bucket
