"""Candidate scoring: local hard filters plus an external weighted-rubric scorer.

Whatever the semantic scorer returns, the adapter recomputes the total from
the sub-scores, clamps it and derives the bucket itself.
"""

import json
from typing import Optional, Protocol

import anthropic
import structlog
from pydantic import ValidationError

from recruiter.core.errors import ExternalActionFailure
from recruiter.scoring.hard_filters import apply_hard_filters
from recruiter.scoring.models import CandidateProfile, JobSpec, ScoreBreakdown, ScoringResult

log = structlog.get_logger()

DEFAULT_WEIGHTS = {
    "role_fit": 40,
    "company_context": 25,
    "trajectory_stability": 20,
    "education": 10,
    "profile_quality": 5,
}

MAX_BONUS = 10
MAX_TOTAL = 110

DISQUALIFIED_ACTION = "Do not contact; archive with reason"


def assign_bucket(total_score: float) -> str:
    if total_score >= 85:
        return "Hot"
    if total_score >= 65:
        return "Warm"
    if total_score >= 45:
        return "Cool"
    return "Cold"


def disqualified_result(reason: str) -> ScoringResult:
    """Canonical result for a candidate rejected by a hard filter."""
    return ScoringResult(
        hard_filter_passed=False,
        disqualify_reason=reason,
        scores=ScoreBreakdown(),
        total_score=0,
        bucket="Cold",
        score_rationale=f"Candidate disqualified: {reason}",
        recommended_action=DISQUALIFIED_ACTION,
        personalization_hook="",
        flags=[f"disqualified:{reason}"],
    )


def profile_from_candidate(candidate: dict) -> CandidateProfile:
    """Build a scoring profile from a candidate row, preferring stored profile_data."""
    data = candidate.get("profile_data") or {}
    if isinstance(data, str):
        data = json.loads(data) if data else {}
    profile = CandidateProfile(**{k: v for k, v in data.items() if k in CandidateProfile.model_fields})
    if not profile.current_title:
        profile.current_title = candidate.get("title")
    if not profile.current_company:
        profile.current_company = candidate.get("company")
    if not profile.location:
        profile.location = candidate.get("location")
    return profile


def job_spec_from_campaign(campaign: dict) -> JobSpec:
    raw = campaign.get("job_spec") or {}
    if isinstance(raw, str):
        raw = json.loads(raw) if raw else {}
    return JobSpec(**raw)


class SemanticScorer(Protocol):
    async def score(self, profile: CandidateProfile, job_spec: JobSpec, weights: dict) -> ScoringResult:
        ...


SCORING_SYSTEM_PROMPT = """You are a professional recruiting analyst scoring LinkedIn candidates against a job specification.

Score each category up to its weight:
- role_fit: {role_fit} points (title match, relevant years, industry match)
- company_context: {company_context} points (company size, growth stage, brand signal)
- trajectory_stability: {trajectory_stability} points (upward progression, average tenure)
- education: {education} points (degree level, field relevance)
- profile_quality: {profile_quality} points (completeness, recent activity)
- bonus: up to 10 points (open to work +5, recent job change +3, 3+ mutual connections +2,
  internal promotion +3, active content creator +2, alma mater match +2)

Buckets: 85+ Hot, 65-84 Warm, 45-64 Cool, below 45 Cold.

When data is missing, score that criterion at the minimum. Do not invent data.
The personalization_hook is one specific sentence about this candidate, never generic filler.

Return ONLY a JSON object:
{{"hard_filter_passed": true, "disqualify_reason": null,
  "scores": {{"role_fit": n, "company_context": n, "trajectory_stability": n, "education": n, "profile_quality": n, "bonus": n}},
  "total_score": n, "bucket": "Hot|Warm|Cool|Cold", "score_rationale": "2-3 sentences",
  "recommended_action": "...", "personalization_hook": "...", "flags": []}}
"""


def _extract_json(text: str) -> dict:
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        raise ValueError("no JSON object in response")
    return json.loads(text[start:end + 1])


class ClaudeScorer:
    """Semantic rubric scoring with Claude."""

    def __init__(self, model: str = "claude-sonnet-4-5-20250929", max_tokens: int = 1500, client=None):
        self.model = model
        self.max_tokens = max_tokens
        self.client = client

    async def score(self, profile: CandidateProfile, job_spec: JobSpec, weights: dict) -> ScoringResult:
        client = self.client or anthropic.AsyncAnthropic()
        user_message = f"""Score this candidate against the job specification.

## JOB SPECIFICATION
{job_spec.model_dump_json(indent=2, exclude_none=True)}

## CANDIDATE PROFILE
{profile.model_dump_json(indent=2, exclude_none=True)}"""

        try:
            response = await client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                system=SCORING_SYSTEM_PROMPT.format(**weights),
                messages=[{"role": "user", "content": user_message}],
            )
            return ScoringResult(**_extract_json(response.content[0].text))
        except (anthropic.APIError, ValueError, ValidationError) as e:
            log.error("scoring_failed", error=str(e))
            raise ExternalActionFailure(f"Semantic scoring failed: {e}") from e


class ScoringAdapter:
    """Hard filters first; the semantic scorer only sees candidates that pass."""

    def __init__(self, scorer: SemanticScorer):
        self.scorer = scorer

    async def score(self, profile: CandidateProfile, job_spec: JobSpec) -> ScoringResult:
        reason = apply_hard_filters(profile, job_spec)
        if reason:
            log.info("hard_filter_disqualified", reason=reason)
            return disqualified_result(reason)

        weights = {**DEFAULT_WEIGHTS, **job_spec.weight_overrides}
        result = await self.scorer.score(profile, job_spec, weights)
        return self.enforce(result)

    @staticmethod
    def enforce(result: ScoringResult) -> ScoringResult:
        """Apply the local invariants to an externally produced result."""
        scores = result.scores.model_copy()
        scores.bonus = min(max(scores.bonus, 0), MAX_BONUS)
        total = (scores.role_fit + scores.company_context + scores.trajectory_stability
                 + scores.education + scores.profile_quality + scores.bonus)
        total = min(max(total, 0), MAX_TOTAL)

        return result.model_copy(update={
            "hard_filter_passed": True,
            "disqualify_reason": None,
            "scores": scores,
            "total_score": total,
            "bucket": assign_bucket(total),
        })

    def check(self, profile: CandidateProfile, job_spec: JobSpec) -> Optional[ScoringResult]:
        """Hard filters only: the disqualified result, or None if the candidate passes."""
        reason = apply_hard_filters(profile, job_spec)
        return disqualified_result(reason) if reason else None
