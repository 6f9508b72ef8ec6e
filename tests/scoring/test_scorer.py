import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from recruiter.core.errors import ExternalActionFailure
from recruiter.scoring.models import CandidateProfile, JobSpec, ScoreBreakdown, ScoringResult
from recruiter.scoring.scorer import (
    DEFAULT_WEIGHTS,
    ClaudeScorer,
    ScoringAdapter,
    assign_bucket,
    job_spec_from_campaign,
    profile_from_candidate,
)


def _result(**scores):
    return ScoringResult(scores=ScoreBreakdown(**scores), total_score=999, bucket="Hot")


def test_assign_bucket_boundaries():
    assert assign_bucket(85) == "Hot"
    assert assign_bucket(84.9) == "Warm"
    assert assign_bucket(65) == "Warm"
    assert assign_bucket(64) == "Cool"
    assert assign_bucket(45) == "Cool"
    assert assign_bucket(44) == "Cold"


@pytest.mark.asyncio
async def test_disqualified_candidate_never_reaches_scorer():
    scorer = AsyncMock()
    adapter = ScoringAdapter(scorer)
    profile = CandidateProfile(current_company="Acme Corp")
    job = JobSpec(disqualify_companies=["acme"])

    result = await adapter.score(profile, job)

    scorer.score.assert_not_called()
    assert result.hard_filter_passed is False
    assert result.bucket == "Cold"
    assert result.total_score == 0
    assert result.flags == [f"disqualified:{result.disqualify_reason}"]


@pytest.mark.asyncio
async def test_adapter_recomputes_total_and_bucket():
    scorer = AsyncMock()
    scorer.score.return_value = _result(role_fit=30, company_context=20, trajectory_stability=10,
                                        education=5, profile_quality=3, bonus=2)

    result = await ScoringAdapter(scorer).score(CandidateProfile(), JobSpec())

    assert result.total_score == 70
    assert result.bucket == "Warm"
    assert result.hard_filter_passed is True


@pytest.mark.asyncio
async def test_adapter_clamps_bonus_and_total():
    scorer = AsyncMock()
    scorer.score.return_value = _result(role_fit=60, company_context=30, trajectory_stability=20,
                                        education=10, profile_quality=5, bonus=25)

    result = await ScoringAdapter(scorer).score(CandidateProfile(), JobSpec())

    assert result.scores.bonus == 10
    assert result.total_score == 110
    assert result.bucket == "Hot"


def test_enforce_floors_negative_scores():
    result = ScoringAdapter.enforce(_result(role_fit=-20, bonus=-5))
    assert result.scores.bonus == 0
    assert result.total_score == 0
    assert result.bucket == "Cold"


@pytest.mark.asyncio
async def test_weight_overrides_reach_scorer():
    scorer = AsyncMock()
    scorer.score.return_value = _result()
    job = JobSpec(weight_overrides={"role_fit": 50, "education": 0})

    await ScoringAdapter(scorer).score(CandidateProfile(), job)

    weights = scorer.score.call_args[0][2]
    assert weights["role_fit"] == 50
    assert weights["education"] == 0
    assert weights["company_context"] == DEFAULT_WEIGHTS["company_context"]


def test_check_runs_hard_filters_only():
    adapter = ScoringAdapter(AsyncMock())
    assert adapter.check(CandidateProfile(), JobSpec()) is None
    result = adapter.check(CandidateProfile(current_title="Intern"), JobSpec(disqualify_titles=["intern"]))
    assert result.hard_filter_passed is False


@pytest.mark.asyncio
async def test_claude_scorer_parses_json():
    payload = {
        "scores": {"role_fit": 35, "company_context": 20, "trajectory_stability": 15,
                   "education": 8, "profile_quality": 4, "bonus": 5},
        "total_score": 87,
        "bucket": "Hot",
        "score_rationale": "Strong fit.",
        "personalization_hook": "Scaled a DTC brand from 0 to 1.",
    }
    response = MagicMock()
    response.content = [MagicMock(text=f"Here you go:\n{json.dumps(payload)}")]
    client = AsyncMock()
    client.messages.create.return_value = response

    result = await ClaudeScorer(client=client).score(CandidateProfile(), JobSpec(), DEFAULT_WEIGHTS)

    assert result.scores.role_fit == 35
    assert result.personalization_hook == "Scaled a DTC brand from 0 to 1."
    assert "40 points" in client.messages.create.call_args[1]["system"]


@pytest.mark.asyncio
async def test_claude_scorer_failure_raises():
    response = MagicMock()
    response.content = [MagicMock(text="I cannot score this candidate.")]
    client = AsyncMock()
    client.messages.create.return_value = response

    with pytest.raises(ExternalActionFailure):
        await ClaudeScorer(client=client).score(CandidateProfile(), JobSpec(), DEFAULT_WEIGHTS)


def test_profile_from_candidate_prefers_profile_data():
    candidate = {
        "title": "VP Sales",
        "company": "Acme",
        "location": "Denver",
        "profile_data": json.dumps({"current_title": "CRO", "skills": ["SaaS"], "unknown": 1}),
    }
    profile = profile_from_candidate(candidate)
    assert profile.current_title == "CRO"
    assert profile.current_company == "Acme"
    assert profile.skills == ["SaaS"]


def test_job_spec_from_campaign():
    assert job_spec_from_campaign({"job_spec": '{"location": "Denver"}'}).location == "Denver"
    assert job_spec_from_campaign({"job_spec": None}) == JobSpec()
