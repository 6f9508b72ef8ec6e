"""Job spec, candidate profile and scoring result models."""

from typing import Optional

from pydantic import BaseModel, Field


class JobSpec(BaseModel):
    industry_targets: list[str] = []
    industry_adjacent_ok: list[str] = []
    company_size_min: Optional[int] = None
    company_size_max: Optional[int] = None
    growth_stage: list[str] = []
    location: Optional[str] = None
    remote_policy: Optional[str] = None  # "onsite" | "hybrid" | "remote"
    years_experience_min: Optional[int] = None
    years_experience_ideal: Optional[int] = None
    required_skills: list[str] = []
    nice_to_have_skills: list[str] = []
    required_certifications: list[str] = []
    education_required: bool = False
    education_preferred: Optional[str] = None
    disqualify_companies: list[str] = []
    disqualify_titles: list[str] = []
    client_description_external: Optional[str] = None
    role_one_liner: Optional[str] = None
    function: Optional[str] = None
    role_level: Optional[str] = None
    weight_overrides: dict[str, float] = {}
    notes: Optional[str] = None


class WorkExperience(BaseModel):
    title: str = ""
    company: str = ""
    company_size: Optional[int] = None
    industry: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    duration_months: Optional[float] = None
    is_current: bool = False
    description: Optional[str] = None


class Education(BaseModel):
    school: str = ""
    degree: Optional[str] = None
    field: Optional[str] = None
    graduation_year: Optional[int] = None


class CandidateProfile(BaseModel):
    current_title: Optional[str] = None
    current_company: Optional[str] = None
    current_company_size: Optional[int] = None
    current_industry: Optional[str] = None
    location: Optional[str] = None
    open_to_work: bool = False
    experience: list[WorkExperience] = []
    education: list[Education] = []
    skills: list[str] = []
    certifications: list[str] = []
    summary: Optional[str] = None
    has_posted_content: bool = False
    mutual_connections: Optional[int] = None
    profile_completeness: Optional[str] = None  # "full" | "partial" | "sparse"
    recent_activity: bool = False


class ScoreBreakdown(BaseModel):
    role_fit: float = 0
    company_context: float = 0
    trajectory_stability: float = 0
    education: float = 0
    profile_quality: float = 0
    bonus: float = 0


class ScoringResult(BaseModel):
    hard_filter_passed: bool = True
    disqualify_reason: Optional[str] = None
    scores: ScoreBreakdown = Field(default_factory=ScoreBreakdown)
    total_score: float = 0
    bucket: str = "Cold"
    score_rationale: str = ""
    recommended_action: str = ""
    personalization_hook: str = ""
    flags: list[str] = []
