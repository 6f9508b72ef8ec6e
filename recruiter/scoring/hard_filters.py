"""Deterministic disqualification rules, evaluated before any weighted scoring."""

from datetime import date, datetime
from typing import Optional

from recruiter.scoring.models import CandidateProfile, JobSpec, WorkExperience


def _parse_date(value: str) -> date:
    # Profiles carry "2021-03", "2021-03-15" or full ISO timestamps
    value = value.strip()
    if len(value) == 7:
        value = f"{value}-01"
    return datetime.fromisoformat(value[:10]).date()


def tenure_months(role: WorkExperience, today: Optional[date] = None) -> Optional[float]:
    """Months spent in a role; open-ended roles run to today."""
    if role.duration_months is not None:
        return role.duration_months
    if not role.start_date:
        return None
    start = _parse_date(role.start_date)
    end = _parse_date(role.end_date) if role.end_date else (today or date.today())
    return (end.year - start.year) * 12 + (end.month - start.month)


def apply_hard_filters(
    profile: CandidateProfile,
    job_spec: JobSpec,
    today: Optional[date] = None,
) -> Optional[str]:
    """Return the first disqualify reason that applies, or None."""
    # 1. Onsite role and location mismatch
    if job_spec.remote_policy == "onsite" and job_spec.location and profile.location:
        job_loc = job_spec.location.lower()
        cand_loc = profile.location.lower()
        if job_loc not in cand_loc and cand_loc not in job_loc:
            return (f'Location mismatch: candidate is in "{profile.location}" '
                    f'but role requires onsite in "{job_spec.location}"')

    # 2. Current employer on the disqualify list
    if job_spec.disqualify_companies and profile.current_company:
        company = profile.current_company.lower()
        for blocked in job_spec.disqualify_companies:
            blocked = blocked.lower()
            if blocked and (blocked in company or company in blocked):
                return f'Current company "{profile.current_company}" is on the disqualify list'

    # 3. Current title matches a disqualified pattern
    if job_spec.disqualify_titles and profile.current_title:
        title = profile.current_title.lower()
        for pattern in job_spec.disqualify_titles:
            if pattern and pattern.lower() in title:
                return f'Current title "{profile.current_title}" matches disqualified title pattern "{pattern}"'

    # 4. Chronic job hopping
    if len(profile.experience) >= 3:
        tenures = [tenure_months(role, today) for role in profile.experience]
        if not any(months is not None and months > 12 for months in tenures):
            return "Chronic job hopping: no role with tenure exceeding 12 months across career"

    # 5. Missing required certifications
    if job_spec.required_certifications:
        held = [cert.lower() for cert in profile.certifications]
        missing = [
            required for required in job_spec.required_certifications
            if not any(required.lower() in cert for cert in held)
        ]
        if missing:
            return f"Missing required certifications: {', '.join(missing)}"

    return None
