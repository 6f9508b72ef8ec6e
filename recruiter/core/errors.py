"""Exception types raised by the pipeline engine."""

from datetime import timedelta
from typing import Optional


class RecruiterError(Exception):
    """Base class for all engine errors."""


class CandidateNotFound(RecruiterError):
    def __init__(self, candidate_id: int):
        super().__init__(f"Candidate {candidate_id} not found")
        self.candidate_id = candidate_id


class InvalidTransition(RecruiterError):
    """Target status is not an edge of the transition graph."""

    def __init__(self, current: str, target: str, valid: Optional[list[str]] = None, message: Optional[str] = None):
        if message is None:
            allowed = ", ".join(valid) if valid else "none"
            message = f'Cannot transition from "{current}" to "{target}". Valid transitions: {allowed}'
        super().__init__(message)
        self.current = current
        self.target = target


class ConcurrentStatusChange(InvalidTransition):
    """Another writer changed the candidate's status between check and write."""

    def __init__(self, candidate_id: int, expected: str, target: str):
        super().__init__(
            expected,
            target,
            message=f'Candidate {candidate_id} is no longer in "{expected}"; transition to "{target}" aborted',
        )
        self.candidate_id = candidate_id


class TimingNotElapsed(RecruiterError):
    """Valid edge, but the minimum dwell time has not elapsed yet."""

    def __init__(self, current: str, target: str, remaining: timedelta, description: str = ""):
        hours = remaining.total_seconds() / 3600
        text = description or f'Minimum dwell for "{current}" -> "{target}" not reached'
        super().__init__(f"{text}. {hours:.1f} hours remaining.")
        self.current = current
        self.target = target
        self.remaining = remaining


class ExternalActionFailure(RecruiterError):
    """An outreach, discovery, generator or scorer call failed."""


class ApprovalNotFound(RecruiterError):
    def __init__(self, approval_id: int):
        super().__init__(f"Approval {approval_id} not found")
        self.approval_id = approval_id


class ApprovalStateError(RecruiterError):
    """Approval cannot move from its current status to the requested one."""

    def __init__(self, approval_id: int, current: str, target: str):
        super().__init__(f'Approval {approval_id} cannot move from "{current}" to "{target}"')
        self.approval_id = approval_id
        self.current = current
        self.target = target
