"""Outreach: approvals, quotas, message composition, import, scheduling."""

from recruiter.outreach.approvals import Approval, ApprovalGate
from recruiter.outreach.rate_limiter import QuotaStatus, RateLimiter
from recruiter.outreach.composer import ClaudeMessageGenerator, GeneratedMessage, build_merge_context
from recruiter.outreach.importer import import_candidates
from recruiter.outreach.scheduler import SchedulerLoop
