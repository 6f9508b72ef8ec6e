"""Service layer."""

from recruiter.services.notifier import ApprovalNotifier
