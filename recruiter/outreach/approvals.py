"""Human approval gate for every outbound action.

The scheduler may only create pending approvals and later execute the ones a
human marked approved. Status moves are conditional updates on the expected
current status, so a concurrent reject from the dashboard cannot be
overwritten by a send.
"""

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

import structlog

from recruiter.core.db import (
    DEFAULT_DB_PATH,
    candidate_has_approval,
    get_approval,
    get_approvals_by_status,
    get_candidate,
    get_latest_stage_approval,
    insert_approval,
    to_timestamp,
    update_approval_status,
    update_approval_text,
    utcnow,
)
from recruiter.core.errors import ApprovalNotFound, ApprovalStateError

log = structlog.get_logger()

PENDING = "pending"
APPROVED = "approved"
REJECTED = "rejected"
SENT = "sent"
FAILED = "failed"

APPROVAL_TRANSITIONS = {
    PENDING: frozenset({APPROVED, REJECTED}),
    APPROVED: frozenset({SENT, FAILED}),
    REJECTED: frozenset(),
    SENT: frozenset(),
    FAILED: frozenset(),
}


@dataclass
class Approval:
    """Approval queue record."""
    id: int
    candidate_id: int
    campaign_id: int
    approval_type: str
    proposed_text: str
    status: str
    approved_text: Optional[str] = None
    context: Optional[str] = None
    pipeline_stage_id: Optional[int] = None
    created_at: Optional[str] = None
    responded_at: Optional[str] = None
    sent_at: Optional[str] = None
    failed_reason: Optional[str] = None
    candidate_name: Optional[str] = None
    candidate_title: Optional[str] = None
    candidate_company: Optional[str] = None
    linkedin_url: Optional[str] = None
    profile_id: Optional[str] = None

    @classmethod
    def from_row(cls, row) -> "Approval":
        fields = cls.__dataclass_fields__
        return cls(**{key: row[key] for key in row.keys() if key in fields})

    @property
    def text_to_send(self) -> str:
        """Human-edited text wins over the generated proposal."""
        return self.approved_text or self.proposed_text


class ApprovalGate:
    """Creates, resolves and settles approval records."""

    def __init__(
        self,
        db_path: Path = DEFAULT_DB_PATH,
        notifier=None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db_path = db_path
        self.notifier = notifier
        self.clock = clock

    def get(self, approval_id: int) -> Approval:
        row = get_approval(self.db_path, approval_id)
        if row is None:
            raise ApprovalNotFound(approval_id)
        return Approval.from_row(row)

    def list_pending(self) -> list[Approval]:
        return [Approval.from_row(row) for row in get_approvals_by_status(self.db_path, PENDING)]

    def list_approved(self) -> list[Approval]:
        """Approved and not yet sent, oldest first."""
        return [Approval.from_row(row) for row in get_approvals_by_status(self.db_path, APPROVED)]

    def has_approval(self, candidate_id: int, stage_id: Optional[int] = None) -> bool:
        if stage_id is None:
            return candidate_has_approval(self.db_path, candidate_id)
        return get_latest_stage_approval(self.db_path, candidate_id, stage_id) is not None

    def latest_for_stage(self, candidate_id: int, stage_id: int) -> Optional[Approval]:
        row = get_latest_stage_approval(self.db_path, candidate_id, stage_id)
        return Approval.from_row(row) if row else None

    async def create_pending(
        self,
        candidate_id: int,
        campaign_id: int,
        approval_type: str,
        proposed_text: str,
        context: Optional[str] = None,
        pipeline_stage_id: Optional[int] = None,
    ) -> Approval:
        """Queue an outbound action for human review and notify the reviewer."""
        approval_id = insert_approval(
            self.db_path, candidate_id, campaign_id, approval_type, proposed_text,
            context=context, pipeline_stage_id=pipeline_stage_id, now=self.clock(),
        )
        approval = self.get(approval_id)
        log.info("approval_created", approval_id=approval_id, candidate_id=candidate_id,
                 approval_type=approval_type, stage_id=pipeline_stage_id)

        if self.notifier is not None:
            candidate = get_candidate(self.db_path, candidate_id)
            try:
                await self.notifier.notify_pending(approval, dict(candidate) if candidate else {})
            except Exception as e:
                log.error("approval_notify_failed", approval_id=approval_id, error=str(e))

        return approval

    def approve(self, approval_id: int, approved_text: Optional[str] = None) -> Approval:
        fields = {"responded_at": to_timestamp(self.clock())}
        if approved_text is not None:
            fields["approved_text"] = approved_text
        self._move(approval_id, PENDING, APPROVED, fields)
        log.info("approval_approved", approval_id=approval_id, edited=approved_text is not None)
        return self.get(approval_id)

    def reject(self, approval_id: int, reason: Optional[str] = None) -> Approval:
        fields = {"responded_at": to_timestamp(self.clock())}
        if reason:
            fields["failed_reason"] = reason
        self._move(approval_id, PENDING, REJECTED, fields)
        log.info("approval_rejected", approval_id=approval_id, reason=reason)
        return self.get(approval_id)

    def edit_text(self, approval_id: int, approved_text: str) -> Approval:
        """Replace the text to send while the approval is still pending."""
        if not update_approval_text(self.db_path, approval_id, approved_text):
            current = self.get(approval_id)
            raise ApprovalStateError(approval_id, current.status, PENDING)
        return self.get(approval_id)

    def mark_sent(self, approval_id: int) -> None:
        self._move(approval_id, APPROVED, SENT, {"sent_at": to_timestamp(self.clock())})

    def mark_failed(self, approval_id: int, reason: str) -> None:
        self._move(approval_id, APPROVED, FAILED, {"failed_reason": reason})

    def _move(self, approval_id: int, expected: str, target: str, fields: dict) -> None:
        if target not in APPROVAL_TRANSITIONS[expected]:
            raise ApprovalStateError(approval_id, expected, target)
        if not update_approval_status(self.db_path, approval_id, expected, target, fields):
            current = self.get(approval_id)
            raise ApprovalStateError(approval_id, current.status, target)
