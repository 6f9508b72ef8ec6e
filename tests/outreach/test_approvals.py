import tempfile
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from recruiter.core.db import init_db, insert_campaign, insert_candidate
from recruiter.core.errors import ApprovalNotFound, ApprovalStateError
from recruiter.outreach.approvals import ApprovalGate

T0 = datetime(2026, 3, 2, 18, 0, tzinfo=timezone.utc)


def _setup(tmpdir, notifier=None):
    db_path = Path(tmpdir) / "test.db"
    init_db(db_path)
    campaign_id = insert_campaign(db_path, "Search", "VP Marketing")
    candidate_id = insert_candidate(db_path, campaign_id, "jane", "Jane Doe", title="VP Sales",
                                    company="Acme", linkedin_url="https://www.linkedin.com/in/jane", now=T0)
    gate = ApprovalGate(db_path, notifier=notifier, clock=lambda: T0)
    return gate, campaign_id, candidate_id


@pytest.mark.asyncio
async def test_create_pending_notifies_reviewer():
    with tempfile.TemporaryDirectory() as tmpdir:
        notifier = AsyncMock()
        gate, campaign_id, candidate_id = _setup(tmpdir, notifier)

        approval = await gate.create_pending(candidate_id, campaign_id, "connection_request", "Hi J...",
                                             context="shared school")

        assert approval.status == "pending"
        assert approval.candidate_name == "Jane Doe"
        assert approval.linkedin_url == "https://www.linkedin.com/in/jane"
        assert approval.context == "shared school"
        notifier.notify_pending.assert_awaited_once()
        _, candidate = notifier.notify_pending.call_args[0]
        assert candidate["company"] == "Acme"
        assert [a.id for a in gate.list_pending()] == [approval.id]


@pytest.mark.asyncio
async def test_notifier_failure_keeps_approval():
    with tempfile.TemporaryDirectory() as tmpdir:
        notifier = AsyncMock()
        notifier.notify_pending.side_effect = RuntimeError("slack down")
        gate, campaign_id, candidate_id = _setup(tmpdir, notifier)

        approval = await gate.create_pending(candidate_id, campaign_id, "connection_request", "Hi J...")

        assert gate.get(approval.id).status == "pending"


@pytest.mark.asyncio
async def test_approved_text_overrides_proposal():
    with tempfile.TemporaryDirectory() as tmpdir:
        gate, campaign_id, candidate_id = _setup(tmpdir)
        approval = await gate.create_pending(candidate_id, campaign_id, "message", "Hi J...")

        approved = gate.approve(approval.id, approved_text="Hi Jane...")

        assert approved.status == "approved"
        assert approved.text_to_send == "Hi Jane..."
        assert approved.responded_at is not None
        assert [a.id for a in gate.list_approved()] == [approval.id]


@pytest.mark.asyncio
async def test_edit_text_only_while_pending():
    with tempfile.TemporaryDirectory() as tmpdir:
        gate, campaign_id, candidate_id = _setup(tmpdir)
        approval = await gate.create_pending(candidate_id, campaign_id, "message", "Hi J...")

        assert gate.edit_text(approval.id, "Hello Jane").text_to_send == "Hello Jane"
        gate.approve(approval.id)
        assert gate.get(approval.id).text_to_send == "Hello Jane"

        with pytest.raises(ApprovalStateError):
            gate.edit_text(approval.id, "Too late")


@pytest.mark.asyncio
async def test_rejected_approval_can_never_be_sent():
    with tempfile.TemporaryDirectory() as tmpdir:
        gate, campaign_id, candidate_id = _setup(tmpdir)
        approval = await gate.create_pending(candidate_id, campaign_id, "message", "Hi")

        rejected = gate.reject(approval.id, reason="tone")
        assert rejected.status == "rejected"
        assert rejected.failed_reason == "tone"
        assert gate.list_approved() == []

        with pytest.raises(ApprovalStateError):
            gate.mark_sent(approval.id)
        with pytest.raises(ApprovalStateError):
            gate.approve(approval.id)
        assert gate.get(approval.id).status == "rejected"


@pytest.mark.asyncio
async def test_pending_cannot_skip_to_sent():
    with tempfile.TemporaryDirectory() as tmpdir:
        gate, campaign_id, candidate_id = _setup(tmpdir)
        approval = await gate.create_pending(candidate_id, campaign_id, "message", "Hi")

        with pytest.raises(ApprovalStateError):
            gate.mark_sent(approval.id)
        assert gate.get(approval.id).sent_at is None


@pytest.mark.asyncio
async def test_sent_and_failed_are_final():
    with tempfile.TemporaryDirectory() as tmpdir:
        gate, campaign_id, candidate_id = _setup(tmpdir)
        sent = await gate.create_pending(candidate_id, campaign_id, "message", "One")
        failed = await gate.create_pending(candidate_id, campaign_id, "message", "Two")
        gate.approve(sent.id)
        gate.approve(failed.id)

        gate.mark_sent(sent.id)
        gate.mark_failed(failed.id, "profile unavailable")

        assert gate.get(sent.id).sent_at is not None
        assert gate.get(failed.id).failed_reason == "profile unavailable"
        with pytest.raises(ApprovalStateError):
            gate.mark_failed(sent.id, "late")
        with pytest.raises(ApprovalStateError):
            gate.mark_sent(failed.id)


@pytest.mark.asyncio
async def test_stage_lookup():
    with tempfile.TemporaryDirectory() as tmpdir:
        gate, campaign_id, candidate_id = _setup(tmpdir)
        assert not gate.has_approval(candidate_id)

        await gate.create_pending(candidate_id, campaign_id, "connection_request", "Hi")

        assert gate.has_approval(candidate_id)
        assert not gate.has_approval(candidate_id, stage_id=1)
        assert gate.latest_for_stage(candidate_id, 1) is None


def test_unknown_approval():
    with tempfile.TemporaryDirectory() as tmpdir:
        gate, _, _ = _setup(tmpdir)
        with pytest.raises(ApprovalNotFound):
            gate.get(42)
