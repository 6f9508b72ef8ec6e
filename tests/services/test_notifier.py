"""Tests for the approval notifier."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from recruiter.outreach.approvals import Approval
from recruiter.services.notifier import ApprovalNotifier


def _approval(text="Hi Jane, open to connecting?"):
    return Approval(
        id=12,
        candidate_id=3,
        campaign_id=1,
        approval_type="connection_request",
        proposed_text=text,
        status="pending",
        candidate_name="Jane Doe",
        linkedin_url="https://www.linkedin.com/in/jane",
    )


CANDIDATE = {"name": "Jane Doe", "title": "VP Marketing", "company": "Glossy",
             "linkedin_url": "https://www.linkedin.com/in/jane"}


@pytest.mark.asyncio
async def test_notify_pending_posts_blocks():
    with patch("recruiter.services.notifier.httpx.AsyncClient") as mock_client_class:
        mock_client = AsyncMock()
        mock_response = MagicMock()
        mock_response.raise_for_status = MagicMock()
        mock_client.post = AsyncMock(return_value=mock_response)
        mock_client.__aenter__ = AsyncMock(return_value=mock_client)
        mock_client.__aexit__ = AsyncMock(return_value=None)
        mock_client_class.return_value = mock_client

        notifier = ApprovalNotifier(webhook_url="https://hooks.slack.com/test")
        result = await notifier.notify_pending(_approval(), CANDIDATE)

        assert result is True
        mock_client.post.assert_called_once()
        blocks = mock_client.post.call_args[1]["json"]["blocks"]
        assert blocks[0]["type"] == "header"
        assert "connection request" in blocks[0]["text"]["text"]
        assert "VP Marketing at Glossy" in blocks[1]["fields"][1]["text"]
        assert blocks[-1]["type"] == "context"


def test_long_text_is_truncated():
    notifier = ApprovalNotifier(webhook_url="https://hooks.slack.com/test")
    blocks = notifier.build_blocks(_approval("x" * 800), {})
    preview = blocks[2]["text"]["text"]
    assert preview.endswith("...")
    assert len(preview) < 600


@pytest.mark.asyncio
async def test_notify_pending_without_webhook(monkeypatch):
    monkeypatch.delenv("SLACK_WEBHOOK_URL", raising=False)
    notifier = ApprovalNotifier()
    assert await notifier.notify_pending(_approval(), CANDIDATE) is False


@pytest.mark.asyncio
async def test_notify_pending_swallows_http_errors():
    with patch("recruiter.services.notifier.httpx.AsyncClient") as mock_client_class:
        mock_client = AsyncMock()
        mock_client.post = AsyncMock(side_effect=Exception("Network error"))
        mock_client.__aenter__ = AsyncMock(return_value=mock_client)
        mock_client.__aexit__ = AsyncMock(return_value=None)
        mock_client_class.return_value = mock_client

        notifier = ApprovalNotifier(webhook_url="https://hooks.slack.com/test")
        assert await notifier.notify_pending(_approval(), CANDIDATE) is False
