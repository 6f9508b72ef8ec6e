"""Slack notifications for the approval queue."""

import os
from typing import Optional

import httpx
import structlog

log = structlog.get_logger()

PREVIEW_CHARS = 500


class ApprovalNotifier:
    """Posts a message to Slack whenever an outbound action awaits review."""

    def __init__(self, webhook_url: Optional[str] = None):
        """Initialize with webhook URL."""
        self.webhook_url = webhook_url or os.getenv("SLACK_WEBHOOK_URL")

    def build_blocks(self, approval, candidate: dict) -> list[dict]:
        name = candidate.get("name") or approval.candidate_name or "Unknown"
        title = candidate.get("title") or ""
        company = candidate.get("company") or ""
        headline = f"{title} at {company}" if title and company else (title or company or "-")

        text = approval.proposed_text or ""
        if len(text) > PREVIEW_CHARS:
            text = text[:PREVIEW_CHARS] + "..."

        blocks = [
            {
                "type": "header",
                "text": {
                    "type": "plain_text",
                    "text": f"Approval needed: {approval.approval_type.replace('_', ' ')}",
                }
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Candidate:*\n{name}"},
                    {"type": "mrkdwn", "text": f"*Current role:*\n{headline}"},
                    {"type": "mrkdwn", "text": f"*Approval ID:*\n{approval.id}"},
                ]
            },
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": f"*Proposed text:*\n>{text}"}
            },
        ]

        linkedin_url = candidate.get("linkedin_url") or approval.linkedin_url
        if linkedin_url:
            blocks.append({
                "type": "context",
                "elements": [{"type": "mrkdwn", "text": f"<{linkedin_url}|LinkedIn profile>"}]
            })

        return blocks

    async def notify_pending(self, approval, candidate: dict) -> bool:
        """Announce a new pending approval.

        Returns:
            True if sent successfully. Failures are logged, never raised.
        """
        if not self.webhook_url:
            log.warning("slack_webhook_not_configured")
            return False

        try:
            blocks = self.build_blocks(approval, candidate)
            async with httpx.AsyncClient(timeout=10.0) as client:
                response = await client.post(
                    self.webhook_url,
                    json={"blocks": blocks},
                )
                response.raise_for_status()
                log.info("slack_approval_sent", approval_id=approval.id)
                return True

        except Exception as e:
            log.error("slack_send_error", error=str(e), approval_id=approval.id)
            return False
