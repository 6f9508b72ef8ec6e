"""Outreach message composition using Claude, with template fallback."""

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

import anthropic
import structlog

from recruiter.core.config import DEFAULT_CONFIG_PATH, MessageTemplate, get_template_by_name, render_template
from recruiter.core.errors import ExternalActionFailure

log = structlog.get_logger()

MODEL = "claude-sonnet-4-5-20250929"


@dataclass
class GeneratedMessage:
    text: str
    reasoning: str


class MessageGenerator(Protocol):
    async def generate(self, candidate: dict, role_context: dict) -> GeneratedMessage:
        ...


def build_merge_context(
    candidate: dict,
    campaign: Optional[dict] = None,
    recruiter_name: str = "",
    qualify_link: str = "",
) -> dict:
    """Merge fields available to message templates."""
    campaign = campaign or {}
    job_spec = campaign.get("job_spec") or {}
    if isinstance(job_spec, str):
        job_spec = json.loads(job_spec) if job_spec else {}

    name_parts = (candidate.get("name") or "").split()
    first_name = name_parts[0] if name_parts else ""
    last_name = " ".join(name_parts[1:])

    return {
        "first_name": first_name,
        "last_name": last_name,
        "full_name": candidate.get("name") or "",
        "title": candidate.get("title") or "",
        "company": candidate.get("company") or "",
        "hook": candidate.get("personalization_hook") or "",
        "function": job_spec.get("function") or campaign.get("role_title") or "",
        "role_level": job_spec.get("role_level") or "",
        "company_type": "/".join(job_spec.get("growth_stage") or []),
        "industry": ", ".join(job_spec.get("industry_targets") or []),
        "client_description_external": job_spec.get("client_description_external") or "",
        "role_one_liner": job_spec.get("role_one_liner") or campaign.get("role_description") or "",
        "recruiter_name": recruiter_name,
        "qualify_link": qualify_link,
    }


def build_system_prompt(action_type: str, template: Optional[MessageTemplate]) -> str:
    """Build the system prompt for Claude."""
    guide = template.body if template else "(no template: write from scratch)"
    limit = "Keep it under 300 characters (LinkedIn connection note limit)." \
        if action_type == "connection_request" else "Keep it under 120 words."

    return f"""You write LinkedIn recruiting outreach on behalf of a recruiter.

## Message type: {action_type}

## Template (use as a guide; keep its ask, adjust for natural flow):
```
{guide}
```

## Rules:
- Reference one specific, genuine detail from the candidate's profile or the personalization hook
- Never name the client company; describe it only as given
- No flattery filler ("impressive background"), no em-dashes, no emojis
- {limit}

## Output format:
Return a JSON object with exactly two fields:
- "message": the full message text
- "reasoning": one sentence on why this angle fits the candidate
"""


class ClaudeMessageGenerator:
    """Generate outreach text with Claude; fall back to the rendered template."""

    def __init__(
        self,
        config_path: Path = DEFAULT_CONFIG_PATH,
        model: str = MODEL,
        max_tokens: int = 800,
        temperature: float = 0.7,
        client=None,
    ):
        self.config_path = config_path
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.client = client

    async def generate(self, candidate: dict, role_context: dict) -> GeneratedMessage:
        """Generate a message for one candidate.

        role_context keys: action_type, campaign, template_name, recruiter_name, qualify_link.
        """
        action_type = role_context.get("action_type", "message")
        campaign = role_context.get("campaign") or {}
        template = None
        if role_context.get("template_name"):
            template = get_template_by_name(self.config_path, role_context["template_name"])
        merge = build_merge_context(
            candidate, campaign,
            recruiter_name=role_context.get("recruiter_name", ""),
            qualify_link=role_context.get("qualify_link", ""),
        )

        user_message = f"""Write a {action_type} for this candidate:

Name: {merge['full_name']}
Title: {merge['title'] or 'Unknown'}
Company: {merge['company'] or 'Unknown'}
Personalization hook: {merge['hook'] or 'none'}

Role: {campaign.get('role_title', '')} ({merge['role_level'] or 'level unspecified'})
Client: {merge['client_description_external'] or 'confidential'}
One-liner: {merge['role_one_liner']}

Return valid JSON with "message" and "reasoning" fields."""

        log.info("generating_message", candidate_id=candidate.get("id"), action_type=action_type)

        response_text = ""
        try:
            client = self.client or anthropic.AsyncAnthropic()
            response = await client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                system=build_system_prompt(action_type, template),
                messages=[{"role": "user", "content": user_message}]
            )

            response_text = response.content[0].text.strip()

            # Handle potential markdown code blocks
            if response_text.startswith("```"):
                response_text = response_text.split("```")[1]
                if response_text.startswith("json"):
                    response_text = response_text[4:]
                response_text = response_text.strip()

            result = json.loads(response_text)
            message = (result.get("message") or "").strip()
            if not message:
                raise ValueError("empty message")

            log.info("message_generated", candidate_id=candidate.get("id"))
            return GeneratedMessage(text=message, reasoning=result.get("reasoning", ""))

        except (json.JSONDecodeError, ValueError) as e:
            log.error("json_parse_error", error=str(e), response=response_text[:200])
            return self._fallback(template, merge, e)
        except anthropic.APIError as e:
            log.error("claude_error", error=str(e))
            return self._fallback(template, merge, e)

    @staticmethod
    def _fallback(template: Optional[MessageTemplate], merge: dict, error: Exception) -> GeneratedMessage:
        """Render the stage template when Claude fails."""
        if template is None:
            raise ExternalActionFailure(f"Message generation failed: {error}") from error
        return GeneratedMessage(
            text=render_template(template.body, merge),
            reasoning=f"Template fallback ({template.name})",
        )
