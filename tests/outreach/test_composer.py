import tempfile
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import anthropic
import httpx
import pytest

from recruiter.core.errors import ExternalActionFailure
from recruiter.outreach.composer import ClaudeMessageGenerator, build_merge_context, build_system_prompt

TEMPLATES = (
    "---\n"
    "template: connection_request_hook\n"
    "type: connection_request\n"
    "---\n"
    "Hi {{first_name}}, {{hook}} Working on a {{function}} search. {{unknown}}Open to connecting?\n"
)

CANDIDATE = {
    "id": 1,
    "name": "Sarah Chen",
    "title": "VP Marketing",
    "company": "Glossy",
    "personalization_hook": "Your talk on retention loops was sharp.",
}

CAMPAIGN = {
    "role_title": "CMO",
    "role_description": "Lead marketing at a Series B brand",
    "job_spec": '{"function": "Marketing", "role_level": "C-level", "client_description_external": "a fast-growing DTC brand"}',
}


def _context(**overrides):
    context = {
        "action_type": "connection_request",
        "campaign": CAMPAIGN,
        "template_name": "connection_request_hook",
        "recruiter_name": "Dana",
        "qualify_link": "",
    }
    context.update(overrides)
    return context


def _response(text):
    response = MagicMock()
    response.content = [MagicMock(text=text)]
    return response


def test_build_merge_context():
    merge = build_merge_context(CANDIDATE, CAMPAIGN, recruiter_name="Dana", qualify_link="https://q")

    assert merge["first_name"] == "Sarah"
    assert merge["last_name"] == "Chen"
    assert merge["hook"] == "Your talk on retention loops was sharp."
    assert merge["function"] == "Marketing"
    assert merge["client_description_external"] == "a fast-growing DTC brand"
    assert merge["role_one_liner"] == "Lead marketing at a Series B brand"
    assert merge["recruiter_name"] == "Dana"
    assert merge["qualify_link"] == "https://q"


def test_build_system_prompt_mentions_connection_limit():
    prompt = build_system_prompt("connection_request", None)
    assert "300 characters" in prompt
    assert "JSON" in prompt


@pytest.mark.asyncio
async def test_generate_uses_claude_response():
    with tempfile.TemporaryDirectory() as tmpdir:
        config_path = Path(tmpdir)
        (config_path / "templates.md").write_text(TEMPLATES)

        client = AsyncMock()
        client.messages.create.return_value = _response(
            '```json\n{"message": "Hi Sarah, loved your retention talk.", "reasoning": "talk hook"}\n```'
        )
        generator = ClaudeMessageGenerator(config_path=config_path, client=client)

        message = await generator.generate(CANDIDATE, _context())

        assert message.text == "Hi Sarah, loved your retention talk."
        assert message.reasoning == "talk hook"
        system = client.messages.create.call_args[1]["system"]
        assert "Open to connecting?" in system


@pytest.mark.asyncio
async def test_generate_falls_back_to_template_on_bad_json():
    with tempfile.TemporaryDirectory() as tmpdir:
        config_path = Path(tmpdir)
        (config_path / "templates.md").write_text(TEMPLATES)

        client = AsyncMock()
        client.messages.create.return_value = _response("Sure! Here's a message for Sarah.")
        generator = ClaudeMessageGenerator(config_path=config_path, client=client)

        message = await generator.generate(CANDIDATE, _context())

        assert message.text == (
            "Hi Sarah, Your talk on retention loops was sharp. Working on a Marketing search. Open to connecting?"
        )
        assert "connection_request_hook" in message.reasoning


@pytest.mark.asyncio
async def test_generate_falls_back_on_api_error():
    with tempfile.TemporaryDirectory() as tmpdir:
        config_path = Path(tmpdir)
        (config_path / "templates.md").write_text(TEMPLATES)

        with patch("recruiter.outreach.composer.anthropic.AsyncAnthropic") as mock_anthropic:
            mock_client = AsyncMock()
            mock_client.messages.create.side_effect = anthropic.APIConnectionError(
                request=httpx.Request("POST", "https://api.anthropic.com/v1/messages")
            )
            mock_anthropic.return_value = mock_client

            message = await ClaudeMessageGenerator(config_path=config_path).generate(CANDIDATE, _context())

        assert message.text.startswith("Hi Sarah,")


@pytest.mark.asyncio
async def test_generate_without_template_raises_on_failure():
    with tempfile.TemporaryDirectory() as tmpdir:
        client = AsyncMock()
        client.messages.create.return_value = _response('{"message": ""}')
        generator = ClaudeMessageGenerator(config_path=Path(tmpdir), client=client)

        with pytest.raises(ExternalActionFailure):
            await generator.generate(CANDIDATE, _context(template_name=None))
