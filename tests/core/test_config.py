"""Tests for config module."""

import tempfile
from datetime import timezone
from pathlib import Path

from recruiter.core.config import (
    Settings,
    get_template_by_name,
    load_settings,
    load_templates,
    render_template,
    resolve_timezone,
)


def test_load_settings():
    with tempfile.TemporaryDirectory() as tmpdir:
        config_path = Path(tmpdir)
        settings_file = config_path / "settings.yaml"
        settings_file.write_text("""
working_hours:
  start: "08:30"
  end: "17:00"
  timezone: Europe/London
  pause_weekends: false

rate_limits:
  daily_connection_requests: 5

pacing:
  min_delay_seconds: 10
  max_delay_seconds: 20
""")

        settings = load_settings(config_path)

        assert settings.working_hours.start_hour == 8
        assert settings.working_hours.end_hour == 17
        assert settings.working_hours.timezone == "Europe/London"
        assert settings.working_hours.pause_weekends is False
        assert settings.rate_limits.daily_connection_requests == 5
        # Unset keys keep their defaults
        assert settings.rate_limits.daily_messages == 20
        assert settings.rate_limits.weekly_connection_cap == 80
        assert settings.pacing.max_delay_seconds == 20


def test_load_settings_defaults_without_file(monkeypatch):
    monkeypatch.delenv("OUTREACH_AGENT_URL", raising=False)
    with tempfile.TemporaryDirectory() as tmpdir:
        settings = load_settings(Path(tmpdir))

        assert settings.working_hours.timezone == "America/Denver"
        assert settings.working_hours.pause_weekends is True
        assert settings.pacing.min_delay_seconds == 45
        assert settings.pacing.max_delay_seconds == 180
        assert settings.scheduler.cycle_seconds == 30
        assert settings.scheduler.max_candidates_per_cycle == 5
        assert settings.outreach.agent_url == ""


def test_outreach_settings_fall_back_to_env(monkeypatch):
    monkeypatch.setenv("RECRUITER_NAME", "Dana")
    monkeypatch.setenv("QUALIFY_LINK", "https://example.com/q")
    with tempfile.TemporaryDirectory() as tmpdir:
        settings = load_settings(Path(tmpdir))

        assert settings.outreach.recruiter_name == "Dana"
        assert settings.outreach.qualify_link == "https://example.com/q"


def test_settings_model_defaults():
    settings = Settings()
    assert settings.rate_limits.daily_connection_requests == 15
    assert settings.working_hours.start_hour == 9
    assert settings.working_hours.end_hour == 18


def test_render_template():
    template = "Hi {{first_name}}, loved your work at {{company}}."
    result = render_template(template, {"first_name": "Sarah", "company": "Acme"})
    assert result == "Hi Sarah, loved your work at Acme."


def test_render_template_unknown_and_empty_fields_render_empty():
    template = "Hi {{first_name}}{{missing}}, {{hook}}done"
    result = render_template(template, {"first_name": "Sarah", "hook": None})
    assert result == "Hi Sarah, done"


def test_load_templates():
    with tempfile.TemporaryDirectory() as tmpdir:
        config_path = Path(tmpdir)
        (config_path / "templates.md").write_text("""# Templates

---
template: connection_request_hook
type: connection_request
---
Hi {{first_name}}, open to connecting?

---
template: message_1
type: message
---
Thanks for connecting, {{first_name}}.
""")

        templates = load_templates(config_path)

        assert [t.name for t in templates] == ["connection_request_hook", "message_1"]
        assert templates[0].type == "connection_request"
        assert templates[1].body == "Thanks for connecting, {{first_name}}."

        assert get_template_by_name(config_path, "message_1").type == "message"
        assert get_template_by_name(config_path, "nope") is None


def test_load_templates_missing_file():
    with tempfile.TemporaryDirectory() as tmpdir:
        assert load_templates(Path(tmpdir)) == []


def test_shipped_templates_parse():
    templates = {t.name: t for t in load_templates(Path(__file__).parents[2] / "config")}
    for name in ("connection_request_hook", "message_1", "message_2", "inmail", "qualify_link_reply"):
        assert name in templates


def test_resolve_timezone():
    assert resolve_timezone("America/Denver").key == "America/Denver"
    assert resolve_timezone("Mars/Olympus") is timezone.utc
