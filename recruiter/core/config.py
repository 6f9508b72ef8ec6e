"""Configuration loading and models."""

import os
import re
from datetime import timezone, tzinfo
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog
import yaml
from pydantic import BaseModel

log = structlog.get_logger()


def resolve_timezone(name: str) -> tzinfo:
    """ZoneInfo for ``name``; UTC when the key is unknown or malformed."""
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        log.warning("timezone_invalid", timezone=name, error=str(e), fallback="UTC")
        return timezone.utc


class WorkingHoursConfig(BaseModel):
    start: str = "09:00"
    end: str = "18:00"
    timezone: str = "America/Denver"
    pause_weekends: bool = True

    @property
    def start_hour(self) -> int:
        return int(self.start.split(":")[0])

    @property
    def end_hour(self) -> int:
        return int(self.end.split(":")[0])


class RateLimitConfig(BaseModel):
    daily_connection_requests: int = 15
    daily_messages: int = 20
    weekly_connection_cap: int = 80
    daily_discovery: int = 10


class PacingConfig(BaseModel):
    min_delay_seconds: int = 45
    max_delay_seconds: int = 180


class SchedulerConfig(BaseModel):
    cycle_seconds: int = 30
    error_backoff_seconds: int = 60
    off_hours_sleep_seconds: int = 60
    max_candidates_per_cycle: int = 5


class AIConfig(BaseModel):
    model: str = "claude-sonnet-4-5-20250929"
    temperature: float = 0.7
    max_tokens: int = 1000


class OutreachConfig(BaseModel):
    agent_url: str = ""  # Local browser-automation agent
    recruiter_name: str = ""
    qualify_link: str = ""


class Settings(BaseModel):
    working_hours: WorkingHoursConfig = WorkingHoursConfig()
    rate_limits: RateLimitConfig = RateLimitConfig()
    pacing: PacingConfig = PacingConfig()
    scheduler: SchedulerConfig = SchedulerConfig()
    ai: AIConfig = AIConfig()
    outreach: OutreachConfig = OutreachConfig()


DEFAULT_CONFIG_PATH = Path("config")


def load_settings(config_path: Path = DEFAULT_CONFIG_PATH) -> Settings:
    """Load settings from YAML file."""
    settings_file = config_path / "settings.yaml"

    if settings_file.exists():
        with open(settings_file) as f:
            data = yaml.safe_load(f) or {}
        settings = Settings(**data)
    else:
        settings = Settings()

    # Env vars fill in anything the YAML leaves blank
    if not settings.outreach.agent_url:
        settings.outreach.agent_url = os.environ.get("OUTREACH_AGENT_URL", "")
    if not settings.outreach.recruiter_name:
        settings.outreach.recruiter_name = os.environ.get("RECRUITER_NAME", "")
    if not settings.outreach.qualify_link:
        settings.outreach.qualify_link = os.environ.get("QUALIFY_LINK", "")

    return settings


class MessageTemplate(BaseModel):
    """Outreach message template keyed by name."""
    name: str
    type: str
    body: str


def render_template(template: str, variables: dict) -> str:
    """Replace {{merge_fields}} with values; unknown or empty fields become ''."""
    def _sub(match: re.Match) -> str:
        value = variables.get(match.group(1))
        return str(value) if value else ""

    return re.sub(r"\{\{(\w+)\}\}", _sub, template)


def load_templates(config_path: Path = DEFAULT_CONFIG_PATH) -> list[MessageTemplate]:
    """Load and parse templates.md into a list of MessageTemplate objects."""
    templates_file = config_path / "templates.md"

    if not templates_file.exists():
        return []

    content = templates_file.read_text()

    # Split on frontmatter delimiters (---)
    sections = re.split(r'^---\s*$', content, flags=re.MULTILINE)

    templates = []
    # Process pairs of (frontmatter, body)
    i = 1
    while i < len(sections) - 1:
        frontmatter = sections[i].strip()
        body = sections[i + 1].strip()

        meta = yaml.safe_load(frontmatter) if frontmatter else None
        if meta and "template" in meta:
            templates.append(MessageTemplate(
                name=meta["template"],
                type=meta.get("type", "message"),
                body=body,
            ))

        i += 2

    return templates


def get_template_by_name(config_path: Path, name: str) -> Optional[MessageTemplate]:
    """Get a specific template by name from templates.md, or None."""
    for t in load_templates(config_path):
        if t.name == name:
            return t
    return None
