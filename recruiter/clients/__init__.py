"""External API clients."""

from recruiter.clients.outreach_client import AgentOutreachClient, OutreachClient, normalize_discovered
