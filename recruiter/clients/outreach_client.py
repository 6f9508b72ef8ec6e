"""Client for the local LinkedIn browser-automation agent."""

import os
import re
from typing import Optional, Protocol

import httpx
import structlog

from recruiter.core.errors import ExternalActionFailure

log = structlog.get_logger()

DEFAULT_AGENT_URL = "http://127.0.0.1:8765"

PROFILE_URL_PATTERN = re.compile(r"linkedin\.com/in/([^/?#]+)", re.IGNORECASE)


class OutreachClient(Protocol):
    async def send(self, target: str, text: str, kind: str) -> None:
        ...

    async def discover(self, query: str) -> list[dict]:
        ...

    async def check_inbox(self) -> list[dict]:
        ...


def profile_id_from_url(url: Optional[str]) -> Optional[str]:
    """Derive the stable profile identity from a LinkedIn profile URL."""
    if not url:
        return None
    match = PROFILE_URL_PATTERN.search(url)
    if match:
        return match.group(1).lower()
    return url.strip().rstrip("/").lower() or None


def normalize_discovered(raw: dict) -> Optional[dict]:
    """Map a raw search result to candidate fields. None when unidentifiable."""
    linkedin_url = raw.get("linkedin_url") or raw.get("profile_url") or raw.get("url")
    profile_id = raw.get("profile_id") or profile_id_from_url(linkedin_url)
    name = raw.get("name") or " ".join(
        part for part in (raw.get("first_name"), raw.get("last_name")) if part
    )
    if not profile_id or not name:
        return None

    return {
        "profile_id": str(profile_id),
        "name": name.strip(),
        "title": raw.get("title") or raw.get("headline"),
        "company": raw.get("company") or raw.get("current_company"),
        "location": raw.get("location"),
        "linkedin_url": linkedin_url,
        "profile_data": raw.get("profile_data") or raw,
    }


class AgentOutreachClient:
    """Talks to the automation agent over HTTP.

    The agent owns the browser session; this side only issues commands and
    reads results.
    """

    def __init__(self, base_url: Optional[str] = None, timeout: float = 120.0):
        self.base_url = (base_url or os.getenv("OUTREACH_AGENT_URL") or DEFAULT_AGENT_URL).rstrip("/")
        self.timeout = timeout

    async def _request(self, method: str, path: str, payload: Optional[dict] = None) -> dict:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(method, f"{self.base_url}{path}", json=payload)
                response.raise_for_status()
                return response.json() if response.content else {}
        except httpx.HTTPError as e:
            log.error("outreach_agent_error", path=path, error=str(e))
            raise ExternalActionFailure(f"Outreach agent {method} {path} failed: {e}") from e

    async def send(self, target: str, text: str, kind: str) -> None:
        """Perform one outbound action against a profile URL."""
        data = await self._request("POST", "/send", {"target": target, "text": text, "kind": kind})
        if data.get("ok") is False:
            raise ExternalActionFailure(data.get("error") or f"{kind} to {target} was not delivered")
        log.info("outreach_sent", target=target, kind=kind)

    async def discover(self, query: str) -> list[dict]:
        data = await self._request("POST", "/discover", {"query": query})
        results = data.get("results", [])
        log.info("outreach_discover_complete", query=query, count=len(results))
        return results

    async def check_inbox(self) -> list[dict]:
        data = await self._request("GET", "/inbox")
        return data.get("messages", [])
