"""The recruiting main loop.

One cycle runs five phases in order: send approved actions, discover new
candidates, advance pipelines, contact candidates of campaigns without a
pipeline, and check the inbox. A failure inside a phase is logged and the
next phase still runs; a failure escaping a cycle puts the loop into error
backoff. All network calls are awaited one at a time.
"""

import asyncio
import random
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable, Optional

import structlog

from recruiter.clients.outreach_client import OutreachClient, normalize_discovered
from recruiter.core.config import Settings, resolve_timezone
from recruiter.core.db import (
    DEFAULT_DB_PATH,
    get_active_campaigns,
    get_candidate,
    get_in_progress_stages,
    get_uncontacted_candidates,
    get_unenrolled_candidates,
    insert_candidate,
    log_action,
    update_candidate_score,
    utcnow,
)
from recruiter.core.errors import RecruiterError, TimingNotElapsed
from recruiter.outreach.approvals import FAILED, REJECTED, SENT, Approval, ApprovalGate
from recruiter.outreach.composer import MessageGenerator
from recruiter.outreach.rate_limiter import RateLimiter
from recruiter.pipeline.stages import (
    OUTBOUND_ACTIONS,
    STATUS_AFTER_SEND,
    close_stage,
    complete_stage,
    enroll_candidate,
    stage_is_due,
)
from recruiter.pipeline.state_machine import PipelineStateMachine, PipelineStatus
from recruiter.scoring.models import JobSpec, ScoringResult
from recruiter.scoring.scorer import ScoringAdapter, job_spec_from_campaign, profile_from_candidate

log = structlog.get_logger()

FALLBACK_TEMPLATE = "connection_request_hook"


class SchedulerLoop:
    """Long-running outreach loop with cooperative stop."""

    def __init__(
        self,
        outreach_client: OutreachClient,
        generator: MessageGenerator,
        scoring: ScoringAdapter,
        settings: Optional[Settings] = None,
        db_path: Path = DEFAULT_DB_PATH,
        notifier=None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.client = outreach_client
        self.generator = generator
        self.scoring = scoring
        self.settings = settings or Settings()
        self.db_path = db_path
        self.clock = clock
        self.sleep = sleep
        self.rng = rng or random.Random()

        self.tz = resolve_timezone(self.settings.working_hours.timezone)
        self.state_machine = PipelineStateMachine(db_path, clock=clock)
        self.approvals = ApprovalGate(db_path, notifier=notifier, clock=clock)
        self.rate_limiter = RateLimiter(self.settings.rate_limits, db_path, timezone=self.tz, clock=clock)

        self._running = False
        self._stop_requested = False

    @property
    def is_running(self) -> bool:
        return self._running

    def stop(self) -> None:
        """Ask the loop to exit at the next phase or cycle boundary."""
        log.info("scheduler_stop_requested")
        self._stop_requested = True

    async def start(self) -> None:
        """Run cycles until stop() is called."""
        self._running = True
        self._stop_requested = False
        scheduler = self.settings.scheduler
        log.info("scheduler_started", cycle_seconds=scheduler.cycle_seconds)

        try:
            while not self._stop_requested:
                try:
                    if not self.is_working_hours():
                        log.info("outside_working_hours")
                        await self.sleep(scheduler.off_hours_sleep_seconds)
                        continue

                    await self.run_cycle()
                    await self.sleep(scheduler.cycle_seconds)

                except Exception as e:
                    log.error("cycle_failed", error=str(e))
                    await self.sleep(scheduler.error_backoff_seconds)
        finally:
            self._running = False
            log.info("scheduler_stopped")

    def is_working_hours(self, now: Optional[datetime] = None) -> bool:
        now = now or self.clock()
        hours = self.settings.working_hours
        local = now.astimezone(self.tz)
        try:
            start_hour, end_hour = hours.start_hour, hours.end_hour
        except ValueError as e:
            # Unparseable hours: 9-18
            log.warning("working_hours_config_invalid", error=str(e))
            start_hour, end_hour = 9, 18

        if hours.pause_weekends and local.weekday() >= 5:
            return False
        return start_hour <= local.hour < end_hour

    async def run_cycle(self) -> dict:
        """Run every phase once. Returns summary dict."""
        touched: set[int] = set()
        summary = {
            "sent": 0,
            "send_failed": 0,
            "discovered": 0,
            "timed_out": 0,
            "stages_advanced": 0,
            "approvals_created": 0,
            "replies": 0,
            "errors": [],
        }

        phases = [
            ("send_approved", self.send_approved),
            ("discover", self.discover),
            ("pipeline_advance", self.advance_pipelines),
            ("fallback_contact", self.fallback_contact),
            ("inbox_check", self.check_inbox),
        ]
        for name, phase in phases:
            if self._stop_requested:
                break
            try:
                await phase(touched, summary)
            except Exception as e:
                log.error("phase_failed", phase=name, error=str(e))
                summary["errors"].append(f"{name}: {e}")
                log_action(self.db_path, None, None, "scheduler_phase", False,
                           metadata={"phase": name}, error_message=str(e), now=self.clock())

        log.info("cycle_complete", **{k: v for k, v in summary.items() if k != "errors"},
                 errors=len(summary["errors"]))
        return summary

    # ------------------------------------------------------------------
    # Phase 1: send approved actions
    # ------------------------------------------------------------------

    async def send_approved(self, touched: set, summary: dict) -> None:
        approved = self.approvals.list_approved()
        if not approved:
            log.debug("no_approved_actions")
            return

        for approval in approved:
            if self._stop_requested:
                break
            if approval.candidate_id in touched:
                continue

            quota = self.rate_limiter.check(approval.approval_type)
            if not quota.allowed:
                log.info("send_deferred_rate_limited", approval_id=approval.id,
                         action=approval.approval_type, used=quota.used, limit=quota.limit)
                continue

            touched.add(approval.candidate_id)
            await self._send_one(approval, summary)

            delay = self.rng.randint(
                self.settings.pacing.min_delay_seconds,
                self.settings.pacing.max_delay_seconds,
            )
            await self.sleep(delay)

    async def _send_one(self, approval: Approval, summary: dict) -> None:
        kind = approval.approval_type
        target = approval.linkedin_url or approval.profile_id
        now = self.clock()

        try:
            await self.client.send(target, approval.text_to_send, kind)
        except Exception as e:
            reason = str(e) or e.__class__.__name__
            log.error("send_failed", approval_id=approval.id, candidate_id=approval.candidate_id, error=reason)
            self.approvals.mark_failed(approval.id, reason)
            log_action(self.db_path, approval.candidate_id, approval.campaign_id, f"{kind}_sent", False,
                       metadata={"approval_id": approval.id}, error_message=reason, now=now)
            if approval.pipeline_stage_id:
                close_stage(self.db_path, approval.candidate_id, approval.pipeline_stage_id,
                            "failed", reason, now=now)
            summary["send_failed"] += 1
            return

        self.approvals.mark_sent(approval.id)
        log_action(self.db_path, approval.candidate_id, approval.campaign_id, f"{kind}_sent", True,
                   metadata={"approval_id": approval.id}, now=now)
        self.rate_limiter.record(kind)
        summary["sent"] += 1
        log.info("approval_sent", approval_id=approval.id, candidate_id=approval.candidate_id, kind=kind)

        target_status = STATUS_AFTER_SEND.get(kind)
        if target_status is not None:
            try:
                self.state_machine.transition_candidate(
                    approval.candidate_id, target_status, {"approval_id": approval.id})
            except RecruiterError as e:
                log.warning("post_send_transition_rejected", candidate_id=approval.candidate_id,
                            target=target_status.value, error=str(e))
                log_action(self.db_path, approval.candidate_id, approval.campaign_id,
                           "pipeline_transition", False, metadata={"to": target_status.value},
                           error_message=str(e), now=now)

        if approval.pipeline_stage_id:
            complete_stage(self.db_path, approval.candidate_id, approval.pipeline_stage_id,
                           now=now, metadata={"approval_id": approval.id})

    # ------------------------------------------------------------------
    # Phase 2: discovery
    # ------------------------------------------------------------------

    async def discover(self, touched: set, summary: dict) -> None:
        for campaign in get_active_campaigns(self.db_path):
            if self._stop_requested:
                break
            query = campaign["discovery_query"]
            if not query:
                continue

            quota = self.rate_limiter.check("discovery")
            if not quota.allowed:
                log.info("discovery_rate_limited", used=quota.used, limit=quota.limit)
                return

            try:
                await self._discover_campaign(campaign, query, touched, summary)
            except Exception as e:
                log.error("discovery_failed", campaign_id=campaign["id"], error=str(e))
                log_action(self.db_path, None, campaign["id"], "discovery_failed", False,
                           metadata={"query": query}, error_message=str(e), now=self.clock())

    async def _discover_campaign(self, campaign, query: str, touched: set, summary: dict) -> None:
        results = await self.client.discover(query)
        self.rate_limiter.record("discovery")

        job_spec = job_spec_from_campaign(dict(campaign))
        new = duplicates = invalid = 0
        for raw in results:
            fields = normalize_discovered(raw)
            if fields is None:
                invalid += 1
                continue

            candidate_id = insert_candidate(self.db_path, campaign["id"], now=self.clock(), **fields)
            if candidate_id is None:
                duplicates += 1
                continue

            new += 1
            summary["discovered"] += 1
            touched.add(candidate_id)
            result = await self._score(candidate_id, campaign["id"], job_spec)
            if campaign["pipeline_id"] and (result is None or result.hard_filter_passed):
                enroll_candidate(self.db_path, candidate_id, campaign["pipeline_id"], now=self.clock())

        log.info("discovery_complete", campaign_id=campaign["id"], found=len(results),
                 new=new, duplicates=duplicates, invalid=invalid)
        log_action(self.db_path, None, campaign["id"], "discovery", True,
                   metadata={"query": query, "found": len(results), "new": new, "duplicates": duplicates},
                   now=self.clock())

    async def _score(self, candidate_id: int, campaign_id: int, job_spec: JobSpec) -> Optional[ScoringResult]:
        candidate = get_candidate(self.db_path, candidate_id)
        profile = profile_from_candidate(dict(candidate))
        try:
            result = await self.scoring.score(profile, job_spec)
        except Exception as e:
            log.error("scoring_failed", candidate_id=candidate_id, error=str(e))
            log_action(self.db_path, candidate_id, campaign_id, "candidate_scored", False,
                       error_message=str(e) or e.__class__.__name__, now=self.clock())
            return None

        update_candidate_score(self.db_path, candidate_id, result.model_dump(), now=self.clock())
        log.info("candidate_scored", candidate_id=candidate_id, total=result.total_score, bucket=result.bucket)
        return result

    # ------------------------------------------------------------------
    # Phase 3: pipeline advance
    # ------------------------------------------------------------------

    async def advance_pipelines(self, touched: set, summary: dict) -> None:
        self._sweep_timeouts(touched, summary)

        for campaign in get_active_campaigns(self.db_path):
            if self._stop_requested:
                break
            pipeline_id = campaign["pipeline_id"]
            if not pipeline_id:
                continue

            for candidate in get_unenrolled_candidates(self.db_path, campaign["id"]):
                if candidate["id"] not in touched:
                    enroll_candidate(self.db_path, candidate["id"], pipeline_id, now=self.clock())

            for stage in get_in_progress_stages(self.db_path, campaign["id"]):
                candidate_id = stage["candidate_id"]
                if candidate_id in touched or not stage_is_due(stage, self.clock()):
                    continue
                try:
                    await self._dispatch_stage(stage, campaign, touched, summary)
                except Exception as e:
                    log.error("stage_dispatch_failed", candidate_id=candidate_id,
                              stage_id=stage["pipeline_stage_id"], error=str(e))
                    log_action(self.db_path, candidate_id, campaign["id"], "stage_dispatch", False,
                               metadata={"stage_id": stage["pipeline_stage_id"]},
                               error_message=str(e), now=self.clock())

    def _sweep_timeouts(self, touched: set, summary: dict) -> None:
        timed_out = [(cid, PipelineStatus.CONNECTION_EXPIRED)
                     for cid in self.state_machine.find_expired_connections()]
        timed_out += [(cid, PipelineStatus.ARCHIVED)
                      for cid, _ in self.state_machine.find_timed_out_candidates()]

        for candidate_id, target in timed_out:
            if candidate_id in touched:
                continue
            try:
                self.state_machine.transition_candidate(candidate_id, target, {"reason": "timeout"})
            except RecruiterError as e:
                log.warning("timeout_transition_failed", candidate_id=candidate_id, error=str(e))
                candidate = get_candidate(self.db_path, candidate_id)
                log_action(self.db_path, candidate_id, candidate["campaign_id"] if candidate else None,
                           "pipeline_transition", False, metadata={"to": target.value, "reason": "timeout"},
                           error_message=str(e), now=self.clock())
                continue
            touched.add(candidate_id)
            summary["timed_out"] += 1

    async def _dispatch_stage(self, stage, campaign, touched: set, summary: dict) -> None:
        candidate_id = stage["candidate_id"]
        stage_id = stage["pipeline_stage_id"]
        action = stage["action_type"]
        now = self.clock()

        if action not in OUTBOUND_ACTIONS:
            if action == "wait" and stage["pipeline_status"] == PipelineStatus.CONNECTION_SENT.value:
                # No acceptance signal from the network; the wait elapsing stands in for it
                check = self.state_machine.can_transition(candidate_id, PipelineStatus.CONNECTED_NO_MESSAGE)
                if check.allowed:
                    self.state_machine.transition_candidate(
                        candidate_id, PipelineStatus.CONNECTED_NO_MESSAGE,
                        {"inferred": True, "stage_id": stage_id})
            if action == "reminder":
                log_action(self.db_path, candidate_id, campaign["id"], "reminder", True,
                           metadata={"stage_id": stage_id, "stage_name": stage["stage_name"]}, now=now)
            complete_stage(self.db_path, candidate_id, stage_id, now=now)
            touched.add(candidate_id)
            summary["stages_advanced"] += 1
            return

        existing = self.approvals.latest_for_stage(candidate_id, stage_id)
        if existing is not None:
            if existing.status == REJECTED:
                close_stage(self.db_path, candidate_id, stage_id, "skipped", "approval rejected", now=now)
                touched.add(candidate_id)
            elif existing.status == FAILED:
                close_stage(self.db_path, candidate_id, stage_id, "failed",
                            existing.failed_reason or "send failed", now=now)
                touched.add(candidate_id)
            elif existing.status == SENT:
                complete_stage(self.db_path, candidate_id, stage_id, now=now,
                               metadata={"approval_id": existing.id})
                touched.add(candidate_id)
            # pending or approved: waiting on a human or the send phase
            return

        target = STATUS_AFTER_SEND.get(action)
        if target is not None:
            check = self.state_machine.can_transition(candidate_id, target)
            if not check.allowed:
                if isinstance(check.error, TimingNotElapsed):
                    log.debug("stage_waiting_on_dwell", candidate_id=candidate_id, stage_id=stage_id,
                              remaining_hours=round(check.remaining.total_seconds() / 3600, 1))
                    return
                close_stage(self.db_path, candidate_id, stage_id, "skipped", check.reason, now=now)
                touched.add(candidate_id)
                return

        candidate = dict(get_candidate(self.db_path, candidate_id))
        message = await self.generator.generate(candidate, self._role_context(campaign, action, stage["template_name"]))
        await self.approvals.create_pending(
            candidate_id, campaign["id"], action, message.text,
            context=message.reasoning, pipeline_stage_id=stage_id,
        )
        touched.add(candidate_id)
        summary["approvals_created"] += 1

    # ------------------------------------------------------------------
    # Phase 4: fallback contact for campaigns without a pipeline
    # ------------------------------------------------------------------

    async def fallback_contact(self, touched: set, summary: dict) -> None:
        budget = self.settings.scheduler.max_candidates_per_cycle

        for campaign in get_active_campaigns(self.db_path):
            if self._stop_requested or budget <= 0:
                break
            if campaign["pipeline_id"]:
                continue

            candidates = get_uncontacted_candidates(self.db_path, campaign["id"], budget)
            if not candidates:
                continue
            job_spec = job_spec_from_campaign(dict(campaign))

            for candidate in candidates:
                if candidate["id"] in touched:
                    continue

                quota = self.rate_limiter.check("connection_request")
                if not quota.allowed:
                    log.info("fallback_contact_rate_limited", used=quota.used, limit=quota.limit)
                    return

                budget -= 1
                touched.add(candidate["id"])
                try:
                    await self._contact(dict(candidate), campaign, job_spec, summary)
                except Exception as e:
                    log.error("fallback_contact_failed", candidate_id=candidate["id"], error=str(e))
                    log_action(self.db_path, candidate["id"], campaign["id"], "approval_created", False,
                               error_message=str(e), now=self.clock())

    async def _contact(self, candidate: dict, campaign, job_spec: JobSpec, summary: dict) -> None:
        disqualified = self.scoring.check(profile_from_candidate(candidate), job_spec)
        if disqualified is not None:
            update_candidate_score(self.db_path, candidate["id"], disqualified.model_dump(), now=self.clock())
            log.info("hard_filter_disqualified", candidate_id=candidate["id"],
                     reason=disqualified.disqualify_reason)
            return

        message = await self.generator.generate(
            candidate, self._role_context(campaign, "connection_request", FALLBACK_TEMPLATE))
        await self.approvals.create_pending(
            candidate["id"], campaign["id"], "connection_request", message.text, context=message.reasoning,
        )
        summary["approvals_created"] += 1

    # ------------------------------------------------------------------
    # Phase 5: inbox
    # ------------------------------------------------------------------

    async def check_inbox(self, touched: set, summary: dict) -> None:
        # TODO: classify replies and move candidates to replied_positive/negative/maybe
        messages = await self.client.check_inbox()
        summary["replies"] = len(messages)
        log.info("inbox_checked", count=len(messages))

    def _role_context(self, campaign, action_type: str, template_name: Optional[str]) -> dict:
        return {
            "action_type": action_type,
            "campaign": dict(campaign),
            "template_name": template_name,
            "recruiter_name": self.settings.outreach.recruiter_name,
            "qualify_link": self.settings.outreach.qualify_link,
        }
