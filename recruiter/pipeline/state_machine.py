"""Candidate pipeline state machine.

The transition graph and the dwell-time rules are static lookup tables. The
time a candidate entered its current status is not stored on the candidate:
it is read back from the agent action log, which doubles as the audit trail.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Callable, Optional

import structlog

from recruiter.core.db import (
    DEFAULT_DB_PATH,
    apply_status_transition,
    get_candidate,
    get_status_entered_at,
    get_status_entries,
    parse_timestamp,
    utcnow,
)
from recruiter.core.errors import (
    CandidateNotFound,
    ConcurrentStatusChange,
    InvalidTransition,
    RecruiterError,
    TimingNotElapsed,
)

log = structlog.get_logger()


class PipelineStatus(str, Enum):
    IDENTIFIED = "identified"
    CONNECTION_SENT = "connection_sent"
    CONNECTION_EXPIRED = "connection_expired"
    CONNECTED_NO_MESSAGE = "connected_no_message"
    MESSAGE_1_SENT = "message_1_sent"
    MESSAGE_2_SENT = "message_2_sent"
    INMAIL_SENT = "inmail_sent"
    REPLIED_POSITIVE = "replied_positive"
    REPLIED_NEGATIVE = "replied_negative"
    REPLIED_MAYBE = "replied_maybe"
    QUALIFY_LINK_SENT = "qualify_link_sent"
    QUALIFIED = "qualified"
    INTRO_BOOKED = "intro_booked"
    CLIENT_REVIEWING = "client_reviewing"
    OFFER_EXTENDED = "offer_extended"
    PLACED = "placed"
    PASSED = "passed"
    NOT_A_FIT = "not_a_fit"
    ARCHIVED = "archived"


S = PipelineStatus
_REPLIES = (S.REPLIED_POSITIVE, S.REPLIED_NEGATIVE, S.REPLIED_MAYBE)

VALID_TRANSITIONS: MappingProxyType = MappingProxyType({
    S.IDENTIFIED: frozenset({S.CONNECTION_SENT, S.ARCHIVED}),
    S.CONNECTION_SENT: frozenset({S.CONNECTED_NO_MESSAGE, S.CONNECTION_EXPIRED, S.ARCHIVED}),
    S.CONNECTION_EXPIRED: frozenset({S.INMAIL_SENT, S.ARCHIVED}),
    S.CONNECTED_NO_MESSAGE: frozenset({S.MESSAGE_1_SENT}),
    S.MESSAGE_1_SENT: frozenset({*_REPLIES, S.MESSAGE_2_SENT}),
    S.MESSAGE_2_SENT: frozenset({*_REPLIES, S.ARCHIVED}),
    S.INMAIL_SENT: frozenset({*_REPLIES, S.ARCHIVED}),
    S.REPLIED_POSITIVE: frozenset({S.QUALIFY_LINK_SENT}),
    S.REPLIED_NEGATIVE: frozenset({S.NOT_A_FIT}),
    S.REPLIED_MAYBE: frozenset({S.QUALIFY_LINK_SENT}),
    S.QUALIFY_LINK_SENT: frozenset({S.QUALIFIED, S.ARCHIVED}),
    S.QUALIFIED: frozenset({S.INTRO_BOOKED, S.NOT_A_FIT}),
    S.INTRO_BOOKED: frozenset({S.CLIENT_REVIEWING}),
    S.CLIENT_REVIEWING: frozenset({S.OFFER_EXTENDED, S.PASSED}),
    S.OFFER_EXTENDED: frozenset({S.PLACED, S.NOT_A_FIT}),
    S.PLACED: frozenset(),
    S.PASSED: frozenset({S.ARCHIVED}),
    S.NOT_A_FIT: frozenset({S.ARCHIVED}),
    S.ARCHIVED: frozenset(),
})


@dataclass(frozen=True)
class TimingRule:
    min_dwell: timedelta
    description: str


TIMING_RULES: MappingProxyType = MappingProxyType({
    (S.CONNECTED_NO_MESSAGE, S.MESSAGE_1_SENT): TimingRule(
        timedelta(hours=24), "Must wait 24 hours after connection accepted before first message"),
    (S.MESSAGE_1_SENT, S.MESSAGE_2_SENT): TimingRule(
        timedelta(days=5), "Must wait 5 days after message 1 before follow-up"),
    (S.MESSAGE_2_SENT, S.ARCHIVED): TimingRule(
        timedelta(days=7), "Must wait 7 days after message 2 before archiving"),
    (S.INMAIL_SENT, S.ARCHIVED): TimingRule(
        timedelta(days=14), "Must wait 14 days after InMail before archiving"),
    (S.CONNECTION_SENT, S.CONNECTION_EXPIRED): TimingRule(
        timedelta(days=21), "Connection request expires after 21 days"),
})

# Timeout edges swept in batch: current status -> status it times out into
TIMEOUT_EDGES: MappingProxyType = MappingProxyType({
    S.CONNECTION_SENT: S.CONNECTION_EXPIRED,
    S.MESSAGE_2_SENT: S.ARCHIVED,
    S.INMAIL_SENT: S.ARCHIVED,
})


@dataclass
class TransitionCheck:
    allowed: bool
    reason: Optional[str] = None
    remaining: Optional[timedelta] = None
    error: Optional[RecruiterError] = None


class PipelineStateMachine:
    """Legality checks and writes for candidate pipeline_status."""

    def __init__(
        self,
        db_path: Path = DEFAULT_DB_PATH,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db_path = db_path
        self.clock = clock

    @staticmethod
    def get_valid_transitions(status) -> frozenset:
        """Statuses directly reachable from ``status`` (empty for terminals)."""
        return VALID_TRANSITIONS.get(PipelineStatus(status), frozenset())

    def status_entered_at(self, candidate_id: int, status) -> Optional[datetime]:
        entered = get_status_entered_at(self.db_path, candidate_id, PipelineStatus(status).value)
        return parse_timestamp(entered) if entered else None

    def can_transition(self, candidate_id: int, target) -> TransitionCheck:
        """Check graph legality and dwell time without writing anything."""
        try:
            self._check(candidate_id, PipelineStatus(target), enforce_timing=True)
        except TimingNotElapsed as e:
            return TransitionCheck(allowed=False, reason=str(e), remaining=e.remaining, error=e)
        except (InvalidTransition, CandidateNotFound) as e:
            return TransitionCheck(allowed=False, reason=str(e), error=e)
        return TransitionCheck(allowed=True)

    def transition_candidate(self, candidate_id: int, target, metadata: Optional[dict] = None) -> PipelineStatus:
        """Move a candidate along a legal, timing-eligible edge. Returns the previous status."""
        target = PipelineStatus(target)
        current = self._check(candidate_id, target, enforce_timing=True)
        return self._write(candidate_id, current, target, "pipeline_transition", metadata)

    def force_transition(self, candidate_id: int, target, metadata: Optional[dict] = None) -> PipelineStatus:
        """Manual override: still requires a graph edge, skips the timing rules."""
        target = PipelineStatus(target)
        current = self._check(candidate_id, target, enforce_timing=False)
        return self._write(candidate_id, current, target, "pipeline_transition_forced", metadata)

    def find_expired_connections(self) -> list[int]:
        """Candidates whose connection request has been pending past its expiry."""
        return [candidate_id for candidate_id, _ in self._timed_out(S.CONNECTION_SENT)]

    def find_timed_out_candidates(self) -> list[tuple[int, PipelineStatus]]:
        """Candidates in message_2_sent / inmail_sent whose archive dwell has elapsed."""
        results = []
        for status in (S.MESSAGE_2_SENT, S.INMAIL_SENT):
            results.extend(self._timed_out(status))
        return results

    def _timed_out(self, status: PipelineStatus) -> list[tuple[int, PipelineStatus]]:
        rule = TIMING_RULES[(status, TIMEOUT_EDGES[status])]
        now = self.clock()
        return [
            (row["id"], status)
            for row in get_status_entries(self.db_path, status.value)
            if row["entered_at"] and now - parse_timestamp(row["entered_at"]) >= rule.min_dwell
        ]

    def _current_status(self, candidate_id: int) -> PipelineStatus:
        candidate = get_candidate(self.db_path, candidate_id)
        if candidate is None:
            raise CandidateNotFound(candidate_id)
        return PipelineStatus(candidate["pipeline_status"] or S.IDENTIFIED.value)

    def _check(self, candidate_id: int, target: PipelineStatus, enforce_timing: bool) -> PipelineStatus:
        current = self._current_status(candidate_id)

        valid = self.get_valid_transitions(current)
        if target not in valid:
            raise InvalidTransition(current.value, target.value, sorted(s.value for s in valid))

        rule = TIMING_RULES.get((current, target))
        if enforce_timing and rule is not None:
            entered_at = self.status_entered_at(candidate_id, current)
            if entered_at is not None:
                elapsed = self.clock() - entered_at
                if elapsed < rule.min_dwell:
                    raise TimingNotElapsed(current.value, target.value, rule.min_dwell - elapsed, rule.description)

        return current

    def _write(
        self,
        candidate_id: int,
        current: PipelineStatus,
        target: PipelineStatus,
        action_type: str,
        metadata: Optional[dict],
    ) -> PipelineStatus:
        payload = {**(metadata or {}), "from": current.value, "to": target.value}
        if not apply_status_transition(
            self.db_path, candidate_id, current.value, target.value, action_type, payload, now=self.clock()
        ):
            raise ConcurrentStatusChange(candidate_id, current.value, target.value)

        log.info(action_type, candidate_id=candidate_id, from_status=current.value, to_status=target.value)
        return current
